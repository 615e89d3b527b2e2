"""
Dedicated worker process entrypoint.

Run with:
    RUN_MODE=worker python -m roofops.worker          # continuous
    RUN_MODE=worker python -m roofops.worker --once   # one sweep, then exit

The worker owns the periodic jobs (approval escalation, stale shift
closing). The API process never runs them. ``--once`` (or
``WORKER_RUN_ONCE=1``) runs every job a single time, which suits a cron
schedule instead of a long-lived process.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from typing import Awaitable, Callable, Dict, Iterator, Optional, Sequence

from sqlalchemy import func

from roofops import __version__, config
from roofops.core.logging import configure_logging
from roofops.database import ApprovalRequest, CrewTimeEntry, get_db, init_db
from roofops.tasks import ApprovalEscalator, StaleShiftCloser, start_background_tasks, stop_background_tasks

logger = logging.getLogger(__name__)

StartFn = Callable[[], Awaitable[None]]
StopFn = Callable[[], Awaitable[None]]

JOBS = (ApprovalEscalator, StaleShiftCloser)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    """SIGINT/SIGTERM set ``stop_event``; the current session then winds down."""
    loop = asyncio.get_running_loop()

    def _request_stop() -> None:
        if not stop_event.is_set():
            logger.info("Shutdown signal received, stopping worker...")
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop)
        except NotImplementedError:
            # Windows
            signal.signal(sig, lambda _s, _f: _request_stop())


def backlog() -> Dict[str, int]:
    """Open work across all tenants, logged when a session starts."""
    db = get_db()
    try:
        pending = (
            db.query(func.count(ApprovalRequest.id))
            .filter(ApprovalRequest.status == "pending")
            .scalar()
        ) or 0
        open_shifts = (
            db.query(func.count(CrewTimeEntry.id))
            .filter(CrewTimeEntry.clock_out.is_(None))
            .scalar()
        ) or 0
        return {"pending_approvals": pending, "open_shifts": open_shifts}
    finally:
        db.close()


async def sweep_once(jobs: Optional[Sequence] = None) -> Dict[str, Optional[int]]:
    """Tick every job once.

    Returns the count each job handled, keyed by job class name. A job that
    raises is logged and reported as ``None``; the remaining jobs still run.
    """
    results: Dict[str, Optional[int]] = {}
    for job in jobs if jobs is not None else [cls() for cls in JOBS]:
        name = type(job).__name__
        try:
            results[name] = await job.tick()
        except Exception:
            logger.exception("%s sweep failed", name)
            results[name] = None
    return results


async def _run_worker_session(
    stop_event: asyncio.Event,
    start_fn: StartFn,
    stop_fn: StopFn,
) -> None:
    init_db()
    summary = await asyncio.to_thread(backlog)
    await start_fn()
    logger.info(
        "Worker session started (pending approvals=%d, open shifts=%d).",
        summary["pending_approvals"], summary["open_shifts"],
    )
    try:
        await stop_event.wait()
    finally:
        logger.info("Stopping worker jobs...")
        await stop_fn()


def _backoff_delays() -> Iterator[float]:
    delay = max(0.5, config.WORKER_RETRY_INITIAL_SECONDS)
    ceiling = max(delay, config.WORKER_RETRY_MAX_SECONDS)
    while True:
        yield delay
        delay = min(ceiling, delay * 2.0)


async def run_worker_forever(
    stop_event: asyncio.Event,
    start_fn: StartFn = start_background_tasks,
    stop_fn: StopFn = stop_background_tasks,
) -> None:
    """Run sessions until ``stop_event`` is set, restarting a crashed one.

    The wait between attempts doubles up to ``WORKER_RETRY_MAX_SECONDS`` and
    ends early when shutdown is requested.
    """
    delays = _backoff_delays()
    while not stop_event.is_set():
        try:
            await _run_worker_session(stop_event, start_fn, stop_fn)
            return
        except asyncio.CancelledError:
            raise
        except Exception:
            if stop_event.is_set():
                return
            delay = next(delays)
            logger.exception("Worker session crashed; retrying in %.1fs", delay)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                continue


async def main_async(once: bool = False) -> None:
    if config.RUN_MODE != "worker":
        logger.warning(
            "roofops.worker invoked with RUN_MODE=%s. Exiting without starting worker jobs.",
            config.RUN_MODE,
        )
        return

    logger.info("RoofOps worker %s", __version__)

    if once or config.WORKER_RUN_ONCE:
        init_db()
        results = await sweep_once()
        logger.info("Single sweep finished: %s", results)
        return

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)
    logger.info("Starting worker in continuous mode.")
    await run_worker_forever(stop_event)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="RoofOps background worker")
    parser.add_argument("--once", action="store_true", help="run every job once and exit")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging()
    asyncio.run(main_async(once=args.once))


if __name__ == "__main__":
    main()
