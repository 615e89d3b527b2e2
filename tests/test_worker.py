"""Tests for the worker process entrypoint."""

import asyncio
from datetime import datetime

import pytest

from roofops import worker
from roofops.database import CrewTimeEntry


class _Job:
    def __init__(self, result=0, error=None):
        self.result = result
        self.error = error
        self.ticks = 0

    async def tick(self):
        self.ticks += 1
        if self.error:
            raise self.error
        return self.result


class EscalateJob(_Job):
    pass


class CloseJob(_Job):
    pass


@pytest.mark.asyncio
async def test_sweep_once_ticks_every_job():
    a, b = EscalateJob(result=2), CloseJob(result=0)
    assert await worker.sweep_once([a, b]) == {"EscalateJob": 2, "CloseJob": 0}
    assert a.ticks == b.ticks == 1


@pytest.mark.asyncio
async def test_sweep_once_survives_a_failing_job():
    failing, ok = EscalateJob(error=RuntimeError("db locked")), CloseJob(result=3)
    assert await worker.sweep_once([failing, ok]) == {"EscalateJob": None, "CloseJob": 3}
    assert ok.ticks == 1


@pytest.mark.asyncio
async def test_sweep_once_default_jobs_on_empty_database():
    assert await worker.sweep_once() == {"ApprovalEscalator": 0, "StaleShiftCloser": 0}


def test_backlog_counts_open_work(db, org):
    db.add(CrewTimeEntry(tenant_id=org.tenant.id, crew_member_id=org.crew.id,
                         clock_in=datetime(2026, 3, 18, 7, 0)))
    db.add(CrewTimeEntry(tenant_id=org.tenant.id, crew_member_id=org.crew.id,
                         clock_in=datetime(2026, 3, 17, 7, 0), clock_out=datetime(2026, 3, 17, 15, 0)))
    db.commit()
    assert worker.backlog() == {"pending_approvals": 0, "open_shifts": 1}


@pytest.mark.asyncio
async def test_main_async_requires_worker_mode(monkeypatch):
    started = []

    async def start():
        started.append(True)

    monkeypatch.setattr(worker.config, "RUN_MODE", "api")
    monkeypatch.setattr(worker, "start_background_tasks", start)
    await worker.main_async()
    assert started == []


@pytest.mark.asyncio
async def test_main_async_once_runs_a_single_sweep(monkeypatch):
    sweeps = []

    async def fake_sweep(jobs=None):
        sweeps.append(jobs)
        return {}

    async def never(*_args, **_kwargs):
        raise AssertionError("continuous mode should not start")

    monkeypatch.setattr(worker.config, "RUN_MODE", "worker")
    monkeypatch.setattr(worker.config, "WORKER_RUN_ONCE", False)
    monkeypatch.setattr(worker, "init_db", lambda: None)
    monkeypatch.setattr(worker, "sweep_once", fake_sweep)
    monkeypatch.setattr(worker, "run_worker_forever", never)
    await worker.main_async(once=True)
    assert sweeps == [None]


@pytest.mark.asyncio
async def test_run_once_env_flag(monkeypatch):
    sweeps = []

    async def fake_sweep(jobs=None):
        sweeps.append(True)
        return {}

    monkeypatch.setattr(worker.config, "RUN_MODE", "worker")
    monkeypatch.setattr(worker.config, "WORKER_RUN_ONCE", True)
    monkeypatch.setattr(worker, "init_db", lambda: None)
    monkeypatch.setattr(worker, "sweep_once", fake_sweep)
    await worker.main_async()
    assert sweeps == [True]


@pytest.mark.asyncio
async def test_run_worker_forever_retries_then_stops(monkeypatch):
    stop_event = asyncio.Event()
    attempts = []

    async def flaky_start():
        attempts.append(True)
        if len(attempts) == 1:
            raise RuntimeError("db not ready")
        stop_event.set()

    async def stop():
        return None

    monkeypatch.setattr(worker, "init_db", lambda: None)
    monkeypatch.setattr(worker.config, "WORKER_RETRY_INITIAL_SECONDS", 0.5)
    await asyncio.wait_for(worker.run_worker_forever(stop_event, flaky_start, stop), timeout=5)
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_shutdown_interrupts_backoff(monkeypatch):
    stop_event = asyncio.Event()
    attempts = []

    async def broken_start():
        attempts.append(True)
        asyncio.get_running_loop().call_later(0.05, stop_event.set)
        raise RuntimeError("still broken")

    async def stop():
        return None

    monkeypatch.setattr(worker, "init_db", lambda: None)
    monkeypatch.setattr(worker.config, "WORKER_RETRY_INITIAL_SECONDS", 30)
    await asyncio.wait_for(worker.run_worker_forever(stop_event, broken_start, stop), timeout=5)
    assert len(attempts) == 1


def test_backoff_doubles_up_to_ceiling(monkeypatch):
    monkeypatch.setattr(worker.config, "WORKER_RETRY_INITIAL_SECONDS", 2)
    monkeypatch.setattr(worker.config, "WORKER_RETRY_MAX_SECONDS", 10)
    delays = worker._backoff_delays()
    assert [next(delays) for _ in range(5)] == [2, 4, 8, 10, 10]


def test_parser_once_flag():
    assert worker.build_parser().parse_args(["--once"]).once is True
    assert worker.build_parser().parse_args([]).once is False
