"""
Background Tasks for RoofOps
- ApprovalEscalator: raises the priority of approval requests left pending too long
- StaleShiftCloser: closes crew shifts nobody clocked out of
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from roofops import config
from roofops.contacts import contact_display_name
from roofops.core.utils import hours_between, utcnow
from roofops.database import (
    ApprovalRequest, Contact, CrewTimeEntry, PipelineActivity, get_db, get_setting,
)
from roofops.domain.enums import ApprovalPriority, ApprovalStatus
from roofops.notifications.notifiers import (
    NotificationEvent, Notifier, build_notifier_for_tenant, safe_send,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# ApprovalEscalator
# ---------------------------------------------------------------------------

class ApprovalEscalator:
    """Escalates pending approval requests.

    A request waiting longer than ``APPROVAL_ESCALATE_HOURS * (level + 1)``
    moves one priority step (standard -> high -> critical), its
    ``escalation_level`` goes up by one and the tenant's webhook is notified.
    """

    def __init__(self, escalate_hours: Optional[float] = None, interval_seconds: Optional[int] = None):
        self.escalate_hours = escalate_hours or config.APPROVAL_ESCALATE_HOURS
        self.interval_seconds = interval_seconds or config.APPROVAL_SCAN_INTERVAL_SECONDS

    def escalate(self, db: Session, now: Optional[datetime] = None) -> List[Tuple[Notifier, NotificationEvent]]:
        """Escalate due requests and commit.  Returns the notifications to send."""
        now = now or utcnow()
        pending = (
            db.query(ApprovalRequest)
            .filter(ApprovalRequest.status == ApprovalStatus.PENDING.value)
            .all()
        )
        out = []
        for req in pending:
            if req.requested_at is None:
                continue
            waited = hours_between(req.requested_at, now)
            if waited < self.escalate_hours * ((req.escalation_level or 0) + 1):
                continue
            try:
                current = ApprovalPriority(req.priority)
            except ValueError:
                current = ApprovalPriority.STANDARD
            req.priority = current.escalated().value
            req.escalation_level = (req.escalation_level or 0) + 1
            req.last_escalated_at = now
            db.add(PipelineActivity(
                tenant_id=req.tenant_id,
                pipeline_entry_id=req.pipeline_entry_id,
                contact_id=req.contact_id,
                activity_type="approval",
                title="Approval escalated",
                description=f"Pending {waited:.0f}h; priority {req.priority}",
                created_at=now,
            ))
            contact = db.query(Contact).filter(Contact.id == req.contact_id).first()
            event = NotificationEvent.approval_escalated(
                customer=contact_display_name(contact) or "Unknown customer",
                priority=req.priority,
                hours_waiting=waited,
            )
            out.append((build_notifier_for_tenant(db, req.tenant_id), event))
            logger.info(
                "Approval %s escalated to %s (level %d, %.1fh pending)",
                req.id, req.priority, req.escalation_level, waited,
            )
        if out:
            db.commit()
        return out

    async def tick(self) -> int:
        def _sync():
            db = get_db()
            try:
                return self.escalate(db)
            finally:
                db.close()

        notices = await asyncio.to_thread(_sync)
        for notifier, event in notices:
            await safe_send(notifier, event)
        return len(notices)

    async def run_forever(self):
        logger.info("ApprovalEscalator started (every %ds)", self.interval_seconds)
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.error("ApprovalEscalator tick error: %s", e)
            await asyncio.sleep(self.interval_seconds)


# ---------------------------------------------------------------------------
# StaleShiftCloser
# ---------------------------------------------------------------------------

class StaleShiftCloser:
    """Closes open time entries older than the tenant's ``crew_max_shift_hours``.

    The shift is closed at ``clock_in + max hours`` (not at scan time) and
    flagged ``auto_closed``.
    """

    def __init__(self, interval_seconds: Optional[int] = None):
        self.interval_seconds = interval_seconds or config.SHIFT_SCAN_INTERVAL_SECONDS

    def close_stale(self, db: Session, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        open_entries = db.query(CrewTimeEntry).filter(CrewTimeEntry.clock_out.is_(None)).all()
        limits = {}
        closed = 0
        for entry in open_entries:
            if entry.tenant_id not in limits:
                limits[entry.tenant_id] = float(
                    get_setting(db, entry.tenant_id, "crew_max_shift_hours", config.CREW_MAX_SHIFT_HOURS)
                    or config.CREW_MAX_SHIFT_HOURS
                )
            max_hours = limits[entry.tenant_id]
            if hours_between(entry.clock_in, now) <= max_hours:
                continue
            entry.clock_out = entry.clock_in + timedelta(hours=max_hours)
            entry.auto_closed = True
            note = f"Auto-closed after {max_hours:g}h"
            entry.notes = f"{entry.notes}\n{note}" if entry.notes else note
            closed += 1
        if closed:
            db.commit()
            logger.info("Auto-closed %d stale crew shifts", closed)
        return closed

    async def tick(self) -> int:
        def _sync():
            db = get_db()
            try:
                return self.close_stale(db)
            finally:
                db.close()

        return await asyncio.to_thread(_sync)

    async def run_forever(self):
        logger.info("StaleShiftCloser started (every %ds)", self.interval_seconds)
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.error("StaleShiftCloser tick error: %s", e)
            await asyncio.sleep(self.interval_seconds)


# ---------------------------------------------------------------------------
# Task launcher (called from the worker process)
# ---------------------------------------------------------------------------

_tasks = []


async def start_background_tasks():
    """Create and start all background asyncio tasks."""
    _tasks.append(asyncio.create_task(ApprovalEscalator().run_forever()))
    _tasks.append(asyncio.create_task(StaleShiftCloser().run_forever()))
    logger.info("All %d background tasks started", len(_tasks))


async def stop_background_tasks():
    """Cancel all running background tasks."""
    for task in _tasks:
        task.cancel()
    if _tasks:
        await asyncio.gather(*_tasks, return_exceptions=True)
    _tasks.clear()
    logger.info("All background tasks stopped")
