"""Tests for the background escalation and shift-closing loops."""

import asyncio
from datetime import timedelta

import pytest

from roofops import tasks
from roofops.approvals import request_approval
from roofops.core.utils import utcnow
from roofops.database import CrewTimeEntry, PipelineActivity, set_setting
from roofops.notifications.notifiers import NullNotifier, WebhookNotifier


def _request(db, org, make, priority="standard", hours_ago=0.0):
    entry = make.entry(org.rep_ctx)
    req = request_approval(db, org.rep_ctx, entry.id, priority=priority)
    req.requested_at = utcnow() - timedelta(hours=hours_ago)
    db.commit()
    return req


class TestApprovalEscalator:
    def test_escalates_one_step_per_window(self, db, org, make):
        req = _request(db, org, make, hours_ago=30)
        escalator = tasks.ApprovalEscalator(escalate_hours=24)

        notices = escalator.escalate(db)
        assert len(notices) == 1
        db.refresh(req)
        assert req.priority == "high"
        assert req.escalation_level == 1
        assert req.last_escalated_at is not None

        # Level 1 waits until 48h.
        assert escalator.escalate(db) == []
        assert escalator.escalate(db, now=utcnow() + timedelta(hours=20))
        db.refresh(req)
        assert req.priority == "critical"
        assert req.escalation_level == 2

    def test_critical_keeps_level_climbing(self, db, org, make):
        req = _request(db, org, make, priority="critical", hours_ago=25)
        tasks.ApprovalEscalator(escalate_hours=24).escalate(db)
        db.refresh(req)
        assert req.priority == "critical"
        assert req.escalation_level == 1

    def test_fresh_and_decided_requests_are_left_alone(self, db, org, make):
        _request(db, org, make, hours_ago=1)
        decided = _request(db, org, make, hours_ago=100)
        decided.status = "approved"
        db.commit()
        assert tasks.ApprovalEscalator(escalate_hours=24).escalate(db) == []

    def test_records_activity_and_event(self, db, org, make):
        req = _request(db, org, make, hours_ago=26)
        [(notifier, event)] = tasks.ApprovalEscalator(escalate_hours=24).escalate(db)
        assert isinstance(notifier, NullNotifier)
        assert event.kind == "approval_escalated"
        assert event.title == "Approval escalated: Jane Homeowner"
        assert event.data["priority"] == "high"
        activity = db.query(PipelineActivity).filter_by(
            pipeline_entry_id=req.pipeline_entry_id, activity_type="approval",
        ).one()
        assert activity.title == "Approval escalated"

    def test_uses_tenant_webhook(self, db, org, make):
        set_setting(db, org.tenant.id, "notifications_enabled", True)
        set_setting(db, org.tenant.id, "approval_webhook_url", "https://hooks.example.test/a")
        _request(db, org, make, hours_ago=26)
        [(notifier, _)] = tasks.ApprovalEscalator(escalate_hours=24).escalate(db)
        assert isinstance(notifier, WebhookNotifier)

    @pytest.mark.asyncio
    async def test_tick_sends_notifications(self, db, org, make, monkeypatch):
        _request(db, org, make, hours_ago=30)
        sent = []

        async def fake_send(notifier, event):
            sent.append(event.kind)
            return True

        monkeypatch.setattr(tasks, "safe_send", fake_send)
        count = await tasks.ApprovalEscalator(escalate_hours=24).tick()
        assert count == 1
        assert sent == ["approval_escalated"]


class TestStaleShiftCloser:
    def _shift(self, db, org, hours_ago, notes=None):
        entry = CrewTimeEntry(
            tenant_id=org.tenant.id, crew_member_id=org.crew.id,
            clock_in=utcnow() - timedelta(hours=hours_ago), notes=notes,
        )
        db.add(entry)
        db.commit()
        return entry

    def test_closes_at_max_hours(self, db, org):
        stale = self._shift(db, org, 20, notes="Left site early")
        closed = tasks.StaleShiftCloser().close_stale(db)
        assert closed == 1
        db.refresh(stale)
        assert stale.auto_closed
        assert stale.clock_out == stale.clock_in + timedelta(hours=14)
        assert stale.notes == "Left site early\nAuto-closed after 14h"

    def test_leaves_recent_shift_open(self, db, org):
        recent = self._shift(db, org, 3)
        assert tasks.StaleShiftCloser().close_stale(db) == 0
        db.refresh(recent)
        assert recent.clock_out is None

    def test_tenant_override(self, db, org):
        set_setting(db, org.tenant.id, "crew_max_shift_hours", 8)
        entry = self._shift(db, org, 9)
        assert tasks.StaleShiftCloser().close_stale(db) == 1
        db.refresh(entry)
        assert entry.notes == "Auto-closed after 8h"

    @pytest.mark.asyncio
    async def test_tick(self, db, org):
        self._shift(db, org, 30)
        assert await tasks.StaleShiftCloser().tick() == 1


@pytest.mark.asyncio
async def test_start_and_stop_background_tasks(monkeypatch):
    async def idle(self):
        await asyncio.sleep(3600)

    monkeypatch.setattr(tasks.ApprovalEscalator, "run_forever", idle)
    monkeypatch.setattr(tasks.StaleShiftCloser, "run_forever", idle)
    await tasks.start_background_tasks()
    assert len(tasks._tasks) == 2
    await tasks.stop_background_tasks()
    assert tasks._tasks == []
