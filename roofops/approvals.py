"""
Manager approval queue.

A request is opened when a non-manager puts an entry on hold for manager
review (or asks explicitly).  A manager approves, which converts the entry
to a project, or rejects, which returns the entry to where it was before
the hold.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from roofops import metrics
from roofops.contacts import contact_display_name
from roofops.core.constants import HOLD_STATUS, REJECT_FALLBACK_STATUS
from roofops.core.exceptions import (
    ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError,
)
from roofops.core.utils import utcnow
from roofops.database import (
    ApprovalRequest, Contact, PipelineActivity, PipelineEntry,
    StatusTransitionHistory, get_setting, latest_estimate_prices, profile_names,
)
from roofops.domain.enums import ApprovalPriority, ApprovalStatus
from roofops.domain.models import UserContext
from roofops.notifications.notifiers import NotificationEvent
from roofops.pipeline.board import get_visible_entry
from roofops.pipeline.transitions import transition_entry

logger = logging.getLogger(__name__)


def default_priority(db: Session, tenant_id: str, value: Optional[float]) -> str:
    """Priority from the tenant's value thresholds."""
    value = value or 0.0
    critical = float(get_setting(db, tenant_id, "approval_critical_value") or 0)
    high = float(get_setting(db, tenant_id, "approval_high_value") or 0)
    if critical and value >= critical:
        return ApprovalPriority.CRITICAL.value
    if high and value >= high:
        return ApprovalPriority.HIGH.value
    return ApprovalPriority.STANDARD.value


def pending_request_for(db: Session, tenant_id: str, entry_id: str) -> Optional[ApprovalRequest]:
    return (
        db.query(ApprovalRequest)
        .filter(
            ApprovalRequest.tenant_id == tenant_id,
            ApprovalRequest.pipeline_entry_id == entry_id,
            ApprovalRequest.status == ApprovalStatus.PENDING.value,
        )
        .first()
    )


def open_approval_request(
    db: Session,
    ctx: UserContext,
    entry: PipelineEntry,
    justification: Optional[str] = None,
    priority: Optional[str] = None,
) -> Optional[ApprovalRequest]:
    """Add a pending request unless one is already open.  Caller commits.

    Returns the new request, or None when one was already pending.
    """
    if pending_request_for(db, ctx.tenant_id, entry.id) is not None:
        return None
    value = latest_estimate_prices(db, [entry.id]).get(entry.id, entry.estimated_value)
    if priority is None:
        priority = default_priority(db, ctx.tenant_id, value)
    request = ApprovalRequest(
        tenant_id=ctx.tenant_id,
        pipeline_entry_id=entry.id,
        contact_id=entry.contact_id,
        requested_by=ctx.user_id,
        approval_type="project_conversion",
        priority=priority,
        estimated_value=value,
        business_justification=justification,
        status=ApprovalStatus.PENDING.value,
        requested_at=utcnow(),
    )
    db.add(request)
    db.flush()
    logger.info("Approval request %s opened for entry %s (%s)", request.id, entry.id, priority)
    return request


def request_approval(
    db: Session,
    ctx: UserContext,
    entry_id: str,
    justification: Optional[str] = None,
    priority: Optional[str] = None,
) -> ApprovalRequest:
    """Explicitly ask for manager approval on an entry."""
    entry = get_visible_entry(db, ctx, entry_id)
    if priority is not None:
        try:
            priority = ApprovalPriority(priority).value
        except ValueError:
            raise ValidationFailedError("Priority must be standard, high or critical")
    request = open_approval_request(db, ctx, entry, justification=justification, priority=priority)
    if request is None:
        raise ConflictError("An approval request is already pending for this entry")
    db.commit()
    return request


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------

def _sort_key(r: ApprovalRequest):
    try:
        rank = ApprovalPriority(r.priority).rank
    except ValueError:
        rank = 0
    return (-rank, r.requested_at)


def list_queue(db: Session, ctx: UserContext, status: Optional[str] = None) -> List[Dict[str, Any]]:
    """Requests ordered critical > high > standard, then oldest first.

    Managers see the whole tenant; others see their own requests.
    """
    q = db.query(ApprovalRequest).filter(ApprovalRequest.tenant_id == ctx.tenant_id)
    if status:
        q = q.filter(ApprovalRequest.status == status)
    if not ctx.is_manager:
        q = q.filter(ApprovalRequest.requested_by == ctx.user_id)
    rows = sorted(q.all(), key=_sort_key)

    names = profile_names(
        db, ctx.tenant_id,
        [r.requested_by for r in rows] + [r.reviewed_by for r in rows],
    )
    contact_ids = {r.contact_id for r in rows if r.contact_id}
    contacts = {
        c.id: c for c in db.query(Contact).filter(
            Contact.tenant_id == ctx.tenant_id, Contact.id.in_(contact_ids),
        )
    } if contact_ids else {}
    entry_ids = {r.pipeline_entry_id for r in rows}
    entries = {
        e.id: e for e in db.query(PipelineEntry).filter(PipelineEntry.id.in_(entry_ids))
    } if entry_ids else {}

    now = utcnow()
    return [
        approval_to_dict(
            r,
            requester_name=names.get(r.requested_by),
            reviewer_name=names.get(r.reviewed_by),
            contact=contacts.get(r.contact_id),
            entry=entries.get(r.pipeline_entry_id),
            now=now,
        )
        for r in rows
    ]


def approval_to_dict(
    r: ApprovalRequest,
    requester_name: Optional[str] = None,
    reviewer_name: Optional[str] = None,
    contact: Optional[Contact] = None,
    entry: Optional[PipelineEntry] = None,
    now=None,
) -> Dict[str, Any]:
    now = now or utcnow()
    return {
        "id": r.id,
        "pipeline_entry_id": r.pipeline_entry_id,
        "pipeline_number": entry.number if entry else None,
        "pipeline_status": entry.status if entry else None,
        "contact_id": r.contact_id,
        "contact_name": contact_display_name(contact),
        "approval_type": r.approval_type,
        "priority": r.priority,
        "estimated_value": r.estimated_value,
        "business_justification": r.business_justification,
        "status": r.status,
        "requested_by": r.requested_by,
        "requested_by_name": requester_name,
        "requested_at": r.requested_at.isoformat() if r.requested_at else None,
        "hours_waiting": round((now - r.requested_at).total_seconds() / 3600, 1) if r.requested_at else None,
        "reviewed_by": r.reviewed_by,
        "reviewed_by_name": reviewer_name,
        "reviewed_at": r.reviewed_at.isoformat() if r.reviewed_at else None,
        "manager_notes": r.manager_notes,
        "escalation_level": r.escalation_level or 0,
    }


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------

def pre_hold_status(db: Session, tenant_id: str, entry_id: str) -> str:
    """Status the entry held before its most recent move into manager hold."""
    row = (
        db.query(StatusTransitionHistory)
        .filter(
            StatusTransitionHistory.tenant_id == tenant_id,
            StatusTransitionHistory.pipeline_entry_id == entry_id,
            StatusTransitionHistory.to_status == HOLD_STATUS,
        )
        .order_by(StatusTransitionHistory.created_at.desc())
        .first()
    )
    if row is None or not row.from_status or row.from_status == HOLD_STATUS:
        return REJECT_FALLBACK_STATUS
    return row.from_status


def respond_to_approval_request(
    db: Session,
    ctx: UserContext,
    approval_id: str,
    approved: bool,
    manager_notes: Optional[str] = None,
) -> Dict[str, Any]:
    """Approve or reject a pending request.

    Approve converts the entry to a project; reject sends it back to its
    pre-hold status with the notes as the reason.
    """
    if not ctx.is_manager:
        raise PermissionDeniedError("Only managers can respond to approval requests")
    request = (
        db.query(ApprovalRequest)
        .filter(ApprovalRequest.tenant_id == ctx.tenant_id, ApprovalRequest.id == approval_id)
        .first()
    )
    if request is None:
        raise NotFoundError("Approval request not found")
    if request.status != ApprovalStatus.PENDING.value:
        raise ConflictError(f"Request was already {request.status}")

    entry = get_visible_entry(db, ctx, request.pipeline_entry_id)
    notes = (manager_notes or "").strip() or None

    if approved:
        result = transition_entry(
            db, ctx, entry.id, "project", reason=notes or "Approved by manager",
            enforce_rules=False,
        )
    else:
        result = None
        if entry.status == HOLD_STATUS:
            target = pre_hold_status(db, ctx.tenant_id, entry.id)
            result = transition_entry(
                db, ctx, entry.id, target, reason=notes or "Rejected by manager",
                enforce_rules=False,
            )

    now = utcnow()
    request.status = ApprovalStatus.APPROVED.value if approved else ApprovalStatus.REJECTED.value
    request.reviewed_by = ctx.user_id
    request.reviewed_at = now
    request.manager_notes = notes
    verdict = "approved" if approved else "rejected"
    db.add(PipelineActivity(
        tenant_id=ctx.tenant_id,
        pipeline_entry_id=entry.id,
        contact_id=entry.contact_id,
        activity_type="approval",
        title=f"Project approval {verdict}",
        description=f"{ctx.name} {verdict} the request" + (f": {notes}" if notes else ""),
        created_by=ctx.user_id,
        created_at=now,
    ))
    db.commit()
    metrics.record_approval_processed()
    logger.info("Approval %s %s by %s", request.id, verdict, ctx.user_id)

    contact = db.query(Contact).filter(Contact.id == entry.contact_id).first()
    return {
        "success": True,
        "approval": approval_to_dict(request, contact=contact, entry=entry, now=now),
        "new_status": entry.status,
        "project_id": result.project_id if result else None,
        "contact_name": contact_display_name(contact),
    }


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

def requested_event(db: Session, request: ApprovalRequest) -> NotificationEvent:
    contact = db.query(Contact).filter(Contact.id == request.contact_id).first()
    requester = profile_names(db, request.tenant_id, [request.requested_by]).get(request.requested_by, "")
    return NotificationEvent.approval_requested(
        customer=contact_display_name(contact) or "Unknown customer",
        value=request.estimated_value or 0.0,
        priority=request.priority,
        requester=requester or "A team member",
    )


def pending_requested_event(db: Session, tenant_id: str, entry_id: str) -> Optional[NotificationEvent]:
    """Event for the entry's open request, if any (used after a hold transition)."""
    request = pending_request_for(db, tenant_id, entry_id)
    return requested_event(db, request) if request is not None else None
