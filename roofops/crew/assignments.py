"""
Crew work orders and the job-status machine.

    assigned -> en_route -> on_site -> work_started -> completed
                                         ^      |
                                         +- waiting

Completion is gated on photo buckets and the checklist.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from roofops.core.constants import ASSIGNMENT_TRANSITIONS, DEFAULT_PHOTO_BUCKETS
from roofops.core.exceptions import NotFoundError, PermissionDeniedError, ValidationFailedError
from roofops.core.utils import utcnow, valid_coordinates
from roofops.database import (
    ChecklistItem, CrewAssignment, Photo, PhotoBucket, Project, get_profile,
)
from roofops.domain.enums import AssignmentStatus
from roofops.domain.models import UserContext

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------

def get_assignment(db: Session, ctx: UserContext, assignment_id: str) -> CrewAssignment:
    """Crew see only their own work orders; dispatchers see the whole tenant."""
    q = db.query(CrewAssignment).filter(
        CrewAssignment.tenant_id == ctx.tenant_id,
        CrewAssignment.id == assignment_id,
    )
    if not ctx.can_dispatch:
        q = q.filter(CrewAssignment.assigned_to == ctx.user_id)
    assignment = q.first()
    if assignment is None:
        raise NotFoundError("Assignment not found")
    return assignment


def list_assignments(
    db: Session,
    ctx: UserContext,
    assigned_to: Optional[str] = None,
    status: Optional[str] = None,
    include_completed: bool = False,
) -> List[CrewAssignment]:
    q = db.query(CrewAssignment).filter(CrewAssignment.tenant_id == ctx.tenant_id)
    if not ctx.can_dispatch:
        q = q.filter(CrewAssignment.assigned_to == ctx.user_id)
    elif assigned_to:
        q = q.filter(CrewAssignment.assigned_to == assigned_to)
    if status:
        q = q.filter(CrewAssignment.status == status)
    elif not include_completed:
        q = q.filter(CrewAssignment.status != AssignmentStatus.COMPLETED.value)
    return (
        q.order_by(CrewAssignment.scheduled_date.asc(), CrewAssignment.arrival_window_start.asc())
        .all()
    )


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

def create_assignment(db: Session, ctx: UserContext, data: Dict[str, Any]) -> CrewAssignment:
    if not ctx.can_dispatch:
        raise PermissionDeniedError("Only managers and project managers can assign crew")
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationFailedError("Title is required")
    assignee = get_profile(db, ctx.tenant_id, data.get("assigned_to"))
    if assignee is None or not assignee.is_active:
        raise ValidationFailedError("Assignee must be an active member of this company")
    if data.get("project_id"):
        exists = (
            db.query(Project.id)
            .filter(Project.tenant_id == ctx.tenant_id, Project.id == data["project_id"])
            .first()
        )
        if exists is None:
            raise NotFoundError("Project not found")
    site_lat, site_lng = data.get("site_lat"), data.get("site_lng")
    if (site_lat is None) != (site_lng is None):
        raise ValidationFailedError("site_lat and site_lng must be given together")
    if site_lat is not None and not valid_coordinates(site_lat, site_lng):
        raise ValidationFailedError("Invalid site coordinates")

    scheduled = data.get("scheduled_date")
    if isinstance(scheduled, str):
        try:
            scheduled = date.fromisoformat(scheduled)
        except ValueError:
            raise ValidationFailedError("scheduled_date must be YYYY-MM-DD")

    assignment = CrewAssignment(
        tenant_id=ctx.tenant_id,
        project_id=data.get("project_id"),
        assigned_to=assignee.id,
        title=title,
        scope_summary=data.get("scope_summary"),
        scheduled_date=scheduled,
        arrival_window_start=data.get("arrival_window_start"),
        arrival_window_end=data.get("arrival_window_end"),
        site_lat=float(site_lat) if site_lat is not None else None,
        site_lng=float(site_lng) if site_lng is not None else None,
        status=AssignmentStatus.ASSIGNED.value,
        status_changed_at=utcnow(),
        created_by=ctx.user_id,
    )
    db.add(assignment)
    db.flush()

    buckets = data.get("photo_buckets")
    if buckets is None:
        buckets = [
            {"key": key, "label": label, "required_count": count}
            for key, label, count in DEFAULT_PHOTO_BUCKETS
        ]
    keys = set()
    for b in buckets:
        key = (b.get("key") or "").strip()
        if not key or key in keys:
            raise ValidationFailedError("Photo bucket keys must be unique and non-empty")
        if int(b.get("required_count", 0) or 0) < 0:
            raise ValidationFailedError("required_count cannot be negative")
        keys.add(key)
        db.add(PhotoBucket(
            tenant_id=ctx.tenant_id,
            assignment_id=assignment.id,
            key=key,
            label=b.get("label") or key.title(),
            required_count=int(b.get("required_count", 0) or 0),
        ))

    for idx, item in enumerate(data.get("checklist") or []):
        label = (item.get("label") or "").strip()
        if not label:
            raise ValidationFailedError("Checklist items need a label")
        bucket = item.get("photo_bucket")
        if item.get("requires_photo") and bucket not in keys:
            raise ValidationFailedError(f"Checklist item '{label}' needs a valid photo_bucket")
        db.add(ChecklistItem(
            tenant_id=ctx.tenant_id,
            assignment_id=assignment.id,
            label=label,
            sort_order=idx,
            requires_photo=bool(item.get("requires_photo")),
            photo_bucket=bucket,
        ))

    db.commit()
    logger.info("Assignment %s created for %s by %s", assignment.id, assignee.id, ctx.user_id)
    return assignment


# ---------------------------------------------------------------------------
# Completion gating
# ---------------------------------------------------------------------------

def bucket_photo_counts(db: Session, assignment: CrewAssignment) -> Dict[str, int]:
    rows = (
        db.query(Photo.bucket_key, func.count(Photo.id))
        .filter(Photo.tenant_id == assignment.tenant_id, Photo.assignment_id == assignment.id)
        .group_by(Photo.bucket_key)
        .all()
    )
    return {key: count for key, count in rows if key}


def completion_status(db: Session, assignment: CrewAssignment) -> Dict[str, Any]:
    """Bucket counts, checklist progress and whether the job can be completed."""
    counts = bucket_photo_counts(db, assignment)
    buckets = (
        db.query(PhotoBucket)
        .filter(PhotoBucket.assignment_id == assignment.id)
        .order_by(PhotoBucket.key.asc())
        .all()
    )
    items = (
        db.query(ChecklistItem)
        .filter(ChecklistItem.assignment_id == assignment.id)
        .order_by(ChecklistItem.sort_order.asc())
        .all()
    )
    missing: List[str] = []
    bucket_rows = []
    for b in buckets:
        have = counts.get(b.key, 0)
        ok = have >= (b.required_count or 0)
        if not ok:
            missing.append(f"{b.label}: {have}/{b.required_count} photos")
        bucket_rows.append({
            "key": b.key, "label": b.label, "required_count": b.required_count,
            "count": have, "satisfied": ok,
        })
    checked = sum(1 for i in items if i.is_checked)
    for i in items:
        if not i.is_checked:
            missing.append(f"Checklist: {i.label}")
    return {
        "buckets": bucket_rows,
        "checklist": {
            "total": len(items),
            "checked": checked,
            "items": [
                {
                    "id": i.id, "label": i.label, "requires_photo": bool(i.requires_photo),
                    "photo_bucket": i.photo_bucket, "is_checked": bool(i.is_checked),
                    "checked_at": i.checked_at.isoformat() if i.checked_at else None,
                }
                for i in items
            ],
        },
        "missing": missing,
        "can_complete": not missing,
    }


# ---------------------------------------------------------------------------
# Status machine
# ---------------------------------------------------------------------------

def can_transition(current: str, new_status: str) -> bool:
    return new_status in ASSIGNMENT_TRANSITIONS.get(current, frozenset())


def update_status(db: Session, ctx: UserContext, assignment_id: str, new_status: str) -> CrewAssignment:
    try:
        new_status = AssignmentStatus(new_status).value
    except ValueError:
        raise ValidationFailedError(f"Unknown job status: {new_status}")
    assignment = get_assignment(db, ctx, assignment_id)
    if assignment.status == new_status:
        return assignment
    if not can_transition(assignment.status, new_status):
        raise ValidationFailedError(
            f"Cannot change job status from {assignment.status} to {new_status}"
        )
    now = utcnow()
    if new_status == AssignmentStatus.COMPLETED.value:
        status = completion_status(db, assignment)
        if not status["can_complete"]:
            raise ValidationFailedError(
                "Job cannot be completed yet",
                details={"missing": status["missing"]},
            )
        assignment.completed_at = now
    assignment.status = new_status
    assignment.status_changed_at = now
    db.commit()
    logger.info("Assignment %s -> %s by %s", assignment.id, new_status, ctx.user_id)
    return assignment


def toggle_checklist_item(
    db: Session,
    ctx: UserContext,
    assignment_id: str,
    item_id: str,
    checked: bool,
) -> ChecklistItem:
    assignment = get_assignment(db, ctx, assignment_id)
    item = (
        db.query(ChecklistItem)
        .filter(ChecklistItem.assignment_id == assignment.id, ChecklistItem.id == item_id)
        .first()
    )
    if item is None:
        raise NotFoundError("Checklist item not found")
    if checked and item.requires_photo:
        if bucket_photo_counts(db, assignment).get(item.photo_bucket, 0) < 1:
            raise ValidationFailedError(
                f"Add a photo to '{item.photo_bucket}' before checking this item"
            )
    item.is_checked = bool(checked)
    item.checked_by = ctx.user_id if checked else None
    item.checked_at = utcnow() if checked else None
    db.commit()
    return item


def assignment_to_dict(db: Session, a: CrewAssignment, with_completion: bool = True) -> Dict[str, Any]:
    out = {
        "id": a.id,
        "project_id": a.project_id,
        "assigned_to": a.assigned_to,
        "title": a.title,
        "scope_summary": a.scope_summary,
        "scheduled_date": a.scheduled_date.isoformat() if a.scheduled_date else None,
        "arrival_window_start": a.arrival_window_start,
        "arrival_window_end": a.arrival_window_end,
        "site_lat": a.site_lat,
        "site_lng": a.site_lng,
        "status": a.status,
        "status_changed_at": a.status_changed_at.isoformat() if a.status_changed_at else None,
        "completed_at": a.completed_at.isoformat() if a.completed_at else None,
        "next_statuses": sorted(ASSIGNMENT_TRANSITIONS.get(a.status, ())),
    }
    if with_completion:
        out["completion"] = completion_status(db, a)
    return out
