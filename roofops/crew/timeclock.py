"""
Crew time clock.

One open entry (no ``clock_out``) per crew member at a time.
"""

import logging
from datetime import datetime, time
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from roofops import metrics
from roofops.core.exceptions import ConflictError, NotFoundError
from roofops.core.utils import hours_between, round_hours, utcnow
from roofops.database import CrewAssignment, CrewTimeEntry
from roofops.domain.models import GeoPoint, UserContext

logger = logging.getLogger(__name__)


def open_entry(db: Session, ctx: UserContext) -> Optional[CrewTimeEntry]:
    return (
        db.query(CrewTimeEntry)
        .filter(
            CrewTimeEntry.tenant_id == ctx.tenant_id,
            CrewTimeEntry.crew_member_id == ctx.user_id,
            CrewTimeEntry.clock_out.is_(None),
        )
        .order_by(CrewTimeEntry.clock_in.desc())
        .first()
    )


def entry_hours(entry: CrewTimeEntry, now: Optional[datetime] = None) -> float:
    end = entry.clock_out or now or utcnow()
    return round_hours(max(0.0, hours_between(entry.clock_in, end)))


def time_entry_to_dict(entry: CrewTimeEntry, now: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "crew_member_id": entry.crew_member_id,
        "assignment_id": entry.assignment_id,
        "clock_in": entry.clock_in.isoformat(),
        "clock_out": entry.clock_out.isoformat() if entry.clock_out else None,
        "location_in": entry.location_in,
        "location_out": entry.location_out,
        "hours": entry_hours(entry, now),
        "is_open": entry.clock_out is None,
        "auto_closed": bool(entry.auto_closed),
        "notes": entry.notes,
    }


def clock_in(
    db: Session,
    ctx: UserContext,
    location: Optional[Dict[str, Any]] = None,
    assignment_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> CrewTimeEntry:
    point = GeoPoint.parse(location)
    if open_entry(db, ctx) is not None:
        raise ConflictError("Already clocked in. Clock out first.")
    if assignment_id:
        assignment = (
            db.query(CrewAssignment)
            .filter(
                CrewAssignment.tenant_id == ctx.tenant_id,
                CrewAssignment.id == assignment_id,
                CrewAssignment.assigned_to == ctx.user_id,
            )
            .first()
        )
        if assignment is None:
            raise NotFoundError("Assignment not found")
    entry = CrewTimeEntry(
        tenant_id=ctx.tenant_id,
        crew_member_id=ctx.user_id,
        assignment_id=assignment_id,
        clock_in=utcnow(),
        location_in=point.to_dict() if point else None,
        notes=notes,
    )
    db.add(entry)
    db.commit()
    metrics.record_clock_event()
    logger.info("Crew member %s clocked in", ctx.user_id)
    return entry


def clock_out(db: Session, ctx: UserContext, location: Optional[Dict[str, Any]] = None) -> CrewTimeEntry:
    point = GeoPoint.parse(location)
    entry = open_entry(db, ctx)
    if entry is None:
        raise ConflictError("Not clocked in.")
    entry.clock_out = utcnow()
    entry.location_out = point.to_dict() if point else None
    db.commit()
    metrics.record_clock_event()
    logger.info("Crew member %s clocked out after %.1fh", ctx.user_id, entry_hours(entry))
    return entry


def todays_entries(db: Session, ctx: UserContext, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Today's entries newest first, with the open one flagged."""
    now = now or utcnow()
    start = datetime.combine(now.date(), time.min)
    rows: List[CrewTimeEntry] = (
        db.query(CrewTimeEntry)
        .filter(
            CrewTimeEntry.tenant_id == ctx.tenant_id,
            CrewTimeEntry.crew_member_id == ctx.user_id,
            CrewTimeEntry.clock_in >= start,
        )
        .order_by(CrewTimeEntry.clock_in.desc())
        .all()
    )
    entries = [time_entry_to_dict(e, now) for e in rows]
    return {
        "entries": entries,
        "is_clocked_in": any(e["is_open"] for e in entries) or open_entry(db, ctx) is not None,
        "total_hours": round_hours(sum(e["hours"] for e in entries)),
    }
