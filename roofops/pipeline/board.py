"""
Pipeline board: visibility, entry creation and the stage-bucketed view.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Query, Session

from roofops.contacts import contact_display_name, get_contact
from roofops.core.constants import BOARD_STAGES, PIPELINE_NUMBER_PREFIX
from roofops.core.exceptions import NotFoundError, ValidationFailedError
from roofops.core.utils import format_address, format_sequence, utcnow
from roofops.database import (
    Contact, Estimate, PipelineActivity, PipelineEntry, StatusTransitionHistory,
    latest_estimate_prices, next_sequence, profile_names, get_profile,
)
from roofops.domain.enums import EntryPriority
from roofops.domain.models import UserContext
from roofops.pipeline.stages import stage_label

logger = logging.getLogger(__name__)


@dataclass
class BoardFilters:
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    sales_rep_id: Optional[str] = None
    location: Optional[str] = None       # substring of the contact's city
    location_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------

def visible_entries(db: Session, ctx: UserContext) -> Query:
    """Entries of the caller's tenant the caller may see.

    Managers see every entry; everyone else sees entries assigned to or
    created by them.
    """
    q = db.query(PipelineEntry).filter(PipelineEntry.tenant_id == ctx.tenant_id)
    if not ctx.is_manager:
        q = q.filter(or_(
            PipelineEntry.assigned_to == ctx.user_id,
            PipelineEntry.created_by == ctx.user_id,
        ))
    return q


def get_visible_entry(db: Session, ctx: UserContext, entry_id: str) -> PipelineEntry:
    entry = visible_entries(db, ctx).filter(PipelineEntry.id == entry_id).first()
    if entry is None:
        raise NotFoundError("Pipeline entry not found")
    return entry


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------

def entry_to_dict(
    entry: PipelineEntry,
    contact: Optional[Contact] = None,
    value: Optional[float] = None,
    assignee_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    entered = entry.status_entered_at or entry.created_at
    return {
        "id": entry.id,
        "number": entry.number,
        "status": entry.status,
        "status_label": stage_label(entry.status),
        "contact_id": entry.contact_id,
        "contact_name": contact_display_name(contact),
        "address": format_address(
            contact.address_street, contact.address_city,
            contact.address_state, contact.address_zip,
        ) if contact else "",
        "city": contact.address_city if contact else None,
        "estimated_value": entry.estimated_value,
        "value": value if value is not None else (entry.estimated_value or 0.0),
        "priority": entry.priority,
        "roof_type": entry.roof_type,
        "source": entry.source,
        "assigned_to": entry.assigned_to,
        "assigned_to_name": assignee_name,
        "location_id": entry.location_id,
        "created_by": entry.created_by,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
        "status_entered_at": entered.isoformat() if entered else None,
        "days_in_status": (now - entered).days if entered else 0,
        "last_status_change_reason": entry.last_status_change_reason,
    }


def entries_to_dicts(db: Session, ctx: UserContext, entries: List[PipelineEntry]) -> List[Dict[str, Any]]:
    """Serialise many entries with three batched lookups instead of N."""
    contact_ids = {e.contact_id for e in entries}
    contacts = {
        c.id: c for c in db.query(Contact).filter(
            Contact.tenant_id == ctx.tenant_id, Contact.id.in_(contact_ids),
        )
    } if contact_ids else {}
    prices = latest_estimate_prices(db, [e.id for e in entries])
    names = profile_names(db, ctx.tenant_id, [e.assigned_to for e in entries])
    now = utcnow()
    return [
        entry_to_dict(e, contacts.get(e.contact_id), prices.get(e.id), names.get(e.assigned_to), now)
        for e in entries
    ]


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

def create_entry(
    db: Session,
    ctx: UserContext,
    contact_id: str,
    estimated_value: Optional[float] = None,
    priority: str = EntryPriority.MEDIUM.value,
    roof_type: Optional[str] = None,
    source: Optional[str] = None,
    assigned_to: Optional[str] = None,
    notes: Optional[str] = None,
) -> PipelineEntry:
    contact = get_contact(db, ctx, contact_id)
    try:
        priority = EntryPriority(priority or EntryPriority.MEDIUM.value).value
    except ValueError:
        raise ValidationFailedError("Priority must be low, medium or high")
    if estimated_value is not None and estimated_value < 0:
        raise ValidationFailedError("Estimated value cannot be negative")
    if assigned_to and get_profile(db, ctx.tenant_id, assigned_to) is None:
        raise ValidationFailedError("Assignee is not a member of this company")

    seq = next_sequence(db, ctx.tenant_id, "pipeline_seq")
    now = utcnow()
    entry = PipelineEntry(
        tenant_id=ctx.tenant_id,
        location_id=contact.location_id or ctx.location_id,
        contact_id=contact.id,
        number=format_sequence(PIPELINE_NUMBER_PREFIX, seq),
        status="lead",
        status_entered_at=now,
        estimated_value=estimated_value,
        priority=priority,
        roof_type=roof_type,
        source=source or contact.lead_source,
        assigned_to=assigned_to or ctx.user_id,
        created_by=ctx.user_id,
        notes=notes,
        created_at=now,
    )
    db.add(entry)
    contact.qualification_status = "lead"
    db.flush()
    db.add(PipelineActivity(
        tenant_id=ctx.tenant_id,
        pipeline_entry_id=entry.id,
        contact_id=contact.id,
        activity_type="created",
        title=f"Lead {entry.number} created",
        created_by=ctx.user_id,
    ))
    db.commit()
    logger.info("Pipeline entry %s created by %s", entry.number, ctx.user_id)
    return entry


def add_estimate(
    db: Session,
    ctx: UserContext,
    entry_id: str,
    selling_price: float,
    selected_tier: Optional[str] = None,
) -> Estimate:
    entry = get_visible_entry(db, ctx, entry_id)
    if selling_price is None or selling_price < 0:
        raise ValidationFailedError("Selling price must be zero or more")
    count = db.query(Estimate).filter(Estimate.pipeline_entry_id == entry.id).count()
    est = Estimate(
        tenant_id=ctx.tenant_id,
        pipeline_entry_id=entry.id,
        estimate_number=f"{entry.number or 'EST'}-E{count + 1}",
        selling_price=float(selling_price),
        selected_tier=selected_tier,
        created_by=ctx.user_id,
    )
    db.add(est)
    db.commit()
    return est


# ---------------------------------------------------------------------------
# Board
# ---------------------------------------------------------------------------

def build_board(db: Session, ctx: UserContext, filters: Optional[BoardFilters] = None) -> Dict[str, Any]:
    """Group visible entries into the fixed stage buckets.

    Every bucket is present even when empty.  Values use the newest
    estimate's selling price, else the entry's ``estimated_value``.
    """
    filters = filters or BoardFilters()
    q = visible_entries(db, ctx)
    if filters.date_from:
        q = q.filter(PipelineEntry.created_at >= datetime.combine(filters.date_from, time.min))
    if filters.date_to:
        q = q.filter(PipelineEntry.created_at <= datetime.combine(filters.date_to, time.max))
    if filters.sales_rep_id:
        q = q.filter(PipelineEntry.assigned_to == filters.sales_rep_id)
    if filters.location_id:
        q = q.filter(PipelineEntry.location_id == filters.location_id)
    entries = q.order_by(PipelineEntry.created_at.desc()).all()

    rows = entries_to_dicts(db, ctx, entries)
    if filters.location:
        needle = filters.location.strip().lower()
        rows = [r for r in rows if needle in (r["city"] or "").lower()]

    buckets: Dict[str, List[Dict[str, Any]]] = {key: [] for key, _ in BOARD_STAGES}
    for row in rows:
        if row["status"] in buckets:
            buckets[row["status"]].append(row)

    stages = []
    for key, name in BOARD_STAGES:
        items = buckets[key]
        stages.append({
            "key": key,
            "name": name,
            "count": len(items),
            "total_value": round(sum(i["value"] or 0.0 for i in items), 2),
            "entries": items,
        })

    reps = {r["assigned_to"]: r["assigned_to_name"] for r in rows if r["assigned_to"]}
    cities = sorted({r["city"] for r in rows if r["city"]})
    return {
        "stages": stages,
        "total_count": sum(s["count"] for s in stages),
        "total_value": round(sum(s["total_value"] for s in stages), 2),
        "sales_reps": sorted(
            ({"id": rid, "name": name or ""} for rid, name in reps.items()),
            key=lambda r: r["name"],
        ),
        "cities": cities,
    }


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

def list_history(db: Session, ctx: UserContext, entry_id: str) -> List[Dict[str, Any]]:
    """Status transitions for one entry, newest first."""
    entry = get_visible_entry(db, ctx, entry_id)
    rows = (
        db.query(StatusTransitionHistory)
        .filter(
            StatusTransitionHistory.tenant_id == ctx.tenant_id,
            StatusTransitionHistory.pipeline_entry_id == entry.id,
        )
        .order_by(StatusTransitionHistory.created_at.desc())
        .all()
    )
    return [
        {
            "id": r.id,
            "from_status": r.from_status,
            "to_status": r.to_status,
            "transitioned_by": r.transitioned_by,
            "transition_reason": r.transition_reason,
            "is_backward": bool(r.is_backward),
            "metadata": r.transition_metadata or {},
            "created_at": r.created_at.isoformat() if r.created_at else None,
        }
        for r in rows
    ]


def list_activities(db: Session, ctx: UserContext, entry_id: str) -> List[Dict[str, Any]]:
    entry = get_visible_entry(db, ctx, entry_id)
    rows = (
        db.query(PipelineActivity)
        .filter(
            PipelineActivity.tenant_id == ctx.tenant_id,
            PipelineActivity.pipeline_entry_id == entry.id,
        )
        .order_by(PipelineActivity.created_at.desc())
        .all()
    )
    return [
        {
            "id": a.id,
            "activity_type": a.activity_type,
            "title": a.title,
            "description": a.description,
            "created_by": a.created_by,
            "created_at": a.created_at.isoformat() if a.created_at else None,
        }
        for a in rows
    ]
