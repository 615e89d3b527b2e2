"""
Crew GPS sync.

Pings closer together than ``GPS_MIN_INTERVAL_SECONDS`` are acknowledged
but not stored.  An accepted ping within the tenant's ``arrival_radius_m``
of an ``en_route`` job suggests marking the crew member on site.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from roofops import config, metrics
from roofops.core.exceptions import PermissionDeniedError, ValidationFailedError
from roofops.core.utils import haversine_m, to_naive_utc, utcnow, valid_coordinates
from roofops.database import (
    CrewAssignment, CrewLocationPing, get_setting, profile_names,
)
from roofops.domain.enums import AssignmentStatus
from roofops.domain.models import UserContext

logger = logging.getLogger(__name__)


def distance_to_site(assignment: CrewAssignment, lat: float, lng: float) -> Optional[float]:
    """Metres from ``(lat, lng)`` to the job site, or None when the site has no coordinates."""
    if assignment.site_lat is None or assignment.site_lng is None:
        return None
    return haversine_m(lat, lng, assignment.site_lat, assignment.site_lng)


def _optional_float(value: Any, name: str) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationFailedError(f"{name} must be numeric")


def _last_ping(db: Session, ctx: UserContext) -> Optional[CrewLocationPing]:
    return (
        db.query(CrewLocationPing)
        .filter(
            CrewLocationPing.tenant_id == ctx.tenant_id,
            CrewLocationPing.crew_member_id == ctx.user_id,
        )
        .order_by(CrewLocationPing.recorded_at.desc())
        .first()
    )


def sync_location(
    db: Session,
    ctx: UserContext,
    latitude: Any,
    longitude: Any,
    accuracy: Any = None,
    heading: Any = None,
    speed: Any = None,
    recorded_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    if not valid_coordinates(latitude, longitude):
        raise ValidationFailedError("latitude and longitude are required and must be valid")
    accuracy = _optional_float(accuracy, "accuracy")
    heading = _optional_float(heading, "heading")
    speed = _optional_float(speed, "speed")
    lat, lng = float(latitude), float(longitude)
    now = to_naive_utc(recorded_at) or utcnow()

    last = _last_ping(db, ctx)
    if last is not None and (now - last.recorded_at).total_seconds() < config.GPS_MIN_INTERVAL_SECONDS:
        metrics.record_gps_ping(accepted=False)
        return {"accepted": False, "reason": "throttled", "arrival_suggested": False}

    db.add(CrewLocationPing(
        tenant_id=ctx.tenant_id,
        crew_member_id=ctx.user_id,
        latitude=lat,
        longitude=lng,
        accuracy=accuracy,
        heading=heading,
        speed=speed,
        recorded_at=now,
    ))
    db.commit()
    metrics.record_gps_ping(accepted=True)

    radius = float(get_setting(db, ctx.tenant_id, "arrival_radius_m") or 0)
    en_route = (
        db.query(CrewAssignment)
        .filter(
            CrewAssignment.tenant_id == ctx.tenant_id,
            CrewAssignment.assigned_to == ctx.user_id,
            CrewAssignment.status == AssignmentStatus.EN_ROUTE.value,
        )
        .all()
    )
    nearest = None
    for a in en_route:
        dist = distance_to_site(a, lat, lng)
        if dist is not None and dist <= radius and (nearest is None or dist < nearest[1]):
            nearest = (a, dist)

    result: Dict[str, Any] = {"accepted": True, "arrival_suggested": nearest is not None}
    if nearest is not None:
        result["assignment_id"] = nearest[0].id
        result["distance_m"] = round(nearest[1], 1)
    return result


def latest_locations(db: Session, ctx: UserContext) -> List[Dict[str, Any]]:
    """Most recent ping per crew member (managers only)."""
    if not ctx.is_manager:
        raise PermissionDeniedError("Only managers can view crew locations")
    latest = (
        db.query(
            CrewLocationPing.crew_member_id,
            func.max(CrewLocationPing.recorded_at).label("recorded_at"),
        )
        .filter(CrewLocationPing.tenant_id == ctx.tenant_id)
        .group_by(CrewLocationPing.crew_member_id)
        .subquery()
    )
    rows = (
        db.query(CrewLocationPing)
        .join(
            latest,
            (CrewLocationPing.crew_member_id == latest.c.crew_member_id)
            & (CrewLocationPing.recorded_at == latest.c.recorded_at),
        )
        .filter(CrewLocationPing.tenant_id == ctx.tenant_id)
        .all()
    )
    names = profile_names(db, ctx.tenant_id, [r.crew_member_id for r in rows])
    seen = set()
    out = []
    for r in sorted(rows, key=lambda p: p.recorded_at, reverse=True):
        if r.crew_member_id in seen:
            continue
        seen.add(r.crew_member_id)
        out.append({
            "crew_member_id": r.crew_member_id,
            "name": names.get(r.crew_member_id),
            "latitude": r.latitude,
            "longitude": r.longitude,
            "accuracy": r.accuracy,
            "heading": r.heading,
            "speed": r.speed,
            "recorded_at": r.recorded_at.isoformat(),
        })
    return out
