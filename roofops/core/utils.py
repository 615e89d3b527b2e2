"""
RoofOps — Shared utilities.

Pure functions used across the whole package. No imports from other roofops
modules; only the standard library and roofops.core.constants are allowed.
"""

from __future__ import annotations

import math
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from roofops.core.constants import EARTH_RADIUS_M


# ---------------------------------------------------------------------------
# Identifiers / time
# ---------------------------------------------------------------------------

def new_id() -> str:
    """Return a new UUID4 primary key as a string."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC ``now``.  SQLite drops tzinfo, so everything is stored naive."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware datetimes converted to naive UTC; naive ones are taken as UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600.0


def round_hours(hours: float) -> float:
    """Round to the nearest tenth of an hour, as shown on timesheets."""
    return round(hours * 10) / 10


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def format_currency(amount: Optional[float]) -> str:
    """``12500 → '$12,500.00'``; ``None`` renders as ``$0.00``."""
    return f"${float(amount or 0):,.2f}"


def format_sequence(prefix: str, number: int, width: int = 4) -> str:
    """``('PIPE', 7) → 'PIPE-0007'``."""
    return f"{prefix}-{number:0{width}d}"


def full_name(first: Optional[str], last: Optional[str]) -> str:
    return " ".join(p for p in (first, last) if p).strip()


def format_address(
    street: Optional[str],
    city: Optional[str],
    state: Optional[str],
    zip_code: Optional[str],
) -> str:
    """Single-line address, skipping empty parts: ``'1 Main St, Austin, TX 78701'``."""
    tail = " ".join(p for p in (state, zip_code) if p)
    return ", ".join(p for p in (street, city, tail) if p)


# ---------------------------------------------------------------------------
# Math helpers
# ---------------------------------------------------------------------------

def safe_div(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Divide without raising on zero denominator."""
    if denominator == 0:
        return default
    return numerator / denominator


def pct_change(old: float, new: float) -> float:
    """Percent change from ``old`` to ``new``; 100.0 from zero to positive, 0.0 from zero to zero."""
    if old == 0:
        return 100.0 if new > 0 else 0.0
    return (new - old) / old * 100.0


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in metres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def valid_coordinates(lat: Any, lng: Any) -> bool:
    try:
        lat_f, lng_f = float(lat), float(lng)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat_f) or math.isnan(lng_f):
        return False
    return -90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0


# ---------------------------------------------------------------------------
# Colours
# ---------------------------------------------------------------------------

_HEX_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")


def is_hex_color(value: str) -> bool:
    return bool(value) and bool(_HEX_COLOR_RE.match(value))


def hex_to_rgb(value: str) -> tuple:
    """``'#ef4444' → (239, 68, 68)``."""
    return tuple(int(value[i:i + 2], 16) for i in (1, 3, 5))


# ---------------------------------------------------------------------------
# Dot paths
# ---------------------------------------------------------------------------

def resolve_path(data: Any, path: str) -> Any:
    """Walk ``a.b.c`` through nested dicts (and list indexes).  ``None`` when missing."""
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            idx = int(part)
            current = current[idx] if idx < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current
