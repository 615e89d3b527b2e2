"""
roofops.domain.models — Canonical dataclass models.

Import pattern::

    from roofops.domain.models import UserContext, GeoPoint, TransitionResult
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from roofops.core.constants import ADMIN_ROLES, DISPATCH_ROLES, MANAGER_ROLES
from roofops.core.exceptions import ValidationFailedError
from roofops.core.utils import valid_coordinates


# ---------------------------------------------------------------------------
# User context (resolved once per API request)
# ---------------------------------------------------------------------------

@dataclass
class UserContext:
    """
    Lightweight context object built from the authenticated request.
    Passed down through service calls so every layer filters by tenant and
    role without touching the request object directly.
    """
    user_id: str
    tenant_id: str
    role: str
    name: str = ""
    email: Optional[str] = None
    location_id: Optional[str] = None

    @property
    def is_manager(self) -> bool:
        return self.role in MANAGER_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def can_dispatch(self) -> bool:
        return self.role in DISPATCH_ROLES

    @property
    def is_crew(self) -> bool:
        return self.role == "crew"


# ---------------------------------------------------------------------------
# Geolocation
# ---------------------------------------------------------------------------

@dataclass
class GeoPoint:
    """A browser geolocation fix: ``{lat, lng, accuracy}``."""
    lat: float
    lng: float
    accuracy: Optional[float] = None

    @classmethod
    def parse(cls, raw: Optional[Dict[str, Any]]) -> Optional["GeoPoint"]:
        """Validate an optional location payload.  ``None`` passes through."""
        if raw is None:
            return None
        if not valid_coordinates(raw.get("lat"), raw.get("lng")):
            raise ValidationFailedError("Location must include a valid lat and lng")
        accuracy = raw.get("accuracy")
        if accuracy is not None:
            try:
                accuracy = float(accuracy)
            except (TypeError, ValueError):
                raise ValidationFailedError("Location accuracy must be numeric")
            if accuracy < 0:
                raise ValidationFailedError("Location accuracy must be non-negative")
        return cls(lat=float(raw["lat"]), lng=float(raw["lng"]), accuracy=accuracy)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Pipeline transition outcome
# ---------------------------------------------------------------------------

@dataclass
class TransitionResult:
    """Outcome of a pipeline status change, returned verbatim by the API."""
    success: bool
    message: str
    new_status: str
    is_backward: bool = False
    approval_request_created: bool = False
    project_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Template rendering outcome
# ---------------------------------------------------------------------------

@dataclass
class RenderResult:
    rendered_subject: Optional[str]
    rendered_text: str
    unresolved_tokens: List[str] = field(default_factory=list)
    resolved_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
