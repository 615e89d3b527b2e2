"""
Pipeline stage map.

Pure lookups over the constants; no database access.
"""

from typing import Iterable, List, Optional

from roofops.core.constants import (
    BOARD_STAGES, END_STATUSES, HOLD_STATUSES, LEGACY_ROLE_MAPPINGS,
    NEXT_STATUS, STATUS_ORDER,
)
from roofops.domain.enums import PipelineStatus

STAGE_KEYS: List[str] = [key for key, _ in BOARD_STAGES]
_STAGE_LABELS = dict(BOARD_STAGES)


def is_known_status(status: str) -> bool:
    return status in PipelineStatus._value2member_map_


def next_status(current: str) -> Optional[str]:
    """Target of the "Advance" button, or None when there is no automatic next stage."""
    return NEXT_STATUS.get(current)


def stage_label(status: str) -> str:
    return _STAGE_LABELS.get(status, status.replace("_", " ").title())


def is_status_backward(from_status: Optional[str], to_status: str) -> bool:
    """True when ``to_status`` sits earlier in the canonical order than ``from_status``.

    Moving into a hold or end status is never backward, and neither is any
    move involving a status outside the canonical order.
    """
    if to_status in HOLD_STATUSES or to_status in END_STATUSES:
        return False
    if from_status not in STATUS_ORDER or to_status not in STATUS_ORDER:
        return False
    return STATUS_ORDER.index(to_status) < STATUS_ORDER.index(from_status)


def role_satisfies(role: str, required_roles: Iterable[str]) -> bool:
    """Direct match, or membership in a legacy role group."""
    for required in required_roles:
        if required == role:
            return True
        if role in LEGACY_ROLE_MAPPINGS.get(required, ()):
            return True
    return False
