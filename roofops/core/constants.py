"""
RoofOps — System-wide constants.

Stage maps, role groupings and drawing constants.  If you find a literal in
the codebase that is not a local variable, it belongs here instead.
"""

from typing import Dict, FrozenSet, List, Optional, Tuple

# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

MANAGER_ROLES: FrozenSet[str] = frozenset({
    "master", "owner", "corporate", "office_admin",
    "regional_manager", "sales_manager",
})

# Roles allowed to manage users, locations and tenant settings.
ADMIN_ROLES: FrozenSet[str] = frozenset({"master", "owner", "corporate", "office_admin"})

# Roles allowed to create and assign crew work orders.
DISPATCH_ROLES: FrozenSet[str] = MANAGER_ROLES | {"project_manager"}

# Transition rules written before the role split still name the old roles.
LEGACY_ROLE_MAPPINGS: Dict[str, FrozenSet[str]] = {
    "admin": ADMIN_ROLES,
    "manager": MANAGER_ROLES,
    "sales_rep": frozenset({"project_manager"}),
}

# Rank used when one admin creates another account; nobody creates a role
# ranked above their own (master excepted).
ROLE_RANK: Dict[str, int] = {
    "master": 100,
    "owner": 90,
    "corporate": 80,
    "office_admin": 70,
    "regional_manager": 60,
    "sales_manager": 50,
    "project_manager": 40,
    "sales_rep": 30,
    "crew": 10,
}

# ---------------------------------------------------------------------------
# Sales pipeline
# ---------------------------------------------------------------------------

HOLD_STATUS = "hold_mgr_review"

# Board columns, in display order.
BOARD_STAGES: List[Tuple[str, str]] = [
    ("lead", "Lead"),
    ("legal", "Legal"),
    ("contingency_signed", "Contingency"),
    ("hold_mgr_review", "On Hold (Mgr Review)"),
    ("project", "Project"),
    ("completed", "Completed"),
    ("closed", "Closed"),
]

# "Advance" button targets.  hold_mgr_review has no automatic next stage:
# leaving it requires a manager decision.
NEXT_STATUS: Dict[str, Optional[str]] = {
    "lead": "legal",
    "legal": "contingency_signed",
    "contingency_signed": "hold_mgr_review",
    "hold_mgr_review": None,
    "project": "completed",
    "completed": "closed",
}

# Canonical forward order used to flag backward moves.
STATUS_ORDER: List[str] = [
    "lead",
    "legal_review",
    "legal",
    "contingency",
    "contingency_signed",
    "ready_for_approval",
    "project",
    "production",
    "final_payment",
    "completed",
    "closed",
]

HOLD_STATUSES: FrozenSet[str] = frozenset({"hold_mgr_review", "hold_customer", "hold_materials"})
END_STATUSES: FrozenSet[str] = frozenset({"lost", "canceled", "duplicate"})

# Reporting buckets for conversion rate.
WON_STATUSES: FrozenSet[str] = frozenset({"project", "completed", "closed"})
LOST_STATUSES: FrozenSet[str] = frozenset({"lost", "canceled"})

# Fallback when a rejected request has no pre-hold history.
REJECT_FALLBACK_STATUS = "contingency_signed"

PIPELINE_NUMBER_PREFIX = "PIPE"
PROJECT_NUMBER_PREFIX = "PRJ"

# ---------------------------------------------------------------------------
# Production workflow
# ---------------------------------------------------------------------------

PRODUCTION_STAGES: List[Tuple[str, str]] = [
    ("submit_documents", "Submit Documents"),
    ("permit_processing", "Permit Processing"),
    ("materials_labor", "Materials & Labor"),
    ("in_progress", "In Progress"),
    ("quality_control", "Quality Control"),
    ("project_complete", "Project Complete"),
    ("final_inspection", "Final Inspection"),
    ("closed", "Closed"),
]

# ---------------------------------------------------------------------------
# Crew job status machine
# ---------------------------------------------------------------------------

ASSIGNMENT_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "assigned": frozenset({"en_route"}),
    "en_route": frozenset({"on_site"}),
    "on_site": frozenset({"work_started"}),
    "work_started": frozenset({"waiting", "completed"}),
    "waiting": frozenset({"work_started"}),
    "completed": frozenset(),
}

# Buckets a new work order gets when the dispatcher does not specify any.
DEFAULT_PHOTO_BUCKETS: List[Tuple[str, str, int]] = [
    ("before", "Before", 1),
    ("during", "During", 0),
    ("after", "After", 1),
]

EARTH_RADIUS_M: float = 6_371_000.0

# ---------------------------------------------------------------------------
# Photo markup
# ---------------------------------------------------------------------------

MARKUP_COLORS: Dict[str, str] = {
    "red": "#ef4444",
    "yellow": "#eab308",
    "blue": "#3b82f6",
    "green": "#22c55e",
    "white": "#ffffff",
    "black": "#000000",
}
MARKUP_DEFAULT_COLOR = MARKUP_COLORS["red"]
MARKUP_DEFAULT_STROKE = 3
ARROW_HEAD_LENGTH: int = 15
ARROW_HEAD_ANGLE_DEG: float = 30.0
ERASER_WIDTH_MULTIPLIER: int = 3
TEXT_SIZE_MULTIPLIER: int = 6

IMAGE_CONTENT_TYPES: FrozenSet[str] = frozenset({
    "image/jpeg", "image/png", "image/webp", "image/gif", "image/heic",
})

# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

BUILTIN_TAGS: List[Tuple[str, str]] = [
    ("first_name", "Customer first name"),
    ("last_name", "Customer last name"),
    ("customer_name", "Customer full name"),
    ("property_address", "Property address"),
    ("estimate_total", "Estimate total"),
    ("estimate_number", "Estimate / pipeline number"),
    ("company_name", "Company name"),
    ("rep_name", "Sales rep name"),
    ("rep_phone", "Sales rep phone"),
    ("rep_email", "Sales rep email"),
]

# Dynamic tags seeded for every new tenant: (token, label, json_path)
DEFAULT_DYNAMIC_TAGS: List[Tuple[str, str, str]] = [
    ("contact.first_name", "Contact first name", "contact.first_name"),
    ("contact.last_name", "Contact last name", "contact.last_name"),
    ("contact.email", "Contact email", "contact.email"),
    ("contact.phone", "Contact phone", "contact.phone"),
    ("contact.address", "Contact address", "contact.address"),
    ("entry.number", "Pipeline number", "entry.number"),
    ("entry.status", "Pipeline status", "entry.status"),
    ("project.name", "Project name", "project.name"),
    ("project.number", "Project number", "project.number"),
    ("rep.name", "Rep name", "rep.name"),
    ("rep.phone", "Rep phone", "rep.phone"),
    ("company.name", "Company name", "company.name"),
]

# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

TREND_PERIOD_DAYS: Dict[str, int] = {"7d": 7, "30d": 30, "90d": 90}
LEADERBOARD_PERIODS: FrozenSet[str] = frozenset({"today", "wtd", "mtd", "ytd"})
