"""
roofops.domain.enums — All enumerations used across the platform.

Keep this module import-clean (stdlib only).
"""

from enum import Enum


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

class AppRole(str, Enum):
    """
    Profile role.  The first six are "manager" roles (see
    ``roofops.core.constants.MANAGER_ROLES``); ``crew`` is the field role
    used by the crew portal.
    """
    MASTER           = "master"
    OWNER            = "owner"
    CORPORATE        = "corporate"
    OFFICE_ADMIN     = "office_admin"
    REGIONAL_MANAGER = "regional_manager"
    SALES_MANAGER    = "sales_manager"
    PROJECT_MANAGER  = "project_manager"
    SALES_REP        = "sales_rep"
    CREW             = "crew"


# ---------------------------------------------------------------------------
# Sales pipeline
# ---------------------------------------------------------------------------

class PipelineStatus(str, Enum):
    LEAD               = "lead"
    LEGAL_REVIEW       = "legal_review"
    LEGAL              = "legal"
    CONTINGENCY        = "contingency"
    CONTINGENCY_SIGNED = "contingency_signed"
    READY_FOR_APPROVAL = "ready_for_approval"
    HOLD_MGR_REVIEW    = "hold_mgr_review"
    HOLD_CUSTOMER      = "hold_customer"
    HOLD_MATERIALS     = "hold_materials"
    PROJECT            = "project"
    PRODUCTION         = "production"
    FINAL_PAYMENT      = "final_payment"
    COMPLETED          = "completed"
    CLOSED             = "closed"
    LOST               = "lost"
    CANCELED           = "canceled"
    DUPLICATE          = "duplicate"


class EntryPriority(str, Enum):
    LOW    = "low"
    MEDIUM = "medium"
    HIGH   = "high"


class ValidationType(str, Enum):
    """Checks a tenant can attach to entering a pipeline status."""
    DOCUMENT_REQUIRED = "document_required"
    PHOTO_REQUIRED    = "photo_required"


# ---------------------------------------------------------------------------
# Manager approvals
# ---------------------------------------------------------------------------

class ApprovalStatus(str, Enum):
    PENDING  = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalPriority(str, Enum):
    STANDARD = "standard"
    HIGH     = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Sort weight; higher is more urgent."""
        return {"standard": 0, "high": 1, "critical": 2}[self.value]

    def escalated(self) -> "ApprovalPriority":
        """One step more urgent (critical stays critical)."""
        order = [ApprovalPriority.STANDARD, ApprovalPriority.HIGH, ApprovalPriority.CRITICAL]
        return order[min(self.rank + 1, len(order) - 1)]


# ---------------------------------------------------------------------------
# Projects / production
# ---------------------------------------------------------------------------

class ProjectStatus(str, Enum):
    ACTIVE    = "active"
    ON_HOLD   = "on_hold"
    COMPLETED = "completed"
    CANCELED  = "canceled"


class ProductionStage(str, Enum):
    SUBMIT_DOCUMENTS  = "submit_documents"
    PERMIT_PROCESSING = "permit_processing"
    MATERIALS_LABOR   = "materials_labor"
    IN_PROGRESS       = "in_progress"
    QUALITY_CONTROL   = "quality_control"
    PROJECT_COMPLETE  = "project_complete"
    FINAL_INSPECTION  = "final_inspection"
    CLOSED            = "closed"


# ---------------------------------------------------------------------------
# Crew
# ---------------------------------------------------------------------------

class AssignmentStatus(str, Enum):
    """Crew job status as shown in the crew portal status selector."""
    ASSIGNED     = "assigned"
    EN_ROUTE     = "en_route"
    ON_SITE      = "on_site"
    WORK_STARTED = "work_started"
    WAITING      = "waiting"
    COMPLETED    = "completed"


# ---------------------------------------------------------------------------
# Photo markup
# ---------------------------------------------------------------------------

class MarkupTool(str, Enum):
    PEN       = "pen"
    ARROW     = "arrow"
    CIRCLE    = "circle"
    RECTANGLE = "rectangle"
    TEXT      = "text"
    ERASER    = "eraser"


# ---------------------------------------------------------------------------
# Message templates
# ---------------------------------------------------------------------------

class TemplateType(str, Enum):
    EMAIL = "email"
    SMS   = "sms"


class TemplateCategory(str, Enum):
    WELCOME     = "welcome"
    FOLLOW_UP   = "follow_up"
    APPOINTMENT = "appointment"
    ESTIMATE    = "estimate"
    REVIEW      = "review"
    GENERAL     = "general"
