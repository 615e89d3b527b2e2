"""
Database layer for RoofOps.
Stores tenants, contacts, the sales pipeline, approvals, projects, crew
dispatch data, photos and message templates.

Every tenant-owned table carries ``tenant_id``; service code always filters
on it using the caller's ``UserContext``.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import (
    create_engine, Column, Integer, Float, String, Boolean,
    DateTime, Date, Text, Index, ForeignKey, JSON, UniqueConstraint, event
)
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

from roofops import config
from roofops.core.utils import new_id, utcnow


def _make_engine(url: str):
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    eng = create_engine(
        url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Enable WAL mode for concurrent reads during writes
    @event.listens_for(eng, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    return eng


engine = _make_engine(config.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False)
Base = declarative_base()


def _uuid_pk():
    return Column(String(36), primary_key=True, default=new_id)


def _tenant_fk():
    return Column(String(36), ForeignKey("tenants.id"), nullable=False, index=True)


# ---------------------------------------------------------------------------
# Tenancy
# ---------------------------------------------------------------------------

class Tenant(Base):
    """A customer company."""
    __tablename__ = "tenants"

    id = _uuid_pk()
    name = Column(String(255), nullable=False)
    subdomain = Column(String(64), nullable=False, unique=True)
    phone = Column(String(32), nullable=True)
    email = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True)
    # Per-tenant counters for human-readable numbers (PIPE-0001, PRJ-0001)
    pipeline_seq = Column(Integer, default=0, nullable=False)
    project_seq = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class Location(Base):
    """A branch office of a tenant."""
    __tablename__ = "locations"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    name = Column(String(255), nullable=False)
    address_street = Column(String(255), nullable=True)
    address_city = Column(String(128), nullable=True)
    address_state = Column(String(32), nullable=True)
    address_zip = Column(String(16), nullable=True)
    phone = Column(String(32), nullable=True)
    manager_id = Column(String(36), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)


class Profile(Base):
    """A user account.  Email is unique across all tenants."""
    __tablename__ = "profiles"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(128), nullable=True)
    last_name = Column(String(128), nullable=True)
    phone = Column(String(32), nullable=True)
    role = Column(String(32), nullable=False, default="sales_rep")
    location_id = Column(String(36), ForeignKey("locations.id"), nullable=True)
    is_active = Column(Boolean, default=True)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class Setting(Base):
    """Tenant key-value settings store, merged over ``SETTING_DEFAULTS``."""
    __tablename__ = "settings"

    tenant_id = Column(String(36), ForeignKey("tenants.id"), primary_key=True)
    key = Column(String(128), primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------

class Contact(Base):
    __tablename__ = "contacts"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    location_id = Column(String(36), nullable=True)
    first_name = Column(String(128), nullable=True)
    last_name = Column(String(128), nullable=True)
    company_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    address_street = Column(String(255), nullable=True)
    address_city = Column(String(128), nullable=True)
    address_state = Column(String(32), nullable=True)
    address_zip = Column(String(16), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    lead_source = Column(String(64), nullable=True)
    qualification_status = Column(String(32), nullable=True)  # mirrors pipeline status
    type = Column(String(32), default="homeowner")
    tags = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class CommunicationHistory(Base):
    """System notes and internal log lines attached to a contact."""
    __tablename__ = "communication_history"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=True, index=True)
    pipeline_entry_id = Column(String(36), nullable=True)
    project_id = Column(String(36), nullable=True)
    communication_type = Column(String(32), default="system_note")  # system_note, internal, email, sms
    direction = Column(String(16), default="internal")
    subject = Column(String(255), nullable=True)
    content = Column(Text, nullable=True)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow)


# ---------------------------------------------------------------------------
# Sales pipeline
# ---------------------------------------------------------------------------

class PipelineEntry(Base):
    """A lead / job tracked through the sales stages."""
    __tablename__ = "pipeline_entries"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    location_id = Column(String(36), nullable=True)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=False, index=True)
    number = Column(String(32), nullable=True)
    status = Column(String(32), nullable=False, default="lead", index=True)
    status_entered_at = Column(DateTime, default=utcnow)
    last_status_change_reason = Column(Text, nullable=True)
    estimated_value = Column(Float, nullable=True)
    priority = Column(String(16), default="medium")
    roof_type = Column(String(64), nullable=True)
    source = Column(String(64), nullable=True)
    assigned_to = Column(String(36), nullable=True, index=True)
    created_by = Column(String(36), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Estimate(Base):
    """A priced estimate; the newest one sets the entry's board value."""
    __tablename__ = "estimates"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    pipeline_entry_id = Column(String(36), ForeignKey("pipeline_entries.id"), nullable=False, index=True)
    estimate_number = Column(String(32), nullable=True)
    selling_price = Column(Float, nullable=False, default=0.0)
    selected_tier = Column(String(32), nullable=True)
    status = Column(String(16), default="draft")
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow)


class StatusTransitionHistory(Base):
    __tablename__ = "status_transition_history"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    pipeline_entry_id = Column(String(36), ForeignKey("pipeline_entries.id"), nullable=False)
    from_status = Column(String(32), nullable=True)
    to_status = Column(String(32), nullable=False)
    transitioned_by = Column(String(36), nullable=True)
    transition_reason = Column(Text, nullable=True)
    is_backward = Column(Boolean, default=False)
    # "metadata" is reserved on declarative classes
    transition_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_sth_entry_created", "pipeline_entry_id", "created_at"),
    )


class PipelineActivity(Base):
    __tablename__ = "pipeline_activities"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    pipeline_entry_id = Column(String(36), nullable=False, index=True)
    contact_id = Column(String(36), nullable=True)
    activity_type = Column(String(32), nullable=False)  # status_change, note, approval
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow)


class TransitionRule(Base):
    """Tenant-defined guard on a specific from → to move."""
    __tablename__ = "transition_rules"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    from_status = Column(String(32), nullable=False)
    to_status = Column(String(32), nullable=False)
    required_roles = Column(JSON, nullable=True)  # list of role names (legacy names allowed)
    requires_reason = Column(Boolean, default=False)
    requires_approval = Column(Boolean, default=False)
    min_time_in_stage_hours = Column(Float, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_rule_tenant_from_to", "tenant_id", "from_status", "to_status"),
    )


class TransitionValidation(Base):
    """Precondition checked when an entry enters ``applies_to_status``."""
    __tablename__ = "transition_validations"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    applies_to_status = Column(String(32), nullable=False)
    validation_type = Column(String(32), nullable=False)  # document_required, photo_required
    validation_config = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)


# ---------------------------------------------------------------------------
# Approvals
# ---------------------------------------------------------------------------

class ApprovalRequest(Base):
    __tablename__ = "manager_approval_queue"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    pipeline_entry_id = Column(String(36), ForeignKey("pipeline_entries.id"), nullable=False, index=True)
    contact_id = Column(String(36), nullable=True)
    requested_by = Column(String(36), nullable=True)
    approval_type = Column(String(32), default="project_conversion")
    priority = Column(String(16), default="standard")
    estimated_value = Column(Float, nullable=True)
    business_justification = Column(Text, nullable=True)
    status = Column(String(16), default="pending", index=True)
    requested_at = Column(DateTime, default=utcnow)
    reviewed_by = Column(String(36), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    manager_notes = Column(Text, nullable=True)
    escalation_level = Column(Integer, default=0, nullable=False)
    last_escalated_at = Column(DateTime, nullable=True)


# ---------------------------------------------------------------------------
# Projects / production
# ---------------------------------------------------------------------------

class Project(Base):
    __tablename__ = "projects"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    pipeline_entry_id = Column(String(36), ForeignKey("pipeline_entries.id"), nullable=True, unique=True)
    contact_id = Column(String(36), nullable=True)
    location_id = Column(String(36), nullable=True)
    name = Column(String(255), nullable=False)
    project_number = Column(String(32), nullable=True)
    status = Column(String(16), default="active")
    project_type = Column(String(32), default="roofing")
    address_street = Column(String(255), nullable=True)
    address_city = Column(String(128), nullable=True)
    address_state = Column(String(32), nullable=True)
    address_zip = Column(String(16), nullable=True)
    selling_price = Column(Float, nullable=True)
    contract_amount = Column(Float, nullable=True)
    gross_profit = Column(Float, nullable=True)
    project_manager_id = Column(String(36), nullable=True)
    start_date = Column(Date, nullable=True)
    actual_completion_date = Column(DateTime, nullable=True)
    approved_by = Column(String(36), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow)


class ProductionWorkflow(Base):
    __tablename__ = "production_workflows"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False, unique=True)
    status = Column(String(16), default="scheduled")
    current_stage = Column(String(32), default="submit_documents")
    workflow_data = Column(JSON, nullable=True)  # {"stage_history": [...]}
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# ---------------------------------------------------------------------------
# Crew dispatch
# ---------------------------------------------------------------------------

class CrewAssignment(Base):
    """A work order assigned to one crew member."""
    __tablename__ = "crew_assignments"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    project_id = Column(String(36), nullable=True)
    assigned_to = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    scope_summary = Column(Text, nullable=True)
    scheduled_date = Column(Date, nullable=True)
    arrival_window_start = Column(String(8), nullable=True)  # "08:00"
    arrival_window_end = Column(String(8), nullable=True)
    site_lat = Column(Float, nullable=True)
    site_lng = Column(Float, nullable=True)
    status = Column(String(16), default="assigned", nullable=False)
    status_changed_at = Column(DateTime, default=utcnow)
    completed_at = Column(DateTime, nullable=True)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow)


class ChecklistItem(Base):
    __tablename__ = "crew_checklist_items"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    assignment_id = Column(String(36), ForeignKey("crew_assignments.id"), nullable=False, index=True)
    label = Column(String(255), nullable=False)
    sort_order = Column(Integer, default=0)
    requires_photo = Column(Boolean, default=False)
    photo_bucket = Column(String(32), nullable=True)
    is_checked = Column(Boolean, default=False)
    checked_by = Column(String(36), nullable=True)
    checked_at = Column(DateTime, nullable=True)


class PhotoBucket(Base):
    """A required photo category on an assignment (before / during / after...)."""
    __tablename__ = "crew_photo_buckets"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    assignment_id = Column(String(36), ForeignKey("crew_assignments.id"), nullable=False, index=True)
    key = Column(String(32), nullable=False)
    label = Column(String(64), nullable=False)
    required_count = Column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint("assignment_id", "key", name="uq_bucket_assignment_key"),
    )


class CrewTimeEntry(Base):
    __tablename__ = "crew_time_entries"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    crew_member_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    assignment_id = Column(String(36), nullable=True)
    clock_in = Column(DateTime, nullable=False, default=utcnow)
    clock_out = Column(DateTime, nullable=True)
    location_in = Column(JSON, nullable=True)   # {lat, lng, accuracy}
    location_out = Column(JSON, nullable=True)
    auto_closed = Column(Boolean, default=False)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_time_member_in", "crew_member_id", "clock_in"),
    )


class CrewLocationPing(Base):
    __tablename__ = "crew_location_pings"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    crew_member_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy = Column(Float, nullable=True)
    heading = Column(Float, nullable=True)
    speed = Column(Float, nullable=True)
    recorded_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_ping_member_ts", "crew_member_id", "recorded_at"),
    )


# ---------------------------------------------------------------------------
# Photos / documents
# ---------------------------------------------------------------------------

class Photo(Base):
    __tablename__ = "photos"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    contact_id = Column(String(36), nullable=True)
    pipeline_entry_id = Column(String(36), nullable=True, index=True)
    assignment_id = Column(String(36), nullable=True, index=True)
    bucket_key = Column(String(32), nullable=True)
    category = Column(String(32), nullable=True)
    file_path = Column(String(512), nullable=False)
    annotated_path = Column(String(512), nullable=True)
    original_name = Column(String(255), nullable=True)
    content_type = Column(String(64), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    uploaded_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow)


class Document(Base):
    __tablename__ = "documents"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    pipeline_entry_id = Column(String(36), nullable=True, index=True)
    document_type = Column(String(64), nullable=False)
    file_path = Column(String(512), nullable=False)
    original_name = Column(String(255), nullable=True)
    content_type = Column(String(64), nullable=True)
    uploaded_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow)


# ---------------------------------------------------------------------------
# Message templates
# ---------------------------------------------------------------------------

class MessageTemplate(Base):
    __tablename__ = "message_templates"

    id = _uuid_pk()
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=True, index=True)  # NULL = system
    name = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=True)
    content = Column(Text, nullable=False)
    template_type = Column(String(16), default="email")
    category = Column(String(32), default="general")
    variables = Column(JSON, nullable=True)
    is_system_template = Column(Boolean, default=False)
    usage_count = Column(Integer, default=0)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class DynamicTag(Base):
    __tablename__ = "dynamic_tags"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    token = Column(String(128), nullable=False)
    label = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    json_path = Column(String(255), nullable=False)
    is_frequently_used = Column(Boolean, default=False)
    sample_value = Column(String(255), nullable=True)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "token", name="uq_dynamic_tag_token"),
    )


class TemplateRender(Base):
    """Audit row for every template render."""
    __tablename__ = "template_renders"

    id = _uuid_pk()
    tenant_id = _tenant_fk()
    template_id = Column(String(36), nullable=True)
    rendered_by = Column(String(36), nullable=True)
    contact_id = Column(String(36), nullable=True)
    pipeline_entry_id = Column(String(36), nullable=True)
    resolved_count = Column(Integer, default=0)
    unresolved_tokens = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)


# ---------------------------------------------------------------------------
# Database initialization
# ---------------------------------------------------------------------------

def init_db():
    """Create all tables if they don't exist."""
    Base.metadata.create_all(bind=engine)


def get_db() -> Session:
    """Get a database session. Caller must close it."""
    return SessionLocal()


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

# Applied for any key a tenant has not stored.
SETTING_DEFAULTS: Dict[str, Any] = {
    "approval_high_value": 25_000,
    "approval_critical_value": 75_000,
    "approval_webhook_url": "",
    "notifications_enabled": False,
    "arrival_radius_m": 150,
    "crew_max_shift_hours": config.CREW_MAX_SHIFT_HOURS,
    "kpi_alert_thresholds": {"conversion_rate_min": 20.0, "pending_approvals_max": 10},
}


def get_setting(db: Session, tenant_id: str, key: str, default: Any = None) -> Any:
    """Get a tenant setting, falling back to ``SETTING_DEFAULTS`` then ``default``."""
    row = (
        db.query(Setting)
        .filter(Setting.tenant_id == tenant_id, Setting.key == key)
        .first()
    )
    if row is not None:
        return row.value
    return SETTING_DEFAULTS.get(key, default)


def set_setting(db: Session, tenant_id: str, key: str, value: Any):
    """Set a tenant setting value."""
    row = (
        db.query(Setting)
        .filter(Setting.tenant_id == tenant_id, Setting.key == key)
        .first()
    )
    if row:
        row.value = value
        row.updated_at = utcnow()
    else:
        row = Setting(tenant_id=tenant_id, key=key, value=value)
        db.add(row)
    db.commit()


def get_all_settings(db: Session, tenant_id: str) -> Dict[str, Any]:
    """Stored settings merged over the defaults."""
    rows = db.query(Setting).filter(Setting.tenant_id == tenant_id).all()
    return {**SETTING_DEFAULTS, **{r.key: r.value for r in rows}}


# ---------------------------------------------------------------------------
# Helper queries
# ---------------------------------------------------------------------------

def next_sequence(db: Session, tenant_id: str, counter: str) -> int:
    """Increment and return a tenant counter (``pipeline_seq`` or ``project_seq``).

    The caller commits.
    """
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).with_for_update().first()
    value = (getattr(tenant, counter) or 0) + 1
    setattr(tenant, counter, value)
    return value


def get_profile(db: Session, tenant_id: str, profile_id: Optional[str]) -> Optional[Profile]:
    if not profile_id:
        return None
    return (
        db.query(Profile)
        .filter(Profile.tenant_id == tenant_id, Profile.id == profile_id)
        .first()
    )


def profile_names(db: Session, tenant_id: str, ids: List[str]) -> Dict[str, str]:
    """Map profile id → display name for the given ids."""
    wanted = [i for i in set(ids) if i]
    if not wanted:
        return {}
    rows = (
        db.query(Profile)
        .filter(Profile.tenant_id == tenant_id, Profile.id.in_(wanted))
        .all()
    )
    return {
        p.id: " ".join(x for x in (p.first_name, p.last_name) if x) or p.email
        for p in rows
    }


def latest_estimate_prices(db: Session, entry_ids: List[str]) -> Dict[str, float]:
    """Newest estimate selling price per pipeline entry."""
    if not entry_ids:
        return {}
    rows = (
        db.query(Estimate)
        .filter(Estimate.pipeline_entry_id.in_(entry_ids))
        .order_by(Estimate.created_at.asc())
        .all()
    )
    prices: Dict[str, float] = {}
    for est in rows:
        prices[est.pipeline_entry_id] = est.selling_price
    return prices
