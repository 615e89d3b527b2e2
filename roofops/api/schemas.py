"""
RoofOps — API request/response schemas (Pydantic).

Request bodies are validated here; the service layer receives plain dicts
(``model_dump(exclude_unset=True)``) so partial updates only touch the
fields the client actually sent.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared primitives
# ---------------------------------------------------------------------------

class GeoLocation(BaseModel):
    lat: float
    lng: float
    accuracy: Optional[float] = None


# ---------------------------------------------------------------------------
# Settings / tenancy
# ---------------------------------------------------------------------------

class SettingUpdate(BaseModel):
    """Body for updating one or more tenant settings."""
    settings: Dict[str, Any]


class UserCreate(BaseModel):
    email: str
    password: str
    role: str = "sales_rep"
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    location_id: Optional[str] = None


class LocationBody(BaseModel):
    name: Optional[str] = None
    address_street: Optional[str] = None
    address_city: Optional[str] = None
    address_state: Optional[str] = None
    address_zip: Optional[str] = None
    phone: Optional[str] = None
    manager_id: Optional[str] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------

class ContactBody(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address_street: Optional[str] = None
    address_city: Optional[str] = None
    address_state: Optional[str] = None
    address_zip: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    lead_source: Optional[str] = None
    qualification_status: Optional[str] = None
    tags: Optional[List[str]] = None
    notes: Optional[str] = None
    type: Optional[str] = None
    location_id: Optional[str] = None


class NoteCreate(BaseModel):
    subject: str = "Note"
    content: str


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class EntryCreate(BaseModel):
    contact_id: str
    estimated_value: Optional[float] = Field(default=None, ge=0)
    priority: str = "medium"
    roof_type: Optional[str] = None
    source: Optional[str] = None
    assigned_to: Optional[str] = None
    notes: Optional[str] = None


class EstimateCreate(BaseModel):
    selling_price: float = Field(ge=0)
    selected_tier: Optional[str] = None


class TransitionRequest(BaseModel):
    new_status: str
    from_status: Optional[str] = None
    reason: Optional[str] = None


class AdvanceRequest(BaseModel):
    reason: Optional[str] = None


class RuleBody(BaseModel):
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    required_roles: Optional[List[str]] = None
    requires_reason: Optional[bool] = None
    requires_approval: Optional[bool] = None
    min_time_in_stage_hours: Optional[float] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class ValidationBody(BaseModel):
    applies_to_status: str
    validation_type: str
    validation_config: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    is_active: bool = True


# ---------------------------------------------------------------------------
# Approvals / projects
# ---------------------------------------------------------------------------

class ApprovalCreate(BaseModel):
    pipeline_entry_id: str
    business_justification: Optional[str] = None
    priority: Optional[str] = None


class ApprovalDecision(BaseModel):
    approved: bool
    manager_notes: Optional[str] = None


class ProductionAdvance(BaseModel):
    stage: str


# ---------------------------------------------------------------------------
# Crew
# ---------------------------------------------------------------------------

class ClockInRequest(BaseModel):
    location: Optional[GeoLocation] = None
    assignment_id: Optional[str] = None
    notes: Optional[str] = None


class ClockOutRequest(BaseModel):
    location: Optional[GeoLocation] = None


class PhotoBucketBody(BaseModel):
    key: str
    label: Optional[str] = None
    required_count: int = Field(default=0, ge=0)


class ChecklistItemBody(BaseModel):
    label: str
    requires_photo: bool = False
    photo_bucket: Optional[str] = None


class AssignmentCreate(BaseModel):
    title: str
    assigned_to: str
    project_id: Optional[str] = None
    scope_summary: Optional[str] = None
    scheduled_date: Optional[date] = None
    arrival_window_start: Optional[str] = None
    arrival_window_end: Optional[str] = None
    site_lat: Optional[float] = None
    site_lng: Optional[float] = None
    photo_buckets: Optional[List[PhotoBucketBody]] = None
    checklist: Optional[List[ChecklistItemBody]] = None


class AssignmentStatusUpdate(BaseModel):
    status: str


class ChecklistToggle(BaseModel):
    checked: bool


class LocationPing(BaseModel):
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None
    recorded_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Photos
# ---------------------------------------------------------------------------

class MarkupRequest(BaseModel):
    actions: List[Dict[str, Any]]


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

class TemplateBody(BaseModel):
    name: Optional[str] = None
    subject: Optional[str] = None
    content: Optional[str] = None
    template_type: Optional[str] = None
    category: Optional[str] = None


class TagBody(BaseModel):
    token: Optional[str] = None
    label: Optional[str] = None
    description: Optional[str] = None
    json_path: Optional[str] = None
    is_frequently_used: Optional[bool] = None
    sample_value: Optional[str] = None
    active: Optional[bool] = None


class RenderRequest(BaseModel):
    template_id: Optional[str] = None
    subject: Optional[str] = None
    content: Optional[str] = None
    contact_id: Optional[str] = None
    pipeline_entry_id: Optional[str] = None
    project_id: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str
    db: str
    cache: str
    websocket_clients: int = 0
    uptime_seconds: float = 0.0
    metrics: Dict[str, Any] = Field(default_factory=dict)
