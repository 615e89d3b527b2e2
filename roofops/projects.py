"""
Projects and the production workflow.

A project is created exactly once per pipeline entry, when the entry is
moved to ``project`` (by a manager drag or an approved request).
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from roofops.contacts import log_communication
from roofops.core.constants import PRODUCTION_STAGES, PROJECT_NUMBER_PREFIX
from roofops.core.exceptions import NotFoundError, PermissionDeniedError, ValidationFailedError
from roofops.core.utils import format_address, format_sequence, full_name, utcnow
from roofops.database import (
    Contact, PipelineEntry, ProductionWorkflow, Project,
    latest_estimate_prices, next_sequence,
)
from roofops.domain.enums import ProjectStatus
from roofops.domain.models import UserContext

logger = logging.getLogger(__name__)

STAGE_KEYS = [key for key, _ in PRODUCTION_STAGES]
_STAGE_LABELS = dict(PRODUCTION_STAGES)


def project_name_for(contact: Optional[Contact]) -> str:
    if contact is None:
        return f"Project {utcnow().date().isoformat()}"
    name = full_name(contact.first_name, contact.last_name) or contact.company_name or "Customer"
    return f"{name} - {contact.address_street or 'Project'}"


def convert_entry_to_project(
    db: Session,
    ctx: UserContext,
    entry: PipelineEntry,
) -> Tuple[Project, bool]:
    """Return ``(project, created)``; an existing project is reused.

    Flushes but does not commit; the caller owns the transaction.
    """
    existing = (
        db.query(Project)
        .filter(Project.tenant_id == ctx.tenant_id, Project.pipeline_entry_id == entry.id)
        .first()
    )
    if existing is not None:
        logger.info("Project already exists for entry %s: %s", entry.id, existing.id)
        return existing, False

    contact = (
        db.query(Contact)
        .filter(Contact.tenant_id == ctx.tenant_id, Contact.id == entry.contact_id)
        .first()
    )
    price = latest_estimate_prices(db, [entry.id]).get(entry.id, entry.estimated_value)
    now = utcnow()
    seq = next_sequence(db, ctx.tenant_id, "project_seq")
    project = Project(
        tenant_id=ctx.tenant_id,
        pipeline_entry_id=entry.id,
        contact_id=entry.contact_id,
        location_id=entry.location_id,
        name=project_name_for(contact),
        project_number=format_sequence(PROJECT_NUMBER_PREFIX, seq),
        status=ProjectStatus.ACTIVE.value,
        project_type="roofing",
        address_street=contact.address_street if contact else None,
        address_city=contact.address_city if contact else None,
        address_state=contact.address_state if contact else None,
        address_zip=contact.address_zip if contact else None,
        selling_price=price,
        contract_amount=price,
        created_by=ctx.user_id,
        approved_by=ctx.user_id,
        approved_at=now,
    )
    db.add(project)
    db.flush()

    try:
        with db.begin_nested():
            db.add(ProductionWorkflow(
                tenant_id=ctx.tenant_id,
                project_id=project.id,
                status="scheduled",
                current_stage=STAGE_KEYS[0],
                workflow_data={
                    "initialized_from": "pipeline",
                    "stage_history": [{"stage": STAGE_KEYS[0], "at": now.isoformat(), "by": ctx.user_id}],
                },
            ))
    except SQLAlchemyError as exc:
        logger.error("Production workflow for project %s not created (non-fatal): %s", project.id, exc)

    log_communication(
        db, ctx, entry.contact_id,
        subject="Lead Converted to Project",
        content=f"Pipeline entry {entry.number or entry.id} converted to project by {ctx.name}",
        pipeline_entry_id=entry.id,
        project_id=project.id,
    )
    logger.info("Project %s created from entry %s", project.project_number, entry.id)
    return project, True


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------

def project_to_dict(p: Project, workflow: Optional[ProductionWorkflow] = None) -> Dict[str, Any]:
    out = {
        "id": p.id,
        "project_number": p.project_number,
        "name": p.name,
        "status": p.status,
        "project_type": p.project_type,
        "pipeline_entry_id": p.pipeline_entry_id,
        "contact_id": p.contact_id,
        "location_id": p.location_id,
        "address": format_address(p.address_street, p.address_city, p.address_state, p.address_zip),
        "selling_price": p.selling_price,
        "contract_amount": p.contract_amount,
        "gross_profit": p.gross_profit,
        "project_manager_id": p.project_manager_id,
        "start_date": p.start_date.isoformat() if p.start_date else None,
        "actual_completion_date": p.actual_completion_date.isoformat() if p.actual_completion_date else None,
        "approved_by": p.approved_by,
        "approved_at": p.approved_at.isoformat() if p.approved_at else None,
        "created_at": p.created_at.isoformat() if p.created_at else None,
    }
    if workflow is not None:
        out["production"] = {
            "status": workflow.status,
            "current_stage": workflow.current_stage,
            "current_stage_label": _STAGE_LABELS.get(workflow.current_stage, workflow.current_stage),
            "stage_history": (workflow.workflow_data or {}).get("stage_history", []),
        }
    return out


def list_projects(db: Session, ctx: UserContext, status: Optional[str] = None) -> List[Project]:
    q = db.query(Project).filter(Project.tenant_id == ctx.tenant_id)
    if status:
        q = q.filter(Project.status == status)
    return q.order_by(Project.created_at.desc()).all()


def get_project(db: Session, ctx: UserContext, project_id: str) -> Project:
    project = (
        db.query(Project)
        .filter(Project.tenant_id == ctx.tenant_id, Project.id == project_id)
        .first()
    )
    if project is None:
        raise NotFoundError("Project not found")
    return project


def get_workflow(db: Session, project: Project) -> Optional[ProductionWorkflow]:
    return db.query(ProductionWorkflow).filter(ProductionWorkflow.project_id == project.id).first()


# ---------------------------------------------------------------------------
# Production
# ---------------------------------------------------------------------------

def advance_production(db: Session, ctx: UserContext, project_id: str, stage: str) -> Dict[str, Any]:
    """Move a project's production workflow to ``stage``.

    Reaching ``closed`` completes the project.
    """
    if not ctx.can_dispatch:
        raise PermissionDeniedError("Only managers and project managers can update production")
    if stage not in _STAGE_LABELS:
        raise ValidationFailedError(f"Unknown production stage: {stage}")
    project = get_project(db, ctx, project_id)
    if project.status == ProjectStatus.CANCELED.value:
        raise ValidationFailedError("Project is canceled")

    workflow = get_workflow(db, project)
    if workflow is None:
        workflow = ProductionWorkflow(
            tenant_id=ctx.tenant_id, project_id=project.id,
            status="scheduled", current_stage=STAGE_KEYS[0], workflow_data={},
        )
        db.add(workflow)

    now = utcnow()
    data = dict(workflow.workflow_data or {})
    history = list(data.get("stage_history", []))
    history.append({"stage": stage, "at": now.isoformat(), "by": ctx.user_id})
    data["stage_history"] = history
    workflow.workflow_data = data
    workflow.current_stage = stage

    if stage == "closed":
        workflow.status = "completed"
        project.status = ProjectStatus.COMPLETED.value
        project.actual_completion_date = now
    else:
        workflow.status = "in_progress" if stage != STAGE_KEYS[0] else "scheduled"
        if project.status == ProjectStatus.COMPLETED.value:
            project.status = ProjectStatus.ACTIVE.value
            project.actual_completion_date = None
    workflow.updated_at = now
    db.commit()
    logger.info("Project %s production moved to %s by %s", project.id, stage, ctx.user_id)
    return project_to_dict(project, workflow)
