"""
Pipeline status transitions (the board's drag / advance handler).

``transition_entry`` runs, in order:

1. lookup (404) and stale ``from_status`` check (409)
2. tenant transition rule, or the built-in manager-only fallbacks
3. entry validations for the target status
4. project conversion when the target is ``project``
5. status update, mirrored onto the contact
6. history + activity rows
7. an approval request when a non-manager puts the entry on hold

Everything commits in one transaction at the end.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from roofops import metrics
from roofops.core.constants import HOLD_STATUS
from roofops.core.exceptions import (
    ConflictError, PermissionDeniedError, ValidationFailedError,
)
from roofops.core.utils import hours_between, utcnow
from roofops.database import (
    Contact, Document, Photo, PipelineActivity, PipelineEntry,
    StatusTransitionHistory, TransitionRule, TransitionValidation,
)
from roofops.domain.enums import ValidationType
from roofops.domain.models import TransitionResult, UserContext
from roofops.pipeline.board import get_visible_entry
from roofops.pipeline.stages import (
    is_known_status, is_status_backward, next_status, role_satisfies, stage_label,
)
from roofops.projects import convert_entry_to_project

logger = logging.getLogger(__name__)


def _find_rule(db: Session, tenant_id: str, from_status: str, to_status: str) -> Optional[TransitionRule]:
    return (
        db.query(TransitionRule)
        .filter(
            TransitionRule.tenant_id == tenant_id,
            TransitionRule.from_status == from_status,
            TransitionRule.to_status == to_status,
            TransitionRule.is_active.is_(True),
        )
        .order_by(TransitionRule.created_at.asc())
        .first()
    )


def check_rules(
    db: Session,
    ctx: UserContext,
    entry: PipelineEntry,
    from_status: str,
    new_status: str,
    reason: Optional[str],
) -> None:
    """Raise when the caller may not make this move."""
    rule = _find_rule(db, ctx.tenant_id, from_status, new_status)
    if rule is not None:
        required = rule.required_roles or []
        if required and not role_satisfies(ctx.role, required):
            raise PermissionDeniedError(
                f"This transition requires one of the following roles: {', '.join(required)}"
            )
        if rule.requires_reason and not (reason or "").strip():
            raise ValidationFailedError(
                "Please provide a reason for this status change",
                error="Reason required",
                details={"requires_reason": True},
            )
        if rule.min_time_in_stage_hours and rule.min_time_in_stage_hours > 0 and entry.status_entered_at:
            in_stage = hours_between(entry.status_entered_at, utcnow())
            if in_stage < rule.min_time_in_stage_hours:
                raise ValidationFailedError(
                    f"Job must remain in {from_status} for at least "
                    f"{rule.min_time_in_stage_hours:g} hours",
                    error="Minimum time not met",
                )
        if rule.requires_approval and not ctx.is_manager:
            raise PermissionDeniedError(
                "This transition requires manager approval",
                error="Manager approval required",
                details={"requires_approval": True},
            )
        return

    if ctx.is_manager:
        return
    if from_status == "ready_for_approval":
        raise PermissionDeniedError(
            "Only managers can move jobs from Ready for Approval status",
            error="Manager approval required",
        )
    if new_status == "project":
        raise PermissionDeniedError(
            'Only managers can approve projects. Please move to "Hold (Mgr Review)" first.',
            error="Manager approval required",
        )


def check_validations(db: Session, ctx: UserContext, entry: PipelineEntry, new_status: str) -> None:
    """Apply the tenant's validations for entering ``new_status``."""
    rows = (
        db.query(TransitionValidation)
        .filter(
            TransitionValidation.tenant_id == ctx.tenant_id,
            TransitionValidation.applies_to_status == new_status,
            TransitionValidation.is_active.is_(True),
        )
        .all()
    )
    for v in rows:
        cfg = v.validation_config or {}
        if v.validation_type == ValidationType.DOCUMENT_REQUIRED.value:
            q = db.query(Document).filter(
                Document.tenant_id == ctx.tenant_id,
                Document.pipeline_entry_id == entry.id,
            )
            if cfg.get("document_type"):
                q = q.filter(Document.document_type == cfg["document_type"])
            if q.first() is None:
                raise ValidationFailedError(
                    v.error_message or f"A {cfg.get('document_type', 'document')} is required"
                )
        elif v.validation_type == ValidationType.PHOTO_REQUIRED.value:
            q = db.query(Photo).filter(
                Photo.tenant_id == ctx.tenant_id,
                Photo.pipeline_entry_id == entry.id,
            )
            if cfg.get("category"):
                q = q.filter(Photo.category == cfg["category"])
            min_count = int(cfg.get("min_count", 1) or 1)
            if q.count() < min_count:
                raise ValidationFailedError(
                    v.error_message or f"At least {min_count} photo(s) required"
                )
        else:
            logger.warning("Ignoring unknown validation type %s (%s)", v.validation_type, v.id)


def transition_entry(
    db: Session,
    ctx: UserContext,
    entry_id: str,
    new_status: str,
    from_status: Optional[str] = None,
    reason: Optional[str] = None,
    enforce_rules: bool = True,
) -> TransitionResult:
    """Move a pipeline entry to ``new_status``.

    ``enforce_rules=False`` skips step 2 only; the approval workflow uses it
    once a manager has already signed off.
    """
    if not is_known_status(new_status):
        raise ValidationFailedError(f"Unknown pipeline status: {new_status}")
    entry = get_visible_entry(db, ctx, entry_id)
    current = entry.status
    if from_status is not None and from_status != current:
        raise ConflictError(
            f"Entry is now in {current}, not {from_status}. Refresh and try again.",
            details={"current_status": current},
        )
    if new_status == current:
        return TransitionResult(
            success=True, message=f"Already in {stage_label(current)}", new_status=current,
        )

    if enforce_rules:
        check_rules(db, ctx, entry, current, new_status, reason)
    check_validations(db, ctx, entry, new_status)

    project_id = None
    if new_status == "project":
        project, _ = convert_entry_to_project(db, ctx, entry)
        project_id = project.id

    now = utcnow()
    backward = is_status_backward(current, new_status)
    entry.status = new_status
    entry.status_entered_at = now
    entry.last_status_change_reason = reason or None
    entry.updated_at = now

    contact = (
        db.query(Contact)
        .filter(Contact.tenant_id == ctx.tenant_id, Contact.id == entry.contact_id)
        .first()
    )
    if contact is not None:
        contact.qualification_status = new_status
        contact.updated_at = now

    db.add(StatusTransitionHistory(
        tenant_id=ctx.tenant_id,
        pipeline_entry_id=entry.id,
        from_status=current,
        to_status=new_status,
        transitioned_by=ctx.user_id,
        transition_reason=reason or None,
        is_backward=backward,
        transition_metadata={"user_name": ctx.name, "user_role": ctx.role, "timestamp": now.isoformat()},
        created_at=now,
    ))
    description = f"Pipeline entry moved from {current} to {new_status} by {ctx.name}"
    if reason:
        description += f". Reason: {reason}"
    db.add(PipelineActivity(
        tenant_id=ctx.tenant_id,
        pipeline_entry_id=entry.id,
        contact_id=entry.contact_id,
        activity_type="status_change",
        title=f"Stage changed from {current} to {new_status}",
        description=description,
        created_by=ctx.user_id,
        created_at=now,
    ))

    approval_created = False
    if new_status == HOLD_STATUS and not ctx.is_manager:
        from roofops.approvals import open_approval_request
        approval_created = open_approval_request(
            db, ctx, entry,
            justification=reason or f"Approval requested by {ctx.name}",
        ) is not None

    db.commit()
    metrics.record_pipeline_transition()
    logger.info(
        "Entry %s moved %s -> %s by %s (%s)%s",
        entry.id, current, new_status, ctx.user_id, ctx.role,
        " [backward]" if backward else "",
    )

    message = f"Moved to {stage_label(new_status)}"
    if approval_created:
        message += "; manager approval requested"
    return TransitionResult(
        success=True,
        message=message,
        new_status=new_status,
        is_backward=backward,
        approval_request_created=approval_created,
        project_id=project_id,
    )


def advance_entry(db: Session, ctx: UserContext, entry_id: str, reason: Optional[str] = None) -> TransitionResult:
    """Move an entry to its next stage in the static map."""
    entry = get_visible_entry(db, ctx, entry_id)
    target = next_status(entry.status)
    if target is None:
        if entry.status == HOLD_STATUS:
            raise ValidationFailedError("Entries on hold need a manager decision to move forward")
        raise ValidationFailedError(f"{stage_label(entry.status)} has no automatic next stage")
    return transition_entry(db, ctx, entry_id, target, from_status=entry.status, reason=reason)
