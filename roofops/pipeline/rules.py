"""
Tenant-managed transition rules and validations.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from roofops.core.constants import LEGACY_ROLE_MAPPINGS
from roofops.core.exceptions import (
    ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError,
)
from roofops.database import TransitionRule, TransitionValidation
from roofops.domain.enums import AppRole, ValidationType
from roofops.domain.models import UserContext
from roofops.pipeline.stages import is_known_status


def _require_manager(ctx: UserContext) -> None:
    if not ctx.is_manager:
        raise PermissionDeniedError("Only managers can change pipeline rules")


def _check_status(status: str, field: str) -> None:
    if not is_known_status(status or ""):
        raise ValidationFailedError(f"{field} is not a pipeline status: {status}")


def _check_roles(roles: Optional[List[str]]) -> List[str]:
    roles = list(roles or [])
    known = set(AppRole._value2member_map_) | set(LEGACY_ROLE_MAPPINGS)
    unknown = [r for r in roles if r not in known]
    if unknown:
        raise ValidationFailedError(f"Unknown role(s): {', '.join(unknown)}")
    return roles


def rule_to_dict(r: TransitionRule) -> Dict[str, Any]:
    return {
        "id": r.id,
        "from_status": r.from_status,
        "to_status": r.to_status,
        "required_roles": r.required_roles or [],
        "requires_reason": bool(r.requires_reason),
        "requires_approval": bool(r.requires_approval),
        "min_time_in_stage_hours": r.min_time_in_stage_hours,
        "is_active": bool(r.is_active),
    }


def validation_to_dict(v: TransitionValidation) -> Dict[str, Any]:
    return {
        "id": v.id,
        "applies_to_status": v.applies_to_status,
        "validation_type": v.validation_type,
        "validation_config": v.validation_config or {},
        "error_message": v.error_message,
        "is_active": bool(v.is_active),
    }


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def list_rules(db: Session, ctx: UserContext) -> List[TransitionRule]:
    return (
        db.query(TransitionRule)
        .filter(TransitionRule.tenant_id == ctx.tenant_id)
        .order_by(TransitionRule.from_status.asc(), TransitionRule.to_status.asc())
        .all()
    )


def create_rule(db: Session, ctx: UserContext, data: Dict[str, Any]) -> TransitionRule:
    _require_manager(ctx)
    _check_status(data.get("from_status"), "from_status")
    _check_status(data.get("to_status"), "to_status")
    min_hours = data.get("min_time_in_stage_hours")
    if min_hours is not None and float(min_hours) < 0:
        raise ValidationFailedError("min_time_in_stage_hours cannot be negative")
    duplicate = (
        db.query(TransitionRule)
        .filter(
            TransitionRule.tenant_id == ctx.tenant_id,
            TransitionRule.from_status == data["from_status"],
            TransitionRule.to_status == data["to_status"],
            TransitionRule.is_active.is_(True),
        )
        .first()
    )
    if duplicate is not None:
        raise ConflictError("An active rule already exists for this transition")
    rule = TransitionRule(
        tenant_id=ctx.tenant_id,
        from_status=data["from_status"],
        to_status=data["to_status"],
        required_roles=_check_roles(data.get("required_roles")),
        requires_reason=bool(data.get("requires_reason", False)),
        requires_approval=bool(data.get("requires_approval", False)),
        min_time_in_stage_hours=float(min_hours) if min_hours is not None else None,
        is_active=bool(data.get("is_active", True)),
    )
    db.add(rule)
    db.commit()
    return rule


def update_rule(db: Session, ctx: UserContext, rule_id: str, data: Dict[str, Any]) -> TransitionRule:
    _require_manager(ctx)
    rule = (
        db.query(TransitionRule)
        .filter(TransitionRule.tenant_id == ctx.tenant_id, TransitionRule.id == rule_id)
        .first()
    )
    if rule is None:
        raise NotFoundError("Transition rule not found")
    if "required_roles" in data:
        rule.required_roles = _check_roles(data["required_roles"])
    for key in ("requires_reason", "requires_approval", "is_active"):
        if key in data:
            setattr(rule, key, bool(data[key]))
    if "min_time_in_stage_hours" in data:
        value = data["min_time_in_stage_hours"]
        if value is not None and float(value) < 0:
            raise ValidationFailedError("min_time_in_stage_hours cannot be negative")
        rule.min_time_in_stage_hours = float(value) if value is not None else None
    db.commit()
    return rule


def delete_rule(db: Session, ctx: UserContext, rule_id: str) -> None:
    _require_manager(ctx)
    deleted = (
        db.query(TransitionRule)
        .filter(TransitionRule.tenant_id == ctx.tenant_id, TransitionRule.id == rule_id)
        .delete()
    )
    if not deleted:
        raise NotFoundError("Transition rule not found")
    db.commit()


# ---------------------------------------------------------------------------
# Validations
# ---------------------------------------------------------------------------

def list_validations(db: Session, ctx: UserContext) -> List[TransitionValidation]:
    return (
        db.query(TransitionValidation)
        .filter(TransitionValidation.tenant_id == ctx.tenant_id)
        .order_by(TransitionValidation.applies_to_status.asc())
        .all()
    )


def create_validation(db: Session, ctx: UserContext, data: Dict[str, Any]) -> TransitionValidation:
    _require_manager(ctx)
    _check_status(data.get("applies_to_status"), "applies_to_status")
    try:
        vtype = ValidationType(data.get("validation_type")).value
    except ValueError:
        raise ValidationFailedError("validation_type must be document_required or photo_required")
    cfg = data.get("validation_config") or {}
    if not isinstance(cfg, dict):
        raise ValidationFailedError("validation_config must be an object")
    if vtype == ValidationType.PHOTO_REQUIRED.value and int(cfg.get("min_count", 1) or 1) < 1:
        raise ValidationFailedError("min_count must be at least 1")
    row = TransitionValidation(
        tenant_id=ctx.tenant_id,
        applies_to_status=data["applies_to_status"],
        validation_type=vtype,
        validation_config=cfg,
        error_message=data.get("error_message"),
        is_active=bool(data.get("is_active", True)),
    )
    db.add(row)
    db.commit()
    return row


def delete_validation(db: Session, ctx: UserContext, validation_id: str) -> None:
    _require_manager(ctx)
    deleted = (
        db.query(TransitionValidation)
        .filter(
            TransitionValidation.tenant_id == ctx.tenant_id,
            TransitionValidation.id == validation_id,
        )
        .delete()
    )
    if not deleted:
        raise NotFoundError("Validation not found")
    db.commit()
