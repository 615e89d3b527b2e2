"""
Message templates, dynamic tags and the token renderer.

A render builds a context dict from the referenced contact, pipeline entry,
project, the calling rep and the tenant (merged over any caller-supplied
JSON), then resolves each ``{{ token }}``:

1. the tenant's active dynamic tag with that token (its ``json_path`` is a
   dot path into the context);
2. the built-in tags (``first_name``, ``estimate_total``, ...);
3. a literal dot path into the context (caller-supplied keys).

Anything still missing, or resolving to ``None``, is left verbatim and
reported in ``unresolved_tokens``.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from roofops.contacts import contact_to_dict, get_contact
from roofops.core.exceptions import (
    ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError,
)
from roofops.core.utils import format_address, format_currency, full_name, resolve_path
from roofops.database import (
    DynamicTag, MessageTemplate, PipelineEntry, Tenant, TemplateRender,
    get_profile, latest_estimate_prices,
)
from roofops.domain.enums import TemplateCategory, TemplateType
from roofops.domain.models import RenderResult, UserContext
from roofops.pipeline.board import get_visible_entry
from roofops.projects import get_project
from roofops.templates.tokens import extract_tokens, substitute, value_to_text

logger = logging.getLogger(__name__)

_TOKEN_NAME_RE = re.compile(r"^[A-Za-z0-9_.]{1,128}$")

TEMPLATE_FIELDS = ("name", "subject", "content", "template_type", "category")
TAG_FIELDS = ("label", "description", "json_path", "is_frequently_used", "sample_value", "active")

# Shared, read-only templates available to every tenant.
SYSTEM_TEMPLATES = [
    {
        "name": "Welcome",
        "category": "welcome",
        "template_type": "email",
        "subject": "Welcome to {{ company_name }}",
        "content": (
            "Hi {{ first_name }},\n\nThanks for reaching out to {{ company_name }}. "
            "{{ rep_name }} will be your point of contact and can be reached at "
            "{{ rep_phone }}.\n"
        ),
    },
    {
        "name": "Estimate ready",
        "category": "estimate",
        "template_type": "email",
        "subject": "Your estimate {{ estimate_number }}",
        "content": (
            "Hi {{ customer_name }},\n\nYour estimate for {{ property_address }} "
            "comes to {{ estimate_total }}. Reply to this email or call "
            "{{ rep_phone }} with any questions.\n\n{{ rep_name }}\n{{ company_name }}\n"
        ),
    },
    {
        "name": "Appointment reminder",
        "category": "appointment",
        "template_type": "sms",
        "subject": None,
        "content": "Hi {{ first_name }}, this is {{ rep_name }} from {{ company_name }} confirming our visit to {{ property_address }}.",
    },
    {
        "name": "Review request",
        "category": "review",
        "template_type": "sms",
        "subject": None,
        "content": "Thanks for choosing {{ company_name }}, {{ first_name }}! We'd love a quick review of your new roof.",
    },
]


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------

def template_to_dict(t: MessageTemplate) -> Dict[str, Any]:
    return {
        "id": t.id,
        "name": t.name,
        "subject": t.subject,
        "content": t.content,
        "template_type": t.template_type,
        "category": t.category,
        "variables": t.variables or [],
        "is_system_template": bool(t.is_system_template),
        "usage_count": t.usage_count or 0,
        "created_by": t.created_by,
        "created_at": t.created_at.isoformat() if t.created_at else None,
        "updated_at": t.updated_at.isoformat() if t.updated_at else None,
    }


def tag_to_dict(t: DynamicTag) -> Dict[str, Any]:
    return {
        "id": t.id,
        "token": t.token,
        "label": t.label,
        "description": t.description,
        "json_path": t.json_path,
        "is_frequently_used": bool(t.is_frequently_used),
        "sample_value": t.sample_value,
        "active": bool(t.active),
    }


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

def ensure_system_templates(db: Session) -> int:
    """Insert any missing system templates.  Returns how many were added."""
    existing = {
        name for (name,) in
        db.query(MessageTemplate.name).filter(MessageTemplate.is_system_template.is_(True))
    }
    added = 0
    for spec in SYSTEM_TEMPLATES:
        if spec["name"] in existing:
            continue
        db.add(MessageTemplate(
            tenant_id=None,
            is_system_template=True,
            variables=extract_tokens(f"{spec['subject'] or ''} {spec['content']}"),
            **spec,
        ))
        added += 1
    if added:
        db.commit()
        logger.info("Seeded %d system message templates", added)
    return added


def _validate_template(t: MessageTemplate) -> None:
    if not (t.name or "").strip():
        raise ValidationFailedError("Template name is required")
    if not (t.content or "").strip():
        raise ValidationFailedError("Template content is required")
    try:
        TemplateType(t.template_type)
    except ValueError:
        raise ValidationFailedError(f"Unknown template type: {t.template_type}")
    try:
        TemplateCategory(t.category)
    except ValueError:
        raise ValidationFailedError(f"Unknown template category: {t.category}")


def list_templates(
    db: Session,
    ctx: UserContext,
    category: Optional[str] = None,
    template_type: Optional[str] = None,
) -> List[MessageTemplate]:
    """The tenant's own templates plus the shared system templates."""
    q = db.query(MessageTemplate).filter(
        or_(MessageTemplate.tenant_id == ctx.tenant_id, MessageTemplate.is_system_template.is_(True))
    )
    if category:
        q = q.filter(MessageTemplate.category == category)
    if template_type:
        q = q.filter(MessageTemplate.template_type == template_type)
    return q.order_by(MessageTemplate.is_system_template.asc(), MessageTemplate.name.asc()).all()


def get_template(db: Session, ctx: UserContext, template_id: str) -> MessageTemplate:
    t = db.query(MessageTemplate).filter(MessageTemplate.id == template_id).first()
    if t is None or not (t.is_system_template or t.tenant_id == ctx.tenant_id):
        raise NotFoundError("Template not found")
    return t


def _editable_template(db: Session, ctx: UserContext, template_id: str) -> MessageTemplate:
    t = get_template(db, ctx, template_id)
    if t.is_system_template:
        raise PermissionDeniedError("System templates are read-only")
    if not ctx.is_manager and t.created_by != ctx.user_id:
        raise PermissionDeniedError("Only the author or a manager can change this template")
    return t


def create_template(db: Session, ctx: UserContext, data: Dict[str, Any]) -> MessageTemplate:
    if ctx.is_crew:
        raise PermissionDeniedError("Crew members cannot create message templates")
    t = MessageTemplate(
        tenant_id=ctx.tenant_id,
        name=(data.get("name") or "").strip(),
        subject=data.get("subject"),
        content=data.get("content") or "",
        template_type=data.get("template_type") or TemplateType.EMAIL.value,
        category=data.get("category") or TemplateCategory.GENERAL.value,
        is_system_template=False,
        usage_count=0,
        created_by=ctx.user_id,
    )
    _validate_template(t)
    t.variables = extract_tokens(f"{t.subject or ''} {t.content}")
    db.add(t)
    db.commit()
    logger.info("Template %s created by %s", t.id, ctx.user_id)
    return t


def update_template(db: Session, ctx: UserContext, template_id: str, data: Dict[str, Any]) -> MessageTemplate:
    t = _editable_template(db, ctx, template_id)
    for key in TEMPLATE_FIELDS:
        if key in data and data[key] is not None:
            setattr(t, key, data[key].strip() if key == "name" else data[key])
    _validate_template(t)
    t.variables = extract_tokens(f"{t.subject or ''} {t.content}")
    db.commit()
    return t


def delete_template(db: Session, ctx: UserContext, template_id: str) -> None:
    t = _editable_template(db, ctx, template_id)
    db.delete(t)
    db.commit()


# ---------------------------------------------------------------------------
# Dynamic tags
# ---------------------------------------------------------------------------

def _require_manager(ctx: UserContext) -> None:
    if not ctx.is_manager:
        raise PermissionDeniedError("Only managers can manage dynamic tags")


def _check_token(value: Optional[str], field: str) -> str:
    value = (value or "").strip()
    if not _TOKEN_NAME_RE.match(value):
        raise ValidationFailedError(f"{field} may only contain letters, digits, '_' and '.'")
    return value


def list_tags(db: Session, ctx: UserContext, include_inactive: bool = False) -> List[DynamicTag]:
    q = db.query(DynamicTag).filter(DynamicTag.tenant_id == ctx.tenant_id)
    if not include_inactive:
        q = q.filter(DynamicTag.active.is_(True))
    return q.order_by(DynamicTag.token.asc()).all()


def frequently_used(db: Session, ctx: UserContext, limit: int = 10) -> List[DynamicTag]:
    return (
        db.query(DynamicTag)
        .filter(
            DynamicTag.tenant_id == ctx.tenant_id,
            DynamicTag.active.is_(True),
            DynamicTag.is_frequently_used.is_(True),
        )
        .order_by(DynamicTag.label.asc())
        .limit(max(1, min(limit, 100)))
        .all()
    )


def get_tag(db: Session, ctx: UserContext, tag_id: str) -> DynamicTag:
    tag = db.query(DynamicTag).filter(DynamicTag.tenant_id == ctx.tenant_id, DynamicTag.id == tag_id).first()
    if tag is None:
        raise NotFoundError("Dynamic tag not found")
    return tag


def create_tag(db: Session, ctx: UserContext, data: Dict[str, Any]) -> DynamicTag:
    _require_manager(ctx)
    token = _check_token(data.get("token"), "token")
    json_path = _check_token(data.get("json_path"), "json_path")
    label = (data.get("label") or "").strip()
    if not label:
        raise ValidationFailedError("label is required")
    clash = (
        db.query(DynamicTag.id)
        .filter(DynamicTag.tenant_id == ctx.tenant_id, DynamicTag.token == token)
        .first()
    )
    if clash is not None:
        raise ConflictError(f"A dynamic tag '{token}' already exists")
    tag = DynamicTag(
        tenant_id=ctx.tenant_id,
        token=token,
        label=label,
        description=data.get("description"),
        json_path=json_path,
        is_frequently_used=bool(data.get("is_frequently_used", False)),
        sample_value=data.get("sample_value"),
        active=bool(data.get("active", True)),
    )
    db.add(tag)
    db.commit()
    return tag


def update_tag(db: Session, ctx: UserContext, tag_id: str, data: Dict[str, Any]) -> DynamicTag:
    _require_manager(ctx)
    tag = get_tag(db, ctx, tag_id)
    for key in TAG_FIELDS:
        if key not in data or data[key] is None:
            continue
        value = data[key]
        if key == "json_path":
            value = _check_token(value, "json_path")
        elif key == "label":
            value = value.strip()
            if not value:
                raise ValidationFailedError("label is required")
        setattr(tag, key, value)
    db.commit()
    return tag


def delete_tag(db: Session, ctx: UserContext, tag_id: str) -> None:
    _require_manager(ctx)
    db.delete(get_tag(db, ctx, tag_id))
    db.commit()


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def build_render_context(
    db: Session,
    ctx: UserContext,
    contact_id: Optional[str] = None,
    pipeline_entry_id: Optional[str] = None,
    project_id: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Caller JSON first; referenced rows override keys of the same name."""
    context: Dict[str, Any] = dict(extra or {})

    project = get_project(db, ctx, project_id) if project_id else None
    entry = get_visible_entry(db, ctx, pipeline_entry_id) if pipeline_entry_id else None
    if entry is None and project is not None and project.pipeline_entry_id:
        entry = (
            db.query(PipelineEntry)
            .filter(PipelineEntry.tenant_id == ctx.tenant_id, PipelineEntry.id == project.pipeline_entry_id)
            .first()
        )
    if not contact_id:
        contact_id = (entry.contact_id if entry else None) or (project.contact_id if project else None)
    contact = get_contact(db, ctx, contact_id) if contact_id else None

    if contact is not None:
        context["contact"] = contact_to_dict(contact)
    if entry is not None:
        price = latest_estimate_prices(db, [entry.id]).get(entry.id)
        context["entry"] = {
            "id": entry.id,
            "number": entry.number,
            "status": entry.status,
            "priority": entry.priority,
            "roof_type": entry.roof_type,
            "source": entry.source,
            "estimated_value": entry.estimated_value,
            "estimate_total": price if price is not None else entry.estimated_value,
        }
    if project is not None:
        context["project"] = {
            "id": project.id,
            "name": project.name,
            "number": project.project_number,
            "status": project.status,
            "selling_price": project.selling_price,
            "contract_amount": project.contract_amount,
            "address": format_address(
                project.address_street, project.address_city,
                project.address_state, project.address_zip,
            ),
        }

    rep = get_profile(db, ctx.tenant_id, ctx.user_id)
    if rep is not None:
        context["rep"] = {
            "id": rep.id,
            "name": full_name(rep.first_name, rep.last_name) or rep.email,
            "first_name": rep.first_name,
            "last_name": rep.last_name,
            "email": rep.email,
            "phone": rep.phone,
            "role": rep.role,
        }
    tenant = db.query(Tenant).filter(Tenant.id == ctx.tenant_id).first()
    if tenant is not None:
        context["company"] = {
            "name": tenant.name,
            "phone": tenant.phone,
            "email": tenant.email,
            "subdomain": tenant.subdomain,
        }
    return context


def builtin_values(context: Dict[str, Any]) -> Dict[str, Any]:
    """Values of the built-in tags for a render context (``None`` when unknown)."""
    estimate_total = resolve_path(context, "entry.estimate_total")
    if estimate_total is None:
        estimate_total = resolve_path(context, "project.selling_price")
    return {
        "first_name": resolve_path(context, "contact.first_name"),
        "last_name": resolve_path(context, "contact.last_name"),
        "customer_name": resolve_path(context, "contact.name") or None,
        "property_address": (
            resolve_path(context, "contact.address") or resolve_path(context, "project.address") or None
        ),
        "estimate_total": format_currency(estimate_total) if estimate_total is not None else None,
        "estimate_number": resolve_path(context, "entry.number"),
        "company_name": resolve_path(context, "company.name"),
        "rep_name": resolve_path(context, "rep.name"),
        "rep_phone": resolve_path(context, "rep.phone"),
        "rep_email": resolve_path(context, "rep.email"),
    }


def render_text(
    subject: Optional[str],
    content: str,
    context: Dict[str, Any],
    tag_paths: Dict[str, str],
) -> RenderResult:
    """Pure substitution step: ``tag_paths`` maps token → json_path."""
    builtins = builtin_values(context)
    unresolved: List[str] = []
    values: Dict[str, str] = {}
    for token in extract_tokens(f"{subject or ''}\n{content or ''}"):
        if token in tag_paths:
            value = resolve_path(context, tag_paths[token])
        elif token in builtins:
            value = builtins[token]
        else:
            value = resolve_path(context, token)
        if value is None:
            unresolved.append(token)
        else:
            values[token] = value_to_text(value)

    return RenderResult(
        rendered_subject=substitute(subject, values) if subject else subject,
        rendered_text=substitute(content or "", values),
        unresolved_tokens=unresolved,
        resolved_count=len(values),
    )


def render_template(
    db: Session,
    ctx: UserContext,
    template_id: Optional[str] = None,
    content: Optional[str] = None,
    subject: Optional[str] = None,
    contact_id: Optional[str] = None,
    pipeline_entry_id: Optional[str] = None,
    project_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> RenderResult:
    """Render a stored template (or ad-hoc ``content``) and audit the render."""
    template = None
    if template_id:
        template = get_template(db, ctx, template_id)
        subject, content = template.subject, template.content
    elif not (content or "").strip():
        raise ValidationFailedError("Either template_id or content is required")

    render_ctx = build_render_context(db, ctx, contact_id, pipeline_entry_id, project_id, context)
    tag_paths = {
        t.token: t.json_path
        for t in db.query(DynamicTag).filter(
            DynamicTag.tenant_id == ctx.tenant_id, DynamicTag.active.is_(True)
        )
    }
    result = render_text(subject, content, render_ctx, tag_paths)

    db.add(TemplateRender(
        tenant_id=ctx.tenant_id,
        template_id=template.id if template else None,
        rendered_by=ctx.user_id,
        contact_id=resolve_path(render_ctx, "contact.id"),
        pipeline_entry_id=resolve_path(render_ctx, "entry.id"),
        resolved_count=result.resolved_count,
        unresolved_tokens=result.unresolved_tokens,
    ))
    if template is not None:
        template.usage_count = (template.usage_count or 0) + 1
    db.commit()
    if result.unresolved_tokens:
        logger.debug("Render by %s left %d tokens unresolved: %s",
                     ctx.user_id, len(result.unresolved_tokens), result.unresolved_tokens)
    return result
