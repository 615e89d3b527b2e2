"""
Message template and dynamic tag endpoints.
GET    /api/templates                    - tenant + system templates
POST   /api/templates                    - create a template
GET    /api/templates/{template_id}      - one template
PATCH  /api/templates/{template_id}      - update (not system templates)
DELETE /api/templates/{template_id}      - delete (not system templates)
POST   /api/templates/render             - render a template or ad-hoc content
GET    /api/tags                         - dynamic tags
GET    /api/tags/frequent                - frequently used tags
POST   /api/tags                         - create a tag (managers)
PATCH  /api/tags/{tag_id}                - update a tag (managers)
DELETE /api/tags/{tag_id}                - delete a tag (managers)
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Query, Request

from roofops.api.schemas import RenderRequest, TagBody, TemplateBody
from roofops.auth import current_context
from roofops.core.constants import BUILTIN_TAGS
from roofops.database import get_db
from roofops.templates.service import (
    create_tag,
    create_template,
    delete_tag,
    delete_template,
    frequently_used,
    get_template,
    list_tags,
    list_templates,
    render_template,
    tag_to_dict,
    template_to_dict,
    update_tag,
    update_template,
)

router = APIRouter(tags=["templates"])


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

@router.get("/api/templates")
async def templates_endpoint(
    request: Request,
    category: Optional[str] = Query(None),
    template_type: Optional[str] = Query(None),
):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return [template_to_dict(t) for t in list_templates(db, ctx, category, template_type)]
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/api/templates", status_code=201)
async def create_template_endpoint(body: TemplateBody, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return template_to_dict(create_template(db, ctx, body.model_dump(exclude_unset=True)))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/api/templates/render")
async def render_endpoint(body: RenderRequest, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            result = render_template(
                db, ctx,
                template_id=body.template_id, content=body.content, subject=body.subject,
                contact_id=body.contact_id, pipeline_entry_id=body.pipeline_entry_id,
                project_id=body.project_id, context=body.context,
            )
            return result.to_dict()
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/api/templates/{template_id}")
async def template_endpoint(template_id: str, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return template_to_dict(get_template(db, ctx, template_id))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.patch("/api/templates/{template_id}")
async def update_template_endpoint(template_id: str, body: TemplateBody, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            t = update_template(db, ctx, template_id, body.model_dump(exclude_unset=True))
            return template_to_dict(t)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.delete("/api/templates/{template_id}")
async def delete_template_endpoint(template_id: str, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            delete_template(db, ctx, template_id)
            return {"status": "deleted", "id": template_id}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


# ---------------------------------------------------------------------------
# Dynamic tags
# ---------------------------------------------------------------------------

@router.get("/api/tags")
async def tags_endpoint(request: Request, include_inactive: bool = Query(False)):
    """Tenant dynamic tags plus the always-available built-in tags."""
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return {
                "tags": [tag_to_dict(t) for t in list_tags(db, ctx, include_inactive)],
                "builtin": [{"token": token, "label": label} for token, label in BUILTIN_TAGS],
            }
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/api/tags/frequent")
async def frequent_tags_endpoint(request: Request, limit: int = Query(10, ge=1, le=100)):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return [tag_to_dict(t) for t in frequently_used(db, ctx, limit)]
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/api/tags", status_code=201)
async def create_tag_endpoint(body: TagBody, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return tag_to_dict(create_tag(db, ctx, body.model_dump(exclude_unset=True)))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.patch("/api/tags/{tag_id}")
async def update_tag_endpoint(tag_id: str, body: TagBody, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return tag_to_dict(update_tag(db, ctx, tag_id, body.model_dump(exclude_unset=True)))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.delete("/api/tags/{tag_id}")
async def delete_tag_endpoint(tag_id: str, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            delete_tag(db, ctx, tag_id)
            return {"status": "deleted", "id": tag_id}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)
