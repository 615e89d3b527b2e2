"""
Project / production endpoints.
GET  /api/projects                         - projects, optionally by status
GET  /api/projects/{project_id}            - one project with its workflow
POST /api/projects/{project_id}/production - move production to a stage
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Query, Request

from roofops.api.schemas import ProductionAdvance
from roofops.auth import current_context
from roofops.database import ProductionWorkflow, get_db
from roofops.projects import advance_production, get_project, get_workflow, list_projects, project_to_dict
from roofops.reports.kpis import invalidate_live_metrics
from roofops.websocket import safe_broadcast

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.get("")
async def projects_endpoint(request: Request, status: Optional[str] = Query(None)):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            projects = list_projects(db, ctx, status)
            ids = [p.id for p in projects]
            workflows = {
                w.project_id: w for w in
                db.query(ProductionWorkflow).filter(ProductionWorkflow.project_id.in_(ids))
            } if ids else {}
            return [project_to_dict(p, workflows.get(p.id)) for p in projects]
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/{project_id}")
async def project_endpoint(project_id: str, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            project = get_project(db, ctx, project_id)
            return project_to_dict(project, get_workflow(db, project))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/{project_id}/production")
async def production_endpoint(project_id: str, body: ProductionAdvance, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return advance_production(db, ctx, project_id, body.stage)
        finally:
            db.close()

    result = await asyncio.to_thread(_sync)
    if result["status"] == "completed":
        invalidate_live_metrics(ctx.tenant_id)
    await safe_broadcast(ctx.tenant_id, "pipeline.changed", {"project_id": project_id, "stage": body.stage})
    return result
