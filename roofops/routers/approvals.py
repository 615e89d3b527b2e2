"""
Manager approval endpoints.
GET  /api/approvals                         - queue split into pending / processed
POST /api/approvals                         - request approval for an entry
POST /api/approvals/{approval_id}/respond   - approve or reject (managers)
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Query, Request

from roofops.api.schemas import ApprovalCreate, ApprovalDecision
from roofops.approvals import (
    approval_to_dict,
    list_queue,
    request_approval,
    requested_event,
    respond_to_approval_request,
)
from roofops.auth import current_context
from roofops.database import Contact, get_db
from roofops.notifications.notifiers import NotificationEvent, build_notifier_for_tenant, safe_send
from roofops.reports.kpis import invalidate_live_metrics
from roofops.websocket import safe_broadcast

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/approvals", tags=["approvals"])


@router.get("")
async def queue_endpoint(request: Request, status: Optional[str] = Query(None)):
    """Queue ordered by priority then age.  Non-managers only see their own requests."""
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return list_queue(db, ctx, status)
        finally:
            db.close()

    rows = await asyncio.to_thread(_sync)
    return {
        "pending": [r for r in rows if r["status"] == "pending"],
        "processed": [r for r in rows if r["status"] != "pending"],
        "total": len(rows),
    }


@router.post("", status_code=201)
async def request_endpoint(body: ApprovalCreate, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            req = request_approval(
                db, ctx, body.pipeline_entry_id,
                justification=body.business_justification, priority=body.priority,
            )
            contact = db.query(Contact).filter(Contact.id == req.contact_id).first()
            notifier = build_notifier_for_tenant(db, ctx.tenant_id)
            return approval_to_dict(req, requester_name=ctx.name, contact=contact), notifier, requested_event(db, req)
        finally:
            db.close()

    result, notifier, event = await asyncio.to_thread(_sync)
    await safe_broadcast(ctx.tenant_id, "approvals.changed", {"approval_id": result["id"], "action": "requested"})
    await safe_send(notifier, event)
    return result


@router.post("/{approval_id}/respond")
async def respond_endpoint(approval_id: str, body: ApprovalDecision, request: Request):
    """The approval RPC: approve converts to a project, reject returns the entry."""
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            result = respond_to_approval_request(db, ctx, approval_id, body.approved, body.manager_notes)
            return result, build_notifier_for_tenant(db, ctx.tenant_id)
        finally:
            db.close()

    result, notifier = await asyncio.to_thread(_sync)
    invalidate_live_metrics(ctx.tenant_id)
    await safe_broadcast(ctx.tenant_id, "approvals.changed", {
        "approval_id": approval_id,
        "action": "approved" if body.approved else "rejected",
    })
    await safe_broadcast(ctx.tenant_id, "pipeline.changed", {
        "entry_id": result["approval"]["pipeline_entry_id"],
        "new_status": result["new_status"],
    })
    await safe_send(notifier, NotificationEvent.approval_decided(
        customer=result["contact_name"] or "Unknown customer",
        approved=body.approved,
        manager=ctx.name,
        notes=body.manager_notes or "",
    ))
    return result
