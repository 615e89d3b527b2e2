"""
Sales pipeline endpoints.
GET    /api/pipeline/board                        - stage buckets for the board
POST   /api/pipeline/entries                      - create an entry
GET    /api/pipeline/entries/{entry_id}           - one entry
POST   /api/pipeline/entries/{entry_id}/transition - move to a status
POST   /api/pipeline/entries/{entry_id}/advance   - move to the next stage
GET    /api/pipeline/entries/{entry_id}/history   - status history
GET    /api/pipeline/entries/{entry_id}/activities - activity feed
POST   /api/pipeline/entries/{entry_id}/estimates - add an estimate
GET    /api/pipeline/rules                        - transition rules
POST   /api/pipeline/rules                        - create a rule (managers)
PATCH  /api/pipeline/rules/{rule_id}              - update a rule (managers)
DELETE /api/pipeline/rules/{rule_id}              - delete a rule (managers)
GET    /api/pipeline/validations                  - transition validations
POST   /api/pipeline/validations                  - create a validation (managers)
DELETE /api/pipeline/validations/{validation_id}  - delete a validation (managers)
"""

import asyncio
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Query, Request

from roofops.api.schemas import (
    AdvanceRequest, EntryCreate, EstimateCreate, RuleBody, TransitionRequest, ValidationBody,
)
from roofops.approvals import pending_requested_event
from roofops.auth import current_context
from roofops.database import get_db
from roofops.notifications.notifiers import build_notifier_for_tenant, safe_send
from roofops.pipeline.board import (
    BoardFilters,
    add_estimate,
    build_board,
    create_entry,
    entries_to_dicts,
    get_visible_entry,
    list_activities,
    list_history,
)
from roofops.pipeline.rules import (
    create_rule,
    create_validation,
    delete_rule,
    delete_validation,
    list_rules,
    list_validations,
    rule_to_dict,
    update_rule,
    validation_to_dict,
)
from roofops.pipeline.transitions import advance_entry, transition_entry
from roofops.websocket import safe_broadcast

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pipeline", tags=["pipeline"])


async def _after_transition(ctx, entry_id: str, result, notice) -> None:
    """Realtime events and the approval webhook that follow a status change."""
    await safe_broadcast(ctx.tenant_id, "pipeline.changed", {
        "entry_id": entry_id,
        "new_status": result.new_status,
        "is_backward": result.is_backward,
        "changed_by": ctx.user_id,
    })
    if result.approval_request_created:
        await safe_broadcast(ctx.tenant_id, "approvals.changed", {"entry_id": entry_id, "action": "requested"})
        if notice is not None:
            notifier, event = notice
            await safe_send(notifier, event)


def _approval_notice(db, ctx, entry_id: str, result):
    if not result.approval_request_created:
        return None
    event = pending_requested_event(db, ctx.tenant_id, entry_id)
    if event is None:
        return None
    return build_notifier_for_tenant(db, ctx.tenant_id), event


# ---------------------------------------------------------------------------
# Board / entries
# ---------------------------------------------------------------------------

@router.get("/board")
async def board_endpoint(
    request: Request,
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    sales_rep_id: Optional[str] = Query(None),
    location: Optional[str] = Query(None, description="City substring"),
    location_id: Optional[str] = Query(None),
):
    ctx = current_context(request)
    filters = BoardFilters(
        date_from=date_from, date_to=date_to, sales_rep_id=sales_rep_id,
        location=location, location_id=location_id,
    )

    def _sync():
        db = get_db()
        try:
            return build_board(db, ctx, filters)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/entries", status_code=201)
async def create_entry_endpoint(body: EntryCreate, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            entry = create_entry(
                db, ctx, body.contact_id,
                estimated_value=body.estimated_value, priority=body.priority,
                roof_type=body.roof_type, source=body.source,
                assigned_to=body.assigned_to, notes=body.notes,
            )
            return entries_to_dicts(db, ctx, [entry])[0]
        finally:
            db.close()

    result = await asyncio.to_thread(_sync)
    await safe_broadcast(ctx.tenant_id, "pipeline.changed", {"entry_id": result["id"], "new_status": "lead"})
    return result


@router.get("/entries/{entry_id}")
async def entry_endpoint(entry_id: str, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return entries_to_dicts(db, ctx, [get_visible_entry(db, ctx, entry_id)])[0]
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/entries/{entry_id}/transition")
async def transition_endpoint(entry_id: str, body: TransitionRequest, request: Request):
    """Move an entry to ``new_status`` (the board drag-and-drop handler)."""
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            result = transition_entry(
                db, ctx, entry_id, body.new_status,
                from_status=body.from_status, reason=body.reason,
            )
            return result, _approval_notice(db, ctx, entry_id, result)
        finally:
            db.close()

    result, notice = await asyncio.to_thread(_sync)
    await _after_transition(ctx, entry_id, result, notice)
    return result.to_dict()


@router.post("/entries/{entry_id}/advance")
async def advance_endpoint(entry_id: str, request: Request, body: Optional[AdvanceRequest] = None):
    ctx = current_context(request)
    reason = body.reason if body else None

    def _sync():
        db = get_db()
        try:
            result = advance_entry(db, ctx, entry_id, reason=reason)
            return result, _approval_notice(db, ctx, entry_id, result)
        finally:
            db.close()

    result, notice = await asyncio.to_thread(_sync)
    await _after_transition(ctx, entry_id, result, notice)
    return result.to_dict()


@router.get("/entries/{entry_id}/history")
async def history_endpoint(entry_id: str, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return list_history(db, ctx, entry_id)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/entries/{entry_id}/activities")
async def activities_endpoint(entry_id: str, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return list_activities(db, ctx, entry_id)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/entries/{entry_id}/estimates", status_code=201)
async def add_estimate_endpoint(entry_id: str, body: EstimateCreate, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            est = add_estimate(db, ctx, entry_id, body.selling_price, body.selected_tier)
            return {
                "id": est.id,
                "pipeline_entry_id": est.pipeline_entry_id,
                "selling_price": est.selling_price,
                "selected_tier": est.selected_tier,
                "created_at": est.created_at.isoformat() if est.created_at else None,
            }
        finally:
            db.close()

    result = await asyncio.to_thread(_sync)
    await safe_broadcast(ctx.tenant_id, "pipeline.changed", {"entry_id": entry_id, "estimate_id": result["id"]})
    return result


# ---------------------------------------------------------------------------
# Transition rules and validations
# ---------------------------------------------------------------------------

@router.get("/rules")
async def rules_endpoint(request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return [rule_to_dict(r) for r in list_rules(db, ctx)]
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/rules", status_code=201)
async def create_rule_endpoint(body: RuleBody, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return rule_to_dict(create_rule(db, ctx, body.model_dump(exclude_unset=True)))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.patch("/rules/{rule_id}")
async def update_rule_endpoint(rule_id: str, body: RuleBody, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return rule_to_dict(update_rule(db, ctx, rule_id, body.model_dump(exclude_unset=True)))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.delete("/rules/{rule_id}")
async def delete_rule_endpoint(rule_id: str, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            delete_rule(db, ctx, rule_id)
            return {"status": "deleted", "id": rule_id}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/validations")
async def validations_endpoint(request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return [validation_to_dict(v) for v in list_validations(db, ctx)]
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/validations", status_code=201)
async def create_validation_endpoint(body: ValidationBody, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return validation_to_dict(create_validation(db, ctx, body.model_dump()))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.delete("/validations/{validation_id}")
async def delete_validation_endpoint(validation_id: str, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            delete_validation(db, ctx, validation_id)
            return {"status": "deleted", "id": validation_id}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)
