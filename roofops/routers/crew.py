"""
Crew portal endpoints.
POST /api/crew/clock-in                                  - start a shift
POST /api/crew/clock-out                                 - end the open shift
GET  /api/crew/time/today                                - today's entries
GET  /api/crew/assignments                               - work orders
POST /api/crew/assignments                               - create a work order (dispatch roles)
GET  /api/crew/assignments/{assignment_id}               - one work order with completion status
POST /api/crew/assignments/{assignment_id}/status        - job status change
POST /api/crew/assignments/{assignment_id}/checklist/{item_id} - tick / untick a checklist item
POST /api/crew/location                                  - GPS ping
GET  /api/crew/locations                                 - latest ping per crew member (managers)
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Query, Request

from roofops.api.schemas import (
    AssignmentCreate, AssignmentStatusUpdate, ChecklistToggle, ClockInRequest, ClockOutRequest,
    LocationPing,
)
from roofops.auth import current_context
from roofops.crew.assignments import (
    assignment_to_dict,
    create_assignment,
    get_assignment,
    list_assignments,
    toggle_checklist_item,
    update_status,
)
from roofops.crew.gps import latest_locations, sync_location
from roofops.crew.timeclock import clock_in, clock_out, time_entry_to_dict, todays_entries
from roofops.database import get_db
from roofops.websocket import safe_broadcast

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/crew", tags=["crew"])


# ---------------------------------------------------------------------------
# Time clock
# ---------------------------------------------------------------------------

@router.post("/clock-in", status_code=201)
async def clock_in_endpoint(request: Request, body: Optional[ClockInRequest] = None):
    ctx = current_context(request)
    body = body or ClockInRequest()

    def _sync():
        db = get_db()
        try:
            entry = clock_in(
                db, ctx,
                location=body.location.model_dump() if body.location else None,
                assignment_id=body.assignment_id,
                notes=body.notes,
            )
            return time_entry_to_dict(entry)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/clock-out")
async def clock_out_endpoint(request: Request, body: Optional[ClockOutRequest] = None):
    ctx = current_context(request)
    location = body.location.model_dump() if body and body.location else None

    def _sync():
        db = get_db()
        try:
            return time_entry_to_dict(clock_out(db, ctx, location=location))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/time/today")
async def today_endpoint(request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return todays_entries(db, ctx)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------

@router.get("/assignments")
async def assignments_endpoint(
    request: Request,
    assigned_to: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    include_completed: bool = Query(False),
):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            rows = list_assignments(db, ctx, assigned_to, status, include_completed)
            return [assignment_to_dict(db, a, with_completion=False) for a in rows]
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/assignments", status_code=201)
async def create_assignment_endpoint(body: AssignmentCreate, request: Request):
    ctx = current_context(request)
    data = body.model_dump(exclude_unset=True)

    def _sync():
        db = get_db()
        try:
            return assignment_to_dict(db, create_assignment(db, ctx, data))
        finally:
            db.close()

    result = await asyncio.to_thread(_sync)
    await safe_broadcast(ctx.tenant_id, "crew.assignment", {"assignment_id": result["id"], "action": "created"})
    return result


@router.get("/assignments/{assignment_id}")
async def assignment_endpoint(assignment_id: str, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return assignment_to_dict(db, get_assignment(db, ctx, assignment_id))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/assignments/{assignment_id}/status")
async def assignment_status_endpoint(assignment_id: str, body: AssignmentStatusUpdate, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return assignment_to_dict(db, update_status(db, ctx, assignment_id, body.status))
        finally:
            db.close()

    result = await asyncio.to_thread(_sync)
    await safe_broadcast(ctx.tenant_id, "crew.assignment", {
        "assignment_id": assignment_id, "status": result["status"], "changed_by": ctx.user_id,
    })
    return result


@router.post("/assignments/{assignment_id}/checklist/{item_id}")
async def checklist_endpoint(assignment_id: str, item_id: str, body: ChecklistToggle, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            toggle_checklist_item(db, ctx, assignment_id, item_id, body.checked)
            return assignment_to_dict(db, get_assignment(db, ctx, assignment_id))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


# ---------------------------------------------------------------------------
# GPS
# ---------------------------------------------------------------------------

@router.post("/location")
async def location_endpoint(body: LocationPing, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return sync_location(
                db, ctx, body.latitude, body.longitude,
                accuracy=body.accuracy, heading=body.heading, speed=body.speed,
                recorded_at=body.recorded_at,
            )
        finally:
            db.close()

    result = await asyncio.to_thread(_sync)
    if result["accepted"]:
        await safe_broadcast(ctx.tenant_id, "crew.location", {
            "crew_member_id": ctx.user_id,
            "name": ctx.name,
            "latitude": body.latitude,
            "longitude": body.longitude,
            "accuracy": body.accuracy,
        })
    return result


@router.get("/locations")
async def locations_endpoint(request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return latest_locations(db, ctx)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)
