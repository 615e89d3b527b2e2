"""
Company, user and location endpoints.
GET   /api/tenant                      - the caller's company
GET   /api/users                       - users of the company
POST  /api/users                       - create a user (admin roles)
POST  /api/users/{user_id}/deactivate  - deactivate a user (admin roles)
GET   /api/locations                   - branch offices
POST  /api/locations                   - create a location (admin roles)
PATCH /api/locations/{location_id}     - update a location (admin roles)
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Query, Request

from roofops.api.schemas import LocationBody, UserCreate
from roofops.auth import current_context, profile_to_dict
from roofops.database import get_db
from roofops.tenancy import (
    create_location,
    create_user,
    deactivate_user,
    get_tenant,
    list_locations,
    list_users,
    location_to_dict,
    tenant_to_dict,
    update_location,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tenancy"])


@router.get("/api/tenant")
async def tenant_endpoint(request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return tenant_to_dict(get_tenant(db, ctx))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/api/users")
async def users_endpoint(
    request: Request,
    role: Optional[str] = Query(None),
    include_inactive: bool = Query(False),
):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return [profile_to_dict(p) for p in list_users(db, ctx, role, include_inactive)]
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/api/users", status_code=201)
async def create_user_endpoint(body: UserCreate, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            profile = create_user(
                db, ctx, body.email, body.password, body.role,
                first_name=body.first_name, last_name=body.last_name,
                phone=body.phone, location_id=body.location_id,
            )
            return profile_to_dict(profile)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/api/users/{user_id}/deactivate")
async def deactivate_user_endpoint(user_id: str, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return profile_to_dict(deactivate_user(db, ctx, user_id))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/api/locations")
async def locations_endpoint(request: Request, include_inactive: bool = Query(False)):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return [location_to_dict(loc) for loc in list_locations(db, ctx, include_inactive)]
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/api/locations", status_code=201)
async def create_location_endpoint(body: LocationBody, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return location_to_dict(create_location(db, ctx, body.model_dump(exclude_unset=True)))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.patch("/api/locations/{location_id}")
async def update_location_endpoint(location_id: str, body: LocationBody, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            loc = update_location(db, ctx, location_id, body.model_dump(exclude_unset=True))
            return location_to_dict(loc)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)
