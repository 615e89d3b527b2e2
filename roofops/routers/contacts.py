"""
Contact endpoints.
GET   /api/contacts                          - search contacts
POST  /api/contacts                          - create a contact
GET   /api/contacts/{contact_id}             - one contact
PATCH /api/contacts/{contact_id}             - partial update
GET   /api/contacts/{contact_id}/communications - communication log
POST  /api/contacts/{contact_id}/notes       - add an internal note
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Query, Request

from roofops.api.schemas import ContactBody, NoteCreate
from roofops.auth import current_context
from roofops.contacts import (
    contact_to_dict,
    create_contact,
    get_contact,
    list_communications,
    list_contacts,
    log_communication,
    update_contact,
)
from roofops.core.exceptions import ValidationFailedError
from roofops.database import get_db

router = APIRouter(prefix="/api/contacts", tags=["contacts"])


@router.get("")
async def contacts_endpoint(
    request: Request,
    q: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return [contact_to_dict(c) for c in list_contacts(db, ctx, q, limit, offset)]
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("", status_code=201)
async def create_contact_endpoint(body: ContactBody, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return contact_to_dict(create_contact(db, ctx, body.model_dump(exclude_unset=True)))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/{contact_id}")
async def contact_endpoint(contact_id: str, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return contact_to_dict(get_contact(db, ctx, contact_id))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.patch("/{contact_id}")
async def update_contact_endpoint(contact_id: str, body: ContactBody, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            contact = update_contact(db, ctx, contact_id, body.model_dump(exclude_unset=True))
            return contact_to_dict(contact)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/{contact_id}/communications")
async def communications_endpoint(contact_id: str, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return list_communications(db, ctx, contact_id)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/{contact_id}/notes", status_code=201)
async def add_note_endpoint(contact_id: str, body: NoteCreate, request: Request):
    ctx = current_context(request)
    if not body.content.strip():
        raise ValidationFailedError("Note content is required")

    def _sync():
        db = get_db()
        try:
            get_contact(db, ctx, contact_id)
            row = log_communication(
                db, ctx, contact_id, body.subject, body.content.strip(),
                communication_type="internal",
            )
            db.commit()
            return {"id": row.id, "status": "ok"}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)
