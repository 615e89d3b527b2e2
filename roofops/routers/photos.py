"""
Photo, markup and document endpoints.
POST /api/photos                    - upload a photo (multipart)
GET  /api/photos                    - list photos by contact / entry / assignment
GET  /api/photos/{photo_id}         - photo metadata
GET  /api/photos/{photo_id}/file    - original (or annotated) image bytes
POST /api/photos/{photo_id}/markup  - replay markup actions and save the annotated image
POST /api/documents                 - upload a document for a pipeline entry (multipart)
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, File, Form, Query, Request, UploadFile
from fastapi.responses import Response

from roofops.api.schemas import MarkupRequest
from roofops.auth import current_context
from roofops.database import get_db
from roofops.photos import storage
from roofops.photos.service import (
    apply_markup,
    document_to_dict,
    get_photo,
    list_photos,
    photo_to_dict,
    upload_document,
    upload_photo,
)
from roofops.websocket import safe_broadcast

logger = logging.getLogger(__name__)

router = APIRouter(tags=["photos"])


@router.post("/api/photos", status_code=201)
async def upload_photo_endpoint(
    request: Request,
    file: UploadFile = File(...),
    contact_id: Optional[str] = Form(None),
    pipeline_entry_id: Optional[str] = Form(None),
    assignment_id: Optional[str] = Form(None),
    bucket_key: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    latitude: Optional[float] = Form(None),
    longitude: Optional[float] = Form(None),
):
    ctx = current_context(request)
    data = await file.read()

    def _sync():
        db = get_db()
        try:
            photo = upload_photo(
                db, ctx, data, file.filename or "", file.content_type or "",
                contact_id=contact_id, pipeline_entry_id=pipeline_entry_id,
                assignment_id=assignment_id, bucket_key=bucket_key, category=category,
                latitude=latitude, longitude=longitude,
            )
            return photo_to_dict(photo)
        finally:
            db.close()

    result = await asyncio.to_thread(_sync)
    if assignment_id:
        await safe_broadcast(ctx.tenant_id, "crew.assignment", {
            "assignment_id": assignment_id, "photo_id": result["id"], "bucket_key": bucket_key,
        })
    return result


@router.get("/api/photos")
async def photos_endpoint(
    request: Request,
    contact_id: Optional[str] = Query(None),
    pipeline_entry_id: Optional[str] = Query(None),
    assignment_id: Optional[str] = Query(None),
):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            rows = list_photos(db, ctx, contact_id, pipeline_entry_id, assignment_id)
            return [photo_to_dict(p) for p in rows]
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/api/photos/{photo_id}")
async def photo_endpoint(photo_id: str, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return photo_to_dict(get_photo(db, ctx, photo_id))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/api/photos/{photo_id}/file")
async def photo_file_endpoint(photo_id: str, request: Request, annotated: bool = Query(False)):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            photo = get_photo(db, ctx, photo_id)
            if annotated and photo.annotated_path:
                return storage.read_bytes(photo.annotated_path), "image/jpeg"
            return storage.read_bytes(photo.file_path), photo.content_type or "application/octet-stream"
        finally:
            db.close()

    content, media_type = await asyncio.to_thread(_sync)
    return Response(content=content, media_type=media_type)


@router.post("/api/photos/{photo_id}/markup")
async def markup_endpoint(photo_id: str, body: MarkupRequest, request: Request):
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return apply_markup(db, ctx, photo_id, body.actions)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/api/documents", status_code=201)
async def upload_document_endpoint(
    request: Request,
    file: UploadFile = File(...),
    pipeline_entry_id: str = Form(...),
    document_type: str = Form(...),
):
    ctx = current_context(request)
    data = await file.read()

    def _sync():
        db = get_db()
        try:
            doc = upload_document(
                db, ctx, pipeline_entry_id, document_type, data,
                file.filename or "", file.content_type or "",
            )
            return document_to_dict(doc)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)
