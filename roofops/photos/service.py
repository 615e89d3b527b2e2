"""
Photo and document records: upload, listing and markup.
"""

import io
import logging
from typing import Any, Dict, List, Optional

from PIL import Image, UnidentifiedImageError
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from roofops.contacts import get_contact
from roofops.core.constants import IMAGE_CONTENT_TYPES
from roofops.core.exceptions import NotFoundError, ValidationFailedError
from roofops.core.utils import utcnow, valid_coordinates
from roofops.crew.assignments import get_assignment
from roofops.database import CrewAssignment, Document, Photo, PhotoBucket
from roofops.domain.models import UserContext
from roofops.photos import storage
from roofops.photos.markup import MarkupCanvas
from roofops.pipeline.board import get_visible_entry

logger = logging.getLogger(__name__)

PHOTO_BUCKET = "photos"
ANNOTATED_BUCKET = "annotated"
DOCUMENT_BUCKET = "documents"


def photo_to_dict(p: Photo) -> Dict[str, Any]:
    return {
        "id": p.id,
        "contact_id": p.contact_id,
        "pipeline_entry_id": p.pipeline_entry_id,
        "assignment_id": p.assignment_id,
        "bucket_key": p.bucket_key,
        "category": p.category,
        "file_path": p.file_path,
        "annotated_path": p.annotated_path,
        "original_name": p.original_name,
        "content_type": p.content_type,
        "latitude": p.latitude,
        "longitude": p.longitude,
        "uploaded_by": p.uploaded_by,
        "created_at": p.created_at.isoformat() if p.created_at else None,
    }


def document_to_dict(d: Document) -> Dict[str, Any]:
    return {
        "id": d.id,
        "pipeline_entry_id": d.pipeline_entry_id,
        "document_type": d.document_type,
        "file_path": d.file_path,
        "original_name": d.original_name,
        "content_type": d.content_type,
        "uploaded_by": d.uploaded_by,
        "created_at": d.created_at.isoformat() if d.created_at else None,
    }


def _check_image(data: bytes, content_type: str) -> None:
    if (content_type or "").lower() not in IMAGE_CONTENT_TYPES:
        raise ValidationFailedError(f"Unsupported photo type: {content_type or 'unknown'}")
    if content_type.lower() == "image/heic":
        return
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValidationFailedError(f"File is not a readable image: {exc}")


def upload_photo(
    db: Session,
    ctx: UserContext,
    data: bytes,
    filename: str,
    content_type: str,
    contact_id: Optional[str] = None,
    pipeline_entry_id: Optional[str] = None,
    assignment_id: Optional[str] = None,
    bucket_key: Optional[str] = None,
    category: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
) -> Photo:
    if not (contact_id or pipeline_entry_id or assignment_id):
        raise ValidationFailedError("A photo must be attached to a contact, pipeline entry or assignment")
    if contact_id:
        get_contact(db, ctx, contact_id)
    if pipeline_entry_id:
        entry = get_visible_entry(db, ctx, pipeline_entry_id)
        contact_id = contact_id or entry.contact_id
    if assignment_id:
        assignment = get_assignment(db, ctx, assignment_id)
        if bucket_key:
            bucket = (
                db.query(PhotoBucket)
                .filter(PhotoBucket.assignment_id == assignment.id, PhotoBucket.key == bucket_key)
                .first()
            )
            if bucket is None:
                raise ValidationFailedError(f"Assignment has no photo bucket '{bucket_key}'")
    elif bucket_key:
        raise ValidationFailedError("bucket_key only applies to assignment photos")
    if (latitude is None) != (longitude is None) or (
        latitude is not None and not valid_coordinates(latitude, longitude)
    ):
        raise ValidationFailedError("Invalid photo coordinates")

    _check_image(data, content_type)
    path = storage.save_bytes(ctx.tenant_id, PHOTO_BUCKET, data, filename, content_type)
    photo = Photo(
        tenant_id=ctx.tenant_id,
        contact_id=contact_id,
        pipeline_entry_id=pipeline_entry_id,
        assignment_id=assignment_id,
        bucket_key=bucket_key,
        category=category,
        file_path=path,
        original_name=filename,
        content_type=content_type,
        latitude=latitude,
        longitude=longitude,
        uploaded_by=ctx.user_id,
    )
    db.add(photo)
    db.commit()
    logger.info("Photo %s uploaded by %s (%d bytes)", photo.id, ctx.user_id, len(data))
    return photo


def upload_document(
    db: Session,
    ctx: UserContext,
    pipeline_entry_id: str,
    document_type: str,
    data: bytes,
    filename: str,
    content_type: str,
) -> Document:
    get_visible_entry(db, ctx, pipeline_entry_id)
    document_type = (document_type or "").strip()
    if not document_type:
        raise ValidationFailedError("document_type is required")
    path = storage.save_bytes(ctx.tenant_id, DOCUMENT_BUCKET, data, filename, content_type)
    doc = Document(
        tenant_id=ctx.tenant_id,
        pipeline_entry_id=pipeline_entry_id,
        document_type=document_type,
        file_path=path,
        original_name=filename,
        content_type=content_type,
        uploaded_by=ctx.user_id,
    )
    db.add(doc)
    db.commit()
    return doc


def _scoped_photos(db: Session, ctx: UserContext):
    """Tenant photos; crew are limited to their own work orders and uploads."""
    q = db.query(Photo).filter(Photo.tenant_id == ctx.tenant_id)
    if ctx.is_crew:
        own_jobs = select(CrewAssignment.id).where(
            CrewAssignment.tenant_id == ctx.tenant_id,
            CrewAssignment.assigned_to == ctx.user_id,
        )
        q = q.filter(or_(Photo.assignment_id.in_(own_jobs), Photo.uploaded_by == ctx.user_id))
    return q


def list_photos(
    db: Session,
    ctx: UserContext,
    contact_id: Optional[str] = None,
    pipeline_entry_id: Optional[str] = None,
    assignment_id: Optional[str] = None,
) -> List[Photo]:
    q = _scoped_photos(db, ctx)
    if contact_id:
        q = q.filter(Photo.contact_id == contact_id)
    if pipeline_entry_id:
        get_visible_entry(db, ctx, pipeline_entry_id)
        q = q.filter(Photo.pipeline_entry_id == pipeline_entry_id)
    if assignment_id:
        get_assignment(db, ctx, assignment_id)
        q = q.filter(Photo.assignment_id == assignment_id)
    return q.order_by(Photo.created_at.desc()).all()


def get_photo(db: Session, ctx: UserContext, photo_id: str) -> Photo:
    photo = _scoped_photos(db, ctx).filter(Photo.id == photo_id).first()
    if photo is None:
        raise NotFoundError("Photo not found")
    return photo


def apply_markup(db: Session, ctx: UserContext, photo_id: str, actions: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Replay ``actions`` over the original photo and save the result as its annotated image."""
    if not isinstance(actions, list) or not actions:
        raise ValidationFailedError("At least one markup action is required")
    photo = get_photo(db, ctx, photo_id)
    canvas = MarkupCanvas.from_bytes(storage.read_bytes(photo.file_path))
    canvas.replay(actions)

    old_path = photo.annotated_path
    photo.annotated_path = storage.save_bytes(
        ctx.tenant_id, ANNOTATED_BUCKET, canvas.to_jpeg_bytes(),
        f"{photo.id}.jpg", "image/jpeg",
    )
    db.commit()
    if old_path:
        storage.delete(old_path)
    logger.info("Photo %s annotated by %s (%d actions)", photo.id, ctx.user_id, len(actions))
    return {
        "photo": photo_to_dict(photo),
        "width": canvas.size[0],
        "height": canvas.size[1],
        "history_depth": canvas.history_depth,
        "history_index": canvas.history_index,
        "saved_at": utcnow().isoformat(),
    }
