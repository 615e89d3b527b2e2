"""
Contacts (homeowners / businesses) and their communication log.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from roofops.core.exceptions import NotFoundError, ValidationFailedError
from roofops.core.utils import format_address, full_name, utcnow, valid_coordinates
from roofops.database import CommunicationHistory, Contact
from roofops.domain.models import UserContext

logger = logging.getLogger(__name__)

CONTACT_FIELDS = (
    "first_name", "last_name", "company_name", "email", "phone",
    "address_street", "address_city", "address_state", "address_zip",
    "latitude", "longitude", "lead_source", "qualification_status",
    "tags", "notes", "type", "location_id",
)


def contact_display_name(contact: Optional[Contact]) -> str:
    if contact is None:
        return ""
    return full_name(contact.first_name, contact.last_name) or (contact.company_name or "")


def contact_to_dict(c: Contact) -> Dict[str, Any]:
    return {
        "id": c.id,
        "name": contact_display_name(c),
        "first_name": c.first_name,
        "last_name": c.last_name,
        "company_name": c.company_name,
        "email": c.email,
        "phone": c.phone,
        "address_street": c.address_street,
        "address_city": c.address_city,
        "address_state": c.address_state,
        "address_zip": c.address_zip,
        "address": format_address(c.address_street, c.address_city, c.address_state, c.address_zip),
        "latitude": c.latitude,
        "longitude": c.longitude,
        "lead_source": c.lead_source,
        "qualification_status": c.qualification_status,
        "type": c.type,
        "tags": c.tags or [],
        "notes": c.notes,
        "location_id": c.location_id,
        "created_by": c.created_by,
        "created_at": c.created_at.isoformat() if c.created_at else None,
        "updated_at": c.updated_at.isoformat() if c.updated_at else None,
    }


def _validate(contact: Contact) -> None:
    if not any((contact.first_name, contact.last_name, contact.company_name)):
        raise ValidationFailedError("A contact needs a first name, last name or company name")
    if (contact.latitude is None) != (contact.longitude is None):
        raise ValidationFailedError("Latitude and longitude must be given together")
    if contact.latitude is not None and not valid_coordinates(contact.latitude, contact.longitude):
        raise ValidationFailedError("Invalid coordinates")
    if contact.tags is not None and not isinstance(contact.tags, list):
        raise ValidationFailedError("Tags must be a list")


def create_contact(db: Session, ctx: UserContext, data: Dict[str, Any]) -> Contact:
    contact = Contact(tenant_id=ctx.tenant_id, created_by=ctx.user_id, location_id=ctx.location_id)
    for key in CONTACT_FIELDS:
        value = data.get(key)
        if isinstance(value, str):
            value = value.strip() or None
        if value is not None:
            setattr(contact, key, value)
    if contact.email:
        contact.email = contact.email.lower()
    _validate(contact)
    db.add(contact)
    db.commit()
    logger.info("Contact %s created by %s", contact.id, ctx.user_id)
    return contact


def get_contact(db: Session, ctx: UserContext, contact_id: str) -> Contact:
    contact = (
        db.query(Contact)
        .filter(Contact.tenant_id == ctx.tenant_id, Contact.id == contact_id)
        .first()
    )
    if contact is None:
        raise NotFoundError("Contact not found")
    return contact


def update_contact(db: Session, ctx: UserContext, contact_id: str, data: Dict[str, Any]) -> Contact:
    """Partial update: only keys present in ``data`` are written."""
    contact = get_contact(db, ctx, contact_id)
    for key in CONTACT_FIELDS:
        if key in data:
            value = data[key]
            if isinstance(value, str):
                value = value.strip() or None
            setattr(contact, key, value)
    if contact.email:
        contact.email = contact.email.lower()
    _validate(contact)
    contact.updated_at = utcnow()
    db.commit()
    return contact


def list_contacts(
    db: Session,
    ctx: UserContext,
    q: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Contact]:
    query = db.query(Contact).filter(Contact.tenant_id == ctx.tenant_id)
    if q and q.strip():
        like = f"%{q.strip()}%"
        query = query.filter(or_(
            Contact.first_name.ilike(like),
            Contact.last_name.ilike(like),
            Contact.company_name.ilike(like),
            Contact.email.ilike(like),
            Contact.phone.ilike(like),
            Contact.address_city.ilike(like),
        ))
    return (
        query.order_by(Contact.created_at.desc())
        .offset(max(0, offset))
        .limit(max(1, min(limit, 500)))
        .all()
    )


# ---------------------------------------------------------------------------
# Communication log
# ---------------------------------------------------------------------------

def log_communication(
    db: Session,
    ctx: UserContext,
    contact_id: Optional[str],
    subject: str,
    content: str,
    communication_type: str = "system_note",
    pipeline_entry_id: Optional[str] = None,
    project_id: Optional[str] = None,
) -> CommunicationHistory:
    """Add a log row; the caller commits."""
    row = CommunicationHistory(
        tenant_id=ctx.tenant_id,
        contact_id=contact_id,
        pipeline_entry_id=pipeline_entry_id,
        project_id=project_id,
        communication_type=communication_type,
        subject=subject,
        content=content,
        created_by=ctx.user_id,
    )
    db.add(row)
    return row


def list_communications(db: Session, ctx: UserContext, contact_id: str) -> List[Dict[str, Any]]:
    get_contact(db, ctx, contact_id)
    rows = (
        db.query(CommunicationHistory)
        .filter(
            CommunicationHistory.tenant_id == ctx.tenant_id,
            CommunicationHistory.contact_id == contact_id,
        )
        .order_by(CommunicationHistory.created_at.desc())
        .all()
    )
    return [
        {
            "id": r.id,
            "communication_type": r.communication_type,
            "direction": r.direction,
            "subject": r.subject,
            "content": r.content,
            "pipeline_entry_id": r.pipeline_entry_id,
            "project_id": r.project_id,
            "created_by": r.created_by,
            "created_at": r.created_at.isoformat() if r.created_at else None,
        }
        for r in rows
    ]
