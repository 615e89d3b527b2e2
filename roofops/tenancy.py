"""
Tenants, locations and user accounts.

``provision_tenant`` is the only entry point that works without a
``UserContext``; everything else is scoped to the caller's tenant and gated
on admin roles.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from roofops.auth import hash_password, profile_to_dict
from roofops.core.constants import DEFAULT_DYNAMIC_TAGS, ROLE_RANK
from roofops.core.exceptions import (
    ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError,
)
from roofops.database import DynamicTag, Location, Profile, Tenant
from roofops.domain.enums import AppRole
from roofops.domain.models import UserContext

logger = logging.getLogger(__name__)

_SUBDOMAIN_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,62}[a-z0-9])?$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8

_LOCATION_FIELDS = (
    "name", "address_street", "address_city", "address_state",
    "address_zip", "phone", "manager_id", "is_active",
)


def _normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not _EMAIL_RE.match(email):
        raise ValidationFailedError("A valid email address is required")
    return email


def _check_password(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailedError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )


def _ensure_email_free(db: Session, email: str) -> None:
    if db.query(Profile).filter(Profile.email == email).first() is not None:
        raise ConflictError(f"An account already exists for {email}")


def _require_admin(ctx: UserContext) -> None:
    if not ctx.is_admin:
        raise PermissionDeniedError("Only administrators can manage users and locations")


def seed_dynamic_tags(db: Session, tenant_id: str) -> int:
    """Insert the default dynamic tags a tenant does not already have."""
    existing = {
        t.token for t in db.query(DynamicTag.token).filter(DynamicTag.tenant_id == tenant_id)
    }
    added = 0
    for token, label, path in DEFAULT_DYNAMIC_TAGS:
        if token in existing:
            continue
        db.add(DynamicTag(
            tenant_id=tenant_id, token=token, label=label, json_path=path,
            is_frequently_used=token.split(".")[-1] in {"first_name", "address", "name"},
        ))
        added += 1
    return added


# ---------------------------------------------------------------------------
# Tenants
# ---------------------------------------------------------------------------

def provision_tenant(
    db: Session,
    name: str,
    subdomain: str,
    owner_email: str,
    owner_password: str,
    first_name: str = "",
    last_name: str = "",
) -> Dict[str, Any]:
    """Create a tenant, its owner account and a default location."""
    name = (name or "").strip()
    subdomain = (subdomain or "").strip().lower()
    if not name:
        raise ValidationFailedError("Company name is required")
    if not _SUBDOMAIN_RE.match(subdomain):
        raise ValidationFailedError("Subdomain must be lowercase letters, digits and dashes")
    email = _normalize_email(owner_email)
    _check_password(owner_password)
    if db.query(Tenant).filter(Tenant.subdomain == subdomain).first() is not None:
        raise ConflictError(f"Subdomain {subdomain} is taken")
    _ensure_email_free(db, email)

    tenant = Tenant(name=name, subdomain=subdomain, email=email)
    db.add(tenant)
    db.flush()

    location = Location(tenant_id=tenant.id, name=f"{name} HQ")
    db.add(location)
    db.flush()

    owner = Profile(
        tenant_id=tenant.id,
        email=email,
        password_hash=hash_password(owner_password),
        first_name=first_name or None,
        last_name=last_name or None,
        role=AppRole.OWNER.value,
        location_id=location.id,
    )
    db.add(owner)
    db.flush()
    location.manager_id = owner.id
    seed_dynamic_tags(db, tenant.id)
    db.commit()

    logger.info("Provisioned tenant %s (%s) with owner %s", tenant.name, tenant.id, email)
    return {
        "tenant": tenant_to_dict(tenant),
        "owner": profile_to_dict(owner),
        "location": location_to_dict(location),
    }


def tenant_to_dict(tenant: Tenant) -> Dict[str, Any]:
    return {
        "id": tenant.id,
        "name": tenant.name,
        "subdomain": tenant.subdomain,
        "phone": tenant.phone,
        "email": tenant.email,
        "is_active": tenant.is_active,
        "created_at": tenant.created_at.isoformat() if tenant.created_at else None,
    }


def get_tenant(db: Session, ctx: UserContext) -> Tenant:
    tenant = db.query(Tenant).filter(Tenant.id == ctx.tenant_id).first()
    if tenant is None:
        raise NotFoundError("Tenant not found")
    return tenant


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def create_user(
    db: Session,
    ctx: UserContext,
    email: str,
    password: str,
    role: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    phone: Optional[str] = None,
    location_id: Optional[str] = None,
) -> Profile:
    _require_admin(ctx)
    try:
        role = AppRole(role).value
    except ValueError:
        raise ValidationFailedError(f"Unknown role: {role}")
    if ctx.role != AppRole.MASTER.value and ROLE_RANK[role] > ROLE_RANK[AppRole.OWNER.value]:
        raise PermissionDeniedError("Only a master account can create that role")
    if ctx.role != AppRole.MASTER.value and ROLE_RANK[role] > ROLE_RANK[ctx.role]:
        raise PermissionDeniedError("Cannot create an account with a higher role than your own")
    email = _normalize_email(email)
    _check_password(password)
    _ensure_email_free(db, email)
    if location_id:
        get_location(db, ctx, location_id)

    profile = Profile(
        tenant_id=ctx.tenant_id,
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        role=role,
        location_id=location_id or ctx.location_id,
    )
    db.add(profile)
    db.commit()
    logger.info("User %s created %s account %s", ctx.user_id, role, email)
    return profile


def list_users(
    db: Session,
    ctx: UserContext,
    role: Optional[str] = None,
    include_inactive: bool = False,
) -> List[Profile]:
    q = db.query(Profile).filter(Profile.tenant_id == ctx.tenant_id)
    if role:
        q = q.filter(Profile.role == role)
    if not include_inactive:
        q = q.filter(Profile.is_active.is_(True))
    return q.order_by(Profile.first_name.asc(), Profile.last_name.asc()).all()


def deactivate_user(db: Session, ctx: UserContext, user_id: str) -> Profile:
    _require_admin(ctx)
    if user_id == ctx.user_id:
        raise ValidationFailedError("You cannot deactivate your own account")
    profile = (
        db.query(Profile)
        .filter(Profile.tenant_id == ctx.tenant_id, Profile.id == user_id)
        .first()
    )
    if profile is None:
        raise NotFoundError("User not found")
    if ctx.role != AppRole.MASTER.value and ROLE_RANK[profile.role] > ROLE_RANK[ctx.role]:
        raise PermissionDeniedError("Cannot deactivate an account with a higher role than your own")
    profile.is_active = False
    db.commit()
    logger.info("User %s deactivated %s", ctx.user_id, profile.email)
    return profile


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------

def location_to_dict(loc: Location) -> Dict[str, Any]:
    return {
        "id": loc.id,
        "name": loc.name,
        "address_street": loc.address_street,
        "address_city": loc.address_city,
        "address_state": loc.address_state,
        "address_zip": loc.address_zip,
        "phone": loc.phone,
        "manager_id": loc.manager_id,
        "is_active": loc.is_active,
    }


def list_locations(db: Session, ctx: UserContext, include_inactive: bool = False) -> List[Location]:
    q = db.query(Location).filter(Location.tenant_id == ctx.tenant_id)
    if not include_inactive:
        q = q.filter(Location.is_active.is_(True))
    return q.order_by(Location.name.asc()).all()


def get_location(db: Session, ctx: UserContext, location_id: str) -> Location:
    loc = (
        db.query(Location)
        .filter(Location.tenant_id == ctx.tenant_id, Location.id == location_id)
        .first()
    )
    if loc is None:
        raise NotFoundError("Location not found")
    return loc


def create_location(db: Session, ctx: UserContext, data: Dict[str, Any]) -> Location:
    _require_admin(ctx)
    if not (data.get("name") or "").strip():
        raise ValidationFailedError("Location name is required")
    loc = Location(tenant_id=ctx.tenant_id)
    for key in _LOCATION_FIELDS:
        if key in data and data[key] is not None:
            setattr(loc, key, data[key])
    db.add(loc)
    db.commit()
    return loc


def update_location(db: Session, ctx: UserContext, location_id: str, data: Dict[str, Any]) -> Location:
    _require_admin(ctx)
    loc = get_location(db, ctx, location_id)
    for key in _LOCATION_FIELDS:
        if key in data:
            setattr(loc, key, data[key])
    if not (loc.name or "").strip():
        raise ValidationFailedError("Location name is required")
    db.commit()
    return loc
