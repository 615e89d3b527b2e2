"""
Email/password authentication for RoofOps.

Flow:
  1. Client POSTs credentials to /api/auth/login  -> token issued
  2. All /api/* routes (except /api/auth/* and /api/health) require valid token
  3. Frontend checks /api/auth/me to see if logged in

Authentication supports two modes:
  - Bearer token via Authorization header (cross-domain SPA deployment)
  - Signed session cookie (same-origin dev / backward compatibility)

Configuration is read from roofops.config (see config.py).
"""

import asyncio
import base64
import hashlib
import hmac
import json
import logging
import secrets
import time
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from roofops import config
from roofops.core.exceptions import AuthenticationError, RateLimitedError
from roofops.core.utils import full_name, utcnow
from roofops.database import Profile, Tenant, get_db
from roofops.domain.models import UserContext
from roofops.rate_limiter import check_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

COOKIE_NAME = "roofops_session"
PASSWORD_SCHEME = "pbkdf2_sha256"


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str, iterations: Optional[int] = None) -> str:
    """Return ``pbkdf2_sha256$<iterations>$<salt>$<hex digest>``."""
    iterations = iterations or config.PASSWORD_HASH_ITERATIONS
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), iterations)
    return f"{PASSWORD_SCHEME}${iterations}${salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        scheme, iterations, salt, expected = stored.split("$", 3)
    except (AttributeError, ValueError):
        return False
    if scheme != PASSWORD_SCHEME:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


# ---------------------------------------------------------------------------
# HMAC-signed session tokens (no external JWT dependency)
# ---------------------------------------------------------------------------

def _sign(payload_bytes: bytes) -> str:
    """Create HMAC-SHA256 signature."""
    return hmac.new(config.AUTH_SECRET.encode(), payload_bytes, hashlib.sha256).hexdigest()


def create_token(profile: Profile, expires_in: Optional[int] = None) -> str:
    """Create a signed session token for a profile."""
    payload = {
        "sub": profile.id,
        "tenant_id": profile.tenant_id,
        "role": profile.role,
        "email": profile.email,
        "exp": int(time.time()) + (expires_in or config.SESSION_EXPIRY_SECONDS),
    }
    payload_b64 = base64.urlsafe_b64encode(json.dumps(payload).encode()).decode()
    sig = _sign(payload_b64.encode())
    return f"{payload_b64}.{sig}"


def decode_token(token: str) -> Optional[dict]:
    """Decode and verify a signed session token.  Bad tokens decode to None."""
    if not token:
        return None
    parts = token.split(".", 1)
    if len(parts) != 2:
        return None
    payload_b64, sig = parts
    expected_sig = _sign(payload_b64.encode())
    if not hmac.compare_digest(sig.encode("utf-8"), expected_sig.encode()):
        return None
    try:
        payload = json.loads(base64.urlsafe_b64decode(payload_b64))
    except (ValueError, TypeError):
        return None
    if not isinstance(payload, dict) or payload.get("exp", 0) < time.time():
        return None
    return payload


def get_current_user(request: Request) -> Optional[dict]:
    """Extract the token payload from Bearer header or session cookie."""
    # Check Authorization: Bearer header first (cross-domain)
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        user = decode_token(auth_header[7:])
        if user:
            return user
    # Fall back to cookie (same-origin)
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return decode_token(token)
    return None


# ---------------------------------------------------------------------------
# Auth middleware helpers
# ---------------------------------------------------------------------------

PUBLIC_PREFIXES = ("/api/auth/", "/api/health", "/docs", "/openapi.json", "/ws/")


def requires_auth(request: Request) -> bool:
    """Return True if this request path needs authentication."""
    path = request.url.path
    for prefix in PUBLIC_PREFIXES:
        if path.startswith(prefix):
            return False
    return path.startswith("/api/")


def resolve_user_context(payload: Optional[dict]) -> Optional[UserContext]:
    """Load the live profile behind a token payload.

    Returns None when the profile no longer exists, was deactivated, or moved
    tenants, so revoked accounts lose access before their token expires.
    """
    if not payload or not payload.get("sub"):
        return None
    db = get_db()
    try:
        profile = db.query(Profile).filter(Profile.id == payload["sub"]).first()
        if profile is None or not profile.is_active:
            return None
        if profile.tenant_id != payload.get("tenant_id"):
            return None
        return UserContext(
            user_id=profile.id,
            tenant_id=profile.tenant_id,
            role=profile.role,
            name=full_name(profile.first_name, profile.last_name) or profile.email,
            email=profile.email,
            location_id=profile.location_id,
        )
    finally:
        db.close()


def current_context(request: Request) -> UserContext:
    """The ``UserContext`` attached by the middleware; 401 when absent."""
    ctx = getattr(request.state, "user_ctx", None)
    if ctx is None:
        raise AuthenticationError("Not authenticated.")
    return ctx


def profile_to_dict(profile: Profile) -> dict:
    return {
        "id": profile.id,
        "tenant_id": profile.tenant_id,
        "email": profile.email,
        "first_name": profile.first_name,
        "last_name": profile.last_name,
        "name": full_name(profile.first_name, profile.last_name),
        "phone": profile.phone,
        "role": profile.role,
        "location_id": profile.location_id,
        "is_active": profile.is_active,
    }


def authenticate(db, email: str, password: str) -> Profile:
    """Check credentials; raises ``AuthenticationError`` on any mismatch."""
    email = (email or "").strip().lower()
    profile = db.query(Profile).filter(Profile.email == email).first()
    if profile is None or not verify_password(password or "", profile.password_hash):
        raise AuthenticationError("Invalid email or password.")
    if not profile.is_active:
        raise AuthenticationError("Account is deactivated.")
    tenant = db.query(Tenant).filter(Tenant.id == profile.tenant_id).first()
    if tenant is None or not tenant.is_active:
        raise AuthenticationError("Company account is inactive.")
    profile.last_login_at = utcnow()
    db.commit()
    return profile


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

class LoginRequest(BaseModel):
    email: str
    password: str


@router.post("/login")
async def login(body: LoginRequest):
    """Exchange email + password for a session token."""
    allowed, _ = check_rate_limit("login", body.email.strip(), config.LOGIN_RATE_LIMIT_PER_MINUTE)
    if not allowed:
        logger.warning("Login rate limit hit for %s", body.email)
        raise RateLimitedError("Too many login attempts. Try again in a minute.")

    def _sync():
        db = get_db()
        try:
            profile = authenticate(db, body.email, body.password)
            return create_token(profile), profile_to_dict(profile)
        finally:
            db.close()

    token, user = await asyncio.to_thread(_sync)
    logger.info("User logged in: %s (%s)", user["email"], user["id"])

    response = JSONResponse({"token": token, "user": user})
    # Also set cookie for same-origin fallback
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=config.SESSION_EXPIRY_SECONDS,
        httponly=True,
        samesite="lax",
    )
    return response


@router.get("/me")
async def me(request: Request):
    """Return the current logged-in user, or 401 if not authenticated."""
    payload = get_current_user(request)
    ctx = await asyncio.to_thread(resolve_user_context, payload)
    if ctx is None:
        raise AuthenticationError("Not authenticated.")
    return {
        "id": ctx.user_id,
        "tenant_id": ctx.tenant_id,
        "email": ctx.email,
        "name": ctx.name,
        "role": ctx.role,
        "location_id": ctx.location_id,
        "is_manager": ctx.is_manager,
    }


@router.post("/logout")
async def logout():
    """Clear the session cookie."""
    response = JSONResponse({"status": "logged_out"})
    response.delete_cookie(COOKIE_NAME)
    return response
