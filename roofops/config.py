"""
Centralized configuration for RoofOps.
All settings come from environment variables for 12-factor deployment.
"""

import os
import secrets


def _env_bool(name: str, default: bool = False) -> bool:
    val = os.environ.get(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# ---------------------------------------------------------------------------
# Database / cache
# ---------------------------------------------------------------------------
DATABASE_URL = os.environ.get(
    "DATABASE_URL",
    f"sqlite:///{os.path.join(BASE_DIR, 'roofops.db')}",
)
REDIS_URL = os.environ.get("REDIS_URL", "").strip()

# ---------------------------------------------------------------------------
# URLs
# ---------------------------------------------------------------------------
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")
BACKEND_URL = os.environ.get("BACKEND_URL", "http://localhost:8001")

# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------
AUTH_SECRET = os.environ.get("AUTH_SECRET", "") or secrets.token_hex(32)
SESSION_EXPIRY_SECONDS = int(os.environ.get("SESSION_EXPIRY_SECONDS", str(7 * 24 * 3600)))
PASSWORD_HASH_ITERATIONS = int(os.environ.get("PASSWORD_HASH_ITERATIONS", "200000"))
LOGIN_RATE_LIMIT_PER_MINUTE = int(os.environ.get("LOGIN_RATE_LIMIT_PER_MINUTE", "10"))

# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------
PORT = int(os.environ.get("PORT", "8001"))
RUN_MODE = os.environ.get("RUN_MODE", "api").strip().lower()

# Worker runtime options
WORKER_RETRY_INITIAL_SECONDS = float(os.environ.get("WORKER_RETRY_INITIAL_SECONDS", "2"))
WORKER_RETRY_MAX_SECONDS = float(os.environ.get("WORKER_RETRY_MAX_SECONDS", "60"))
WORKER_RUN_ONCE = _env_bool("WORKER_RUN_ONCE", False)
APPROVAL_SCAN_INTERVAL_SECONDS = int(os.environ.get("APPROVAL_SCAN_INTERVAL_SECONDS", "300"))
SHIFT_SCAN_INTERVAL_SECONDS = int(os.environ.get("SHIFT_SCAN_INTERVAL_SECONDS", "900"))

# ---------------------------------------------------------------------------
# CORS: Starlette mirrors the request Origin when credentials=True + "*",
# so this effectively allows any origin while still supporting Bearer tokens
# in cross-domain preflight requests.
# ---------------------------------------------------------------------------
CORS_ORIGINS = [
    s.strip()
    for s in os.environ.get("CORS_ORIGINS", "*").split(",")
    if s.strip()
]

# ---------------------------------------------------------------------------
# Storage buckets (photos, documents, annotated images)
# ---------------------------------------------------------------------------
STORAGE_DIR = os.environ.get("STORAGE_DIR", os.path.join(BASE_DIR, "storage"))
MAX_UPLOAD_BYTES = int(os.environ.get("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))

# ---------------------------------------------------------------------------
# Photo markup editor
# ---------------------------------------------------------------------------
MARKUP_MAX_WIDTH = int(os.environ.get("MARKUP_MAX_WIDTH", "800"))
MARKUP_MAX_HEIGHT = int(os.environ.get("MARKUP_MAX_HEIGHT", "600"))
MARKUP_JPEG_QUALITY = int(os.environ.get("MARKUP_JPEG_QUALITY", "90"))

# ---------------------------------------------------------------------------
# Crew dispatch
# ---------------------------------------------------------------------------
# Pings arriving closer together than this are acknowledged but not stored.
GPS_MIN_INTERVAL_SECONDS = float(os.environ.get("GPS_MIN_INTERVAL_SECONDS", "15"))
# Shifts left open longer than this are auto-closed by the worker
# (tenants can override via the crew_max_shift_hours setting).
CREW_MAX_SHIFT_HOURS = float(os.environ.get("CREW_MAX_SHIFT_HOURS", "14"))

# ---------------------------------------------------------------------------
# Approvals
# ---------------------------------------------------------------------------
# A pending request is escalated one priority step per this many hours.
APPROVAL_ESCALATE_HOURS = float(os.environ.get("APPROVAL_ESCALATE_HOURS", "24"))

# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------
KPI_CACHE_TTL_SECONDS = int(os.environ.get("KPI_CACHE_TTL_SECONDS", "60"))
