"""
Tenant settings endpoints.
GET  /api/settings  - every setting, merged with defaults
POST /api/settings  - update settings (admin roles)
"""

import asyncio

from fastapi import APIRouter, Request

from roofops.api.schemas import SettingUpdate
from roofops.auth import current_context
from roofops.core.exceptions import PermissionDeniedError, ValidationFailedError
from roofops.database import SETTING_DEFAULTS, get_all_settings, get_db, set_setting

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("")
async def get_settings_endpoint(request: Request):
    """Return every stored setting, merged with defaults for any missing keys."""
    ctx = current_context(request)

    def _sync():
        db = get_db()
        try:
            return get_all_settings(db, ctx.tenant_id)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("")
async def update_settings(body: SettingUpdate, request: Request):
    """Create or update one or more settings."""
    ctx = current_context(request)
    if not ctx.is_admin:
        raise PermissionDeniedError("Only administrators can change settings")
    if not body.settings:
        raise ValidationFailedError("No settings provided")
    unknown = sorted(set(body.settings) - set(SETTING_DEFAULTS))
    if unknown:
        raise ValidationFailedError(f"Unknown settings: {', '.join(unknown)}")

    def _sync():
        db = get_db()
        try:
            for key, value in body.settings.items():
                set_setting(db, ctx.tenant_id, key, value)
            return {"status": "ok", "updated": list(body.settings.keys())}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)
