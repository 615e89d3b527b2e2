"""
RoofOps — Centralised router registration.

This module is the single place where every APIRouter is mounted onto the
FastAPI application.  Import and call ``register_routes(app)`` once in
``roofops.app``.

Also defines:

  GET  /api/health   — database / cache status, websocket clients, runtime metrics
"""

from __future__ import annotations

import asyncio
import logging
import time

from fastapi import APIRouter, FastAPI
from sqlalchemy import text

from roofops.api.schemas import HealthResponse
from roofops.cache_backend import get_cache_backend
from roofops.metrics import metrics_snapshot
from roofops.websocket import manager

logger = logging.getLogger(__name__)

# Module-level start time for uptime reporting
_START_TIME: float = time.time()


# ---------------------------------------------------------------------------
# System endpoints
# ---------------------------------------------------------------------------

system_router = APIRouter(tags=["system"])


def _db_status() -> str:
    from roofops.database import get_db

    db = get_db()
    try:
        db.execute(text("SELECT 1"))
        return "ok"
    except Exception as exc:
        return f"error: {exc}"
    finally:
        db.close()


@system_router.get(
    "/api/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health_check():
    db_status = await asyncio.to_thread(_db_status)
    return HealthResponse(
        status="ok" if db_status == "ok" else "degraded",
        db=db_status,
        cache=get_cache_backend().backend,
        websocket_clients=manager.client_count,
        uptime_seconds=round(time.time() - _START_TIME, 1),
        metrics=metrics_snapshot(),
    )


def register_routes(app: FastAPI) -> None:
    """Mount all routers onto ``app``.

    Call this once from ``roofops.app`` after creating the FastAPI instance.
    """
    from roofops.routers import (
        approvals, contacts, crew, photos, pipeline, projects, reports, settings,
        templates, tenancy,
    )

    app.include_router(settings.router)
    app.include_router(tenancy.router)
    app.include_router(contacts.router)
    app.include_router(pipeline.router)
    app.include_router(approvals.router)
    app.include_router(projects.router)
    app.include_router(crew.router)
    app.include_router(photos.router)
    app.include_router(templates.router)
    app.include_router(reports.router)
    app.include_router(system_router)

    logger.info("Routes registered: %d total", len(app.routes))
