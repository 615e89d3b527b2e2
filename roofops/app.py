"""
RoofOps - FastAPI Application
Main entry point for the backend server.

Run with:
    uvicorn roofops.app:app --reload --host 0.0.0.0 --port 8001
"""

import asyncio
import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from roofops import __version__, config
from roofops.auth import decode_token, get_current_user, requires_auth, resolve_user_context
from roofops.auth import router as auth_router
from roofops.core.exceptions import RoofOpsError
from roofops.core.logging import configure_logging, log_request
from roofops.database import get_db, init_db
from roofops.metrics import record_error
from roofops.templates.service import ensure_system_templates
from roofops.websocket import manager

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
configure_logging()
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan (startup / shutdown)
# ---------------------------------------------------------------------------

def _bootstrap_db() -> None:
    init_db()
    db = get_db()
    try:
        ensure_system_templates(db)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Runs once on startup, yields for the lifetime of the app, then cleans up."""
    if config.RUN_MODE != "api":
        logger.warning(
            "roofops.app started with RUN_MODE=%s. API mode is expected for this process.",
            config.RUN_MODE,
        )

    logger.info("Initialising database...")
    await asyncio.to_thread(_bootstrap_db)
    logger.info("Database ready.")

    yield  # Application is running


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

app = FastAPI(
    title="RoofOps",
    version=__version__,
    description="Multi-tenant roofing operations backend: pipeline, approvals, crew dispatch, photos, reporting",
    lifespan=lifespan,
)

# CORS -- allow the configured frontend origin + dev localhost.
# allow_credentials=True is needed so the browser's preflight (OPTIONS)
# permits the Authorization header on requests from different origins.
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

@app.exception_handler(RoofOpsError)
async def roofops_error_handler(request: Request, exc: RoofOpsError):
    logger.warning(
        "%s %s -> %d %s: %s",
        request.method, request.url.path, exc.status_code, exc.error, exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exc()
    logger.error(
        "Unhandled exception on %s %s: %s\n%s",
        request.method, request.url.path, exc, tb,
    )
    record_error()
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc),
            "type": type(exc).__name__,
            "path": request.url.path,
        },
    )


# ---------------------------------------------------------------------------
# Middleware (last declared runs first)
# ---------------------------------------------------------------------------

@app.middleware("http")
async def auth_middleware(request: Request, call_next):
    """Reject /api/* requests (outside the public prefixes) without a live session."""
    if requires_auth(request) and getattr(request.state, "user_ctx", None) is None:
        return JSONResponse(
            status_code=401,
            content={"error": "Unauthorized", "message": "Not authenticated. POST /api/auth/login to sign in."},
        )
    return await call_next(request)


@app.middleware("http")
async def user_context_middleware(request: Request, call_next):
    """
    Resolve the bearer token / session cookie into a ``UserContext`` and attach
    it to ``request.state.user_ctx`` (``None`` when unauthenticated).

    Downstream route handlers read it via ``roofops.auth.current_context``.
    """
    ctx = None
    payload = get_current_user(request)
    if payload:
        try:
            ctx = await asyncio.to_thread(resolve_user_context, payload)
        except Exception as exc:
            logger.error("user_context_middleware: profile lookup failed: %s", exc)
    request.state.user_ctx = ctx
    return await call_next(request)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
    started = time.perf_counter()
    response = await call_next(request)
    ctx = getattr(request.state, "user_ctx", None)
    log_request({
        "method": request.method,
        "path": request.url.path,
        "status": response.status_code,
        "duration_ms": round((time.perf_counter() - started) * 1000, 1),
        "tenant_id": ctx.tenant_id if ctx else None,
        "user_id": ctx.user_id if ctx else None,
        "request_id": request_id,
    })
    response.headers["X-Request-ID"] = request_id
    return response


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(auth_router)

from roofops.api.routes import register_routes  # noqa: E402
register_routes(app)


# ---------------------------------------------------------------------------
# WebSocket endpoint
# ---------------------------------------------------------------------------

@app.websocket("/ws/changes")
async def websocket_changes(websocket: WebSocket, token: str = Query("")):
    """Stream tenant-scoped change events to connected frontends."""
    ctx = await asyncio.to_thread(resolve_user_context, decode_token(token))
    if ctx is None:
        await websocket.close(code=1008)
        return
    await manager.connect(websocket, ctx.tenant_id)
    try:
        while True:
            await websocket.receive_text()
            await websocket.send_text('{"type":"ack"}')
    except WebSocketDisconnect:
        await manager.disconnect(websocket, ctx.tenant_id)
    except Exception:
        await manager.disconnect(websocket, ctx.tenant_id)


# ---------------------------------------------------------------------------
# Development entry-point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "roofops.app:app",
        host="0.0.0.0",
        port=config.PORT,
        reload=True,
    )
