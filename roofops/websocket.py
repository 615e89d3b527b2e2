"""
WebSocket hub for RoofOps.
Tracks connected clients per tenant and broadcasts change events
(``pipeline.changed``, ``approvals.changed``, ``crew.location``) only to
sockets belonging to that tenant.
"""

import asyncio
import json
import logging
from typing import Dict, List

from fastapi import WebSocket

from roofops.core.utils import utcnow

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks connected WebSocket clients, grouped by tenant."""

    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, tenant_id: str):
        """Accept a new WebSocket connection and register it under its tenant."""
        await websocket.accept()
        async with self._lock:
            self.active_connections.setdefault(tenant_id, []).append(websocket)
        logger.info(
            "WebSocket client connected for tenant %s. Total clients: %d",
            tenant_id, self.client_count,
        )

    async def disconnect(self, websocket: WebSocket, tenant_id: str):
        """Remove a disconnected client."""
        async with self._lock:
            sockets = self.active_connections.get(tenant_id, [])
            if websocket in sockets:
                sockets.remove(websocket)
            if not sockets:
                self.active_connections.pop(tenant_id, None)
        logger.info("WebSocket client disconnected. Total clients: %d", self.client_count)

    async def broadcast(self, tenant_id: str, event: str, data: dict = None):
        """Send ``{"type": event, "data": ..., "ts": ...}`` to every socket of one tenant.

        Silently removes clients that have gone away.
        """
        payload = json.dumps(
            {"type": event, "data": data or {}, "ts": utcnow().isoformat()},
            default=str,
        )
        stale: List[WebSocket] = []

        async with self._lock:
            connections = list(self.active_connections.get(tenant_id, []))

        for ws in connections:
            try:
                await ws.send_text(payload)
            except Exception:
                stale.append(ws)

        # Clean up dead connections
        if stale:
            async with self._lock:
                sockets = self.active_connections.get(tenant_id, [])
                for ws in stale:
                    if ws in sockets:
                        sockets.remove(ws)
                if not sockets:
                    self.active_connections.pop(tenant_id, None)
            logger.info("Removed %d stale WebSocket connections", len(stale))

    def tenant_client_count(self, tenant_id: str) -> int:
        return len(self.active_connections.get(tenant_id, []))

    @property
    def client_count(self) -> int:
        return sum(len(v) for v in self.active_connections.values())


# Singleton used across the application
manager = ConnectionManager()


async def safe_broadcast(tenant_id: str, event: str, data: dict = None) -> None:
    """Broadcast without letting a websocket failure fail the caller's request."""
    try:
        await manager.broadcast(tenant_id, event, data)
    except Exception as exc:
        logger.warning("broadcast %s for tenant %s failed: %s", event, tenant_id, exc)
