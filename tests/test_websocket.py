"""Tests for the tenant-scoped WebSocket connection manager."""

import json
from unittest.mock import AsyncMock

import pytest

from roofops.websocket import ConnectionManager


@pytest.fixture
def manager():
    return ConnectionManager()


def _ws(fail: bool = False):
    ws = AsyncMock()
    ws.accept = AsyncMock()
    ws.send_text = AsyncMock(side_effect=Exception("disconnected") if fail else None)
    return ws


@pytest.mark.asyncio
async def test_connect_and_disconnect(manager):
    ws = _ws()
    await manager.connect(ws, "t1")
    assert manager.client_count == 1
    assert manager.tenant_client_count("t1") == 1
    ws.accept.assert_called_once()

    await manager.disconnect(ws, "t1")
    assert manager.client_count == 0
    assert "t1" not in manager.active_connections


@pytest.mark.asyncio
async def test_disconnect_nonexistent(manager):
    # Should not raise
    await manager.disconnect(_ws(), "t1")
    assert manager.client_count == 0


@pytest.mark.asyncio
async def test_broadcast_only_reaches_same_tenant(manager):
    mine, theirs = _ws(), _ws()
    await manager.connect(mine, "t1")
    await manager.connect(theirs, "t2")

    await manager.broadcast("t1", "pipeline.changed", {"entry_id": "e1"})

    mine.send_text.assert_called_once()
    theirs.send_text.assert_not_called()
    payload = json.loads(mine.send_text.call_args[0][0])
    assert payload["type"] == "pipeline.changed"
    assert payload["data"] == {"entry_id": "e1"}
    assert "ts" in payload


@pytest.mark.asyncio
async def test_broadcast_removes_stale(manager):
    good, bad = _ws(), _ws(fail=True)
    await manager.connect(good, "t1")
    await manager.connect(bad, "t1")
    assert manager.client_count == 2

    await manager.broadcast("t1", "approvals.changed")
    assert manager.client_count == 1  # bad socket removed
