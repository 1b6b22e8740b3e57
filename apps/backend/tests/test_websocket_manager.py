"""
Unit tests for WebSocket manager.
Tests match room membership, broadcasting, and timeout handling.
"""

import asyncio
import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from backend.services.websocket_manager import (
    WebSocketManager,
    get_websocket_manager,
    sweep_stale_connections,
    WEBSOCKET_TIMEOUT_SECONDS,
)
from backend.utils.datetime_utils import utcnow


@pytest_asyncio.fixture
async def ws_manager():
    """Create a fresh WebSocket manager for each test."""
    return WebSocketManager()


@pytest.fixture
def mock_websocket():
    """Create a mock WebSocket connection."""
    ws = AsyncMock()
    ws.send_text = AsyncMock()
    ws.close = AsyncMock()
    return ws


def _socket(fail=False):
    ws = AsyncMock()
    ws.send_text = AsyncMock(side_effect=Exception("Connection error") if fail else None)
    ws.close = AsyncMock()
    return ws


@pytest.mark.asyncio
async def test_connect(ws_manager, mock_websocket):
    """Test joining a match room."""
    await ws_manager.connect(7, mock_websocket)

    assert await ws_manager.get_connection_count(7) == 1
    assert mock_websocket in ws_manager.connection_timestamps


@pytest.mark.asyncio
async def test_rooms_are_separate(ws_manager):
    """Viewers of one match are not counted in another."""
    await ws_manager.connect(1, _socket())
    await ws_manager.connect(1, _socket())
    await ws_manager.connect(2, _socket())

    assert await ws_manager.get_connection_count(1) == 2
    assert await ws_manager.get_connection_count(2) == 1


@pytest.mark.asyncio
async def test_disconnect(ws_manager, mock_websocket):
    """Test leaving a match room removes the room once empty."""
    await ws_manager.connect(7, mock_websocket)
    await ws_manager.disconnect(7, mock_websocket)

    assert await ws_manager.get_connection_count(7) == 0
    assert 7 not in ws_manager.match_rooms
    assert mock_websocket not in ws_manager.connection_timestamps


@pytest.mark.asyncio
async def test_disconnect_unknown_socket(ws_manager, mock_websocket):
    """Disconnecting a socket that never joined is a no-op."""
    await ws_manager.disconnect(7, mock_websocket)
    assert await ws_manager.get_connection_count(7) == 0


@pytest.mark.asyncio
async def test_broadcast_to_match(ws_manager):
    """Every viewer of the match receives the event envelope."""
    ws1, ws2, other = _socket(), _socket(), _socket()
    await ws_manager.connect(3, ws1)
    await ws_manager.connect(3, ws2)
    await ws_manager.connect(4, other)

    delivered = await ws_manager.broadcast_to_match(3, "score_updated", {"set_number": 1})

    assert delivered == 2
    sent = json.loads(ws1.send_text.call_args[0][0])
    assert sent == {"type": "score_updated", "matchId": 3, "data": {"set_number": 1}}
    ws2.send_text.assert_called_once()
    other.send_text.assert_not_called()


@pytest.mark.asyncio
async def test_broadcast_no_viewers(ws_manager):
    assert await ws_manager.broadcast_to_match(3, "set_played", {}) == 0


@pytest.mark.asyncio
async def test_broadcast_drops_failed_sockets(ws_manager):
    """A socket that fails to receive is removed; the rest still get the message."""
    good, bad = _socket(), _socket(fail=True)
    await ws_manager.connect(3, good)
    await ws_manager.connect(3, bad)

    delivered = await ws_manager.broadcast_to_match(3, "match_completed", {"winner_id": 1})

    assert delivered == 1
    good.send_text.assert_called_once()
    assert await ws_manager.get_connection_count(3) == 1
    assert bad not in ws_manager.connection_timestamps


@pytest.mark.asyncio
async def test_broadcast_updates_activity(ws_manager, mock_websocket):
    await ws_manager.connect(3, mock_websocket)
    initial_time = ws_manager.connection_timestamps[mock_websocket]

    await asyncio.sleep(0.01)
    await ws_manager.broadcast_to_match(3, "match_updated", {})

    assert ws_manager.connection_timestamps[mock_websocket] > initial_time


@pytest.mark.asyncio
async def test_update_activity(ws_manager, mock_websocket):
    """Test updating connection activity timestamp."""
    await ws_manager.connect(3, mock_websocket)
    initial_time = ws_manager.connection_timestamps[mock_websocket]

    await asyncio.sleep(0.01)
    await ws_manager.update_activity(mock_websocket)

    assert ws_manager.connection_timestamps[mock_websocket] > initial_time


@pytest.mark.asyncio
async def test_update_activity_not_connected(ws_manager, mock_websocket):
    """Test updating activity for a connection that doesn't exist."""
    await ws_manager.update_activity(mock_websocket)
    assert mock_websocket not in ws_manager.connection_timestamps


@pytest.mark.asyncio
async def test_cleanup_stale_connections(ws_manager):
    """Idle sockets are closed and forgotten."""
    stale, fresh = _socket(), _socket()
    await ws_manager.connect(5, stale)
    await ws_manager.connect(5, fresh)
    ws_manager.connection_timestamps[stale] = utcnow() - timedelta(
        seconds=WEBSOCKET_TIMEOUT_SECONDS + 10
    )

    removed = await ws_manager.cleanup_stale_connections()

    assert removed == 1
    stale.close.assert_called_once()
    fresh.close.assert_not_called()
    assert await ws_manager.get_connection_count(5) == 1
    assert stale not in ws_manager.connection_timestamps


@pytest.mark.asyncio
async def test_cleanup_tolerates_close_errors(ws_manager):
    ws = _socket()
    ws.close = AsyncMock(side_effect=Exception("already closed"))
    await ws_manager.connect(5, ws)
    ws_manager.connection_timestamps[ws] = utcnow() - timedelta(
        seconds=WEBSOCKET_TIMEOUT_SECONDS + 10
    )

    assert await ws_manager.cleanup_stale_connections() == 1
    assert await ws_manager.get_connection_count(5) == 0


@pytest.mark.asyncio
async def test_get_websocket_manager_singleton():
    """Test that get_websocket_manager returns a singleton."""
    assert get_websocket_manager() is get_websocket_manager()


@pytest.mark.asyncio
async def test_sweeper_closes_idle_sockets(ws_manager):
    """The background sweep removes idle sockets without any caller asking."""
    stale = _socket()
    await ws_manager.connect(9, stale)
    ws_manager.connection_timestamps[stale] = utcnow() - timedelta(
        seconds=WEBSOCKET_TIMEOUT_SECONDS + 10
    )

    task = asyncio.create_task(sweep_stale_connections(ws_manager, interval=0.01))
    try:
        for _ in range(100):
            if not await ws_manager.get_connection_count(9):
                break
            await asyncio.sleep(0.01)
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    stale.close.assert_called_once()
    assert await ws_manager.get_connection_count(9) == 0


@pytest.mark.asyncio
async def test_sweeper_survives_failed_sweep(ws_manager, monkeypatch):
    calls = []

    async def flaky_cleanup():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return 0

    monkeypatch.setattr(ws_manager, "cleanup_stale_connections", flaky_cleanup)
    task = asyncio.create_task(sweep_stale_connections(ws_manager, interval=0.01))
    try:
        for _ in range(100):
            if len(calls) >= 2:
                break
            await asyncio.sleep(0.01)
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert len(calls) >= 2
