"""
WebSocket connection manager for live match scoring.

Viewers subscribe to a match room; set and match mutations are broadcast to
every socket in that room.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set
from datetime import timedelta
from fastapi import WebSocket

from backend.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

# Timeout for WebSocket connections (30 seconds of inactivity)
WEBSOCKET_TIMEOUT_SECONDS = 30


class WebSocketManager:
    """Manages match rooms of WebSocket connections."""

    def __init__(self):
        # match_id -> sockets watching that match
        self.match_rooms: Dict[int, Set[WebSocket]] = {}
        # socket -> last activity timestamp
        self.connection_timestamps: Dict[WebSocket, Any] = {}
        self._lock = asyncio.Lock()

    async def connect(self, match_id: int, websocket: WebSocket):
        """
        Add an accepted WebSocket to a match room.

        Args:
            match_id: ID of the match being watched
            websocket: WebSocket connection object
        """
        async with self._lock:
            self.match_rooms.setdefault(match_id, set()).add(websocket)
            self.connection_timestamps[websocket] = utcnow()
            logger.info(
                f"WebSocket joined match {match_id} "
                f"(viewers: {len(self.match_rooms[match_id])})"
            )

    async def disconnect(self, match_id: int, websocket: WebSocket):
        async with self._lock:
            self._remove(match_id, websocket)
            logger.info(f"WebSocket left match {match_id}")

    def _remove(self, match_id: int, websocket: WebSocket):
        # Caller holds the lock
        room = self.match_rooms.get(match_id)
        if room is not None:
            room.discard(websocket)
            if not room:
                del self.match_rooms[match_id]
        self.connection_timestamps.pop(websocket, None)

    async def broadcast_to_match(self, match_id: int, event: str, payload: dict) -> int:
        """
        Send {"type": event, "matchId": match_id, "data": payload} to a room.

        Sockets that fail to receive are dropped from the room.

        Returns:
            Number of sockets the message reached
        """
        async with self._lock:
            connections = list(self.match_rooms.get(match_id, ()))
        if not connections:
            return 0

        message_json = json.dumps(
            {"type": event, "matchId": match_id, "data": payload}, default=str
        )
        delivered = 0
        failed = []
        # Send outside the lock so one slow socket does not block the registry
        for websocket in connections:
            try:
                await websocket.send_text(message_json)
                delivered += 1
            except Exception as e:
                logger.warning(f"Error sending {event} to match {match_id} viewer: {e}")
                failed.append(websocket)

        async with self._lock:
            now = utcnow()
            for websocket in connections:
                if websocket in failed:
                    self._remove(match_id, websocket)
                elif websocket in self.connection_timestamps:
                    self.connection_timestamps[websocket] = now
        return delivered

    async def get_connection_count(self, match_id: int) -> int:
        async with self._lock:
            return len(self.match_rooms.get(match_id, ()))

    async def update_activity(self, websocket: WebSocket):
        """Refresh a socket's activity timestamp (called on client ping)."""
        async with self._lock:
            if websocket in self.connection_timestamps:
                self.connection_timestamps[websocket] = utcnow()

    async def cleanup_stale_connections(self) -> int:
        """
        Close and forget sockets idle for longer than WEBSOCKET_TIMEOUT_SECONDS.

        Returns:
            Number of sockets removed
        """
        threshold = utcnow() - timedelta(seconds=WEBSOCKET_TIMEOUT_SECONDS)
        async with self._lock:
            stale = [
                (match_id, websocket)
                for match_id, room in self.match_rooms.items()
                for websocket in room
                if self.connection_timestamps.get(websocket, threshold) < threshold
            ]
            for match_id, websocket in stale:
                self._remove(match_id, websocket)

        for match_id, websocket in stale:
            try:
                await websocket.close()
            except Exception as e:
                logger.warning(f"Error closing stale connection for match {match_id}: {e}")
            logger.info(f"Cleaned up stale WebSocket connection for match {match_id}")
        return len(stale)


# Global WebSocket manager instance
_websocket_manager: Optional[WebSocketManager] = None


def get_websocket_manager() -> WebSocketManager:
    """Return the process-wide WebSocketManager."""
    global _websocket_manager
    if _websocket_manager is None:
        _websocket_manager = WebSocketManager()
    return _websocket_manager


async def sweep_stale_connections(
    manager: Optional[WebSocketManager] = None,
    interval: float = WEBSOCKET_TIMEOUT_SECONDS,
):
    """
    Close idle sockets every `interval` seconds until cancelled.

    Started from the application lifespan; one failed sweep is logged and the
    loop keeps running.
    """
    manager = manager or get_websocket_manager()
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await manager.cleanup_stale_connections()
        except Exception as e:
            logger.error(f"Stale WebSocket sweep failed: {e}", exc_info=True)
            continue
        if removed:
            logger.info(f"Stale WebSocket sweep removed {removed} connection(s)")
