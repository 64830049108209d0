"""WebSocket connection manager for real-time execution updates."""

import json
import logging
from typing import Any, Dict, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Manages active WebSocket connections grouped into execution rooms.

    A client subscribes to one or more execution ids and receives every
    lifecycle event emitted for them.
    """

    def __init__(self):
        """Initialize connection manager."""
        # Map of execution_id -> set of WebSocket connections
        self.rooms: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, execution_id: str) -> None:
        """Accept a connection and join it to an execution room."""
        await websocket.accept()
        self.subscribe(websocket, execution_id)
        logger.info(f"WebSocket connected - execution_id: {execution_id}")

    def subscribe(self, websocket: WebSocket, execution_id: str) -> None:
        self.rooms.setdefault(execution_id, set()).add(websocket)

    def unsubscribe(self, websocket: WebSocket, execution_id: str) -> None:
        room = self.rooms.get(execution_id)
        if room is None:
            return
        room.discard(websocket)
        if not room:
            del self.rooms[execution_id]

    def disconnect(self, websocket: WebSocket) -> None:
        """Remove a connection from every room it joined."""
        for execution_id in list(self.rooms):
            self.unsubscribe(websocket, execution_id)
        logger.info("WebSocket disconnected")

    def subscriber_count(self, execution_id: str) -> int:
        return len(self.rooms.get(execution_id, ()))

    async def emit(self, execution_id: str, event: str, payload: Dict[str, Any]) -> None:
        """
        Send an execution event to every subscriber of its room.

        Args:
            execution_id: Room to send to
            event: Event name (started, step_completed, ...)
            payload: Event payload, already timestamped
        """
        room = self.rooms.get(execution_id)
        if not room:
            return

        message_str = json.dumps({"event": event, "data": payload}, default=str)
        disconnected = set()

        for connection in list(room):
            try:
                await connection.send_text(message_str)
            except Exception as e:
                logger.error(f"Error sending message to execution {execution_id}: {str(e)}")
                disconnected.add(connection)

        for connection in disconnected:
            self.unsubscribe(connection, execution_id)


# Global connection manager instance
manager = ConnectionManager()
