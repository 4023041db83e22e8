"""User-keyed rooms of live WebSocket connections."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from localheroes_service.logging import get_logger

if TYPE_CHECKING:
    from fastapi import WebSocket


def conversation_room(user_a: str, user_b: str) -> str:
    """Stable room name for the conversation between two users."""
    first, second = sorted((user_a, user_b))
    return f"conversation_{first}_{second}"


class ConnectionManager:
    """
    Tracks accepted WebSocket connections per user.

    A user may hold several connections (tabs, devices); events addressed
    to the user go to all of them. Sending is best effort: a connection
    that fails to receive is dropped from its room.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, set[WebSocket]] = {}
        self._conversations: dict[WebSocket, set[str]] = {}
        self._logger = get_logger(__name__)

    def connect(self, user_id: str, websocket: WebSocket) -> None:
        """Register an already accepted connection in the user's room."""
        self._rooms.setdefault(user_id, set()).add(websocket)
        self._logger.info(
            "WebSocket connected",
            extra={"user_id": user_id, "connections": len(self._rooms[user_id])},
        )

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        """Remove a connection from the user's room."""
        connections = self._rooms.get(user_id)
        if connections is not None:
            connections.discard(websocket)
            if not connections:
                del self._rooms[user_id]
        self._conversations.pop(websocket, None)
        self._logger.info("WebSocket disconnected", extra={"user_id": user_id})

    def join_conversation(self, websocket: WebSocket, user_id: str, other_user_id: str) -> str:
        """Record that a connection is viewing a conversation. Returns the room name."""
        room = conversation_room(user_id, other_user_id)
        self._conversations.setdefault(websocket, set()).add(room)
        return room

    def is_connected(self, user_id: str) -> bool:
        return user_id in self._rooms

    def connection_count(self) -> int:
        return sum(len(connections) for connections in self._rooms.values())

    async def send_to_user(self, user_id: str, event: str, data: Any) -> int:
        """
        Send an event to every connection of a user.

        Returns the number of connections that received it.
        """
        connections = list(self._rooms.get(user_id, ()))
        if not connections:
            return 0

        message = {
            "event": event,
            "data": data,
            "timestamp": datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z"),
        }
        delivered = 0
        for websocket in connections:
            try:
                await websocket.send_json(message)
            except Exception as exc:  # noqa: BLE001
                self._logger.warning(
                    "WebSocket send failed, dropping connection",
                    extra={"user_id": user_id, "event": event, "error": str(exc)},
                )
                self.disconnect(user_id, websocket)
            else:
                delivered += 1
        return delivered
