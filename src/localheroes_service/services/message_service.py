"""Direct messages between users with real-time fan-out."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from localheroes_service.core.exceptions import ServiceError
from localheroes_service.logging import get_logger

if TYPE_CHECKING:
    from localheroes_service.services.connection_manager import ConnectionManager
    from localheroes_service.services.message_store import MessageStore
    from localheroes_service.services.user_registry import UserRegistry

MAX_MESSAGE_LENGTH = 2000


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


class MessageService:
    """
    Stores chat messages and pushes them to the participants' rooms.

    The store is the source of truth; live delivery is best effort and a
    user who is offline simply reads the message later over REST.
    """

    def __init__(
        self,
        store: MessageStore,
        user_registry: UserRegistry,
        connection_manager: ConnectionManager,
    ) -> None:
        self._store = store
        self._users = user_registry
        self._connections = connection_manager
        self._logger = get_logger(__name__)

    def _with_participants(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        user_ids: list[str] = []
        for message in messages:
            user_ids.extend([message["sender_id"], message["receiver_id"]])
        summaries = self._users.get_summaries(user_ids)
        return [
            {
                **message,
                "sender": summaries.get(message["sender_id"]),
                "receiver": summaries.get(message["receiver_id"]),
            }
            for message in messages
        ]

    async def _push_unread_count(self, user_id: str) -> None:
        await self._connections.send_to_user(
            user_id, "unread_count", {"count": self._store.count_unread(user_id)}
        )

    async def send(self, sender_id: str, receiver_id: str, content: str) -> dict[str, Any]:
        """
        Store a message and deliver it to both participants.

        Error precedence:
        1. INVALID_PAYLOAD: empty, oversized, or addressed to the sender
        2. USER_NOT_FOUND: receiver does not exist
        """
        text = content.strip()
        if not text:
            raise ServiceError("INVALID_PAYLOAD", "Message content must not be empty", 400, {})
        if len(text) > MAX_MESSAGE_LENGTH:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"Message content must be at most {MAX_MESSAGE_LENGTH} characters",
                400,
                {},
            )
        if sender_id == receiver_id:
            raise ServiceError("INVALID_PAYLOAD", "Cannot send a message to yourself", 400, {})

        self._users.get_user_record(receiver_id)

        message = {
            "message_id": f"m-{uuid.uuid4()}",
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "content": text,
            "read": False,
            "created_at": _now_iso(),
        }
        self._store.insert_message(message)
        self._logger.info(
            "Message sent",
            extra={
                "message_id": message["message_id"],
                "sender_id": sender_id,
                "receiver_id": receiver_id,
            },
        )

        response = self._with_participants([message])[0]
        await self._connections.send_to_user(sender_id, "new_message", response)
        await self._connections.send_to_user(receiver_id, "new_message", response)
        await self._push_unread_count(receiver_id)
        return response

    def list_for_user(self, user_id: str, limit: int, offset: int) -> dict[str, Any]:
        """Every message the user sent or received, newest first."""
        messages = self._store.list_for_user(user_id, limit=limit, offset=offset)
        return {"messages": self._with_participants(messages)}

    def conversation(self, user_id: str, other_user_id: str) -> dict[str, Any]:
        """The conversation between two users, oldest first."""
        self._users.get_user_record(other_user_id)
        messages = self._store.list_conversation(user_id, other_user_id)
        return {"messages": self._with_participants(messages)}

    async def mark_read(self, user_id: str, message_id: str) -> dict[str, Any]:
        """Mark a message the user received as read."""
        if self._store.mark_read(message_id, user_id) == 0:
            raise ServiceError("MESSAGE_NOT_FOUND", "Message not found", 404, {})
        message = self._store.get_message(message_id)
        if message is None:
            msg = f"Message {message_id} not found after update"
            raise RuntimeError(msg)
        await self._push_unread_count(user_id)
        return self._with_participants([message])[0]

    def unread_count(self, user_id: str) -> dict[str, Any]:
        """Number of unread messages addressed to the user."""
        return {"unread_count": self._store.count_unread(user_id)}

    def close(self) -> None:
        """Close the message store."""
        self._store.close()
