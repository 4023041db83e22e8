"""Notification records: creation from lifecycle events and read-state management."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from localheroes_service.core.exceptions import ServiceError
from localheroes_service.logging import get_logger

if TYPE_CHECKING:
    from localheroes_service.services.connection_manager import ConnectionManager
    from localheroes_service.services.notification_store import NotificationStore

JOB_APPLICATION = "JOB_APPLICATION"
APPLICATION_ACCEPTED = "APPLICATION_ACCEPTED"
APPLICATION_REJECTED = "APPLICATION_REJECTED"
JOB_COMPLETED = "JOB_COMPLETED"
JOB_CANCELLED = "JOB_CANCELLED"

NOTIFICATION_TYPES: frozenset[str] = frozenset(
    {JOB_APPLICATION, APPLICATION_ACCEPTED, APPLICATION_REJECTED, JOB_COMPLETED, JOB_CANCELLED}
)


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class NotificationEvent:
    """A user-addressed event produced by a task lifecycle transition."""

    user_id: str
    type: str
    title: str
    message: str
    task_id: str | None = None
    from_user_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def job_application_event(
    poster_id: str, applicant_id: str, applicant_name: str, task_id: str, task_title: str
) -> NotificationEvent:
    return NotificationEvent(
        user_id=poster_id,
        type=JOB_APPLICATION,
        title="New Job Application",
        message=f'{applicant_name} has applied for your job "{task_title}"',
        task_id=task_id,
        from_user_id=applicant_id,
        metadata={"applicant_name": applicant_name, "task_title": task_title},
    )


def application_accepted_event(
    worker_id: str, poster_id: str, poster_name: str, task_id: str, task_title: str
) -> NotificationEvent:
    return NotificationEvent(
        user_id=worker_id,
        type=APPLICATION_ACCEPTED,
        title="Application Accepted!",
        message=(
            f'Congratulations! {poster_name} has accepted your application for "{task_title}"'
        ),
        task_id=task_id,
        from_user_id=poster_id,
        metadata={"poster_name": poster_name, "task_title": task_title},
    )


def application_rejected_event(
    applicant_id: str, poster_id: str, task_id: str, task_title: str
) -> NotificationEvent:
    return NotificationEvent(
        user_id=applicant_id,
        type=APPLICATION_REJECTED,
        title="Application Update",
        message=f'Your application for "{task_title}" was not selected this time',
        task_id=task_id,
        from_user_id=poster_id,
        metadata={"task_title": task_title},
    )


def job_completed_event(
    recipient_id: str, actor_id: str, actor_name: str, task_id: str, task_title: str
) -> NotificationEvent:
    return NotificationEvent(
        user_id=recipient_id,
        type=JOB_COMPLETED,
        title="Job Completed",
        message=f'The job "{task_title}" has been marked as completed by {actor_name}',
        task_id=task_id,
        from_user_id=actor_id,
        metadata={"completed_by": actor_name, "task_title": task_title},
    )


def job_cancelled_event(
    recipient_id: str, actor_id: str, actor_name: str, task_id: str, task_title: str
) -> NotificationEvent:
    return NotificationEvent(
        user_id=recipient_id,
        type=JOB_CANCELLED,
        title="Job Cancelled",
        message=f'The job "{task_title}" has been cancelled by {actor_name}',
        task_id=task_id,
        from_user_id=actor_id,
        metadata={"cancelled_by": actor_name, "task_title": task_title},
    )


class NotificationService:
    """Persists notifications and serves a user's notification inbox."""

    def __init__(
        self,
        store: NotificationStore,
        connection_manager: ConnectionManager | None,
        default_page_size: int,
    ) -> None:
        self._store = store
        self._connection_manager = connection_manager
        self._default_page_size = default_page_size
        self._logger = get_logger(__name__)

    async def create(self, event: NotificationEvent) -> dict[str, Any]:
        """Record a notification and push it to the recipient's live connections."""
        if event.type not in NOTIFICATION_TYPES:
            msg = f"Unknown notification type: {event.type}"
            raise ValueError(msg)

        notification = {
            "notification_id": f"n-{uuid.uuid4()}",
            "user_id": event.user_id,
            "type": event.type,
            "title": event.title,
            "message": event.message,
            "task_id": event.task_id,
            "from_user_id": event.from_user_id,
            "read": False,
            "metadata": dict(event.metadata),
            "created_at": _now_iso(),
        }
        self._store.insert_notification(notification)

        if self._connection_manager is not None:
            await self._connection_manager.send_to_user(event.user_id, "notification", notification)
        return notification

    def list_for_user(self, user_id: str, limit: int | None, offset: int | None) -> dict[str, Any]:
        """Page through a user's notifications, newest first."""
        notifications = self._store.list_for_user(
            user_id,
            limit=limit if limit is not None else self._default_page_size,
            offset=offset if offset is not None else 0,
        )
        return {
            "notifications": notifications,
            "total": self._store.count_for_user(user_id, unread_only=False),
            "unread_count": self._store.count_for_user(user_id, unread_only=True),
        }

    def mark_as_read(self, user_id: str, notification_id: str) -> dict[str, Any]:
        """Mark one of the user's notifications read."""
        if self._store.mark_read(notification_id, user_id) == 0:
            raise ServiceError("NOTIFICATION_NOT_FOUND", "Notification not found", 404, {})
        notification = self._store.get_notification(notification_id)
        if notification is None:
            msg = f"Notification {notification_id} not found after update"
            raise RuntimeError(msg)
        return notification

    def mark_all_as_read(self, user_id: str) -> dict[str, Any]:
        """Mark every unread notification of the user read."""
        return {"modified_count": self._store.mark_all_read(user_id)}

    def delete(self, user_id: str, notification_id: str) -> None:
        """Delete one of the user's notifications."""
        if self._store.delete_notification(notification_id, user_id) == 0:
            raise ServiceError("NOTIFICATION_NOT_FOUND", "Notification not found", 404, {})

    def close(self) -> None:
        """Close the notification store."""
        self._store.close()
