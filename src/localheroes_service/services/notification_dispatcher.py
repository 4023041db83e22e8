"""Outbound queue that delivers lifecycle notifications after the write commits."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any, Protocol

from localheroes_service.logging import get_logger

if TYPE_CHECKING:
    from localheroes_service.services.notification_service import NotificationEvent


class NotificationSink(Protocol):
    """Anything that can record a notification event."""

    async def create(self, event: NotificationEvent) -> dict[str, Any]: ...


class NotificationDispatcher:
    """
    Decouples lifecycle transitions from notification delivery.

    ``publish`` never awaits the sink and never raises: the caller's
    transition is already durable when it publishes, and delivery runs on
    a background task. A failing sink is logged and the event dropped; a
    full queue drops the event with a warning.
    """

    def __init__(self, sink: NotificationSink, queue_size: int) -> None:
        self._sink = sink
        self._queue: asyncio.Queue[NotificationEvent] = asyncio.Queue(maxsize=queue_size)
        self._worker: asyncio.Task[None] | None = None
        self._logger = get_logger(__name__)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        """Start the background consumer on the running event loop."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="notification-dispatcher")

    def publish(self, event: NotificationEvent) -> bool:
        """Enqueue an event. Returns False when it had to be dropped."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._logger.warning(
                "Notification queue full, dropping event",
                extra={"user_id": event.user_id, "type": event.type, "task_id": event.task_id},
            )
            return False
        return True

    async def _deliver(self, event: NotificationEvent) -> None:
        try:
            await self._sink.create(event)
        except Exception:
            self._logger.exception(
                "Notification delivery failed",
                extra={"user_id": event.user_id, "type": event.type, "task_id": event.task_id},
            )

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued event has been delivered or dropped."""
        if self._worker is None or self._worker.done():
            while not self._queue.empty():
                event = self._queue.get_nowait()
                try:
                    await self._deliver(event)
                finally:
                    self._queue.task_done()
            return
        await self._queue.join()

    async def stop(self) -> None:
        """Deliver what is queued, then stop the consumer."""
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
