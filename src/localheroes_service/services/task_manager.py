"""Task lifecycle: posting, applications, assignment, completion and cancellation."""

from __future__ import annotations

import math
import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from localheroes_service.core.exceptions import ServiceError
from localheroes_service.logging import get_logger
from localheroes_service.services.notification_service import (
    application_accepted_event,
    application_rejected_event,
    job_application_event,
    job_cancelled_event,
    job_completed_event,
)
from localheroes_service.services.task_store import (
    SORT_OPTIONS,
    TASK_STATUSES,
    PayeeNotFoundError,
    PaymentDeclinedError,
    TaskQuery,
    VersionConflictError,
)
from localheroes_service.services.user_registry import display_name

if TYPE_CHECKING:
    from localheroes_service.clients.geocoding_client import GeocodingClient
    from localheroes_service.services.notification_dispatcher import NotificationDispatcher
    from localheroes_service.services.notification_service import NotificationEvent
    from localheroes_service.services.task_store import TaskStore
    from localheroes_service.services.user_registry import UserRegistry

_TERMINAL_STATUSES = frozenset({"COMPLETED", "CANCELLED", "PAID"})

_DATE_POSTED_WINDOWS: dict[str, timedelta] = {
    "Last Hour": timedelta(hours=1),
    "Last 24 Hours": timedelta(hours=24),
    "Last 7 Days": timedelta(days=7),
    "Last 30 Days": timedelta(days=30),
}

# Fields a poster may change after creation. Everything else is derived.
_UPDATABLE_FIELDS = frozenset(
    {"title", "description", "price", "category", "tags", "experience_level", "due_date", "location"}
)


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _forbidden(message: str) -> ServiceError:
    return ServiceError("FORBIDDEN", message, 403, {})


class TaskManager:
    """
    Manages the task lifecycle: creation, updates, applications, acceptance,
    completion with payment, cancellation and removal.

    Every operation reloads the task, derives authorization from the stored
    ``poster_id``/``worker_id`` (never from client input), checks that the
    transition is legal in the current status, and only then writes. Writes
    are conditioned on the version read at load time. Notifications are
    published to the dispatcher after the write is durable.
    """

    def __init__(
        self,
        store: TaskStore,
        user_registry: UserRegistry,
        dispatcher: NotificationDispatcher,
        geocoding_client: GeocodingClient | None,
        *,
        payment_on_completion: bool,
        default_page_size: int,
        max_page_size: int,
    ) -> None:
        self._store = store
        self._users = user_registry
        self._dispatcher = dispatcher
        self._geocoding_client = geocoding_client
        self._payment_on_completion = payment_on_completion
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _load_task(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})
        return task

    def _write(
        self,
        task: dict[str, Any],
        updates: dict[str, Any],
        *,
        applicants: list[str] | None = None,
    ) -> dict[str, Any]:
        """Apply a version-conditioned update and return the reloaded task."""
        task_id = task["task_id"]
        changed = self._store.update_task(
            task_id,
            {**updates, "updated_at": _now_iso()},
            expected_version=task["version"],
            applicants=applicants,
        )
        if changed == 0:
            raise self._lost_race(task_id)
        return self._load_task(task_id)

    def _lost_race(self, task_id: str) -> ServiceError:
        if self._store.get_task(task_id) is None:
            return ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})
        self._logger.warning("Task version conflict", extra={"task_id": task_id})
        return ServiceError(
            "TASK_CONFLICT",
            "Task was modified concurrently, reload and retry",
            409,
            {},
        )

    def _publish(self, events: list[NotificationEvent]) -> None:
        for event in events:
            self._dispatcher.publish(event)

    def _populate(self, tasks: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Join user summaries into task responses."""
        user_ids: list[str] = []
        for task in tasks:
            user_ids.append(task["poster_id"])
            if task["worker_id"] is not None:
                user_ids.append(task["worker_id"])
            user_ids.extend(task["applicants"])
        summaries = self._users.get_summaries(user_ids)
        return [self._task_to_response(task, summaries) for task in tasks]

    @staticmethod
    def _task_to_response(
        task: dict[str, Any], summaries: dict[str, dict[str, Any]]
    ) -> dict[str, Any]:
        location = None
        if task["location_address"] is not None or task["latitude"] is not None:
            location = {
                "address": task["location_address"],
                "latitude": task["latitude"],
                "longitude": task["longitude"],
            }
        worker_id = task["worker_id"]
        return {
            "task_id": task["task_id"],
            "title": task["title"],
            "description": task["description"],
            "price": task["price"],
            "status": task["status"],
            "category": task["category"],
            "tags": task["tags"],
            "experience_level": task["experience_level"],
            "due_date": task["due_date"],
            "location": location,
            "poster_id": task["poster_id"],
            "worker_id": worker_id,
            "applicant_ids": list(task["applicants"]),
            "posted_by": summaries.get(task["poster_id"]),
            "accepted_by": summaries.get(worker_id) if worker_id is not None else None,
            "applicants": [
                summaries[user_id] for user_id in task["applicants"] if user_id in summaries
            ],
            "created_at": task["created_at"],
            "updated_at": task["updated_at"],
            "accepted_at": task["accepted_at"],
            "completed_at": task["completed_at"],
            "cancelled_at": task["cancelled_at"],
            "version": task["version"],
        }

    def _respond(self, task: dict[str, Any]) -> dict[str, Any]:
        return self._populate([task])[0]

    async def _resolve_location(
        self, location: dict[str, Any] | None
    ) -> tuple[str | None, float | None, float | None]:
        """Return (address, latitude, longitude), geocoding when coordinates are missing."""
        if location is None:
            return None, None, None

        address = location.get("address")
        latitude = location.get("latitude")
        longitude = location.get("longitude")
        if latitude is not None and longitude is not None:
            return address, latitude, longitude

        if address and self._geocoding_client is not None:
            coordinates = await self._geocoding_client.geocode(address)
            if coordinates is not None:
                return address, coordinates.latitude, coordinates.longitude
        return address, None, None

    # ------------------------------------------------------------------
    # Public methods called by routers
    # ------------------------------------------------------------------

    async def create_task(self, actor_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Create an OPEN task owned by the actor."""
        address, latitude, longitude = await self._resolve_location(fields.get("location"))
        now = _now_iso()
        task = {
            "task_id": f"t-{uuid.uuid4()}",
            "poster_id": actor_id,
            "worker_id": None,
            "title": fields["title"],
            "description": fields["description"],
            "price": fields["price"],
            "status": "OPEN",
            "category": fields.get("category"),
            "tags": list(fields.get("tags") or []),
            "experience_level": fields.get("experience_level"),
            "due_date": fields.get("due_date"),
            "location_address": address,
            "latitude": latitude,
            "longitude": longitude,
            "created_at": now,
            "updated_at": now,
            "accepted_at": None,
            "completed_at": None,
            "cancelled_at": None,
            "version": 1,
        }
        self._store.insert_task(task)
        self._logger.info(
            "Task created",
            extra={"task_id": task["task_id"], "poster_id": actor_id, "price": task["price"]},
        )
        return self._respond(self._load_task(task["task_id"]))

    async def get_task(self, task_id: str) -> dict[str, Any]:
        """Get a single task with populated user summaries."""
        return self._respond(self._load_task(task_id))

    async def search_tasks(self, filters: dict[str, Any]) -> dict[str, Any]:
        """
        Filtered, sorted and paginated task search.

        Recognized filters: posted_by, accepted_by, search, location,
        category, min_price, max_price, status, date_posted, tags, sort,
        page, limit.
        """
        status = filters.get("status")
        if status is not None and status not in TASK_STATUSES:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"status must be one of {', '.join(TASK_STATUSES)}",
                400,
                {},
            )

        sort = filters.get("sort") or "newest"
        if sort not in SORT_OPTIONS:
            raise ServiceError(
                "INVALID_PAYLOAD", f"sort must be one of {', '.join(SORT_OPTIONS)}", 400, {}
            )

        created_after: str | None = None
        date_posted = filters.get("date_posted")
        if date_posted is not None:
            window = _DATE_POSTED_WINDOWS.get(date_posted)
            if window is None:
                raise ServiceError(
                    "INVALID_PAYLOAD",
                    f"date_posted must be one of {', '.join(_DATE_POSTED_WINDOWS)}",
                    400,
                    {},
                )
            created_after = (
                (datetime.now(UTC) - window)
                .isoformat(timespec="microseconds")
                .replace("+00:00", "Z")
            )

        page = filters.get("page") or 1
        limit = min(filters.get("limit") or self._default_page_size, self._max_page_size)

        query = TaskQuery(
            poster_id=filters.get("posted_by"),
            worker_id=filters.get("accepted_by"),
            search=filters.get("search"),
            location=filters.get("location"),
            category=filters.get("category"),
            min_price=filters.get("min_price"),
            max_price=filters.get("max_price"),
            status=status,
            created_after=created_after,
            tags=list(filters.get("tags") or []),
            sort=sort,
            limit=limit,
            offset=(page - 1) * limit,
        )
        tasks, total = self._store.search_tasks(query)
        return {
            "tasks": self._populate(tasks),
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total > 0 else 0,
        }

    async def update_task(
        self, task_id: str, actor_id: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Merge poster-editable fields into a task.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: actor is not the poster
        3. FORBIDDEN: task is COMPLETED, PAID or CANCELLED
        """
        task = self._load_task(task_id)

        if actor_id != task["poster_id"]:
            raise _forbidden("Only the poster can update this task")

        if task["status"] in _TERMINAL_STATUSES:
            raise _forbidden(f"Cannot update a task in '{task['status']}' status")

        updates: dict[str, Any] = {
            name: value
            for name, value in fields.items()
            if name in _UPDATABLE_FIELDS and name != "location"
        }
        if "location" in fields:
            address, latitude, longitude = await self._resolve_location(fields["location"])
            updates.update(
                {"location_address": address, "latitude": latitude, "longitude": longitude}
            )

        if len(updates) == 0:
            return self._respond(task)

        updated = self._write(task, updates)
        self._logger.info(
            "Task updated", extra={"task_id": task_id, "fields": sorted(updates)}
        )
        return self._respond(updated)

    async def apply(self, task_id: str, actor_id: str) -> dict[str, Any]:
        """
        Add the actor to the task's applicant pool and notify the poster.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: task is not OPEN
        3. FORBIDDEN: actor is the poster
        4. FORBIDDEN: actor already applied
        """
        task = self._load_task(task_id)

        if task["status"] != "OPEN":
            raise _forbidden("Task is not open for applications")

        if actor_id == task["poster_id"]:
            raise _forbidden("You cannot apply to your own task")

        if actor_id in task["applicants"]:
            raise _forbidden("You have already applied to this task")

        updated = self._write(task, {}, applicants=[*task["applicants"], actor_id])
        self._logger.info(
            "Task application received", extra={"task_id": task_id, "user_id": actor_id}
        )

        applicant = self._users.get_records([actor_id]).get(actor_id)
        self._publish(
            [
                job_application_event(
                    task["poster_id"], actor_id, display_name(applicant), task_id, task["title"]
                )
            ]
        )
        return self._respond(updated)

    async def accept_applicant(
        self, task_id: str, actor_id: str, applicant_id: str
    ) -> dict[str, Any]:
        """
        Assign an applicant as the worker and start the task.

        The applicant pool is cleared. The chosen applicant is notified of
        acceptance and every other applicant of rejection, once each.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: actor is not the poster
        3. FORBIDDEN: task is not OPEN
        4. APPLICANT_NOT_FOUND: user is not in the applicant pool
        """
        task = self._load_task(task_id)

        if actor_id != task["poster_id"]:
            raise _forbidden("Only the poster can accept applicants")

        if task["status"] != "OPEN":
            raise _forbidden(f"Cannot accept applicants on a task in '{task['status']}' status")

        if applicant_id not in task["applicants"]:
            raise ServiceError("APPLICANT_NOT_FOUND", "Applicant not found", 404, {})

        updated = self._write(
            task,
            {"status": "IN_PROGRESS", "worker_id": applicant_id, "accepted_at": _now_iso()},
            applicants=[],
        )
        self._logger.info(
            "Task applicant accepted",
            extra={"task_id": task_id, "worker_id": applicant_id, "status": "IN_PROGRESS"},
        )

        poster = self._users.get_records([actor_id]).get(actor_id)
        events = [
            application_accepted_event(
                applicant_id, actor_id, display_name(poster), task_id, task["title"]
            )
        ]
        events.extend(
            application_rejected_event(user_id, actor_id, task_id, task["title"])
            for user_id in task["applicants"]
            if user_id != applicant_id
        )
        self._publish(events)
        return self._respond(updated)

    async def deny_applicant(
        self, task_id: str, actor_id: str, applicant_id: str
    ) -> dict[str, Any]:
        """
        Remove an applicant from the pool and notify them.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: actor is not the poster
        3. APPLICANT_NOT_FOUND: user is not in the applicant pool
        """
        task = self._load_task(task_id)

        if actor_id != task["poster_id"]:
            raise _forbidden("Only the poster can deny applicants")

        if applicant_id not in task["applicants"]:
            raise ServiceError("APPLICANT_NOT_FOUND", "Applicant not found", 404, {})

        remaining = [user_id for user_id in task["applicants"] if user_id != applicant_id]
        updated = self._write(task, {}, applicants=remaining)
        self._logger.info(
            "Task applicant denied", extra={"task_id": task_id, "user_id": applicant_id}
        )

        self._publish([application_rejected_event(applicant_id, actor_id, task_id, task["title"])])
        return self._respond(updated)

    async def accept_task(self, task_id: str, actor_id: str) -> dict[str, Any]:
        """
        First-come-first-served acceptance: the actor becomes the worker.

        Anyone left in the applicant pool is notified of rejection.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: task is not OPEN or already has a worker
        3. FORBIDDEN: actor is the poster
        """
        task = self._load_task(task_id)

        if task["status"] != "OPEN" or task["worker_id"] is not None:
            raise _forbidden("Task is not available for acceptance")

        if actor_id == task["poster_id"]:
            raise _forbidden("You cannot accept your own task")

        updated = self._write(
            task,
            {"status": "IN_PROGRESS", "worker_id": actor_id, "accepted_at": _now_iso()},
            applicants=[],
        )
        self._logger.info(
            "Task accepted",
            extra={"task_id": task_id, "worker_id": actor_id, "status": "IN_PROGRESS"},
        )

        self._publish(
            [
                application_rejected_event(user_id, task["poster_id"], task_id, task["title"])
                for user_id in task["applicants"]
                if user_id != actor_id
            ]
        )
        return self._respond(updated)

    async def complete_task(self, task_id: str, actor_id: str) -> dict[str, Any]:
        """
        Complete an IN_PROGRESS task.

        With payment on completion, only the poster may complete; the price
        moves from the poster's balance to the worker's in the same
        transaction that sets the task PAID. Without it, either party may
        complete and the task becomes COMPLETED.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: task is not IN_PROGRESS or has no worker
        3. FORBIDDEN: actor may not complete this task
        4. INSUFFICIENT_BALANCE: poster cannot cover the price
        """
        task = self._load_task(task_id)

        if task["status"] != "IN_PROGRESS" or task["worker_id"] is None:
            raise _forbidden(f"Cannot complete a task in '{task['status']}' status")

        poster_id: str = task["poster_id"]
        worker_id: str = task["worker_id"]

        if self._payment_on_completion:
            if actor_id != poster_id:
                raise _forbidden("Only the poster can complete this task")
            updated = self._settle(task, poster_id, worker_id)
            recipient_id = worker_id
        else:
            if actor_id not in (poster_id, worker_id):
                raise _forbidden("Only the poster or the assigned worker can complete this task")
            updated = self._write(task, {"status": "COMPLETED", "completed_at": _now_iso()})
            recipient_id = worker_id if actor_id == poster_id else poster_id

        self._logger.info(
            "Task completed",
            extra={"task_id": task_id, "status": updated["status"], "price": task["price"]},
        )

        actor = self._users.get_records([actor_id]).get(actor_id)
        self._publish(
            [
                job_completed_event(
                    recipient_id, actor_id, display_name(actor), task_id, task["title"]
                )
            ]
        )
        return self._respond(updated)

    def _settle(self, task: dict[str, Any], poster_id: str, worker_id: str) -> dict[str, Any]:
        price: int = task["price"]
        poster = self._users.get_records([poster_id]).get(poster_id)
        if poster is None:
            raise ServiceError("USER_NOT_FOUND", "Poster account not found", 404, {})

        if poster["balance"] < price:
            raise ServiceError(
                "INSUFFICIENT_BALANCE",
                "Insufficient balance to pay for this task",
                403,
                {"balance": poster["balance"], "price": price},
            )

        now = _now_iso()
        try:
            self._store.settle_payment(
                task["task_id"],
                {"status": "PAID", "completed_at": now, "updated_at": now},
                expected_version=task["version"],
                payer_id=poster_id,
                payee_id=worker_id,
                amount=price,
            )
        except VersionConflictError as exc:
            raise self._lost_race(task["task_id"]) from exc
        except PaymentDeclinedError as exc:
            raise ServiceError(
                "INSUFFICIENT_BALANCE",
                "Insufficient balance to pay for this task",
                403,
                {"price": price},
            ) from exc
        except PayeeNotFoundError as exc:
            raise ServiceError("USER_NOT_FOUND", "Worker account not found", 404, {}) from exc

        self._logger.info(
            "Task payment settled",
            extra={
                "task_id": task["task_id"],
                "payer_id": poster_id,
                "payee_id": worker_id,
                "amount": price,
            },
        )
        return self._load_task(task["task_id"])

    async def cancel_task(self, task_id: str, actor_id: str) -> dict[str, Any]:
        """
        Cancel a task. A worker who cancels is unassigned.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: task is COMPLETED, PAID or already CANCELLED
        3. FORBIDDEN: actor is neither the poster nor the worker
        """
        task = self._load_task(task_id)

        if task["status"] in _TERMINAL_STATUSES:
            raise _forbidden(f"Cannot cancel a task in '{task['status']}' status")

        poster_id: str = task["poster_id"]
        worker_id: str | None = task["worker_id"]
        if actor_id not in (poster_id, worker_id):
            raise _forbidden("Only the poster or the assigned worker can cancel this task")

        updates: dict[str, Any] = {"status": "CANCELLED", "cancelled_at": _now_iso()}
        if actor_id == worker_id:
            updates["worker_id"] = None

        updated = self._write(task, updates)
        self._logger.info(
            "Task cancelled",
            extra={"task_id": task_id, "cancelled_by": actor_id, "status": "CANCELLED"},
        )

        counterpart = worker_id if actor_id == poster_id else poster_id
        if counterpart is not None:
            actor = self._users.get_records([actor_id]).get(actor_id)
            self._publish(
                [
                    job_cancelled_event(
                        counterpart, actor_id, display_name(actor), task_id, task["title"]
                    )
                ]
            )
        return self._respond(updated)

    async def remove_task(self, task_id: str, actor_id: str) -> None:
        """Delete a task. Only its poster may do so."""
        task = self._load_task(task_id)

        if actor_id != task["poster_id"]:
            raise _forbidden("Only the poster can delete this task")

        if self._store.delete_task(task_id) == 0:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})
        self._logger.info("Task deleted", extra={"task_id": task_id, "poster_id": actor_id})

    def get_stats(self) -> dict[str, Any]:
        """Task counts for the health endpoint."""
        by_status = self._store.count_tasks_by_status()
        return {
            "total_tasks": self._store.count_tasks(),
            "tasks_by_status": {status: by_status.get(status, 0) for status in TASK_STATUSES},
        }

    def close(self) -> None:
        """Close the task store."""
        self._store.close()
