"""Service-level tests for the task lifecycle."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

import pytest

from localheroes_service.clients.geocoding_client import Coordinates
from localheroes_service.core.exceptions import ServiceError
from localheroes_service.services.notification_dispatcher import NotificationDispatcher
from localheroes_service.services.task_manager import TaskManager
from localheroes_service.services.task_store import TaskStore
from localheroes_service.services.user_registry import UserRegistry
from localheroes_service.services.user_store import UserStore


class RecordingSink:
    """Notification sink that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[Any] = []

    async def create(self, event: Any) -> dict[str, Any]:
        self.events.append(event)
        return {}


class FailingSink:
    async def create(self, event: Any) -> dict[str, Any]:
        msg = "sink down"
        raise RuntimeError(msg)


def _build(tmp_path, *, payment_on_completion=True, sink=None, geocoding_client=None):
    db_path = str(tmp_path / "marketplace.db")
    user_store = UserStore(db_path=db_path)
    registry = UserRegistry(store=user_store, bcrypt_rounds=4)
    sink = sink if sink is not None else RecordingSink()
    dispatcher = NotificationDispatcher(sink=sink, queue_size=100)
    manager = TaskManager(
        store=TaskStore(db_path=db_path),
        user_registry=registry,
        dispatcher=dispatcher,
        geocoding_client=geocoding_client,
        payment_on_completion=payment_on_completion,
        default_page_size=10,
        max_page_size=50,
    )
    return manager, registry, dispatcher, sink


class Marketplace:
    def __init__(self, manager, registry, dispatcher, sink) -> None:
        self.manager = manager
        self.registry = registry
        self.dispatcher = dispatcher
        self.sink = sink

    def user(self, name: str, balance: int = 0) -> str:
        user = self.registry.register(f"{name}@example.com", "correct-horse-battery", name, "Test")
        if balance > 0:
            self.registry.deposit(user["user_id"], balance)
        return user["user_id"]

    def balance(self, user_id: str) -> int:
        return self.registry.get_user_record(user_id)["balance"]

    async def post(self, poster_id: str, price: int = 40, **fields: Any) -> dict[str, Any]:
        payload = {"title": "Mow the lawn", "description": "Front and back", "price": price}
        payload.update(fields)
        return await self.manager.create_task(poster_id, payload)

    async def events(self) -> list[Any]:
        await self.dispatcher.drain()
        return list(self.sink.events)


@pytest.fixture
def market(tmp_path):
    manager, registry, dispatcher, sink = _build(tmp_path)
    yield Marketplace(manager, registry, dispatcher, sink)
    manager.close()
    registry.close()


@pytest.fixture
def simple_market(tmp_path):
    manager, registry, dispatcher, sink = _build(tmp_path, payment_on_completion=False)
    yield Marketplace(manager, registry, dispatcher, sink)
    manager.close()
    registry.close()


def _assert_error(exc_info, error: str, status_code: int) -> None:
    assert exc_info.value.error == error
    assert exc_info.value.status_code == status_code


# ---------------------------------------------------------------------------
# Creation and updates
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_create_task_is_open_and_owned_by_actor(market):
    alice = market.user("alice")

    task = await market.post(alice, tags=["garden"], category="Gardening")

    assert task["status"] == "OPEN"
    assert task["poster_id"] == alice
    assert task["posted_by"]["user_id"] == alice
    assert task["worker_id"] is None
    assert task["applicants"] == []
    assert task["tags"] == ["garden"]
    assert task["task_id"].startswith("t-")


@pytest.mark.unit
async def test_create_task_geocodes_address_without_coordinates(tmp_path):
    geocoder = AsyncMock()
    geocoder.geocode = AsyncMock(return_value=Coordinates(latitude=52.52, longitude=13.405))
    manager, registry, dispatcher, sink = _build(tmp_path, geocoding_client=geocoder)
    market = Marketplace(manager, registry, dispatcher, sink)
    alice = market.user("alice")

    task = await market.post(alice, location={"address": "Alexanderplatz, Berlin"})

    geocoder.geocode.assert_awaited_once_with("Alexanderplatz, Berlin")
    assert task["location"] == {
        "address": "Alexanderplatz, Berlin",
        "latitude": 52.52,
        "longitude": 13.405,
    }
    manager.close()
    registry.close()


@pytest.mark.unit
async def test_update_cannot_change_poster_or_status(market):
    alice = market.user("alice")
    bob = market.user("bob")
    task = await market.post(alice)

    updated = await market.manager.update_task(
        task["task_id"],
        alice,
        {"title": "Mow the big lawn", "poster_id": bob, "status": "PAID", "worker_id": bob},
    )

    assert updated["title"] == "Mow the big lawn"
    assert updated["poster_id"] == alice
    assert updated["status"] == "OPEN"
    assert updated["worker_id"] is None
    assert updated["version"] == task["version"] + 1


@pytest.mark.unit
async def test_update_by_non_poster_is_forbidden(market):
    alice = market.user("alice")
    bob = market.user("bob")
    task = await market.post(alice)

    with pytest.raises(ServiceError) as exc_info:
        await market.manager.update_task(task["task_id"], bob, {"title": "Mine now"})
    _assert_error(exc_info, "FORBIDDEN", 403)


@pytest.mark.unit
async def test_missing_task_is_not_found(market):
    alice = market.user("alice")
    with pytest.raises(ServiceError) as exc_info:
        await market.manager.apply("t-missing", alice)
    _assert_error(exc_info, "TASK_NOT_FOUND", 404)


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_apply_adds_applicant_and_notifies_poster(market):
    alice = market.user("alice")
    bob = market.user("bob")
    task = await market.post(alice)

    applied = await market.manager.apply(task["task_id"], bob)

    assert applied["applicant_ids"] == [bob]
    events = await market.events()
    assert len(events) == 1
    assert events[0].type == "JOB_APPLICATION"
    assert events[0].user_id == alice
    assert events[0].title == "New Job Application"


@pytest.mark.unit
async def test_applying_twice_is_rejected(market):
    alice = market.user("alice")
    bob = market.user("bob")
    task = await market.post(alice)
    await market.manager.apply(task["task_id"], bob)

    with pytest.raises(ServiceError) as exc_info:
        await market.manager.apply(task["task_id"], bob)
    _assert_error(exc_info, "FORBIDDEN", 403)
    assert exc_info.value.message == "You have already applied to this task"


@pytest.mark.unit
async def test_poster_cannot_apply_to_own_task(market):
    alice = market.user("alice")
    task = await market.post(alice)

    with pytest.raises(ServiceError) as exc_info:
        await market.manager.apply(task["task_id"], alice)
    assert exc_info.value.message == "You cannot apply to your own task"

    refreshed = await market.manager.get_task(task["task_id"])
    assert refreshed["applicant_ids"] == []


@pytest.mark.unit
async def test_accept_applicant_clears_pool_and_notifies_each_other_applicant_once(market):
    alice = market.user("alice")
    bob = market.user("bob")
    carol = market.user("carol")
    dave = market.user("dave")
    task = await market.post(alice)
    for applicant in (bob, carol, dave):
        await market.manager.apply(task["task_id"], applicant)
    await market.events()
    market.sink.events.clear()

    accepted = await market.manager.accept_applicant(task["task_id"], alice, carol)

    assert accepted["status"] == "IN_PROGRESS"
    assert accepted["worker_id"] == carol
    assert accepted["accepted_by"]["user_id"] == carol
    assert accepted["applicant_ids"] == []
    assert accepted["accepted_at"] is not None

    events = await market.events()
    by_type: dict[str, list[str]] = {}
    for event in events:
        by_type.setdefault(event.type, []).append(event.user_id)
    assert by_type["APPLICATION_ACCEPTED"] == [carol]
    assert sorted(by_type["APPLICATION_REJECTED"]) == sorted([bob, dave])


@pytest.mark.unit
async def test_accept_applicant_requires_poster_and_pool_membership(market):
    alice = market.user("alice")
    bob = market.user("bob")
    carol = market.user("carol")
    task = await market.post(alice)
    await market.manager.apply(task["task_id"], bob)

    with pytest.raises(ServiceError) as exc_info:
        await market.manager.accept_applicant(task["task_id"], carol, bob)
    _assert_error(exc_info, "FORBIDDEN", 403)

    with pytest.raises(ServiceError) as exc_info:
        await market.manager.accept_applicant(task["task_id"], alice, carol)
    _assert_error(exc_info, "APPLICANT_NOT_FOUND", 404)


@pytest.mark.unit
async def test_deny_applicant_removes_and_notifies(market):
    alice = market.user("alice")
    bob = market.user("bob")
    carol = market.user("carol")
    task = await market.post(alice)
    await market.manager.apply(task["task_id"], bob)
    await market.manager.apply(task["task_id"], carol)
    await market.events()
    market.sink.events.clear()

    denied = await market.manager.deny_applicant(task["task_id"], alice, bob)

    assert denied["applicant_ids"] == [carol]
    assert denied["status"] == "OPEN"
    events = await market.events()
    assert [(event.type, event.user_id) for event in events] == [("APPLICATION_REJECTED", bob)]


@pytest.mark.unit
async def test_direct_accept_assigns_worker_and_rejects_applicants(market):
    alice = market.user("alice")
    bob = market.user("bob")
    carol = market.user("carol")
    task = await market.post(alice)
    await market.manager.apply(task["task_id"], carol)
    await market.events()
    market.sink.events.clear()

    accepted = await market.manager.accept_task(task["task_id"], bob)

    assert accepted["status"] == "IN_PROGRESS"
    assert accepted["worker_id"] == bob
    assert accepted["applicant_ids"] == []
    events = await market.events()
    assert [(event.type, event.user_id) for event in events] == [("APPLICATION_REJECTED", carol)]

    with pytest.raises(ServiceError) as exc_info:
        await market.manager.accept_task(task["task_id"], carol)
    _assert_error(exc_info, "FORBIDDEN", 403)


@pytest.mark.unit
async def test_poster_cannot_accept_own_task(market):
    alice = market.user("alice")
    task = await market.post(alice)

    with pytest.raises(ServiceError) as exc_info:
        await market.manager.accept_task(task["task_id"], alice)
    _assert_error(exc_info, "FORBIDDEN", 403)


# ---------------------------------------------------------------------------
# Completion with payment
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_completion_transfers_price_and_marks_paid(market):
    alice = market.user("alice", balance=100)
    bob = market.user("bob", balance=5)
    task = await market.post(alice, price=40)
    await market.manager.apply(task["task_id"], bob)
    await market.manager.accept_applicant(task["task_id"], alice, bob)
    await market.events()
    market.sink.events.clear()

    completed = await market.manager.complete_task(task["task_id"], alice)

    assert completed["status"] == "PAID"
    assert completed["completed_at"] is not None
    assert market.balance(alice) == 60
    assert market.balance(bob) == 45
    events = await market.events()
    assert [(event.type, event.user_id, event.title) for event in events] == [
        ("JOB_COMPLETED", bob, "Job Completed")
    ]


@pytest.mark.unit
async def test_completion_with_insufficient_balance_changes_nothing(market):
    alice = market.user("alice", balance=10)
    bob = market.user("bob")
    task = await market.post(alice, price=40)
    await market.manager.accept_task(task["task_id"], bob)

    with pytest.raises(ServiceError) as exc_info:
        await market.manager.complete_task(task["task_id"], alice)

    _assert_error(exc_info, "INSUFFICIENT_BALANCE", 403)
    assert exc_info.value.details == {"balance": 10, "price": 40}
    refreshed = await market.manager.get_task(task["task_id"])
    assert refreshed["status"] == "IN_PROGRESS"
    assert market.balance(alice) == 10
    assert market.balance(bob) == 0


@pytest.mark.unit
async def test_only_poster_completes_in_payment_mode(market):
    alice = market.user("alice", balance=100)
    bob = market.user("bob")
    task = await market.post(alice, price=40)
    await market.manager.accept_task(task["task_id"], bob)

    with pytest.raises(ServiceError) as exc_info:
        await market.manager.complete_task(task["task_id"], bob)
    _assert_error(exc_info, "FORBIDDEN", 403)
    assert market.balance(alice) == 100


@pytest.mark.unit
async def test_complete_open_task_is_forbidden(market):
    alice = market.user("alice", balance=100)
    task = await market.post(alice)

    with pytest.raises(ServiceError) as exc_info:
        await market.manager.complete_task(task["task_id"], alice)
    _assert_error(exc_info, "FORBIDDEN", 403)


@pytest.mark.unit
async def test_paid_task_cannot_be_updated_or_cancelled(market):
    alice = market.user("alice", balance=100)
    bob = market.user("bob")
    task = await market.post(alice, price=40)
    await market.manager.accept_task(task["task_id"], bob)
    await market.manager.complete_task(task["task_id"], alice)

    with pytest.raises(ServiceError) as exc_info:
        await market.manager.update_task(task["task_id"], alice, {"price": 1})
    _assert_error(exc_info, "FORBIDDEN", 403)

    with pytest.raises(ServiceError) as exc_info:
        await market.manager.cancel_task(task["task_id"], alice)
    _assert_error(exc_info, "FORBIDDEN", 403)


# ---------------------------------------------------------------------------
# Completion without payment
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_worker_completion_notifies_poster(simple_market):
    alice = simple_market.user("alice")
    bob = simple_market.user("bob")
    task = await simple_market.post(alice)
    await simple_market.manager.accept_task(task["task_id"], bob)
    await simple_market.events()
    simple_market.sink.events.clear()

    completed = await simple_market.manager.complete_task(task["task_id"], bob)

    assert completed["status"] == "COMPLETED"
    events = await simple_market.events()
    assert [(event.type, event.user_id) for event in events] == [("JOB_COMPLETED", alice)]

    with pytest.raises(ServiceError):
        await simple_market.manager.update_task(task["task_id"], alice, {"title": "Again"})


# ---------------------------------------------------------------------------
# Cancellation and removal
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_outsider_cannot_cancel(market):
    alice = market.user("alice")
    bob = market.user("bob")
    carol = market.user("carol")
    task = await market.post(alice)
    await market.manager.accept_task(task["task_id"], bob)

    with pytest.raises(ServiceError) as exc_info:
        await market.manager.cancel_task(task["task_id"], carol)

    _assert_error(exc_info, "FORBIDDEN", 403)
    refreshed = await market.manager.get_task(task["task_id"])
    assert refreshed["status"] == "IN_PROGRESS"


@pytest.mark.unit
async def test_poster_cancel_notifies_worker(market):
    alice = market.user("alice")
    bob = market.user("bob")
    task = await market.post(alice)
    await market.manager.accept_task(task["task_id"], bob)
    await market.events()
    market.sink.events.clear()

    cancelled = await market.manager.cancel_task(task["task_id"], alice)

    assert cancelled["status"] == "CANCELLED"
    assert cancelled["cancelled_at"] is not None
    events = await market.events()
    assert [(event.type, event.user_id) for event in events] == [("JOB_CANCELLED", bob)]

    with pytest.raises(ServiceError) as exc_info:
        await market.manager.cancel_task(task["task_id"], alice)
    _assert_error(exc_info, "FORBIDDEN", 403)


@pytest.mark.unit
async def test_worker_cancel_unassigns_worker(market):
    alice = market.user("alice")
    bob = market.user("bob")
    task = await market.post(alice)
    await market.manager.accept_task(task["task_id"], bob)

    cancelled = await market.manager.cancel_task(task["task_id"], bob)

    assert cancelled["status"] == "CANCELLED"
    assert cancelled["worker_id"] is None
    events = await market.events()
    assert events[-1].type == "JOB_CANCELLED"
    assert events[-1].user_id == alice


@pytest.mark.unit
async def test_remove_task_only_by_poster(market):
    alice = market.user("alice")
    bob = market.user("bob")
    task = await market.post(alice)

    with pytest.raises(ServiceError) as exc_info:
        await market.manager.remove_task(task["task_id"], bob)
    _assert_error(exc_info, "FORBIDDEN", 403)

    await market.manager.remove_task(task["task_id"], alice)
    with pytest.raises(ServiceError) as exc_info:
        await market.manager.get_task(task["task_id"])
    _assert_error(exc_info, "TASK_NOT_FOUND", 404)


# ---------------------------------------------------------------------------
# Concurrency and side effects
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_stale_write_is_rejected_with_conflict(market):
    alice = market.user("alice")
    bob = market.user("bob")
    task = await market.post(alice)

    stale = market.manager._load_task(task["task_id"])
    await market.manager.accept_task(task["task_id"], bob)

    with pytest.raises(ServiceError) as exc_info:
        market.manager._write(stale, {"status": "CANCELLED"})
    _assert_error(exc_info, "TASK_CONFLICT", 409)

    refreshed = await market.manager.get_task(task["task_id"])
    assert refreshed["status"] == "IN_PROGRESS"


@pytest.mark.unit
async def test_notification_failure_does_not_change_outcome(tmp_path):
    manager, registry, dispatcher, _ = _build(tmp_path, sink=FailingSink())
    market = Marketplace(manager, registry, dispatcher, RecordingSink())
    alice = market.user("alice")
    bob = market.user("bob")
    task = await market.post(alice)

    applied = await manager.apply(task["task_id"], bob)
    await dispatcher.drain()

    assert applied["applicant_ids"] == [bob]
    assert (await manager.get_task(task["task_id"]))["applicant_ids"] == [bob]
    manager.close()
    registry.close()


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_search_paginates_and_filters(market):
    alice = market.user("alice")
    bob = market.user("bob")
    for price in (10, 20, 30):
        await market.post(alice, price=price)
    await market.post(bob, price=99, title="Walk the dog", description="Twice a day")

    page = await market.manager.search_tasks({"posted_by": alice, "limit": 2, "page": 2})
    assert page["total"] == 3
    assert page["total_pages"] == 2
    assert len(page["tasks"]) == 1

    cheap = await market.manager.search_tasks({"max_price": 20, "sort": "price_asc"})
    assert [task["price"] for task in cheap["tasks"]] == [10, 20]

    recent = await market.manager.search_tasks({"date_posted": "Last Hour", "search": "dog"})
    assert [task["poster_id"] for task in recent["tasks"]] == [bob]


@pytest.mark.unit
@pytest.mark.parametrize(
    "filters",
    [{"status": "DONE"}, {"sort": "random"}, {"date_posted": "Last Year"}],
)
async def test_search_rejects_unknown_filter_values(market, filters):
    with pytest.raises(ServiceError) as exc_info:
        await market.manager.search_tasks(filters)
    _assert_error(exc_info, "INVALID_PAYLOAD", 400)


@pytest.mark.unit
async def test_stats_cover_every_status(market):
    alice = market.user("alice")
    await market.post(alice)

    stats = market.manager.get_stats()

    assert stats["total_tasks"] == 1
    assert stats["tasks_by_status"] == {
        "OPEN": 1,
        "IN_PROGRESS": 0,
        "COMPLETED": 0,
        "CANCELLED": 0,
        "PAID": 0,
    }
