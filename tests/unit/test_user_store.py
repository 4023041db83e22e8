"""Unit tests for the SQLite user store."""

from __future__ import annotations

import pytest

from localheroes_service.services.user_store import (
    DuplicateEmailError,
    InsufficientFundsError,
    UserStore,
)


def _user(user_id: str, email: str, **overrides):
    user = {
        "user_id": user_id,
        "email": email,
        "password_hash": "hash",
        "role": "USER",
        "first_name": "Ada",
        "last_name": "Lovelace",
        "phone": None,
        "address": None,
        "bio": None,
        "skills": [],
        "profile_picture": None,
        "email_verified_at": None,
        "balance": 0,
        "created_at": "2026-01-01T00:00:00.000000Z",
        "updated_at": "2026-01-01T00:00:00.000000Z",
        "version": 1,
    }
    user.update(overrides)
    return user


@pytest.fixture
def store(tmp_path):
    user_store = UserStore(db_path=str(tmp_path / "users.db"))
    yield user_store
    user_store.close()


@pytest.mark.unit
def test_insert_and_get_user_round_trips_skills(store):
    store.insert_user(_user("u-1", "ada@example.com", skills=["plumbing", "painting"]))

    user = store.get_user("u-1")
    assert user is not None
    assert user["email"] == "ada@example.com"
    assert user["skills"] == ["plumbing", "painting"]
    assert user["version"] == 1


@pytest.mark.unit
def test_get_user_by_email_is_case_insensitive(store):
    store.insert_user(_user("u-1", "ada@example.com"))

    user = store.get_user_by_email("  ADA@Example.com ")
    assert user is not None
    assert user["user_id"] == "u-1"


@pytest.mark.unit
def test_duplicate_email_raises(store):
    store.insert_user(_user("u-1", "ada@example.com"))
    with pytest.raises(DuplicateEmailError):
        store.insert_user(_user("u-2", "ada@example.com"))
    assert store.count_users() == 1


@pytest.mark.unit
def test_update_user_is_version_conditioned(store):
    store.insert_user(_user("u-1", "ada@example.com"))

    assert store.update_user("u-1", {"bio": "Handy"}, expected_version=1) == 1
    assert store.update_user("u-1", {"bio": "Stale"}, expected_version=1) == 0

    user = store.get_user("u-1")
    assert user["bio"] == "Handy"
    assert user["version"] == 2


@pytest.mark.unit
def test_update_user_rejects_protected_columns(store):
    store.insert_user(_user("u-1", "ada@example.com"))
    with pytest.raises(ValueError, match="protected"):
        store.update_user("u-1", {"balance": 1000}, expected_version=None)
    with pytest.raises(ValueError, match="protected"):
        store.update_user("u-1", {"role": "ADMIN"}, expected_version=None)


@pytest.mark.unit
def test_adjust_balance_adds_and_refuses_overdraft(store):
    store.insert_user(_user("u-1", "ada@example.com", balance=50))

    assert store.adjust_balance("u-1", 25, "2026-01-02T00:00:00.000000Z") == 75
    with pytest.raises(InsufficientFundsError):
        store.adjust_balance("u-1", -100, "2026-01-02T00:00:00.000000Z")
    assert store.get_user("u-1")["balance"] == 75


@pytest.mark.unit
def test_adjust_balance_unknown_user_returns_none(store):
    assert store.adjust_balance("u-missing", 10, "2026-01-02T00:00:00.000000Z") is None


@pytest.mark.unit
def test_get_users_by_ids_omits_unknown_ids(store):
    store.insert_user(_user("u-1", "ada@example.com"))
    store.insert_user(_user("u-2", "bob@example.com"))

    users = store.get_users_by_ids(["u-1", "u-2", "u-1", "u-missing"])
    assert set(users) == {"u-1", "u-2"}


@pytest.mark.unit
def test_list_users_pages_oldest_first(store):
    store.insert_user(_user("u-1", "a@example.com", created_at="2026-01-01T00:00:00.000000Z"))
    store.insert_user(_user("u-2", "b@example.com", created_at="2026-01-02T00:00:00.000000Z"))
    store.insert_user(_user("u-3", "c@example.com", created_at="2026-01-03T00:00:00.000000Z"))

    page = store.list_users(limit=2, offset=1)
    assert [user["user_id"] for user in page] == ["u-2", "u-3"]
