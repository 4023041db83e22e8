"""Router test fixtures: a real app on a temp database and request helpers."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from localheroes_service.app import create_app
from localheroes_service.config import clear_settings_cache
from localheroes_service.core.lifespan import lifespan
from localheroes_service.core.state import get_app_state, reset_app_state
from tests.helpers import DEFAULT_PASSWORD, write_config

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with a temp database and mocked outbound mail."""
    config_path = write_config(tmp_path)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()

        # Replace outbound mail with a mock; the auth service holds the reference
        mock_mail = AsyncMock()
        state.mail_client = mock_mail
        if state.auth_service is not None:
            state.auth_service._mail = mock_mail

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
async def register_user(
    client: AsyncClient,
    name: str,
    password: str = DEFAULT_PASSWORD,
) -> dict[str, Any]:
    """Register a user named ``name`` with an email derived from it."""
    response = await client.post(
        "/users",
        json={
            "email": f"{name.lower()}@example.com",
            "password": password,
            "first_name": name,
            "last_name": "Tester",
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


async def login(
    client: AsyncClient,
    name: str,
    password: str = DEFAULT_PASSWORD,
) -> dict[str, Any]:
    """
    Log in and return the session body.

    The cookies the login sets are dropped from the client jar so that each
    test states explicitly which credentials it sends.
    """
    response = await client.post(
        "/auth/login",
        json={"email": f"{name.lower()}@example.com", "password": password},
    )
    assert response.status_code == 200, response.text
    client.cookies.clear()
    return response.json()


def auth_headers(session: dict[str, Any]) -> dict[str, str]:
    """Bearer Authorization header for a session."""
    return {"Authorization": f"Bearer {session['access_token']}"}


async def signed_up(client: AsyncClient, name: str, balance: int = 0) -> dict[str, Any]:
    """Register, log in and optionally fund a user. Returns the session."""
    await register_user(client, name)
    session = await login(client, name)
    if balance > 0:
        response = await client.patch(
            "/users/deposit", json={"amount": balance}, headers=auth_headers(session)
        )
        assert response.status_code == 200, response.text
    return session


async def create_task(
    client: AsyncClient,
    session: dict[str, Any],
    price: int = 40,
    **fields: Any,
) -> dict[str, Any]:
    """Post a task as the session's user."""
    payload: dict[str, Any] = {
        "title": "Mow the lawn",
        "description": "Front and back garden",
        "price": price,
    }
    payload.update(fields)
    response = await client.post("/tasks", json=payload, headers=auth_headers(session))
    assert response.status_code == 201, response.text
    return response.json()


async def flush_notifications() -> None:
    """Wait until the dispatcher has delivered every queued notification."""
    dispatcher = get_app_state().notification_dispatcher
    assert dispatcher is not None
    await dispatcher.drain()


def make_admin(email: str) -> dict[str, Any]:
    """Register an ADMIN account directly through the registry."""
    registry = get_app_state().user_registry
    assert registry is not None
    return registry.register(email, DEFAULT_PASSWORD, "Admin", "User", role="ADMIN")
