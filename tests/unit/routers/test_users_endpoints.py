"""User registration, profile and balance endpoints."""

from __future__ import annotations

import pytest

from tests.unit.routers.conftest import auth_headers, register_user, signed_up


@pytest.mark.unit
async def test_register_returns_public_profile(client):
    user = await register_user(client, "Alice")

    assert user["user_id"].startswith("u-")
    assert user["email"] == "alice@example.com"
    assert user["role"] == "USER"
    assert user["balance"] == 0
    assert "password_hash" not in user
    assert "password" not in user


@pytest.mark.unit
async def test_register_duplicate_email(client):
    await register_user(client, "Alice")

    response = await client.post(
        "/users",
        json={
            "email": "ALICE@example.com",
            "password": "another-password",
            "first_name": "Alice",
            "last_name": "Again",
        },
    )

    assert response.status_code == 409
    assert response.json()["error"] == "EMAIL_EXISTS"


@pytest.mark.unit
async def test_get_me(client):
    session = await signed_up(client, "Alice")

    response = await client.get("/users/me", headers=auth_headers(session))

    assert response.status_code == 200
    assert response.json()["first_name"] == "Alice"


@pytest.mark.unit
async def test_update_profile(client):
    session = await signed_up(client, "Alice")

    response = await client.patch(
        "/users/profile",
        json={"bio": "Handy with tools", "skills": ["plumbing", "painting"]},
        headers=auth_headers(session),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["bio"] == "Handy with tools"
    assert body["skills"] == ["plumbing", "painting"]
    assert body["first_name"] == "Alice"


@pytest.mark.unit
@pytest.mark.parametrize("field", ["balance", "role", "email", "password"])
async def test_update_profile_rejects_protected_fields(client, field):
    session = await signed_up(client, "Alice")

    response = await client.patch(
        "/users/profile", json={field: "ADMIN"}, headers=auth_headers(session)
    )

    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


@pytest.mark.unit
async def test_deposit_adds_to_balance(client):
    session = await signed_up(client, "Alice")

    first = await client.patch(
        "/users/deposit", json={"amount": 70}, headers=auth_headers(session)
    )
    second = await client.patch(
        "/users/deposit", json={"amount": 30}, headers=auth_headers(session)
    )

    assert first.json()["balance"] == 70
    assert second.json()["balance"] == 100


@pytest.mark.unit
@pytest.mark.parametrize(
    "body", [{}, {"amount": 0}, {"amount": -10}, {"amount": "50"}, {"amount": 1.5}]
)
async def test_deposit_rejects_invalid_amounts(client, body):
    session = await signed_up(client, "Alice")

    response = await client.patch("/users/deposit", json=body, headers=auth_headers(session))

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_AMOUNT"
