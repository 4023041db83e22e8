"""User registration and profile endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, Request

from localheroes_service.core.exceptions import ServiceError
from localheroes_service.core.state import get_app_state
from localheroes_service.routers.dependencies import get_current_user
from localheroes_service.routers.validation import parse_json_body, read_model
from localheroes_service.schemas import RegisterRequest, UpdateProfileRequest
from localheroes_service.services.user_registry import user_to_response

if TYPE_CHECKING:
    from localheroes_service.services.user_registry import UserRegistry

router = APIRouter()


def _registry() -> UserRegistry:
    state = get_app_state()
    if state.user_registry is None:
        msg = "UserRegistry not initialized"
        raise RuntimeError(msg)
    return state.user_registry


@router.post("/users", status_code=201)
async def register_user(request: Request) -> dict[str, Any]:
    """Register a new account with email and password."""
    payload = await read_model(request, RegisterRequest)
    user = _registry().register(
        payload.email, payload.password, payload.first_name, payload.last_name
    )
    return user_to_response(user)


@router.get("/users/me")
async def get_me(user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:  # noqa: B008
    """Return the authenticated user's profile."""
    return user_to_response(user)


@router.patch("/users/profile")
async def update_profile(
    request: Request,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    """Update profile fields of the authenticated user."""
    payload = await read_model(request, UpdateProfileRequest)
    return _registry().update_profile(user["user_id"], payload.model_dump(exclude_unset=True))


@router.patch("/users/deposit")
async def deposit(
    request: Request,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    """Add funds to the authenticated user's balance."""
    body = await request.body()
    data = {} if body == b"" else parse_json_body(body)
    if "amount" not in data:
        raise ServiceError("INVALID_AMOUNT", "Missing required field: amount", 400, {})
    return _registry().deposit(user["user_id"], data["amount"])
