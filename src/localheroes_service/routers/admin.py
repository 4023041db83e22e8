"""Administrative endpoints. Every route requires the ADMIN role."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from localheroes_service.core.state import get_app_state
from localheroes_service.routers.dependencies import require_admin
from localheroes_service.routers.validation import parse_int_param

router = APIRouter()

_DEFAULT_PAGE_SIZE = 50


@router.get("/admin/users")
async def list_users(
    request: Request,
    _admin: dict[str, Any] = Depends(require_admin),  # noqa: B008
) -> dict[str, Any]:
    """Page through every registered user."""
    limit = parse_int_param(request, "limit", minimum=1, maximum=500)
    offset = parse_int_param(request, "offset", minimum=0)

    state = get_app_state()
    if state.user_registry is None:
        msg = "UserRegistry not initialized"
        raise RuntimeError(msg)

    return state.user_registry.list_users(
        limit=limit if limit is not None else _DEFAULT_PAGE_SIZE,
        offset=offset if offset is not None else 0,
    )


@router.post("/admin/refresh-tokens/sweep")
async def sweep_refresh_tokens(
    _admin: dict[str, Any] = Depends(require_admin),  # noqa: B008
) -> dict[str, Any]:
    """Delete expired refresh token records now instead of waiting for the schedule."""
    state = get_app_state()
    if state.token_service is None:
        msg = "TokenService not initialized"
        raise RuntimeError(msg)

    return {"deleted": state.token_service.sweep_expired()}
