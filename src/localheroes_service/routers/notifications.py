"""Notification inbox endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, Request

from localheroes_service.core.state import get_app_state
from localheroes_service.routers.dependencies import get_current_user
from localheroes_service.routers.validation import parse_int_param

if TYPE_CHECKING:
    from localheroes_service.services.notification_service import NotificationService

router = APIRouter()


def _notification_service() -> NotificationService:
    state = get_app_state()
    if state.notification_service is None:
        msg = "NotificationService not initialized"
        raise RuntimeError(msg)
    return state.notification_service


@router.get("/notifications")
async def list_notifications(
    request: Request,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    """The caller's notifications, newest first, with unread count."""
    limit = parse_int_param(request, "limit", minimum=1, maximum=100)
    offset = parse_int_param(request, "offset", minimum=0)
    return _notification_service().list_for_user(user["user_id"], limit, offset)


# MUST be before PATCH /notifications/{notification_id}/read
@router.patch("/notifications/read-all")
async def mark_all_read(
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    return _notification_service().mark_all_as_read(user["user_id"])


@router.patch("/notifications/{notification_id}/read")
async def mark_read(
    notification_id: str,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    return _notification_service().mark_as_read(user["user_id"], notification_id)


@router.delete("/notifications/{notification_id}", status_code=204)
async def delete_notification(
    notification_id: str,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> None:
    _notification_service().delete(user["user_id"], notification_id)
