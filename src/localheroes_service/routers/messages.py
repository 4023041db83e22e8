"""Direct messaging endpoints and the real-time WebSocket channel."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect, status

from localheroes_service.core.exceptions import ServiceError
from localheroes_service.core.state import get_app_state
from localheroes_service.logging import get_logger
from localheroes_service.routers.dependencies import (
    ACCESS_COOKIE,
    authenticate_token,
    get_current_user,
)
from localheroes_service.routers.validation import (
    extract_bearer_token,
    parse_int_param,
    parse_model,
    read_model,
)
from localheroes_service.schemas import SendMessageRequest

if TYPE_CHECKING:
    from localheroes_service.services.connection_manager import ConnectionManager
    from localheroes_service.services.message_service import MessageService

router = APIRouter()
logger = get_logger(__name__)

_DEFAULT_PAGE_SIZE = 50


def _message_service() -> MessageService:
    state = get_app_state()
    if state.message_service is None:
        msg = "MessageService not initialized"
        raise RuntimeError(msg)
    return state.message_service


def _connection_manager() -> ConnectionManager:
    state = get_app_state()
    if state.connection_manager is None:
        msg = "ConnectionManager not initialized"
        raise RuntimeError(msg)
    return state.connection_manager


# ---------------------------------------------------------------------------
# REST
# ---------------------------------------------------------------------------


@router.post("/messages", status_code=201)
async def send_message(
    request: Request,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    """Send a direct message to another user."""
    payload = await read_model(request, SendMessageRequest)
    return await _message_service().send(user["user_id"], payload.receiver_id, payload.content)


@router.get("/messages")
async def list_messages(
    request: Request,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    """Every message the caller sent or received, newest first."""
    limit = parse_int_param(request, "limit", minimum=1, maximum=100)
    offset = parse_int_param(request, "offset", minimum=0)
    return _message_service().list_for_user(
        user["user_id"],
        limit if limit is not None else _DEFAULT_PAGE_SIZE,
        offset if offset is not None else 0,
    )


@router.get("/messages/unread-count")
async def unread_count(
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    return _message_service().unread_count(user["user_id"])


@router.get("/messages/conversations/{user_id}")
async def get_conversation(
    user_id: str,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    """The conversation between the caller and another user, oldest first."""
    return _message_service().conversation(user["user_id"], user_id)


@router.patch("/messages/{message_id}/read")
async def mark_message_read(
    message_id: str,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    return await _message_service().mark_read(user["user_id"], message_id)


# ---------------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------------


def _websocket_token(websocket: WebSocket) -> str | None:
    token = websocket.query_params.get("token")
    if token:
        return token
    bearer = extract_bearer_token(websocket.headers.get("authorization"))
    if bearer is not None:
        return bearer
    return websocket.cookies.get(ACCESS_COOKIE)


async def _send_event(websocket: WebSocket, event: str, data: Any) -> None:
    await websocket.send_json(
        {
            "event": event,
            "data": data,
            "timestamp": datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z"),
        }
    )


async def _handle_event(websocket: WebSocket, user_id: str, frame: Any) -> None:
    """Dispatch one client frame. Raises ServiceError for invalid input."""
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        raise ServiceError("INVALID_PAYLOAD", "Frame must be an object with an event name", 400, {})
    data = frame.get("data")
    if not isinstance(data, dict):
        data = {}

    event = frame["event"]
    if event == "send_message":
        payload = parse_model(data, SendMessageRequest)
        await _message_service().send(user_id, payload.receiver_id, payload.content)
    elif event == "mark_read":
        message_id = data.get("message_id")
        if not isinstance(message_id, str) or not message_id:
            raise ServiceError("INVALID_PAYLOAD", "message_id is required", 400, {})
        message = await _message_service().mark_read(user_id, message_id)
        await _send_event(websocket, "message_read", message)
    elif event == "join_conversation":
        other_user_id = data.get("other_user_id")
        if not isinstance(other_user_id, str) or not other_user_id:
            raise ServiceError("INVALID_PAYLOAD", "other_user_id is required", 400, {})
        room = _connection_manager().join_conversation(websocket, user_id, other_user_id)
        await _send_event(
            websocket, "conversation_joined", {"room": room, "other_user_id": other_user_id}
        )
    else:
        raise ServiceError("INVALID_PAYLOAD", f"Unknown event: {event}", 400, {})


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """
    Real-time channel for chat and notifications.

    The client authenticates with an access token in the ``token`` query
    parameter, the Authorization header or the access cookie. An invalid
    frame is answered with an ``error`` event; the connection stays open.
    """
    try:
        user = authenticate_token(_websocket_token(websocket))
    except ServiceError as exc:
        logger.info("WebSocket authentication failed", extra={"reason": exc.message})
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    user_id: str = user["user_id"]
    manager = _connection_manager()
    await websocket.accept()
    manager.connect(user_id, websocket)

    try:
        unread = _message_service().unread_count(user_id)["unread_count"]
        await _send_event(websocket, "unread_count", {"count": unread})
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                await _send_event(
                    websocket,
                    "error",
                    {"error": "INVALID_JSON", "message": "Frame is not valid JSON"},
                )
                continue
            try:
                await _handle_event(websocket, user_id, frame)
            except ServiceError as exc:
                await _send_event(websocket, "error", {"error": exc.error, "message": exc.message})
    except WebSocketDisconnect as exc:
        logger.debug("WebSocket closed by client", extra={"user_id": user_id, "code": exc.code})
    finally:
        manager.disconnect(user_id, websocket)
