"""AI customer support endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, Request

from localheroes_service.clients.ai_support_client import CHAT_SUGGESTIONS
from localheroes_service.core.state import get_app_state
from localheroes_service.routers.dependencies import get_current_user
from localheroes_service.routers.validation import read_model
from localheroes_service.schemas import ChatRequest

if TYPE_CHECKING:
    from localheroes_service.clients.ai_support_client import AISupportClient

router = APIRouter()


def _ai_support_client() -> AISupportClient:
    state = get_app_state()
    if state.ai_support_client is None:
        msg = "AISupportClient not initialized"
        raise RuntimeError(msg)
    return state.ai_support_client


@router.post("/ai-support/chat")
async def chat(
    request: Request,
    _user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    """Answer a support question with the configured language model."""
    payload = await read_model(request, ChatRequest)
    reply = await _ai_support_client().generate_reply(payload.message, payload.context)
    return {"reply": reply}


@router.get("/ai-support/suggestions")
async def suggestions() -> dict[str, Any]:
    """Canned questions the chat widget offers."""
    return {"suggestions": list(CHAT_SUGGESTIONS)}
