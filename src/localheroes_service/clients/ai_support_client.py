"""Async HTTP client for the generative AI support assistant."""

from __future__ import annotations

import json
from typing import Any

import httpx

from localheroes_service.core.exceptions import ServiceError
from localheroes_service.logging import get_logger

_SYSTEM_PROMPT = """You are a helpful customer support agent for LocalHeroes, a local service \
marketplace app. LocalHeroes connects people who need help with local services (like cleaning, \
gardening, handyman work, etc.) with skilled local service providers.

Key features of LocalHeroes:
- Users can post jobs they need help with
- Service providers can browse and apply for jobs
- Payment from the poster's balance when a job is completed
- User profiles with skills and experience
- Real-time messaging between users
- Job management and tracking

Please provide helpful, friendly, and accurate assistance. If you don't know something specific \
about the app, suggest they contact human support or check the app's help section.
Keep responses concise and actionable."""

CHAT_SUGGESTIONS: tuple[str, ...] = (
    "How do I post a job?",
    "How does payment work?",
    "How can I become a service provider?",
    "How do I contact someone about a job?",
    "What if I have issues with a service provider?",
    "How do I update my profile?",
    "What types of services are available?",
)

_FALLBACK_REPLY = "Sorry, I could not generate a response."


def build_prompt(user_message: str, context: dict[str, Any] | None) -> str:
    """Compose the system prompt, the user's message and optional context."""
    parts = [_SYSTEM_PROMPT, f"User message: {user_message}"]
    if context:
        parts.append(f"Additional context: {json.dumps(context, default=str)}")
    parts.append("Response:")
    return "\n\n".join(parts)


class AISupportClient:
    """
    Passthrough to the Gemini ``generateContent`` endpoint.

    Without an API key the assistant is unavailable (503); upstream
    failures surface as 502.
    """

    def __init__(
        self,
        api_key: str | None,
        base_url: str,
        model: str,
        timeout_seconds: int,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._model = model
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def generate_reply(self, user_message: str, context: dict[str, Any] | None) -> str:
        """
        Ask the model for a support answer.

        Raises:
            ServiceError: AI_SUPPORT_UNAVAILABLE (503) when no API key is configured
            ServiceError: AI_SUPPORT_UNAVAILABLE (502) on upstream failures
        """
        logger = get_logger(__name__)

        if not self._api_key:
            raise ServiceError(
                error="AI_SUPPORT_UNAVAILABLE",
                message="AI support is not configured",
                status_code=503,
                details={},
            )

        try:
            response = await self._client.post(
                f"/v1beta/models/{self._model}:generateContent",
                headers={"x-goog-api-key": self._api_key},
                json={
                    "contents": [
                        {"role": "user", "parts": [{"text": build_prompt(user_message, context)}]}
                    ]
                },
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "AI support request failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="AI_SUPPORT_UNAVAILABLE",
                message="Failed to generate AI response. Please try again or contact human support.",
                status_code=502,
                details={},
            ) from exc

        if response.status_code != 200:
            logger.warning(
                "AI support unexpected status",
                extra={"status_code": response.status_code, "model": self._model},
            )
            raise ServiceError(
                error="AI_SUPPORT_UNAVAILABLE",
                message="Failed to generate AI response. Please try again or contact human support.",
                status_code=502,
                details={},
            )

        try:
            body: dict[str, Any] = response.json()
            text = body["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError):
            return _FALLBACK_REPLY
        return str(text) if text else _FALLBACK_REPLY

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
