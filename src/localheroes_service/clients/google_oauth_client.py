"""Async HTTP client for the Google OAuth 2.0 authorization code flow."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx

from localheroes_service.core.exceptions import ServiceError
from localheroes_service.logging import get_logger


@dataclass(frozen=True)
class GoogleProfile:
    """The subset of the Google userinfo response used to sign a user in."""

    email: str
    first_name: str
    last_name: str
    picture: str | None


class GoogleOAuthClient:
    """
    Exchanges an authorization code for the signed-in Google profile.

    Only verified email addresses are accepted.
    """

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        authorization_url: str,
        token_url: str,
        userinfo_url: str,
        timeout_seconds: int,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._authorization_url = authorization_url
        self._token_url = token_url
        self._userinfo_url = userinfo_url
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    def authorization_url(self, state: str) -> str:
        """URL the browser is sent to for Google consent."""
        query = urlencode(
            {
                "client_id": self._client_id,
                "redirect_uri": self._redirect_uri,
                "response_type": "code",
                "scope": "openid email profile",
                "state": state,
                "prompt": "select_account",
            }
        )
        return f"{self._authorization_url}?{query}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        logger = get_logger(__name__)
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Google OAuth request failed", extra={"error": str(exc), "url": url})
            raise ServiceError(
                error="OAUTH_PROVIDER_UNAVAILABLE",
                message="Cannot connect to the OAuth provider",
                status_code=502,
                details={},
            ) from exc

    async def fetch_profile(self, code: str) -> GoogleProfile:
        """
        Exchange an authorization code and read the user's profile.

        Raises:
            ServiceError: UNAUTHORIZED (401) if Google rejects the code or
                the email is not verified
            ServiceError: OAUTH_PROVIDER_UNAVAILABLE (502) on transport errors
        """
        token_response = await self._request(
            "POST",
            self._token_url,
            data={
                "code": code,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "redirect_uri": self._redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        if token_response.status_code != 200:
            get_logger(__name__).warning(
                "Google OAuth code exchange rejected",
                extra={"status_code": token_response.status_code},
            )
            raise ServiceError("UNAUTHORIZED", "Google sign-in failed", 401, {})

        access_token = token_response.json().get("access_token")
        if not isinstance(access_token, str):
            raise ServiceError("UNAUTHORIZED", "Google sign-in failed", 401, {})

        profile_response = await self._request(
            "GET",
            self._userinfo_url,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if profile_response.status_code != 200:
            raise ServiceError("UNAUTHORIZED", "Google sign-in failed", 401, {})

        profile: dict[str, Any] = profile_response.json()
        email = profile.get("email")
        if not isinstance(email, str) or not profile.get("email_verified", False):
            raise ServiceError("UNAUTHORIZED", "Google account email is not verified", 401, {})

        return GoogleProfile(
            email=email,
            first_name=str(profile.get("given_name") or email.split("@")[0]),
            last_name=str(profile.get("family_name") or ""),
            picture=profile.get("picture"),
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
