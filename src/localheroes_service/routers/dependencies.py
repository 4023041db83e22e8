"""Authentication dependencies and session cookie helpers shared by routers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import Depends, Request, Response

from localheroes_service.core.exceptions import ServiceError
from localheroes_service.core.state import get_app_state
from localheroes_service.logging import get_logger
from localheroes_service.routers.validation import extract_bearer_token

if TYPE_CHECKING:
    from localheroes_service.config import CookiesConfig

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"
RENEWED_TOKEN_HEADER = "X-Access-Token"
OAUTH_STATE_COOKIE = "oauthState"
OAUTH_STATE_MAX_AGE_SECONDS = 600

logger = get_logger(__name__)


def _cookie_config() -> CookiesConfig:
    state = get_app_state()
    if state.cookies is None:
        msg = "Cookie settings not initialized"
        raise RuntimeError(msg)
    return state.cookies


def set_access_cookie(response: Response, access_token: str, max_age: int) -> None:
    cookies = _cookie_config()
    response.set_cookie(
        ACCESS_COOKIE,
        access_token,
        max_age=max_age,
        httponly=True,
        secure=cookies.secure,
        samesite=cookies.same_site,  # type: ignore[arg-type]
        path="/",
    )


def set_session_cookies(response: Response, session: dict[str, Any], refresh_max_age: int) -> None:
    """Set both session cookies from a login result."""
    cookies = _cookie_config()
    set_access_cookie(response, session["access_token"], session["expires_in"])
    response.set_cookie(
        REFRESH_COOKIE,
        session["refresh_token"],
        max_age=refresh_max_age,
        httponly=True,
        secure=cookies.secure,
        samesite=cookies.same_site,  # type: ignore[arg-type]
        path="/",
    )


def set_oauth_state_cookie(response: Response, state: str) -> None:
    """Pin the OAuth state to the browser that started the Google sign-in."""
    cookies = _cookie_config()
    response.set_cookie(
        OAUTH_STATE_COOKIE,
        state,
        max_age=OAUTH_STATE_MAX_AGE_SECONDS,
        httponly=True,
        secure=cookies.secure,
        samesite="lax",
        path="/auth/google",
    )


def clear_session_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE, path="/")
    response.delete_cookie(REFRESH_COOKIE, path="/")


async def get_current_user(request: Request, response: Response) -> dict[str, Any]:
    """
    Resolve the authenticated user for a request.

    The access token is read from the Authorization header, then from the
    access cookie. When it is missing or no longer valid and the client
    holds a valid refresh cookie, a new access token is minted, set as a
    cookie and echoed in the X-Access-Token header, and the request
    proceeds as the refresh token's user.

    Raises:
        ServiceError: UNAUTHORIZED (401) when neither token authenticates
    """
    state = get_app_state()
    if state.token_service is None or state.user_registry is None:
        msg = "TokenService not initialized"
        raise RuntimeError(msg)

    access_token = extract_bearer_token(request.headers.get("authorization"))
    if access_token is None:
        access_token = request.cookies.get(ACCESS_COOKIE)

    claims: dict[str, Any] | None = None
    if access_token is not None:
        try:
            claims = state.token_service.verify_access(access_token)
        except ServiceError:
            claims = None

    if claims is None:
        refresh_token = request.cookies.get(REFRESH_COOKIE)
        if refresh_token is None:
            if access_token is None:
                raise ServiceError("UNAUTHORIZED", "Authentication required", 401, {})
            raise ServiceError("UNAUTHORIZED", "Invalid or expired access token", 401, {})
        renewed = state.token_service.refresh(refresh_token)
        claims = state.token_service.verify_access(renewed)
        set_access_cookie(response, renewed, state.token_service.access_ttl_seconds)
        response.headers[RENEWED_TOKEN_HEADER] = renewed
        logger.info("Access token renewed", extra={"user_id": claims["sub"]})

    user = state.user_registry.find_by_id(str(claims["sub"]))
    if user is None:
        raise ServiceError("UNAUTHORIZED", "Invalid or expired access token", 401, {})
    return user


async def require_admin(user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:  # noqa: B008
    """Authenticated user with the ADMIN role."""
    if user["role"] != "ADMIN":
        raise ServiceError("FORBIDDEN", "Admin access required", 403, {})
    return user


def authenticate_token(token: str | None) -> dict[str, Any]:
    """Authenticate a bare access token, as sent by WebSocket clients."""
    state = get_app_state()
    if state.token_service is None or state.user_registry is None:
        msg = "TokenService not initialized"
        raise RuntimeError(msg)
    if token is None:
        raise ServiceError("UNAUTHORIZED", "Authentication required", 401, {})
    claims = state.token_service.verify_access(token)
    user = state.user_registry.find_by_id(str(claims["sub"]))
    if user is None:
        raise ServiceError("UNAUTHORIZED", "Invalid or expired access token", 401, {})
    return user
