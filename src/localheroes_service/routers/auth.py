"""Session endpoints: login, refresh, logout, password management, Google sign-in."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, Request, Response

from localheroes_service.core.exceptions import ServiceError
from localheroes_service.core.state import get_app_state
from localheroes_service.routers.dependencies import (
    OAUTH_STATE_COOKIE,
    REFRESH_COOKIE,
    clear_session_cookies,
    get_current_user,
    set_access_cookie,
    set_oauth_state_cookie,
    set_session_cookies,
)
from localheroes_service.routers.validation import read_model
from localheroes_service.schemas import (
    ChangePasswordRequest,
    LoginRequest,
    PasswordResetConfirmRequest,
    PasswordResetRequest,
    RefreshRequest,
)

if TYPE_CHECKING:
    from localheroes_service.services.auth_service import AuthService

router = APIRouter()


def _auth_service() -> AuthService:
    state = get_app_state()
    if state.auth_service is None:
        msg = "AuthService not initialized"
        raise RuntimeError(msg)
    return state.auth_service


def _refresh_ttl() -> int:
    state = get_app_state()
    if state.token_service is None:
        msg = "TokenService not initialized"
        raise RuntimeError(msg)
    return state.token_service.refresh_ttl_seconds


async def _presented_refresh_token(request: Request) -> str:
    """Refresh token from the refresh cookie, falling back to the JSON body."""
    payload = await read_model(request, RefreshRequest)
    token = request.cookies.get(REFRESH_COOKIE) or payload.refresh_token
    if not token:
        raise ServiceError("INVALID_PAYLOAD", "Refresh token is missing", 400, {})
    return token


@router.post("/auth/login")
async def login(request: Request, response: Response) -> dict[str, Any]:
    """Authenticate with email and password; sets both session cookies."""
    payload = await read_model(request, LoginRequest)
    session = _auth_service().login(payload.email, payload.password)
    set_session_cookies(response, session, _refresh_ttl())
    return session


@router.post("/auth/refresh")
async def refresh(request: Request, response: Response) -> dict[str, Any]:
    """Mint a new access token from a refresh token."""
    token = await _presented_refresh_token(request)
    result = _auth_service().refresh(token)
    set_access_cookie(response, result["access_token"], result["expires_in"])
    return result


@router.post("/auth/logout")
async def logout(request: Request, response: Response) -> dict[str, Any]:
    """Revoke the presented refresh token and clear the session cookies."""
    token = await _presented_refresh_token(request)
    result = _auth_service().logout(token)
    clear_session_cookies(response)
    return result


@router.post("/auth/password-reset")
async def request_password_reset(request: Request) -> dict[str, Any]:
    """Mail a reset link. The answer does not reveal whether the email is registered."""
    payload = await read_model(request, PasswordResetRequest)
    return await _auth_service().request_password_reset(payload.email)


@router.post("/auth/password-reset/confirm")
async def confirm_password_reset(request: Request) -> dict[str, Any]:
    payload = await read_model(request, PasswordResetConfirmRequest)
    return _auth_service().confirm_password_reset(payload.token, payload.new_password)


@router.patch("/auth/change-password")
async def change_password(
    request: Request,
    response: Response,
    user: dict[str, Any] = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    """Change the password; every session of the user is ended."""
    payload = await read_model(request, ChangePasswordRequest)
    result = _auth_service().change_password(
        user["user_id"], payload.old_password, payload.new_password
    )
    clear_session_cookies(response)
    return result


@router.get("/auth/google")
async def google_authorization(response: Response) -> dict[str, Any]:
    """Return the Google consent URL; its state is pinned in a short-lived cookie."""
    result = _auth_service().google_authorization()
    set_oauth_state_cookie(response, result["state"])
    return result


@router.get("/auth/google/callback")
async def google_callback(request: Request, response: Response) -> dict[str, Any]:
    """Exchange a Google authorization code for a session."""
    code = request.query_params.get("code")
    if not code:
        error = request.query_params.get("error")
        message = f"Google sign-in failed: {error}" if error else "Missing authorization code"
        raise ServiceError("UNAUTHORIZED", message, 401, {})

    expected_state = request.cookies.get(OAUTH_STATE_COOKIE)
    presented_state = request.query_params.get("state")
    if (
        not expected_state
        or not presented_state
        or not secrets.compare_digest(expected_state, presented_state)
    ):
        raise ServiceError("UNAUTHORIZED", "Invalid OAuth state", 401, {})

    session = await _auth_service().google_login(code)
    response.delete_cookie(OAUTH_STATE_COOKIE, path="/auth/google")
    set_session_cookies(response, session, _refresh_ttl())
    return session
