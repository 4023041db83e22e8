"""Login, logout, session refresh, password reset and OAuth sign-in."""

from __future__ import annotations

import secrets
import smtplib
from typing import TYPE_CHECKING, Any

from localheroes_service.core.exceptions import ServiceError
from localheroes_service.logging import get_logger
from localheroes_service.services.user_registry import user_to_response

if TYPE_CHECKING:
    from localheroes_service.clients.google_oauth_client import GoogleOAuthClient
    from localheroes_service.clients.mail_client import MailClient
    from localheroes_service.services.token_service import TokenService
    from localheroes_service.services.user_registry import UserRegistry


class AuthService:
    """Composes the user registry, the token service and the mail/OAuth clients."""

    def __init__(
        self,
        user_registry: UserRegistry,
        token_service: TokenService,
        mail_client: MailClient,
        google_oauth_client: GoogleOAuthClient,
    ) -> None:
        self._users = user_registry
        self._tokens = token_service
        self._mail = mail_client
        self._google = google_oauth_client
        self._logger = get_logger(__name__)

    def _session(self, user: dict[str, Any]) -> dict[str, Any]:
        pair = self._tokens.issue(user)
        return {
            "access_token": pair.access_token,
            "refresh_token": pair.refresh_token,
            "token_type": "Bearer",
            "expires_in": self._tokens.access_ttl_seconds,
            "user": user_to_response(user),
        }

    def login(self, email: str, password: str) -> dict[str, Any]:
        """
        Authenticate with email and password and open a session.

        Raises:
            ServiceError: UNAUTHORIZED (401) for an unknown email or wrong password
        """
        user = self._users.find_by_email(email)
        if user is None or not self._users.verify_password(user, password):
            raise ServiceError("UNAUTHORIZED", "Invalid email or password", 401, {})
        self._logger.info("User logged in", extra={"user_id": user["user_id"]})
        return self._session(user)

    def refresh(self, refresh_token: str) -> dict[str, Any]:
        """Mint a new access token from a valid refresh token."""
        return {
            "access_token": self._tokens.refresh(refresh_token),
            "token_type": "Bearer",
            "expires_in": self._tokens.access_ttl_seconds,
        }

    def logout(self, refresh_token: str) -> dict[str, Any]:
        """Revoke the presented refresh token."""
        user_id = self._tokens.revoke_presented(refresh_token)
        self._logger.info("User logged out", extra={"user_id": user_id})
        return {"message": "Logged out successfully"}

    async def request_password_reset(self, email: str) -> dict[str, Any]:
        """
        Mail a password reset link if the email is registered.

        The response is identical whether or not the account exists, and a
        mail failure is logged rather than reported.
        """
        normalized = email.strip().lower()
        message = (
            f"If an account with the email {normalized} exists, "
            "a password reset link has been sent."
        )

        user = self._users.find_by_email(normalized)
        if user is None:
            return {"message": message}

        token = self._tokens.issue_password_reset(user)
        try:
            await self._mail.send_password_reset(user["email"], user["first_name"], token)
        except (smtplib.SMTPException, OSError) as exc:
            self._logger.warning(
                "Password reset mail failed",
                extra={"user_id": user["user_id"], "error": str(exc)},
            )
        else:
            self._logger.info("Password reset requested", extra={"user_id": user["user_id"]})
        return {"message": message}

    def confirm_password_reset(self, token: str, new_password: str) -> dict[str, Any]:
        """Set a new password from a reset token and end every open session."""
        user_id = self._tokens.verify_password_reset(token)
        try:
            self._users.set_password(user_id, new_password)
        except ServiceError as exc:
            if exc.error != "USER_NOT_FOUND":
                raise
            raise ServiceError(
                "UNAUTHORIZED", "The provided token is invalid or has expired.", 401, {}
            ) from exc
        self._tokens.revoke_all_for_user(user_id)
        return {"message": "Your password has been successfully reset."}

    def change_password(self, user_id: str, old_password: str, new_password: str) -> dict[str, Any]:
        """Change a password after checking the current one; ends every open session."""
        user = self._users.get_user_record(user_id)
        if not self._users.verify_password(user, old_password):
            raise ServiceError("UNAUTHORIZED", "Old password is incorrect.", 401, {})
        self._users.set_password(user_id, new_password)
        self._tokens.revoke_all_for_user(user_id)
        return {"message": "Password changed successfully."}

    def google_authorization(self) -> dict[str, Any]:
        """Authorization URL and the state value the callback must echo back."""
        state = secrets.token_urlsafe(24)
        return {"url": self._google.authorization_url(state), "state": state}

    async def google_login(self, code: str) -> dict[str, Any]:
        """Sign in with a Google authorization code, registering on first use."""
        profile = await self._google.fetch_profile(code)
        user = self._users.find_or_create_oauth_user(
            profile.email, profile.first_name, profile.last_name, profile.picture
        )
        self._logger.info("User logged in with Google", extra={"user_id": user["user_id"]})
        return self._session(user)
