"""User registration, profiles, balances and password credentials."""

from __future__ import annotations

import secrets
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import bcrypt

from localheroes_service.core.exceptions import ServiceError
from localheroes_service.logging import get_logger
from localheroes_service.services.user_store import DuplicateEmailError, InsufficientFundsError

if TYPE_CHECKING:
    from localheroes_service.services.user_store import UserStore

USER_ROLES: frozenset[str] = frozenset({"USER", "ADMIN"})

# bcrypt only considers the first 72 bytes of a password
_MAX_PASSWORD_BYTES = 72

_PROFILE_FIELDS: frozenset[str] = frozenset(
    {"first_name", "last_name", "phone", "address", "bio", "skills", "profile_picture"}
)


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def user_to_response(user: dict[str, Any]) -> dict[str, Any]:
    """Public representation of a user. Never includes the password hash."""
    return {
        "user_id": user["user_id"],
        "email": user["email"],
        "role": user["role"],
        "first_name": user["first_name"],
        "last_name": user["last_name"],
        "phone": user["phone"],
        "address": user["address"],
        "bio": user["bio"],
        "skills": user["skills"],
        "profile_picture": user["profile_picture"],
        "email_verified_at": user["email_verified_at"],
        "balance": user["balance"],
        "created_at": user["created_at"],
        "updated_at": user["updated_at"],
    }


def user_to_summary(user: dict[str, Any]) -> dict[str, Any]:
    """Short form embedded in tasks, notifications and messages."""
    return {
        "user_id": user["user_id"],
        "first_name": user["first_name"],
        "last_name": user["last_name"],
        "email": user["email"],
        "profile_picture": user["profile_picture"],
    }


def display_name(user: dict[str, Any] | None) -> str:
    """Human-readable name used in notification texts."""
    if user is None:
        return "Someone"
    return f"{user['first_name']} {user['last_name']}".strip() or user["email"]


class UserRegistry:
    """
    Registers users and manages their profiles, credentials and balances.

    Passwords are hashed with bcrypt. Profile updates are conditioned on the
    version read at load time; a concurrent writer makes the update fail
    with USER_CONFLICT instead of silently overwriting.
    """

    def __init__(self, store: UserStore, bcrypt_rounds: int) -> None:
        self._store = store
        self._bcrypt_rounds = bcrypt_rounds
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Password helpers
    # ------------------------------------------------------------------

    def hash_password(self, password: str) -> str:
        """Hash a plaintext password with bcrypt."""
        encoded = password.encode("utf-8")
        if len(encoded) > _MAX_PASSWORD_BYTES:
            raise ServiceError(
                "VALIDATION_ERROR",
                f"Password must be at most {_MAX_PASSWORD_BYTES} bytes",
                400,
                {},
            )
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self._bcrypt_rounds)).decode("utf-8")

    @staticmethod
    def verify_password(user: dict[str, Any], password: str) -> bool:
        """Check a plaintext password against the user's stored hash."""
        encoded = password.encode("utf-8")
        if len(encoded) > _MAX_PASSWORD_BYTES:
            return False
        return bcrypt.checkpw(encoded, user["password_hash"].encode("utf-8"))

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_user_record(self, user_id: str) -> dict[str, Any]:
        """Load the full user record, or raise USER_NOT_FOUND."""
        user = self._store.get_user(user_id)
        if user is None:
            raise ServiceError("USER_NOT_FOUND", "User not found", 404, {})
        return user

    def find_by_email(self, email: str) -> dict[str, Any] | None:
        """Load the full user record for an email, if registered."""
        return self._store.get_user_by_email(email)

    def find_by_id(self, user_id: str) -> dict[str, Any] | None:
        """Load the full user record for an id, if it exists."""
        return self._store.get_user(user_id)

    def get_user(self, user_id: str) -> dict[str, Any]:
        """Public representation of a user."""
        return user_to_response(self.get_user_record(user_id))

    def get_summaries(self, user_ids: list[str]) -> dict[str, dict[str, Any]]:
        """Resolve user ids into summaries. Unknown ids are omitted."""
        return {
            user_id: user_to_summary(user)
            for user_id, user in self._store.get_users_by_ids(user_ids).items()
        }

    def get_records(self, user_ids: list[str]) -> dict[str, dict[str, Any]]:
        """Resolve user ids into full records. Unknown ids are omitted."""
        return self._store.get_users_by_ids(user_ids)

    def list_users(self, limit: int, offset: int) -> dict[str, Any]:
        """List users for administrators."""
        users = self._store.list_users(limit=limit, offset=offset)
        return {
            "users": [user_to_response(user) for user in users],
            "total": self._store.count_users(),
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        *,
        role: str = "USER",
        email_verified: bool = False,
        profile_picture: str | None = None,
    ) -> dict[str, Any]:
        """
        Register a new user.

        Raises:
            ServiceError: EMAIL_EXISTS (409) if the email is already registered
        """
        if role not in USER_ROLES:
            raise ServiceError("VALIDATION_ERROR", f"Unknown role: {role}", 400, {})

        normalized_email = email.strip().lower()
        now = _now_iso()
        user = {
            "user_id": f"u-{uuid.uuid4()}",
            "email": normalized_email,
            "password_hash": self.hash_password(password),
            "role": role,
            "first_name": first_name,
            "last_name": last_name,
            "phone": None,
            "address": None,
            "bio": None,
            "skills": [],
            "profile_picture": profile_picture,
            "email_verified_at": now if email_verified else None,
            "balance": 0,
            "created_at": now,
            "updated_at": now,
            "version": 1,
        }

        try:
            self._store.insert_user(user)
        except DuplicateEmailError as exc:
            raise ServiceError(
                "EMAIL_EXISTS",
                f"User with email {normalized_email} already exists.",
                409,
                {},
            ) from exc

        self._logger.info("User registered", extra={"user_id": user["user_id"], "role": role})
        return user

    def find_or_create_oauth_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        profile_picture: str | None,
    ) -> dict[str, Any]:
        """Return the user for a verified OAuth email, registering it on first login."""
        existing = self._store.get_user_by_email(email)
        if existing is not None:
            return existing
        return self.register(
            email,
            secrets.token_urlsafe(32),
            first_name,
            last_name,
            email_verified=True,
            profile_picture=profile_picture,
        )

    def update_profile(self, user_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """
        Merge profile fields into a user record.

        Credentials, email, role and balance are not profile fields and are
        rejected here.
        """
        unknown = sorted(set(fields) - _PROFILE_FIELDS)
        if unknown:
            raise ServiceError(
                "VALIDATION_ERROR",
                f"Fields cannot be updated: {', '.join(unknown)}",
                400,
                {"fields": unknown},
            )

        user = self.get_user_record(user_id)
        if len(fields) == 0:
            return user_to_response(user)

        changed = self._store.update_user(
            user_id,
            {**fields, "updated_at": _now_iso()},
            expected_version=user["version"],
        )
        if changed == 0:
            raise ServiceError(
                "USER_CONFLICT",
                "User was modified concurrently, reload and retry",
                409,
                {},
            )
        return self.get_user(user_id)

    def set_password(self, user_id: str, new_password: str) -> None:
        """Replace a user's password hash."""
        user = self.get_user_record(user_id)
        changed = self._store.update_user(
            user_id,
            {"password_hash": self.hash_password(new_password), "updated_at": _now_iso()},
            expected_version=user["version"],
        )
        if changed == 0:
            raise ServiceError(
                "USER_CONFLICT",
                "User was modified concurrently, reload and retry",
                409,
                {},
            )
        self._logger.info("Password changed", extra={"user_id": user_id})

    def deposit(self, user_id: str, amount: int) -> dict[str, Any]:
        """Add a positive amount to a user's balance."""
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ServiceError(
                "INVALID_AMOUNT", "Amount must be a positive integer", 400, {}
            )

        try:
            new_balance = self._store.adjust_balance(user_id, amount, _now_iso())
        except InsufficientFundsError as exc:
            msg = "A positive deposit cannot overdraw a balance"
            raise RuntimeError(msg) from exc
        if new_balance is None:
            raise ServiceError("USER_NOT_FOUND", "User not found", 404, {})

        self._logger.info(
            "Balance deposited",
            extra={"user_id": user_id, "amount": amount, "balance": new_balance},
        )
        return self.get_user(user_id)

    def close(self) -> None:
        """Close the user store."""
        self._store.close()
