"""Access/refresh token issuance, validation, renewal and revocation."""

from __future__ import annotations

import hashlib
import hmac
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from joserfc import jwt
from joserfc.errors import JoseError
from joserfc.jwk import OctKey

from localheroes_service.core.exceptions import ServiceError
from localheroes_service.logging import get_logger

if TYPE_CHECKING:
    from localheroes_service.services.refresh_token_store import RefreshTokenStore
    from localheroes_service.services.user_store import UserStore

_ALGORITHM = "HS256"

_INVALID_REFRESH = "Invalid or expired refresh token"
_INVALID_ACCESS = "Invalid or expired access token"
_INVALID_RESET = "The provided token is invalid or has expired."


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec="microseconds").replace("+00:00", "Z")


def hash_token(token: str) -> str:
    """Return the hex SHA-256 digest stored in place of a refresh token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class TokenPair:
    """An access token and the refresh token issued alongside it."""

    access_token: str
    refresh_token: str
    jti: str


class TokenService:
    """
    Issues and validates the HS256 JWTs that authenticate every request.

    Access tokens are short-lived and never stored. Refresh tokens carry a
    unique ``jti``; only their hash is persisted. Each user keeps at most
    ``max_active_tokens`` active refresh tokens: issuing one more evicts
    the active token closest to expiry. Every validation failure on a
    refresh token produces the same opaque UNAUTHORIZED error.
    """

    def __init__(
        self,
        store: RefreshTokenStore,
        user_store: UserStore,
        *,
        access_secret: str,
        refresh_secret: str,
        password_reset_secret: str,
        access_ttl_seconds: int,
        refresh_ttl_seconds: int,
        password_reset_ttl_seconds: int,
        max_active_tokens: int,
    ) -> None:
        self._store = store
        self._user_store = user_store
        self._access_key = OctKey.import_key(access_secret)
        self._refresh_key = OctKey.import_key(refresh_secret)
        self._reset_key = OctKey.import_key(password_reset_secret)
        self._access_ttl = timedelta(seconds=access_ttl_seconds)
        self._refresh_ttl = timedelta(seconds=refresh_ttl_seconds)
        self._reset_ttl = timedelta(seconds=password_reset_ttl_seconds)
        self._max_active_tokens = max_active_tokens
        self._logger = get_logger(__name__)

    @property
    def access_ttl_seconds(self) -> int:
        return int(self._access_ttl.total_seconds())

    @property
    def refresh_ttl_seconds(self) -> int:
        return int(self._refresh_ttl.total_seconds())

    # ------------------------------------------------------------------
    # Signing helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _user_claims(user: dict[str, Any]) -> dict[str, Any]:
        return {"sub": user["user_id"], "email": user["email"], "role": user["role"]}

    @staticmethod
    def _sign(claims: dict[str, Any], key: OctKey, issued_at: datetime, ttl: timedelta) -> str:
        payload = {
            **claims,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + ttl).timestamp()),
        }
        return jwt.encode({"alg": _ALGORITHM}, payload, key, algorithms=[_ALGORITHM])

    @staticmethod
    def _decode(token: str, key: OctKey, token_type: str) -> dict[str, Any] | None:
        """Verify signature, expiry and type. Returns the claims or None."""
        try:
            decoded = jwt.decode(token, key, algorithms=[_ALGORITHM])
            registry = jwt.JWTClaimsRegistry(
                exp={"essential": True},
                sub={"essential": True},
            )
            registry.validate(decoded.claims)
        except (JoseError, ValueError, TypeError):
            return None
        claims: dict[str, Any] = dict(decoded.claims)
        if claims.get("typ") != token_type:
            return None
        return claims

    def _mint_access_token(self, claims: dict[str, Any], issued_at: datetime) -> str:
        return self._sign({**claims, "typ": "access"}, self._access_key, issued_at, self._access_ttl)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def issue(self, user: dict[str, Any]) -> TokenPair:
        """
        Issue an access/refresh pair for a user.

        Evicts the soonest-expiring active refresh token(s) so that, after
        the new record is stored, the user holds at most max_active_tokens.
        """
        now = datetime.now(UTC).replace(microsecond=0)
        now_iso = _iso(now)
        user_claims = self._user_claims(user)
        jti = uuid.uuid4().hex

        access_token = self._mint_access_token(user_claims, now)
        refresh_token = self._sign(
            {**user_claims, "typ": "refresh", "jti": jti},
            self._refresh_key,
            now,
            self._refresh_ttl,
        )

        active = self._store.list_active_tokens(user["user_id"], now_iso)
        while len(active) >= self._max_active_tokens:
            evicted = active.pop(0)
            self._store.delete_token(evicted["jti"])
            self._logger.info(
                "Refresh token evicted",
                extra={"user_id": user["user_id"], "jti": evicted["jti"]},
            )

        self._store.insert_token(
            {
                "jti": jti,
                "user_id": user["user_id"],
                "token_hash": hash_token(refresh_token),
                "expires_at": _iso(now + self._refresh_ttl),
                "revoked": False,
                "created_at": now_iso,
            }
        )
        self._logger.info("Refresh token issued", extra={"user_id": user["user_id"], "jti": jti})
        return TokenPair(access_token=access_token, refresh_token=refresh_token, jti=jti)

    def validate_refresh(self, token: str) -> dict[str, Any]:
        """
        Validate a presented refresh token against its stored record.

        Raises:
            ServiceError: UNAUTHORIZED (401) for a bad signature, an expired
                token, a missing, revoked or expired record, or a hash
                mismatch. The message never says which.
        """
        claims = self._decode(token, self._refresh_key, "refresh")
        jti = claims.get("jti") if claims is not None else None
        if claims is None or not isinstance(jti, str):
            raise ServiceError("UNAUTHORIZED", _INVALID_REFRESH, 401, {})

        record = self._store.get_token(jti)
        now_iso = _iso(datetime.now(UTC))
        if (
            record is None
            or record["revoked"]
            or record["expires_at"] <= now_iso
            or record["user_id"] != claims["sub"]
            or not hmac.compare_digest(record["token_hash"], hash_token(token))
        ):
            raise ServiceError("UNAUTHORIZED", _INVALID_REFRESH, 401, {})

        return claims

    def refresh(self, token: str) -> str:
        """
        Validate a refresh token and mint a fresh access token. No rotation.

        Claims come from the current user record so role changes take effect.
        When the record cannot be loaded, the identity claims carried by the
        refresh token itself are used.
        """
        claims = self.validate_refresh(token)
        user = self._user_store.get_user(str(claims["sub"]))
        if user is not None:
            user_claims = self._user_claims(user)
        else:
            self._logger.warning(
                "Refresh token user record missing, using token claims",
                extra={"user_id": claims["sub"], "jti": claims["jti"]},
            )
            user_claims = {
                "sub": claims["sub"],
                "email": claims.get("email"),
                "role": claims.get("role"),
            }
        return self._mint_access_token(user_claims, datetime.now(UTC))

    def verify_access(self, token: str) -> dict[str, Any]:
        """
        Verify an access token and return its claims.

        Raises:
            ServiceError: UNAUTHORIZED (401) on any verification failure
        """
        claims = self._decode(token, self._access_key, "access")
        if claims is None:
            raise ServiceError("UNAUTHORIZED", _INVALID_ACCESS, 401, {})
        return claims

    def revoke(self, jti: str) -> None:
        """Mark a refresh token revoked. Revoking twice, or an unknown jti, is a no-op."""
        if self._store.revoke_token(jti) > 0:
            self._logger.info("Refresh token revoked", extra={"jti": jti})

    def revoke_presented(self, token: str) -> str:
        """
        Revoke the refresh token a client presents (logout).

        Returns the owning user id.
        """
        claims = self._decode(token, self._refresh_key, "refresh")
        jti = claims.get("jti") if claims is not None else None
        if claims is None or not isinstance(jti, str):
            raise ServiceError("UNAUTHORIZED", _INVALID_REFRESH, 401, {})
        self.revoke(jti)
        return str(claims["sub"])

    def revoke_all_for_user(self, user_id: str) -> int:
        """Revoke every active refresh token of a user."""
        revoked = self._store.revoke_tokens_for_user(user_id)
        self._logger.info(
            "Refresh tokens revoked for user",
            extra={"user_id": user_id, "revoked": revoked},
        )
        return revoked

    def sweep_expired(self) -> int:
        """Delete every refresh token record past its expiry."""
        deleted = self._store.delete_expired(_iso(datetime.now(UTC)))
        self._logger.info("Expired refresh tokens swept", extra={"deleted": deleted})
        return deleted

    def issue_password_reset(self, user: dict[str, Any]) -> str:
        """Sign a short-lived password reset token for a user."""
        return self._sign(
            {"sub": user["user_id"], "typ": "password_reset"},
            self._reset_key,
            datetime.now(UTC),
            self._reset_ttl,
        )

    def verify_password_reset(self, token: str) -> str:
        """Return the user id carried by a valid password reset token."""
        claims = self._decode(token, self._reset_key, "password_reset")
        if claims is None:
            raise ServiceError("UNAUTHORIZED", _INVALID_RESET, 401, {})
        return str(claims["sub"])

    def close(self) -> None:
        """Close the token store."""
        self._store.close()
