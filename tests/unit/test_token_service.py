"""Unit tests for refresh/access token issuance, validation and revocation."""

from __future__ import annotations

from datetime import timedelta

import pytest
from freezegun import freeze_time
from joserfc import jwt
from joserfc.jwk import OctKey

from localheroes_service.core.exceptions import ServiceError
from localheroes_service.services.refresh_token_store import RefreshTokenStore
from localheroes_service.services.token_service import TokenService, hash_token
from localheroes_service.services.user_registry import UserRegistry
from localheroes_service.services.user_store import UserStore
from tests.helpers import ACCESS_SECRET, REFRESH_SECRET, RESET_SECRET

INVALID_REFRESH = "Invalid or expired refresh token"


@pytest.fixture
def env(tmp_path):
    db_path = str(tmp_path / "auth.db")
    user_store = UserStore(db_path=db_path)
    token_store = RefreshTokenStore(db_path=db_path)
    registry = UserRegistry(store=user_store, bcrypt_rounds=4)
    service = TokenService(
        store=token_store,
        user_store=user_store,
        access_secret=ACCESS_SECRET,
        refresh_secret=REFRESH_SECRET,
        password_reset_secret=RESET_SECRET,
        access_ttl_seconds=900,
        refresh_ttl_seconds=7 * 24 * 3600,
        password_reset_ttl_seconds=1200,
        max_active_tokens=3,
    )
    user = registry.register("ada@example.com", "correct-horse-battery", "Ada", "Lovelace")
    yield service, token_store, user
    service.close()
    user_store.close()


@pytest.mark.unit
def test_issue_stores_only_the_hash(env):
    service, token_store, user = env

    pair = service.issue(user)

    record = token_store.get_token(pair.jti)
    assert record is not None
    assert record["token_hash"] == hash_token(pair.refresh_token)
    assert pair.refresh_token not in record.values()
    assert record["user_id"] == user["user_id"]


@pytest.mark.unit
def test_access_token_carries_identity_claims(env):
    service, _, user = env

    claims = service.verify_access(service.issue(user).access_token)

    assert claims["sub"] == user["user_id"]
    assert claims["email"] == "ada@example.com"
    assert claims["role"] == "USER"


@pytest.mark.unit
def test_fourth_issue_evicts_the_earliest_expiring_token(env):
    service, token_store, user = env

    with freeze_time("2026-03-01 10:00:00") as frozen:
        pairs = []
        for _ in range(4):
            pairs.append(service.issue(user))
            frozen.tick(timedelta(seconds=5))

        active = token_store.list_active_tokens(user["user_id"], "2026-03-01T10:00:30.000000Z")

    assert len(active) == 3
    assert [record["jti"] for record in active] == [pair.jti for pair in pairs[1:]]
    assert token_store.get_token(pairs[0].jti) is None


@pytest.mark.unit
def test_validate_refresh_returns_claims_for_valid_token(env):
    service, _, user = env
    pair = service.issue(user)

    claims = service.validate_refresh(pair.refresh_token)

    assert claims["sub"] == user["user_id"]
    assert claims["jti"] == pair.jti


@pytest.mark.unit
def test_revoked_and_forged_tokens_fail_with_the_same_message(env):
    service, _, user = env
    pair = service.issue(user)
    service.revoke(pair.jti)

    forged = jwt.encode(
        {"alg": "HS256"},
        {"sub": user["user_id"], "typ": "refresh", "jti": "x", "exp": 4102444800},
        OctKey.import_key("an-attacker-controlled-secret-of-some-length"),
        algorithms=["HS256"],
    )

    messages = []
    for token in (pair.refresh_token, forged, "not-a-jwt"):
        with pytest.raises(ServiceError) as exc_info:
            service.validate_refresh(token)
        assert exc_info.value.status_code == 401
        messages.append(exc_info.value.message)

    assert set(messages) == {INVALID_REFRESH}


@pytest.mark.unit
def test_evicted_token_no_longer_validates(env):
    service, _, user = env

    with freeze_time("2026-03-01 10:00:00") as frozen:
        first = service.issue(user)
        for _ in range(3):
            frozen.tick(timedelta(seconds=1))
            service.issue(user)

        with pytest.raises(ServiceError) as exc_info:
            service.validate_refresh(first.refresh_token)

    assert exc_info.value.message == INVALID_REFRESH


@pytest.mark.unit
def test_expired_refresh_token_is_rejected(env):
    service, _, user = env

    with freeze_time("2026-03-01 10:00:00") as frozen:
        pair = service.issue(user)
        frozen.tick(timedelta(days=8))
        with pytest.raises(ServiceError) as exc_info:
            service.validate_refresh(pair.refresh_token)

    assert exc_info.value.error == "UNAUTHORIZED"


@pytest.mark.unit
def test_expired_record_rejects_token_with_valid_signature(env):
    service, token_store, user = env
    pair = service.issue(user)
    token_store._db.execute(
        "UPDATE refresh_tokens SET expires_at = ? WHERE jti = ?",
        ("2000-01-01T00:00:00.000000Z", pair.jti),
    )
    token_store._db.commit()

    # The signature still verifies; only the stored record has lapsed.
    jwt.decode(pair.refresh_token, OctKey.import_key(REFRESH_SECRET), algorithms=["HS256"])
    with pytest.raises(ServiceError) as exc_info:
        service.validate_refresh(pair.refresh_token)

    assert exc_info.value.error == "UNAUTHORIZED"
    assert exc_info.value.message == INVALID_REFRESH


@pytest.mark.unit
def test_access_token_is_not_a_refresh_token(env):
    service, _, user = env
    pair = service.issue(user)

    with pytest.raises(ServiceError):
        service.validate_refresh(pair.access_token)
    with pytest.raises(ServiceError):
        service.verify_access(pair.refresh_token)


@pytest.mark.unit
def test_refresh_mints_a_fresh_access_token_without_rotation(env):
    service, token_store, user = env
    pair = service.issue(user)

    access_token = service.refresh(pair.refresh_token)

    assert service.verify_access(access_token)["sub"] == user["user_id"]
    assert token_store.get_token(pair.jti)["revoked"] is False
    assert service.validate_refresh(pair.refresh_token)["jti"] == pair.jti


@pytest.mark.unit
def test_refresh_uses_current_role_from_user_record(env):
    service, _, user = env
    pair = service.issue(user)
    user_store = service._user_store
    user_store._db.execute(
        "UPDATE users SET role = 'ADMIN' WHERE user_id = ?", (user["user_id"],)
    )
    user_store._db.commit()

    claims = service.verify_access(service.refresh(pair.refresh_token))

    assert claims["role"] == "ADMIN"


@pytest.mark.unit
def test_refresh_falls_back_to_token_claims_without_user_record(env):
    service, _, user = env
    pair = service.issue(user)
    user_store = service._user_store
    user_store._db.execute("DELETE FROM users WHERE user_id = ?", (user["user_id"],))
    user_store._db.commit()

    claims = service.verify_access(service.refresh(pair.refresh_token))

    assert claims["sub"] == user["user_id"]
    assert claims["email"] == "ada@example.com"
    assert claims["role"] == "USER"


@pytest.mark.unit
def test_revoke_is_idempotent(env):
    service, token_store, user = env
    pair = service.issue(user)

    service.revoke(pair.jti)
    service.revoke(pair.jti)
    service.revoke("unknown-jti")

    assert token_store.get_token(pair.jti)["revoked"] is True


@pytest.mark.unit
def test_revoke_presented_returns_owner(env):
    service, token_store, user = env
    pair = service.issue(user)

    assert service.revoke_presented(pair.refresh_token) == user["user_id"]
    assert token_store.get_token(pair.jti)["revoked"] is True


@pytest.mark.unit
def test_revoke_all_for_user(env):
    service, _, user = env
    pairs = [service.issue(user) for _ in range(2)]

    assert service.revoke_all_for_user(user["user_id"]) == 2
    for pair in pairs:
        with pytest.raises(ServiceError):
            service.validate_refresh(pair.refresh_token)


@pytest.mark.unit
def test_sweep_expired_deletes_only_expired_records(env):
    service, token_store, user = env

    with freeze_time("2026-03-01 10:00:00") as frozen:
        old = service.issue(user)
        frozen.tick(timedelta(days=6))
        fresh = service.issue(user)
        frozen.tick(timedelta(days=2))

        assert service.sweep_expired() == 1

    assert token_store.get_token(old.jti) is None
    assert token_store.get_token(fresh.jti) is not None


@pytest.mark.unit
def test_password_reset_token_round_trip_and_expiry(env):
    service, _, user = env

    with freeze_time("2026-03-01 10:00:00") as frozen:
        token = service.issue_password_reset(user)
        assert service.verify_password_reset(token) == user["user_id"]

        frozen.tick(timedelta(minutes=21))
        with pytest.raises(ServiceError) as exc_info:
            service.verify_password_reset(token)

    assert exc_info.value.message == "The provided token is invalid or has expired."
