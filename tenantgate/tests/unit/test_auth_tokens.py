from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from tenantgate.core.config import Settings
from tenantgate.core.errors import AuthenticationError, ErrorCode
from tenantgate.services.auth.tokens import TOKEN_TYPE_PLATFORM_ADMIN, decode_token, issue_token


SETTINGS = Settings(jwt_secret="unit-test-secret-with-enough-length-123")
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def test_issue_and_decode_tenant_user_token() -> None:
    token = issue_token(
        user_id=7,
        tenant_id=10,
        email="u1@acme.test",
        role="operations",
        allowed_apps=["tq"],
        user_type="staff",
        now=NOW,
        settings=SETTINGS,
    )
    claims = decode_token(token, settings=SETTINGS, now=NOW + timedelta(minutes=5))

    assert claims.user_id == 7
    assert claims.tenant_id == 10
    assert claims.allowed_apps == ("tq",)
    assert claims.is_platform_admin is False


def test_platform_admin_token_carries_no_tenant() -> None:
    token = issue_token(
        user_id=1,
        tenant_id=None,
        email="ops@platform.test",
        role="admin",
        now=NOW,
        settings=SETTINGS,
    )
    claims = decode_token(token, settings=SETTINGS, now=NOW)

    assert claims.tenant_id is None
    assert claims.token_type == TOKEN_TYPE_PLATFORM_ADMIN
    assert claims.platform_role == "internal_admin"


def test_expired_token_is_token_expired() -> None:
    token = issue_token(
        user_id=7,
        tenant_id=10,
        email="u1@acme.test",
        role="operations",
        now=NOW,
        ttl=timedelta(hours=1),
        settings=SETTINGS,
    )
    with pytest.raises(AuthenticationError) as exc_info:
        decode_token(token, settings=SETTINGS, now=NOW + timedelta(hours=2))
    assert exc_info.value.code == ErrorCode.TOKEN_EXPIRED
    assert exc_info.value.status_code == 401

    # Real clock path goes through PyJWT's own expiry check.
    with pytest.raises(AuthenticationError) as real_clock:
        decode_token(token, settings=SETTINGS)
    assert real_clock.value.code == ErrorCode.TOKEN_EXPIRED


def test_foreign_signature_or_garbage_token_is_invalid() -> None:
    other = Settings(jwt_secret="another-secret-with-enough-length-456")
    forged = issue_token(user_id=7, tenant_id=10, email="u1@acme.test", role="operations", settings=other)
    for token in (forged, "not-a-jwt"):
        with pytest.raises(AuthenticationError) as exc_info:
            decode_token(token, settings=SETTINGS)
        assert exc_info.value.code == ErrorCode.TOKEN_INVALID


def test_wrong_issuer_and_missing_tenant_are_invalid() -> None:
    payload = {"userId": 7, "tenantId": 10, "iss": "someone-else", "iat": int(NOW.timestamp()), "exp": int((NOW + timedelta(hours=1)).timestamp())}
    foreign = jwt.encode(payload, SETTINGS.jwt_secret, algorithm="HS256")
    with pytest.raises(AuthenticationError) as wrong_issuer:
        decode_token(foreign, settings=SETTINGS, now=NOW)
    assert wrong_issuer.value.code == ErrorCode.TOKEN_INVALID

    payload = {"userId": 7, "type": "tenant_user", "iss": SETTINGS.jwt_issuer, "iat": int(NOW.timestamp()), "exp": int((NOW + timedelta(hours=1)).timestamp())}
    no_tenant = jwt.encode(payload, SETTINGS.jwt_secret, algorithm="HS256")
    with pytest.raises(AuthenticationError) as missing_tenant:
        decode_token(no_tenant, settings=SETTINGS, now=NOW)
    assert missing_tenant.value.code == ErrorCode.TOKEN_INVALID
