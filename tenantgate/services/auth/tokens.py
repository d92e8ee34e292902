from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from tenantgate.core.config import Settings, get_settings
from tenantgate.core.errors import AuthenticationError, ErrorCode


TOKEN_TYPE_PLATFORM_ADMIN = "platform_admin"
TOKEN_TYPE_TENANT_USER = "tenant_user"


@dataclass(frozen=True)
class TokenClaims:
    # Verified credential contents; hints only, liveness is re-read from the store.
    user_id: int
    tenant_id: int | None
    email: str | None
    role: str | None
    token_type: str
    allowed_apps: tuple[str, ...] = ()
    user_type: str | None = None
    platform_role: str | None = None
    issued_at: datetime | None = None

    @property
    def is_platform_admin(self) -> bool:
        return self.token_type == TOKEN_TYPE_PLATFORM_ADMIN


def issue_token(
    *,
    user_id: int,
    tenant_id: int | None,
    email: str,
    role: str,
    allowed_apps: list[str] | None = None,
    user_type: str | None = None,
    platform_role: str | None = None,
    now: datetime | None = None,
    ttl: timedelta | None = None,
    settings: Settings | None = None,
) -> str:
    # Platform admins carry no tenantId; tenant users always carry one.
    settings = settings or get_settings()
    issued_at = now or datetime.now(timezone.utc)
    expires_at = issued_at + (ttl or timedelta(hours=settings.jwt_ttl_hours))
    payload: dict[str, Any] = {
        "userId": user_id,
        "email": email,
        "role": role,
        "allowedApps": list(allowed_apps or []),
        "userType": user_type,
        "iss": settings.jwt_issuer,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if tenant_id is None:
        payload["type"] = TOKEN_TYPE_PLATFORM_ADMIN
        payload["platformRole"] = platform_role or "internal_admin"
    else:
        payload["type"] = TOKEN_TYPE_TENANT_USER
        payload["tenantId"] = tenant_id
        if platform_role:
            payload["platformRole"] = platform_role
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def _invalid(message: str) -> AuthenticationError:
    return AuthenticationError(ErrorCode.TOKEN_INVALID, message)


def _as_int(value: Any, claim: str) -> int:
    # Claims may arrive as strings from older issuers; reject anything non-integral.
    if isinstance(value, bool):
        raise _invalid(f"Invalid {claim} claim")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    raise _invalid(f"Invalid {claim} claim")


def decode_token(token: str, *, settings: Settings | None = None, now: datetime | None = None) -> TokenClaims:
    # Signature, issuer and expiry are all enforced by PyJWT.
    settings = settings or get_settings()
    options: dict[str, Any] = {"require": ["exp", "iat", "userId"]}
    if now is not None:
        # Deterministic clock for tests: check expiry ourselves after signature validation.
        options["verify_exp"] = False
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            options=options,
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError(ErrorCode.TOKEN_EXPIRED, "Token expired") from exc
    except jwt.PyJWTError as exc:
        raise _invalid("Invalid token") from exc
    if now is not None and int(claims["exp"]) <= int(now.timestamp()):
        raise AuthenticationError(ErrorCode.TOKEN_EXPIRED, "Token expired")

    token_type = claims.get("type") or TOKEN_TYPE_TENANT_USER
    raw_tenant_id = claims.get("tenantId")
    if token_type == TOKEN_TYPE_PLATFORM_ADMIN:
        tenant_id = None
    elif raw_tenant_id is None:
        raise _invalid("Tenant user token is missing tenantId")
    else:
        tenant_id = _as_int(raw_tenant_id, "tenantId")

    allowed_apps = claims.get("allowedApps") or []
    if not isinstance(allowed_apps, list):
        raise _invalid("Invalid allowedApps claim")
    return TokenClaims(
        user_id=_as_int(claims["userId"], "userId"),
        tenant_id=tenant_id,
        email=claims.get("email"),
        role=claims.get("role"),
        token_type=token_type,
        allowed_apps=tuple(str(app) for app in allowed_apps),
        user_type=claims.get("userType"),
        platform_role=claims.get("platformRole"),
        issued_at=datetime.fromtimestamp(int(claims["iat"]), tz=timezone.utc),
    )
