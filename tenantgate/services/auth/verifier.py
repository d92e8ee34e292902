from __future__ import annotations

from datetime import datetime
import logging
from typing import Callable, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.core.config import Settings, get_settings
from tenantgate.core.errors import AccessDeniedError, AuthenticationError, ErrorCode
from tenantgate.domain.context import Principal, TenantContext
from tenantgate.persistence.repos import users as users_repo
from tenantgate.services.auth.tokens import TokenClaims, decode_token


logger = logging.getLogger(__name__)

ACTIVE_USER_STATUS = "active"


class UserRecordLike(Protocol):
    id: int
    tenant_id: int | None
    email: str
    role: str
    status: str
    platform_role: str | None


class PrincipalStore(Protocol):
    # Authoritative subject lookups; read on every verification, never cached.
    async def get_tenant_user(self, tenant_id: int, user_id: int) -> UserRecordLike | None: ...

    async def get_platform_user(self, user_id: int) -> UserRecordLike | None: ...


class SqlPrincipalStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_tenant_user(self, tenant_id: int, user_id: int) -> UserRecordLike | None:
        return await users_repo.get_tenant_user(self._session, tenant_id=tenant_id, user_id=user_id)

    async def get_platform_user(self, user_id: int) -> UserRecordLike | None:
        return await users_repo.get_platform_user(self._session, user_id=user_id)


def parse_bearer_token(header_value: str | None) -> str:
    # Enforce Bearer token format for credential authentication.
    if not header_value or not header_value.strip():
        raise AuthenticationError(ErrorCode.TOKEN_MISSING, "Missing bearer token")
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError(ErrorCode.TOKEN_MISSING, "Missing or invalid bearer token")
    return parts[1]


class AuthenticationVerifier:
    def __init__(
        self,
        store: PrincipalStore,
        *,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        # Injected clock pins expiry checks in tests; production defers to PyJWT.
        self._clock = clock

    async def authenticate(
        self,
        authorization: str | None,
        tenant: TenantContext | None,
    ) -> Principal:
        raw_token = parse_bearer_token(authorization)
        claims = decode_token(
            raw_token,
            settings=self._settings,
            now=self._clock() if self._clock else None,
        )
        # Tenant binding is checked before any store read; mismatch wins over every other claim.
        if not claims.is_platform_admin and tenant is not None and claims.tenant_id != tenant.id:
            logger.warning(
                "auth_tenant_mismatch token_tenant_id=%s context_tenant_id=%s user_id=%s",
                claims.tenant_id,
                tenant.id,
                claims.user_id,
            )
            raise AuthenticationError(
                ErrorCode.TENANT_MISMATCH,
                "Token tenant does not match the requested tenant",
            )
        return await self._load_principal(claims)

    async def authenticate_optional(
        self,
        authorization: str | None,
        tenant: TenantContext | None,
    ) -> Principal | None:
        # Same checks as authenticate; any denial simply means anonymous.
        if not authorization:
            return None
        try:
            return await self.authenticate(authorization, tenant)
        except AccessDeniedError as exc:
            logger.debug("auth_optional_anonymous code=%s", exc.code.value)
            return None

    async def _load_principal(self, claims: TokenClaims) -> Principal:
        if claims.is_platform_admin:
            user = await self._store.get_platform_user(claims.user_id)
            if user is not None and not user.platform_role:
                user = None
        else:
            user = await self._store.get_tenant_user(claims.tenant_id, claims.user_id)
        if user is None or user.status != ACTIVE_USER_STATUS:
            logger.info(
                "auth_principal_inactive user_id=%s tenant_id=%s",
                claims.user_id,
                claims.tenant_id,
            )
            raise AuthenticationError(ErrorCode.PRINCIPAL_INACTIVE, "User is inactive or no longer exists")
        # Status, role and platform role come from the store; app list and user type ride in the token.
        return Principal(
            user_id=int(user.id),
            tenant_id=claims.tenant_id,
            email=user.email,
            role=(user.role or "").strip().lower(),
            platform_role=user.platform_role,
            allowed_apps=claims.allowed_apps,
            user_type=claims.user_type,
        )
