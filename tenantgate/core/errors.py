from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    # Closed vocabulary shared by the resolver, verifier, engine and quota tracker.
    IDENTIFIER_MISSING = "IDENTIFIER_MISSING"
    IDENTIFIER_MALFORMED = "IDENTIFIER_MALFORMED"
    TENANT_NOT_FOUND = "TENANT_NOT_FOUND"
    TENANT_INACTIVE = "TENANT_INACTIVE"
    TOKEN_MISSING = "TOKEN_MISSING"
    TOKEN_INVALID = "TOKEN_INVALID"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TENANT_MISMATCH = "TENANT_MISMATCH"
    PRINCIPAL_INACTIVE = "PRINCIPAL_INACTIVE"
    LICENSE_MISSING = "LICENSE_MISSING"
    LICENSE_EXPIRED = "LICENSE_EXPIRED"
    LICENSE_SUSPENDED = "LICENSE_SUSPENDED"
    SEAT_LIMIT_REACHED = "SEAT_LIMIT_REACHED"
    ENTITLEMENT_MISSING = "ENTITLEMENT_MISSING"
    ENTITLEMENT_EXPIRED = "ENTITLEMENT_EXPIRED"
    ROLE_INSUFFICIENT = "ROLE_INSUFFICIENT"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    QUOTA_CONFIG_MISSING = "QUOTA_CONFIG_MISSING"


ERROR_STATUS: dict[ErrorCode, int] = {
    ErrorCode.IDENTIFIER_MISSING: 422,
    ErrorCode.IDENTIFIER_MALFORMED: 400,
    ErrorCode.TENANT_NOT_FOUND: 404,
    ErrorCode.TENANT_INACTIVE: 404,
    ErrorCode.TOKEN_MISSING: 401,
    ErrorCode.TOKEN_INVALID: 401,
    ErrorCode.TOKEN_EXPIRED: 401,
    ErrorCode.TENANT_MISMATCH: 403,
    ErrorCode.PRINCIPAL_INACTIVE: 403,
    ErrorCode.LICENSE_MISSING: 403,
    ErrorCode.LICENSE_EXPIRED: 403,
    ErrorCode.LICENSE_SUSPENDED: 403,
    ErrorCode.SEAT_LIMIT_REACHED: 403,
    ErrorCode.ENTITLEMENT_MISSING: 403,
    ErrorCode.ENTITLEMENT_EXPIRED: 403,
    ErrorCode.ROLE_INSUFFICIENT: 403,
    ErrorCode.QUOTA_EXCEEDED: 429,
    ErrorCode.QUOTA_CONFIG_MISSING: 403,
}


class TenantGateError(Exception):
    """Base error for tenantgate."""


class AccessDeniedError(TenantGateError):
    """A request was rejected by the tenancy, auth, authorization or quota pipeline."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    @property
    def status_code(self) -> int:
        return ERROR_STATUS[self.code]


class TenantResolutionError(AccessDeniedError):
    """Tenant identifier missing, malformed, unknown or inactive."""


class AuthenticationError(AccessDeniedError):
    """Bearer credential missing, invalid, expired or bound to another tenant."""


class AuthorizationError(AccessDeniedError):
    """Access decision denied at the license, seat, entitlement or role layer."""


class QuotaError(AccessDeniedError):
    """Metered allowance exhausted or not configured."""


class NamespaceError(TenantGateError):
    """Tenant namespace name failed validation; never use it in SQL."""


class SeatGrantError(TenantGateError):
    """Seat grant could not be applied to the license."""


class BillingProviderError(TenantGateError):
    """Provider billing API request failure."""
