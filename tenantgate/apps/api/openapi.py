from __future__ import annotations

from typing import Any

from tenantgate.apps.api.response import ErrorEnvelope


def _error_example(
    *,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    # Build a consistent error envelope example for OpenAPI docs.
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1", **(meta or {})},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, example: dict[str, Any]) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _response(
        "Malformed tenant identifier",
        _error_example(code="IDENTIFIER_MALFORMED", message="Tenant identifier must be a numeric id or a 2-50 character slug"),
    ),
    401: _response(
        "Unauthorized",
        _error_example(code="TOKEN_MISSING", message="Missing bearer token"),
    ),
    403: _response(
        "Forbidden",
        _error_example(
            code="ROLE_INSUFFICIENT",
            message="Insufficient role for this operation",
            details={"capability": "tq.settings.manage", "layer": 4},
        ),
    ),
    404: _response(
        "Tenant not found",
        _error_example(code="TENANT_NOT_FOUND", message="Tenant not found"),
    ),
    422: _response(
        "Tenant identifier missing",
        _error_example(code="IDENTIFIER_MISSING", message="Tenant identifier is required (x-tenant-id header)"),
    ),
    429: _response(
        "Quota exceeded or rate limited",
        _error_example(
            code="QUOTA_EXCEEDED",
            message="Monthly transcription quota exceeded",
            details={"used": 2400, "limit": 2400, "remaining": 0},
            meta={"code": "QUOTA_EXCEEDED", "used": 2400, "limit": 2400},
        ),
    ),
    503: _response(
        "Service unavailable",
        _error_example(code="SERVICE_UNAVAILABLE", message="Service temporarily unavailable"),
    ),
}
