from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from tenantgate.apps.api.response import error_response, is_versioned_request
from tenantgate.core.errors import AccessDeniedError, AuthenticationError, ErrorCode
from tenantgate.persistence.guards import TenantPredicateError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from FastAPI HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def _quota_meta(exc: AccessDeniedError) -> dict[str, Any] | None:
    if exc.code != ErrorCode.QUOTA_EXCEEDED or not exc.details:
        return None
    return {"code": exc.code.value, "used": exc.details.get("used"), "limit": exc.details.get("limit")}


async def access_denied_exception_handler(request: Request, exc: AccessDeniedError) -> JSONResponse:
    # Every pipeline denial keeps its specific code; nothing collapses into a generic forbidden.
    headers: dict[str, str] | None = None
    if isinstance(exc, AuthenticationError) and exc.status_code == 401:
        headers = {"WWW-Authenticate": "Bearer"}
    if not is_versioned_request(request):
        content = {"detail": {"code": exc.code.value, "message": exc.message, **(exc.details or {})}}
        return JSONResponse(content=content, status_code=exc.status_code, headers=headers)
    payload = error_response(
        request=request,
        code=exc.code.value,
        message=exc.message,
        details=exc.details,
        meta_extra=_quota_meta(exc),
    )
    return JSONResponse(content=payload, status_code=exc.status_code, headers=headers)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    # Normalize HTTPExceptions into the shared error envelope for v1 routes.
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Surface validation errors with structured details for UI/SDK parsing.
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.errors()}, status_code=422)
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=422)


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    # Store outages stay opaque to callers and fully logged server-side.
    logger.error(
        "database_unavailable path=%s method=%s",
        request.url.path,
        request.method,
        exc_info=exc,
    )
    payload = error_response(
        request=request,
        code="SERVICE_UNAVAILABLE",
        message="Service temporarily unavailable",
    )
    return JSONResponse(content=payload, status_code=503)


async def tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError) -> JSONResponse:
    logger.error("tenant_predicate_missing path=%s message=%s", request.url.path, exc.message)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.error("unhandled_exception path=%s method=%s", request.url.path, request.method, exc_info=exc)
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": "Internal Server Error"}, status_code=500)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
