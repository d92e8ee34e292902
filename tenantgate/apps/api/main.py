from __future__ import annotations

import json
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import StreamingResponse

from tenantgate.apps.api.errors import (
    access_denied_exception_handler,
    database_exception_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    tenant_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from tenantgate.apps.api.response import API_VERSION, is_versioned_request
from tenantgate.apps.api.routes.access import router as access_router
from tenantgate.apps.api.routes.audit import router as audit_router
from tenantgate.apps.api.routes.health import router as health_router
from tenantgate.apps.api.routes.transcription import router as transcription_router
from tenantgate.apps.api.routes.webhooks import router as webhooks_router
from tenantgate.core.config import get_settings
from tenantgate.core.errors import AccessDeniedError
from tenantgate.core.logging import configure_logging
from tenantgate.persistence.guards import TenantPredicateError


logger = logging.getLogger(__name__)

_ENVELOPE_EXEMPT_PREFIXES = (
    "/v1/openapi.json",
    "/v1/docs",
    "/v1/redoc",
)


def _wrap_payload(payload: object, request_id: str) -> dict:
    return {"data": payload, "meta": {"request_id": request_id, "api_version": API_VERSION}}


def _is_enveloped(payload: object) -> bool:
    return (
        isinstance(payload, dict)
        and "meta" in payload
        and ("data" in payload or "error" in payload)
        and isinstance(payload.get("meta"), dict)
        and payload["meta"].get("api_version") == API_VERSION
    )


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="tenantgate API")

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        # Wrap versioned JSON responses in the standardized success envelope.
        if (
            is_versioned_request(request)
            and not request.url.path.startswith(_ENVELOPE_EXEMPT_PREFIXES)
            and response.status_code < 400
            and response.media_type == "application/json"
            and not isinstance(response, StreamingResponse)
        ):
            raw_body = getattr(response, "body", None)
            if raw_body:
                try:
                    payload = json.loads(raw_body)
                except (TypeError, ValueError):
                    payload = None
                if payload is not None and not _is_enveloped(payload):
                    wrapped_response = JSONResponse(
                        content=_wrap_payload(payload, request_id),
                        status_code=response.status_code,
                    )
                    for key, value in response.headers.items():
                        if key.lower() in {"content-length", "content-type"}:
                            continue
                        wrapped_response.headers[key] = value
                    response = wrapped_response

        response.headers.setdefault("X-Request-Id", request_id)
        logger.debug(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        return response

    @app.exception_handler(AccessDeniedError)
    async def _access_denied_exception_handler(request: Request, exc: AccessDeniedError):
        return await access_denied_exception_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(SQLAlchemyError)
    async def _database_exception_handler(request: Request, exc: SQLAlchemyError):
        return await database_exception_handler(request, exc)

    @app.exception_handler(TenantPredicateError)
    async def _tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError):
        return await tenant_predicate_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    # Mount versioned v1 API routes.
    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(access_router, prefix=f"/{API_VERSION}")
    app.include_router(transcription_router, prefix=f"/{API_VERSION}")
    # Provider callbacks are platform-scoped; the tenant comes from the callback payload.
    app.include_router(webhooks_router, prefix=f"/{API_VERSION}")
    # Cross-tenant audit reads for platform admins.
    app.include_router(audit_router, prefix=f"/{API_VERSION}")

    def custom_openapi() -> dict:
        # Inject bearer auth into the OpenAPI schema; health and provider callbacks stay public.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title="tenantgate API", version=API_VERSION, routes=app.routes)
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        public_paths = {"/v1/health", "/v1/webhooks/transcription"}
        for path, operations in schema.get("paths", {}).items():
            if path in public_paths:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    logger.info("app_created name=%s rate_limit=%s", settings.app_name, settings.rate_limit_enabled)
    return app


app = create_app()
