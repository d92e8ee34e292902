from __future__ import annotations

import hmac
import json
import logging
import math
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.apps.api.deps import get_db, get_quota_tracker, get_tenant_resolver
from tenantgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from tenantgate.apps.api.response import SuccessEnvelope, success_response
from tenantgate.core.config import get_settings
from tenantgate.domain.context import UsageEvent
from tenantgate.persistence.namespaces import apply_tenant_scope
from tenantgate.services.costs.pricing import MODEL_COSTS
from tenantgate.services.quota import QuotaTracker, seconds_to_minutes
from tenantgate.services.tenancy import TenantResolver, parse_identifier


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"], responses=DEFAULT_ERROR_RESPONSES)


class WebhookAck(BaseModel):
    status: str
    provider_request_id: str
    minutes: int | None = None


def _error_detail(code: str, message: str) -> dict[str, str]:
    return {"code": code, "message": message}


def _verify_token(request: Request) -> None:
    # Shared-secret header; a missing configuration rejects every callback.
    settings = get_settings()
    expected = settings.billing_webhook_token
    provided = request.headers.get(settings.billing_webhook_header)
    if not expected or not provided or not hmac.compare_digest(provided, expected):
        logger.warning("webhook_token_rejected path=%s configured=%s", request.url.path, bool(expected))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=_error_detail("WEBHOOK_UNAUTHORIZED", "Invalid webhook token"),
        )


def _model_name(metadata: dict[str, Any]) -> str | None:
    # Provider names look like "general-nova-3"; map onto the known price list.
    names: list[str] = []
    model_info = metadata.get("model_info")
    if isinstance(model_info, dict):
        names.extend(str(info.get("name") or "") for info in model_info.values() if isinstance(info, dict))
    models = metadata.get("models")
    if isinstance(models, list):
        names.extend(str(item) for item in models)
    for name in names:
        if name in MODEL_COSTS:
            return name
        for known in sorted(MODEL_COSTS, key=len, reverse=True):
            if name.endswith(known):
                return known
    return None


def _callback_metadata(payload: dict[str, Any], metadata: dict[str, Any]) -> dict[str, Any] | None:
    # Providers echo callback metadata at the root or under metadata, as an object or a JSON string.
    value = payload.get("callback_metadata")
    if value is None:
        value = metadata.get("callback_metadata")
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=_error_detail("WEBHOOK_PAYLOAD_INVALID", "callback_metadata is not valid JSON"),
            ) from exc
    return value if isinstance(value, dict) else None


def parse_callback(payload: dict[str, Any]) -> tuple[str, UsageEvent]:
    # Returns the raw tenant identifier and the usage event carried by the callback.
    metadata = payload.get("metadata")
    callback_metadata = _callback_metadata(payload, metadata) if isinstance(metadata, dict) else None
    if not isinstance(metadata, dict) or callback_metadata is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_detail("WEBHOOK_PAYLOAD_INVALID", "metadata and callback_metadata are required"),
        )
    request_id = metadata.get("request_id")
    tenant_id = callback_metadata.get("tenantId")
    if not request_id or tenant_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_detail("WEBHOOK_PAYLOAD_INVALID", "request_id and tenantId are required"),
        )
    try:
        duration = float(metadata.get("duration") or 0)
    except (TypeError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_detail("WEBHOOK_PAYLOAD_INVALID", "duration must be numeric"),
        ) from exc
    if duration < 0 or not math.isfinite(duration):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_detail("WEBHOOK_PAYLOAD_INVALID", "duration must be non-negative"),
        )
    transcription_id = callback_metadata.get("transcriptionId")
    event = UsageEvent(
        provider_request_id=str(request_id),
        duration_seconds=int(math.ceil(duration)),
        operation_id=str(transcription_id) if transcription_id is not None else None,
        model=_model_name(metadata),
        metadata={"source": "webhook"},
    )
    return str(tenant_id), event


@router.post("/transcription", response_model=SuccessEnvelope[WebhookAck])
async def transcription_callback(
    request: Request,
    resolver: TenantResolver = Depends(get_tenant_resolver),
    tracker: QuotaTracker = Depends(get_quota_tracker),
    db: AsyncSession = Depends(get_db),
) -> dict:
    _verify_token(request)
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_detail("WEBHOOK_PAYLOAD_INVALID", "Body must be JSON"),
        ) from exc
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_detail("WEBHOOK_PAYLOAD_INVALID", "Body must be a JSON object"),
        )
    raw_tenant, event = parse_callback(payload)
    # Work admitted before a tenant was suspended or cancelled is still metered.
    tenant = await resolver.resolve_identifier(
        parse_identifier(raw_tenant, source="callback"), require_active=False
    )
    await apply_tenant_scope(db, tenant.schema_name)
    recorded = await tracker.record_usage(tenant, event)
    await db.commit()
    if recorded is None:
        ack = WebhookAck(status="duplicate", provider_request_id=event.provider_request_id)
    else:
        ack = WebhookAck(
            status="recorded",
            provider_request_id=event.provider_request_id,
            minutes=seconds_to_minutes(recorded.audio_duration_seconds),
        )
    return success_response(request=request, data=ack)
