from __future__ import annotations

from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field

from tenantgate.apps.api.deps import RequestAccess, get_quota_tracker, require_capability, require_quota
from tenantgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from tenantgate.apps.api.response import SuccessEnvelope, success_response
from tenantgate.core.config import get_settings
from tenantgate.services.authz.capabilities import TRANSCRIPTION_CREATE, TRANSCRIPTION_READ, USAGE_READ
from tenantgate.services.costs.pricing import MODEL_COSTS
from tenantgate.services.quota import QuotaTracker


router = APIRouter(prefix="/transcription", tags=["transcription"], responses=DEFAULT_ERROR_RESPONSES)


class QuotaResponse(BaseModel):
    used: int
    limit: int
    remaining: int
    overage_allowed: bool
    warning: bool
    plan: str | None
    overage_cost_usd: str


class UsageMonth(BaseModel):
    month: str
    minutes_used: int
    total_cost: str
    total_transcriptions: int


class UsageHistoryResponse(BaseModel):
    months: int
    items: list[UsageMonth]


class TranscriptionJobRequest(BaseModel):
    audio_url: str = Field(min_length=1, max_length=2048)
    model: str | None = None


class TranscriptionJobResponse(BaseModel):
    operation_id: str
    status: str
    model: str
    quota: dict[str, Any]


@router.get("/quota", response_model=SuccessEnvelope[QuotaResponse])
async def get_quota(
    request: Request,
    access: RequestAccess = Depends(require_capability(TRANSCRIPTION_READ)),
    tracker: QuotaTracker = Depends(get_quota_tracker),
) -> dict:
    quota_status = await tracker.status(access.tenant)
    overage = await tracker.overage_cost(access.tenant.id)
    payload = QuotaResponse(**quota_status.as_dict(), overage_cost_usd=str(overage))
    return success_response(request=request, data=payload)


@router.get("/usage/history", response_model=SuccessEnvelope[UsageHistoryResponse])
async def get_usage_history(
    request: Request,
    months: int = Query(default=6, ge=1, le=24),
    access: RequestAccess = Depends(require_capability(USAGE_READ)),
    tracker: QuotaTracker = Depends(get_quota_tracker),
) -> dict:
    items = await tracker.usage_history(access.tenant.id, months=months)
    payload = UsageHistoryResponse(months=months, items=[UsageMonth(**item) for item in items])
    return success_response(request=request, data=payload)


@router.post(
    "/jobs",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=SuccessEnvelope[TranscriptionJobResponse],
)
async def create_transcription_job(
    request: Request,
    body: TranscriptionJobRequest,
    access: RequestAccess = Depends(require_quota(TRANSCRIPTION_CREATE)),
) -> dict:
    # Admission only: usage is recorded when the provider callback arrives for this operation id.
    model = body.model if body.model in MODEL_COSTS else get_settings().default_stt_model
    payload = TranscriptionJobResponse(
        operation_id=str(uuid4()),
        status="accepted",
        model=model,
        quota=request.state.quota.as_dict(),
    )
    return success_response(request=request, data=payload)
