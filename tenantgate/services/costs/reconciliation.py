from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
import logging
import time
from typing import Any

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.core.config import Settings, get_settings
from tenantgate.core.errors import BillingProviderError
from tenantgate.domain.models import JobExecution
from tenantgate.persistence.repos import transcription as transcription_repo
from tenantgate.services.costs.pricing import quantize_usd, to_decimal
from tenantgate.services.resilience import retry_async


logger = logging.getLogger(__name__)

JOB_NAME = "transcription_cost_reconciliation"


@dataclass
class ReconcileStats:
    processed: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def project_id_from_request_id(request_id: str | None) -> str | None:
    # Provider request ids are "<project>.<suffix>"; the project is the first segment.
    if not request_id:
        return None
    project_id = request_id.split(".", 1)[0].strip()
    return project_id or None


class BillingClient:
    def __init__(
        self,
        *,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        # Transport injection lets tests swap in httpx.MockTransport.
        self._settings = settings or get_settings()
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._settings.billing_admin_api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._settings.billing_api_base_url,
            timeout=self._settings.billing_timeout_s,
            transport=self._transport,
            headers={
                "Authorization": f"Token {self._settings.billing_admin_api_key}",
                "Content-Type": "application/json",
            },
        )

    async def get_request_cost(self, project_id: str, request_id: str) -> Decimal | None:
        # Authoritative billed cost from response.details.usd; None when not yet available.
        async def _call() -> httpx.Response:
            async with self._client() as client:
                response = await client.get(f"/projects/{project_id}/requests/{request_id}")
                response.raise_for_status()
                return response

        try:
            response = await retry_async(_call)
        except httpx.HTTPError as exc:
            raise BillingProviderError(f"Billing lookup failed for request {request_id}") from exc
        payload = response.json()
        usd = ((payload.get("response") or {}).get("details") or {}).get("usd")
        if usd is None:
            return None
        try:
            return to_decimal(usd)
        except (InvalidOperation, ValueError) as exc:
            raise BillingProviderError(f"Unparseable billed cost for request {request_id}") from exc


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def reconcile_costs(
    session: AsyncSession,
    *,
    client: BillingClient,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> ReconcileStats:
    # Estimate now, reconcile later: replace local estimates with billed amounts past a tolerance.
    settings = settings or get_settings()
    now = now or _utc_now()
    started = time.monotonic()
    stats = ReconcileStats()
    execution = JobExecution(job_name=JOB_NAME, status="running", started_at=now)
    session.add(execution)
    await session.commit()

    if not client.configured:
        logger.warning("cost_reconcile_skipped reason=billing_admin_api_key_missing")
        await _finish(session, execution, status="failed", started=started, error="Billing admin API key not configured")
        return stats

    tolerance = to_decimal(settings.reconcile_cost_tolerance_usd)
    since = now - timedelta(hours=settings.reconcile_lookback_hours)
    try:
        records = await transcription_repo.list_recent_usage_with_request_ids(session, since=since)
        for record in records:
            stats.processed += 1
            project_id = project_id_from_request_id(record.provider_request_id)
            if project_id is None:
                stats.skipped += 1
                continue
            try:
                billed = await client.get_request_cost(project_id, record.provider_request_id)
            except BillingProviderError as exc:
                stats.failed += 1
                logger.warning(
                    "cost_reconcile_failed usage_id=%s request_id=%s",
                    record.id,
                    record.provider_request_id,
                    exc_info=exc,
                )
                continue
            if billed is None:
                stats.failed += 1
                logger.info("cost_reconcile_unavailable request_id=%s", record.provider_request_id)
                continue
            current = to_decimal(record.cost_usd or 0)
            if abs(billed - current) > tolerance:
                record.cost_usd = quantize_usd(billed)
                stats.updated += 1
                logger.info(
                    "cost_reconciled usage_id=%s previous_usd=%s billed_usd=%s",
                    record.id,
                    current,
                    record.cost_usd,
                )
            else:
                stats.unchanged += 1
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("cost_reconcile_job_failed", exc_info=exc)
        await _finish(session, execution, status="failed", started=started, error=str(exc), stats=stats)
        raise

    await _finish(session, execution, status="success", started=started, stats=stats)
    logger.info("cost_reconcile_completed %s", " ".join(f"{k}={v}" for k, v in stats.as_dict().items()))
    return stats


async def _finish(
    session: AsyncSession,
    execution: JobExecution,
    *,
    status: str,
    started: float,
    error: str | None = None,
    stats: ReconcileStats | None = None,
) -> None:
    execution.status = status
    execution.finished_at = _utc_now()
    execution.duration_ms = int((time.monotonic() - started) * 1000)
    execution.error_message = error
    execution.stats_json = (stats or ReconcileStats()).as_dict()
    session.add(execution)
    await session.commit()


def stats_summary(stats: ReconcileStats) -> dict[str, Any]:
    return {"job": JOB_NAME, **stats.as_dict()}
