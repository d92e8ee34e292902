from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from tenantgate.core.config import get_settings
from tenantgate.core.logging import configure_logging
from tenantgate.persistence.db import SessionLocal
from tenantgate.services.costs.reconciliation import BillingClient, reconcile_costs, stats_summary
from tenantgate.services.licensing import expire_licenses

logger = logging.getLogger(__name__)


async def reconcile_costs_job(ctx) -> dict:
    # Replace locally estimated usage costs with billed amounts from the provider.
    async with SessionLocal() as session:
        stats = await reconcile_costs(session, client=BillingClient())
    return stats_summary(stats)


async def expire_licenses_job(ctx) -> int:
    # Flip stored status for licenses whose expiry has passed.
    async with SessionLocal() as session:
        return await expire_licenses(session)


async def _startup(ctx) -> None:
    configure_logging()
    logger.info("maintenance_worker_started")


class WorkerSettings:
    # Keep worker settings as class attributes for ARQ CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    functions = [reconcile_costs_job, expire_licenses_job]
    cron_jobs = [
        # Daily at 03:00 UTC, after the provider has settled the previous day's billing.
        cron(reconcile_costs_job, hour={3}, minute={0}, run_at_startup=False),
        cron(expire_licenses_job, minute={5}),
    ]
    on_startup = _startup
