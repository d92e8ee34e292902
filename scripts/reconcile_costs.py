from __future__ import annotations

import asyncio
import sys

from tenantgate.core.logging import configure_logging
from tenantgate.persistence.db import SessionLocal
from tenantgate.services.costs.reconciliation import BillingClient, reconcile_costs


async def reconcile() -> int:
    async with SessionLocal() as session:
        stats = await reconcile_costs(session, client=BillingClient())
    for key, value in stats.as_dict().items():
        print(f"{key}={value}")
    return 1 if stats.failed else 0


def main() -> int:
    configure_logging()
    try:
        return asyncio.run(reconcile())
    except Exception as exc:  # noqa: BLE001 - exit non-zero for cron alerting
        print(f"reconcile_costs failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
