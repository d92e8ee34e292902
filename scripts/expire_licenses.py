from __future__ import annotations

import asyncio

from tenantgate.persistence.db import SessionLocal
from tenantgate.services.licensing import expire_licenses


async def expire() -> None:
    async with SessionLocal() as session:
        expired = await expire_licenses(session)
        print(f"expired_licenses={expired}")


if __name__ == "__main__":
    asyncio.run(expire())
