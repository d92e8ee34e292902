from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from tenantgate.apps.api.main import create_app
from tenantgate.core.config import get_settings
from tenantgate.domain.models import TranscriptionUsage
from tenantgate.persistence.db import SessionLocal
from tenantgate.tests.utils.auth import seed_licensed_tenant


WEBHOOK_TOKEN = "webhook-shared-secret"


@pytest.fixture(autouse=True)
def _webhook_token(monkeypatch) -> None:
    monkeypatch.setenv("BILLING_WEBHOOK_TOKEN", WEBHOOK_TOKEN)
    get_settings.cache_clear()


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test")


def _callback(request_id: str = "proj.req-1", tenant: object = 10, duration: float = 61.2) -> dict:
    return {
        "metadata": {
            "request_id": request_id,
            "duration": duration,
            "model_info": {"m1": {"name": "general-nova-3"}},
        },
        "callback_metadata": {"tenantId": tenant, "transcriptionId": "op-123"},
    }


@pytest.mark.asyncio
async def test_callback_records_usage_once() -> None:
    await seed_licensed_tenant()
    headers = {"dg-token": WEBHOOK_TOKEN}
    async with _client() as client:
        first = await client.post("/v1/webhooks/transcription", json=_callback(), headers=headers)
        second = await client.post("/v1/webhooks/transcription", json=_callback(), headers=headers)

    assert first.status_code == 200
    assert first.json()["data"] == {"status": "recorded", "provider_request_id": "proj.req-1", "minutes": 2}
    assert second.json()["data"]["status"] == "duplicate"

    async with SessionLocal() as session:
        rows = (await session.execute(select(TranscriptionUsage))).scalars().all()
    assert len(rows) == 1
    assert rows[0].audio_duration_seconds == 62
    assert rows[0].stt_model == "nova-3"
    assert rows[0].operation_id == "op-123"


@pytest.mark.asyncio
async def test_callback_resolves_slug_tenants() -> None:
    await seed_licensed_tenant()
    async with _client() as client:
        response = await client.post(
            "/v1/webhooks/transcription",
            json=_callback(request_id="proj.req-2", tenant="acme"),
            headers={"dg-token": WEBHOOK_TOKEN},
        )
    assert response.json()["data"]["status"] == "recorded"


@pytest.mark.asyncio
async def test_callback_rejects_bad_token_and_payloads() -> None:
    await seed_licensed_tenant()
    async with _client() as client:
        unauthorized = await client.post(
            "/v1/webhooks/transcription", json=_callback(), headers={"dg-token": "wrong"}
        )
        missing_tenant = await client.post(
            "/v1/webhooks/transcription",
            json={"metadata": {"request_id": "proj.x"}, "callback_metadata": {}},
            headers={"dg-token": WEBHOOK_TOKEN},
        )
        unknown_tenant = await client.post(
            "/v1/webhooks/transcription",
            json=_callback(tenant=999),
            headers={"dg-token": WEBHOOK_TOKEN},
        )
    assert unauthorized.status_code == 401
    assert unauthorized.json()["error"]["code"] == "WEBHOOK_UNAUTHORIZED"
    assert missing_tenant.status_code == 400
    assert missing_tenant.json()["error"]["code"] == "WEBHOOK_PAYLOAD_INVALID"
    assert unknown_tenant.status_code == 404
    assert unknown_tenant.json()["error"]["code"] == "TENANT_NOT_FOUND"


@pytest.mark.asyncio
async def test_callback_meters_usage_for_cancelled_tenant() -> None:
    await seed_licensed_tenant(tenant_status="cancelled")
    async with _client() as client:
        response = await client.post(
            "/v1/webhooks/transcription",
            json=_callback(request_id="proj.req-late"),
            headers={"dg-token": WEBHOOK_TOKEN},
        )

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "recorded"
    async with SessionLocal() as session:
        rows = (await session.execute(select(TranscriptionUsage))).scalars().all()
    assert [row.tenant_id for row in rows] == [10]
