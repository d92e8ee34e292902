from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from tenantgate.domain.models import AuditEvent
from tenantgate.persistence.db import SessionLocal
from tenantgate.services.audit import AccessAuditEntry, DatabaseAuditSink, record_event, sanitize_metadata


def test_audit_redacts_tokens_and_secrets() -> None:
    payload = {
        "access_token": "secret-access",
        "dg-token": "webhook-secret",
        "client_secret": "super-secret",
        "nested": {"authorization": "Bearer abc", "items": [{"password": "x"}]},
        "safe": "value",
    }
    sanitized = sanitize_metadata(payload)
    assert sanitized["access_token"] == "[REDACTED]"
    assert sanitized["dg-token"] == "[REDACTED]"
    assert sanitized["client_secret"] == "[REDACTED]"
    assert sanitized["nested"]["authorization"] == "[REDACTED]"
    assert sanitized["nested"]["items"] == [{"password": "[REDACTED]"}]
    assert sanitized["safe"] == "value"


@pytest.mark.asyncio
async def test_record_event_persists_sanitized_row() -> None:
    await record_event(
        tenant_id=10,
        actor_type="user",
        actor_id="7",
        actor_role="operations",
        event_type="auth.access.failure",
        outcome="failure",
        request_id="req-1",
        metadata={"authorization": "Bearer abc", "path": "/v1/transcription/quota"},
        error_code="TOKEN_INVALID",
    )
    async with SessionLocal() as session:
        event = (await session.execute(select(AuditEvent))).scalar_one()
    assert event.metadata_json == {"authorization": "[REDACTED]", "path": "/v1/transcription/quota"}
    assert event.error_code == "TOKEN_INVALID"


@pytest.mark.asyncio
async def test_database_sink_records_denials_with_reason() -> None:
    sink = DatabaseAuditSink(request_id="req-2", ip_address="10.0.0.5")
    await sink.append(
        AccessAuditEntry(
            tenant_id=10,
            user_id=7,
            capability="tq.settings.manage",
            allowed=False,
            reason="ROLE_INSUFFICIENT",
            layer=4,
            occurred_at=datetime(2026, 3, 10, tzinfo=timezone.utc),
        )
    )
    async with SessionLocal() as session:
        event = (await session.execute(select(AuditEvent))).scalar_one()
    assert event.event_type == "access.decision"
    assert event.outcome == "failure"
    assert event.error_code == "ROLE_INSUFFICIENT"
    assert event.request_id == "req-2"
    assert event.metadata_json["layer"] == 4
