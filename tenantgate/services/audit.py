from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from tenantgate.core.config import get_settings
from tenantgate.domain.models import AuditEvent
from tenantgate.persistence.db import SessionLocal


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["authorization", "token", "secret", "password", "api_key", "dg-token"]
_REDACTED_VALUE = "[REDACTED]"


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, (list, tuple)):
        return [sanitize_metadata(item) for item in value]
    return value


def get_request_context(request: Request | None) -> dict[str, str | None]:
    # Extract request identifiers and client hints without persisting credentials.
    if request is None:
        return {"request_id": None, "ip_address": None, "user_agent": None}
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    return {"request_id": request_id, "ip_address": ip_address, "user_agent": user_agent}


async def record_event(
    *,
    session: AsyncSession | None = None,
    occurred_at: datetime | None = None,
    tenant_id: int | None,
    actor_type: str,
    actor_id: str | None,
    actor_role: str | None,
    event_type: str,
    outcome: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    request_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    metadata: dict[str, Any] | None = None,
    error_code: str | None = None,
    commit: bool | None = None,
    best_effort: bool = True,
) -> None:
    # Write audit rows in a best-effort manner to avoid breaking user flows.
    if not get_settings().audit_enabled:
        return
    sanitized_metadata = sanitize_metadata(metadata or {})
    event = AuditEvent(
        occurred_at=occurred_at or datetime.now(timezone.utc),
        tenant_id=tenant_id,
        actor_type=actor_type,
        actor_id=actor_id,
        actor_role=actor_role,
        event_type=event_type,
        outcome=outcome,
        resource_type=resource_type,
        resource_id=resource_id,
        request_id=request_id,
        ip_address=ip_address,
        user_agent=user_agent,
        metadata_json=sanitized_metadata,
        error_code=error_code,
    )

    if session is None:
        # A separate session keeps audit commits out of the tenant-scoped request transaction.
        async with SessionLocal() as audit_session:
            try:
                audit_session.add(event)
                await audit_session.commit()
            except SQLAlchemyError as exc:
                await audit_session.rollback()
                if not best_effort:
                    raise
                logger.warning(
                    "audit_event_write_failed event_type=%s request_id=%s",
                    event_type,
                    request_id,
                    exc_info=exc,
                )
        return

    resolved_commit = commit if commit is not None else False
    try:
        session.add(event)
        if resolved_commit:
            await session.commit()
    except SQLAlchemyError as exc:
        if resolved_commit:
            await session.rollback()
        if not best_effort:
            raise
        logger.warning(
            "audit_event_write_failed event_type=%s request_id=%s",
            event_type,
            request_id,
            exc_info=exc,
        )


@dataclass(frozen=True)
class AccessAuditEntry:
    # One access decision, allow or deny, as appended to the audit sink.
    tenant_id: int | None
    user_id: int | None
    capability: str
    allowed: bool
    reason: str
    layer: int
    occurred_at: datetime
    request_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditSink(Protocol):
    async def append(self, entry: AccessAuditEntry) -> None: ...


class DatabaseAuditSink:
    def __init__(self, *, request_id: str | None = None, ip_address: str | None = None) -> None:
        self._request_id = request_id
        self._ip_address = ip_address

    async def append(self, entry: AccessAuditEntry) -> None:
        await record_event(
            occurred_at=entry.occurred_at,
            tenant_id=entry.tenant_id,
            actor_type="user",
            actor_id=str(entry.user_id) if entry.user_id is not None else None,
            actor_role=None,
            event_type="access.decision",
            outcome="success" if entry.allowed else "failure",
            resource_type="capability",
            resource_id=entry.capability,
            request_id=entry.request_id or self._request_id,
            ip_address=self._ip_address,
            metadata={**entry.metadata, "layer": entry.layer, "reason": entry.reason},
            error_code=None if entry.allowed else entry.reason,
        )


class MemoryAuditSink:
    def __init__(self) -> None:
        self.entries: list[AccessAuditEntry] = []

    async def append(self, entry: AccessAuditEntry) -> None:
        self.entries.append(entry)
