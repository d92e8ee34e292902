from __future__ import annotations

import pytest

from tenantgate.domain.models import TranscriptionUsage
from tenantgate.persistence.db import SessionLocal
from tenantgate.persistence.guards import TenantPredicateError, require_tenant_id, tenant_predicate
from tenantgate.persistence.repos import transcription as transcription_repo


def test_require_tenant_id_accepts_positive_ints_only() -> None:
    assert require_tenant_id(7) == 7
    for bad in (None, 0, -1, "7", True, 7.0):
        with pytest.raises(TenantPredicateError):
            require_tenant_id(bad)


def test_tenant_predicate_binds_canonical_id() -> None:
    clause = tenant_predicate(TranscriptionUsage, 10)
    assert clause.right.value == 10


@pytest.mark.asyncio
async def test_repository_refuses_slug_as_tenant_id() -> None:
    async with SessionLocal() as session:
        with pytest.raises(TenantPredicateError):
            await transcription_repo.get_config(session, tenant_id="acme")
