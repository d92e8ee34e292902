from __future__ import annotations

import httpx
import pytest

from tenantgate.services.resilience import RetryPolicy, retry_async


@pytest.mark.asyncio
async def test_retry_async_retries_transient() -> None:
    calls = {"count": 0}

    async def flaky() -> str:
        calls["count"] += 1
        if calls["count"] < 2:
            raise TimeoutError("timeout")
        return "ok"

    result = await retry_async(flaky, policy=RetryPolicy(timeout_ms=100, max_attempts=2, backoff_ms=1))
    assert result == "ok"
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_client_errors() -> None:
    calls = {"count": 0}
    request = httpx.Request("GET", "https://billing.test/projects/p/requests/r")

    async def not_found() -> None:
        calls["count"] += 1
        raise httpx.HTTPStatusError("missing", request=request, response=httpx.Response(404, request=request))

    with pytest.raises(httpx.HTTPStatusError):
        await retry_async(not_found, policy=RetryPolicy(timeout_ms=100, max_attempts=3, backoff_ms=1))
    assert calls["count"] == 1
