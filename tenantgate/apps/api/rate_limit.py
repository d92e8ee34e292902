from __future__ import annotations

from dataclasses import dataclass
import logging
import math
import time
from typing import Callable

from fastapi import HTTPException, Request, Response, status
from redis.exceptions import RedisError

from tenantgate.core.config import get_settings
from tenantgate.services.cache import Counter, get_counter
from tenantgate.services.tenancy import strip_version_prefix


logger = logging.getLogger(__name__)

ROUTE_CLASS_METERED = "metered"
ROUTE_CLASS_MUTATION = "mutation"
ROUTE_CLASS_READ = "read"


@dataclass(frozen=True)
class RateLimitDecision:
    # Capture the outcome and retry hints for a rate-limited request.
    allowed: bool
    route_class: str
    count: int
    limit: int
    retry_after_s: int


def route_class_for_path(path: str, method: str) -> str:
    # Metered work gets its own, tighter budget.
    normalized = strip_version_prefix(path)
    normalized_method = method.upper()
    if normalized.startswith("/transcription") and normalized_method == "POST":
        return ROUTE_CLASS_METERED
    if normalized_method in {"POST", "PUT", "PATCH", "DELETE"}:
        return ROUTE_CLASS_MUTATION
    return ROUTE_CLASS_READ


def route_class_for_request(request: Request) -> str:
    return route_class_for_path(request.url.path, request.method)


def _limit_for_route(route_class: str) -> int:
    settings = get_settings()
    if route_class == ROUTE_CLASS_METERED:
        return settings.rate_limit_max_requests_metered
    return settings.rate_limit_max_requests


class RateLimiter:
    def __init__(self, counter: Counter, *, time_provider: Callable[[], float] | None = None) -> None:
        # Allow injecting time for deterministic tests.
        self._counter = counter
        self._time_provider = time_provider or time.time

    async def check(self, *, scope_key: str, route_class: str, limit: int, window_s: int) -> RateLimitDecision:
        # Fixed windows: the window index is part of the key, so windows never overlap.
        now = self._time_provider()
        window_index = int(now // window_s)
        count = await self._counter.incr(f"{scope_key}:{route_class}:{window_index}", window_s=window_s)
        window_end = (window_index + 1) * window_s
        retry_after_s = max(int(math.ceil(window_end - now)), 1)
        return RateLimitDecision(
            allowed=count <= limit,
            route_class=route_class,
            count=count,
            limit=limit,
            retry_after_s=0 if count <= limit else retry_after_s,
        )


def _throttle_exception(decision: RateLimitDecision) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "code": "RATE_LIMITED",
            "message": "Rate limit exceeded",
            "route_class": decision.route_class,
            "retry_after_s": decision.retry_after_s,
        },
        headers={
            "Retry-After": str(decision.retry_after_s),
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Route-Class": decision.route_class,
        },
    )


def _unavailable_exception() -> HTTPException:
    # Return a stable 503 when rate limit storage is unavailable and fail-closed.
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": "RATE_LIMIT_UNAVAILABLE", "message": "Rate limiting unavailable"},
    )


async def enforce_rate_limit(*, request: Request, response: Response, scope_key: str) -> None:
    # Applied per tenant (or per platform principal) after authentication.
    settings = get_settings()
    if not settings.rate_limit_enabled:
        return
    route_class = route_class_for_request(request)
    try:
        limiter = RateLimiter(await get_counter())
        decision = await limiter.check(
            scope_key=scope_key,
            route_class=route_class,
            limit=_limit_for_route(route_class),
            window_s=max(int(settings.rate_limit_window_s), 1),
        )
    except (RedisError, OSError) as exc:
        if settings.rate_limit_fail_mode.lower() == "closed":
            raise _unavailable_exception() from exc
        response.headers["X-RateLimit-Status"] = "degraded"
        logger.warning("rate_limit_degraded path=%s", request.url.path, exc_info=exc)
        return
    response.headers["X-RateLimit-Limit"] = str(decision.limit)
    response.headers["X-RateLimit-Remaining"] = str(max(decision.limit - decision.count, 0))
    if decision.allowed:
        return
    logger.info(
        "rate_limited scope=%s route_class=%s count=%s limit=%s",
        scope_key,
        route_class,
        decision.count,
        decision.limit,
    )
    raise _throttle_exception(decision)
