from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any


DEFAULT_STT_MODEL = "nova-3"
DEFAULT_COST_PER_MINUTE = Decimal("0.0043")

# Per-minute list prices for speech-to-text models, pre-recorded audio.
MODEL_COSTS: dict[str, Decimal] = {
    "nova-3": Decimal("0.0043"),
    "nova-3-multilingual": Decimal("0.0052"),
    "nova-2": Decimal("0.0043"),
    "nova-2-medical": Decimal("0.0043"),
    "enhanced": Decimal("0.0145"),
    "base": Decimal("0.0125"),
    "whisper-large": Decimal("0.0048"),
}

USD_PLACES = Decimal("0.0001")


@dataclass(frozen=True)
class CostEstimate:
    # Locally estimated cost; reconciliation may later replace it with the billed amount.
    model: str
    rate_per_minute: Decimal
    cost_usd: Decimal


def to_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def quantize_usd(value: Decimal) -> Decimal:
    return value.quantize(USD_PLACES, rounding=ROUND_HALF_UP)


def cost_per_minute(model: str | None) -> Decimal:
    if not model:
        return DEFAULT_COST_PER_MINUTE
    return MODEL_COSTS.get(model, DEFAULT_COST_PER_MINUTE)


def estimate_cost(duration_seconds: int, model: str | None = None) -> CostEstimate:
    # Cost uses exact seconds, not the rounded-up quota minutes.
    resolved_model = model or DEFAULT_STT_MODEL
    rate = cost_per_minute(resolved_model)
    seconds = Decimal(max(int(duration_seconds), 0))
    cost = quantize_usd((seconds / Decimal("60")) * rate)
    return CostEstimate(model=resolved_model, rate_per_minute=rate, cost_usd=cost)


def overage_cost(used_minutes: int, limit_minutes: int, rate_per_minute: Decimal) -> Decimal:
    overage_minutes = max(int(used_minutes) - int(limit_minutes), 0)
    return quantize_usd(Decimal(overage_minutes) * to_decimal(rate_per_minute))
