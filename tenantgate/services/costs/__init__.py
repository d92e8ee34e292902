from __future__ import annotations

# Re-export cost helpers for centralized imports.

from tenantgate.services.costs.pricing import (
    DEFAULT_STT_MODEL,
    MODEL_COSTS,
    CostEstimate,
    cost_per_minute,
    estimate_cost,
    overage_cost,
    quantize_usd,
)

__all__ = [
    "DEFAULT_STT_MODEL",
    "MODEL_COSTS",
    "CostEstimate",
    "cost_per_minute",
    "estimate_cost",
    "overage_cost",
    "quantize_usd",
]
