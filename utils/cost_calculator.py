"""
Cost estimation for routing decisions.

Costs are estimates from catalog prices (USD per million tokens). They are
used to compare tiers and enforce per-request budgets, not for billing.
"""

from __future__ import annotations

import math
import threading
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from routing.routing_types import ModelConfig

CHARS_PER_TOKEN = 4


def estimate_input_tokens(content: str | None) -> int:
    """Approximate prompt tokens as ceil(chars / 4)."""
    return math.ceil(len(content or "") / CHARS_PER_TOKEN)


def estimate_cost(model: ModelConfig, input_tokens: int, output_tokens: int) -> float:
    """
    Estimate the cost of a single call.

    Args:
        model: Catalog entry for the model
        input_tokens: Number of prompt tokens
        output_tokens: Number of completion tokens

    Returns:
        Estimated cost in USD
    """
    input_cost = (input_tokens / 1_000_000) * model.input_cost_per_1m
    output_cost = (output_tokens / 1_000_000) * model.output_cost_per_1m
    return input_cost + output_cost


class CostLedger:
    """
    Cumulative estimated cost and route counts.

    Thread-safe; the router records into it on every ``route()`` call.
    """

    def __init__(self, tiers: list[str] | None = None):
        self._lock = threading.Lock()
        self._tiers = list(tiers or [])
        self._clear()

    def record(self, tier: str, task_type: str, cost: float) -> None:
        with self._lock:
            self.total_routes += 1
            self.routes_by_tier[tier] = self.routes_by_tier.get(tier, 0) + 1
            self.routes_by_task[task_type] = self.routes_by_task.get(task_type, 0) + 1
            self.total_estimated_cost += cost

    def summary(self) -> dict[str, Any]:
        with self._lock:
            return {
                "total_routes": self.total_routes,
                "routes_by_tier": dict(self.routes_by_tier),
                "routes_by_task": dict(self.routes_by_task),
                "total_estimated_cost": self.total_estimated_cost,
            }

    def format_summary(self) -> str:
        stats = self.summary()
        return (
            f"Routes: {stats['total_routes']}\n"
            f"Estimated cost: {format_cost(stats['total_estimated_cost'])}"
        )

    def reset(self) -> None:
        with self._lock:
            self._clear()

    def _clear(self) -> None:
        self.total_routes = 0
        self.routes_by_tier: dict[str, int] = {tier: 0 for tier in self._tiers}
        self.routes_by_task: dict[str, int] = {}
        self.total_estimated_cost = 0.0


def format_cost(cost: float, currency: str = "USD") -> str:
    if currency == "USD":
        return f"${cost:.6f}"
    return f"{cost:.6f} {currency}"
