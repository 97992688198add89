import pytest

from utils.cost_calculator import CostLedger, estimate_cost, estimate_input_tokens, format_cost
from routing.routing_types import ModelConfig, ModelTier


def test_input_tokens_round_up():
    assert estimate_input_tokens("") == 0
    assert estimate_input_tokens(None) == 0
    assert estimate_input_tokens("abcd") == 1
    assert estimate_input_tokens("abcde") == 2


def test_estimate_cost_uses_per_million_prices():
    model = ModelConfig(id="m", tier=ModelTier.ADVANCED, input_cost_per_1m=1.25, output_cost_per_1m=5.0)
    assert estimate_cost(model, 1_000_000, 0) == pytest.approx(1.25)
    assert estimate_cost(model, 2_000, 1_000) == pytest.approx(0.0075)


def test_ledger_accumulates_and_resets():
    ledger = CostLedger(tiers=["fast", "standard"])
    ledger.record("fast", "qa", 0.001)
    ledger.record("fast", "slides", 0.002)

    summary = ledger.summary()
    assert summary["total_routes"] == 2
    assert summary["routes_by_tier"] == {"fast": 2, "standard": 0}
    assert summary["routes_by_task"] == {"qa": 1, "slides": 1}
    assert summary["total_estimated_cost"] == pytest.approx(0.003)
    assert "Routes: 2" in ledger.format_summary()

    ledger.reset()
    assert ledger.summary()["total_routes"] == 0


def test_format_cost():
    assert format_cost(0.0015) == "$0.001500"
    assert format_cost(2, currency="EUR") == "2.000000 EUR"
