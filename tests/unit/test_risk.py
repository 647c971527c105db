"""
test_risk.py - Unit tests for RiskEngine

Tests:
- Collateral and borrowed value aggregation
- Borrowed value includes the first allowed token
- Health factor formula, sentinel and precision
- Zero balances do not consult the oracle
"""

import pytest
from datetime import datetime

from lending_ledger import (
    SCALE, HEALTH_FACTOR_SENTINEL, MIN_HEALTH_FACTOR,
    Ledger, RiskEngine, TokenRegistry, ValuationEngine, StaticPriceOracle,
    OracleUnavailable,
)


T0 = datetime(2025, 1, 1)


def _setup(prices, threshold=80):
    """Registry in price-dict order, ledger, oracle and engine."""
    registry = TokenRegistry()
    for token in prices:
        registry.register_token(token, f"feed:{token}")
    oracle = StaticPriceOracle({f"feed:{t}": p for t, p in prices.items()}, updated_at=T0)
    ledger = Ledger()
    valuation = ValuationEngine(registry, oracle, clock=lambda: T0)
    risk = RiskEngine(ledger, registry, valuation, liquidation_threshold_percent=threshold)
    return ledger, oracle, risk


class TestValues:

    def test_collateral_value_sums_all_tokens(self):
        ledger, _, risk = _setup({"WETH": 2000 * SCALE, "DAI": SCALE})
        ledger.record_deposit("alice", "WETH", 2 * SCALE)
        ledger.record_deposit("alice", "DAI", 500 * SCALE)
        assert risk.collateral_value("alice") == 4500 * SCALE

    def test_borrowed_value_includes_first_token(self):
        """Debt in the first registered token is counted."""
        ledger, _, risk = _setup({"WETH": 2000 * SCALE, "DAI": SCALE})
        ledger.record_borrow("alice", "WETH", SCALE)
        ledger.record_borrow("alice", "DAI", 100 * SCALE)
        assert risk.borrowed_value("alice") == 2100 * SCALE

    def test_summary(self):
        ledger, _, risk = _setup({"WETH": 2000 * SCALE, "DAI": SCALE})
        ledger.record_deposit("alice", "WETH", SCALE)
        ledger.record_borrow("alice", "DAI", 100 * SCALE)
        summary = risk.account_summary("alice")
        assert summary.collateral_value == 2000 * SCALE
        assert summary.borrowed_value == 100 * SCALE

    def test_unknown_account_has_zero_values(self):
        _, _, risk = _setup({"WETH": 2000 * SCALE})
        assert risk.collateral_value("nobody") == 0
        assert risk.borrowed_value("nobody") == 0

    def test_zero_balance_tokens_not_priced(self):
        """A dead feed for a token the account does not hold is irrelevant."""
        ledger, oracle, risk = _setup({"WETH": 2000 * SCALE, "DAI": SCALE})
        oracle.remove("feed:WETH")
        ledger.record_deposit("alice", "DAI", 10 * SCALE)
        assert risk.collateral_value("alice") == 10 * SCALE

    def test_dead_feed_for_held_token_fails(self):
        ledger, oracle, risk = _setup({"WETH": 2000 * SCALE, "DAI": SCALE})
        ledger.record_deposit("alice", "WETH", SCALE)
        oracle.remove("feed:WETH")
        with pytest.raises(OracleUnavailable):
            risk.collateral_value("alice")


class TestHealthFactor:

    def test_sentinel_without_debt(self):
        ledger, _, risk = _setup({"WETH": 2000 * SCALE})
        ledger.record_deposit("alice", "WETH", SCALE)
        assert risk.health_factor("alice") == HEALTH_FACTOR_SENTINEL
        assert risk.health_factor("nobody") == 100 * SCALE

    def test_sentinel_does_not_price_collateral(self):
        ledger, oracle, risk = _setup({"WETH": 2000 * SCALE})
        ledger.record_deposit("alice", "WETH", SCALE)
        oracle.remove("feed:WETH")
        assert risk.health_factor("alice") == HEALTH_FACTOR_SENTINEL

    def test_formula(self):
        ledger, _, risk = _setup({"TKA": SCALE, "TKB": SCALE})
        ledger.record_deposit("alice", "TKA", 1000 * SCALE)
        ledger.record_borrow("alice", "TKB", 400 * SCALE)
        # 1000 * 0.8 / 400 = 2
        assert risk.health_factor("alice") == 2 * SCALE

    def test_exact_threshold_is_solvent(self):
        ledger, _, risk = _setup({"TKA": SCALE, "TKB": SCALE})
        ledger.record_deposit("alice", "TKA", 1000 * SCALE)
        ledger.record_borrow("alice", "TKB", 800 * SCALE)
        assert risk.health_factor("alice") == MIN_HEALTH_FACTOR
        assert risk.is_solvent("alice")

    def test_just_above_threshold_is_insolvent(self):
        ledger, _, risk = _setup({"TKA": SCALE, "TKB": SCALE})
        ledger.record_deposit("alice", "TKA", 1000 * SCALE)
        ledger.record_borrow("alice", "TKB", 800 * SCALE + 1)
        assert risk.health_factor("alice") < MIN_HEALTH_FACTOR
        assert not risk.is_solvent("alice")

    def test_threshold_applied_multiply_first(self):
        """80% of a small collateral value keeps its precision."""
        ledger, _, risk = _setup({"TKA": SCALE, "TKB": SCALE})
        ledger.record_deposit("alice", "TKA", 5)
        ledger.record_borrow("alice", "TKB", 4)
        # C = 5, B = 4: 5 * 80 // 100 = 4, 4 * 1e18 // 4 = 1e18
        assert risk.health_factor("alice") == SCALE

    def test_custom_threshold(self):
        ledger, _, risk = _setup({"TKA": SCALE, "TKB": SCALE}, threshold=50)
        ledger.record_deposit("alice", "TKA", 1000 * SCALE)
        ledger.record_borrow("alice", "TKB", 250 * SCALE)
        assert risk.health_factor("alice") == 2 * SCALE

    @pytest.mark.parametrize("threshold", [0, 101, -5])
    def test_invalid_threshold(self, threshold):
        with pytest.raises(ValueError):
            _setup({"TKA": SCALE}, threshold=threshold)

    def test_assess(self):
        ledger, _, risk = _setup({"TKA": SCALE, "TKB": SCALE})
        ledger.record_deposit("alice", "TKA", 1000 * SCALE)
        ledger.record_borrow("alice", "TKB", 500 * SCALE)
        assessment = risk.assess("alice")
        assert assessment.collateral_value == 1000 * SCALE
        assert assessment.borrowed_value == 500 * SCALE
        assert assessment.health_factor == 16 * SCALE // 10
        assert assessment.solvent is True
        assert "alice" in repr(assessment)
