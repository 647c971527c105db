"""
risk.py - Collateral value, borrowed value and the health factor

Key Formulas:
    C  = sum(value(token, deposited[account][token]) for token in allowed)
    B  = sum(value(token, borrowed[account][token])  for token in allowed)
    HF = C * threshold // 100 * SCALE // B          (B > 0)
    HF = HEALTH_FACTOR_SENTINEL                     (B == 0)

HF >= MIN_HEALTH_FACTOR (1e18) is solvent. The threshold is applied
multiply-first so 80% of C keeps full precision.

The engine only reads: it takes a LedgerView and never mutates balances.
Nothing here liquidates; LendingPool uses is_solvent() as a gate.
"""

from __future__ import annotations
from typing import Callable

from .core import (
    SCALE, HEALTH_FACTOR_SENTINEL, LIQUIDATION_PRECISION,
    LIQUIDATION_THRESHOLD_PERCENT, MIN_HEALTH_FACTOR,
    Account, AccountSummary, LedgerView, RiskAssessment, Token,
    checked_add, mul_div,
)
from .registry import TokenRegistry
from .valuation import ValuationEngine


class RiskEngine:
    """
    Aggregates an account's positions into values and a health factor.

    Args:
        view: Read-only ledger access
        registry: Allowed tokens (iteration order = insertion order)
        valuation: Converts quantities to the unit of account
        liquidation_threshold_percent: Share of collateral counted toward solvency
        min_health_factor: Solvency boundary
        healthy_sentinel: Health factor reported for accounts without debt
    """

    def __init__(
        self,
        view: LedgerView,
        registry: TokenRegistry,
        valuation: ValuationEngine,
        liquidation_threshold_percent: int = LIQUIDATION_THRESHOLD_PERCENT,
        min_health_factor: int = MIN_HEALTH_FACTOR,
        healthy_sentinel: int = HEALTH_FACTOR_SENTINEL,
    ):
        if not 0 < liquidation_threshold_percent <= LIQUIDATION_PRECISION:
            raise ValueError(
                f"liquidation threshold must be in (0, {LIQUIDATION_PRECISION}], "
                f"got {liquidation_threshold_percent}"
            )
        self.view = view
        self.registry = registry
        self.valuation = valuation
        self.liquidation_threshold_percent = liquidation_threshold_percent
        self.min_health_factor = min_health_factor
        self.healthy_sentinel = healthy_sentinel

    def _sum_values(self, quantity: Callable[[Account, Token], int], account: Account) -> int:
        # Full allowed set, index 0 included. Zero balances are never priced.
        total = 0
        for token in self.registry.allowed_tokens():
            amount = quantity(account, token)
            if amount == 0:
                continue
            total = checked_add(total, self.valuation.value_in_unit_of_account(token, amount))
        return total

    def collateral_value(self, account: Account) -> int:
        """Unit-of-account value of everything the account has deposited."""
        return self._sum_values(self.view.get_deposited, account)

    def borrowed_value(self, account: Account) -> int:
        """Unit-of-account value of everything the account has borrowed."""
        return self._sum_values(self.view.get_borrowed, account)

    def account_summary(self, account: Account) -> AccountSummary:
        return AccountSummary(
            collateral_value=self.collateral_value(account),
            borrowed_value=self.borrowed_value(account),
        )

    def health_factor_from_values(self, collateral_value: int, borrowed_value: int) -> int:
        """Pure health factor from already-computed values."""
        if borrowed_value == 0:
            return self.healthy_sentinel
        adjusted = mul_div(collateral_value, self.liquidation_threshold_percent, LIQUIDATION_PRECISION)
        return mul_div(adjusted, SCALE, borrowed_value)

    def health_factor(self, account: Account) -> int:
        """
        Risk-adjusted collateral over debt, scaled by 1e18.

        Debt is valued first; an account without debt gets the sentinel
        without pricing its collateral.

        Raises:
            OracleUnavailable: If any held token cannot be priced
            ArithmeticOverflow: If an intermediate exceeds uint256
        """
        borrowed = self.borrowed_value(account)
        if borrowed == 0:
            return self.healthy_sentinel
        return self.health_factor_from_values(self.collateral_value(account), borrowed)

    def is_solvent(self, account: Account) -> bool:
        return self.health_factor(account) >= self.min_health_factor

    def assess(self, account: Account) -> RiskAssessment:
        """Collateral, debt, health factor and solvency in one pass."""
        summary = self.account_summary(account)
        hf = self.health_factor_from_values(summary.collateral_value, summary.borrowed_value)
        return RiskAssessment(
            account=account,
            collateral_value=summary.collateral_value,
            borrowed_value=summary.borrowed_value,
            health_factor=hf,
            solvent=hf >= self.min_health_factor,
        )
