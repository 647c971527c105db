"""
conftest.py - Shared pytest fixtures for lending_ledger tests

Provides common fixtures used across unit, conformance and functional tests:
- A static oracle pricing WETH at 2000 and DAI / TKA / TKB at 1
- An in-memory token bank
- A pool with all four tokens registered and custody liquidity seeded
- A fund() helper that mints and approves tokens for an account
"""

import pytest
from datetime import datetime, timedelta
from typing import Callable

from lending_ledger import (
    SCALE,
    LendingPool,
    InMemoryTokenBank,
    StaticPriceOracle,
)


# =============================================================================
# CONSTANTS
# =============================================================================

T0 = datetime(2025, 1, 1, 9, 30)

ADMIN = "admin"

PRICES = {
    "feed:WETH": 2000 * SCALE,
    "feed:DAI": SCALE,
    "feed:TKA": SCALE,
    "feed:TKB": SCALE,
}

TOKENS = {
    "WETH": "feed:WETH",
    "DAI": "feed:DAI",
    "TKA": "feed:TKA",
    "TKB": "feed:TKB",
}

# Borrowable liquidity seeded into custody for every token.
SEED_LIQUIDITY = 1_000_000 * SCALE


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def oracle() -> StaticPriceOracle:
    return StaticPriceOracle(dict(PRICES), updated_at=T0)


@pytest.fixture
def bank() -> InMemoryTokenBank:
    return InMemoryTokenBank()


@pytest.fixture
def empty_pool(oracle, bank) -> LendingPool:
    """Pool with no tokens registered."""
    return LendingPool(
        oracle, bank, admins=[ADMIN],
        initial_time=T0, verbose=False, max_price_age=timedelta(hours=1),
    )


@pytest.fixture
def pool(empty_pool, bank) -> LendingPool:
    """Pool with WETH, DAI, TKA, TKB registered and liquidity seeded."""
    for token, feed in TOKENS.items():
        empty_pool.register_token(ADMIN, token, feed)
        bank.mint(token, empty_pool.custody_account, SEED_LIQUIDITY)
    return empty_pool


@pytest.fixture
def fund(bank, empty_pool) -> Callable[[str, str, int], None]:
    """Mint amount of token to account and approve custody to pull it."""
    def _fund(account: str, token: str, amount: int) -> None:
        bank.mint(token, account, amount)
        current = bank.allowance(token, account, empty_pool.custody_account)
        bank.approve(token, account, empty_pool.custody_account, current + amount)
    return _fund
