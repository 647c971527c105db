"""
lending_ledger - Collateralized Lending Ledger

Account holders deposit fungible tokens as collateral, borrow other allowed
tokens against it, and repay or withdraw subject to an oracle-priced health
factor check.

Usage:
    from lending_ledger import (
        LendingPool, InMemoryTokenBank, StaticPriceOracle, SCALE,
    )

    bank = InMemoryTokenBank()
    oracle = StaticPriceOracle({"feed:WETH": 2000 * SCALE, "feed:DAI": SCALE})
    pool = LendingPool(oracle, bank, admins=["admin"])
    pool.register_token("admin", "WETH", "feed:WETH")
    pool.register_token("admin", "DAI", "feed:DAI")

    # Seed borrowable liquidity and fund a user
    bank.mint("DAI", pool.custody_account, 100_000 * SCALE)
    bank.mint("WETH", "alice", 5 * SCALE)
    bank.approve("WETH", "alice", pool.custody_account, 5 * SCALE)

    pool.deposit("alice", "WETH", 5 * SCALE)
    pool.borrow("alice", "DAI", 4_000 * SCALE)
    pool.get_health_factor("alice")      # 2e18
"""

# Core types
from .core import (
    # Constants
    SCALE,
    MAX_UINT256,
    LIQUIDATION_THRESHOLD_PERCENT,
    LIQUIDATION_PRECISION,
    MIN_HEALTH_FACTOR,
    HEALTH_FACTOR_SENTINEL,
    CUSTODY_ACCOUNT,
    MAX_PRICE_AGE_SECONDS,
    # Data structures
    PriceQuote,
    LedgerEntry,
    AccountSummary,
    RiskAssessment,
    LedgerView,
    # Events
    LendingEvent,
    PositionEvent,
    Deposit,
    Withdraw,
    Borrow,
    Repay,
    TokenAllowed,
    # Exceptions
    LendingError,
    InvalidAmount,
    TokenNotAllowed,
    TransferFailed,
    InsufficientFunds,
    InsufficientDebt,
    InsufficientLiquidity,
    InsolventPosition,
    OracleUnavailable,
    DivisionByZero,
    ArithmeticOverflow,
    Unauthorized,
    ReentrantCall,
    # Arithmetic
    checked_add,
    checked_mul,
    mul_div,
    validate_amount,
    to_decimal,
)

# Collaborators
from .oracle import (
    PriceOracle,
    StaticPriceOracle,
    TimeSeriesPriceOracle,
)
from .tokens import (
    TokenTransfer,
    InMemoryTokenBank,
)

# Engines
from .registry import TokenRegistry
from .ledger import Ledger
from .valuation import ValuationEngine
from .risk import RiskEngine

# Facade
from .pool import LendingPool

# Configuration and logging
from .config import (
    LendingConfig,
    RiskConfig,
    OracleConfig,
    load_config,
    validate_config,
)
from .logging_setup import configure_logging

__all__ = [
    # Constants
    'SCALE', 'MAX_UINT256', 'LIQUIDATION_THRESHOLD_PERCENT', 'LIQUIDATION_PRECISION',
    'MIN_HEALTH_FACTOR', 'HEALTH_FACTOR_SENTINEL', 'CUSTODY_ACCOUNT', 'MAX_PRICE_AGE_SECONDS',
    # Data structures
    'PriceQuote', 'LedgerEntry', 'AccountSummary', 'RiskAssessment', 'LedgerView',
    # Events
    'LendingEvent', 'PositionEvent', 'Deposit', 'Withdraw', 'Borrow', 'Repay', 'TokenAllowed',
    # Exceptions
    'LendingError', 'InvalidAmount', 'TokenNotAllowed', 'TransferFailed',
    'InsufficientFunds', 'InsufficientDebt', 'InsufficientLiquidity',
    'InsolventPosition', 'OracleUnavailable', 'DivisionByZero',
    'ArithmeticOverflow', 'Unauthorized', 'ReentrantCall',
    # Arithmetic
    'checked_add', 'checked_mul', 'mul_div', 'validate_amount', 'to_decimal',
    # Collaborators
    'PriceOracle', 'StaticPriceOracle', 'TimeSeriesPriceOracle',
    'TokenTransfer', 'InMemoryTokenBank',
    # Engines
    'TokenRegistry', 'Ledger', 'ValuationEngine', 'RiskEngine',
    # Facade
    'LendingPool',
    # Configuration
    'LendingConfig', 'RiskConfig', 'OracleConfig', 'load_config', 'validate_config',
    'configure_logging',
]

__version__ = '1.0.0'
