"""
Core types and pure functions for the lending ledger.

This module provides the foundational pieces every other module builds on:
1. Constants: fixed-point scale, uint256 bound, health factor limits
2. Exceptions: LendingError and the domain-specific error family
3. Checked integer arithmetic: add/mul/mul_div that fail instead of wrapping
4. Immutable data structures: PriceQuote, LedgerEntry, AccountSummary, events
5. Protocols: LedgerView for read-only access to balances

All functions in this module are pure. Nothing here holds mutable state.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Protocol, Tuple, runtime_checkable


# ============================================================================
# CONSTANTS
# ============================================================================

# Fixed-point scale for prices, values and the health factor (18 decimals).
SCALE = 10 ** 18

# Largest representable balance. Any intermediate result above this fails.
MAX_UINT256 = 2 ** 256 - 1

# Fraction of collateral value that counts toward solvency, in percent.
LIQUIDATION_THRESHOLD_PERCENT = 80
LIQUIDATION_PRECISION = 100

# Health factor at or above this value is solvent.
MIN_HEALTH_FACTOR = SCALE

# Returned by the health factor when an account has no debt.
HEALTH_FACTOR_SENTINEL = 100 * SCALE

# Default account that holds tokens in custody.
CUSTODY_ACCOUNT = "lending_pool"

# Oldest oracle quote accepted by default, in seconds.
MAX_PRICE_AGE_SECONDS = 3600


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Opaque identifiers (address-equivalents).
Token = str
Account = str
FeedId = str

# Key into the ledger.
EntryKey = Tuple[Account, Token]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LendingError(Exception):
    """Base exception for all lending-ledger errors."""
    pass


class InvalidAmount(LendingError):
    """Raised when an amount is zero, negative, not an integer, or out of range."""
    pass


class TokenNotAllowed(LendingError):
    """Raised when a token has no registered price feed."""
    pass


class TransferFailed(LendingError):
    """Raised when the token-transfer collaborator reports failure."""
    pass


class InsufficientFunds(LendingError):
    """Raised when a withdrawal exceeds the deposited balance."""
    pass


class InsufficientDebt(LendingError):
    """Raised when a repayment exceeds the borrowed balance."""
    pass


class InsufficientLiquidity(LendingError):
    """Raised when custody does not hold enough of a token to fund a borrow."""
    pass


class InsolventPosition(LendingError):
    """Raised when an operation would leave the health factor below the minimum."""
    pass


class OracleUnavailable(LendingError):
    """Raised when the oracle returns no quote, a non-positive price, or a stale quote."""
    pass


class DivisionByZero(OracleUnavailable):
    """Raised when a conversion would divide by a zero price."""
    pass


class ArithmeticOverflow(LendingError):
    """Raised when a result would exceed MAX_UINT256."""
    pass


class Unauthorized(LendingError):
    """Raised when a non-admin caller attempts an administrative operation."""
    pass


class ReentrantCall(LendingError):
    """Raised when an operation is re-entered while another is in flight."""
    pass


# ============================================================================
# CHECKED ARITHMETIC
# ============================================================================

def _check_range(value: int) -> int:
    if value > MAX_UINT256:
        raise ArithmeticOverflow(f"result {value} exceeds uint256")
    return value


def checked_add(a: int, b: int) -> int:
    """Return a + b, raising ArithmeticOverflow above MAX_UINT256."""
    return _check_range(a + b)


def checked_mul(a: int, b: int) -> int:
    """Return a * b, raising ArithmeticOverflow above MAX_UINT256."""
    return _check_range(a * b)


def mul_div(a: int, b: int, denominator: int) -> int:
    """
    Compute floor(a * b / denominator) with the product bounded by uint256.

    The product is checked before division so an overflowing intermediate
    fails the same way it would in fixed-width arithmetic.

    Raises:
        ZeroDivisionError: If denominator is zero. Callers that can see a zero
            denominator check it first and raise a domain error.
        ArithmeticOverflow: If a * b exceeds MAX_UINT256.
    """
    if denominator == 0:
        raise ZeroDivisionError("mul_div denominator is zero")
    return checked_mul(a, b) // denominator


def validate_amount(amount: int, allow_zero: bool = False) -> int:
    """
    Validate a token amount.

    Amounts are unsigned integers in the token's smallest unit. bool is
    rejected even though it subclasses int.

    Raises:
        InvalidAmount: If amount is not an int, is negative (or zero unless
            allow_zero), or exceeds MAX_UINT256.
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"amount must be an integer, got {type(amount).__name__}")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidAmount(f"amount must be positive, got {amount}")
    if amount > MAX_UINT256:
        raise InvalidAmount(f"amount {amount} exceeds uint256")
    return amount


def to_decimal(wad: int) -> Decimal:
    """Convert an 18-decimal fixed-point integer to a Decimal for display."""
    return Decimal(wad) / Decimal(SCALE)


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class PriceQuote:
    """
    A single oracle reading.

    Attributes:
        price: Price of one whole token in the unit of account, scaled by 1e18.
            Signed, because feeds can misreport; consumers must reject <= 0.
        updated_at: When the feed last updated this price.
    """
    price: int
    updated_at: datetime


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """Deposited and borrowed quantities for one (account, token) pair."""
    deposited: int = 0
    borrowed: int = 0

    def __post_init__(self):
        if self.deposited < 0 or self.borrowed < 0:
            raise ValueError(
                f"ledger quantities cannot be negative: "
                f"deposited={self.deposited}, borrowed={self.borrowed}"
            )

    def is_empty(self) -> bool:
        return self.deposited == 0 and self.borrowed == 0


@dataclass(frozen=True, slots=True)
class AccountSummary:
    """Collateral and borrowed value of an account, in the unit of account."""
    collateral_value: int
    borrowed_value: int


@dataclass(frozen=True, slots=True)
class RiskAssessment:
    """Full risk snapshot of an account."""
    account: Account
    collateral_value: int
    borrowed_value: int
    health_factor: int
    solvent: bool

    def __repr__(self) -> str:
        return (
            f"RiskAssessment({self.account}: collateral={to_decimal(self.collateral_value)}, "
            f"borrowed={to_decimal(self.borrowed_value)}, "
            f"hf={to_decimal(self.health_factor)}, solvent={self.solvent})"
        )


# ============================================================================
# EVENTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class LendingEvent:
    """
    Base class for events emitted by the pool.

    sequence is a monotonically increasing counter per pool; timestamp is the
    pool's logical time when the event was emitted.
    """
    sequence: int
    timestamp: datetime

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True, slots=True)
class PositionEvent(LendingEvent):
    """An event that changed one account's balance of one token."""
    account: Account
    token: Token
    amount: int


@dataclass(frozen=True, slots=True)
class Deposit(PositionEvent):
    pass


@dataclass(frozen=True, slots=True)
class Withdraw(PositionEvent):
    pass


@dataclass(frozen=True, slots=True)
class Borrow(PositionEvent):
    pass


@dataclass(frozen=True, slots=True)
class Repay(PositionEvent):
    pass


@dataclass(frozen=True, slots=True)
class TokenAllowed(LendingEvent):
    """A token was admitted to the registry or re-pointed to a new feed."""
    token: Token
    price_feed: FeedId


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger balances.

    The risk engine and reporting code take a LedgerView so they declare they
    never mutate balances. Ledger implements it.
    """

    def get_deposited(self, account: Account, token: Token) -> int:
        """Return the deposited quantity, 0 if there is no entry."""
        ...

    def get_borrowed(self, account: Account, token: Token) -> int:
        """Return the borrowed quantity, 0 if there is no entry."""
        ...

    def get_account_entries(self, account: Account) -> Dict[Token, LedgerEntry]:
        """Return all non-empty entries for an account."""
        ...


def event_summary(event: LendingEvent) -> str:
    """One-line human readable rendering of an event, used for logging."""
    if isinstance(event, PositionEvent):
        return f"#{event.sequence} {event.name}({event.account}, {event.token}, {event.amount})"
    if isinstance(event, TokenAllowed):
        return f"#{event.sequence} TokenAllowed({event.token}, {event.price_feed})"
    return f"#{event.sequence} {event.name}"

