"""
pool.py - The lending pool: deposit, withdraw, borrow, repay

LendingPool is the only component that mutates the ledger. It wires the
registry, ledger, valuation and risk engines together with two external
collaborators (a PriceOracle and a TokenTransfer) and exposes:

    - four state-changing operations: deposit, withdraw, borrow, repay
    - admin-gated token registration
    - read operations over values and the health factor
    - an event log plus synchronous subscribers

Execution model:
    Every public call runs under one pool-wide lock, so operations are
    globally serialized. While an operation is in flight, any call back into
    the pool from the same thread (for example from a transfer or oracle
    collaborator) raises ReentrantCall. A caller on another thread waits its
    turn, but once the in-flight collaborator call has run for
    collaborator_timeout seconds a waiting caller raises ReentrantCall rather
    than block forever behind a collaborator that waits on it.

    Each operation stages its ledger mutation inside Ledger.atomic() and
    performs the external transfer as the last step of that block, so a
    failure anywhere leaves no partial state.
"""

from __future__ import annotations
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timedelta
import logging
import threading
import time
from typing import Any, Callable, ContextManager, Dict, Iterable, Iterator, List, Optional, Type

from .config import LendingConfig
from .core import (
    # Constants
    CUSTODY_ACCOUNT, HEALTH_FACTOR_SENTINEL, LIQUIDATION_THRESHOLD_PERCENT, MAX_PRICE_AGE_SECONDS,
    MIN_HEALTH_FACTOR,
    # Types
    Account, AccountSummary, FeedId, LedgerEntry, PriceQuote, RiskAssessment, Token,
    # Events
    Borrow, Deposit, LendingEvent, Repay, TokenAllowed, Withdraw,
    # Exceptions
    InsolventPosition, InsufficientLiquidity, LendingError, ReentrantCall,
    TokenNotAllowed, TransferFailed, Unauthorized,
    # Helpers
    event_summary, to_decimal, validate_amount,
)
from .ledger import Ledger
from .oracle import PriceOracle
from .registry import TokenRegistry
from .risk import RiskEngine
from .tokens import TokenTransfer
from .valuation import ValuationEngine

logger = logging.getLogger(__name__)

EventCallback = Callable[[LendingEvent], None]

# How often a waiting caller re-checks for a stuck collaborator call.
_LOCK_POLL_SECONDS = 0.05


class _MonitoredOracle:
    """Oracle wrapper that marks each lookup as an in-flight collaborator call."""

    def __init__(self, oracle: PriceOracle, collaborator_call: Callable[[], ContextManager[None]]):
        self.oracle = oracle
        self._collaborator_call = collaborator_call

    def latest_price(self, feed_id: FeedId) -> Optional[PriceQuote]:
        with self._collaborator_call():
            return self.oracle.latest_price(feed_id)


class LendingPool:
    """
    Collateralized lending over an allowed set of tokens.

    Example:
        bank = InMemoryTokenBank()
        oracle = StaticPriceOracle({"feed:WETH": 2000 * SCALE, "feed:DAI": SCALE})
        pool = LendingPool(oracle, bank, admins=["admin"])
        pool.register_token("admin", "WETH", "feed:WETH")
        pool.register_token("admin", "DAI", "feed:DAI")

        bank.mint("DAI", pool.custody_account, 10_000 * SCALE)
        bank.mint("WETH", "alice", SCALE)
        bank.approve("WETH", "alice", pool.custody_account, SCALE)

        pool.deposit("alice", "WETH", SCALE)
        pool.borrow("alice", "DAI", 1_000 * SCALE)
        pool.get_health_factor("alice")   # 1.6e18

    Thread Safety:
        All public methods are serialized by an internal lock.
    """

    def __init__(
        self,
        oracle: PriceOracle,
        transfers: TokenTransfer,
        admins: Iterable[Account],
        custody_account: Account = CUSTODY_ACCOUNT,
        liquidation_threshold_percent: int = LIQUIDATION_THRESHOLD_PERCENT,
        min_health_factor: int = MIN_HEALTH_FACTOR,
        healthy_sentinel: int = HEALTH_FACTOR_SENTINEL,
        max_price_age: Optional[timedelta] = timedelta(seconds=MAX_PRICE_AGE_SECONDS),
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        collaborator_timeout: float = 1.0,
    ):
        """
        Create a pool.

        Args:
            oracle: Price oracle collaborator
            transfers: Token transfer collaborator
            admins: Accounts allowed to register tokens (must be non-empty)
            custody_account: Account that holds tokens on behalf of the pool
            liquidation_threshold_percent: Share of collateral counted toward solvency
            min_health_factor: Operations leaving HF below this are rejected
            healthy_sentinel: HF reported for accounts with no debt
            max_price_age: Reject quotes older than this (default: one hour;
                None disables the check)
            initial_time: Starting logical time (default: 1970-01-01)
            verbose: Log applied and rejected operations at INFO (default: True)
            collaborator_timeout: Seconds a caller on another thread may wait
                behind one in-flight transfer or oracle call before it raises
                ReentrantCall
        """
        if collaborator_timeout <= 0:
            raise ValueError("collaborator_timeout must be positive")
        self.admins = frozenset(admins)
        if not self.admins:
            raise ValueError("LendingPool requires at least one admin")
        if custody_account in self.admins:
            raise ValueError("custody account cannot be an admin")

        self.oracle = oracle
        self.transfers = transfers
        self.custody_account = custody_account
        self.verbose = verbose
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)

        self.registry = TokenRegistry()
        self.ledger = Ledger()
        self.collaborator_timeout = collaborator_timeout
        self.valuation = ValuationEngine(
            self.registry, _MonitoredOracle(oracle, self._collaborator_call),
            clock=lambda: self._current_time, max_price_age=max_price_age,
        )
        self.risk = RiskEngine(
            self.ledger, self.registry, self.valuation,
            liquidation_threshold_percent=liquidation_threshold_percent,
            min_health_factor=min_health_factor,
            healthy_sentinel=healthy_sentinel,
        )

        self.event_log: List[LendingEvent] = []
        self._subscribers: List[EventCallback] = []
        self._next_sequence: int = 0
        # Committed events not yet delivered, in sequence order.
        self._pending: deque = deque()
        self._delivery_lock = threading.Lock()
        self._delivering_thread: Optional[int] = None

        self._lock = threading.Lock()
        # Ident of the thread currently inside a public call, None when idle.
        self._active_thread: Optional[int] = None
        # time.monotonic() at which the in-flight collaborator call started.
        self._call_started: Optional[float] = None

    @classmethod
    def from_config(
        cls,
        config: LendingConfig,
        oracle: PriceOracle,
        transfers: TokenTransfer,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ) -> "LendingPool":
        """
        Build a pool from configuration and register the configured tokens.

        Tokens are registered in configuration order by the first admin.
        """
        pool = cls(
            oracle,
            transfers,
            admins=config.admins,
            custody_account=config.custody_account,
            liquidation_threshold_percent=config.risk.liquidation_threshold_percent,
            min_health_factor=config.risk.min_health_factor,
            healthy_sentinel=config.risk.healthy_sentinel,
            max_price_age=config.oracle.max_price_age,
            initial_time=initial_time,
            verbose=verbose,
        )
        admin = config.admins[0]
        for token, feed in config.tokens.items():
            pool.register_token(admin, token, feed)
        return pool

    # ========================================================================
    # SERIALIZATION AND REENTRANCY
    # ========================================================================

    @contextmanager
    def _guard(self, name: str) -> Iterator[None]:
        me = threading.get_ident()
        if self._active_thread == me:
            raise ReentrantCall(f"{name} called while another pool operation is in flight")
        self._acquire(name)
        self._active_thread = me
        try:
            yield
        finally:
            self._active_thread = None
            self._lock.release()

    def _acquire(self, name: str) -> None:
        while not self._lock.acquire(timeout=_LOCK_POLL_SECONDS):
            started = self._call_started
            if started is not None and time.monotonic() - started >= self.collaborator_timeout:
                raise ReentrantCall(
                    f"{name} blocked behind a collaborator call running for "
                    f"{self.collaborator_timeout}s or more"
                )

    @contextmanager
    def _collaborator_call(self) -> Iterator[None]:
        """Mark a transfer or oracle call as in flight."""
        self._call_started = time.monotonic()
        try:
            yield
        finally:
            self._call_started = None

    @contextmanager
    def _operation(self, name: str, account: Account, token: Token, amount: Any) -> Iterator[None]:
        """Guard a mutating operation and log its rejection."""
        with self._guard(name):
            try:
                yield
            except LendingError as e:
                self._log("REJECTED %s(%s, %s, %s): %s: %s",
                          name, account, token, amount, type(e).__name__, e)
                raise

    def _log(self, msg: str, *args: Any) -> None:
        if self.verbose:
            logger.info(msg, *args)
        else:
            logger.debug(msg, *args)

    # ========================================================================
    # EVENTS
    # ========================================================================

    def subscribe(self, callback: EventCallback) -> None:
        """
        Call callback with every event emitted after an operation commits.

        Events are delivered in sequence order, one at a time, after the
        committing operation has released the pool, so a callback may call
        back into the pool. Events committed by such a call are delivered
        after the current one.
        """
        self._subscribers.append(callback)

    def unsubscribe(self, callback: EventCallback) -> None:
        self._subscribers.remove(callback)

    def _emit(self, event_type: Type[LendingEvent], **fields: Any) -> LendingEvent:
        event = event_type(sequence=self._next_sequence, timestamp=self._current_time, **fields)
        self._next_sequence += 1
        self.event_log.append(event)
        self._pending.append(event)
        self._log("APPLIED %s", event_summary(event))
        return event

    def _notify(self) -> None:
        # Runs after the pool lock is released.
        me = threading.get_ident()
        if self._delivering_thread == me:
            # Called from a subscriber; the outer loop delivers the new events.
            return
        with self._delivery_lock:
            self._delivering_thread = me
            try:
                while self._pending:
                    event = self._pending.popleft()
                    for callback in list(self._subscribers):
                        try:
                            callback(event)
                        except Exception:
                            # The operation has committed; a failing observer cannot undo it.
                            logger.exception("Event subscriber %r failed on %s",
                                             callback, event_summary(event))
            finally:
                self._delivering_thread = None

    def events_for(self, account: Account) -> List[LendingEvent]:
        """Position events emitted for one account, in order."""
        return [e for e in self.event_log if getattr(e, "account", None) == account]

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the pool."""
        return self._current_time

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the pool's logical clock.

        Raises:
            ValueError: If new_time is before the current time
        """
        with self._guard("advance_time"):
            if new_time < self._current_time:
                raise ValueError(
                    f"Cannot move time backwards: {new_time} < {self._current_time}"
                )
            self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Admin)
    # ========================================================================

    def is_admin(self, account: Account) -> bool:
        return account in self.admins

    def register_token(self, caller: Account, token: Token, price_feed: FeedId) -> TokenAllowed:
        """
        Allow a token, or re-point an allowed token to a new price feed.

        Idempotent: registering an allowed token again only replaces its feed.

        Raises:
            Unauthorized: If caller is not an admin
            ValueError: If token or price_feed is empty
        """
        with self._guard("register_token"):
            if not self.is_admin(caller):
                self._log("REJECTED register_token(%s, %s) by %s: not an admin", token, price_feed, caller)
                raise Unauthorized(f"{caller} is not an admin")
            self.registry.register_token(token, price_feed)
            event = self._emit(TokenAllowed, token=token, price_feed=price_feed)
        self._notify()
        return event

    # ========================================================================
    # OPERATIONS (Mutating)
    # ========================================================================

    def deposit(self, account: Account, token: Token, amount: int) -> Deposit:
        """
        Pull amount of token from account into custody and credit it as collateral.

        Raises:
            InvalidAmount, TokenNotAllowed, TransferFailed, ArithmeticOverflow
        """
        with self._operation("deposit", account, token, amount):
            self._check_request(token, amount)
            with self.ledger.atomic():
                self.ledger.record_deposit(account, token, amount)
                self._pull(token, account, amount)
            event = self._emit(Deposit, account=account, token=token, amount=amount)
        self._notify()
        return event

    def withdraw(self, account: Account, token: Token, amount: int) -> Withdraw:
        """
        Release deposited collateral back to account.

        The health factor is evaluated on the post-withdrawal state.

        Raises:
            InvalidAmount, TokenNotAllowed, InsufficientFunds,
            InsolventPosition, OracleUnavailable, TransferFailed
        """
        with self._operation("withdraw", account, token, amount):
            self._check_request(token, amount)
            with self.ledger.atomic():
                self.ledger.record_withdrawal(account, token, amount)
                self._require_solvent(account)
                self._push(token, account, amount)
            event = self._emit(Withdraw, account=account, token=token, amount=amount)
        self._notify()
        return event

    def borrow(self, account: Account, token: Token, amount: int) -> Borrow:
        """
        Lend amount of token out of custody to account.

        Liquidity is custody's own balance of the token. The health factor is
        evaluated on the post-borrow state.

        Raises:
            InvalidAmount, TokenNotAllowed, InsufficientLiquidity,
            InsolventPosition, OracleUnavailable, TransferFailed
        """
        with self._operation("borrow", account, token, amount):
            self._check_request(token, amount)
            available = self._custody_balance(token)
            if available < amount:
                raise InsufficientLiquidity(
                    f"{token}: borrow {amount} > available {available}"
                )
            with self.ledger.atomic():
                self.ledger.record_borrow(account, token, amount)
                self._require_solvent(account)
                self._push(token, account, amount)
            event = self._emit(Borrow, account=account, token=token, amount=amount)
        self._notify()
        return event

    def repay(self, account: Account, token: Token, amount: int) -> Repay:
        """
        Pull amount of token from account into custody and reduce its debt.

        No health check: repaying can only improve solvency.

        Raises:
            InvalidAmount, TokenNotAllowed, InsufficientDebt, TransferFailed
        """
        with self._operation("repay", account, token, amount):
            self._check_request(token, amount)
            with self.ledger.atomic():
                self.ledger.record_repay(account, token, amount)
                self._pull(token, account, amount)
            event = self._emit(Repay, account=account, token=token, amount=amount)
        self._notify()
        return event

    def _check_request(self, token: Token, amount: int) -> None:
        validate_amount(amount)
        if not self.registry.is_allowed(token):
            raise TokenNotAllowed(f"Token {token} not allowed")

    def _require_solvent(self, account: Account) -> None:
        hf = self.risk.health_factor(account)
        if hf < self.risk.min_health_factor:
            raise InsolventPosition(
                f"{account}: health factor {to_decimal(hf)} < {to_decimal(self.risk.min_health_factor)}"
            )

    def _pull(self, token: Token, account: Account, amount: int) -> None:
        try:
            with self._collaborator_call():
                ok = self.transfers.transfer_from(token, account, self.custody_account, amount)
        except LendingError:
            raise
        except Exception as e:
            raise TransferFailed(f"transfer_from {token} {account} -> custody raised: {e}") from e
        if not ok:
            raise TransferFailed(f"transfer_from {token} {account} -> custody of {amount} failed")

    def _push(self, token: Token, account: Account, amount: int) -> None:
        try:
            with self._collaborator_call():
                ok = self.transfers.transfer(token, self.custody_account, account, amount)
        except LendingError:
            raise
        except Exception as e:
            raise TransferFailed(f"transfer {token} custody -> {account} raised: {e}") from e
        if not ok:
            raise TransferFailed(f"transfer {token} custody -> {account} of {amount} failed")

    def _custody_balance(self, token: Token) -> int:
        try:
            with self._collaborator_call():
                return self.transfers.balance_of(token, self.custody_account)
        except LendingError:
            raise
        except Exception as e:
            raise TransferFailed(f"balance_of {token} custody raised: {e}") from e

    # ========================================================================
    # READ OPERATIONS
    # ========================================================================

    def get_value_in_unit_of_account(self, token: Token, amount: int) -> int:
        with self._guard("get_value_in_unit_of_account"):
            return self.valuation.value_in_unit_of_account(token, amount)

    def get_amount_from_unit_of_account(self, token: Token, unit_amount: int) -> int:
        with self._guard("get_amount_from_unit_of_account"):
            return self.valuation.amount_from_unit_of_account(token, unit_amount)

    def get_account_collateral_value(self, account: Account) -> int:
        with self._guard("get_account_collateral_value"):
            return self.risk.collateral_value(account)

    def get_account_borrowed_value(self, account: Account) -> int:
        with self._guard("get_account_borrowed_value"):
            return self.risk.borrowed_value(account)

    def get_account_summary(self, account: Account) -> AccountSummary:
        """(collateral value, borrowed value) for an account."""
        with self._guard("get_account_summary"):
            return self.risk.account_summary(account)

    def get_health_factor(self, account: Account) -> int:
        with self._guard("get_health_factor"):
            return self.risk.health_factor(account)

    def assess_account(self, account: Account) -> RiskAssessment:
        with self._guard("assess_account"):
            return self.risk.assess(account)

    def get_deposited(self, account: Account, token: Token) -> int:
        with self._guard("get_deposited"):
            return self.ledger.get_deposited(account, token)

    def get_borrowed(self, account: Account, token: Token) -> int:
        with self._guard("get_borrowed"):
            return self.ledger.get_borrowed(account, token)

    def get_account_entries(self, account: Account) -> Dict[Token, LedgerEntry]:
        with self._guard("get_account_entries"):
            return self.ledger.get_account_entries(account)

    def get_allowed_tokens(self) -> List[Token]:
        with self._guard("get_allowed_tokens"):
            return list(self.registry.allowed_tokens())

    def get_price_feed(self, token: Token) -> FeedId:
        with self._guard("get_price_feed"):
            return self.registry.get_price_feed(token)

    def is_allowed(self, token: Token) -> bool:
        with self._guard("is_allowed"):
            return self.registry.is_allowed(token)

    # ========================================================================
    # RECONCILIATION
    # ========================================================================

    def verify_reserves(self) -> Dict[str, Any]:
        """
        Check that custody covers the ledger for every allowed token.

        Custody receives every deposit and repayment and pays out every
        withdrawal and borrow, on top of whatever liquidity was seeded
        directly. So for each token:

            custody_balance >= total_deposited - total_borrowed

        Returns:
            Dict with keys:
            - 'valid': bool - True if every token is covered
            - 'reserves': Dict[token, Dict] - custody, deposited, borrowed per token
            - 'discrepancies': List[Dict] - tokens whose custody falls short
        """
        with self._guard("verify_reserves"):
            reserves: Dict[str, Dict[str, int]] = {}
            discrepancies: List[Dict[str, Any]] = []

            for token in self.registry.allowed_tokens():
                custody = self._custody_balance(token)
                deposited = self.ledger.total_deposited(token)
                borrowed = self.ledger.total_borrowed(token)
                reserves[token] = {
                    'custody': custody,
                    'deposited': deposited,
                    'borrowed': borrowed,
                }
                required = deposited - borrowed
                if custody < required:
                    discrepancies.append({
                        'token': token,
                        'custody': custody,
                        'required': required,
                        'shortfall': required - custody,
                    })

            return {
                'valid': len(discrepancies) == 0,
                'reserves': reserves,
                'discrepancies': discrepancies,
            }

    def __repr__(self):
        return (
            f"LendingPool({len(self.registry)} tokens, "
            f"{len(self.ledger.list_accounts())} accounts, {len(self.event_log)} events)"
        )
