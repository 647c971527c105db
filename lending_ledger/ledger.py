"""
ledger.py - Per-account, per-token deposit and borrow balances

The Ledger is the source of truth for every value computation. It is pure
bookkeeping: it never moves tokens and never consults prices.

Key responsibilities:
    - Implements the LedgerView protocol for read-only access
    - Records deposits, withdrawals, borrows and repayments with explicit
      underflow preconditions (InsufficientFunds / InsufficientDebt)
    - Provides atomic() blocks: every entry touched inside a block is
      journaled and restored if the block raises
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import replace
from typing import Dict, Iterator, Optional, Set

from .core import (
    # Types
    Account, EntryKey, LedgerEntry, Token,
    # Exceptions
    InsufficientDebt, InsufficientFunds,
    # Arithmetic
    checked_add, validate_amount,
)


class Ledger:
    """
    Deposit and borrow balances keyed by (account, token).

    Entries are immutable LedgerEntry values; every mutation replaces the entry.
    Empty entries are dropped so iteration only sees live positions.

    Preconditions that belong to the caller (amount > 0, token allowed) are
    re-checked for amounts only; token admission is the pool's concern.

    Thread Safety:
        Not thread-safe. LendingPool serializes all access.
    """

    def __init__(self):
        self._entries: Dict[EntryKey, LedgerEntry] = {}
        # Prior values of entries touched inside the current atomic() block.
        # None outside a block.
        self._journal: Optional[Dict[EntryKey, Optional[LedgerEntry]]] = None

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    def get_entry(self, account: Account, token: Token) -> LedgerEntry:
        """Return the entry for (account, token); an empty entry if none exists."""
        return self._entries.get((account, token), LedgerEntry())

    def get_deposited(self, account: Account, token: Token) -> int:
        return self.get_entry(account, token).deposited

    def get_borrowed(self, account: Account, token: Token) -> int:
        return self.get_entry(account, token).borrowed

    def get_account_entries(self, account: Account) -> Dict[Token, LedgerEntry]:
        """Return all non-empty entries held by an account, keyed by token."""
        return {
            token: entry
            for (acct, token), entry in self._entries.items()
            if acct == account
        }

    def list_accounts(self) -> Set[Account]:
        """Accounts with at least one non-empty entry."""
        return {account for account, _ in self._entries}

    def total_deposited(self, token: Token) -> int:
        """Sum of deposited quantities of a token across all accounts."""
        return sum(
            entry.deposited
            for (_, tok), entry in self._entries.items()
            if tok == token
        )

    def total_borrowed(self, token: Token) -> int:
        """Sum of borrowed quantities of a token across all accounts."""
        return sum(
            entry.borrowed
            for (_, tok), entry in self._entries.items()
            if tok == token
        )

    def __len__(self) -> int:
        return len(self._entries)

    # ========================================================================
    # BOOKKEEPING (Mutating)
    # ========================================================================

    def record_deposit(self, account: Account, token: Token, amount: int) -> LedgerEntry:
        """
        Add amount to the deposited balance.

        Returns:
            The new entry

        Raises:
            InvalidAmount: If amount is not a positive integer
            ArithmeticOverflow: If the balance would exceed uint256
        """
        validate_amount(amount)
        entry = self.get_entry(account, token)
        return self._store(account, token, replace(entry, deposited=checked_add(entry.deposited, amount)))

    def record_withdrawal(self, account: Account, token: Token, amount: int) -> LedgerEntry:
        """
        Subtract amount from the deposited balance.

        Raises:
            InvalidAmount: If amount is not a positive integer
            InsufficientFunds: If amount exceeds the deposited balance
        """
        validate_amount(amount)
        entry = self.get_entry(account, token)
        if entry.deposited < amount:
            raise InsufficientFunds(
                f"{account} {token}: withdraw {amount} > deposited {entry.deposited}"
            )
        return self._store(account, token, replace(entry, deposited=entry.deposited - amount))

    def record_borrow(self, account: Account, token: Token, amount: int) -> LedgerEntry:
        """
        Add amount to the borrowed balance.

        Raises:
            InvalidAmount: If amount is not a positive integer
            ArithmeticOverflow: If the balance would exceed uint256
        """
        validate_amount(amount)
        entry = self.get_entry(account, token)
        return self._store(account, token, replace(entry, borrowed=checked_add(entry.borrowed, amount)))

    def record_repay(self, account: Account, token: Token, amount: int) -> LedgerEntry:
        """
        Subtract amount from the borrowed balance.

        Raises:
            InvalidAmount: If amount is not a positive integer
            InsufficientDebt: If amount exceeds the borrowed balance
        """
        validate_amount(amount)
        entry = self.get_entry(account, token)
        if entry.borrowed < amount:
            raise InsufficientDebt(
                f"{account} {token}: repay {amount} > borrowed {entry.borrowed}"
            )
        return self._store(account, token, replace(entry, borrowed=entry.borrowed - amount))

    def _store(self, account: Account, token: Token, entry: LedgerEntry) -> LedgerEntry:
        key = (account, token)
        if self._journal is not None and key not in self._journal:
            self._journal[key] = self._entries.get(key)
        if entry.is_empty():
            self._entries.pop(key, None)
        else:
            self._entries[key] = entry
        return entry

    # ========================================================================
    # ATOMICITY
    # ========================================================================

    @contextmanager
    def atomic(self) -> Iterator["Ledger"]:
        """
        Run a block of mutations all-or-nothing.

        Every entry touched inside the block has its prior value journaled on
        first write. If the block raises, all journaled entries are restored
        and the exception propagates. Blocks do not nest.

        Example:
            with ledger.atomic():
                ledger.record_withdrawal("alice", "WETH", 5)
                check_solvency("alice")  # raising here undoes the withdrawal
        """
        if self._journal is not None:
            raise RuntimeError("atomic() blocks cannot be nested")
        self._journal = {}
        try:
            yield self
        except BaseException:
            self._rollback()
            raise
        finally:
            self._journal = None

    def _rollback(self) -> None:
        journal = self._journal or {}
        for key, previous in journal.items():
            if previous is None:
                self._entries.pop(key, None)
            else:
                self._entries[key] = previous

    def __repr__(self):
        return f"Ledger({len(self.list_accounts())} accounts, {len(self._entries)} entries)"
