"""
test_ledger_bookkeeping.py - Unit tests for the Ledger class

Tests:
- Deposit/withdraw/borrow/repay bookkeeping
- Underflow preconditions (InsufficientFunds, InsufficientDebt)
- Overflow on deposit and borrow
- atomic() rollback
- Read API and totals
"""

import pytest

from lending_ledger import (
    Ledger, LedgerEntry, LedgerView, MAX_UINT256,
    ArithmeticOverflow, InsufficientDebt, InsufficientFunds, InvalidAmount,
)


class TestBookkeeping:

    def test_new_ledger_is_empty(self):
        ledger = Ledger()
        assert len(ledger) == 0
        assert ledger.get_entry("alice", "WETH") == LedgerEntry()
        assert ledger.get_deposited("alice", "WETH") == 0

    def test_implements_ledger_view(self):
        assert isinstance(Ledger(), LedgerView)

    def test_record_deposit(self):
        ledger = Ledger()
        ledger.record_deposit("alice", "WETH", 10)
        ledger.record_deposit("alice", "WETH", 5)
        assert ledger.get_deposited("alice", "WETH") == 15
        assert ledger.get_borrowed("alice", "WETH") == 0

    def test_record_withdrawal(self):
        ledger = Ledger()
        ledger.record_deposit("alice", "WETH", 10)
        entry = ledger.record_withdrawal("alice", "WETH", 4)
        assert entry.deposited == 6

    def test_withdraw_more_than_deposited(self):
        ledger = Ledger()
        ledger.record_deposit("alice", "WETH", 10)
        with pytest.raises(InsufficientFunds):
            ledger.record_withdrawal("alice", "WETH", 11)
        assert ledger.get_deposited("alice", "WETH") == 10

    def test_record_borrow_and_repay(self):
        ledger = Ledger()
        ledger.record_borrow("alice", "DAI", 100)
        ledger.record_repay("alice", "DAI", 40)
        assert ledger.get_borrowed("alice", "DAI") == 60

    def test_repay_more_than_borrowed(self):
        ledger = Ledger()
        ledger.record_borrow("alice", "DAI", 100)
        with pytest.raises(InsufficientDebt):
            ledger.record_repay("alice", "DAI", 101)
        assert ledger.get_borrowed("alice", "DAI") == 100

    def test_repay_without_debt(self):
        ledger = Ledger()
        with pytest.raises(InsufficientDebt):
            ledger.record_repay("alice", "DAI", 1)

    def test_deposit_overflow(self):
        ledger = Ledger()
        ledger.record_deposit("alice", "WETH", MAX_UINT256)
        with pytest.raises(ArithmeticOverflow):
            ledger.record_deposit("alice", "WETH", 1)
        assert ledger.get_deposited("alice", "WETH") == MAX_UINT256

    def test_borrow_overflow(self):
        ledger = Ledger()
        ledger.record_borrow("alice", "DAI", MAX_UINT256)
        with pytest.raises(ArithmeticOverflow):
            ledger.record_borrow("alice", "DAI", 1)

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_amounts_rejected(self, amount):
        ledger = Ledger()
        with pytest.raises(InvalidAmount):
            ledger.record_deposit("alice", "WETH", amount)

    def test_deposit_and_borrow_are_independent(self):
        ledger = Ledger()
        ledger.record_deposit("alice", "WETH", 10)
        ledger.record_borrow("alice", "WETH", 3)
        assert ledger.get_entry("alice", "WETH") == LedgerEntry(deposited=10, borrowed=3)

    def test_emptied_entry_is_dropped(self):
        ledger = Ledger()
        ledger.record_deposit("alice", "WETH", 10)
        ledger.record_withdrawal("alice", "WETH", 10)
        assert len(ledger) == 0
        assert ledger.list_accounts() == set()


class TestReadApi:

    def test_account_entries(self):
        ledger = Ledger()
        ledger.record_deposit("alice", "WETH", 10)
        ledger.record_borrow("alice", "DAI", 7)
        ledger.record_deposit("bob", "WETH", 1)
        assert ledger.get_account_entries("alice") == {
            "WETH": LedgerEntry(deposited=10),
            "DAI": LedgerEntry(borrowed=7),
        }
        assert ledger.list_accounts() == {"alice", "bob"}

    def test_totals(self):
        ledger = Ledger()
        ledger.record_deposit("alice", "WETH", 10)
        ledger.record_deposit("bob", "WETH", 5)
        ledger.record_borrow("bob", "WETH", 2)
        assert ledger.total_deposited("WETH") == 15
        assert ledger.total_borrowed("WETH") == 2
        assert ledger.total_deposited("DAI") == 0

    def test_totals_with_mixed_account_types(self):
        ledger = Ledger()
        ledger.record_deposit(7, "WETH", 3)
        ledger.record_deposit("alice", "WETH", 4)
        ledger.record_borrow(7, "DAI", 1)
        ledger.record_borrow("alice", "DAI", 2)
        assert ledger.total_deposited("WETH") == 7
        assert ledger.total_borrowed("DAI") == 3


class TestAtomic:

    def test_commit_on_success(self):
        ledger = Ledger()
        with ledger.atomic():
            ledger.record_deposit("alice", "WETH", 10)
        assert ledger.get_deposited("alice", "WETH") == 10

    def test_rollback_on_error(self):
        ledger = Ledger()
        ledger.record_deposit("alice", "WETH", 10)
        with pytest.raises(RuntimeError, match="boom"):
            with ledger.atomic():
                ledger.record_withdrawal("alice", "WETH", 4)
                ledger.record_deposit("alice", "DAI", 3)
                ledger.record_borrow("bob", "DAI", 1)
                raise RuntimeError("boom")
        assert ledger.get_entry("alice", "WETH") == LedgerEntry(deposited=10)
        assert ledger.get_entry("alice", "DAI") == LedgerEntry()
        assert ledger.list_accounts() == {"alice"}

    def test_rollback_restores_first_value_after_repeated_writes(self):
        ledger = Ledger()
        ledger.record_deposit("alice", "WETH", 10)
        with pytest.raises(InsufficientFunds):
            with ledger.atomic():
                ledger.record_withdrawal("alice", "WETH", 4)
                ledger.record_withdrawal("alice", "WETH", 4)
                ledger.record_withdrawal("alice", "WETH", 4)
        assert ledger.get_deposited("alice", "WETH") == 10

    def test_rollback_restores_dropped_entry(self):
        ledger = Ledger()
        ledger.record_deposit("alice", "WETH", 10)
        with pytest.raises(ValueError):
            with ledger.atomic():
                ledger.record_withdrawal("alice", "WETH", 10)
                raise ValueError("abort")
        assert ledger.get_deposited("alice", "WETH") == 10

    def test_nested_atomic_rejected(self):
        ledger = Ledger()
        with ledger.atomic():
            with pytest.raises(RuntimeError, match="nested"):
                with ledger.atomic():
                    pass

    def test_ledger_usable_after_rollback(self):
        ledger = Ledger()
        with pytest.raises(KeyError):
            with ledger.atomic():
                ledger.record_deposit("alice", "WETH", 1)
                raise KeyError("x")
        with ledger.atomic():
            ledger.record_deposit("alice", "WETH", 2)
        assert ledger.get_deposited("alice", "WETH") == 2
