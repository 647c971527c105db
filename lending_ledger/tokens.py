"""
tokens.py - Token transfer collaborator

The pool never holds token balances itself. It asks a TokenTransfer
implementation to move tokens between accounts and to report balances, the
same way an on-chain pool calls transferFrom/transfer/balanceOf on each token
contract.

Classes:
- TokenTransfer: Protocol the pool consumes
- InMemoryTokenBank: Reference implementation with balances and allowances
"""

from __future__ import annotations
from collections import defaultdict
import logging
from typing import Dict, Protocol, Tuple, runtime_checkable

from .core import Account, Token

logger = logging.getLogger(__name__)


@runtime_checkable
class TokenTransfer(Protocol):
    """
    Protocol for moving fungible tokens.

    transfer_from() and transfer() return False to report failure; they may
    also raise. Either way the pool aborts the operation.
    """

    def transfer_from(self, token: Token, owner: Account, recipient: Account, amount: int) -> bool:
        """Move amount of token from owner to recipient using the recipient's allowance."""
        ...

    def transfer(self, token: Token, sender: Account, recipient: Account, amount: int) -> bool:
        """Move amount of token out of sender's own balance."""
        ...

    def balance_of(self, token: Token, holder: Account) -> int:
        """Return holder's balance of token."""
        ...


class InMemoryTokenBank:
    """
    In-memory balances and allowances for any number of tokens.

    Behaves like a set of ERC-20 contracts: transfer_from() needs an allowance
    granted by the owner to the spender (the recipient here, which is always
    the custody account when called by the pool). Insufficient balance or
    allowance returns False rather than raising.

    Example:
        bank = InMemoryTokenBank()
        bank.mint("WETH", "alice", 10 * SCALE)
        bank.approve("WETH", "alice", "lending_pool", 10 * SCALE)
    """

    def __init__(self):
        self.balances: Dict[Token, Dict[Account, int]] = defaultdict(lambda: defaultdict(int))
        self.allowances: Dict[Tuple[Token, Account, Account], int] = defaultdict(int)

    def mint(self, token: Token, holder: Account, amount: int) -> None:
        """Create new tokens in holder's balance."""
        if amount < 0:
            raise ValueError(f"cannot mint a negative amount: {amount}")
        self.balances[token][holder] += amount

    def approve(self, token: Token, owner: Account, spender: Account, amount: int) -> None:
        """Set spender's allowance over owner's balance (overwrites)."""
        if amount < 0:
            raise ValueError(f"allowance cannot be negative: {amount}")
        self.allowances[(token, owner, spender)] = amount

    def allowance(self, token: Token, owner: Account, spender: Account) -> int:
        return self.allowances.get((token, owner, spender), 0)

    def balance_of(self, token: Token, holder: Account) -> int:
        return self.balances[token].get(holder, 0)

    def transfer(self, token: Token, sender: Account, recipient: Account, amount: int) -> bool:
        if amount < 0 or self.balance_of(token, sender) < amount:
            logger.debug("transfer %s %s -> %s of %d refused", token, sender, recipient, amount)
            return False
        self._move(token, sender, recipient, amount)
        return True

    def transfer_from(self, token: Token, owner: Account, recipient: Account, amount: int) -> bool:
        if amount < 0 or self.balance_of(token, owner) < amount:
            logger.debug("transfer_from %s %s -> %s of %d refused: balance", token, owner, recipient, amount)
            return False
        if self.allowance(token, owner, recipient) < amount:
            logger.debug("transfer_from %s %s -> %s of %d refused: allowance", token, owner, recipient, amount)
            return False
        self.allowances[(token, owner, recipient)] -= amount
        self._move(token, owner, recipient, amount)
        return True

    def _move(self, token: Token, source: Account, dest: Account, amount: int) -> None:
        self.balances[token][source] -= amount
        self.balances[token][dest] += amount

    def __repr__(self):
        return f"InMemoryTokenBank({len(self.balances)} tokens)"
