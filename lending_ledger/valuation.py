"""
valuation.py - Conversions between token amounts and the unit of account

Key Formulas:
    value  = amount * price // SCALE
    amount = value * SCALE // price

where price is the oracle's quote for one whole token, scaled by 1e18.
Both conversions floor. Products are bounded by uint256.

Every quote is validated before use:
    - the oracle must return a quote (None -> OracleUnavailable)
    - the price must be positive (<= 0 -> OracleUnavailable)
    - the quote must be no older than max_price_age and not dated after the
      current time (-> OracleUnavailable); both checks are off when
      max_price_age is None
"""

from __future__ import annotations
from datetime import datetime, timedelta
import logging
from typing import Callable, Optional

from .core import (
    SCALE, FeedId, PriceQuote, Token,
    DivisionByZero, LendingError, OracleUnavailable,
    mul_div, validate_amount,
)
from .oracle import PriceOracle
from .registry import TokenRegistry

logger = logging.getLogger(__name__)


class ValuationEngine:
    """
    Prices token amounts through the registry's feeds and an oracle.

    Args:
        registry: Source of token -> feed associations
        oracle: Price oracle collaborator
        clock: Returns the current (logical) time for staleness checks
        max_price_age: Oldest acceptable quote; None disables the check
    """

    def __init__(
        self,
        registry: TokenRegistry,
        oracle: PriceOracle,
        clock: Callable[[], datetime],
        max_price_age: Optional[timedelta] = None,
    ):
        self.registry = registry
        self.oracle = oracle
        self.clock = clock
        self.max_price_age = max_price_age

    def get_price(self, token: Token) -> int:
        """
        Return the validated price for a token.

        Raises:
            TokenNotAllowed: If the token has no feed
            OracleUnavailable: If the quote is missing, non-positive, stale or
                future-dated
        """
        return self._checked_price(token, OracleUnavailable)

    def _checked_price(self, token: Token, zero_error: type) -> int:
        feed = self.registry.get_price_feed(token)
        quote = self._fetch(feed)
        if quote is None:
            raise OracleUnavailable(f"No quote for {token} (feed {feed})")
        if quote.price == 0:
            raise zero_error(f"Zero price for {token} (feed {feed})")
        if quote.price < 0:
            raise OracleUnavailable(f"Non-positive price {quote.price} for {token} (feed {feed})")
        if self.max_price_age is not None:
            now = self.clock()
            if quote.updated_at > now:
                raise OracleUnavailable(
                    f"Quote for {token} (feed {feed}) is dated in the future: "
                    f"updated {quote.updated_at}, now {now}"
                )
            age = now - quote.updated_at
            if age > self.max_price_age:
                raise OracleUnavailable(
                    f"Stale quote for {token} (feed {feed}): updated {quote.updated_at}, age {age}"
                )
        return quote.price

    def _fetch(self, feed: FeedId) -> Optional[PriceQuote]:
        try:
            return self.oracle.latest_price(feed)
        except LendingError:
            raise
        except Exception as e:
            logger.warning("Oracle failed for feed %s: %s", feed, e)
            raise OracleUnavailable(f"Oracle failed for feed {feed}: {e}") from e

    def value_in_unit_of_account(self, token: Token, amount: int) -> int:
        """
        Value amount of token in the unit of account (1e18 scale).

        Raises:
            InvalidAmount: If amount is negative or not an integer
            TokenNotAllowed, OracleUnavailable: See get_price()
            ArithmeticOverflow: If amount * price exceeds uint256
        """
        validate_amount(amount, allow_zero=True)
        price = self._checked_price(token, OracleUnavailable)
        return mul_div(amount, price, SCALE)

    def amount_from_unit_of_account(self, token: Token, unit_amount: int) -> int:
        """
        Convert a unit-of-account value into a quantity of token.

        Raises:
            DivisionByZero: If the price resolves to zero
            InvalidAmount, TokenNotAllowed, OracleUnavailable, ArithmeticOverflow
        """
        validate_amount(unit_amount, allow_zero=True)
        price = self._checked_price(token, DivisionByZero)
        return mul_div(unit_amount, SCALE, price)
