"""
oracle.py - Price oracle adapters consumed by the valuation engine

Classes:
- PriceOracle: Protocol defining the oracle interface
- StaticPriceOracle: One fixed quote per feed, updated explicitly
- TimeSeriesPriceOracle: Historical quotes with point-in-time lookup

All prices are integers scaled by 1e18 and denominated in the unit of account.
An oracle returns None when it has no quote for a feed; validation of the quote
(positive, fresh) is the valuation engine's job, not the oracle's.
"""

from __future__ import annotations
from bisect import bisect_right
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from .core import FeedId, PriceQuote


@runtime_checkable
class PriceOracle(Protocol):
    """
    Protocol for price oracles.

    latest_price() returns the latest quote for a feed, or None if the feed
    has never reported. Implementations may raise; the valuation engine
    treats any exception as the oracle being unavailable.
    """

    def latest_price(self, feed_id: FeedId) -> Optional[PriceQuote]:
        ...


class StaticPriceOracle:
    """
    Oracle with one current quote per feed.

    Quotes change only through set_price()/set_prices(), which makes it the
    natural oracle for tests and simulations.
    """

    def __init__(
        self,
        prices: Optional[Dict[FeedId, int]] = None,
        updated_at: Optional[datetime] = None,
    ):
        """
        Initialize with a static price map.

        Args:
            prices: Mapping of feed id to price (scaled by 1e18)
            updated_at: Timestamp stamped on the initial quotes (default: epoch)
        """
        stamp = updated_at or datetime(1970, 1, 1)
        self.quotes: Dict[FeedId, PriceQuote] = {
            feed: PriceQuote(price, stamp) for feed, price in (prices or {}).items()
        }

    def latest_price(self, feed_id: FeedId) -> Optional[PriceQuote]:
        return self.quotes.get(feed_id)

    def set_price(self, feed_id: FeedId, price: int, updated_at: Optional[datetime] = None) -> None:
        """Replace the quote for a feed."""
        previous = self.quotes.get(feed_id)
        if updated_at is None:
            updated_at = previous.updated_at if previous else datetime(1970, 1, 1)
        self.quotes[feed_id] = PriceQuote(price, updated_at)

    def set_prices(self, prices: Dict[FeedId, int], updated_at: Optional[datetime] = None) -> None:
        """Replace several quotes at once."""
        for feed_id, price in prices.items():
            self.set_price(feed_id, price, updated_at)

    def remove(self, feed_id: FeedId) -> None:
        """Drop a feed so that it reports no quote."""
        self.quotes.pop(feed_id, None)

    def __repr__(self):
        return f"StaticPriceOracle({len(self.quotes)} feeds)"


class TimeSeriesPriceOracle:
    """
    Oracle backed by historical observations.

    latest_price() returns the most recent observation at or before the time
    reported by the clock callable. Pass the pool's clock so that quotes follow
    the pool's logical time:

        oracle = TimeSeriesPriceOracle(clock=lambda: pool.current_time)
    """

    def __init__(
        self,
        price_paths: Optional[Dict[FeedId, List[Tuple[datetime, int]]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the oracle.

        Args:
            price_paths: Optional dict mapping feed ids to (timestamp, price) lists.
            clock: Returns "now". Defaults to datetime.now.
        """
        self.clock = clock or datetime.now
        self.price_history: Dict[FeedId, List[Tuple[datetime, int]]] = {}

        if price_paths:
            for feed_id, path in price_paths.items():
                if not path:
                    continue
                self.price_history[feed_id] = sorted(path, key=lambda x: x[0])

    def add_price(self, feed_id: FeedId, timestamp: datetime, price: int) -> None:
        """Add an observation for a feed."""
        history = self.price_history.setdefault(feed_id, [])
        history.append((timestamp, price))
        history.sort(key=lambda x: x[0])

    def latest_price(self, feed_id: FeedId) -> Optional[PriceQuote]:
        """
        Return the latest observation at or before clock().

        Uses binary search for O(log n) lookup.
        """
        history = self.price_history.get(feed_id)
        if not history:
            return None

        timestamps = [ts for ts, _ in history]
        idx = bisect_right(timestamps, self.clock())
        if idx == 0:
            return None

        timestamp, price = history[idx - 1]
        return PriceQuote(price, timestamp)

    def __repr__(self):
        total_observations = sum(len(history) for history in self.price_history.values())
        return f"TimeSeriesPriceOracle({len(self.price_history)} feeds, {total_observations} observations)"
