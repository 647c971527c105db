"""
registry.py - Allowed tokens and their price feeds

The registry holds two pieces of state:
    - allowed tokens: append-only, duplicate-free, insertion ordered
    - feed map: token -> price feed id, overwritten on re-registration

A token is allowed iff it has a feed. Registration is an idempotent upsert.
The registry itself does not check who is calling; LendingPool gates
registration to its admin list.
"""

from __future__ import annotations
import logging
from typing import Dict, List, Tuple

from .core import FeedId, Token, TokenNotAllowed

logger = logging.getLogger(__name__)


class TokenRegistry:
    """Ordered set of allowed tokens plus the feed each one is priced by."""

    def __init__(self):
        self._allowed: List[Token] = []
        self._feeds: Dict[Token, FeedId] = {}

    def register_token(self, token: Token, price_feed: FeedId) -> bool:
        """
        Admit a token or re-point it to a new feed.

        Duplicate detection is a linear scan of the allowed list.

        Args:
            token: Token identifier
            price_feed: Feed id the oracle knows the token's price under

        Returns:
            True if the token was newly added, False if only its feed changed

        Raises:
            ValueError: If token or price_feed is empty
        """
        if not token or not token.strip():
            raise ValueError("token cannot be empty")
        if not price_feed or not price_feed.strip():
            raise ValueError("price feed cannot be empty")

        added = token not in self._allowed
        if added:
            self._allowed.append(token)

        previous = self._feeds.get(token)
        self._feeds[token] = price_feed
        if previous is not None and previous != price_feed:
            logger.debug("Re-pointed %s feed %s -> %s", token, previous, price_feed)
        return added

    def is_allowed(self, token: Token) -> bool:
        return self._feeds.get(token) is not None

    def get_price_feed(self, token: Token) -> FeedId:
        """
        Return the feed for a token.

        Raises:
            TokenNotAllowed: If the token has no feed
        """
        feed = self._feeds.get(token)
        if feed is None:
            raise TokenNotAllowed(f"Token {token} not allowed")
        return feed

    def allowed_tokens(self) -> Tuple[Token, ...]:
        """Allowed tokens in insertion order."""
        return tuple(self._allowed)

    def price_feeds(self) -> Dict[Token, FeedId]:
        return dict(self._feeds)

    def __len__(self) -> int:
        return len(self._allowed)

    def __contains__(self, token: object) -> bool:
        return token in self._feeds

    def __repr__(self):
        return f"TokenRegistry({len(self._allowed)} tokens)"
