"""Logging configuration for embedders and tests."""
from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: int | str = "INFO") -> None:
    """Configure the root logger.

    Args:
        level: A logging level number (``logging.DEBUG``) or level name
            (DEBUG, INFO, WARNING, ERROR). Unknown names fall back to INFO.
    """
    if isinstance(level, int):
        numeric = level
    else:
        numeric = logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            numeric = logging.INFO

    logging.basicConfig(level=numeric, format=LOG_FORMAT, force=True)
    logging.getLogger().setLevel(numeric)

    # Token bank refusals are expected during normal rejections.
    logging.getLogger("lending_ledger.tokens").setLevel(max(numeric, logging.INFO))
