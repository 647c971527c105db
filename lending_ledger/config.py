"""Configuration loader: reads a YAML file, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

from .core import (
    CUSTODY_ACCOUNT,
    HEALTH_FACTOR_SENTINEL,
    LIQUIDATION_PRECISION,
    LIQUIDATION_THRESHOLD_PERCENT,
    MAX_PRICE_AGE_SECONDS,
    MIN_HEALTH_FACTOR,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RiskConfig:
    liquidation_threshold_percent: int = LIQUIDATION_THRESHOLD_PERCENT
    min_health_factor: int = MIN_HEALTH_FACTOR
    healthy_sentinel: int = HEALTH_FACTOR_SENTINEL


@dataclass(frozen=True)
class OracleConfig:
    # None disables the staleness check.
    max_price_age_seconds: Optional[int] = MAX_PRICE_AGE_SECONDS

    @property
    def max_price_age(self) -> Optional[timedelta]:
        if self.max_price_age_seconds is None:
            return None
        return timedelta(seconds=self.max_price_age_seconds)


@dataclass(frozen=True)
class LendingConfig:
    risk: RiskConfig = field(default_factory=RiskConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)
    custody_account: str = CUSTODY_ACCOUNT
    admins: Tuple[str, ...] = ()
    # token -> price feed id, registered at startup in this order
    tokens: Dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _to_int(value: Any, name: str) -> int:
    """Accept ints and integral numbers written as floats or strings (e.g. "1e18")."""
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    try:
        number = Decimal(str(value).strip().replace("_", ""))
    except InvalidOperation:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None
    if not number.is_finite() or number != number.to_integral_value():
        raise ValueError(f"{name} must be an integer, got {value!r}")
    return int(number)


def _build_risk(raw: Dict[str, Any]) -> RiskConfig:
    return RiskConfig(
        liquidation_threshold_percent=_to_int(
            raw.get("liquidation_threshold_percent", LIQUIDATION_THRESHOLD_PERCENT),
            "risk.liquidation_threshold_percent",
        ),
        min_health_factor=_to_int(
            raw.get("min_health_factor", MIN_HEALTH_FACTOR), "risk.min_health_factor"
        ),
        healthy_sentinel=_to_int(
            raw.get("healthy_sentinel", HEALTH_FACTOR_SENTINEL), "risk.healthy_sentinel"
        ),
    )


def _build_oracle(raw: Dict[str, Any]) -> OracleConfig:
    age = raw.get("max_price_age_seconds", OracleConfig.max_price_age_seconds)
    if age is None or age == "":
        return OracleConfig(max_price_age_seconds=None)
    return OracleConfig(max_price_age_seconds=_to_int(age, "oracle.max_price_age_seconds"))


def _build_tokens(raw: Dict[str, Any]) -> Dict[str, str]:
    return {str(token): "" if feed is None else str(feed) for token, feed in raw.items()}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> LendingConfig:
    """Load and validate pool configuration from YAML + .env.

    Args:
        config_path: Path to the YAML file. Defaults to ``lending.yaml`` in the
            current working directory.
    """
    load_dotenv()

    if config_path is None:
        config_path = Path.cwd() / "lending.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = LendingConfig(
        risk=_build_risk(raw.get("risk") or {}),
        oracle=_build_oracle(raw.get("oracle") or {}),
        custody_account=raw.get("custody_account") or CUSTODY_ACCOUNT,
        admins=tuple(a for a in (raw.get("admins") or []) if a),
        tokens=_build_tokens(raw.get("tokens") or {}),
    )

    validate_config(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def validate_config(cfg: LendingConfig) -> None:
    """Raise on invalid configuration."""
    threshold = cfg.risk.liquidation_threshold_percent
    if not 0 < threshold <= LIQUIDATION_PRECISION:
        raise ValueError(
            f"liquidation_threshold_percent must be in (0, {LIQUIDATION_PRECISION}], got {threshold}"
        )
    if cfg.risk.min_health_factor <= 0:
        raise ValueError("min_health_factor must be positive")
    if cfg.risk.healthy_sentinel < cfg.risk.min_health_factor:
        raise ValueError("healthy_sentinel must be at least min_health_factor")
    if cfg.oracle.max_price_age_seconds is not None and cfg.oracle.max_price_age_seconds <= 0:
        raise ValueError("max_price_age_seconds must be positive (or null to disable)")
    if not cfg.custody_account:
        raise ValueError("custody_account cannot be empty")
    if not cfg.admins:
        raise ValueError("At least one admin must be configured")
    if cfg.custody_account in cfg.admins:
        raise ValueError("custody_account cannot be an admin")
    for token, feed in cfg.tokens.items():
        if not token or not feed:
            raise ValueError(f"Token '{token}' has no price feed")
