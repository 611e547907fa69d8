"""
Runtime settings for the timed rebalancing system.

Settings are plain configuration, never user input. They are read from
REBALANCING_* environment variables (plus ANTHROPIC_API_KEY) and validated
once; per-request limits are derived from them via constraints().
"""

from __future__ import annotations

import logging
import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from timed_rebalancing.config import constants as C
from timed_rebalancing.exceptions import EnvConfigError
from timed_rebalancing.schemas.portfolio_input import RebalancingConstraints

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class RebalancingSettings(BaseModel):
    """Validated configuration for one process."""

    noise_threshold: float = Field(C.NOISE_THRESHOLD, ge=0)
    default_max_actions: int = Field(C.DEFAULT_MAX_ACTIONS, ge=1)
    sell_percentile_threshold: float = Field(C.SELL_PERCENTILE_THRESHOLD, ge=0, le=100)
    buy_percentile_threshold: float = Field(C.BUY_PERCENTILE_THRESHOLD, ge=0, le=100)
    max_tickers_for_timing: int = Field(C.MAX_TICKERS_FOR_TIMING, ge=0)
    timing_max_workers: int = Field(C.TIMING_MAX_WORKERS, ge=1)
    history_lookback_days: int = Field(C.HISTORY_LOOKBACK_DAYS, ge=1)

    advisor_enabled: bool = False
    advisor_api_key: Optional[str] = Field(None, repr=False)
    advisor_model: str = Field(C.ADVISOR_MODEL, min_length=1)
    advisor_timeout_seconds: float = Field(C.ADVISOR_TIMEOUT_SECONDS, gt=0)
    advisor_temperature: float = Field(C.ADVISOR_TEMPERATURE, ge=0, le=1)

    @model_validator(mode="after")
    def validate_threshold_order(self) -> "RebalancingSettings":
        """Buy (cheap) threshold must sit below the sell (expensive) threshold."""
        if self.buy_percentile_threshold >= self.sell_percentile_threshold:
            raise ValueError(
                f"buy_percentile_threshold ({self.buy_percentile_threshold}) must be "
                f"below sell_percentile_threshold ({self.sell_percentile_threshold})"
            )
        return self

    @property
    def advisor_available(self) -> bool:
        """Advisor runs only when explicitly enabled and credentials exist."""
        return self.advisor_enabled and bool(self.advisor_api_key and self.advisor_api_key.strip())

    def constraints(self, max_actions: int, cash_available: float) -> RebalancingConstraints:
        """Build the per-request constraint set."""
        return RebalancingConstraints(
            noise_threshold=self.noise_threshold,
            max_actions=max_actions,
            sell_percentile_threshold=self.sell_percentile_threshold,
            buy_percentile_threshold=self.buy_percentile_threshold,
            max_tickers_for_timing=self.max_tickers_for_timing,
            cash_available=cash_available,
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RebalancingSettings":
        """
        Read settings from the environment.

        Args:
            environ: Mapping to read from (defaults to os.environ).

        Returns:
            Validated RebalancingSettings.

        Raises:
            EnvConfigError: a variable is set but cannot be parsed or
                violates a constraint.
        """
        env = os.environ if environ is None else environ
        values: dict = {}

        for name, field_info in cls.model_fields.items():
            if name == "advisor_api_key":
                continue
            key = f"{C.ENV_PREFIX}{name.upper()}"
            raw = env.get(key)
            if raw is None:
                continue
            values[name] = _parse_env_value(key, raw, field_info.annotation)

        api_key = env.get(C.ENV_ANTHROPIC_API_KEY)
        if api_key:
            values["advisor_api_key"] = api_key

        try:
            settings = cls(**values)
        except PydanticValidationError as e:
            raise EnvConfigError(f"Invalid rebalancing configuration: {e}") from e

        if settings.advisor_enabled and not settings.advisor_available:
            logger.warning(
                f"[Config] {C.ENV_PREFIX}ADVISOR_ENABLED is set but "
                f"{C.ENV_ANTHROPIC_API_KEY} is missing; advisor stays disabled"
            )
        return settings


def _parse_env_value(key: str, raw: str, annotation) -> object:
    """Convert one raw environment string to the field's type."""
    text = raw.strip()
    if annotation is bool:
        lowered = text.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise EnvConfigError(f"{key}={raw!r} is not a boolean")
    if annotation is int:
        try:
            return int(text)
        except ValueError as e:
            raise EnvConfigError(f"{key}={raw!r} is not an integer") from e
    if annotation is float:
        try:
            return float(text)
        except ValueError as e:
            raise EnvConfigError(f"{key}={raw!r} is not a number") from e
    return text
