"""
Centralized defaults for the timed rebalancing system.

This module defines the thresholds and tuning values used throughout the
rebalancing pipeline. Every value can be overridden through the environment
(see settings.py); these are the defaults when nothing is set.

Reference: Timed Rebalancing Framework (Configuration)
"""

# ============================================================================
# CANDIDATE BUILDER
# ============================================================================
NOISE_THRESHOLD = 10.0
"""Minimum absolute currency amount for a gap to become an action"""

# ============================================================================
# TIMING FILTER
# ============================================================================
SELL_PERCENTILE_THRESHOLD = 80.0
"""1Y percentile at or above this is considered expensive (sell-side)"""

BUY_PERCENTILE_THRESHOLD = 20.0
"""1Y percentile at or below this is considered cheap (buy-side)"""

DEFAULT_MAX_ACTIONS = 10
"""Actions kept per side when the request does not specify max_actions"""

MAX_TICKERS_FOR_TIMING = 15
"""Tickers per request we fetch history for (rate-limit protection)"""

TIMING_MAX_WORKERS = 4
"""Concurrent history fetches against the price-history provider"""

HISTORY_LOOKBACK_DAYS = 365
"""Trailing window of daily closes used for the timing percentile"""

# ============================================================================
# YAHOO CONNECTION MANAGER
# ============================================================================
YAHOO_REQUEST_SPACING_SECONDS = 0.1
"""Minimum spacing between two outbound Yahoo requests"""

YAHOO_WARMUP_SYMBOL = "SPY"
"""Liquid symbol used for the one-time session warm-up"""

# ============================================================================
# ACTION SCORER
# ============================================================================
CONFIDENCE_NO_TIMING = 0.20
"""Confidence for actions without a timing sample (low-information flag)"""

CONFIDENCE_FLOOR = 0.30
"""Lowest confidence for an action with a timing sample"""

CONFIDENCE_CEILING = 0.95
"""Highest confidence the deterministic scorer will assign"""

CONFIDENCE_DEGENERATE_THRESHOLD = 0.80
"""Confidence when a threshold leaves no room to interpolate (0 or 100)"""

# ============================================================================
# ADVISOR
# ============================================================================
ADVISOR_MODEL = "claude-haiku-4-5-20251001"
"""Anthropic model used by the rebalancing advisor"""

ADVISOR_TIMEOUT_SECONDS = 30.0
"""Hard bound on one advisor call, enforced by the overlay"""

ADVISOR_TEMPERATURE = 0.3
"""Sampling temperature for the advisor"""

ADVISOR_MAX_TOKENS = 2048
"""Output token budget for one advisor reply"""

ADVISOR_DEFAULT_CONFIDENCE = 0.5
"""Confidence assigned to advisor actions that omit one"""

ADVISOR_NET_CASHFLOW_TARGET = 0.0
"""Net cash flow target sent to the advisor (0 = pure rebalancing)"""

# ============================================================================
# ENVIRONMENT VARIABLE NAMES
# ============================================================================
ENV_PREFIX = "REBALANCING_"
"""Prefix for every rebalancing environment variable"""

ENV_ANTHROPIC_API_KEY = "ANTHROPIC_API_KEY"
"""Credential for the Claude advisor"""
