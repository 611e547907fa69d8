"""
Rebalancing Tool: Timing Filter
Timed Rebalancing Framework

Computes a trailing-year price percentile for the largest gaps and keeps
only candidates whose timing supports the action:
- sells: overweight AND expensive (percentile >= sell threshold)
- buys:  underweight AND cheap   (percentile <= buy threshold)

If filtering empties a side, that side falls back to its top gaps so a
missing timing dataset degrades to gap-only recommendations instead of
none. History fetches are bounded and run on a small thread pool; a
failed ticker only loses its timing sample.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Mapping, Optional, Sequence

from timed_rebalancing.exceptions import (
    ErrorSeverity,
    ProcessingError,
    wrap_exception_as_processing_error,
)
from timed_rebalancing.schemas.portfolio_input import PortfolioPosition
from timed_rebalancing.tools.candidate_builder import RawCandidate, order_by_gap
from timed_rebalancing.tools.market_data import PriceHistoryProvider

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------

@dataclass
class TimingData:
    """Timing samples and prices keyed case-insensitively by ticker."""

    percentiles: dict[str, float] = field(default_factory=dict)
    current_prices: dict[str, float] = field(default_factory=dict)
    errors: list[ProcessingError] = field(default_factory=list)

    def percentile_for(self, ticker: str) -> Optional[float]:
        return self.percentiles.get(ticker.upper())

    def price_for(self, ticker: str) -> Optional[float]:
        return self.current_prices.get(ticker.upper())

    def has_sample(self, ticker: str) -> bool:
        return ticker.upper() in self.percentiles


@dataclass
class TimingFilterResult:
    """Candidates retained per side, plus which side used the fallback."""

    sells: list[RawCandidate] = field(default_factory=list)
    buys: list[RawCandidate] = field(default_factory=list)
    sell_fallback_used: bool = False
    buy_fallback_used: bool = False


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def select_timing_tickers(candidates: Iterable[RawCandidate], max_tickers: int) -> list[str]:
    """Distinct tickers (case-insensitive) of the largest gaps, at most max_tickers."""
    selected: list[str] = []
    seen: set[str] = set()
    for c in order_by_gap(candidates):
        if len(selected) >= max_tickers:
            break
        key = c.ticker.upper()
        if key in seen:
            continue
        seen.add(key)
        selected.append(c.ticker)
    return selected


def compute_percentile(closes: Iterable[float], current_price: float) -> Optional[float]:
    """
    Percentage of daily closes at or below current_price, rounded to 2 decimals.

    Non-positive and NaN closes are ignored. Returns None when no usable
    close remains or the price is not positive.
    """
    if current_price is None or current_price <= 0:
        return None
    usable = [float(v) for v in closes if v is not None and float(v) > 0]
    if not usable:
        return None
    at_or_below = sum(1 for v in usable if v <= current_price)
    return round(at_or_below / len(usable) * 100.0, 2)


def resolve_current_price(
    ticker: str,
    current_prices: Mapping[str, float],
    position: Optional[PortfolioPosition],
) -> float:
    """Provider price when positive, else market value per share, else 0."""
    price = current_prices.get(ticker.upper())
    if price is not None and price > 0:
        return price
    if (
        position is not None
        and position.current_market_value is not None
        and position.current_market_value > 0
        and position.total_shares > 0
    ):
        return position.current_market_value / position.total_shares
    return 0.0


def timing_window(lookback_days: int, as_of: Optional[date] = None) -> tuple[date, date]:
    end = as_of or datetime.now(timezone.utc).date()
    return end - timedelta(days=lookback_days), end


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------

def _sample_one(
    ticker: str,
    provider: PriceHistoryProvider,
    current_price: float,
    start: date,
    end: date,
) -> tuple[Optional[float], Optional[ProcessingError]]:
    if current_price <= 0:
        return None, ProcessingError(
            ticker=ticker,
            error_type="NO_CURRENT_PRICE",
            message="No positive current price from provider or position",
            severity=ErrorSeverity.INFO,
        )
    try:
        closes = provider.get_daily_closes(ticker, start, end)
    except Exception as e:
        return None, wrap_exception_as_processing_error(e, ticker, "HISTORY_FETCH_ERROR")

    percentile = compute_percentile(closes, current_price)
    if percentile is None:
        return None, ProcessingError(
            ticker=ticker,
            error_type="EMPTY_HISTORY",
            message="No positive daily closes in the timing window",
            severity=ErrorSeverity.INFO,
            context={"start": start.isoformat(), "end": end.isoformat()},
        )
    return percentile, None


def fetch_timing_data(
    tickers: Sequence[str],
    provider: PriceHistoryProvider,
    positions: Iterable[PortfolioPosition],
    lookback_days: int,
    max_workers: int,
    as_of: Optional[date] = None,
) -> TimingData:
    """
    Fetch current prices and daily closes for the selected tickers.

    Args:
        tickers: Tickers chosen by select_timing_tickers()
        provider: Market-data collaborator
        positions: Position snapshot, used for the price fallback
        lookback_days: Length of the history window
        max_workers: Cap on concurrent history fetches
        as_of: Window end date (defaults to today, UTC)

    Returns:
        TimingData; tickers that failed carry a ProcessingError instead
        of a percentile.
    """
    data = TimingData()
    if not tickers:
        return data

    try:
        raw_prices = provider.get_current_prices(list(tickers))
    except Exception as e:
        logger.warning(f"[Timing] Current price lookup failed, using position values: {e}")
        raw_prices = {}
    data.current_prices = {t.upper(): float(p) for t, p in raw_prices.items() if p and p > 0}

    by_ticker = {p.ticker.upper(): p for p in positions}
    start, end = timing_window(lookback_days, as_of)
    resolved = {
        t: resolve_current_price(t, data.current_prices, by_ticker.get(t.upper()))
        for t in tickers
    }

    workers = max(1, min(max_workers, len(tickers)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="timing") as pool:
        futures = [
            (t, pool.submit(_sample_one, t, provider, resolved[t], start, end))
            for t in tickers
        ]
        for ticker, future in futures:
            percentile, error = future.result()
            if percentile is not None:
                data.percentiles[ticker.upper()] = percentile
            if error is not None:
                data.errors.append(error)
                log = logger.warning if error.severity == ErrorSeverity.WARNING else logger.debug
                log(f"[Timing] {ticker}: {error.error_type}: {error.message}")

    logger.info(
        f"[Timing] Percentiles for {len(data.percentiles)}/{len(tickers)} tickers "
        f"({start.isoformat()} → {end.isoformat()})"
    )
    return data


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

def apply_timing_filter(
    candidates: Sequence[RawCandidate],
    timing: TimingData,
    sell_threshold: float,
    buy_threshold: float,
    max_actions: int,
) -> TimingFilterResult:
    """
    Keep well-timed candidates per side, with a gap-only fallback.

    Each side is ordered by gap size. Candidates without a timing sample
    never pass the filter. A side whose filtered set is empty is replaced
    by its top max_actions unfiltered candidates. Both sides are capped at
    max_actions.
    """
    sell_side = order_by_gap(c for c in candidates if c.is_sell)
    buy_side = order_by_gap(c for c in candidates if c.is_buy)

    timed_sells = [
        c for c in sell_side
        if timing.has_sample(c.ticker) and timing.percentile_for(c.ticker) >= sell_threshold
    ]
    timed_buys = [
        c for c in buy_side
        if timing.has_sample(c.ticker) and timing.percentile_for(c.ticker) <= buy_threshold
    ]

    result = TimingFilterResult()

    sell_side_filtered_out = not timed_sells and bool(sell_side)
    if sell_side_filtered_out:
        result.sell_fallback_used = True
        timed_sells = sell_side[:max_actions]
        logger.info(f"[Timing] No sell cleared pctl >= {sell_threshold}; falling back to top {len(timed_sells)} gaps")

    buy_side_filtered_out = not timed_buys and bool(buy_side)
    if buy_side_filtered_out:
        result.buy_fallback_used = True
        timed_buys = buy_side[:max_actions]
        logger.info(f"[Timing] No buy cleared pctl <= {buy_threshold}; falling back to top {len(timed_buys)} gaps")

    result.sells = timed_sells[:max_actions]
    result.buys = timed_buys[:max_actions]
    return result
