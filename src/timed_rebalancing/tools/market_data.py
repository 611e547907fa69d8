"""
Market Data Providers: current prices and 1Y daily closes.
Timed Rebalancing Framework

Two implementations of the PriceHistoryProvider protocol:
- YFinancePriceProvider: live data via yfinance, paced by an injected
  YahooConnectionManager that owns the one-time session warm-up.
- StaticPriceProvider: in-memory prices for offline runs and tests.

Providers raise MarketDataError for a ticker they cannot serve; the
timing filter isolates that failure to the ticker.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import date
from typing import Iterable, Mapping, Optional, Protocol, Sequence

import pandas as pd
import yfinance as yf

from timed_rebalancing.config import constants as C
from timed_rebalancing.exceptions import MarketDataError

logger = logging.getLogger(__name__)


class PriceHistoryProvider(Protocol):
    """Protocol for the market-data collaborator."""

    def get_current_prices(self, tickers: Sequence[str]) -> dict[str, float]:
        """Latest price per ticker. Tickers without a price are omitted."""
        ...

    def get_daily_closes(self, ticker: str, start: date, end: date) -> pd.Series:
        """Daily closes for [start, end], indexed by date."""
        ...


# ---------------------------------------------------------------------------
# Yahoo connection manager
# ---------------------------------------------------------------------------

class YahooConnectionManager:
    """
    Owns the Yahoo session lifecycle for one process or one test.

    warm-up: a single probe request so yfinance acquires its cookie/crumb
    before the first real fetch. Runs at most once per open() cycle.
    pacing: throttle() enforces a minimum spacing between outbound requests,
    shared across worker threads.
    """

    def __init__(
        self,
        request_spacing_seconds: float = C.YAHOO_REQUEST_SPACING_SECONDS,
        warmup_symbol: str = C.YAHOO_WARMUP_SYMBOL,
    ) -> None:
        self.request_spacing_seconds = request_spacing_seconds
        self.warmup_symbol = warmup_symbol
        self._lock = threading.Lock()
        self._pace_lock = threading.Lock()
        self._ready = False
        self._closed = False
        self._last_request_at: Optional[float] = None

    @property
    def is_ready(self) -> bool:
        return self._ready

    def ensure_ready(self) -> None:
        """Run the warm-up once. A failed warm-up is retried on the next call."""
        if self._closed:
            raise MarketDataError("Yahoo connection manager is closed")
        if self._ready:
            return
        with self._lock:
            if self._ready:
                return
            try:
                self.throttle()
                yf.Ticker(self.warmup_symbol).history(period="5d", auto_adjust=True)
                self._ready = True
                logger.info(f"[MarketData] Yahoo session warmed up via {self.warmup_symbol}")
            except Exception as e:
                logger.warning(f"[MarketData] Yahoo warm-up failed: {e}")

    def throttle(self) -> None:
        """Block until request_spacing_seconds have passed since the last request."""
        with self._pace_lock:
            now = time.monotonic()
            if self._last_request_at is not None:
                wait = self.request_spacing_seconds - (now - self._last_request_at)
                if wait > 0:
                    time.sleep(wait)
                    now = time.monotonic()
            self._last_request_at = now

    def close(self) -> None:
        with self._lock:
            self._ready = False
            self._closed = True
            self._last_request_at = None

    def reset(self) -> None:
        """Reopen after close(); the next ensure_ready() warms up again."""
        with self._lock:
            self._ready = False
            self._closed = False
            self._last_request_at = None

    def __enter__(self) -> "YahooConnectionManager":
        self.reset()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# ---------------------------------------------------------------------------
# yfinance provider
# ---------------------------------------------------------------------------

class YFinancePriceProvider:
    """Live prices and history via yfinance."""

    def __init__(self, connection: YahooConnectionManager) -> None:
        self.connection = connection

    def get_current_prices(self, tickers: Sequence[str]) -> dict[str, float]:
        prices: dict[str, float] = {}
        if not tickers:
            return prices

        self.connection.ensure_ready()
        for ticker in tickers:
            try:
                self.connection.throttle()
                info = yf.Ticker(ticker).fast_info
                price = getattr(info, "last_price", None)
                if price is not None and float(price) > 0:
                    prices[ticker] = round(float(price), 4)
                else:
                    logger.debug(f"[MarketData] {ticker} has no current price")
            except Exception as e:
                logger.warning(f"[MarketData] Current price fetch failed for {ticker}: {e}")

        logger.info(f"[MarketData] Current prices for {len(prices)}/{len(tickers)} tickers")
        return prices

    def get_daily_closes(self, ticker: str, start: date, end: date) -> pd.Series:
        self.connection.ensure_ready()
        self.connection.throttle()
        try:
            # auto_adjust=True: Close is split/dividend adjusted
            df = yf.Ticker(ticker).history(
                start=start.isoformat(),
                end=end.isoformat(),
                interval="1d",
                auto_adjust=True,
            )
        except Exception as e:
            raise MarketDataError(f"History download failed for {ticker}: {e}") from e

        if df is None or df.empty or "Close" not in df.columns:
            raise MarketDataError(f"No daily closes returned for {ticker}")

        closes = df["Close"].dropna()
        closes.index = [ts.date() for ts in pd.to_datetime(closes.index)]
        return closes.astype(float)


# ---------------------------------------------------------------------------
# Static provider
# ---------------------------------------------------------------------------

class StaticPriceProvider:
    """
    In-memory provider for offline runs and tests.

    history values may be a plain list of closes (assigned to consecutive
    days ending at `end`) or a date-indexed pandas Series.
    """

    def __init__(
        self,
        current_prices: Optional[Mapping[str, float]] = None,
        history: Optional[Mapping[str, Iterable[float] | pd.Series]] = None,
        failing_tickers: Iterable[str] = (),
    ) -> None:
        self.current_prices = {k.upper(): float(v) for k, v in (current_prices or {}).items()}
        self.history = {k.upper(): v for k, v in (history or {}).items()}
        self.failing_tickers = {t.upper() for t in failing_tickers}
        self.history_calls: list[str] = []

    def get_current_prices(self, tickers: Sequence[str]) -> dict[str, float]:
        return {
            t: self.current_prices[t.upper()]
            for t in tickers
            if t.upper() in self.current_prices and self.current_prices[t.upper()] > 0
        }

    def get_daily_closes(self, ticker: str, start: date, end: date) -> pd.Series:
        self.history_calls.append(ticker)
        key = ticker.upper()
        if key in self.failing_tickers:
            raise MarketDataError(f"Simulated history failure for {ticker}")
        if key not in self.history:
            return pd.Series(dtype=float)

        values = self.history[key]
        if isinstance(values, pd.Series):
            return values.astype(float)
        closes = [float(v) for v in values]
        index = pd.date_range(end=pd.Timestamp(end), periods=len(closes), freq="D").date
        return pd.Series(closes, index=index, dtype=float)
