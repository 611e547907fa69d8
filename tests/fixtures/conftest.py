"""
Shared test fixtures for timed rebalancing tests.
Provides sample positions, snapshot builders and synthetic price histories.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from timed_rebalancing.schemas.portfolio_input import (
    PortfolioPosition,
    PortfolioSnapshot,
    RebalancingConstraints,
)
from timed_rebalancing.tools.candidate_builder import RawCandidate

AS_OF = date(2025, 6, 30)


# Portfolio worth 10,000: two overweight, two underweight, one on target,
# one without a target allocation
SAMPLE_POSITIONS: list[dict[str, Any]] = [
    {"ticker": "AAPL", "security_name": "Apple Inc", "current_allocation_pct": 30.0,
     "target_allocation_pct": 20.0, "current_market_value": 3000.0, "total_shares": 15.0,
     "unrealized_pnl_pct": 42.5},
    {"ticker": "MSFT", "security_name": "Microsoft", "current_allocation_pct": 25.0,
     "target_allocation_pct": 20.0, "current_market_value": 2500.0, "total_shares": 6.0,
     "unrealized_pnl_pct": 18.0},
    {"ticker": "VTI", "security_name": "Vanguard Total Stock Market", "current_allocation_pct": 15.0,
     "target_allocation_pct": 25.0, "current_market_value": 1500.0, "total_shares": 5.0,
     "unrealized_pnl_pct": 3.1},
    {"ticker": "BND", "security_name": "Vanguard Total Bond", "current_allocation_pct": 10.0,
     "target_allocation_pct": 15.0, "current_market_value": 1000.0, "total_shares": 14.0,
     "unrealized_pnl_pct": -4.2},
    {"ticker": "GLD", "security_name": "SPDR Gold", "current_allocation_pct": 20.0,
     "target_allocation_pct": 20.0, "current_market_value": 2000.0, "total_shares": 9.0,
     "unrealized_pnl_pct": 11.0},
    {"ticker": "XYZ", "security_name": "Untargeted Holding", "current_allocation_pct": 0.0,
     "target_allocation_pct": None, "current_market_value": 0.0, "total_shares": 0.0,
     "unrealized_pnl_pct": None},
]

SAMPLE_CURRENT_PRICES: dict[str, float] = {
    "AAPL": 200.0,
    "MSFT": 416.67,
    "VTI": 300.0,
    "BND": 71.43,
    "GLD": 222.22,
}


def make_position(
    ticker: str = "AAA",
    current: Optional[float] = 10.0,
    target: Optional[float] = 20.0,
    market_value: Optional[float] = 1000.0,
    shares: float = 10.0,
    **extra: Any,
) -> PortfolioPosition:
    return PortfolioPosition(
        ticker=ticker,
        security_name=extra.pop("security_name", f"{ticker} Corp"),
        current_allocation_pct=current,
        target_allocation_pct=target,
        current_market_value=market_value,
        total_shares=shares,
        **extra,
    )


def make_candidate(ticker: str, signed_amount: float, current: float = 10.0, target: float = 20.0) -> RawCandidate:
    return RawCandidate(position=make_position(ticker, current, target), signed_amount=signed_amount)


def sample_snapshot(cash: float = 0.0) -> PortfolioSnapshot:
    positions = [PortfolioPosition(**p) for p in SAMPLE_POSITIONS]
    return PortfolioSnapshot(
        positions=positions,
        total_market_value=sum(p.current_market_value or 0.0 for p in positions),
        total_invested=8000.0,
        cash_amount=cash,
    )


def linear_history(low: float, high: float, n: int = 100) -> list[float]:
    """n evenly spaced closes from low to high (inclusive)."""
    step = (high - low) / (n - 1)
    return [round(low + i * step, 4) for i in range(n)]


def make_constraints(**overrides: Any) -> RebalancingConstraints:
    values = dict(
        noise_threshold=10.0,
        max_actions=10,
        sell_percentile_threshold=80.0,
        buy_percentile_threshold=20.0,
        max_tickers_for_timing=15,
        cash_available=0.0,
    )
    values.update(overrides)
    return RebalancingConstraints(**values)

