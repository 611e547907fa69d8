"""
Rebalancing Tool: Response Assembler
Timed Rebalancing Framework

Aggregates totals and packages the final recommendation set.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from timed_rebalancing.schemas.rebalancing_output import TimedRebalancingAction, TimedRebalancingResponse


def empty_response(
    buy_percentile_threshold: float,
    sell_percentile_threshold: float,
    generated_at: Optional[datetime] = None,
) -> TimedRebalancingResponse:
    """Neutral result for an empty portfolio or zero total value."""
    return TimedRebalancingResponse(
        total_portfolio_value=0.0,
        cash_available=0.0,
        total_buy_amount=0.0,
        total_sell_amount=0.0,
        net_cash_flow=0.0,
        buy_percentile_threshold=buy_percentile_threshold,
        sell_percentile_threshold=sell_percentile_threshold,
        generated_at=generated_at or datetime.now(timezone.utc),
        sells=[],
        buys=[],
        advisor_applied=False,
        advisor_summary=None,
    )


def assemble_response(
    total_portfolio_value: float,
    cash_available: float,
    sells: Sequence[TimedRebalancingAction],
    buys: Sequence[TimedRebalancingAction],
    buy_percentile_threshold: float,
    sell_percentile_threshold: float,
    advisor_applied: bool = False,
    advisor_summary: Optional[str] = None,
    generated_at: Optional[datetime] = None,
) -> TimedRebalancingResponse:
    total_buy = round(sum(a.amount for a in buys), 2)
    total_sell = round(sum(a.amount for a in sells), 2)

    return TimedRebalancingResponse(
        total_portfolio_value=round(total_portfolio_value, 2),
        cash_available=round(cash_available, 2),
        total_buy_amount=total_buy,
        total_sell_amount=total_sell,
        net_cash_flow=round(total_buy - total_sell, 2),
        buy_percentile_threshold=buy_percentile_threshold,
        sell_percentile_threshold=sell_percentile_threshold,
        generated_at=generated_at or datetime.now(timezone.utc),
        sells=list(sells),
        buys=list(buys),
        advisor_applied=advisor_applied,
        advisor_summary=advisor_summary if advisor_applied else None,
    )
