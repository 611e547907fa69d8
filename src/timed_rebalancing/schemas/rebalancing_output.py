"""
Timed Rebalancing: Output Schema

Output contract for the rebalancing recommender.
Concrete buy/sell actions filtered by 1Y timing percentiles, balanced
against available funds, optionally reordered by the advisor.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

class ActionType(str, Enum):
    """Direction of a rebalancing action."""

    BUY = "BUY"
    SELL = "SELL"


# ---------------------------------------------------------------------------
# Supporting Models
# ---------------------------------------------------------------------------

class TimedRebalancingAction(BaseModel):
    """A concrete action for one security. Amount is always positive."""

    action_type: ActionType = Field(...)
    ticker: str = Field(..., min_length=1)
    security_name: str = Field(default="")
    amount: float = Field(..., gt=0, description="Currency amount, rounded to 2 decimals")
    current_allocation_pct: float = Field(..., ge=0.0)
    target_allocation_pct: float = Field(..., ge=0.0)
    deviation: float = Field(..., description="Current minus target, percentage points")
    current_price: Optional[float] = Field(None, gt=0)
    timing_percentile: Optional[float] = Field(None, ge=0.0, le=100.0)
    unrealized_pnl_pct: Optional[float] = Field(None)
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: str = Field(..., min_length=1)
    priority: int = Field(..., ge=1, description="1 = most important")

    @field_validator("amount")
    @classmethod
    def amount_two_decimals(cls, v: float) -> float:
        return round(v, 2)


# ---------------------------------------------------------------------------
# Top-level Output
# ---------------------------------------------------------------------------

class TimedRebalancingResponse(BaseModel):
    """Top-level output contract for one recommendation request."""

    total_portfolio_value: float = Field(..., ge=0.0)
    cash_available: float = Field(..., ge=0.0)
    total_buy_amount: float = Field(..., ge=0.0)
    total_sell_amount: float = Field(..., ge=0.0)
    net_cash_flow: float = Field(..., description="Buys minus sells")
    buy_percentile_threshold: float = Field(..., ge=0.0, le=100.0)
    sell_percentile_threshold: float = Field(..., ge=0.0, le=100.0)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    sells: List[TimedRebalancingAction] = Field(default_factory=list)
    buys: List[TimedRebalancingAction] = Field(default_factory=list)
    advisor_applied: bool = False
    advisor_summary: Optional[str] = None

    @model_validator(mode="after")
    def validate_sides(self) -> "TimedRebalancingResponse":
        """Sells hold only SELL actions, buys only BUY actions."""
        for a in self.sells:
            if a.action_type != ActionType.SELL:
                raise ValueError(f"sells contains a {a.action_type.value} action for {a.ticker}")
        for a in self.buys:
            if a.action_type != ActionType.BUY:
                raise ValueError(f"buys contains a {a.action_type.value} action for {a.ticker}")
        return self

    @model_validator(mode="after")
    def validate_funding(self) -> "TimedRebalancingResponse":
        """Buys are covered by sell proceeds plus cash (1 cent tolerance)."""
        if self.total_buy_amount > self.total_sell_amount + self.cash_available + 0.01:
            raise ValueError(
                f"total_buy_amount={self.total_buy_amount:.2f} exceeds "
                f"sells({self.total_sell_amount:.2f}) + cash({self.cash_available:.2f})"
            )
        return self

    @model_validator(mode="after")
    def validate_net_cash_flow(self) -> "TimedRebalancingResponse":
        expected = self.total_buy_amount - self.total_sell_amount
        if abs(self.net_cash_flow - expected) > 0.01:
            raise ValueError(
                f"net_cash_flow={self.net_cash_flow:.2f} doesn't match "
                f"buys({self.total_buy_amount:.2f}) - sells({self.total_sell_amount:.2f})"
            )
        return self
