"""
Timed Rebalancing: Input Schema

Input contract supplied by collaborators: the position snapshot of one
portfolio, the inbound recommendation request, and the per-request
constraint set. All models are immutable for the duration of a run.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------

class PortfolioPosition(BaseModel):
    """One holding with its current and target allocation."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    ticker: str = Field(..., min_length=1, max_length=20)
    security_name: str = Field(default="")
    current_allocation_pct: Optional[float] = Field(None, ge=0.0, le=100.0)
    target_allocation_pct: Optional[float] = Field(None, ge=0.0, le=100.0)
    current_market_value: Optional[float] = Field(None, ge=0.0)
    total_shares: float = Field(default=0.0, ge=0.0)
    unrealized_pnl_pct: Optional[float] = Field(None)

    @field_validator("ticker")
    @classmethod
    def ticker_stripped(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("ticker must not be blank")
        return v

    @property
    def has_allocations(self) -> bool:
        return self.current_allocation_pct is not None and self.target_allocation_pct is not None

    @property
    def deviation_pct(self) -> float:
        """Current minus target allocation, in percentage points."""
        return (self.current_allocation_pct or 0.0) - (self.target_allocation_pct or 0.0)


class PortfolioSnapshot(BaseModel):
    """All positions of one portfolio plus its aggregate values."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    positions: List[PortfolioPosition] = Field(default_factory=list)
    total_market_value: Optional[float] = Field(None, ge=0.0)
    total_invested: float = Field(default=0.0, ge=0.0)
    cash_amount: float = Field(default=0.0, ge=0.0)

    @property
    def total_value(self) -> float:
        """Market value when known and positive, else cost basis."""
        if self.total_market_value is not None and self.total_market_value > 0:
            return self.total_market_value
        return self.total_invested


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

class RecommendationRequest(BaseModel):
    """Inbound request for timed rebalancing actions."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    user_id: str = Field(..., min_length=1)
    investment_amount: Optional[float] = Field(None, description="New money to deploy on top of portfolio cash")
    max_securities: Optional[int] = Field(None, description="Caps tickers considered for timing")
    max_actions: Optional[int] = Field(None, description="Caps actions per side")
    use_advisor: bool = False

    @field_validator("investment_amount")
    @classmethod
    def investment_positive(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError(f"investment_amount must be positive, got {v}")
        return v

    @field_validator("max_securities", "max_actions")
    @classmethod
    def limits_positive(cls, v: Optional[int], info) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {v}")
        return v


# ---------------------------------------------------------------------------
# Constraints
# ---------------------------------------------------------------------------

class RebalancingConstraints(BaseModel):
    """Limits applied to one recommendation run."""

    model_config = ConfigDict(frozen=True)

    noise_threshold: float = Field(..., ge=0.0)
    max_actions: int = Field(..., ge=1)
    sell_percentile_threshold: float = Field(..., ge=0.0, le=100.0)
    buy_percentile_threshold: float = Field(..., ge=0.0, le=100.0)
    max_tickers_for_timing: int = Field(..., ge=0)
    cash_available: float = Field(..., ge=0.0)
