"""
Timed Rebalancing: Advisor Exchange Schema

Request sent to an external rebalancing advisor and the reply it returns.
The reply keeps the advisor's actions as plain dicts; they only become
typed AdvisorAction objects after the validation funnel in
tools/advisor_validation.py has accepted them.
"""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, Field

from timed_rebalancing.schemas.rebalancing_output import ActionType


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

class AdvisorConstraints(BaseModel):
    """Sanitized view of the constraints the advisor must respect."""

    net_cashflow_target: float = 0.0
    noise_threshold: float = Field(..., ge=0.0)
    max_actions: int = Field(..., ge=1)
    sell_percentile_threshold: float = Field(..., ge=0.0, le=100.0)
    buy_percentile_threshold: float = Field(..., ge=0.0, le=100.0)
    total_portfolio_value: float = Field(..., ge=0.0)
    cash_available: float = Field(..., ge=0.0)


class AdvisorSecurity(BaseModel):
    """Per-security features for every raw candidate."""

    ticker: str
    security_name: str = ""
    current_allocation: float
    target_allocation: float
    deviation: float
    gap_value: float = Field(..., ge=0.0)
    current_price: Optional[float] = None
    percentile_1y: Optional[float] = None
    unrealized_pnl_pct: Optional[float] = None
    market_value: Optional[float] = None


class AdvisorCandidate(BaseModel):
    """A deterministic action offered to the advisor."""

    ticker: str
    action_type: ActionType
    amount: float = Field(..., gt=0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: str = ""


class AdvisorRequest(BaseModel):
    """Everything the advisor sees for one recommendation run."""

    constraints: AdvisorConstraints
    securities: List[AdvisorSecurity] = Field(default_factory=list)
    sell_candidates: List[AdvisorCandidate] = Field(default_factory=list)
    buy_candidates: List[AdvisorCandidate] = Field(default_factory=list)

    @property
    def known_tickers(self) -> set[str]:
        return {s.ticker for s in self.securities}

    @property
    def original_sell_total(self) -> float:
        return sum(c.amount for c in self.sell_candidates)


# ---------------------------------------------------------------------------
# Reply
# ---------------------------------------------------------------------------

class AdvisorReply(BaseModel):
    """Untrusted advisor output. raw_actions are never used unvalidated."""

    success: bool = False
    raw_actions: List[Any] = Field(default_factory=list)
    summary: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "AdvisorReply":
        return cls(success=False, error=error)


class AdvisorAction(BaseModel):
    """An advisor action that passed the validation funnel."""

    action_type: ActionType
    ticker: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: str = ""
