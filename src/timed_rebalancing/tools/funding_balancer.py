"""
Rebalancing Tool: Funding Balancer
Timed Rebalancing Framework

Ensures buys are affordable from sell proceeds plus available cash.
Supports three scenarios:
1. Sell only  -> user accumulates cash (no good buys)
2. Buy only   -> user deploys existing cash (no good sells)
3. Sell → Buy -> classic rebalancing

Sells are never reduced. Buys are scaled down proportionally when funds
are short, and a scaled buy that falls under the noise threshold is
dropped.

No network, no file I/O.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Optional, Sequence

from timed_rebalancing.tools.candidate_builder import RawCandidate

logger = logging.getLogger(__name__)


@dataclass
class FundingResult:
    """Balanced candidate lists and how they were obtained."""

    sells: list[RawCandidate] = field(default_factory=list)
    buys: list[RawCandidate] = field(default_factory=list)
    funds_available: float = 0.0
    buy_demand: float = 0.0
    scale_factor: Optional[float] = None
    dropped_tickers: list[str] = field(default_factory=list)


def floor_cents(amount: float) -> float:
    """Round down to 2 decimals, so scaled totals never exceed their budget."""
    return math.floor(amount * 100.0 + 1e-6) / 100.0


def scale_candidate(
    candidate: RawCandidate,
    scale_factor: float,
    noise_threshold: float,
) -> Optional[RawCandidate]:
    """Scale a candidate's amount; None when the result is below noise."""
    scaled = floor_cents(candidate.gap_value * scale_factor)
    if scaled < noise_threshold or scaled <= 0:
        return None
    sign = 1.0 if candidate.signed_amount > 0 else -1.0
    return replace(candidate, signed_amount=sign * scaled)


def apply_funding_balance(
    sells: Sequence[RawCandidate],
    buys: Sequence[RawCandidate],
    cash_available: float,
    noise_threshold: float,
) -> FundingResult:
    """
    Cap total buys at sell proceeds + cash.

    Args:
        sells: Sell-side candidates (kept unchanged)
        buys: Buy-side candidates
        cash_available: Portfolio cash plus new investment
        noise_threshold: Minimum amount for a scaled buy to survive

    Returns:
        FundingResult with sells untouched and buys fitted to funds.
    """
    result = FundingResult(sells=list(sells))
    funds_available = sum(s.gap_value for s in sells) + cash_available
    buy_demand = sum(b.gap_value for b in buys)
    result.funds_available = round(funds_available, 2)
    result.buy_demand = round(buy_demand, 2)

    if not sells and not buys:
        return result

    if not buys or funds_available <= 0:
        # Sell-only scenario (or no funds for buys)
        if buys:
            result.dropped_tickers = [b.ticker for b in buys]
            logger.info(f"[Funding] No funds available; dropping {len(buys)} buys")
        return result

    if funds_available >= buy_demand:
        result.buys = list(buys)
        return result

    scale_factor = funds_available / buy_demand
    result.scale_factor = scale_factor
    for b in buys:
        scaled = scale_candidate(b, scale_factor, noise_threshold)
        if scaled is None:
            result.dropped_tickers.append(b.ticker)
            continue
        result.buys.append(scaled)

    logger.info(
        f"[Funding] Buy demand {buy_demand:,.2f} exceeds funds {funds_available:,.2f}; "
        f"scaled buys by {scale_factor:.4f}, dropped {len(result.dropped_tickers)}"
    )
    return result
