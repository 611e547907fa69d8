"""
Rebalancing Tool: Candidate Builder
Timed Rebalancing Framework

Pure functions for converting allocation gaps into signed currency
amounts (positive = underweight/buy, negative = overweight/sell).

No network, no file I/O.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from timed_rebalancing.schemas.portfolio_input import PortfolioPosition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawCandidate:
    """An allocation gap large enough to act on."""

    position: PortfolioPosition
    signed_amount: float

    @property
    def ticker(self) -> str:
        return self.position.ticker

    @property
    def is_sell(self) -> bool:
        return self.signed_amount < 0

    @property
    def is_buy(self) -> bool:
        return self.signed_amount > 0

    @property
    def gap_value(self) -> float:
        return abs(self.signed_amount)


def build_raw_candidates(
    positions: Iterable[PortfolioPosition],
    total_portfolio_value: float,
    noise_threshold: float,
) -> list[RawCandidate]:
    """
    Turn allocation gaps into candidates.

    diff = (target - current) / 100 * total_portfolio_value, rounded to
    2 decimals. Positions missing either allocation are skipped; gaps with
    |diff| < noise_threshold, and zero gaps, are discarded.

    Args:
        positions: Position snapshot for this run
        total_portfolio_value: Portfolio value the percentages refer to
        noise_threshold: Minimum actionable currency amount

    Returns:
        Candidates in input order.
    """
    candidates: list[RawCandidate] = []
    skipped_no_target = 0
    skipped_noise = 0

    for p in positions:
        if not p.has_allocations:
            skipped_no_target += 1
            continue

        diff = (p.target_allocation_pct - p.current_allocation_pct) / 100.0 * total_portfolio_value

        on_target = round(diff, 2) == 0
        if on_target or abs(diff) < noise_threshold:
            skipped_noise += 1
            continue

        candidates.append(RawCandidate(position=p, signed_amount=round(diff, 2)))

    logger.debug(
        f"[Candidates] {len(candidates)} candidates "
        f"({skipped_no_target} without allocations, {skipped_noise} below noise {noise_threshold})"
    )
    return candidates


def order_by_gap(candidates: Iterable[RawCandidate]) -> list[RawCandidate]:
    """Largest |signed_amount| first; stable for equal gaps."""
    return sorted(candidates, key=lambda c: c.gap_value, reverse=True)
