"""
Rebalancing Tool: Action Scorer
Timed Rebalancing Framework

Turns balanced candidates into TimedRebalancingAction objects with a
confidence score, a templated reason and a priority rank.

Confidence with a timing sample interpolates the distance past the
threshold into [0.30, 0.95]; without a sample it is fixed at 0.20.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from timed_rebalancing.config import constants as C
from timed_rebalancing.schemas.rebalancing_output import ActionType, TimedRebalancingAction
from timed_rebalancing.tools.candidate_builder import RawCandidate
from timed_rebalancing.tools.timing_filter import TimingData

logger = logging.getLogger(__name__)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def confidence_from_sell_percentile(percentile: float, threshold: float) -> float:
    """Higher above the sell threshold means a stronger sell."""
    if percentile < threshold:
        return C.CONFIDENCE_FLOOR
    denom = 100.0 - threshold
    if denom <= 0:
        return C.CONFIDENCE_DEGENERATE_THRESHOLD
    return _clamp((percentile - threshold) / denom, C.CONFIDENCE_FLOOR, C.CONFIDENCE_CEILING)


def confidence_from_buy_percentile(percentile: float, threshold: float) -> float:
    """Lower below the buy threshold means a stronger buy."""
    if percentile > threshold:
        return C.CONFIDENCE_FLOOR
    if threshold <= 0:
        return C.CONFIDENCE_DEGENERATE_THRESHOLD
    return _clamp((threshold - percentile) / threshold, C.CONFIDENCE_FLOOR, C.CONFIDENCE_CEILING)


def score_confidence(
    action_type: ActionType,
    percentile: Optional[float],
    sell_threshold: float,
    buy_threshold: float,
) -> float:
    if percentile is None:
        return C.CONFIDENCE_NO_TIMING
    if action_type == ActionType.SELL:
        return confidence_from_sell_percentile(percentile, sell_threshold)
    return confidence_from_buy_percentile(percentile, buy_threshold)


def build_reason(action_type: ActionType, deviation: float, percentile: Optional[float]) -> str:
    """Short sentence citing the allocation deviation and the timing signal."""
    if action_type == ActionType.SELL:
        gap = f"Overweight by {abs(deviation):.2f} pp vs target"
        timing = (
            f"expensive vs 1Y history (pctl={percentile:.0f})"
            if percentile is not None else "timing unavailable"
        )
    else:
        gap = f"Underweight by {abs(deviation):.2f} pp vs target"
        timing = (
            f"cheap vs 1Y history (pctl={percentile:.0f})"
            if percentile is not None else "timing unavailable"
        )
    return f"{gap} and {timing}."


def build_action(
    candidate: RawCandidate,
    action_type: ActionType,
    timing: TimingData,
    sell_threshold: float,
    buy_threshold: float,
    priority: int = 1,
) -> TimedRebalancingAction:
    p = candidate.position
    percentile = timing.percentile_for(p.ticker)
    deviation = p.deviation_pct

    return TimedRebalancingAction(
        action_type=action_type,
        ticker=p.ticker,
        security_name=p.security_name,
        amount=round(candidate.gap_value, 2),
        current_allocation_pct=round(p.current_allocation_pct or 0.0, 2),
        target_allocation_pct=round(p.target_allocation_pct or 0.0, 2),
        deviation=round(deviation, 2),
        current_price=timing.price_for(p.ticker),
        timing_percentile=percentile,
        unrealized_pnl_pct=p.unrealized_pnl_pct,
        confidence=round(score_confidence(action_type, percentile, sell_threshold, buy_threshold), 2),
        reason=build_reason(action_type, deviation, percentile),
        priority=priority,
    )


def assign_priorities(
    sells: list[TimedRebalancingAction],
    buys: list[TimedRebalancingAction],
) -> tuple[list[TimedRebalancingAction], list[TimedRebalancingAction]]:
    """
    Rank all actions by descending amount (1 = largest).

    Ties go to sells first, then ticker, so equal inputs always produce
    the same order.
    """
    ranked = sorted(
        [(a, 0) for a in sells] + [(a, 1) for a in buys],
        key=lambda pair: (-pair[0].amount, pair[1], pair[0].ticker),
    )
    priorities = {id(a): rank for rank, (a, _) in enumerate(ranked, start=1)}

    def _ordered(actions: list[TimedRebalancingAction]) -> list[TimedRebalancingAction]:
        updated = [a.model_copy(update={"priority": priorities[id(a)]}) for a in actions]
        return sorted(updated, key=lambda a: a.priority)

    return _ordered(sells), _ordered(buys)


def score_actions(
    sells: Sequence[RawCandidate],
    buys: Sequence[RawCandidate],
    timing: TimingData,
    sell_threshold: float,
    buy_threshold: float,
) -> tuple[list[TimedRebalancingAction], list[TimedRebalancingAction]]:
    """
    Build scored, prioritized actions for both sides.

    Returns:
        (sell_actions, buy_actions), each ordered by priority.
    """
    sell_actions = [
        build_action(c, ActionType.SELL, timing, sell_threshold, buy_threshold) for c in sells
    ]
    buy_actions = [
        build_action(c, ActionType.BUY, timing, sell_threshold, buy_threshold) for c in buys
    ]
    sell_actions, buy_actions = assign_priorities(sell_actions, buy_actions)

    no_timing = sum(1 for a in sell_actions + buy_actions if a.timing_percentile is None)
    logger.debug(
        f"[Scorer] {len(sell_actions)} sells, {len(buy_actions)} buys "
        f"({no_timing} without timing sample)"
    )
    return sell_actions, buy_actions
