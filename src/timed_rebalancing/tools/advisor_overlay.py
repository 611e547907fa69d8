"""
Rebalancing Tool: Advisor Overlay
Timed Rebalancing Framework

Runs an advisor strategy over the deterministic result with a hard
timeout, validates its reply, and converts accepted actions back into
TimedRebalancingAction objects. Every failure path returns a
not-applied outcome; the caller keeps the deterministic result.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Optional, Sequence

from timed_rebalancing.schemas.advisor_io import AdvisorAction, AdvisorReply, AdvisorRequest
from timed_rebalancing.schemas.portfolio_input import RebalancingConstraints
from timed_rebalancing.schemas.rebalancing_output import ActionType, TimedRebalancingAction
from timed_rebalancing.tools.action_scorer import build_reason
from timed_rebalancing.tools.advisor_validation import sanitize_advisor_actions
from timed_rebalancing.tools.candidate_builder import RawCandidate
from timed_rebalancing.tools.rebalancing_advisor import RebalancingAdvisor, build_advisor_request
from timed_rebalancing.tools.timing_filter import TimingData

logger = logging.getLogger(__name__)


@dataclass
class AdvisorOutcome:
    """Result of one overlay pass."""

    applied: bool = False
    sells: list[TimedRebalancingAction] = field(default_factory=list)
    buys: list[TimedRebalancingAction] = field(default_factory=list)
    summary: Optional[str] = None
    skip_reason: Optional[str] = None

    @classmethod
    def not_applied(cls, reason: str) -> "AdvisorOutcome":
        return cls(applied=False, skip_reason=reason)


def call_with_timeout(
    advisor: RebalancingAdvisor,
    request: AdvisorRequest,
    timeout_seconds: float,
) -> AdvisorReply:
    """
    Invoke advisor.optimize() with a hard wall-clock bound.

    Raises:
        concurrent.futures.TimeoutError: the advisor did not answer in time.
        Exception: whatever the advisor raised.
    """
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="advisor")
    try:
        future = pool.submit(advisor.optimize, request)
        return future.result(timeout=timeout_seconds)
    finally:
        # Do not wait for a timed-out call; its result is discarded
        pool.shutdown(wait=False, cancel_futures=True)


def to_timed_actions(
    accepted: Sequence[AdvisorAction],
    raw_candidates: Sequence[RawCandidate],
    timing: TimingData,
) -> tuple[list[TimedRebalancingAction], list[TimedRebalancingAction]]:
    """Rebuild full actions from validated advisor output; advisor order sets priority."""
    by_ticker = {c.ticker.upper(): c for c in raw_candidates}
    sells: list[TimedRebalancingAction] = []
    buys: list[TimedRebalancingAction] = []

    for priority, a in enumerate(accepted, start=1):
        candidate = by_ticker.get(a.ticker.upper())
        if candidate is None:
            continue
        p = candidate.position
        percentile = timing.percentile_for(p.ticker)
        deviation = p.deviation_pct
        action = TimedRebalancingAction(
            action_type=a.action_type,
            ticker=p.ticker,
            security_name=p.security_name,
            amount=a.amount,
            current_allocation_pct=round(p.current_allocation_pct or 0.0, 2),
            target_allocation_pct=round(p.target_allocation_pct or 0.0, 2),
            deviation=round(deviation, 2),
            current_price=timing.price_for(p.ticker),
            timing_percentile=percentile,
            unrealized_pnl_pct=p.unrealized_pnl_pct,
            confidence=round(a.confidence, 2),
            reason=a.reason or build_reason(a.action_type, deviation, percentile),
            priority=priority,
        )
        (sells if a.action_type == ActionType.SELL else buys).append(action)

    return sells, buys


def apply_advisor(
    advisor: RebalancingAdvisor,
    use_advisor: bool,
    sells: Sequence[TimedRebalancingAction],
    buys: Sequence[TimedRebalancingAction],
    raw_candidates: Sequence[RawCandidate],
    timing: TimingData,
    constraints: RebalancingConstraints,
    total_portfolio_value: float,
    timeout_seconds: float,
) -> AdvisorOutcome:
    """
    Optional advisor pass over the deterministic actions.

    Returns:
        AdvisorOutcome with applied=True only when the advisor answered in
        time and at least one action survived validation.
    """
    # Named fallback branches
    advisor_not_requested = not use_advisor
    advisor_unavailable = not advisor.is_enabled
    nothing_to_optimize = not sells and not buys

    if advisor_not_requested:
        return AdvisorOutcome.not_applied("not requested")
    if advisor_unavailable:
        logger.debug("[Advisor] Requested but not enabled; using deterministic result")
        return AdvisorOutcome.not_applied("advisor unavailable")
    if nothing_to_optimize:
        return AdvisorOutcome.not_applied("no deterministic actions")

    request = build_advisor_request(sells, buys, raw_candidates, timing, constraints, total_portfolio_value)

    try:
        reply = call_with_timeout(advisor, request, timeout_seconds)
    except FutureTimeoutError:
        logger.warning(f"[Advisor] Timed out after {timeout_seconds:.1f}s, using deterministic results")
        return AdvisorOutcome.not_applied("timeout")
    except Exception as e:
        logger.warning(f"[Advisor] Optimization failed, using deterministic results: {e}")
        return AdvisorOutcome.not_applied("advisor error")

    malformed_reply = not isinstance(reply, AdvisorReply)
    if malformed_reply:
        logger.warning(
            f"[Advisor] Returned {type(reply).__name__} instead of AdvisorReply; "
            f"using deterministic results"
        )
        return AdvisorOutcome.not_applied("advisor failure")

    if not reply.success:
        logger.info(f"[Advisor] Returned no usable result: {reply.error}")
        return AdvisorOutcome.not_applied("advisor failure")

    try:
        accepted = sanitize_advisor_actions(
            reply.raw_actions,
            known_tickers=request.known_tickers,
            original_sell_total=request.original_sell_total,
            cash_available=constraints.cash_available,
        )
        adv_sells, adv_buys = to_timed_actions(accepted, raw_candidates, timing)
    except Exception as e:
        logger.warning(f"[Advisor] Reply could not be validated, using deterministic results: {e}")
        return AdvisorOutcome.not_applied("malformed reply")

    empty_after_validation = not adv_sells and not adv_buys
    if empty_after_validation:
        logger.info(
            f"[Advisor] 0/{len(reply.raw_actions)} actions survived validation; "
            f"using deterministic results"
        )
        return AdvisorOutcome.not_applied("empty after validation")

    logger.info(
        f"[Advisor] Applied: {len(adv_sells)} sells, {len(adv_buys)} buys "
        f"({len(accepted)}/{len(reply.raw_actions)} proposed actions accepted)"
    )
    return AdvisorOutcome(
        applied=True,
        sells=adv_sells,
        buys=adv_buys,
        summary=reply.summary,
    )
