"""
Rebalancing Recommender
Timed Rebalancing Framework

Receives a PortfolioSnapshot + RecommendationRequest.
Produces TimedRebalancingResponse with:
- Gap-based candidates filtered by 1Y price percentile
- Buys funded from sell proceeds plus cash
- Confidence, reason and priority per action
- Optional advisor overlay, re-validated before use

This agent recommends trades. It never executes them or persists state.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from timed_rebalancing.config.settings import RebalancingSettings
from timed_rebalancing.exceptions import InvalidRequestError
from timed_rebalancing.schemas.portfolio_input import PortfolioSnapshot, RecommendationRequest
from timed_rebalancing.schemas.rebalancing_output import TimedRebalancingResponse
from timed_rebalancing.tools.action_scorer import score_actions
from timed_rebalancing.tools.advisor_overlay import apply_advisor
from timed_rebalancing.tools.candidate_builder import build_raw_candidates
from timed_rebalancing.tools.funding_balancer import apply_funding_balance
from timed_rebalancing.tools.market_data import PriceHistoryProvider
from timed_rebalancing.tools.rebalancing_advisor import RebalancingAdvisor, build_advisor
from timed_rebalancing.tools.response_assembler import assemble_response, empty_response
from timed_rebalancing.tools.timing_filter import (
    apply_timing_filter,
    fetch_timing_data,
    select_timing_tickers,
)

logger = logging.getLogger(__name__)


def build_recommendation_request(**fields: Any) -> RecommendationRequest:
    """
    Validate inbound request fields.

    Raises:
        InvalidRequestError: any field fails validation (e.g. a
            non-positive investment_amount or max_securities).
    """
    try:
        return RecommendationRequest(**fields)
    except PydanticValidationError as e:
        messages = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise InvalidRequestError(f"Invalid recommendation request: {messages}") from e


def run_rebalancing_pipeline(
    snapshot: PortfolioSnapshot,
    request: RecommendationRequest,
    settings: RebalancingSettings,
    price_provider: PriceHistoryProvider,
    advisor: Optional[RebalancingAdvisor] = None,
    as_of: Optional[date] = None,
    generated_at: Optional[datetime] = None,
) -> TimedRebalancingResponse:
    """
    Run the timed rebalancing pipeline for one request.

    Args:
        snapshot: Positions and aggregate values from the portfolio provider
        request: Validated RecommendationRequest
        settings: Process configuration
        price_provider: Current prices and daily close history
        advisor: Optional advisor strategy (defaults to build_advisor(settings))
        as_of: End date of the timing window (defaults to today)
        generated_at: Response timestamp (defaults to now, UTC)

    Returns:
        Validated TimedRebalancingResponse. An empty portfolio or a zero
        total value yields an empty response, never an error.
    """
    logger.info(f"[Rebalancer] Running timed rebalancing for user {request.user_id} ...")

    total_value = snapshot.total_value
    cash_available = snapshot.cash_amount + (request.investment_amount or 0.0)

    no_positions = not snapshot.positions
    no_portfolio_value = total_value <= 0
    if no_positions or no_portfolio_value:
        logger.info("[Rebalancer] Empty portfolio or zero total value; nothing to rebalance")
        return empty_response(
            settings.buy_percentile_threshold,
            settings.sell_percentile_threshold,
            generated_at=generated_at,
        )

    max_actions = request.max_actions or settings.default_max_actions
    constraints = settings.constraints(max_actions=max_actions, cash_available=cash_available)
    max_tickers = constraints.max_tickers_for_timing
    if request.max_securities is not None:
        max_tickers = min(max_tickers, request.max_securities)

    # Step 1: Allocation gaps -> raw candidates
    raw_candidates = build_raw_candidates(snapshot.positions, total_value, constraints.noise_threshold)
    logger.info(
        f"[Rebalancer] {len(raw_candidates)} raw candidates from {len(snapshot.positions)} positions, "
        f"total value ${total_value:,.2f}, cash ${cash_available:,.2f}"
    )

    # Step 2: Timing samples for the largest gaps, then filter
    tickers = select_timing_tickers(raw_candidates, max_tickers)
    timing = fetch_timing_data(
        tickers,
        price_provider,
        snapshot.positions,
        lookback_days=settings.history_lookback_days,
        max_workers=settings.timing_max_workers,
        as_of=as_of,
    )
    filtered = apply_timing_filter(
        raw_candidates,
        timing,
        sell_threshold=constraints.sell_percentile_threshold,
        buy_threshold=constraints.buy_percentile_threshold,
        max_actions=constraints.max_actions,
    )

    # Step 3: Fit buys to sell proceeds + cash
    funding = apply_funding_balance(
        filtered.sells, filtered.buys, cash_available, constraints.noise_threshold
    )

    # Step 4: Confidence, reason, priority
    sells, buys = score_actions(
        funding.sells,
        funding.buys,
        timing,
        sell_threshold=constraints.sell_percentile_threshold,
        buy_threshold=constraints.buy_percentile_threshold,
    )

    # Step 5: Optional advisor overlay
    outcome = apply_advisor(
        advisor if advisor is not None else build_advisor(settings),
        request.use_advisor,
        sells,
        buys,
        raw_candidates,
        timing,
        constraints,
        total_value,
        timeout_seconds=settings.advisor_timeout_seconds,
    )
    if outcome.applied:
        sells, buys = outcome.sells, outcome.buys

    # Step 6: Totals + response
    response = assemble_response(
        total_portfolio_value=total_value,
        cash_available=cash_available,
        sells=sells,
        buys=buys,
        buy_percentile_threshold=constraints.buy_percentile_threshold,
        sell_percentile_threshold=constraints.sell_percentile_threshold,
        advisor_applied=outcome.applied,
        advisor_summary=outcome.summary,
        generated_at=generated_at,
    )

    logger.info(
        f"[Rebalancer] Done: {len(response.sells)} sells (${response.total_sell_amount:,.2f}), "
        f"{len(response.buys)} buys (${response.total_buy_amount:,.2f}), "
        f"net ${response.net_cash_flow:,.2f}, advisor_applied={response.advisor_applied}"
    )
    return response
