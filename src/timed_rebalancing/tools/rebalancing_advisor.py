"""
Rebalancing Tool: Advisor Strategies
Timed Rebalancing Framework

The advisor is a capability with one availability check and one
operation. Any implementation, including the disabled no-op, satisfies
RebalancingAdvisor and its output always goes through the validation
funnel before it can reach a response.

ClaudeRebalancingAdvisor asks an Anthropic model to select, reorder and
resize the deterministic candidates. Its reply is parsed into a neutral
AdvisorReply (plain dicts), never into domain objects.
"""

from __future__ import annotations

import json
import logging
from typing import Protocol, Sequence

import anthropic

from timed_rebalancing.config import constants as C
from timed_rebalancing.config.settings import RebalancingSettings
from timed_rebalancing.exceptions import AdvisorResponseError, LLMConfigError
from timed_rebalancing.schemas.advisor_io import (
    AdvisorCandidate,
    AdvisorConstraints,
    AdvisorReply,
    AdvisorRequest,
    AdvisorSecurity,
)
from timed_rebalancing.schemas.portfolio_input import RebalancingConstraints
from timed_rebalancing.schemas.rebalancing_output import ActionType, TimedRebalancingAction
from timed_rebalancing.tools.candidate_builder import RawCandidate
from timed_rebalancing.tools.timing_filter import TimingData
from timed_rebalancing.tools.token_tracker import track as track_tokens

logger = logging.getLogger(__name__)


class RebalancingAdvisor(Protocol):
    """Strategy interface for an optional rebalancing advisor."""

    @property
    def is_enabled(self) -> bool:
        """Whether this advisor may be called at all."""
        ...

    def optimize(self, request: AdvisorRequest) -> AdvisorReply:
        """Propose actions for the request. Output is untrusted."""
        ...


class DisabledAdvisor:
    """No-op advisor used when the feature is off."""

    @property
    def is_enabled(self) -> bool:
        return False

    def optimize(self, request: AdvisorRequest) -> AdvisorReply:
        return AdvisorReply.failure("Advisor is disabled")


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------

def _to_candidate(action: TimedRebalancingAction) -> AdvisorCandidate:
    return AdvisorCandidate(
        ticker=action.ticker,
        action_type=action.action_type,
        amount=action.amount,
        confidence=action.confidence,
        reason=action.reason,
    )


def build_advisor_request(
    sells: Sequence[TimedRebalancingAction],
    buys: Sequence[TimedRebalancingAction],
    raw_candidates: Sequence[RawCandidate],
    timing: TimingData,
    constraints: RebalancingConstraints,
    total_portfolio_value: float,
) -> AdvisorRequest:
    """Sanitized view of the run: constraints, features per raw candidate, deterministic lists."""
    securities = [
        AdvisorSecurity(
            ticker=c.ticker,
            security_name=c.position.security_name,
            current_allocation=c.position.current_allocation_pct or 0.0,
            target_allocation=c.position.target_allocation_pct or 0.0,
            deviation=round(c.position.deviation_pct, 2),
            gap_value=c.gap_value,
            current_price=timing.price_for(c.ticker),
            percentile_1y=timing.percentile_for(c.ticker),
            unrealized_pnl_pct=c.position.unrealized_pnl_pct,
            market_value=c.position.current_market_value,
        )
        for c in raw_candidates
    ]
    return AdvisorRequest(
        constraints=AdvisorConstraints(
            net_cashflow_target=C.ADVISOR_NET_CASHFLOW_TARGET,
            noise_threshold=constraints.noise_threshold,
            max_actions=constraints.max_actions,
            sell_percentile_threshold=constraints.sell_percentile_threshold,
            buy_percentile_threshold=constraints.buy_percentile_threshold,
            total_portfolio_value=round(total_portfolio_value, 2),
            cash_available=round(constraints.cash_available, 2),
        ),
        securities=securities,
        sell_candidates=[_to_candidate(a) for a in sells],
        buy_candidates=[_to_candidate(a) for a in buys],
    )


# ---------------------------------------------------------------------------
# Claude advisor
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
You are a quantitative portfolio optimizer. You select and prioritize
rebalancing trades from the candidate actions you are given.

Decision framework:
1. Timing quality (percentile_1y = % of the last year's daily closes at or
   below today's price):
   - SELL timing is good when percentile_1y >= sell_percentile_threshold
   - BUY timing is good when percentile_1y <= buy_percentile_threshold
   - If percentile_1y is null or between thresholds, only act when the
     allocation deviation is at least 10 percentage points.
2. Prioritization: larger distance past the threshold first, then larger
   abs(deviation), then larger amount.
3. Amounts:
   - 0 < amount <= the candidate's amount, and amount >= noise_threshold
   - total SELL <= sum of sell_candidates amounts
   - total BUY <= total SELL + cash_available
   - net_cashflow_target: positive keeps cash, negative deploys cash
4. Return at most max_actions trades, SELL actions before BUY actions.
5. confidence in [0, 1]: stronger timing and larger gaps score higher.

Use only tickers from sell_candidates or buy_candidates. You may return
SELL-only, BUY-only, mixed, or no actions.

Respond with ONLY a JSON object, no markdown:
{"actions": [{"type": "SELL"|"BUY", "ticker": str, "amount": number,
  "reason": str, "confidence": number}], "summary": "1-2 sentences"}
"""


def parse_advisor_reply(text: str) -> AdvisorReply:
    """
    Parse raw model text into a neutral AdvisorReply.

    Raises:
        AdvisorResponseError: no JSON object, invalid JSON, or an
            "actions" field that is not a list.
    """
    text = (text or "").strip()
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        raise AdvisorResponseError("Advisor reply did not contain a JSON object")

    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise AdvisorResponseError(f"Failed to parse advisor JSON: {e}") from e

    if not isinstance(data, dict):
        raise AdvisorResponseError("Advisor reply is not a JSON object")

    actions = data.get("actions", [])
    if not isinstance(actions, list):
        raise AdvisorResponseError("Advisor reply 'actions' is not a list")

    summary = data.get("summary")
    return AdvisorReply(
        success=True,
        raw_actions=list(actions),
        summary=str(summary).strip() if summary else None,
    )


class ClaudeRebalancingAdvisor:
    """Advisor backed by the Anthropic Messages API."""

    def __init__(self, settings: RebalancingSettings) -> None:
        self.settings = settings

    @property
    def is_enabled(self) -> bool:
        return self.settings.advisor_available

    def _client(self) -> anthropic.Anthropic:
        if not self.settings.advisor_api_key:
            raise LLMConfigError("ANTHROPIC_API_KEY not configured; advisor disabled")
        # No retries: a failed call falls back to the deterministic result
        return anthropic.Anthropic(
            api_key=self.settings.advisor_api_key,
            timeout=self.settings.advisor_timeout_seconds,
            max_retries=0,
        )

    def optimize(self, request: AdvisorRequest) -> AdvisorReply:
        if not self.is_enabled:
            logger.debug("[Advisor] Claude advisor is disabled")
            return AdvisorReply.failure("Advisor is disabled")

        payload = request.model_dump_json(exclude_none=True)
        response = self._client().messages.create(
            model=self.settings.advisor_model,
            max_tokens=C.ADVISOR_MAX_TOKENS,
            temperature=self.settings.advisor_temperature,
            system=_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": f"INPUT:\n{payload}"}],
        )
        track_tokens("optimize_rebalancing_llm", response)
        text = response.content[0].text if response.content else ""

        reply = parse_advisor_reply(text)
        logger.info(f"[Advisor] Claude proposed {len(reply.raw_actions)} actions")
        return reply


def build_advisor(settings: RebalancingSettings) -> RebalancingAdvisor:
    """Claude advisor when available, else the disabled no-op."""
    if settings.advisor_available:
        return ClaudeRebalancingAdvisor(settings)
    return DisabledAdvisor()
