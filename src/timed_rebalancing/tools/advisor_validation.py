"""
Rebalancing Tool: Advisor Validation Funnel
Timed Rebalancing Framework

Pure function from the advisor's raw action dicts to sanitized
AdvisorAction objects. Applied to every advisor reply, trusted or not:

1. drop unknown tickers
2. drop types other than exactly "BUY" / "SELL"
3. drop non-positive (or non-numeric) amounts
4. clamp confidence into [0, 1]
5. scale sells down to the deterministic sell total, then scale buys
   down to post-scaling sells + cash
6. round every amount to 2 decimals

Invariant violations are corrected here, never raised.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable, Optional, Sequence

from timed_rebalancing.config import constants as C
from timed_rebalancing.schemas.advisor_io import AdvisorAction
from timed_rebalancing.schemas.rebalancing_output import ActionType
from timed_rebalancing.tools.funding_balancer import floor_cents

logger = logging.getLogger(__name__)

_VALID_TYPES = {t.value: t for t in ActionType}

# Float slack when comparing sums of cent amounts
_EPSILON = 1e-6


def _to_number(value: Any) -> Optional[float]:
    """Finite float from an int/float/numeric string, else None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _scale_side(
    actions: list[AdvisorAction],
    side: ActionType,
    scale: float,
) -> list[AdvisorAction]:
    scaled: list[AdvisorAction] = []
    for a in actions:
        if a.action_type != side:
            scaled.append(a)
            continue
        amount = floor_cents(a.amount * scale)
        if amount <= 0:
            logger.warning(f"[Advisor] {a.ticker} {side.value} scaled to zero, dropping")
            continue
        scaled.append(a.model_copy(update={"amount": amount}))
    return scaled


def _side_total(actions: Iterable[AdvisorAction], side: ActionType) -> float:
    return sum(a.amount for a in actions if a.action_type == side)


def sanitize_advisor_actions(
    raw_actions: Sequence[Any],
    known_tickers: Iterable[str],
    original_sell_total: float,
    cash_available: float,
) -> list[AdvisorAction]:
    """
    Run the validation funnel over raw advisor output.

    Args:
        raw_actions: Untrusted items from the advisor reply
        known_tickers: Security universe of this computation
        original_sell_total: Sum of the deterministic sell candidates
        cash_available: Portfolio cash plus new investment

    Returns:
        Accepted actions in the advisor's order, amounts rounded to cents,
        with total sells <= original_sell_total and
        total buys <= total sells + cash_available.
    """
    universe = {t.upper(): t for t in known_tickers}
    accepted: list[AdvisorAction] = []

    for item in raw_actions:
        if not isinstance(item, dict):
            logger.warning(f"[Advisor] Non-object action {item!r}, skipping")
            continue

        # Step 1: ticker must belong to this computation's universe
        raw_ticker = str(item.get("ticker") or "").strip()
        ticker = universe.get(raw_ticker.upper())
        if ticker is None:
            logger.warning(f"[Advisor] Unknown ticker {raw_ticker!r}, skipping")
            continue

        # Step 2: exact action type
        raw_type = item.get("type")
        if not isinstance(raw_type, str) or raw_type not in _VALID_TYPES:
            logger.warning(f"[Advisor] Invalid action type {raw_type!r} for {ticker}, skipping")
            continue
        action_type = _VALID_TYPES[raw_type]

        # Step 3: strictly positive amount
        amount = _to_number(item.get("amount"))
        if amount is None or amount <= 0:
            logger.warning(f"[Advisor] Non-positive amount {item.get('amount')!r} for {ticker}, skipping")
            continue
        amount = round(amount, 2)
        if amount <= 0:
            logger.warning(f"[Advisor] Amount for {ticker} rounds to zero, skipping")
            continue

        # Step 4: clamp confidence
        confidence = _to_number(item.get("confidence"))
        if confidence is None:
            confidence = C.ADVISOR_DEFAULT_CONFIDENCE
        confidence = max(0.0, min(1.0, confidence))

        reason = item.get("reason")
        accepted.append(AdvisorAction(
            action_type=action_type,
            ticker=ticker,
            amount=amount,
            confidence=confidence,
            reason=str(reason).strip() if reason is not None else "",
        ))

    # Step 5: aggregate funding constraints
    total_sell = _side_total(accepted, ActionType.SELL)
    max_sell = max(0.0, original_sell_total)
    if total_sell > max_sell + _EPSILON:
        scale = max_sell / total_sell
        logger.warning(
            f"[Advisor] Sells {total_sell:,.2f} exceed deterministic total {max_sell:,.2f}; "
            f"scaling by {scale:.4f}"
        )
        accepted = _scale_side(accepted, ActionType.SELL, scale)
        total_sell = _side_total(accepted, ActionType.SELL)

    total_buy = _side_total(accepted, ActionType.BUY)
    max_buy = total_sell + max(0.0, cash_available)
    if total_buy > max_buy + _EPSILON:
        scale = max_buy / total_buy
        logger.warning(
            f"[Advisor] Buys {total_buy:,.2f} exceed sells + cash {max_buy:,.2f}; "
            f"scaling by {scale:.4f}"
        )
        accepted = _scale_side(accepted, ActionType.BUY, scale)

    # Step 6: every amount on a 2-decimal grid
    return [a.model_copy(update={"amount": round(a.amount, 2)}) for a in accepted]
