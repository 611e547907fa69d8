"""Token usage tracker for advisor LLM calls.

Captures input/output token counts from anthropic SDK responses and provides
totals by function and overall, with cost estimates. Purely observational:
nothing in the rebalancing computation reads it.
"""

from __future__ import annotations

import datetime
import threading
from typing import Any

# ---------------------------------------------------------------------------
# Pricing constants (USD per million tokens)
# ---------------------------------------------------------------------------
HAIKU_INPUT_COST_PER_MTOK = 1.00
HAIKU_OUTPUT_COST_PER_MTOK = 5.00

SONNET_INPUT_COST_PER_MTOK = 3.00
SONNET_OUTPUT_COST_PER_MTOK = 15.00

MODEL_PRICING: dict[str, tuple[float, float]] = {
    "claude-haiku": (HAIKU_INPUT_COST_PER_MTOK, HAIKU_OUTPUT_COST_PER_MTOK),
    "claude-sonnet": (SONNET_INPUT_COST_PER_MTOK, SONNET_OUTPUT_COST_PER_MTOK),
}

# ---------------------------------------------------------------------------
# Registry: function name → component
# ---------------------------------------------------------------------------
LLM_FUNCTION_REGISTRY: dict[str, str] = {
    "optimize_rebalancing_llm": "Advisor",
}


def _pricing_for(model: str) -> tuple[float, float]:
    """Match a full model id (e.g. claude-haiku-4-5-20251001) to a price family."""
    for family, pricing in MODEL_PRICING.items():
        if model.startswith(family):
            return pricing
    return HAIKU_INPUT_COST_PER_MTOK, HAIKU_OUTPUT_COST_PER_MTOK


def _compute_cost(input_tokens: int, output_tokens: int, model: str = "claude-haiku") -> float:
    """Compute cost in USD for a given token count."""
    input_cost_per_mtok, output_cost_per_mtok = _pricing_for(model)
    return (input_tokens * input_cost_per_mtok + output_tokens * output_cost_per_mtok) / 1_000_000


class TokenTracker:
    """Accumulates token usage records from LLM calls. Thread-safe."""

    def __init__(self) -> None:
        self._records: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def track(self, function_name: str, response: Any) -> None:
        """Record token usage from an anthropic response.

        Responses without a usable .usage block are ignored.
        """
        try:
            usage = response.usage
            input_tokens = int(usage.input_tokens)
            output_tokens = int(usage.output_tokens)
        except (AttributeError, TypeError, ValueError):
            return

        model = str(getattr(response, "model", "") or "claude-haiku")
        record = {
            "function": function_name,
            "component": LLM_FUNCTION_REGISTRY.get(function_name, "Unknown"),
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "model": model,
            "cost_usd": _compute_cost(input_tokens, output_tokens, model),
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        }
        with self._lock:
            self._records.append(record)

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def get_summary(self) -> dict[str, Any]:
        """Return overall totals and estimated cost."""
        with self._lock:
            records = list(self._records)
        total_input = sum(r["input_tokens"] for r in records)
        total_output = sum(r["output_tokens"] for r in records)
        return {
            "total_input_tokens": total_input,
            "total_output_tokens": total_output,
            "total_tokens": total_input + total_output,
            "estimated_cost_usd": round(sum(r["cost_usd"] for r in records), 4),
            "num_calls": len(records),
        }

    def get_by_function(self) -> list[dict[str, Any]]:
        """Return per-function breakdown, sorted by component then function."""
        with self._lock:
            records = list(self._records)
        groups: dict[str, dict[str, Any]] = {}
        for r in records:
            g = groups.setdefault(r["function"], {
                "function": r["function"],
                "component": r["component"],
                "input_tokens": 0,
                "output_tokens": 0,
                "cost_usd": 0.0,
                "calls": 0,
            })
            g["input_tokens"] += r["input_tokens"]
            g["output_tokens"] += r["output_tokens"]
            g["cost_usd"] += r["cost_usd"]
            g["calls"] += 1

        result = []
        for g in sorted(groups.values(), key=lambda x: (x["component"], x["function"])):
            g["total_tokens"] = g["input_tokens"] + g["output_tokens"]
            g["cost_usd"] = round(g["cost_usd"], 4)
            result.append(g)
        return result

    @property
    def has_records(self) -> bool:
        with self._lock:
            return len(self._records) > 0

    def reset(self) -> None:
        """Clear all records (useful for testing)."""
        with self._lock:
            self._records.clear()


# ---------------------------------------------------------------------------
# Module-level singleton and convenience function
# ---------------------------------------------------------------------------
tracker = TokenTracker()


def track(function_name: str, response: Any) -> None:
    """Convenience wrapper around the global tracker."""
    tracker.track(function_name, response)
