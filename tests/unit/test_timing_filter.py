"""
Timing Filter: percentile computation, ticker selection, fetch isolation
and the per-side gap-only fallback.
"""

from __future__ import annotations

from datetime import date

import pytest

from timed_rebalancing.exceptions import ErrorSeverity
from timed_rebalancing.tools.market_data import StaticPriceProvider
from timed_rebalancing.tools.timing_filter import (
    TimingData,
    apply_timing_filter,
    compute_percentile,
    fetch_timing_data,
    resolve_current_price,
    select_timing_tickers,
    timing_window,
)

from tests.fixtures.conftest import AS_OF, linear_history, make_candidate, make_position


# ---------------------------------------------------------------------------
# Percentile
# ---------------------------------------------------------------------------

class TestComputePercentile:

    @pytest.mark.schema
    def test_counts_at_or_below(self):
        assert compute_percentile([1, 2, 3, 4], 3.0) == 75.0

    @pytest.mark.schema
    def test_above_all_is_100(self):
        assert compute_percentile([1, 2, 3], 10.0) == 100.0

    @pytest.mark.schema
    def test_below_all_is_0(self):
        assert compute_percentile([5, 6, 7], 1.0) == 0.0

    @pytest.mark.schema
    def test_rounded_to_two_decimals(self):
        assert compute_percentile([1, 2, 3], 1.0) == 33.33

    @pytest.mark.schema
    def test_non_positive_closes_ignored(self):
        assert compute_percentile([0, -1, 2, 4], 3.0) == 50.0

    @pytest.mark.schema
    def test_empty_history_is_none(self):
        assert compute_percentile([], 3.0) is None

    @pytest.mark.schema
    def test_non_positive_price_is_none(self):
        assert compute_percentile([1, 2, 3], 0.0) is None


class TestResolveCurrentPrice:

    @pytest.mark.schema
    def test_provider_price_wins(self):
        pos = make_position("AAA", market_value=1000.0, shares=10.0)
        assert resolve_current_price("AAA", {"AAA": 120.0}, pos) == 120.0

    @pytest.mark.schema
    def test_falls_back_to_market_value_per_share(self):
        pos = make_position("AAA", market_value=1000.0, shares=8.0)
        assert resolve_current_price("aaa", {}, pos) == 125.0

    @pytest.mark.schema
    def test_no_price_available(self):
        pos = make_position("AAA", market_value=1000.0, shares=0.0)
        assert resolve_current_price("AAA", {}, pos) == 0.0
        assert resolve_current_price("AAA", {}, None) == 0.0


class TestTimingWindow:

    @pytest.mark.schema
    def test_one_year_window(self):
        start, end = timing_window(365, as_of=date(2025, 6, 30))
        assert end == date(2025, 6, 30)
        assert start == date(2024, 6, 30)


# ---------------------------------------------------------------------------
# Ticker selection
# ---------------------------------------------------------------------------

class TestSelectTimingTickers:

    @pytest.mark.schema
    def test_largest_gaps_first_and_capped(self):
        candidates = [
            make_candidate("A", 20.0),
            make_candidate("B", -500.0),
            make_candidate("C", 300.0),
            make_candidate("D", -40.0),
        ]
        assert select_timing_tickers(candidates, 2) == ["B", "C"]

    @pytest.mark.schema
    def test_distinct_case_insensitive(self):
        candidates = [make_candidate("abc", 300.0), make_candidate("ABC", -200.0), make_candidate("X", 100.0)]
        assert select_timing_tickers(candidates, 5) == ["abc", "X"]

    @pytest.mark.schema
    def test_zero_cap(self):
        assert select_timing_tickers([make_candidate("A", 100.0)], 0) == []


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------

class TestFetchTimingData:

    @pytest.mark.behavior
    def test_percentiles_from_provider(self):
        provider = StaticPriceProvider(
            current_prices={"HIGH": 99.0, "LOW": 1.0},
            history={"HIGH": linear_history(1, 100), "LOW": linear_history(1, 100)},
        )
        positions = [make_position("HIGH"), make_position("LOW")]
        timing = fetch_timing_data(["HIGH", "LOW"], provider, positions, 365, 4, as_of=AS_OF)
        assert timing.percentile_for("HIGH") == 99.0
        assert timing.percentile_for("low") == 1.0
        assert timing.price_for("HIGH") == 99.0
        assert timing.errors == []

    @pytest.mark.behavior
    def test_failure_isolated_to_ticker(self):
        provider = StaticPriceProvider(
            current_prices={"GOOD": 50.0, "BAD": 50.0},
            history={"GOOD": linear_history(1, 100)},
            failing_tickers=["BAD"],
        )
        positions = [make_position("GOOD"), make_position("BAD")]
        timing = fetch_timing_data(["GOOD", "BAD"], provider, positions, 365, 2, as_of=AS_OF)
        assert timing.has_sample("GOOD")
        assert not timing.has_sample("BAD")
        [err] = timing.errors
        assert err.ticker == "BAD"
        assert err.error_type == "HISTORY_FETCH_ERROR"
        assert err.severity == ErrorSeverity.WARNING
        assert "Simulated history failure" in err.message
        assert "MarketDataError" in err.traceback_str

    @pytest.mark.behavior
    def test_empty_history_recorded(self):
        provider = StaticPriceProvider(current_prices={"AAA": 10.0})
        timing = fetch_timing_data(["AAA"], provider, [make_position("AAA")], 365, 1, as_of=AS_OF)
        assert not timing.has_sample("AAA")
        assert timing.errors[0].error_type == "EMPTY_HISTORY"
        assert timing.errors[0].severity == ErrorSeverity.INFO
        assert timing.errors[0].traceback_str is None

    @pytest.mark.behavior
    def test_no_price_skips_history_call(self):
        provider = StaticPriceProvider(history={"AAA": linear_history(1, 10)})
        pos = make_position("AAA", market_value=None, shares=0.0)
        timing = fetch_timing_data(["AAA"], provider, [pos], 365, 1, as_of=AS_OF)
        assert not timing.has_sample("AAA")
        assert timing.errors[0].error_type == "NO_CURRENT_PRICE"
        assert provider.history_calls == []

    @pytest.mark.behavior
    def test_price_fallback_from_position(self):
        provider = StaticPriceProvider(history={"AAA": linear_history(1, 100)})
        pos = make_position("AAA", market_value=500.0, shares=10.0)
        timing = fetch_timing_data(["AAA"], provider, [pos], 365, 1, as_of=AS_OF)
        assert timing.percentile_for("AAA") == 50.0

    @pytest.mark.behavior
    def test_no_tickers_no_calls(self):
        provider = StaticPriceProvider()
        timing = fetch_timing_data([], provider, [], 365, 4, as_of=AS_OF)
        assert timing.percentiles == {}
        assert provider.history_calls == []


# ---------------------------------------------------------------------------
# Filtering + fallback
# ---------------------------------------------------------------------------

def _timing(percentiles: dict[str, float]) -> TimingData:
    return TimingData(percentiles={k.upper(): v for k, v in percentiles.items()})


class TestApplyTimingFilter:

    @pytest.mark.behavior
    def test_keeps_expensive_sells_and_cheap_buys(self):
        candidates = [
            make_candidate("S1", -300.0),
            make_candidate("S2", -200.0),
            make_candidate("B1", 250.0),
            make_candidate("B2", 150.0),
        ]
        timing = _timing({"S1": 90.0, "S2": 50.0, "B1": 10.0, "B2": 60.0})
        result = apply_timing_filter(candidates, timing, 80.0, 20.0, 10)
        assert [c.ticker for c in result.sells] == ["S1"]
        assert [c.ticker for c in result.buys] == ["B1"]
        assert not result.sell_fallback_used
        assert not result.buy_fallback_used

    @pytest.mark.behavior
    def test_threshold_boundaries_inclusive(self):
        candidates = [make_candidate("S", -100.0), make_candidate("B", 100.0)]
        timing = _timing({"S": 80.0, "B": 20.0})
        result = apply_timing_filter(candidates, timing, 80.0, 20.0, 10)
        assert [c.ticker for c in result.sells] == ["S"]
        assert [c.ticker for c in result.buys] == ["B"]

    @pytest.mark.behavior
    def test_sell_fallback_uses_top_gaps(self):
        """No sell clears the threshold -> top-N raw sells by gap."""
        candidates = [
            make_candidate("S1", -100.0),
            make_candidate("S2", -400.0),
            make_candidate("S3", -250.0),
            make_candidate("B1", 100.0),
        ]
        timing = _timing({"S1": 10.0, "S2": 50.0, "S3": 79.99, "B1": 5.0})
        result = apply_timing_filter(candidates, timing, 80.0, 20.0, 2)
        assert result.sell_fallback_used
        assert [c.ticker for c in result.sells] == ["S2", "S3"]
        assert not result.buy_fallback_used
        assert [c.ticker for c in result.buys] == ["B1"]

    @pytest.mark.behavior
    def test_missing_sample_excluded_but_eligible_for_fallback(self):
        candidates = [make_candidate("TIMED", 100.0), make_candidate("UNTIMED", 500.0)]
        timing = _timing({"TIMED": 5.0})
        result = apply_timing_filter(candidates, timing, 80.0, 20.0, 10)
        assert [c.ticker for c in result.buys] == ["TIMED"]

        no_timing = apply_timing_filter(candidates, TimingData(), 80.0, 20.0, 10)
        assert no_timing.buy_fallback_used
        assert [c.ticker for c in no_timing.buys] == ["UNTIMED", "TIMED"]

    @pytest.mark.behavior
    def test_empty_side_does_not_trigger_fallback(self):
        candidates = [make_candidate("B1", 100.0)]
        result = apply_timing_filter(candidates, _timing({"B1": 5.0}), 80.0, 20.0, 10)
        assert result.sells == []
        assert not result.sell_fallback_used

    @pytest.mark.behavior
    def test_each_side_capped_at_max_actions(self):
        candidates = [make_candidate(f"B{i}", 100.0 + i) for i in range(5)]
        timing = _timing({f"B{i}": 1.0 for i in range(5)})
        result = apply_timing_filter(candidates, timing, 80.0, 20.0, 3)
        assert [c.ticker for c in result.buys] == ["B4", "B3", "B2"]
