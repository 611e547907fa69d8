"""
Candidate Builder: allocation gaps -> signed currency amounts.
"""

from __future__ import annotations

import pytest

from timed_rebalancing.tools.candidate_builder import build_raw_candidates, order_by_gap

from tests.fixtures.conftest import make_candidate, make_position, sample_snapshot


class TestBuildRawCandidates:

    @pytest.mark.schema
    def test_gap_only_buy_amount(self):
        """target 50%, current 25%, total 1000 -> +250."""
        pos = make_position("AAA", current=25.0, target=50.0)
        candidates = build_raw_candidates([pos], 1000.0, noise_threshold=10.0)
        assert len(candidates) == 1
        assert candidates[0].signed_amount == 250.0
        assert candidates[0].is_buy
        assert not candidates[0].is_sell

    @pytest.mark.schema
    def test_overweight_is_negative(self):
        pos = make_position("AAA", current=40.0, target=30.0)
        [c] = build_raw_candidates([pos], 2000.0, noise_threshold=10.0)
        assert c.signed_amount == -200.0
        assert c.is_sell
        assert c.gap_value == 200.0

    @pytest.mark.schema
    def test_below_noise_discarded(self):
        pos = make_position("AAA", current=10.0, target=10.5)
        # 0.5% of 1000 = 5 < 10
        assert build_raw_candidates([pos], 1000.0, noise_threshold=10.0) == []

    @pytest.mark.schema
    def test_exactly_noise_kept(self):
        pos = make_position("AAA", current=10.0, target=11.0)
        [c] = build_raw_candidates([pos], 1000.0, noise_threshold=10.0)
        assert c.signed_amount == 10.0

    @pytest.mark.schema
    def test_zero_gap_skipped_without_noise_threshold(self):
        positions = [
            make_position("AAA", current=20.0, target=20.0),
            make_position("BBB", current=20.0, target=20.0001),
            make_position("CCC", current=10.0, target=20.0),
        ]
        candidates = build_raw_candidates(positions, 1000.0, noise_threshold=0.0)
        assert [c.position.ticker for c in candidates] == ["CCC"]
        assert all(c.signed_amount != 0 for c in candidates)

    @pytest.mark.schema
    def test_missing_allocation_skipped(self):
        positions = [
            make_position("AAA", current=None, target=20.0),
            make_position("BBB", current=20.0, target=None),
        ]
        assert build_raw_candidates(positions, 1000.0, noise_threshold=10.0) == []

    @pytest.mark.schema
    def test_amount_rounded_to_cents(self):
        pos = make_position("AAA", current=10.0, target=13.333)
        [c] = build_raw_candidates([pos], 1000.0, noise_threshold=10.0)
        assert c.signed_amount == 33.33

    @pytest.mark.schema
    def test_sample_portfolio(self):
        snap = sample_snapshot()
        candidates = build_raw_candidates(snap.positions, snap.total_value, noise_threshold=10.0)
        amounts = {c.ticker: c.signed_amount for c in candidates}
        assert amounts == {"AAPL": -1000.0, "MSFT": -500.0, "VTI": 1000.0, "BND": 500.0}

    @pytest.mark.schema
    def test_preserves_input_order(self):
        positions = [
            make_position("AAA", current=10.0, target=12.0),
            make_position("BBB", current=10.0, target=30.0),
        ]
        candidates = build_raw_candidates(positions, 1000.0, noise_threshold=10.0)
        assert [c.ticker for c in candidates] == ["AAA", "BBB"]


class TestOrderByGap:

    @pytest.mark.schema
    def test_largest_magnitude_first(self):
        ordered = order_by_gap([
            make_candidate("A", 50.0),
            make_candidate("B", -300.0),
            make_candidate("C", 120.0),
        ])
        assert [c.ticker for c in ordered] == ["B", "C", "A"]

    @pytest.mark.schema
    def test_stable_for_ties(self):
        ordered = order_by_gap([make_candidate("A", 100.0), make_candidate("B", -100.0)])
        assert [c.ticker for c in ordered] == ["A", "B"]
