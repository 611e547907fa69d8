"""
Advisor validation funnel: untrusted advisor actions -> sanitized actions.
"""

from __future__ import annotations

import math

import pytest

from timed_rebalancing.schemas.rebalancing_output import ActionType
from timed_rebalancing.tools.advisor_validation import sanitize_advisor_actions

KNOWN = {"AAPL", "MSFT", "VTI", "BND"}


def _sanitize(raw, original_sell_total=1500.0, cash=0.0):
    return sanitize_advisor_actions(
        raw, known_tickers=KNOWN, original_sell_total=original_sell_total, cash_available=cash,
    )


class TestDropRules:

    @pytest.mark.schema
    def test_unknown_ticker_dropped(self):
        result = _sanitize([
            {"type": "SELL", "ticker": "TSLA", "amount": 100},
            {"type": "SELL", "ticker": "AAPL", "amount": 100},
        ])
        assert [a.ticker for a in result] == ["AAPL"]

    @pytest.mark.schema
    def test_ticker_canonicalized_case_insensitive(self):
        [a] = _sanitize([{"type": "SELL", "ticker": " aapl ", "amount": 100}])
        assert a.ticker == "AAPL"

    @pytest.mark.schema
    @pytest.mark.parametrize("bad_type", ["HOLD", "buy", "Sell", None, 1, ""])
    def test_type_must_be_exact(self, bad_type):
        assert _sanitize([{"type": bad_type, "ticker": "AAPL", "amount": 100}]) == []

    @pytest.mark.schema
    @pytest.mark.parametrize("bad_amount", [0, -50, "abc", None, True, math.inf, math.nan, 0.001])
    def test_amount_must_be_positive(self, bad_amount):
        assert _sanitize([{"type": "SELL", "ticker": "AAPL", "amount": bad_amount}]) == []

    @pytest.mark.schema
    def test_numeric_string_amount_accepted(self):
        [a] = _sanitize([{"type": "SELL", "ticker": "AAPL", "amount": "123.456"}])
        assert a.amount == 123.46

    @pytest.mark.schema
    def test_non_object_items_dropped(self):
        result = _sanitize(["SELL AAPL 100", 42, None, {"type": "SELL", "ticker": "MSFT", "amount": 10}])
        assert [a.ticker for a in result] == ["MSFT"]


class TestConfidence:

    @pytest.mark.schema
    @pytest.mark.parametrize("raw,expected", [
        (1.7, 1.0),
        (-0.4, 0.0),
        (0.66, 0.66),
        (None, 0.5),
        ("high", 0.5),
    ])
    def test_clamped_or_defaulted(self, raw, expected):
        item = {"type": "SELL", "ticker": "AAPL", "amount": 100}
        if raw is not None:
            item["confidence"] = raw
        [a] = _sanitize([item])
        assert a.confidence == pytest.approx(expected)


class TestAggregateScaling:

    @pytest.mark.schema
    def test_sells_scaled_to_original_total(self):
        result = _sanitize([
            {"type": "SELL", "ticker": "AAPL", "amount": 2000},
            {"type": "SELL", "ticker": "MSFT", "amount": 1000},
        ], original_sell_total=1500.0)
        assert [a.amount for a in result] == [1000.0, 500.0]

    @pytest.mark.schema
    def test_buys_scaled_to_sells_plus_cash(self):
        result = _sanitize([
            {"type": "SELL", "ticker": "AAPL", "amount": 500},
            {"type": "BUY", "ticker": "VTI", "amount": 900},
            {"type": "BUY", "ticker": "BND", "amount": 300},
        ], original_sell_total=1500.0, cash=100.0)
        amounts = {a.ticker: a.amount for a in result}
        # funds = 500 + 100 = 600; demand 1200 -> factor 0.5
        assert amounts == {"AAPL": 500.0, "VTI": 450.0, "BND": 150.0}

    @pytest.mark.schema
    def test_buys_use_post_scaling_sells(self):
        result = _sanitize([
            {"type": "SELL", "ticker": "AAPL", "amount": 3000},
            {"type": "BUY", "ticker": "VTI", "amount": 3000},
        ], original_sell_total=1500.0, cash=0.0)
        amounts = {a.ticker: a.amount for a in result}
        assert amounts == {"AAPL": 1500.0, "VTI": 1500.0}

    @pytest.mark.schema
    def test_buy_only_without_cash_drops_buys(self):
        result = _sanitize([{"type": "BUY", "ticker": "VTI", "amount": 100}], original_sell_total=0.0)
        assert result == []

    @pytest.mark.schema
    def test_funding_invariant_after_rounding(self):
        result = _sanitize([
            {"type": "SELL", "ticker": "AAPL", "amount": 333.333},
            {"type": "SELL", "ticker": "MSFT", "amount": 333.333},
            {"type": "BUY", "ticker": "VTI", "amount": 777.777},
            {"type": "BUY", "ticker": "BND", "amount": 111.111},
        ], original_sell_total=500.0, cash=12.34)
        sells = sum(a.amount for a in result if a.action_type == ActionType.SELL)
        buys = sum(a.amount for a in result if a.action_type == ActionType.BUY)
        assert sells <= 500.0 + 1e-9
        assert buys <= sells + 12.34 + 1e-9
        for a in result:
            assert a.amount > 0
            assert round(a.amount, 2) == a.amount

    @pytest.mark.schema
    def test_advisor_order_preserved(self):
        result = _sanitize([
            {"type": "BUY", "ticker": "BND", "amount": 10, "reason": "cheap"},
            {"type": "SELL", "ticker": "AAPL", "amount": 100},
        ])
        assert [a.ticker for a in result] == ["BND", "AAPL"]
        assert result[0].reason == "cheap"
        assert result[1].reason == ""

    @pytest.mark.schema
    def test_empty_input(self):
        assert _sanitize([]) == []
