"""
Tests for the magnitude policy (threshold_engines.magnitude).

Example-based boundary tests plus Hypothesis properties over Decimal
inputs.
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from threshold_engines.magnitude import (
    MAGNITUDE_LIMIT_PERCENT,
    evaluate_change,
    magnitude_percent,
    requires_approval,
)
from threshold_kernel.exceptions import InvalidAmountError

amounts = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("1000000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


class TestMagnitudeExamples:
    def test_twenty_percent_increase(self):
        assert magnitude_percent(Decimal("10000"), Decimal("12000")) == Decimal("20")

    def test_three_hundred_percent_increase(self):
        assert magnitude_percent(Decimal("5000"), Decimal("20000")) == Decimal("300")

    def test_decrease_is_absolute(self):
        assert magnitude_percent(Decimal("10000"), Decimal("7000")) == Decimal("30")

    def test_zero_baseline_is_one_hundred(self):
        assert magnitude_percent(Decimal("0"), Decimal("500")) == Decimal("100")

    def test_zero_to_zero_is_one_hundred(self):
        assert magnitude_percent(Decimal("0"), Decimal("0")) == Decimal("100")

    def test_no_change_is_zero(self):
        assert magnitude_percent(Decimal("2500"), Decimal("2500")) == Decimal("0")


class TestApprovalBoundary:
    def test_limit_is_twenty_five_percent(self):
        assert MAGNITUDE_LIMIT_PERCENT == Decimal("25")

    def test_exactly_twenty_five_requires_approval(self):
        assert requires_approval(Decimal("10000"), Decimal("12500"))
        assert requires_approval(Decimal("10000"), Decimal("7500"))

    def test_just_below_limit_is_auto(self):
        assert not requires_approval(Decimal("10000"), Decimal("12499.99"))
        assert not requires_approval(Decimal("10000"), Decimal("7500.01"))

    def test_zero_baseline_always_requires_approval(self):
        assert requires_approval(Decimal("0"), Decimal("1"))


class TestEvaluateChange:
    def test_evaluation_fields(self):
        evaluation = evaluate_change(Decimal("5000"), Decimal("20000"))
        assert evaluation.current == Decimal("5000")
        assert evaluation.proposed == Decimal("20000")
        assert evaluation.magnitude_percent == Decimal("300")
        assert evaluation.requires_approval
        assert evaluation.is_increase
        assert not evaluation.is_no_op

    def test_accepts_strings(self):
        evaluation = evaluate_change("10000", "12000")
        assert not evaluation.requires_approval

    @pytest.mark.parametrize("current,proposed", [
        (Decimal("-1"), Decimal("10")),
        (Decimal("10"), Decimal("-1")),
        (Decimal("NaN"), Decimal("10")),
        (Decimal("10"), Decimal("Infinity")),
    ])
    def test_invalid_inputs_rejected(self, current, proposed):
        with pytest.raises(InvalidAmountError):
            evaluate_change(current, proposed)

    def test_emits_engine_trace(self, captured_logs):
        evaluate_change(Decimal("10000"), Decimal("12000"))
        traces = [r for r in captured_logs() if r["message"] == "THRESHOLD_ENGINE_TRACE"]
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "magnitude"
        assert len(traces[0]["input_fingerprint"]) == 16


class TestMagnitudeProperties:
    @given(current=amounts, proposed=amounts)
    @settings(max_examples=200, deadline=None)
    def test_magnitude_is_non_negative(self, current, proposed):
        assert magnitude_percent(current, proposed) >= 0

    @given(current=amounts, proposed=amounts)
    @settings(max_examples=200, deadline=None)
    def test_decision_matches_exact_inequality(self, current, proposed):
        expected = abs(proposed - current) * 100 >= current * MAGNITUDE_LIMIT_PERCENT
        assert requires_approval(current, proposed) == expected

    @given(current=amounts, delta=amounts)
    @settings(max_examples=200, deadline=None)
    def test_increase_and_decrease_are_symmetric(self, current, delta):
        up = magnitude_percent(current, current + delta)
        down_target = current - delta
        if down_target < 0:
            return
        assert magnitude_percent(current, down_target) == up

    @given(proposed=amounts)
    @settings(max_examples=100, deadline=None)
    def test_zero_baseline_property(self, proposed):
        evaluation = evaluate_change(Decimal("0"), proposed)
        assert evaluation.magnitude_percent == Decimal("100")
        assert evaluation.requires_approval

    @given(current=amounts)
    @settings(max_examples=100, deadline=None)
    def test_no_op_never_requires_approval(self, current):
        evaluation = evaluate_change(current, current)
        assert evaluation.is_no_op
        assert not evaluation.requires_approval
