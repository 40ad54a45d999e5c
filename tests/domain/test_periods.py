"""
Tests for billing period arithmetic (billing_kernel.domain.periods).

Covers:
- Month-end clamping and leap years
- Anchored stepping (no drift after a clamped month)
- periods_between floor semantics and its inverse relation to add_periods
"""

from datetime import date, datetime, timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from billing_kernel.domain.periods import (
    add_months,
    add_periods,
    coerce_frequency,
    month_start,
    months_apart,
    periods_between,
    require_date,
)
from billing_kernel.domain.types import Frequency
from billing_kernel.exceptions import InvalidRecurrenceRuleError

dates = st.dates(min_value=date(1900, 1, 1), max_value=date(2200, 12, 31))
frequencies = st.sampled_from(list(Frequency))


class TestAddPeriods:
    """Tests for add_periods."""

    def test_jan_31_plus_one_month_non_leap(self):
        assert add_periods(date(2023, 1, 31), Frequency.MONTHLY, 1) == date(2023, 2, 28)

    def test_jan_31_plus_one_month_leap(self):
        assert add_periods(date(2024, 1, 31), Frequency.MONTHLY, 1) == date(2024, 2, 29)

    def test_anchored_stepping_does_not_drift(self):
        """Occurrence k is computed from the start, not from occurrence k-1."""
        start = date(2024, 1, 31)
        assert add_periods(start, Frequency.MONTHLY, 2) == date(2024, 3, 31)
        assert add_periods(start, Frequency.MONTHLY, 3) == date(2024, 4, 30)

    def test_quarterly(self):
        assert add_periods(date(2024, 11, 30), Frequency.QUARTERLY, 1) == date(2025, 2, 28)

    def test_yearly_feb_29(self):
        assert add_periods(date(2024, 2, 29), Frequency.YEARLY, 1) == date(2025, 2, 28)
        assert add_periods(date(2024, 2, 29), Frequency.YEARLY, 4) == date(2028, 2, 29)

    def test_zero_and_negative(self):
        start = date(2024, 3, 31)
        assert add_periods(start, Frequency.MONTHLY, 0) == start
        assert add_periods(start, Frequency.MONTHLY, -1) == date(2024, 2, 29)

    def test_accepts_frequency_string(self):
        assert add_periods(date(2024, 1, 15), "monthly", 2) == date(2024, 3, 15)

    def test_unknown_frequency_rejected(self):
        with pytest.raises(InvalidRecurrenceRuleError):
            add_periods(date(2024, 1, 15), "weekly", 1)

    def test_datetime_rejected(self):
        with pytest.raises(TypeError):
            add_periods(datetime(2024, 1, 15), Frequency.MONTHLY, 1)

    def test_out_of_range(self):
        with pytest.raises(OverflowError):
            add_months(date(9999, 12, 1), 1)


class TestPeriodsBetween:
    """Tests for periods_between."""

    def test_same_day_is_zero(self):
        assert periods_between(date(2024, 1, 15), date(2024, 1, 15), Frequency.MONTHLY) == 0

    def test_floor_rounding(self):
        a = date(2024, 1, 15)
        assert periods_between(a, date(2024, 2, 14), Frequency.MONTHLY) == 0
        assert periods_between(a, date(2024, 2, 15), Frequency.MONTHLY) == 1
        assert periods_between(a, date(2024, 4, 20), Frequency.MONTHLY) == 3

    def test_clamped_month_end(self):
        assert periods_between(date(2024, 1, 31), date(2024, 2, 29), Frequency.MONTHLY) == 1
        assert periods_between(date(2024, 1, 31), date(2024, 3, 30), Frequency.MONTHLY) == 1

    def test_quarterly_and_yearly(self):
        a = date(2024, 1, 1)
        assert periods_between(a, date(2024, 12, 31), Frequency.QUARTERLY) == 3
        assert periods_between(a, date(2024, 12, 31), Frequency.YEARLY) == 0
        assert periods_between(a, date(2025, 1, 1), Frequency.YEARLY) == 1

    def test_end_before_start_is_zero(self):
        assert periods_between(date(2024, 5, 1), date(2024, 1, 1), Frequency.MONTHLY) == 0

    @settings(max_examples=300)
    @given(a=dates, b=dates, frequency=frequencies)
    def test_is_largest_k_not_past_b(self, a, b, frequency):
        k = periods_between(a, b, frequency)
        if b < a:
            assert k == 0
            return
        assert add_periods(a, frequency, k) <= b
        assert add_periods(a, frequency, k + 1) > b

    @settings(max_examples=300)
    @given(a=dates, n=st.integers(min_value=0, max_value=600), frequency=frequencies)
    def test_inverse_of_add_periods(self, a, n, frequency):
        assert periods_between(a, add_periods(a, frequency, n), frequency) == n

    @given(a=dates, n=st.integers(min_value=0, max_value=120), frequency=frequencies)
    def test_occurrences_strictly_increasing(self, a, n, frequency):
        assert add_periods(a, frequency, n) < add_periods(a, frequency, n + 1)


class TestHelpers:
    def test_month_start(self):
        assert month_start(date(2024, 2, 29)) == date(2024, 2, 1)

    def test_months_apart(self):
        assert months_apart(date(2023, 11, 30), date(2024, 2, 1)) == 3
        assert months_apart(date(2024, 2, 1), date(2023, 11, 30)) == -3

    def test_coerce_frequency(self):
        assert coerce_frequency("yearly") is Frequency.YEARLY
        assert coerce_frequency(Frequency.QUARTERLY) is Frequency.QUARTERLY

    def test_require_date(self):
        today = date(2024, 1, 1)
        assert require_date(today, "x") is today
        with pytest.raises(TypeError, match="x must be a datetime.date"):
            require_date("2024-01-01", "x")
        with pytest.raises(TypeError):
            require_date(datetime(2024, 1, 1) + timedelta(hours=1), "x")
