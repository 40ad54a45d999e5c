"""
Tests for the RecurrenceGenerator.

Covers:
- Due occurrences from a fresh rule and from a watermark
- End dates, ended rules and rules starting in the future
- Overflow cap
- Rule validation
- Window queries used by the projection
"""

from datetime import date, datetime
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from billing_engines.recurrence import (
    OccurrenceSequence,
    RecurrenceGenerator,
    validate_rule,
)
from billing_kernel.domain.types import Frequency, LedgerKind, RuleStatus
from billing_kernel.exceptions import InvalidRecurrenceRuleError, RecurrenceOverflowError
from conftest import make_rule


class TestDueOccurrences:
    """Tests for RecurrenceGenerator.due_occurrences."""

    def setup_method(self):
        self.generator = RecurrenceGenerator(max_occurrences=1000)

    def test_fresh_rule_catches_up_to_as_of(self):
        rule = make_rule(start_date=date(2024, 1, 15))

        due = list(self.generator.due_occurrences(rule, date(2024, 4, 20)))

        assert due == [
            date(2024, 1, 15),
            date(2024, 2, 15),
            date(2024, 3, 15),
            date(2024, 4, 15),
        ]

    def test_as_of_equal_to_start(self):
        start = date(2024, 1, 15)
        rule = make_rule(start_date=start)
        assert list(self.generator.due_occurrences(rule, start)) == [start]

    def test_resumes_after_watermark(self):
        rule = make_rule(start_date=date(2024, 1, 15), watermark=date(2024, 2, 15))

        due = list(self.generator.due_occurrences(rule, date(2024, 4, 20)))

        assert due == [date(2024, 3, 15), date(2024, 4, 15)]

    def test_nothing_due_when_watermark_current(self):
        rule = make_rule(start_date=date(2024, 1, 15), watermark=date(2024, 4, 15))
        assert not self.generator.due_occurrences(rule, date(2024, 4, 20))

    def test_end_date_caps_occurrences(self):
        rule = make_rule(start_date=date(2024, 1, 1), end_date=date(2024, 2, 1))

        due = list(self.generator.due_occurrences(rule, date(2024, 6, 1)))

        assert due == [date(2024, 1, 1), date(2024, 2, 1)]

    def test_start_after_as_of_is_empty(self):
        rule = make_rule(start_date=date(2024, 5, 1))
        assert len(self.generator.due_occurrences(rule, date(2024, 4, 20))) == 0

    def test_ended_rule_is_empty(self):
        rule = make_rule(status=RuleStatus.ENDED)
        assert not self.generator.due_occurrences(rule, date(2024, 4, 20))

    def test_month_end_start_clamps_without_drift(self):
        rule = make_rule(start_date=date(2024, 1, 31))

        due = list(self.generator.due_occurrences(rule, date(2024, 4, 30)))

        assert due == [
            date(2024, 1, 31),
            date(2024, 2, 29),
            date(2024, 3, 31),
            date(2024, 4, 30),
        ]

    def test_quarterly(self):
        rule = make_rule(frequency=Frequency.QUARTERLY, start_date=date(2023, 11, 30))

        due = list(self.generator.due_occurrences(rule, date(2024, 6, 1)))

        assert due == [date(2023, 11, 30), date(2024, 2, 29), date(2024, 5, 30)]

    def test_sequence_is_restartable(self):
        rule = make_rule(start_date=date(2024, 1, 15))
        sequence = self.generator.due_occurrences(rule, date(2024, 4, 20))

        assert list(sequence) == list(sequence)
        assert sequence.first == date(2024, 1, 15)
        assert sequence.last == date(2024, 4, 15)

    def test_datetime_as_of_rejected(self):
        with pytest.raises(TypeError):
            self.generator.due_occurrences(make_rule(), datetime(2024, 4, 20))

    def test_invalid_rule_rejected(self):
        rule = make_rule(amount=0)
        with pytest.raises(InvalidRecurrenceRuleError):
            self.generator.due_occurrences(rule, date(2024, 4, 20))

    @settings(max_examples=200)
    @given(
        start=st.dates(min_value=date(2000, 1, 1), max_value=date(2030, 12, 31)),
        span=st.integers(min_value=0, max_value=3000),
        frequency=st.sampled_from(list(Frequency)),
    )
    def test_strictly_increasing_and_bounded(self, start, span, frequency):
        from datetime import timedelta

        as_of = start + timedelta(days=span)
        rule = make_rule(start_date=start, frequency=frequency)

        due = list(self.generator.due_occurrences(rule, as_of))

        assert due[0] == start
        assert all(a < b for a, b in zip(due, due[1:]))
        assert all(d <= as_of for d in due)


class TestOverflow:
    def test_backlog_over_cap_raises(self):
        generator = RecurrenceGenerator(max_occurrences=3)
        rule = make_rule(start_date=date(2024, 1, 15))

        with pytest.raises(RecurrenceOverflowError) as exc_info:
            generator.due_occurrences(rule, date(2024, 4, 20))

        assert exc_info.value.due_count == 4
        assert exc_info.value.max_occurrences == 3
        assert exc_info.value.code == "RECURRENCE_OVERFLOW"

    def test_backlog_at_cap_is_fine(self):
        generator = RecurrenceGenerator(max_occurrences=4)
        rule = make_rule(start_date=date(2024, 1, 15))
        assert len(generator.due_occurrences(rule, date(2024, 4, 20))) == 4

    def test_cap_must_be_positive(self):
        with pytest.raises(ValueError):
            RecurrenceGenerator(max_occurrences=0)


class TestValidateRule:
    @pytest.mark.parametrize(
        "overrides, reason",
        [
            ({"frequency": "weekly"}, "frequency"),
            ({"amount": -5}, "positive"),
            ({"amount": 10.5}, "integer"),
            ({"amount": True}, "integer"),
            ({"end_date": date(2024, 1, 1)}, "precedes start_date"),
            ({"watermark": date(2024, 1, 1)}, "precedes start_date"),
            ({"counterparty_id": None}, "counterparty"),
            ({"kind": LedgerKind.EXPENSE}, "cannot carry a counterparty"),
        ],
    )
    def test_rejects(self, overrides, reason):
        rule = make_rule(start_date=date(2024, 1, 15), **overrides)
        with pytest.raises(InvalidRecurrenceRuleError, match=reason):
            validate_rule(rule)

    def test_watermark_after_end_rejected(self):
        rule = make_rule(
            start_date=date(2024, 1, 15),
            end_date=date(2024, 2, 15),
            watermark=date(2024, 3, 15),
        )
        with pytest.raises(InvalidRecurrenceRuleError, match="after end_date"):
            validate_rule(rule)

    def test_valid_expense_rule(self):
        validate_rule(make_rule(kind=LedgerKind.EXPENSE, counterparty_id=None))

    def test_error_carries_rule_id(self):
        rule = make_rule(amount=0)
        with pytest.raises(InvalidRecurrenceRuleError) as exc_info:
            validate_rule(rule)
        assert exc_info.value.rule_id == str(rule.rule_id)


class TestOccurrencesBetween:
    def setup_method(self):
        self.generator = RecurrenceGenerator()

    def test_window_inside_rule(self):
        rule = make_rule(start_date=date(2024, 1, 15))

        window = self.generator.occurrences_between(rule, date(2024, 5, 1), date(2024, 5, 31))

        assert list(window) == [date(2024, 5, 15)]

    def test_window_before_start(self):
        rule = make_rule(start_date=date(2024, 6, 15))
        assert not self.generator.occurrences_between(rule, date(2024, 5, 1), date(2024, 5, 31))

    def test_window_after_end(self):
        rule = make_rule(start_date=date(2024, 1, 15), end_date=date(2024, 3, 15))
        assert not self.generator.occurrences_between(rule, date(2024, 4, 1), date(2024, 4, 30))

    def test_ignores_watermark(self):
        rule = make_rule(start_date=date(2024, 1, 15), watermark=date(2024, 4, 15))

        window = self.generator.occurrences_between(rule, date(2024, 1, 1), date(2024, 3, 31))

        assert len(window) == 3

    def test_quarterly_month_without_occurrence(self):
        rule = make_rule(frequency=Frequency.QUARTERLY, start_date=date(2024, 1, 15))
        assert not self.generator.occurrences_between(rule, date(2024, 2, 1), date(2024, 2, 29))


class TestOccurrenceSequence:
    def test_empty(self):
        rule = make_rule()
        sequence = OccurrenceSequence.empty(rule)
        assert len(sequence) == 0
        assert list(sequence) == []
        assert sequence.first is None
        assert sequence.last is None
        assert sequence.rule_id == rule.rule_id

    def test_len_without_iteration(self):
        sequence = OccurrenceSequence(date(2024, 1, 1), Frequency.MONTHLY, 2, 11, uuid4())
        assert len(sequence) == 10
        assert sequence.first == date(2024, 3, 1)
