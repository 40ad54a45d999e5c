"""
Module: billing_engines.recurrence
Responsibility:
    Turn a recurrence rule into the dates it is due on.  Validates rules at
    creation time and computes the due occurrences for a materialization
    run (from the watermark up to ``as_of``).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import billing_kernel.domain and billing_kernel.exceptions.

Invariants enforced:
    - Occurrence k is ``add_periods(start_date, frequency, k)``, always
      anchored at the start date.  Clamped months do not drift:
      Jan 31 -> Feb 29 -> Mar 31.
    - Due occurrences are strictly increasing, strictly after the watermark,
      and never later than min(as_of, end_date).
    - A backlog larger than ``max_occurrences`` raises
      RecurrenceOverflowError before any date is produced.  The sequence is
      never silently truncated.

Failure modes:
    - InvalidRecurrenceRuleError for malformed rules.
    - RecurrenceOverflowError when the backlog exceeds the cap.
    - TypeError when ``as_of`` is not a ``datetime.date``.

Usage:
    generator = RecurrenceGenerator(max_occurrences=1000)
    for occurrence in generator.due_occurrences(rule, as_of=date(2024, 4, 20)):
        ...
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from billing_kernel.domain.periods import (
    add_periods,
    coerce_frequency,
    periods_between,
    require_date,
)
from billing_kernel.domain.types import Frequency, LedgerKind, RecurrenceRule
from billing_kernel.exceptions import (
    InvalidRecurrenceRuleError,
    RecurrenceOverflowError,
)

DEFAULT_MAX_OCCURRENCES = 1000


@dataclass(frozen=True)
class OccurrenceSequence:
    """
    Lazy, finite, restartable run of occurrences ``first_index..last_index``.

    Iterating twice yields the same dates; nothing is computed until
    iteration.
    """

    start_date: date
    frequency: Frequency
    first_index: int
    last_index: int  # inclusive; < first_index means empty
    rule_id: UUID | None = None

    def __iter__(self) -> Iterator[date]:
        for k in range(self.first_index, self.last_index + 1):
            yield add_periods(self.start_date, self.frequency, k)

    def __len__(self) -> int:
        return max(0, self.last_index - self.first_index + 1)

    def __bool__(self) -> bool:
        return len(self) > 0

    @property
    def first(self) -> date | None:
        if not self:
            return None
        return add_periods(self.start_date, self.frequency, self.first_index)

    @property
    def last(self) -> date | None:
        if not self:
            return None
        return add_periods(self.start_date, self.frequency, self.last_index)

    @classmethod
    def empty(cls, rule: RecurrenceRule) -> OccurrenceSequence:
        return cls(rule.start_date, coerce_frequency(rule.frequency), 0, -1, rule.rule_id)


def validate_rule(rule: RecurrenceRule) -> None:
    """
    Check a rule is well-formed.

    Raises:
        InvalidRecurrenceRuleError: With the first problem found.
    """
    rule_id = str(rule.rule_id) if rule.rule_id is not None else None

    def fail(reason: str) -> None:
        raise InvalidRecurrenceRuleError(reason, rule_id)

    try:
        coerce_frequency(rule.frequency)
    except InvalidRecurrenceRuleError as exc:
        fail(exc.reason)

    try:
        kind = LedgerKind(rule.kind)
    except ValueError:
        fail(f"unknown kind {rule.kind!r}")

    if isinstance(rule.amount, bool) or not isinstance(rule.amount, int):
        fail(f"amount must be an integer in minor units, got {type(rule.amount).__name__}")
    if rule.amount <= 0:
        fail(f"amount must be positive, got {rule.amount}")

    try:
        require_date(rule.start_date, "start_date")
        if rule.end_date is not None:
            require_date(rule.end_date, "end_date")
        if rule.watermark is not None:
            require_date(rule.watermark, "watermark")
    except TypeError as exc:
        fail(str(exc))

    if rule.end_date is not None and rule.end_date < rule.start_date:
        fail(f"end_date {rule.end_date} precedes start_date {rule.start_date}")

    if rule.watermark is not None:
        if rule.watermark < rule.start_date:
            fail(f"watermark {rule.watermark} precedes start_date {rule.start_date}")
        if rule.end_date is not None and rule.watermark > rule.end_date:
            fail(f"watermark {rule.watermark} is after end_date {rule.end_date}")

    if kind == LedgerKind.INVOICE and rule.counterparty_id is None:
        fail("invoice rules need a counterparty")
    if kind == LedgerKind.EXPENSE and rule.counterparty_id is not None:
        fail("expense rules cannot carry a counterparty")


def _first_index_on_or_after(start: date, frequency: Frequency, bound: date) -> int:
    """Smallest k >= 0 with add_periods(start, frequency, k) >= bound."""
    if bound <= start:
        return 0
    k = periods_between(start, bound, frequency)
    if add_periods(start, frequency, k) < bound:
        k += 1
    return k


class RecurrenceGenerator:
    """
    Computes occurrence dates for recurrence rules.

    Contract:
        Pure.  The same rule and ``as_of`` always produce the same sequence.
    """

    def __init__(self, max_occurrences: int = DEFAULT_MAX_OCCURRENCES):
        if max_occurrences < 1:
            raise ValueError("max_occurrences must be at least 1")
        self.max_occurrences = max_occurrences

    def due_occurrences(self, rule: RecurrenceRule, as_of: date) -> OccurrenceSequence:
        """
        Occurrences of ``rule`` due by ``as_of`` and not yet materialized.

        The first due occurrence is ``start_date`` when the watermark is
        unset, otherwise the first occurrence strictly after the watermark.
        Empty for ended rules and rules starting after ``as_of``.

        Raises:
            InvalidRecurrenceRuleError: The rule is malformed.
            RecurrenceOverflowError: More than ``max_occurrences`` are due.
            TypeError: ``as_of`` is not a date.
        """
        require_date(as_of, "as_of")
        validate_rule(rule)

        if not rule.is_active or rule.start_date > as_of:
            return OccurrenceSequence.empty(rule)

        frequency = coerce_frequency(rule.frequency)
        horizon = as_of if rule.end_date is None else min(as_of, rule.end_date)
        last_index = periods_between(rule.start_date, horizon, frequency)

        if rule.watermark is None:
            first_index = 0
        else:
            first_index = periods_between(rule.start_date, rule.watermark, frequency) + 1

        sequence = OccurrenceSequence(
            rule.start_date, frequency, first_index, last_index, rule.rule_id
        )
        if len(sequence) > self.max_occurrences:
            raise RecurrenceOverflowError(
                str(rule.rule_id), len(sequence), self.max_occurrences
            )
        return sequence

    def occurrences_between(
        self,
        rule: RecurrenceRule,
        window_start: date,
        window_end: date,
    ) -> OccurrenceSequence:
        """
        Every occurrence of ``rule`` inside ``[window_start, window_end]``,
        regardless of watermark or status.  Used for forward projection.
        """
        require_date(window_start, "window_start")
        require_date(window_end, "window_end")

        frequency = coerce_frequency(rule.frequency)
        lo = max(window_start, rule.start_date)
        hi = window_end if rule.end_date is None else min(window_end, rule.end_date)
        if hi < lo:
            return OccurrenceSequence.empty(rule)

        first_index = _first_index_on_or_after(rule.start_date, frequency, lo)
        last_index = periods_between(rule.start_date, hi, frequency)
        return OccurrenceSequence(
            rule.start_date, frequency, first_index, last_index, rule.rule_id
        )
