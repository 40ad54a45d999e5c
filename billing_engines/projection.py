"""
Module: billing_engines.projection
Responsibility:
    Cash-flow projection: one point per month over a window around the
    current month.  Past months (including the current one) report actual
    paid amounts from the ledger; future months report estimates from active
    recurring-invoice rules and the trailing average of paid expenses.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Operates on an explicit ``ProjectionInput`` snapshot; the service layer
    loads it through the repository.

Invariants enforced:
    - Historical months are never estimated: income and expense are exact
      sums of ``paid`` entries dated in that month.
    - The current month is historical (is_current=True, is_projected=False).
    - Projected income for month +n is the sum of amounts of active invoice
      rules with an occurrence in that month, times (1 + growth)^n.
    - Projected expense for month +n is the mean monthly paid expense over
      the lookback window ending with the current month, times
      (1 + inflation)^n.
    - Estimates are rounded half-even to whole minor units.

Failure modes:
    - ValueError for negative window sizes.
    - TenantIsolationError when the snapshot mixes organizations.

Usage:
    engine = ProjectionEngine(BillingConfig())
    points = engine.project(inputs=ProjectionInput(...))
    summary = summarize(points)
"""

from __future__ import annotations

import calendar
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_EVEN, Decimal
from uuid import UUID

from billing_kernel.config import BillingConfig
from billing_kernel.domain.periods import add_months, month_start, require_date
from billing_kernel.domain.types import (
    EntryStatus,
    LedgerEntry,
    LedgerKind,
    ProjectionPoint,
    RecurrenceRule,
)
from billing_kernel.exceptions import TenantIsolationError
from billing_kernel.logging_config import get_logger
from billing_engines.recurrence import RecurrenceGenerator
from billing_engines.tracer import traced_engine

logger = get_logger("engines.projection")

_ONE = Decimal("1")


def month_end(period: date) -> date:
    """Last day of the month starting at ``period``."""
    return period.replace(day=calendar.monthrange(period.year, period.month)[1])


def to_minor_units(value: Decimal) -> int:
    """Round half-even to a whole number of minor units."""
    return int(value.quantize(_ONE, rounding=ROUND_HALF_EVEN))


@dataclass(frozen=True)
class ProjectionInput:
    """
    Snapshot the projection is computed from.

    ``entries`` must cover every month of the historical window and of the
    expense lookback window; entries that are not ``paid`` are ignored.
    ``rules`` are the organization's recurrence rules; only active invoice
    rules contribute.
    """

    organization_id: UUID
    as_of: date
    months_back: int
    months_forward: int
    entries: tuple[LedgerEntry, ...] = ()
    rules: tuple[RecurrenceRule, ...] = ()

    def __post_init__(self) -> None:
        require_date(self.as_of, "as_of")
        if self.months_back < 0 or self.months_forward < 0:
            raise ValueError("months_back and months_forward cannot be negative")


@dataclass(frozen=True)
class ProjectionSummary:
    """Headline figures derived from a projection."""

    current_net: int
    next_month_net: int | None
    # Mean relative month-over-month change of net across historical months
    historical_trend: Decimal
    projected_income_total: int
    projected_expense_total: int

    @property
    def projected_net_total(self) -> int:
        return self.projected_income_total - self.projected_expense_total


class ProjectionEngine:
    """
    Computes ProjectionPoints from a snapshot.

    Contract:
        Pure.  The same snapshot and configuration always produce the same
        points.
    """

    def __init__(
        self,
        config: BillingConfig | None = None,
        generator: RecurrenceGenerator | None = None,
    ):
        self.config = config or BillingConfig()
        self.generator = generator or RecurrenceGenerator(
            max_occurrences=self.config.max_occurrences_per_run
        )

    @traced_engine("projection", "1.0", fingerprint_fields=("inputs",))
    def project(self, inputs: ProjectionInput) -> tuple[ProjectionPoint, ...]:
        """One point per month in [current - months_back, current + months_forward]."""
        for entry in inputs.entries:
            if entry.organization_id != inputs.organization_id:
                raise TenantIsolationError(
                    "LedgerEntry", str(entry.entry_id), str(inputs.organization_id)
                )
        for rule in inputs.rules:
            if rule.organization_id != inputs.organization_id:
                raise TenantIsolationError(
                    "RecurrenceRule", str(rule.rule_id), str(inputs.organization_id)
                )

        current = month_start(inputs.as_of)
        paid = self._paid_totals_by_month(inputs.entries)
        expense_baseline = self.trailing_expense_average(paid, current)
        invoice_rules = [
            r for r in inputs.rules if r.is_active and r.kind == LedgerKind.INVOICE
        ]

        growth = _ONE + self.config.growth_rate
        inflation = _ONE + self.config.inflation_rate

        points: list[ProjectionPoint] = []
        for offset in range(-inputs.months_back, inputs.months_forward + 1):
            period = add_months(current, offset)
            label = f"{period.year:04d}-{period.month:02d}"

            if offset <= 0:
                income, expense = paid.get(period, (0, 0))
                points.append(ProjectionPoint(
                    period=period,
                    label=label,
                    is_historical=True,
                    is_current=offset == 0,
                    is_projected=False,
                    income=income,
                    expense=expense,
                ))
                continue

            recurring = self._recurring_income(invoice_rules, period)
            points.append(ProjectionPoint(
                period=period,
                label=label,
                is_historical=False,
                is_current=False,
                is_projected=True,
                income=to_minor_units(Decimal(recurring) * growth ** offset),
                expense=to_minor_units(expense_baseline * inflation ** offset),
            ))

        logger.debug(
            "projection_computed",
            extra={
                "organization_id": str(inputs.organization_id),
                "as_of": inputs.as_of.isoformat(),
                "point_count": len(points),
                "expense_baseline": str(expense_baseline),
            },
        )
        return tuple(points)

    def trailing_expense_average(
        self,
        paid_by_month: dict[date, tuple[int, int]],
        current: date,
    ) -> Decimal:
        """Mean monthly paid expense over the lookback window ending at ``current``."""
        window = self.config.expense_lookback_months
        total = sum(
            paid_by_month.get(add_months(current, -i), (0, 0))[1]
            for i in range(window)
        )
        return Decimal(total) / Decimal(window)

    @staticmethod
    def _paid_totals_by_month(
        entries: tuple[LedgerEntry, ...],
    ) -> dict[date, tuple[int, int]]:
        income: dict[date, int] = defaultdict(int)
        expense: dict[date, int] = defaultdict(int)
        for entry in entries:
            if entry.status != EntryStatus.PAID:
                continue
            period = month_start(entry.entry_date)
            if entry.kind == LedgerKind.INVOICE:
                income[period] += entry.amount
            else:
                expense[period] += entry.amount
        return {
            period: (income.get(period, 0), expense.get(period, 0))
            for period in set(income) | set(expense)
        }

    def _recurring_income(self, rules: list[RecurrenceRule], period: date) -> int:
        end = month_end(period)
        return sum(
            rule.amount * len(self.generator.occurrences_between(rule, period, end))
            for rule in rules
        )


def summarize(points: tuple[ProjectionPoint, ...]) -> ProjectionSummary:
    """Headline figures for a projection (current month, next month, trend)."""
    current = next((p for p in points if p.is_current), None)
    if current is None:
        raise ValueError("projection has no current month")

    projected = [p for p in points if p.is_projected]
    historical = [p for p in points if p.is_historical]

    changes = [
        Decimal(b.net - a.net) / Decimal(abs(a.net) or 1)
        for a, b in zip(historical, historical[1:])
    ]
    trend = sum(changes, Decimal(0)) / len(changes) if changes else Decimal(0)

    return ProjectionSummary(
        current_net=current.net,
        next_month_net=projected[0].net if projected else None,
        historical_trend=trend,
        projected_income_total=sum(p.income for p in projected),
        projected_expense_total=sum(p.expense for p in projected),
    )
