"""
Tests for the ProjectionEngine.

Covers:
- Historical months report exact paid totals (current month included)
- Projected income from active invoice rules with growth compounding
- Projected expense from the trailing paid-expense average with inflation
- Half-even rounding
- Summary figures
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_engines.projection import (
    ProjectionEngine,
    ProjectionInput,
    month_end,
    summarize,
    to_minor_units,
)
from billing_kernel.config import BillingConfig
from billing_kernel.domain.types import EntryStatus, Frequency, LedgerKind, RuleStatus
from billing_kernel.exceptions import TenantIsolationError
from conftest import make_entry, make_rule

ORG = uuid4()
AS_OF = date(2024, 4, 20)


def _paid(kind, amount, entry_date):
    return make_entry(
        organization_id=ORG,
        kind=kind,
        amount=amount,
        entry_date=entry_date,
        due_date=entry_date,
        status=EntryStatus.PAID,
        counterparty_id=uuid4() if kind == LedgerKind.INVOICE else None,
    )


@pytest.fixture
def scenario() -> ProjectionInput:
    entries = (
        _paid(LedgerKind.INVOICE, 20_000, date(2024, 2, 1)),
        _paid(LedgerKind.EXPENSE, 8_000, date(2024, 3, 10)),
        _paid(LedgerKind.INVOICE, 30_000, date(2024, 4, 5)),
        _paid(LedgerKind.EXPENSE, 10_000, date(2024, 4, 10)),
        # Not paid: never counted
        make_entry(organization_id=ORG, amount=99_999, entry_date=date(2024, 4, 1)),
    )
    rules = (
        make_rule(organization_id=ORG, amount=10_000, start_date=date(2024, 1, 15)),
        make_rule(
            organization_id=ORG,
            amount=5_000,
            frequency=Frequency.QUARTERLY,
            start_date=date(2024, 3, 1),
        ),
        # Ignored: ended, and expense rules
        make_rule(organization_id=ORG, amount=7_000, status=RuleStatus.ENDED),
        make_rule(
            organization_id=ORG,
            kind=LedgerKind.EXPENSE,
            counterparty_id=None,
            amount=4_000,
        ),
    )
    return ProjectionInput(
        organization_id=ORG,
        as_of=AS_OF,
        months_back=2,
        months_forward=2,
        entries=entries,
        rules=rules,
    )


class TestProjectionEngine:
    """Tests for ProjectionEngine.project."""

    def setup_method(self):
        self.engine = ProjectionEngine(BillingConfig())

    def test_one_point_per_month(self, scenario):
        points = self.engine.project(inputs=scenario)

        assert [p.label for p in points] == [
            "2024-02", "2024-03", "2024-04", "2024-05", "2024-06",
        ]
        assert [p.period for p in points][2] == date(2024, 4, 1)

    def test_current_month_is_historical(self, scenario):
        points = self.engine.project(inputs=scenario)
        current = [p for p in points if p.is_current]

        assert len(current) == 1
        assert current[0].is_historical
        assert not current[0].is_projected
        assert (current[0].income, current[0].expense) == (30_000, 10_000)

    def test_historical_months_sum_paid_entries(self, scenario):
        feb, mar = self.engine.project(inputs=scenario)[:2]

        assert (feb.income, feb.expense) == (20_000, 0)
        assert (mar.income, mar.expense) == (0, 8_000)
        assert feb.is_historical and not feb.is_current

    def test_projected_income_compounds_growth(self, scenario):
        may, jun = self.engine.project(inputs=scenario)[3:]

        assert may.is_projected
        assert may.income == 10_500  # 10000 * 1.05
        # (10000 monthly + 5000 quarterly) * 1.05^2 = 16537.5 -> half-even
        assert jun.income == 16_538

    def test_projected_expense_uses_trailing_average(self, scenario):
        may, jun = self.engine.project(inputs=scenario)[3:]

        # (8000 + 10000) / 6 months = 3000
        assert may.expense == 3_060  # 3000 * 1.02
        assert jun.expense == 3_121  # 3000 * 1.0404

    def test_zero_rates(self, scenario):
        engine = ProjectionEngine(
            BillingConfig(growth_rate_percent=Decimal("0"), inflation_rate_percent=Decimal("0"))
        )
        may = engine.project(inputs=scenario)[3]
        assert (may.income, may.expense) == (10_000, 3_000)

    def test_shorter_lookback(self, scenario):
        engine = ProjectionEngine(BillingConfig(expense_lookback_months=2))
        may = engine.project(inputs=scenario)[3]
        # (8000 + 10000) / 2 = 9000 * 1.02
        assert may.expense == 9_180

    def test_empty_snapshot(self):
        inputs = ProjectionInput(organization_id=ORG, as_of=AS_OF, months_back=1, months_forward=1)
        points = self.engine.project(inputs=inputs)
        assert [(p.income, p.expense) for p in points] == [(0, 0), (0, 0), (0, 0)]

    def test_deterministic(self, scenario):
        assert self.engine.project(inputs=scenario) == self.engine.project(inputs=scenario)

    def test_foreign_entry_rejected(self, scenario):
        foreign = make_entry(organization_id=uuid4(), status=EntryStatus.PAID)
        inputs = ProjectionInput(
            organization_id=ORG,
            as_of=AS_OF,
            months_back=0,
            months_forward=0,
            entries=scenario.entries + (foreign,),
        )
        with pytest.raises(TenantIsolationError):
            self.engine.project(inputs=inputs)

    def test_foreign_rule_rejected(self):
        inputs = ProjectionInput(
            organization_id=ORG,
            as_of=AS_OF,
            months_back=0,
            months_forward=1,
            rules=(make_rule(),),
        )
        with pytest.raises(TenantIsolationError):
            self.engine.project(inputs=inputs)

    def test_negative_window_rejected(self):
        with pytest.raises(ValueError):
            ProjectionInput(organization_id=ORG, as_of=AS_OF, months_back=-1, months_forward=0)

    def test_emits_engine_trace(self, scenario, captured_logs):
        self.engine.project(inputs=scenario)

        traces = [r for r in captured_logs() if r["message"] == "BILLING_ENGINE_TRACE"]
        assert traces[-1]["engine_name"] == "projection"
        assert len(traces[-1]["input_fingerprint"]) == 16


class TestSummarize:
    def test_summary_figures(self, scenario):
        summary = summarize(ProjectionEngine().project(inputs=scenario))

        assert summary.current_net == 20_000
        assert summary.next_month_net == 10_500 - 3_060
        # nets: 20000, -8000, 20000 -> changes -1.4 and 3.5
        assert summary.historical_trend == Decimal("1.05")
        assert summary.projected_income_total == 10_500 + 16_538
        assert summary.projected_expense_total == 3_060 + 3_121
        assert summary.projected_net_total == (10_500 + 16_538) - (3_060 + 3_121)

    def test_no_forward_months(self):
        inputs = ProjectionInput(organization_id=ORG, as_of=AS_OF, months_back=0, months_forward=0)
        summary = summarize(ProjectionEngine().project(inputs=inputs))
        assert summary.next_month_net is None
        assert summary.historical_trend == Decimal(0)

    def test_requires_current_month(self):
        with pytest.raises(ValueError):
            summarize(())


class TestHelpers:
    def test_half_even_rounding(self):
        assert to_minor_units(Decimal("2.5")) == 2
        assert to_minor_units(Decimal("3.5")) == 4
        assert to_minor_units(Decimal("-2.5")) == -2

    def test_month_end(self):
        assert month_end(date(2024, 2, 1)) == date(2024, 2, 29)
        assert month_end(date(2023, 2, 1)) == date(2023, 2, 28)
