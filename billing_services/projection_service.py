"""
ProjectionService -- assembles a ProjectionInput snapshot from the ledger
and runs the ProjectionEngine over it.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from billing_kernel.config import BillingConfig
from billing_kernel.domain.clock import BillingClock, Clock
from billing_kernel.domain.periods import add_months, month_start, require_date
from billing_kernel.domain.types import EntryStatus, LedgerKind, ProjectionPoint, RuleStatus
from billing_kernel.logging_config import get_logger
from billing_kernel.services.billing_repository import BillingRepository
from billing_engines.projection import (
    ProjectionEngine,
    ProjectionInput,
    ProjectionSummary,
    month_end,
    summarize,
)

logger = get_logger("services.projection")

DEFAULT_MONTHS_BACK = 6
DEFAULT_MONTHS_FORWARD = 5


class ProjectionService:
    """Loads snapshots for the pure projection engine."""

    def __init__(
        self,
        repository: BillingRepository,
        clock: BillingClock | Clock | None = None,
        config: BillingConfig | None = None,
        engine: ProjectionEngine | None = None,
    ):
        if not isinstance(clock, BillingClock):
            clock = BillingClock(clock)
        self._repository = repository
        self._clock = clock
        self._config = config or BillingConfig()
        self._engine = engine or ProjectionEngine(self._config)

    def load_input(
        self,
        organization_id: UUID,
        as_of: date,
        months_back: int,
        months_forward: int,
    ) -> ProjectionInput:
        """Snapshot covering the historical window and the expense lookback."""
        self._repository.get_organization(organization_id)

        current = month_start(as_of)
        reach_back = max(months_back, self._config.expense_lookback_months - 1)
        entries = self._repository.query_entries(
            organization_id,
            statuses=(EntryStatus.PAID,),
            date_from=add_months(current, -reach_back),
            date_to=month_end(current),
        )
        rules = self._repository.query_rules(
            organization_id,
            status=RuleStatus.ACTIVE,
            kind=LedgerKind.INVOICE,
        )
        return ProjectionInput(
            organization_id=organization_id,
            as_of=as_of,
            months_back=months_back,
            months_forward=months_forward,
            entries=entries,
            rules=rules,
        )

    def project(
        self,
        organization_id: UUID,
        as_of: date | None = None,
        months_back: int = DEFAULT_MONTHS_BACK,
        months_forward: int = DEFAULT_MONTHS_FORWARD,
    ) -> tuple[ProjectionPoint, ...]:
        as_of = self._clock.today() if as_of is None else require_date(as_of, "as_of")
        inputs = self.load_input(organization_id, as_of, months_back, months_forward)
        points = self._engine.project(inputs=inputs)
        logger.info(
            "projection_served",
            extra={
                "as_of": as_of.isoformat(),
                "months_back": months_back,
                "months_forward": months_forward,
                "entry_count": len(inputs.entries),
                "rule_count": len(inputs.rules),
            },
        )
        return points

    def summary(
        self,
        organization_id: UUID,
        as_of: date | None = None,
        months_back: int = DEFAULT_MONTHS_BACK,
        months_forward: int = DEFAULT_MONTHS_FORWARD,
    ) -> ProjectionSummary:
        return summarize(self.project(organization_id, as_of, months_back, months_forward))
