"""DefaulterService -- loads an organization's open invoices and runs the DefaulterDetector."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from billing_kernel.domain.clock import BillingClock, Clock
from billing_kernel.domain.periods import require_date
from billing_kernel.domain.types import EntryStatus
from billing_kernel.services.billing_repository import BillingRepository
from billing_engines.defaulters import AWAITING_PAYMENT, Defaulter, DefaulterDetector

OPEN_STATUSES = frozenset({EntryStatus.OVERDUE}) | AWAITING_PAYMENT


class DefaulterService:
    """Read-only: never mutates the ledger."""

    def __init__(
        self,
        repository: BillingRepository,
        clock: BillingClock | Clock | None = None,
        detector: DefaulterDetector | None = None,
    ):
        if not isinstance(clock, BillingClock):
            clock = BillingClock(clock)
        self._repository = repository
        self._clock = clock
        self._detector = detector or DefaulterDetector()

    def find_defaulters(
        self,
        organization_id: UUID,
        as_of: date | None = None,
    ) -> tuple[Defaulter, ...]:
        as_of = self._clock.today() if as_of is None else require_date(as_of, "as_of")
        self._repository.get_organization(organization_id)
        entries = self._repository.query_entries(
            organization_id,
            statuses=sorted(OPEN_STATUSES),
        )
        return self._detector.find_defaulters(
            organization_id=organization_id,
            entries=entries,
            as_of=as_of,
        )
