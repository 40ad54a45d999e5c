"""
OverdueService -- persists the ``sent -> overdue`` transition for invoices
whose due date has passed.

Each transition is a conditional UPDATE (``WHERE status = 'sent'``) in its
own SAVEPOINT, so rerunning the sweep, or racing another sweep, is a no-op
for entries already moved.  Never commits.
"""

from __future__ import annotations

from datetime import date, timedelta
from uuid import UUID

from billing_kernel.domain.clock import BillingClock, Clock
from billing_kernel.domain.periods import require_date
from billing_kernel.domain.types import EntryStatus, LedgerKind
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.services.billing_repository import BillingRepository

logger = get_logger("services.overdue")


class OverdueService:
    """Marks past-due sent invoices as overdue."""

    def __init__(
        self,
        repository: BillingRepository,
        clock: BillingClock | Clock | None = None,
    ):
        if not isinstance(clock, BillingClock):
            clock = BillingClock(clock)
        self._repository = repository
        self._clock = clock

    def mark_overdue(
        self,
        organization_id: UUID,
        as_of: date | None = None,
    ) -> tuple[UUID, ...]:
        """
        Transition every ``sent`` invoice with due_date < ``as_of``.

        Returns:
            Ids of the entries this call transitioned, in (entry_date, id)
            order.
        """
        as_of = self._clock.today() if as_of is None else require_date(as_of, "as_of")

        with LogContext.bind(organization_id=organization_id):
            self._repository.get_organization(organization_id)

            # entry_date <= due_date, so nothing issued on/after as_of qualifies
            candidates = self._repository.query_entries(
                organization_id,
                kind=LedgerKind.INVOICE,
                statuses=(EntryStatus.SENT,),
                date_to=as_of - timedelta(days=1),
            )

            transitioned: list[UUID] = []
            for entry in candidates:
                if entry.due_date >= as_of:
                    continue
                with self._repository.atomic():
                    moved = self._repository.update_entry_status(
                        organization_id,
                        entry.entry_id,
                        new_status=EntryStatus.OVERDUE,
                        expected_status=EntryStatus.SENT,
                    )
                if moved:
                    transitioned.append(entry.entry_id)

            logger.info(
                "overdue_sweep_completed",
                extra={
                    "as_of": as_of.isoformat(),
                    "candidates": len(candidates),
                    "transitioned": len(transitioned),
                },
            )
        return tuple(transitioned)
