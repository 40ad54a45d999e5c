"""
LedgerService -- one-off ledger entries and status transitions.

Manual invoices and expenses carry no rule id and are never touched by the
materializer.  Status changes follow ``ENTRY_TRANSITIONS`` and are applied
as conditional updates on the current status, so two callers racing on the
same entry cannot both win.
"""

from __future__ import annotations

from datetime import date, timedelta
from uuid import UUID, uuid4

from billing_kernel.config import BillingConfig
from billing_kernel.domain.periods import require_date
from billing_kernel.domain.types import (
    INITIAL_ENTRY_STATUS,
    EntryStatus,
    LedgerEntry,
    LedgerKind,
)
from billing_kernel.exceptions import (
    InvalidEntryTransitionError,
    LedgerError,
    OrganizationInactiveError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.services.billing_repository import BillingRepository

logger = get_logger("services.ledger")

ENTRY_TRANSITIONS: dict[LedgerKind, dict[EntryStatus, frozenset[EntryStatus]]] = {
    LedgerKind.INVOICE: {
        EntryStatus.DRAFT: frozenset({EntryStatus.SENT, EntryStatus.CANCELLED}),
        EntryStatus.SENT: frozenset({
            EntryStatus.PAID, EntryStatus.OVERDUE, EntryStatus.CANCELLED,
        }),
        EntryStatus.OVERDUE: frozenset({EntryStatus.PAID, EntryStatus.CANCELLED}),
        EntryStatus.PAID: frozenset(),
        EntryStatus.CANCELLED: frozenset(),
    },
    LedgerKind.EXPENSE: {
        EntryStatus.PENDING: frozenset({EntryStatus.PAID, EntryStatus.CANCELLED}),
        EntryStatus.PAID: frozenset(),
        EntryStatus.CANCELLED: frozenset(),
    },
}


class LedgerService:
    """Records manual entries and moves entries through their statuses."""

    def __init__(
        self,
        repository: BillingRepository,
        config: BillingConfig | None = None,
    ):
        self._repository = repository
        self._config = config or BillingConfig()

    def record_entry(
        self,
        organization_id: UUID,
        kind: LedgerKind | str,
        amount: int,
        entry_date: date,
        due_date: date | None = None,
        counterparty_id: UUID | None = None,
        status: EntryStatus | str | None = None,
        description: str = "",
    ) -> LedgerEntry:
        """
        Record a one-off invoice or expense.

        Raises:
            LedgerError: Non-positive amount, due date before entry date,
                a counterparty on an expense, an unknown kind or status, or a
                status the kind lacks.
            OrganizationInactiveError: The organization is deactivated.
        """
        try:
            kind = LedgerKind(kind)
        except ValueError:
            raise LedgerError(f"unknown entry kind {kind!r}") from None
        try:
            status = EntryStatus(status) if status else INITIAL_ENTRY_STATUS[kind]
        except ValueError:
            raise LedgerError(f"unknown entry status {status!r}") from None
        require_date(entry_date, "entry_date")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise LedgerError(f"amount must be a positive integer, got {amount!r}")
        if due_date is None:
            due_date = entry_date + timedelta(days=self._config.payment_terms_days)
        elif require_date(due_date, "due_date") < entry_date:
            raise LedgerError(f"due_date {due_date} precedes entry_date {entry_date}")
        if kind == LedgerKind.EXPENSE and counterparty_id is not None:
            raise LedgerError("expense entries cannot carry a counterparty")

        organization = self._repository.get_organization(organization_id)
        if not organization.is_active:
            raise OrganizationInactiveError(str(organization_id))

        entry = self._repository.insert_entry(LedgerEntry(
            entry_id=uuid4(),
            organization_id=organization_id,
            kind=kind,
            amount=amount,
            entry_date=entry_date,
            due_date=due_date,
            status=status,
            counterparty_id=counterparty_id,
            description=description,
        ))
        with LogContext.bind(organization_id=organization_id):
            logger.info(
                "entry_recorded",
                extra={
                    "entry_id": str(entry.entry_id),
                    "kind": kind.value,
                    "amount": amount,
                },
            )
        return entry

    def transition(
        self,
        organization_id: UUID,
        entry_id: UUID,
        new_status: EntryStatus | str,
    ) -> LedgerEntry:
        """
        Move an entry to ``new_status``.

        Raises:
            InvalidEntryTransitionError: Not allowed from the current status,
                or the entry changed status concurrently.
            LedgerError: ``new_status`` names no entry status.
        """
        try:
            new_status = EntryStatus(new_status)
        except ValueError:
            raise LedgerError(f"unknown entry status {new_status!r}") from None
        entry = self._repository.get_entry(organization_id, entry_id)
        allowed = ENTRY_TRANSITIONS[entry.kind].get(entry.status, frozenset())
        if new_status not in allowed:
            raise InvalidEntryTransitionError(
                str(entry_id), entry.status.value, new_status.value
            )

        moved = self._repository.update_entry_status(
            organization_id, entry_id, new_status=new_status, expected_status=entry.status
        )
        if not moved:
            raise InvalidEntryTransitionError(
                str(entry_id), entry.status.value, new_status.value
            )

        with LogContext.bind(organization_id=organization_id):
            logger.info(
                "entry_status_changed",
                extra={
                    "entry_id": str(entry_id),
                    "from_status": entry.status.value,
                    "to_status": new_status.value,
                },
            )
        return self._repository.get_entry(organization_id, entry_id)

    def mark_sent(self, organization_id: UUID, entry_id: UUID) -> LedgerEntry:
        return self.transition(organization_id, entry_id, EntryStatus.SENT)

    def mark_paid(self, organization_id: UUID, entry_id: UUID) -> LedgerEntry:
        return self.transition(organization_id, entry_id, EntryStatus.PAID)

    def cancel(self, organization_id: UUID, entry_id: UUID) -> LedgerEntry:
        return self.transition(organization_id, entry_id, EntryStatus.CANCELLED)
