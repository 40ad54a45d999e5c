"""
Module: billing_engines.defaulters
Responsibility:
    Derive the at-risk counterparties of an organization from its ledger:
    clients with at least one invoice that is overdue, or still awaiting
    payment past its due date.

Architecture position:
    Engines -- pure calculation layer, zero I/O, no mutation.

Invariants enforced:
    - An entry counts when status is ``overdue``, or status is ``sent`` /
      ``pending`` with due_date strictly before ``as_of``.
    - Entries are scanned in (due_date, entry_date, id) order and each
      counterparty is reported once, in first-seen order.
    - Entries without a counterparty are ignored.

Failure modes:
    - TenantIsolationError when the snapshot mixes organizations.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from billing_kernel.domain.periods import require_date
from billing_kernel.domain.types import EntryStatus, LedgerEntry
from billing_kernel.exceptions import TenantIsolationError
from billing_kernel.logging_config import get_logger
from billing_engines.tracer import traced_engine

logger = get_logger("engines.defaulters")

AWAITING_PAYMENT = frozenset({EntryStatus.SENT, EntryStatus.PENDING})


@dataclass(frozen=True)
class Defaulter:
    """A counterparty with overdue entries."""

    counterparty_id: UUID
    first_overdue_due_date: date
    overdue_count: int
    overdue_amount: int  # minor units
    entry_ids: tuple[UUID, ...] = ()


def is_overdue(entry: LedgerEntry, as_of: date) -> bool:
    """True when ``entry`` counts against its counterparty on ``as_of``."""
    if entry.status == EntryStatus.OVERDUE:
        return True
    return entry.status in AWAITING_PAYMENT and entry.due_date < as_of


class DefaulterDetector:
    """Finds defaulting counterparties in a ledger snapshot."""

    @traced_engine("defaulters", "1.0", fingerprint_fields=("organization_id", "as_of"))
    def find_defaulters(
        self,
        organization_id: UUID,
        entries: Iterable[LedgerEntry],
        as_of: date,
    ) -> tuple[Defaulter, ...]:
        require_date(as_of, "as_of")

        overdue: list[LedgerEntry] = []
        for entry in entries:
            if entry.organization_id != organization_id:
                raise TenantIsolationError(
                    "LedgerEntry", str(entry.entry_id), str(organization_id)
                )
            if entry.counterparty_id is not None and is_overdue(entry, as_of):
                overdue.append(entry)

        overdue.sort(key=lambda e: (e.due_date, e.entry_date, str(e.entry_id)))

        grouped: dict[UUID, list[LedgerEntry]] = {}
        for entry in overdue:
            grouped.setdefault(entry.counterparty_id, []).append(entry)

        defaulters = tuple(
            Defaulter(
                counterparty_id=counterparty_id,
                first_overdue_due_date=items[0].due_date,
                overdue_count=len(items),
                overdue_amount=sum(e.amount for e in items),
                entry_ids=tuple(e.entry_id for e in items),
            )
            for counterparty_id, items in grouped.items()
        )

        logger.debug(
            "defaulters_found",
            extra={
                "organization_id": str(organization_id),
                "as_of": as_of.isoformat(),
                "defaulter_count": len(defaulters),
                "overdue_entry_count": len(overdue),
            },
        )
        return defaulters
