"""
billing_kernel.domain.types -- Pure frozen dataclasses for the billing core.

ZERO I/O.  Follows the DTO pattern of frozen dataclasses with ``str``
enums and tuples for immutable collections.

Invariants enforced:
    - All DTOs are frozen (immutable snapshots of persisted state).
    - Every tenant-owned DTO carries ``organization_id``.
    - Amounts are integers in minor currency units (cents).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from uuid import UUID


# =============================================================================
# Enums
# =============================================================================


class Frequency(str, Enum):
    """Recurrence frequency of a rule."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class RuleStatus(str, Enum):
    """Lifecycle status of a recurrence rule."""

    ACTIVE = "active"
    ENDED = "ended"  # Terminal; never scanned again


class LedgerKind(str, Enum):
    """What a ledger entry (and the rule producing it) represents."""

    INVOICE = "invoice"
    EXPENSE = "expense"


class SourceKind(str, Enum):
    """Owning entity a recurrence rule was registered for."""

    SERVICE = "service"
    EXPENSE_TEMPLATE = "expense_template"


class EntryStatus(str, Enum):
    """Ledger entry status (invoice and expense vocabularies)."""

    # Invoice statuses
    DRAFT = "draft"
    SENT = "sent"
    OVERDUE = "overdue"
    # Expense statuses
    PENDING = "pending"
    # Shared
    PAID = "paid"
    CANCELLED = "cancelled"


VALID_ENTRY_STATUSES: dict[LedgerKind, frozenset[EntryStatus]] = {
    LedgerKind.INVOICE: frozenset({
        EntryStatus.DRAFT,
        EntryStatus.SENT,
        EntryStatus.PAID,
        EntryStatus.OVERDUE,
        EntryStatus.CANCELLED,
    }),
    LedgerKind.EXPENSE: frozenset({
        EntryStatus.PENDING,
        EntryStatus.PAID,
        EntryStatus.CANCELLED,
    }),
}

# Status a freshly materialized entry starts in.
INITIAL_ENTRY_STATUS: dict[LedgerKind, EntryStatus] = {
    LedgerKind.INVOICE: EntryStatus.DRAFT,
    LedgerKind.EXPENSE: EntryStatus.PENDING,
}


# =============================================================================
# Tenant
# =============================================================================


@dataclass(frozen=True)
class Organization:
    """Tenant boundary.  Every other record is scoped to one organization."""

    organization_id: UUID
    name: str
    is_active: bool = True
    created_at: datetime | None = None


# =============================================================================
# Recurrence
# =============================================================================


@dataclass(frozen=True)
class RecurrenceRule:
    """
    Declarative description of how an invoice or expense repeats.

    ``watermark`` is the date of the last *materialized* occurrence
    (None until the first one).  Only the materializer moves it.
    """

    rule_id: UUID
    organization_id: UUID
    kind: LedgerKind
    frequency: Frequency
    amount: int  # minor currency units
    start_date: date
    end_date: date | None = None
    status: RuleStatus = RuleStatus.ACTIVE
    watermark: date | None = None
    counterparty_id: UUID | None = None  # client id, invoice rules only
    source_kind: SourceKind = SourceKind.SERVICE
    source_ref: str | None = None
    description: str = ""

    @property
    def is_active(self) -> bool:
        return self.status == RuleStatus.ACTIVE


# =============================================================================
# Ledger
# =============================================================================


@dataclass(frozen=True)
class LedgerEntry:
    """
    One concrete invoice or expense instance.

    When ``rule_id`` is set, ``(rule_id, entry_date)`` is the occurrence
    key and is unique across the ledger.
    """

    entry_id: UUID
    organization_id: UUID
    kind: LedgerKind
    amount: int  # minor currency units
    entry_date: date  # issue / occurrence date
    due_date: date
    status: EntryStatus
    rule_id: UUID | None = None
    counterparty_id: UUID | None = None
    description: str = ""

    @property
    def is_recurring(self) -> bool:
        return self.rule_id is not None

    @property
    def occurrence_key(self) -> tuple[UUID, date] | None:
        if self.rule_id is None:
            return None
        return (self.rule_id, self.entry_date)


# =============================================================================
# Projection
# =============================================================================


@dataclass(frozen=True)
class ProjectionPoint:
    """
    One month of the cash-flow projection.  Computed, never persisted.

    ``is_historical`` points (including the current month) hold actual
    paid amounts; ``is_projected`` points hold estimates.  The two flags
    are mutually exclusive.
    """

    period: date  # first day of the month
    label: str  # "YYYY-MM"
    is_historical: bool
    is_current: bool
    is_projected: bool
    income: int
    expense: int

    def __post_init__(self) -> None:
        if self.is_historical == self.is_projected:
            raise ValueError(
                f"{self.label}: exactly one of is_historical/is_projected must be set"
            )
        if self.is_current and not self.is_historical:
            raise ValueError(f"{self.label}: the current month is always historical")

    @property
    def net(self) -> int:
        return self.income - self.expense


# =============================================================================
# Materialization results
# =============================================================================


@dataclass(frozen=True)
class RuleFailure:
    """One rule (or organization, when ``rule_id`` is None) that failed a run."""

    organization_id: UUID
    error_code: str
    message: str
    rule_id: UUID | None = None
    occurrence_date: date | None = None


@dataclass(frozen=True)
class MaterializationReport:
    """Immutable summary of one materialization run."""

    as_of: date
    created_by_organization: dict[UUID, int] = field(default_factory=dict)
    invoices_created: int = 0
    expenses_created: int = 0
    skipped: int = 0  # occurrences already materialized by a concurrent run
    rules_scanned: int = 0
    ended_rule_ids: tuple[UUID, ...] = ()
    failures: tuple[RuleFailure, ...] = ()

    @property
    def total_created(self) -> int:
        return self.invoices_created + self.expenses_created

    @property
    def failed_rule_count(self) -> int:
        return len({f.rule_id for f in self.failures if f.rule_id is not None})

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    def merge(self, other: MaterializationReport) -> MaterializationReport:
        """Combine two reports for the same ``as_of`` (per-organization fan-out)."""
        if other.as_of != self.as_of:
            raise ValueError(
                f"Cannot merge reports for {self.as_of} and {other.as_of}"
            )
        created = dict(self.created_by_organization)
        for org_id, count in other.created_by_organization.items():
            created[org_id] = created.get(org_id, 0) + count
        return MaterializationReport(
            as_of=self.as_of,
            created_by_organization=created,
            invoices_created=self.invoices_created + other.invoices_created,
            expenses_created=self.expenses_created + other.expenses_created,
            skipped=self.skipped + other.skipped,
            rules_scanned=self.rules_scanned + other.rules_scanned,
            ended_rule_ids=self.ended_rule_ids + other.ended_rule_ids,
            failures=self.failures + other.failures,
        )
