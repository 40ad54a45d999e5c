"""
Pure domain layer.

Frozen DTOs, the injectable clock, and period arithmetic with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O (SystemClock aside)
"""

from billing_kernel.domain.clock import (
    BillingClock,
    Clock,
    DeterministicClock,
    SystemClock,
)
from billing_kernel.domain.periods import (
    add_months,
    add_periods,
    month_start,
    months_apart,
    periods_between,
)
from billing_kernel.domain.types import (
    INITIAL_ENTRY_STATUS,
    VALID_ENTRY_STATUSES,
    EntryStatus,
    Frequency,
    LedgerEntry,
    LedgerKind,
    MaterializationReport,
    Organization,
    ProjectionPoint,
    RecurrenceRule,
    RuleFailure,
    RuleStatus,
    SourceKind,
)

__all__ = [
    "BillingClock",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "add_months",
    "add_periods",
    "month_start",
    "months_apart",
    "periods_between",
    "INITIAL_ENTRY_STATUS",
    "VALID_ENTRY_STATUSES",
    "EntryStatus",
    "Frequency",
    "LedgerEntry",
    "LedgerKind",
    "MaterializationReport",
    "Organization",
    "ProjectionPoint",
    "RecurrenceRule",
    "RuleFailure",
    "RuleStatus",
    "SourceKind",
]
