"""
Module: billing_kernel.models.ledger_entry
Responsibility: ORM persistence for concrete invoices and expense instances,
    whether entered by hand or materialized from a recurrence rule.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/types.py only.

Invariants enforced:
    - UNIQUE (rule_id, entry_date) (uq_ledger_occurrence): one entry per
      rule occurrence.  This constraint, not application code, decides the
      winner when two materialization runs race.  Rows with a NULL rule_id
      (manual entries) are not constrained.
    - amount and entry_date never change after issue (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate occurrence key; the repository translates
      it to MaterializationConflictError.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase, UUIDString
from billing_kernel.domain.types import EntryStatus, LedgerEntry, LedgerKind

IMMUTABLE_ENTRY_FIELDS = ("kind", "amount", "entry_date")


class LedgerEntryModel(TrackedBase):
    """
    One invoice or expense instance.

    Guarantees:
        - (rule_id, entry_date) is unique across the table.
        - organization_id always equals the originating rule's organization.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint("rule_id", "entry_date", name="uq_ledger_occurrence"),
        Index("idx_ledger_org_kind_status", "organization_id", "kind", "status"),
        Index("idx_ledger_org_entry_date", "organization_id", "entry_date"),
        Index("idx_ledger_org_due_date", "organization_id", "due_date"),
        Index("idx_ledger_counterparty", "counterparty_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("organizations.id"),
        nullable=False,
    )

    kind: Mapped[LedgerKind] = mapped_column(
        String(20),
        nullable=False,
        active_history=True,
    )

    # Originating rule; NULL for manual entries
    rule_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("recurrence_rules.id"),
        nullable=True,
    )

    amount: Mapped[int] = mapped_column(
        nullable=False,
        active_history=True,
    )

    # Issue / occurrence date
    entry_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        active_history=True,
    )

    due_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    status: Mapped[EntryStatus] = mapped_column(
        String(20),
        nullable=False,
    )

    counterparty_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry {self.id}: {self.kind} {self.amount} "
            f"on {self.entry_date} [{self.status}]>"
        )

    def to_dto(self) -> LedgerEntry:
        """Convert ORM model to frozen domain DTO."""
        return LedgerEntry(
            entry_id=self.id,
            organization_id=self.organization_id,
            kind=LedgerKind(self.kind),
            amount=self.amount,
            entry_date=self.entry_date,
            due_date=self.due_date,
            status=EntryStatus(self.status),
            rule_id=self.rule_id,
            counterparty_id=self.counterparty_id,
            description=self.description,
        )

    @classmethod
    def from_dto(cls, dto: LedgerEntry, created_by_id: UUID) -> LedgerEntryModel:
        """Create ORM model from domain DTO."""
        return cls(
            id=dto.entry_id,
            organization_id=dto.organization_id,
            kind=LedgerKind(dto.kind).value,
            amount=dto.amount,
            entry_date=dto.entry_date,
            due_date=dto.due_date,
            status=EntryStatus(dto.status).value,
            rule_id=dto.rule_id,
            counterparty_id=dto.counterparty_id,
            description=dto.description,
            created_by_id=created_by_id,
        )
