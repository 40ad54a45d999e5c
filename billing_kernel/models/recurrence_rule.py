"""
Module: billing_kernel.models.recurrence_rule
Responsibility: ORM persistence for recurrence rules -- the declarative
    description of how an invoice or expense repeats.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/types.py only.

Invariants enforced:
    - frequency, amount, kind and start_date are fixed once the row exists
      (before_update listener in db/immutability.py).
    - watermark moves forward only; it is written exclusively through the
      repository's conditional UPDATE, never by assigning the attribute.
    - amount > 0 (ck_rule_amount_positive).

Failure modes:
    - ImmutableRuleFieldError on flush when a fixed field changed.
    - IntegrityError when organization_id names no organization.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase, UUIDString
from billing_kernel.domain.types import (
    Frequency,
    LedgerKind,
    RecurrenceRule,
    RuleStatus,
    SourceKind,
)

# Fields a rule may never change after creation.
IMMUTABLE_RULE_FIELDS = ("kind", "frequency", "amount", "start_date")


class RecurrenceRuleModel(TrackedBase):
    """
    Persistent recurrence rule.

    Contract:
        Status moves ACTIVE -> ENDED only.  ENDED rules are never scanned
        by the materializer again.

    Non-goals:
        - This model does NOT validate date ordering or counterparty/kind
          pairing; RecurrenceGenerator.validate_rule does, at creation time.
    """

    __tablename__ = "recurrence_rules"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_rule_amount_positive"),
        Index("idx_rule_org_status", "organization_id", "status"),
        Index("idx_rule_status_start", "status", "start_date"),
    )

    organization_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("organizations.id"),
        nullable=False,
    )

    # invoice | expense
    kind: Mapped[LedgerKind] = mapped_column(
        String(20),
        nullable=False,
        active_history=True,
    )

    frequency: Mapped[Frequency] = mapped_column(
        String(20),
        nullable=False,
        active_history=True,
    )

    # Minor currency units
    amount: Mapped[int] = mapped_column(
        nullable=False,
        active_history=True,
    )

    start_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        active_history=True,
    )

    end_date: Mapped[date | None] = mapped_column(
        Date,
        nullable=True,
    )

    status: Mapped[RuleStatus] = mapped_column(
        String(20),
        nullable=False,
        default=RuleStatus.ACTIVE.value,
    )

    # Date of the last materialized occurrence
    watermark: Mapped[date | None] = mapped_column(
        Date,
        nullable=True,
    )

    # Client billed by invoice rules
    counterparty_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    # Owning service or expense template
    source_kind: Mapped[SourceKind] = mapped_column(
        String(30),
        nullable=False,
        default=SourceKind.SERVICE.value,
    )

    source_ref: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )

    def __repr__(self) -> str:
        return (
            f"<RecurrenceRule {self.id}: {self.kind} {self.frequency} "
            f"{self.amount} from {self.start_date} [{self.status}]>"
        )

    def to_dto(self) -> RecurrenceRule:
        """Convert ORM model to frozen domain DTO."""
        return RecurrenceRule(
            rule_id=self.id,
            organization_id=self.organization_id,
            kind=LedgerKind(self.kind),
            frequency=Frequency(self.frequency),
            amount=self.amount,
            start_date=self.start_date,
            end_date=self.end_date,
            status=RuleStatus(self.status),
            watermark=self.watermark,
            counterparty_id=self.counterparty_id,
            source_kind=SourceKind(self.source_kind),
            source_ref=self.source_ref,
            description=self.description,
        )

    @classmethod
    def from_dto(cls, dto: RecurrenceRule, created_by_id: UUID) -> RecurrenceRuleModel:
        """Create ORM model from domain DTO."""
        return cls(
            id=dto.rule_id,
            organization_id=dto.organization_id,
            kind=LedgerKind(dto.kind).value,
            frequency=Frequency(dto.frequency).value,
            amount=dto.amount,
            start_date=dto.start_date,
            end_date=dto.end_date,
            status=RuleStatus(dto.status).value,
            watermark=dto.watermark,
            counterparty_id=dto.counterparty_id,
            source_kind=SourceKind(dto.source_kind).value,
            source_ref=dto.source_ref,
            description=dto.description,
            created_by_id=created_by_id,
        )
