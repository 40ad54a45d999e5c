"""
Module: billing_kernel.selectors.billing_selector
Responsibility: Read-only queries over organizations, recurrence rules and
    ledger entries.  Every query is scoped to one organization except
    ``active_rules`` with no organization, the materializer's cross-tenant
    scan.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and selectors/base.py.

Invariants enforced:
    - Tenant scoping: a rule or entry addressed through an organization that
      does not own it raises TenantIsolationError, never returns data.
    - Stable ordering: rules by (organization_id, start_date, id); entries by
      (entry_date, id).

Failure modes:
    - OrganizationNotFoundError, RuleNotFoundError, LedgerEntryNotFoundError
      for unknown ids.
    - TenantIsolationError for cross-tenant access.
"""

from collections.abc import Iterable
from datetime import date
from uuid import UUID

from sqlalchemy import exists, select

from billing_kernel.domain.types import (
    EntryStatus,
    LedgerEntry,
    LedgerKind,
    Organization,
    RecurrenceRule,
    RuleStatus,
)
from billing_kernel.exceptions import (
    LedgerEntryNotFoundError,
    OrganizationNotFoundError,
    RuleNotFoundError,
    TenantIsolationError,
)
from billing_kernel.models.ledger_entry import LedgerEntryModel
from billing_kernel.models.organization import OrganizationModel
from billing_kernel.models.recurrence_rule import RecurrenceRuleModel
from billing_kernel.selectors.base import BaseSelector


def _values(items: Iterable) -> list[str]:
    return [getattr(item, "value", item) for item in items]


class BillingSelector(BaseSelector[RecurrenceRuleModel]):
    """Query organizations, rules and ledger entries, returning DTOs."""

    # -- organizations -------------------------------------------------------

    def get_organization(self, organization_id: UUID) -> Organization:
        model = self.session.get(OrganizationModel, organization_id)
        if model is None:
            raise OrganizationNotFoundError(str(organization_id))
        return model.to_dto()

    def organizations(self, active_only: bool = True) -> tuple[Organization, ...]:
        stmt = select(OrganizationModel).order_by(OrganizationModel.id)
        if active_only:
            stmt = stmt.where(OrganizationModel.is_active.is_(True))
        return tuple(m.to_dto() for m in self.session.scalars(stmt))

    # -- rules ---------------------------------------------------------------

    def get_rule_model(self, organization_id: UUID, rule_id: UUID) -> RecurrenceRuleModel:
        """Load the ORM row for a rule, enforcing ownership."""
        model = self.session.get(RecurrenceRuleModel, rule_id)
        if model is None:
            raise RuleNotFoundError(str(rule_id), str(organization_id))
        if model.organization_id != organization_id:
            raise TenantIsolationError("RecurrenceRule", str(rule_id), str(organization_id))
        return model

    def get_rule(self, organization_id: UUID, rule_id: UUID) -> RecurrenceRule:
        return self.get_rule_model(organization_id, rule_id).to_dto()

    def rules(
        self,
        organization_id: UUID,
        status: RuleStatus | None = None,
        kind: LedgerKind | None = None,
    ) -> tuple[RecurrenceRule, ...]:
        """Rules of one organization ordered by (start_date, id)."""
        stmt = select(RecurrenceRuleModel).where(
            RecurrenceRuleModel.organization_id == organization_id
        )
        if status is not None:
            stmt = stmt.where(RecurrenceRuleModel.status == RuleStatus(status).value)
        if kind is not None:
            stmt = stmt.where(RecurrenceRuleModel.kind == LedgerKind(kind).value)
        stmt = stmt.order_by(RecurrenceRuleModel.start_date, RecurrenceRuleModel.id)
        return tuple(m.to_dto() for m in self.session.scalars(stmt))

    def active_rules(self, organization_id: UUID | None = None) -> tuple[RecurrenceRule, ...]:
        """
        Active rules ordered by (organization_id, start_date, id).

        With ``organization_id=None`` this scans every organization; it is
        the only unscoped query in the kernel.
        """
        stmt = select(RecurrenceRuleModel).where(
            RecurrenceRuleModel.status == RuleStatus.ACTIVE.value
        )
        if organization_id is not None:
            stmt = stmt.where(RecurrenceRuleModel.organization_id == organization_id)
        stmt = stmt.order_by(
            RecurrenceRuleModel.organization_id,
            RecurrenceRuleModel.start_date,
            RecurrenceRuleModel.id,
        )
        return tuple(m.to_dto() for m in self.session.scalars(stmt))

    # -- entries -------------------------------------------------------------

    def get_entry(self, organization_id: UUID, entry_id: UUID) -> LedgerEntry:
        model = self.session.get(LedgerEntryModel, entry_id)
        if model is None:
            raise LedgerEntryNotFoundError(str(entry_id), str(organization_id))
        if model.organization_id != organization_id:
            raise TenantIsolationError("LedgerEntry", str(entry_id), str(organization_id))
        return model.to_dto()

    def entries(
        self,
        organization_id: UUID,
        kind: LedgerKind | None = None,
        statuses: Iterable[EntryStatus] | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        rule_id: UUID | None = None,
    ) -> tuple[LedgerEntry, ...]:
        """Entries of one organization ordered by (entry_date, id).

        ``date_from`` and ``date_to`` bound ``entry_date`` inclusively.
        """
        m = LedgerEntryModel
        stmt = select(m).where(m.organization_id == organization_id)
        if kind is not None:
            stmt = stmt.where(m.kind == LedgerKind(kind).value)
        if statuses is not None:
            stmt = stmt.where(m.status.in_(_values(statuses)))
        if date_from is not None:
            stmt = stmt.where(m.entry_date >= date_from)
        if date_to is not None:
            stmt = stmt.where(m.entry_date <= date_to)
        if rule_id is not None:
            stmt = stmt.where(m.rule_id == rule_id)
        stmt = stmt.order_by(m.entry_date, m.id)
        return tuple(row.to_dto() for row in self.session.scalars(stmt))

    def entry_exists(self, organization_id: UUID, rule_id: UUID, entry_date: date) -> bool:
        """True when the occurrence (rule_id, entry_date) is already in the ledger."""
        m = LedgerEntryModel
        stmt = select(
            exists().where(
                m.organization_id == organization_id,
                m.rule_id == rule_id,
                m.entry_date == entry_date,
            )
        )
        return bool(self.session.scalar(stmt))
