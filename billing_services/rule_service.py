"""
RuleService -- lifecycle of organizations and recurrence rules.

Contract:
    - ``register_rule`` validates at creation time; a malformed rule never
      reaches storage.
    - Frequency, amount, kind and start date are fixed once a rule exists.
      Edits to them raise ImmutableRuleFieldError; end the rule and
      register a new one instead.
    - ``cancel_rule`` ends a rule without deleting it.  Entries already
      materialized stay in the ledger.

Non-goals:
    - Does NOT commit.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from uuid import UUID, uuid4

from billing_kernel.domain.clock import BillingClock, Clock
from billing_kernel.domain.periods import coerce_frequency, require_date
from billing_kernel.domain.types import (
    Frequency,
    LedgerKind,
    Organization,
    RecurrenceRule,
    RuleStatus,
    SourceKind,
)
from billing_kernel.exceptions import (
    ImmutableRuleFieldError,
    InvalidRecurrenceRuleError,
    OrganizationInactiveError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.recurrence_rule import IMMUTABLE_RULE_FIELDS
from billing_kernel.services.billing_repository import BillingRepository
from billing_engines.recurrence import validate_rule

logger = get_logger("services.rules")

EDITABLE_RULE_FIELDS = frozenset({"end_date", "description", "counterparty_id", "source_ref"})

DEFAULT_SOURCE_KIND = {
    LedgerKind.INVOICE: SourceKind.SERVICE,
    LedgerKind.EXPENSE: SourceKind.EXPENSE_TEMPLATE,
}


class RuleService:
    """Registers, edits and cancels recurrence rules."""

    def __init__(
        self,
        repository: BillingRepository,
        clock: BillingClock | Clock | None = None,
    ):
        if not isinstance(clock, BillingClock):
            clock = BillingClock(clock)
        self._repository = repository
        self._clock = clock

    # -------------------------------------------------------------------------
    # Organizations
    # -------------------------------------------------------------------------

    def register_organization(self, name: str, organization_id: UUID | None = None) -> Organization:
        if not name or not name.strip():
            raise ValueError("organization name cannot be empty")
        organization = self._repository.add_organization(name.strip(), organization_id)
        logger.info(
            "organization_registered",
            extra={"registered_organization_id": str(organization.organization_id)},
        )
        return organization

    def deactivate_organization(self, organization_id: UUID) -> Organization:
        organization = self._repository.set_organization_active(organization_id, False)
        logger.info(
            "organization_deactivated",
            extra={"deactivated_organization_id": str(organization_id)},
        )
        return organization

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    def register_rule(
        self,
        organization_id: UUID,
        kind: LedgerKind | str,
        frequency: Frequency | str,
        amount: int,
        start_date: date,
        end_date: date | None = None,
        counterparty_id: UUID | None = None,
        source_kind: SourceKind | str | None = None,
        source_ref: str | None = None,
        description: str = "",
    ) -> RecurrenceRule:
        """
        Validate and store a new active rule.

        Raises:
            InvalidRecurrenceRuleError: The rule is malformed.
            OrganizationNotFoundError: Unknown organization.
            OrganizationInactiveError: The organization is deactivated.
        """
        organization = self._repository.get_organization(organization_id)
        if not organization.is_active:
            raise OrganizationInactiveError(str(organization_id))

        try:
            kind = LedgerKind(kind)
        except ValueError:
            raise InvalidRecurrenceRuleError(f"unknown kind {kind!r}") from None
        try:
            source_kind = SourceKind(source_kind) if source_kind else DEFAULT_SOURCE_KIND[kind]
        except ValueError:
            raise InvalidRecurrenceRuleError(f"unknown source kind {source_kind!r}") from None

        rule = RecurrenceRule(
            rule_id=uuid4(),
            organization_id=organization_id,
            kind=kind,
            frequency=coerce_frequency(frequency),
            amount=amount,
            start_date=start_date,
            end_date=end_date,
            status=RuleStatus.ACTIVE,
            watermark=None,
            counterparty_id=counterparty_id,
            source_kind=source_kind,
            source_ref=source_ref,
            description=description,
        )
        validate_rule(rule)
        stored = self._repository.add_rule(rule)

        with LogContext.bind(organization_id=organization_id, rule_id=stored.rule_id):
            logger.info(
                "rule_registered",
                extra={
                    "kind": kind.value,
                    "frequency": stored.frequency.value,
                    "amount": stored.amount,
                    "start_date": stored.start_date.isoformat(),
                },
            )
        return stored

    def update_rule(self, organization_id: UUID, rule_id: UUID, **changes) -> RecurrenceRule:
        """
        Edit the mutable fields of a rule.

        Raises:
            ImmutableRuleFieldError: A fixed field would change.
            InvalidRecurrenceRuleError: Unknown field, or the edit leaves the
                rule malformed.
        """
        current = self._repository.get_rule(organization_id, rule_id)

        for name, value in changes.items():
            if name in IMMUTABLE_RULE_FIELDS:
                if getattr(current, name) != value:
                    raise ImmutableRuleFieldError(str(rule_id), name)
            elif name not in EDITABLE_RULE_FIELDS:
                raise InvalidRecurrenceRuleError(f"field {name!r} cannot be edited", str(rule_id))

        editable = {k: v for k, v in changes.items() if k in EDITABLE_RULE_FIELDS}
        if not editable:
            return current

        validate_rule(replace(current, **editable))

        updated = self._repository.update_rule(organization_id, rule_id, **editable)
        with LogContext.bind(organization_id=organization_id, rule_id=rule_id):
            logger.info("rule_updated", extra={"fields": sorted(editable)})
        return updated

    def cancel_rule(
        self,
        organization_id: UUID,
        rule_id: UUID,
        effective_date: date | None = None,
    ) -> RecurrenceRule:
        """
        End a rule.  Idempotent for rules already ended.

        The stored end date never precedes the watermark or the start
        date, and never moves later than an existing end date.
        """
        rule = self._repository.get_rule(organization_id, rule_id)
        if rule.status == RuleStatus.ENDED:
            return rule

        effective = (
            self._clock.today() if effective_date is None
            else require_date(effective_date, "effective_date")
        )
        end_date = effective if rule.end_date is None else min(effective, rule.end_date)
        end_date = max(end_date, rule.start_date)
        if rule.watermark is not None:
            end_date = max(end_date, rule.watermark)

        self._repository.update_rule_status(
            organization_id, rule_id, RuleStatus.ENDED, end_date=end_date
        )
        with LogContext.bind(organization_id=organization_id, rule_id=rule_id):
            logger.info("rule_cancelled", extra={"end_date": end_date.isoformat()})
        return self._repository.get_rule(organization_id, rule_id)

    def get_rule(self, organization_id: UUID, rule_id: UUID) -> RecurrenceRule:
        return self._repository.get_rule(organization_id, rule_id)

    def list_rules(
        self,
        organization_id: UUID,
        status: RuleStatus | None = None,
        kind: LedgerKind | None = None,
    ) -> tuple[RecurrenceRule, ...]:
        return self._repository.query_rules(organization_id, status=status, kind=kind)
