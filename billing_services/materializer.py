"""
LedgerMaterializer -- turns due rule occurrences into ledger entries.

Contract:
    ``materialize(as_of)`` scans active rules (all organizations, or one),
    asks the RecurrenceGenerator for each rule's due occurrences and
    persists one ledger entry per occurrence, advancing the rule's
    watermark as it goes.  Rerunning with the same ``as_of`` creates
    nothing.

Architecture: billing_services.  Imports from billing_engines and the
    kernel repository contract; never touches the session directly.

Invariants enforced:
    - One SAVEPOINT per occurrence: existence check, insert and watermark
      advance commit together or not at all.  There is never an entry
      without its watermark advance, nor an advance without its entry.
    - A unique-constraint conflict on insert means a concurrent run won;
      it is counted as skipped, not as a failure.
    - If occurrence k of a rule fails, k+1..n are not attempted this run;
      the rule retries next run from its unchanged watermark.  Other rules
      continue.
    - A rule whose due list completed and whose end_date precedes
      ``as_of`` transitions to ENDED.
    - StorageUnavailableError aborts the remaining rules of that
      organization only.
    - All dates come from the injected BillingClock.

Non-goals:
    - Does NOT commit.  The caller (orchestrator, CLI, test harness) owns
      the outer transaction.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from itertools import groupby
from uuid import UUID, uuid4

from billing_kernel.config import BillingConfig
from billing_kernel.domain.clock import BillingClock, Clock
from billing_kernel.domain.periods import require_date
from billing_kernel.domain.types import (
    INITIAL_ENTRY_STATUS,
    LedgerEntry,
    LedgerKind,
    MaterializationReport,
    RecurrenceRule,
    RuleFailure,
    RuleStatus,
)
from billing_kernel.exceptions import (
    BillingKernelError,
    InvalidRecurrenceRuleError,
    RecurrenceOverflowError,
    StorageUnavailableError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.services.billing_repository import BillingRepository
from billing_engines.recurrence import RecurrenceGenerator

logger = get_logger("services.materializer")


@dataclass
class _RunTally:
    """Mutable counters for one run; frozen into a MaterializationReport."""

    as_of: date
    created_by_organization: dict[UUID, int] = field(default_factory=dict)
    invoices_created: int = 0
    expenses_created: int = 0
    skipped: int = 0
    rules_scanned: int = 0
    ended_rule_ids: list[UUID] = field(default_factory=list)
    failures: list[RuleFailure] = field(default_factory=list)

    def record_created(self, rule: RecurrenceRule) -> None:
        org = rule.organization_id
        self.created_by_organization[org] = self.created_by_organization.get(org, 0) + 1
        if rule.kind == LedgerKind.INVOICE:
            self.invoices_created += 1
        else:
            self.expenses_created += 1

    def to_report(self) -> MaterializationReport:
        return MaterializationReport(
            as_of=self.as_of,
            created_by_organization=dict(self.created_by_organization),
            invoices_created=self.invoices_created,
            expenses_created=self.expenses_created,
            skipped=self.skipped,
            rules_scanned=self.rules_scanned,
            ended_rule_ids=tuple(self.ended_rule_ids),
            failures=tuple(self.failures),
        )


class LedgerMaterializer:
    """Materializes due recurrence occurrences into ledger entries."""

    def __init__(
        self,
        repository: BillingRepository,
        clock: BillingClock | Clock | None = None,
        config: BillingConfig | None = None,
        generator: RecurrenceGenerator | None = None,
    ):
        if not isinstance(clock, BillingClock):
            clock = BillingClock(clock)
        self._repository = repository
        self._clock = clock
        self._config = config or BillingConfig()
        self._generator = generator or RecurrenceGenerator(
            max_occurrences=self._config.max_occurrences_per_run
        )

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def materialize(
        self,
        as_of: date | None = None,
        organization_id: UUID | None = None,
    ) -> MaterializationReport:
        """
        Materialize every occurrence due by ``as_of`` (default: today).

        Raises:
            StorageUnavailableError: The unscoped rule scan itself failed.
                A scoped run reports the failure instead.
        """
        as_of = self._clock.today() if as_of is None else require_date(as_of, "as_of")
        tally = _RunTally(as_of=as_of)
        run_id = uuid4()
        start_time = time.monotonic()

        with LogContext.bind(run_id=run_id, organization_id=organization_id):
            logger.info(
                "materialization_started",
                extra={"as_of": as_of.isoformat()},
            )

            try:
                rules = self._repository.query_active_rules(organization_id)
            except StorageUnavailableError as exc:
                if organization_id is None:
                    raise
                failure = RuleFailure(
                    organization_id=organization_id,
                    error_code=exc.code,
                    message=str(exc),
                )
                tally.failures.append(failure)
                logger.error("organization_aborted", extra={"failure": failure})
                return tally.to_report()

            for org_id, org_rules in groupby(rules, key=lambda r: r.organization_id):
                self._materialize_organization(org_id, list(org_rules), as_of, tally)

            report = tally.to_report()
            logger.info(
                "materialization_completed",
                extra={
                    "as_of": as_of.isoformat(),
                    "rules_scanned": report.rules_scanned,
                    "invoices_created": report.invoices_created,
                    "expenses_created": report.expenses_created,
                    "skipped": report.skipped,
                    "ended_rules": len(report.ended_rule_ids),
                    "failed_rules": report.failed_rule_count,
                    "duration_ms": int((time.monotonic() - start_time) * 1000),
                },
            )
        return report

    def _materialize_organization(
        self,
        organization_id: UUID,
        rules: list[RecurrenceRule],
        as_of: date,
        tally: _RunTally,
    ) -> None:
        with LogContext.bind(organization_id=organization_id):
            for index, rule in enumerate(rules):
                tally.rules_scanned += 1
                try:
                    self._materialize_rule(rule, as_of, tally)
                except StorageUnavailableError as exc:
                    failure = RuleFailure(
                        organization_id=organization_id,
                        error_code=exc.code,
                        message=str(exc),
                        rule_id=rule.rule_id,
                    )
                    tally.failures.append(failure)
                    logger.error(
                        "organization_aborted",
                        extra={"failure": failure, "remaining_rules": len(rules) - index - 1},
                        exc_info=exc,
                    )
                    return

    # -------------------------------------------------------------------------
    # Per rule
    # -------------------------------------------------------------------------

    def _materialize_rule(self, rule: RecurrenceRule, as_of: date, tally: _RunTally) -> None:
        with LogContext.bind(rule_id=rule.rule_id):
            try:
                due = tuple(self._generator.due_occurrences(rule, as_of))
            except (RecurrenceOverflowError, InvalidRecurrenceRuleError) as exc:
                failure = RuleFailure(
                    organization_id=rule.organization_id,
                    error_code=exc.code,
                    message=str(exc),
                    rule_id=rule.rule_id,
                )
                tally.failures.append(failure)
                event = "rule_overflow" if isinstance(exc, RecurrenceOverflowError) else "rule_invalid"
                logger.warning(event, extra={"failure": failure}, exc_info=exc)
                return

            for occurrence in due:
                try:
                    created = self._materialize_occurrence(rule, occurrence)
                except StorageUnavailableError:
                    raise
                except Exception as exc:
                    error_code = exc.code if isinstance(exc, BillingKernelError) else "UNHANDLED_EXCEPTION"
                    failure = RuleFailure(
                        organization_id=rule.organization_id,
                        error_code=error_code,
                        message=str(exc),
                        rule_id=rule.rule_id,
                        occurrence_date=occurrence,
                    )
                    tally.failures.append(failure)
                    logger.error("occurrence_failed", extra={"failure": failure}, exc_info=True)
                    return

                if created:
                    tally.record_created(rule)
                else:
                    tally.skipped += 1

            if rule.end_date is not None and as_of > rule.end_date:
                if self._repository.update_rule_status(
                    rule.organization_id, rule.rule_id, RuleStatus.ENDED
                ):
                    tally.ended_rule_ids.append(rule.rule_id)
                    logger.info("rule_ended", extra={"end_date": rule.end_date.isoformat()})

    def _materialize_occurrence(self, rule: RecurrenceRule, occurrence: date) -> bool:
        """Persist one occurrence.  Returns False when it already existed."""
        with self._repository.atomic():
            if self._repository.entry_exists(rule.organization_id, rule.rule_id, occurrence):
                created = False
            else:
                entry = self.build_entry(rule, occurrence)
                created = self._repository.insert_entry_or_skip(entry) is not None
            self._repository.advance_watermark(rule.organization_id, rule.rule_id, occurrence)

        # occurrence_key is derived from rule_id and occurrence_date when formatted
        if created:
            logger.info(
                "occurrence_materialized",
                extra={"occurrence_date": occurrence, "kind": LedgerKind(rule.kind)},
            )
        else:
            logger.info("occurrence_skipped", extra={"occurrence_date": occurrence})
        return created

    def build_entry(self, rule: RecurrenceRule, occurrence: date) -> LedgerEntry:
        """The ledger entry a rule produces for ``occurrence``."""
        kind = LedgerKind(rule.kind)
        return LedgerEntry(
            entry_id=uuid4(),
            organization_id=rule.organization_id,
            kind=kind,
            amount=rule.amount,
            entry_date=occurrence,
            due_date=occurrence + timedelta(days=self._config.payment_terms_days),
            status=INITIAL_ENTRY_STATUS[kind],
            rule_id=rule.rule_id,
            counterparty_id=rule.counterparty_id,
            description=rule.description,
        )
