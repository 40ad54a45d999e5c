"""
BillingRepository -- the storage collaborator of the billing engines.

Responsibility:
    Defines the storage contract (``BillingRepository``) the materializer,
    projection, defaulter and overdue services depend on, and its
    SQLAlchemy implementation (``SqlAlchemyBillingRepository``).  Reads are
    delegated to ``BillingSelector``; writes are flush-only and, where they
    can fail part-way, wrapped in a SAVEPOINT.

Architecture position:
    Kernel > Services -- imperative shell over the ORM models.

Invariants enforced:
    - Every call takes an explicit organization id.  The cross-tenant scan
      ``query_active_rules(None)`` is the single exception.
    - Watermarks only move forward: ``advance_watermark`` is a conditional
      UPDATE (``watermark IS NULL OR watermark < :new``).
    - Status transitions are conditional UPDATEs on the expected prior
      status, so a rerun or a concurrent run is a no-op.
    - A unique-constraint violation on the occurrence key surfaces as
      MaterializationConflictError; the failed insert's SAVEPOINT is rolled
      back and the outer transaction stays usable.

Failure modes:
    - StorageUnavailableError for OperationalError / InterfaceError /
      DisconnectionError (lost connection, lock timeout, server gone).
    - MaterializationConflictError when a concurrent run already inserted
      the occurrence.
    - OrganizationNotFoundError / RuleNotFoundError /
      LedgerEntryNotFoundError / TenantIsolationError from the selector.
"""

from __future__ import annotations

import functools
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import or_, update
from sqlalchemy.exc import DisconnectionError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session

from billing_kernel.domain.types import (
    VALID_ENTRY_STATUSES,
    EntryStatus,
    LedgerEntry,
    LedgerKind,
    Organization,
    RecurrenceRule,
    RuleStatus,
)
from billing_kernel.exceptions import (
    InvalidRecurrenceRuleError,
    LedgerError,
    MaterializationConflictError,
    OrganizationNotFoundError,
    StorageUnavailableError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.ledger_entry import LedgerEntryModel
from billing_kernel.models.organization import OrganizationModel
from billing_kernel.models.recurrence_rule import RecurrenceRuleModel
from billing_kernel.selectors.billing_selector import BillingSelector
from billing_kernel.services.base import BaseService
from billing_kernel.utils.idempotency import generate_occurrence_key

logger = get_logger("services.billing_repository")

# Actor recorded on rows written by scheduled runs.
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")

TRANSIENT_STORAGE_ERRORS = (OperationalError, InterfaceError, DisconnectionError)


def storage_operation(operation: str):
    """Translate transient database errors into StorageUnavailableError."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except TRANSIENT_STORAGE_ERRORS as exc:
                logger.warning(
                    "storage_unavailable",
                    extra={"operation": operation, "error": str(exc)},
                )
                raise StorageUnavailableError(operation, str(exc)) from exc

        return wrapper

    return decorator


class BillingRepository(ABC):
    """
    Storage contract for the billing engines.

    Contract:
        Implementations never commit; the caller owns the outer
        transaction.  ``atomic()`` opens a nested unit that is rolled back
        on any exception and leaves the outer transaction usable.
    """

    @abstractmethod
    def get_organization(self, organization_id: UUID) -> Organization: ...

    @abstractmethod
    def list_organizations(self, active_only: bool = True) -> tuple[Organization, ...]: ...

    @abstractmethod
    def add_organization(self, name: str, organization_id: UUID | None = None) -> Organization: ...

    @abstractmethod
    def set_organization_active(self, organization_id: UUID, is_active: bool) -> Organization: ...

    @abstractmethod
    def get_rule(self, organization_id: UUID, rule_id: UUID) -> RecurrenceRule: ...

    @abstractmethod
    def query_rules(
        self,
        organization_id: UUID,
        status: RuleStatus | None = None,
        kind: LedgerKind | None = None,
    ) -> tuple[RecurrenceRule, ...]: ...

    @abstractmethod
    def query_active_rules(self, organization_id: UUID | None = None) -> tuple[RecurrenceRule, ...]: ...

    @abstractmethod
    def add_rule(self, rule: RecurrenceRule) -> RecurrenceRule: ...

    @abstractmethod
    def update_rule(self, organization_id: UUID, rule_id: UUID, **changes) -> RecurrenceRule: ...

    @abstractmethod
    def query_entries(
        self,
        organization_id: UUID,
        kind: LedgerKind | None = None,
        statuses: Iterable[EntryStatus] | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        rule_id: UUID | None = None,
    ) -> tuple[LedgerEntry, ...]: ...

    @abstractmethod
    def get_entry(self, organization_id: UUID, entry_id: UUID) -> LedgerEntry: ...

    @abstractmethod
    def entry_exists(self, organization_id: UUID, rule_id: UUID, entry_date: date) -> bool: ...

    @abstractmethod
    def insert_entry(self, entry: LedgerEntry) -> LedgerEntry: ...

    def insert_entry_or_skip(self, entry: LedgerEntry) -> LedgerEntry | None:
        """Insert ``entry``; return None when its occurrence already exists."""
        try:
            return self.insert_entry(entry)
        except MaterializationConflictError:
            return None

    @abstractmethod
    def advance_watermark(self, organization_id: UUID, rule_id: UUID, watermark: date) -> bool: ...

    @abstractmethod
    def update_rule_status(
        self,
        organization_id: UUID,
        rule_id: UUID,
        status: RuleStatus,
        end_date: date | None = None,
    ) -> bool: ...

    @abstractmethod
    def update_entry_status(
        self,
        organization_id: UUID,
        entry_id: UUID,
        new_status: EntryStatus,
        expected_status: EntryStatus,
    ) -> bool: ...

    @abstractmethod
    def atomic(self): ...


class SqlAlchemyBillingRepository(BaseService[LedgerEntryModel], BillingRepository):
    """
    BillingRepository over a caller-owned SQLAlchemy session.

    Rows written here record ``actor_id`` as creator/updater.
    """

    def __init__(self, session: Session, actor_id: UUID = SYSTEM_ACTOR_ID):
        super().__init__(session)
        self.actor_id = actor_id
        self._selector = BillingSelector(session)

    @property
    def selector(self) -> BillingSelector:
        return self._selector

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """SAVEPOINT scope: rolled back on any exception, released otherwise."""
        try:
            with self.session.begin_nested():
                yield
        except TRANSIENT_STORAGE_ERRORS as exc:
            logger.warning(
                "storage_unavailable",
                extra={"operation": "atomic", "error": str(exc)},
            )
            raise StorageUnavailableError("atomic", str(exc)) from exc

    # -- organizations -------------------------------------------------------

    @storage_operation("get_organization")
    def get_organization(self, organization_id: UUID) -> Organization:
        return self._selector.get_organization(organization_id)

    @storage_operation("list_organizations")
    def list_organizations(self, active_only: bool = True) -> tuple[Organization, ...]:
        return self._selector.organizations(active_only=active_only)

    @storage_operation("add_organization")
    def add_organization(self, name: str, organization_id: UUID | None = None) -> Organization:
        model = OrganizationModel(
            id=organization_id or uuid4(),
            name=name,
            is_active=True,
            created_by_id=self.actor_id,
        )
        self.session.add(model)
        self.session.flush()
        return model.to_dto()

    @storage_operation("set_organization_active")
    def set_organization_active(self, organization_id: UUID, is_active: bool) -> Organization:
        model = self.session.get(OrganizationModel, organization_id)
        if model is None:
            raise OrganizationNotFoundError(str(organization_id))
        model.is_active = is_active
        model.mark_updated(self.actor_id)
        self.session.flush()
        return model.to_dto()

    # -- rules ---------------------------------------------------------------

    @storage_operation("get_rule")
    def get_rule(self, organization_id: UUID, rule_id: UUID) -> RecurrenceRule:
        return self._selector.get_rule(organization_id, rule_id)

    @storage_operation("query_rules")
    def query_rules(
        self,
        organization_id: UUID,
        status: RuleStatus | None = None,
        kind: LedgerKind | None = None,
    ) -> tuple[RecurrenceRule, ...]:
        return self._selector.rules(organization_id, status=status, kind=kind)

    @storage_operation("query_active_rules")
    def query_active_rules(self, organization_id: UUID | None = None) -> tuple[RecurrenceRule, ...]:
        return self._selector.active_rules(organization_id)

    @storage_operation("add_rule")
    def add_rule(self, rule: RecurrenceRule) -> RecurrenceRule:
        model = RecurrenceRuleModel.from_dto(rule, created_by_id=self.actor_id)
        self.session.add(model)
        self.session.flush()
        return model.to_dto()

    @storage_operation("update_rule")
    def update_rule(self, organization_id: UUID, rule_id: UUID, **changes) -> RecurrenceRule:
        """
        Apply attribute changes to a rule through the ORM.

        Fixed fields are refused by the before_update listener; the change
        runs in a SAVEPOINT so a refusal leaves the session usable.
        """
        model = self._selector.get_rule_model(organization_id, rule_id)
        with self.session.begin_nested():
            for name, value in changes.items():
                if not hasattr(RecurrenceRuleModel, name) or name in ("id", "organization_id"):
                    raise InvalidRecurrenceRuleError(f"unknown rule field {name!r}", str(rule_id))
                setattr(model, name, getattr(value, "value", value))
            model.mark_updated(self.actor_id)
            self.session.flush()
        return model.to_dto()

    @storage_operation("advance_watermark")
    def advance_watermark(self, organization_id: UUID, rule_id: UUID, watermark: date) -> bool:
        """Move the watermark forward to ``watermark``; False if it was not behind."""
        m = RecurrenceRuleModel
        result = self.session.execute(
            update(m)
            .where(
                m.id == rule_id,
                m.organization_id == organization_id,
                or_(m.watermark.is_(None), m.watermark < watermark),
            )
            .values(m.audit_values(self.actor_id, watermark=watermark))
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    @storage_operation("update_rule_status")
    def update_rule_status(
        self,
        organization_id: UUID,
        rule_id: UUID,
        status: RuleStatus,
        end_date: date | None = None,
    ) -> bool:
        """Set the rule status (and optionally end date) if it differs."""
        m = RecurrenceRuleModel
        values = m.audit_values(self.actor_id, status=RuleStatus(status).value)
        if end_date is not None:
            values["end_date"] = end_date
        result = self.session.execute(
            update(m)
            .where(
                m.id == rule_id,
                m.organization_id == organization_id,
                m.status != RuleStatus(status).value,
            )
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    # -- entries -------------------------------------------------------------

    @storage_operation("get_entry")
    def get_entry(self, organization_id: UUID, entry_id: UUID) -> LedgerEntry:
        return self._selector.get_entry(organization_id, entry_id)

    @storage_operation("query_entries")
    def query_entries(
        self,
        organization_id: UUID,
        kind: LedgerKind | None = None,
        statuses: Iterable[EntryStatus] | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        rule_id: UUID | None = None,
    ) -> tuple[LedgerEntry, ...]:
        return self._selector.entries(
            organization_id,
            kind=kind,
            statuses=statuses,
            date_from=date_from,
            date_to=date_to,
            rule_id=rule_id,
        )

    @storage_operation("entry_exists")
    def entry_exists(self, organization_id: UUID, rule_id: UUID, entry_date: date) -> bool:
        return self._selector.entry_exists(organization_id, rule_id, entry_date)

    @storage_operation("insert_entry")
    def insert_entry(self, entry: LedgerEntry) -> LedgerEntry:
        """
        Insert a ledger entry inside its own SAVEPOINT.

        Raises:
            MaterializationConflictError: The occurrence (rule_id, entry_date)
                is already in the ledger.
            LedgerError: ``entry.status`` is not valid for ``entry.kind``.
        """
        if EntryStatus(entry.status) not in VALID_ENTRY_STATUSES[LedgerKind(entry.kind)]:
            raise LedgerError(
                f"Status {EntryStatus(entry.status).value!r} is not valid "
                f"for {LedgerKind(entry.kind).value} entries"
            )

        model = LedgerEntryModel.from_dto(entry, created_by_id=self.actor_id)
        try:
            with self.session.begin_nested():
                self.session.add(model)
                self.session.flush()
        except IntegrityError as exc:
            if entry.rule_id is not None and self._selector.entry_exists(
                entry.organization_id, entry.rule_id, entry.entry_date
            ):
                logger.info(
                    "occurrence_conflict",
                    extra={
                        "occurrence_key": generate_occurrence_key(
                            entry.rule_id, entry.entry_date
                        ),
                    },
                )
                raise MaterializationConflictError(
                    str(entry.rule_id), entry.entry_date.isoformat()
                ) from exc
            raise
        return model.to_dto()

    @storage_operation("update_entry_status")
    def update_entry_status(
        self,
        organization_id: UUID,
        entry_id: UUID,
        new_status: EntryStatus,
        expected_status: EntryStatus,
    ) -> bool:
        """
        Transition ``expected_status -> new_status``; False if the entry is
        no longer in ``expected_status``.
        """
        current = self._selector.get_entry(organization_id, entry_id)
        new_status = EntryStatus(new_status)
        if new_status not in VALID_ENTRY_STATUSES[current.kind]:
            raise LedgerError(
                f"Status {new_status.value!r} is not valid for {current.kind.value} entries"
            )

        m = LedgerEntryModel
        result = self.session.execute(
            update(m)
            .where(
                m.id == entry_id,
                m.organization_id == organization_id,
                m.status == EntryStatus(expected_status).value,
            )
            .values(m.audit_values(self.actor_id, status=new_status.value))
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1
