"""
Pytest fixtures for the billing engine test suite.

Provides:
- File-backed SQLite engine per test (SAVEPOINT-capable, shared across
  threads for the parallel materialization tests)
- Sessions, repositories and a deterministic BillingClock
- Factories for organizations, recurrence rules and ledger entries
- Captured structured logs
"""

import json
import logging
from datetime import date, datetime, timezone
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from billing_kernel.config import BillingConfig
from billing_kernel.db.engine import build_engine, create_tables
from billing_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from billing_kernel.domain.clock import BillingClock, DeterministicClock
from billing_kernel.domain.types import (
    INITIAL_ENTRY_STATUS,
    EntryStatus,
    Frequency,
    LedgerEntry,
    LedgerKind,
    RecurrenceRule,
    RuleStatus,
    SourceKind,
)
from billing_kernel.logging_config import (
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from billing_kernel.services.billing_repository import SqlAlchemyBillingRepository


# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

# Default "today" for clock-driven tests
TEST_TODAY = date(2024, 4, 20)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture
def captured_logs():
    """
    Capture billing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, materializer):
            materializer.materialize(as_of)
            logs = captured_logs()
            assert any(r["message"] == "materialization_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("billing_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()


@pytest.fixture
def db_engine(tmp_path):
    """SQLite engine on a fresh file, tables created."""
    eng = build_engine(f"sqlite:///{tmp_path / 'billing.db'}")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker[Session]:
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """Session for a single test.  Rolled back and closed at teardown."""
    sess = session_factory()
    try:
        yield sess
    finally:
        sess.rollback()
        sess.close()


@pytest.fixture
def repository(session) -> SqlAlchemyBillingRepository:
    return SqlAlchemyBillingRepository(session, actor_id=TEST_ACTOR_ID)


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


# =============================================================================
# Clock and configuration
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(
        datetime(TEST_TODAY.year, TEST_TODAY.month, TEST_TODAY.day, 12, tzinfo=timezone.utc)
    )


@pytest.fixture
def clock(deterministic_clock) -> BillingClock:
    return BillingClock(deterministic_clock)


@pytest.fixture
def config() -> BillingConfig:
    return BillingConfig()


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def organization(repository):
    """An active organization."""
    return repository.add_organization("Acme Consulting")


@pytest.fixture
def create_rule(repository, organization):
    """
    Factory persisting a recurrence rule.

    Invoice rules get a fresh counterparty unless one is given.
    """

    def _create(
        kind: LedgerKind = LedgerKind.INVOICE,
        frequency: Frequency = Frequency.MONTHLY,
        amount: int = 10_000,
        start_date: date = date(2024, 1, 15),
        end_date: date | None = None,
        watermark: date | None = None,
        counterparty_id: UUID | None = None,
        organization_id: UUID | None = None,
        status: RuleStatus = RuleStatus.ACTIVE,
        description: str = "",
    ) -> RecurrenceRule:
        if kind == LedgerKind.INVOICE and counterparty_id is None:
            counterparty_id = uuid4()
        rule = RecurrenceRule(
            rule_id=uuid4(),
            organization_id=organization_id or organization.organization_id,
            kind=kind,
            frequency=frequency,
            amount=amount,
            start_date=start_date,
            end_date=end_date,
            status=status,
            watermark=watermark,
            counterparty_id=counterparty_id,
            source_kind=(
                SourceKind.SERVICE if kind == LedgerKind.INVOICE else SourceKind.EXPENSE_TEMPLATE
            ),
            description=description,
        )
        return repository.add_rule(rule)

    return _create


@pytest.fixture
def create_entry(repository, organization):
    """Factory persisting a ledger entry (manual unless ``rule_id`` is given)."""

    def _create(
        kind: LedgerKind = LedgerKind.INVOICE,
        amount: int = 10_000,
        entry_date: date = date(2024, 3, 1),
        due_date: date | None = None,
        status: EntryStatus | None = None,
        counterparty_id: UUID | None = None,
        rule_id: UUID | None = None,
        organization_id: UUID | None = None,
    ) -> LedgerEntry:
        entry = LedgerEntry(
            entry_id=uuid4(),
            organization_id=organization_id or organization.organization_id,
            kind=kind,
            amount=amount,
            entry_date=entry_date,
            due_date=due_date or entry_date,
            status=status or INITIAL_ENTRY_STATUS[kind],
            rule_id=rule_id,
            counterparty_id=counterparty_id,
        )
        return repository.insert_entry(entry)

    return _create


def make_rule(**overrides) -> RecurrenceRule:
    """Unpersisted rule for pure engine tests."""
    values = dict(
        rule_id=uuid4(),
        organization_id=uuid4(),
        kind=LedgerKind.INVOICE,
        frequency=Frequency.MONTHLY,
        amount=10_000,
        start_date=date(2024, 1, 15),
        counterparty_id=uuid4(),
    )
    values.update(overrides)
    return RecurrenceRule(**values)


def make_entry(**overrides) -> LedgerEntry:
    """Unpersisted ledger entry for pure engine tests."""
    values = dict(
        entry_id=uuid4(),
        organization_id=uuid4(),
        kind=LedgerKind.INVOICE,
        amount=10_000,
        entry_date=date(2024, 3, 1),
        due_date=date(2024, 3, 1),
        status=EntryStatus.SENT,
        counterparty_id=uuid4(),
    )
    values.update(overrides)
    return LedgerEntry(**values)
