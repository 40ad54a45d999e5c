"""
Tests for BillingOrchestrator.

The parallel tests seed and verify through committed sessions from
``session_factory``: an open transaction on the per-test ``session`` would
hold the SQLite write lock the workers wait on.
"""

from datetime import date
from uuid import uuid4

import pytest

from billing_kernel.config import BillingConfig
from billing_kernel.db.engine import session_scope
from billing_kernel.domain.types import EntryStatus, Frequency, LedgerKind
from billing_kernel.exceptions import StorageUnavailableError
from billing_kernel.services.billing_repository import SqlAlchemyBillingRepository
from billing_services.materializer import LedgerMaterializer
from billing_services.orchestrator import BillingOrchestrator
from conftest import TEST_ACTOR_ID, make_rule

AS_OF = date(2024, 4, 20)


def _seed_organizations(session_factory, count):
    """Commit ``count`` organizations, each with one Jan-15 monthly invoice rule."""
    org_ids = []
    with session_scope(session_factory) as session:
        repository = SqlAlchemyBillingRepository(session, actor_id=TEST_ACTOR_ID)
        for i in range(count):
            org = repository.add_organization(f"Tenant {i}")
            repository.add_rule(make_rule(organization_id=org.organization_id))
            org_ids.append(org.organization_id)
    return org_ids


def _entry_count(session_factory, organization_id):
    with session_scope(session_factory) as session:
        repository = SqlAlchemyBillingRepository(session, actor_id=TEST_ACTOR_ID)
        return len(repository.query_entries(organization_id))


@pytest.fixture
def idle_orchestrator(session_factory, clock):
    """Orchestrator whose own session is never used by parallel runs."""
    session = session_factory()
    yield BillingOrchestrator.from_session(
        session, clock=clock, config=BillingConfig(max_workers=3), actor_id=TEST_ACTOR_ID
    )
    session.close()


class TestWiring:
    def test_services_share_repository_and_clock(self, repository, clock):
        orchestrator = BillingOrchestrator(repository, clock)

        assert orchestrator.repository is repository
        assert orchestrator.clock is clock
        assert orchestrator.materializer is not None
        assert orchestrator.rules is not None
        assert orchestrator.ledger is not None
        assert orchestrator.config == BillingConfig()

    def test_wraps_plain_clock(self, repository, deterministic_clock):
        orchestrator = BillingOrchestrator(repository, deterministic_clock)
        assert orchestrator.clock.today() == date(2024, 4, 20)


class TestSequentialRun:
    def test_uses_own_repository(self, repository, clock, create_rule):
        rule = create_rule()
        orchestrator = BillingOrchestrator(repository, clock)

        report = orchestrator.run_materialization()

        assert report.as_of == AS_OF
        assert report.created_by_organization == {rule.organization_id: 4}

    def test_delegates(self, repository, clock, create_rule, organization):
        org = organization.organization_id
        orchestrator = BillingOrchestrator(repository, clock)
        rule = create_rule(start_date=date(2024, 3, 1))
        orchestrator.run_materialization(AS_OF)

        entries = repository.query_entries(org)
        for entry in entries:
            orchestrator.ledger.mark_sent(org, entry.entry_id)

        assert len(orchestrator.mark_overdue(org, AS_OF)) == 2
        defaulters = orchestrator.find_defaulters(org, AS_OF)
        assert [d.counterparty_id for d in defaulters] == [rule.counterparty_id]
        assert len(orchestrator.project(org, AS_OF, months_back=1, months_forward=1)) == 3
        assert orchestrator.summary(org, AS_OF).projected_income_total > 0


class TestParallelRun:
    def test_each_organization_committed(self, idle_orchestrator, session_factory):
        org_ids = _seed_organizations(session_factory, 4)

        report = idle_orchestrator.run_materialization(AS_OF, session_factory=session_factory)

        assert report.created_by_organization == {org_id: 4 for org_id in org_ids}
        assert report.rules_scanned == 4
        assert not report.has_failures
        for org_id in org_ids:
            assert _entry_count(session_factory, org_id) == 4

    def test_rerun_creates_nothing(self, idle_orchestrator, session_factory):
        _seed_organizations(session_factory, 2)
        idle_orchestrator.run_materialization(AS_OF, session_factory=session_factory)

        second = idle_orchestrator.run_materialization(AS_OF, session_factory=session_factory)

        assert second.total_created == 0
        assert second.skipped == 0

    def test_nothing_to_do(self, idle_orchestrator, session_factory):
        report = idle_orchestrator.run_materialization(AS_OF, session_factory=session_factory)
        assert report.total_created == 0
        assert report.rules_scanned == 0

    def test_storage_failure_rolls_back_one_organization(
        self, idle_orchestrator, session_factory, monkeypatch
    ):
        bad, good = _seed_organizations(session_factory, 2)
        real = LedgerMaterializer.materialize

        def flaky(self, as_of=None, organization_id=None):
            report = real(self, as_of, organization_id)
            if organization_id == bad:
                raise StorageUnavailableError("commit", "disk I/O error")
            return report

        monkeypatch.setattr(LedgerMaterializer, "materialize", flaky)

        report = idle_orchestrator.run_materialization(AS_OF, session_factory=session_factory)

        assert [(f.organization_id, f.error_code) for f in report.failures] == [
            (bad, "STORAGE_UNAVAILABLE")
        ]
        assert report.created_by_organization == {good: 4}
        assert _entry_count(session_factory, bad) == 0
        assert _entry_count(session_factory, good) == 4

    def test_unexpected_error_reported(self, idle_orchestrator, session_factory, monkeypatch, captured_logs):
        (only,) = _seed_organizations(session_factory, 1)

        def broken(self, as_of=None, organization_id=None):
            raise RuntimeError("bug")

        monkeypatch.setattr(LedgerMaterializer, "materialize", broken)

        report = idle_orchestrator.run_materialization(AS_OF, session_factory=session_factory)

        assert report.failures[0].organization_id == only
        assert report.failures[0].error_code == "UNHANDLED_EXCEPTION"
        failed = [r for r in captured_logs() if r["message"] == "organization_run_failed"]
        assert failed[0]["organization_id"] == str(only)

    def test_mixed_kinds_counted(self, idle_orchestrator, session_factory):
        with session_scope(session_factory) as session:
            repository = SqlAlchemyBillingRepository(session, actor_id=TEST_ACTOR_ID)
            org = repository.add_organization("Mixed")
            repository.add_rule(make_rule(
                organization_id=org.organization_id,
                kind=LedgerKind.EXPENSE,
                counterparty_id=None,
                frequency=Frequency.QUARTERLY,
                start_date=date(2024, 1, 1),
            ))
            repository.add_rule(make_rule(organization_id=org.organization_id, counterparty_id=uuid4()))

        report = idle_orchestrator.run_materialization(AS_OF, session_factory=session_factory)

        assert report.expenses_created == 2
        assert report.invoices_created == 4
        with session_scope(session_factory) as session:
            repository = SqlAlchemyBillingRepository(session, actor_id=TEST_ACTOR_ID)
            statuses = {e.status for e in repository.query_entries(org.organization_id)}
        assert statuses == {EntryStatus.DRAFT, EntryStatus.PENDING}
