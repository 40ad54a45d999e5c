"""
BillingOrchestrator -- DI container for the billing services.

Contract:
    Wires one repository, clock and configuration into the materializer,
    projection, defaulter, overdue, rule and ledger services.  Single place
    where billing dependencies are composed; the CLI and embedding
    applications go through it.

Architecture: billing_services (top-level).

Invariants enforced:
    - Clock injection: every service receives the same BillingClock.
    - ``run_materialization`` with a session factory fans out one worker
      per organization, each in its own session and transaction, so one
      organization's storage failure never rolls back another's entries.

Non-goals:
    - Does NOT manage the lifecycle of the session passed to
      ``from_session`` -- caller controls commits.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from billing_kernel.config import BillingConfig
from billing_kernel.db.engine import session_scope
from billing_kernel.domain.clock import BillingClock, Clock
from billing_kernel.domain.periods import require_date
from billing_kernel.domain.types import MaterializationReport, RuleFailure
from billing_kernel.exceptions import BillingKernelError, StorageUnavailableError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.services.billing_repository import (
    SYSTEM_ACTOR_ID,
    TRANSIENT_STORAGE_ERRORS,
    BillingRepository,
    SqlAlchemyBillingRepository,
)
from billing_services.defaulter_service import DefaulterService
from billing_services.ledger_service import LedgerService
from billing_services.materializer import LedgerMaterializer
from billing_services.overdue_service import OverdueService
from billing_services.projection_service import ProjectionService
from billing_services.rule_service import RuleService

logger = get_logger("services.orchestrator")


class BillingOrchestrator:
    """DI container for the billing services.

    Contract:
        - ``from_session()`` factory creates a fully wired orchestrator.
        - Service properties expose the wired services for direct use.
        - ``run_materialization()`` runs a full materialization tick.
    """

    def __init__(
        self,
        repository: BillingRepository,
        clock: BillingClock | Clock | None = None,
        config: BillingConfig | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> None:
        if not isinstance(clock, BillingClock):
            clock = BillingClock(clock)
        self._repository = repository
        self._clock = clock
        self._config = config or BillingConfig()
        self._actor_id = actor_id

        self._materializer = LedgerMaterializer(repository, clock, self._config)
        self._projection = ProjectionService(repository, clock, self._config)
        self._defaulters = DefaulterService(repository, clock)
        self._overdue = OverdueService(repository, clock)
        self._rules = RuleService(repository, clock)
        self._ledger = LedgerService(repository, self._config)

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_session(
        cls,
        session: Session,
        clock: BillingClock | Clock | None = None,
        config: BillingConfig | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> BillingOrchestrator:
        """Create a fully wired orchestrator over ``session``.

        Args:
            session: SQLAlchemy session for persistence.
            clock: Optional clock for deterministic runs.
            config: Optional configuration; defaults to BillingConfig().
            actor_id: Actor recorded on written rows.
        """
        return cls(
            repository=SqlAlchemyBillingRepository(session, actor_id=actor_id),
            clock=clock,
            config=config,
            actor_id=actor_id,
        )

    # -------------------------------------------------------------------------
    # Materialization
    # -------------------------------------------------------------------------

    def run_materialization(
        self,
        as_of: date | None = None,
        session_factory: sessionmaker[Session] | None = None,
    ) -> MaterializationReport:
        """
        Materialize every due occurrence across all organizations.

        Without ``session_factory`` the run uses the orchestrator's own
        repository and the caller commits.  With one, organizations run in
        parallel (``config.max_workers``), each committed by its worker;
        the orchestrator's own session is not used.
        """
        as_of = self._clock.today() if as_of is None else require_date(as_of, "as_of")
        if session_factory is None:
            return self._materializer.materialize(as_of)

        # Short-lived session: on SQLite an open transaction here would hold
        # the write lock the workers queue on.
        with session_scope(session_factory) as session:
            scan = SqlAlchemyBillingRepository(session, actor_id=self._actor_id)
            organization_ids = sorted(
                {rule.organization_id for rule in scan.query_active_rules()},
                key=str,
            )
        report = MaterializationReport(as_of=as_of)
        if not organization_ids:
            return report

        logger.info(
            "parallel_materialization_started",
            extra={
                "as_of": as_of.isoformat(),
                "organization_count": len(organization_ids),
                "max_workers": self._config.max_workers,
            },
        )

        with ThreadPoolExecutor(
            max_workers=min(self._config.max_workers, len(organization_ids)),
            thread_name_prefix="billing-materializer",
        ) as pool:
            futures = {
                pool.submit(self._materialize_organization, session_factory, org_id, as_of): org_id
                for org_id in organization_ids
            }
            for future in as_completed(futures):
                report = report.merge(future.result())

        logger.info(
            "parallel_materialization_completed",
            extra={
                "as_of": as_of.isoformat(),
                "total_created": report.total_created,
                "skipped": report.skipped,
                "failed_rules": report.failed_rule_count,
            },
        )
        return report

    def _materialize_organization(
        self,
        session_factory: sessionmaker[Session],
        organization_id: UUID,
        as_of: date,
    ) -> MaterializationReport:
        """Worker body: one session, one transaction, one organization."""
        with LogContext.bind(organization_id=organization_id, actor_id=self._actor_id):
            try:
                with session_scope(session_factory) as session:
                    repository = SqlAlchemyBillingRepository(session, actor_id=self._actor_id)
                    materializer = LedgerMaterializer(repository, self._clock, self._config)
                    return materializer.materialize(as_of, organization_id=organization_id)
            except (StorageUnavailableError, *TRANSIENT_STORAGE_ERRORS) as exc:
                return self._failed_organization(
                    organization_id, as_of, StorageUnavailableError.code, exc
                )
            except Exception as exc:
                error_code = exc.code if isinstance(exc, BillingKernelError) else "UNHANDLED_EXCEPTION"
                return self._failed_organization(organization_id, as_of, error_code, exc)

    @staticmethod
    def _failed_organization(
        organization_id: UUID,
        as_of: date,
        error_code: str,
        exc: Exception,
    ) -> MaterializationReport:
        failure = RuleFailure(
            organization_id=organization_id,
            error_code=error_code,
            message=str(exc),
        )
        logger.error("organization_run_failed", extra={"failure": failure}, exc_info=exc)
        return MaterializationReport(as_of=as_of, failures=(failure,))

    # -------------------------------------------------------------------------
    # Delegates
    # -------------------------------------------------------------------------

    def project(self, organization_id: UUID, as_of: date | None = None, **window):
        return self._projection.project(organization_id, as_of, **window)

    def summary(self, organization_id: UUID, as_of: date | None = None, **window):
        return self._projection.summary(organization_id, as_of, **window)

    def find_defaulters(self, organization_id: UUID, as_of: date | None = None):
        return self._defaulters.find_defaulters(organization_id, as_of)

    def mark_overdue(self, organization_id: UUID, as_of: date | None = None):
        return self._overdue.mark_overdue(organization_id, as_of)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def repository(self) -> BillingRepository:
        return self._repository

    @property
    def clock(self) -> BillingClock:
        return self._clock

    @property
    def config(self) -> BillingConfig:
        return self._config

    @property
    def actor_id(self) -> UUID:
        return self._actor_id

    @property
    def materializer(self) -> LedgerMaterializer:
        return self._materializer

    @property
    def projections(self) -> ProjectionService:
        return self._projection

    @property
    def defaulters(self) -> DefaulterService:
        return self._defaulters

    @property
    def overdue(self) -> OverdueService:
        return self._overdue

    @property
    def rules(self) -> RuleService:
        return self._rules

    @property
    def ledger(self) -> LedgerService:
        return self._ledger
