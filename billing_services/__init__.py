"""
Billing services: imperative shell around the billing engines.

Services take a BillingRepository and a clock, load snapshots, run the
pure engines and persist results.  None of them commit; the orchestrator,
the CLI or the embedding application owns the transaction.
"""

from billing_services.defaulter_service import DefaulterService
from billing_services.ledger_service import ENTRY_TRANSITIONS, LedgerService
from billing_services.materializer import LedgerMaterializer
from billing_services.orchestrator import BillingOrchestrator
from billing_services.overdue_service import OverdueService
from billing_services.projection_service import ProjectionService
from billing_services.rule_service import RuleService

__all__ = [
    "BillingOrchestrator",
    "DefaulterService",
    "ENTRY_TRANSITIONS",
    "LedgerMaterializer",
    "LedgerService",
    "OverdueService",
    "ProjectionService",
    "RuleService",
]
