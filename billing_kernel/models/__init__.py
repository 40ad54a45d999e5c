"""ORM models for the billing kernel."""

from billing_kernel.models.ledger_entry import LedgerEntryModel
from billing_kernel.models.organization import OrganizationModel
from billing_kernel.models.recurrence_rule import RecurrenceRuleModel

__all__ = [
    "LedgerEntryModel",
    "OrganizationModel",
    "RecurrenceRuleModel",
]
