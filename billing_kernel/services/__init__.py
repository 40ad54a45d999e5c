"""Kernel services: writers over the caller's session."""

from billing_kernel.services.base import BaseService
from billing_kernel.services.billing_repository import (
    SYSTEM_ACTOR_ID,
    BillingRepository,
    SqlAlchemyBillingRepository,
)

__all__ = [
    "SYSTEM_ACTOR_ID",
    "BaseService",
    "BillingRepository",
    "SqlAlchemyBillingRepository",
]
