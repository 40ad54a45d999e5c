"""Read-only selectors for the billing kernel."""

from billing_kernel.selectors.base import BaseSelector
from billing_kernel.selectors.billing_selector import BillingSelector

__all__ = ["BaseSelector", "BillingSelector"]
