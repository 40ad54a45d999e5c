"""Utility functions for the billing kernel."""

from billing_kernel.utils.idempotency import (
    generate_occurrence_key,
    parse_occurrence_key,
)

__all__ = [
    "generate_occurrence_key",
    "parse_occurrence_key",
]
