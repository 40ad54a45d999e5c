"""
Billing engines: pure calculations over billing-kernel DTOs.

No I/O, no clock access.  Services load snapshots and pass them in.
"""

from billing_engines.defaulters import Defaulter, DefaulterDetector, is_overdue
from billing_engines.projection import (
    ProjectionEngine,
    ProjectionInput,
    ProjectionSummary,
    summarize,
)
from billing_engines.recurrence import (
    OccurrenceSequence,
    RecurrenceGenerator,
    validate_rule,
)
from billing_engines.tracer import traced_engine

__all__ = [
    "Defaulter",
    "DefaulterDetector",
    "OccurrenceSequence",
    "ProjectionEngine",
    "ProjectionInput",
    "ProjectionSummary",
    "RecurrenceGenerator",
    "is_overdue",
    "summarize",
    "traced_engine",
    "validate_rule",
]
