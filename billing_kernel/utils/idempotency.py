"""
Occurrence key utilities.

An occurrence key names one materialized occurrence of a recurrence rule.
The same rule and date always produce the same key; the ledger's UNIQUE
(rule_id, entry_date) constraint is the key's storage-side form.
"""

from datetime import date
from uuid import UUID


def generate_occurrence_key(rule_id: UUID | str, occurrence_date: date) -> str:
    """
    Generate the occurrence key for a rule occurrence.

    Format: rule_id:YYYY-MM-DD

    Example:
        >>> generate_occurrence_key(rule_id, date(2024, 1, 15))
        "550e8400-e29b-41d4-a716-446655440000:2024-01-15"
    """
    return f"{rule_id}:{occurrence_date.isoformat()}"


def parse_occurrence_key(key: str) -> tuple[UUID, date]:
    """
    Parse an occurrence key into (rule_id, occurrence_date).

    Raises:
        ValueError: If key format is invalid.
    """
    rule_part, sep, date_part = key.rpartition(":")
    if not sep or not rule_part:
        raise ValueError(f"Invalid occurrence key format: {key}")
    return UUID(rule_part), date.fromisoformat(date_part)
