"""Tests for occurrence keys (billing_kernel.utils.idempotency)."""

from datetime import date
from uuid import UUID

import pytest

from billing_kernel.utils import generate_occurrence_key, parse_occurrence_key

RULE_ID = UUID("550e8400-e29b-41d4-a716-446655440000")


def test_format():
    assert generate_occurrence_key(RULE_ID, date(2024, 1, 15)) == (
        "550e8400-e29b-41d4-a716-446655440000:2024-01-15"
    )


def test_parse():
    assert parse_occurrence_key(f"{RULE_ID}:2024-02-29") == (RULE_ID, date(2024, 2, 29))


@pytest.mark.parametrize("key", ["2024-01-15", ":2024-01-15", "not-a-uuid:2024-01-15", f"{RULE_ID}:15/01/2024"])
def test_parse_rejects_malformed(key):
    with pytest.raises(ValueError):
        parse_occurrence_key(key)
