"""
ORM-level immutability enforcement for recurrence rules and ledger entries.

Rules are edited in place only for lifecycle fields (status, end_date,
description).  Their frequency, amount, kind and start date define every
occurrence already materialized; changing them would make the ledger
disagree with the rule that produced it.  Ledger entries keep their amount
and dates once issued; only status and description move.

These listeners run on ``before_update`` and inspect attribute history.
Core ``UPDATE`` statements issued by the repository (watermark advance,
status transitions) bypass them and touch only mutable columns.

Usage:
    register_immutability_listeners()    # once, at startup
    unregister_immutability_listeners()  # tests only
"""

from sqlalchemy import event, inspect

from billing_kernel.exceptions import ImmutableRuleFieldError, LedgerEntryImmutableError
from billing_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_registered = False


def _changed_fields(target, fields: tuple[str, ...]) -> list[str]:
    insp = inspect(target)
    changed = []
    for name in fields:
        hist = insp.attrs[name].history
        # history.added without deleted means first load/assign, not a change
        if hist.deleted and hist.added and hist.deleted[0] != hist.added[0]:
            changed.append(name)
    return changed


def _check_rule_immutability(mapper, connection, target):
    from billing_kernel.models.recurrence_rule import IMMUTABLE_RULE_FIELDS

    changed = _changed_fields(target, IMMUTABLE_RULE_FIELDS)
    if changed:
        logger.error(
            "immutability_violation_blocked",
            extra={
                "entity_type": "RecurrenceRule",
                "entity_id": str(target.id),
                "field": changed[0],
            },
        )
        raise ImmutableRuleFieldError(str(target.id), changed[0])


def _check_entry_immutability(mapper, connection, target):
    from billing_kernel.models.ledger_entry import IMMUTABLE_ENTRY_FIELDS

    changed = _changed_fields(target, IMMUTABLE_ENTRY_FIELDS)
    if changed:
        logger.error(
            "immutability_violation_blocked",
            extra={
                "entity_type": "LedgerEntry",
                "entity_id": str(target.id),
                "field": changed[0],
            },
        )
        raise LedgerEntryImmutableError(str(target.id), changed[0])


def register_immutability_listeners() -> None:
    """Install the before_update listeners.  Safe to call repeatedly."""
    global _registered
    if _registered:
        return

    from billing_kernel.models.ledger_entry import LedgerEntryModel
    from billing_kernel.models.recurrence_rule import RecurrenceRuleModel

    event.listen(RecurrenceRuleModel, "before_update", _check_rule_immutability)
    event.listen(LedgerEntryModel, "before_update", _check_entry_immutability)
    _registered = True
    logger.debug("immutability_listeners_registered")


def unregister_immutability_listeners() -> None:
    """Remove the listeners.  For tests only."""
    global _registered
    if not _registered:
        return

    from billing_kernel.models.ledger_entry import LedgerEntryModel
    from billing_kernel.models.recurrence_rule import RecurrenceRuleModel

    if event.contains(RecurrenceRuleModel, "before_update", _check_rule_immutability):
        event.remove(RecurrenceRuleModel, "before_update", _check_rule_immutability)
    if event.contains(LedgerEntryModel, "before_update", _check_entry_immutability):
        event.remove(LedgerEntryModel, "before_update", _check_entry_immutability)
    _registered = False
