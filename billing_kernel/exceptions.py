"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Batch billing runs collect failures per rule and report them to operators.
A report built from ``str(exc)`` is brittle; a report built from
``exc.code`` and structured attributes survives message rewording, log
pipelines and JSON serialization.

Every exception here:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (rule_id, organization_id, ...)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BillingKernelError (base)
    |
    +-- RecurrenceError
    |   +-- InvalidRecurrenceRuleError
    |   +-- RecurrenceOverflowError
    |   +-- ImmutableRuleFieldError
    |   +-- RuleNotFoundError
    |
    +-- MaterializationError
    |   +-- MaterializationConflictError
    |
    +-- LedgerError
    |   +-- LedgerEntryNotFoundError
    |   +-- LedgerEntryImmutableError
    |   +-- InvalidEntryTransitionError
    |
    +-- StorageError
    |   +-- StorageUnavailableError
    |
    +-- TenantError
    |   +-- TenantIsolationError
    |   +-- OrganizationNotFoundError
    |   +-- OrganizationInactiveError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Recurrence      | INVALID_RECURRENCE_RULE     | Malformed frequency/dates/amount at creation
                | RECURRENCE_OVERFLOW         | Catch-up backlog exceeds occurrence cap
                | IMMUTABLE_RULE_FIELD        | Frequency/amount edited after creation
                | RULE_NOT_FOUND              | Rule ID doesn't exist in organization
----------------|-----------------------------|-----------------------------------------
Materialization | MATERIALIZATION_CONFLICT    | Concurrent run already inserted occurrence (OK)
----------------|-----------------------------|-----------------------------------------
Ledger          | LEDGER_ENTRY_NOT_FOUND      | Entry ID doesn't exist in organization
                | LEDGER_ENTRY_IMMUTABLE      | Amount/date/kind of an issued entry edited
                | INVALID_ENTRY_TRANSITION    | Status change not allowed (e.g. paid -> sent)
----------------|-----------------------------|-----------------------------------------
Storage         | STORAGE_UNAVAILABLE         | Transient storage failure (retry next tick)
----------------|-----------------------------|-----------------------------------------
Tenant          | TENANT_ISOLATION_VIOLATION  | Record belongs to another organization
                | ORGANIZATION_NOT_FOUND      | Organization ID doesn't exist
                | ORGANIZATION_INACTIVE       | Organization is deactivated
----------------|-----------------------------|-----------------------------------------
Config          | CONFIGURATION_ERROR         | Invalid configuration value

===============================================================================
HANDLING PATTERNS
===============================================================================

1. CONFLICT IS SUCCESS:

    try:
        repository.insert_entry(entry)
    except MaterializationConflictError:
        # Another run materialized this occurrence first -- skip.
        skipped += 1

2. OVERFLOW IS AN OPERATOR SIGNAL:

    except RecurrenceOverflowError as e:
        failures.append(RuleFailure(rule_id=e.rule_id, error_code=e.code, ...))

3. STORAGE UNAVAILABLE ABORTS THE ORGANIZATION, NOT THE RUN:

    except StorageUnavailableError:
        # Remaining rules of this organization retry on the next tick.
"""


class BillingKernelError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "BILLING_KERNEL_ERROR"


# Recurrence-related exceptions


class RecurrenceError(BillingKernelError):
    """Base exception for recurrence rule errors."""

    code: str = "RECURRENCE_ERROR"


class InvalidRecurrenceRuleError(RecurrenceError):
    """Recurrence rule is malformed (rejected at creation time)."""

    code: str = "INVALID_RECURRENCE_RULE"

    def __init__(self, reason: str, rule_id: str | None = None):
        self.reason = reason
        self.rule_id = rule_id
        if rule_id:
            super().__init__(f"Invalid recurrence rule {rule_id}: {reason}")
        else:
            super().__init__(f"Invalid recurrence rule: {reason}")


class RecurrenceOverflowError(RecurrenceError):
    """Due occurrences for a rule exceed the per-run occurrence cap."""

    code: str = "RECURRENCE_OVERFLOW"

    def __init__(self, rule_id: str, due_count: int, max_occurrences: int):
        self.rule_id = rule_id
        self.due_count = due_count
        self.max_occurrences = max_occurrences
        super().__init__(
            f"Rule {rule_id} has {due_count} due occurrences, "
            f"exceeding the cap of {max_occurrences}"
        )


class ImmutableRuleFieldError(RecurrenceError):
    """Attempt to change a field that is fixed once the rule exists."""

    code: str = "IMMUTABLE_RULE_FIELD"

    def __init__(self, rule_id: str, field_name: str):
        self.rule_id = rule_id
        self.field_name = field_name
        super().__init__(
            f"Field '{field_name}' of rule {rule_id} cannot change after "
            "creation; end the rule and register a new one"
        )


class RuleNotFoundError(RecurrenceError):
    """Recurrence rule with given ID was not found in the organization."""

    code: str = "RULE_NOT_FOUND"

    def __init__(self, rule_id: str, organization_id: str):
        self.rule_id = rule_id
        self.organization_id = organization_id
        super().__init__(
            f"Recurrence rule {rule_id} not found in organization {organization_id}"
        )


# Materialization-related exceptions


class MaterializationError(BillingKernelError):
    """Base exception for materialization errors."""

    code: str = "MATERIALIZATION_ERROR"


class MaterializationConflictError(MaterializationError):
    """Occurrence was already materialized by a concurrent run.

    Not a failure: callers treat it as "already done, skip".
    """

    code: str = "MATERIALIZATION_CONFLICT"

    def __init__(self, rule_id: str, occurrence_date: str):
        self.rule_id = rule_id
        self.occurrence_date = occurrence_date
        super().__init__(
            f"Occurrence {occurrence_date} of rule {rule_id} already materialized"
        )


# Ledger-related exceptions


class LedgerError(BillingKernelError):
    """Base exception for ledger entry errors."""

    code: str = "LEDGER_ERROR"


class LedgerEntryNotFoundError(LedgerError):
    """Ledger entry with given ID was not found in the organization."""

    code: str = "LEDGER_ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str, organization_id: str):
        self.entry_id = entry_id
        self.organization_id = organization_id
        super().__init__(
            f"Ledger entry {entry_id} not found in organization {organization_id}"
        )


class InvalidEntryTransitionError(LedgerError):
    """Ledger entry status change not allowed from its current status."""

    code: str = "INVALID_ENTRY_TRANSITION"

    def __init__(self, entry_id: str, from_status: str, to_status: str):
        self.entry_id = entry_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Ledger entry {entry_id} cannot move from {from_status} to {to_status}"
        )


class LedgerEntryImmutableError(LedgerError):
    """Field of an issued ledger entry was modified."""

    code: str = "LEDGER_ENTRY_IMMUTABLE"

    def __init__(self, entry_id: str, field_name: str):
        self.entry_id = entry_id
        self.field_name = field_name
        super().__init__(
            f"Field '{field_name}' of ledger entry {entry_id} cannot change after issue"
        )


# Storage-related exceptions


class StorageError(BillingKernelError):
    """Base exception for storage collaborator errors."""

    code: str = "STORAGE_ERROR"


class StorageUnavailableError(StorageError):
    """Transient storage failure; the affected work is retried next tick."""

    code: str = "STORAGE_UNAVAILABLE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage unavailable during {operation}: {detail}")


# Tenant-related exceptions


class TenantError(BillingKernelError):
    """Base exception for tenant scoping errors."""

    code: str = "TENANT_ERROR"


class TenantIsolationError(TenantError):
    """A record was addressed through an organization that does not own it."""

    code: str = "TENANT_ISOLATION_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, organization_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.organization_id = organization_id
        super().__init__(
            f"{entity_type} {entity_id} does not belong to "
            f"organization {organization_id}"
        )


class OrganizationNotFoundError(TenantError):
    """Organization with given ID was not found."""

    code: str = "ORGANIZATION_NOT_FOUND"

    def __init__(self, organization_id: str):
        self.organization_id = organization_id
        super().__init__(f"Organization not found: {organization_id}")


class OrganizationInactiveError(TenantError):
    """Organization is deactivated and cannot receive new rules."""

    code: str = "ORGANIZATION_INACTIVE"

    def __init__(self, organization_id: str):
        self.organization_id = organization_id
        super().__init__(f"Organization is inactive: {organization_id}")


# Configuration exceptions


class ConfigurationError(BillingKernelError):
    """Configuration value is missing or out of range."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, field_name: str, reason: str):
        self.field_name = field_name
        self.reason = reason
        super().__init__(f"Invalid configuration '{field_name}': {reason}")
