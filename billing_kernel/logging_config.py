"""
Structured JSON logging for the billing engine.

Every record is one JSON line.  Run-scoped identifiers (run, organization,
rule, actor) come from ``LogContext.bind`` so callers never repeat them in
``extra``.  Billing payloads are rendered flat:

    - A ``RuleFailure`` passed as ``extra={"failure": ...}`` becomes
      ``error_code``, ``error_message`` and, for occurrence failures,
      ``occurrence_date``.
    - ``occurrence_key`` is derived from ``rule_id`` and ``occurrence_date``
      whenever both are present and the caller did not supply one.
    - Kernel exceptions render as ``exc_code`` plus their ``exc_<attr>``
      fields (an overflow carries ``exc_due_count`` and
      ``exc_max_occurrences``).  Only unexpected exceptions get a traceback.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Mapping
from contextvars import ContextVar
from datetime import UTC, date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from billing_kernel.domain.types import RuleFailure
from billing_kernel.exceptions import BillingKernelError
from billing_kernel.utils.idempotency import generate_occurrence_key

_EMPTY: Mapping[str, str] = MappingProxyType({})


class LogContext:
    """Run-scoped log fields, isolated per thread and per task."""

    FIELDS = ("run_id", "organization_id", "rule_id", "actor_id")

    _fields: ContextVar[Mapping[str, str]] = ContextVar("billing_log_context", default=_EMPTY)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(cls._fields.get())

    @classmethod
    def bind(cls, **fields: Any) -> "_Binding":
        """
        Layer fields over the current context for the duration of a block.

        Values are stored as strings; None leaves an outer value in place.
        Unknown field names raise TypeError so a typo cannot silently drop
        an identifier from every record.
        """
        unknown = set(fields) - set(cls.FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context field(s): {sorted(unknown)}")
        return _Binding({k: str(v) for k, v in fields.items() if v is not None})


class _Binding:
    def __init__(self, fields: dict[str, str]):
        self._fields = fields
        self._token = None

    def __enter__(self) -> type[LogContext]:
        merged = {**LogContext._fields.get(), **self._fields}
        self._token = LogContext._fields.set(MappingProxyType(merged))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        LogContext._fields.reset(self._token)


# Attributes every LogRecord has; anything else arrived through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    # UUID, Decimal and anything else
    return str(obj)


def _failure_fields(failure: RuleFailure) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "organization_id": str(failure.organization_id),
        "error_code": failure.error_code,
        "error_message": failure.message,
    }
    if failure.rule_id is not None:
        fields["rule_id"] = str(failure.rule_id)
    if failure.occurrence_date is not None:
        fields["occurrence_date"] = failure.occurrence_date.isoformat()
    return fields


def _occurrence_key(payload: dict[str, Any]) -> str | None:
    rule_id = payload.get("rule_id")
    occurrence = payload.get("occurrence_date")
    if rule_id is None or occurrence is None:
        return None
    if isinstance(occurrence, str):
        occurrence = date.fromisoformat(occurrence)
    return generate_occurrence_key(rule_id, occurrence)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: base fields, context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }

        for key, value in vars(record).items():
            if key in _RECORD_ATTRS:
                continue
            if isinstance(value, RuleFailure):
                for name, field_value in _failure_fields(value).items():
                    payload.setdefault(name, field_value)
            else:
                payload.setdefault(key, value)

        if "occurrence_key" not in payload:
            key = _occurrence_key(payload)
            if key is not None:
                payload["occurrence_key"] = key

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record))

        return json.dumps(payload, default=_json_default)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        if not isinstance(exc, BillingKernelError):
            fields["traceback"] = self.formatException(record.exc_info)
            return fields

        fields["exc_code"] = exc.code
        attrs = {k: v for k, v in vars(exc).items() if not k.startswith("_")}
        fields.update({f"exc_{k}": v for k, v in attrs.items()})
        key = _occurrence_key(attrs)
        if key is not None:
            fields["exc_occurrence_key"] = key
        return fields


_LOGGER_PREFIX = "billing_kernel"


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``billing_kernel`` namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the ``billing_kernel`` tree.  Later calls are no-ops."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    target = handler or logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(target)


def reset_logging() -> None:
    """Detach handlers and allow ``configure_logging`` to run again.  Tests only."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    root.propagate = True
