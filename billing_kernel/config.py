"""
Billing Engine Configuration Schema.

Defines the tunables consumed by the materializer and the projection
engine, with defaults taken from the product's dashboard constants
(5% monthly revenue growth, 2% monthly expense inflation).

Values can be overridden at instantiation or loaded from a YAML file:

    config = BillingConfig(growth_rate_percent=Decimal("3.0"))
    config = load_billing_config(Path("billing.yaml"))

YAML layout (every key optional)::

    billing:
      growth_rate_percent: "5.0"
      inflation_rate_percent: "2.0"
      max_occurrences_per_run: 1000
      expense_lookback_months: 6
      payment_terms_days: 0
      max_workers: 4
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Mapping

import yaml

from billing_kernel.exceptions import ConfigurationError
from billing_kernel.logging_config import get_logger

logger = get_logger("config")

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class BillingConfig:
    """
    Configuration for the recurring billing engine.

    Field defaults mirror the product defaults.  Percentages are stored
    as Decimal percent values ("5.0" means 5%); use ``growth_rate`` /
    ``inflation_rate`` for the fractional form.
    """

    # Projection
    growth_rate_percent: Decimal = Decimal("5.0")
    inflation_rate_percent: Decimal = Decimal("2.0")
    expense_lookback_months: int = 6

    # Materialization
    max_occurrences_per_run: int = 1000
    payment_terms_days: int = 0
    max_workers: int = 4

    def __post_init__(self):
        for name in ("growth_rate_percent", "inflation_rate_percent"):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, _to_decimal(name, value))
            if getattr(self, name) <= Decimal("-100"):
                raise ConfigurationError(name, "must be greater than -100")

        if self.expense_lookback_months <= 0:
            raise ConfigurationError(
                "expense_lookback_months", "must be positive",
            )
        if self.max_occurrences_per_run <= 0:
            raise ConfigurationError(
                "max_occurrences_per_run", "must be positive",
            )
        if self.payment_terms_days < 0:
            raise ConfigurationError(
                "payment_terms_days", "cannot be negative",
            )
        if self.max_workers <= 0:
            raise ConfigurationError("max_workers", "must be positive")

        logger.debug(
            "billing_config_initialized",
            extra={
                "growth_rate_percent": str(self.growth_rate_percent),
                "inflation_rate_percent": str(self.inflation_rate_percent),
                "expense_lookback_months": self.expense_lookback_months,
                "max_occurrences_per_run": self.max_occurrences_per_run,
                "payment_terms_days": self.payment_terms_days,
                "max_workers": self.max_workers,
            },
        )

    @property
    def growth_rate(self) -> Decimal:
        """Monthly revenue growth as a fraction (0.05 for 5%)."""
        return self.growth_rate_percent / _HUNDRED

    @property
    def inflation_rate(self) -> Decimal:
        """Monthly expense inflation as a fraction (0.02 for 2%)."""
        return self.inflation_rate_percent / _HUNDRED

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> BillingConfig:
        """Build a config from a plain mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(
                unknown[0], f"unknown configuration key (known: {sorted(known)})",
            )
        return cls(**dict(data))


def _to_decimal(name: str, value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ConfigurationError(name, f"not a decimal value: {value!r}") from None


def load_billing_config(path: Path) -> BillingConfig:
    """
    Load a BillingConfig from a YAML file.

    The file may hold the keys at top level or under a ``billing:`` section.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigurationError: if a key is unknown or a value is out of range.
    """
    with open(path, encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}

    if not isinstance(raw, dict):
        raise ConfigurationError("billing", "top-level YAML must be a mapping")

    section = raw.get("billing", raw)
    if not isinstance(section, dict):
        raise ConfigurationError("billing", "section must be a mapping")

    config = BillingConfig.from_mapping(section)
    logger.info("billing_config_loaded", extra={"path": str(path)})
    return config
