"""
Billing period arithmetic.

Pure functions, no clock access, no I/O.

Monthly and quarterly stepping clamp the day-of-month to the last valid
day of the target month (Jan 31 + 1 month = Feb 28/29, never Mar 2/3).
Yearly stepping keeps month and day, except Feb 29 which lands on Feb 28
in non-leap years.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime

from billing_kernel.domain.types import Frequency
from billing_kernel.exceptions import InvalidRecurrenceRuleError

MONTHS_PER_PERIOD: dict[Frequency, int] = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.YEARLY: 12,
}


def coerce_frequency(frequency: Frequency | str) -> Frequency:
    """Return ``frequency`` as a Frequency member.

    Raises:
        InvalidRecurrenceRuleError: If the value names no known frequency.
    """
    if isinstance(frequency, Frequency):
        return frequency
    try:
        return Frequency(frequency)
    except ValueError:
        raise InvalidRecurrenceRuleError(
            f"unknown frequency {frequency!r}; expected one of "
            f"{[f.value for f in Frequency]}"
        ) from None


def require_date(value: object, name: str) -> date:
    """Return ``value`` if it is a plain date; raise TypeError otherwise."""
    # datetime is a date subclass; a time component has no meaning here.
    if not isinstance(value, date) or isinstance(value, datetime):
        raise TypeError(f"{name} must be a datetime.date, got {type(value).__name__}")
    return value


def add_months(start: date, months: int) -> date:
    """Shift ``start`` by ``months`` calendar months, clamping the day."""
    require_date(start, "start")
    total = start.year * 12 + (start.month - 1) + months
    year, month_index = divmod(total, 12)
    month = month_index + 1
    if not date.min.year <= year <= date.max.year:
        raise OverflowError(f"date out of range: {start} + {months} months")
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(start.day, last_day))


def add_periods(start: date, frequency: Frequency | str, n: int) -> date:
    """Return ``start`` advanced by ``n`` periods of ``frequency``.

    ``n`` may be zero or negative.
    """
    require_date(start, "start")
    step = MONTHS_PER_PERIOD[coerce_frequency(frequency)]
    return add_months(start, step * n)


def periods_between(a: date, b: date, frequency: Frequency | str) -> int:
    """Whole periods of ``frequency`` from ``a`` to ``b``, floor-rounded.

    The result is the largest ``k`` with ``add_periods(a, frequency, k) <= b``.
    Returns 0 when ``b`` precedes ``a``.
    """
    require_date(a, "a")
    require_date(b, "b")
    step = MONTHS_PER_PERIOD[coerce_frequency(frequency)]
    if b < a:
        return 0

    months = (b.year - a.year) * 12 + (b.month - a.month)
    if add_months(a, months) > b:
        months -= 1
    return months // step


def month_start(day: date) -> date:
    """First day of the month containing ``day``."""
    require_date(day, "day")
    return day.replace(day=1)


def months_apart(a: date, b: date) -> int:
    """Signed count of calendar months from month(a) to month(b)."""
    return (b.year - a.year) * 12 + (b.month - a.month)
