"""Utility functions for the amortisation form.

This module provides the pure helpers the form pipeline is built on: the
logarithmic slider transform, the next-period date defaulting rule, month
arithmetic and the coercion of raw control strings into numbers and dates.
"""

from __future__ import annotations

import calendar
import math
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .config import FIXED_PAYMENT_DECIMALS, PERCENT_DECIMALS, ROLLOVER_MIN_DAYS


def to_value(position: float, min_value: float, max_value: float) -> float:
    """Map a slider position in [0, 100] onto ``[min_value, max_value]``.

    The mapping is logarithmic:

        value = exp(ln(min) + position * (ln(max) - ln(min)) / 100)

    Parameters must satisfy ``0 < min_value < max_value``. Positions outside
    [0, 100] are not clamped here; that is the caller's job.
    """
    min_log = math.log(min_value)
    max_log = math.log(max_value)
    scale = (max_log - min_log) / 100
    return math.exp(min_log + scale * position)


def to_position(value: float, min_value: float, max_value: float) -> float:
    """Exact inverse of :func:`to_value`. ``value`` must be positive."""
    min_log = math.log(min_value)
    max_log = math.log(max_value)
    scale = (max_log - min_log) / 100
    return (math.log(value) - min_log) / scale


def add_months(dt: date, months: int) -> date:
    """Return a new date a number of months after ``dt``.

    The day of the month is clamped to the last valid day if needed (e.g.,
    adding one month to Jan 31 yields Feb 28 or 29).
    """
    year = dt.year + (dt.month - 1 + months) // 12
    month = (dt.month - 1 + months) % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def next_period_start(reference: date) -> date:
    """Return the default first-of-month date following ``reference``.

    The candidate is the first day of the month after ``reference``. When it
    lies fewer than 20 days ahead, it moves one further month out so the first
    accrual period is never unreasonably short.

    >>> next_period_start(date(2024, 1, 15))
    datetime.date(2024, 3, 1)
    """
    candidate = add_months(reference.replace(day=1), 1)
    if (candidate - reference).days < ROLLOVER_MIN_DAYS:
        candidate = add_months(candidate, 1)
    return candidate


def today() -> date:
    return date.today()


def parse_iso_date(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` string.

    Raises
    ------
    ValueError
        If the string is not a valid ISO date.
    """
    try:
        return date.fromisoformat(value.strip())
    except (AttributeError, ValueError) as exc:
        raise ValueError(f"Invalid date: {value!r}") from exc


def float_from_str(value: str) -> float:
    """Convert a numeric string into a finite ``float``.

    The function strips any commas and surrounding whitespace. It raises
    ``ValueError`` if conversion fails or the number is not finite.
    """
    try:
        number = float(value.replace(",", "").strip())
    except (AttributeError, ValueError) as exc:
        raise ValueError(f"Invalid numeric value: {value!r}") from exc
    if not math.isfinite(number):
        raise ValueError(f"Invalid numeric value: {value!r}")
    return number


def int_from_str(value: str) -> int:
    """Convert a numeric string holding a whole number into an ``int``."""
    number = float_from_str(value)
    if not number.is_integer():
        raise ValueError(f"Expected a whole number: {value!r}")
    return int(number)


def format_number(value: float) -> str:
    """Render a number the way a form field shows it (no trailing ``.0``)."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.12g}"


def format_money(value: Decimal, places: int = FIXED_PAYMENT_DECIMALS) -> str:
    """Round a monetary amount to ``places`` decimal places (two by default)."""
    return str(Decimal(value).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP))


def format_percent(fraction: Decimal) -> str:
    """Render a decimal fraction as a percentage rounded to 6 places.

    Rounding happens on the ``Decimal`` before conversion to text, so
    ``0.0525`` renders as ``"5.25"`` rather than ``"5.250000000000001"``.
    Trailing zeros are dropped.
    """
    try:
        scaled = Decimal(str(fraction)) * 100
        rounded = scaled.quantize(Decimal(1).scaleb(-PERCENT_DECIMALS), rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid rate: {fraction!r}") from exc
    text = format(rounded.normalize(), "f")
    return "0" if text in ("-0", "0") else text
