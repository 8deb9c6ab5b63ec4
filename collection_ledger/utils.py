"""Utility functions for the collection ledger.

Helpers for turning user or storage input into calendar days and ``Decimal``
amounts, and for date arithmetic on calendar days. Every date the engine
compares goes through :func:`to_day` first so that a time-of-day component
can never shift a due date by one day.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation, getcontext
from typing import Optional, Union

from .errors import ValidationError

getcontext().prec = 28  # increase decimal precision to avoid rounding errors

DateLike = Union[date, datetime, str]


def to_day(value: DateLike) -> date:
    """Return the calendar day of ``value``.

    ``datetime`` values lose their time part; strings are read as ISO dates
    and anything after a ``T`` is ignored (``"2024-03-05T23:00:00Z"`` is
    March 5th, not the 6th).
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip().split("T")[0].split(" ")[0]
        try:
            return date.fromisoformat(text)
        except ValueError as exc:
            raise ValidationError(f"Invalid date: {value}") from exc
    raise ValidationError(f"Invalid date: {value!r}")


def optional_day(value: Optional[DateLike]) -> Optional[date]:
    if value is None or value == "":
        return None
    return to_day(value)


def add_days(dt: date, days: int) -> date:
    return dt + timedelta(days=days)


def add_months(dt: date, months: int) -> date:
    """Return a new date a number of months after ``dt``.

    The day of the month is clamped to the last valid day if needed (e.g.,
    adding one month to Jan 31 yields Feb 28 or 29).
    """
    year = dt.year + (dt.month - 1 + months) // 12
    month = (dt.month - 1 + months) % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def decimal_from_str(value: Union[str, int, float, Decimal]) -> Decimal:
    """Convert a numeric value into a ``Decimal``.

    Strings may carry thousands separators (``"100,000"``). Floats go through
    ``str`` so that ``0.1`` becomes ``Decimal("0.1")``.
    """
    if isinstance(value, Decimal):
        return value
    try:
        if isinstance(value, str):
            return Decimal(value.replace(",", "").strip())
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid numeric value: {value}") from exc


def parse_amount(value: str) -> Decimal:
    """Parse a money amount with optional ``k``/``m`` suffixes.

    ``"250k"`` means 250 000 and ``"1.5m"`` means 1 500 000.
    """
    text = value.strip().lower().replace(",", "")
    factor = Decimal("1")
    if text.endswith("k"):
        factor = Decimal("1000")
        text = text[:-1]
    elif text.endswith("m"):
        factor = Decimal("1000000")
        text = text[:-1]
    return decimal_from_str(text) * factor
