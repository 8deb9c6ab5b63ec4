"""Installment schedules.

A credit's schedule is generated once, when the credit is originated, from
its cadence and start date. Installment ``i`` falls ``i`` periods after the
start date: one day, seven days, fifteen days or one calendar month per
period depending on the cadence. The schedule is never regenerated; due date
changes are recorded as deferrals instead.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import List, Optional

from .data_models import (
    BIWEEKLY,
    CADENCES,
    DAILY,
    INSTALLMENT_COUNTS,
    MONTHLY,
    WEEKLY,
    Credit,
    Installment,
)
from .errors import ValidationError
from .utils import add_days, add_months, to_day

_PERIOD_DAYS = {DAILY: 1, WEEKLY: 7, BIWEEKLY: 15}


def installment_date(cadence: str, start_date: date, number: int) -> date:
    """Return the scheduled date of installment ``number`` (1-based)."""
    if cadence == MONTHLY:
        return add_months(start_date, number)
    try:
        return add_days(start_date, _PERIOD_DAYS[cadence] * number)
    except KeyError:
        raise ValidationError(f"Unknown cadence: {cadence}") from None


def generate_schedule(cadence: str, start_date: date, count: Optional[int] = None) -> List[Installment]:
    """Build the installment sequence for a cadence.

    Parameters
    ----------
    cadence: str
        One of ``daily``, ``weekly``, ``biweekly`` or ``monthly``.
    start_date: date
        Credit start date. The first installment is due one period later.
    count: int, optional
        Number of installments. Defaults to the fixed count of the cadence.
    """
    if cadence not in CADENCES:
        raise ValidationError(f"Unknown cadence: {cadence}")
    if count is None:
        count = INSTALLMENT_COUNTS[cadence]
    if count <= 0:
        raise ValidationError("Installment count must be positive")
    start = to_day(start_date)
    return [
        Installment(number=n, scheduled_date=installment_date(cadence, start, n))
        for n in range(1, count + 1)
    ]


def create_credit(
    credit_id: str,
    client_id: str,
    principal: Decimal,
    installment_value: Decimal,
    cadence: str,
    start_date: date,
    label: Optional[str] = None,
) -> Credit:
    """Create a credit together with its complete installment set."""
    if cadence not in CADENCES:
        raise ValidationError(f"Unknown cadence: {cadence}")
    count = INSTALLMENT_COUNTS[cadence]
    credit = Credit(
        id=credit_id,
        client_id=client_id,
        principal=principal,
        installment_value=installment_value,
        cadence=cadence,
        start_date=to_day(start_date),
        installment_count=count,
        label=label,
        installments=generate_schedule(cadence, start_date, count),
    )
    validate_schedule(credit)
    return credit


def validate_schedule(credit: Credit) -> None:
    """Raise ``ValidationError`` unless the credit's schedule is well formed.

    A well formed schedule has exactly ``installment_count`` installments
    numbered ``1..installment_count``, each with a scheduled date, and the
    credit has a positive installment value and a known cadence.
    """
    if not credit.id:
        raise ValidationError("Credit id is required")
    if credit.cadence not in CADENCES:
        raise ValidationError(f"Credit {credit.id}: unknown cadence {credit.cadence!r}")
    if credit.installment_value is None or credit.installment_value <= 0:
        raise ValidationError(f"Credit {credit.id}: installment value must be positive")
    if credit.principal is None or credit.principal <= 0:
        raise ValidationError(f"Credit {credit.id}: principal must be positive")
    if credit.installment_count <= 0:
        raise ValidationError(f"Credit {credit.id}: installment count must be positive")
    if len(credit.installments) != credit.installment_count:
        raise ValidationError(
            f"Credit {credit.id}: expected {credit.installment_count} installments, "
            f"got {len(credit.installments)}"
        )
    numbers = sorted(inst.number for inst in credit.installments)
    if numbers != list(range(1, credit.installment_count + 1)):
        raise ValidationError(f"Credit {credit.id}: installment numbers must be 1..{credit.installment_count}")
    for inst in credit.installments:
        if inst.scheduled_date is None:
            raise ValidationError(f"Credit {credit.id}: installment {inst.number} has no scheduled date")


def find_installment(credit: Credit, number: int) -> Optional[Installment]:
    for inst in credit.installments:
        if inst.number == number:
            return inst
    return None
