"""Deferral resolver.

A deferral ("prórroga") moves the date an installment is collected without
touching its scheduled date. :class:`DeferralBook` keeps the overrides keyed
by ``(credit_id, installment_number)``; writing the same key twice keeps the
last date written.
"""

from __future__ import annotations

from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from .data_models import Credit, Deferral, Installment
from .utils import DateLike, to_day

DeferralKey = Tuple[str, int]


class DeferralBook:
    """Effective due dates for installments that were deferred."""

    def __init__(self, deferrals: Iterable[Deferral] = ()) -> None:
        self._dates: Dict[DeferralKey, date] = {}
        for deferral in deferrals:
            self.set(deferral.credit_id, deferral.installment_number, deferral.new_due_date)

    @classmethod
    def from_records(cls, deferrals: Iterable[Deferral]) -> "DeferralBook":
        return cls(deferrals)

    def set(self, credit_id: str, installment_number: int, new_due_date: DateLike) -> None:
        self._dates[(credit_id, installment_number)] = to_day(new_due_date)

    def remove(self, credit_id: str, installment_number: int) -> None:
        self._dates.pop((credit_id, installment_number), None)

    def get(self, credit_id: str, installment_number: int) -> Optional[date]:
        return self._dates.get((credit_id, installment_number))

    def effective_due_date(self, credit_id: str, installment_number: int, scheduled_date: date) -> date:
        """Return the deferred date for the installment, or its scheduled date."""
        override = self._dates.get((credit_id, installment_number))
        return override if override is not None else to_day(scheduled_date)

    def due_date_of(self, credit: Credit, installment: Installment) -> date:
        return self.effective_due_date(credit.id, installment.number, installment.scheduled_date)

    def due_dates(self, credit: Credit) -> Dict[int, date]:
        return {inst.number: self.due_date_of(credit, inst) for inst in credit.installments}

    def records(self) -> List[Deferral]:
        return [
            Deferral(credit_id=credit_id, installment_number=number, new_due_date=due)
            for (credit_id, number), due in sorted(self._dates.items())
        ]

    def __len__(self) -> int:
        return len(self._dates)

    def __contains__(self, key: object) -> bool:
        return key in self._dates


def effective_due_date(
    deferrals: DeferralBook,
    credit_id: str,
    installment_number: int,
    scheduled_date: date,
) -> date:
    return deferrals.effective_due_date(credit_id, installment_number, scheduled_date)
