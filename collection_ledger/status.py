"""Status classification for credits and installments.

States are derived from an allocation every time they are needed and are
never stored. A credit is ``closed`` once every installment is settled,
``overdue`` while some unsettled installment is past its effective due date,
and ``current`` otherwise.
"""

from __future__ import annotations

from datetime import date
from typing import List, Optional, Tuple

from .data_models import (
    STATE_PAID,
    STATE_PARTIAL,
    STATE_PENDING,
    STATUS_CLOSED,
    STATUS_CURRENT,
    STATUS_OVERDUE,
    Credit,
    InstallmentBalance,
)
from .deferrals import DeferralBook


def _due_dates(credit: Credit, deferrals: Optional[DeferralBook]):
    book = deferrals if deferrals is not None else DeferralBook()
    return book.due_dates(credit)


def classify_status(
    credit: Credit,
    balances: List[InstallmentBalance],
    deferrals: Optional[DeferralBook] = None,
    today: Optional[date] = None,
) -> str:
    """Return ``closed``, ``overdue`` or ``current`` for a credit.

    Parameters
    ----------
    credit: Credit
        The credit whose installments were allocated.
    balances: List[InstallmentBalance]
        Output of :func:`collection_ledger.engine.allocate` for the credit.
    deferrals: DeferralBook, optional
        Overrides used to find each installment's effective due date.
    today: date, optional
        The real calendar date. Defaults to ``date.today()``.
    """
    if today is None:
        today = date.today()
    if all(b.outstanding == 0 for b in balances):
        return STATUS_CLOSED
    due = _due_dates(credit, deferrals)
    for b in balances:
        owed = b.outstanding > 0 or b.fine_outstanding > 0
        if owed and due[b.number] < today:
            return STATUS_OVERDUE
    return STATUS_CURRENT


def installment_state(balance: InstallmentBalance) -> str:
    """Return ``paid``, ``partial`` or ``pending`` for one installment."""
    if balance.paid_manually:
        return STATE_PAID
    if balance.applied_amount <= 0:
        return STATE_PENDING
    if balance.outstanding == 0:
        return STATE_PAID
    return STATE_PARTIAL


def overdue_summary(
    credit: Credit,
    balances: List[InstallmentBalance],
    deferrals: Optional[DeferralBook] = None,
    today: Optional[date] = None,
) -> Tuple[int, Optional[date]]:
    """Count installments with capital owed past their effective due date.

    Returns the count and the earliest such due date.
    """
    if today is None:
        today = date.today()
    due = _due_dates(credit, deferrals)
    overdue = [due[b.number] for b in balances if b.outstanding > 0 and due[b.number] < today]
    return len(overdue), (min(overdue) if overdue else None)


def suggest_label(balances: List[InstallmentBalance]) -> Optional[str]:
    """Suggest a quality label from the share of installments settled.

    ``excellent`` once everything is paid, ``good`` past half, ``late`` past
    a fifth, nothing below that. Operators may still set any label by hand.
    """
    if not balances:
        return None
    settled = sum(1 for b in balances if b.outstanding == 0)
    if settled == len(balances):
        return "excellent"
    ratio = settled / len(balances)
    if ratio > 0.5:
        return "good"
    if ratio > 0.2:
        return "late"
    return None
