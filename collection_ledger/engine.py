"""Allocation engine for the collection ledger.

Given a credit's schedule and its ledger, this module computes how much of
every installment has been paid, what is still outstanding and how much of
the fines tied to each installment has been covered. Nothing is stored: the
result is recomputed from the full history on every call, so calling
:func:`allocate` twice with the same inputs always yields the same balances.

Payments are applied in two passes:

1. Targeted payments (those naming an existing, not manually paid
   installment) fill their installment first, oldest first.
2. General payments, plus whatever a targeted payment had left over, are
   swept across the installments in ascending number. A payment larger than
   the remaining balance fills the installment and carries the rest to the
   next unpaid one.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .data_models import (
    DISCOUNT_DAYS,
    Application,
    Credit,
    CreditSummary,
    FineBalance,
    InstallmentBalance,
    Payment,
)
from .errors import NotFoundError
from .ledger import CreditLedger
from .schedule import find_installment
from .utils import DateLike

ZERO = Decimal("0")


def _payment_order(payment: Payment) -> Tuple[date, int]:
    return (payment.date, payment.sequence)


def fine_balances(ledger: CreditLedger) -> List[FineBalance]:
    """Return every fine of the ledger with the amount paid against it.

    Coverage is clamped at the fine's value; overpaying a fine never spills
    into installment capital or other fines.
    """
    paid: Dict[str, Decimal] = {}
    for fp in ledger.fine_payments:
        paid[fp.fine_id] = paid.get(fp.fine_id, ZERO) + fp.value
    return [
        FineBalance(
            fine_id=fine.id,
            value=fine.value,
            covered=min(paid.get(fine.id, ZERO), fine.value),
            related_installment=fine.related_installment,
        )
        for fine in ledger.fines
    ]


def allocate(credit: Credit, ledger: CreditLedger) -> List[InstallmentBalance]:
    """Compute the balance of every installment of ``credit``.

    Parameters
    ----------
    credit: Credit
        The credit with its installment set.
    ledger: CreditLedger
        Payments, fines and fine payments recorded for the credit.

    Returns
    -------
    List[InstallmentBalance]
        One entry per installment, in ascending number. For each entry
        ``applied_amount + outstanding == installment_value``.
    """
    value = credit.installment_value
    installments = sorted(credit.installments, key=lambda i: i.number)
    by_number = {inst.number: inst for inst in installments}

    applied: Dict[int, Decimal] = {inst.number: ZERO for inst in installments}
    applications: Dict[int, List[Application]] = {inst.number: [] for inst in installments}

    targeted: Dict[int, List[Payment]] = {}
    # (date, sequence, payment, amount still available)
    general: List[Tuple[date, int, Payment, Decimal]] = []

    for payment in sorted(ledger.payments, key=_payment_order):
        inst = by_number.get(payment.target_installment) if payment.target_installment is not None else None
        if inst is None or inst.paid_manually:
            general.append((payment.date, payment.sequence, payment, payment.value))
        else:
            targeted.setdefault(inst.number, []).append(payment)

    for inst in installments:
        if inst.paid_manually:
            continue
        for payment in targeted.get(inst.number, []):
            remaining = value - applied[inst.number]
            amount = min(payment.value, remaining)
            if amount > 0:
                applied[inst.number] += amount
                applications[inst.number].append(
                    Application(payment_id=payment.id, amount=amount, date=payment.date, targeted=True)
                )
            excess = payment.value - amount
            if excess > 0:
                general.append((payment.date, payment.sequence, payment, excess))

    general.sort(key=lambda entry: (entry[0], entry[1]))

    pool_index = 0
    pool_left = general[0][3] if general else ZERO
    for inst in installments:
        if inst.paid_manually:
            continue
        remaining = value - applied[inst.number]
        while remaining > 0 and pool_index < len(general):
            payment = general[pool_index][2]
            amount = min(pool_left, remaining)
            applied[inst.number] += amount
            applications[inst.number].append(
                Application(payment_id=payment.id, amount=amount, date=payment.date, targeted=False)
            )
            remaining -= amount
            pool_left -= amount
            if pool_left <= 0:
                pool_index += 1
                pool_left = general[pool_index][3] if pool_index < len(general) else ZERO

    fine_total: Dict[int, Decimal] = {}
    fine_covered: Dict[int, Decimal] = {}
    for fb in fine_balances(ledger):
        if fb.related_installment is None or fb.related_installment not in by_number:
            continue
        fine_total[fb.related_installment] = fine_total.get(fb.related_installment, ZERO) + fb.value
        fine_covered[fb.related_installment] = fine_covered.get(fb.related_installment, ZERO) + fb.covered

    balances: List[InstallmentBalance] = []
    for inst in installments:
        if inst.paid_manually:
            amount_applied = value
            paid_on: Optional[date] = inst.paid_date
        else:
            amount_applied = applied[inst.number]
            paid_on = None
            if amount_applied >= value and applications[inst.number]:
                paid_on = max(a.date for a in applications[inst.number])
        balances.append(
            InstallmentBalance(
                number=inst.number,
                installment_value=value,
                applied_amount=amount_applied,
                outstanding=max(ZERO, value - amount_applied),
                paid_manually=inst.paid_manually,
                paid_date=paid_on,
                applications=applications[inst.number],
                fine_total=fine_total.get(inst.number, ZERO),
                fine_covered=fine_covered.get(inst.number, ZERO),
            )
        )
    return balances


def discount_amount(credit: Credit, ledger: CreditLedger) -> Decimal:
    """Total money value of the credit's discounts.

    A ``days`` discount forgives that many installments.
    """
    total = ZERO
    for discount in ledger.discounts:
        if discount.kind == DISCOUNT_DAYS:
            total += discount.value * credit.installment_value
        else:
            total += discount.value
    return total


def summarize_credit(
    credit: Credit,
    ledger: CreditLedger,
    balances: Optional[List[InstallmentBalance]] = None,
) -> CreditSummary:
    """Aggregate an allocation into credit-level totals."""
    if balances is None:
        balances = allocate(credit, ledger)
    fines = fine_balances(ledger)
    capital_outstanding = sum((b.outstanding for b in balances), ZERO)
    fines_total = sum((f.value for f in fines), ZERO)
    fines_outstanding = sum((f.outstanding for f in fines), ZERO)
    discounts = discount_amount(credit, ledger)
    return CreditSummary(
        credit_id=credit.id,
        total_scheduled=credit.total_scheduled,
        total_applied=sum((b.applied_amount for b in balances), ZERO),
        capital_outstanding=capital_outstanding,
        fines_total=fines_total,
        fines_outstanding=fines_outstanding,
        discounts_total=discounts,
        balance=max(ZERO, capital_outstanding + fines_outstanding - discounts),
        installments_paid=sum(1 for b in balances if b.settled),
        installments_total=len(balances),
    )


def pay_installment_in_full(credit: Credit, ledger: CreditLedger, number: int, on: DateLike) -> Optional[Payment]:
    """Settle one installment by appending a targeted payment for its balance.

    Returns the new payment, or ``None`` when nothing was owed.
    """
    if find_installment(credit, number) is None:
        raise NotFoundError(f"Installment {number} not found on credit {credit.id}")
    balance = next(b for b in allocate(credit, ledger) if b.number == number)
    if balance.outstanding <= 0:
        return None
    return ledger.add_payment(
        balance.outstanding,
        on,
        description=f"Full payment of installment {number}",
        target_installment=number,
    )
