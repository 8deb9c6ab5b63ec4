"""Per-credit ledger of payments, fines, fine payments and discounts.

The ledger is the append-only history the allocation engine recomputes from.
Records are validated here, on the way in, so that the engine itself can
assume well formed input. Edits replace the value, date and description of a
record and deletes remove it outright; nothing derived from the ledger is
patched in place, callers recompute after every change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional
from uuid import uuid4

from .data_models import (
    DISCOUNT_AMOUNT,
    DISCOUNT_DAYS,
    Discount,
    Fine,
    FinePayment,
    Payment,
)
from .errors import NotFoundError, ValidationError
from .utils import DateLike, to_day


def _new_id() -> str:
    return uuid4().hex


def _positive(value: Decimal, what: str) -> Decimal:
    if value is None or value <= 0:
        raise ValidationError(f"{what} must be positive; got {value}")
    return value


@dataclass
class CreditLedger:
    """All ledger records of one credit."""

    credit_id: str
    payments: List[Payment] = field(default_factory=list)
    fines: List[Fine] = field(default_factory=list)
    fine_payments: List[FinePayment] = field(default_factory=list)
    discounts: List[Discount] = field(default_factory=list)
    installment_count: Optional[int] = None  # unchecked when unknown

    def _check_installment(self, number: Optional[int]) -> None:
        if number is None:
            return
        if number < 1 or (self.installment_count is not None and number > self.installment_count):
            raise ValidationError(f"Installment {number} does not exist on credit {self.credit_id}")

    # -- payments -------------------------------------------------------

    def _next_sequence(self) -> int:
        return max((p.sequence for p in self.payments), default=0) + 1

    def add_payment(
        self,
        value: Decimal,
        on: DateLike,
        description: str = "",
        target_installment: Optional[int] = None,
        target_fine_id: Optional[str] = None,
        payment_id: Optional[str] = None,
    ):
        """Append a payment and return the stored record.

        A payment aimed at a fine is stored as a :class:`FinePayment` on that
        fine; everything else becomes a :class:`Payment`.
        """
        _positive(value, "Payment value")
        if target_installment is not None and target_fine_id is not None:
            raise ValidationError("A payment targets an installment or a fine, not both")
        self._check_installment(target_installment)
        if target_fine_id is not None:
            return self.add_fine_payment(target_fine_id, value, on, fine_payment_id=payment_id)
        payment = Payment(
            id=payment_id or _new_id(),
            credit_id=self.credit_id,
            value=value,
            date=to_day(on),
            description=description,
            target_installment=target_installment,
            sequence=self._next_sequence(),
        )
        self.payments.append(payment)
        return payment

    def get_payment(self, payment_id: str) -> Payment:
        for payment in self.payments:
            if payment.id == payment_id:
                return payment
        raise NotFoundError(f"Payment {payment_id} not found on credit {self.credit_id}")

    def edit_payment(
        self,
        payment_id: str,
        value: Optional[Decimal] = None,
        on: Optional[DateLike] = None,
        description: Optional[str] = None,
    ) -> Payment:
        payment = self.get_payment(payment_id)
        if value is not None:
            payment.value = _positive(value, "Payment value")
        if on is not None:
            payment.date = to_day(on)
        if description is not None:
            payment.description = description
        return payment

    def delete_payment(self, payment_id: str) -> None:
        payment = self.get_payment(payment_id)
        self.payments.remove(payment)

    # -- fines ----------------------------------------------------------

    def add_fine(
        self,
        value: Decimal,
        on: DateLike,
        motive: str = "",
        related_installment: Optional[int] = None,
        fine_id: Optional[str] = None,
    ) -> Fine:
        _positive(value, "Fine value")
        self._check_installment(related_installment)
        fine = Fine(
            id=fine_id or _new_id(),
            credit_id=self.credit_id,
            value=value,
            date=to_day(on),
            motive=motive,
            related_installment=related_installment,
        )
        self.fines.append(fine)
        return fine

    def get_fine(self, fine_id: str) -> Fine:
        for fine in self.fines:
            if fine.id == fine_id:
                return fine
        raise NotFoundError(f"Fine {fine_id} not found on credit {self.credit_id}")

    def edit_fine(
        self,
        fine_id: str,
        value: Optional[Decimal] = None,
        on: Optional[DateLike] = None,
        motive: Optional[str] = None,
    ) -> Fine:
        fine = self.get_fine(fine_id)
        if value is not None:
            fine.value = _positive(value, "Fine value")
        if on is not None:
            fine.date = to_day(on)
        if motive is not None:
            fine.motive = motive
        return fine

    def delete_fine(self, fine_id: str) -> None:
        """Remove a fine and the payments made against it."""
        fine = self.get_fine(fine_id)
        self.fines.remove(fine)
        self.fine_payments = [fp for fp in self.fine_payments if fp.fine_id != fine_id]

    # -- fine payments --------------------------------------------------

    def add_fine_payment(
        self,
        fine_id: str,
        value: Decimal,
        on: DateLike,
        fine_payment_id: Optional[str] = None,
    ) -> FinePayment:
        _positive(value, "Fine payment value")
        if not any(f.id == fine_id for f in self.fines):
            raise ValidationError(f"Fine {fine_id} does not exist on credit {self.credit_id}")
        fine_payment = FinePayment(
            id=fine_payment_id or _new_id(),
            fine_id=fine_id,
            value=value,
            date=to_day(on),
        )
        self.fine_payments.append(fine_payment)
        return fine_payment

    def get_fine_payment(self, fine_payment_id: str) -> FinePayment:
        for fp in self.fine_payments:
            if fp.id == fine_payment_id:
                return fp
        raise NotFoundError(f"Fine payment {fine_payment_id} not found on credit {self.credit_id}")

    def edit_fine_payment(
        self,
        fine_payment_id: str,
        value: Optional[Decimal] = None,
        on: Optional[DateLike] = None,
    ) -> FinePayment:
        fp = self.get_fine_payment(fine_payment_id)
        if value is not None:
            fp.value = _positive(value, "Fine payment value")
        if on is not None:
            fp.date = to_day(on)
        return fp

    def delete_fine_payment(self, fine_payment_id: str) -> None:
        self.fine_payments.remove(self.get_fine_payment(fine_payment_id))

    # -- discounts ------------------------------------------------------

    def add_discount(
        self,
        value: Decimal,
        kind: str,
        description: str = "",
        discount_id: Optional[str] = None,
    ) -> Discount:
        _positive(value, "Discount value")
        if kind not in (DISCOUNT_DAYS, DISCOUNT_AMOUNT):
            raise ValidationError(f"Discount kind must be 'days' or 'amount'; got {kind}")
        discount = Discount(
            id=discount_id or _new_id(),
            credit_id=self.credit_id,
            value=value,
            kind=kind,
            description=description,
        )
        self.discounts.append(discount)
        return discount

    def delete_discount(self, discount_id: str) -> None:
        for discount in self.discounts:
            if discount.id == discount_id:
                self.discounts.remove(discount)
                return
        raise NotFoundError(f"Discount {discount_id} not found on credit {self.credit_id}")

    # -- queries --------------------------------------------------------

    def payments_on(self, day: date) -> List[Payment]:
        return [p for p in self.payments if p.date == day]

    def fine_payments_on(self, day: date) -> List[FinePayment]:
        return [fp for fp in self.fine_payments if fp.date == day]

    def has_activity_on(self, day: date) -> bool:
        return bool(self.payments_on(day) or self.fine_payments_on(day))


def ledger_from_records(
    credit_id: str,
    payments: Iterable[Payment] = (),
    fines: Iterable[Fine] = (),
    fine_payments: Iterable[FinePayment] = (),
    discounts: Iterable[Discount] = (),
    installment_count: Optional[int] = None,
) -> CreditLedger:
    """Assemble a ledger from already stored records without re-validating."""
    return CreditLedger(
        credit_id=credit_id,
        payments=list(payments),
        fines=list(fines),
        fine_payments=list(fine_payments),
        discounts=list(discounts),
        installment_count=installment_count,
    )

