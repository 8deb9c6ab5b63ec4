from datetime import date
from decimal import Decimal

import pytest

from collection_ledger.data_models import DISCOUNT_AMOUNT, DISCOUNT_DAYS
from collection_ledger.engine import allocate, fine_balances, pay_installment_in_full, summarize_credit
from collection_ledger.errors import NotFoundError

D0 = date(2024, 1, 1)
VALUE = Decimal("100000")


def applied(balances):
    return [b.applied_amount for b in balances]


def test_general_payment_spreads_in_order(credit, ledger):
    ledger.add_payment(Decimal("250000"), D0)
    balances = allocate(credit, ledger)
    assert applied(balances)[:3] == [VALUE, VALUE, Decimal("50000")]
    assert balances[2].outstanding == Decimal("50000")
    assert all(b.applied_amount == 0 for b in balances[3:])


def test_allocation_is_idempotent(credit, ledger):
    ledger.add_payment(Decimal("130000"), date(2024, 1, 8))
    ledger.add_payment(Decimal("40000"), date(2024, 1, 15), target_installment=4)
    assert allocate(credit, ledger) == allocate(credit, ledger)


def test_applied_plus_outstanding_is_installment_value(credit, ledger):
    ledger.add_payment(Decimal("33333"), date(2024, 1, 8))
    ledger.add_payment(Decimal("150000"), date(2024, 1, 9), target_installment=6)
    ledger.add_payment(Decimal("77777"), date(2024, 1, 15))
    ledger.add_payment(Decimal("12345"), date(2024, 1, 16), target_installment=1)
    balances = allocate(credit, ledger)
    for b in balances:
        assert b.applied_amount + b.outstanding == VALUE
    total_paid = sum(p.value for p in ledger.payments)
    assert sum(applied(balances)) == total_paid


def test_targeted_payment_lands_on_its_installment(credit, ledger):
    ledger.add_payment(Decimal("250000"), D0)
    ledger.add_payment(Decimal("30000"), date(2024, 1, 2), target_installment=5)
    balances = allocate(credit, ledger)
    assert balances[4].applied_amount == Decimal("30000")
    assert all(a.targeted for a in balances[4].applications)
    assert applied(balances)[:3] == [VALUE, VALUE, Decimal("50000")]


def test_general_payment_overflow_carries_to_next_unpaid(credit, ledger):
    ledger.add_payment(Decimal("150000"), D0)
    ledger.add_payment(Decimal("80000"), date(2024, 1, 2))
    balances = allocate(credit, ledger)
    assert balances[0].applied_amount == VALUE
    assert balances[1].applied_amount == VALUE
    assert balances[2].applied_amount == Decimal("30000")
    assert balances[3].applied_amount == 0


def test_targeted_excess_joins_general_sweep(credit, ledger):
    ledger.add_payment(Decimal("150000"), D0, target_installment=3)
    balances = allocate(credit, ledger)
    assert balances[2].applied_amount == VALUE
    assert balances[0].applied_amount == Decimal("50000")
    assert sum(applied(balances)) == Decimal("150000")


def test_target_missing_installment_is_treated_as_general(credit, ledger):
    ledger.add_payment(Decimal("100000"), D0, target_installment=42)
    assert allocate(credit, ledger)[0].applied_amount == VALUE


def test_manually_paid_installment_is_skipped(credit, ledger):
    credit.installments[0].paid_manually = True
    credit.installments[0].paid_date = date(2024, 1, 8)
    ledger.add_payment(Decimal("100000"), date(2024, 1, 15))
    balances = allocate(credit, ledger)
    assert balances[0].outstanding == 0
    assert balances[0].paid_date == date(2024, 1, 8)
    assert balances[0].applications == []
    assert balances[1].applied_amount == VALUE


def test_paid_date_is_date_of_last_application(credit, ledger):
    ledger.add_payment(Decimal("60000"), date(2024, 1, 7))
    assert allocate(credit, ledger)[0].paid_date is None
    ledger.add_payment(Decimal("40000"), date(2024, 1, 9))
    assert allocate(credit, ledger)[0].paid_date == date(2024, 1, 9)


def test_fine_paid_in_two_parts_is_settled_independently(credit, ledger):
    fine = ledger.add_fine(Decimal("20000"), date(2024, 1, 23), related_installment=3)
    ledger.add_fine_payment(fine.id, Decimal("5000"), date(2024, 1, 24))
    ledger.add_fine_payment(fine.id, Decimal("15000"), date(2024, 1, 25))
    third = allocate(credit, ledger)[2]
    assert third.fine_total == Decimal("20000")
    assert third.fine_outstanding == 0
    assert third.outstanding == VALUE


def test_fine_overpayment_does_not_spill_into_capital(credit, ledger):
    fine = ledger.add_fine(Decimal("10000"), date(2024, 1, 9), related_installment=1)
    ledger.add_fine_payment(fine.id, Decimal("15000"), date(2024, 1, 10))
    [fb] = fine_balances(ledger)
    assert fb.covered == Decimal("10000")
    assert fb.outstanding == 0
    assert all(b.applied_amount == 0 for b in allocate(credit, ledger))


def test_summary_applies_discounts(credit, ledger):
    ledger.add_payment(Decimal("250000"), D0)
    ledger.add_discount(Decimal("1"), DISCOUNT_DAYS)
    ledger.add_discount(Decimal("5000"), DISCOUNT_AMOUNT)
    summary = summarize_credit(credit, ledger)
    assert summary.capital_outstanding == Decimal("750000")
    assert summary.discounts_total == Decimal("105000")
    assert summary.balance == Decimal("645000")
    assert summary.installments_paid == 2
    assert summary.installments_total == 10


def test_pay_installment_in_full(credit, ledger):
    ledger.add_payment(Decimal("50000"), D0)
    payment = pay_installment_in_full(credit, ledger, 1, date(2024, 1, 8))
    assert payment.value == Decimal("50000")
    assert payment.target_installment == 1
    balances = allocate(credit, ledger)
    assert balances[0].outstanding == 0
    assert balances[1].applied_amount == 0
    assert pay_installment_in_full(credit, ledger, 1, date(2024, 1, 8)) is None
    with pytest.raises(NotFoundError):
        pay_installment_in_full(credit, ledger, 11, date(2024, 1, 8))
