from datetime import date
from decimal import Decimal

from collection_ledger.data_models import (
    STATE_PAID,
    STATE_PARTIAL,
    STATE_PENDING,
    STATUS_CLOSED,
    STATUS_CURRENT,
    STATUS_OVERDUE,
    Deferral,
)
from collection_ledger.deferrals import DeferralBook
from collection_ledger.engine import allocate
from collection_ledger.status import classify_status, installment_state, overdue_summary, suggest_label


def status(credit, ledger, today, book=None):
    return classify_status(credit, allocate(credit, ledger), book, today)


def test_due_today_is_not_overdue(credit, ledger):
    assert status(credit, ledger, date(2024, 1, 8)) == STATUS_CURRENT
    assert status(credit, ledger, date(2024, 1, 9)) == STATUS_OVERDUE


def test_fully_paid_credit_is_closed_and_stays_closed(credit, ledger):
    ledger.add_payment(Decimal("1000000"), date(2024, 1, 8))
    assert status(credit, ledger, date(2024, 6, 1)) == STATUS_CLOSED
    ledger.add_payment(Decimal("5000"), date(2024, 6, 2))
    ledger.add_payment(Decimal("5000"), date(2024, 6, 3), target_installment=4)
    assert status(credit, ledger, date(2024, 6, 3)) == STATUS_CLOSED


def test_unpaid_related_fine_makes_credit_overdue(credit, ledger):
    ledger.add_payment(Decimal("100000"), date(2024, 1, 8))
    assert status(credit, ledger, date(2024, 1, 10)) == STATUS_CURRENT
    ledger.add_fine(Decimal("5000"), date(2024, 1, 9), related_installment=1)
    assert status(credit, ledger, date(2024, 1, 10)) == STATUS_OVERDUE


def test_deferred_installment_is_not_overdue(credit, ledger):
    book = DeferralBook([Deferral("c1", 1, date(2024, 1, 20))])
    assert status(credit, ledger, date(2024, 1, 10), book) == STATUS_CURRENT
    assert status(credit, ledger, date(2024, 1, 21), book) == STATUS_OVERDUE


def test_overdue_summary_counts_capital_only(credit, ledger):
    ledger.add_payment(Decimal("100000"), date(2024, 1, 8))
    ledger.add_fine(Decimal("5000"), date(2024, 1, 9), related_installment=1)
    count, earliest = overdue_summary(credit, allocate(credit, ledger), today=date(2024, 1, 25))
    assert count == 2
    assert earliest == date(2024, 1, 15)


def test_installment_states(credit, ledger):
    ledger.add_payment(Decimal("150000"), date(2024, 1, 8))
    credit.installments[3].paid_manually = True
    balances = allocate(credit, ledger)
    assert [installment_state(b) for b in balances[:5]] == [
        STATE_PAID,
        STATE_PARTIAL,
        STATE_PENDING,
        STATE_PAID,
        STATE_PENDING,
    ]


def test_suggest_label(credit, ledger):
    assert suggest_label(allocate(credit, ledger)) is None
    ledger.add_payment(Decimal("300000"), date(2024, 1, 8))
    assert suggest_label(allocate(credit, ledger)) == "late"
    ledger.add_payment(Decimal("300000"), date(2024, 1, 8))
    assert suggest_label(allocate(credit, ledger)) == "good"
    ledger.add_payment(Decimal("400000"), date(2024, 1, 8))
    assert suggest_label(allocate(credit, ledger)) == "excellent"
