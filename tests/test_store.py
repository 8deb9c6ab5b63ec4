from datetime import date
from decimal import Decimal

import pytest

from conftest import weekly

from collection_ledger.data_models import ITEM_PENDING, Client, Deferral, FinePayment
from collection_ledger.engine import allocate
from collection_ledger.errors import NotFoundError, ValidationError
from collection_ledger_store.ledger_store import LedgerStore, create_store_from_env


def test_credit_round_trip(seeded_store):
    credit = seeded_store.get_credit("c1")
    assert credit == weekly()
    assert [c.id for c in seeded_store.list_credits(client_id="k2")] == ["c2"]
    with pytest.raises(NotFoundError):
        seeded_store.get_credit("nope")


def test_credit_requires_known_client(store):
    with pytest.raises(NotFoundError):
        store.add_credit(weekly(client_id="ghost"))


def test_renewed_credits_can_be_filtered(seeded_store):
    seeded_store.renew_credit("c2", weekly(credit_id="c2b", client_id="k2", start=date(2024, 3, 1)))
    assert sorted(c.id for c in seeded_store.list_credits(include_renewed=False)) == ["c1", "c2b", "c3"]


def test_renewal_links_old_and_new_credit(seeded_store):
    new = seeded_store.renew_credit("c1", weekly(credit_id="c1b", start=date(2024, 3, 1)))
    assert new.previous_credit_id == "c1"
    old = seeded_store.get_credit("c1")
    assert old.renewed
    assert old.renewal_credit_id == "c1b"
    assert old.renewed_on == date(2024, 3, 1)
    stored = seeded_store.get_credit("c1b")
    assert stored.previous_credit_id == "c1"
    assert not stored.renewed
    assert len(stored.installments) == 10


def test_renewal_is_rejected_twice_or_across_clients(seeded_store):
    seeded_store.renew_credit("c1", weekly(credit_id="c1b"), on=date(2024, 2, 1))
    with pytest.raises(ValidationError):
        seeded_store.renew_credit("c1", weekly(credit_id="c1c"))
    with pytest.raises(ValidationError):
        seeded_store.renew_credit("c2", weekly(credit_id="c2b", client_id="k3"))
    with pytest.raises(NotFoundError):
        seeded_store.renew_credit("nope", weekly(credit_id="x"))
    assert seeded_store.get_credit("c1").renewed_on == date(2024, 2, 1)
    assert not seeded_store.get_credit("c2").renewed
    assert sorted(c.id for c in seeded_store.list_credits()) == ["c1", "c1b", "c2", "c3"]


def test_ledger_writes_are_validated(seeded_store):
    with pytest.raises(ValidationError):
        seeded_store.add_payment("c1", Decimal("-1"), date(2024, 1, 8))
    with pytest.raises(NotFoundError):
        seeded_store.add_payment("nope", Decimal("1"), date(2024, 1, 8))
    assert seeded_store.get_ledger("c1").payments == []


def test_unknown_installment_is_rejected(seeded_store):
    with pytest.raises(ValidationError):
        seeded_store.add_payment("c1", Decimal("1000"), date(2024, 1, 8), target_installment=42)
    with pytest.raises(ValidationError):
        seeded_store.add_payment("c1", Decimal("1000"), date(2024, 1, 8), target_installment=0)
    with pytest.raises(ValidationError):
        seeded_store.add_fine("c1", Decimal("5000"), date(2024, 1, 8), related_installment=11)
    seeded_store.add_fine("c1", Decimal("5000"), date(2024, 1, 8), related_installment=10)
    ledger = seeded_store.get_ledger("c1")
    assert ledger.payments == []
    assert [f.related_installment for f in ledger.fines] == [10]


def test_payments_and_fines_persist(seeded_store):
    first = seeded_store.add_payment("c1", Decimal("250000"), date(2024, 1, 8))
    second = seeded_store.add_payment("c1", Decimal("1000"), date(2024, 1, 9), target_installment=5)
    fine = seeded_store.add_fine("c1", Decimal("20000"), date(2024, 1, 23), related_installment=3)
    fp = seeded_store.add_payment("c1", Decimal("5000"), date(2024, 1, 24), target_fine_id=fine.id)
    seeded_store.add_fine_payment("c1", fine.id, Decimal("15000"), date(2024, 1, 25))
    assert isinstance(fp, FinePayment)

    ledger = seeded_store.get_ledger("c1")
    assert [p.id for p in ledger.payments] == [first.id, second.id]
    assert second.sequence == first.sequence + 1
    balances = allocate(seeded_store.get_credit("c1"), ledger)
    assert balances[2].applied_amount == Decimal("50000")
    assert balances[2].fine_outstanding == 0
    assert balances[4].applied_amount == Decimal("1000")

    seeded_store.delete_fine("c1", fine.id)
    assert seeded_store.get_ledger("c1").fine_payments == []


def test_edit_and_delete_payment(seeded_store):
    payment = seeded_store.add_payment("c1", Decimal("1000"), date(2024, 1, 8))
    seeded_store.edit_payment("c1", payment.id, value=Decimal("2000"))
    assert seeded_store.get_ledger("c1").payments[0].value == Decimal("2000")
    seeded_store.delete_payment("c1", payment.id)
    assert seeded_store.get_ledger("c1").payments == []
    with pytest.raises(NotFoundError):
        seeded_store.delete_payment("c1", payment.id)


def test_edit_and_delete_fine_payment(seeded_store):
    fine = seeded_store.add_fine("c1", Decimal("20000"), date(2024, 1, 8))
    fp = seeded_store.add_fine_payment("c1", fine.id, Decimal("5000"), date(2024, 1, 9))
    seeded_store.edit_fine_payment("c1", fp.id, value=Decimal("8000"), on=date(2024, 1, 10))
    [stored] = seeded_store.get_ledger("c1").fine_payments
    assert (stored.value, stored.date) == (Decimal("8000"), date(2024, 1, 10))
    with pytest.raises(ValidationError):
        seeded_store.edit_fine_payment("c1", fp.id, value=Decimal("-1"))
    seeded_store.delete_fine_payment("c1", fp.id)
    assert seeded_store.get_ledger("c1").fine_payments == []


def test_pay_installment_in_full(seeded_store):
    seeded_store.add_payment("c1", Decimal("30000"), date(2024, 1, 8))
    payment = seeded_store.pay_installment_in_full("c1", 1, date(2024, 1, 9))
    assert payment.value == Decimal("70000")
    assert seeded_store.pay_installment_in_full("c1", 1, date(2024, 1, 9)) is None


def test_manual_installment_mark(seeded_store):
    seeded_store.mark_installment_paid("c1", 2, date(2024, 1, 14))
    inst = seeded_store.get_credit("c1").installments[1]
    assert inst.paid_manually
    assert inst.paid_date == date(2024, 1, 14)


def test_deferral_upsert_keeps_last_date(seeded_store):
    seeded_store.upsert_deferrals([Deferral("c1", 1, date(2024, 1, 10))])
    seeded_store.upsert_deferrals([Deferral("c1", 1, date(2024, 1, 11))])
    assert seeded_store.list_deferrals("c1") == [Deferral("c1", 1, date(2024, 1, 11))]
    assert seeded_store.list_deferrals(start=date(2024, 1, 12)) == []
    seeded_store.delete_deferral("c1", 1)
    assert seeded_store.list_deferrals() == []


def test_collection_order(seeded_store):
    seeded_store.save_collection_order(date(2024, 1, 8), {"k3": 0, "k1": 1})
    seeded_store.save_collection_order(date(2024, 1, 8), {"k1": 2})
    assert seeded_store.get_collection_order(date(2024, 1, 8)) == {"k3": 0, "k1": 2}
    seeded_store.delete_collection_order(date(2024, 1, 8), "k3")
    assert seeded_store.get_collection_order("2024-01-08") == {"k1": 2}
    assert seeded_store.get_collection_order(date(2024, 1, 9)) == {}


def test_not_found_and_reported(seeded_store):
    seeded_store.mark_not_found("k1", date(2024, 1, 7))
    assert not seeded_store.get_client("k1").reported
    assert [m.date for m in seeded_store.list_not_found_markers(date(2024, 1, 7))] == [date(2024, 1, 8)]
    assert seeded_store.move_not_found_marker("k1", date(2024, 1, 8), date(2024, 1, 9))
    assert not seeded_store.move_not_found_marker("k1", date(2024, 1, 8), date(2024, 1, 9))
    seeded_store.mark_reported("k1", date(2024, 1, 8))
    assert seeded_store.get_client("k1").reported
    assert seeded_store.list_not_found_markers() == []


def test_markers_require_a_known_client(seeded_store):
    with pytest.raises(NotFoundError):
        seeded_store.mark_not_found("ghost", date(2024, 1, 7))
    with pytest.raises(NotFoundError):
        seeded_store.mark_reported("ghost", date(2024, 1, 7))
    seeded_store.mark_not_found("k2", date(2024, 1, 7))
    seeded_store.mark_not_found("k2", date(2024, 1, 7))
    assert [(m.client_id, m.date) for m in seeded_store.list_not_found_markers()] == [("k2", date(2024, 1, 8))]


def test_record_deferral_writes_everything_together(seeded_store):
    records = [Deferral("c1", 1, date(2024, 1, 12))]
    assert not seeded_store.record_deferral("c1", "k1", records, "moved", date(2024, 1, 8), date(2024, 1, 12))
    assert seeded_store.list_deferrals("c1") == records
    assert seeded_store.list_audit_notes("c1") == ["moved"]
    with pytest.raises(NotFoundError):
        seeded_store.record_deferral("nope", "k1", [Deferral("nope", 1, date(2024, 1, 12))], "x", date(2024, 1, 8), date(2024, 1, 12))
    assert seeded_store.list_deferrals() == records


def test_route_for(seeded_store):
    seeded_store.add_client(Client(id="k4", name="Eva", portfolio="K2"))
    seeded_store.add_credit(weekly(credit_id="c4", client_id="k4"))
    seeded_store.add_payment("c2", Decimal("100000"), date(2024, 1, 8))
    seeded_store.save_collection_order(date(2024, 1, 8), {"k3": 0})
    report = seeded_store.route_for(date(2024, 1, 8), today=date(2024, 1, 8))
    assert [i.client_name for i in report.buckets["K1"]] == ["Carla", "Ana", "Bruno"]
    assert [i.kind for i in report.buckets["K1"]] == [ITEM_PENDING, ITEM_PENDING, "paid"]
    assert report.pending_total == Decimal("300000")
    assert report.collected_total == Decimal("100000")
    assert report.client_count == 4


def test_create_store_from_env_defaults_to_sqlite_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    store = create_store_from_env(None)
    assert isinstance(store, LedgerStore)
    assert (tmp_path / "collection_ledger.sqlite3").exists()
