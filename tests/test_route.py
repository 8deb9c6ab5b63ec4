from datetime import date
from decimal import Decimal

from conftest import weekly

from collection_ledger.data_models import (
    DAILY,
    ITEM_ADVANCED,
    ITEM_NOT_FOUND,
    ITEM_PAID,
    ITEM_PENDING,
    Client,
    CollectionOrder,
    Deferral,
    NotFoundMarker,
)
from collection_ledger.ledger import CreditLedger
from collection_ledger.route import build_route, mark_not_found, mark_reported, move_not_found
from collection_ledger.schedule import create_credit

ANA = Client(id="k1", name="Ana")


def route(target, today, clients=(ANA,), credits=None, ledgers=None, **kwargs):
    credits = credits if credits is not None else [weekly()]
    return build_route(target, list(clients), credits, ledgers or {}, today=today, **kwargs)


def client_ids(report):
    return [i.client_id for i in report.all_items()]


def test_overdue_installment_only_shows_on_live_views():
    today = date(2024, 1, 13)  # installment 1 is five days late
    for target in (today, date(2024, 1, 14)):
        report = route(target, today)
        [item] = report.all_items()
        assert item.kind == ITEM_PENDING
        assert item.due_installments == [1]
        assert item.amount_due == Decimal("100000")
    assert route(date(2024, 1, 16), today).all_items() == []


def test_non_adjacent_view_shows_exact_due_date_only():
    report = route(date(2024, 1, 15), date(2024, 1, 13))
    [item] = report.all_items()
    assert item.due_installments == [2]
    assert item.overdue_count == 1


def test_settled_credit_only_listed_on_exact_due_date():
    ledger = CreditLedger("c1")
    ledger.add_payment(Decimal("1000000"), date(2024, 1, 2))
    assert route(date(2024, 1, 10), date(2024, 1, 10), ledgers={"c1": ledger}).all_items() == []
    [item] = route(date(2024, 1, 8), date(2024, 1, 8), ledgers={"c1": ledger}).all_items()
    assert item.kind == ITEM_PAID
    assert item.status == "closed"


def test_payment_on_due_date_shows_as_paid():
    ledger = CreditLedger("c1")
    ledger.add_payment(Decimal("100000"), date(2024, 1, 8))
    report = route(date(2024, 1, 8), date(2024, 1, 8), ledgers={"c1": ledger})
    [item] = report.all_items()
    assert item.kind == ITEM_PAID
    assert item.amount_due == 0
    assert item.amount_collected == Decimal("100000")
    assert report.collected_total == Decimal("100000")
    assert report.pending_total == 0


def test_payment_ahead_of_schedule_shows_as_advanced():
    ledger = CreditLedger("c1")
    ledger.add_payment(Decimal("30000"), date(2024, 1, 6))
    [item] = route(date(2024, 1, 6), date(2024, 1, 5), ledgers={"c1": ledger}).all_items()
    assert item.kind == ITEM_ADVANCED
    assert item.amount_collected == Decimal("30000")


def test_renewed_refinanced_and_orphan_credits_are_skipped():
    renewed = weekly(credit_id="c2")
    renewed.renewed = True
    orphan = weekly(credit_id="c3", client_id="ghost")
    flagged = Client(id="k4", name="Dora", refinance_flag=True)
    report = route(
        date(2024, 1, 8),
        date(2024, 1, 8),
        clients=[ANA, flagged],
        credits=[weekly(), renewed, orphan, weekly(credit_id="c4", client_id="k4")],
    )
    assert [i.credit_id for i in report.all_items()] == ["c1"]


def test_deferral_moves_credit_between_route_days():
    deferrals = [Deferral("c1", 1, date(2024, 1, 10))]
    assert route(date(2024, 1, 8), date(2024, 1, 8), deferrals=deferrals).all_items() == []
    [item] = route(date(2024, 1, 10), date(2024, 1, 10), deferrals=deferrals).all_items()
    assert item.due_installments == [1]


def test_grouped_by_portfolio_and_sorted_by_rank_then_name():
    clients = [
        Client(id="k1", name="Zoe"),
        Client(id="k2", name="Bruno"),
        Client(id="k3", name="Ana"),
        Client(id="k4", name="Eva", portfolio="K2"),
    ]
    credits = [weekly(credit_id=f"c{n}", client_id=f"k{n}") for n in (1, 2, 3, 4)]
    order = [
        CollectionOrder(date(2024, 1, 8), "k1", 1),
        CollectionOrder(date(2024, 1, 9), "k2", 0),
    ]
    report = route(date(2024, 1, 8), date(2024, 1, 8), clients=clients, credits=credits, collection_order=order)
    assert list(report.buckets) == ["K1", "K2"]
    assert [i.client_name for i in report.buckets["K1"]] == ["Zoe", "Ana", "Bruno"]
    assert report.buckets["K1"][0].rank == 1
    assert report.client_count == 4
    assert report.pending_total == Decimal("400000")


def test_mapping_collection_order():
    clients = [Client(id="k1", name="Zoe"), Client(id="k2", name="Ana")]
    credits = [weekly(credit_id="c1", client_id="k1"), weekly(credit_id="c2", client_id="k2")]
    report = route(date(2024, 1, 8), date(2024, 1, 8), clients=clients, credits=credits, collection_order={"k1": 0})
    assert client_ids(report) == ["k1", "k2"]


def test_not_found_client_goes_to_unreported_bucket():
    missing = Client(id="k1", name="Ana", reported=False)
    markers = [NotFoundMarker(date(2024, 1, 8), "k1")]
    report = route(date(2024, 1, 8), date(2024, 1, 8), clients=[missing], not_found_markers=markers)
    assert report.buckets == {}
    [item] = report.unreported
    assert item.kind == ITEM_PENDING
    assert report.client_count == 1


def test_client_marked_today_is_hidden_until_tomorrow():
    daily = create_credit("c1", "k1", Decimal("600000"), Decimal("12000"), DAILY, date(2024, 1, 1))
    missing = Client(id="k1", name="Ana", reported=False)
    markers = mark_not_found([], "k1", date(2024, 1, 7))
    report = route(date(2024, 1, 7), date(2024, 1, 7), clients=[missing], credits=[daily], not_found_markers=markers)
    assert report.all_items() == []
    assert report.client_count == 0
    report = route(date(2024, 1, 8), date(2024, 1, 8), clients=[missing], credits=[daily], not_found_markers=markers)
    assert client_ids(report) == ["k1"]
    assert report.unreported


def test_marker_without_due_items_gets_placeholder():
    markers = [NotFoundMarker(date(2024, 1, 10), "k1")]
    report = route(date(2024, 1, 10), date(2024, 1, 2), not_found_markers=markers)
    [item] = report.unreported
    assert item.kind == ITEM_NOT_FOUND
    assert item.amount_due == 0
    assert report.client_count == 1


def test_marker_helpers_return_new_lists():
    markers = mark_not_found([], "k1", "2024-01-07")
    assert markers == [NotFoundMarker(date(2024, 1, 8), "k1")]
    assert mark_not_found(markers, "k1", "2024-01-07") == markers
    moved = move_not_found(markers, "k1", date(2024, 1, 8), date(2024, 1, 12))
    assert moved == [NotFoundMarker(date(2024, 1, 12), "k1")]
    assert markers == [NotFoundMarker(date(2024, 1, 8), "k1")]
    assert move_not_found(markers, "k2", date(2024, 1, 8), date(2024, 1, 12)) == markers
    assert mark_reported(markers, "k1", date(2024, 1, 7)) == []


def test_markers_without_line_items_are_not_counted():
    ledger = CreditLedger("c1")
    ledger.add_payment(Decimal("1000000"), date(2024, 1, 2))
    flagged = Client(id="k4", name="Dora", refinance_flag=True)
    markers = [NotFoundMarker(date(2024, 1, 10), cid) for cid in ("k1", "k4", "ghost")]
    report = route(
        date(2024, 1, 10),
        date(2024, 1, 10),
        clients=[ANA, flagged],
        credits=[weekly(), weekly(credit_id="c4", client_id="k4")],
        ledgers={"c1": ledger},
        not_found_markers=markers,
    )
    assert report.all_items() == []
    assert report.client_count == 0
