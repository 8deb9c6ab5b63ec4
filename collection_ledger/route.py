"""Daily collection route.

:func:`build_route` scans every active credit for a target date and lists
what the collector has to do: installments due that day, overdue ones when
the date being viewed is today or tomorrow, and credits that received money
that day. Line items are grouped by portfolio and ordered by the manual
collection order, then by client name. Clients the collector could not find
are kept apart in an ``unreported`` bucket.

The overdue window only applies to the live views. Browsing any other date,
past or future, shows installments whose effective due date is exactly that
date and nothing else.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Set, Union

from .data_models import (
    ITEM_ADVANCED,
    ITEM_NOT_FOUND,
    ITEM_PAID,
    ITEM_PENDING,
    Client,
    CollectionOrder,
    Credit,
    CreditSummary,
    Deferral,
    InstallmentBalance,
    NotFoundMarker,
    RouteLineItem,
    RouteReport,
)
from .deferrals import DeferralBook
from .engine import allocate, summarize_credit
from .errors import ValidationError
from .ledger import CreditLedger
from .schedule import validate_schedule
from .status import classify_status, overdue_summary
from .utils import DateLike, add_days, to_day

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
_LAST = 2 ** 63 - 1


@dataclass
class _Evaluated:
    credit: Credit
    client: Client
    ledger: CreditLedger
    balances: List[InstallmentBalance]
    summary: CreditSummary
    status: str


def _owes(balance: InstallmentBalance) -> bool:
    return balance.outstanding > 0 or balance.fine_outstanding > 0


def _as_book(deferrals: Union[DeferralBook, Iterable[Deferral], None]) -> DeferralBook:
    if isinstance(deferrals, DeferralBook):
        return deferrals
    return DeferralBook(deferrals or ())


def _ranks_for(target: date, collection_order: Union[Mapping[str, int], Iterable[CollectionOrder], None]) -> Dict[str, int]:
    if collection_order is None:
        return {}
    if isinstance(collection_order, Mapping):
        return dict(collection_order)
    return {o.client_id: o.rank for o in collection_order if to_day(o.date) == target}


def is_live_view(target_date: date, today: date) -> bool:
    """True when the route being built is today's or tomorrow's."""
    return target_date in (today, add_days(today, 1))


def is_due_on(due_date: date, balance: InstallmentBalance, target_date: date, today: date) -> bool:
    """Whether an installment belongs on the route for ``target_date``."""
    if due_date == target_date:
        return True
    return due_date < today and is_live_view(target_date, today) and _owes(balance)


def _line_item(
    kind: str,
    ev: _Evaluated,
    book: DeferralBook,
    today: date,
    amount_due: Decimal = ZERO,
    amount_collected: Decimal = ZERO,
    fines_collected: Decimal = ZERO,
    due_installments: Optional[List[int]] = None,
    rank: Optional[int] = None,
) -> RouteLineItem:
    overdue_count, earliest = overdue_summary(ev.credit, ev.balances, book, today)
    return RouteLineItem(
        kind=kind,
        client_id=ev.client.id,
        client_name=ev.client.name,
        portfolio=ev.client.portfolio,
        credit_id=ev.credit.id,
        cadence=ev.credit.cadence,
        installment_value=ev.credit.installment_value,
        amount_due=amount_due,
        amount_collected=amount_collected,
        fines_collected=fines_collected,
        credit_outstanding=ev.summary.balance,
        status=ev.status,
        overdue_count=overdue_count,
        earliest_overdue_date=earliest,
        due_installments=list(due_installments or []),
        neighborhood=ev.client.neighborhood,
        position=ev.client.position,
        rank=rank,
    )


def _sort_items(items: List[RouteLineItem]) -> List[RouteLineItem]:
    return sorted(
        items,
        key=lambda i: (i.rank if i.rank is not None else _LAST, i.client_name or ""),
    )


def build_route(
    target_date: DateLike,
    clients: Iterable[Client],
    credits: Iterable[Credit],
    ledgers: Mapping[str, CreditLedger],
    deferrals: Union[DeferralBook, Iterable[Deferral], None] = None,
    collection_order: Union[Mapping[str, int], Iterable[CollectionOrder], None] = None,
    not_found_markers: Iterable[NotFoundMarker] = (),
    today: Optional[DateLike] = None,
) -> RouteReport:
    """Build the collection route for ``target_date``.

    Parameters
    ----------
    target_date: date
        The day being viewed.
    clients: Iterable[Client]
        Client records; credits whose client is missing are skipped.
    credits: Iterable[Credit]
        Credits with their installments. Renewed credits, credits of clients
        queued for refinancing and credits with a malformed schedule are left
        out.
    ledgers: Mapping[str, CreditLedger]
        Ledger of each credit keyed by credit id. A missing entry counts as
        an empty ledger.
    deferrals: DeferralBook or iterable of Deferral
        Due date overrides.
    collection_order: mapping or iterable of CollectionOrder
        Manual ranks. A mapping is read as ``client_id -> rank`` for the
        target date; records are filtered by date.
    not_found_markers: Iterable[NotFoundMarker]
        Clients the collector could not reach, keyed by the date they should
        show up again.
    today: date, optional
        The real calendar date. Defaults to ``date.today()``.
    """
    target = to_day(target_date)
    today = to_day(today) if today is not None else date.today()
    book = _as_book(deferrals)
    ranks = _ranks_for(target, collection_order)
    client_map: Dict[str, Client] = {c.id: c for c in clients}

    markers = list(not_found_markers)
    not_found_today: Set[str] = {m.client_id for m in markers if to_day(m.date) == target}
    not_found_tomorrow: Set[str] = {m.client_id for m in markers if to_day(m.date) == add_days(target, 1)}

    evaluated: List[_Evaluated] = []
    items: List[RouteLineItem] = []

    for credit in credits:
        client = client_map.get(credit.client_id)
        if client is None:
            logger.warning("Credit %s skipped: client %s not found", credit.id, credit.client_id)
            continue
        if credit.renewed or client.refinance_flag:
            continue
        try:
            validate_schedule(credit)
        except ValidationError as exc:
            logger.warning("Credit %s skipped: %s", credit.id, exc)
            continue

        ledger = ledgers.get(credit.id) or CreditLedger(credit_id=credit.id)
        balances = allocate(credit, ledger)
        ev = _Evaluated(
            credit=credit,
            client=client,
            ledger=ledger,
            balances=balances,
            summary=summarize_credit(credit, ledger, balances),
            status=classify_status(credit, balances, book, today),
        )
        evaluated.append(ev)

        due_dates = book.due_dates(credit)
        due = [b for b in balances if is_due_on(due_dates[b.number], b, target, today)]
        collected = sum((p.value for p in ledger.payments_on(target)), ZERO)
        fines_collected = sum((fp.value for fp in ledger.fine_payments_on(target)), ZERO)
        if not due and not ledger.has_activity_on(target):
            continue

        amount_due = sum((b.outstanding + b.fine_outstanding for b in due), ZERO)
        if amount_due > 0:
            kind = ITEM_PENDING
        elif collected + fines_collected == 0 or any(b.paid_date == target for b in balances):
            kind = ITEM_PAID
        else:
            kind = ITEM_ADVANCED

        items.append(
            _line_item(
                kind,
                ev,
                book,
                today,
                amount_due=amount_due,
                amount_collected=collected,
                fines_collected=fines_collected,
                due_installments=[b.number for b in due if _owes(b)],
                rank=ranks.get(client.id),
            )
        )

    buckets: Dict[str, List[RouteLineItem]] = {}
    unreported: List[RouteLineItem] = []
    for item in items:
        client = client_map[item.client_id]
        if item.client_id in not_found_today:
            unreported.append(item)
        elif not client.reported:
            # Marked not found on this date: the client shows up again tomorrow.
            if item.client_id not in not_found_tomorrow:
                unreported.append(item)
        else:
            buckets.setdefault(item.portfolio, []).append(item)

    listed = {item.client_id for item in items}
    for client_id in sorted(not_found_today - listed):
        client = client_map.get(client_id)
        if client is None or client.refinance_flag:
            continue
        active = next(
            (ev for ev in evaluated if ev.client.id == client_id and ev.summary.capital_outstanding > 0),
            None,
        )
        if active is None:
            continue
        unreported.append(_line_item(ITEM_NOT_FOUND, active, book, today, rank=ranks.get(client_id)))

    all_items = [i for bucket in buckets.values() for i in bucket] + unreported
    counted = {i.client_id for i in items if client_map[i.client_id].reported} | {
        i.client_id for i in unreported if i.client_id in not_found_today
    }

    report = RouteReport(
        target_date=target,
        today=today,
        buckets={portfolio: _sort_items(bucket) for portfolio, bucket in sorted(buckets.items())},
        unreported=_sort_items(unreported),
        pending_total=sum((i.amount_due for i in all_items), ZERO),
        collected_total=sum((i.amount_collected + i.fines_collected for i in all_items), ZERO),
        client_count=len(counted),
    )
    logger.debug(
        "Route %s: %d items, %d unreported, %d clients",
        target.isoformat(),
        len(all_items),
        len(report.unreported),
        report.client_count,
    )
    return report


def mark_not_found(markers: Iterable[NotFoundMarker], client_id: str, on: DateLike) -> List[NotFoundMarker]:
    """Queue a client the collector missed on ``on`` for the next day."""
    next_day = add_days(to_day(on), 1)
    result = list(markers)
    if not any(m.client_id == client_id and to_day(m.date) == next_day for m in result):
        result.append(NotFoundMarker(date=next_day, client_id=client_id))
    return result


def mark_reported(markers: Iterable[NotFoundMarker], client_id: str, on: DateLike) -> List[NotFoundMarker]:
    """Clear a client's not-found markers for ``on`` and the next day."""
    day = to_day(on)
    days = {day, add_days(day, 1)}
    return [m for m in markers if not (m.client_id == client_id and to_day(m.date) in days)]


def move_not_found(
    markers: Iterable[NotFoundMarker],
    client_id: str,
    source: DateLike,
    target: DateLike,
) -> List[NotFoundMarker]:
    """Move a client's marker from ``source`` to ``target`` if one exists."""
    src, dst = to_day(source), to_day(target)
    result = list(markers)
    if not any(m.client_id == client_id and to_day(m.date) == src for m in result):
        return result
    result = [m for m in result if not (m.client_id == client_id and to_day(m.date) == src)]
    if not any(m.client_id == client_id and to_day(m.date) == dst for m in result):
        result.append(NotFoundMarker(date=dst, client_id=client_id))
    return result
