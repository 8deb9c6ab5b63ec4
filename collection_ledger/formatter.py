"""Output helpers for the collection ledger.

Plain text rendering of routes, credit statements and bulk deferral results.
Only built-in printing and string formatting are used.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from .bulk_deferral import BulkDeferralResult
from .data_models import Credit, CreditSummary, InstallmentBalance, RouteLineItem, RouteReport
from .status import installment_state


def _money(value) -> str:
    return f"{value:,.2f}"


def _route_rows(items: Iterable[RouteLineItem]) -> None:
    print(f"{'#':>4s} {'Client':24s} {'Kind':10s} {'Due':>14s} {'Collected':>14s} {'Balance':>14s} {'Late':>5s}")
    for item in items:
        rank = str(item.rank) if item.rank is not None else "-"
        print(
            f"{rank:>4s} {item.client_name[:24]:24s} {item.kind:10s} "
            f"{_money(item.amount_due):>14s} "
            f"{_money(item.amount_collected + item.fines_collected):>14s} "
            f"{_money(item.credit_outstanding):>14s} {item.overdue_count:5d}"
        )


def print_route(report: RouteReport) -> None:
    """Print a route grouped by portfolio, then the unreported clients."""
    print(f"Route for {report.target_date.isoformat()} (today {report.today.isoformat()})")
    print("=" * 72)
    for portfolio, items in report.buckets.items():
        print(f"Portfolio {portfolio}")
        print("-" * 72)
        _route_rows(items)
        print()
    if report.unreported:
        print("Not found / unreported")
        print("-" * 72)
        _route_rows(report.unreported)
        print()
    print(f"Clients            : {report.client_count}")
    print(f"Pending total      : {_money(report.pending_total)}")
    print(f"Collected total    : {_money(report.collected_total)}")
    print("=" * 72)


def print_credit(
    credit: Credit,
    summary: CreditSummary,
    balances: List[InstallmentBalance],
    status: str,
    due_dates: Optional[Dict[int, object]] = None,
    notes: Iterable[str] = (),
) -> None:
    """Print a credit statement: totals first, then one row per installment."""
    print(f"Credit {credit.id} ({credit.cadence}, client {credit.client_id})")
    print("-" * 72)
    print(f"Status             : {status}")
    if credit.label:
        print(f"Label              : {credit.label}")
    if credit.previous_credit_id:
        print(f"Renews             : {credit.previous_credit_id}")
    if credit.renewal_credit_id:
        print(f"Renewed by         : {credit.renewal_credit_id}")
    print(f"Principal          : {_money(credit.principal)}")
    print(f"Total scheduled    : {_money(summary.total_scheduled)}")
    print(f"Total applied      : {_money(summary.total_applied)}")
    print(f"Capital owed       : {_money(summary.capital_outstanding)}")
    if summary.fines_total:
        print(f"Fines              : {_money(summary.fines_total)}")
        print(f"Fines owed         : {_money(summary.fines_outstanding)}")
    if summary.discounts_total:
        print(f"Discounts          : {_money(summary.discounts_total)}")
    print(f"Balance            : {_money(summary.balance)}")
    print(f"Installments paid  : {summary.installments_paid}/{summary.installments_total}")
    print("-" * 72)
    headers = ["No", "Due", "Applied", "Owed", "Fines", "State", "Paid on"]
    print("\t".join(headers))
    scheduled = {inst.number: inst.scheduled_date for inst in credit.installments}
    for b in balances:
        due = (due_dates or scheduled).get(b.number)
        row = [
            str(b.number),
            due.isoformat() if due else "",
            f"{b.applied_amount:.2f}",
            f"{b.outstanding:.2f}",
            f"{b.fine_outstanding:.2f}" if b.fine_total else "",
            installment_state(b),
            b.paid_date.isoformat() if b.paid_date else "",
        ]
        print("\t".join(row))
    notes = list(notes)
    if notes:
        print("-" * 72)
        for note in notes:
            print(note)


def print_bulk_result(result: BulkDeferralResult) -> None:
    print("Bulk deferral")
    print("-" * 72)
    print(f"Processed          : {result.processed}/{result.total}")
    print(f"Succeeded          : {result.succeeded}")
    print(f"Failed             : {len(result.failed)}")
    if result.cancelled:
        print("Cancelled before finishing")
    for error in result.failed:
        print(f"  {error}")
    print("-" * 72)
