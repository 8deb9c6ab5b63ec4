"""Command-line interface for the collection ledger.

This module uses the ``click`` library to implement a multi-command
interface over a :class:`collection_ledger_store.ledger_store.LedgerStore`.
Operators can register clients and credits, record payments, fines and
discounts, print credit statements and daily routes, defer collections and
flag clients the collector could not find. Statements and routes can be
printed to the terminal or exported to JSON files.
"""

from __future__ import annotations

import functools
import json
import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4

import click

from collection_ledger_store.ledger_store import LedgerStore, create_store_from_env

from .bulk_deferral import DeferralItem, defer_many
from .data_models import CADENCES, DISCOUNT_AMOUNT, DISCOUNT_DAYS, Client, RouteLineItem, RouteReport
from .deferrals import DeferralBook
from .engine import allocate, summarize_credit
from .errors import NotFoundError, ValidationError
from .formatter import print_bulk_result, print_credit, print_route
from .schedule import create_credit
from .status import classify_status, installment_state, suggest_label
from .utils import optional_day, parse_amount

DATABASE_URL_ENV = "COLLECTION_LEDGER_DATABASE_URL"
LOG_LEVEL_ENV = "COLLECTION_LEDGER_LOG_LEVEL"


def ledger_errors(func):
    """Turn engine errors into click errors so they print without a traceback."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ValidationError as exc:
            raise click.BadParameter(str(exc))
        except NotFoundError as exc:
            raise click.ClickException(str(exc))

    return wrapper


def parse_day(value: Optional[str]) -> date:
    """Parse an ISO date option, defaulting to today."""
    return optional_day(value) or date.today()


def parse_rank_strings(values: Tuple[str, ...]) -> Dict[str, int]:
    ranks: Dict[str, int] = {}
    for item in values:
        parts = item.split(":")
        if len(parts) != 2:
            raise click.BadParameter(f"Order entry must be in CLIENT_ID:RANK format; got {item}")
        client_id, rank = parts
        try:
            ranks[client_id] = int(rank)
        except ValueError:
            raise click.BadParameter(f"Invalid rank: {rank}")
    return ranks


def _json_path(output: str) -> Path:
    path = Path(output)
    if path.suffix.lower() != ".json":
        raise click.BadParameter("Unsupported output format; use .json")
    return path


def _item_to_dict(item: RouteLineItem) -> Dict[str, Any]:
    return {
        "kind": item.kind,
        "client_id": item.client_id,
        "client_name": item.client_name,
        "portfolio": item.portfolio,
        "credit_id": item.credit_id,
        "cadence": item.cadence,
        "installment_value": float(item.installment_value),
        "amount_due": float(item.amount_due),
        "amount_collected": float(item.amount_collected),
        "fines_collected": float(item.fines_collected),
        "credit_outstanding": float(item.credit_outstanding),
        "status": item.status,
        "overdue_count": item.overdue_count,
        "earliest_overdue_date": item.earliest_overdue_date.isoformat() if item.earliest_overdue_date else None,
        "due_installments": item.due_installments,
        "rank": item.rank,
    }


def export_route_to_json(path: Path, report: RouteReport) -> None:
    """Export a route to a JSON file."""
    data = {
        "target_date": report.target_date.isoformat(),
        "today": report.today.isoformat(),
        "buckets": {
            portfolio: [_item_to_dict(i) for i in items] for portfolio, items in report.buckets.items()
        },
        "unreported": [_item_to_dict(i) for i in report.unreported],
        "pending_total": float(report.pending_total),
        "collected_total": float(report.collected_total),
        "client_count": report.client_count,
    }
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def export_credit_to_json(path: Path, credit, summary, balances, status: str, due_dates, notes=()) -> None:
    """Export a credit statement to a JSON file."""
    data = {
        "credit_id": credit.id,
        "client_id": credit.client_id,
        "cadence": credit.cadence,
        "status": status,
        "label": credit.label,
        "suggested_label": suggest_label(balances),
        "previous_credit_id": credit.previous_credit_id,
        "renewal_credit_id": credit.renewal_credit_id,
        "summary": {
            "total_scheduled": float(summary.total_scheduled),
            "total_applied": float(summary.total_applied),
            "capital_outstanding": float(summary.capital_outstanding),
            "fines_total": float(summary.fines_total),
            "fines_outstanding": float(summary.fines_outstanding),
            "discounts_total": float(summary.discounts_total),
            "balance": float(summary.balance),
            "installments_paid": summary.installments_paid,
            "installments_total": summary.installments_total,
        },
        "installments": [
            {
                "number": b.number,
                "due_date": due_dates[b.number].isoformat(),
                "applied": float(b.applied_amount),
                "outstanding": float(b.outstanding),
                "fine_outstanding": float(b.fine_outstanding),
                "state": installment_state(b),
                "paid_date": b.paid_date.isoformat() if b.paid_date else None,
            }
            for b in balances
        ],
        "audit_notes": list(notes),
    }
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def _store(ctx: click.Context) -> LedgerStore:
    if "store" not in ctx.obj:
        ctx.obj["store"] = create_store_from_env(ctx.obj.get("database_url"))
    return ctx.obj["store"]


@click.group()
@click.option("--database-url", envvar=DATABASE_URL_ENV, help="SQLAlchemy database URL")
@click.option(
    "--log-level",
    envvar=LOG_LEVEL_ENV,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Logging level",
)
@click.pass_context
def cli(ctx: click.Context, database_url: Optional[str], log_level: str) -> None:
    """Track credits, payments and daily collection routes."""
    logging.basicConfig(level=getattr(logging, log_level.upper()), format="%(levelname)s %(name)s: %(message)s")
    ctx.ensure_object(dict)
    ctx.obj["database_url"] = database_url


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create the database tables."""
    _store(ctx)
    click.echo("Database ready")


@cli.command("add-client")
@click.argument("name")
@click.option("--id", "client_id", help="Client id (generated when omitted)")
@click.option("--portfolio", default="K1", show_default=True, help="Portfolio the client belongs to")
@click.option("--neighborhood", default="", help="Neighborhood")
@click.option("--document", default="", help="Identity document")
@click.option("--phone", default="", help="Phone number")
@click.option("--position", type=int, help="Default position on the route")
@click.pass_context
@ledger_errors
def add_client(
    ctx: click.Context,
    name: str,
    client_id: Optional[str],
    portfolio: str,
    neighborhood: str,
    document: str,
    phone: str,
    position: Optional[int],
) -> None:
    """Register a client."""
    client = Client(
        id=client_id or uuid4().hex,
        name=name,
        portfolio=portfolio,
        neighborhood=neighborhood,
        document=document,
        phone=phone,
        position=position,
    )
    _store(ctx).add_client(client)
    click.echo(client.id)


@cli.command("add-credit")
@click.argument("client_id")
@click.option("--principal", "-p", "principal", required=True, help="Amount lent")
@click.option("--installment-value", "-i", "installment_value", required=True, help="Value of every installment")
@click.option("--cadence", "-c", type=click.Choice(CADENCES), required=True, help="Payment cadence")
@click.option("--start-date", "-s", "start_date", help="Credit start date (YYYY-MM-DD); defaults to today")
@click.option("--id", "credit_id", help="Credit id (generated when omitted)")
@click.option("--label", help="Quality label")
@click.pass_context
@ledger_errors
def add_credit(
    ctx: click.Context,
    client_id: str,
    principal: str,
    installment_value: str,
    cadence: str,
    start_date: Optional[str],
    credit_id: Optional[str],
    label: Optional[str],
) -> None:
    """Originate a credit with its full installment schedule."""
    credit = create_credit(
        credit_id or uuid4().hex,
        client_id,
        parse_amount(principal),
        parse_amount(installment_value),
        cadence,
        parse_day(start_date),
        label=label,
    )
    _store(ctx).add_credit(credit)
    click.echo(credit.id)


@cli.command()
@click.argument("credit_id")
@click.argument("amount", required=False)
@click.option("--date", "-d", "on", help="Payment date (YYYY-MM-DD); defaults to today")
@click.option("--description", default="", help="Free text stored with the payment")
@click.option("--installment", type=int, help="Apply the payment to this installment first")
@click.option("--fine", "fine_id", help="Apply the payment to this fine")
@click.option("--full", is_flag=True, help="Pay the whole outstanding balance of --installment")
@click.pass_context
@ledger_errors
def pay(
    ctx: click.Context,
    credit_id: str,
    amount: Optional[str],
    on: Optional[str],
    description: str,
    installment: Optional[int],
    fine_id: Optional[str],
    full: bool,
) -> None:
    """Record a payment on a credit."""
    store = _store(ctx)
    if full:
        if installment is None:
            raise click.BadParameter("--full requires --installment")
        payment = store.pay_installment_in_full(credit_id, installment, parse_day(on))
        if payment is None:
            click.echo(f"Installment {installment} is already paid")
        else:
            click.echo(f"Paid {payment.value:.2f} on installment {installment}")
        return
    if amount is None:
        raise click.BadParameter("AMOUNT is required unless --full is given")
    record = store.add_payment(
        credit_id,
        parse_amount(amount),
        parse_day(on),
        description=description,
        target_installment=installment,
        target_fine_id=fine_id,
    )
    click.echo(record.id)


@cli.command()
@click.argument("credit_id")
@click.argument("amount")
@click.option("--date", "-d", "on", help="Fine date (YYYY-MM-DD); defaults to today")
@click.option("--motive", default="", help="Reason for the fine")
@click.option("--installment", type=int, help="Installment the fine is tied to")
@click.pass_context
@ledger_errors
def fine(
    ctx: click.Context,
    credit_id: str,
    amount: str,
    on: Optional[str],
    motive: str,
    installment: Optional[int],
) -> None:
    """Charge a fine on a credit."""
    record = _store(ctx).add_fine(
        credit_id, parse_amount(amount), parse_day(on), motive=motive, related_installment=installment
    )
    click.echo(record.id)


@cli.command("pay-fine")
@click.argument("credit_id")
@click.argument("fine_id")
@click.argument("amount")
@click.option("--date", "-d", "on", help="Payment date (YYYY-MM-DD); defaults to today")
@click.pass_context
@ledger_errors
def pay_fine(ctx: click.Context, credit_id: str, fine_id: str, amount: str, on: Optional[str]) -> None:
    """Record a payment against a fine."""
    record = _store(ctx).add_fine_payment(credit_id, fine_id, parse_amount(amount), parse_day(on))
    click.echo(record.id)


@cli.command()
@click.argument("credit_id")
@click.argument("value")
@click.option("--kind", type=click.Choice([DISCOUNT_DAYS, DISCOUNT_AMOUNT]), default=DISCOUNT_AMOUNT, show_default=True)
@click.option("--description", default="", help="Reason for the discount")
@click.pass_context
@ledger_errors
def discount(ctx: click.Context, credit_id: str, value: str, kind: str, description: str) -> None:
    """Grant a discount on a credit."""
    record = _store(ctx).add_discount(credit_id, parse_amount(value), kind, description=description)
    click.echo(record.id)


@cli.command()
@click.argument("credit_id")
@click.option("--today", help="Evaluate status as of this date (YYYY-MM-DD)")
@click.option("--output", "output", type=str, help="Output file path (.json)")
@click.pass_context
@ledger_errors
def credit(ctx: click.Context, credit_id: str, today: Optional[str], output: Optional[str]) -> None:
    """Print the statement of a credit."""
    store = _store(ctx)
    record = store.get_credit(credit_id)
    ledger = store.get_ledger(credit_id)
    book = DeferralBook(store.list_deferrals(credit_id))
    balances = allocate(record, ledger)
    summary = summarize_credit(record, ledger, balances)
    status = classify_status(record, balances, book, parse_day(today))
    due_dates = book.due_dates(record)
    notes = store.list_audit_notes(credit_id)
    if output:
        path = _json_path(output)
        export_credit_to_json(path, record, summary, balances, status, due_dates, notes)
        click.echo(f"Credit exported to {path}")
    else:
        print_credit(record, summary, balances, status, due_dates, notes)


@cli.command()
@click.option("--date", "-d", "on", help="Route date (YYYY-MM-DD); defaults to today")
@click.option("--today", help="Override the current date (YYYY-MM-DD)")
@click.option("--output", "output", type=str, help="Output file path (.json)")
@click.pass_context
@ledger_errors
def route(ctx: click.Context, on: Optional[str], today: Optional[str], output: Optional[str]) -> None:
    """Print the collection route for a date."""
    report = _store(ctx).route_for(parse_day(on), today=parse_day(today))
    if output:
        path = _json_path(output)
        export_route_to_json(path, report)
        click.echo(f"Route exported to {path}")
    else:
        print_route(report)


@cli.command()
@click.argument("credit_ids", nargs=-1, required=True)
@click.option("--to", "new_date", required=True, help="New collection date (YYYY-MM-DD)")
@click.option("--reason", default="", help="Reason written to the audit note")
@click.option("--date", "-d", "on", help="Route date being viewed (YYYY-MM-DD); defaults to today")
@click.option("--installment", "installments", type=int, multiple=True, help="Defer only these installments")
@click.pass_context
@ledger_errors
def defer(
    ctx: click.Context,
    credit_ids: Tuple[str, ...],
    new_date: str,
    reason: str,
    on: Optional[str],
    installments: Tuple[int, ...],
) -> None:
    """Defer the collection of one or more credits to a new date."""
    items = [DeferralItem(credit_id=cid, installment_numbers=list(installments) or None) for cid in credit_ids]

    def report(processed: int, total: int) -> None:
        click.echo(f"{processed}/{total}", err=True)

    result = defer_many(
        _store(ctx),
        items,
        parse_day(new_date),
        reason,
        viewing_date=parse_day(on),
        progress=report if len(items) > 1 else None,
    )
    print_bulk_result(result)
    if result.failed:
        ctx.exit(1)


@cli.command()
@click.argument("entries", nargs=-1)
@click.option("--date", "-d", "on", help="Route date (YYYY-MM-DD); defaults to today")
@click.option("--clear", "clear", multiple=True, help="Remove the manual rank of this client")
@click.pass_context
@ledger_errors
def order(ctx: click.Context, entries: Tuple[str, ...], on: Optional[str], clear: Tuple[str, ...]) -> None:
    """Set the manual collection order for a date (CLIENT_ID:RANK ...)."""
    store = _store(ctx)
    day = parse_day(on)
    if entries:
        store.save_collection_order(day, parse_rank_strings(entries))
    for client_id in clear:
        store.delete_collection_order(day, client_id)
    for client_id, rank in store.get_collection_order(day).items():
        click.echo(f"{rank:4d} {client_id}")


@cli.command("not-found")
@click.argument("client_id")
@click.option("--date", "-d", "on", help="Date the client was not found (YYYY-MM-DD); defaults to today")
@click.pass_context
@ledger_errors
def not_found(ctx: click.Context, client_id: str, on: Optional[str]) -> None:
    """Flag a client the collector could not find; they show up again tomorrow."""
    _store(ctx).mark_not_found(client_id, parse_day(on))
    click.echo(f"Client {client_id} marked as not found")


@cli.command()
@click.argument("client_id")
@click.option("--date", "-d", "on", help="Route date (YYYY-MM-DD); defaults to today")
@click.pass_context
@ledger_errors
def reported(ctx: click.Context, client_id: str, on: Optional[str]) -> None:
    """Clear a client's not-found flag."""
    _store(ctx).mark_reported(client_id, parse_day(on))
    click.echo(f"Client {client_id} reported")


@cli.command("edit-payment")
@click.argument("credit_id")
@click.argument("payment_id")
@click.option("--amount", help="New payment value")
@click.option("--date", "-d", "on", help="New payment date (YYYY-MM-DD)")
@click.option("--description", help="New description")
@click.pass_context
@ledger_errors
def edit_payment(
    ctx: click.Context,
    credit_id: str,
    payment_id: str,
    amount: Optional[str],
    on: Optional[str],
    description: Optional[str],
) -> None:
    """Change the value, date or description of a payment."""
    record = _store(ctx).edit_payment(
        credit_id,
        payment_id,
        value=parse_amount(amount) if amount is not None else None,
        on=optional_day(on),
        description=description,
    )
    click.echo(f"Payment {record.id}: {record.value:.2f} on {record.date.isoformat()}")


@cli.command("delete-payment")
@click.argument("credit_id")
@click.argument("payment_id")
@click.pass_context
@ledger_errors
def delete_payment(ctx: click.Context, credit_id: str, payment_id: str) -> None:
    """Delete a payment."""
    _store(ctx).delete_payment(credit_id, payment_id)
    click.echo(f"Payment {payment_id} deleted")


@cli.command("edit-fine")
@click.argument("credit_id")
@click.argument("fine_id")
@click.option("--amount", help="New fine value")
@click.option("--date", "-d", "on", help="New fine date (YYYY-MM-DD)")
@click.option("--motive", help="New reason for the fine")
@click.pass_context
@ledger_errors
def edit_fine(
    ctx: click.Context,
    credit_id: str,
    fine_id: str,
    amount: Optional[str],
    on: Optional[str],
    motive: Optional[str],
) -> None:
    """Change the value, date or motive of a fine."""
    record = _store(ctx).edit_fine(
        credit_id,
        fine_id,
        value=parse_amount(amount) if amount is not None else None,
        on=optional_day(on),
        motive=motive,
    )
    click.echo(f"Fine {record.id}: {record.value:.2f} on {record.date.isoformat()}")


@cli.command("delete-fine")
@click.argument("credit_id")
@click.argument("fine_id")
@click.pass_context
@ledger_errors
def delete_fine(ctx: click.Context, credit_id: str, fine_id: str) -> None:
    """Delete a fine and the payments made against it."""
    _store(ctx).delete_fine(credit_id, fine_id)
    click.echo(f"Fine {fine_id} deleted")


@cli.command("edit-fine-payment")
@click.argument("credit_id")
@click.argument("fine_payment_id")
@click.option("--amount", help="New payment value")
@click.option("--date", "-d", "on", help="New payment date (YYYY-MM-DD)")
@click.pass_context
@ledger_errors
def edit_fine_payment(
    ctx: click.Context,
    credit_id: str,
    fine_payment_id: str,
    amount: Optional[str],
    on: Optional[str],
) -> None:
    """Change the value or date of a fine payment."""
    record = _store(ctx).edit_fine_payment(
        credit_id,
        fine_payment_id,
        value=parse_amount(amount) if amount is not None else None,
        on=optional_day(on),
    )
    click.echo(f"Fine payment {record.id}: {record.value:.2f} on {record.date.isoformat()}")


@cli.command("delete-fine-payment")
@click.argument("credit_id")
@click.argument("fine_payment_id")
@click.pass_context
@ledger_errors
def delete_fine_payment(ctx: click.Context, credit_id: str, fine_payment_id: str) -> None:
    """Delete a fine payment."""
    _store(ctx).delete_fine_payment(credit_id, fine_payment_id)
    click.echo(f"Fine payment {fine_payment_id} deleted")


@cli.command("delete-discount")
@click.argument("credit_id")
@click.argument("discount_id")
@click.pass_context
@ledger_errors
def delete_discount(ctx: click.Context, credit_id: str, discount_id: str) -> None:
    """Delete a discount."""
    _store(ctx).delete_discount(credit_id, discount_id)
    click.echo(f"Discount {discount_id} deleted")


@cli.command()
@click.argument("credit_id")
@click.argument("value", required=False)
@click.option("--clear", is_flag=True, help="Remove the label")
@click.pass_context
@ledger_errors
def label(ctx: click.Context, credit_id: str, value: Optional[str], clear: bool) -> None:
    """Set the quality label of a credit; suggests one when VALUE is omitted."""
    store = _store(ctx)
    if clear:
        store.set_label(credit_id, None)
        click.echo(f"Label of {credit_id} cleared")
        return
    if value is None:
        record = store.get_credit(credit_id)
        value = suggest_label(allocate(record, store.get_ledger(credit_id)))
        if value is None:
            click.echo(f"No label suggested for {credit_id}")
            return
    store.set_label(credit_id, value)
    click.echo(f"Label of {credit_id}: {value}")


@cli.command("mark-paid")
@click.argument("credit_id")
@click.argument("number", type=int)
@click.option("--date", "-d", "on", help="Date it was paid (YYYY-MM-DD); defaults to today")
@click.option("--undo", is_flag=True, help="Clear the manual paid flag")
@click.pass_context
@ledger_errors
def mark_paid(ctx: click.Context, credit_id: str, number: int, on: Optional[str], undo: bool) -> None:
    """Flag an installment as paid outside the ledger."""
    _store(ctx).mark_installment_paid(credit_id, number, None if undo else parse_day(on))
    click.echo(f"Installment {number} of {credit_id} {'unflagged' if undo else 'marked paid'}")


@cli.command()
@click.argument("credit_id")
@click.argument("number", type=int)
@click.pass_context
@ledger_errors
def undefer(ctx: click.Context, credit_id: str, number: int) -> None:
    """Restore the scheduled due date of a deferred installment."""
    _store(ctx).delete_deferral(credit_id, number)
    click.echo(f"Installment {number} of {credit_id} back on its scheduled date")


@cli.command()
@click.argument("client_id")
@click.option("--off", is_flag=True, help="Clear the refinance flag")
@click.pass_context
@ledger_errors
def refinance(ctx: click.Context, client_id: str, off: bool) -> None:
    """Flag a client for refinancing; flagged clients get no not-found placeholder."""
    client = _store(ctx).set_client_flags(client_id, refinance_flag=not off)
    click.echo(f"Client {client.id} refinance flag {'on' if client.refinance_flag else 'off'}")


@cli.command()
@click.argument("credit_id")
@click.option("--principal", "-p", "principal", required=True, help="Amount lent on the new credit")
@click.option("--installment-value", "-i", "installment_value", required=True, help="Value of every installment")
@click.option("--cadence", "-c", type=click.Choice(CADENCES), required=True, help="Payment cadence")
@click.option("--start-date", "-s", "start_date", help="New credit start date (YYYY-MM-DD); defaults to today")
@click.option("--id", "new_id", help="New credit id (generated when omitted)")
@click.option("--label", help="Quality label of the new credit")
@click.pass_context
@ledger_errors
def renew(
    ctx: click.Context,
    credit_id: str,
    principal: str,
    installment_value: str,
    cadence: str,
    start_date: Optional[str],
    new_id: Optional[str],
    label: Optional[str],
) -> None:
    """Replace a credit with a new one for the same client."""
    store = _store(ctx)
    old = store.get_credit(credit_id)
    start = parse_day(start_date)
    new_credit = create_credit(
        new_id or uuid4().hex,
        old.client_id,
        parse_amount(principal),
        parse_amount(installment_value),
        cadence,
        start,
        label=label,
    )
    store.renew_credit(credit_id, new_credit, on=start)
    click.echo(new_credit.id)


if __name__ == "__main__":
    cli()
