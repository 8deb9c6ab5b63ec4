"""Data models for the collection ledger.

This module defines dataclasses representing the entities the engine works
with: credits and their installments, the ledger records appended over a
credit's life (payments, fines, fine payments, discounts), the operator
overrides used by the daily route (deferrals, collection order, not-found
markers) and the results the engine computes from all of them.

Money values are ``Decimal`` and dates are calendar days (``datetime.date``)
throughout; no record carries a time of day.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional


DAILY = "daily"
WEEKLY = "weekly"
BIWEEKLY = "biweekly"
MONTHLY = "monthly"

CADENCES = (DAILY, WEEKLY, BIWEEKLY, MONTHLY)

# Number of installments a credit gets for each cadence.
INSTALLMENT_COUNTS: Dict[str, int] = {
    DAILY: 60,
    WEEKLY: 10,
    BIWEEKLY: 5,
    MONTHLY: 3,
}

DISCOUNT_DAYS = "days"
DISCOUNT_AMOUNT = "amount"

STATUS_CURRENT = "current"
STATUS_OVERDUE = "overdue"
STATUS_CLOSED = "closed"

STATE_PAID = "paid"
STATE_PARTIAL = "partial"
STATE_PENDING = "pending"

ITEM_PENDING = "pending"
ITEM_PAID = "paid"
ITEM_ADVANCED = "advanced"
ITEM_NOT_FOUND = "not_found"

UNREPORTED_BUCKET = "unreported"


@dataclass
class Installment:
    """One scheduled repayment unit of a credit.

    Attributes
    ----------
    number: int
        Position in the schedule, starting at 1.
    scheduled_date: date
        Due date fixed when the credit was created. It is never rewritten;
        date changes live in :class:`Deferral` records.
    paid_manually: bool
        The installment was marked paid by an operator, outside the ledger.
    paid_date: date | None
        Date recorded with a manual payment mark.
    """

    number: int
    scheduled_date: date
    paid_manually: bool = False
    paid_date: Optional[date] = None


@dataclass
class Credit:
    """A credit together with its full installment set.

    Only ``label`` and the renewal fields change after creation. A renewal
    links both ways: the new credit points back through
    ``previous_credit_id`` and the renewed one forward through
    ``renewal_credit_id``.
    """

    id: str
    client_id: str
    principal: Decimal
    installment_value: Decimal
    cadence: str  # one of CADENCES
    start_date: date
    installment_count: int
    renewed: bool = False
    label: Optional[str] = None  # excellent / good / late / incomplete
    previous_credit_id: Optional[str] = None
    renewal_credit_id: Optional[str] = None
    renewed_on: Optional[date] = None
    installments: List[Installment] = field(default_factory=list)

    @property
    def total_scheduled(self) -> Decimal:
        return self.installment_value * self.installment_count


@dataclass
class Payment:
    """A payment ("abono") toward a credit's installments.

    Attributes
    ----------
    target_installment: int | None
        Explicit installment the payment is meant for. When absent the
        payment is general and swept across installments in order.
    target_fine_id: str | None
        Set instead of ``target_installment`` when the payment settles a
        fine. Such payments are kept as :class:`FinePayment` records by the
        ledger and never reduce installment capital.
    sequence: int
        Insertion order, used to order payments sharing the same date.
    """

    id: str
    credit_id: str
    value: Decimal
    date: date
    description: str = ""
    target_installment: Optional[int] = None
    target_fine_id: Optional[str] = None
    sequence: int = 0


@dataclass
class Fine:
    """A penalty charge ("multa") attached to a credit."""

    id: str
    credit_id: str
    value: Decimal
    date: date
    motive: str = ""
    related_installment: Optional[int] = None


@dataclass
class FinePayment:
    """A payment reducing the balance of a single fine."""

    id: str
    fine_id: str
    value: Decimal
    date: date


@dataclass
class Discount:
    """A discount granted on a credit.

    ``kind`` is ``"amount"`` (``value`` is money) or ``"days"`` (``value`` is
    a number of installments forgiven).
    """

    id: str
    credit_id: str
    value: Decimal
    kind: str
    description: str = ""


@dataclass
class Deferral:
    """Override of one installment's due date ("prórroga")."""

    credit_id: str
    installment_number: int
    new_due_date: date


@dataclass
class CollectionOrder:
    """Manual route position of a client on a given date."""

    date: date
    client_id: str
    rank: int


@dataclass
class NotFoundMarker:
    """A client the collector could not reach, queued for ``date``."""

    date: date
    client_id: str


@dataclass
class Client:
    """Identity data the route needs for each line item."""

    id: str
    name: str
    portfolio: str = "K1"
    neighborhood: str = ""
    document: str = ""
    phone: str = ""
    position: Optional[int] = None
    reported: bool = True
    refinance_flag: bool = False


@dataclass
class Application:
    """A slice of a payment applied to one installment."""

    payment_id: str
    amount: Decimal
    date: date
    targeted: bool


@dataclass
class InstallmentBalance:
    """Allocation result for one installment.

    ``applied_amount + outstanding == installment_value`` always holds.
    Fine figures only cover fines explicitly related to this installment.
    """

    number: int
    installment_value: Decimal
    applied_amount: Decimal
    outstanding: Decimal
    paid_manually: bool = False
    paid_date: Optional[date] = None
    applications: List[Application] = field(default_factory=list)
    fine_total: Decimal = Decimal("0")
    fine_covered: Decimal = Decimal("0")

    @property
    def fine_outstanding(self) -> Decimal:
        return max(Decimal("0"), self.fine_total - self.fine_covered)

    @property
    def settled(self) -> bool:
        return self.outstanding == 0


@dataclass
class FineBalance:
    fine_id: str
    value: Decimal
    covered: Decimal
    related_installment: Optional[int] = None

    @property
    def outstanding(self) -> Decimal:
        return max(Decimal("0"), self.value - self.covered)


@dataclass
class CreditSummary:
    """Credit-level totals derived from an allocation."""

    credit_id: str
    total_scheduled: Decimal
    total_applied: Decimal
    capital_outstanding: Decimal
    fines_total: Decimal
    fines_outstanding: Decimal
    discounts_total: Decimal
    balance: Decimal
    installments_paid: int
    installments_total: int


@dataclass
class RouteLineItem:
    """One credit to visit (or report) on the route date."""

    kind: str  # pending / paid / advanced / not_found
    client_id: str
    client_name: str
    portfolio: str
    credit_id: str
    cadence: str
    installment_value: Decimal
    amount_due: Decimal
    amount_collected: Decimal
    fines_collected: Decimal
    credit_outstanding: Decimal
    status: str
    overdue_count: int
    earliest_overdue_date: Optional[date]
    due_installments: List[int] = field(default_factory=list)
    neighborhood: str = ""
    position: Optional[int] = None
    rank: Optional[int] = None


@dataclass
class RouteReport:
    """The collection route for one date."""

    target_date: date
    today: date
    buckets: Dict[str, List[RouteLineItem]]
    unreported: List[RouteLineItem]
    pending_total: Decimal
    collected_total: Decimal
    client_count: int

    def all_items(self) -> List[RouteLineItem]:
        items: List[RouteLineItem] = []
        for portfolio in sorted(self.buckets):
            items.extend(self.buckets[portfolio])
        items.extend(self.unreported)
        return items
