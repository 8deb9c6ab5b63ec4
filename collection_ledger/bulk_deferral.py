"""Bulk deferral of many accounts at once.

Moves the collection date of several credits to a new day, one credit at a
time. Every item succeeds or fails on its own: a failure is recorded and the
batch carries on with the next item. Progress is reported after every item
and the batch can be cancelled between items, in which case the result holds
what was done so far.

:class:`BulkDeferralJob` runs the same operation on a background thread so
the caller can poll progress instead of blocking.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, Tuple

from .data_models import Credit, Deferral
from .deferrals import DeferralBook
from .engine import allocate
from .errors import LedgerError, PartialBatchFailure, ValidationError
from .ledger import CreditLedger
from .schedule import find_installment
from .utils import DateLike, to_day

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class DeferralRepository(Protocol):
    """The persistence operations a bulk deferral needs."""

    def get_credit(self, credit_id: str) -> Credit: ...

    def get_ledger(self, credit_id: str) -> CreditLedger: ...

    def list_deferrals(self, credit_id: Optional[str] = None) -> List[Deferral]: ...

    def record_deferral(
        self,
        credit_id: str,
        client_id: str,
        deferrals: Sequence[Deferral],
        note: str,
        on: date,
        new_date: date,
    ) -> bool: ...


@dataclass
class DeferralItem:
    """One account to defer.

    When ``installment_numbers`` is empty every unpaid installment whose
    effective due date is on or before the viewed date is deferred.
    """

    credit_id: str
    installment_numbers: Optional[List[int]] = None


class DeferralItemError(LedgerError):
    """A single item of a bulk deferral failed."""

    def __init__(self, credit_id: str, cause: Exception) -> None:
        self.credit_id = credit_id
        self.cause = cause
        super().__init__(f"Credit {credit_id}: {cause}")


@dataclass
class BulkDeferralResult:
    total: int
    succeeded: int = 0
    processed: int = 0
    cancelled: bool = False
    failed: List[DeferralItemError] = field(default_factory=list)
    deferred: List[Deferral] = field(default_factory=list)

    def raise_for_failures(self) -> None:
        """Raise :class:`PartialBatchFailure` if any item failed."""
        if self.failed:
            raise PartialBatchFailure(self.succeeded, self.failed)


def installments_to_defer(
    credit: Credit,
    ledger: CreditLedger,
    deferrals: DeferralBook,
    viewing_date: date,
    installment_numbers: Optional[Iterable[int]] = None,
) -> List[int]:
    """Pick the installments a deferral applies to.

    Explicit numbers must exist on the credit. Without them, the unpaid
    installments due on or before ``viewing_date`` are chosen.
    """
    if installment_numbers:
        numbers = sorted(set(installment_numbers))
        for number in numbers:
            if find_installment(credit, number) is None:
                raise ValidationError(f"Installment {number} does not exist on credit {credit.id}")
        return numbers
    due = deferrals.due_dates(credit)
    return [b.number for b in allocate(credit, ledger) if b.outstanding > 0 and due[b.number] <= viewing_date]


def defer_one(
    repository: DeferralRepository,
    item: DeferralItem,
    new_date: date,
    reason: str,
    viewing_date: date,
) -> List[Deferral]:
    """Defer a single account and return the deferrals written."""
    credit = repository.get_credit(item.credit_id)
    ledger = repository.get_ledger(credit.id)
    book = DeferralBook(repository.list_deferrals(credit.id))
    numbers = installments_to_defer(credit, ledger, book, viewing_date, item.installment_numbers)
    if not numbers:
        logger.info("Credit %s has nothing due on %s to defer", credit.id, viewing_date.isoformat())
        return []
    records = [
        Deferral(credit_id=credit.id, installment_number=n, new_due_date=new_date)
        for n in numbers
    ]
    note = f"Collection date deferred to {new_date.isoformat()} - {reason}"
    # Deferrals, note and marker move are written together or not at all.
    if repository.record_deferral(credit.id, credit.client_id, records, note, viewing_date, new_date):
        logger.info("Not-found marker of client %s moved to %s", credit.client_id, new_date.isoformat())
    return records


def defer_many(
    repository: DeferralRepository,
    items: Sequence[DeferralItem],
    new_date: DateLike,
    reason: str,
    viewing_date: Optional[DateLike] = None,
    progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
) -> BulkDeferralResult:
    """Defer many accounts to ``new_date``, one after another.

    Parameters
    ----------
    repository: DeferralRepository
        Persistence collaborator the deferrals, notes and markers go to.
    items: Sequence[DeferralItem]
        Accounts to defer.
    new_date: date
        The new collection date.
    reason: str
        Recorded in the audit note of every account.
    viewing_date: date, optional
        The route date the operator is looking at; decides which
        installments are deferred when an item names none. Defaults to
        today.
    progress: callable, optional
        Called with ``(processed, total)`` after every item.
    cancel_event: threading.Event, optional
        When set, the batch stops before starting the next item.
    """
    target = to_day(new_date)
    viewing = to_day(viewing_date) if viewing_date is not None else date.today()
    result = BulkDeferralResult(total=len(items))

    for item in items:
        if cancel_event is not None and cancel_event.is_set():
            result.cancelled = True
            logger.info("Bulk deferral cancelled after %d of %d items", result.processed, result.total)
            break
        try:
            result.deferred.extend(defer_one(repository, item, target, reason, viewing))
            result.succeeded += 1
        except Exception as exc:
            logger.warning("Deferral of credit %s failed: %s", item.credit_id, exc)
            error = DeferralItemError(item.credit_id, exc)
            error.__cause__ = exc
            result.failed.append(error)
        result.processed += 1
        if progress is not None:
            progress(result.processed, result.total)

    logger.info(
        "Bulk deferral to %s: %d succeeded, %d failed, %d of %d processed",
        target.isoformat(),
        result.succeeded,
        len(result.failed),
        result.processed,
        result.total,
    )
    return result


class BulkDeferralJob:
    """Run :func:`defer_many` on a background thread.

    ``progress`` can be read at any time while the job runs; ``cancel()``
    stops it between items and ``join()`` returns the result.
    """

    def __init__(
        self,
        repository: DeferralRepository,
        items: Sequence[DeferralItem],
        new_date: DateLike,
        reason: str,
        viewing_date: Optional[DateLike] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self._repository = repository
        self._items = list(items)
        self._new_date = new_date
        self._reason = reason
        self._viewing_date = viewing_date
        self._on_progress = on_progress
        self._cancel = threading.Event()
        self._lock = threading.Lock()
        self._processed = 0
        self._error: Optional[Exception] = None
        self.result: Optional[BulkDeferralResult] = None
        self._thread = threading.Thread(target=self._run, name="bulk-deferral", daemon=True)

    @property
    def progress(self) -> Tuple[int, int]:
        with self._lock:
            return self._processed, len(self._items)

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def _report(self, processed: int, total: int) -> None:
        with self._lock:
            self._processed = processed
        if self._on_progress is not None:
            self._on_progress(processed, total)

    def _run(self) -> None:
        try:
            self.result = defer_many(
                self._repository,
                self._items,
                self._new_date,
                self._reason,
                viewing_date=self._viewing_date,
                progress=self._report,
                cancel_event=self._cancel,
            )
        except Exception as exc:
            logger.exception("Bulk deferral job failed")
            self._error = exc

    def start(self) -> "BulkDeferralJob":
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._cancel.set()

    def join(self, timeout: Optional[float] = None) -> Optional[BulkDeferralResult]:
        self._thread.join(timeout)
        if self._error is not None:
            raise self._error
        return self.result
