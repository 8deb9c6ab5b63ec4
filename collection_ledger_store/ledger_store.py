"""Persistence layer for credits, ledgers and route overrides.

The engine in :mod:`collection_ledger` works on plain records and never
touches storage. This module is the collaborator that keeps those records: it
defaults to SQLite for local use, but accepts any SQLAlchemy-compatible URL
(e.g. PostgreSQL/MySQL) for shared deployments.

Writes to the ledger go through :class:`collection_ledger.ledger.CreditLedger`
so that they are validated exactly like in-memory appends. Reads always
return fresh snapshots; nothing computed from them is cached here.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    create_engine,
    select,
)
from sqlalchemy.orm import declarative_base, relationship, selectinload, sessionmaker
from sqlalchemy.pool import StaticPool

from collection_ledger.data_models import (
    Client,
    Credit,
    Deferral,
    Discount,
    Fine,
    FinePayment,
    Installment,
    NotFoundMarker,
    Payment,
    RouteReport,
)
from collection_ledger.engine import pay_installment_in_full
from collection_ledger.errors import NotFoundError, ValidationError
from collection_ledger.ledger import CreditLedger, ledger_from_records
from collection_ledger.route import build_route
from collection_ledger.route import mark_not_found as queue_not_found
from collection_ledger.route import mark_reported as clear_not_found
from collection_ledger.route import move_not_found
from collection_ledger.schedule import validate_schedule
from collection_ledger.utils import DateLike, add_days, to_day

logger = logging.getLogger(__name__)

Base = declarative_base()

Money = Numeric(14, 2, asdecimal=True)


class ClientModel(Base):
    __tablename__ = "clients"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    portfolio = Column(String(32), nullable=False, default="K1", index=True)
    neighborhood = Column(String(255), nullable=False, default="")
    document = Column(String(64), nullable=False, default="")
    phone = Column(String(64), nullable=False, default="")
    position = Column(Integer, nullable=True)
    reported = Column(Boolean, nullable=False, default=True)
    refinance_flag = Column(Boolean, nullable=False, default=False)


class CreditModel(Base):
    __tablename__ = "credits"

    id = Column(String(64), primary_key=True)
    client_id = Column(String(64), ForeignKey("clients.id"), index=True, nullable=False)
    principal = Column(Money, nullable=False)
    installment_value = Column(Money, nullable=False)
    cadence = Column(String(16), nullable=False)
    start_date = Column(Date, nullable=False)
    installment_count = Column(Integer, nullable=False)
    renewed = Column(Boolean, nullable=False, default=False)
    label = Column(String(32), nullable=True)
    previous_credit_id = Column(String(64), ForeignKey("credits.id"), nullable=True)
    renewal_credit_id = Column(String(64), nullable=True)
    renewed_on = Column(Date, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    installments = relationship(
        "InstallmentModel",
        order_by="InstallmentModel.number",
        cascade="all, delete-orphan",
    )


class InstallmentModel(Base):
    __tablename__ = "installments"

    credit_id = Column(String(64), ForeignKey("credits.id"), primary_key=True)
    number = Column(Integer, primary_key=True)
    scheduled_date = Column(Date, nullable=False)
    paid_manually = Column(Boolean, nullable=False, default=False)
    paid_date = Column(Date, nullable=True)


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(String(64), primary_key=True)
    credit_id = Column(String(64), ForeignKey("credits.id"), index=True, nullable=False)
    value = Column(Money, nullable=False)
    date = Column(Date, nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    target_installment = Column(Integer, nullable=True)
    sequence = Column(Integer, nullable=False, default=0)


class FineModel(Base):
    __tablename__ = "fines"

    id = Column(String(64), primary_key=True)
    credit_id = Column(String(64), ForeignKey("credits.id"), index=True, nullable=False)
    value = Column(Money, nullable=False)
    date = Column(Date, nullable=False)
    motive = Column(Text, nullable=False, default="")
    related_installment = Column(Integer, nullable=True)


class FinePaymentModel(Base):
    __tablename__ = "fine_payments"

    id = Column(String(64), primary_key=True)
    fine_id = Column(String(64), ForeignKey("fines.id"), index=True, nullable=False)
    credit_id = Column(String(64), ForeignKey("credits.id"), index=True, nullable=False)
    value = Column(Money, nullable=False)
    date = Column(Date, nullable=False, index=True)


class DiscountModel(Base):
    __tablename__ = "discounts"

    id = Column(String(64), primary_key=True)
    credit_id = Column(String(64), ForeignKey("credits.id"), index=True, nullable=False)
    value = Column(Money, nullable=False)
    kind = Column(String(16), nullable=False)
    description = Column(Text, nullable=False, default="")


class DeferralModel(Base):
    __tablename__ = "deferrals"

    credit_id = Column(String(64), ForeignKey("credits.id"), primary_key=True)
    installment_number = Column(Integer, primary_key=True)
    new_due_date = Column(Date, nullable=False, index=True)
    modified_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class CollectionOrderModel(Base):
    __tablename__ = "collection_orders"

    date = Column(Date, primary_key=True)
    client_id = Column(String(64), primary_key=True)
    rank = Column(Integer, nullable=False)


class NotFoundMarkerModel(Base):
    __tablename__ = "not_found_markers"

    date = Column(Date, primary_key=True)
    client_id = Column(String(64), primary_key=True)


class AuditNoteModel(Base):
    __tablename__ = "audit_notes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    credit_id = Column(String(64), index=True, nullable=False)
    text = Column(Text, nullable=False)
    date = Column(Date, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class LedgerStore:
    """Database-backed store for the collection ledger."""

    def __init__(self, url: str) -> None:
        kwargs = {"future": True}
        if url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") == "sqlite:"):
            # One shared connection so background jobs see the same in-memory database.
            kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
        self._engine = create_engine(url, **kwargs)
        Base.metadata.create_all(self._engine)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)

    # -- clients --------------------------------------------------------

    def add_client(self, client: Client) -> Client:
        with self._session_factory() as session:
            session.add(
                ClientModel(
                    id=client.id,
                    name=client.name,
                    portfolio=client.portfolio,
                    neighborhood=client.neighborhood,
                    document=client.document,
                    phone=client.phone,
                    position=client.position,
                    reported=client.reported,
                    refinance_flag=client.refinance_flag,
                )
            )
            session.commit()
        logger.info("Client %s added to portfolio %s", client.id, client.portfolio)
        return client

    def get_client(self, client_id: str) -> Client:
        with self._session_factory() as session:
            row = session.get(ClientModel, client_id)
            if row is None:
                raise NotFoundError(f"Client {client_id} not found")
            return self._client(row)

    def list_clients(self, portfolio: Optional[str] = None) -> List[Client]:
        with self._session_factory() as session:
            query = select(ClientModel).order_by(ClientModel.name.asc())
            if portfolio is not None:
                query = query.where(ClientModel.portfolio == portfolio)
            return [self._client(row) for row in session.execute(query).scalars()]

    def set_client_flags(
        self,
        client_id: str,
        reported: Optional[bool] = None,
        refinance_flag: Optional[bool] = None,
    ) -> Client:
        with self._session_factory() as session:
            row = self._client_row(session, client_id)
            if reported is not None:
                row.reported = reported
            if refinance_flag is not None:
                row.refinance_flag = refinance_flag
            session.commit()
            return self._client(row)

    # -- credits --------------------------------------------------------

    def add_credit(self, credit: Credit) -> Credit:
        """Store a credit and its whole installment set in one transaction."""
        validate_schedule(credit)
        with self._session_factory() as session:
            if session.get(ClientModel, credit.client_id) is None:
                raise NotFoundError(f"Client {credit.client_id} not found")
            session.add(self._credit_model(credit))
            session.commit()
        logger.info("Credit %s created for client %s (%s)", credit.id, credit.client_id, credit.cadence)
        return credit

    def renew_credit(self, credit_id: str, new_credit: Credit, on: Optional[DateLike] = None) -> Credit:
        """Replace a credit with a new one for the same client.

        The new credit is stored and the old one marked renewed in the same
        transaction. Renewed credits leave the route.
        """
        validate_schedule(new_credit)
        renewed_on = to_day(on) if on is not None else new_credit.start_date
        with self._session_factory() as session:
            old = self._credit_row(session, credit_id)
            if old.renewed:
                raise ValidationError(f"Credit {credit_id} was already renewed by {old.renewal_credit_id}")
            if old.client_id != new_credit.client_id:
                raise ValidationError(f"Credit {credit_id} belongs to client {old.client_id}, not {new_credit.client_id}")
            new_credit.previous_credit_id = credit_id
            session.add(self._credit_model(new_credit))
            old.renewed = True
            old.renewal_credit_id = new_credit.id
            old.renewed_on = renewed_on
            session.commit()
        logger.info("Credit %s renewed by %s on %s", credit_id, new_credit.id, renewed_on.isoformat())
        return new_credit

    def get_credit(self, credit_id: str) -> Credit:
        with self._session_factory() as session:
            row = session.execute(
                select(CreditModel)
                .options(selectinload(CreditModel.installments))
                .where(CreditModel.id == credit_id)
            ).scalar_one_or_none()
            if row is None:
                raise NotFoundError(f"Credit {credit_id} not found")
            return self._credit(row)

    def list_credits(
        self,
        client_id: Optional[str] = None,
        portfolio: Optional[str] = None,
        include_renewed: bool = True,
    ) -> List[Credit]:
        with self._session_factory() as session:
            query = select(CreditModel).options(selectinload(CreditModel.installments))
            if client_id is not None:
                query = query.where(CreditModel.client_id == client_id)
            if portfolio is not None:
                query = query.join(ClientModel, ClientModel.id == CreditModel.client_id).where(
                    ClientModel.portfolio == portfolio
                )
            if not include_renewed:
                query = query.where(CreditModel.renewed.is_(False))
            query = query.order_by(CreditModel.created_at.asc(), CreditModel.id.asc())
            return [self._credit(row) for row in session.execute(query).scalars()]

    def set_label(self, credit_id: str, label: Optional[str]) -> None:
        with self._session_factory() as session:
            row = self._credit_row(session, credit_id)
            row.label = label
            session.commit()

    def mark_installment_paid(self, credit_id: str, number: int, paid_on: Optional[DateLike] = None) -> None:
        """Flag an installment as paid by hand, or clear the flag with ``paid_on=None``."""
        with self._session_factory() as session:
            row = session.get(InstallmentModel, (credit_id, number))
            if row is None:
                raise NotFoundError(f"Installment {number} not found on credit {credit_id}")
            row.paid_manually = paid_on is not None
            row.paid_date = to_day(paid_on) if paid_on is not None else None
            session.commit()

    # -- ledger ---------------------------------------------------------

    def get_ledger(self, credit_id: str) -> CreditLedger:
        with self._session_factory() as session:
            self._credit_row(session, credit_id)
            return self._ledger(session, credit_id)

    def get_ledgers(self, credit_ids: Iterable[str]) -> Dict[str, CreditLedger]:
        with self._session_factory() as session:
            return {cid: self._ledger(session, cid) for cid in credit_ids}

    def add_payment(
        self,
        credit_id: str,
        value: Decimal,
        on: DateLike,
        description: str = "",
        target_installment: Optional[int] = None,
        target_fine_id: Optional[str] = None,
    ):
        """Validate and store a payment (or a fine payment when a fine is targeted)."""
        with self._session_factory() as session:
            self._credit_row(session, credit_id)
            ledger = self._ledger(session, credit_id)
            record = ledger.add_payment(
                value,
                on,
                description=description,
                target_installment=target_installment,
                target_fine_id=target_fine_id,
            )
            if isinstance(record, FinePayment):
                session.add(self._fine_payment_row(record, credit_id))
            else:
                session.add(self._payment_row(record))
            session.commit()
        logger.info("Payment of %s recorded on credit %s", value, credit_id)
        return record

    def pay_installment_in_full(self, credit_id: str, number: int, on: DateLike) -> Optional[Payment]:
        credit = self.get_credit(credit_id)
        with self._session_factory() as session:
            payment = pay_installment_in_full(credit, self._ledger(session, credit_id), number, on)
            if payment is not None:
                session.add(self._payment_row(payment))
                session.commit()
        return payment

    def edit_payment(
        self,
        credit_id: str,
        payment_id: str,
        value: Optional[Decimal] = None,
        on: Optional[DateLike] = None,
        description: Optional[str] = None,
    ) -> Payment:
        with self._session_factory() as session:
            ledger = self._ledger(session, credit_id)
            payment = ledger.edit_payment(payment_id, value=value, on=on, description=description)
            row = session.get(PaymentModel, payment_id)
            row.value = payment.value
            row.date = payment.date
            row.description = payment.description
            session.commit()
            return payment

    def delete_payment(self, credit_id: str, payment_id: str) -> None:
        with self._session_factory() as session:
            row = session.get(PaymentModel, payment_id)
            if row is None or row.credit_id != credit_id:
                raise NotFoundError(f"Payment {payment_id} not found on credit {credit_id}")
            session.delete(row)
            session.commit()

    def add_fine(
        self,
        credit_id: str,
        value: Decimal,
        on: DateLike,
        motive: str = "",
        related_installment: Optional[int] = None,
    ) -> Fine:
        with self._session_factory() as session:
            self._credit_row(session, credit_id)
            fine = self._ledger(session, credit_id).add_fine(
                value, on, motive=motive, related_installment=related_installment
            )
            session.add(
                FineModel(
                    id=fine.id,
                    credit_id=credit_id,
                    value=fine.value,
                    date=fine.date,
                    motive=fine.motive,
                    related_installment=fine.related_installment,
                )
            )
            session.commit()
        return fine

    def edit_fine(
        self,
        credit_id: str,
        fine_id: str,
        value: Optional[Decimal] = None,
        on: Optional[DateLike] = None,
        motive: Optional[str] = None,
    ) -> Fine:
        with self._session_factory() as session:
            fine = self._ledger(session, credit_id).edit_fine(fine_id, value=value, on=on, motive=motive)
            row = session.get(FineModel, fine_id)
            row.value = fine.value
            row.date = fine.date
            row.motive = fine.motive
            session.commit()
            return fine

    def delete_fine(self, credit_id: str, fine_id: str) -> None:
        """Delete a fine along with the payments made against it."""
        with self._session_factory() as session:
            row = session.get(FineModel, fine_id)
            if row is None or row.credit_id != credit_id:
                raise NotFoundError(f"Fine {fine_id} not found on credit {credit_id}")
            session.execute(FinePaymentModel.__table__.delete().where(FinePaymentModel.fine_id == fine_id))
            session.delete(row)
            session.commit()

    def add_fine_payment(self, credit_id: str, fine_id: str, value: Decimal, on: DateLike) -> FinePayment:
        with self._session_factory() as session:
            self._credit_row(session, credit_id)
            fine_payment = self._ledger(session, credit_id).add_fine_payment(fine_id, value, on)
            session.add(self._fine_payment_row(fine_payment, credit_id))
            session.commit()
        return fine_payment

    def edit_fine_payment(
        self,
        credit_id: str,
        fine_payment_id: str,
        value: Optional[Decimal] = None,
        on: Optional[DateLike] = None,
    ) -> FinePayment:
        with self._session_factory() as session:
            fine_payment = self._ledger(session, credit_id).edit_fine_payment(fine_payment_id, value=value, on=on)
            row = session.get(FinePaymentModel, fine_payment_id)
            row.value = fine_payment.value
            row.date = fine_payment.date
            session.commit()
            return fine_payment

    def delete_fine_payment(self, credit_id: str, fine_payment_id: str) -> None:
        with self._session_factory() as session:
            row = session.get(FinePaymentModel, fine_payment_id)
            if row is None or row.credit_id != credit_id:
                raise NotFoundError(f"Fine payment {fine_payment_id} not found on credit {credit_id}")
            session.delete(row)
            session.commit()

    def add_discount(self, credit_id: str, value: Decimal, kind: str, description: str = "") -> Discount:
        with self._session_factory() as session:
            self._credit_row(session, credit_id)
            discount = self._ledger(session, credit_id).add_discount(value, kind, description=description)
            session.add(
                DiscountModel(
                    id=discount.id,
                    credit_id=credit_id,
                    value=discount.value,
                    kind=discount.kind,
                    description=discount.description,
                )
            )
            session.commit()
        return discount

    def delete_discount(self, credit_id: str, discount_id: str) -> None:
        with self._session_factory() as session:
            row = session.get(DiscountModel, discount_id)
            if row is None or row.credit_id != credit_id:
                raise NotFoundError(f"Discount {discount_id} not found on credit {credit_id}")
            session.delete(row)
            session.commit()

    # -- deferrals ------------------------------------------------------

    def list_deferrals(
        self,
        credit_id: Optional[str] = None,
        start: Optional[DateLike] = None,
        end: Optional[DateLike] = None,
    ) -> List[Deferral]:
        with self._session_factory() as session:
            query = select(DeferralModel)
            if credit_id is not None:
                query = query.where(DeferralModel.credit_id == credit_id)
            if start is not None:
                query = query.where(DeferralModel.new_due_date >= to_day(start))
            if end is not None:
                query = query.where(DeferralModel.new_due_date <= to_day(end))
            rows = session.execute(
                query.order_by(DeferralModel.credit_id, DeferralModel.installment_number)
            ).scalars()
            return [
                Deferral(
                    credit_id=row.credit_id,
                    installment_number=row.installment_number,
                    new_due_date=row.new_due_date,
                )
                for row in rows
            ]

    def upsert_deferrals(self, deferrals: Sequence[Deferral]) -> None:
        """Write deferrals; an existing key takes the new date."""
        with self._session_factory() as session:
            self._upsert_deferral_rows(session, deferrals)
            session.commit()

    def record_deferral(
        self,
        credit_id: str,
        client_id: str,
        deferrals: Sequence[Deferral],
        note: str,
        on: DateLike,
        new_date: DateLike,
    ) -> bool:
        """Defer one credit in a single transaction.

        Writes the deferrals and the audit note, and moves the client's
        not-found marker from ``on`` to ``new_date``. Nothing is kept if any
        step fails. Returns whether a marker was moved.
        """
        with self._session_factory() as session:
            self._credit_row(session, credit_id)
            self._upsert_deferral_rows(session, deferrals)
            self._add_note(session, credit_id, note, on)
            moved = self._move_marker(session, client_id, on, new_date)
            session.commit()
        return moved

    def delete_deferral(self, credit_id: str, installment_number: int) -> None:
        with self._session_factory() as session:
            row = session.get(DeferralModel, (credit_id, installment_number))
            if row is None:
                raise NotFoundError(f"Installment {installment_number} of credit {credit_id} is not deferred")
            session.delete(row)
            session.commit()

    @staticmethod
    def _upsert_deferral_rows(session, deferrals: Sequence[Deferral]) -> None:
        for deferral in deferrals:
            row = session.get(DeferralModel, (deferral.credit_id, deferral.installment_number))
            if row is None:
                session.add(
                    DeferralModel(
                        credit_id=deferral.credit_id,
                        installment_number=deferral.installment_number,
                        new_due_date=to_day(deferral.new_due_date),
                    )
                )
            else:
                row.new_due_date = to_day(deferral.new_due_date)

    # -- collection order -----------------------------------------------

    def get_collection_order(self, on: DateLike) -> Dict[str, int]:
        with self._session_factory() as session:
            rows = session.execute(
                select(CollectionOrderModel)
                .where(CollectionOrderModel.date == to_day(on))
                .order_by(CollectionOrderModel.rank.asc())
            ).scalars()
            return {row.client_id: row.rank for row in rows}

    def save_collection_order(self, on: DateLike, ranks: Mapping[str, int]) -> None:
        day = to_day(on)
        with self._session_factory() as session:
            for client_id, rank in ranks.items():
                row = session.get(CollectionOrderModel, (day, client_id))
                if row is None:
                    session.add(CollectionOrderModel(date=day, client_id=client_id, rank=int(rank)))
                else:
                    row.rank = int(rank)
            session.commit()

    def delete_collection_order(self, on: DateLike, client_id: str) -> None:
        with self._session_factory() as session:
            row = session.get(CollectionOrderModel, (to_day(on), client_id))
            if row is not None:
                session.delete(row)
                session.commit()

    # -- not-found markers ----------------------------------------------

    def list_not_found_markers(self, on: Optional[DateLike] = None) -> List[NotFoundMarker]:
        with self._session_factory() as session:
            query = select(NotFoundMarkerModel)
            if on is not None:
                day = to_day(on)
                query = query.where(NotFoundMarkerModel.date.in_([day, add_days(day, 1)]))
            rows = session.execute(query.order_by(NotFoundMarkerModel.date, NotFoundMarkerModel.client_id)).scalars()
            return [NotFoundMarker(date=row.date, client_id=row.client_id) for row in rows]

    def mark_not_found(self, client_id: str, on: DateLike) -> None:
        """Record that the collector missed the client on ``on``.

        The client is flagged as not reported and queued for the next day.
        """
        with self._session_factory() as session:
            self._client_row(session, client_id).reported = False
            self._apply_markers(session, client_id, lambda markers: queue_not_found(markers, client_id, on))
            session.commit()

    def mark_reported(self, client_id: str, on: DateLike) -> None:
        with self._session_factory() as session:
            self._client_row(session, client_id).reported = True
            self._apply_markers(session, client_id, lambda markers: clear_not_found(markers, client_id, on))
            session.commit()

    def move_not_found_marker(self, client_id: str, source: DateLike, target: DateLike) -> bool:
        """Move a client's marker between dates. Returns False when there was none."""
        with self._session_factory() as session:
            moved = self._move_marker(session, client_id, source, target)
            session.commit()
        return moved

    def _move_marker(self, session, client_id: str, source: DateLike, target: DateLike) -> bool:
        src = to_day(source)
        before = self._apply_markers(session, client_id, lambda markers: move_not_found(markers, client_id, source, target))
        return any(m.date == src for m in before)

    @staticmethod
    def _apply_markers(
        session,
        client_id: str,
        update: Callable[[List[NotFoundMarker]], List[NotFoundMarker]],
    ) -> List[NotFoundMarker]:
        """Replace a client's stored markers with ``update(markers)``; returns the old ones."""
        rows = session.execute(select(NotFoundMarkerModel).where(NotFoundMarkerModel.client_id == client_id)).scalars().all()
        before = [NotFoundMarker(date=row.date, client_id=row.client_id) for row in rows]
        after = {to_day(m.date) for m in update(before) if m.client_id == client_id}
        for row in rows:
            if row.date not in after:
                session.delete(row)
        for day in sorted(after - {row.date for row in rows}):
            session.add(NotFoundMarkerModel(date=day, client_id=client_id))
        return before

    # -- audit notes ----------------------------------------------------

    def _add_note(self, session, credit_id: str, text: str, on: DateLike) -> None:
        session.add(AuditNoteModel(credit_id=credit_id, text=text, date=to_day(on)))

    def list_audit_notes(self, credit_id: str) -> List[str]:
        with self._session_factory() as session:
            rows = session.execute(
                select(AuditNoteModel)
                .where(AuditNoteModel.credit_id == credit_id)
                .order_by(AuditNoteModel.id.asc())
            ).scalars()
            return [row.text for row in rows]

    # -- route ----------------------------------------------------------

    def route_for(self, target_date: DateLike, today: Optional[DateLike] = None) -> RouteReport:
        """Build the route for a date from a fresh snapshot of the store."""
        target = to_day(target_date)
        clients = self.list_clients()
        credits = self.list_credits(include_renewed=False)
        ledgers = self.get_ledgers(c.id for c in credits)
        return build_route(
            target,
            clients,
            credits,
            ledgers,
            deferrals=self.list_deferrals(),
            collection_order=self.get_collection_order(target),
            not_found_markers=self.list_not_found_markers(target),
            today=today,
        )

    # -- row conversion -------------------------------------------------

    @staticmethod
    def _client_row(session, client_id: str) -> ClientModel:
        row = session.get(ClientModel, client_id)
        if row is None:
            raise NotFoundError(f"Client {client_id} not found")
        return row

    @staticmethod
    def _credit_row(session, credit_id: str) -> CreditModel:
        row = session.get(CreditModel, credit_id)
        if row is None:
            raise NotFoundError(f"Credit {credit_id} not found")
        return row

    @staticmethod
    def _ledger(session, credit_id: str) -> CreditLedger:
        credit_row = session.get(CreditModel, credit_id)
        payments = session.execute(
            select(PaymentModel).where(PaymentModel.credit_id == credit_id).order_by(PaymentModel.sequence)
        ).scalars()
        fines = session.execute(select(FineModel).where(FineModel.credit_id == credit_id)).scalars().all()
        fine_payments = session.execute(
            select(FinePaymentModel).where(FinePaymentModel.credit_id == credit_id)
        ).scalars()
        discounts = session.execute(select(DiscountModel).where(DiscountModel.credit_id == credit_id)).scalars()
        return ledger_from_records(
            credit_id,
            payments=[
                Payment(
                    id=p.id,
                    credit_id=p.credit_id,
                    value=Decimal(p.value),
                    date=p.date,
                    description=p.description,
                    target_installment=p.target_installment,
                    sequence=p.sequence,
                )
                for p in payments
            ],
            fines=[
                Fine(
                    id=f.id,
                    credit_id=f.credit_id,
                    value=Decimal(f.value),
                    date=f.date,
                    motive=f.motive,
                    related_installment=f.related_installment,
                )
                for f in fines
            ],
            fine_payments=[
                FinePayment(id=fp.id, fine_id=fp.fine_id, value=Decimal(fp.value), date=fp.date)
                for fp in fine_payments
            ],
            discounts=[
                Discount(
                    id=d.id,
                    credit_id=d.credit_id,
                    value=Decimal(d.value),
                    kind=d.kind,
                    description=d.description,
                )
                for d in discounts
            ],
            installment_count=credit_row.installment_count if credit_row is not None else None,
        )

    @staticmethod
    def _payment_row(payment: Payment) -> PaymentModel:
        return PaymentModel(
            id=payment.id,
            credit_id=payment.credit_id,
            value=payment.value,
            date=payment.date,
            description=payment.description,
            target_installment=payment.target_installment,
            sequence=payment.sequence,
        )

    @staticmethod
    def _fine_payment_row(fine_payment: FinePayment, credit_id: str) -> FinePaymentModel:
        return FinePaymentModel(
            id=fine_payment.id,
            fine_id=fine_payment.fine_id,
            credit_id=credit_id,
            value=fine_payment.value,
            date=fine_payment.date,
        )

    @staticmethod
    def _credit_model(credit: Credit) -> CreditModel:
        row = CreditModel(
            id=credit.id,
            client_id=credit.client_id,
            principal=credit.principal,
            installment_value=credit.installment_value,
            cadence=credit.cadence,
            start_date=credit.start_date,
            installment_count=credit.installment_count,
            renewed=credit.renewed,
            label=credit.label,
            previous_credit_id=credit.previous_credit_id,
            renewal_credit_id=credit.renewal_credit_id,
            renewed_on=credit.renewed_on,
        )
        row.installments = [
            InstallmentModel(
                credit_id=credit.id,
                number=inst.number,
                scheduled_date=inst.scheduled_date,
                paid_manually=inst.paid_manually,
                paid_date=inst.paid_date,
            )
            for inst in credit.installments
        ]
        return row

    @staticmethod
    def _client(row: ClientModel) -> Client:
        return Client(
            id=row.id,
            name=row.name,
            portfolio=row.portfolio,
            neighborhood=row.neighborhood,
            document=row.document,
            phone=row.phone,
            position=row.position,
            reported=row.reported,
            refinance_flag=row.refinance_flag,
        )

    @staticmethod
    def _credit(row: CreditModel) -> Credit:
        return Credit(
            id=row.id,
            client_id=row.client_id,
            principal=Decimal(row.principal),
            installment_value=Decimal(row.installment_value),
            cadence=row.cadence,
            start_date=row.start_date,
            installment_count=row.installment_count,
            renewed=row.renewed,
            label=row.label,
            previous_credit_id=row.previous_credit_id,
            renewal_credit_id=row.renewal_credit_id,
            renewed_on=row.renewed_on,
            installments=[
                Installment(
                    number=i.number,
                    scheduled_date=i.scheduled_date,
                    paid_manually=i.paid_manually,
                    paid_date=i.paid_date,
                )
                for i in row.installments
            ],
        )


def create_store_from_env(url: Optional[str]) -> LedgerStore:
    return LedgerStore(url or "sqlite:///collection_ledger.sqlite3")
