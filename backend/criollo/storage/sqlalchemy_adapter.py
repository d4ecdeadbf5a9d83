"""
SQLAlchemy storage implementation for the floor domain.

Uses the relational models from criollo.db.models. Each call runs in its own
session transaction unless it happens inside atomic(), in which case every
statement joins the session opened by the outermost atomic() block of the
current thread.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterable, Iterator, List, Optional

from sqlalchemy import create_engine, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from criollo.db import init_db
from criollo.db.models import (
    Base,
    InvoiceModel,
    InvoiceOrderModel,
    InvoiceSequenceModel,
    OrderLineModel,
    OrderModel,
    ReservationModel,
    TableModel,
    to_db_time,
)
from criollo.domain import Invoice, Order, OrderState, Reservation, ReservationState, Table
from criollo.errors import StorageError
from criollo.storage.base import Storage

logger = logging.getLogger(__name__)


class SQLAlchemyStorage(Storage):
    """SQLAlchemy-backed storage with explicit transaction blocks."""

    def __init__(self, database_url: str = "sqlite:///criollo.db", use_alembic: bool = False):
        """
        Initialize SQLAlchemy storage.

        Args:
            database_url: SQLAlchemy database URL
            use_alembic: apply Alembic migrations instead of create_all
        """
        self.database_url = database_url

        # future=True: SQLAlchemy 2.0 style execution
        # pool_pre_ping=True: detect stale connections before use
        self.engine = create_engine(
            self.database_url,
            connect_args={"check_same_thread": False} if "sqlite" in database_url else {},
            echo=False,
            future=True,
            pool_pre_ping=True,
        )
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._local = threading.local()

        init_db(self.engine, use_alembic=use_alembic, base=Base)
        logger.info("SQLAlchemyStorage ready at %s", self.database_url)

    # ---------- Session handling ----------

    def _get_session(self) -> Session:
        """Get a new database session (caller must close)."""
        return self.SessionLocal()

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if getattr(self._local, "session", None) is not None:
            yield
            return
        session = self._get_session()
        self._local.session = session
        try:
            with session.begin():
                yield
        except SQLAlchemyError as exc:
            raise StorageError(f"Storage transaction failed: {exc}") from exc
        finally:
            self._local.session = None
            session.close()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """Yield the active atomic() session, or a short-lived transactional one."""
        active = getattr(self._local, "session", None)
        if active is not None:
            try:
                yield active
                active.flush()
            except SQLAlchemyError as exc:
                raise StorageError(f"Storage operation failed: {exc}") from exc
            return
        session = self._get_session()
        try:
            with session.begin():
                yield session
        except SQLAlchemyError as exc:
            raise StorageError(f"Storage operation failed: {exc}") from exc
        finally:
            session.close()

    # ---------- Tables ----------

    def add_table(self, table: Table) -> Table:
        with self._session() as session:
            row = TableModel()
            row.apply(table)
            session.add(row)
            session.flush()
            return row.to_domain()

    def get_table(self, table_id: int) -> Optional[Table]:
        with self._session() as session:
            row = session.get(TableModel, table_id)
            return row.to_domain() if row else None

    def save_table(self, table: Table) -> None:
        with self._session() as session:
            row = session.get(TableModel, table.id)
            if row is None:
                row = TableModel(id=table.id)
                session.add(row)
            row.apply(table)

    def list_tables(self) -> List[Table]:
        with self._session() as session:
            rows = session.execute(select(TableModel).order_by(TableModel.number)).scalars().all()
            return [row.to_domain() for row in rows]

    # ---------- Orders ----------

    def _order_query(self):
        return select(OrderModel).options(selectinload(OrderModel.lines))

    def add_order(self, order: Order) -> None:
        with self._session() as session:
            row = OrderModel(id=order.id)
            row.apply(order)
            session.add(row)

    def get_order(self, order_id: str) -> Optional[Order]:
        with self._session() as session:
            row = session.execute(
                self._order_query().where(OrderModel.id == order_id)
            ).scalar_one_or_none()
            return row.to_domain() if row else None

    def save_order(self, order: Order) -> None:
        with self._session() as session:
            row = session.execute(
                self._order_query().where(OrderModel.id == order.id)
            ).scalar_one_or_none()
            if row is None:
                row = OrderModel(id=order.id)
                session.add(row)
            row.apply(order)

    def list_orders(
        self,
        table_id: Optional[int] = None,
        states: Optional[Iterable[OrderState]] = None,
    ) -> List[Order]:
        stmt = self._order_query()
        if table_id is not None:
            stmt = stmt.where(OrderModel.table_id == table_id)
        if states is not None:
            stmt = stmt.where(OrderModel.state.in_([s.value for s in states]))
        stmt = stmt.order_by(OrderModel.created_at)
        with self._session() as session:
            return [row.to_domain() for row in session.execute(stmt).scalars().all()]

    # ---------- Invoices ----------

    def _invoice_query(self):
        return select(InvoiceModel).options(selectinload(InvoiceModel.orders))

    def add_invoice(self, invoice: Invoice) -> None:
        with self._session() as session:
            row = InvoiceModel(id=invoice.id)
            row.apply(invoice)
            session.add(row)

    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        with self._session() as session:
            row = session.execute(
                self._invoice_query().where(InvoiceModel.id == invoice_id)
            ).scalar_one_or_none()
            return row.to_domain() if row else None

    def get_invoice_by_number(self, number: str) -> Optional[Invoice]:
        with self._session() as session:
            row = session.execute(
                self._invoice_query().where(InvoiceModel.number == number)
            ).scalar_one_or_none()
            return row.to_domain() if row else None

    def save_invoice(self, invoice: Invoice) -> None:
        with self._session() as session:
            row = session.execute(
                self._invoice_query().where(InvoiceModel.id == invoice.id)
            ).scalar_one_or_none()
            if row is None:
                row = InvoiceModel(id=invoice.id)
                session.add(row)
            row.apply(invoice)

    def list_invoices_for_order(self, order_id: str) -> List[Invoice]:
        stmt = (
            self._invoice_query()
            .join(InvoiceOrderModel, InvoiceOrderModel.invoice_id == InvoiceModel.id)
            .where(InvoiceOrderModel.order_id == order_id)
            .order_by(InvoiceModel.created_at)
        )
        with self._session() as session:
            return [row.to_domain() for row in session.execute(stmt).scalars().all()]

    def list_invoices(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[Invoice]:
        stmt = self._invoice_query()
        if start is not None:
            stmt = stmt.where(InvoiceModel.created_at >= to_db_time(start))
        if end is not None:
            stmt = stmt.where(InvoiceModel.created_at < to_db_time(end))
        stmt = stmt.order_by(InvoiceModel.created_at)
        with self._session() as session:
            return [row.to_domain() for row in session.execute(stmt).scalars().all()]

    def next_invoice_sequence(self, day: date) -> int:
        # Committed on its own session, outside any atomic() block, so two
        # units never read the same uncommitted counter. A rolled-back unit
        # leaves a gap in the day's numbering.
        session = self._get_session()
        try:
            with session.begin():
                row = session.execute(
                    select(InvoiceSequenceModel)
                    .where(InvoiceSequenceModel.day == day)
                    .with_for_update()
                ).scalar_one_or_none()
                if row is None:
                    row = InvoiceSequenceModel(day=day, last_value=0)
                    session.add(row)
                row.last_value += 1
                value = row.last_value
            return value
        except SQLAlchemyError as exc:
            raise StorageError(f"Invoice sequence update failed: {exc}") from exc
        finally:
            session.close()

    # ---------- Reservations ----------

    def add_reservation(self, reservation: Reservation) -> None:
        with self._session() as session:
            row = ReservationModel(id=reservation.id)
            row.apply(reservation)
            session.add(row)

    def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        with self._session() as session:
            row = session.get(ReservationModel, reservation_id)
            return row.to_domain() if row else None

    def save_reservation(self, reservation: Reservation) -> None:
        with self._session() as session:
            row = session.get(ReservationModel, reservation.id)
            if row is None:
                row = ReservationModel(id=reservation.id)
                session.add(row)
            row.apply(reservation)

    def list_reservations(
        self,
        table_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        states: Optional[Iterable[ReservationState]] = None,
    ) -> List[Reservation]:
        stmt = select(ReservationModel)
        if table_id is not None:
            stmt = stmt.where(ReservationModel.table_id == table_id)
        if start is not None:
            stmt = stmt.where(ReservationModel.start_time >= to_db_time(start))
        if end is not None:
            stmt = stmt.where(ReservationModel.start_time < to_db_time(end))
        if states is not None:
            stmt = stmt.where(ReservationModel.state.in_([s.value for s in states]))
        stmt = stmt.order_by(ReservationModel.start_time, ReservationModel.table_id)
        with self._session() as session:
            return [row.to_domain() for row in session.execute(stmt).scalars().all()]

    # ---------- Maintenance ----------

    def clear(self) -> None:
        """Clear all state. Wrapped in transaction."""
        with self._session() as session:
            session.execute(delete(InvoiceOrderModel))
            session.execute(delete(InvoiceModel))
            session.execute(delete(InvoiceSequenceModel))
            session.execute(delete(OrderLineModel))
            session.execute(delete(OrderModel))
            session.execute(delete(ReservationModel))
            session.execute(delete(TableModel))

    def close(self) -> None:
        """Close database connections."""
        self.engine.dispose()
