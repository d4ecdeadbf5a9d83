"""
Relational database models for the floor core.

These models are the persisted representation used by SQLAlchemyStorage and
by Alembic for migration generation. Money is stored as integer cents and
timestamps as naive UTC.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship

from criollo.domain import (
    CENT,
    Invoice,
    InvoiceState,
    Order,
    OrderLine,
    OrderState,
    PaymentMethod,
    Reservation,
    ReservationState,
    Table,
    TableState,
)
from criollo.utils.time_utils import ensure_utc

Base = declarative_base()


def to_cents(amount: Decimal) -> int:
    return int((amount / CENT).to_integral_value())


def from_cents(cents: Optional[int]) -> Decimal:
    return (Decimal(cents or 0) * CENT).quantize(CENT)


def to_db_time(dt: Optional[datetime]) -> Optional[datetime]:
    """Aware datetime -> naive UTC for storage."""
    if dt is None:
        return None
    return ensure_utc(dt).replace(tzinfo=None)


def from_db_time(dt: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(dt) if dt is not None else None


class TableModel(Base):
    """Physical table on the floor."""

    __tablename__ = "floor_tables"

    id = Column(Integer, primary_key=True, autoincrement=True)
    number = Column(Integer, nullable=False, unique=True)
    capacity = Column(Integer, nullable=False)
    state = Column(String(20), nullable=False, default=TableState.FREE.value)
    state_changed_at = Column(DateTime, nullable=True)
    state_reason = Column(String(255), nullable=True)
    location = Column(String(100), nullable=True)
    active_reservation_id = Column(String(36), nullable=True)

    __table_args__ = (
        Index("idx_floor_tables_state", "state"),
    )

    def to_domain(self) -> Table:
        return Table(
            id=self.id,
            number=self.number,
            capacity=self.capacity,
            state=TableState(self.state),
            state_changed_at=from_db_time(self.state_changed_at),
            state_reason=self.state_reason,
            location=self.location,
            active_reservation_id=self.active_reservation_id,
        )

    def apply(self, table: Table) -> None:
        self.number = table.number
        self.capacity = table.capacity
        self.state = table.state.value
        self.state_changed_at = to_db_time(table.state_changed_at)
        self.state_reason = table.state_reason
        self.location = table.location
        self.active_reservation_id = table.active_reservation_id

    def __repr__(self):
        return f"<TableModel(id={self.id}, number={self.number}, state={self.state})>"


class OrderModel(Base):
    """Order ticket for a table or take-out."""

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True)
    table_id = Column(Integer, ForeignKey("floor_tables.id"), nullable=True, index=True)
    customer_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    state = Column(String(20), nullable=False, default=OrderState.PENDING.value)
    subtotal_cents = Column(Integer, nullable=False, default=0)
    tax_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False, default=0)
    state_changed_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_orders_table_state", "table_id", "state"),
        Index("idx_orders_created", "created_at"),
    )

    lines = relationship(
        "OrderLineModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLineModel.position",
    )

    def to_domain(self) -> Order:
        return Order(
            id=self.id,
            table_id=self.table_id,
            customer_id=self.customer_id,
            created_at=from_db_time(self.created_at),
            state=OrderState(self.state),
            lines=[line.to_domain() for line in self.lines],
            subtotal=from_cents(self.subtotal_cents),
            tax=from_cents(self.tax_cents),
            total=from_cents(self.total_cents),
            state_changed_at=from_db_time(self.state_changed_at),
            notes=self.notes,
        )

    def apply(self, order: Order) -> None:
        self.table_id = order.table_id
        self.customer_id = order.customer_id
        self.created_at = to_db_time(order.created_at)
        self.state = order.state.value
        self.subtotal_cents = to_cents(order.subtotal)
        self.tax_cents = to_cents(order.tax)
        self.total_cents = to_cents(order.total)
        self.state_changed_at = to_db_time(order.state_changed_at)
        self.notes = order.notes

        # Keep line rows (and their ids) stable across edits.
        existing = {line.id: line for line in self.lines}
        synced = []
        for position, line in enumerate(order.lines):
            row = existing.get(line.id) or OrderLineModel(id=line.id)
            row.position = position
            row.product_id = line.product_id
            row.quantity = line.quantity
            row.unit_price_cents = to_cents(line.unit_price)
            row.notes = line.notes
            synced.append(row)
        self.lines = synced

    def __repr__(self):
        return f"<OrderModel(id={self.id}, table_id={self.table_id}, state={self.state})>"


class OrderLineModel(Base):
    """Individual line of an order."""

    __tablename__ = "order_lines"

    id = Column(String(36), primary_key=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price_cents = Column(Integer, nullable=False)
    notes = Column(String(500), nullable=True)

    order = relationship("OrderModel", back_populates="lines")

    def to_domain(self) -> OrderLine:
        return OrderLine(
            id=self.id,
            product_id=self.product_id,
            quantity=self.quantity,
            unit_price=from_cents(self.unit_price_cents),
            notes=self.notes,
        )


class InvoiceModel(Base):
    """Invoice (factura) covering one or more orders."""

    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True)
    number = Column(String(40), nullable=False, unique=True, index=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    table_id = Column(Integer, nullable=True)
    customer_id = Column(String(64), nullable=True)
    subtotal_cents = Column(Integer, nullable=False)
    discount_cents = Column(Integer, nullable=False, default=0)
    tax_cents = Column(Integer, nullable=False)
    tip_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False)
    state = Column(String(20), nullable=False, default=InvoiceState.PENDING.value)
    payment_method = Column(String(20), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    paid_at = Column(DateTime, nullable=True)
    voided_at = Column(DateTime, nullable=True)
    void_reason = Column(String(500), nullable=True)

    __table_args__ = (
        Index("idx_invoices_created", "created_at"),
        Index("idx_invoices_state", "state"),
    )

    orders = relationship(
        "InvoiceOrderModel",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceOrderModel.position",
    )

    def to_domain(self) -> Invoice:
        return Invoice(
            id=self.id,
            number=self.number,
            order_id=self.order_id,
            order_ids=[link.order_id for link in self.orders],
            table_id=self.table_id,
            customer_id=self.customer_id,
            subtotal=from_cents(self.subtotal_cents),
            discount=from_cents(self.discount_cents),
            tax=from_cents(self.tax_cents),
            tip=from_cents(self.tip_cents),
            total=from_cents(self.total_cents),
            payment_method=PaymentMethod(self.payment_method),
            created_at=from_db_time(self.created_at),
            state=InvoiceState(self.state),
            paid_at=from_db_time(self.paid_at),
            voided_at=from_db_time(self.voided_at),
            void_reason=self.void_reason,
        )

    def apply(self, invoice: Invoice) -> None:
        self.number = invoice.number
        self.order_id = invoice.order_id
        self.table_id = invoice.table_id
        self.customer_id = invoice.customer_id
        self.subtotal_cents = to_cents(invoice.subtotal)
        self.discount_cents = to_cents(invoice.discount)
        self.tax_cents = to_cents(invoice.tax)
        self.tip_cents = to_cents(invoice.tip)
        self.total_cents = to_cents(invoice.total)
        self.payment_method = invoice.payment_method.value
        self.created_at = to_db_time(invoice.created_at)
        self.state = invoice.state.value
        self.paid_at = to_db_time(invoice.paid_at)
        self.voided_at = to_db_time(invoice.voided_at)
        self.void_reason = invoice.void_reason
        if [link.order_id for link in self.orders] != list(invoice.order_ids):
            self.orders = [
                InvoiceOrderModel(order_id=order_id, position=position)
                for position, order_id in enumerate(invoice.order_ids)
            ]

    def __repr__(self):
        return f"<InvoiceModel(id={self.id}, number={self.number}, state={self.state})>"


class InvoiceOrderModel(Base):
    """Link between an invoice and each order it consolidates."""

    __tablename__ = "invoice_orders"

    invoice_id = Column(String(36), ForeignKey("invoices.id"), primary_key=True)
    order_id = Column(String(36), ForeignKey("orders.id"), primary_key=True, index=True)
    position = Column(Integer, nullable=False, default=0)

    invoice = relationship("InvoiceModel", back_populates="orders")


class InvoiceSequenceModel(Base):
    """Per-day invoice counter."""

    __tablename__ = "invoice_sequences"

    day = Column(Date, primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)


class ReservationModel(Base):
    """Table reservation for a future time window."""

    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True)
    table_id = Column(Integer, ForeignKey("floor_tables.id"), nullable=False, index=True)
    customer_id = Column(String(64), nullable=False)
    start_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    party_size = Column(Integer, nullable=False)
    state = Column(String(20), nullable=False, default=ReservationState.PENDING.value)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    state_changed_at = Column(DateTime, nullable=True)
    reminder_sent_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_reservations_table_start", "table_id", "start_time"),
        Index("idx_reservations_state", "state"),
    )

    def to_domain(self) -> Reservation:
        return Reservation(
            id=self.id,
            table_id=self.table_id,
            customer_id=self.customer_id,
            start_time=from_db_time(self.start_time),
            duration_minutes=self.duration_minutes,
            party_size=self.party_size,
            created_at=from_db_time(self.created_at),
            state=ReservationState(self.state),
            notes=self.notes,
            state_changed_at=from_db_time(self.state_changed_at),
            reminder_sent_at=from_db_time(self.reminder_sent_at),
        )

    def apply(self, reservation: Reservation) -> None:
        self.table_id = reservation.table_id
        self.customer_id = reservation.customer_id
        self.start_time = to_db_time(reservation.start_time)
        self.duration_minutes = reservation.duration_minutes
        self.party_size = reservation.party_size
        self.state = reservation.state.value
        self.notes = reservation.notes
        self.created_at = to_db_time(reservation.created_at)
        self.state_changed_at = to_db_time(reservation.state_changed_at)
        self.reminder_sent_at = to_db_time(reservation.reminder_sent_at)

    def __repr__(self):
        return f"<ReservationModel(id={self.id}, table_id={self.table_id}, state={self.state})>"
