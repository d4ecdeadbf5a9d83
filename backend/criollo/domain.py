"""
Domain entities for the restaurant floor.

Entities reference each other by id only; lookups go through the Storage
layer. Money is always Decimal with two places.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# ITBIS: Dominican consumption tax.
ITBIS_RATE = Decimal("0.18")


def round_money(amount) -> Decimal:
    """Round to cents, half away from zero."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_itbis(amount) -> Decimal:
    return round_money(Decimal(amount) * ITBIS_RATE)


class TableState(str, Enum):
    FREE = "free"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    MAINTENANCE = "maintenance"


class OrderState(str, Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    INVOICED = "invoiced"
    CANCELLED = "cancelled"


class InvoiceState(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    VOIDED = "voided"


class ReservationState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CLIENT_ARRIVED = "client_arrived"
    NO_SHOW = "no_show"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"


EDITABLE_ORDER_STATES = frozenset({OrderState.PENDING, OrderState.PREPARING})
CLOSED_ORDER_STATES = frozenset({OrderState.INVOICED, OrderState.CANCELLED})
OPEN_RESERVATION_STATES = frozenset({ReservationState.PENDING, ReservationState.CONFIRMED})
TERMINAL_RESERVATION_STATES = frozenset({
    ReservationState.NO_SHOW,
    ReservationState.CANCELLED,
    ReservationState.COMPLETED,
})
# Reservations that no longer claim their slot.
NON_BLOCKING_RESERVATION_STATES = frozenset({
    ReservationState.CANCELLED,
    ReservationState.NO_SHOW,
})


@dataclass
class Table:
    id: int
    number: int
    capacity: int
    state: TableState = TableState.FREE
    state_changed_at: Optional[datetime] = None
    state_reason: Optional[str] = None
    location: Optional[str] = None
    active_reservation_id: Optional[str] = None


@dataclass
class OrderLine:
    id: str
    product_id: str
    quantity: int
    unit_price: Decimal
    notes: Optional[str] = None

    @property
    def subtotal(self) -> Decimal:
        return round_money(self.unit_price * self.quantity)


@dataclass
class Order:
    id: str
    table_id: Optional[int]
    customer_id: Optional[str]
    created_at: datetime
    state: OrderState = OrderState.PENDING
    lines: List[OrderLine] = field(default_factory=list)
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    total: Decimal = ZERO
    state_changed_at: Optional[datetime] = None
    notes: Optional[str] = None

    @property
    def is_takeout(self) -> bool:
        return self.table_id is None

    def recompute_totals(self) -> "OrderTotals":
        totals = OrderTotals.from_lines(self.lines)
        self.subtotal, self.tax, self.total = totals.subtotal, totals.tax, totals.total
        return totals


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    item_count: int

    @classmethod
    def from_lines(cls, lines: List[OrderLine]) -> "OrderTotals":
        subtotal = round_money(sum((line.subtotal for line in lines), ZERO))
        tax = calculate_itbis(subtotal)
        return cls(
            subtotal=subtotal,
            tax=tax,
            total=subtotal + tax,
            item_count=sum(line.quantity for line in lines),
        )


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    tip: Decimal
    total: Decimal

    @classmethod
    def compute(cls, subtotal, discount=ZERO, tip=ZERO) -> "InvoiceTotals":
        """Discount first, ITBIS on the discounted amount, tip added untaxed."""
        subtotal = round_money(subtotal)
        discount = round_money(discount)
        tip = round_money(tip)
        taxable = subtotal - discount
        tax = calculate_itbis(taxable)
        return cls(
            subtotal=subtotal,
            discount=discount,
            tax=tax,
            tip=tip,
            total=taxable + tax + tip,
        )


@dataclass
class Invoice:
    id: str
    number: str
    order_id: str
    order_ids: List[str]
    table_id: Optional[int]
    customer_id: Optional[str]
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    tip: Decimal
    total: Decimal
    payment_method: PaymentMethod
    created_at: datetime
    state: InvoiceState = InvoiceState.PENDING
    paid_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    void_reason: Optional[str] = None

    @property
    def is_group(self) -> bool:
        return len(self.order_ids) > 1


@dataclass
class Reservation:
    id: str
    table_id: int
    customer_id: str
    start_time: datetime
    duration_minutes: int
    party_size: int
    created_at: datetime
    state: ReservationState = ReservationState.PENDING
    notes: Optional[str] = None
    state_changed_at: Optional[datetime] = None
    reminder_sent_at: Optional[datetime] = None

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)

    @property
    def blocks_slot(self) -> bool:
        return self.state not in NON_BLOCKING_RESERVATION_STATES

    def overlaps(self, start: datetime, duration_minutes: int) -> bool:
        """Half-open interval overlap: back-to-back windows do not collide."""
        end = start + timedelta(minutes=duration_minutes)
        return self.start_time < end and start < self.end_time


@dataclass(frozen=True)
class FloorSummary:
    total_tables: int
    tables_by_state: Dict[TableState, int]
    total_capacity: int
    occupied_capacity: int

    @property
    def occupancy_rate(self) -> float:
        if not self.total_capacity:
            return 0.0
        return round(self.occupied_capacity / self.total_capacity, 4)


@dataclass(frozen=True)
class BillingSummary:
    day: date
    invoice_count: int
    paid_count: int
    pending_count: int
    voided_count: int
    subtotal: Decimal
    itbis: Decimal
    tips: Decimal
    total_collected: Decimal


@dataclass(frozen=True)
class LineRequest:
    """A requested order line: which product and how many."""
    product_id: str
    quantity: int
    notes: Optional[str] = None

    @classmethod
    def coerce(cls, raw) -> "LineRequest":
        if isinstance(raw, LineRequest):
            return raw
        if isinstance(raw, dict):
            return cls(raw["product_id"], raw["quantity"], raw.get("notes"))
        product_id, quantity = raw  # (product_id, quantity) tuple
        return cls(product_id, quantity)


def merge_line_requests(requests: List[LineRequest]) -> List[Tuple[str, LineRequest]]:
    """Collapse repeated products into one request, keeping first-seen order."""
    merged: Dict[str, LineRequest] = {}
    for req in requests:
        if req.product_id in merged:
            prev = merged[req.product_id]
            merged[req.product_id] = LineRequest(
                req.product_id, prev.quantity + req.quantity, prev.notes or req.notes
            )
        else:
            merged[req.product_id] = req
    return list(merged.items())
