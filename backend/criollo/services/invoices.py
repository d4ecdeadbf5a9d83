"""
Invoice creation, group consolidation and settlement.

Totals follow Dominican invoicing: the discount comes off the subtotal first,
ITBIS (18%) is charged on the discounted amount, and the tip is added on top
untaxed. Marking an invoice paid is what may free the table; creating one
never does.
"""

import logging
import threading
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple, Union
from uuid import uuid4

from criollo.domain import (
    ZERO,
    BillingSummary,
    Invoice,
    InvoiceState,
    InvoiceTotals,
    OrderState,
    OrderTotals,
    PaymentMethod,
    TableState,
    calculate_itbis,
    round_money,
)
from criollo.errors import ConflictError, NotFoundError, ValidationError
from criollo.integrations import NotificationDispatcher
from criollo.services.locks import TableLockManager, consistency_unit
from criollo.services.orders import INVOICEABLE_STATES, OrderLedger
from criollo.services.tables import TableRegistry
from criollo.storage import Storage
from criollo.utils.time_utils import Clock, local_day, local_day_bounds

logger = logging.getLogger(__name__)

GROUP_BILLABLE_STATES = (OrderState.DELIVERED, OrderState.PENDING)

Amount = Union[Decimal, int, float, str]


class InvoiceNumberGenerator:
    """
    Issues FACT-YYYYMMDD-NNNN numbers from a per-day counter.

    The counter lives in storage and is advanced under a process-wide lock.
    A number that already exists (e.g. imported history) is skipped by
    drawing the next counter value.
    """

    PREFIX = "FACT"

    def __init__(self, storage: Storage, clock: Clock, local_tz, max_attempts: int = 100):
        self.storage = storage
        self.clock = clock
        self.local_tz = local_tz
        self.max_attempts = max_attempts
        self._lock = threading.Lock()

    def format(self, day: date, sequence: int) -> str:
        return f"{self.PREFIX}-{day:%Y%m%d}-{sequence:04d}"

    def next_number(self) -> str:
        day = local_day(self.clock.now(), self.local_tz)
        with self._lock:
            for _ in range(self.max_attempts):
                number = self.format(day, self.storage.next_invoice_sequence(day))
                if not self.storage.invoice_number_exists(number):
                    return number
                logger.warning("Invoice number %s already taken, drawing the next one", number)
        raise ConflictError(f"Could not allocate an invoice number for {day.isoformat()}")


def _parse_amount(value: Amount, name: str, violations: List[str]) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        violations.append(f"{name} must be a number")
        return ZERO
    if amount < 0:
        violations.append(f"{name} cannot be negative")
    return round_money(amount)


def _parse_payment_method(value, violations: List[str]) -> Optional[PaymentMethod]:
    try:
        return PaymentMethod(value)
    except ValueError:
        allowed = ", ".join(m.value for m in PaymentMethod)
        violations.append(f"payment method '{value}' is not one of: {allowed}")
        return None


class InvoiceEngine:
    """Builds invoices from orders and settles them."""

    def __init__(
        self,
        storage: Storage,
        orders: OrderLedger,
        tables: TableRegistry,
        clock: Clock,
        locks: TableLockManager,
        numbers: InvoiceNumberGenerator,
        notifier: NotificationDispatcher,
    ):
        self.storage = storage
        self.orders = orders
        self.tables = tables
        self.clock = clock
        self.locks = locks
        self.numbers = numbers
        self.notifier = notifier

    # ---------- Math ----------

    @staticmethod
    def calculate_itbis(amount: Amount) -> Decimal:
        return calculate_itbis(Decimal(str(amount)))

    def calculate_totals(
        self, subtotal: Amount, discount: Amount = 0, tip: Amount = 0
    ) -> InvoiceTotals:
        subtotal = round_money(Decimal(str(subtotal)))
        discount, tip, _ = self._validate_charges(subtotal, discount, tip, PaymentMethod.CASH)
        return InvoiceTotals.compute(subtotal, discount, tip)

    def _validate_charges(
        self, subtotal: Decimal, discount: Amount, tip: Amount, payment_method
    ) -> Tuple[Decimal, Decimal, PaymentMethod]:
        violations: List[str] = []
        discount = _parse_amount(discount, "discount", violations)
        tip = _parse_amount(tip, "tip", violations)
        method = _parse_payment_method(payment_method, violations)
        if discount > subtotal:
            violations.append(f"discount {discount} exceeds subtotal {subtotal}")
        if violations:
            raise ValidationError(violations)
        return discount, tip, method

    # ---------- Queries ----------

    def get(self, invoice_id: str) -> Invoice:
        invoice = self.storage.get_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)
        return invoice

    def get_by_number(self, number: str) -> Invoice:
        invoice = self.storage.get_invoice_by_number(number)
        if invoice is None:
            raise NotFoundError("invoice", number)
        return invoice

    def preview_group_invoice(self, table_id: int, discount: Amount = 0, tip: Amount = 0) -> InvoiceTotals:
        """What a group invoice for the table would come to right now."""
        self.tables.get(table_id)
        billable = self.storage.list_orders(table_id=table_id, states=GROUP_BILLABLE_STATES)
        subtotal = sum((OrderTotals.from_lines(o.lines).subtotal for o in billable), ZERO)
        return self.calculate_totals(subtotal, discount, tip)

    def daily_summary(self, day: date) -> BillingSummary:
        start, end = local_day_bounds(day, self.numbers.local_tz)
        invoices = self.storage.list_invoices(start, end)
        paid = [i for i in invoices if i.state == InvoiceState.PAID]
        return BillingSummary(
            day=day,
            invoice_count=len(invoices),
            paid_count=len(paid),
            pending_count=sum(1 for i in invoices if i.state == InvoiceState.PENDING),
            voided_count=sum(1 for i in invoices if i.state == InvoiceState.VOIDED),
            subtotal=sum((i.subtotal - i.discount for i in paid), ZERO),
            itbis=sum((i.tax for i in paid), ZERO),
            tips=sum((i.tip for i in paid), ZERO),
            total_collected=sum((i.total for i in paid), ZERO),
        )

    # ---------- Commands ----------

    def create_invoice(
        self,
        order_id: str,
        discount: Amount = 0,
        tip: Amount = 0,
        payment_method: Union[str, PaymentMethod] = PaymentMethod.CASH,
    ) -> Invoice:
        table_id = self.orders.get(order_id).table_id

        with consistency_unit(self.storage, self.locks, [table_id]):
            order = self.orders.get(order_id)
            if order.state not in INVOICEABLE_STATES:
                raise ConflictError(
                    f"Order {order_id} cannot be invoiced while {order.state.value}",
                    current=order.state.value,
                    requested=OrderState.INVOICED.value,
                )

            existing = self.storage.list_invoices_for_order(order_id)
            if any(inv.state == InvoiceState.PAID for inv in existing):
                raise ConflictError(
                    f"Order {order_id} already has a paid invoice",
                    current=InvoiceState.PAID.value,
                    requested=InvoiceState.PENDING.value,
                )
            open_invoice = next((inv for inv in existing if inv.state == InvoiceState.PENDING), None)
            if open_invoice is not None:
                logger.info("Order %s already covered by pending invoice %s", order_id, open_invoice.number)
                return open_invoice

            subtotal = OrderTotals.from_lines(order.lines).subtotal
            discount, tip, method = self._validate_charges(subtotal, discount, tip, payment_method)
            totals = InvoiceTotals.compute(subtotal, discount, tip)

            invoice = self._build_invoice(
                order_ids=[order.id],
                table_id=order.table_id,
                customer_id=order.customer_id,
                totals=totals,
                method=method,
            )
            self.storage.add_invoice(invoice)
            self.orders.mark_invoiced(order.id)

        logger.info("Invoice %s created for order %s: RD$ %s", invoice.number, order_id, invoice.total)
        self._notify("invoice_created", invoice)
        return invoice

    def create_group_invoice(
        self,
        table_id: int,
        discount: Amount = 0,
        tip: Amount = 0,
        payment_method: Union[str, PaymentMethod] = PaymentMethod.CASH,
    ) -> Invoice:
        with consistency_unit(self.storage, self.locks, [table_id]):
            table = self.tables.get(table_id)
            if table.state != TableState.OCCUPIED:
                raise ConflictError(
                    f"Table {table.number} must be occupied for group billing",
                    current=table.state.value,
                    requested="group_invoice",
                )
            billable = self.storage.list_orders(table_id=table_id, states=GROUP_BILLABLE_STATES)
            if not billable:
                raise ConflictError(f"Table {table.number} has no delivered or pending orders to bill")

            # Each order is summed on its own; discount and ITBIS apply once to the total.
            subtotal = sum((OrderTotals.from_lines(o.lines).subtotal for o in billable), ZERO)
            discount, tip, method = self._validate_charges(subtotal, discount, tip, payment_method)
            totals = InvoiceTotals.compute(subtotal, discount, tip)

            customer_id = next((o.customer_id for o in billable if o.customer_id), None)
            invoice = self._build_invoice(
                order_ids=[o.id for o in billable],
                table_id=table_id,
                customer_id=customer_id,
                totals=totals,
                method=method,
            )
            self.storage.add_invoice(invoice)
            for order in billable:
                self.orders.mark_invoiced(order.id)

        logger.info(
            "Group invoice %s created for table %s with %d order(s): RD$ %s",
            invoice.number, table.number, len(billable), invoice.total,
        )
        self._notify("invoice_created", invoice)
        return invoice

    def mark_paid(self, invoice_id: str, payment_method: Union[str, PaymentMethod, None] = None) -> Invoice:
        table_id = self.get(invoice_id).table_id

        with consistency_unit(self.storage, self.locks, [table_id]):
            invoice = self.get(invoice_id)
            if invoice.state != InvoiceState.PENDING:
                raise ConflictError(
                    f"Invoice {invoice.number} cannot be paid while {invoice.state.value}",
                    current=invoice.state.value,
                    requested=InvoiceState.PAID.value,
                )
            if payment_method is not None:
                violations: List[str] = []
                method = _parse_payment_method(payment_method, violations)
                if violations:
                    raise ValidationError(violations)
                invoice.payment_method = method
            invoice.state = InvoiceState.PAID
            invoice.paid_at = self.clock.now()
            self.storage.save_invoice(invoice)

            released = False
            if invoice.table_id is not None:
                released = self.tables.release_if_settled(invoice.table_id, f"invoice {invoice.number} paid")

        logger.info(
            "Invoice %s paid (%s)%s", invoice.number, invoice.payment_method.value,
            ", table released" if released else "",
        )
        self._notify("invoice_paid", invoice)
        return invoice

    def void(self, invoice_id: str, reason: str) -> Invoice:
        table_id = self.get(invoice_id).table_id

        with consistency_unit(self.storage, self.locks, [table_id]):
            invoice = self.get(invoice_id)
            if invoice.state != InvoiceState.PENDING:
                raise ConflictError(
                    f"Invoice {invoice.number} cannot be voided while {invoice.state.value}",
                    current=invoice.state.value,
                    requested=InvoiceState.VOIDED.value,
                )
            invoice.state = InvoiceState.VOIDED
            invoice.voided_at = self.clock.now()
            invoice.void_reason = reason
            self.storage.save_invoice(invoice)

        logger.info("Invoice %s voided: %s", invoice.number, reason)
        return invoice

    # ---------- Helpers ----------

    def _build_invoice(self, order_ids, table_id, customer_id, totals: InvoiceTotals,
                       method: PaymentMethod) -> Invoice:
        return Invoice(
            id=str(uuid4()),
            number=self.numbers.next_number(),
            order_id=order_ids[0],
            order_ids=list(order_ids),
            table_id=table_id,
            customer_id=customer_id,
            subtotal=totals.subtotal,
            discount=totals.discount,
            tax=totals.tax,
            tip=totals.tip,
            total=totals.total,
            payment_method=method,
            created_at=self.clock.now(),
        )

    def _notify(self, kind: str, invoice: Invoice) -> None:
        self.notifier.publish(kind, invoice.customer_id, {
            "invoice_id": invoice.id,
            "number": invoice.number,
            "total": str(invoice.total),
            "state": invoice.state.value,
        })
