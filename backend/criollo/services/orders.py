"""
Order lifecycle and line-item totals.

Orders belong to a table or are take-out tickets (no table). Lines carry the
unit price captured from the catalog when they were inserted; edits diff the
requested lines against the current ones so line ids survive for the kitchen.
"""

import logging
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence
from uuid import uuid4

from criollo.domain import (
    CLOSED_ORDER_STATES,
    EDITABLE_ORDER_STATES,
    InvoiceState,
    LineRequest,
    Order,
    OrderLine,
    OrderState,
    OrderTotals,
    TableState,
    merge_line_requests,
)
from criollo.errors import ConflictError, NotFoundError, ValidationError
from criollo.integrations import CustomerDirectory, Product, ProductCatalog
from criollo.services.locks import TableLockManager, consistency_unit
from criollo.services.tables import TableRegistry
from criollo.storage import Storage
from criollo.utils.time_utils import Clock

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[OrderState, FrozenSet[OrderState]] = {
    OrderState.PENDING: frozenset({OrderState.PREPARING, OrderState.CANCELLED}),
    OrderState.PREPARING: frozenset({OrderState.READY, OrderState.CANCELLED}),
    OrderState.READY: frozenset({OrderState.DELIVERED}),
    OrderState.DELIVERED: frozenset({OrderState.INVOICED}),
    OrderState.INVOICED: frozenset(),
    OrderState.CANCELLED: frozenset(),
}

# States the invoice engine may move straight to INVOICED.
INVOICEABLE_STATES = frozenset({OrderState.PENDING, OrderState.DELIVERED, OrderState.INVOICED})


class OrderLedger:
    """Owns order lifecycle, line edits and order-level totals."""

    def __init__(
        self,
        storage: Storage,
        tables: TableRegistry,
        catalog: ProductCatalog,
        customers: CustomerDirectory,
        clock: Clock,
        locks: TableLockManager,
    ):
        self.storage = storage
        self.tables = tables
        self.catalog = catalog
        self.customers = customers
        self.clock = clock
        self.locks = locks

    # ---------- Validation helpers ----------

    def _coerce_lines(self, lines: Optional[Sequence]) -> List[LineRequest]:
        requests = [LineRequest.coerce(raw) for raw in (lines or [])]
        violations = []
        if not requests:
            violations.append("an order needs at least one line")
        for req in requests:
            if not isinstance(req.quantity, int) or req.quantity <= 0:
                violations.append(f"quantity for product '{req.product_id}' must be a positive integer")
        if violations:
            raise ValidationError(violations)
        return requests

    def _check_products(self, wanted: Dict[str, int]) -> Dict[str, Product]:
        """
        Look every product up in the catalog right now.

        wanted maps product id -> quantity that must be in stock.
        """
        products = {}
        violations = []
        for product_id, quantity in wanted.items():
            product = self.catalog.get_product(product_id)
            if product is None:
                raise NotFoundError("product", product_id)
            if not product.is_available:
                violations.append(f"product '{product.name}' is not available")
            elif product.stock_quantity < quantity:
                violations.append(
                    f"only {product.stock_quantity} of '{product.name}' in stock, {quantity} requested"
                )
            products[product_id] = product
        if violations:
            raise ValidationError(violations)
        return products

    def _new_line(self, req: LineRequest, product: Product) -> OrderLine:
        return OrderLine(
            id=str(uuid4()),
            product_id=req.product_id,
            quantity=req.quantity,
            unit_price=product.price,
            notes=req.notes,
        )

    # ---------- Queries ----------

    def get(self, order_id: str) -> Order:
        order = self.storage.get_order(order_id)
        if order is None:
            raise NotFoundError("order", order_id)
        return order

    def compute_totals(self, order_id: str) -> OrderTotals:
        """Subtotal, ITBIS and total from the current lines; no side effects."""
        return OrderTotals.from_lines(self.get(order_id).lines)

    def list_active_orders(self, table_id: int) -> List[Order]:
        self.tables.get(table_id)
        return [
            o for o in self.storage.list_orders(table_id=table_id)
            if o.state not in CLOSED_ORDER_STATES
        ]

    def is_settled(self, order: Order) -> bool:
        """Cancelled, or invoiced with a paid invoice covering it."""
        if order.state == OrderState.CANCELLED:
            return True
        if order.state != OrderState.INVOICED:
            return False
        return any(
            inv.state == InvoiceState.PAID
            for inv in self.storage.list_invoices_for_order(order.id)
        )

    def unsettled_orders(self, table_id: int, exclude: Iterable[str] = ()) -> List[Order]:
        skip = set(exclude)
        return [
            o for o in self.storage.list_orders(table_id=table_id)
            if o.id not in skip and not self.is_settled(o)
        ]

    def has_unsettled_orders(self, table_id: int) -> bool:
        return bool(self.unsettled_orders(table_id))

    # ---------- Commands ----------

    def create_order(
        self,
        table_id: Optional[int] = None,
        customer_id: Optional[str] = None,
        lines: Optional[Sequence] = None,
        notes: Optional[str] = None,
    ) -> Order:
        requests = merge_line_requests(self._coerce_lines(lines))
        if customer_id is not None and not self.customers.exists(customer_id):
            raise NotFoundError("customer", customer_id)

        with consistency_unit(self.storage, self.locks, [table_id]):
            if table_id is not None:
                table = self.tables.get(table_id)
                if table.state == TableState.MAINTENANCE:
                    raise ConflictError(
                        f"Table {table.number} is under maintenance",
                        current=table.state.value,
                        requested=TableState.OCCUPIED.value,
                    )

            products = self._check_products({pid: req.quantity for pid, req in requests})
            now = self.clock.now()
            order = Order(
                id=str(uuid4()),
                table_id=table_id,
                customer_id=customer_id,
                created_at=now,
                state_changed_at=now,
                lines=[self._new_line(req, products[pid]) for pid, req in requests],
                notes=notes,
            )
            order.recompute_totals()
            self.storage.add_order(order)

            if table_id is not None and table.state != TableState.OCCUPIED:
                self.tables.set_state(table_id, TableState.OCCUPIED, f"order {order.id} opened")

        logger.info(
            "Created order %s for %s with %d line(s), total RD$ %s",
            order.id, f"table {table_id}" if table_id is not None else "take-out",
            len(order.lines), order.total,
        )
        return order

    def update_order(self, order_id: str, new_lines: Sequence) -> Order:
        """
        Replace the order's lines by diffing against the current ones.

        Lines for products no longer requested are removed, lines for products
        present in both keep their id and unit price with the new quantity,
        and new products are inserted at the current catalog price.
        """
        requests = merge_line_requests(self._coerce_lines(new_lines))
        table_id = self.get(order_id).table_id

        with consistency_unit(self.storage, self.locks, [table_id]):
            order = self.get(order_id)
            if order.state not in EDITABLE_ORDER_STATES:
                raise ConflictError(
                    f"Order {order_id} cannot be edited while {order.state.value}",
                    current=order.state.value,
                    requested="edit",
                )

            current = {line.product_id: line for line in order.lines}
            wanted = dict(requests)

            # Stock is re-checked for inserted lines and for quantity increases.
            to_check = {
                pid: req.quantity for pid, req in requests
                if pid not in current or req.quantity > current[pid].quantity
            }
            products = self._check_products(to_check)

            updated = []
            for line in order.lines:
                req = wanted.get(line.product_id)
                if req is None:
                    continue
                line.quantity = req.quantity
                if req.notes is not None:
                    line.notes = req.notes
                updated.append(line)
            for pid, req in requests:
                if pid not in current:
                    updated.append(self._new_line(req, products[pid]))

            order.lines = updated
            order.recompute_totals()
            self.storage.save_order(order)

        logger.info("Updated order %s: %d line(s), total RD$ %s", order.id, len(order.lines), order.total)
        return order

    def transition(self, order_id: str, new_state: OrderState) -> Order:
        new_state = OrderState(new_state)
        table_id = self.get(order_id).table_id

        with consistency_unit(self.storage, self.locks, [table_id]):
            order = self.get(order_id)
            current = order.state
            if new_state not in ALLOWED_TRANSITIONS[current]:
                logger.warning("Rejected order %s transition %s -> %s", order_id, current.value, new_state.value)
                raise ConflictError(
                    f"Order {order_id} cannot go from {current.value} to {new_state.value}",
                    current=current.value,
                    requested=new_state.value,
                )
            order.state = new_state
            order.state_changed_at = self.clock.now()
            self.storage.save_order(order)

            if new_state == OrderState.CANCELLED and table_id is not None:
                self.tables.release_if_settled(table_id, f"order {order_id} cancelled")

        logger.info("Order %s: %s -> %s", order_id, current.value, new_state.value)
        return order

    def mark_invoiced(self, order_id: str) -> Order:
        """Flag an order as invoiced; accepts pending, delivered or already-invoiced orders."""
        order = self.get(order_id)
        if order.state not in INVOICEABLE_STATES:
            raise ConflictError(
                f"Order {order_id} cannot be invoiced while {order.state.value}",
                current=order.state.value,
                requested=OrderState.INVOICED.value,
            )
        if order.state != OrderState.INVOICED:
            order.state = OrderState.INVOICED
            order.state_changed_at = self.clock.now()
            self.storage.save_order(order)
        return order
