"""Tests for the order lifecycle, line edits and order totals."""

from decimal import Decimal

import pytest

from criollo.domain import LineRequest, OrderState, TableState
from criollo.errors import ConflictError, NotFoundError, ValidationError
from criollo.integrations import Product


class TestCreateOrder:

    def test_order_occupies_free_table(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 2)])
        assert order.state == OrderState.PENDING
        assert coordinator.get_table(2).state == TableState.OCCUPIED

    def test_second_order_on_occupied_table(self, coordinator):
        coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        coordinator.orders.create_order(table_id=2, lines=[("sancocho", 1)])
        assert coordinator.get_table(2).state == TableState.OCCUPIED
        assert len(coordinator.active_orders(2)) == 2

    def test_order_on_reserved_table_seats_it(self, coordinator):
        coordinator.tables.set_state(3, TableState.RESERVED)
        coordinator.orders.create_order(table_id=3, lines=[("presidente", 1)])
        assert coordinator.get_table(3).state == TableState.OCCUPIED

    def test_order_on_maintenance_table_is_rejected(self, coordinator):
        coordinator.tables.set_state(3, TableState.MAINTENANCE)
        with pytest.raises(ConflictError):
            coordinator.orders.create_order(table_id=3, lines=[("presidente", 1)])
        assert coordinator.storage.list_orders(table_id=3) == []

    def test_takeout_order_has_no_table(self, coordinator):
        order = coordinator.orders.create_order(lines=[{"product_id": "mofongo", "quantity": 1}])
        assert order.is_takeout
        assert all(t.state == TableState.FREE for t in coordinator.list_tables())

    def test_totals_are_computed_from_catalog_prices(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 2), ("sancocho", 1)])
        assert order.subtotal == Decimal("450.50")
        assert order.tax == Decimal("81.09")
        assert order.total == Decimal("531.59")
        assert [line.unit_price for line in order.lines] == [Decimal("100.00"), Decimal("250.50")]

    def test_repeated_products_are_merged(self, coordinator):
        order = coordinator.orders.create_order(
            table_id=2, lines=[("presidente", 1), ("sancocho", 1), ("presidente", 2)]
        )
        assert [(l.product_id, l.quantity) for l in order.lines] == [("presidente", 3), ("sancocho", 1)]

    def test_empty_lines_rejected(self, coordinator):
        with pytest.raises(ValidationError) as exc_info:
            coordinator.orders.create_order(table_id=2, lines=[])
        assert exc_info.value.violations == ["an order needs at least one line"]
        assert coordinator.get_table(2).state == TableState.FREE

    def test_all_bad_quantities_are_reported(self, coordinator):
        with pytest.raises(ValidationError) as exc_info:
            coordinator.orders.create_order(table_id=2, lines=[("presidente", 0), ("sancocho", -1)])
        assert len(exc_info.value.violations) == 2

    def test_unknown_product(self, coordinator):
        with pytest.raises(NotFoundError) as exc_info:
            coordinator.orders.create_order(table_id=2, lines=[("langosta", 1)])
        assert exc_info.value.entity == "product"
        assert coordinator.get_table(2).state == TableState.FREE

    def test_unavailable_product(self, coordinator):
        with pytest.raises(ValidationError) as exc_info:
            coordinator.orders.create_order(table_id=2, lines=[("habichuelas", 1)])
        assert "not available" in exc_info.value.violations[0]

    def test_insufficient_stock(self, coordinator):
        with pytest.raises(ValidationError) as exc_info:
            coordinator.orders.create_order(table_id=2, lines=[("chivo", 3)])
        assert "only 2" in exc_info.value.violations[0]

    def test_unknown_customer(self, coordinator):
        with pytest.raises(NotFoundError):
            coordinator.orders.create_order(table_id=2, customer_id="nobody", lines=[("presidente", 1)])

    def test_unknown_table(self, coordinator):
        with pytest.raises(NotFoundError):
            coordinator.orders.create_order(table_id=42, lines=[("presidente", 1)])


class TestUpdateOrder:

    def test_diff_preserves_line_identity(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 2), ("sancocho", 1)])
        beer_line = order.lines[0]

        updated = coordinator.orders.update_order(order.id, [("presidente", 4), ("mofongo", 1)])

        by_product = {line.product_id: line for line in updated.lines}
        assert set(by_product) == {"presidente", "mofongo"}
        assert by_product["presidente"].id == beer_line.id
        assert by_product["presidente"].quantity == 4
        assert updated.subtotal == Decimal("750.50")

    def test_existing_lines_keep_their_captured_price(self, coordinator, catalog):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        catalog.upsert(Product("presidente", "Cerveza Presidente", Decimal("125.00"), stock_quantity=100))

        updated = coordinator.orders.update_order(order.id, [("presidente", 2)])
        assert updated.lines[0].unit_price == Decimal("100.00")
        assert updated.subtotal == Decimal("200.00")

    def test_new_lines_use_current_catalog_price(self, coordinator, catalog):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        catalog.upsert(Product("sancocho", "Sancocho", Decimal("300.00"), stock_quantity=5))

        updated = coordinator.orders.update_order(order.id, [("presidente", 1), ("sancocho", 1)])
        assert updated.lines[1].unit_price == Decimal("300.00")

    def test_quantity_increase_rechecks_stock(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("chivo", 1)])
        with pytest.raises(ValidationError):
            coordinator.orders.update_order(order.id, [("chivo", 5)])
        assert coordinator.get_order(order.id).lines[0].quantity == 1

    def test_editable_while_preparing(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        coordinator.orders.transition(order.id, OrderState.PREPARING)
        updated = coordinator.orders.update_order(order.id, [LineRequest("presidente", 3, "bien fría")])
        assert updated.lines[0].notes == "bien fría"

    def test_not_editable_once_ready(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        coordinator.orders.transition(order.id, OrderState.PREPARING)
        coordinator.orders.transition(order.id, OrderState.READY)
        with pytest.raises(ConflictError) as exc_info:
            coordinator.orders.update_order(order.id, [("presidente", 2)])
        assert exc_info.value.current == "ready"


class TestTransitions:

    def test_pending_straight_to_delivered_is_rejected(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        with pytest.raises(ConflictError) as exc_info:
            coordinator.orders.transition(order.id, OrderState.DELIVERED)
        assert exc_info.value.current == "pending"
        assert exc_info.value.requested == "delivered"
        assert coordinator.get_order(order.id).state == OrderState.PENDING

    def test_full_kitchen_path(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        for state in (OrderState.PREPARING, OrderState.READY, OrderState.DELIVERED, OrderState.INVOICED):
            order = coordinator.orders.transition(order.id, state)
        assert order.state == OrderState.INVOICED

    def test_delivered_orders_cannot_be_cancelled(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        for state in (OrderState.PREPARING, OrderState.READY, OrderState.DELIVERED):
            coordinator.orders.transition(order.id, state)
        with pytest.raises(ConflictError):
            coordinator.orders.transition(order.id, OrderState.CANCELLED)

    def test_cancelling_last_order_frees_table(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        coordinator.orders.transition(order.id, OrderState.CANCELLED)
        assert coordinator.get_table(2).state == TableState.FREE

    def test_cancelling_one_of_two_orders_keeps_table(self, coordinator):
        first = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        coordinator.orders.create_order(table_id=2, lines=[("sancocho", 1)])
        coordinator.orders.transition(first.id, OrderState.CANCELLED)
        assert coordinator.get_table(2).state == TableState.OCCUPIED


class TestTotals:

    def test_compute_totals_is_idempotent(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("mofongo", 1), ("presidente", 3)])
        first = coordinator.orders.compute_totals(order.id)
        second = coordinator.orders.compute_totals(order.id)
        assert first == second
        assert first.item_count == 4
        assert first.subtotal == Decimal("650.50")
        assert first.tax == Decimal("117.09")
        assert first.total == Decimal("767.59")
