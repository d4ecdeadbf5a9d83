"""Tests for invoicing: ITBIS math, group billing, payment and voiding."""

from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from criollo.domain import InvoiceState, OrderState, PaymentMethod, TableState
from criollo.errors import ConflictError, NotFoundError, ValidationError


def deliver(coordinator, order_id):
    for state in (OrderState.PREPARING, OrderState.READY, OrderState.DELIVERED):
        coordinator.orders.transition(order_id, state)


class TestTotalsMath:

    @pytest.mark.parametrize("subtotal,discount,tip,tax,total", [
        ("350.50", "0", "0", "63.09", "413.59"),
        ("1000.00", "100.00", "50.00", "162.00", "1112.00"),
        ("0.25", "0", "0", "0.05", "0.30"),
        ("100.00", "100.00", "10.00", "0.00", "10.00"),
    ])
    def test_discount_before_tax_tip_untaxed(self, coordinator, subtotal, discount, tip, tax, total):
        totals = coordinator.invoices.calculate_totals(Decimal(subtotal), Decimal(discount), Decimal(tip))
        assert totals.tax == Decimal(tax)
        assert totals.total == Decimal(total)
        assert totals.total == (totals.subtotal - totals.discount) + totals.tax + totals.tip

    def test_itbis_rounds_half_away_from_zero(self, coordinator):
        # 0.25 * 0.18 = 0.045 -> 0.05 (banker's rounding would give 0.04)
        assert coordinator.invoices.calculate_itbis(Decimal("0.25")) == Decimal("0.05")
        assert coordinator.invoices.calculate_itbis(Decimal("10.25")) == Decimal("1.85")

    def test_discount_larger_than_subtotal(self, coordinator):
        with pytest.raises(ValidationError):
            coordinator.invoices.calculate_totals(Decimal("100"), Decimal("100.01"))

    def test_negative_tip_and_discount_both_reported(self, coordinator):
        with pytest.raises(ValidationError) as exc_info:
            coordinator.invoices.calculate_totals(Decimal("100"), Decimal("-1"), Decimal("-5"))
        assert len(exc_info.value.violations) == 2


class TestCreateInvoice:

    def test_invoice_for_delivered_order(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, customer_id="cust-ana", lines=[("mofongo", 1)])
        deliver(coordinator, order.id)

        invoice = coordinator.invoices.create_invoice(order.id, tip=Decimal("35"), payment_method="card")

        assert invoice.number == "FACT-20260314-0001"
        assert invoice.order_ids == [order.id]
        assert invoice.table_id == 2
        assert invoice.subtotal == Decimal("350.50")
        assert invoice.tax == Decimal("63.09")
        assert invoice.total == Decimal("448.59")
        assert invoice.payment_method == PaymentMethod.CARD
        assert invoice.state == InvoiceState.PENDING
        assert coordinator.get_order(order.id).state == OrderState.INVOICED

    def test_creating_invoice_never_frees_table(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        coordinator.invoices.create_invoice(order.id)
        assert coordinator.get_table(2).state == TableState.OCCUPIED

    def test_pending_order_can_be_invoiced(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        invoice = coordinator.invoices.create_invoice(order.id)
        assert invoice.subtotal == Decimal("100.00")

    def test_preparing_order_cannot_be_invoiced(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        coordinator.orders.transition(order.id, OrderState.PREPARING)
        with pytest.raises(ConflictError):
            coordinator.invoices.create_invoice(order.id)

    def test_retry_returns_the_pending_invoice(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        first = coordinator.invoices.create_invoice(order.id)
        second = coordinator.invoices.create_invoice(order.id)
        assert second.id == first.id
        assert len(coordinator.storage.list_invoices_for_order(order.id)) == 1

    def test_paid_order_cannot_be_invoiced_again(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        invoice = coordinator.invoices.create_invoice(order.id)
        coordinator.invoices.mark_paid(invoice.id)
        with pytest.raises(ConflictError):
            coordinator.invoices.create_invoice(order.id)

    def test_invalid_payment_method(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        with pytest.raises(ValidationError):
            coordinator.invoices.create_invoice(order.id, payment_method="bitcoin")
        assert coordinator.get_order(order.id).state == OrderState.PENDING

    def test_numbers_increase_within_the_day(self, coordinator):
        numbers = []
        for _ in range(3):
            order = coordinator.orders.create_order(lines=[("presidente", 1)])
            numbers.append(coordinator.invoices.create_invoice(order.id).number)
        assert numbers == ["FACT-20260314-0001", "FACT-20260314-0002", "FACT-20260314-0003"]

    def test_numbering_follows_restaurant_day(self, coordinator, clock):
        # 02:30 UTC on the 15th is still 22:30 on the 14th in Santo Domingo
        clock.set(datetime(2026, 3, 15, 2, 30, tzinfo=timezone.utc))
        order = coordinator.orders.create_order(lines=[("presidente", 1)])
        assert coordinator.invoices.create_invoice(order.id).number == "FACT-20260314-0001"

    def test_taken_number_is_skipped(self, coordinator):
        first = coordinator.invoices.create_invoice(
            coordinator.orders.create_order(lines=[("presidente", 1)]).id
        )
        # An imported invoice already holds the next number in the sequence
        coordinator.storage.add_invoice(replace(first, id="imported", number="FACT-20260314-0002"))

        order = coordinator.orders.create_order(lines=[("presidente", 1)])
        assert coordinator.invoices.create_invoice(order.id).number == "FACT-20260314-0003"


class TestGroupInvoice:

    def test_group_invoice_consolidates_table_orders(self, coordinator):
        first = coordinator.orders.create_order(table_id=2, customer_id="cust-luis", lines=[("presidente", 1)])
        second = coordinator.orders.create_order(table_id=2, lines=[("sancocho", 1)])
        deliver(coordinator, first.id)

        invoice = coordinator.invoices.create_group_invoice(2)

        assert invoice.subtotal == Decimal("350.50")
        assert invoice.tax == Decimal("63.09")
        assert invoice.total == Decimal("413.59")
        assert set(invoice.order_ids) == {first.id, second.id}
        assert invoice.is_group
        assert invoice.customer_id == "cust-luis"
        for order_id in (first.id, second.id):
            assert coordinator.get_order(order_id).state == OrderState.INVOICED

    def test_discount_applies_once_to_combined_subtotal(self, coordinator):
        coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        coordinator.orders.create_order(table_id=2, lines=[("sancocho", 1)])
        invoice = coordinator.invoices.create_group_invoice(2, discount=Decimal("50.50"))
        assert invoice.tax == Decimal("54.00")
        assert invoice.total == Decimal("354.00")

    def test_orders_in_the_kitchen_are_left_out(self, coordinator):
        coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        cooking = coordinator.orders.create_order(table_id=2, lines=[("mofongo", 1)])
        coordinator.orders.transition(cooking.id, OrderState.PREPARING)

        invoice = coordinator.invoices.create_group_invoice(2)
        assert cooking.id not in invoice.order_ids
        assert invoice.subtotal == Decimal("100.00")

    def test_preview_matches_invoice(self, coordinator):
        coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        coordinator.orders.create_order(table_id=2, lines=[("sancocho", 1)])
        preview = coordinator.invoices.preview_group_invoice(2)
        invoice = coordinator.invoices.create_group_invoice(2)
        assert preview.total == invoice.total

    def test_table_must_be_occupied(self, coordinator):
        with pytest.raises(ConflictError):
            coordinator.invoices.create_group_invoice(3)

    def test_table_with_nothing_to_bill(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        coordinator.orders.transition(order.id, OrderState.PREPARING)
        with pytest.raises(ConflictError):
            coordinator.invoices.create_group_invoice(2)


class TestPayment:

    def test_paying_last_invoice_frees_table(self, coordinator, clock):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        invoice = coordinator.invoices.create_invoice(order.id)
        clock.advance(minutes=40)

        paid = coordinator.invoices.mark_paid(invoice.id, "transfer")

        assert paid.state == InvoiceState.PAID
        assert paid.paid_at == clock.now()
        assert paid.payment_method == PaymentMethod.TRANSFER
        assert coordinator.get_table(2).state == TableState.FREE

    def test_paying_while_another_order_is_pending_keeps_table(self, coordinator):
        first = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        coordinator.orders.create_order(table_id=2, lines=[("sancocho", 1)])
        invoice = coordinator.invoices.create_invoice(first.id)

        coordinator.invoices.mark_paid(invoice.id)

        assert coordinator.get_table(2).state == TableState.OCCUPIED

    def test_unpaid_invoice_on_other_order_keeps_table(self, coordinator):
        first = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        second = coordinator.orders.create_order(table_id=2, lines=[("sancocho", 1)])
        invoice = coordinator.invoices.create_invoice(first.id)
        coordinator.invoices.create_invoice(second.id)

        coordinator.invoices.mark_paid(invoice.id)
        assert coordinator.get_table(2).state == TableState.OCCUPIED

    def test_paying_group_invoice_frees_table(self, coordinator):
        coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        coordinator.orders.create_order(table_id=2, lines=[("sancocho", 1)])
        invoice = coordinator.invoices.create_group_invoice(2)
        coordinator.invoices.mark_paid(invoice.id)
        assert coordinator.get_table(2).state == TableState.FREE

    def test_cannot_pay_twice(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        invoice = coordinator.invoices.create_invoice(order.id)
        coordinator.invoices.mark_paid(invoice.id)
        with pytest.raises(ConflictError) as exc_info:
            coordinator.invoices.mark_paid(invoice.id)
        assert exc_info.value.current == "paid"

    def test_takeout_payment_touches_no_table(self, coordinator):
        order = coordinator.orders.create_order(lines=[("mofongo", 1)])
        invoice = coordinator.invoices.create_invoice(order.id)
        assert coordinator.invoices.mark_paid(invoice.id).state == InvoiceState.PAID
        assert all(t.state == TableState.FREE for t in coordinator.list_tables())


class TestVoid:

    def test_voiding_paid_invoice_is_rejected(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        invoice = coordinator.invoices.create_invoice(order.id)
        coordinator.invoices.mark_paid(invoice.id)
        with pytest.raises(ConflictError) as exc_info:
            coordinator.invoices.void(invoice.id, "customer complaint")
        assert exc_info.value.current == "paid"
        assert coordinator.get_invoice(invoice.id).state == InvoiceState.PAID

    def test_voiding_pending_invoice_keeps_order_invoiced(self, coordinator, clock):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        invoice = coordinator.invoices.create_invoice(order.id)

        voided = coordinator.invoices.void(invoice.id, "wrong table")

        assert voided.state == InvoiceState.VOIDED
        assert voided.void_reason == "wrong table"
        assert voided.voided_at == clock.now()
        assert coordinator.get_order(order.id).state == OrderState.INVOICED
        assert coordinator.get_table(2).state == TableState.OCCUPIED

    def test_voided_order_can_be_invoiced_again(self, coordinator):
        order = coordinator.orders.create_order(table_id=2, lines=[("presidente", 1)])
        voided = coordinator.invoices.void(coordinator.invoices.create_invoice(order.id).id, "typo")
        reissued = coordinator.invoices.create_invoice(order.id, discount=Decimal("10"))
        assert reissued.id != voided.id
        assert reissued.number == "FACT-20260314-0002"


class TestQueries:

    def test_get_by_number(self, coordinator):
        order = coordinator.orders.create_order(lines=[("presidente", 1)])
        invoice = coordinator.invoices.create_invoice(order.id)
        assert coordinator.invoices.get_by_number(invoice.number).id == invoice.id
        with pytest.raises(NotFoundError):
            coordinator.invoices.get_by_number("FACT-19990101-0001")

    def test_daily_summary(self, coordinator):
        paid_order = coordinator.orders.create_order(table_id=2, lines=[("mofongo", 1)])
        paid = coordinator.invoices.create_invoice(paid_order.id, tip=Decimal("20"))
        coordinator.invoices.mark_paid(paid.id)
        open_order = coordinator.orders.create_order(table_id=3, lines=[("presidente", 1)])
        coordinator.invoices.create_invoice(open_order.id)
        void_order = coordinator.orders.create_order(lines=[("presidente", 2)])
        coordinator.invoices.void(coordinator.invoices.create_invoice(void_order.id).id, "test")

        summary = coordinator.billing_summary()

        assert summary.day == date(2026, 3, 14)
        assert summary.invoice_count == 3
        assert summary.paid_count == 1
        assert summary.pending_count == 1
        assert summary.voided_count == 1
        assert summary.subtotal == Decimal("350.50")
        assert summary.itbis == Decimal("63.09")
        assert summary.tips == Decimal("20.00")
        assert summary.total_collected == Decimal("433.59")

    def test_notifications_sent_after_commit(self, coordinator, gateway):
        order = coordinator.orders.create_order(table_id=2, customer_id="cust-ana", lines=[("presidente", 1)])
        invoice = coordinator.invoices.create_invoice(order.id)
        coordinator.invoices.mark_paid(invoice.id)

        assert coordinator.flush_notifications() == 2
        assert [n["kind"] for n in gateway.sent] == ["invoice_created", "invoice_paid"]
        assert gateway.sent[0]["recipient"] == "cust-ana"
        assert gateway.sent[0]["payload"]["number"] == invoice.number
