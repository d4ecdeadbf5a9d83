"""Tests for the out-of-band notification queue."""

from criollo.integrations import LoggingNotificationGateway, NotificationDispatcher

from conftest import RecordingGateway


class FlakyGateway(RecordingGateway):
    """Reports failure (instead of raising) for the first N sends."""

    def send(self, kind, recipient, payload):
        self.calls += 1
        if self.calls <= self.fail_times:
            return False
        self.sent.append({"kind": kind, "recipient": recipient, "payload": payload})
        return True


class TestDispatcher:

    def test_publish_only_queues(self):
        gateway = RecordingGateway()
        dispatcher = NotificationDispatcher(gateway)
        dispatcher.publish("invoice_created", "cust-ana", {"number": "FACT-20260314-0001"})
        assert dispatcher.pending == 1
        assert gateway.calls == 0

    def test_missing_recipient_is_skipped(self):
        dispatcher = NotificationDispatcher(RecordingGateway())
        dispatcher.publish("invoice_created", None, {})
        assert dispatcher.pending == 0

    def test_failures_are_retried_on_later_flushes(self):
        gateway = RecordingGateway(fail_times=1)
        dispatcher = NotificationDispatcher(gateway, max_attempts=3)
        dispatcher.publish("reservation_created", "cust-ana", {})

        assert dispatcher.flush() == 0
        assert dispatcher.pending == 1
        assert dispatcher.flush() == 1
        assert dispatcher.pending == 0
        assert gateway.sent[0]["kind"] == "reservation_created"

    def test_gives_up_after_max_attempts(self):
        gateway = FlakyGateway(fail_times=10)
        dispatcher = NotificationDispatcher(gateway, max_attempts=2)
        dispatcher.publish("invoice_paid", "cust-luis", {})

        dispatcher.flush()
        dispatcher.flush()

        assert dispatcher.pending == 0
        assert [n.kind for n in dispatcher.dead_letters] == ["invoice_paid"]
        assert dispatcher.dead_letters[0].attempts == 2

    def test_logging_gateway_always_succeeds(self, caplog):
        dispatcher = NotificationDispatcher(LoggingNotificationGateway())
        dispatcher.publish("invoice_paid", "cust-luis", {"total": "118.00"})
        with caplog.at_level("INFO", logger="criollo.integrations"):
            assert dispatcher.flush() == 1
        assert "invoice_paid" in caplog.text


class TestCoreIsolation:

    def test_gateway_outage_does_not_undo_invoice(self, coordinator, gateway):
        gateway.fail_times = 5
        order = coordinator.orders.create_order(table_id=2, customer_id="cust-ana", lines=[("presidente", 1)])
        invoice = coordinator.invoices.create_invoice(order.id)

        assert coordinator.flush_notifications() == 0
        assert coordinator.get_invoice(invoice.id).number == invoice.number
        assert coordinator.notifier.pending == 1
