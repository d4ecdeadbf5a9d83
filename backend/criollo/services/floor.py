"""
FloorCoordinator: wires the four floor components over one storage backend.

The coordinator holds no state of its own beyond the shared collaborators
(storage, clock, locks, notification dispatcher). Callers such as the HTTP
layer talk to the components through it.
"""

import logging
from datetime import date
from typing import List, Optional

from criollo.config import Settings, load_settings
from criollo.domain import Invoice, Order, Reservation, Table
from criollo.integrations import (
    CustomerDirectory,
    InMemoryCustomerDirectory,
    InMemoryProductCatalog,
    LoggingNotificationGateway,
    NotificationDispatcher,
    NotificationGateway,
    ProductCatalog,
)
from criollo.services.invoices import InvoiceEngine, InvoiceNumberGenerator
from criollo.services.locks import TableLockManager
from criollo.services.orders import OrderLedger
from criollo.services.reservations import ReservationScheduler
from criollo.services.tables import TableRegistry
from criollo.storage import Storage, create_storage
from criollo.utils.time_utils import Clock, SystemClock, load_timezone, local_day

logger = logging.getLogger(__name__)


class FloorCoordinator:
    def __init__(
        self,
        storage: Storage,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        catalog: Optional[ProductCatalog] = None,
        customers: Optional[CustomerDirectory] = None,
        gateway: Optional[NotificationGateway] = None,
    ):
        self.settings = settings or Settings()
        self.storage = storage
        self.clock = clock or SystemClock()
        self.local_tz = load_timezone(self.settings.restaurant_timezone)
        self.catalog = catalog if catalog is not None else InMemoryProductCatalog()
        self.customers = customers if customers is not None else InMemoryCustomerDirectory()
        self.notifier = NotificationDispatcher(
            gateway or LoggingNotificationGateway(),
            max_attempts=self.settings.notification_max_attempts,
        )
        self.locks = TableLockManager()

        self.tables = TableRegistry(storage, self.clock, self.locks)
        self.orders = OrderLedger(storage, self.tables, self.catalog, self.customers, self.clock, self.locks)
        self.tables.bind_ledger(self.orders)
        self.invoices = InvoiceEngine(
            storage,
            self.orders,
            self.tables,
            self.clock,
            self.locks,
            InvoiceNumberGenerator(storage, self.clock, self.local_tz),
            self.notifier,
        )
        self.reservations = ReservationScheduler(
            storage,
            self.tables,
            self.customers,
            self.clock,
            self.locks,
            self.notifier,
            self.local_tz,
            no_show_tolerance_minutes=self.settings.no_show_tolerance_minutes,
            default_duration_minutes=self.settings.default_reservation_minutes,
            hold_minutes=self.settings.reservation_hold_minutes,
            reminder_lead_minutes=self.settings.reservation_reminder_minutes,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "FloorCoordinator":
        """Build storage from settings and bootstrap the configured floor layout."""
        settings = settings or load_settings()
        storage = create_storage(settings.storage_backend, settings.database_url, settings.use_alembic)
        coordinator = cls(storage, settings=settings, **kwargs)
        coordinator.bootstrap_tables()
        return coordinator

    def bootstrap_tables(self) -> List[Table]:
        """Register the configured layout when the storage has no tables yet."""
        if self.storage.list_tables():
            return []
        created = [
            self.tables.register_table(entry.number, entry.capacity, entry.location)
            for entry in self.settings.tables
        ]
        if created:
            logger.info("Bootstrapped %d table(s) from configuration", len(created))
        return created

    # ---------- Query surface ----------

    def list_tables(self) -> List[Table]:
        return self.tables.list_tables()

    def get_table(self, table_id: int) -> Table:
        return self.tables.get(table_id)

    def get_order(self, order_id: str) -> Order:
        return self.orders.get(order_id)

    def get_invoice(self, invoice_id: str) -> Invoice:
        return self.invoices.get(invoice_id)

    def get_reservation(self, reservation_id: str) -> Reservation:
        return self.reservations.get(reservation_id)

    def active_orders(self, table_id: int) -> List[Order]:
        return self.orders.list_active_orders(table_id)

    def floor_summary(self):
        return self.tables.summary()

    def billing_summary(self, day: Optional[date] = None):
        return self.invoices.daily_summary(day or local_day(self.clock.now(), self.local_tz))

    # ---------- Housekeeping ----------

    def run_periodic(self) -> dict:
        """One scheduler tick: sweep no-shows, hold tables, queue reminders."""
        swept = self.reservations.sweep_no_shows()
        held = self.reservations.hold_upcoming()
        reminded = self.reservations.send_reminders()
        return {"no_shows": len(swept), "held": len(held), "reminders": len(reminded)}

    def flush_notifications(self) -> int:
        return self.notifier.flush()

    def close(self) -> None:
        self.storage.close()
