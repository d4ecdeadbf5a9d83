from criollo.services.floor import FloorCoordinator
from criollo.services.invoices import InvoiceEngine, InvoiceNumberGenerator
from criollo.services.locks import TableLockManager, consistency_unit
from criollo.services.orders import OrderLedger
from criollo.services.reservations import ReservationScheduler
from criollo.services.tables import TableRegistry

__all__ = [
    "FloorCoordinator",
    "InvoiceEngine",
    "InvoiceNumberGenerator",
    "OrderLedger",
    "ReservationScheduler",
    "TableLockManager",
    "TableRegistry",
    "consistency_unit",
]
