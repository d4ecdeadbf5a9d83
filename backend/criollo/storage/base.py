"""
Abstract Storage interface for the floor core.

Defines the persistence contract for tables, orders, invoices and
reservations. Implementations can be in-memory, database-backed, or other
backends. Every getter returns a detached copy: callers mutate it and hand it
back through the matching save_* method.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterable, Iterator, List, Optional

from criollo.domain import Invoice, Order, OrderState, Reservation, ReservationState, Table


class Storage(ABC):
    """Abstract base class for storage implementations."""

    @abstractmethod
    @contextmanager
    def atomic(self) -> Iterator[None]:
        """
        Group several writes into one unit.

        Either every write inside the block becomes visible or none does.
        Nested blocks join the outer one.
        """
        ...

    # ---------- Tables ----------

    @abstractmethod
    def add_table(self, table: Table) -> Table:
        """Insert a table; the storage assigns the id. Returns the stored copy."""
        ...

    @abstractmethod
    def get_table(self, table_id: int) -> Optional[Table]:
        ...

    @abstractmethod
    def save_table(self, table: Table) -> None:
        ...

    @abstractmethod
    def list_tables(self) -> List[Table]:
        """All tables ordered by number."""
        ...

    # ---------- Orders ----------

    @abstractmethod
    def add_order(self, order: Order) -> None:
        ...

    @abstractmethod
    def get_order(self, order_id: str) -> Optional[Order]:
        ...

    @abstractmethod
    def save_order(self, order: Order) -> None:
        """Persist the full order state, lines included (lines keep their ids)."""
        ...

    @abstractmethod
    def list_orders(
        self,
        table_id: Optional[int] = None,
        states: Optional[Iterable[OrderState]] = None,
    ) -> List[Order]:
        """Orders filtered by table and/or state, oldest first."""
        ...

    # ---------- Invoices ----------

    @abstractmethod
    def add_invoice(self, invoice: Invoice) -> None:
        ...

    @abstractmethod
    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        ...

    @abstractmethod
    def get_invoice_by_number(self, number: str) -> Optional[Invoice]:
        ...

    @abstractmethod
    def save_invoice(self, invoice: Invoice) -> None:
        ...

    @abstractmethod
    def list_invoices_for_order(self, order_id: str) -> List[Invoice]:
        """Every invoice (any state) that consolidates the given order."""
        ...

    @abstractmethod
    def list_invoices(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[Invoice]:
        """Invoices created in [start, end), oldest first."""
        ...

    def invoice_number_exists(self, number: str) -> bool:
        return self.get_invoice_by_number(number) is not None

    @abstractmethod
    def next_invoice_sequence(self, day: date) -> int:
        """
        Atomically increment and return the invoice counter for a day.

        The first call for a day returns 1.
        """
        ...

    # ---------- Reservations ----------

    @abstractmethod
    def add_reservation(self, reservation: Reservation) -> None:
        ...

    @abstractmethod
    def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        ...

    @abstractmethod
    def save_reservation(self, reservation: Reservation) -> None:
        ...

    @abstractmethod
    def list_reservations(
        self,
        table_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        states: Optional[Iterable[ReservationState]] = None,
    ) -> List[Reservation]:
        """Reservations whose start time falls in [start, end), ordered by start."""
        ...

    # ---------- Maintenance ----------

    @abstractmethod
    def clear(self) -> None:
        """Remove every entity and counter."""
        ...

    def close(self) -> None:
        """Release backend resources. Optional."""
