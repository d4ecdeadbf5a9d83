"""
In-memory storage implementation.

Keeps entities in dictionaries guarded by one re-entrant lock. Readers take
the lock briefly, writers inside atomic() hold it for the whole block, so a
half-applied unit is never observable. A failed atomic block restores the
snapshot taken when it started.

The snapshot is a deep copy of the whole store, and history (invoiced orders,
paid invoices, past reservations) is never pruned, so every write unit gets
slower as the store grows. Fine for development and tests; use
SQLAlchemyStorage for a long-running service.
"""

import copy
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import date, datetime
from typing import Dict, Iterable, Iterator, List, Optional

from criollo.domain import Invoice, Order, OrderState, Reservation, ReservationState, Table
from .base import Storage


class InMemoryStorage(Storage):
    """In-memory storage using dictionaries."""

    def __init__(self):
        """Initialize with empty storage."""
        self._lock = threading.RLock()
        self._depth = 0
        self._tables: Dict[int, Table] = {}
        self._orders: Dict[str, Order] = {}
        self._invoices: Dict[str, Invoice] = {}
        self._reservations: Dict[str, Reservation] = {}
        # Invoice counters per calendar day
        self._invoice_sequences: Dict[date, int] = defaultdict(int)

    def _state(self):
        return (
            self._tables,
            self._orders,
            self._invoices,
            self._reservations,
            self._invoice_sequences,
        )

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            outermost = self._depth == 0
            snapshot = copy.deepcopy(self._state()) if outermost else None
            self._depth += 1
            try:
                yield
            except BaseException:
                if outermost:
                    (
                        self._tables,
                        self._orders,
                        self._invoices,
                        self._reservations,
                        self._invoice_sequences,
                    ) = snapshot
                raise
            finally:
                self._depth -= 1

    # ---------- Tables ----------

    def add_table(self, table: Table) -> Table:
        with self._lock:
            stored = copy.deepcopy(table)
            stored.id = max(self._tables, default=0) + 1
            self._tables[stored.id] = stored
            return copy.deepcopy(stored)

    def get_table(self, table_id: int) -> Optional[Table]:
        with self._lock:
            return copy.deepcopy(self._tables.get(table_id))

    def save_table(self, table: Table) -> None:
        with self._lock:
            self._tables[table.id] = copy.deepcopy(table)

    def list_tables(self) -> List[Table]:
        with self._lock:
            return [copy.deepcopy(t) for t in sorted(self._tables.values(), key=lambda t: t.number)]

    # ---------- Orders ----------

    def add_order(self, order: Order) -> None:
        with self._lock:
            self._orders[order.id] = copy.deepcopy(order)

    def get_order(self, order_id: str) -> Optional[Order]:
        with self._lock:
            return copy.deepcopy(self._orders.get(order_id))

    def save_order(self, order: Order) -> None:
        with self._lock:
            self._orders[order.id] = copy.deepcopy(order)

    def list_orders(
        self,
        table_id: Optional[int] = None,
        states: Optional[Iterable[OrderState]] = None,
    ) -> List[Order]:
        wanted = set(states) if states is not None else None
        with self._lock:
            orders = [
                o for o in self._orders.values()
                if (table_id is None or o.table_id == table_id)
                and (wanted is None or o.state in wanted)
            ]
            orders.sort(key=lambda o: o.created_at)
            return copy.deepcopy(orders)

    # ---------- Invoices ----------

    def add_invoice(self, invoice: Invoice) -> None:
        with self._lock:
            self._invoices[invoice.id] = copy.deepcopy(invoice)

    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        with self._lock:
            return copy.deepcopy(self._invoices.get(invoice_id))

    def get_invoice_by_number(self, number: str) -> Optional[Invoice]:
        with self._lock:
            for invoice in self._invoices.values():
                if invoice.number == number:
                    return copy.deepcopy(invoice)
            return None

    def save_invoice(self, invoice: Invoice) -> None:
        with self._lock:
            self._invoices[invoice.id] = copy.deepcopy(invoice)

    def list_invoices_for_order(self, order_id: str) -> List[Invoice]:
        with self._lock:
            found = [i for i in self._invoices.values() if order_id in i.order_ids]
            found.sort(key=lambda i: i.created_at)
            return copy.deepcopy(found)

    def list_invoices(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[Invoice]:
        with self._lock:
            found = [
                i for i in self._invoices.values()
                if (start is None or i.created_at >= start)
                and (end is None or i.created_at < end)
            ]
            found.sort(key=lambda i: i.created_at)
            return copy.deepcopy(found)

    def next_invoice_sequence(self, day: date) -> int:
        with self._lock:
            self._invoice_sequences[day] += 1
            return self._invoice_sequences[day]

    # ---------- Reservations ----------

    def add_reservation(self, reservation: Reservation) -> None:
        with self._lock:
            self._reservations[reservation.id] = copy.deepcopy(reservation)

    def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        with self._lock:
            return copy.deepcopy(self._reservations.get(reservation_id))

    def save_reservation(self, reservation: Reservation) -> None:
        with self._lock:
            self._reservations[reservation.id] = copy.deepcopy(reservation)

    def list_reservations(
        self,
        table_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        states: Optional[Iterable[ReservationState]] = None,
    ) -> List[Reservation]:
        wanted = set(states) if states is not None else None
        with self._lock:
            found = [
                r for r in self._reservations.values()
                if (table_id is None or r.table_id == table_id)
                and (start is None or r.start_time >= start)
                and (end is None or r.start_time < end)
                and (wanted is None or r.state in wanted)
            ]
            found.sort(key=lambda r: (r.start_time, r.table_id))
            return copy.deepcopy(found)

    def clear(self) -> None:
        """Clear all state."""
        with self._lock:
            self._tables.clear()
            self._orders.clear()
            self._invoices.clear()
            self._reservations.clear()
            self._invoice_sequences.clear()
