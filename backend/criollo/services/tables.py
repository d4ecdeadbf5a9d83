"""Table occupancy state machine."""

import logging
from typing import TYPE_CHECKING, Dict, FrozenSet, List, Optional

from criollo.domain import FloorSummary, Table, TableState
from criollo.errors import ConflictError, NotFoundError, ValidationError
from criollo.services.locks import TableLockManager, consistency_unit
from criollo.storage import Storage
from criollo.utils.time_utils import Clock

if TYPE_CHECKING:
    from criollo.services.orders import OrderLedger

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[TableState, FrozenSet[TableState]] = {
    TableState.FREE: frozenset({TableState.OCCUPIED, TableState.RESERVED, TableState.MAINTENANCE}),
    TableState.OCCUPIED: frozenset({TableState.FREE, TableState.MAINTENANCE}),
    TableState.RESERVED: frozenset({TableState.OCCUPIED, TableState.FREE, TableState.MAINTENANCE}),
    TableState.MAINTENANCE: frozenset({TableState.FREE}),
}


class TableRegistry:
    """Owns each table's occupancy state and its valid transitions."""

    def __init__(self, storage: Storage, clock: Clock, locks: TableLockManager):
        self.storage = storage
        self.clock = clock
        self.locks = locks
        self._ledger: Optional["OrderLedger"] = None

    def bind_ledger(self, ledger: "OrderLedger") -> None:
        """Wire the ledger consulted before an occupied table is freed."""
        self._ledger = ledger

    def register_table(self, number: int, capacity: int, location: Optional[str] = None) -> Table:
        violations = []
        if number <= 0:
            violations.append("table number must be positive")
        if capacity <= 0:
            violations.append("capacity must be positive")
        if violations:
            raise ValidationError(violations)

        with self.storage.atomic():
            if any(t.number == number for t in self.storage.list_tables()):
                raise ConflictError(f"Table number {number} already exists")
            table = self.storage.add_table(Table(
                id=0,
                number=number,
                capacity=capacity,
                location=location,
                state_changed_at=self.clock.now(),
                state_reason="registered",
            ))
        logger.info("Registered table %s (capacity %s)", table.number, table.capacity)
        return table

    def get(self, table_id: int) -> Table:
        table = self.storage.get_table(table_id)
        if table is None:
            raise NotFoundError("table", table_id)
        return table

    def list_tables(self) -> List[Table]:
        return self.storage.list_tables()

    def can_release(self, table_id: int) -> bool:
        """True when no unsettled order remains on the table."""
        if self._ledger is None:
            raise RuntimeError("TableRegistry has no OrderLedger bound")
        return not self._ledger.has_unsettled_orders(table_id)

    def set_state(
        self,
        table_id: int,
        new_state: TableState,
        reason: Optional[str] = None,
        reservation_id: Optional[str] = None,
    ) -> Table:
        """
        Move a table to new_state, enforcing the transition table.

        reservation_id records which reservation holds the table when moving
        to RESERVED; any other transition clears it.
        """
        new_state = TableState(new_state)
        with consistency_unit(self.storage, self.locks, [table_id]):
            table = self.get(table_id)
            current = table.state
            if new_state not in ALLOWED_TRANSITIONS[current]:
                logger.warning("Rejected table %s transition %s -> %s", table.number, current.value, new_state.value)
                raise ConflictError(
                    f"Table {table.number} cannot go from {current.value} to {new_state.value}",
                    current=current.value,
                    requested=new_state.value,
                )
            if current == TableState.OCCUPIED and new_state == TableState.FREE and not self.can_release(table_id):
                raise ConflictError(
                    f"Table {table.number} still has unsettled orders",
                    current=current.value,
                    requested=new_state.value,
                )

            table.state = new_state
            table.state_changed_at = self.clock.now()
            table.state_reason = reason
            table.active_reservation_id = reservation_id if new_state == TableState.RESERVED else None
            self.storage.save_table(table)

        logger.info("Table %s: %s -> %s (%s)", table.number, current.value, new_state.value, reason or "-")
        return table

    def release_if_settled(self, table_id: int, reason: str) -> bool:
        """Free an occupied table once every order on it is settled."""
        with consistency_unit(self.storage, self.locks, [table_id]):
            table = self.get(table_id)
            if table.state != TableState.OCCUPIED or not self.can_release(table_id):
                return False
            self.set_state(table_id, TableState.FREE, reason)
            return True

    def summary(self) -> FloorSummary:
        tables = self.storage.list_tables()
        counts = {state: 0 for state in TableState}
        for table in tables:
            counts[table.state] += 1
        return FloorSummary(
            total_tables=len(tables),
            tables_by_state=counts,
            total_capacity=sum(t.capacity for t in tables),
            occupied_capacity=sum(t.capacity for t in tables if t.state == TableState.OCCUPIED),
        )
