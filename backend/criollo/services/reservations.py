"""
Reservation booking and the reservation lifecycle.

Windows are half-open [start, start + duration). Only reservations that still
claim their slot (everything but cancelled and no-show, so completed ones
still count) take part in conflict detection. Booking never touches table
state; a table only flips to reserved when the reservation enters the hold
horizon (see hold_upcoming).
"""

import logging
from datetime import datetime, timedelta, tzinfo
from typing import Dict, FrozenSet, List, Optional
from uuid import uuid4

from criollo.domain import (
    OPEN_RESERVATION_STATES,
    Reservation,
    ReservationState,
    Table,
    TableState,
)
from criollo.errors import ConflictError, FloorError, NotFoundError, ValidationError
from criollo.integrations import CustomerDirectory, NotificationDispatcher
from criollo.services.locks import TableLockManager, consistency_unit
from criollo.services.tables import TableRegistry
from criollo.storage import Storage
from criollo.utils.time_utils import Clock, to_local, to_utc

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[ReservationState, FrozenSet[ReservationState]] = {
    ReservationState.PENDING: frozenset({
        ReservationState.CONFIRMED,
        ReservationState.CLIENT_ARRIVED,
        ReservationState.NO_SHOW,
        ReservationState.CANCELLED,
    }),
    ReservationState.CONFIRMED: frozenset({
        ReservationState.CLIENT_ARRIVED,
        ReservationState.NO_SHOW,
        ReservationState.CANCELLED,
    }),
    ReservationState.CLIENT_ARRIVED: frozenset({
        ReservationState.COMPLETED,
        ReservationState.CANCELLED,
    }),
    ReservationState.NO_SHOW: frozenset(),
    ReservationState.CANCELLED: frozenset(),
    ReservationState.COMPLETED: frozenset(),
}

# Probe offsets (minutes) tried when the requested slot has no table.
ALTERNATIVE_OFFSETS = (-60, 60, -120, 120)
MAX_ALTERNATIVES = 5


class ReservationScheduler:
    """Books future occupancy windows and drives reservations through their states."""

    def __init__(
        self,
        storage: Storage,
        tables: TableRegistry,
        customers: CustomerDirectory,
        clock: Clock,
        locks: TableLockManager,
        notifier: NotificationDispatcher,
        local_tz: tzinfo,
        no_show_tolerance_minutes: int = 15,
        default_duration_minutes: int = 120,
        hold_minutes: int = 30,
        reminder_lead_minutes: int = 60,
    ):
        self.storage = storage
        self.tables = tables
        self.customers = customers
        self.clock = clock
        self.locks = locks
        self.notifier = notifier
        self.local_tz = local_tz
        self.no_show_tolerance = timedelta(minutes=no_show_tolerance_minutes)
        self.default_duration_minutes = default_duration_minutes
        self.hold_minutes = hold_minutes
        self.reminder_lead_minutes = reminder_lead_minutes

    def _normalize(self, start_time: datetime) -> datetime:
        return to_utc(start_time, self.local_tz)

    def _occupancy_blocks(self, table: Table, start: datetime) -> bool:
        """
        Current occupancy only matters for windows starting inside the hold
        horizon; later windows are judged on reservations alone.
        """
        if table.state not in (TableState.OCCUPIED, TableState.RESERVED):
            return False
        return start < self.clock.now() + timedelta(minutes=self.hold_minutes)

    # ---------- Queries ----------

    def get(self, reservation_id: str) -> Reservation:
        reservation = self.storage.get_reservation(reservation_id)
        if reservation is None:
            raise NotFoundError("reservation", reservation_id)
        return reservation

    def list_reservations(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        table_id: Optional[int] = None,
    ) -> List[Reservation]:
        return self.storage.list_reservations(
            table_id=table_id,
            start=self._normalize(start) if start else None,
            end=self._normalize(end) if end else None,
        )

    def conflicting_reservations(
        self,
        table_id: int,
        start_time: datetime,
        duration_minutes: int,
        exclude_id: Optional[str] = None,
    ) -> List[Reservation]:
        start = self._normalize(start_time)
        return [
            r for r in self.storage.list_reservations(table_id=table_id)
            if r.blocks_slot and r.id != exclude_id and r.overlaps(start, duration_minutes)
        ]

    def check_conflict(
        self,
        table_id: int,
        start_time: datetime,
        duration_minutes: int,
        exclude_id: Optional[str] = None,
    ) -> bool:
        return bool(self.conflicting_reservations(table_id, start_time, duration_minutes, exclude_id))

    def find_available_tables(
        self,
        start_time: datetime,
        party_size: int,
        duration_minutes: Optional[int] = None,
    ) -> List[Table]:
        """Tables that could take the party, closest capacity first, then by number."""
        start = self._normalize(start_time)
        duration = self.default_duration_minutes if duration_minutes is None else duration_minutes
        if duration <= 0:
            raise ValidationError(["duration must be positive"])
        available = [
            table for table in self.tables.list_tables()
            if table.capacity >= party_size
            and table.state != TableState.MAINTENANCE
            and not self._occupancy_blocks(table, start)
            and not self.check_conflict(table.id, start, duration)
        ]
        return sorted(available, key=lambda t: (t.capacity, t.number))

    def suggest_alternatives(
        self,
        start_time: datetime,
        party_size: int,
        duration_minutes: Optional[int] = None,
    ) -> List[Table]:
        start = self._normalize(start_time)
        now = self.clock.now()
        found: Dict[int, Table] = {}
        for offset in ALTERNATIVE_OFFSETS:
            probe = start + timedelta(minutes=offset)
            if probe <= now:
                continue
            for table in self.find_available_tables(probe, party_size, duration_minutes):
                found.setdefault(table.id, table)
                if len(found) >= MAX_ALTERNATIVES:
                    return list(found.values())
        return list(found.values())

    # ---------- Booking ----------

    def create_reservation(
        self,
        customer_id: str,
        start_time: datetime,
        party_size: int,
        duration_minutes: Optional[int] = None,
        table_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Reservation:
        start = self._normalize(start_time)
        duration = self.default_duration_minutes if duration_minutes is None else duration_minutes

        violations = []
        if party_size <= 0:
            violations.append("party size must be positive")
        if duration <= 0:
            violations.append("duration must be positive")
        if start <= self.clock.now():
            violations.append("reservation must start in the future")
        if table_id is not None:
            table = self.tables.get(table_id)
            if party_size > table.capacity:
                violations.append(
                    f"party of {party_size} exceeds capacity {table.capacity} of table {table.number}"
                )
        if violations:
            raise ValidationError(violations)
        if not self.customers.exists(customer_id):
            raise NotFoundError("customer", customer_id)

        if table_id is not None:
            reservation = self._book(table_id, customer_id, start, duration, party_size, notes)
        else:
            reservation = None
            for candidate in self.find_available_tables(start, party_size, duration):
                try:
                    reservation = self._book(candidate.id, customer_id, start, duration, party_size, notes)
                    break
                except ConflictError:
                    logger.info("Table %s was taken meanwhile, trying the next candidate", candidate.number)
            if reservation is None:
                alternatives = self.suggest_alternatives(start, party_size, duration)
                logger.warning(
                    "No table for party of %s at %s", party_size, to_local(start, self.local_tz).isoformat()
                )
                raise ConflictError(
                    f"No table available for {party_size} at {to_local(start, self.local_tz):%Y-%m-%d %H:%M}",
                    details={"alternatives": [t.number for t in alternatives]},
                )

        self.notifier.publish("reservation_created", reservation.customer_id, {
            "reservation_id": reservation.id,
            "table_id": reservation.table_id,
            "start_time": reservation.start_time.isoformat(),
            "party_size": reservation.party_size,
        })
        return reservation

    def _book(self, table_id, customer_id, start, duration, party_size, notes) -> Reservation:
        # Re-checked under the table lock so two bookings cannot race into one slot.
        with consistency_unit(self.storage, self.locks, [table_id]):
            table = self.tables.get(table_id)
            if table.state == TableState.MAINTENANCE:
                raise ConflictError(
                    f"Table {table.number} is under maintenance",
                    current=table.state.value,
                    requested="reservation",
                )
            if self._occupancy_blocks(table, start):
                raise ConflictError(
                    f"Table {table.number} is {table.state.value} right now",
                    current=table.state.value,
                    requested="reservation",
                )
            clashes = self.conflicting_reservations(table_id, start, duration)
            if clashes:
                raise ConflictError(
                    f"Table {table.number} is already booked in that window",
                    details={"conflicting_reservations": [r.id for r in clashes]},
                )
            now = self.clock.now()
            reservation = Reservation(
                id=str(uuid4()),
                table_id=table_id,
                customer_id=customer_id,
                start_time=start,
                duration_minutes=duration,
                party_size=party_size,
                created_at=now,
                state_changed_at=now,
                notes=notes,
            )
            self.storage.add_reservation(reservation)

        logger.info(
            "Reserved table %s for %s (party %s, %s min)",
            table.number, to_local(start, self.local_tz).isoformat(), party_size, duration,
        )
        return reservation

    def update_reservation(
        self,
        reservation_id: str,
        start_time: Optional[datetime] = None,
        duration_minutes: Optional[int] = None,
        party_size: Optional[int] = None,
        table_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Reservation:
        """
        Move or resize an open reservation.

        Fields left as None keep their current value. The new window is checked
        against every other reservation on the target table; the reservation's
        own slot never counts as a conflict. A hold on the old table is dropped
        when the booking leaves it or moves out of the hold horizon.
        """
        current = self.get(reservation_id)
        target_table_id = current.table_id if table_id is None else table_id

        with consistency_unit(self.storage, self.locks, [current.table_id, target_table_id]):
            reservation = self.get(reservation_id)
            if reservation.state not in OPEN_RESERVATION_STATES:
                raise ConflictError(
                    f"Reservation {reservation_id} cannot be changed while {reservation.state.value}",
                    current=reservation.state.value,
                    requested="update",
                )

            start = reservation.start_time if start_time is None else self._normalize(start_time)
            duration = reservation.duration_minutes if duration_minutes is None else duration_minutes
            party = reservation.party_size if party_size is None else party_size
            table = self.tables.get(target_table_id)

            violations = []
            if party <= 0:
                violations.append("party size must be positive")
            if duration <= 0:
                violations.append("duration must be positive")
            if start_time is not None and start <= self.clock.now():
                violations.append("reservation must start in the future")
            if party > table.capacity:
                violations.append(f"party of {party} exceeds capacity {table.capacity} of table {table.number}")
            if violations:
                raise ValidationError(violations)

            moved_table = table.id != reservation.table_id
            rescheduled = start != reservation.start_time
            held_here = table.state == TableState.RESERVED and table.active_reservation_id == reservation.id
            if table.state == TableState.MAINTENANCE:
                raise ConflictError(
                    f"Table {table.number} is under maintenance",
                    current=table.state.value,
                    requested="reservation",
                )
            if (moved_table or rescheduled) and not held_here \
                    and self._occupancy_blocks(table, start):
                raise ConflictError(
                    f"Table {table.number} is {table.state.value} right now",
                    current=table.state.value,
                    requested="reservation",
                )
            clashes = self.conflicting_reservations(table.id, start, duration, exclude_id=reservation.id)
            if clashes:
                raise ConflictError(
                    f"Table {table.number} is already booked in that window",
                    details={"conflicting_reservations": [r.id for r in clashes]},
                )

            leaves_horizon = start >= self.clock.now() + timedelta(minutes=self.hold_minutes)
            if moved_table or leaves_horizon:
                self._release_hold(reservation, f"reservation {reservation_id} moved")

            reservation.table_id = table.id
            reservation.start_time = start
            reservation.duration_minutes = duration
            reservation.party_size = party
            if notes:
                reservation.notes = notes
            if rescheduled:
                # A moved booking gets a fresh reminder.
                reservation.reminder_sent_at = None
            self.storage.save_reservation(reservation)

        logger.info(
            "Reservation %s now table %s at %s (party %s, %s min)",
            reservation_id, table.number, to_local(start, self.local_tz).isoformat(), party, duration,
        )
        self.notifier.publish("reservation_updated", reservation.customer_id, {
            "reservation_id": reservation.id,
            "table_id": reservation.table_id,
            "start_time": reservation.start_time.isoformat(),
            "party_size": reservation.party_size,
        })
        return reservation

    # ---------- Lifecycle ----------

    def _move(self, reservation: Reservation, new_state: ReservationState) -> None:
        current = reservation.state
        if new_state not in ALLOWED_TRANSITIONS[current]:
            logger.warning("Rejected reservation %s transition %s -> %s", reservation.id, current.value, new_state.value)
            raise ConflictError(
                f"Reservation {reservation.id} cannot go from {current.value} to {new_state.value}",
                current=current.value,
                requested=new_state.value,
            )
        reservation.state = new_state
        reservation.state_changed_at = self.clock.now()
        self.storage.save_reservation(reservation)
        logger.info("Reservation %s: %s -> %s", reservation.id, current.value, new_state.value)

    def _release_hold(self, reservation: Reservation, reason: str) -> None:
        table = self.tables.get(reservation.table_id)
        if table.state == TableState.RESERVED and table.active_reservation_id == reservation.id:
            self.tables.set_state(table.id, TableState.FREE, reason)

    def confirm(self, reservation_id: str) -> Reservation:
        table_id = self.get(reservation_id).table_id
        with consistency_unit(self.storage, self.locks, [table_id]):
            reservation = self.get(reservation_id)
            if reservation.state != ReservationState.PENDING:
                raise ConflictError(
                    f"Reservation {reservation_id} cannot be confirmed while {reservation.state.value}",
                    current=reservation.state.value,
                    requested=ReservationState.CONFIRMED.value,
                )
            self._move(reservation, ReservationState.CONFIRMED)
        return reservation

    def client_arrives(self, reservation_id: str) -> Reservation:
        """Seat the party: the reservation moves to client_arrived and the table to occupied."""
        table_id = self.get(reservation_id).table_id
        with consistency_unit(self.storage, self.locks, [table_id]):
            reservation = self.get(reservation_id)
            self._move(reservation, ReservationState.CLIENT_ARRIVED)
            self.tables.set_state(table_id, TableState.OCCUPIED, f"reservation {reservation_id} arrived")
        return reservation

    def mark_no_show(self, reservation_id: str) -> Reservation:
        table_id = self.get(reservation_id).table_id
        with consistency_unit(self.storage, self.locks, [table_id]):
            reservation = self.get(reservation_id)
            deadline = reservation.start_time + self.no_show_tolerance
            if reservation.state in OPEN_RESERVATION_STATES and self.clock.now() <= deadline:
                raise ConflictError(
                    f"Reservation {reservation_id} is still within its tolerance window "
                    f"(until {to_local(deadline, self.local_tz):%H:%M})",
                    current=reservation.state.value,
                    requested=ReservationState.NO_SHOW.value,
                )
            self._move(reservation, ReservationState.NO_SHOW)
            self._release_hold(reservation, f"reservation {reservation_id} no-show")
        return reservation

    def cancel(self, reservation_id: str, reason: Optional[str] = None) -> Reservation:
        table_id = self.get(reservation_id).table_id
        with consistency_unit(self.storage, self.locks, [table_id]):
            reservation = self.get(reservation_id)
            self._move(reservation, ReservationState.CANCELLED)
            if reason:
                reservation.notes = f"{reservation.notes}\n{reason}" if reservation.notes else reason
                self.storage.save_reservation(reservation)
            self._release_hold(reservation, f"reservation {reservation_id} cancelled")

        self.notifier.publish("reservation_cancelled", reservation.customer_id, {
            "reservation_id": reservation.id,
            "start_time": reservation.start_time.isoformat(),
            "reason": reason,
        })
        return reservation

    def complete(self, reservation_id: str) -> Reservation:
        table_id = self.get(reservation_id).table_id
        with consistency_unit(self.storage, self.locks, [table_id]):
            reservation = self.get(reservation_id)
            self._move(reservation, ReservationState.COMPLETED)
        return reservation

    # ---------- Periodic jobs ----------

    def hold_upcoming(self, lead_minutes: Optional[int] = None) -> List[Reservation]:
        """Mark free tables reserved for open reservations starting within lead_minutes."""
        lead = self.hold_minutes if lead_minutes is None else lead_minutes
        now = self.clock.now()
        upcoming = self.storage.list_reservations(
            start=now - self.no_show_tolerance,
            end=now + timedelta(minutes=lead),
            states=OPEN_RESERVATION_STATES,
        )
        held = []
        for reservation in upcoming:
            with consistency_unit(self.storage, self.locks, [reservation.table_id]):
                table = self.tables.get(reservation.table_id)
                if table.state != TableState.FREE:
                    logger.debug("Table %s is %s, not holding it for %s",
                                 table.number, table.state.value, reservation.id)
                    continue
                self.tables.set_state(
                    table.id, TableState.RESERVED,
                    f"held for reservation {reservation.id}", reservation_id=reservation.id,
                )
                held.append(reservation)
        return held

    def send_reminders(self, lead_minutes: Optional[int] = None) -> List[Reservation]:
        """Queue one reservation_reminder per open reservation starting within lead_minutes."""
        lead = self.reminder_lead_minutes if lead_minutes is None else lead_minutes
        now = self.clock.now()
        due = [
            r for r in self.storage.list_reservations(
                start=now,
                end=now + timedelta(minutes=lead),
                states=OPEN_RESERVATION_STATES,
            )
            if r.reminder_sent_at is None
        ]
        reminded = []
        for candidate in due:
            with consistency_unit(self.storage, self.locks, [candidate.table_id]):
                reservation = self.get(candidate.id)
                if reservation.state not in OPEN_RESERVATION_STATES or reservation.reminder_sent_at is not None:
                    continue
                reservation.reminder_sent_at = now
                self.storage.save_reservation(reservation)
            self.notifier.publish("reservation_reminder", reservation.customer_id, {
                "reservation_id": reservation.id,
                "table_id": reservation.table_id,
                "start_time": reservation.start_time.isoformat(),
                "minutes_until": int((reservation.start_time - now).total_seconds() // 60),
            })
            reminded.append(reservation)
        if reminded:
            logger.info("Queued %d reservation reminder(s)", len(reminded))
        return reminded

    def sweep_no_shows(self) -> List[Reservation]:
        """Mark every open reservation past its tolerance window as a no-show."""
        cutoff = self.clock.now() - self.no_show_tolerance
        overdue = self.storage.list_reservations(end=cutoff, states=OPEN_RESERVATION_STATES)
        swept = []
        for reservation in overdue:
            try:
                swept.append(self.mark_no_show(reservation.id))
            except FloorError as exc:
                logger.warning("Skipping no-show sweep for reservation %s: %s", reservation.id, exc)
        if swept:
            logger.info("Marked %d reservation(s) as no-show", len(swept))
        return swept
