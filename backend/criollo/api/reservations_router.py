"""Reservations API router."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel

from criollo.api.dependencies import get_coordinator
from criollo.api.tables_router import TableResponse
from criollo.domain import Reservation
from criollo.services.floor import FloorCoordinator


class CreateReservationRequest(BaseModel):
    """
    Book a table. start_time without an offset is read as restaurant-local
    time; omit table_id to let the scheduler pick the closest fit.
    """
    customer_id: str
    start_time: datetime
    party_size: int
    duration_minutes: Optional[int] = None
    table_id: Optional[int] = None
    notes: Optional[str] = None


class UpdateReservationRequest(BaseModel):
    """Only the fields sent are changed."""
    start_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    party_size: Optional[int] = None
    table_id: Optional[int] = None
    notes: Optional[str] = None


class CancelReservationRequest(BaseModel):
    reason: Optional[str] = None


class ReservationResponse(BaseModel):
    id: str
    table_id: int
    customer_id: str
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    party_size: int
    state: str
    notes: Optional[str] = None
    created_at: datetime
    state_changed_at: Optional[datetime] = None
    reminder_sent_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_domain(cls, reservation: Reservation) -> "ReservationResponse":
        return cls(
            id=reservation.id,
            table_id=reservation.table_id,
            customer_id=reservation.customer_id,
            start_time=reservation.start_time,
            end_time=reservation.end_time,
            duration_minutes=reservation.duration_minutes,
            party_size=reservation.party_size,
            state=reservation.state.value,
            notes=reservation.notes,
            created_at=reservation.created_at,
            state_changed_at=reservation.state_changed_at,
            reminder_sent_at=reservation.reminder_sent_at,
        )


class SweepResponse(BaseModel):
    no_shows: int
    held: int
    reminders: int


router = APIRouter(prefix="/api/reservations", tags=["reservations"])


@router.post("", status_code=201)
async def create_reservation(
    request: CreateReservationRequest,
    background_tasks: BackgroundTasks,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> ReservationResponse:
    """
    Book a reservation.

    - **409** when the table is taken; without table_id the error details list
      alternative table numbers around the requested time
    - **422** for a past start time or a party larger than the table
    """
    reservation = coordinator.reservations.create_reservation(
        customer_id=request.customer_id,
        start_time=request.start_time,
        party_size=request.party_size,
        duration_minutes=request.duration_minutes,
        table_id=request.table_id,
        notes=request.notes,
    )
    background_tasks.add_task(coordinator.flush_notifications)
    return ReservationResponse.from_domain(reservation)


@router.get("")
async def list_reservations(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    table_id: Optional[int] = Query(None),
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> List[ReservationResponse]:
    reservations = coordinator.reservations.list_reservations(start=start, end=end, table_id=table_id)
    return [ReservationResponse.from_domain(r) for r in reservations]


@router.get("/availability")
async def find_available_tables(
    start_time: datetime,
    party_size: int = Query(..., ge=1),
    duration_minutes: Optional[int] = Query(None, ge=1),
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> List[TableResponse]:
    tables = coordinator.reservations.find_available_tables(start_time, party_size, duration_minutes)
    return [TableResponse.from_domain(t) for t in tables]


@router.post("/sweep")
async def run_sweep(
    background_tasks: BackgroundTasks,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> SweepResponse:
    """Mark overdue reservations as no-show, hold tables and queue reminders."""
    result = coordinator.run_periodic()
    background_tasks.add_task(coordinator.flush_notifications)
    return SweepResponse(**result)


@router.post("/reminders")
async def send_reminders(
    background_tasks: BackgroundTasks,
    lead_minutes: Optional[int] = Query(None, ge=1),
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> List[ReservationResponse]:
    """Queue reminders for reservations starting within lead_minutes (default from settings)."""
    reminded = coordinator.reservations.send_reminders(lead_minutes)
    background_tasks.add_task(coordinator.flush_notifications)
    return [ReservationResponse.from_domain(r) for r in reminded]


@router.get("/{reservation_id}")
async def get_reservation(
    reservation_id: str,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> ReservationResponse:
    return ReservationResponse.from_domain(coordinator.get_reservation(reservation_id))


@router.post("/{reservation_id}/confirm")
async def confirm_reservation(
    reservation_id: str,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> ReservationResponse:
    return ReservationResponse.from_domain(coordinator.reservations.confirm(reservation_id))


@router.post("/{reservation_id}/arrive")
async def client_arrives(
    reservation_id: str,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> ReservationResponse:
    return ReservationResponse.from_domain(coordinator.reservations.client_arrives(reservation_id))


@router.post("/{reservation_id}/no-show")
async def mark_no_show(
    reservation_id: str,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> ReservationResponse:
    return ReservationResponse.from_domain(coordinator.reservations.mark_no_show(reservation_id))


@router.post("/{reservation_id}/cancel")
async def cancel_reservation(
    reservation_id: str,
    background_tasks: BackgroundTasks,
    request: Optional[CancelReservationRequest] = None,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> ReservationResponse:
    reservation = coordinator.reservations.cancel(reservation_id, request.reason if request else None)
    background_tasks.add_task(coordinator.flush_notifications)
    return ReservationResponse.from_domain(reservation)


@router.post("/{reservation_id}/complete")
async def complete_reservation(
    reservation_id: str,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> ReservationResponse:
    return ReservationResponse.from_domain(coordinator.reservations.complete(reservation_id))


@router.patch("/{reservation_id}")
async def update_reservation(
    reservation_id: str,
    request: UpdateReservationRequest,
    background_tasks: BackgroundTasks,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> ReservationResponse:
    """
    Move or resize a pending or confirmed reservation.

    - **409** when the new window clashes with another booking on the table
    - **422** for a past start time or a party larger than the table
    """
    reservation = coordinator.reservations.update_reservation(
        reservation_id,
        start_time=request.start_time,
        duration_minutes=request.duration_minutes,
        party_size=request.party_size,
        table_id=request.table_id,
        notes=request.notes,
    )
    background_tasks.add_task(coordinator.flush_notifications)
    return ReservationResponse.from_domain(reservation)
