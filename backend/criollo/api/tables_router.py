"""Table registry API router."""

from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from criollo.api.dependencies import get_coordinator, money
from criollo.api.orders_router import OrderResponse
from criollo.domain import Table, TableState
from criollo.services.floor import FloorCoordinator


class TableResponse(BaseModel):
    """Table with its current occupancy state."""
    id: int
    number: int
    capacity: int
    state: str
    state_changed_at: Optional[datetime] = None
    state_reason: Optional[str] = None
    location: Optional[str] = None
    active_reservation_id: Optional[str] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_domain(cls, table: Table) -> "TableResponse":
        return cls(
            id=table.id,
            number=table.number,
            capacity=table.capacity,
            state=table.state.value,
            state_changed_at=table.state_changed_at,
            state_reason=table.state_reason,
            location=table.location,
            active_reservation_id=table.active_reservation_id,
        )


class RegisterTableRequest(BaseModel):
    number: int
    capacity: int
    location: Optional[str] = None


class TableStateRequest(BaseModel):
    """Request body for a manual state change (e.g. maintenance)."""
    state: TableState
    reason: Optional[str] = None


class FloorSummaryResponse(BaseModel):
    total_tables: int
    tables_by_state: Dict[str, int]
    total_capacity: int
    occupied_capacity: int
    occupancy_rate: float


class InvoicePreviewResponse(BaseModel):
    subtotal: float
    discount: float
    tax: float
    tip: float
    total: float


router = APIRouter(prefix="/api/tables", tags=["tables"])


@router.get("")
async def list_tables(coordinator: FloorCoordinator = Depends(get_coordinator)) -> List[TableResponse]:
    """List every table with its state, ordered by table number."""
    return [TableResponse.from_domain(t) for t in coordinator.list_tables()]


@router.post("", status_code=201)
async def register_table(
    request: RegisterTableRequest,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> TableResponse:
    table = coordinator.tables.register_table(request.number, request.capacity, request.location)
    return TableResponse.from_domain(table)


@router.get("/summary")
async def floor_summary(coordinator: FloorCoordinator = Depends(get_coordinator)) -> FloorSummaryResponse:
    summary = coordinator.floor_summary()
    return FloorSummaryResponse(
        total_tables=summary.total_tables,
        tables_by_state={state.value: count for state, count in summary.tables_by_state.items()},
        total_capacity=summary.total_capacity,
        occupied_capacity=summary.occupied_capacity,
        occupancy_rate=summary.occupancy_rate,
    )


@router.get("/{table_id}")
async def get_table(table_id: int, coordinator: FloorCoordinator = Depends(get_coordinator)) -> TableResponse:
    return TableResponse.from_domain(coordinator.get_table(table_id))


@router.post("/{table_id}/state")
async def set_table_state(
    table_id: int,
    request: TableStateRequest,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> TableResponse:
    """
    Move a table to another state.

    - **409** when the transition is not allowed, or when freeing a table
      that still has unsettled orders
    """
    table = coordinator.tables.set_state(table_id, request.state, request.reason)
    return TableResponse.from_domain(table)


@router.get("/{table_id}/orders")
async def list_active_orders(
    table_id: int,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> List[OrderResponse]:
    """Orders on the table that are neither invoiced nor cancelled."""
    return [OrderResponse.from_domain(o) for o in coordinator.active_orders(table_id)]


@router.get("/{table_id}/invoice-preview")
async def preview_group_invoice(
    table_id: int,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> InvoicePreviewResponse:
    totals = coordinator.invoices.preview_group_invoice(table_id)
    return InvoicePreviewResponse(
        subtotal=money(totals.subtotal),
        discount=money(totals.discount),
        tax=money(totals.tax),
        tip=money(totals.tip),
        total=money(totals.total),
    )
