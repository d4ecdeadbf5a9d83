"""Order ledger API router."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from criollo.api.dependencies import get_coordinator, money
from criollo.domain import LineRequest, Order, OrderState
from criollo.services.floor import FloorCoordinator


# ---------- Request/Response Models ----------

class LineItem(BaseModel):
    product_id: str
    quantity: int
    notes: Optional[str] = None

    def to_request(self) -> LineRequest:
        return LineRequest(self.product_id, self.quantity, self.notes)


class CreateOrderRequest(BaseModel):
    """Open a ticket; omit table_id for take-out."""
    table_id: Optional[int] = None
    customer_id: Optional[str] = None
    lines: List[LineItem]
    notes: Optional[str] = None


class UpdateOrderRequest(BaseModel):
    """The full desired set of lines; the ledger diffs it against the current one."""
    lines: List[LineItem]


class OrderTransitionRequest(BaseModel):
    state: OrderState


class OrderLineResponse(BaseModel):
    id: str
    product_id: str
    quantity: int
    unit_price: float
    subtotal: float
    notes: Optional[str] = None


class OrderResponse(BaseModel):
    id: str
    table_id: Optional[int]
    customer_id: Optional[str]
    state: str
    created_at: datetime
    state_changed_at: Optional[datetime] = None
    lines: List[OrderLineResponse]
    subtotal: float
    tax: float
    total: float
    notes: Optional[str] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_domain(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            table_id=order.table_id,
            customer_id=order.customer_id,
            state=order.state.value,
            created_at=order.created_at,
            state_changed_at=order.state_changed_at,
            lines=[
                OrderLineResponse(
                    id=line.id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_price=money(line.unit_price),
                    subtotal=money(line.subtotal),
                    notes=line.notes,
                )
                for line in order.lines
            ],
            subtotal=money(order.subtotal),
            tax=money(order.tax),
            total=money(order.total),
            notes=order.notes,
        )


class OrderTotalsResponse(BaseModel):
    subtotal: float
    tax: float
    total: float
    item_count: int


router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("", status_code=201)
async def create_order(
    request: CreateOrderRequest,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> OrderResponse:
    """
    Open a new order.

    The table (if any) becomes occupied. Prices are taken from the catalog now.
    """
    order = coordinator.orders.create_order(
        table_id=request.table_id,
        customer_id=request.customer_id,
        lines=[line.to_request() for line in request.lines],
        notes=request.notes,
    )
    return OrderResponse.from_domain(order)


@router.get("/{order_id}")
async def get_order(order_id: str, coordinator: FloorCoordinator = Depends(get_coordinator)) -> OrderResponse:
    return OrderResponse.from_domain(coordinator.get_order(order_id))


@router.put("/{order_id}/lines")
async def update_order_lines(
    order_id: str,
    request: UpdateOrderRequest,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> OrderResponse:
    order = coordinator.orders.update_order(order_id, [line.to_request() for line in request.lines])
    return OrderResponse.from_domain(order)


@router.post("/{order_id}/state")
async def transition_order(
    order_id: str,
    request: OrderTransitionRequest,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> OrderResponse:
    return OrderResponse.from_domain(coordinator.orders.transition(order_id, request.state))


@router.get("/{order_id}/totals")
async def order_totals(order_id: str, coordinator: FloorCoordinator = Depends(get_coordinator)) -> OrderTotalsResponse:
    totals = coordinator.orders.compute_totals(order_id)
    return OrderTotalsResponse(
        subtotal=money(totals.subtotal),
        tax=money(totals.tax),
        total=money(totals.total),
        item_count=totals.item_count,
    )
