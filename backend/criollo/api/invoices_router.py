"""
Invoicing API router.

Creates single and group invoices, settles and voids them, and reports the
daily billing summary. Notifications queued by the engine are delivered in a
background task after the response is sent.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel

from criollo.api.dependencies import get_coordinator, money
from criollo.domain import Invoice, PaymentMethod
from criollo.services.floor import FloorCoordinator


# ---------- Request/Response Models ----------

class CreateInvoiceRequest(BaseModel):
    order_id: str
    discount: Decimal = Decimal("0")
    tip: Decimal = Decimal("0")
    payment_method: PaymentMethod = PaymentMethod.CASH


class GroupInvoiceRequest(BaseModel):
    """Consolidate every delivered or pending order on a table."""
    table_id: int
    discount: Decimal = Decimal("0")
    tip: Decimal = Decimal("0")
    payment_method: PaymentMethod = PaymentMethod.CASH


class PayInvoiceRequest(BaseModel):
    payment_method: Optional[PaymentMethod] = None


class VoidInvoiceRequest(BaseModel):
    reason: str


class InvoiceResponse(BaseModel):
    id: str
    number: str
    order_id: str
    order_ids: List[str]
    table_id: Optional[int]
    customer_id: Optional[str]
    subtotal: float
    discount: float
    tax: float
    tip: float
    total: float
    state: str
    payment_method: str
    created_at: datetime
    paid_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    void_reason: Optional[str] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_domain(cls, invoice: Invoice) -> "InvoiceResponse":
        return cls(
            id=invoice.id,
            number=invoice.number,
            order_id=invoice.order_id,
            order_ids=list(invoice.order_ids),
            table_id=invoice.table_id,
            customer_id=invoice.customer_id,
            subtotal=money(invoice.subtotal),
            discount=money(invoice.discount),
            tax=money(invoice.tax),
            tip=money(invoice.tip),
            total=money(invoice.total),
            state=invoice.state.value,
            payment_method=invoice.payment_method.value,
            created_at=invoice.created_at,
            paid_at=invoice.paid_at,
            voided_at=invoice.voided_at,
            void_reason=invoice.void_reason,
        )


class BillingSummaryResponse(BaseModel):
    day: date
    invoice_count: int
    paid_count: int
    pending_count: int
    voided_count: int
    subtotal: float
    itbis: float
    tips: float
    total_collected: float


router = APIRouter(prefix="/api/invoices", tags=["invoices"])


@router.post("", status_code=201)
async def create_invoice(
    request: CreateInvoiceRequest,
    background_tasks: BackgroundTasks,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> InvoiceResponse:
    """
    Invoice a single order.

    Retrying for an order that already has a pending invoice returns that
    invoice. The table is not released here; that happens on payment.
    """
    invoice = coordinator.invoices.create_invoice(
        request.order_id,
        discount=request.discount,
        tip=request.tip,
        payment_method=request.payment_method,
    )
    background_tasks.add_task(coordinator.flush_notifications)
    return InvoiceResponse.from_domain(invoice)


@router.post("/group", status_code=201)
async def create_group_invoice(
    request: GroupInvoiceRequest,
    background_tasks: BackgroundTasks,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> InvoiceResponse:
    invoice = coordinator.invoices.create_group_invoice(
        request.table_id,
        discount=request.discount,
        tip=request.tip,
        payment_method=request.payment_method,
    )
    background_tasks.add_task(coordinator.flush_notifications)
    return InvoiceResponse.from_domain(invoice)


@router.get("/summary")
async def billing_summary(
    day: Optional[date] = Query(None, description="Restaurant-local day, defaults to today"),
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> BillingSummaryResponse:
    summary = coordinator.billing_summary(day)
    return BillingSummaryResponse(
        day=summary.day,
        invoice_count=summary.invoice_count,
        paid_count=summary.paid_count,
        pending_count=summary.pending_count,
        voided_count=summary.voided_count,
        subtotal=money(summary.subtotal),
        itbis=money(summary.itbis),
        tips=money(summary.tips),
        total_collected=money(summary.total_collected),
    )


@router.get("/by-number/{number}")
async def get_invoice_by_number(
    number: str,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> InvoiceResponse:
    return InvoiceResponse.from_domain(coordinator.invoices.get_by_number(number))


@router.get("/{invoice_id}")
async def get_invoice(invoice_id: str, coordinator: FloorCoordinator = Depends(get_coordinator)) -> InvoiceResponse:
    return InvoiceResponse.from_domain(coordinator.get_invoice(invoice_id))


@router.post("/{invoice_id}/pay")
async def pay_invoice(
    invoice_id: str,
    background_tasks: BackgroundTasks,
    request: Optional[PayInvoiceRequest] = None,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> InvoiceResponse:
    """Settle a pending invoice; frees the table once nothing else is unsettled on it."""
    method = request.payment_method if request else None
    invoice = coordinator.invoices.mark_paid(invoice_id, method)
    background_tasks.add_task(coordinator.flush_notifications)
    return InvoiceResponse.from_domain(invoice)


@router.post("/{invoice_id}/void")
async def void_invoice(
    invoice_id: str,
    request: VoidInvoiceRequest,
    coordinator: FloorCoordinator = Depends(get_coordinator),
) -> InvoiceResponse:
    return InvoiceResponse.from_domain(coordinator.invoices.void(invoice_id, request.reason))
