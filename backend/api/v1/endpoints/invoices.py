from typing import Optional
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from ....core.dependencies import (
    get_db,
    get_current_user,
    get_current_staff_user,
    ensure_customer_access,
    PaginationParams,
)
from ....models.enums import InvoiceType, InvoiceStatus
from ....models.user import User
from ....schemas.base import PaginatedResponse
from ....schemas.invoice import Invoice, RegenerationResult
from ....schemas.quote import SendForApproval
from ....services.invoice_service import InvoiceService
from ....services.order_service import OrderService
from ....services.quote_service import QuoteService

router = APIRouter()


@router.get("/", response_model=PaginatedResponse[Invoice])
async def list_invoices(
    customer_id: Optional[int] = Query(None),
    invoice_type: Optional[InvoiceType] = Query(None),
    invoice_status: Optional[InvoiceStatus] = Query(None, alias="status"),
    pagination: PaginationParams = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    if not current_user.is_staff:
        customer_id = current_user.customer_id
    return InvoiceService(db).list_invoices(
        customer_id=customer_id, invoice_type=invoice_type, status=invoice_status,
        skip=pagination.offset, limit=pagination.size,
    )


@router.post("/regenerate-missing", response_model=RegenerationResult)
async def regenerate_missing_invoices(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    """
    Commercial invoices for shipped or delivered orders that have none
    """
    return InvoiceService(db).regenerate_missing_invoices()


@router.post("/quotes/{quote_id}/proforma", response_model=Invoice, status_code=status.HTTP_201_CREATED)
async def generate_proforma_invoice(
    quote_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    quote = QuoteService(db).get_quote(quote_id)
    return InvoiceService(db).generate_proforma_invoice(quote)


@router.post("/orders/{order_id}/commercial", response_model=Invoice, status_code=status.HTTP_201_CREATED)
async def generate_commercial_invoice(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    order = OrderService(db).get_order(order_id)
    return InvoiceService(db).generate_commercial_invoice(order)


@router.post("/orders/{order_id}/packing-list", response_model=Invoice, status_code=status.HTTP_201_CREATED)
async def generate_packing_list(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    order = OrderService(db).get_order(order_id)
    return InvoiceService(db).generate_packing_list(order)


@router.get("/{invoice_id}", response_model=Invoice)
async def get_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    invoice = InvoiceService(db).get_invoice(invoice_id)
    ensure_customer_access(current_user, invoice.customer_id)
    return invoice


@router.get("/{invoice_id}/pdf")
async def download_invoice_pdf(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    service = InvoiceService(db)
    invoice = service.get_invoice(invoice_id)
    ensure_customer_access(current_user, invoice.customer_id)
    return Response(
        content=service.render_pdf(invoice_id),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{invoice.invoice_number}.pdf"'},
    )


@router.post("/{invoice_id}/send")
async def send_invoice(
    invoice_id: int,
    send_data: SendForApproval,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    """
    Email the invoice PDF to the customer, or to the given address
    """
    result = InvoiceService(db).send_invoice(invoice_id, email=send_data.email)
    return {"invoice_id": invoice_id, "email_status": result.status, "error": result.error}


@router.post("/{invoice_id}/mark-paid", response_model=Invoice)
async def mark_invoice_paid(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff_user)
):
    return InvoiceService(db).mark_invoice_paid(invoice_id)
