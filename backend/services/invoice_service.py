"""
Proforma invoices, commercial invoices and packing lists.

Generation is idempotent: asking for a document that already exists for
the quote or order returns the existing one.
"""
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config.settings import get_settings
from ..config.logging import get_logger, log_business_event, log_database_operation
from ..core.exceptions import NotFoundError, BadRequestError
from ..models.enums import InvoiceType, InvoiceStatus, OrderStatus
from ..models.invoice import Invoice, InvoiceItem
from ..models.order import Order
from ..models.quote import Quote
from ..repositories.base import paginate
from ..utils.date_utils import today
from ..utils.email_utils import EmailAttachment, format_money
from ..utils.identifiers import generate_reference, invoice_prefix
from ..utils.pdf_utils import render_invoice_pdf, INVOICE_TITLES
from .email_service import EmailDeliveryService
from .credit_service import get_net_terms_label

logger = get_logger(__name__)
settings = get_settings()

PROFORMA_PAYMENT_TERMS = "30 days net"
COMMERCIAL_INVOICE_STATUSES = {OrderStatus.SHIPPED, OrderStatus.DELIVERED}
PACKING_LIST_STATUSES = {
    OrderStatus.READY_TO_SHIP,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.DELIVERY_FAILED,
    OrderStatus.DELIVERY_CONFIRMATION_PENDING,
}


class InvoiceService:
    def __init__(self, db: Session, email_delivery: Optional[EmailDeliveryService] = None):
        self.db = db
        self.email_delivery = email_delivery or EmailDeliveryService(db)

    def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.db.query(Invoice).filter(Invoice.id == invoice_id).first()
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    def list_invoices(self, customer_id: int = None, invoice_type: InvoiceType = None,
                      status: InvoiceStatus = None, skip: int = 0, limit: int = 50) -> Dict:
        query = self.db.query(Invoice)
        if customer_id is not None:
            query = query.filter(Invoice.customer_id == customer_id)
        if invoice_type:
            query = query.filter(Invoice.invoice_type == invoice_type)
        if status:
            query = query.filter(Invoice.status == status)
        return paginate(query.order_by(Invoice.id.desc()), skip, limit)

    def find_existing(self, invoice_type: InvoiceType, quote_id: int = None,
                      order_id: int = None) -> Optional[Invoice]:
        query = self.db.query(Invoice).filter(
            Invoice.invoice_type == invoice_type,
            Invoice.status != InvoiceStatus.CANCELLED
        )
        if order_id is not None:
            query = query.filter(Invoice.order_id == order_id)
        else:
            query = query.filter(Invoice.quote_id == quote_id)
        return query.first()

    def _build(self, invoice_type: InvoiceType, source, lines: List, *, status: InvoiceStatus,
               quote_id: int = None, order_id: int = None, due_date=None, payment_terms: str = None,
               with_prices: bool = True) -> Invoice:
        if not source.currency:
            raise BadRequestError("Currency is required to generate an invoice", field="currency")

        invoice = Invoice(
            invoice_number=generate_reference(invoice_prefix(invoice_type)),
            invoice_type=invoice_type,
            status=status,
            customer_id=source.customer_id,
            quote_id=quote_id,
            order_id=order_id,
            currency=source.currency,
            issue_date=today(),
            due_date=due_date,
            payment_terms=payment_terms,
        )
        for line in lines:
            unit_price = line.unit_price if with_prices else 0.0
            invoice.items.append(InvoiceItem(
                product_name=line.product_name,
                description=line.description,
                quantity=line.quantity,
                unit=line.unit,
                unit_price=unit_price,
                line_total=round(line.quantity * unit_price, 2),
            ))
        invoice.subtotal = round(sum(item.line_total for item in invoice.items), 2)
        invoice.tax_amount = 0.0
        invoice.total_amount = invoice.subtotal

        self.db.add(invoice)
        self.db.commit()
        self.db.refresh(invoice)
        log_business_event(f"{invoice_type}_generated", invoice.invoice_number,
                           order_id=order_id, customer_id=source.customer_id)
        return invoice

    def generate_proforma_invoice(self, quote: Quote) -> Invoice:
        existing = self.find_existing(InvoiceType.PROFORMA, quote_id=quote.id)
        if existing:
            return existing
        if not quote.items:
            raise BadRequestError(f"Quote {quote.quote_number} has no items")

        return self._build(
            InvoiceType.PROFORMA, quote, quote.items,
            status=InvoiceStatus.DRAFT,
            quote_id=quote.id,
            due_date=today() + timedelta(days=settings.PROFORMA_DUE_DAYS),
            payment_terms=PROFORMA_PAYMENT_TERMS,
        )

    def generate_commercial_invoice(self, order: Order) -> Invoice:
        existing = self.find_existing(InvoiceType.COMMERCIAL, order_id=order.id)
        if existing:
            return existing
        if order.status not in COMMERCIAL_INVOICE_STATUSES:
            raise BadRequestError(
                f"Commercial invoice requires a shipped or delivered order (status is {order.status})"
            )

        if order.is_on_credit:
            due_date, payment_terms = order.credit_due_date, self._credit_terms_label(order)
        else:
            due_date, payment_terms = today(), "Due on receipt"
        return self._build(
            InvoiceType.COMMERCIAL, order, order.items,
            status=InvoiceStatus.SENT,
            quote_id=order.quote_id,
            order_id=order.id,
            due_date=due_date,
            payment_terms=payment_terms,
        )

    def _credit_terms_label(self, order: Order) -> str:
        terms = order.customer.credit_terms if order.customer else None
        return get_net_terms_label(terms.net_terms if terms else None)

    def generate_packing_list(self, order: Order) -> Invoice:
        existing = self.find_existing(InvoiceType.PACKING_LIST, order_id=order.id)
        if existing:
            return existing
        if order.status not in PACKING_LIST_STATUSES:
            raise BadRequestError(f"Packing list requires an order ready to ship (status is {order.status})")

        return self._build(
            InvoiceType.PACKING_LIST, order, order.items,
            status=InvoiceStatus.DRAFT,
            quote_id=order.quote_id,
            order_id=order.id,
            with_prices=False,
        )

    def mark_invoice_paid(self, invoice_id: int) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        if invoice.invoice_type == InvoiceType.PACKING_LIST:
            raise BadRequestError("Packing lists cannot be paid")
        if invoice.status == InvoiceStatus.CANCELLED:
            raise BadRequestError(f"Invoice {invoice.invoice_number} is cancelled")
        if invoice.status != InvoiceStatus.PAID:
            invoice.status = InvoiceStatus.PAID
            invoice.paid_at = datetime.utcnow()
            self.db.commit()
            self.db.refresh(invoice)
        return invoice

    def mark_overdue_invoices(self) -> int:
        count = self.db.query(Invoice).filter(
            Invoice.status == InvoiceStatus.SENT,
            Invoice.invoice_type != InvoiceType.PACKING_LIST,
            Invoice.due_date < today()
        ).update({Invoice.status: InvoiceStatus.OVERDUE}, synchronize_session=False)
        self.db.commit()
        log_database_operation("mark_overdue", Invoice.__tablename__, row_count=count)
        return count

    def render_pdf(self, invoice_id: int) -> bytes:
        return render_invoice_pdf(self.get_invoice(invoice_id))

    def send_invoice(self, invoice_id: int, email: str = None):
        """Email the invoice PDF to the customer."""
        invoice = self.get_invoice(invoice_id)
        recipient = email or (invoice.customer.email if invoice.customer else None)
        label = INVOICE_TITLES[str(invoice.invoice_type)]
        attachment = EmailAttachment(
            filename=f"{invoice.invoice_number}.pdf",
            content=render_invoice_pdf(invoice),
            content_type="application/pdf",
        )
        result = self.email_delivery.send_template(
            "invoice", recipient,
            {
                "invoice_label": label,
                "invoice_number": invoice.invoice_number,
                "customer_name": invoice.customer.company_name if invoice.customer else "",
                "currency": invoice.currency,
                "total_amount": format_money(invoice.total_amount),
            },
            email_type=f"{invoice.invoice_type}_invoice",
            attachments=[attachment],
            order_id=invoice.order_id,
            quote_id=invoice.quote_id,
            customer_id=invoice.customer_id,
        )
        if result.success and invoice.status == InvoiceStatus.DRAFT and invoice.invoice_type != InvoiceType.PACKING_LIST:
            invoice.status = InvoiceStatus.SENT
        self.db.commit()
        return result

    def regenerate_missing_invoices(self) -> Dict[str, int]:
        """Commercial invoices for shipped or delivered orders that lack one."""
        invoiced = select(Invoice.order_id).where(
            Invoice.invoice_type == InvoiceType.COMMERCIAL,
            Invoice.order_id.isnot(None)
        )
        orders = self.db.query(Order).filter(
            Order.status.in_(COMMERCIAL_INVOICE_STATUSES),
            Order.is_deleted == False,  # noqa: E712
            Order.id.notin_(invoiced)
        ).all()

        generated = failed = 0
        for order in orders:
            try:
                self.generate_commercial_invoice(order)
                generated += 1
            except Exception as e:
                self.db.rollback()
                failed += 1
                logger.error(f"Failed to regenerate invoice for order {order.order_number}: {e}")

        return {"checked": len(orders), "generated": generated, "failed": failed}
