from datetime import date, timedelta

import pytest

from backend.core.exceptions import BadRequestError
from backend.models.enums import InvoiceStatus, InvoiceType, OrderStatus, PaymentStatus, QuoteStatus
from backend.models.invoice import Invoice
from backend.services.invoice_service import InvoiceService
from backend.utils.date_utils import today


class TestGeneration:
    def test_commercial_invoice_is_idempotent(self, db, make):
        order = make.order(make.customer(), OrderStatus.SHIPPED, PaymentStatus.FULLY_PAID, amount_paid=1000)
        service = InvoiceService(db)

        first = service.generate_commercial_invoice(order)
        second = service.generate_commercial_invoice(order)

        assert first.id == second.id
        assert db.query(Invoice).filter(Invoice.order_id == order.id).count() == 1
        assert first.status == InvoiceStatus.SENT
        assert first.invoice_type == InvoiceType.COMMERCIAL
        assert first.total_amount == 1000
        assert first.payment_terms == "Due on receipt"

    def test_commercial_invoice_on_credit_uses_credit_due_date(self, db, make):
        customer = make.customer()
        make.credit_terms(customer)
        due = date(2026, 11, 2)
        order = make.order(customer, OrderStatus.DELIVERED, payment_method="credit",
                           credit_amount_used=1000, credit_due_date=due)

        invoice = InvoiceService(db).generate_commercial_invoice(order)

        assert invoice.due_date == due
        assert invoice.payment_terms == "Net 14"

    def test_commercial_invoice_requires_shipped_order(self, db, make):
        order = make.order(make.customer(), OrderStatus.PROCESSING)
        with pytest.raises(BadRequestError):
            InvoiceService(db).generate_commercial_invoice(order)

    def test_packing_list_has_no_prices(self, db, make):
        order = make.order(make.customer(), OrderStatus.READY_TO_SHIP)

        packing_list = InvoiceService(db).generate_packing_list(order)

        assert packing_list.total_amount == 0
        assert [(item.quantity, item.unit_price) for item in packing_list.items] == [(10, 0)]
        assert packing_list.due_date is None

    def test_proforma_from_quote(self, db, make):
        quote = make.quote(make.customer(), QuoteStatus.ACCEPTED)

        proforma = InvoiceService(db).generate_proforma_invoice(quote)

        assert proforma.invoice_type == InvoiceType.PROFORMA
        assert proforma.status == InvoiceStatus.DRAFT
        assert proforma.total_amount == 600
        assert proforma.due_date == today() + timedelta(days=30)
        assert proforma.payment_terms == "30 days net"
        assert len(proforma.items) == 2

    def test_regenerate_missing(self, db, make):
        customer = make.customer()
        missing = make.order(customer, OrderStatus.DELIVERED)
        make.order(customer, OrderStatus.PROCESSING)

        result = InvoiceService(db).regenerate_missing_invoices()

        assert result == {"checked": 1, "generated": 1, "failed": 0}
        assert db.query(Invoice).filter(Invoice.order_id == missing.id).count() == 1


class TestLifecycle:
    def test_mark_overdue(self, db, make):
        order = make.order(make.customer(), OrderStatus.DELIVERED)
        service = InvoiceService(db)
        invoice = service.generate_commercial_invoice(order)
        invoice.due_date = today() - timedelta(days=3)
        db.commit()

        assert service.mark_overdue_invoices() == 1
        db.refresh(invoice)
        assert invoice.status == InvoiceStatus.OVERDUE

    def test_mark_paid(self, db, make):
        order = make.order(make.customer(), OrderStatus.SHIPPED)
        service = InvoiceService(db)
        invoice = service.generate_commercial_invoice(order)

        paid = service.mark_invoice_paid(invoice.id)

        assert paid.status == InvoiceStatus.PAID
        assert paid.paid_at is not None

    def test_packing_list_cannot_be_paid(self, db, make):
        order = make.order(make.customer(), OrderStatus.READY_TO_SHIP)
        service = InvoiceService(db)
        packing_list = service.generate_packing_list(order)
        with pytest.raises(BadRequestError):
            service.mark_invoice_paid(packing_list.id)

    def test_render_pdf(self, db, make):
        order = make.order(make.customer(), OrderStatus.SHIPPED)
        service = InvoiceService(db)
        invoice = service.generate_commercial_invoice(order)

        pdf = service.render_pdf(invoice.id)

        assert pdf.startswith(b"%PDF")

    def test_send_without_smtp_is_skipped(self, db, make):
        order = make.order(make.customer(), OrderStatus.SHIPPED)
        service = InvoiceService(db)
        invoice = service.generate_commercial_invoice(order)

        result = service.send_invoice(invoice.id)

        assert result.status == "skipped"


def test_pdf_endpoint(client, make, staff_headers):
    order = make.order(make.customer(), OrderStatus.SHIPPED)
    response = client.post(f"/api/v1/invoices/orders/{order.id}/commercial", headers=staff_headers)
    assert response.status_code == 201
    invoice_id = response.json()["id"]

    pdf = client.get(f"/api/v1/invoices/{invoice_id}/pdf", headers=staff_headers)

    assert pdf.status_code == 200
    assert pdf.headers["content-type"] == "application/pdf"
    assert pdf.content.startswith(b"%PDF")
