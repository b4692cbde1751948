import pytest

from backend.core.exceptions import (
    BadRequestError,
    InvalidOrderStatusError,
    MissingDeliveryAddressError,
    PaymentRequiredError,
    QuoteStateError,
    ShippingDetailsRequiredError,
)
from backend.models.enums import InvoiceType, LedgerEntryType, OrderStatus, PaymentStatus, QuoteStatus, UserRole
from backend.models.invoice import Invoice
from backend.models.notification import AuditLog, EmailLog
from backend.services.order_service import OrderService, calculate_payment_status


@pytest.mark.parametrize("total, paid, expected", [
    (100, 0, PaymentStatus.UNPAID),
    (100, 40, PaymentStatus.PARTIALLY_PAID),
    (100, 100, PaymentStatus.FULLY_PAID),
    (100, 100.004, PaymentStatus.FULLY_PAID),
    (100, 120, PaymentStatus.OVERPAID),
])
def test_calculate_payment_status(total, paid, expected):
    assert calculate_payment_status(total, paid) == expected


class TestBulkStatusUpdate:
    def test_each_order_succeeds_or_fails_on_its_own(self, db, make):
        customer = make.customer()
        address = make.address(customer)
        ready = make.order(customer, OrderStatus.PROCESSING, PaymentStatus.FULLY_PAID, amount_paid=1000,
                           address=address)
        wrong_state = make.order(customer, OrderStatus.ORDER_CONFIRMED)
        no_address = make.order(customer, OrderStatus.PROCESSING, PaymentStatus.FULLY_PAID, amount_paid=1000)

        result = OrderService(db).bulk_update_status(
            [ready.id, wrong_state.id, no_address.id, 99999],
            OrderStatus.READY_TO_SHIP,
            notes="Loaded on truck 4",
            actor="dispatcher",
        )

        assert result["success"] == [ready.order_number]
        failures = {failure["id"]: failure["error"] for failure in result["failed"]}
        assert failures[wrong_state.order_number].startswith("Invalid transition: order_confirmed → ready_to_ship")
        assert failures[no_address.order_number] == "Missing delivery address"
        assert failures["99999"] == "Order not found"

        db.refresh(ready)
        db.refresh(wrong_state)
        assert ready.status == OrderStatus.READY_TO_SHIP
        assert "[BULK UPDATE]: Loaded on truck 4" in ready.notes
        assert ready.status_history[-1].new_status == "ready_to_ship"
        assert wrong_state.status == OrderStatus.ORDER_CONFIRMED

        audit = db.query(AuditLog).filter(AuditLog.event_type == "bulk_order_update").one()
        assert audit.details["success_count"] == 1
        assert audit.details["failed_count"] == 3
        assert audit.severity == "medium"

    def test_ready_to_ship_produces_packing_list(self, db, make):
        customer = make.customer()
        order = make.order(customer, OrderStatus.PROCESSING, PaymentStatus.FULLY_PAID, amount_paid=1000,
                           address=make.address(customer))

        OrderService(db).bulk_update_status([order.id], OrderStatus.READY_TO_SHIP)

        packing_lists = db.query(Invoice).filter(
            Invoice.order_id == order.id, Invoice.invoice_type == InvoiceType.PACKING_LIST
        ).all()
        assert len(packing_lists) == 1
        tracking = db.query(EmailLog).filter(EmailLog.email_type == "order_tracking").one()
        assert tracking.status == "skipped"


class TestUpdateStatus:
    def test_invalid_transition(self, db, make):
        order = make.order(make.customer(), OrderStatus.ORDER_CONFIRMED)
        with pytest.raises(InvalidOrderStatusError):
            OrderService(db).update_status(order.id, OrderStatus.SHIPPED)

    def test_processing_needs_verified_payment(self, db, make):
        order = make.order(make.customer(), OrderStatus.PAYMENT_RECEIVED)
        with pytest.raises(PaymentRequiredError):
            OrderService(db).update_status(order.id, OrderStatus.PROCESSING)

    def test_processing_allowed_on_credit(self, db, make):
        order = make.order(make.customer(), OrderStatus.PAYMENT_RECEIVED,
                           payment_method="credit", credit_amount_used=1000)
        updated = OrderService(db).update_status(order.id, OrderStatus.PROCESSING, actor="ops")
        assert updated.status == OrderStatus.PROCESSING
        assert updated.status_history[-1].changed_by == "ops"

    def test_shipping_needs_full_payment(self, db, make):
        customer = make.customer()
        order = make.order(customer, OrderStatus.READY_TO_SHIP, PaymentStatus.PARTIALLY_PAID,
                           amount_paid=400, address=make.address(customer))
        with pytest.raises(PaymentRequiredError) as exc:
            OrderService(db).update_status(order.id, OrderStatus.SHIPPED)
        assert "Balance: GHS 600.00" in exc.value.detail

    def test_shipping_needs_tracking_details(self, db, make):
        customer = make.customer()
        order = make.order(customer, OrderStatus.READY_TO_SHIP, PaymentStatus.FULLY_PAID,
                           amount_paid=1000, address=make.address(customer))
        with pytest.raises(ShippingDetailsRequiredError):
            OrderService(db).update_status(order.id, OrderStatus.SHIPPED)

    def test_ready_to_ship_needs_address(self, db, make):
        order = make.order(make.customer(), OrderStatus.PROCESSING, PaymentStatus.FULLY_PAID, amount_paid=1000)
        with pytest.raises(MissingDeliveryAddressError):
            OrderService(db).update_status(order.id, OrderStatus.READY_TO_SHIP)

    def test_shipped_generates_commercial_invoice(self, db, make):
        customer = make.customer()
        order = make.order(customer, OrderStatus.READY_TO_SHIP, PaymentStatus.FULLY_PAID, amount_paid=1000,
                           address=make.address(customer), carrier="DHL", tracking_number="TRK123")

        updated = OrderService(db).update_status(order.id, OrderStatus.SHIPPED)

        assert updated.shipped_at is not None
        invoice = db.query(Invoice).filter(
            Invoice.order_id == order.id, Invoice.invoice_type == InvoiceType.COMMERCIAL
        ).one()
        assert invoice.total_amount == 1000

    def test_cancel_releases_outstanding_credit(self, db, make):
        customer = make.customer()
        terms = make.credit_terms(customer, limit=5000, balance=1000)
        order = make.order(customer, OrderStatus.ORDER_CONFIRMED, payment_method="credit",
                           credit_amount_used=1000)

        OrderService(db).update_status(order.id, OrderStatus.CANCELLED, notes="Customer cancelled")

        db.refresh(terms)
        assert terms.current_balance == 0
        release = terms.ledger_entries.all()[-1]
        assert release.entry_type == LedgerEntryType.RELEASE
        assert release.amount == 1000


class TestStatusEndpoint:
    def test_failed_change_is_explained(self, client, make, staff_headers):
        order = make.order(make.customer(), OrderStatus.PAYMENT_RECEIVED)

        response = client.put(f"/api/v1/orders/{order.id}/status", json={"status": "processing"},
                              headers=staff_headers)

        assert response.status_code == 422
        body = response.json()
        assert body["error_code"] == "PAYMENT_REQUIRED"
        assert body["explanation"]["action"] == "verify-payment"

    def test_bulk_endpoint(self, client, make, staff_headers):
        customer = make.customer()
        first = make.order(customer, OrderStatus.ORDER_CONFIRMED)
        second = make.order(customer, OrderStatus.DELIVERED)

        response = client.post("/api/v1/orders/bulk-status",
                               json={"order_ids": [first.id, second.id], "status": "pending_payment"},
                               headers=staff_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] == [first.order_number]
        assert body["failed"][0]["id"] == second.order_number

    def test_customer_cannot_see_other_customers_order(self, client, make, headers_for):
        owner, other = make.customer(), make.customer()
        order = make.order(owner)
        portal_user = make.user(role=UserRole.CUSTOMER, customer_id=other.id)

        response = client.get(f"/api/v1/orders/{order.id}", headers=headers_for(portal_user))
        assert response.status_code == 403

    def test_requires_authentication(self, client):
        assert client.get("/api/v1/orders/").status_code == 401


class TestPayments:
    def test_partial_then_full_payment(self, db, make):
        order = make.order(make.customer(), OrderStatus.PENDING_PAYMENT, total=1000)
        service = OrderService(db)

        order = service.record_payment(order.id, 400, reference="BANK-1")
        assert order.payment_status == PaymentStatus.PARTIALLY_PAID
        assert order.balance_remaining == 600
        assert order.status == OrderStatus.PAYMENT_RECEIVED

        order = service.record_payment(order.id, 600)
        assert order.payment_status == PaymentStatus.FULLY_PAID
        assert order.balance_remaining == 0
        assert order.payment_reference == "BANK-1"

    def test_payment_on_credit_order_releases_credit(self, db, make):
        customer = make.customer()
        terms = make.credit_terms(customer, limit=5000, balance=1000)
        order = make.order(customer, OrderStatus.PROCESSING, payment_method="credit",
                           credit_amount_used=1000)

        order = OrderService(db).record_payment(order.id, 250, reference="MOMO-9")

        db.refresh(terms)
        assert terms.current_balance == 750
        assert order.payment_method == "credit"
        entry = terms.ledger_entries.all()[-1]
        assert entry.entry_type == LedgerEntryType.PAYMENT
        assert "MOMO-9" in entry.notes

    def test_rejects_non_positive_amount(self, db, make):
        order = make.order(make.customer(), OrderStatus.PENDING_PAYMENT)
        with pytest.raises(BadRequestError):
            OrderService(db).record_payment(order.id, 0)

    def test_reject_payment(self, db, make):
        order = make.order(make.customer(), OrderStatus.PENDING_PAYMENT)
        order = OrderService(db).reject_payment(order.id, "Proof is unreadable", actor="finance")
        assert order.status == OrderStatus.PAYMENT_REJECTED
        assert order.payment_rejection_reason == "Proof is unreadable"

    def test_reject_payment_wrong_state(self, db, make):
        order = make.order(make.customer(), OrderStatus.SHIPPED)
        with pytest.raises(InvalidOrderStatusError):
            OrderService(db).reject_payment(order.id, "late")


class TestCreateFromQuote:
    def test_accepted_quote_becomes_order(self, db, make):
        customer = make.customer()
        address = make.address(customer)
        quote = make.quote(customer, QuoteStatus.ACCEPTED)

        order = OrderService(db).create_order_from_quote(quote, actor="sales")

        assert order.total_amount == 600
        assert order.balance_remaining == 600
        assert order.delivery_address_id == address.id
        assert [item.product_name for item in order.items] == ["Cashew Nuts", "Shea Butter"]
        db.refresh(quote)
        assert quote.status == QuoteStatus.CONVERTED

    def test_credit_failure_keeps_order_and_alerts_admins(self, db, make, admin):
        quote = make.quote(make.customer(), QuoteStatus.ACCEPTED, use_credit=True)

        order = OrderService(db).create_order_from_quote(quote)

        assert order.credit_amount_used == 0
        assert order.payment_status == PaymentStatus.UNPAID
        assert admin.notifications.filter_by(type="credit_application_failed").count() == 1

    def test_quote_must_be_accepted(self, db, make):
        quote = make.quote(make.customer(), QuoteStatus.DRAFT)
        with pytest.raises(QuoteStateError):
            OrderService(db).create_order_from_quote(quote)
