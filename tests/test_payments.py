import json

import httpx
import pytest

from backend.core.exceptions import BadRequestError, ExternalServiceError, InvalidSignatureError, NotFoundError
from backend.core.security import compute_hmac_sha512
from backend.models.enums import OrderStatus, PaymentStatus, TransactionStatus, UserRole
from backend.models.notification import EmailLog, Notification
from backend.models.order import PaymentTransaction
from backend.services.payment_service import PaymentService, from_minor_units, to_minor_units

SECRET = "sk_test_webhook_secret"


def _signed(payload):
    body = json.dumps(payload).encode()
    return body, compute_hmac_sha512(SECRET, body)


def _charge(reference, amount_minor, event="charge.success"):
    return {
        "event": event,
        "data": {
            "id": 4099260516,
            "reference": reference,
            "amount": amount_minor,
            "currency": "GHS",
            "channel": "mobile_money",
            "gateway_response": "Approved",
            "customer": {"email": "accounts@acme.example.com"},
        },
    }


def _paystack(captured=None, status_code=200):
    def handler(request):
        if captured is not None:
            captured.append(request)
        return httpx.Response(status_code, json={
            "status": status_code < 400,
            "message": "Authorization URL created",
            "data": {"authorization_url": "https://checkout.paystack.com/abc123", "access_code": "abc123"},
        })
    return httpx.Client(base_url="https://api.paystack.co", transport=httpx.MockTransport(handler))


def _verifying(captured, gateway_status="success", amount_minor=75000):
    def handler(request):
        captured.append(request)
        return httpx.Response(200, json={
            "status": True,
            "message": "Verification successful",
            "data": {
                "id": 4099260517,
                "status": gateway_status,
                "amount": amount_minor,
                "currency": "GHS",
                "channel": "card",
                "gateway_response": "Declined" if gateway_status == "failed" else "Approved",
            },
        })
    return httpx.Client(base_url="https://api.paystack.co", transport=httpx.MockTransport(handler))


def test_minor_units():
    assert to_minor_units(1250.5) == 125050
    assert from_minor_units(125050) == 1250.5
    assert from_minor_units(None) == 0


class TestWebhook:
    def test_bad_signature_is_rejected(self, client):
        body = json.dumps(_charge("ref", 100)).encode()
        response = client.post("/api/v1/webhooks/paystack", content=body,
                               headers={"x-paystack-signature": "0" * 128})
        assert response.status_code == 401
        assert response.json()["error_code"] == "INVALID_SIGNATURE"

    def test_missing_signature_is_rejected(self, db):
        with pytest.raises(InvalidSignatureError):
            PaymentService(db).process_webhook(b"{}", None)

    def test_signed_charge_records_payment(self, client, db, make):
        order = make.order(make.customer(), OrderStatus.PENDING_PAYMENT, total=1000,
                           payment_reference="ORD-REF-1")
        body, signature = _signed(_charge("ORD-REF-1", 100000))

        response = client.post("/api/v1/webhooks/paystack", content=body,
                               headers={"x-paystack-signature": signature})

        assert response.status_code == 200
        assert response.json() == {"received": True}
        db.refresh(order)
        assert order.payment_status == PaymentStatus.FULLY_PAID
        assert order.status == OrderStatus.PAYMENT_RECEIVED
        assert order.payment_channel == "mobile_money"
        customer_email = db.query(EmailLog).filter(EmailLog.email_type == "payment_confirmation_customer").one()
        assert customer_email.recipient == "accounts@acme.example.com"

    def test_replayed_charge_is_a_duplicate(self, db, make):
        order = make.order(make.customer(), OrderStatus.PENDING_PAYMENT, total=500)
        db.add(PaymentTransaction(order_id=order.id, reference="PAY-1", amount=500, currency="GHS",
                                  status=TransactionStatus.PENDING))
        db.commit()
        body, signature = _signed(_charge("PAY-1", 50000))
        service = PaymentService(db)

        first = service.process_webhook(body, signature)
        second = service.process_webhook(body, signature)

        assert first["order_id"] == order.id
        assert second["duplicate"] is True
        db.refresh(order)
        assert order.amount_paid == 500
        transaction = service.get_transaction("PAY-1")
        assert transaction.status == TransactionStatus.SUCCESS
        assert transaction.get_metadata("gateway_transaction_id") == "4099260516"

    def test_replay_by_order_reference_is_a_duplicate(self, db, make):
        order = make.order(make.customer(), OrderStatus.PENDING_PAYMENT, total=1000,
                           payment_reference="ORD-REF-2")
        body, signature = _signed(_charge("ORD-REF-2", 100000))
        service = PaymentService(db)

        service.process_webhook(body, signature)
        second = service.process_webhook(body, signature)

        assert second["duplicate"] is True
        db.refresh(order)
        assert order.amount_paid == 1000
        assert order.balance_remaining == 0

    def test_invalid_json_body(self, db):
        body = b"not json"
        with pytest.raises(BadRequestError):
            PaymentService(db).process_webhook(body, compute_hmac_sha512(SECRET, body))

    def test_failed_charge_alerts_admins(self, db, make, admin):
        order = make.order(make.customer(), OrderStatus.PENDING_PAYMENT)
        db.add(PaymentTransaction(order_id=order.id, reference="PAY-2", amount=1000, currency="GHS",
                                  status=TransactionStatus.PENDING))
        db.commit()
        body, signature = _signed(_charge("PAY-2", 100000, event="charge.failed"))

        result = PaymentService(db).process_webhook(body, signature)

        assert result["handled"] is True
        assert PaymentService(db).get_transaction("PAY-2").status == TransactionStatus.FAILED
        assert admin.notifications.filter_by(type="payment_failed").count() == 1

    def test_unknown_event_is_ignored(self, db):
        body, signature = _signed({"event": "transfer.success", "data": {}})
        assert PaymentService(db).process_webhook(body, signature) == {"event": "transfer.success",
                                                                      "handled": False}


class TestInitialize:
    def test_creates_pending_transaction(self, db, make):
        order = make.order(make.customer(), OrderStatus.ORDER_CONFIRMED, total=750)
        requests = []
        service = PaymentService(db, http_client=_paystack(requests))

        result = service.initialize_payment(order.id, "accounts@acme.example.com", phone="+233201234567")

        assert result["authorization_url"] == "https://checkout.paystack.com/abc123"
        assert result["reference"].startswith(order.order_number)
        sent = json.loads(requests[0].content)
        assert requests[0].url.path == "/transaction/initialize"
        assert sent["amount"] == 75000
        assert sent["metadata"]["order_id"] == order.id
        assert requests[0].headers["Authorization"] == f"Bearer {SECRET}"

        db.refresh(order)
        assert order.status == OrderStatus.PENDING_PAYMENT
        assert order.payment_reference == result["reference"]

        with pytest.raises(BadRequestError):
            service.initialize_payment(order.id, "accounts@acme.example.com")

    def test_gateway_rejection(self, db, make):
        order = make.order(make.customer(), OrderStatus.PENDING_PAYMENT)
        service = PaymentService(db, http_client=_paystack(status_code=400))
        with pytest.raises(ExternalServiceError) as exc:
            service.initialize_payment(order.id, "accounts@acme.example.com")
        assert exc.value.status_code == 503
        assert db.query(PaymentTransaction).count() == 0

    def test_shipped_order_cannot_be_paid_online(self, db, make):
        order = make.order(make.customer(), OrderStatus.SHIPPED)
        with pytest.raises(BadRequestError):
            PaymentService(db, http_client=_paystack()).initialize_payment(order.id, "a@b.com")

    def test_retry_after_rejected_payment(self, db, make):
        order = make.order(make.customer(), OrderStatus.PAYMENT_REJECTED, total=750)
        service = PaymentService(db, http_client=_paystack())

        result = service.initialize_payment(order.id, "accounts@acme.example.com")

        db.refresh(order)
        assert order.status == OrderStatus.PENDING_PAYMENT

        body, signature = _signed(_charge(result["reference"], 75000))
        service.process_webhook(body, signature)

        db.refresh(order)
        assert order.status == OrderStatus.PAYMENT_RECEIVED
        assert order.payment_status == PaymentStatus.FULLY_PAID


class TestVerify:
    def _pending(self, db, make, reference, total=750):
        order = make.order(make.customer(), OrderStatus.PENDING_PAYMENT, total=total)
        db.add(PaymentTransaction(order_id=order.id, reference=reference, amount=total, currency="GHS",
                                  status=TransactionStatus.PENDING))
        db.commit()
        return order

    def test_successful_charge_is_recorded(self, db, make):
        order = self._pending(db, make, "PAY-V1")
        requests = []
        service = PaymentService(db, http_client=_verifying(requests))

        result = service.verify_payment("PAY-V1")

        assert requests[0].url.path == "/transaction/verify/PAY-V1"
        assert requests[0].headers["Authorization"] == f"Bearer {SECRET}"
        assert result["status"] == "success"
        assert result["order_number"] == order.order_number
        assert result["amount"] == 750
        db.refresh(order)
        assert order.payment_status == PaymentStatus.FULLY_PAID
        assert order.status == OrderStatus.PAYMENT_RECEIVED
        assert service.get_transaction("PAY-V1").status == TransactionStatus.SUCCESS

        again = service.verify_payment("PAY-V1")
        assert again["message"] == "Payment already verified"
        assert len(requests) == 1
        db.refresh(order)
        assert order.amount_paid == 750

    def test_failed_charge_marks_the_transaction(self, db, make):
        order = self._pending(db, make, "PAY-V2")
        service = PaymentService(db, http_client=_verifying([], gateway_status="failed"))

        result = service.verify_payment("PAY-V2")

        assert result["status"] == "failed"
        transaction = service.get_transaction("PAY-V2")
        assert transaction.status == TransactionStatus.FAILED
        assert transaction.failure_reason == "Declined"
        db.refresh(order)
        assert order.payment_status == PaymentStatus.UNPAID

    def test_unknown_reference(self, db):
        with pytest.raises(NotFoundError):
            PaymentService(db, http_client=_verifying([])).verify_payment("NOPE")

    def test_verify_endpoint_checks_customer_access(self, client, db, make, headers_for):
        order = self._pending(db, make, "PAY-V3")
        outsider = make.user(role=UserRole.CUSTOMER, customer_id=make.customer().id)
        response = client.post("/api/v1/payments/verify", json={"reference": "PAY-V3"},
                               headers=headers_for(outsider))
        assert response.status_code == 403
        db.refresh(order)
        assert order.payment_status == PaymentStatus.UNPAID


class TestBalanceRequest:
    def test_part_paid_order_gets_a_reminder(self, client, db, make, staff_headers):
        customer = make.customer()
        order = make.order(customer, OrderStatus.PAYMENT_RECEIVED, payment_status=PaymentStatus.PARTIALLY_PAID,
                           total=1000, amount_paid=400)

        response = client.post(f"/api/v1/orders/{order.id}/request-balance", headers=staff_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["balance_remaining"] == 600
        assert body["email_status"] == "skipped"
        log = db.query(EmailLog).filter(EmailLog.email_type == "balance_payment_request").one()
        assert log.recipient == customer.email
        notice = db.query(Notification).filter_by(type="balance_payment_request").one()
        assert notice.customer_id == customer.id

    def test_fully_paid_order_has_nothing_to_request(self, db, make):
        order = make.order(make.customer(), OrderStatus.PAYMENT_RECEIVED, payment_status=PaymentStatus.FULLY_PAID,
                           total=1000, amount_paid=1000)
        with pytest.raises(BadRequestError):
            PaymentService(db).request_balance_payment(order.id)
