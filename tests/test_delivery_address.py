from datetime import datetime, timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from backend.core.exceptions import BadRequestError, InvalidMagicLinkError
from backend.models.enums import OrderStatus, TokenType, UserRole
from backend.models.notification import AuditLog, EmailLog, Notification
from backend.models.quote import MagicLinkToken
from backend.schemas.customer import CustomerAddressCreate
from backend.services.delivery_address_service import DeliveryAddressService
from backend.services.quote_service import QuoteService


def _token(result):
    return parse_qs(urlparse(result["address_url"]).query)["token"][0]


ADDRESS = {
    "recipient_name": "Ama Mensah",
    "phone": "+233201234567",
    "street_address": "14 Ring Road East",
    "city": "Accra",
    "region": "Greater Accra",
    "digital_address": "GA-183-8164",
}


class TestRequestDeliveryAddress:
    def test_emails_a_single_use_link(self, db, make):
        customer = make.customer()
        order = make.order(customer)

        result = DeliveryAddressService(db).request_delivery_address(order.id, actor="sales")

        token = _token(result)
        assert result["address_url"].startswith("http://localhost:8000/delivery-address?token=")
        assert result["email_status"] == "skipped"
        link = db.query(MagicLinkToken).one()
        assert link.token_type == TokenType.DELIVERY_ADDRESS
        assert link.order_id == order.id
        assert link.quote_id is None
        assert link.token_hash != token
        assert (link.expires_at - datetime.utcnow()).days in (6, 7)
        assert db.query(EmailLog).filter_by(email_type="delivery_address_request").one().recipient == customer.email
        assert db.query(Notification).filter_by(type="delivery_address_request").count() == 1
        assert db.query(AuditLog).filter_by(event_type="delivery_address_requested").count() == 1

    def test_shipped_order_is_refused(self, db, make):
        order = make.order(make.customer(), OrderStatus.SHIPPED)
        with pytest.raises(BadRequestError):
            DeliveryAddressService(db).request_delivery_address(order.id)

    def test_endpoint_is_staff_only(self, client, make, staff_headers, headers_for):
        customer = make.customer()
        order = make.order(customer)
        buyer = make.user(role=UserRole.CUSTOMER, customer_id=customer.id)
        url = f"/api/v1/orders/{order.id}/request-delivery-address"

        assert client.post(url, headers=headers_for(buyer)).status_code == 403
        response = client.post(url, json={"email": "stores@acme.example.com"}, headers=staff_headers)
        assert response.status_code == 200
        assert response.json()["order_id"] == order.id


class TestConfirmDeliveryAddress:
    def test_address_is_saved_and_attached(self, db, make, admin):
        customer = make.customer()
        existing = make.address(customer)
        order = make.order(customer)
        service = DeliveryAddressService(db)
        token = _token(service.request_delivery_address(order.id))

        confirmed = service.confirm_delivery_address(
            token, CustomerAddressCreate(is_default=True, **ADDRESS), ip_address="41.66.1.2"
        )

        address = confirmed.delivery_address
        assert address.street_address == "14 Ring Road East"
        assert address.customer_id == customer.id
        assert address.is_default is True
        db.refresh(existing)
        assert existing.is_default is False
        link = db.query(MagicLinkToken).one()
        assert link.used_at is not None
        assert link.get_metadata("ip_address") == "41.66.1.2"
        assert admin.notifications.filter_by(type="delivery_address_confirmed").count() == 1

        with pytest.raises(InvalidMagicLinkError) as exc:
            service.confirm_delivery_address(token, CustomerAddressCreate(**ADDRESS))
        assert exc.value.title == "Already Processed"
        assert len(customer.addresses) == 2

    def test_expired_link(self, db, make):
        order = make.order(make.customer())
        service = DeliveryAddressService(db)
        token = _token(service.request_delivery_address(order.id))

        with pytest.raises(InvalidMagicLinkError) as exc:
            service.resolve_address_token(token, now=datetime.utcnow() + timedelta(days=8))
        assert exc.value.title == "Link Expired"

    def test_links_are_not_interchangeable(self, db, make):
        customer = make.customer()
        address_token = _token(DeliveryAddressService(db).request_delivery_address(make.order(customer).id))
        quote = make.quote(customer)
        quote_url = QuoteService(db).send_for_approval(quote.id)["approval_url"]
        quote_token = parse_qs(urlparse(quote_url).query)["token"][0]

        with pytest.raises(InvalidMagicLinkError):
            DeliveryAddressService(db).resolve_address_token(quote_token)
        with pytest.raises(InvalidMagicLinkError):
            QuoteService(db).resolve_approval_token(address_token)


class TestDeliveryAddressPages:
    def test_form_then_submit(self, client, db, make):
        order = make.order(make.customer())
        token = _token(DeliveryAddressService(db).request_delivery_address(order.id))

        page = client.get("/delivery-address", params={"token": token})
        assert page.status_code == 200
        assert order.order_number in page.text

        done = client.post("/delivery-address", data={"token": token, **ADDRESS})
        assert done.status_code == 200
        assert "Address Confirmed" in done.text
        db.refresh(order)
        assert order.delivery_address.city == "Accra"

        again = client.get("/delivery-address", params={"token": token})
        assert again.status_code == 400
        assert "Already Processed" in again.text

    def test_missing_street_is_rejected(self, client, db, make):
        order = make.order(make.customer())
        token = _token(DeliveryAddressService(db).request_delivery_address(order.id))

        response = client.post("/delivery-address", data={"token": token, "city": "Accra"})

        assert response.status_code == 400
        assert "Invalid Address" in response.text
        db.refresh(order)
        assert order.delivery_address_id is None

    def test_unknown_token(self, client):
        response = client.get("/delivery-address", params={"token": "not-a-real-token"})
        assert response.status_code == 400
        assert "Link Expired" in response.text
