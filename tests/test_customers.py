import pytest

from backend.core.exceptions import ConflictError
from backend.core.security import get_password_hash
from backend.models.enums import OrderStatus, PaymentStatus, UserRole
from backend.schemas.customer import CustomerAddressCreate, CustomerCreate
from backend.services.customer_service import CustomerService


class TestAuth:
    def test_login_and_me(self, client, make):
        user = make.user(role=UserRole.STAFF, username="efua")
        user.hashed_password = get_password_hash("Warehouse2026")
        make.db.commit()

        response = client.post("/api/v1/auth/login", json={"username": "efua", "password": "Warehouse2026"})

        assert response.status_code == 200
        token = response.json()["access_token"]
        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.json()["username"] == "efua"
        assert me.json()["role"] == "staff"

    def test_wrong_password(self, client, make):
        user = make.user(username="kwame")
        user.hashed_password = get_password_hash("Warehouse2026")
        make.db.commit()

        response = client.post("/api/v1/auth/login", json={"username": "kwame", "password": "nope"})

        assert response.status_code == 401

    def test_register_requires_admin_and_strong_password(self, client, make, staff_headers, admin_headers):
        customer = make.customer()
        payload = {"email": "buyer@kumasifoods.com", "username": "kumasi", "password": "weakpassword",
                   "role": "customer", "customer_id": customer.id}

        assert client.post("/api/v1/auth/register", json=payload, headers=staff_headers).status_code == 403

        weak = client.post("/api/v1/auth/register", json=payload, headers=admin_headers)
        assert weak.status_code == 400
        assert weak.json()["field"] == "password"

        payload["password"] = "Kumasi2026"
        created = client.post("/api/v1/auth/register", json=payload, headers=admin_headers)
        assert created.status_code == 201
        assert created.json()["customer_id"] == customer.id

    def test_customer_user_needs_a_customer(self, client, admin_headers):
        payload = {"email": "x@kumasifoods.com", "username": "orphan", "password": "Kumasi2026",
                   "role": "customer"}
        response = client.post("/api/v1/auth/register", json=payload, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["field"] == "customer_id"


class TestCustomers:
    def test_single_default_address(self, db):
        customer = CustomerService(db).create_customer(CustomerCreate(
            company_name="Tamale Grains",
            email="orders@tamalegrains.com",
            preferred_currency="ghs",
            addresses=[
                CustomerAddressCreate(street_address="12 Market Rd", city="Tamale", is_default=True),
                CustomerAddressCreate(street_address="3 Depot Ln", city="Tamale", is_default=True),
            ],
        ))

        assert customer.customer_code
        assert customer.preferred_currency == "GHS"
        assert [address.is_default for address in customer.addresses] == [True, False]

        with pytest.raises(ConflictError):
            CustomerService(db).create_customer(CustomerCreate(company_name="Dup", email="orders@tamalegrains.com"))

    def test_summary(self, client, make, headers_for):
        customer = make.customer()
        make.order(customer, OrderStatus.DELIVERED, PaymentStatus.FULLY_PAID, amount_paid=1000)
        make.order(customer, OrderStatus.PROCESSING, total=400)
        make.order(customer, OrderStatus.CANCELLED, total=900)
        user = make.user(role=UserRole.CUSTOMER, customer_id=customer.id)

        response = client.get(f"/api/v1/customers/{customer.id}/summary", headers=headers_for(user))

        assert response.status_code == 200
        body = response.json()
        assert body["total_orders"] == 2
        assert body["delivered_orders"] == 1
        assert body["open_orders"] == 1
        assert body["total_order_value"] == 1400
        assert body["outstanding_balance"] == 400
        assert body["loyalty_tier"] == "bronze"
        assert body["credit"] is None

    def test_customer_users_only_see_their_own_account(self, client, make, headers_for):
        mine, other = make.customer(), make.customer()
        user = make.user(role=UserRole.CUSTOMER, customer_id=mine.id)

        assert client.get(f"/api/v1/customers/{mine.id}", headers=headers_for(user)).status_code == 200
        assert client.get(f"/api/v1/customers/{other.id}", headers=headers_for(user)).status_code == 403
