# tests/conftest.py

import itertools
import os
from datetime import date, datetime

import pytest
from fastapi.testclient import TestClient

# -------------------------------------------------------------------
# Environment MUST be set BEFORE importing the backend package
# -------------------------------------------------------------------
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ORDER_FEED_ENABLED"] = "false"
os.environ["BACKGROUND_JOBS_ENABLED"] = "false"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_webhook_secret"
os.environ["REDIS_URL"] = "redis://127.0.0.1:1"
os.environ.pop("SMTP_SERVER", None)
os.environ.pop("RECAPTCHA_SECRET_KEY", None)
os.environ.pop("ADMIN_NOTIFICATION_EMAIL", None)

from backend.config.database import Base, SessionLocal, engine, get_db  # noqa: E402
from backend.core.security import create_access_token  # noqa: E402
from backend.main import app  # noqa: E402
from backend import models  # noqa: E402,F401
from backend.models.credit import CreditTerms  # noqa: E402
from backend.models.customer import Customer, CustomerAddress  # noqa: E402
from backend.models.enums import (  # noqa: E402
    CreditStatus,
    NetTerms,
    OrderStatus,
    PaymentStatus,
    QuoteStatus,
    StandingOrderFrequency,
    UserRole,
)
from backend.models.order import Order, OrderItem  # noqa: E402
from backend.models.quote import Quote, QuoteItem  # noqa: E402
from backend.models.standing_order import StandingOrder, StandingOrderItem  # noqa: E402
from backend.models.user import User  # noqa: E402

_counter = itertools.count(1)


def _next() -> int:
    return next(_counter)


class Factory:
    """Builds committed rows with sensible defaults."""

    def __init__(self, db):
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def user(self, role=UserRole.STAFF, customer_id=None, username=None):
        n = _next()
        return self._save(User(
            username=username or f"user{n}",
            email=f"user{n}@example.com",
            full_name=f"User {n}",
            hashed_password="not-a-real-hash",
            role=role,
            customer_id=customer_id,
        ))

    def customer(self, **overrides):
        n = _next()
        values = {
            "customer_code": f"CUS-{n:04d}",
            "company_name": f"Acme Traders {n}",
            "contact_name": f"Ama Mensah {n}",
            "email": f"buyer{n}@acme.example.com",
            "city": "Accra",
        }
        values.update(overrides)
        return self._save(Customer(**values))

    def address(self, customer, is_default=True):
        return self._save(CustomerAddress(
            customer_id=customer.id,
            label="Warehouse",
            street_address="12 Ring Road",
            city="Accra",
            region="Greater Accra",
            is_default=is_default,
        ))

    def order(self, customer, status=OrderStatus.ORDER_CONFIRMED, payment_status=PaymentStatus.UNPAID,
              total=1000.0, amount_paid=0.0, address=None, **overrides):
        order = Order(
            order_number=f"ORD-TEST-{_next():05d}",
            customer_id=customer.id,
            status=status,
            payment_status=payment_status,
            currency="GHS",
            total_amount=total,
            amount_paid=amount_paid,
            balance_remaining=round(total - amount_paid, 2),
            delivery_address_id=address.id if address else None,
            **overrides
        )
        order.items.append(OrderItem(product_name="Cashew Nuts", quantity=10, unit="bag",
                                     unit_price=total / 10))
        return self._save(order)

    def credit_terms(self, customer, limit=5000.0, balance=0.0, status=CreditStatus.ACTIVE,
                     net_terms=NetTerms.NET_14):
        return self._save(CreditTerms(
            customer_id=customer.id,
            credit_limit=limit,
            current_balance=balance,
            status=status,
            net_terms=net_terms,
        ))

    def quote(self, customer, status=QuoteStatus.DRAFT, valid_until=None, use_credit=False, items=None):
        quote = Quote(
            quote_number=f"QT-TEST-{_next():05d}",
            customer_id=customer.id,
            title="Cashew supply",
            status=status,
            currency="GHS",
            valid_until=valid_until,
            use_credit=use_credit,
        )
        for name, quantity, price in items or [("Cashew Nuts", 10, 50.0), ("Shea Butter", 4, 25.0)]:
            quote.items.append(QuoteItem(product_name=name, quantity=quantity, unit="bag", unit_price=price))
        quote.recalculate_total()
        return self._save(quote)

    def standing_order(self, customer, requires_approval=True, frequency=StandingOrderFrequency.WEEKLY,
                       day_of_week=1, next_scheduled_date=None, items=True, **overrides):
        standing_order = StandingOrder(
            customer_id=customer.id,
            name="Weekly cashew restock",
            frequency=frequency,
            day_of_week=day_of_week,
            currency="GHS",
            requires_approval=requires_approval,
            next_scheduled_date=next_scheduled_date or date.today(),
            **overrides
        )
        if items:
            standing_order.items.append(StandingOrderItem(product_name="Cashew Nuts", quantity=20,
                                                          unit="bag", unit_price=45.0))
        return self._save(standing_order)


def auth_headers(user) -> dict:
    token = create_access_token({"sub": user.username, "user_id": user.id, "role": str(user.role)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make(db):
    return Factory(db)


@pytest.fixture
def client(db):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def staff(make):
    return make.user(role=UserRole.STAFF)


@pytest.fixture
def admin(make):
    return make.user(role=UserRole.ADMIN)


@pytest.fixture
def headers_for():
    return auth_headers


@pytest.fixture
def staff_headers(staff):
    return auth_headers(staff)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def now():
    return datetime.utcnow()
