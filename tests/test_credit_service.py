from datetime import date, timedelta

import pytest

from backend.core.exceptions import (
    BadRequestError,
    ConflictError,
    CreditLimitExceededError,
    CreditNotAvailableError,
    CreditTermsStateError,
)
from backend.models.enums import CreditStatus, LedgerEntryType, NetTerms, OrderStatus
from backend.services.credit_service import (
    CreditService,
    calculate_available_credit,
    calculate_due_date,
    calculate_loyalty_tier,
    calculate_trust_tier,
    calculate_utilization,
    get_due_status,
    get_net_terms_label,
)
from backend.utils.date_utils import today

MONDAY = date(2026, 10, 19)


class TestHelpers:
    @pytest.mark.parametrize("net_terms, expected", [
        (NetTerms.NET_7, date(2026, 10, 26)),
        (NetTerms.NET_14, date(2026, 11, 2)),
        ("net_30", date(2026, 11, 18)),
        ("net_90", date(2026, 11, 2)),
    ])
    def test_due_date(self, net_terms, expected):
        assert calculate_due_date(MONDAY, net_terms) == expected

    def test_net_terms_label(self):
        assert get_net_terms_label(NetTerms.NET_30) == "Net 30"

    @pytest.mark.parametrize("due, label, urgent", [
        (date(2026, 10, 17), "2 days overdue", True),
        (MONDAY, "Due today", True),
        (date(2026, 10, 21), "Due in 2 days", True),
        (date(2026, 10, 29), "Due in 10 days", False),
    ])
    def test_due_status(self, due, label, urgent):
        status = get_due_status(due, today=MONDAY)
        assert status["label"] == label
        assert status["is_urgent"] is urgent

    def test_utilization_and_available(self):
        assert calculate_utilization(2500, 5000) == 50
        assert calculate_utilization(6000, 5000) == 100
        assert calculate_utilization(100, 0) == 0
        assert calculate_available_credit(5000, 6000) == 0

    @pytest.mark.parametrize("orders, revenue, tier", [
        (15, 0, "gold"),
        (0, 200000, "gold"),
        (5, 0, "silver"),
        (1, 60000, "silver"),
        (2, 1000, "bronze"),
    ])
    def test_loyalty_tier(self, orders, revenue, tier):
        assert calculate_loyalty_tier(orders, revenue) == tier

    @pytest.mark.parametrize("orders, overdue, tier", [
        (25, True, "restricted"),
        (10, False, "preferred"),
        (3, False, "trusted"),
        (1, False, "verified"),
        (0, False, "new"),
    ])
    def test_trust_tier(self, orders, overdue, tier):
        assert calculate_trust_tier(orders, overdue) == tier


class TestApplyCredit:
    def test_charges_balance_and_writes_ledger(self, db, make):
        customer = make.customer()
        terms = make.credit_terms(customer, limit=5000)
        order = make.order(customer, total=1000)

        result = CreditService(db).apply_credit_to_order(order)

        db.refresh(order)
        db.refresh(terms)
        assert order.is_on_credit
        assert order.credit_amount_used == 1000
        assert order.credit_due_date == today() + timedelta(days=14)
        assert terms.current_balance == 1000
        assert result["available_credit"] == 4000

        entry = terms.ledger_entries.one()
        assert entry.entry_type == LedgerEntryType.CHARGE
        assert entry.balance_after == 1000
        assert entry.order_id == order.id

    def test_limit_exceeded_leaves_balance_untouched(self, db, make):
        customer = make.customer()
        terms = make.credit_terms(customer, limit=5000, balance=4500)
        order = make.order(customer, total=1000)

        with pytest.raises(CreditLimitExceededError):
            CreditService(db).apply_credit_to_order(order)

        db.refresh(terms)
        db.refresh(order)
        assert terms.current_balance == 4500
        assert terms.ledger_entries.count() == 0
        assert not order.is_on_credit

    def test_no_terms(self, db, make):
        order = make.order(make.customer())
        with pytest.raises(CreditNotAvailableError):
            CreditService(db).apply_credit_to_order(order)

    def test_suspended_terms(self, db, make):
        customer = make.customer()
        make.credit_terms(customer, status=CreditStatus.SUSPENDED)
        with pytest.raises(CreditNotAvailableError):
            CreditService(db).apply_credit_to_order(make.order(customer))

    def test_overdue_credit_blocks_new_charges(self, db, make):
        customer = make.customer()
        make.credit_terms(customer, limit=5000, balance=300)
        make.order(customer, OrderStatus.SHIPPED, total=300, payment_method="credit",
                   credit_amount_used=300, credit_due_date=date(2026, 1, 1))

        with pytest.raises(CreditNotAvailableError) as exc:
            CreditService(db).apply_credit_to_order(make.order(customer))
        assert "overdue" in exc.value.detail

    def test_cannot_charge_twice(self, db, make):
        customer = make.customer()
        make.credit_terms(customer, limit=5000)
        order = make.order(customer)
        service = CreditService(db)
        service.apply_credit_to_order(order)

        with pytest.raises(ConflictError):
            service.apply_credit_to_order(order)


class TestEligibility:
    def test_needs_three_delivered_orders(self, db, make):
        customer = make.customer()
        for _ in range(2):
            make.order(customer, OrderStatus.DELIVERED)

        result = CreditService(db).check_credit_eligibility(customer.id)

        assert result["eligible"] is False
        assert result["missing_requirements"] == ["At least 3 completed orders required (2 so far)"]
        assert result["trust_tier"] == "verified"
        assert result["loyalty_tier"] == "bronze"

    def test_eligible_customer(self, db, make):
        customer = make.customer()
        for _ in range(3):
            make.order(customer, OrderStatus.DELIVERED)

        result = CreditService(db).check_credit_eligibility(customer.id)

        assert result["eligible"] is True
        assert result["lifetime_orders"] == 3
        assert result["trust_tier"] == "trusted"


class TestTermsLifecycle:
    def test_approve_suspend_reactivate(self, db, make):
        customer = make.customer()
        service = CreditService(db)

        terms = service.approve_credit_terms(customer.id, 10000, NetTerms.NET_30, approved_by="finance")
        assert terms.status == CreditStatus.ACTIVE
        assert terms.approved_by == "finance"

        terms = service.suspend_credit_terms(customer.id, "Bounced cheque")
        assert terms.status == CreditStatus.SUSPENDED
        with pytest.raises(CreditTermsStateError):
            service.suspend_credit_terms(customer.id, "again")

        terms = service.reactivate_credit_terms(customer.id, 8000)
        assert terms.status == CreditStatus.ACTIVE
        assert terms.credit_limit == 8000
        assert terms.suspension_reason is None

    def test_limit_cannot_drop_below_balance(self, db, make):
        customer = make.customer()
        make.credit_terms(customer, limit=5000, balance=3000)
        with pytest.raises(BadRequestError):
            CreditService(db).adjust_credit_limit(customer.id, 2000, "Risk review")

    def test_adjustment_is_recorded(self, db, make):
        customer = make.customer()
        terms = make.credit_terms(customer, limit=5000, balance=1000)

        CreditService(db).adjust_credit_limit(customer.id, 7500, "Good payment history")

        entry = terms.ledger_entries.one()
        assert entry.entry_type == LedgerEntryType.ADJUSTMENT
        assert entry.amount == 2500
        assert entry.balance_after == 1000


class TestOverdueDetection:
    def test_admins_hear_once_per_order(self, db, make, admin):
        customer = make.customer()
        make.credit_terms(customer, limit=5000, balance=800)
        make.order(customer, OrderStatus.SHIPPED, total=800, payment_method="credit",
                   credit_amount_used=800, credit_due_date=date(2026, 10, 10))
        service = CreditService(db)

        assert service.detect_overdue_credit(today=MONDAY) == {"overdue": 1, "notified": 1}
        assert service.detect_overdue_credit(today=MONDAY) == {"overdue": 1, "notified": 0}
        assert admin.notifications.filter_by(type="credit_overdue").count() == 1

    def test_ledger_summarises_outstanding_and_overdue(self, db, make):
        customer = make.customer()
        make.credit_terms(customer, limit=5000, balance=1300)
        make.order(customer, OrderStatus.SHIPPED, total=800, payment_method="credit",
                   credit_amount_used=800, credit_due_date=date(2026, 10, 10))
        make.order(customer, OrderStatus.PROCESSING, total=500, payment_method="credit",
                   credit_amount_used=500, credit_due_date=date(2026, 10, 30))

        ledger = CreditService(db).get_credit_ledger(customer.id, today=MONDAY)

        assert ledger["total_outstanding"] == 1300
        assert ledger["total_overdue"] == 800
        statuses = {entry["total_amount"]: entry["due_status"] for entry in ledger["entries"]}
        assert statuses == {800: "9 days overdue", 500: "Due in 11 days"}


def test_due_date_helper_endpoint(client, staff_headers):
    response = client.get("/api/v1/credit/helpers/due-date",
                          params={"net_terms": "net_7", "from_date": "2026-10-19"}, headers=staff_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["due_date"] == "2026-10-26"
    assert body["label"] == "Net 7"
