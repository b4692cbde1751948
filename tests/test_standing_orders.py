from datetime import date

import pytest

from backend.core.exceptions import StandingOrderStateError
from backend.models.enums import (
    GenerationStatus,
    GenerationType,
    QuoteStatus,
    StandingOrderFrequency,
    StandingOrderStatus,
)
from backend.models.order import Order
from backend.models.quote import Quote
from backend.models.standing_order import StandingOrderGeneration
from backend.services.standing_order_service import (
    StandingOrderService,
    calculate_next_schedule_date,
    get_frequency_label,
)

MONDAY = date(2026, 10, 19)


@pytest.mark.parametrize("frequency, day_of_week, day_of_month, from_date, expected", [
    (StandingOrderFrequency.WEEKLY, 1, None, MONDAY, date(2026, 10, 26)),
    (StandingOrderFrequency.WEEKLY, 3, None, MONDAY, date(2026, 10, 21)),
    (StandingOrderFrequency.WEEKLY, 0, None, MONDAY, date(2026, 10, 25)),
    (StandingOrderFrequency.BIWEEKLY, 3, None, MONDAY, date(2026, 10, 28)),
    (StandingOrderFrequency.MONTHLY, None, 15, MONDAY, date(2026, 11, 15)),
    (StandingOrderFrequency.MONTHLY, None, 25, MONDAY, date(2026, 10, 25)),
    (StandingOrderFrequency.MONTHLY, None, 31, date(2026, 2, 10), date(2026, 2, 28)),
    (StandingOrderFrequency.QUARTERLY, None, 5, MONDAY, date(2027, 1, 5)),
])
def test_calculate_next_schedule_date(frequency, day_of_week, day_of_month, from_date, expected):
    assert calculate_next_schedule_date(frequency, day_of_week, day_of_month, from_date) == expected


def test_next_date_defaults_to_from_date_weekday():
    assert calculate_next_schedule_date("weekly", from_date=MONDAY) == date(2026, 10, 26)


def test_frequency_labels():
    assert get_frequency_label("biweekly") == "Every 2 Weeks"
    assert get_frequency_label("fortnightly") == "fortnightly"


class TestGeneration:
    def test_same_date_is_generated_once(self, db, make, admin):
        standing_order = make.standing_order(make.customer())
        service = StandingOrderService(db)

        first = service.generate_order_from_standing_order(standing_order.id, scheduled_date=MONDAY)
        second = service.generate_order_from_standing_order(standing_order.id, scheduled_date=MONDAY)

        assert first["success"] is True
        assert first["estimated_amount"] == 900
        assert first["order_id"] is None
        assert second == {"success": False, "skipped": True, "error": "Already generated for 2026-10-19"}

        successes = db.query(StandingOrderGeneration).filter(
            StandingOrderGeneration.standing_order_id == standing_order.id,
            StandingOrderGeneration.status == GenerationStatus.SUCCESS,
        ).count()
        assert successes == 1
        assert db.query(Quote).filter(Quote.standing_order_id == standing_order.id).count() == 1

        quote = db.get(Quote, first["quote_id"])
        assert quote.status == QuoteStatus.PENDING_APPROVAL
        assert quote.total_amount == 900
        assert admin.notifications.filter_by(type="standing_order_generated").count() == 1

    def test_no_approval_creates_order(self, db, make):
        customer = make.customer()
        make.address(customer)
        standing_order = make.standing_order(customer, requires_approval=False)

        result = StandingOrderService(db).generate_order_from_standing_order(
            standing_order.id, scheduled_date=MONDAY, actor="ops"
        )

        assert result["success"] is True
        order = db.get(Order, result["order_id"])
        assert order.total_amount == 900
        assert order.standing_order_id == standing_order.id
        assert db.get(Quote, result["quote_id"]).status == QuoteStatus.CONVERTED

        db.refresh(standing_order)
        assert standing_order.total_orders_generated == 1
        assert standing_order.last_generated_date == MONDAY

    def test_manual_run_on_paused_order_is_refused(self, db, make):
        standing_order = make.standing_order(make.customer(), status=StandingOrderStatus.PAUSED)
        with pytest.raises(StandingOrderStateError):
            StandingOrderService(db).generate_order_from_standing_order(standing_order.id)

    def test_scheduled_run_on_paused_order_is_skipped(self, db, make):
        standing_order = make.standing_order(make.customer(), status=StandingOrderStatus.PAUSED,
                                             next_scheduled_date=MONDAY)

        result = StandingOrderService(db).generate_order_from_standing_order(
            standing_order.id, GenerationType.SCHEDULED, today=MONDAY
        )

        assert result["skipped"] is True
        assert result["error"] == "Standing order is paused"
        db.refresh(standing_order)
        assert standing_order.next_scheduled_date == date(2026, 10, 26)
        assert standing_order.generations[-1].status == GenerationStatus.SKIPPED

    def test_no_items_is_a_failure(self, db, make):
        standing_order = make.standing_order(make.customer(), items=False)

        result = StandingOrderService(db).generate_order_from_standing_order(standing_order.id,
                                                                             scheduled_date=MONDAY)

        assert result["success"] is False
        assert result["error"] == "Standing order has no items"
        db.refresh(standing_order)
        assert standing_order.generations[-1].failure_reason == "Standing order has no items"

    def test_scheduled_run_without_items_fails_once_per_date(self, db, make):
        standing_order = make.standing_order(make.customer(), items=False, next_scheduled_date=MONDAY)
        service = StandingOrderService(db)

        first = service.run_due_standing_orders(today=MONDAY)
        second = service.run_due_standing_orders(today=MONDAY)

        assert first["failed"] == 1
        assert second["due"] == 0
        db.refresh(standing_order)
        assert standing_order.next_scheduled_date == date(2026, 10, 26)
        assert db.query(StandingOrderGeneration).count() == 1


class TestRunDue:
    def test_generates_due_orders_and_advances_schedule(self, db, make):
        customer = make.customer()
        due = make.standing_order(customer, next_scheduled_date=MONDAY)
        make.standing_order(customer, next_scheduled_date=date(2026, 10, 30))
        make.standing_order(customer, next_scheduled_date=MONDAY, status=StandingOrderStatus.CANCELLED)

        counts = StandingOrderService(db).run_due_standing_orders(today=MONDAY)

        assert counts == {"due": 1, "generated": 1, "skipped": 0, "failed": 0}
        db.refresh(due)
        assert due.next_scheduled_date == date(2026, 10, 26)
        assert due.generations[-1].generation_type == GenerationType.SCHEDULED

    def test_catch_up_after_a_missed_run(self, db, make):
        standing_order = make.standing_order(make.customer(), next_scheduled_date=date(2026, 10, 12))

        counts = StandingOrderService(db).run_due_standing_orders(today=MONDAY)

        assert counts["generated"] == 1
        db.refresh(standing_order)
        assert standing_order.next_scheduled_date == MONDAY

    def test_several_missed_periods_run_once(self, db, make):
        standing_order = make.standing_order(make.customer(), next_scheduled_date=date(2026, 9, 28))
        service = StandingOrderService(db)

        runs = [service.run_due_standing_orders(today=MONDAY)["generated"] for _ in range(4)]

        # the missed 28 September run, then the run due today
        assert runs == [1, 1, 0, 0]
        db.refresh(standing_order)
        assert standing_order.next_scheduled_date == date(2026, 10, 26)
        assert db.query(Quote).filter(Quote.standing_order_id == standing_order.id).count() == 2


class TestStatus:
    def test_pause_then_resume_reschedules_past_dates(self, db, make):
        standing_order = make.standing_order(make.customer(), next_scheduled_date=date(2026, 10, 5))
        service = StandingOrderService(db)

        paused = service.update_status(standing_order.id, StandingOrderStatus.PAUSED, reason="Stock count")
        assert paused.pause_reason == "Stock count"

        resumed = service.update_status(standing_order.id, StandingOrderStatus.ACTIVE, today=MONDAY)
        assert resumed.paused_at is None
        assert resumed.next_scheduled_date == MONDAY

    def test_cancelled_is_final(self, db, make):
        standing_order = make.standing_order(make.customer(), status=StandingOrderStatus.CANCELLED)
        with pytest.raises(StandingOrderStateError):
            StandingOrderService(db).update_status(standing_order.id, StandingOrderStatus.ACTIVE)


class TestEndpoints:
    def test_create_sets_first_run_on_start_date(self, client, make, staff_headers):
        customer = make.customer()
        payload = {
            "customer_id": customer.id,
            "name": "Monday shea restock",
            "frequency": "weekly",
            "day_of_week": 1,
            "start_date": "2026-10-19",
            "items": [{"product_name": "Shea Butter", "quantity": 12, "unit": "tub", "unit_price": 30}],
        }

        response = client.post("/api/v1/standing-orders/", json=payload, headers=staff_headers)

        assert response.status_code == 201
        body = response.json()
        assert body["next_scheduled_date"] == "2026-10-19"
        assert body["day_of_week_label"] == "Monday"
        assert body["estimated_amount"] == 360
        assert body["currency"] == "GHS"

    def test_preview_next_date(self, client, staff_headers):
        response = client.post(
            "/api/v1/standing-orders/next-date",
            json={"frequency": "quarterly", "day_of_month": 5, "from_date": "2026-10-19"},
            headers=staff_headers,
        )
        assert response.status_code == 200
        assert response.json() == {"next_date": "2027-01-05", "frequency_label": "Quarterly"}

    def test_manual_generate(self, client, make, staff_headers):
        standing_order = make.standing_order(make.customer())

        response = client.post(f"/api/v1/standing-orders/{standing_order.id}/generate",
                               json={"scheduled_date": "2026-10-19"}, headers=staff_headers)

        assert response.status_code == 200
        assert response.json()["success"] is True
