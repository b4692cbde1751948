import csv
import io

from backend.models.enums import OrderStatus, PaymentStatus, UserRole
from backend.services.job_service import JOB_NAMES, JobService


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "operational"


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["database"] == "ok"
    assert body["order_feed"] == "disabled"


class TestOrdersReport:
    def test_json(self, client, make, staff_headers):
        customer = make.customer()
        make.order(customer, OrderStatus.DELIVERED, PaymentStatus.FULLY_PAID, total=1000, amount_paid=1000)
        make.order(customer, OrderStatus.PROCESSING, total=250)
        make.order(customer, OrderStatus.CANCELLED, total=400)

        response = client.get("/api/v1/reports/orders", headers=staff_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["summary"]["total_orders"] == 3
        assert body["summary"]["unpaid_orders"] == 2
        assert body["summary"]["order_value"] == "GHS 1,250.00"
        assert {row["Customer Code"] for row in body["data"]} == {customer.customer_code}

    def test_status_filter_and_csv(self, client, make, staff_headers):
        customer = make.customer()
        delivered = make.order(customer, OrderStatus.DELIVERED)
        make.order(customer, OrderStatus.PROCESSING)

        response = client.get("/api/v1/reports/orders", params={"status": "delivered", "format": "csv"},
                              headers=staff_headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "orders_report_" in response.headers["content-disposition"]
        rows = list(csv.DictReader(io.StringIO(response.text)))
        assert [row["Order Number"] for row in rows] == [delivered.order_number]

    def test_inverted_period(self, client, staff_headers):
        response = client.get("/api/v1/reports/orders",
                              params={"start_date": "2026-10-19", "end_date": "2026-10-01"},
                              headers=staff_headers)
        assert response.status_code == 422

    def test_customers_cannot_read_reports(self, client, make, headers_for):
        customer = make.customer()
        user = make.user(role=UserRole.CUSTOMER, customer_id=customer.id)
        response = client.get("/api/v1/reports/orders", headers=headers_for(user))
        assert response.status_code == 403


def test_credit_ledger_report(client, db, make, staff_headers):
    from backend.services.credit_service import CreditService

    customer = make.customer()
    make.credit_terms(customer, limit=5000)
    CreditService(db).apply_credit_to_order(make.order(customer, total=800))

    response = client.get("/api/v1/reports/credit-ledger", params={"customer_id": customer.id},
                          headers=staff_headers)

    assert response.status_code == 200
    summary = response.json()["summary"]
    assert summary["entries"] == 1
    assert summary["charged"] == 800


class TestJobs:
    def test_listing_needs_admin(self, client, staff_headers, admin_headers):
        assert client.get("/api/v1/jobs/", headers=staff_headers).status_code == 403
        response = client.get("/api/v1/jobs/", headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == {"jobs": list(JOB_NAMES)}

    def test_run_single_job(self, client, admin_headers):
        response = client.post("/api/v1/jobs/overdue_invoices", headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "result": {"marked_overdue": 0}}

    def test_unknown_job(self, client, admin_headers):
        assert client.post("/api/v1/jobs/reindex", headers=admin_headers).status_code == 404

    def test_failing_job_does_not_stop_the_rest(self, db, monkeypatch):
        service = JobService(db)

        def boom(now=None):
            raise RuntimeError("standing order table locked")

        monkeypatch.setattr(service, "run_standing_orders", boom)

        results = service.run_scheduled_jobs()

        assert results["standing_orders"] == {"status": "failed", "error": "standing order table locked"}
        assert all(results[name]["status"] == "ok" for name in JOB_NAMES if name != "standing_orders")
