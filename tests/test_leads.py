from datetime import date, datetime, timedelta

import httpx
import pytest

from backend.core.exceptions import BadRequestError, ConflictError
from backend.models.enums import LeadStatus
from backend.models.lead import Lead
from backend.schemas.lead import LeadSubmission
from backend.services import lead_service
from backend.services.lead_service import (
    LeadService,
    calculate_enhanced_score,
    get_score_tier,
    is_disposable_email,
    is_public_ip,
)

NOW = datetime(2026, 10, 19, 9, 0)


def _lead(**values):
    values.setdefault("created_at", NOW)
    values.setdefault("status", LeadStatus.NEW)
    values.setdefault("source", "manual")
    return Lead(title="Cashew inquiry", **values)


class TestScoring:
    def test_clamped_to_100(self):
        lead = _lead(base_score=95, value=200000, status=LeadStatus.QUALIFIED, source="referral")
        assert calculate_enhanced_score(lead, NOW) == 100

    def test_clamped_to_0(self):
        lead = _lead(base_score=10, created_at=NOW - timedelta(days=120))
        assert calculate_enhanced_score(lead, NOW) == 0

    def test_closed_lost_resets_before_source_bonus(self):
        lead = _lead(base_score=90, status=LeadStatus.CLOSED_LOST, source="website")
        assert calculate_enhanced_score(lead, NOW) == 5

    def test_default_score_and_close_date_bonus(self):
        lead = _lead(created_at=NOW - timedelta(days=30), value=20000,
                     expected_close_date=date(2026, 11, 1))
        # 50 + value 5 + closing soon 10
        assert calculate_enhanced_score(lead, NOW) == 65

    @pytest.mark.parametrize("score, tier", [(100, "Hot"), (80, "Hot"), (79, "Warm"), (60, "Warm"),
                                             (45, "Cool"), (39, "Cold"), (0, "Cold")])
    def test_tiers(self, score, tier):
        assert get_score_tier(score) == tier


def test_disposable_and_public_ip_checks():
    assert is_disposable_email("someone@Mailinator.com")
    assert not is_disposable_email("buyer@shea-collective.com")
    assert is_public_ip("8.8.8.8")
    assert not is_public_ip("10.0.0.5")
    assert not is_public_ip("not-an-ip")


class TestSubmitEndpoint:
    payload = {
        "title": "Bulk cashew order",
        "contact_name": "Kofi Boateng",
        "contact_email": "kofi@shea-collective.com",
        "company_name": "Shea Collective",
        "value": 15000,
    }

    def test_lead_is_stored_pending(self, client, db):
        response = client.post("/api/v1/leads/submit", json=self.payload,
                               headers={"X-Forwarded-For": "10.0.0.9, 172.16.0.1"})

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True

        lead = db.get(Lead, body["lead_id"])
        assert lead.verification_status == "pending"
        assert lead.ip_address == "10.0.0.9"
        assert lead.source == "website"
        assert lead.currency == "GHS"
        assert lead.geolocation is None
        assert lead.submission_metadata["recaptcha_verified"] is False
        # 50 + fresh 10 + value 5 + website 5
        assert lead.lead_score == 70

    def test_disposable_email_is_rejected(self, client):
        payload = dict(self.payload, contact_email="kofi@mailinator.com")
        response = client.post("/api/v1/leads/submit", json=payload)
        assert response.status_code == 400
        assert response.json()["field"] == "contact_email"

    def test_missing_title(self, client):
        response = client.post("/api/v1/leads/submit", json={"title": "   "})
        assert response.status_code == 400

    def test_sixth_submission_in_an_hour_is_limited(self, client):
        headers = {"X-Forwarded-For": "10.0.0.5"}
        for _ in range(5):
            assert client.post("/api/v1/leads/submit", json=self.payload, headers=headers).status_code == 201

        response = client.post("/api/v1/leads/submit", json=self.payload, headers=headers)

        assert response.status_code == 429
        assert response.json()["error_code"] == "RATE_LIMIT_EXCEEDED"
        assert response.headers["Retry-After"] == "3600"

        other = client.post("/api/v1/leads/submit", json=self.payload, headers={"X-Real-IP": "10.0.0.6"})
        assert other.status_code == 201


def _mock_client(routes):
    def handler(request):
        for fragment, body in routes.items():
            if fragment in str(request.url):
                return httpx.Response(200, json=body)
        return httpx.Response(404)
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestExternalChecks:
    def test_low_recaptcha_score_is_rejected(self, db, monkeypatch):
        monkeypatch.setattr(lead_service.settings, "RECAPTCHA_SECRET_KEY", "recaptcha-secret")
        service = LeadService(db, http_client=_mock_client({"siteverify": {"success": True, "score": 0.3}}))

        with pytest.raises(BadRequestError):
            service.submit_lead(LeadSubmission(title="Shea order", recaptcha_token="token"), "10.1.1.1")
        assert db.query(Lead).count() == 0

    def test_good_recaptcha_and_geolocation(self, db, monkeypatch):
        monkeypatch.setattr(lead_service.settings, "RECAPTCHA_SECRET_KEY", "recaptcha-secret")
        service = LeadService(db, http_client=_mock_client({
            "siteverify": {"success": True, "score": 0.9},
            "ip-api.com": {"status": "success", "country": "Ghana", "countryCode": "GH",
                           "regionName": "Greater Accra", "city": "Accra", "lat": 5.6, "lon": -0.19},
        }))

        lead = service.submit_lead(LeadSubmission(title="Shea order", recaptcha_token="token"), "41.66.0.10")

        assert lead.submission_metadata["recaptcha_verified"] is True
        assert lead.geolocation["city"] == "Accra"
        assert lead.geolocation["country_code"] == "GH"

    def test_recaptcha_skipped_without_secret(self, db):
        assert LeadService(db).verify_recaptcha("anything") is True


class TestConversion:
    def test_convert_creates_customer(self, db, staff):
        lead = LeadService(db).submit_lead(
            LeadSubmission(title="Cocoa", company_name="Kumasi Foods", contact_email="ops@kumasifoods.com"),
            "10.2.2.2",
        )
        service = LeadService(db)

        converted = service.convert_lead(lead.id, actor=staff.username)

        assert converted.status == LeadStatus.CLOSED_WON
        assert converted.converted_customer_id is not None
        with pytest.raises(ConflictError):
            service.convert_lead(lead.id)


class TestRescoring:
    def test_rescoring_is_stable(self, db):
        service = LeadService(db)
        lead = service.submit_lead(LeadSubmission(title="Cashew order", value=15000), "10.3.3.3", now=NOW)
        submitted = lead.lead_score

        first = service.rescore_leads(now=NOW)
        second = service.rescore_leads(now=NOW)

        db.refresh(lead)
        assert submitted == 70
        assert lead.lead_score == 70
        assert first == {"rescored": 1, "changed": 0}
        assert second == {"rescored": 1, "changed": 0}

    def test_edits_score_from_the_base(self, db):
        from backend.schemas.lead import LeadCreate, LeadUpdate

        service = LeadService(db)
        lead = service.create_lead(LeadCreate(title="Sesame", base_score=40, source="referral"))
        assert lead.lead_score == 60

        service.update_lead(lead.id, LeadUpdate(description="Wants samples"))
        updated = service.update_lead(lead.id, LeadUpdate(status=LeadStatus.CONTACTED))

        assert updated.base_score == 40
        assert updated.lead_score == 70
