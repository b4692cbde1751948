"""
Lead capture and scoring.

Public submissions are screened with email checks, reCAPTCHA and a per-IP
hourly limit before they are stored with verification_status ``pending``.
"""
import ipaddress
from datetime import datetime, time, timedelta
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.orm import Session

from ..config.settings import get_settings
from ..config.logging import get_logger, log_business_event, log_security_event
from ..core.exceptions import BadRequestError, ConflictError, RateLimitExceededError
from ..core.security import SecurityEvent, validate_email_address
from ..models.enums import LeadStatus
from ..models.lead import Lead
from ..repositories.lead_repo import LeadRepository
from ..schemas.lead import LeadCreate, LeadSubmission, LeadUpdate
from .customer_service import CustomerService
from .notification_service import NotificationService

logger = get_logger(__name__)
settings = get_settings()

DISPOSABLE_EMAIL_DOMAINS = {
    '10minutemail.com', 'guerrillamail.com', 'mailinator.com', 'tempmail.com',
    'temp-mail.org', 'throwaway.email', 'yopmail.com', 'maildrop.cc',
    'mintemail.com', 'sharklasers.com', 'guerrillamail.info', 'spam4.me',
    'grr.la', 'getnada.com', 'mohmal.com', 'trashmail.com', 'fakeinbox.com',
}

MAX_TITLE_LENGTH = 200
MIN_SCORE, MAX_SCORE = 0, 100
DEFAULT_SCORE = 50

STATUS_POINTS = {
    LeadStatus.QUALIFIED: 20,
    LeadStatus.PROPOSAL: 15,
    LeadStatus.NEGOTIATION: 15,
    LeadStatus.CONTACTED: 10,
}
SOURCE_POINTS = {"referral": 10, "website": 5}

SCORE_TIERS = [(80, "Hot"), (60, "Warm"), (40, "Cool")]


def calculate_enhanced_score(lead: Lead, now: datetime = None) -> int:
    """Lead score adjusted for age, value, pipeline stage, source and close date, in [0, 100]."""
    now = now or datetime.utcnow()
    score = lead.base_score if lead.base_score is not None else DEFAULT_SCORE

    if lead.created_at is not None:
        age_days = (now - lead.created_at).days
        if age_days < 7:
            score += 10
        elif age_days > 90:
            score -= 15

    if lead.value:
        if lead.value > 100000:
            score += 15
        elif lead.value > 50000:
            score += 10
        elif lead.value > 10000:
            score += 5

    if lead.status == LeadStatus.CLOSED_LOST:
        score = 0
    else:
        score += STATUS_POINTS.get(lead.status, 0)

    score += SOURCE_POINTS.get(lead.source, 0)

    if lead.expected_close_date:
        days_to_close = (datetime.combine(lead.expected_close_date, time.min) - now).days
        if 0 < days_to_close < 30:
            score += 10

    return min(max(score, MIN_SCORE), MAX_SCORE)


def get_score_tier(score: int) -> str:
    for threshold, label in SCORE_TIERS:
        if score >= threshold:
            return label
    return "Cold"


def is_disposable_email(email: str) -> bool:
    domain = email.rpartition("@")[2].lower()
    return domain in DISPOSABLE_EMAIL_DOMAINS


def validate_contact_email(email: str) -> str:
    """Normalized address, or BadRequestError with the reason."""
    if len(email) < 5 or len(email) > 255:
        raise BadRequestError("Email must be between 5 and 255 characters", field="contact_email")
    result = validate_email_address(email)
    if not result["is_valid"]:
        raise BadRequestError("Invalid email format", field="contact_email")
    if is_disposable_email(result["normalized_email"]):
        raise BadRequestError("Temporary/disposable email addresses are not allowed", field="contact_email")
    return result["normalized_email"]


def is_public_ip(ip_address: Optional[str]) -> bool:
    try:
        return ipaddress.ip_address(ip_address).is_global
    except ValueError:
        return False


class LeadService:
    def __init__(self, db: Session, http_client: httpx.Client = None, notifications: NotificationService = None):
        self.db = db
        self.repo = LeadRepository()
        self.http_client = http_client
        self.notifications = notifications or NotificationService(db)

    def _client(self) -> httpx.Client:
        if self.http_client is None:
            self.http_client = httpx.Client(timeout=settings.EXTERNAL_HTTP_TIMEOUT)
        return self.http_client

    # ------------------------------------------------------------------
    # External checks
    # ------------------------------------------------------------------

    def verify_recaptcha(self, token: str) -> bool:
        if not settings.RECAPTCHA_SECRET_KEY:
            logger.warning("RECAPTCHA_SECRET_KEY not configured, skipping verification")
            return True
        try:
            response = self._client().post(
                settings.RECAPTCHA_VERIFY_URL,
                data={"secret": settings.RECAPTCHA_SECRET_KEY, "response": token},
            )
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"reCAPTCHA verification error: {e}")
            return False
        return bool(data.get("success")) and (data.get("score") or 0) >= settings.RECAPTCHA_MIN_SCORE

    def lookup_geolocation(self, ip_address: str) -> Optional[Dict[str, Any]]:
        """Best effort. Private and unknown addresses are not looked up."""
        if not is_public_ip(ip_address):
            return None
        try:
            response = self._client().get(settings.IP_GEOLOCATION_URL.format(ip=ip_address))
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Geolocation lookup failed for {ip_address}: {e}")
            return None
        if data.get("status") == "fail":
            return None
        return {
            "country": data.get("country"),
            "country_code": data.get("countryCode"),
            "region": data.get("regionName"),
            "city": data.get("city"),
            "latitude": data.get("lat"),
            "longitude": data.get("lon"),
        }

    def check_rate_limit(self, ip_address: str, now: datetime = None):
        now = now or datetime.utcnow()
        recent = self.repo.count_from_ip_since(self.db, ip_address, now - timedelta(hours=1))
        if recent >= settings.LEAD_RATE_LIMIT_PER_HOUR:
            log_security_event(SecurityEvent.RATE_LIMIT_EXCEEDED, details="lead submission", ip_address=ip_address)
            raise RateLimitExceededError(
                "Too many lead submissions from your location. Please try again in an hour.",
                retry_after=3600,
            )

    # ------------------------------------------------------------------
    # Public submission
    # ------------------------------------------------------------------

    def submit_lead(self, submission: LeadSubmission, ip_address: str = None, user_agent: str = None,
                    referrer: str = None, now: datetime = None) -> Lead:
        now = now or datetime.utcnow()
        ip_address = ip_address or "0.0.0.0"

        title = (submission.title or "").strip()
        if not title:
            raise BadRequestError("Title is required", field="title")
        if len(title) > MAX_TITLE_LENGTH:
            raise BadRequestError("Title must be less than 200 characters", field="title")

        contact_email = None
        if submission.contact_email:
            contact_email = validate_contact_email(submission.contact_email.strip())

        if submission.recaptcha_token and not self.verify_recaptcha(submission.recaptcha_token):
            log_security_event(SecurityEvent.RECAPTCHA_FAILED, ip_address=ip_address)
            raise BadRequestError("Security verification failed. Please try again.")

        self.check_rate_limit(ip_address, now)

        lead = Lead(
            title=title,
            description=submission.description.strip() if submission.description else None,
            status=LeadStatus.NEW,
            source=submission.source or "website",
            value=submission.value,
            currency=(submission.currency or settings.DEFAULT_CURRENCY).upper(),
            contact_name=submission.contact_name,
            contact_email=contact_email,
            company_name=submission.company_name,
            ip_address=ip_address,
            verification_status="pending",
            submission_metadata={
                "user_agent": user_agent or "unknown",
                "referrer": referrer or "direct",
                "ip_address": ip_address,
                "submitted_at": now.isoformat(),
                "recaptcha_verified": bool(submission.recaptcha_token),
            },
            geolocation=self.lookup_geolocation(ip_address),
        )
        lead.created_at = now
        lead.lead_score = calculate_enhanced_score(lead, now)
        self.db.add(lead)
        self.notifications.notify_admins(
            "new_lead", f"New lead: {title}",
            f"{lead.company_name or lead.contact_name or 'A visitor'} submitted an inquiry from the website.",
            data={"lead_score": lead.lead_score}, email=False,
        )
        self.db.commit()
        self.db.refresh(lead)
        log_business_event("lead_submitted", f"Lead {lead.id} from {ip_address}")
        return lead

    # ------------------------------------------------------------------
    # Staff operations
    # ------------------------------------------------------------------

    def get_lead(self, lead_id: int) -> Lead:
        return self.repo.get_or_404(self.db, lead_id, "Lead")

    def list_leads(self, **filters) -> Dict[str, Any]:
        return self.repo.list_leads(self.db, **filters)

    def create_lead(self, data: LeadCreate, actor: str = None) -> Lead:
        values = data.model_dump()
        if values.get("contact_email"):
            values["contact_email"] = validate_contact_email(values["contact_email"])
        lead = Lead(verification_status="verified", created_by=actor, **values)
        lead.created_at = datetime.utcnow()
        lead.lead_score = calculate_enhanced_score(lead, lead.created_at)
        self.db.add(lead)
        self.db.commit()
        self.db.refresh(lead)
        return lead

    def update_lead(self, lead_id: int, data: LeadUpdate, actor: str = None) -> Lead:
        lead = self.get_lead(lead_id)
        changes = data.model_dump(exclude_unset=True)
        if changes.get("contact_email"):
            changes["contact_email"] = validate_contact_email(changes["contact_email"])
        for field, value in changes.items():
            setattr(lead, field, value)
        lead.updated_by = actor
        lead.lead_score = calculate_enhanced_score(lead)
        self.db.commit()
        self.db.refresh(lead)
        return lead

    def score_lead(self, lead_id: int, now: datetime = None) -> Dict[str, Any]:
        lead = self.get_lead(lead_id)
        score = calculate_enhanced_score(lead, now)
        return {"lead_id": lead.id, "score": score, "tier": get_score_tier(score)}

    def rescore_leads(self, now: datetime = None) -> Dict[str, int]:
        now = now or datetime.utcnow()
        leads = self.repo.base_query(self.db).all()
        changed = 0
        for lead in leads:
            score = calculate_enhanced_score(lead, now)
            if score != lead.lead_score:
                lead.lead_score = score
                changed += 1
        self.db.commit()
        logger.info(f"Rescored {len(leads)} leads, {changed} changed")
        return {"rescored": len(leads), "changed": changed}

    def convert_lead(self, lead_id: int, actor: str = None) -> Lead:
        """Turn a lead into a customer record and close it as won"""
        lead = self.get_lead(lead_id)
        if lead.converted_customer_id:
            raise ConflictError(f"Lead {lead.id} is already converted")
        if lead.status == LeadStatus.CLOSED_LOST:
            raise BadRequestError("Lost leads cannot be converted")

        if lead.customer_id:
            customer_id = lead.customer_id
        else:
            customer = CustomerService(self.db, self.notifications).find_or_create_for_contact(
                lead.company_name or lead.contact_name or lead.title,
                lead.contact_name,
                lead.contact_email,
                actor=actor,
            )
            customer_id = customer.id

        lead.converted_customer_id = customer_id
        lead.customer_id = customer_id
        lead.converted_at = datetime.utcnow()
        lead.status = LeadStatus.CLOSED_WON
        lead.verification_status = "verified"
        lead.updated_by = actor
        self.notifications.log_audit_event(
            "lead_converted", {"lead_id": lead.id, "customer_id": customer_id}, actor=actor
        )
        self.db.commit()
        self.db.refresh(lead)
        return lead
