import smtplib

import pytest

from backend.models.notification import EmailLog
from backend.services.email_service import EmailDeliveryService
from backend.utils.email_utils import EmailConfig, EmailMessage, EmailRecipient, EmailService


class FlakySMTP(EmailService):
    """Fails the first ``failures`` deliveries with ``error``."""

    def __init__(self, failures=0, error=None, **kwargs):
        config = EmailConfig(smtp_server="smtp.mailhost.io", smtp_port=587, username="mailer",
                             password="secret", sender="orders@tradehub.africa")
        self.delays = []
        super().__init__(config, base_delay=1.0, sleep=self.delays.append, company_name="TradeHub", **kwargs)
        self.failures = failures
        self.error = error or smtplib.SMTPServerDisconnected("Connection unexpectedly closed")
        self.delivered = []

    def _deliver(self, msg, recipients):
        if self.failures:
            self.failures -= 1
            raise self.error
        self.delivered.append((msg, recipients))


def _message():
    return EmailMessage(
        recipients=[EmailRecipient(email="ama@kumasifoods.com", name="Ama Owusu")],
        template_name="admin_alert",
        template_data={"title": "Payment failed", "message": "Charge declined"},
    )


class TestRetries:
    def test_succeeds_on_third_attempt(self):
        service = FlakySMTP(failures=2)

        result = service.send_email(_message())

        assert result.status == "sent"
        assert result.attempts == 3
        assert service.delays == [1.0, 2.0]
        msg, recipients = service.delivered[0]
        assert recipients == ["ama@kumasifoods.com"]
        assert msg["To"] == "Ama Owusu <ama@kumasifoods.com>"

    def test_gives_up_after_max_retries(self):
        service = FlakySMTP(failures=10)

        result = service.send_email(_message())

        assert result.status == "failed"
        assert result.attempts == 4
        assert service.delays == [1.0, 2.0, 4.0]
        assert "Connection unexpectedly closed" in result.error

    def test_auth_errors_are_not_retried(self):
        service = FlakySMTP(failures=10, error=smtplib.SMTPAuthenticationError(535, b"Authentication failed"))

        result = service.send_email(_message())

        assert result.status == "failed"
        assert result.attempts == 1
        assert service.delays == []


def test_unconfigured_service_skips():
    result = EmailService(None).send_email(_message())
    assert result.status == "skipped"
    assert result.attempts == 0


def test_templates_escape_html():
    rendered = EmailService(None).render_template(
        "admin_alert", {"title": "New lead", "message": "<script>alert(1)</script>"}
    )
    assert "<script>" not in rendered["html_content"]
    assert "&lt;script&gt;" in rendered["html_content"]


def test_unknown_template():
    with pytest.raises(ValueError):
        EmailService(None).render_template("missing", {})


class TestDeliveryLog:
    def test_sent_email_is_logged(self, db):
        delivery = EmailDeliveryService(db, FlakySMTP(failures=1))

        result = delivery.send_template("admin_alert", "ops@tradehub.africa",
                                        {"title": "Credit overdue", "message": "ORD-1 is overdue"},
                                        email_type="admin_credit_overdue")

        assert result.success
        log = db.query(EmailLog).one()
        assert log.email_type == "admin_credit_overdue"
        assert log.status == "sent"
        assert log.attempts == 2
        assert log.subject

    def test_no_recipient_is_skipped_without_log(self, db):
        result = EmailDeliveryService(db, FlakySMTP()).send_template("admin_alert", None, {})

        assert result.status == "skipped"
        assert db.query(EmailLog).count() == 0

    def test_invalid_address_is_logged_as_failed(self, db):
        result = EmailDeliveryService(db, FlakySMTP()).send_template(
            "admin_alert", "not-an-email", {"title": "x", "message": "y"}
        )

        assert result.status == "failed"
        log = db.query(EmailLog).one()
        assert log.status == "failed"
        assert log.attempts == 0
