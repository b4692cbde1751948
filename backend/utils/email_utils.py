"""
Email utilities for customer and admin notifications.
Template registry rendered with Jinja2, SMTP delivery (sync and async)
with exponential-backoff retries.
"""

import smtplib
import ssl
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.mime.base import MIMEBase
from email import encoders
from typing import List, Dict, Optional, Union, Any, Callable
from dataclasses import dataclass
from functools import lru_cache
import base64
from datetime import datetime
from jinja2 import Environment, select_autoescape
import aiosmtplib
from pydantic import BaseModel, EmailStr, field_validator

from ..config.logging import get_logger
from ..config.settings import get_settings
from ..core.retry import with_retry, with_retry_async

logger = get_logger(__name__)


@dataclass
class EmailConfig:
    """Email configuration settings."""
    smtp_server: str
    smtp_port: int
    username: Optional[str]
    password: Optional[str]
    sender: str
    use_tls: bool = True
    use_ssl: bool = False
    timeout: int = 30


class EmailAttachment(BaseModel):
    """Email attachment model."""
    filename: str
    content: Union[bytes, str]
    content_type: str = "application/octet-stream"

    @field_validator('content')
    @classmethod
    def validate_content(cls, v):
        if isinstance(v, str):
            try:
                return base64.b64decode(v)
            except Exception:
                raise ValueError("String content must be base64 encoded")
        return v


class EmailRecipient(BaseModel):
    """Email recipient model."""
    email: EmailStr
    name: Optional[str] = None
    type: str = "to"  # to, cc, bcc

    def __str__(self):
        return f"{self.name} <{self.email}>" if self.name else str(self.email)


class EmailTemplate(BaseModel):
    """Email template model."""
    name: str
    subject: str
    html_content: str
    text_content: Optional[str] = None
    variables: List[str] = []
    category: str = "general"


class EmailMessage(BaseModel):
    """Email message model."""
    recipients: List[EmailRecipient]
    subject: str = ""
    html_content: Optional[str] = None
    text_content: Optional[str] = None
    attachments: List[EmailAttachment] = []
    template_name: Optional[str] = None
    template_data: Dict[str, Any] = {}


@dataclass
class EmailResult:
    """Outcome of one logical send, across all retry attempts."""
    status: str  # sent, failed, skipped
    attempts: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == "sent"


_BASE_LAYOUT = """
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; color: #222;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    {body}
    <p style="color: #888; font-size: 12px;">{{{{ company_name }}}}</p>
  </div>
</body>
</html>
"""


def _layout(body: str) -> str:
    return _BASE_LAYOUT.format(body=body)


class EmailService:
    """SMTP email service with a built-in template registry."""

    def __init__(
        self,
        config: Optional[EmailConfig],
        max_retries: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], None] = None,
        company_name: str = "",
    ):
        self.config = config
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.company_name = company_name
        self._sleep = sleep
        self.template_env = Environment(
            autoescape=select_autoescape(default_for_string=True),
        )
        self.text_env = Environment(autoescape=False)
        self.templates = self._load_default_templates()

    @property
    def is_configured(self) -> bool:
        return self.config is not None

    def _load_default_templates(self) -> Dict[str, EmailTemplate]:
        return {
            "quote_approval": EmailTemplate(
                name="quote_approval",
                subject="Quote {{ quote_number }} is ready for your approval",
                html_content=_layout(
                    "<h2>Quote {{ quote_number }}</h2>"
                    "<p>Dear {{ customer_name }},</p>"
                    "<p>Your quote for <strong>{{ currency }} {{ total_amount }}</strong> is ready."
                    "{% if valid_until %} It is valid until {{ valid_until }}.{% endif %}</p>"
                    "<p><a href=\"{{ approve_url }}\">Approve quote</a> | "
                    "<a href=\"{{ reject_url }}\">Reject quote</a></p>"
                    "<p>This link expires on {{ expires_at }}.</p>"
                ),
                text_content="Quote {{ quote_number }} ({{ currency }} {{ total_amount }}). Review it at {{ review_url }}",
                variables=["quote_number", "customer_name", "currency", "total_amount", "valid_until",
                           "approve_url", "reject_url", "review_url", "expires_at"],
                category="quotes",
            ),
            "quote_expiring": EmailTemplate(
                name="quote_expiring",
                subject="Reminder: quote {{ quote_number }} expires on {{ valid_until }}",
                html_content=_layout(
                    "<p>Dear {{ customer_name }},</p>"
                    "<p>Quote <strong>{{ quote_number }}</strong> for {{ currency }} {{ total_amount }} "
                    "expires in {{ days_left }} day(s), on {{ valid_until }}.</p>"
                ),
                text_content="Quote {{ quote_number }} expires on {{ valid_until }}.",
                variables=["quote_number", "customer_name", "currency", "total_amount", "valid_until", "days_left"],
                category="reminders",
            ),
            "order_tracking": EmailTemplate(
                name="order_tracking",
                subject="Order {{ order_number }}: {{ status_label }}",
                html_content=_layout(
                    "<p>Dear {{ customer_name }},</p>"
                    "<p>Your order <strong>{{ order_number }}</strong> is now: {{ status_label }}.</p>"
                    "{% if tracking_number %}<p>Carrier: {{ carrier }}<br>"
                    "Tracking number: {{ tracking_number }}</p>{% endif %}"
                ),
                text_content="Order {{ order_number }} is now {{ status_label }}.",
                variables=["order_number", "customer_name", "status_label", "carrier", "tracking_number"],
                category="orders",
            ),
            "payment_confirmation_customer": EmailTemplate(
                name="payment_confirmation_customer",
                subject="Payment received for order {{ order_number }}",
                html_content=_layout(
                    "<p>Dear {{ customer_name }},</p>"
                    "<p>We received your payment of <strong>{{ currency }} {{ amount }}</strong> "
                    "for order {{ order_number }}. Reference: {{ reference }}.</p>"
                ),
                text_content="Payment of {{ currency }} {{ amount }} received for order {{ order_number }}.",
                variables=["order_number", "customer_name", "currency", "amount", "reference"],
                category="payments",
            ),
            "payment_confirmation_admin": EmailTemplate(
                name="payment_confirmation_admin",
                subject="Payment received: {{ order_number }} ({{ currency }} {{ amount }})",
                html_content=_layout(
                    "<p>Payment of {{ currency }} {{ amount }} received from {{ customer_name }} "
                    "for order {{ order_number }} via {{ channel }}. Reference: {{ reference }}.</p>"
                ),
                text_content="Payment {{ reference }} received for {{ order_number }}.",
                variables=["order_number", "customer_name", "currency", "amount", "channel", "reference"],
                category="payments",
            ),
            "balance_payment_request": EmailTemplate(
                name="balance_payment_request",
                subject="Balance payment required for order {{ order_number }}",
                html_content=_layout(
                    "<p>Dear {{ customer_name }},</p>"
                    "<p>Thank you for your payment on order <strong>{{ order_number }}</strong>. "
                    "Please pay the remaining balance so we can ship your order.</p>"
                    "<p>Order total: {{ currency }} {{ total_amount }}<br>"
                    "Amount received: {{ currency }} {{ amount_paid }}<br>"
                    "<strong>Balance remaining: {{ currency }} {{ balance_remaining }}</strong></p>"
                    "<p>Please use {{ order_number }} as the payment reference.</p>"
                ),
                text_content="Order {{ order_number }} has a balance of {{ currency }} {{ balance_remaining }} remaining.",
                variables=["order_number", "customer_name", "currency", "total_amount", "amount_paid",
                           "balance_remaining"],
                category="payments",
            ),
            "delivery_address_request": EmailTemplate(
                name="delivery_address_request",
                subject="Delivery address required for order {{ order_number }}",
                html_content=_layout(
                    "<p>Dear {{ customer_name }},</p>"
                    "<p>Your order <strong>{{ order_number }}</strong> is ready to ship. "
                    "We need your delivery address to proceed.</p>"
                    "<p><a href=\"{{ address_url }}\">Provide delivery address</a></p>"
                    "<p>This link expires on {{ expires_at }}.</p>"
                ),
                text_content="Provide the delivery address for order {{ order_number }} at {{ address_url }}",
                variables=["order_number", "customer_name", "address_url", "expires_at"],
                category="orders",
            ),
            "delivery_address_confirmed": EmailTemplate(
                name="delivery_address_confirmed",
                subject="Delivery address confirmed for order {{ order_number }}",
                html_content=_layout(
                    "<p>Dear {{ customer_name }},</p>"
                    "<p>We have saved the delivery address for order <strong>{{ order_number }}</strong>:</p>"
                    "<p>{% if recipient_name %}{{ recipient_name }}<br>{% endif %}"
                    "{% if phone %}{{ phone }}<br>{% endif %}"
                    "{% if digital_address %}{{ digital_address }}<br>{% endif %}"
                    "{{ address }}</p>"
                ),
                text_content="Delivery address for order {{ order_number }}: {{ address }}",
                variables=["order_number", "customer_name", "recipient_name", "phone", "digital_address", "address"],
                category="orders",
            ),
            "invoice": EmailTemplate(
                name="invoice",
                subject="{{ invoice_label }} {{ invoice_number }}",
                html_content=_layout(
                    "<p>Dear {{ customer_name }},</p>"
                    "<p>Please find attached {{ invoice_label|lower }} {{ invoice_number }} "
                    "for {{ currency }} {{ total_amount }}.</p>"
                ),
                text_content="{{ invoice_label }} {{ invoice_number }} attached.",
                variables=["invoice_label", "invoice_number", "customer_name", "currency", "total_amount"],
                category="invoices",
            ),
            "admin_alert": EmailTemplate(
                name="admin_alert",
                subject="{{ title }}",
                html_content=_layout("<h3>{{ title }}</h3><p>{{ message }}</p>"),
                text_content="{{ title }}: {{ message }}",
                variables=["title", "message"],
                category="alerts",
            ),
        }

    def get_template(self, name: str) -> Optional[EmailTemplate]:
        """Get email template by name."""
        return self.templates.get(name)

    def render_template(self, template_name: str, data: Dict[str, Any]) -> Dict[str, str]:
        """Render email template with data."""
        template = self.get_template(template_name)
        if not template:
            raise ValueError(f"Template '{template_name}' not found")

        context = {"company_name": self.company_name, **data}
        html_content = self.template_env.from_string(template.html_content).render(**context)
        text_content = None
        if template.text_content:
            text_content = self.text_env.from_string(template.text_content).render(**context)
        subject = self.text_env.from_string(template.subject).render(**context)

        return {
            "subject": subject,
            "html_content": html_content,
            "text_content": text_content,
        }

    def prepare(self, message: EmailMessage) -> EmailMessage:
        """Render the message template in place when one is named."""
        if message.template_name:
            rendered = self.render_template(message.template_name, message.template_data)
            message.subject = rendered["subject"]
            message.html_content = rendered["html_content"]
            message.text_content = rendered["text_content"]
        return message

    def build_mime(self, message: EmailMessage) -> MIMEMultipart:
        msg = MIMEMultipart('mixed' if message.attachments else 'alternative')
        msg['From'] = self.config.sender if self.config else ""
        msg['Subject'] = message.subject

        to_recipients = [str(r) for r in message.recipients if r.type == "to"]
        cc_recipients = [str(r) for r in message.recipients if r.type == "cc"]
        msg['To'] = ", ".join(to_recipients)
        if cc_recipients:
            msg['Cc'] = ", ".join(cc_recipients)

        if message.text_content:
            msg.attach(MIMEText(message.text_content, 'plain'))
        if message.html_content:
            msg.attach(MIMEText(message.html_content, 'html'))

        for attachment in message.attachments:
            maintype, _, subtype = attachment.content_type.partition('/')
            part = MIMEBase(maintype or 'application', subtype or 'octet-stream')
            part.set_payload(attachment.content)
            encoders.encode_base64(part)
            part.add_header('Content-Disposition', f'attachment; filename="{attachment.filename}"')
            msg.attach(part)

        return msg

    def _deliver(self, msg: MIMEMultipart, recipients: List[str]):
        context = ssl.create_default_context()
        if self.config.use_ssl:
            server = smtplib.SMTP_SSL(self.config.smtp_server, self.config.smtp_port,
                                      context=context, timeout=self.config.timeout)
        else:
            server = smtplib.SMTP(self.config.smtp_server, self.config.smtp_port, timeout=self.config.timeout)
        with server:
            if self.config.use_tls and not self.config.use_ssl:
                server.starttls(context=context)
            if self.config.username:
                server.login(self.config.username, self.config.password or "")
            server.sendmail(self.config.sender, recipients, msg.as_string())

    def send_email(self, message: EmailMessage) -> EmailResult:
        """Send single email, retrying transient failures."""
        self.prepare(message)
        recipients = [str(r.email) for r in message.recipients]

        if not self.is_configured:
            logger.info(f"SMTP not configured, skipping email '{message.subject}' to {recipients}")
            return EmailResult(status="skipped", attempts=0, error="SMTP not configured")

        msg = self.build_mime(message)
        attempts = {"count": 0}

        def attempt():
            attempts["count"] += 1
            self._deliver(msg, recipients)

        retry_kwargs = {"sleep": self._sleep} if self._sleep else {}
        try:
            with_retry(attempt, max_retries=self.max_retries, base_delay=self.base_delay, **retry_kwargs)
        except Exception as e:
            logger.error(f"Failed to send email '{message.subject}' after {attempts['count']} attempt(s): {e}")
            return EmailResult(status="failed", attempts=attempts["count"], error=str(e))

        logger.info(f"Email sent successfully to {len(recipients)} recipients")
        return EmailResult(status="sent", attempts=attempts["count"])

    async def send_email_async(self, message: EmailMessage) -> EmailResult:
        """Send email asynchronously."""
        self.prepare(message)
        recipients = [str(r.email) for r in message.recipients]

        if not self.is_configured:
            logger.info(f"SMTP not configured, skipping email '{message.subject}' to {recipients}")
            return EmailResult(status="skipped", attempts=0, error="SMTP not configured")

        msg = self.build_mime(message)
        attempts = {"count": 0}

        async def attempt():
            attempts["count"] += 1
            await aiosmtplib.send(
                msg,
                hostname=self.config.smtp_server,
                port=self.config.smtp_port,
                start_tls=self.config.use_tls and not self.config.use_ssl,
                use_tls=self.config.use_ssl,
                username=self.config.username,
                password=self.config.password,
                sender=self.config.sender,
                recipients=recipients,
                timeout=self.config.timeout,
            )

        try:
            await with_retry_async(attempt, max_retries=self.max_retries, base_delay=self.base_delay)
        except Exception as e:
            logger.error(f"Failed to send email (async) '{message.subject}': {e}")
            return EmailResult(status="failed", attempts=attempts["count"], error=str(e))

        logger.info(f"Email sent successfully (async) to {len(recipients)} recipients")
        return EmailResult(status="sent", attempts=attempts["count"])


def format_money(amount: Optional[float]) -> str:
    return f"{(amount or 0):,.2f}"


def format_timestamp(value: Optional[datetime]) -> str:
    return value.strftime('%d %b %Y %H:%M UTC') if value else ''


@lru_cache()
def get_email_service() -> EmailService:
    """Email service built from settings. SMTP stays unconfigured without a server."""
    settings = get_settings()
    config = None
    if settings.smtp_configured:
        config = EmailConfig(
            smtp_server=settings.SMTP_SERVER,
            smtp_port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            sender=settings.EMAIL_FROM,
            use_tls=settings.SMTP_USE_TLS,
        )
    return EmailService(
        config,
        max_retries=settings.EMAIL_MAX_RETRIES,
        base_delay=settings.EMAIL_RETRY_BASE_DELAY,
        company_name=settings.APP_NAME,
    )
