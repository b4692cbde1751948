"""
Outbound email with delivery logging.

Every logical send writes one ``EmailLog`` row with its final status
(sent, failed or skipped) and the number of attempts made.
"""
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from ..config.logging import get_logger
from ..models.notification import EmailLog
from ..utils.email_utils import (
    EmailService, EmailMessage, EmailRecipient, EmailAttachment, EmailResult, get_email_service
)

logger = get_logger(__name__)


class EmailDeliveryService:
    def __init__(self, db: Session, email_service: Optional[EmailService] = None):
        self.db = db
        self.email_service = email_service or get_email_service()

    def _log(self, email_type: str, recipient: str, subject: str, result: EmailResult,
             order_id: int = None, quote_id: int = None, customer_id: int = None) -> EmailLog:
        entry = EmailLog(
            email_type=email_type,
            recipient=recipient,
            subject=subject or "",
            status=result.status,
            attempts=result.attempts,
            error_message=result.error,
            order_id=order_id,
            quote_id=quote_id,
            customer_id=customer_id,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def _build(self, template_name: str, to: str, data: Dict[str, Any], name: str = None,
               attachments: List[EmailAttachment] = None) -> EmailMessage:
        return EmailMessage(
            recipients=[EmailRecipient(email=to, name=name)],
            template_name=template_name,
            template_data=data,
            attachments=attachments or [],
        )

    def send_template(
        self,
        template_name: str,
        to: Optional[str],
        data: Dict[str, Any],
        *,
        email_type: str = None,
        name: str = None,
        attachments: List[EmailAttachment] = None,
        order_id: int = None,
        quote_id: int = None,
        customer_id: int = None,
    ) -> EmailResult:
        """Render and send a registered template, logging the outcome."""
        email_type = email_type or template_name
        if not to:
            logger.warning(f"No recipient for {email_type} email, skipping")
            return EmailResult(status="skipped", attempts=0, error="No recipient")

        try:
            message = self._build(template_name, to, data, name=name, attachments=attachments)
        except ValueError as e:
            logger.error(f"Invalid {email_type} email to {to}: {e}")
            result = EmailResult(status="failed", attempts=0, error=str(e))
            self._log(email_type, to, template_name, result, order_id, quote_id, customer_id)
            return result

        result = self.email_service.send_email(message)
        self._log(email_type, to, message.subject, result, order_id, quote_id, customer_id)
        return result

    async def send_template_async(
        self,
        template_name: str,
        to: Optional[str],
        data: Dict[str, Any],
        *,
        email_type: str = None,
        name: str = None,
        attachments: List[EmailAttachment] = None,
        order_id: int = None,
        quote_id: int = None,
        customer_id: int = None,
    ) -> EmailResult:
        email_type = email_type or template_name
        if not to:
            return EmailResult(status="skipped", attempts=0, error="No recipient")

        message = self._build(template_name, to, data, name=name, attachments=attachments)
        result = await self.email_service.send_email_async(message)
        self._log(email_type, to, message.subject, result, order_id, quote_id, customer_id)
        return result
