"""
Quotes: drafting, customer approval by magic link, expiry reminders and
conversion to orders.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config.settings import get_settings
from ..config.logging import get_logger, log_business_event
from ..core.exceptions import (
    NotFoundError,
    BadRequestError,
    InactiveCustomerError,
    InvalidMagicLinkError,
    QuoteStateError,
)
from ..core.security import generate_secure_token, hash_token
from ..models.customer import Customer
from ..models.enums import QuoteStatus, TokenType, ApprovalDecision
from ..models.notification import Notification
from ..models.order import Order
from ..models.quote import Quote, QuoteItem, MagicLinkToken, QuoteApproval
from ..models.user import User
from ..repositories.quote_repo import QuoteRepository
from ..schemas.quote import QuoteCreate, QuoteUpdate
from ..utils.date_utils import DateUtils, format_date, today
from ..utils.email_utils import format_money, format_timestamp
from ..utils.identifiers import generate_reference, QUOTE_PREFIX
from .email_service import EmailDeliveryService
from .invoice_service import InvoiceService
from .notification_service import NotificationService
from .order_service import OrderService

logger = get_logger(__name__)
settings = get_settings()

EDITABLE_STATUSES = (QuoteStatus.DRAFT,)
SENDABLE_STATUSES = (QuoteStatus.DRAFT, QuoteStatus.SENT)
APPROVAL_ACTIONS = {
    "approve": ApprovalDecision.APPROVED,
    "reject": ApprovalDecision.REJECTED,
}


def build_quote_items(items) -> List[QuoteItem]:
    return [
        QuoteItem(
            product_name=item.product_name,
            description=item.description,
            quantity=item.quantity,
            unit=item.unit,
            unit_price=item.unit_price,
            grade=item.grade,
            specifications=item.specifications,
            notes=item.notes,
        )
        for item in items
    ]


def approval_url(token: str, action: str = None) -> str:
    url = f"{settings.PUBLIC_BASE_URL.rstrip('/')}/quote-approval?token={token}"
    return f"{url}&action={action}" if action else url


class QuoteService:
    def __init__(self, db: Session, email_delivery: EmailDeliveryService = None,
                 notifications: NotificationService = None):
        self.db = db
        self.quote_repo = QuoteRepository()
        self.email_delivery = email_delivery or EmailDeliveryService(db)
        self.notifications = notifications or NotificationService(db, self.email_delivery)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def get_quote(self, quote_id: int) -> Quote:
        return self.quote_repo.get_or_404(self.db, quote_id, "Quote")

    def list_quotes(self, **filters) -> Dict[str, Any]:
        return self.quote_repo.list_quotes(self.db, **filters)

    def create_quote(self, quote_data: QuoteCreate, actor: str = None) -> Quote:
        customer = self.db.query(Customer).filter(
            Customer.id == quote_data.customer_id, Customer.is_deleted == False  # noqa: E712
        ).first()
        if not customer:
            raise NotFoundError("Customer", quote_data.customer_id)
        if not customer.is_active_customer:
            raise InactiveCustomerError(customer.customer_code)

        quote = Quote(
            quote_number=generate_reference(QUOTE_PREFIX),
            customer_id=customer.id,
            lead_id=quote_data.lead_id,
            title=quote_data.title,
            status=QuoteStatus.DRAFT,
            currency=(quote_data.currency or customer.preferred_currency or settings.DEFAULT_CURRENCY).upper(),
            valid_until=quote_data.valid_until or today() + timedelta(days=settings.QUOTE_VALIDITY_DAYS),
            use_credit=quote_data.use_credit,
            notes=quote_data.notes,
            created_by=actor,
        )
        quote.items = build_quote_items(quote_data.items)
        quote.recalculate_total()

        self.db.add(quote)
        self.db.commit()
        self.db.refresh(quote)
        log_business_event("quote_created", quote.quote_number, customer_id=customer.id)
        return quote

    def update_quote(self, quote_id: int, quote_data: QuoteUpdate, actor: str = None) -> Quote:
        quote = self.get_quote(quote_id)
        if quote.status not in EDITABLE_STATUSES:
            raise QuoteStateError(quote.quote_number, quote.status, "update")

        data = quote_data.model_dump(exclude_unset=True)
        items = data.pop("items", None)
        for field, value in data.items():
            if field == "currency" and value:
                value = value.upper()
            setattr(quote, field, value)
        if items is not None:
            if not items:
                raise BadRequestError("A quote needs at least one item", field="items")
            quote.items = build_quote_items(quote_data.items)
        quote.recalculate_total()
        quote.updated_by = actor

        self.db.commit()
        self.db.refresh(quote)
        return quote

    # ------------------------------------------------------------------
    # Approval and conversion
    # ------------------------------------------------------------------

    def approve_pending_quote(self, quote_id: int, actor: str = None) -> Quote:
        """Staff approval of a generated standing-order quote. Converts it to an order."""
        quote = self.get_quote(quote_id)
        if quote.status != QuoteStatus.PENDING_APPROVAL:
            raise QuoteStateError(quote.quote_number, quote.status, "approve")

        quote.status = QuoteStatus.ACCEPTED
        quote.accepted_at = datetime.utcnow()
        quote.updated_by = actor
        self.db.flush()

        standing_order = quote.standing_order
        apply_credit = standing_order.auto_use_credit if standing_order else None
        OrderService(self.db, notifications=self.notifications).create_order_from_quote(
            quote, actor=actor, apply_credit=apply_credit
        )
        self.notifications.log_audit_event(
            "standing_order_quote_approved", {"quote_id": quote.id, "quote_number": quote.quote_number},
            actor=actor,
        )
        self.db.commit()
        self.db.refresh(quote)
        return quote

    def convert_to_order(self, quote_id: int, actor: str = None) -> Order:
        quote = self.get_quote(quote_id)
        return OrderService(self.db, notifications=self.notifications).create_order_from_quote(quote, actor=actor)

    def send_for_approval(self, quote_id: int, email: str = None, actor: str = None) -> Dict[str, Any]:
        """Email the customer a single-use link to approve or reject the quote."""
        quote = self.get_quote(quote_id)
        if quote.status not in SENDABLE_STATUSES:
            raise QuoteStateError(quote.quote_number, quote.status, "send")
        if not quote.items:
            raise BadRequestError(f"Quote {quote.quote_number} has no items")

        recipient = email or quote.customer.email
        if not recipient:
            raise BadRequestError("Customer has no email address", field="email")

        token = generate_secure_token()
        expires_at = datetime.utcnow() + timedelta(days=settings.QUOTE_APPROVAL_TOKEN_DAYS)
        self.db.add(MagicLinkToken(
            token_hash=hash_token(token),
            token_type=TokenType.QUOTE_APPROVAL,
            quote_id=quote.id,
            email=recipient,
            expires_at=expires_at,
            created_by=actor,
        ))

        quote.status = QuoteStatus.SENT
        quote.sent_at = datetime.utcnow()
        self.db.flush()

        customer = quote.customer
        result = self.email_delivery.send_template(
            "quote_approval", recipient,
            {
                "quote_number": quote.quote_number,
                "customer_name": customer.contact_name or customer.company_name,
                "currency": quote.currency,
                "total_amount": format_money(quote.total_amount),
                "valid_until": format_date(quote.valid_until) if quote.valid_until else None,
                "approve_url": approval_url(token, "approve"),
                "reject_url": approval_url(token, "reject"),
                "review_url": approval_url(token),
                "expires_at": format_timestamp(expires_at),
            },
            email_type="quote_approval",
            quote_id=quote.id,
            customer_id=quote.customer_id,
        )
        self.db.commit()
        log_business_event("quote_sent", f"{quote.quote_number} to {recipient}", customer_id=quote.customer_id)

        return {
            "quote_id": quote.id,
            "status": quote.status,
            "approval_url": approval_url(token),
            "expires_at": expires_at,
            "email_status": result.status,
        }

    def resolve_approval_token(self, token: str, now: datetime = None, for_update: bool = False) -> MagicLinkToken:
        """Look up a usable approval token or raise InvalidMagicLinkError."""
        if not token:
            raise InvalidMagicLinkError("Invalid Link", "Missing token")
        link = self.quote_repo.get_token(self.db, hash_token(token), for_update=for_update)
        if link is None or link.token_type != TokenType.QUOTE_APPROVAL:
            raise InvalidMagicLinkError(
                "Link Expired",
                "This quote approval link has expired or is invalid. Please contact us if you need assistance.",
            )
        if link.is_expired(now):
            raise InvalidMagicLinkError(
                "Link Expired", "This quote approval link has expired. Please contact us for a new link."
            )
        if link.is_used:
            raise InvalidMagicLinkError("Already Processed", "This quote has already been processed. Thank you!")
        return link

    def record_customer_decision(self, token: str, action: str, notes: str = None,
                                 ip_address: str = None, user_agent: str = None) -> QuoteApproval:
        """Apply the customer's approve/reject choice from a magic link."""
        decision = APPROVAL_ACTIONS.get(action)
        if decision is None:
            raise BadRequestError("Invalid action", field="action")

        # Held until commit so concurrent submissions of the same link queue up
        link = self.resolve_approval_token(token, for_update=True)
        quote = link.quote
        if quote.status != QuoteStatus.SENT:
            raise InvalidMagicLinkError(
                "Already Processed", f"Quote {quote.quote_number} can no longer be changed ({quote.status})."
            )

        now = datetime.utcnow()
        approval = QuoteApproval(
            quote_id=quote.id,
            token_id=link.id,
            decision=decision,
            notes=notes or None,
            approved_by_email=link.email,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:500] or None,
        )
        self.db.add(approval)

        if decision == ApprovalDecision.APPROVED:
            quote.status = QuoteStatus.ACCEPTED
            quote.accepted_at = now
        else:
            quote.status = QuoteStatus.REJECTED
            quote.rejected_at = now
        link.used_at = now
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise InvalidMagicLinkError("Already Processed", "This quote has already been processed. Thank you!")

        if decision == ApprovalDecision.APPROVED:
            try:
                InvoiceService(self.db, self.email_delivery).generate_proforma_invoice(quote)
            except Exception as e:
                self.db.rollback()
                logger.error(f"Proforma invoice for quote {quote.quote_number} failed: {e}")

        self.notifications.notify_admins(
            f"quote_{decision}",
            f"Quote {quote.quote_number} {decision}",
            f"{quote.customer.company_name} {decision} quote {quote.quote_number} "
            f"({quote.currency} {format_money(quote.total_amount)})."
            + (f" Notes: {notes}" if notes else ""),
            data={"quote_id": quote.id, "decision": str(decision)},
        )
        self.db.commit()
        self.db.refresh(approval)
        log_business_event(f"quote_{decision}", quote.quote_number, customer_id=quote.customer_id)
        return approval

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def _notify_quote_owner(self, quote: Quote, title: str, message: str, data: Dict[str, Any]) -> bool:
        owner = None
        if quote.created_by:
            owner = self.db.query(User).filter(User.username == quote.created_by).first()
        if owner:
            self.db.add(Notification(user_id=owner.id, customer_id=quote.customer_id,
                                     type="quote_expiring", title=title, message=message, data=data))
            self.db.flush()
            return True
        return bool(self.notifications.notify_admins("quote_expiring", title, message, data, email=False))

    def check_expiring_quotes(self, now: datetime = None) -> Dict[str, int]:
        """Remind about open quotes close to expiry and expire the ones past it."""
        now = now or datetime.utcnow()
        current = now.date()
        quotes = self.quote_repo.get_expiring(
            self.db, current + timedelta(days=settings.QUOTE_EXPIRY_WARNING_DAYS)
        )

        notified = emails_sent = expired = 0
        for quote in quotes:
            if quote.valid_until < current:
                quote.status = QuoteStatus.EXPIRED
                expired += 1
                continue
            if quote.expiry_notified_at is not None:
                continue

            days_left = DateUtils.ceil_days_until(quote.valid_until, current)
            customer = quote.customer
            data = {
                "quote_id": quote.id,
                "quote_number": quote.quote_number,
                "days_until_expiry": days_left,
                "customer_name": customer.company_name,
            }
            if self._notify_quote_owner(
                quote,
                f"Quote {quote.quote_number} expiring soon",
                f"Quote for {customer.company_name} expires in {days_left} days",
                data,
            ):
                notified += 1

            email_sent = False
            if customer.email:
                result = self.email_delivery.send_template(
                    "quote_expiring", customer.email,
                    {
                        "quote_number": quote.quote_number,
                        "customer_name": customer.contact_name or customer.company_name,
                        "currency": quote.currency,
                        "total_amount": format_money(quote.total_amount),
                        "valid_until": format_date(quote.valid_until),
                        "days_left": days_left,
                    },
                    email_type="quote_expiry_reminder",
                    quote_id=quote.id,
                    customer_id=quote.customer_id,
                )
                email_sent = result.success
                emails_sent += int(email_sent)

            self.notifications.log_audit_event(
                "quote_expiry_reminder_sent",
                {
                    "quote_number": quote.quote_number,
                    "days_until_expiry": days_left,
                    "customer_email": customer.email,
                    "email_sent": email_sent,
                },
            )
            quote.expiry_notified_at = now

        self.db.commit()
        logger.info(
            f"Expiring quotes: {len(quotes)} checked, {notified} notified, "
            f"{emails_sent} emailed, {expired} expired"
        )
        return {"checked": len(quotes), "notified": notified, "emails_sent": emails_sent, "expired": expired}
