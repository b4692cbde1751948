"""
Delivery address collection by magic link.

Staff send the customer a single-use link for an order that has no delivery
address. The customer fills in the address on a public page, which saves it
to their address book and attaches it to the order.
"""
from datetime import datetime, timedelta
from typing import Any, Dict

from sqlalchemy.orm import Session

from ..config.settings import get_settings
from ..config.logging import get_logger, log_business_event
from ..core.exceptions import BadRequestError, InvalidMagicLinkError
from ..core.security import generate_secure_token, hash_token
from ..models.customer import CustomerAddress
from ..models.enums import TokenType
from ..models.order import Order
from ..models.quote import MagicLinkToken
from ..repositories.quote_repo import QuoteRepository
from ..schemas.customer import CustomerAddressCreate
from ..utils.email_utils import format_timestamp
from .customer_service import CustomerService
from .email_service import EmailDeliveryService
from .notification_service import NotificationService
from .order_service import FULFILLED_STATUSES, OrderService

logger = get_logger(__name__)
settings = get_settings()


def delivery_address_url(token: str) -> str:
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/delivery-address?token={token}"


def one_line_address(address: CustomerAddress) -> str:
    parts = [address.street_address, address.city, address.region, address.country]
    return ", ".join(part for part in parts if part)


class DeliveryAddressService:
    def __init__(self, db: Session, email_delivery: EmailDeliveryService = None,
                 notifications: NotificationService = None):
        self.db = db
        self.token_repo = QuoteRepository()
        self.email_delivery = email_delivery or EmailDeliveryService(db)
        self.notifications = notifications or NotificationService(db, self.email_delivery)
        self.orders = OrderService(db, notifications=self.notifications)

    def request_delivery_address(self, order_id: int, email: str = None, actor: str = None) -> Dict[str, Any]:
        """Email the customer a link to supply the delivery address for an order."""
        order = self.orders.get_order(order_id)
        if order.status in FULFILLED_STATUSES:
            raise BadRequestError(f"Delivery address cannot change once the order is {order.status}")
        customer = order.customer
        recipient = email or customer.email
        if not recipient:
            raise BadRequestError("Customer has no email address", field="email")

        token = generate_secure_token()
        expires_at = datetime.utcnow() + timedelta(days=settings.DELIVERY_ADDRESS_TOKEN_DAYS)
        self.db.add(MagicLinkToken(
            token_hash=hash_token(token),
            token_type=TokenType.DELIVERY_ADDRESS,
            order_id=order.id,
            email=recipient,
            expires_at=expires_at,
            created_by=actor,
        ))
        self.db.flush()

        result = self.email_delivery.send_template(
            "delivery_address_request", recipient,
            {
                "order_number": order.order_number,
                "customer_name": customer.contact_name or customer.company_name,
                "address_url": delivery_address_url(token),
                "expires_at": format_timestamp(expires_at),
            },
            order_id=order.id,
            customer_id=order.customer_id,
        )
        self.notifications.notify_customer_users(
            order.customer_id, "delivery_address_request", "Delivery Address Required",
            f"Please provide the delivery address for order {order.order_number}",
            data={"order_id": order.id},
        )
        self.notifications.log_audit_event(
            "delivery_address_requested", {"order_id": order.id, "email": recipient}, actor=actor
        )
        self.db.commit()
        log_business_event("delivery_address_requested", order.order_number,
                           order_id=order.id, customer_id=order.customer_id)
        return {
            "order_id": order.id,
            "address_url": delivery_address_url(token),
            "expires_at": expires_at,
            "email_status": result.status,
        }

    def resolve_address_token(self, token: str, now: datetime = None, for_update: bool = False) -> MagicLinkToken:
        """A usable delivery address token, or InvalidMagicLinkError."""
        if not token:
            raise InvalidMagicLinkError("Invalid Link", "Missing token")
        link = self.token_repo.get_token(self.db, hash_token(token), for_update=for_update)
        if link is None or link.token_type != TokenType.DELIVERY_ADDRESS:
            raise InvalidMagicLinkError(
                "Link Expired",
                "This delivery address link has expired or is invalid. Please contact us for a new link.",
            )
        if link.is_expired(now):
            raise InvalidMagicLinkError(
                "Link Expired", "This delivery address link has expired. Please contact us for a new link."
            )
        if link.is_used:
            raise InvalidMagicLinkError("Already Processed", "We already have the delivery address for this order.")
        if link.order.status in FULFILLED_STATUSES:
            raise InvalidMagicLinkError(
                "Already Processed", f"Order {link.order.order_number} is {link.order.status}."
            )
        return link

    def confirm_delivery_address(self, token: str, address_data: CustomerAddressCreate,
                                 ip_address: str = None) -> Order:
        """Save the submitted address, attach it to the order and confirm by email."""
        link = self.resolve_address_token(token, for_update=True)
        order = link.order
        customer = order.customer

        address = CustomerAddress(**address_data.model_dump())
        customer.addresses.append(address)
        CustomerService._ensure_single_default(customer, address if address.is_default else None)
        self.db.flush()

        order.delivery_address_id = address.id
        order.updated_by = link.email
        link.used_at = datetime.utcnow()
        link.update_metadata("ip_address", ip_address)
        self.notifications.log_audit_event(
            "delivery_address_confirmed",
            {"order_id": order.id, "address_id": address.id, "ip_address": ip_address},
            actor=link.email,
        )
        self.db.commit()
        self.db.refresh(order)

        self._send_confirmations(order, address, link.email)
        log_business_event("delivery_address_confirmed", order.order_number,
                           order_id=order.id, customer_id=order.customer_id)
        return order

    def _send_confirmations(self, order: Order, address: CustomerAddress, recipient: str):
        customer = order.customer
        context = {
            "order_number": order.order_number,
            "customer_name": customer.contact_name or customer.company_name,
            "recipient_name": address.recipient_name,
            "phone": address.phone,
            "digital_address": address.digital_address,
            "address": one_line_address(address),
        }
        try:
            self.email_delivery.send_template(
                "delivery_address_confirmed", recipient, context,
                order_id=order.id, customer_id=order.customer_id,
            )
            self.notifications.notify_admins(
                "delivery_address_confirmed",
                f"Delivery address confirmed: {order.order_number}",
                f"{customer.company_name} confirmed delivery to {one_line_address(address)}. "
                f"The order is ready for shipment preparation.",
                data={"order_id": order.id, "address_id": address.id},
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to send address confirmation for {order.order_number}: {e}")
