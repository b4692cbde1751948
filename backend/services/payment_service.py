"""
Online card and mobile money payments through Paystack.

Paystack amounts are in minor units (pesewas/kobo). Webhooks are signed with
an HMAC-SHA512 of the raw request body keyed with the secret key.
"""
import json
import time
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from sqlalchemy.orm import Session

from ..config.settings import get_settings
from ..config.logging import get_logger, log_business_event, log_security_event
from ..core.security import verify_hmac_signature, SecurityEvent
from ..core.exceptions import (
    BadRequestError,
    ExternalServiceError,
    InternalServerError,
    InvalidSignatureError,
    NotFoundError,
)
from ..models.enums import OrderStatus, TransactionStatus
from ..models.order import Order, PaymentTransaction
from ..utils.email_utils import format_money
from .email_service import EmailDeliveryService
from .notification_service import NotificationService
from .order_service import OrderService

logger = get_logger(__name__)
settings = get_settings()

PAYSTACK_CHANNELS = ["card", "mobile_money", "bank", "ussd"]
PAYABLE_STATUSES = (OrderStatus.ORDER_CONFIRMED, OrderStatus.PENDING_PAYMENT, OrderStatus.PAYMENT_REJECTED)
GATEWAY_FAILED_STATUSES = ("failed", "abandoned", "reversed")


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def from_minor_units(amount) -> float:
    return round((amount or 0) / 100, 2)


def verify_webhook_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str] = None) -> bool:
    """Constant-time comparison of the ``x-paystack-signature`` header."""
    secret = secret or settings.PAYSTACK_SECRET_KEY
    if not secret:
        raise InternalServerError("Payment webhook secret not configured")
    return verify_hmac_signature(secret, raw_body, signature)


class PaymentService:
    def __init__(self, db: Session, http_client: httpx.Client = None, orders: OrderService = None,
                 notifications: NotificationService = None, email_delivery: EmailDeliveryService = None):
        self.db = db
        self.http_client = http_client
        self.email_delivery = email_delivery or EmailDeliveryService(db)
        self.notifications = notifications or NotificationService(db, self.email_delivery)
        self.orders = orders or OrderService(db, notifications=self.notifications)

    def _client(self) -> httpx.Client:
        if self.http_client is None:
            self.http_client = httpx.Client(
                base_url=settings.PAYSTACK_BASE_URL,
                timeout=settings.EXTERNAL_HTTP_TIMEOUT,
            )
        return self.http_client

    def get_transaction(self, reference: str) -> Optional[PaymentTransaction]:
        return self.db.query(PaymentTransaction).filter(PaymentTransaction.reference == reference).first()

    def list_transactions(self, order_id: int):
        self.orders.get_order(order_id)
        return self.db.query(PaymentTransaction).filter(
            PaymentTransaction.order_id == order_id
        ).order_by(PaymentTransaction.id.desc()).all()

    def initialize_payment(self, order_id: int, email: str, phone: str = None,
                           callback_url: str = None, actor: str = None) -> Dict[str, Any]:
        """Create a Paystack checkout for the order's outstanding balance."""
        if not settings.PAYSTACK_SECRET_KEY:
            raise InternalServerError("PAYSTACK_SECRET_KEY not configured")

        order = self.orders.get_order(order_id)
        if order.status not in PAYABLE_STATUSES:
            raise BadRequestError(f"Order {order.order_number} cannot be paid in status {order.status}")
        amount = order.balance_remaining if order.balance_remaining else order.total_amount
        if amount <= 0:
            raise BadRequestError(f"Order {order.order_number} has nothing left to pay")

        pending = self.db.query(PaymentTransaction).filter(
            PaymentTransaction.order_id == order.id,
            PaymentTransaction.status == TransactionStatus.PENDING,
        ).first()
        if pending:
            raise BadRequestError("Payment already initialized for this order")

        reference = f"{order.order_number}-{int(time.time() * 1000)}"
        payload = {
            "email": email,
            "amount": to_minor_units(amount),
            "currency": order.currency,
            "reference": reference,
            "callback_url": callback_url or settings.PAYSTACK_CALLBACK_URL,
            "channels": PAYSTACK_CHANNELS,
            "metadata": {
                "order_id": order.id,
                "order_number": order.order_number,
                "customer_phone": phone,
            },
        }

        try:
            response = self._client().post(
                "/transaction/initialize",
                json=payload,
                headers={"Authorization": f"Bearer {settings.PAYSTACK_SECRET_KEY}"},
            )
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Paystack initialize failed for {order.order_number}: {e}")
            raise ExternalServiceError("Paystack", "transaction initialize")

        if response.status_code >= 400 or not body.get("status"):
            logger.error(f"Paystack rejected initialize for {order.order_number}: {body.get('message')}")
            raise ExternalServiceError("Paystack", "transaction initialize")

        data = body.get("data") or {}
        transaction = PaymentTransaction(
            order_id=order.id,
            reference=reference,
            amount=amount,
            currency=order.currency,
            status=TransactionStatus.PENDING,
            authorization_url=data.get("authorization_url"),
            created_by=actor,
        )
        transaction.update_metadata("customer_email", email)
        transaction.update_metadata("initialize_response", data)
        self.db.add(transaction)
        order.payment_reference = reference
        self.db.commit()

        if order.status in (OrderStatus.ORDER_CONFIRMED, OrderStatus.PAYMENT_REJECTED):
            self.orders.update_status(order.id, OrderStatus.PENDING_PAYMENT, "Online payment initialized", actor)

        logger.info(f"Paystack payment {reference} initialized for {order.order_number}")
        return {
            "success": True,
            "reference": reference,
            "authorization_url": data.get("authorization_url"),
            "access_code": data.get("access_code"),
        }

    def verify_payment(self, reference: str) -> Dict[str, Any]:
        """
        Ask Paystack for the outcome of a checkout.

        Used by the checkout callback when the webhook has not arrived yet.
        A successful charge is recorded exactly as the webhook would record it.
        """
        if not settings.PAYSTACK_SECRET_KEY:
            raise InternalServerError("PAYSTACK_SECRET_KEY not configured")
        if not reference:
            raise BadRequestError("Payment reference is required", field="reference")

        transaction = self.get_transaction(reference)
        if transaction is None:
            raise NotFoundError("PaymentTransaction", reference)
        order = transaction.order
        if transaction.status == TransactionStatus.SUCCESS:
            return {
                "status": "success",
                "message": "Payment already verified",
                "order_number": order.order_number,
                "amount": transaction.amount,
                "currency": transaction.currency,
                "channel": transaction.channel,
            }

        try:
            response = self._client().get(
                f"/transaction/verify/{quote(reference, safe='')}",
                headers={"Authorization": f"Bearer {settings.PAYSTACK_SECRET_KEY}"},
            )
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Paystack verify failed for {reference}: {e}")
            raise ExternalServiceError("Paystack", "transaction verify")

        if response.status_code >= 400 or not body.get("status"):
            logger.error(f"Paystack rejected verify for {reference}: {body.get('message')}")
            raise ExternalServiceError("Paystack", "transaction verify")

        data = body.get("data") or {}
        gateway_status = data.get("status") or "pending"
        logger.info(f"Paystack verification for {reference}: {gateway_status}")

        if gateway_status == "success":
            self._charge_success(dict(data, reference=reference))
            message = "Payment verified successfully"
        elif gateway_status in GATEWAY_FAILED_STATUSES:
            transaction.status = TransactionStatus.FAILED
            transaction.failure_reason = data.get("gateway_response") or gateway_status
            transaction.update_metadata("gateway_response", data)
            self.db.commit()
            message = "Payment verification failed"
        else:
            message = "Payment is being processed"

        return {
            "status": gateway_status,
            "message": message,
            "order_number": order.order_number,
            "amount": from_minor_units(data.get("amount")),
            "currency": data.get("currency") or transaction.currency,
            "channel": data.get("channel"),
        }

    def request_balance_payment(self, order_id: int, actor: str = None) -> Dict[str, Any]:
        """Email the customer the outstanding balance on a part-paid order."""
        order = self.orders.get_order(order_id)
        if order.status == OrderStatus.CANCELLED:
            raise BadRequestError(f"Order {order.order_number} is cancelled")
        balance = round((order.total_amount or 0) - (order.amount_paid or 0), 2)
        if balance <= 0:
            raise BadRequestError(f"No balance remaining on order {order.order_number}")
        customer = order.customer
        if not customer or not customer.email:
            raise BadRequestError("Customer has no email address", field="email")

        result = self.email_delivery.send_template(
            "balance_payment_request", customer.email,
            {
                "order_number": order.order_number,
                "customer_name": customer.contact_name or customer.company_name,
                "currency": order.currency,
                "total_amount": format_money(order.total_amount),
                "amount_paid": format_money(order.amount_paid or 0),
                "balance_remaining": format_money(balance),
            },
            order_id=order.id,
            customer_id=order.customer_id,
        )
        self.notifications.notify_customer_users(
            order.customer_id, "balance_payment_request", "Balance Payment Required",
            f"Please complete the balance payment of {order.currency} {format_money(balance)} "
            f"for order {order.order_number}",
            data={"order_id": order.id, "balance_remaining": balance, "currency": order.currency},
        )
        self.notifications.log_audit_event(
            "balance_payment_requested",
            {"order_id": order.id, "balance_remaining": balance, "email_status": result.status},
            actor=actor,
        )
        self.db.commit()
        log_business_event("balance_payment_requested", f"{order.currency} {balance:,.2f}",
                           order_id=order.id, customer_id=order.customer_id)
        return {
            "order_id": order.id,
            "balance_remaining": balance,
            "currency": order.currency,
            "email_status": result.status,
        }

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    def process_webhook(self, raw_body: bytes, signature: Optional[str], ip_address: str = None) -> Dict[str, Any]:
        """Verify and dispatch a raw webhook body."""
        if not verify_webhook_signature(raw_body, signature):
            log_security_event(SecurityEvent.INVALID_WEBHOOK_SIGNATURE, details="Paystack webhook rejected",
                               ip_address=ip_address)
            raise InvalidSignatureError("webhook")
        try:
            payload = json.loads(raw_body)
        except ValueError:
            raise BadRequestError("Webhook body is not valid JSON")
        return self.handle_event(payload)

    def handle_event(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        event = payload.get("event")
        data = payload.get("data") or {}
        logger.info(f"Paystack webhook event received: {event}")

        if event == "charge.success":
            return self._charge_success(data)
        if event == "charge.failed":
            return self._charge_failed(data)
        logger.info(f"Unhandled webhook event: {event}")
        return {"event": event, "handled": False}

    def _find_order(self, reference: str, transaction: Optional[PaymentTransaction]) -> Optional[Order]:
        if transaction is not None:
            return transaction.order
        return self.orders.order_repo.get_by_payment_reference(self.db, reference)

    def _charge_success(self, data: Dict[str, Any]) -> Dict[str, Any]:
        reference = data.get("reference")
        transaction = self.get_transaction(reference)
        if transaction is not None and transaction.status == TransactionStatus.SUCCESS:
            logger.info(f"Payment {reference} already processed")
            return {"event": "charge.success", "handled": True, "duplicate": True}

        order = self._find_order(reference, transaction)
        if order is None:
            logger.warning(f"No order for Paystack reference {reference}")
            return {"event": "charge.success", "handled": False}
        if transaction is None and order.payment_reference == reference and order.payment_confirmed_at:
            logger.info(f"Payment {reference} already recorded on {order.order_number}")
            return {"event": "charge.success", "handled": True, "duplicate": True}

        amount = from_minor_units(data.get("amount"))
        channel = data.get("channel")
        if transaction is not None:
            transaction.status = TransactionStatus.SUCCESS
            transaction.channel = channel
            transaction.paid_at = datetime.utcnow()
            transaction.update_metadata("gateway_transaction_id", str(data.get("id")) if data.get("id") else None)
            transaction.update_metadata("gateway_response", data)
            self.db.flush()

        order = self.orders.record_payment(
            order.id, amount, method="paystack", reference=reference, channel=channel, actor="paystack"
        )
        log_business_event("online_payment_received", f"{order.currency} {amount:,.2f} via {channel}",
                           order_id=order.id, customer_id=order.customer_id)
        self._send_confirmation_emails(order, amount, data)
        return {"event": "charge.success", "handled": True, "order_id": order.id}

    def _send_confirmation_emails(self, order: Order, amount: float, data: Dict[str, Any]):
        customer = order.customer
        customer_name = (customer.contact_name or customer.company_name) if customer else ""
        currency = data.get("currency") or order.currency
        context = {
            "order_number": order.order_number,
            "customer_name": customer_name,
            "currency": currency,
            "amount": f"{amount:,.2f}",
            "reference": data.get("reference"),
            "channel": data.get("channel"),
        }
        customer_email = (data.get("customer") or {}).get("email") or (customer.email if customer else None)
        try:
            self.email_delivery.send_template(
                "payment_confirmation_customer", customer_email, context,
                order_id=order.id, customer_id=order.customer_id,
            )
            self.email_delivery.send_template(
                "payment_confirmation_admin", settings.ADMIN_NOTIFICATION_EMAIL, context,
                order_id=order.id, customer_id=order.customer_id,
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to send payment emails for {order.order_number}: {e}")

    def _charge_failed(self, data: Dict[str, Any]) -> Dict[str, Any]:
        reference = data.get("reference")
        transaction = self.get_transaction(reference)
        if transaction is None:
            logger.warning(f"Failed charge for unknown reference {reference}")
            return {"event": "charge.failed", "handled": False}

        transaction.status = TransactionStatus.FAILED
        transaction.failure_reason = data.get("gateway_response") or data.get("message")
        transaction.update_metadata("gateway_response", data)
        order = transaction.order
        self.notifications.notify_admins(
            "payment_failed",
            f"Payment failed: {order.order_number}",
            f"Paystack charge {reference} for {transaction.currency} {transaction.amount:,.2f} failed"
            f"{': ' + transaction.failure_reason if transaction.failure_reason else ''}.",
            data={"order_id": order.id, "reference": reference},
        )
        self.db.commit()
        return {"event": "charge.failed", "handled": True, "order_id": order.id}
