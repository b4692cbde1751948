"""
Order status transition table, status display configuration and helpers
that turn status-change failures into actionable messages.

Both the single-order and the bulk status update go through
``is_valid_transition``.
"""
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from ..models.enums import OrderStatus, PaymentStatus


VALID_TRANSITIONS: Dict[OrderStatus, List[OrderStatus]] = {
    OrderStatus.ORDER_CONFIRMED: [OrderStatus.PENDING_PAYMENT, OrderStatus.CANCELLED],
    OrderStatus.PENDING_PAYMENT: [OrderStatus.PAYMENT_RECEIVED, OrderStatus.CANCELLED],
    OrderStatus.PAYMENT_RECEIVED: [OrderStatus.PROCESSING, OrderStatus.CANCELLED],
    OrderStatus.PROCESSING: [OrderStatus.READY_TO_SHIP, OrderStatus.CANCELLED],
    OrderStatus.READY_TO_SHIP: [OrderStatus.SHIPPED, OrderStatus.CANCELLED],
    OrderStatus.SHIPPED: [OrderStatus.DELIVERED, OrderStatus.DELIVERY_FAILED],
    OrderStatus.DELIVERY_FAILED: [OrderStatus.SHIPPED],
    OrderStatus.PAYMENT_REJECTED: [OrderStatus.PENDING_PAYMENT, OrderStatus.CANCELLED],
    OrderStatus.ON_HOLD: [OrderStatus.PROCESSING, OrderStatus.CANCELLED],
    OrderStatus.DELIVERY_CONFIRMATION_PENDING: [OrderStatus.DELIVERED, OrderStatus.DELIVERY_FAILED],
    OrderStatus.DELIVERED: [],
    OrderStatus.CANCELLED: [],
}

ADDRESS_REQUIRED_STATUSES = {OrderStatus.READY_TO_SHIP, OrderStatus.SHIPPED}

# Statuses that trigger the order tracking email
TRACKING_EMAIL_STATUSES = {
    OrderStatus.PROCESSING,
    OrderStatus.READY_TO_SHIP,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
}


@dataclass(frozen=True)
class StatusConfig:
    label: str
    customer_label: str
    description: str
    group: str  # active, completed, cancelled


STATUS_CONFIG: Dict[OrderStatus, StatusConfig] = {
    OrderStatus.ORDER_CONFIRMED: StatusConfig("Order Confirmed", "Order Placed", "Your order has been confirmed", "active"),
    OrderStatus.PENDING_PAYMENT: StatusConfig("Pending Payment", "Payment Required", "Awaiting payment confirmation", "active"),
    OrderStatus.PAYMENT_RECEIVED: StatusConfig("Payment Received", "Payment Confirmed", "Payment has been confirmed", "active"),
    OrderStatus.PROCESSING: StatusConfig("Processing", "Being Prepared", "Order is being processed", "active"),
    OrderStatus.READY_TO_SHIP: StatusConfig("Ready to Ship", "Ready for Dispatch", "Order is packed and ready", "active"),
    OrderStatus.SHIPPED: StatusConfig("Shipped", "On the Way", "Order has been shipped", "active"),
    OrderStatus.DELIVERED: StatusConfig("Delivered", "Delivered", "Order has been delivered", "completed"),
    OrderStatus.CANCELLED: StatusConfig("Cancelled", "Cancelled", "Order has been cancelled", "cancelled"),
    OrderStatus.DELIVERY_FAILED: StatusConfig("Delivery Failed", "Delivery Issue", "Delivery attempt failed", "active"),
    OrderStatus.ON_HOLD: StatusConfig("On Hold", "On Hold", "Order is temporarily on hold", "active"),
    OrderStatus.DELIVERY_CONFIRMATION_PENDING: StatusConfig(
        "Pending Confirmation", "Delivery Pending", "Awaiting delivery confirmation", "active"),
    OrderStatus.PAYMENT_REJECTED: StatusConfig("Payment Rejected", "Payment Issue", "Payment proof was rejected", "active"),
}

UNKNOWN_STATUS = StatusConfig("Unknown", "Processing", "Status unknown", "active")


def _coerce(status: Union[OrderStatus, str, None]) -> Optional[OrderStatus]:
    if status is None or isinstance(status, OrderStatus):
        return status
    try:
        return OrderStatus(status)
    except ValueError:
        return None


def get_allowed_transitions(status: Union[OrderStatus, str]) -> List[OrderStatus]:
    current = _coerce(status)
    if current is None:
        return []
    return list(VALID_TRANSITIONS.get(current, []))


def is_valid_transition(old_status: Union[OrderStatus, str], new_status: Union[OrderStatus, str]) -> bool:
    new = _coerce(new_status)
    return new is not None and new in get_allowed_transitions(old_status)


def format_transition_error(old_status, new_status) -> str:
    allowed = get_allowed_transitions(old_status)
    allowed_text = ", ".join(str(s) for s in allowed) if allowed else "none"
    return f"Invalid transition: {old_status} → {new_status}. Allowed: {allowed_text}"


def requires_delivery_address(status: Union[OrderStatus, str]) -> bool:
    return _coerce(status) in ADDRESS_REQUIRED_STATUSES


def get_status_config(status: Union[OrderStatus, str]) -> StatusConfig:
    current = _coerce(status)
    return STATUS_CONFIG.get(current, UNKNOWN_STATUS) if current else UNKNOWN_STATUS


def get_status_label(status: Union[OrderStatus, str], customer_facing: bool = True) -> str:
    config = get_status_config(status)
    return config.customer_label if customer_facing else config.label


_BALANCE_PATTERN = re.compile(r"balance:?\s*((?:[a-z]{3}\s*)?[\d,.]+)", re.IGNORECASE)


def parse_status_transition_error(message: Optional[str], order=None) -> Dict[str, Optional[str]]:
    """
    Map a status-change failure message to ``{title, description, action}``.

    ``action`` is one of verify-payment, request-balance, request-address,
    view-order, add-tracking, or None.
    """
    message = message or ""
    lowered = message.lower()

    if "payment must be verified" in lowered or "verified deposit" in lowered:
        return {
            "title": "Payment Required",
            "description": "This order needs a verified deposit before processing can begin.",
            "action": "verify-payment",
        }

    if "fully paid" in lowered or "balance remaining" in lowered:
        match = _BALANCE_PATTERN.search(message)
        if match:
            balance = match.group(1).strip().rstrip(".")
        elif order is not None and getattr(order, "balance_remaining", None) is not None:
            balance = f"{order.currency} {order.balance_remaining:,.2f}"
        else:
            balance = "outstanding"
        return {
            "title": "Balance Payment Required",
            "description": f"Cannot proceed to shipping. Outstanding balance: {balance}",
            "action": "request-balance",
        }

    if "delivery address" in lowered:
        return {
            "title": "Address Required",
            "description": "Customer must provide a delivery address before shipping.",
            "action": "request-address",
        }

    if "invalid transition" in lowered or "status transition" in lowered:
        return {
            "title": "Invalid Status Change",
            "description": "This status transition is not allowed. Please check order requirements.",
            "action": "view-order",
        }

    if "tracking" in lowered or "carrier" in lowered:
        return {
            "title": "Tracking Details Required",
            "description": "Please provide carrier and tracking information before marking as shipped.",
            "action": "add-tracking",
        }

    return {
        "title": "Status Update Failed",
        "description": message or "Please check order requirements and try again.",
        "action": None,
    }


def get_blocker_reason(order) -> Optional[str]:
    """Why an order cannot move forward right now, or None."""
    status = _coerce(order.status)
    payment_status = order.payment_status
    currency = order.currency or "GHS"

    if status == OrderStatus.PROCESSING and payment_status == PaymentStatus.PARTIALLY_PAID:
        balance = order.balance_remaining or 0
        return f"Waiting for balance payment of {currency} {balance:,.2f}"

    if status in (OrderStatus.PROCESSING, OrderStatus.READY_TO_SHIP) and not order.delivery_address_id:
        return "Waiting for customer to provide delivery address"

    if status == OrderStatus.PAYMENT_RECEIVED and payment_status not in (
            PaymentStatus.FULLY_PAID, PaymentStatus.OVERPAID):
        return "Order cannot proceed until fully paid"

    if status == OrderStatus.PENDING_PAYMENT and payment_status in (PaymentStatus.UNPAID, None):
        return "Waiting for customer to submit payment proof"

    return None
