from types import SimpleNamespace

import pytest

from backend.models.enums import OrderStatus, PaymentStatus
from backend.services.order_status import (
    VALID_TRANSITIONS,
    format_transition_error,
    get_allowed_transitions,
    get_blocker_reason,
    get_status_label,
    is_valid_transition,
    parse_status_transition_error,
    requires_delivery_address,
)


def test_every_status_has_a_transition_entry():
    assert set(VALID_TRANSITIONS) == set(OrderStatus)


@pytest.mark.parametrize("old, new", [
    ("order_confirmed", "pending_payment"),
    ("pending_payment", "payment_received"),
    ("payment_received", "processing"),
    ("processing", "ready_to_ship"),
    ("ready_to_ship", "shipped"),
    ("shipped", "delivered"),
    ("shipped", "delivery_failed"),
    ("delivery_failed", "shipped"),
    ("payment_rejected", "pending_payment"),
    ("on_hold", "processing"),
])
def test_allowed_transitions(old, new):
    assert is_valid_transition(old, new)


@pytest.mark.parametrize("old, new", [
    ("order_confirmed", "shipped"),
    ("pending_payment", "processing"),
    ("shipped", "cancelled"),
    ("delivered", "processing"),
    ("cancelled", "order_confirmed"),
    ("processing", "not_a_status"),
    ("not_a_status", "processing"),
])
def test_rejected_transitions(old, new):
    assert not is_valid_transition(old, new)


def test_terminal_statuses_have_no_way_out():
    assert get_allowed_transitions(OrderStatus.DELIVERED) == []
    assert get_allowed_transitions(OrderStatus.CANCELLED) == []


def test_format_transition_error_lists_allowed_targets():
    message = format_transition_error(OrderStatus.SHIPPED, OrderStatus.CANCELLED)
    assert message == "Invalid transition: shipped → cancelled. Allowed: delivered, delivery_failed"
    assert format_transition_error(OrderStatus.DELIVERED, OrderStatus.SHIPPED).endswith("Allowed: none")


def test_address_is_required_for_shipping_statuses_only():
    assert requires_delivery_address(OrderStatus.READY_TO_SHIP)
    assert requires_delivery_address("shipped")
    assert not requires_delivery_address(OrderStatus.PROCESSING)


def test_status_labels():
    assert get_status_label(OrderStatus.SHIPPED) == "On the Way"
    assert get_status_label(OrderStatus.SHIPPED, customer_facing=False) == "Shipped"
    assert get_status_label("mystery") == "Processing"


class TestParseStatusTransitionError:
    def test_payment_required(self):
        result = parse_status_transition_error("Payment must be verified before processing")
        assert result["action"] == "verify-payment"
        assert result["title"] == "Payment Required"

    def test_balance_is_taken_from_message(self):
        result = parse_status_transition_error(
            "Order must be fully paid before shipping. Balance: GHS 500.00"
        )
        assert result["action"] == "request-balance"
        assert result["description"] == "Cannot proceed to shipping. Outstanding balance: GHS 500.00"

    def test_balance_falls_back_to_order(self):
        order = SimpleNamespace(currency="GHS", balance_remaining=1250.5)
        result = parse_status_transition_error("Order has a balance remaining", order)
        assert result["description"].endswith("GHS 1,250.50")

    def test_missing_address(self):
        assert parse_status_transition_error("Missing delivery address")["action"] == "request-address"

    def test_invalid_transition(self):
        message = format_transition_error(OrderStatus.ORDER_CONFIRMED, OrderStatus.SHIPPED)
        assert parse_status_transition_error(message)["action"] == "view-order"

    def test_tracking(self):
        result = parse_status_transition_error("Tracking number and carrier are required before shipping")
        assert result["action"] == "add-tracking"

    def test_unknown_message_is_passed_through(self):
        result = parse_status_transition_error("Database is on fire")
        assert result == {"title": "Status Update Failed", "description": "Database is on fire", "action": None}

    def test_empty_message(self):
        assert parse_status_transition_error(None)["description"] == \
            "Please check order requirements and try again."


def _order(status, payment_status=PaymentStatus.UNPAID, address_id=1, balance=0.0):
    return SimpleNamespace(status=status, payment_status=payment_status, delivery_address_id=address_id,
                           balance_remaining=balance, currency="GHS")


class TestBlockerReason:
    def test_partial_payment_while_processing(self):
        order = _order(OrderStatus.PROCESSING, PaymentStatus.PARTIALLY_PAID, balance=300)
        assert get_blocker_reason(order) == "Waiting for balance payment of GHS 300.00"

    def test_missing_address(self):
        order = _order(OrderStatus.READY_TO_SHIP, PaymentStatus.FULLY_PAID, address_id=None)
        assert get_blocker_reason(order) == "Waiting for customer to provide delivery address"

    def test_payment_received_but_not_settled(self):
        order = _order(OrderStatus.PAYMENT_RECEIVED, PaymentStatus.PARTIALLY_PAID)
        assert get_blocker_reason(order) == "Order cannot proceed until fully paid"

    def test_pending_payment(self):
        assert get_blocker_reason(_order(OrderStatus.PENDING_PAYMENT)) == \
            "Waiting for customer to submit payment proof"

    def test_nothing_blocking(self):
        assert get_blocker_reason(_order(OrderStatus.SHIPPED, PaymentStatus.FULLY_PAID)) is None
