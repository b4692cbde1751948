from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from ..config.settings import get_settings
from ..config.logging import get_logger, log_business_event
from ..core.exceptions import (
    NotFoundError,
    BadRequestError,
    ConflictError,
    BusinessLogicError,
    InvalidOrderStatusError,
    MissingDeliveryAddressError,
    PaymentRequiredError,
    ShippingDetailsRequiredError,
    InactiveCustomerError,
    QuoteStateError,
)
from ..core.retry import with_retry
from ..models.enums import OrderStatus, PaymentStatus, QuoteStatus, LedgerEntryType
from ..models.order import Order, OrderItem, OrderStatusHistory
from ..models.quote import Quote
from ..repositories.customer_repo import CustomerRepository
from ..repositories.order_repo import OrderRepository
from ..utils.identifiers import generate_reference, ORDER_PREFIX
from .credit_service import CreditService
from .notification_service import NotificationService
from .order_feed import OrderEvent, OrderEventHandler, OrderEventPublisher, get_order_publisher
from .order_status import (
    is_valid_transition,
    format_transition_error,
    requires_delivery_address,
    get_allowed_transitions,
    get_blocker_reason,
    get_status_label,
)

logger = get_logger(__name__)
settings = get_settings()

VERIFIED_PAYMENT_STATUSES = (PaymentStatus.PARTIALLY_PAID, PaymentStatus.FULLY_PAID, PaymentStatus.OVERPAID)
FULFILLED_STATUSES = (OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED)


def calculate_payment_status(total_amount: float, amount_paid: float) -> PaymentStatus:
    paid = round(amount_paid or 0, 2)
    total = round(total_amount or 0, 2)
    if paid <= 0:
        return PaymentStatus.UNPAID
    if paid < total:
        return PaymentStatus.PARTIALLY_PAID
    if paid == total:
        return PaymentStatus.FULLY_PAID
    return PaymentStatus.OVERPAID


class OrderService:
    def __init__(self, db: Session, publisher: OrderEventPublisher = None,
                 notifications: NotificationService = None):
        self.db = db
        self.order_repo = OrderRepository()
        self.customer_repo = CustomerRepository()
        self.publisher = publisher or get_order_publisher()
        self.notifications = notifications or NotificationService(db)
        self.credit = CreditService(db, self.notifications)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_orders(self, sleep=None, **filters) -> Dict[str, Any]:
        """Order list with retries on transient database errors."""
        def fetch():
            return self.order_repo.list_orders(self.db, **filters)

        def rollback(attempt: int, error: BaseException):
            self.db.rollback()

        kwargs = {"sleep": sleep} if sleep else {}
        return with_retry(fetch, max_retries=3, base_delay=1.0, on_retry=rollback, **kwargs)

    def get_order(self, order_id: int) -> Order:
        return self.order_repo.get_or_404(self.db, order_id, "Order")

    def get_blocker(self, order_id: int) -> Dict[str, Any]:
        order = self.get_order(order_id)
        return {
            "order_id": order.id,
            "status": order.status,
            "blocker": get_blocker_reason(order),
            "allowed_transitions": [str(s) for s in get_allowed_transitions(order.status)],
        }

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_order_from_quote(self, quote: Quote, actor: str = None, apply_credit: bool = None) -> Order:
        """Turn an accepted quote into an order and mark the quote converted."""
        if quote.status != QuoteStatus.ACCEPTED:
            raise QuoteStateError(quote.quote_number, quote.status, "convert")
        customer = quote.customer
        if not customer.is_active_customer:
            raise InactiveCustomerError(customer.customer_code)
        if not quote.items:
            raise BadRequestError(f"Quote {quote.quote_number} has no items")

        total = round(sum(item.line_total for item in quote.items), 2)
        default_address = customer.default_address
        order = Order(
            order_number=generate_reference(ORDER_PREFIX),
            customer_id=quote.customer_id,
            quote_id=quote.id,
            standing_order_id=quote.standing_order_id,
            status=OrderStatus.ORDER_CONFIRMED,
            payment_status=PaymentStatus.UNPAID,
            currency=quote.currency,
            total_amount=total,
            amount_paid=0.0,
            balance_remaining=total,
            delivery_address_id=default_address.id if default_address else None,
            created_by=actor,
        )
        for item in quote.items:
            order.items.append(OrderItem(
                product_name=item.product_name,
                description=item.description,
                quantity=item.quantity,
                unit=item.unit,
                unit_price=item.unit_price,
                grade=item.grade,
                specifications=item.specifications,
            ))
        order.status_history.append(OrderStatusHistory(
            old_status=None, new_status=str(OrderStatus.ORDER_CONFIRMED),
            notes=f"Created from quote {quote.quote_number}", changed_by=actor,
        ))
        self.db.add(order)

        quote.status = QuoteStatus.CONVERTED
        quote.converted_at = datetime.utcnow()
        self.db.flush()

        use_credit = quote.use_credit if apply_credit is None else apply_credit
        if use_credit:
            self._apply_credit_or_notify(order)

        self.db.commit()
        self.db.refresh(order)
        log_business_event("order_created", f"from quote {quote.quote_number}",
                           order_id=order.id, customer_id=order.customer_id)
        return order

    def _apply_credit_or_notify(self, order: Order):
        """Credit failures leave the order unpaid and alert the admins."""
        try:
            self.credit.apply_credit_to_order(order, commit=False)
        except (BusinessLogicError, BadRequestError, ConflictError) as e:
            logger.warning(f"Credit not applied to order {order.order_number}: {e.detail}")
            self.notifications.notify_admins(
                "credit_application_failed",
                f"Credit not applied: {order.order_number}",
                f"Order {order.order_number} was created without credit. {e.detail}",
                data={"order_id": order.id, "customer_id": order.customer_id},
            )

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    def _check_gates(self, order: Order, new_status: OrderStatus):
        if not is_valid_transition(order.status, new_status):
            raise InvalidOrderStatusError(format_transition_error(order.status, new_status))

        if new_status == OrderStatus.PROCESSING:
            if order.payment_status not in VERIFIED_PAYMENT_STATUSES and not order.is_on_credit:
                raise PaymentRequiredError("Payment must be verified before processing")

        if new_status == OrderStatus.SHIPPED and not (order.is_fully_paid or order.is_on_credit):
            raise PaymentRequiredError(
                f"Order must be fully paid before shipping. "
                f"Balance: {order.currency} {order.balance_remaining:,.2f}"
            )

        if requires_delivery_address(new_status) and not order.delivery_address_id:
            raise MissingDeliveryAddressError()

        if new_status == OrderStatus.SHIPPED and not (order.carrier and order.tracking_number):
            raise ShippingDetailsRequiredError()

    def _apply_status(self, order: Order, new_status: OrderStatus, notes: str = None, actor: str = None):
        old_status = order.status
        now = datetime.utcnow()
        order.status = new_status
        order.updated_by = actor

        if new_status == OrderStatus.PAYMENT_RECEIVED and order.payment_verified_at is None:
            order.payment_verified_at = now
        elif new_status == OrderStatus.SHIPPED:
            order.shipped_at = now
        elif new_status == OrderStatus.DELIVERED:
            order.delivered_at = now
        elif new_status == OrderStatus.CANCELLED:
            order.cancelled_at = now
            outstanding = self.credit.outstanding_credit(order)
            if outstanding > 0:
                self.credit.release_credit(
                    order, outstanding, reason=f"Order {order.order_number} cancelled", commit=False
                )

        order.status_history.append(OrderStatusHistory(
            old_status=str(old_status), new_status=str(new_status), notes=notes, changed_by=actor,
        ))
        return old_status

    def _after_status_change(self, order: Order, old_status):
        event = OrderEvent.from_order(order, old_status)
        self.publisher.publish(event, fallback=OrderEventHandler(self.db).handle)

    def update_status(self, order_id: int, new_status: OrderStatus, notes: str = None,
                      actor: str = None) -> Order:
        order = self.get_order(order_id)
        self._check_gates(order, new_status)
        old_status = self._apply_status(order, new_status, notes, actor)
        self.notifications.notify_customer_users(
            order.customer_id, "order_status",
            f"Order {order.order_number} updated",
            f"Your order is now: {get_status_label(new_status)}",
            data={"order_id": order.id, "status": str(new_status)},
        )
        self.db.commit()
        log_business_event("order_status_changed", f"{old_status} -> {new_status}",
                           order_id=order.id, customer_id=order.customer_id)

        self._after_status_change(order, old_status)
        self.db.refresh(order)
        return order

    def bulk_update_status(self, order_ids: List[int], new_status: OrderStatus, notes: str = None,
                           actor: str = None) -> Dict[str, Any]:
        """Apply one status to many orders. Each order passes or fails on its own."""
        orders = {order.id: order for order in self.order_repo.get_by_ids(self.db, order_ids)}
        success: List[str] = []
        failed: List[Dict[str, str]] = []
        changed = []

        for order_id in order_ids:
            order = orders.get(order_id)
            if order is None:
                failed.append({"id": str(order_id), "error": "Order not found"})
                continue

            if not is_valid_transition(order.status, new_status):
                failed.append({"id": order.order_number, "error": format_transition_error(order.status, new_status)})
                continue

            if requires_delivery_address(new_status) and not order.delivery_address_id:
                failed.append({"id": order.order_number, "error": "Missing delivery address"})
                continue

            try:
                old_status = self._apply_status(order, new_status, notes, actor)
                if notes:
                    order.notes = f"{order.notes or ''}\n\n[BULK UPDATE]: {notes}"
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                failed.append({"id": order.order_number, "error": str(e) or "Unknown error"})
                continue

            success.append(order.order_number)
            changed.append((order, old_status))

        self.notifications.log_audit_event(
            "bulk_order_update",
            {
                "total_orders": len(order_ids),
                "new_status": str(new_status),
                "success_count": len(success),
                "failed_count": len(failed),
                "notes": notes,
            },
            severity="medium" if failed else "low",
            actor=actor,
        )
        self.db.commit()

        for order, old_status in changed:
            self._after_status_change(order, old_status)

        logger.info(f"Bulk update to {new_status}: {len(success)} succeeded, {len(failed)} failed")
        return {"success": success, "failed": failed}

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def record_payment(self, order_id: int, amount: float, method: str = "bank_transfer",
                       reference: str = None, channel: str = None, actor: str = None) -> Order:
        """Add a payment to the order and recompute its balance and payment status."""
        order = self.get_order(order_id)
        if order.status == OrderStatus.CANCELLED:
            raise BadRequestError(f"Order {order.order_number} is cancelled")
        if amount <= 0:
            raise BadRequestError("Payment amount must be greater than 0", field="amount")

        outstanding_credit = self.credit.outstanding_credit(order)
        now = datetime.utcnow()

        order.amount_paid = round((order.amount_paid or 0) + amount, 2)
        order.balance_remaining = round(max(0.0, order.total_amount - order.amount_paid), 2)
        order.payment_status = calculate_payment_status(order.total_amount, order.amount_paid)
        if not order.is_on_credit:
            order.payment_method = method
        order.payment_reference = reference or order.payment_reference
        order.payment_channel = channel or order.payment_channel
        order.payment_verified_at = order.payment_verified_at or now
        order.payment_confirmed_at = now
        order.payment_rejection_reason = None

        if outstanding_credit > 0:
            reason = f"Payment on order {order.order_number}"
            if reference:
                reason = f"{reason} ({reference})"
            self.credit.release_credit(
                order, min(amount, outstanding_credit),
                reason=reason,
                entry_type=LedgerEntryType.PAYMENT,
                commit=False,
            )

        old_status = None
        if order.status == OrderStatus.PENDING_PAYMENT:
            old_status = self._apply_status(order, OrderStatus.PAYMENT_RECEIVED,
                                            f"Payment of {order.currency} {amount:,.2f} recorded", actor)

        self.db.commit()
        log_business_event("payment_recorded", f"{order.currency} {amount:,.2f}",
                           order_id=order.id, customer_id=order.customer_id)
        if old_status is not None:
            self._after_status_change(order, old_status)
        self.db.refresh(order)
        return order

    def reject_payment(self, order_id: int, reason: str, actor: str = None) -> Order:
        order = self.get_order(order_id)
        if order.status not in (OrderStatus.PENDING_PAYMENT, OrderStatus.PAYMENT_RECEIVED):
            raise InvalidOrderStatusError(
                f"Cannot reject payment for order {order.order_number} in status {order.status}"
            )

        old_status = order.status
        order.status = OrderStatus.PAYMENT_REJECTED
        order.payment_rejection_reason = reason
        order.payment_verified_at = None
        order.status_history.append(OrderStatusHistory(
            old_status=str(old_status), new_status=str(OrderStatus.PAYMENT_REJECTED),
            notes=reason, changed_by=actor,
        ))
        self.notifications.notify_customer_users(
            order.customer_id, "payment_rejected",
            f"Payment rejected for order {order.order_number}", reason,
            data={"order_id": order.id},
        )
        self.db.commit()
        self._after_status_change(order, old_status)
        self.db.refresh(order)
        return order

    # ------------------------------------------------------------------
    # Fulfilment details
    # ------------------------------------------------------------------

    def set_shipping_details(self, order_id: int, carrier: str, tracking_number: str,
                             actor: str = None) -> Order:
        order = self.get_order(order_id)
        if order.status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
            raise BadRequestError(f"Order {order.order_number} is {order.status}")
        order.carrier = carrier
        order.tracking_number = tracking_number
        order.updated_by = actor
        self.db.commit()
        self.db.refresh(order)
        return order

    def set_delivery_address(self, order_id: int, address_id: int, actor: str = None) -> Order:
        order = self.get_order(order_id)
        if order.status in FULFILLED_STATUSES:
            raise BadRequestError(f"Delivery address cannot change once the order is {order.status}")
        address = self.customer_repo.get_address(self.db, order.customer_id, address_id)
        if not address:
            raise NotFoundError("CustomerAddress", address_id)
        order.delivery_address_id = address.id
        order.updated_by = actor
        self.db.commit()
        self.db.refresh(order)
        return order
