"""
Order models: orders, order lines, status history and payment transactions.
"""
from sqlalchemy import Column, Integer, String, Float, Date, DateTime, Text, ForeignKey, JSON
from sqlalchemy.orm import relationship

from .base import BaseModel, MetadataMixin
from .enums import OrderStatus, PaymentStatus, TransactionStatus, enum_column


class Order(BaseModel):
    __tablename__ = 'orders'

    order_number = Column(String(50), unique=True, nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    quote_id = Column(Integer, ForeignKey('quotes.id'), nullable=True, index=True)
    standing_order_id = Column(Integer, ForeignKey('standing_orders.id'), nullable=True)

    status = enum_column(OrderStatus, default=OrderStatus.ORDER_CONFIRMED, nullable=False, index=True)
    payment_status = enum_column(PaymentStatus, default=PaymentStatus.UNPAID, nullable=False, index=True)

    # Money
    currency = Column(String(3), nullable=False)
    total_amount = Column(Float, default=0.0, nullable=False)
    amount_paid = Column(Float, default=0.0, nullable=False)
    balance_remaining = Column(Float, default=0.0, nullable=False)

    # Payment
    payment_method = Column(String(30), nullable=True)
    payment_reference = Column(String(100), nullable=True, index=True)
    payment_channel = Column(String(50), nullable=True)
    payment_verified_at = Column(DateTime, nullable=True)
    payment_confirmed_at = Column(DateTime, nullable=True)
    payment_rejection_reason = Column(Text, nullable=True)

    # Credit
    credit_amount_used = Column(Float, default=0.0, nullable=False)
    credit_due_date = Column(Date, nullable=True, index=True)
    credit_overdue_notified_at = Column(DateTime, nullable=True)

    # Fulfilment
    delivery_address_id = Column(Integer, ForeignKey('customer_addresses.id'), nullable=True)
    carrier = Column(String(100), nullable=True)
    tracking_number = Column(String(100), nullable=True)
    shipped_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    notes = Column(Text, nullable=True)

    customer = relationship("Customer", back_populates="orders")
    quote = relationship("Quote")
    delivery_address = relationship("CustomerAddress")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan",
                         order_by="OrderItem.id")
    status_history = relationship("OrderStatusHistory", back_populates="order",
                                  cascade="all, delete-orphan", order_by="OrderStatusHistory.id")
    transactions = relationship("PaymentTransaction", back_populates="order")

    @property
    def is_on_credit(self) -> bool:
        return self.payment_method == 'credit' and (self.credit_amount_used or 0) > 0

    @property
    def is_fully_paid(self) -> bool:
        return self.payment_status in (PaymentStatus.FULLY_PAID, PaymentStatus.OVERPAID)

    def __repr__(self):
        return f"<Order(number={self.order_number}, status={self.status})>"


class OrderItem(BaseModel):
    __tablename__ = 'order_items'

    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False, index=True)
    product_name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Float, nullable=False)
    unit = Column(String(30), nullable=True)
    unit_price = Column(Float, nullable=False)
    grade = Column(String(50), nullable=True)
    specifications = Column(JSON, nullable=True)

    order = relationship("Order", back_populates="items")

    @property
    def line_total(self) -> float:
        return round((self.quantity or 0) * (self.unit_price or 0), 2)


class OrderStatusHistory(BaseModel):
    __tablename__ = 'order_status_history'

    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False, index=True)
    old_status = Column(String(40), nullable=True)
    new_status = Column(String(40), nullable=False)
    notes = Column(Text, nullable=True)
    changed_by = Column(String(100), nullable=True)

    order = relationship("Order", back_populates="status_history")


class PaymentTransaction(BaseModel, MetadataMixin):
    """Payment attempt through the payment provider."""
    __tablename__ = 'payment_transactions'

    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False, index=True)
    reference = Column(String(100), unique=True, nullable=False, index=True)
    provider = Column(String(30), default='paystack', nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False)
    status = enum_column(TransactionStatus, default=TransactionStatus.PENDING, nullable=False)
    channel = Column(String(50), nullable=True)
    authorization_url = Column(String(500), nullable=True)
    failure_reason = Column(Text, nullable=True)
    paid_at = Column(DateTime, nullable=True)

    order = relationship("Order", back_populates="transactions")
