"""
Standing (recurring) order templates and their generation history.
"""
from typing import Optional
from sqlalchemy import (
    Column, Integer, String, Float, Boolean, Date, DateTime, Text, ForeignKey, JSON,
    Index, text
)
from sqlalchemy.orm import relationship

from ..utils.date_utils import DateUtils
from .base import BaseModel
from .enums import (
    FREQUENCY_LABELS, StandingOrderFrequency, StandingOrderStatus, GenerationType, GenerationStatus,
    enum_column
)


class StandingOrder(BaseModel):
    __tablename__ = 'standing_orders'

    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    frequency = enum_column(StandingOrderFrequency, nullable=False)
    # 0 = Sunday .. 6 = Saturday
    day_of_week = Column(Integer, nullable=True)
    day_of_month = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=False)

    status = enum_column(StandingOrderStatus, default=StandingOrderStatus.ACTIVE, nullable=False, index=True)
    paused_at = Column(DateTime, nullable=True)
    pause_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    requires_approval = Column(Boolean, default=True, nullable=False)
    auto_use_credit = Column(Boolean, default=False, nullable=False)

    total_orders_generated = Column(Integer, default=0, nullable=False)
    next_scheduled_date = Column(Date, nullable=True, index=True)
    last_generated_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)

    customer = relationship("Customer", back_populates="standing_orders")
    items = relationship("StandingOrderItem", back_populates="standing_order",
                         cascade="all, delete-orphan", order_by="StandingOrderItem.id")
    generations = relationship("StandingOrderGeneration", back_populates="standing_order",
                               cascade="all, delete-orphan", order_by="StandingOrderGeneration.id")

    @property
    def frequency_label(self) -> str:
        return FREQUENCY_LABELS.get(self.frequency, str(self.frequency))

    @property
    def day_of_week_label(self) -> Optional[str]:
        return DateUtils.get_day_of_week_label(self.day_of_week) or None

    @property
    def estimated_amount(self) -> float:
        return round(sum(item.line_total for item in self.items), 2)

    def __repr__(self):
        return f"<StandingOrder(id={self.id}, name={self.name}, frequency={self.frequency})>"


class StandingOrderItem(BaseModel):
    __tablename__ = 'standing_order_items'

    standing_order_id = Column(Integer, ForeignKey('standing_orders.id'), nullable=False, index=True)
    product_name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Float, nullable=False)
    unit = Column(String(30), nullable=True)
    unit_price = Column(Float, nullable=False)
    grade = Column(String(50), nullable=True)
    specifications = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    standing_order = relationship("StandingOrder", back_populates="items")

    @property
    def line_total(self) -> float:
        return round((self.quantity or 0) * (self.unit_price or 0), 2)


class StandingOrderGeneration(BaseModel):
    """One run of a standing order, successful or not."""
    __tablename__ = 'standing_order_generations'
    __table_args__ = (
        # At most one successful generation per standing order and date
        Index(
            'uq_standing_order_generation_success',
            'standing_order_id', 'scheduled_date',
            unique=True,
            sqlite_where=text("status = 'success'"),
            postgresql_where=text("status = 'success'"),
        ),
    )

    standing_order_id = Column(Integer, ForeignKey('standing_orders.id'), nullable=False, index=True)
    scheduled_date = Column(Date, nullable=False)
    generation_type = enum_column(GenerationType, default=GenerationType.SCHEDULED, nullable=False)
    status = enum_column(GenerationStatus, nullable=False)
    failure_reason = Column(Text, nullable=True)
    skipped_reason = Column(Text, nullable=True)
    estimated_amount = Column(Float, nullable=True)
    quote_id = Column(Integer, ForeignKey('quotes.id'), nullable=True)
    details = Column(JSON, nullable=True)

    standing_order = relationship("StandingOrder", back_populates="generations")
    quote = relationship("Quote")
