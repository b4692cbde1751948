"""
Quote models: quotes, quote lines, magic link tokens and customer approvals.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, Boolean, Date, DateTime, Text, ForeignKey, JSON
from sqlalchemy.orm import relationship

from .base import BaseModel, MetadataMixin
from .enums import QuoteStatus, TokenType, ApprovalDecision, enum_column


class Quote(BaseModel):
    __tablename__ = 'quotes'

    quote_number = Column(String(50), unique=True, nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    lead_id = Column(Integer, ForeignKey('leads.id'), nullable=True)
    standing_order_id = Column(Integer, ForeignKey('standing_orders.id'), nullable=True, index=True)

    title = Column(String(200), nullable=True)
    status = enum_column(QuoteStatus, default=QuoteStatus.DRAFT, nullable=False, index=True)
    currency = Column(String(3), nullable=False)
    total_amount = Column(Float, default=0.0, nullable=False)
    valid_until = Column(Date, nullable=True, index=True)
    use_credit = Column(Boolean, default=False, nullable=False)
    notes = Column(Text, nullable=True)

    sent_at = Column(DateTime, nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    converted_at = Column(DateTime, nullable=True)
    expiry_notified_at = Column(DateTime, nullable=True)

    customer = relationship("Customer", back_populates="quotes")
    items = relationship("QuoteItem", back_populates="quote", cascade="all, delete-orphan",
                         order_by="QuoteItem.id")
    approvals = relationship("QuoteApproval", back_populates="quote")
    standing_order = relationship("StandingOrder", foreign_keys=[standing_order_id])

    def recalculate_total(self) -> float:
        self.total_amount = round(sum(item.line_total for item in self.items), 2)
        return self.total_amount

    def __repr__(self):
        return f"<Quote(number={self.quote_number}, status={self.status})>"


class QuoteItem(BaseModel):
    __tablename__ = 'quote_items'

    quote_id = Column(Integer, ForeignKey('quotes.id'), nullable=False, index=True)
    product_name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Float, nullable=False)
    unit = Column(String(30), nullable=True)
    unit_price = Column(Float, nullable=False)
    grade = Column(String(50), nullable=True)
    specifications = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    quote = relationship("Quote", back_populates="items")

    @property
    def line_total(self) -> float:
        return round((self.quantity or 0) * (self.unit_price or 0), 2)


class MagicLinkToken(BaseModel, MetadataMixin):
    """Single-use token that lets a customer act on a quote or order without logging in."""
    __tablename__ = 'magic_link_tokens'

    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    token_type = enum_column(TokenType, default=TokenType.QUOTE_APPROVAL, nullable=False)
    quote_id = Column(Integer, ForeignKey('quotes.id'), nullable=True, index=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=True, index=True)
    email = Column(String(255), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)

    quote = relationship("Quote")
    order = relationship("Order")

    def is_expired(self, now: datetime = None) -> bool:
        return (now or datetime.utcnow()) >= self.expires_at

    @property
    def is_used(self) -> bool:
        return self.used_at is not None


class QuoteApproval(BaseModel):
    __tablename__ = 'quote_approvals'

    quote_id = Column(Integer, ForeignKey('quotes.id'), nullable=False, index=True)
    token_id = Column(Integer, ForeignKey('magic_link_tokens.id'), nullable=True, unique=True)
    decision = enum_column(ApprovalDecision, nullable=False)
    notes = Column(Text, nullable=True)
    approved_by_email = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)

    quote = relationship("Quote", back_populates="approvals")
