"""
Customer credit terms and the credit ledger.
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import NetTerms, CreditStatus, LedgerEntryType, enum_column


class CreditTerms(BaseModel):
    __tablename__ = 'credit_terms'

    customer_id = Column(Integer, ForeignKey('customers.id'), unique=True, nullable=False, index=True)
    credit_limit = Column(Float, default=0.0, nullable=False)
    current_balance = Column(Float, default=0.0, nullable=False)
    net_terms = enum_column(NetTerms, default=NetTerms.NET_14, nullable=False)
    status = enum_column(CreditStatus, default=CreditStatus.INACTIVE, nullable=False, index=True)

    approved_by = Column(String(100), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    suspended_at = Column(DateTime, nullable=True)
    suspension_reason = Column(Text, nullable=True)

    customer = relationship("Customer", back_populates="credit_terms")
    ledger_entries = relationship("CreditLedgerEntry", back_populates="credit_terms",
                                  order_by="CreditLedgerEntry.id", lazy="dynamic")

    def __repr__(self):
        return f"<CreditTerms(customer_id={self.customer_id}, limit={self.credit_limit}, status={self.status})>"


class CreditLedgerEntry(BaseModel):
    """Single movement of a customer's credit balance."""
    __tablename__ = 'credit_ledger_entries'

    credit_terms_id = Column(Integer, ForeignKey('credit_terms.id'), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=True, index=True)
    entry_type = enum_column(LedgerEntryType, nullable=False)
    amount = Column(Float, nullable=False)
    balance_after = Column(Float, nullable=False)
    notes = Column(Text, nullable=True)

    credit_terms = relationship("CreditTerms", back_populates="ledger_entries")
    order = relationship("Order")
