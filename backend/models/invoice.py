"""
Invoice documents: proforma invoices, commercial invoices and packing lists.
"""
from sqlalchemy import Column, Integer, String, Float, Date, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import InvoiceType, InvoiceStatus, enum_column


class Invoice(BaseModel):
    __tablename__ = 'invoices'

    invoice_number = Column(String(50), unique=True, nullable=False, index=True)
    invoice_type = enum_column(InvoiceType, nullable=False, index=True)
    status = enum_column(InvoiceStatus, default=InvoiceStatus.DRAFT, nullable=False, index=True)

    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    quote_id = Column(Integer, ForeignKey('quotes.id'), nullable=True, index=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=True, index=True)

    currency = Column(String(3), nullable=False)
    subtotal = Column(Float, default=0.0, nullable=False)
    tax_amount = Column(Float, default=0.0, nullable=False)
    total_amount = Column(Float, default=0.0, nullable=False)

    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True, index=True)
    payment_terms = Column(String(100), nullable=True)
    paid_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    customer = relationship("Customer")
    quote = relationship("Quote")
    order = relationship("Order")
    items = relationship("InvoiceItem", back_populates="invoice", cascade="all, delete-orphan",
                         order_by="InvoiceItem.id")

    def __repr__(self):
        return f"<Invoice(number={self.invoice_number}, type={self.invoice_type})>"


class InvoiceItem(BaseModel):
    __tablename__ = 'invoice_items'

    invoice_id = Column(Integer, ForeignKey('invoices.id'), nullable=False, index=True)
    product_name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Float, nullable=False)
    unit = Column(String(30), nullable=True)
    unit_price = Column(Float, default=0.0, nullable=False)
    line_total = Column(Float, default=0.0, nullable=False)

    invoice = relationship("Invoice", back_populates="items")
