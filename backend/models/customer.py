"""
Customer model for buyer accounts, delivery addresses and trading profile.
"""
from sqlalchemy import Column, Integer, String, Boolean, Text, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.ext.hybrid import hybrid_property

from .base import BaseModel
from .enums import CustomerStatus, enum_column


class Customer(BaseModel):
    """
    B2B buyer. Owns quotes, orders, standing orders and at most one set of
    credit terms.
    """
    __tablename__ = 'customers'

    customer_code = Column(String(50), unique=True, nullable=False, index=True)
    company_name = Column(String(255), nullable=False, index=True)
    contact_name = Column(String(200), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(50), nullable=True)
    status = enum_column(CustomerStatus, default=CustomerStatus.ACTIVE, nullable=False)

    # Location
    country = Column(String(100), default='Ghana', nullable=False)
    city = Column(String(100), nullable=True, index=True)
    preferred_currency = Column(String(3), nullable=True)

    notes = Column(Text, nullable=True)

    # Relationships
    addresses = relationship("CustomerAddress", back_populates="customer", cascade="all, delete-orphan")
    orders = relationship("Order", back_populates="customer", lazy="dynamic")
    quotes = relationship("Quote", back_populates="customer", lazy="dynamic")
    standing_orders = relationship("StandingOrder", back_populates="customer", lazy="dynamic")
    credit_terms = relationship("CreditTerms", back_populates="customer", uselist=False)

    @hybrid_property
    def is_active_customer(self):
        """Check if customer is active."""
        return self.status == CustomerStatus.ACTIVE and self.is_active

    @property
    def default_address(self):
        for address in self.addresses:
            if address.is_default:
                return address
        return self.addresses[0] if self.addresses else None

    def __repr__(self):
        return f"<Customer(code={self.customer_code}, company={self.company_name})>"


class CustomerAddress(BaseModel):
    """Delivery address on file for a customer."""
    __tablename__ = 'customer_addresses'

    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    label = Column(String(100), nullable=True)
    recipient_name = Column(String(200), nullable=True)
    phone = Column(String(50), nullable=True)
    street_address = Column(String(255), nullable=False)
    city = Column(String(100), nullable=False)
    region = Column(String(100), nullable=True)
    country = Column(String(100), default='Ghana', nullable=False)
    digital_address = Column(String(50), nullable=True)
    is_default = Column(Boolean, default=False, nullable=False)

    customer = relationship("Customer", back_populates="addresses")
