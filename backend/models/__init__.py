"""
Database models.
"""
from .base import BaseModel, MetadataMixin
from .user import User
from .customer import Customer, CustomerAddress
from .lead import Lead
from .quote import Quote, QuoteItem, MagicLinkToken, QuoteApproval
from .order import Order, OrderItem, OrderStatusHistory, PaymentTransaction
from .standing_order import StandingOrder, StandingOrderItem, StandingOrderGeneration
from .credit import CreditTerms, CreditLedgerEntry
from .invoice import Invoice, InvoiceItem
from .notification import Notification, AuditLog, EmailLog

__all__ = [
    "BaseModel", "MetadataMixin",
    "User",
    "Customer", "CustomerAddress",
    "Lead",
    "Quote", "QuoteItem", "MagicLinkToken", "QuoteApproval",
    "Order", "OrderItem", "OrderStatusHistory", "PaymentTransaction",
    "StandingOrder", "StandingOrderItem", "StandingOrderGeneration",
    "CreditTerms", "CreditLedgerEntry",
    "Invoice", "InvoiceItem",
    "Notification", "AuditLog", "EmailLog",
]
