"""
Enumerations shared by models, schemas and services.
"""
import enum

from sqlalchemy import Column, Enum


class StrValueEnum(str, enum.Enum):
    """String enum whose str() and format() give the raw value."""

    def __str__(self):
        return self.value


def enum_column(enum_cls, **kwargs) -> Column:
    """String-backed enum column storing member values."""
    return Column(
        Enum(
            enum_cls,
            values_callable=lambda members: [m.value for m in members],
            native_enum=False,
            length=40,
            validate_strings=True,
        ),
        **kwargs
    )


class UserRole(StrValueEnum):
    ADMIN = "admin"
    STAFF = "staff"
    CUSTOMER = "customer"


class CustomerStatus(StrValueEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class LeadStatus(StrValueEnum):
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    PROPOSAL = "proposal"
    NEGOTIATION = "negotiation"
    CLOSED_WON = "closed_won"
    CLOSED_LOST = "closed_lost"


class QuoteStatus(StrValueEnum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CONVERTED = "converted"
    EXPIRED = "expired"


class OrderStatus(StrValueEnum):
    ORDER_CONFIRMED = "order_confirmed"
    PENDING_PAYMENT = "pending_payment"
    PAYMENT_RECEIVED = "payment_received"
    PROCESSING = "processing"
    READY_TO_SHIP = "ready_to_ship"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    DELIVERY_FAILED = "delivery_failed"
    ON_HOLD = "on_hold"
    DELIVERY_CONFIRMATION_PENDING = "delivery_confirmation_pending"
    PAYMENT_REJECTED = "payment_rejected"


class PaymentStatus(StrValueEnum):
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    FULLY_PAID = "fully_paid"
    OVERPAID = "overpaid"


class TransactionStatus(StrValueEnum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class NetTerms(StrValueEnum):
    NET_7 = "net_7"
    NET_14 = "net_14"
    NET_30 = "net_30"


class CreditStatus(StrValueEnum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class LedgerEntryType(StrValueEnum):
    CHARGE = "charge"
    PAYMENT = "payment"
    RELEASE = "release"
    ADJUSTMENT = "adjustment"


class StandingOrderFrequency(StrValueEnum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


FREQUENCY_LABELS = {
    StandingOrderFrequency.WEEKLY: "Weekly",
    StandingOrderFrequency.BIWEEKLY: "Every 2 Weeks",
    StandingOrderFrequency.MONTHLY: "Monthly",
    StandingOrderFrequency.QUARTERLY: "Quarterly",
}


class StandingOrderStatus(StrValueEnum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class GenerationType(StrValueEnum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    RETRY = "retry"


class GenerationStatus(StrValueEnum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class InvoiceType(StrValueEnum):
    PROFORMA = "proforma"
    COMMERCIAL = "commercial"
    PACKING_LIST = "packing_list"


class InvoiceStatus(StrValueEnum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class TokenType(StrValueEnum):
    QUOTE_APPROVAL = "quote_approval"
    DELIVERY_ADDRESS = "delivery_address"


class ApprovalDecision(StrValueEnum):
    APPROVED = "approved"
    REJECTED = "rejected"
