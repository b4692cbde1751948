"""
Customer credit terms and the credit ledger.

Balance arithmetic lives here: approving, suspending and adjusting a
customer's limit, charging orders to credit and releasing credit as orders
are paid or cancelled. Every change to ``CreditTerms.current_balance`` is
written to ``CreditLedgerEntry`` with the balance it produced.
"""
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Union
from sqlalchemy.orm import Session

from ..config.settings import get_settings
from ..config.logging import get_logger, log_business_event
from ..core.exceptions import (
    NotFoundError,
    BadRequestError,
    ConflictError,
    CreditNotAvailableError,
    CreditLimitExceededError,
    CreditTermsStateError,
)
from ..models.credit import CreditTerms, CreditLedgerEntry
from ..models.customer import Customer
from ..models.enums import (
    CreditStatus, NetTerms, LedgerEntryType, OrderStatus, PaymentStatus, InvoiceStatus, InvoiceType
)
from ..models.invoice import Invoice
from ..models.order import Order
from ..utils.date_utils import DateUtils, today as utc_today
from .notification_service import NotificationService

logger = get_logger(__name__)
settings = get_settings()

NET_TERMS_DAYS = {
    NetTerms.NET_7: 7,
    NetTerms.NET_14: 14,
    NetTerms.NET_30: 30,
}
DEFAULT_NET_TERMS = NetTerms.NET_14
CREDIT_PAYMENT_METHOD = "credit"
SETTLED_PAYMENT_STATUSES = (PaymentStatus.FULLY_PAID, PaymentStatus.OVERPAID)

# Loyalty tiers by delivered orders or revenue, highest first
LOYALTY_TIERS = [
    ("gold", 15, 200000.0),
    ("silver", 5, 50000.0),
]
DEFAULT_LOYALTY_TIER = "bronze"


# =============================================================================
# PURE HELPERS
# =============================================================================

def _net_terms(net_terms: Union[NetTerms, str, None]) -> NetTerms:
    try:
        return NetTerms(net_terms)
    except ValueError:
        return DEFAULT_NET_TERMS


def get_net_terms_days(net_terms: Union[NetTerms, str, None]) -> int:
    return NET_TERMS_DAYS[_net_terms(net_terms)]


def get_net_terms_label(net_terms: Union[NetTerms, str, None]) -> str:
    return f"Net {get_net_terms_days(net_terms)}"


def get_net_terms_description(net_terms: Union[NetTerms, str, None]) -> str:
    return f"Payment due within {get_net_terms_days(net_terms)} days of invoice"


def calculate_utilization(balance: float, limit: float) -> int:
    """Percentage of the limit in use, 0..100."""
    if limit <= 0:
        return 0
    return min(100, round(balance / limit * 100))


def calculate_available_credit(limit: float, balance: float) -> float:
    return max(0.0, limit - balance)


def is_credit_usable(terms: Optional[CreditTerms]) -> bool:
    if terms is None:
        return False
    return terms.status == CreditStatus.ACTIVE and (terms.credit_limit or 0) > 0


def can_cover_amount(terms: Optional[CreditTerms], amount: float) -> bool:
    if not is_credit_usable(terms):
        return False
    return calculate_available_credit(terms.credit_limit, terms.current_balance) >= amount


def calculate_due_date(from_date: Union[date, datetime], net_terms: Union[NetTerms, str, None]) -> date:
    if isinstance(from_date, datetime):
        from_date = from_date.date()
    return from_date + timedelta(days=get_net_terms_days(net_terms))


def is_overdue(due_date: Optional[date], today: date = None) -> bool:
    if due_date is None:
        return False
    return due_date < (today or utc_today())


def get_days_until_due(due_date: date, today: date = None) -> int:
    return DateUtils.ceil_days_until(due_date, today or utc_today())


def get_due_status(due_date: date, today: date = None) -> Dict[str, Any]:
    """Human label for a due date and whether it needs attention."""
    days = get_days_until_due(due_date, today)
    if days < 0:
        return {"label": f"{abs(days)} days overdue", "is_urgent": True, "days": days}
    if days == 0:
        return {"label": "Due today", "is_urgent": True, "days": days}
    return {"label": f"Due in {days} days", "is_urgent": days <= 3, "days": days}


def calculate_loyalty_tier(lifetime_orders: int, lifetime_revenue: float) -> str:
    for tier, min_orders, min_revenue in LOYALTY_TIERS:
        if lifetime_orders >= min_orders or lifetime_revenue >= min_revenue:
            return tier
    return DEFAULT_LOYALTY_TIER


def calculate_trust_tier(completed_orders: int, has_overdue: bool) -> str:
    """Behaviour tier: restricted, new, verified, trusted or preferred."""
    if has_overdue:
        return "restricted"
    if completed_orders >= 10:
        return "preferred"
    if completed_orders >= 3:
        return "trusted"
    if completed_orders >= 1:
        return "verified"
    return "new"


def serialize_credit_terms(terms: CreditTerms) -> Dict[str, Any]:
    return {
        "id": terms.id,
        "customer_id": terms.customer_id,
        "credit_limit": terms.credit_limit,
        "current_balance": terms.current_balance,
        "available_credit": calculate_available_credit(terms.credit_limit, terms.current_balance),
        "utilization": calculate_utilization(terms.current_balance, terms.credit_limit),
        "net_terms": terms.net_terms,
        "net_terms_label": get_net_terms_label(terms.net_terms),
        "status": terms.status,
        "approved_by": terms.approved_by,
        "approved_at": terms.approved_at,
        "suspended_at": terms.suspended_at,
        "suspension_reason": terms.suspension_reason,
    }


# =============================================================================
# SERVICE
# =============================================================================

class CreditService:
    def __init__(self, db: Session, notifications: Optional[NotificationService] = None):
        self.db = db
        self.notifications = notifications or NotificationService(db)

    def _get_customer(self, customer_id: int) -> Customer:
        customer = self.db.query(Customer).filter(
            Customer.id == customer_id, Customer.is_deleted == False  # noqa: E712
        ).first()
        if not customer:
            raise NotFoundError("Customer", customer_id)
        return customer

    def get_terms(self, customer_id: int, lock: bool = False) -> Optional[CreditTerms]:
        query = self.db.query(CreditTerms).filter(CreditTerms.customer_id == customer_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    def get_terms_or_404(self, customer_id: int) -> CreditTerms:
        terms = self.get_terms(customer_id)
        if not terms:
            raise NotFoundError("CreditTerms", customer_id)
        return terms

    def _write_entry(self, terms: CreditTerms, entry_type: LedgerEntryType, amount: float,
                     order: Order = None, notes: str = None) -> CreditLedgerEntry:
        entry = CreditLedgerEntry(
            credit_terms_id=terms.id,
            customer_id=terms.customer_id,
            order_id=order.id if order else None,
            entry_type=entry_type,
            amount=round(amount, 2),
            balance_after=round(terms.current_balance, 2),
            notes=notes,
        )
        self.db.add(entry)
        return entry

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------

    def _delivered_orders(self, customer_id: int):
        return self.db.query(Order).filter(
            Order.customer_id == customer_id,
            Order.status == OrderStatus.DELIVERED,
            Order.is_deleted == False  # noqa: E712
        )

    def overdue_credit_orders(self, customer_id: int = None, today: date = None) -> List[Order]:
        today = today or utc_today()
        query = self.db.query(Order).filter(
            Order.payment_method == CREDIT_PAYMENT_METHOD,
            Order.credit_amount_used > 0,
            Order.credit_due_date < today,
            Order.payment_status.notin_(SETTLED_PAYMENT_STATUSES),
            Order.status != OrderStatus.CANCELLED,
            Order.is_deleted == False  # noqa: E712
        )
        if customer_id is not None:
            query = query.filter(Order.customer_id == customer_id)
        return query.order_by(Order.credit_due_date).all()

    def has_overdue_invoices(self, customer_id: int, today: date = None) -> bool:
        today = today or utc_today()
        overdue = self.db.query(Invoice).filter(
            Invoice.customer_id == customer_id,
            Invoice.invoice_type != InvoiceType.PACKING_LIST,
            (Invoice.status == InvoiceStatus.OVERDUE) | (
                (Invoice.status == InvoiceStatus.SENT) & (Invoice.due_date < today)
            )
        ).first()
        return overdue is not None

    def get_loyalty(self, customer_id: int) -> Dict[str, Any]:
        orders = self._delivered_orders(customer_id).all()
        revenue = round(sum(order.total_amount or 0 for order in orders), 2)
        last_order = max((order.created_at for order in orders), default=None)
        return {
            "lifetime_orders": len(orders),
            "lifetime_revenue": revenue,
            "last_order_at": last_order,
            "loyalty_tier": calculate_loyalty_tier(len(orders), revenue),
        }

    def check_credit_eligibility(self, customer_id: int, today: date = None) -> Dict[str, Any]:
        """Whether a customer qualifies for credit terms and what is missing."""
        customer = self._get_customer(customer_id)
        loyalty = self.get_loyalty(customer_id)
        overdue_invoices = self.has_overdue_invoices(customer_id, today)
        overdue_credit = bool(self.overdue_credit_orders(customer_id, today))
        terms = self.get_terms(customer_id)

        missing = []
        if loyalty["lifetime_orders"] < settings.CREDIT_MIN_LIFETIME_ORDERS:
            missing.append(
                f"At least {settings.CREDIT_MIN_LIFETIME_ORDERS} completed orders required "
                f"({loyalty['lifetime_orders']} so far)"
            )
        if overdue_invoices:
            missing.append("Outstanding overdue invoices must be settled")
        if overdue_credit:
            missing.append("Overdue credit balance must be settled")
        if not customer.is_active_customer:
            missing.append("Customer account is not active")

        return {
            "eligible": not missing,
            "lifetime_orders": loyalty["lifetime_orders"],
            "loyalty_tier": loyalty["loyalty_tier"],
            "trust_tier": calculate_trust_tier(loyalty["lifetime_orders"], overdue_credit or overdue_invoices),
            "has_overdue_invoices": overdue_invoices,
            "has_overdue_credit": overdue_credit,
            "available_credit": (
                calculate_available_credit(terms.credit_limit, terms.current_balance)
                if is_credit_usable(terms) else 0.0
            ),
            "missing_requirements": missing,
        }

    # ------------------------------------------------------------------
    # Terms lifecycle
    # ------------------------------------------------------------------

    def approve_credit_terms(self, customer_id: int, credit_limit: float,
                             net_terms: NetTerms = DEFAULT_NET_TERMS, approved_by: str = None) -> CreditTerms:
        """Create or (re)activate credit terms with the given limit."""
        self._get_customer(customer_id)
        if credit_limit <= 0:
            raise BadRequestError("Credit limit must be greater than 0", field="credit_limit")

        terms = self.get_terms(customer_id, lock=True)
        if terms is None:
            terms = CreditTerms(customer_id=customer_id, credit_limit=0.0, current_balance=0.0)
            self.db.add(terms)
        elif credit_limit < terms.current_balance:
            raise BadRequestError(
                f"Credit limit cannot be below the current balance of {terms.current_balance:,.2f}",
                field="credit_limit",
            )

        terms.credit_limit = credit_limit
        terms.net_terms = net_terms
        terms.status = CreditStatus.ACTIVE
        terms.approved_by = approved_by
        terms.approved_at = datetime.utcnow()
        terms.suspended_at = None
        terms.suspension_reason = None
        self.db.flush()

        self.notifications.log_audit_event(
            "credit_terms_approved",
            {"customer_id": customer_id, "credit_limit": credit_limit, "net_terms": str(net_terms)},
            actor=approved_by,
        )
        self.notifications.notify_customer_users(
            customer_id, "credit_approved", "Credit terms approved",
            f"You can now buy on credit up to {credit_limit:,.2f} on {get_net_terms_label(net_terms)} terms.",
        )
        self.db.commit()
        self.db.refresh(terms)
        log_business_event("credit_terms_approved", f"limit={credit_limit}", customer_id=customer_id)
        return terms

    def suspend_credit_terms(self, customer_id: int, reason: str, actor: str = None) -> CreditTerms:
        terms = self.get_terms_or_404(customer_id)
        if terms.status != CreditStatus.ACTIVE:
            raise CreditTermsStateError(f"Only active credit terms can be suspended (status is {terms.status})")

        terms.status = CreditStatus.SUSPENDED
        terms.suspended_at = datetime.utcnow()
        terms.suspension_reason = reason
        self.notifications.log_audit_event(
            "credit_terms_suspended", {"customer_id": customer_id, "reason": reason},
            severity="medium", actor=actor,
        )
        self.db.commit()
        self.db.refresh(terms)
        log_business_event("credit_terms_suspended", reason, customer_id=customer_id)
        return terms

    def reactivate_credit_terms(self, customer_id: int, credit_limit: float,
                                net_terms: NetTerms = DEFAULT_NET_TERMS, actor: str = None) -> CreditTerms:
        terms = self.get_terms_or_404(customer_id)
        if terms.status != CreditStatus.SUSPENDED:
            raise CreditTermsStateError(f"Only suspended credit terms can be reactivated (status is {terms.status})")
        return self.approve_credit_terms(customer_id, credit_limit, net_terms, approved_by=actor)

    def adjust_credit_limit(self, customer_id: int, new_limit: float, reason: str,
                            actor: str = None) -> CreditTerms:
        terms = self.get_terms(customer_id, lock=True)
        if terms is None:
            raise NotFoundError("CreditTerms", customer_id)
        if new_limit <= 0:
            raise BadRequestError("Credit limit must be greater than 0", field="new_limit")
        if new_limit < terms.current_balance:
            raise BadRequestError(
                f"Credit limit cannot be below the current balance of {terms.current_balance:,.2f}",
                field="new_limit",
            )

        old_limit = terms.credit_limit
        terms.credit_limit = new_limit
        self._write_entry(
            terms, LedgerEntryType.ADJUSTMENT, new_limit - old_limit,
            notes=f"Limit {old_limit:,.2f} -> {new_limit:,.2f}: {reason}",
        )
        self.notifications.log_audit_event(
            "credit_limit_adjusted",
            {"customer_id": customer_id, "old_limit": old_limit, "new_limit": new_limit, "reason": reason},
            severity="medium", actor=actor,
        )
        self.db.commit()
        self.db.refresh(terms)
        return terms

    # ------------------------------------------------------------------
    # Order credit
    # ------------------------------------------------------------------

    def apply_credit_to_order(self, order: Order, commit: bool = True) -> Dict[str, Any]:
        """Charge the order's outstanding balance to the customer's credit."""
        if order.status == OrderStatus.CANCELLED:
            raise BadRequestError(f"Order {order.order_number} is cancelled")
        if order.is_on_credit:
            raise ConflictError(f"Credit already applied to order {order.order_number}")

        amount = round(order.balance_remaining or 0, 2)
        if amount <= 0:
            raise BadRequestError(f"Order {order.order_number} has no outstanding balance")

        terms = self.get_terms(order.customer_id, lock=True)
        if terms is None:
            raise CreditNotAvailableError("customer has no credit terms")
        if not is_credit_usable(terms):
            raise CreditNotAvailableError(f"credit terms are {terms.status}")
        if self.overdue_credit_orders(order.customer_id):
            raise CreditNotAvailableError("customer has overdue credit")

        available = calculate_available_credit(terms.credit_limit, terms.current_balance)
        if not can_cover_amount(terms, amount):
            raise CreditLimitExceededError(order.customer.customer_code, amount, available)

        order.payment_method = CREDIT_PAYMENT_METHOD
        order.credit_amount_used = amount
        order.credit_due_date = calculate_due_date(datetime.utcnow(), terms.net_terms)
        terms.current_balance = round(terms.current_balance + amount, 2)
        self._write_entry(terms, LedgerEntryType.CHARGE, amount, order=order,
                          notes=f"Credit applied to order {order.order_number}")

        if commit:
            self.db.commit()
        else:
            self.db.flush()

        log_business_event("credit_applied", f"amount={amount}", order_id=order.id, customer_id=order.customer_id)
        return {
            "order_id": order.id,
            "credit_amount_used": amount,
            "credit_due_date": order.credit_due_date,
            "current_balance": terms.current_balance,
            "available_credit": calculate_available_credit(terms.credit_limit, terms.current_balance),
        }

    def outstanding_credit(self, order: Order) -> float:
        """Credit still owed on an order."""
        if not order.is_on_credit:
            return 0.0
        return round(max(0.0, min(order.credit_amount_used, order.balance_remaining or 0)), 2)

    def release_credit(self, order: Order, amount: float, reason: str = None,
                       entry_type: LedgerEntryType = LedgerEntryType.RELEASE,
                       commit: bool = True) -> Optional[CreditLedgerEntry]:
        """Give credit back to the customer after a payment or cancellation."""
        if amount <= 0:
            return None
        terms = self.get_terms(order.customer_id, lock=True)
        if terms is None:
            logger.warning(f"Order {order.order_number} is on credit but customer has no credit terms")
            return None

        released = min(amount, terms.current_balance)
        terms.current_balance = round(max(0.0, terms.current_balance - amount), 2)
        entry = self._write_entry(terms, entry_type, released, order=order, notes=reason)

        if commit:
            self.db.commit()
        else:
            self.db.flush()
        return entry

    # ------------------------------------------------------------------
    # Ledger and overdue detection
    # ------------------------------------------------------------------

    def get_credit_ledger(self, customer_id: int, today: date = None) -> Dict[str, Any]:
        self._get_customer(customer_id)
        today = today or utc_today()
        terms = self.get_terms(customer_id)

        orders = self.db.query(Order).filter(
            Order.customer_id == customer_id,
            Order.payment_method == CREDIT_PAYMENT_METHOD,
            Order.credit_amount_used > 0,
            Order.is_deleted == False  # noqa: E712
        ).order_by(Order.created_at.desc()).all()

        entries = []
        for order in orders:
            settled = order.payment_status in SETTLED_PAYMENT_STATUSES
            overdue = not settled and order.status != OrderStatus.CANCELLED and is_overdue(order.credit_due_date, today)
            due = get_due_status(order.credit_due_date, today) if order.credit_due_date and not settled else None
            entries.append({
                "order_id": order.id,
                "order_number": order.order_number,
                "total_amount": order.total_amount,
                "credit_amount_used": order.credit_amount_used,
                "credit_due_date": order.credit_due_date,
                "payment_status": order.payment_status,
                "order_date": order.created_at,
                "is_overdue": overdue,
                "days_until_due": due["days"] if due else None,
                "due_status": due["label"] if due else None,
                "credit_limit": terms.credit_limit if terms else 0.0,
                "current_balance": terms.current_balance if terms else 0.0,
                "net_terms": terms.net_terms if terms else DEFAULT_NET_TERMS,
            })

        total_outstanding = sum(
            e["credit_amount_used"] for e in entries if e["payment_status"] not in SETTLED_PAYMENT_STATUSES
        )
        total_overdue = sum(e["credit_amount_used"] for e in entries if e["is_overdue"])
        movements = terms.ledger_entries.all() if terms else []

        return {
            "customer_id": customer_id,
            "entries": entries,
            "total_outstanding": round(total_outstanding, 2),
            "total_overdue": round(total_overdue, 2),
            "movements": movements,
        }

    def detect_overdue_credit(self, today: date = None) -> Dict[str, int]:
        """Flag unpaid credit orders past their due date. Admins hear about each order once."""
        overdue_orders = self.overdue_credit_orders(today=today)
        notified = 0
        for order in overdue_orders:
            if order.credit_overdue_notified_at is not None:
                continue
            due = get_due_status(order.credit_due_date, today)
            self.notifications.notify_admins(
                "credit_overdue",
                f"Credit overdue: {order.order_number}",
                f"{order.customer.company_name} owes {order.currency} {order.balance_remaining:,.2f} "
                f"on order {order.order_number} ({due['label']}).",
                data={"order_id": order.id, "customer_id": order.customer_id},
            )
            order.credit_overdue_notified_at = datetime.utcnow()
            notified += 1

        self.db.commit()
        if notified:
            logger.info(f"Flagged {notified} overdue credit order(s)")
        return {"overdue": len(overdue_orders), "notified": notified}
