from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, date

from ..models.enums import NetTerms, CreditStatus, LedgerEntryType, PaymentStatus


class CreditTerms(BaseModel):
    id: int
    customer_id: int
    credit_limit: float
    current_balance: float
    available_credit: float
    utilization: int
    net_terms: NetTerms
    net_terms_label: str
    status: CreditStatus
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    suspended_at: Optional[datetime] = None
    suspension_reason: Optional[str] = None


class CreditApproval(BaseModel):
    credit_limit: float = Field(..., gt=0)
    net_terms: NetTerms = NetTerms.NET_14


class CreditSuspension(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class CreditLimitAdjustment(BaseModel):
    new_limit: float = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=1000)


class CreditEligibility(BaseModel):
    eligible: bool
    lifetime_orders: int
    loyalty_tier: str
    trust_tier: str
    has_overdue_invoices: bool
    has_overdue_credit: bool
    available_credit: float
    missing_requirements: List[str]


class CreditLedgerEntry(BaseModel):
    id: int
    entry_type: LedgerEntryType
    amount: float
    balance_after: float
    order_id: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CreditOrderEntry(BaseModel):
    order_id: int
    order_number: str
    total_amount: float
    credit_amount_used: float
    credit_due_date: Optional[date] = None
    payment_status: PaymentStatus
    order_date: datetime
    is_overdue: bool
    days_until_due: Optional[int] = None
    due_status: Optional[str] = None
    credit_limit: float
    current_balance: float
    net_terms: NetTerms


class CreditLedger(BaseModel):
    customer_id: int
    entries: List[CreditOrderEntry]
    total_outstanding: float
    total_overdue: float
    movements: List[CreditLedgerEntry] = []


class ApplyCreditResult(BaseModel):
    order_id: int
    credit_amount_used: float
    credit_due_date: date
    current_balance: float
    available_credit: float
