from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, date

from ..models.enums import QuoteStatus


class LineItemBase(BaseModel):
    product_name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    quantity: float = Field(..., gt=0)
    unit: Optional[str] = Field(None, max_length=30)
    unit_price: float = Field(..., ge=0)
    grade: Optional[str] = Field(None, max_length=50)
    specifications: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None


class QuoteItemCreate(LineItemBase):
    pass


class QuoteItem(LineItemBase):
    id: int
    line_total: float

    class Config:
        from_attributes = True


class QuoteCreate(BaseModel):
    customer_id: int
    title: Optional[str] = Field(None, max_length=200)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    valid_until: Optional[date] = None
    use_credit: bool = False
    notes: Optional[str] = None
    lead_id: Optional[int] = None
    items: List[QuoteItemCreate] = Field(..., min_length=1)


class QuoteUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    valid_until: Optional[date] = None
    use_credit: Optional[bool] = None
    notes: Optional[str] = None
    items: Optional[List[QuoteItemCreate]] = None


class Quote(BaseModel):
    id: int
    quote_number: str
    customer_id: int
    standing_order_id: Optional[int] = None
    title: Optional[str] = None
    status: QuoteStatus
    currency: str
    total_amount: float
    valid_until: Optional[date] = None
    use_credit: bool
    notes: Optional[str] = None
    sent_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    converted_at: Optional[datetime] = None
    created_at: datetime
    items: List[QuoteItem] = []

    class Config:
        from_attributes = True


class SendForApproval(BaseModel):
    email: Optional[str] = Field(None, max_length=255)


class SendForApprovalResult(BaseModel):
    quote_id: int
    status: QuoteStatus
    approval_url: str
    expires_at: datetime
    email_status: str


class ExpiringQuotesResult(BaseModel):
    checked: int
    notified: int
    emails_sent: int
    expired: int = 0
