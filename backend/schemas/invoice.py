from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime, date

from ..models.enums import InvoiceType, InvoiceStatus


class InvoiceItem(BaseModel):
    product_name: str
    description: Optional[str] = None
    quantity: float
    unit: Optional[str] = None
    unit_price: float
    line_total: float

    class Config:
        from_attributes = True


class Invoice(BaseModel):
    id: int
    invoice_number: str
    invoice_type: InvoiceType
    status: InvoiceStatus
    customer_id: int
    quote_id: Optional[int] = None
    order_id: Optional[int] = None
    currency: str
    subtotal: float
    tax_amount: float
    total_amount: float
    issue_date: date
    due_date: Optional[date] = None
    payment_terms: Optional[str] = None
    paid_at: Optional[datetime] = None
    items: List[InvoiceItem] = []

    class Config:
        from_attributes = True


class RegenerationResult(BaseModel):
    checked: int
    generated: int
    failed: int
