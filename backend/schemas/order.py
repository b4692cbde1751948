from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, date

from ..models.enums import OrderStatus, PaymentStatus, TransactionStatus


class OrderItem(BaseModel):
    id: int
    product_name: str
    description: Optional[str] = None
    quantity: float
    unit: Optional[str] = None
    unit_price: float
    line_total: float

    class Config:
        from_attributes = True


class OrderStatusHistory(BaseModel):
    old_status: Optional[str]
    new_status: str
    notes: Optional[str] = None
    changed_by: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class Order(BaseModel):
    id: int
    order_number: str
    customer_id: int
    quote_id: Optional[int] = None
    status: OrderStatus
    payment_status: PaymentStatus
    currency: str
    total_amount: float
    amount_paid: float
    balance_remaining: float
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    payment_channel: Optional[str] = None
    payment_verified_at: Optional[datetime] = None
    payment_confirmed_at: Optional[datetime] = None
    credit_amount_used: float = 0
    credit_due_date: Optional[date] = None
    delivery_address_id: Optional[int] = None
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class OrderDetail(Order):
    items: List[OrderItem] = []
    status_history: List[OrderStatusHistory] = []


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: Optional[str] = Field(None, max_length=2000)


class BulkStatusUpdate(BaseModel):
    order_ids: List[int] = Field(..., min_length=1, max_length=500)
    status: OrderStatus
    notes: Optional[str] = Field(None, max_length=2000)


class BulkStatusFailure(BaseModel):
    id: str
    error: str


class BulkStatusResult(BaseModel):
    success: List[str]
    failed: List[BulkStatusFailure]


class PaymentCreate(BaseModel):
    amount: float = Field(..., gt=0)
    method: str = Field("bank_transfer", max_length=30)
    reference: Optional[str] = Field(None, max_length=100)


class PaymentRejection(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class ShippingDetails(BaseModel):
    carrier: str = Field(..., min_length=1, max_length=100)
    tracking_number: str = Field(..., min_length=1, max_length=100)


class DeliveryAddressAssignment(BaseModel):
    address_id: int


class StatusErrorExplanation(BaseModel):
    title: str
    description: str
    action: Optional[str] = None


class OrderBlocker(BaseModel):
    order_id: int
    status: OrderStatus
    blocker: Optional[str] = None
    allowed_transitions: List[str]


class PaymentInitialize(BaseModel):
    email: str = Field(..., max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    callback_url: Optional[str] = Field(None, max_length=500)


class PaymentInitializeResult(BaseModel):
    success: bool
    reference: str
    authorization_url: Optional[str] = None
    access_code: Optional[str] = None


class PaymentVerify(BaseModel):
    reference: str = Field(..., min_length=1, max_length=100)


class PaymentVerifyResult(BaseModel):
    status: str
    message: str
    order_number: str
    amount: Optional[float] = None
    currency: Optional[str] = None
    channel: Optional[str] = None


class BalanceRequestResult(BaseModel):
    order_id: int
    balance_remaining: float
    currency: str
    email_status: str


class DeliveryAddressRequest(BaseModel):
    email: Optional[str] = Field(None, max_length=255)


class DeliveryAddressRequestResult(BaseModel):
    order_id: int
    address_url: str
    expires_at: datetime
    email_status: str


class PaymentTransaction(BaseModel):
    id: int
    order_id: int
    reference: str
    provider: str
    amount: float
    currency: str
    status: TransactionStatus
    channel: Optional[str] = None
    authorization_url: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
