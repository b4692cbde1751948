from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, date

from ..models.enums import StandingOrderFrequency, StandingOrderStatus, GenerationType, GenerationStatus
from .quote import LineItemBase


class StandingOrderItemCreate(LineItemBase):
    pass


class StandingOrderItem(LineItemBase):
    id: int
    line_total: float

    class Config:
        from_attributes = True


class ScheduleFields(BaseModel):
    frequency: StandingOrderFrequency
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    day_of_month: Optional[int] = Field(None, ge=1, le=31)


class StandingOrderCreate(ScheduleFields):
    customer_id: int
    name: str = Field(..., min_length=1, max_length=200)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    requires_approval: bool = True
    auto_use_credit: bool = False
    start_date: Optional[date] = None
    notes: Optional[str] = None
    items: List[StandingOrderItemCreate] = []


class StandingOrderUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    frequency: Optional[StandingOrderFrequency] = None
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    day_of_month: Optional[int] = Field(None, ge=1, le=31)
    requires_approval: Optional[bool] = None
    auto_use_credit: Optional[bool] = None
    notes: Optional[str] = None


class StandingOrderStatusUpdate(BaseModel):
    status: StandingOrderStatus
    reason: Optional[str] = Field(None, max_length=1000)


class StandingOrderItemsReplace(BaseModel):
    items: List[StandingOrderItemCreate]


class StandingOrder(BaseModel):
    id: int
    customer_id: int
    name: str
    frequency: StandingOrderFrequency
    frequency_label: str
    day_of_week: Optional[int] = None
    day_of_week_label: Optional[str] = None
    day_of_month: Optional[int] = None
    currency: str
    status: StandingOrderStatus
    paused_at: Optional[datetime] = None
    pause_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    requires_approval: bool
    auto_use_credit: bool
    total_orders_generated: int
    next_scheduled_date: Optional[date] = None
    last_generated_date: Optional[date] = None
    estimated_amount: float
    notes: Optional[str] = None
    items: List[StandingOrderItem] = []

    class Config:
        from_attributes = True


class StandingOrderGeneration(BaseModel):
    id: int
    scheduled_date: date
    generation_type: GenerationType
    status: GenerationStatus
    failure_reason: Optional[str] = None
    skipped_reason: Optional[str] = None
    estimated_amount: Optional[float] = None
    quote_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class GenerateRequest(BaseModel):
    generation_type: GenerationType = GenerationType.MANUAL
    scheduled_date: Optional[date] = None


class GenerationResult(BaseModel):
    success: bool
    quote_id: Optional[int] = None
    quote_number: Optional[str] = None
    order_id: Optional[int] = None
    estimated_amount: Optional[float] = None
    error: Optional[str] = None
    skipped: bool = False


class NextDateRequest(ScheduleFields):
    from_date: Optional[date] = None


class NextDateResponse(BaseModel):
    next_date: date
    frequency_label: str
