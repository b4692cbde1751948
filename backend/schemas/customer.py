from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime

from ..models.enums import CustomerStatus
from ..core.security import validate_email_address


def normalize_optional_email(v: Optional[str]) -> Optional[str]:
    if v is None or v == "":
        return None
    result = validate_email_address(v)
    if not result["is_valid"]:
        raise ValueError(result["error"])
    return result["normalized_email"]


class CustomerAddressBase(BaseModel):
    label: Optional[str] = Field(None, max_length=100)
    recipient_name: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, max_length=50)
    street_address: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    region: Optional[str] = Field(None, max_length=100)
    country: str = Field("Ghana", max_length=100)
    digital_address: Optional[str] = Field(None, max_length=50)
    is_default: bool = False


class CustomerAddressCreate(CustomerAddressBase):
    pass


class CustomerAddress(CustomerAddressBase):
    id: int
    customer_id: int

    class Config:
        from_attributes = True


class CustomerBase(BaseModel):
    company_name: str = Field(..., min_length=1, max_length=255)
    contact_name: Optional[str] = Field(None, max_length=200)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    city: Optional[str] = Field(None, max_length=100)
    country: str = Field("Ghana", max_length=100)
    preferred_currency: Optional[str] = Field(None, min_length=3, max_length=3)
    notes: Optional[str] = None

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return normalize_optional_email(v)


class CustomerCreate(CustomerBase):
    customer_code: Optional[str] = Field(None, max_length=50)
    addresses: List[CustomerAddressCreate] = []


class CustomerUpdate(BaseModel):
    company_name: Optional[str] = Field(None, min_length=1, max_length=255)
    contact_name: Optional[str] = Field(None, max_length=200)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    city: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field(None, max_length=100)
    preferred_currency: Optional[str] = Field(None, min_length=3, max_length=3)
    status: Optional[CustomerStatus] = None
    notes: Optional[str] = None

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return normalize_optional_email(v)


class Customer(CustomerBase):
    id: int
    customer_code: str
    status: CustomerStatus
    created_at: datetime
    updated_at: Optional[datetime]
    addresses: List[CustomerAddress] = []

    class Config:
        from_attributes = True


class CustomerSummary(BaseModel):
    customer_id: int
    customer_code: str
    company_name: str
    status: CustomerStatus
    loyalty_tier: str
    total_orders: int
    delivered_orders: int
    open_orders: int
    total_order_value: float
    outstanding_balance: float
    credit: Optional[dict] = None
