from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, date

from ..models.enums import LeadStatus


class LeadSubmission(BaseModel):
    """Public website inquiry. Validation beyond types happens in the service."""
    title: Optional[str] = None
    description: Optional[str] = None
    contact_name: Optional[str] = Field(None, max_length=200)
    contact_email: Optional[str] = None
    company_name: Optional[str] = Field(None, max_length=255)
    source: Optional[str] = Field(None, max_length=50)
    value: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    recaptcha_token: Optional[str] = None


class LeadSubmissionResult(BaseModel):
    success: bool
    message: str
    lead_id: int


class LeadCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    customer_id: Optional[int] = None
    status: LeadStatus = LeadStatus.NEW
    source: str = Field("manual", max_length=50)
    value: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    base_score: Optional[int] = Field(None, ge=0, le=100)
    expected_close_date: Optional[date] = None
    contact_name: Optional[str] = Field(None, max_length=200)
    contact_email: Optional[str] = Field(None, max_length=255)
    company_name: Optional[str] = Field(None, max_length=255)


class LeadUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[LeadStatus] = None
    value: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    expected_close_date: Optional[date] = None
    contact_name: Optional[str] = Field(None, max_length=200)
    contact_email: Optional[str] = Field(None, max_length=255)
    company_name: Optional[str] = Field(None, max_length=255)


class Lead(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    customer_id: Optional[int] = None
    status: LeadStatus
    source: str
    value: Optional[float] = None
    currency: Optional[str] = None
    base_score: Optional[int] = None
    lead_score: Optional[int] = None
    expected_close_date: Optional[date] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    company_name: Optional[str] = None
    verification_status: str
    converted_customer_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class LeadScore(BaseModel):
    lead_id: int
    score: int
    tier: str


class RescoreResult(BaseModel):
    rescored: int
