"""
Sales leads captured from the public site or entered by staff.
"""
from sqlalchemy import Column, Integer, String, Float, Date, DateTime, Text, ForeignKey, JSON

from .base import BaseModel
from .enums import LeadStatus, enum_column


class Lead(BaseModel):
    __tablename__ = 'leads'

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=True, index=True)
    status = enum_column(LeadStatus, default=LeadStatus.NEW, nullable=False, index=True)
    source = Column(String(50), default='website', nullable=False)
    value = Column(Float, nullable=True)
    currency = Column(String(3), nullable=True)
    # Staff-assigned starting score; lead_score holds the computed score
    base_score = Column(Integer, nullable=True)
    lead_score = Column(Integer, nullable=True)
    expected_close_date = Column(Date, nullable=True)

    # Contact details for leads without a customer record
    contact_name = Column(String(200), nullable=True)
    contact_email = Column(String(255), nullable=True)
    company_name = Column(String(255), nullable=True)

    # Public submission data
    ip_address = Column(String(64), nullable=True, index=True)
    verification_status = Column(String(20), default='pending', nullable=False)
    submission_metadata = Column(JSON, nullable=True)
    geolocation = Column(JSON, nullable=True)

    converted_customer_id = Column(Integer, ForeignKey('customers.id'), nullable=True)
    converted_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Lead(id={self.id}, title={self.title}, status={self.status})>"
