"""
In-app notifications, audit trail and outbound email log.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, JSON
from sqlalchemy.orm import relationship

from .base import BaseModel


class Notification(BaseModel):
    __tablename__ = 'notifications'

    user_id = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=True, index=True)
    type = Column(String(50), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    read_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="notifications")

class AuditLog(BaseModel):
    __tablename__ = 'audit_logs'

    event_type = Column(String(100), nullable=False, index=True)
    severity = Column(String(20), default='low', nullable=False)
    actor = Column(String(100), nullable=True)
    details = Column(JSON, nullable=True)


class EmailLog(BaseModel):
    __tablename__ = 'email_logs'

    email_type = Column(String(50), nullable=False, index=True)
    recipient = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=False)
    # sent, failed or skipped
    status = Column(String(20), nullable=False, index=True)
    attempts = Column(Integer, default=1, nullable=False)
    error_message = Column(Text, nullable=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=True)
    quote_id = Column(Integer, ForeignKey('quotes.id'), nullable=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=True)
