from pydantic import BaseModel
from typing import Optional, Dict, Any
from datetime import datetime


class Notification(BaseModel):
    id: int
    type: str
    title: str
    message: str
    data: Optional[Dict[str, Any]] = None
    read_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AuditLog(BaseModel):
    id: int
    event_type: str
    severity: str
    actor: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


class EmailLog(BaseModel):
    id: int
    email_type: str
    recipient: str
    subject: str
    status: str
    attempts: int
    error_message: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
