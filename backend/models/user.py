"""
User model for authentication and roles.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import UserRole, enum_column


class User(BaseModel):
    """Staff, admin and customer portal accounts."""
    __tablename__ = 'users'

    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    full_name = Column(String(200), nullable=True)
    hashed_password = Column(String(255), nullable=False)
    role = enum_column(UserRole, default=UserRole.STAFF, nullable=False)

    # Customer portal users act on behalf of one customer
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=True, index=True)

    last_login = Column(DateTime, nullable=True)
    failed_login_attempts = Column(Integer, default=0, nullable=False)

    customer = relationship("Customer", foreign_keys=[customer_id])
    notifications = relationship("Notification", back_populates="user", lazy="dynamic")

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.STAFF)

    def record_login(self):
        self.last_login = datetime.utcnow()
        self.failed_login_attempts = 0

    def __repr__(self):
        return f"<User(username={self.username}, role={self.role})>"
