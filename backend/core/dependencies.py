# backend/core/dependencies.py
from fastapi import Depends, HTTPException, status, Query, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional
import redis
from functools import lru_cache
import uuid
from datetime import datetime

from ..config.database import get_db
from ..config.settings import get_settings
from ..models.user import User
from ..models.enums import UserRole
from ..core.security import verify_token
from ..config.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()
security = HTTPBearer(auto_error=False)


# Redis client for caching, rate limiting and the order feed
@lru_cache()
def get_redis_client():
    """Get Redis client instance."""
    try:
        client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        client.ping()
        return client
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        return None


# Authentication dependencies
def get_current_user(
    db: Session = Depends(get_db),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> User:
    """Get current authenticated user."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"}
        )

    payload = verify_token(credentials.credentials)
    if not payload or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"}
        )

    user_id = payload.get("user_id")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload"
        )

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is disabled"
        )

    return user


# Admin user dependency
def get_current_admin_user(current_user: User = Depends(get_current_user)) -> User:
    """Ensure current user is an admin."""
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user


# Staff (admin or staff) dependency
def get_current_staff_user(current_user: User = Depends(get_current_user)) -> User:
    """Ensure current user is internal staff."""
    if not current_user.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff access required"
        )
    return current_user


def ensure_customer_access(current_user: User, customer_id: int):
    """Customer users may only see their own records."""
    if current_user.is_staff:
        return
    if current_user.customer_id is None or current_user.customer_id != customer_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access to this customer is not allowed"
        )


# Pagination dependency
class PaginationParams:
    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number"),
        size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE, description="Page size"),
        sort_by: Optional[str] = Query(None, description="Sort field"),
        sort_order: str = Query("desc", pattern="^(asc|desc)$", description="Sort order")
    ):
        self.page = page
        self.size = min(size, settings.MAX_PAGE_SIZE)
        self.sort_by = sort_by
        self.sort_order = sort_order
        self.offset = (page - 1) * self.size


# Request context dependency
class RequestContext:
    def __init__(self, request: Request):
        self.request = request
        self.request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
        self.timestamp = datetime.utcnow()
        self.ip_address = self.get_client_ip()
        self.user_agent = request.headers.get("user-agent", "")
        self.referrer = request.headers.get("referer")

    def get_client_ip(self) -> str:
        """Get client IP address: x-forwarded-for, then x-real-ip."""
        forwarded = self.request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = self.request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
        return "0.0.0.0"


def get_request_context(request: Request) -> RequestContext:
    """Get request context."""
    return RequestContext(request)


# Export all dependencies
__all__ = [
    "get_db",
    "get_redis_client",
    "get_current_user",
    "get_current_admin_user",
    "get_current_staff_user",
    "ensure_customer_access",
    "get_request_context",
    "PaginationParams",
    "RequestContext",
]
