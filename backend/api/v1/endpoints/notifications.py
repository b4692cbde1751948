from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ....core.dependencies import get_db, get_current_user, get_current_admin_user, PaginationParams
from ....models.user import User
from ....schemas.base import PaginatedResponse
from ....schemas.notification import Notification, AuditLog, EmailLog
from ....services.notification_service import NotificationService

router = APIRouter()


@router.get("/", response_model=PaginatedResponse[Notification])
async def list_notifications(
    unread_only: bool = Query(False),
    pagination: PaginationParams = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return NotificationService(db).list_for_user(
        current_user, unread_only=unread_only, skip=pagination.offset, limit=pagination.size
    )


@router.post("/read-all")
async def mark_all_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return {"marked_read": NotificationService(db).mark_all_read(current_user)}


@router.post("/{notification_id}/read", response_model=Notification)
async def mark_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return NotificationService(db).mark_read(current_user, notification_id)


@router.get("/audit-logs", response_model=PaginatedResponse[AuditLog])
async def list_audit_logs(
    event_type: Optional[str] = Query(None),
    pagination: PaginationParams = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)
):
    return NotificationService(db).list_audit_logs(event_type, skip=pagination.offset, limit=pagination.size)


@router.get("/email-logs", response_model=PaginatedResponse[EmailLog])
async def list_email_logs(
    email_type: Optional[str] = Query(None),
    email_status: Optional[str] = Query(None, alias="status"),
    customer_id: Optional[int] = Query(None),
    pagination: PaginationParams = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)
):
    """
    Delivery outcome of every email the platform tried to send
    """
    return NotificationService(db).list_email_logs(
        email_type=email_type, status=email_status, customer_id=customer_id,
        skip=pagination.offset, limit=pagination.size,
    )
