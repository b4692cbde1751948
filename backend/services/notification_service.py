from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from ..config.settings import get_settings
from ..config.logging import get_logger
from ..core.exceptions import NotFoundError
from ..models.enums import UserRole
from ..models.notification import Notification, AuditLog, EmailLog
from ..models.user import User
from ..repositories.base import paginate
from .email_service import EmailDeliveryService

logger = get_logger(__name__)
settings = get_settings()


class NotificationService:
    def __init__(self, db: Session, email_delivery: Optional[EmailDeliveryService] = None):
        self.db = db
        self.email_delivery = email_delivery or EmailDeliveryService(db)

    def _admin_users(self) -> List[User]:
        return self.db.query(User).filter(
            User.role == UserRole.ADMIN,
            User.is_active == True  # noqa: E712
        ).all()

    def notify_admins(
        self,
        type: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        email: bool = True,
    ) -> List[Notification]:
        """Create an in-app notification for every admin and optionally email them."""
        notifications = []
        for admin in self._admin_users():
            notification = Notification(
                user_id=admin.id,
                type=type,
                title=title,
                message=message,
                data=data,
            )
            self.db.add(notification)
            notifications.append(notification)
        self.db.flush()

        if email:
            recipients = {admin.email for admin in self._admin_users()}
            if settings.ADMIN_NOTIFICATION_EMAIL:
                recipients.add(settings.ADMIN_NOTIFICATION_EMAIL)
            for recipient in sorted(recipients):
                self.email_delivery.send_template(
                    "admin_alert", recipient, {"title": title, "message": message},
                    email_type=f"admin_{type}",
                )

        logger.info(f"Admin notification '{type}' created for {len(notifications)} admin(s)")
        return notifications

    def notify_customer_users(self, customer_id: int, type: str, title: str, message: str,
                              data: Optional[Dict[str, Any]] = None) -> List[Notification]:
        users = self.db.query(User).filter(User.customer_id == customer_id, User.is_active == True).all()  # noqa: E712
        notifications = [
            Notification(user_id=user.id, customer_id=customer_id, type=type, title=title,
                         message=message, data=data)
            for user in users
        ]
        if not notifications:
            notifications = [Notification(customer_id=customer_id, type=type, title=title,
                                          message=message, data=data)]
        self.db.add_all(notifications)
        self.db.flush()
        return notifications

    def log_audit_event(self, event_type: str, details: Dict[str, Any] = None,
                        severity: str = "low", actor: str = None) -> AuditLog:
        entry = AuditLog(event_type=event_type, severity=severity, actor=actor, details=details or {})
        self.db.add(entry)
        self.db.flush()
        return entry

    # User notification inbox
    def list_for_user(self, user: User, unread_only: bool = False, skip: int = 0, limit: int = 50) -> Dict[str, Any]:
        query = self.db.query(Notification).filter(Notification.user_id == user.id)
        if unread_only:
            query = query.filter(Notification.read_at.is_(None))
        return paginate(query.order_by(Notification.id.desc()), skip, limit)

    def mark_read(self, user: User, notification_id: int) -> Notification:
        notification = self.db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user.id
        ).first()
        if not notification:
            raise NotFoundError("Notification", notification_id)
        if notification.read_at is None:
            notification.read_at = datetime.utcnow()
            self.db.commit()
        return notification

    def mark_all_read(self, user: User) -> int:
        count = self.db.query(Notification).filter(
            Notification.user_id == user.id,
            Notification.read_at.is_(None)
        ).update({Notification.read_at: datetime.utcnow()}, synchronize_session=False)
        self.db.commit()
        return count

    def list_audit_logs(self, event_type: str = None, skip: int = 0, limit: int = 50) -> Dict[str, Any]:
        query = self.db.query(AuditLog)
        if event_type:
            query = query.filter(AuditLog.event_type == event_type)
        return paginate(query.order_by(AuditLog.id.desc()), skip, limit)

    def list_email_logs(self, email_type: str = None, status: str = None, customer_id: int = None,
                        skip: int = 0, limit: int = 50) -> Dict[str, Any]:
        query = self.db.query(EmailLog)
        if email_type:
            query = query.filter(EmailLog.email_type == email_type)
        if status:
            query = query.filter(EmailLog.status == status)
        if customer_id is not None:
            query = query.filter(EmailLog.customer_id == customer_id)
        return paginate(query.order_by(EmailLog.id.desc()), skip, limit)
