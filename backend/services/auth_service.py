from datetime import datetime
from typing import Optional
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..config.settings import get_settings
from ..config.logging import get_logger, log_security_event
from ..core.dependencies import get_redis_client
from ..core.exceptions import ConflictError, BadRequestError, NotFoundError
from ..core.security import (
    verify_password,
    get_password_hash,
    validate_password_strength,
    create_access_token,
    create_refresh_token,
    verify_refresh_token,
    hash_token,
    SecurityEvent,
)
from ..models.customer import Customer
from ..models.enums import UserRole
from ..models.user import User
from ..schemas.auth import UserCreate, Token

logger = get_logger(__name__)
settings = get_settings()

MAX_FAILED_LOGINS = 5


class AuthService:
    def __init__(self, db: Session):
        self.db = db
        self.redis_client = get_redis_client()

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email).first()

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self.db.query(User).filter(User.username == username).first()

    def create_user(self, user_data: UserCreate) -> User:
        """Create a user account after uniqueness and password checks"""
        if self.get_user_by_email(user_data.email):
            raise ConflictError("Email already registered")
        if self.get_user_by_username(user_data.username):
            raise ConflictError("Username already taken")

        strength = validate_password_strength(user_data.password)
        if not strength["is_valid"]:
            raise BadRequestError("; ".join(strength["errors"]), field="password")

        if user_data.role == UserRole.CUSTOMER:
            if user_data.customer_id is None:
                raise BadRequestError("Customer users must be linked to a customer", field="customer_id")
            if not self.db.query(Customer).filter(Customer.id == user_data.customer_id).first():
                raise NotFoundError("Customer", user_data.customer_id)

        user = User(
            email=user_data.email,
            username=user_data.username,
            full_name=user_data.full_name,
            hashed_password=get_password_hash(user_data.password),
            role=user_data.role,
            customer_id=user_data.customer_id,
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"User created: {user.username} ({user.role})")
        return user

    def authenticate_user(self, username: str, password: str, ip_address: str = None) -> Optional[User]:
        """Authenticate user with username or email and password"""
        user = self.db.query(User).filter(
            or_(User.username == username, User.email == username)
        ).first()

        if not user or not user.is_active:
            log_security_event(SecurityEvent.LOGIN_FAILURE, details=f"Unknown or inactive user '{username}'",
                               ip_address=ip_address)
            return None

        if user.failed_login_attempts >= MAX_FAILED_LOGINS or not verify_password(password, user.hashed_password):
            user.failed_login_attempts += 1
            self.db.commit()
            log_security_event(SecurityEvent.LOGIN_FAILURE, user_id=str(user.id),
                               details=f"Failed login attempt {user.failed_login_attempts}", ip_address=ip_address)
            return None

        user.record_login()
        self.db.commit()
        log_security_event(SecurityEvent.LOGIN_SUCCESS, user_id=str(user.id), ip_address=ip_address)
        return user

    def issue_tokens(self, user: User) -> Token:
        claims = {"sub": user.username, "user_id": user.id, "role": str(user.role)}
        refresh_token = create_refresh_token(claims)
        self.store_refresh_token(user.id, refresh_token)
        return Token(
            access_token=create_access_token(claims),
            refresh_token=refresh_token,
            token_type="bearer",
            expires_in=settings.JWT_ACCESS_TOKEN_EXPIRES,
        )

    def store_refresh_token(self, user_id: int, refresh_token: str):
        """Remember the latest refresh token so it can be revoked. Needs Redis."""
        if not self.redis_client:
            return
        try:
            self.redis_client.setex(
                f"refresh_token:{user_id}",
                settings.JWT_REFRESH_TOKEN_EXPIRES * 86400,
                hash_token(refresh_token),
            )
        except Exception as e:
            logger.error(f"Failed to store refresh token: {e}")

    def _refresh_token_revoked(self, user_id: int, refresh_token: str) -> bool:
        if not self.redis_client:
            return False
        try:
            stored = self.redis_client.get(f"refresh_token:{user_id}")
        except Exception as e:
            logger.error(f"Failed to read refresh token: {e}")
            return False
        return stored is None or stored != hash_token(refresh_token)

    def refresh(self, refresh_token: str) -> Optional[Token]:
        payload = verify_refresh_token(refresh_token)
        if not payload:
            return None
        user = self.db.query(User).filter(User.id == payload.get("user_id")).first()
        if not user or not user.is_active or self._refresh_token_revoked(user.id, refresh_token):
            return None
        log_security_event(SecurityEvent.TOKEN_REFRESH, user_id=str(user.id))
        return self.issue_tokens(user)

    def revoke_refresh_token(self, user_id: int):
        if self.redis_client:
            try:
                self.redis_client.delete(f"refresh_token:{user_id}")
            except Exception as e:
                logger.error(f"Failed to revoke refresh token: {e}")

    def change_password(self, user: User, current_password: str, new_password: str):
        if not verify_password(current_password, user.hashed_password):
            raise BadRequestError("Incorrect current password", field="current_password")
        strength = validate_password_strength(new_password)
        if not strength["is_valid"]:
            raise BadRequestError("; ".join(strength["errors"]), field="new_password")

        user.hashed_password = get_password_hash(new_password)
        user.updated_at = datetime.utcnow()
        self.db.commit()
        self.revoke_refresh_token(user.id)
