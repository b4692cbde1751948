# backend/core/security.py
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Union
import jwt
from passlib.context import CryptContext
from fastapi import HTTPException, status
import secrets
import hashlib
import hmac
from email_validator import validate_email, EmailNotValidError

from ..config.settings import get_settings
from ..config.logging import get_logger, log_security_event

logger = get_logger(__name__)
settings = get_settings()

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Security constants
ALGORITHM = settings.JWT_ALGORITHM
SECRET_KEY = settings.JWT_SECRET_KEY
ACCESS_TOKEN_EXPIRE_SECONDS = settings.JWT_ACCESS_TOKEN_EXPIRES
REFRESH_TOKEN_EXPIRE_DAYS = settings.JWT_REFRESH_TOKEN_EXPIRES

# Password security
def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except Exception as e:
        logger.error(f"Password verification error: {e}")
        return False

def get_password_hash(password: str) -> str:
    """Generate password hash."""
    return pwd_context.hash(password)

def validate_password_strength(password: str) -> Dict[str, Union[bool, list]]:
    """Validate password strength."""
    errors = []

    if len(password) < 8:
        errors.append("Password must be at least 8 characters long")

    if not any(c.isupper() for c in password):
        errors.append("Password must contain at least one uppercase letter")

    if not any(c.islower() for c in password):
        errors.append("Password must contain at least one lowercase letter")

    if not any(c.isdigit() for c in password):
        errors.append("Password must contain at least one digit")

    return {
        "is_valid": len(errors) == 0,
        "errors": errors
    }

# JWT Token handling
def _encode(to_encode: Dict[str, Any]) -> str:
    try:
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    except Exception as e:
        logger.error(f"Token creation error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not create token"
        )

def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token."""
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(seconds=ACCESS_TOKEN_EXPIRE_SECONDS))

    to_encode.update({
        "exp": expire,
        "iat": datetime.utcnow(),
        "type": "access"
    })
    return _encode(to_encode)

def create_refresh_token(data: Dict[str, Any]) -> str:
    """Create JWT refresh token."""
    to_encode = data.copy()
    expire = datetime.utcnow() + timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS)

    to_encode.update({
        "exp": expire,
        "iat": datetime.utcnow(),
        "type": "refresh"
    })
    return _encode(to_encode)

def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify and decode JWT token."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        log_security_event("TOKEN_EXPIRED", details="JWT token has expired")
        return None
    except jwt.InvalidTokenError as e:
        log_security_event("INVALID_TOKEN", details=f"Invalid JWT token: {str(e)}")
        return None

def verify_refresh_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify refresh token."""
    payload = verify_token(token)
    if payload and payload.get("type") == "refresh":
        return payload
    return None

# Magic link tokens
def generate_secure_token() -> str:
    """URL-safe random token for emailed approval links."""
    return secrets.token_urlsafe(32)

def hash_token(token: str) -> str:
    """Hash a token for storage."""
    return hashlib.sha256(token.encode()).hexdigest()

# Webhook signatures
def compute_hmac_sha512(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha512).hexdigest()

def verify_hmac_signature(secret: str, payload: bytes, signature: Optional[str]) -> bool:
    """Constant-time check of an HMAC-SHA512 hex signature over the raw body."""
    if not signature:
        return False
    return hmac.compare_digest(compute_hmac_sha512(secret, payload), signature)

# Email validation
def validate_email_address(email: str) -> Dict[str, Union[bool, str]]:
    """Validate email address."""
    try:
        validation = validate_email(email, check_deliverability=False)
        return {
            "is_valid": True,
            "normalized_email": validation.normalized
        }
    except EmailNotValidError as e:
        return {
            "is_valid": False,
            "error": str(e)
        }

# Security headers
def get_security_headers() -> Dict[str, str]:
    """Get security headers."""
    return {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
        "Referrer-Policy": "strict-origin-when-cross-origin"
    }

# Security event types
class SecurityEvent:
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    TOKEN_REFRESH = "TOKEN_REFRESH"
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INVALID_WEBHOOK_SIGNATURE = "INVALID_WEBHOOK_SIGNATURE"
    MAGIC_LINK_REJECTED = "MAGIC_LINK_REJECTED"
    RECAPTCHA_FAILED = "RECAPTCHA_FAILED"

# Export security functions
__all__ = [
    "verify_password",
    "get_password_hash",
    "validate_password_strength",
    "create_access_token",
    "create_refresh_token",
    "verify_token",
    "verify_refresh_token",
    "generate_secure_token",
    "hash_token",
    "compute_hmac_sha512",
    "verify_hmac_signature",
    "validate_email_address",
    "get_security_headers",
    "SecurityEvent"
]
