"""
Custom exceptions for the trading platform.
Handles HTTP exceptions, validation errors, and business logic errors.
"""

from typing import Any, Dict, Optional, List
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..config.logging import get_logger

logger = get_logger(__name__)


class ErrorDetail(BaseModel):
    """Standard error detail structure"""
    code: str
    message: str
    field: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class BaseCustomException(HTTPException):
    """Base class for all custom exceptions"""

    def __init__(
        self,
        status_code: int,
        detail: str,
        headers: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        field: Optional[str] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.field = field


# =============================================================================
# HTTP EXCEPTIONS
# =============================================================================

class NotFoundError(BaseCustomException):
    """Resource not found exception"""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} with identifier '{identifier}' not found",
            error_code="RESOURCE_NOT_FOUND"
        )


class UnauthorizedError(BaseCustomException):
    """Unauthorized access exception"""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=message,
            error_code="UNAUTHORIZED",
            headers={"WWW-Authenticate": "Bearer"}
        )


class ForbiddenError(BaseCustomException):
    """Forbidden access exception"""

    def __init__(self, message: str = "Access denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=message,
            error_code="FORBIDDEN"
        )


class ConflictError(BaseCustomException):
    """Resource conflict exception"""

    def __init__(self, message: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=message,
            error_code="RESOURCE_CONFLICT"
        )


class BadRequestError(BaseCustomException):
    """Bad request exception"""

    def __init__(self, message: str, field: str = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=message,
            error_code="BAD_REQUEST",
            field=field
        )


class InvalidMagicLinkError(BadRequestError):
    """Magic link token is unknown, expired or already used"""

    def __init__(self, title: str, message: str):
        super().__init__(message, field="token")
        self.error_code = "INVALID_MAGIC_LINK"
        self.title = title


class InternalServerError(BaseCustomException):
    """Internal server error exception"""

    def __init__(self, message: str = "Internal server error occurred"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=message,
            error_code="INTERNAL_SERVER_ERROR"
        )


class ServiceUnavailableError(BaseCustomException):
    """Service unavailable exception"""

    def __init__(self, service: str = "Service"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{service} is temporarily unavailable",
            error_code="SERVICE_UNAVAILABLE"
        )


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class ValidationError(BaseCustomException):
    """Base validation error"""

    def __init__(self, message: str, field: str = None, errors: List[ErrorDetail] = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=message,
            error_code="VALIDATION_ERROR",
            field=field
        )
        self.errors = errors or []


class InvalidDateRangeError(ValidationError):
    """Invalid date range error"""

    def __init__(self, start_date: str = None, end_date: str = None):
        message = "Invalid date range: start date must be before end date"
        if start_date and end_date:
            message = f"Invalid date range: {start_date} to {end_date}"

        super().__init__(
            message=message,
            field="date_range",
            errors=[
                ErrorDetail(
                    code="INVALID_DATE_RANGE",
                    message=message,
                    field="date_range"
                )
            ]
        )


# =============================================================================
# BUSINESS LOGIC ERRORS
# =============================================================================

class BusinessLogicError(BaseCustomException):
    """Base business logic error"""

    def __init__(self, message: str, error_code: str):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=message,
            error_code=error_code
        )


class InvalidOrderStatusError(BusinessLogicError):
    """Invalid order status transition"""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="INVALID_ORDER_STATUS_TRANSITION"
        )


class MissingDeliveryAddressError(BusinessLogicError):
    """Order needs a delivery address for the requested status"""

    def __init__(self, order_number: str = None):
        message = "Missing delivery address"
        if order_number:
            message = f"Missing delivery address for order {order_number}"
        super().__init__(
            message=message,
            error_code="MISSING_DELIVERY_ADDRESS"
        )


class PaymentRequiredError(BusinessLogicError):
    """Order payment state blocks the requested status"""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="PAYMENT_REQUIRED"
        )


class ShippingDetailsRequiredError(BusinessLogicError):
    """Carrier and tracking number are missing"""

    def __init__(self):
        super().__init__(
            message="Tracking number and carrier are required before shipping",
            error_code="SHIPPING_DETAILS_REQUIRED"
        )


class InactiveCustomerError(BusinessLogicError):
    """Customer is inactive"""

    def __init__(self, customer_code: str):
        super().__init__(
            message=f"Customer {customer_code} is inactive and cannot place orders",
            error_code="INACTIVE_CUSTOMER"
        )


class CreditNotAvailableError(BusinessLogicError):
    """Customer has no usable credit terms"""

    def __init__(self, reason: str):
        super().__init__(
            message=f"Credit not available: {reason}",
            error_code="CREDIT_NOT_AVAILABLE"
        )


class CreditLimitExceededError(BusinessLogicError):
    """Amount exceeds the customer's available credit"""

    def __init__(self, customer_code: str, amount: float, available: float):
        super().__init__(
            message=f"Amount {amount:.2f} exceeds available credit {available:.2f} for customer {customer_code}",
            error_code="CREDIT_LIMIT_EXCEEDED"
        )


class CreditTermsStateError(BusinessLogicError):
    """Credit terms are in the wrong state for the operation"""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="CREDIT_TERMS_STATE"
        )


class StandingOrderStateError(BusinessLogicError):
    """Standing order is in the wrong state for the operation"""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="STANDING_ORDER_STATE"
        )


class QuoteStateError(BusinessLogicError):
    """Quote is in the wrong state for the operation"""

    def __init__(self, quote_number: str, current_status: str, action: str):
        super().__init__(
            message=f"Cannot {action} quote {quote_number} in status {current_status}",
            error_code="QUOTE_STATE"
        )


class ExternalServiceError(ServiceUnavailableError):
    """External service error"""

    def __init__(self, service_name: str, operation: str = None):
        super().__init__(service=service_name)
        if operation:
            self.detail = f"External service {service_name} failed during {operation}"
        self.error_code = "EXTERNAL_SERVICE_ERROR"


class InvalidSignatureError(BaseCustomException):
    """Webhook signature did not match"""

    def __init__(self, provider: str):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid {provider} signature",
            error_code="INVALID_SIGNATURE"
        )


class RateLimitExceededError(BaseCustomException):
    """Rate limit exceeded error"""

    def __init__(self, message: str, retry_after: int = 60):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=message,
            error_code="RATE_LIMIT_EXCEEDED",
            headers={"Retry-After": str(retry_after)}
        )


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

def format_error_response(error: HTTPException) -> Dict[str, Any]:
    """Format error response for consistent API responses"""
    response = {
        "error": True,
        "error_code": getattr(error, 'error_code', None) or 'HTTP_ERROR',
        "message": error.detail,
        "status_code": error.status_code
    }

    if getattr(error, 'field', None):
        response["field"] = error.field

    if getattr(error, 'errors', None):
        response["errors"] = [err.model_dump() for err in error.errors]

    return response


async def custom_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render every HTTPException through format_error_response."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(exc),
        headers=getattr(exc, "headers", None)
    )
