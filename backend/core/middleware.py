# backend/core/middleware.py
from fastapi import Request, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware
from starlette.responses import JSONResponse
import time
import uuid
from typing import Callable
from collections import defaultdict, deque

from ..config.settings import get_settings
from ..config.logging import get_logger, log_api_request, log_api_response, log_security_event
from ..core.security import get_security_headers, verify_token, SecurityEvent
from ..core.dependencies import get_redis_client

logger = get_logger(__name__)
settings = get_settings()


# Request ID Middleware
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add unique request ID to each request."""

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id

        return response


# Logging Middleware
class LoggingMiddleware(BaseHTTPMiddleware):
    """Log all API requests and responses."""

    def __init__(self, app, skip_paths: list = None):
        super().__init__(app)
        self.skip_paths = skip_paths or ["/health", "/docs", "/openapi.json"]

    async def dispatch(self, request: Request, call_next: Callable):
        if any(request.url.path.startswith(path) for path in self.skip_paths):
            return await call_next(request)

        start_time = time.time()
        request_id = getattr(request.state, "request_id", "unknown")

        log_api_request(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            user_id=getattr(request.state, "user_id", None)
        )

        try:
            response = await call_next(request)
            duration = time.time() - start_time

            log_api_response(
                request_id=request_id,
                status_code=response.status_code,
                duration=duration
            )

            response.headers["X-Process-Time"] = str(duration)

            return response

        except Exception as e:
            duration = time.time() - start_time
            logger.error(f"Request {request_id} failed after {duration:.3f}s: {str(e)}")
            raise


# Security Headers Middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next: Callable):
        response = await call_next(request)

        for header, value in get_security_headers().items():
            response.headers[header] = value

        return response


# Rate Limiting Middleware
class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding one-minute window per client, in Redis or in memory when Redis is down."""

    def __init__(self, app, requests_per_minute: int = 60, skip_paths: list = None, redis_client=None):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.skip_paths = skip_paths or ["/health", "/api/v1/webhooks"]
        self.redis_client = redis_client if redis_client is not None else get_redis_client()

        self.memory_store = defaultdict(deque)

    def get_client_identifier(self, request: Request) -> str:
        """Get client identifier for rate limiting."""
        if getattr(request.state, "user_id", None):
            return f"user:{request.state.user_id}"

        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return f"ip:{forwarded.split(',')[0].strip()}"

        client_host = request.client.host if request.client else "unknown"
        return f"ip:{client_host}"

    async def check_rate_limit_redis(self, identifier: str) -> bool:
        """Check rate limit using Redis."""
        try:
            key = f"rate_limit:{identifier}"
            current_time = time.time()
            window_start = current_time - 60

            pipe = self.redis_client.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            pipe.zadd(key, {f"{current_time}:{uuid.uuid4().hex[:8]}": current_time})
            pipe.expire(key, 60)

            results = pipe.execute()
            current_requests = results[1]

            return current_requests < self.requests_per_minute

        except Exception as e:
            logger.error(f"Redis rate limiting error: {e}")
            return self.check_rate_limit_memory(identifier)

    def check_rate_limit_memory(self, identifier: str) -> bool:
        """Check rate limit using in-memory store."""
        current_time = time.time()
        window_start = current_time - 60

        requests = self.memory_store[identifier]
        while requests and requests[0] < window_start:
            requests.popleft()

        if len(requests) >= self.requests_per_minute:
            return False

        requests.append(current_time)
        return True

    async def dispatch(self, request: Request, call_next: Callable):
        if any(request.url.path.startswith(path) for path in self.skip_paths):
            return await call_next(request)

        identifier = self.get_client_identifier(request)

        if self.redis_client:
            is_allowed = await self.check_rate_limit_redis(identifier)
        else:
            is_allowed = self.check_rate_limit_memory(identifier)

        if not is_allowed:
            log_security_event(
                SecurityEvent.RATE_LIMIT_EXCEEDED,
                details=f"Rate limit exceeded for {identifier}",
                ip_address=request.client.host if request.client else None
            )

            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "error": True,
                    "error_code": "RATE_LIMIT_EXCEEDED",
                    "message": f"Maximum {self.requests_per_minute} requests per minute allowed",
                    "status_code": status.HTTP_429_TOO_MANY_REQUESTS,
                },
                headers={
                    "Retry-After": "60",
                    "X-RateLimit-Limit": str(self.requests_per_minute),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(int(time.time()) + 60)
                }
            )

        return await call_next(request)


# Authentication Middleware
class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Put the bearer token's user on request.state for logging and rate limiting."""

    async def dispatch(self, request: Request, call_next: Callable):
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            payload = verify_token(auth_header.split(" ", 1)[1])
            if payload:
                request.state.user_id = payload.get("user_id")
                request.state.user_role = payload.get("role")

        return await call_next(request)


# Error Handling Middleware
class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Global error handling middleware."""

    async def dispatch(self, request: Request, call_next: Callable):
        try:
            return await call_next(request)
        except HTTPException:
            raise
        except Exception as e:
            logger.exception(f"Unhandled error in {request.method} {request.url.path}: {str(e)}")

            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": True,
                    "error_code": "INTERNAL_SERVER_ERROR",
                    "message": "An unexpected error occurred",
                    "status_code": status.HTTP_500_INTERNAL_SERVER_ERROR,
                    "request_id": getattr(request.state, "request_id", "unknown")
                }
            )


# Request Size Limiting Middleware
class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Limit request body size."""

    def __init__(self, app, max_size: int = 10 * 1024 * 1024):
        super().__init__(app)
        self.max_size = max_size

    async def dispatch(self, request: Request, call_next: Callable):
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_size:
            return JSONResponse(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                content={
                    "error": True,
                    "error_code": "REQUEST_TOO_LARGE",
                    "message": f"Request body must be smaller than {self.max_size} bytes",
                    "status_code": status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                }
            )

        return await call_next(request)


# Performance Monitoring Middleware
class PerformanceMonitoringMiddleware(BaseHTTPMiddleware):
    """Monitor API performance and identify slow endpoints."""

    def __init__(self, app, slow_threshold: float = 2.0):
        super().__init__(app)
        self.slow_threshold = slow_threshold

    async def dispatch(self, request: Request, call_next: Callable):
        start_time = time.time()

        response = await call_next(request)

        duration = time.time() - start_time

        if duration > self.slow_threshold:
            logger.warning(
                f"Slow request: {request.method} {request.url.path} "
                f"took {duration:.3f}s (threshold: {self.slow_threshold}s)"
            )

        response.headers["X-Response-Time"] = f"{duration:.3f}"

        return response

# Middleware Registration Function
def register_middleware(app):
    """Register all middleware with the FastAPI app."""

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(GZipMiddleware, minimum_size=1000)

    if settings.ENVIRONMENT == "production":
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=settings.ALLOWED_HOSTS
        )

    # Last added is executed first
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(PerformanceMonitoringMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestSizeLimitMiddleware)
    if settings.RATE_LIMIT_ENABLED:
        app.add_middleware(RateLimitMiddleware, requests_per_minute=settings.RATE_LIMIT_REQUESTS)
    app.add_middleware(AuthenticationMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    logger.info("All middleware registered successfully")
