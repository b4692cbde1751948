# backend/config/logging.py
import functools
import json
import logging
import logging.config
import os
import time
from datetime import datetime
from typing import Dict, Any
from .settings import get_settings

settings = get_settings()

# Ensure log directory exists
os.makedirs(settings.LOG_DIR, exist_ok=True)

# Custom formatter with colors for console output
class ColoredFormatter(logging.Formatter):
    """Custom formatter with color coding for different log levels."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record):
        levelname = record.levelname
        color = self.COLORS.get(levelname, self.COLORS['RESET'])
        record.levelname = f"{color}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname

# JSON formatter for structured logging
class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging in production."""

    EXTRA_FIELDS = (
        'user_id', 'request_id', 'duration', 'ip_address',
        'order_id', 'customer_id', 'event_type', 'row_count',
    )

    def format(self, record):
        log_entry = {
            'timestamp': datetime.utcnow().isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        for field in self.EXTRA_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def _rotating_file(filename: str, level: str, formatter: str, max_bytes: int = 10485760, backups: int = 5) -> Dict[str, Any]:
    return {
        'level': level,
        'class': 'logging.handlers.RotatingFileHandler',
        'formatter': formatter,
        'filename': os.path.join(settings.LOG_DIR, filename),
        'maxBytes': max_bytes,
        'backupCount': backups,
        'encoding': 'utf8',
        'delay': True,
    }

# Logging configuration dictionary
LOGGING_CONFIG: Dict[str, Any] = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'standard': {
            'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            'datefmt': '%Y-%m-%d %H:%M:%S'
        },
        'detailed': {
            'format': '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(funcName)s(): %(message)s',
            'datefmt': '%Y-%m-%d %H:%M:%S'
        },
        'colored': {
            '()': ColoredFormatter,
            'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            'datefmt': '%Y-%m-%d %H:%M:%S'
        },
        'json': {
            '()': JSONFormatter
        }
    },
    'handlers': {
        'console': {
            'level': 'DEBUG' if settings.DEBUG else 'INFO',
            'class': 'logging.StreamHandler',
            'formatter': 'colored' if settings.DEBUG else 'standard',
            'stream': 'ext://sys.stdout'
        },
        'file': _rotating_file('app.log', 'INFO', 'detailed'),
        'error_file': _rotating_file('error.log', 'ERROR', 'detailed'),
        'security_file': _rotating_file(
            'security.log', 'WARNING', 'json' if not settings.DEBUG else 'detailed', backups=10
        ),
        'api_file': _rotating_file(
            'api.log', 'INFO', 'json' if not settings.DEBUG else 'detailed', max_bytes=20971520, backups=7
        ),
        'business_file': _rotating_file('business.log', 'INFO', 'json'),
    },
    'loggers': {
        '': {  # Root logger
            'handlers': ['console', 'file', 'error_file'],
            'level': settings.LOG_LEVEL,
        },
        'uvicorn': {
            'handlers': ['console', 'api_file'],
            'level': 'INFO',
            'propagate': False
        },
        'uvicorn.access': {
            'handlers': ['api_file'],
            'level': 'INFO',
            'propagate': False
        },
        'sqlalchemy.engine': {
            'handlers': ['file'],
            'level': 'INFO' if settings.DEBUG else 'WARNING',
            'propagate': False
        },
        'security': {
            'handlers': ['console', 'security_file'],
            'level': 'WARNING',
            'propagate': False
        },
        'api': {
            'handlers': ['console', 'api_file'],
            'level': 'INFO',
            'propagate': False
        },
        'business': {
            'handlers': ['console', 'business_file'],
            'level': 'INFO',
            'propagate': False
        },
        'order_feed': {
            'handlers': ['console', 'file'],
            'level': 'DEBUG' if settings.DEBUG else 'INFO',
            'propagate': False
        },
        'jobs': {
            'handlers': ['console', 'file'],
            'level': 'INFO',
            'propagate': False
        },
    }
}

def setup_logging():
    """Setup logging configuration."""
    logging.config.dictConfig(LOGGING_CONFIG)

    # Set up specific loggers
    logging.getLogger("passlib").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)
    logging.getLogger("aiosmtplib").setLevel(logging.WARNING)

    if not settings.DEBUG:
        # Reduce noise in production
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the specified name."""
    return logging.getLogger(name)

def log_api_request(request_id: str, method: str, path: str, user_id: str = None):
    """Log API request information."""
    logger = get_logger("api")
    extra = {'request_id': request_id}
    if user_id:
        extra['user_id'] = user_id
    logger.info(f"{method} {path}", extra=extra)

def log_api_response(request_id: str, status_code: int, duration: float):
    """Log API response information."""
    logger = get_logger("api")
    extra = {'request_id': request_id, 'duration': duration}
    logger.info(f"Response: {status_code} ({duration:.3f}s)", extra=extra)

def log_security_event(event_type: str, user_id: str = None, details: str = None, ip_address: str = None):
    """Log security-related events."""
    logger = get_logger("security")
    extra = {}
    if user_id:
        extra['user_id'] = user_id
    if ip_address:
        extra['ip_address'] = ip_address

    message = f"Security Event: {event_type}"
    if details:
        message += f" - {details}"

    logger.warning(message, extra=extra)

def log_business_event(event_type: str, details: str = None, order_id: int = None, customer_id: int = None):
    """Log order, credit and scheduling events."""
    logger = get_logger("business")
    extra = {'event_type': event_type}
    if order_id:
        extra['order_id'] = order_id
    if customer_id:
        extra['customer_id'] = customer_id

    message = f"Business Event: {event_type}"
    if details:
        message += f" - {details}"

    logger.info(message, extra=extra)

def log_database_operation(operation: str, table: str, duration: float = None, row_count: int = None):
    """Log database operations."""
    logger = get_logger("database")
    extra = {}
    if duration:
        extra['duration'] = duration
    if row_count:
        extra['row_count'] = row_count

    message = f"DB Operation: {operation} - Table: {table}"
    if row_count:
        message += f" - Rows: {row_count}"

    logger.info(message, extra=extra)

# Performance logging decorator
def log_performance(logger_name: str = "performance"):
    """Decorator to log function performance."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_logger(logger_name)
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
                duration = time.time() - start_time
                logger.info(f"{func.__name__} completed in {duration:.3f}s")
                return result
            except Exception as e:
                duration = time.time() - start_time
                logger.error(f"{func.__name__} failed after {duration:.3f}s: {str(e)}")
                raise
        return wrapper
    return decorator

# Initialize logging
setup_logging()

# Export commonly used functions
__all__ = [
    "setup_logging",
    "get_logger",
    "log_api_request",
    "log_api_response",
    "log_security_event",
    "log_business_event",
    "log_database_operation",
    "log_performance"
]
