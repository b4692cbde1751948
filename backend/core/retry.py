"""
Retry helpers with exponential backoff.

Used for outbound email, order list fetching and the order feed reconnect
loop. Delays follow ``base_delay * 2 ** attempt`` capped at ``max_delay``.
"""
import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..config.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0
MAX_DELAY = 30.0


def backoff_delay(attempt: int, base_delay: float = DEFAULT_BASE_DELAY, max_delay: float = MAX_DELAY) -> float:
    """Delay before retry number ``attempt`` (0-based)."""
    return min(base_delay * (2 ** attempt), max_delay)


def is_auth_error(error: BaseException) -> bool:
    """Authentication failures are never retried."""
    status_code = getattr(error, "status_code", None)
    if status_code in (401, 403):
        return True
    return "auth" in str(error).lower()


def default_should_retry(error: BaseException) -> bool:
    return not is_auth_error(error)


def with_retry(
    operation: Callable[[], T],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    should_retry: Callable[[BaseException], bool] = default_should_retry,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` and retry it up to ``max_retries`` times."""
    for attempt in range(max_retries + 1):
        try:
            return operation()
        except Exception as e:
            if attempt == max_retries or not should_retry(e):
                raise
            delay = backoff_delay(attempt, base_delay)
            logger.warning(f"Attempt {attempt + 1}/{max_retries} failed: {e}. Retrying in {delay:.1f}s")
            if on_retry:
                on_retry(attempt + 1, e)
            sleep(delay)
    raise RuntimeError("unreachable")


async def with_retry_async(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    should_retry: Callable[[BaseException], bool] = default_should_retry,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Async twin of :func:`with_retry`."""
    for attempt in range(max_retries + 1):
        try:
            return await operation()
        except Exception as e:
            if attempt == max_retries or not should_retry(e):
                raise
            delay = backoff_delay(attempt, base_delay)
            logger.warning(f"Attempt {attempt + 1}/{max_retries} failed: {e}. Retrying in {delay:.1f}s")
            if on_retry:
                on_retry(attempt + 1, e)
            await sleep(delay)
    raise RuntimeError("unreachable")

