"""
Retry wrapper shared by remote fetches and storage calls.

Network flakiness and storage contention go through one escalation policy:
transient failures are retried with linear backoff (``base_delay * attempt``),
everything else propagates immediately.

Classification prefers structured signals (exception types, PostgreSQL
SQLSTATE codes, HTTP status codes) and only falls back to matching the error
message when none of those are available.

Usage:
    round_ = await with_retry(lambda: fetch_round(session), "Fetch latest round")
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from sqlalchemy import exc as sa_exc

from ..config.settings import settings
from .errors import PageFetchError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL SQLSTATE codes worth retrying
RETRYABLE_SQLSTATES = {
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "55P03",  # lock_not_available
    "57014",  # query_canceled (statement_timeout)
    "57P01",  # admin_shutdown
    "53300",  # too_many_connections
}
RETRYABLE_SQLSTATE_CLASSES = ("08",)  # connection_exception

RETRYABLE_HTTP_STATUSES = {429, 500, 502, 503, 504}

# Last resort for drivers that expose nothing structured
RETRYABLE_MESSAGE_MARKERS = (
    "timeout",
    "timed out",
    "econnreset",
    "etimedout",
    "connection reset",
    "could not serialize",
    "can't reach database",
)


def _sqlstate_of(error: BaseException) -> Optional[str]:
    """Find a SQLSTATE code on the error, its DBAPI original, or its cause chain."""
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        for attr in ("sqlstate", "pgcode"):
            code = getattr(current, attr, None)
            if isinstance(code, str) and code:
                return code
        current = getattr(current, "orig", None) or current.__cause__
    return None


def is_retryable_error(error: BaseException) -> bool:
    """
    Decide whether an error is transient.

    Args:
        error: Exception raised by a fetch or storage operation

    Returns:
        True if retrying may succeed
    """
    if isinstance(error, (PageFetchError, TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return True

    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_HTTP_STATUSES
    if isinstance(error, httpx.TransportError):
        return True

    # Pool checkout timeout
    if isinstance(error, sa_exc.TimeoutError):
        return True

    if isinstance(error, sa_exc.DBAPIError) and error.connection_invalidated:
        return True

    sqlstate = _sqlstate_of(error)
    if sqlstate:
        return sqlstate in RETRYABLE_SQLSTATES or sqlstate.startswith(RETRYABLE_SQLSTATE_CLASSES)

    # Constraint violations and programming errors never heal on retry
    if isinstance(error, (sa_exc.IntegrityError, sa_exc.ProgrammingError)):
        return False

    message = str(error).lower()
    return any(marker in message for marker in RETRYABLE_MESSAGE_MARKERS)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    operation_name: str,
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
) -> T:
    """
    Run an async operation, retrying transient failures.

    Args:
        operation: Zero-argument callable returning an awaitable
        operation_name: Label used in log messages
        max_attempts: Total attempts (default: settings.db_max_retries)
        base_delay: Seconds to wait after the first failure; attempt n waits
            base_delay * n (default: settings.db_retry_delay)

    Returns:
        The operation's result

    Raises:
        The last error, when it is not retryable or the budget is exhausted
    """
    attempts = max(1, max_attempts if max_attempts is not None else settings.db_max_retries)
    delay_unit = settings.db_retry_delay if base_delay is None else base_delay

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if not is_retryable_error(e) or attempt == attempts:
                raise

            delay = delay_unit * attempt
            logger.warning(
                f"{operation_name} failed (attempt {attempt}/{attempts}): "
                f"{type(e).__name__}: {e}. Retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError(f"{operation_name}: retry loop exited without result")

