# Hey future me - SQLite allows ONE writer at a time. While a sync holds its transaction,
# a source-management call (enable a directory, store fresh tokens) gets "database is
# locked". Those locks are temporary, so short management operations wait and retry
# with exponential backoff instead of failing right away.
#
# USAGE:
#   @with_db_retry(max_attempts=3)
#   async def set_local_source_enabled(self, source_id: int, enabled: bool) -> LocalSource:
#       async with self._db.session_scope() as session:
#           ...
#
# The decorated function must open its OWN session scope - a retry re-runs the whole
# transaction. Never decorate something that receives a session from outside.
"""Database retry utilities for handling SQLite lock errors."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def is_lock_error(exception: BaseException) -> bool:
    """Check if an exception is a database lock error.

    Args:
        exception: The exception to check

    Returns:
        True if this is a retryable lock error
    """
    if not isinstance(exception, OperationalError):
        return False

    error_msg = str(exception).lower()
    return "locked" in error_msg or "busy" in error_msg


def with_db_retry(
    max_attempts: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 5.0,
    backoff_factor: float = 2.0,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator for retrying async database operations on lock errors.

    The backoff is exponential: 0.5s -> 1s -> 2s (capped at max_delay).

    Args:
        max_attempts: Maximum attempts including the first one
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        backoff_factor: Multiply delay by this each retry

    Returns:
        Decorated function with automatic retry logic.

    Notes:
        - Only "database is locked"/"busy" errors are retried
        - Other OperationalErrors are raised immediately
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            delay = initial_delay
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except OperationalError as e:
                    if not is_lock_error(e) or attempt >= max_attempts:
                        if is_lock_error(e):
                            logger.error(
                                "Database locked after %d attempts, giving up: %s",
                                attempt,
                                func.__qualname__,
                            )
                        raise

                    logger.warning(
                        "Database locked (attempt %d/%d), retrying in %.1fs: %s",
                        attempt,
                        max_attempts,
                        delay,
                        func.__qualname__,
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * backoff_factor, max_delay)
                    attempt += 1

        return wrapper

    return decorator
