"""
Bistro — Serialization-failure retry decorator

Uses exponential backoff + jitter to re-run a whole transaction when the
database refuses to commit it because a concurrent transaction touched the
same rows (PostgreSQL SQLSTATE 40001 / 40P01, SQLite "database is locked").
The decorated function must open and close its own transaction so a retry
starts from a fresh snapshot.
"""
import asyncio
import random
import functools
import logging

from sqlalchemy.exc import DBAPIError

from bistro.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

RETRYABLE_SQLSTATES = {"40001", "40P01"}


def is_serialization_failure(exc: BaseException) -> bool:
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in RETRYABLE_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()


def with_serialization_retry(max_retries: int | None = None):
    """
    Decorator for async functions that run one complete transaction.
    On a serialization failure, retries with exponential backoff + jitter.

    Usage:
        @with_serialization_retry()
        async def _book(self, draft):
            async with transaction(self._session_factory) as session:
                ...
    """
    _max = max_retries or settings.TX_MAX_RETRIES

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(1, _max + 1):
                try:
                    return await func(*args, **kwargs)
                except DBAPIError as exc:
                    if not is_serialization_failure(exc):
                        raise
                    if attempt == _max:
                        logger.error(
                            "Serialization conflict unresolved after %d retries for %s",
                            _max, func.__name__,
                        )
                        raise
                    # Exponential backoff: base * 2^attempt + jitter
                    base_delay = settings.TX_BASE_DELAY_MS / 1000.0
                    max_delay = settings.TX_MAX_DELAY_MS / 1000.0
                    jitter = random.uniform(0, settings.TX_JITTER_MS / 1000.0)
                    delay = min(base_delay * (2 ** attempt), max_delay) + jitter
                    logger.warning(
                        "Serialization conflict on attempt %d/%d, retrying %s in %.3fs",
                        attempt, _max, func.__name__, delay,
                    )
                    await asyncio.sleep(delay)
        return wrapper
    return decorator
