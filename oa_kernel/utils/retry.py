"""
Bounded retry for idempotent reads.

Transient database failures (a connection invalidated under us, a
deadlock victim, SQLite lock contention) are retried at most
``max_retries`` times with jittered exponential backoff.  Writes and
decisions never go through here.
"""

from __future__ import annotations

import random
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError

from oa_kernel.logging_config import get_logger

logger = get_logger("utils.retry")

T = TypeVar("T")

_TRANSIENT_MARKERS = (
    "deadlock",
    "database is locked",
    "could not serialize",
    "lock timeout",
    "server closed the connection",
    "connection reset",
)


def is_transient(exc: BaseException) -> bool:
    """True for database errors worth retrying on a read path."""
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    if isinstance(exc, OperationalError):
        text = str(exc).lower()
        return any(marker in text for marker in _TRANSIENT_MARKERS)
    return False


def retry_transient(
    fn: Callable[[], T],
    *,
    operation: str,
    max_retries: int = 2,
    base_delay: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn``; on a transient error retry up to ``max_retries`` times."""
    attempt = 0
    while True:
        try:
            return fn()
        except DBAPIError as exc:
            if attempt >= max_retries or not is_transient(exc):
                raise
            attempt += 1
            delay = base_delay * (2 ** (attempt - 1))
            delay += random.uniform(0, delay)
            logger.warning(
                "transient_read_retry",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "max_retries": max_retries,
                    "delay_seconds": round(delay, 3),
                },
            )
            sleep(delay)
