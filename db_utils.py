"""Database resilience helpers."""

from __future__ import annotations

import time
from typing import Callable, Tuple, Type, TypeVar

from sqlalchemy.exc import OperationalError

from app_logging import get_logger

T = TypeVar("T")

_logger = get_logger("vertex.db")


def retry_with_backoff(
    func: Callable[[], T],
    attempts: int = 3,
    base_delay: float = 0.1,
    max_total_delay: float = 2.0,
    retry_on: Tuple[Type[BaseException], ...] = (OperationalError,),
) -> T:
    """Call ``func``, retrying ``retry_on`` errors with exponential backoff.

    Used at start-up, where the database may still be coming up. The total
    sleep never exceeds ``max_total_delay``; the last error is re-raised
    once attempts run out. Other exceptions propagate immediately.
    """

    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    total_delay = 0.0
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as exc:
            _logger.warning(
                "transient database operation failed",
                extra={"attempt": attempt, "attempts": attempts, "error": str(exc)},
            )
            if attempt >= attempts or total_delay >= max_total_delay:
                raise
            delay = min(base_delay * (2 ** (attempt - 1)), max_total_delay - total_delay)
            if delay > 0:
                time.sleep(delay)
                total_delay += delay
    raise RuntimeError("retry_with_backoff exhausted without a result")


__all__ = ["retry_with_backoff"]
