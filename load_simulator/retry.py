from __future__ import annotations

import logging
import time
from typing import Callable, Tuple, Type, TypeVar

T = TypeVar("T")

CONNECT_ATTEMPTS = 30
CONNECT_DELAY_S = 0.01


class RetryError(Exception):
    """Raised when every attempt of a retried call failed."""

    def __init__(self, description: str, attempts: int) -> None:
        super().__init__(f"{description} failed after {attempts} attempts")
        self.attempts = attempts


def retry_call(
    func: Callable[[], T],
    *,
    attempts: int = CONNECT_ATTEMPTS,
    delay: float = CONNECT_DELAY_S,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    logger: logging.Logger | None = None,
    description: str = "call",
) -> T:
    """Call ``func`` until it succeeds, at most ``attempts`` times.

    Failures are spaced by a fixed ``delay``. Exceptions outside ``retry_on``
    propagate immediately. Once the budget is spent a ``RetryError`` chained to
    the last failure is raised.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    last_exception: BaseException | None = None
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as exc:
            last_exception = exc
            if logger is not None:
                logger.error("%s failed (attempt %d/%d): %s", description, attempt, attempts, exc)

        if attempt < attempts:
            time.sleep(delay)

    raise RetryError(description, attempts) from last_exception


__all__ = ["CONNECT_ATTEMPTS", "CONNECT_DELAY_S", "RetryError", "retry_call"]
