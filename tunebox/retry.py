"""
Bounded retry for transient failures.

Used for status checks against the file system ("is this track downloaded"),
which may fail transiently on mobile storage. The retry budget is explicit:
after ``attempts`` tries the last exception is re-raised (or a fallback
value returned) rather than retrying indefinitely.
"""

import logging
import time
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NO_FALLBACK = object()


def call_with_retry(
    func: Callable[..., T],
    *args: Any,
    attempts: int = 3,
    delay: float = 0.5,
    backoff_factor: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (OSError,),
    fallback: Any = _NO_FALLBACK,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """
    Call ``func`` up to ``attempts`` times, sleeping between failed attempts.

    Args:
        func: Callable to invoke
        attempts: Total number of tries (minimum 1)
        delay: Seconds to wait after the first failure
        backoff_factor: Multiplier applied to the delay after each failure (1.0 = fixed delay)
        retry_on: Exception types that count as transient
        fallback: Value returned when the budget is exhausted (re-raises if omitted)
        sleep: Sleep function (injectable for tests)

    Returns:
        Result of ``func``, or ``fallback`` if every attempt failed
    """
    attempts = max(1, attempts)
    current_delay = delay
    last_exception: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        try:
            return func(*args, **kwargs)
        except retry_on as e:
            last_exception = e
            if attempt == attempts:
                break
            logger.debug(
                "%s failed (attempt %d/%d): %s, retrying in %.2fs",
                getattr(func, "__name__", func),
                attempt,
                attempts,
                e,
                current_delay,
            )
            sleep(current_delay)
            current_delay *= backoff_factor

    logger.warning(
        "%s failed after %d attempts: %s",
        getattr(func, "__name__", func),
        attempts,
        last_exception,
    )
    if fallback is not _NO_FALLBACK:
        return fallback
    assert last_exception is not None
    raise last_exception
