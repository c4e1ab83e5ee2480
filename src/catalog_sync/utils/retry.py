"""Retry utilities with exponential backoff."""

import random
import time
from functools import wraps
from typing import Callable, Tuple, Type

import structlog

log = structlog.stdlib.get_logger()


def backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    jitter: float = 0.0,
) -> float:
    """
    Compute the delay before retry number ``attempt`` (zero based).

    Args:
        attempt: Number of failed attempts so far, minus one
        base_delay: Delay of the first retry
        max_delay: Upper bound for the returned delay
        jitter: Extra delay added before the cap is applied

    Returns:
        min(base_delay * 2**attempt + jitter, max_delay)
    """
    return min(base_delay * (2**attempt) + jitter, max_delay)


def exponential_backoff_retry(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    max_jitter: float = 0.0,
    sleep: Callable[[float], None] | None = None,
) -> Callable:
    """
    Decorator that retries a function with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exceptions: Tuple of exception types to catch and retry
        max_jitter: Upper bound of the random delay added to each wait
        sleep: Sleep function; defaults to time.sleep looked up at call time

    Returns:
        Decorated function with retry logic
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_retries:
                        log.error(
                            "max_retries_reached",
                            function=func.__name__,
                            max_retries=max_retries,
                            error=str(e),
                        )
                        raise

                    delay = backoff_delay(
                        attempt, base_delay, max_delay, random.random() * max_jitter
                    )

                    log.warning(
                        "retrying_after_error",
                        function=func.__name__,
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay_seconds=delay,
                        error=str(e),
                    )

                    (sleep or time.sleep)(delay)

        return wrapper

    return decorator
