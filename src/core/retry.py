"""Retry policy for compare-and-set writes that lost a race."""

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.core.errors import StaleWriteError

# Retry configuration
MAX_ATTEMPTS = 3
MIN_WAIT_SECONDS = 0.05
MAX_WAIT_SECONDS = 0.5

# Wraps an async read-modify-write; the wrapped function must re-read on each attempt.
retry_stale_write = retry(
    retry=retry_if_exception_type(StaleWriteError),
    stop=stop_after_attempt(MAX_ATTEMPTS),
    wait=wait_exponential(multiplier=0.05, min=MIN_WAIT_SECONDS, max=MAX_WAIT_SECONDS),
    reraise=True,
)
