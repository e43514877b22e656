"""
Exponential backoff for Gmail calls.

Bounded attempts, doubling delay, and only the transient error class is
retried. Anything else (404, 400, auth failures) propagates on first try.
"""

import logging
import time

from .errors import TransientProviderError

logger = logging.getLogger("sapmail.retry")

DEFAULT_ATTEMPTS = 4
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 16.0


def backoff_delays(attempts=DEFAULT_ATTEMPTS, base_delay=DEFAULT_BASE_DELAY,
                   max_delay=DEFAULT_MAX_DELAY):
    """Delays slept between attempts: base, 2*base, 4*base... capped."""
    delays = []
    delay = base_delay
    for _ in range(max(attempts - 1, 0)):
        delays.append(min(delay, max_delay))
        delay *= 2
    return delays


def call_with_backoff(func, *args, attempts=DEFAULT_ATTEMPTS,
                      base_delay=DEFAULT_BASE_DELAY, max_delay=DEFAULT_MAX_DELAY,
                      retry_on=(TransientProviderError,), sleep=time.sleep, **kwargs):
    """
    Call func(*args, **kwargs), retrying on retry_on exceptions.

    Args:
        attempts: total number of calls, including the first one
        base_delay: seconds slept after the first failure
        max_delay: upper bound for a single sleep
        retry_on: tuple of exception classes considered transient
        sleep: injectable for tests

    Returns:
        whatever func returns

    Raises:
        the last retry_on exception once attempts are exhausted,
        or any other exception immediately
    """
    attempts = max(int(attempts), 1)
    delays = backoff_delays(attempts, base_delay, max_delay)
    name = getattr(func, "__name__", repr(func))

    for attempt in range(1, attempts + 1):
        try:
            return func(*args, **kwargs)
        except retry_on as e:
            if attempt >= attempts:
                logger.error(f"{name}: giving up after {attempts} attempts: {e}")
                raise
            delay = delays[attempt - 1]
            logger.warning(f"{name}: transient failure ({e}), retry {attempt}/{attempts - 1} in {delay:.1f}s")
            sleep(delay)
