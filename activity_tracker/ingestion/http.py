"""
Shared HTTP access pattern for every external call.

- RateLimiter: minimum interval between requests to one upstream, shared
  by everything in the process that talks to it
- call_with_retry: bounded attempts with a fixed delay between them

Timeouts are passed per request by the individual clients.
"""

import logging
import threading
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

import requests

from activity_tracker.config import config

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Network errors, timeouts, 5xx via raise_for_status, and malformed JSON
TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (requests.RequestException, ValueError)

# Client errors that still deserve a retry
RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


def is_permanent(error: BaseException) -> bool:
    """
    True for a 4xx response other than timeout or rate limit.

    The request itself was rejected, so repeating it cannot succeed.
    """
    if not isinstance(error, requests.HTTPError) or error.response is None:
        return False
    status = error.response.status_code
    return 400 <= status < 500 and status not in RETRYABLE_CLIENT_STATUSES


class RateLimiter:
    """
    Enforce a minimum interval between calls.

    Thread-safe: if callers ever run in parallel they still queue through
    the same limiter.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call: Optional[float] = None

    def wait(self) -> None:
        """Block until the next call is allowed, then claim the slot."""
        with self._lock:
            if self._last_call is not None:
                elapsed = self._clock() - self._last_call
                if elapsed < self.min_interval:
                    sleep_time = self.min_interval - elapsed
                    logger.debug(f'Rate limiting: sleeping {sleep_time:.1f}s')
                    self._sleep(sleep_time)
            self._last_call = self._clock()


def call_with_retry(
    func: Callable[[], T],
    description: str,
    attempts: Optional[int] = None,
    delay: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call func up to attempts times, sleeping delay seconds between tries.

    Re-raises the last error once attempts are exhausted. Errors outside
    retry_on and permanent 4xx responses propagate immediately.
    """
    attempts = max(1, attempts if attempts is not None else config.retry.attempts)
    delay = delay if delay is not None else config.retry.delay_seconds

    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as e:
            if is_permanent(e):
                logger.warning(f'{description}: rejected, not retrying: {e}')
                raise
            if attempt >= attempts:
                logger.error(f'{description}: all {attempts} attempts failed: {e}')
                raise
            logger.warning(f'{description}: attempt {attempt}/{attempts} failed: {e}; retrying in {delay:.0f}s')
            sleep(delay)

    raise RuntimeError('unreachable')  # pragma: no cover
