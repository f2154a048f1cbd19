"""Exponential backoff for reads that may hit rate limits or expired tokens."""
import logging
import time
from typing import Callable, TypeVar

from macro_journal.core.constants import RETRY_BASE_DELAY_SECONDS, RETRY_MAX_ATTEMPTS

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_backoff(
    fn: Callable[[], T],
    *,
    should_retry: Callable[[BaseException], bool],
    max_attempts: int = RETRY_MAX_ATTEMPTS,
    base_delay: float = RETRY_BASE_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "call",
) -> T:
    """
    Call fn up to max_attempts times. Waits base_delay * 2**(attempt-1) between attempts
    (1s, 2s, 4s, 8s with defaults). Errors rejected by should_retry, and the error of the
    last attempt, propagate to the caller.
    """
    attempt = 1
    while True:
        try:
            return fn()
        except Exception as e:
            if attempt >= max_attempts or not should_retry(e):
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning("%s failed (attempt %s/%s), retrying in %.1fs: %s", label, attempt, max_attempts, delay, e)
            sleep(delay)
            attempt += 1
