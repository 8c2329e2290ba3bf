"""Retry policy helpers for AMI connections.

The AMI client never reconnects on its own; long-lived consumers such as
the event monitor supervisor build their backoff from these helpers.
"""
import logging
from typing import Callable, Optional

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


# Common network exceptions to retry on
RETRYABLE_EXCEPTIONS = (
    ConnectionRefusedError,
    ConnectionResetError,
    TimeoutError,
    OSError,
    EOFError,
)


def is_retryable(exc: BaseException) -> bool:
    """Return True for transient network failures.

    Authentication failures are permanent and never retried.
    """
    from ..ami.errors import AmiConnectError, ConnectFailure

    if isinstance(exc, AmiConnectError):
        return exc.reason is not ConnectFailure.AUTH_FAILED
    return isinstance(exc, RETRYABLE_EXCEPTIONS)


def retrying(
    max_attempts: int = 10,
    min_wait: float = 1,
    max_wait: float = 60,
    stop=None,
    sleep: Optional[Callable[[float], object]] = None,
) -> Retrying:
    """Build a tenacity Retrying with capped exponential backoff.

    Args:
        max_attempts: Maximum number of attempts
        min_wait: Minimum wait time between attempts (seconds)
        max_wait: Maximum wait time between attempts (seconds)
        stop: Extra stop condition OR-ed with the attempt limit
        sleep: Sleep function; pass ``threading.Event.wait`` to make waits interruptible
    """
    stop_condition = stop_after_attempt(max_attempts)
    if stop is not None:
        stop_condition = stop_condition | stop

    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep

    return Retrying(
        stop=stop_condition,
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
        **kwargs,
    )
