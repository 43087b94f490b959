"""
Retry shell for single remote calls.

Each call site picks its own attempts, delay and retryable exception
types. Delays are fixed, not exponential: the remote calls wrapped here
are cheap, and the rate gate already spaces them out.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Tuple, Type, TypeVar

from ..exceptions import NonRetryableError, RemoteServiceError, ConfigurationError


logger = logging.getLogger(__name__)

T = TypeVar("T")

ExceptionTypes = Tuple[Type[BaseException], ...]


def with_retry(
    fn: Callable[[], T],
    attempts: int = 2,
    delay: float = 0.1,
    retry_on: ExceptionTypes = (RemoteServiceError,),
    sleep: Callable[[float], None] = time.sleep,
    description: str = "remote call",
) -> T:
    """
    Invoke ``fn`` with bounded retries.

    Args:
        fn: Zero-argument callable to invoke
        attempts: Total number of invocations allowed (at least 1)
        delay: Seconds to sleep between attempts
        retry_on: Exception types that trigger a retry
        sleep: Sleep function, injectable for tests
        description: Name of the call, for logging

    Returns:
        Result of ``fn``

    Raises:
        The last error once attempts are exhausted, or any error not in
        ``retry_on`` immediately. NonRetryableError is never retried.
    """
    if attempts < 1:
        raise ConfigurationError(f"Retry attempts must be at least 1, got {attempts}")

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except NonRetryableError:
            raise
        except retry_on as e:
            if attempt >= attempts:
                logger.error(f"{description} failed after {attempts} attempts: {e}")
                raise

            logger.warning(
                f"{description} attempt {attempt}/{attempts} failed, retrying in {delay}s: {e}"
            )
            if delay > 0:
                sleep(delay)

    # Unreachable: the loop either returns or raises
    raise AssertionError("retry loop exited without result")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempts, delay and retryable exception types for one class of call."""

    attempts: int = 2
    delay: float = 0.1
    retry_on: ExceptionTypes = field(default=(RemoteServiceError,))

    def call(self, fn: Callable[..., T], *args, sleep: Callable[[float], None] = time.sleep, **kwargs) -> T:
        """Invoke ``fn(*args, **kwargs)`` under this policy."""
        description = getattr(fn, "__name__", "remote call")
        return with_retry(
            lambda: fn(*args, **kwargs),
            attempts=self.attempts,
            delay=self.delay,
            retry_on=self.retry_on,
            sleep=sleep,
            description=description,
        )

    def with_types(self, *extra: Type[BaseException]) -> "RetryPolicy":
        """Return a copy that also retries on ``extra`` exception types."""
        return RetryPolicy(self.attempts, self.delay, tuple(self.retry_on) + tuple(extra))
