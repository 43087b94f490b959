"""
Token bucket rate limiting for calls to the remote table service.

The remote service throttles general traffic at roughly 10 requests per
second, and column metadata queries far more aggressively (about 24 per
minute). RateGate keeps one bucket per class of call; each acquire()
blocks the calling thread until a token is available.
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Dict, Optional, Union

from ..exceptions import ConfigurationError


logger = logging.getLogger(__name__)


class Bucket(str, Enum):
    """Rate limited call classes."""

    GENERAL = "general"
    METADATA = "metadata"


DEFAULT_GENERAL_RATE = 10.0
# 24 per minute observed, halved for safety
DEFAULT_METADATA_RATE = 12.0 / 60.0


class TokenBucket:
    """
    A thread-safe token bucket.

    Tokens replenish continuously at ``rate`` per second, up to
    ``capacity``. With the default capacity of 1, calls are spaced evenly
    at 1/rate seconds.
    """

    def __init__(
        self,
        rate: float,
        capacity: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if rate <= 0:
            raise ConfigurationError(f"Rate must be positive, got {rate}")
        if capacity < 1:
            raise ConfigurationError(f"Capacity must be at least 1, got {capacity}")

        self._rate = float(rate)
        self._capacity = float(capacity)
        self._clock = clock
        self._sleep = sleep
        self._tokens = self._capacity
        self._updated_at = clock()
        self._lock = threading.Lock()

    @property
    def rate(self) -> float:
        return self._rate

    def set_rate(self, rate: float) -> None:
        """Change the replenish rate, keeping the tokens accrued so far."""
        if rate <= 0:
            raise ConfigurationError(f"Rate must be positive, got {rate}")
        with self._lock:
            self._refill()
            self._rate = float(rate)

    def _refill(self) -> None:
        # Caller holds the lock
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self._updated_at = now

    def acquire(self) -> float:
        """
        Take one token, blocking until one is available.

        Returns:
            Total seconds spent waiting
        """
        waited = 0.0
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return waited
                wait = (1.0 - self._tokens) / self._rate

            # Sleep outside the lock so other callers can refill and check
            self._sleep(wait)
            waited += wait


class RateGate:
    """
    Process-wide rate limiting across independent buckets.

    Construct one instance and share it between every helper that talks to
    the same remote service. Rates can be changed at runtime.
    """

    def __init__(
        self,
        general_per_second: float = DEFAULT_GENERAL_RATE,
        metadata_per_second: float = DEFAULT_METADATA_RATE,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._clock = clock
        self._sleep = sleep
        self._buckets: Dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

        self.add_bucket(Bucket.GENERAL, general_per_second)
        self.add_bucket(Bucket.METADATA, metadata_per_second)

    @classmethod
    def from_config(cls, config) -> "RateGate":
        """Build a gate from a RateLimitConfig."""
        return cls(
            general_per_second=config.general_per_second,
            metadata_per_second=config.metadata_per_second,
        )

    def add_bucket(self, bucket_id: Union[Bucket, str], rate: float, capacity: float = 1.0) -> None:
        """Register (or replace) a bucket."""
        key = self._key(bucket_id)
        with self._lock:
            self._buckets[key] = TokenBucket(
                rate, capacity=capacity, clock=self._clock, sleep=self._sleep
            )

    def _key(self, bucket_id: Union[Bucket, str]) -> str:
        return bucket_id.value if isinstance(bucket_id, Bucket) else str(bucket_id)

    def _bucket(self, bucket_id: Union[Bucket, str]) -> TokenBucket:
        key = self._key(bucket_id)
        with self._lock:
            bucket: Optional[TokenBucket] = self._buckets.get(key)
        if bucket is None:
            raise ConfigurationError(f"Unknown rate limit bucket '{key}'")
        return bucket

    def acquire(self, bucket_id: Union[Bucket, str] = Bucket.GENERAL) -> None:
        """Block until a token for ``bucket_id`` is available."""
        waited = self._bucket(bucket_id).acquire()
        if waited > 0:
            logger.debug(f"Rate limited on {self._key(bucket_id)} bucket for {waited:.3f}s")

    def set_rate(self, bucket_id: Union[Bucket, str], per_second: float) -> None:
        """Change a bucket's rate, in tokens per second."""
        self._bucket(bucket_id).set_rate(per_second)
        logger.info(f"Rate for {self._key(bucket_id)} bucket set to {per_second}/s")

    def get_rate(self, bucket_id: Union[Bucket, str]) -> float:
        return self._bucket(bucket_id).rate

    def __repr__(self) -> str:
        rates = ", ".join(f"{k}={b.rate:g}/s" for k, b in self._buckets.items())
        return f"RateGate({rates})"
