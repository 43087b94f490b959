"""
Resilience primitives for calls to the remote table service.

This package provides:
- Token bucket rate limiting per class of call
- Bounded fixed-delay retries
- Polling of asynchronous remote jobs
"""

from .rate_gate import Bucket, RateGate, TokenBucket
from .retry import RetryPolicy, with_retry
from .poller import AsyncJob, AsyncJobPoller, JobKind, JobState, PollSchedule

__all__ = [
    "Bucket",
    "RateGate",
    "TokenBucket",
    "RetryPolicy",
    "with_retry",
    "AsyncJob",
    "AsyncJobPoller",
    "JobKind",
    "JobState",
    "PollSchedule",
]
