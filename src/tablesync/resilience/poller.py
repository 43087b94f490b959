"""
Generic poll loop for the remote service's asynchronous jobs.

A job is started by one remote call returning an opaque token, then polled
until it reports a result. "Not ready" is the normal, frequent answer while
a job runs; it is carried as a PollResult, never as an exception, so the
loop only has to tell three outcomes apart:

- ready: the job succeeded, return its value
- not ready: sleep and poll again, until the poll budget is spent
- raised: the job failed remotely, propagate without retrying

Timeouts are expressed as a poll budget (max polls x interval), not a
wall-clock deadline.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence, TypeVar

from ..exceptions import AsyncJobTimeoutError, ConfigurationError
from ..remote.models import PollResult


logger = logging.getLogger(__name__)

T = TypeVar("T")


class JobKind(str, Enum):
    """Kinds of async jobs driven by the poller."""

    SCHEMA_CHANGE = "schema_change"
    TSV_UPLOAD = "tsv_upload"
    ROW_APPEND = "row_append"


class JobState(str, Enum):
    """Lifecycle of a single async job."""

    STARTED = "started"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.TIMED_OUT)


@dataclass
class AsyncJob:
    """Tracking record for one async job. Mutated only by the poller."""

    token: str
    kind: JobKind
    table_id: str
    max_polls: int
    state: JobState = JobState.STARTED
    poll_count: int = 0
    error: Optional[str] = None

    @property
    def job_key(self) -> str:
        return f"{self.kind.value}:{self.table_id}:{self.token}"


@dataclass(frozen=True)
class PollSchedule:
    """
    When to poll.

    Uses ``backoff`` if given: the n-th wait is backoff[n], and the last
    value repeats once the schedule is exhausted. Otherwise waits
    ``interval`` between polls.
    """

    interval: float = 1.0
    max_polls: int = 300
    backoff: Sequence[float] = field(default_factory=tuple)

    def __post_init__(self):
        if self.max_polls < 1:
            raise ConfigurationError(f"max_polls must be at least 1, got {self.max_polls}")
        if self.interval < 0:
            raise ConfigurationError(f"interval cannot be negative, got {self.interval}")
        if any(b < 0 for b in self.backoff):
            raise ConfigurationError("backoff values cannot be negative")
        object.__setattr__(self, "backoff", tuple(self.backoff))

    @classmethod
    def from_config(cls, config) -> "PollSchedule":
        """Build a schedule from a PollingConfig."""
        return cls(
            interval=config.interval_seconds,
            max_polls=config.max_polls,
            backoff=tuple(config.backoff_schedule),
        )

    def wait_before(self, poll_number: int) -> float:
        """Seconds to wait after ``poll_number`` not-ready answers (1-based)."""
        if self.backoff:
            index = min(poll_number - 1, len(self.backoff) - 1)
            return self.backoff[index]
        return self.interval


class AsyncJobPoller:
    """Drives async jobs from start to a terminal state."""

    def __init__(
        self,
        schedule: Optional[PollSchedule] = None,
        sleep: Callable[[float], None] = time.sleep,
        on_transition: Optional[Callable[[AsyncJob], None]] = None,
    ):
        self.schedule = schedule or PollSchedule()
        self._sleep = sleep
        self._on_transition = on_transition

    def _transition(self, job: AsyncJob, state: JobState) -> None:
        job.state = state
        if self._on_transition is not None:
            self._on_transition(job)

    def run(
        self,
        kind: JobKind,
        table_id: str,
        start: Callable[[], str],
        poll: Callable[[str], PollResult[T]],
        schedule: Optional[PollSchedule] = None,
    ) -> T:
        """
        Start a job and poll it to completion.

        Args:
            kind: Kind of job, for logging and errors
            table_id: Table the job works on
            start: Starts the job, returns its token
            poll: Polls the job by token

        Returns:
            Value of the ready poll result

        Raises:
            AsyncJobTimeoutError: If the poll budget is exhausted
            Any error raised by ``start`` or ``poll``, unchanged
        """
        schedule = schedule or self.schedule
        token = start()
        job = AsyncJob(token=token, kind=kind, table_id=table_id, max_polls=schedule.max_polls)
        self._transition(job, JobState.STARTED)
        logger.info(f"Started {kind.value} job {token} for table {table_id}")

        return self.wait(job, poll, schedule)

    def wait(
        self,
        job: AsyncJob,
        poll: Callable[[str], PollResult[T]],
        schedule: Optional[PollSchedule] = None,
    ) -> T:
        """Poll an already started job to completion."""
        schedule = schedule or self.schedule
        self._transition(job, JobState.POLLING)

        while True:
            try:
                result = poll(job.token)
            except Exception as e:
                job.error = str(e)
                self._transition(job, JobState.FAILED)
                logger.error(f"{job.kind.value} job {job.token} failed on table {job.table_id}: {e}")
                raise

            job.poll_count += 1
            if result.is_ready:
                self._transition(job, JobState.SUCCEEDED)
                logger.info(
                    f"{job.kind.value} job {job.token} succeeded after {job.poll_count} polls"
                )
                return result.value

            if job.poll_count >= job.max_polls:
                self._transition(job, JobState.TIMED_OUT)
                logger.warning(
                    f"{job.kind.value} job {job.token} not complete after {job.poll_count} polls"
                )
                raise AsyncJobTimeoutError(
                    job.token, job.kind.value, job.poll_count, context=f"table {job.table_id}"
                )

            wait = schedule.wait_before(job.poll_count)
            logger.debug(
                f"{job.kind.value} job {job.token} not ready (poll {job.poll_count}/{job.max_polls}), "
                f"sleeping {wait}s"
            )
            if wait > 0:
                self._sleep(wait)
