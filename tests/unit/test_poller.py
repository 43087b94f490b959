"""
Tests for tablesync.resilience.poller module.
"""

from unittest.mock import MagicMock

import pytest

from tablesync.config import PollingConfig
from tablesync.exceptions import AsyncJobTimeoutError, ConfigurationError, RemoteJobFailedError
from tablesync.remote.models import PollResult
from tablesync.resilience.poller import (
    AsyncJob,
    AsyncJobPoller,
    JobKind,
    JobState,
    PollSchedule,
)


def scripted_poll(*results):
    """Poll function returning (or raising) the given results in order."""
    return MagicMock(side_effect=list(results))


class TestPollSchedule:
    """Test PollSchedule."""

    def test_defaults(self):
        schedule = PollSchedule()

        assert schedule.interval == 1.0
        assert schedule.max_polls == 300
        assert schedule.wait_before(1) == 1.0

    def test_backoff_last_value_repeats(self):
        schedule = PollSchedule(backoff=[0.5, 1.0, 2.0])

        assert [schedule.wait_before(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 2.0, 2.0]

    def test_from_config(self):
        schedule = PollSchedule.from_config(
            PollingConfig(interval_seconds=0.5, max_polls=10, backoff_schedule=[1, 2])
        )

        assert schedule.interval == 0.5
        assert schedule.max_polls == 10
        assert schedule.backoff == (1, 2)

    @pytest.mark.parametrize(
        "kwargs", [{"max_polls": 0}, {"interval": -1}, {"backoff": [1, -1]}]
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigurationError):
            PollSchedule(**kwargs)


class TestAsyncJobPoller:
    """Test AsyncJobPoller state machine."""

    @pytest.fixture
    def sleep(self):
        return MagicMock()

    @pytest.fixture
    def poller(self, sleep):
        return AsyncJobPoller(PollSchedule(interval=1.0, max_polls=3), sleep=sleep)

    def test_ready_on_first_poll(self, poller, sleep):
        poll = scripted_poll(PollResult.ready("done"))

        result = poller.run(JobKind.SCHEMA_CHANGE, "syn1", start=lambda: "tok", poll=poll)

        assert result == "done"
        poll.assert_called_once_with("tok")
        sleep.assert_not_called()

    def test_not_ready_once_then_ready(self, poller, sleep):
        """Exactly two polls and one sleep."""
        poll = scripted_poll(PollResult.not_ready(), PollResult.ready(42))

        result = poller.run(JobKind.TSV_UPLOAD, "syn1", start=lambda: "tok", poll=poll)

        assert result == 42
        assert poll.call_count == 2
        sleep.assert_called_once_with(1.0)

    def test_times_out_after_max_polls(self, poller, sleep):
        """N polls, N-1 sleeps, then AsyncJobTimeoutError."""
        poll = MagicMock(return_value=PollResult.not_ready())

        with pytest.raises(AsyncJobTimeoutError) as exc_info:
            poller.run(JobKind.ROW_APPEND, "syn1", start=lambda: "tok", poll=poll)

        assert poll.call_count == 3
        assert sleep.call_count == 2
        assert exc_info.value.token == "tok"
        assert exc_info.value.kind == "row_append"
        assert exc_info.value.polls == 3

    def test_max_polls_one(self, sleep):
        poller = AsyncJobPoller(PollSchedule(max_polls=1), sleep=sleep)
        poll = MagicMock(return_value=PollResult.not_ready())

        with pytest.raises(AsyncJobTimeoutError):
            poller.run(JobKind.SCHEMA_CHANGE, "syn1", start=lambda: "tok", poll=poll)

        assert poll.call_count == 1
        sleep.assert_not_called()

    def test_failure_propagates_without_retry(self, poller, sleep):
        error = RemoteJobFailedError("tok", "bad row")
        poll = scripted_poll(PollResult.not_ready(), error)

        with pytest.raises(RemoteJobFailedError) as exc_info:
            poller.run(JobKind.TSV_UPLOAD, "syn1", start=lambda: "tok", poll=poll)

        assert exc_info.value is error
        assert poll.call_count == 2

    def test_start_failure_propagates(self, poller):
        poll = MagicMock()

        def start():
            raise RuntimeError("start failed")

        with pytest.raises(RuntimeError):
            poller.run(JobKind.SCHEMA_CHANGE, "syn1", start=start, poll=poll)
        poll.assert_not_called()

    def test_backoff_schedule_used(self, sleep):
        poller = AsyncJobPoller(PollSchedule(max_polls=5, backoff=[0.1, 0.5]), sleep=sleep)
        poll = scripted_poll(*([PollResult.not_ready()] * 3 + [PollResult.ready("x")]))

        poller.run(JobKind.SCHEMA_CHANGE, "syn1", start=lambda: "tok", poll=poll)

        assert [c.args[0] for c in sleep.call_args_list] == [0.1, 0.5, 0.5]

    def test_per_call_schedule_overrides_default(self, poller):
        poll = MagicMock(return_value=PollResult.not_ready())

        with pytest.raises(AsyncJobTimeoutError):
            poller.run(
                JobKind.SCHEMA_CHANGE, "syn1", start=lambda: "tok", poll=poll,
                schedule=PollSchedule(max_polls=7),
            )
        assert poll.call_count == 7

    def test_transitions_observed(self, sleep):
        states = []
        poller = AsyncJobPoller(
            PollSchedule(max_polls=3),
            sleep=sleep,
            on_transition=lambda job: states.append(job.state),
        )
        poll = scripted_poll(PollResult.not_ready(), PollResult.ready(None))

        poller.run(JobKind.SCHEMA_CHANGE, "syn1", start=lambda: "tok", poll=poll)

        assert states == [JobState.STARTED, JobState.POLLING, JobState.SUCCEEDED]

    def test_wait_on_started_job(self, poller):
        job = AsyncJob(token="tok", kind=JobKind.SCHEMA_CHANGE, table_id="syn1", max_polls=3)
        poll = MagicMock(return_value=PollResult.not_ready())

        with pytest.raises(AsyncJobTimeoutError):
            poller.wait(job, poll)

        assert job.state == JobState.TIMED_OUT
        assert job.state.is_terminal
        assert job.poll_count == 3
        assert job.job_key == "schema_change:syn1:tok"

    def test_failed_job_records_error(self, poller):
        job = AsyncJob(token="tok", kind=JobKind.TSV_UPLOAD, table_id="syn1", max_polls=3)
        poll = MagicMock(side_effect=RemoteJobFailedError("tok", "bad header"))

        with pytest.raises(RemoteJobFailedError):
            poller.wait(job, poll)

        assert job.state == JobState.FAILED
        assert "bad header" in job.error
