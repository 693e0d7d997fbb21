"""Job queue and cancellation tests."""

from unittest.mock import MagicMock

import pytest

from curation.errors import CancelledError
from curation.jobs import CancellationToken, InlineJobQueue, JobOptions

pytestmark = pytest.mark.unit


class TestInlineJobQueue:
    """Test delayed inline execution and outcome callbacks."""

    def test_runs_task_after_delay(self, sleep):
        queue = InlineJobQueue(sleep=sleep)
        task = MagicMock(return_value="done")

        queue.enqueue(task, JobOptions(job_id="a", delay=2.5, attempt=2))

        task.assert_called_once_with()
        assert sleep.calls == [2.5]
        assert queue.history == [JobOptions(job_id="a", delay=2.5, attempt=2)]

    def test_no_sleep_without_delay(self, sleep):
        queue = InlineJobQueue(sleep=sleep)
        queue.enqueue(lambda: None)
        assert sleep.calls == []
        assert queue.history == [JobOptions()]

    def test_completion_callback(self, sleep):
        queue = InlineJobQueue(sleep=sleep)
        on_complete = MagicMock()
        queue.on_complete(on_complete)

        queue.enqueue(lambda: 42, JobOptions(job_id="job-1"))

        on_complete.assert_called_once_with("job-1", 42)

    def test_failure_callback_and_no_propagation(self, sleep):
        """A raising task is reported to failure callbacks, not to the caller."""
        queue = InlineJobQueue(sleep=sleep)
        on_failure = MagicMock()
        on_complete = MagicMock()
        queue.on_failure(on_failure)
        queue.on_complete(on_complete)
        error = RuntimeError("worker crashed")

        def task():
            raise error

        queue.enqueue(task, JobOptions(job_id="job-2"))

        on_failure.assert_called_once_with("job-2", error)
        on_complete.assert_not_called()


class TestCancellationToken:
    """Test cooperative cancellation."""

    def test_initially_not_cancelled(self):
        token = CancellationToken()
        assert not token.is_cancelled
        token.raise_if_cancelled("a")

    def test_cancel(self):
        token = CancellationToken()
        token.cancel()
        assert token.is_cancelled
        with pytest.raises(CancelledError) as exc_info:
            token.raise_if_cancelled("asset-1")
        assert exc_info.value.asset_id == "asset-1"
