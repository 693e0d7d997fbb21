"""Job scheduling and cooperative cancellation."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .errors import CancelledError

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[str, Any], None]
FailureCallback = Callable[[str, BaseException], None]


@dataclass(frozen=True)
class JobOptions:
    """Scheduling options for one enqueued task."""
    job_id: str = ""
    delay: float = 0.0  # seconds before the task may run
    attempt: int = 1


class JobQueue(ABC):
    """
    At-least-once task queue.

    Implementations run each enqueued task no earlier than ``options.delay``
    seconds after enqueueing and report the outcome to the registered
    completion or failure callbacks.
    """

    def __init__(self):
        self._on_complete: list[CompletionCallback] = []
        self._on_failure: list[FailureCallback] = []

    @abstractmethod
    def enqueue(
        self,
        task: Callable[[], Any],
        options: Optional[JobOptions] = None
    ) -> None:
        """
        Schedule a task.

        Args:
            task: Zero-argument callable to run.
            options: Scheduling options. Defaults to no delay.
        """
        pass

    def on_complete(self, callback: CompletionCallback) -> None:
        """Register a callback receiving (job_id, result) after a task succeeds."""
        self._on_complete.append(callback)

    def on_failure(self, callback: FailureCallback) -> None:
        """Register a callback receiving (job_id, error) after a task raises."""
        self._on_failure.append(callback)

    def _run(self, task: Callable[[], Any], options: JobOptions) -> None:
        try:
            result = task()
        except Exception as e:
            logger.error(f"Job {options.job_id or '<anonymous>'} failed: {e}")
            for callback in self._on_failure:
                callback(options.job_id, e)
            return
        for callback in self._on_complete:
            callback(options.job_id, result)


class InlineJobQueue(JobQueue):
    """
    Queue that waits out the scheduled delay and runs the task in the
    calling thread.

    ``sleep`` is injectable so tests can observe delays without waiting.
    """

    def __init__(self, sleep: Callable[[float], None] = time.sleep):
        super().__init__()
        self._sleep = sleep
        self.history: list[JobOptions] = []

    def enqueue(
        self,
        task: Callable[[], Any],
        options: Optional[JobOptions] = None
    ) -> None:
        options = options or JobOptions()
        self.history.append(options)
        if options.delay > 0:
            logger.debug(f"Job {options.job_id} waiting {options.delay:.2f}s before attempt {options.attempt}")
            self._sleep(options.delay)
        self._run(task, options)


class CancellationToken:
    """Cooperative cancellation flag checked between pipeline stages."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, asset_id: Optional[str] = None) -> None:
        """
        Raises:
            CancelledError: If cancellation was requested.
        """
        if self._event.is_set():
            raise CancelledError("Processing cancelled", asset_id=asset_id)
