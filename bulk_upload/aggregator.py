"""
Module for joining upload tasks at a single barrier and summarizing them.
"""
import logging
import threading
import time
from concurrent.futures import Executor, Future, wait, ALL_COMPLETED
from typing import Any, Dict, List, Optional

from .admission import AdmissionController
from .models import ErrorKind, RunSummary, UploadFailure, UploadOutcome
from .task import UploadTask

logger = logging.getLogger(__name__)


class CompletionAggregator:
    """Collects one outcome per job and folds them into a RunSummary.

    Jobs are registered either as submitted futures or as unscheduled (never
    admitted). ``wait`` is the only place outcomes become visible.
    """

    def __init__(self, total_jobs: int, cancel_event: threading.Event,
                 controller: Optional[AdmissionController] = None,
                 poll_interval: float = 0.1, started: Optional[float] = None):
        """Initialize the aggregator.

        Args:
            total_jobs: Number of jobs the run will register
            cancel_event: Run-wide cancellation signal
            controller: Admission controller to close on cancellation
            poll_interval: Seconds between cancellation checks while waiting
            started: time.monotonic() value the run's elapsed time counts from,
                defaults to now
        """
        self.total_jobs = total_jobs
        self.cancel_event = cancel_event
        self.controller = controller
        self.poll_interval = poll_interval
        self.cancel_reason: Optional[str] = None
        self.timed_out = False
        self._entries: List[UploadTask] = []
        self._futures: Dict[UploadTask, Future] = {}
        self._completed = 0
        self._lock = threading.Lock()
        self._started = time.monotonic() if started is None else started

    @property
    def completed(self) -> int:
        with self._lock:
            return self._completed

    def _on_done(self, task: UploadTask, future: Future) -> None:
        if future.cancelled():
            task.abandon(self.cancel_reason or "Upload was cancelled before it started")

        with self._lock:
            self._completed += 1
            completed = self._completed
        logger.debug(f"Completed {completed}/{self.total_jobs} uploads")

    def submit(self, executor: Executor, task: UploadTask) -> Future:
        """Schedule an admitted task on the executor and track it."""
        future = executor.submit(task.run)
        self._entries.append(task)
        self._futures[task] = future
        future.add_done_callback(lambda f: self._on_done(task, f))
        return future

    def add_unscheduled(self, task: UploadTask) -> None:
        """Track a job that was never admitted; it is reported as cancelled."""
        self._entries.append(task)

    def cancel(self, reason: str, timed_out: bool = False) -> None:
        """Signal cancellation to every task and stop admitting new ones."""
        if self.cancel_reason is None:
            self.cancel_reason = reason
            logger.warning(f"Cancelling upload run: {reason}")
        self.timed_out = self.timed_out or timed_out
        self.cancel_event.set()
        if self.controller is not None:
            self.controller.close()

    def check_deadline(self, deadline: Optional[float]) -> Optional[float]:
        """Return the seconds left before ``deadline``, cancelling if none are.

        Args:
            deadline: Absolute time.monotonic() value, or None for no deadline

        Returns:
            Remaining seconds, or None when there is no deadline
        """
        if deadline is None:
            return None
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            self.cancel("deadline expired", timed_out=True)
            return 0.0
        return remaining

    def _outcome_of(self, task: UploadTask) -> UploadOutcome:
        future = self._futures.get(task)
        reason = self.cancel_reason or "Upload was cancelled"
        if future is None:
            return task.abandon(f"{reason} before the upload was admitted")

        if future.cancel():
            return task.abandon(f"{reason} before the upload started")

        if future.done():
            error = future.exception()
            if error is None:
                return future.result()
            return UploadFailure(task.job.file_name, ErrorKind.UNKNOWN, str(error))

        # Still running; the task sees the cancellation signal and releases its own ticket
        return UploadFailure(
            task.job.file_name,
            ErrorKind.CANCELLED,
            f"{reason} while the upload was in progress"
        )

    def wait(self, deadline: Optional[float] = None, **summary_fields: Any) -> RunSummary:
        """Block until every task is terminal, the deadline fires or the run is cancelled.

        Args:
            deadline: Absolute time.monotonic() value, or None to wait indefinitely
            **summary_fields: Extra RunSummary fields (client_id, container)

        Returns:
            RunSummary covering every registered job
        """
        pending = set(self._futures.values())
        while pending:
            if self.cancel_event.is_set():
                self.cancel(self.cancel_reason or "run aborted")
                break

            remaining = self.check_deadline(deadline)
            if remaining is not None and remaining <= 0:
                break

            timeout = self.poll_interval if remaining is None else min(remaining, self.poll_interval)
            _, pending = wait(pending, timeout=timeout, return_when=ALL_COMPLETED)

        outcomes = [self._outcome_of(task) for task in self._entries]
        elapsed = time.monotonic() - self._started
        return RunSummary.from_outcomes(
            outcomes, elapsed, timed_out=self.timed_out, **summary_fields
        )
