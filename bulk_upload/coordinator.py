"""
Module for coordinating a bounded-concurrency upload run.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Union

from .admission import AdmissionController, AdmissionTicket
from .aggregator import CompletionAggregator
from .exceptions import UploadCancelled
from .models import RunSummary, TransferConfig
from .resolver import ContainerResolver
from .scanner import FileScanner
from .task import UploadTask
from .tracker import RunTracker

logger = logging.getLogger(__name__)


class UploadCoordinator:
    """Uploads a directory to a client's container, a bounded number of files at a time."""

    def __init__(self, resolver: ContainerResolver,
                 scanner: Optional[FileScanner] = None,
                 log_dir: Optional[Path] = None,
                 poll_interval: float = 0.1):
        """Initialize the upload coordinator.

        Args:
            resolver: Maps client ids to sinks
            scanner: Lists the files of the upload root
            log_dir: Directory for JSON run logs
            poll_interval: Seconds between cancellation checks while blocked
        """
        self.resolver = resolver
        self.scanner = scanner or FileScanner()
        self.tracker = RunTracker(log_dir=log_dir)
        self.poll_interval = poll_interval
        self.controller: Optional[AdmissionController] = None
        self._aggregator: Optional[CompletionAggregator] = None
        self._cancel_event: Optional[threading.Event] = None
        self._abort_reason: Optional[str] = None

    def _admit(self, aggregator: CompletionAggregator,
               deadline: Optional[float]) -> Optional[AdmissionTicket]:
        """Wait for an admission ticket, giving up on cancellation or deadline."""
        while not aggregator.cancel_event.is_set():
            remaining = aggregator.check_deadline(deadline)
            if remaining is not None and remaining <= 0:
                return None

            timeout = self.poll_interval if remaining is None else min(remaining, self.poll_interval)
            try:
                ticket = self.controller.acquire(timeout=timeout)
            except UploadCancelled:
                return None
            if ticket is not None:
                return ticket
        return None

    def run_upload(self, client_id: str, upload_root: Union[str, Path],
                   config: TransferConfig, deadline: Optional[float] = None) -> RunSummary:
        """Upload every file of a directory and wait for all of them.

        Args:
            client_id: Client whose container receives the files
            upload_root: Local directory to upload
            config: Transfer settings of the run
            deadline: Optional seconds after which unfinished uploads are cancelled

        Returns:
            RunSummary of the run

        Raises:
            ContainerResolutionError: If the client's container cannot be resolved
            DirectoryNotFound: If the upload root does not exist
        """
        upload_root = Path(upload_root)
        # abort() may arrive while the container is resolved or files are listed
        cancel_event = threading.Event()
        self._cancel_event = cancel_event
        self._abort_reason = None
        try:
            sink = self.resolver.resolve_container(client_id)
            started = time.monotonic()
            jobs = self.scanner.list_files(upload_root)

            if not config.verify_integrity:
                logger.warning("Integrity verification is disabled: content hashes will not be validated")
            self.tracker.log_run_start(client_id, upload_root, sink.name, config, len(jobs))

            controller = AdmissionController(config.max_concurrency)
            aggregator = CompletionAggregator(
                len(jobs), cancel_event, controller,
                poll_interval=self.poll_interval, started=started
            )
            self.controller = controller
            self._aggregator = aggregator
            if cancel_event.is_set():
                aggregator.cancel(self._abort_reason or "run aborted")

            summary = self._schedule(jobs, sink, config, aggregator, deadline, client_id)
        finally:
            self._aggregator = None
            self._cancel_event = None

        self.tracker.log_run_summary(summary)
        return summary

    def _schedule(self, jobs, sink, config: TransferConfig,
                  aggregator: CompletionAggregator, deadline: Optional[float],
                  client_id: str) -> RunSummary:
        deadline_at = None if deadline is None else time.monotonic() + deadline
        executor = ThreadPoolExecutor(
            max_workers=config.max_concurrency,
            thread_name_prefix="upload"
        )
        try:
            for job in jobs:
                task = UploadTask(job, sink, config, aggregator.cancel_event)
                ticket = self._admit(aggregator, deadline_at)
                if ticket is None:
                    aggregator.add_unscheduled(task)
                    continue
                task.admit(ticket)
                aggregator.submit(executor, task)

            return aggregator.wait(deadline_at, client_id=client_id, container=sink.name)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def abort(self, reason: str = "run aborted") -> None:
        """Cancel the run in progress, if any. Safe to call from a signal handler."""
        cancel_event = self._cancel_event
        if cancel_event is None:
            return
        if self._abort_reason is None:
            self._abort_reason = reason
        aggregator = self._aggregator
        if aggregator is not None:
            aggregator.cancel(reason)
        else:
            logger.warning(f"Cancelling upload run before scheduling: {reason}")
            cancel_event.set()


def run_upload(client_id: str, upload_root: Union[str, Path], config: TransferConfig,
               resolver: ContainerResolver, deadline: Optional[float] = None,
               scanner: Optional[FileScanner] = None,
               log_dir: Optional[Path] = None) -> RunSummary:
    """Upload a directory for a client and return the run summary."""
    coordinator = UploadCoordinator(resolver, scanner=scanner, log_dir=log_dir)
    return coordinator.run_upload(client_id, upload_root, config, deadline=deadline)
