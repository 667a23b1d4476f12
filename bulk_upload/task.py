"""
Module for the per-file upload unit of work.
"""
import logging
import os
import threading
import time
from typing import BinaryIO, Optional

from .admission import AdmissionTicket
from .exceptions import TransportError, UploadCancelled
from .models import (
    ErrorKind,
    JobState,
    TransferConfig,
    UploadFailure,
    UploadJob,
    UploadOutcome,
    UploadSuccess,
)
from .sink import ObjectSink

logger = logging.getLogger(__name__)


def classify_error(error: BaseException) -> ErrorKind:
    """Map an exception raised during a transfer to an ErrorKind."""
    if isinstance(error, UploadCancelled):
        return ErrorKind.CANCELLED
    if isinstance(error, (TransportError, ConnectionError, TimeoutError)):
        return ErrorKind.TRANSPORT_ERROR
    if isinstance(error, OSError):
        return ErrorKind.LOCAL_IO_ERROR
    return ErrorKind.UNKNOWN


class CancellableReader:
    """Read-only view of a stream that stops reading once the run is cancelled.

    Every other attribute (seek, tell, seekable, ...) goes to the wrapped stream.
    Sinks may also watch ``cancel_event`` while they are not reading, e.g.
    between retries.
    """

    def __init__(self, raw: BinaryIO, cancel_event: threading.Event):
        self._raw = raw
        self.cancel_event = cancel_event

    def read(self, size: int = -1) -> bytes:
        if self.cancel_event.is_set():
            raise UploadCancelled("Upload cancelled while reading")
        return self._raw.read(size)

    def readable(self) -> bool:
        return True

    def __getattr__(self, name):
        return getattr(self._raw, name)


class UploadTask:
    """Uploads one file and produces exactly one outcome.

    The task must be given an admission ticket with ``admit`` before ``run``;
    ``run`` releases that ticket as its last action whatever the outcome.
    """

    def __init__(self, job: UploadJob, sink: ObjectSink, config: TransferConfig,
                 cancel_event: Optional[threading.Event] = None):
        """Initialize the upload task.

        Args:
            job: File to upload
            sink: Destination of the upload
            config: Transfer settings of the run
            cancel_event: Run-wide cancellation signal
        """
        self.job = job
        self.sink = sink
        self.config = config
        self.cancel_event = cancel_event or threading.Event()
        self.state = JobState.QUEUED
        self.outcome: Optional[UploadOutcome] = None
        self._ticket: Optional[AdmissionTicket] = None

    def _set_state(self, state: JobState) -> None:
        logger.debug(f"{self.job.file_name}: {self.state.value} -> {state.value}")
        self.state = state

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise UploadCancelled(f"Upload of {self.job.file_name} was cancelled")

    def admit(self, ticket: AdmissionTicket) -> None:
        """Hand the task the ticket it will release when it finishes."""
        if self.state is not JobState.QUEUED:
            raise RuntimeError(f"Task for {self.job.file_name} is already {self.state.value}")
        self._ticket = ticket
        self._set_state(JobState.ADMITTED)

    def _fail(self, kind: ErrorKind, message: str) -> UploadFailure:
        self._set_state(JobState.FAILED)
        if kind is ErrorKind.CANCELLED:
            logger.info(f"Cancelled upload of {self.job.file_name}")
        else:
            logger.error(f"Failed to upload {self.job.file_name}: {message}")
        return UploadFailure(self.job.file_name, kind, message)

    def _transfer(self) -> UploadOutcome:
        started = time.monotonic()
        try:
            self._check_cancelled()
            stream = open(self.job.source_path, 'rb')
        except UploadCancelled as e:
            return self._fail(ErrorKind.CANCELLED, str(e))
        except OSError as e:
            return self._fail(ErrorKind.LOCAL_IO_ERROR,
                              f"Cannot open {self.job.source_path}: {e}")

        with stream:
            self._set_state(JobState.TRANSFERRING)
            try:
                size_bytes = os.fstat(stream.fileno()).st_size
                self._check_cancelled()
                self.sink.put(
                    self.job.file_name,
                    CancellableReader(stream, self.cancel_event),
                    size_bytes,
                    self.config
                )
            except Exception as e:
                kind = ErrorKind.CANCELLED if self.cancel_event.is_set() else classify_error(e)
                return self._fail(kind, str(e) or type(e).__name__)

        duration = time.monotonic() - started
        self._set_state(JobState.SUCCEEDED)
        logger.info(f"Uploaded {self.job.file_name} ({size_bytes} bytes) in {duration:.2f}s")
        return UploadSuccess(self.job.file_name, size_bytes, duration)

    def run(self) -> UploadOutcome:
        """Perform the upload. Never raises for per-file errors."""
        if self._ticket is None:
            raise RuntimeError(f"Task for {self.job.file_name} was not admitted")

        try:
            self.outcome = self._transfer()
        except Exception as e:
            self.outcome = self._fail(ErrorKind.UNKNOWN, str(e) or type(e).__name__)
        finally:
            self._ticket.release()
        return self.outcome

    def abandon(self, reason: str) -> UploadOutcome:
        """Mark a task that will never run as cancelled, freeing its ticket."""
        if self.state.is_terminal:
            return self.outcome
        self.outcome = self._fail(ErrorKind.CANCELLED, reason)
        if self._ticket is not None and not self._ticket.released:
            self._ticket.release()
        return self.outcome
