"""
Exceptions raised by the bulk uploader.

Per-file errors (TransportError, UploadCancelled and the builtin OSError) are
caught by the upload task and turned into an UploadFailure. Run-level errors
(DirectoryNotFound, ContainerResolutionError) escape run_upload before any
upload is scheduled.
"""
from typing import Optional


class BulkUploadError(Exception):
    """Base class for all uploader errors."""


class TransportError(BulkUploadError):
    """The sink could not deliver an object after exhausting its retries."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class UploadCancelled(BulkUploadError):
    """The run was aborted or its deadline expired."""


class DirectoryNotFound(BulkUploadError):
    """The upload root does not exist or is not a directory."""


class ContainerResolutionError(BulkUploadError):
    """No remote container could be resolved for a client."""


class TicketReleaseError(BulkUploadError):
    """An admission ticket was released more than once or to the wrong pool."""
