from .admission import AdmissionController, AdmissionTicket
from .aggregator import CompletionAggregator
from .coordinator import UploadCoordinator, run_upload
from .exceptions import (
    BulkUploadError,
    ContainerResolutionError,
    DirectoryNotFound,
    TicketReleaseError,
    TransportError,
    UploadCancelled,
)
from .models import (
    ErrorKind,
    JobState,
    RetryPolicy,
    RunSummary,
    TransferConfig,
    UploadFailure,
    UploadJob,
    UploadOutcome,
    UploadSuccess,
)
from .resolver import ContainerResolver, S3ContainerResolver
from .scanner import FileScanner
from .sink import ObjectSink, S3ObjectSink, create_s3_client
from .task import UploadTask

__version__ = "0.1.0"

__all__ = [
    "AdmissionController",
    "AdmissionTicket",
    "CompletionAggregator",
    "UploadCoordinator",
    "run_upload",
    "BulkUploadError",
    "ContainerResolutionError",
    "DirectoryNotFound",
    "TicketReleaseError",
    "TransportError",
    "UploadCancelled",
    "ErrorKind",
    "JobState",
    "RetryPolicy",
    "RunSummary",
    "TransferConfig",
    "UploadFailure",
    "UploadJob",
    "UploadOutcome",
    "UploadSuccess",
    "ContainerResolver",
    "S3ContainerResolver",
    "FileScanner",
    "ObjectSink",
    "S3ObjectSink",
    "create_s3_client",
    "UploadTask",
]
