"""
Module containing data models for the bulk uploader.
"""
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import List, Optional, Dict, Any, Union

MB = 1024 * 1024


class ErrorKind(str, Enum):
    """Classification of a per-file upload failure."""
    LOCAL_IO_ERROR = "LocalIOError"
    TRANSPORT_ERROR = "TransportError"
    CANCELLED = "Cancelled"
    UNKNOWN = "Unknown"


class JobState(str, Enum):
    """Lifecycle of a single upload job."""
    QUEUED = "queued"
    ADMITTED = "admitted"
    TRANSFERRING = "transferring"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED)


@dataclass(frozen=True)
class UploadJob:
    """A local file waiting to be uploaded.

    ``size_bytes`` is the size seen when the directory was listed. The upload
    sends and reports the size of the file when it is opened, which differs
    if the file changed in between.
    """
    file_name: str
    source_path: Path
    size_bytes: int


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff settings applied by a sink to transient failures."""
    max_attempts: int = 3
    backoff_multiplier: float = 1.0
    backoff_min: float = 4.0
    backoff_max: float = 10.0

    def __post_init__(self):
        """Validate the retry policy."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_min < 0 or self.backoff_max < 0 or self.backoff_multiplier < 0:
            raise ValueError("backoff values cannot be negative")
        if self.backoff_max < self.backoff_min:
            raise ValueError("backoff_max cannot be lower than backoff_min")


@dataclass(frozen=True)
class TransferConfig:
    """Settings shared by every upload of a run.

    Setting ``verify_integrity`` to False skips content-hash validation in
    exchange for throughput.
    """
    max_concurrency: int = 100
    block_size_bytes: int = 100 * MB
    verify_integrity: bool = True
    part_concurrency: int = 8
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self):
        """Validate the transfer config."""
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be greater than 0")
        if self.block_size_bytes < 1:
            raise ValueError("block_size_bytes must be greater than 0")
        if self.part_concurrency < 1:
            raise ValueError("part_concurrency must be greater than 0")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferConfig":
        """Build a config from a plain mapping, e.g. a parsed JSON file.

        Args:
            data: Mapping of field names to values. Unknown keys are rejected.

        Returns:
            TransferConfig instance
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown transfer settings: {', '.join(sorted(unknown))}")

        values = dict(data)
        retry = values.get("retry")
        if isinstance(retry, dict):
            values["retry"] = RetryPolicy(**retry)
        return cls(**values)


@dataclass(frozen=True)
class UploadSuccess:
    """A file that reached the sink."""
    file_name: str
    bytes_sent: int
    duration: float

    @property
    def success(self) -> bool:
        return True


@dataclass(frozen=True)
class UploadFailure:
    """A file that did not reach the sink."""
    file_name: str
    error_kind: ErrorKind
    message: str

    @property
    def success(self) -> bool:
        return False


UploadOutcome = Union[UploadSuccess, UploadFailure]


@dataclass(frozen=True)
class RunSummary:
    """Represents the result of one upload run."""
    total_jobs: int
    succeeded: int
    failed: int
    elapsed: float
    client_id: Optional[str] = None
    container: Optional[str] = None
    timed_out: bool = False
    outcomes: List[UploadOutcome] = field(default_factory=list)

    @property
    def cancelled(self) -> int:
        return sum(
            1 for o in self.outcomes
            if isinstance(o, UploadFailure) and o.error_kind is ErrorKind.CANCELLED
        )

    @property
    def bytes_sent(self) -> int:
        return sum(o.bytes_sent for o in self.outcomes if isinstance(o, UploadSuccess))

    @classmethod
    def from_outcomes(cls, outcomes: List[UploadOutcome], elapsed: float,
                      **extra: Any) -> "RunSummary":
        """Fold a list of terminal outcomes into a summary."""
        succeeded = sum(1 for o in outcomes if o.success)
        return cls(
            total_jobs=len(outcomes),
            succeeded=succeeded,
            failed=len(outcomes) - succeeded,
            elapsed=elapsed,
            outcomes=list(outcomes),
            **extra
        )
