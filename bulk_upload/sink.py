"""
Module for handling object storage uploads with retry logic.
"""
import logging
import threading
import time
from typing import BinaryIO, Optional, Protocol

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig as S3TransferConfig
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential,
    before_sleep_log,
)

from .exceptions import TransportError, UploadCancelled
from .models import TransferConfig

logger = logging.getLogger(__name__)

RETRYABLE_ERROR_CODES = {
    'RequestTimeout',
    'RequestTimeoutException',
    'PriorRequestNotComplete',
    'ConnectionError',
    'ThrottlingException',
    'ThrottledException',
    'ServiceUnavailable',
    'Throttling',
    'SlowDown',
    'InternalError',
    '5XX'
}


class ObjectSink(Protocol):
    """Anything that can durably store a named byte stream.

    Implementations are called from several worker threads at once. They may
    split the stream into ``config.block_size_bytes`` parts and retry
    transient failures, but must raise TransportError once they give up.
    """

    name: str

    def put(self, name: str, content: BinaryIO, size_bytes: int,
            config: TransferConfig) -> None: ...


def is_retryable_error(exception: BaseException) -> bool:
    """Check if an exception should trigger a retry.

    Args:
        exception: The exception to check

    Returns:
        True if the error is retryable, False otherwise
    """
    if isinstance(exception, ClientError):
        error_code = exception.response.get('Error', {}).get('Code')
        if error_code in RETRYABLE_ERROR_CODES:
            return True
        status = exception.response.get('ResponseMetadata', {}).get('HTTPStatusCode')
        return status is not None and status >= 500
    return isinstance(exception, (
        EndpointConnectionError,
        ConnectionClosedError,
        ConnectTimeoutError,
        ReadTimeoutError
    ))


def create_s3_client(verify_integrity: bool = True):
    """Create an S3 client.

    Without integrity verification the client only calculates request
    checksums for operations that require one, instead of botocore's default
    of every operation that supports one.

    Args:
        verify_integrity: Whether uploads through this client verify content hashes

    Returns:
        boto3 S3 client
    """
    if verify_integrity:
        return boto3.client('s3')
    return boto3.client('s3', config=Config(request_checksum_calculation="when_required"))


class S3ObjectSink:
    """Uploads streams into one S3 bucket with retry logic."""

    def __init__(self, bucket: str, client=None, key_prefix: str = ""):
        """Initialize the S3 sink.

        Args:
            bucket: Destination bucket name
            client: Optional boto3 S3 client; one is created when omitted
            key_prefix: Optional prefix for object keys
        """
        if not bucket:
            raise ValueError("bucket cannot be empty")
        self.bucket = bucket
        self.s3_client = client or create_s3_client()
        self.key_prefix = key_prefix.strip("/")

    @property
    def name(self) -> str:
        return f"s3://{self.bucket}/{self.key_prefix}" if self.key_prefix else f"s3://{self.bucket}"

    def key_for(self, name: str) -> str:
        """Object key used for a file name."""
        return f"{self.key_prefix}/{name}" if self.key_prefix else name

    @staticmethod
    def _transfer_config(config: TransferConfig) -> S3TransferConfig:
        return S3TransferConfig(
            multipart_threshold=config.block_size_bytes,
            multipart_chunksize=config.block_size_bytes,
            max_concurrency=config.part_concurrency,
            use_threads=config.part_concurrency > 1
        )

    def _retrying(self, config: TransferConfig,
                  cancel_event: Optional[threading.Event] = None) -> Retrying:
        policy = config.retry
        stop = stop_after_attempt(policy.max_attempts)
        sleep = time.sleep
        if cancel_event is not None:
            # Backoff wakes up as soon as the run is cancelled
            stop = stop | stop_when_event_set(cancel_event)
            sleep = cancel_event.wait
        return Retrying(
            retry=retry_if_exception(is_retryable_error),
            stop=stop,
            wait=wait_exponential(
                multiplier=policy.backoff_multiplier,
                min=policy.backoff_min,
                max=policy.backoff_max
            ),
            sleep=sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )

    def _put_once(self, key: str, content: BinaryIO, offset: Optional[int],
                  config: TransferConfig,
                  cancel_event: Optional[threading.Event] = None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise UploadCancelled(f"Upload to s3://{self.bucket}/{key} was cancelled")

        # A failed attempt may have consumed part of the stream
        if offset is not None:
            content.seek(offset)

        extra_args = {'ChecksumAlgorithm': 'SHA256'} if config.verify_integrity else {}
        self.s3_client.upload_fileobj(
            content,
            self.bucket,
            key,
            ExtraArgs=extra_args or None,
            Config=self._transfer_config(config)
        )

    def put(self, name: str, content: BinaryIO, size_bytes: int,
            config: TransferConfig) -> None:
        """Upload a stream to S3 with retries.

        Args:
            name: File name, used as the object key below the prefix
            content: Readable binary stream
            size_bytes: Size of the stream in bytes
            config: Transfer settings of the run

        Raises:
            TransportError: If the upload failed and retries were exhausted
            UploadCancelled: If the stream's run was cancelled between attempts
        """
        key = self.key_for(name)
        offset = content.tell() if content.seekable() else None
        cancel_event = getattr(content, 'cancel_event', None)

        logger.debug(f"Uploading {name} ({size_bytes} bytes) to s3://{self.bucket}/{key}")
        try:
            self._retrying(config, cancel_event)(
                self._put_once, key, content, offset, config, cancel_event
            )
        except ClientError as e:
            self._check_cancelled(name, cancel_event, e)
            code = e.response.get('Error', {}).get('Code')
            raise TransportError(
                f"Error uploading {name} to s3://{self.bucket}/{key}: {e}", code=code
            ) from e
        except (BotoCoreError, S3UploadFailedError) as e:
            self._check_cancelled(name, cancel_event, e)
            raise TransportError(
                f"Error uploading {name} to s3://{self.bucket}/{key}: {e}"
            ) from e

    @staticmethod
    def _check_cancelled(name: str, cancel_event: Optional[threading.Event],
                         error: Exception) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise UploadCancelled(f"Upload of {name} was cancelled while retrying: {error}") from error
