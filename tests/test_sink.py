"""
Tests for the S3 sink component.
"""
import io
import threading
import time
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from bulk_upload.exceptions import TransportError, UploadCancelled
from bulk_upload.models import RetryPolicy, TransferConfig
from bulk_upload.sink import S3ObjectSink, create_s3_client, is_retryable_error
from bulk_upload.task import CancellableReader


def client_error(code, message="Test error", operation="upload_fileobj"):
    return ClientError({'Error': {'Code': code, 'Message': message}}, operation)


def test_put_stores_object(mock_aws, transfer_config):
    """Test that a stream lands in the bucket under its name."""
    sink = S3ObjectSink("test-bucket", client=mock_aws)

    sink.put("dir/test.txt", io.BytesIO(b"test content"), 12, transfer_config)

    body = mock_aws.get_object(Bucket="test-bucket", Key="dir/test.txt")['Body'].read()
    assert body == b"test content"


def test_put_uses_key_prefix(mock_aws, transfer_config):
    sink = S3ObjectSink("test-bucket", client=mock_aws, key_prefix="/client-1/")

    sink.put("a.txt", io.BytesIO(b"a"), 1, transfer_config)

    assert sink.name == "s3://test-bucket/client-1"
    assert mock_aws.get_object(Bucket="test-bucket", Key="client-1/a.txt")['Body'].read() == b"a"


def test_put_to_missing_bucket_raises_transport_error(mock_aws, transfer_config):
    sink = S3ObjectSink("no-such-bucket", client=mock_aws)

    with pytest.raises(TransportError) as excinfo:
        sink.put("a.txt", io.BytesIO(b"a"), 1, transfer_config)

    assert "no-such-bucket" in str(excinfo.value)


def test_put_retries_on_transient_failure(transfer_config):
    """Test that upload retries on transient failures and rewinds the stream."""
    reads = []

    def fake_upload(fileobj, bucket, key, ExtraArgs=None, Config=None):
        reads.append(fileobj.read())
        if len(reads) < 3:
            raise client_error('RequestTimeout', 'Request timed out')

    mock_client = MagicMock()
    mock_client.upload_fileobj.side_effect = fake_upload
    sink = S3ObjectSink("test-bucket", client=mock_client)

    sink.put("test.txt", io.BytesIO(b"test content"), 12, transfer_config)

    assert mock_client.upload_fileobj.call_count == 3
    assert reads == [b"test content"] * 3


def test_put_fails_if_s3_down(transfer_config):
    """Test that upload fails with a transport error after exhausting retries."""
    mock_client = MagicMock()
    mock_client.upload_fileobj.side_effect = client_error('ServiceUnavailable', 'Service is down')
    sink = S3ObjectSink("test-bucket", client=mock_client)

    with pytest.raises(TransportError) as excinfo:
        sink.put("test.txt", io.BytesIO(b"x"), 1, transfer_config)

    assert "Service is down" in str(excinfo.value)
    assert excinfo.value.code == 'ServiceUnavailable'
    assert mock_client.upload_fileobj.call_count == transfer_config.retry.max_attempts


def test_put_does_not_retry_permanent_errors(transfer_config):
    mock_client = MagicMock()
    mock_client.upload_fileobj.side_effect = client_error('AccessDenied', 'Access denied')
    sink = S3ObjectSink("test-bucket", client=mock_client)

    with pytest.raises(TransportError):
        sink.put("test.txt", io.BytesIO(b"x"), 1, transfer_config)

    assert mock_client.upload_fileobj.call_count == 1


def test_connection_errors_are_retried(transfer_config):
    mock_client = MagicMock()
    mock_client.upload_fileobj.side_effect = [
        EndpointConnectionError(endpoint_url="https://s3.example"),
        None
    ]
    sink = S3ObjectSink("test-bucket", client=mock_client)

    sink.put("test.txt", io.BytesIO(b"x"), 1, transfer_config)

    assert mock_client.upload_fileobj.call_count == 2


def test_transfer_settings_follow_config(fast_retry):
    """Test that block size, part threads and integrity flag reach boto3."""
    mock_client = MagicMock()
    sink = S3ObjectSink("test-bucket", client=mock_client)
    config = TransferConfig(
        max_concurrency=2,
        block_size_bytes=16 * 1024 * 1024,
        verify_integrity=True,
        part_concurrency=4,
        retry=fast_retry
    )

    sink.put("test.txt", io.BytesIO(b"x"), 1, config)

    kwargs = mock_client.upload_fileobj.call_args.kwargs
    assert kwargs['ExtraArgs'] == {'ChecksumAlgorithm': 'SHA256'}
    assert kwargs['Config'].multipart_chunksize == 16 * 1024 * 1024
    assert kwargs['Config'].multipart_threshold == 16 * 1024 * 1024
    assert kwargs['Config'].max_concurrency == 4


def test_no_checksum_when_integrity_disabled(transfer_config):
    mock_client = MagicMock()
    sink = S3ObjectSink("test-bucket", client=mock_client)

    sink.put("test.txt", io.BytesIO(b"x"), 1, transfer_config)

    assert mock_client.upload_fileobj.call_args.kwargs['ExtraArgs'] is None


def test_is_retryable_error():
    """Test error classification for retries."""
    retryable_codes = [
        'RequestTimeout',
        'RequestTimeoutException',
        'PriorRequestNotComplete',
        'ConnectionError',
        'ThrottlingException',
        'ThrottledException',
        'ServiceUnavailable',
        'Throttling',
        'SlowDown',
        '5XX'
    ]

    non_retryable_codes = [
        'AccessDenied',
        'NoSuchBucket',
        'InvalidRequest'
    ]

    for code in retryable_codes:
        assert is_retryable_error(client_error(code))

    for code in non_retryable_codes:
        assert not is_retryable_error(client_error(code))

    server_error = ClientError(
        {'Error': {'Code': 'Weird'}, 'ResponseMetadata': {'HTTPStatusCode': 503}},
        'upload_part'
    )
    assert is_retryable_error(server_error)
    assert is_retryable_error(EndpointConnectionError(endpoint_url="https://s3.example"))
    assert not is_retryable_error(ValueError("nope"))


def test_empty_bucket_name_is_rejected():
    with pytest.raises(ValueError):
        S3ObjectSink("", client=MagicMock())


def test_cancellation_interrupts_backoff():
    """Test that a cancelled run stops waiting between retries and skips the remaining attempts."""
    mock_client = MagicMock()
    mock_client.upload_fileobj.side_effect = client_error('SlowDown', 'Please reduce your request rate')
    sink = S3ObjectSink("test-bucket", client=mock_client)
    config = TransferConfig(
        max_concurrency=1,
        verify_integrity=False,
        part_concurrency=1,
        retry=RetryPolicy(max_attempts=3, backoff_min=1.5, backoff_max=1.5)
    )
    cancel_event = threading.Event()
    threading.Timer(0.1, cancel_event.set).start()

    started = time.monotonic()
    with pytest.raises(UploadCancelled):
        sink.put("test.txt", CancellableReader(io.BytesIO(b"x"), cancel_event), 1, config)

    assert time.monotonic() - started < 1.0
    assert mock_client.upload_fileobj.call_count == 1


def test_put_after_cancellation_does_not_upload(transfer_config):
    mock_client = MagicMock()
    sink = S3ObjectSink("test-bucket", client=mock_client)
    cancel_event = threading.Event()
    cancel_event.set()

    with pytest.raises(UploadCancelled):
        sink.put("test.txt", CancellableReader(io.BytesIO(b"x"), cancel_event), 1, transfer_config)

    mock_client.upload_fileobj.assert_not_called()


def test_client_without_integrity_checks_only_required_checksums(aws_credentials):
    assert create_s3_client(verify_integrity=False).meta.config.request_checksum_calculation == "when_required"
    assert create_s3_client().meta.config.request_checksum_calculation == "when_supported"
