"""
Test fixtures for the bulk uploader.
"""
import threading
import time

import boto3
import pytest
from moto import mock_aws as moto_mock_aws

from bulk_upload.exceptions import ContainerResolutionError, TransportError
from bulk_upload.models import RetryPolicy, TransferConfig, UploadJob


class FakeSink:
    """In-memory sink that records uploads and the peak number of concurrent puts."""

    name = "memory://test"

    def __init__(self, delay: float = 0.0, fail_names=(), error=None):
        self.delay = delay
        self.fail_names = set(fail_names)
        self.error = error
        self.objects = {}
        self.calls = 0
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def put(self, name, content, size_bytes, config):
        with self._lock:
            self.calls += 1
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if name in self.fail_names or self.error is not None:
                raise self.error or TransportError(f"Could not deliver {name}")
            self.objects[name] = content.read()
        finally:
            with self._lock:
                self.active -= 1


class FakeResolver:
    """Resolver handing out a fixed sink for one client id."""

    def __init__(self, sink, client_id="client-1"):
        self.sink = sink
        self.client_id = client_id

    def resolve_container(self, client_id):
        if client_id != self.client_id:
            raise ContainerResolutionError(f"Unknown client {client_id}")
        return self.sink


@pytest.fixture
def tmp_upload_dir(tmp_path):
    """Create a temporary directory for test files."""
    upload_dir = tmp_path / "upload"
    upload_dir.mkdir()
    return upload_dir


@pytest.fixture
def tmp_log_dir(tmp_path):
    """Create a temporary directory for logs."""
    log_dir = tmp_path / "logs"
    log_dir.mkdir()
    return log_dir


@pytest.fixture
def make_files(tmp_upload_dir):
    """Factory writing ``count`` small files into the upload directory."""
    def _make(count, prefix="file"):
        paths = []
        for i in range(count):
            path = tmp_upload_dir / f"{prefix}{i:03d}.txt"
            path.write_text(f"content {i}")
            paths.append(path)
        return paths
    return _make


@pytest.fixture
def fast_retry():
    """Retry policy without backoff waits."""
    return RetryPolicy(max_attempts=3, backoff_multiplier=0, backoff_min=0, backoff_max=0)


@pytest.fixture
def transfer_config(fast_retry):
    """Small transfer config for tests."""
    return TransferConfig(
        max_concurrency=3,
        block_size_bytes=8 * 1024 * 1024,
        verify_integrity=False,
        part_concurrency=1,
        retry=fast_retry
    )


@pytest.fixture
def fake_sink():
    return FakeSink()


@pytest.fixture
def sink_factory():
    """Expose the FakeSink class so tests can configure delays and failures."""
    return FakeSink


@pytest.fixture
def resolver_factory():
    return FakeResolver


@pytest.fixture
def upload_job(tmp_upload_dir):
    """Create a job for a small existing file."""
    path = tmp_upload_dir / "test.txt"
    path.write_text("test content")
    return UploadJob(file_name="test.txt", source_path=path, size_bytes=path.stat().st_size)


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake credentials so boto3 never reaches a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def mock_aws(aws_credentials):
    """Mock S3 client using moto."""
    with moto_mock_aws():
        s3 = boto3.client('s3')
        # Create test bucket
        s3.create_bucket(Bucket='test-bucket')
        yield s3
