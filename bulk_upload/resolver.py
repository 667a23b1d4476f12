"""
Module for mapping a client identifier to its remote container.
"""
import logging
from typing import Dict, Optional, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import ContainerResolutionError
from .sink import ObjectSink, S3ObjectSink, create_s3_client

logger = logging.getLogger(__name__)


class ContainerResolver(Protocol):
    """Finds the sink a client's files are uploaded to."""

    def resolve_container(self, client_id: str) -> ObjectSink: ...


class S3ContainerResolver:
    """Resolves client ids to S3 buckets through a configured mapping."""

    def __init__(self, containers: Dict[str, str], client=None,
                 key_prefix: str = "", verify: bool = True,
                 verify_integrity: bool = True):
        """Initialize the resolver.

        Args:
            containers: Mapping of client id to bucket name
            client: Optional boto3 S3 client shared by every sink
            key_prefix: Optional prefix for object keys
            verify: Whether to check that the bucket is reachable
            verify_integrity: Whether the client created when ``client`` is
                omitted calculates checksums for every upload
        """
        self.containers = dict(containers)
        self.key_prefix = key_prefix
        self.verify = verify
        self.verify_integrity = verify_integrity
        self._client = client

    @property
    def s3_client(self):
        if self._client is None:
            self._client = create_s3_client(self.verify_integrity)
        return self._client

    def resolve_container(self, client_id: str) -> S3ObjectSink:
        """Get the sink for a client.

        Args:
            client_id: Client identifier

        Returns:
            S3ObjectSink bound to the client's bucket

        Raises:
            ContainerResolutionError: If the client is unknown or the bucket
                cannot be reached
        """
        bucket: Optional[str] = self.containers.get(client_id)
        if not bucket:
            raise ContainerResolutionError(f"No container configured for client {client_id!r}")

        if self.verify:
            try:
                self.s3_client.head_bucket(Bucket=bucket)
            except (ClientError, BotoCoreError) as e:
                raise ContainerResolutionError(
                    f"Container {bucket} for client {client_id!r} is not reachable: {e}"
                ) from e

        logger.debug(f"Resolved client {client_id!r} to bucket {bucket}")
        return S3ObjectSink(bucket, client=self.s3_client, key_prefix=self.key_prefix)
