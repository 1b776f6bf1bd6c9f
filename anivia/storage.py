"""
Object storage client for rehosted images.

Talks to Cloudflare R2 (or any S3-compatible service) through boto3.
Keys are content-addressed by the caller; this layer only probes, writes
and builds public URLs.
"""

import logging
import threading
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import StorageConfig
from .errors import StorageError

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class ObjectStore:
    """Key/value blob store with public URLs."""

    def __init__(self, config: StorageConfig, client=None):
        """
        Args:
            config: Endpoint, credentials, bucket and public base URL.
            client: Pre-built S3 client, mainly for tests.
        """
        self.config = config
        self._client = client
        self._client_lock = threading.Lock()

    def _client_factory(self):
        return boto3.client(
            "s3",
            endpoint_url=self.config.endpoint,
            region_name=self.config.region,
            aws_access_key_id=self.config.access_key_id,
            aws_secret_access_key=self.config.secret_access_key,
            config=BotoConfig(signature_version="s3v4"),
        )

    @property
    def _s3(self):
        # first use happens inside the image worker threads
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = self._client_factory()
        return self._client

    def public_url(self, key: str) -> str:
        return f"{self.config.public_url}/{key}"

    def exists(self, key: str) -> bool:
        """
        Probe for an object.

        Raises:
            StorageError: For anything but a clean "not found"
                (``StorageAuthError`` for rejected credentials).
        """
        try:
            self._s3.head_object(Bucket=self.config.bucket, Key=key)
            return True
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in NOT_FOUND_CODES:
                return False
            raise StorageError.from_client_error(e) from e
        except BotoCoreError as e:
            raise StorageError(f"Object storage unreachable: {e}", details=e) from e

    def put(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        """
        Upload an object and return its public URL.

        Raises:
            StorageError: If the upload fails.
        """
        try:
            self._s3.put_object(
                Bucket=self.config.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata=metadata or {},
            )
        except ClientError as e:
            raise StorageError.from_client_error(e) from e
        except BotoCoreError as e:
            raise StorageError(f"Object storage unreachable: {e}", details=e) from e

        logger.debug("Uploaded %s (%d bytes)", key, len(data))
        return self.public_url(key)

    def verify(self) -> list[tuple[str, str]]:
        """
        Check bucket access.

        Returns:
            List of (check, detail) pairs that passed.

        Raises:
            StorageError: On the first failing check.
        """
        try:
            self._s3.head_bucket(Bucket=self.config.bucket)
            listing = self._s3.list_objects_v2(Bucket=self.config.bucket, MaxKeys=1)
        except ClientError as e:
            raise StorageError.from_client_error(e) from e
        except BotoCoreError as e:
            raise StorageError(f"Object storage unreachable: {e}", details=e) from e

        return [
            ("Bucket", f"{self.config.bucket} is reachable"),
            ("List", f"{listing.get('KeyCount', 0)} object(s) in first page"),
            ("Public URL", self.config.public_url),
        ]
