"""S3 client wrapper for the statics bucket.

Centralizes the object-storage calls used by statics synchronization, retention
and cleanup. The underlying boto3 client is shared across upload workers.
"""

from __future__ import annotations

from typing import Any, BinaryIO

import boto3
import structlog
from botocore.client import BaseClient
from botocore.config import Config

from fleet_deploy.core.config import Settings
from fleet_deploy.core.exceptions import StorageError

logger = structlog.get_logger(__name__)

DELETE_BATCH_SIZE = 1000

PROXY_TOKENIZER_HEADER = "Proxy-Tokenizer"
PROXY_AUTHORIZATION_HEADER = "Proxy-Authorization"

# The proxy swaps these for the sealed sigv4 keys before forwarding upstream.
PLACEHOLDER_ACCESS_KEY = "tokenizer-access-key"
PLACEHOLDER_SECRET_KEY = "tokenizer-secret-key"


def normalize_prefix(prefix: str) -> str:
    """Return ``prefix`` with forward slashes and exactly one trailing slash."""
    prefix = prefix.replace("\\", "/")
    if not prefix.endswith("/"):
        prefix += "/"
    return prefix


class BucketStorage:
    """Operations on a single bucket through a configured boto3 S3 client."""

    def __init__(self, s3_client: Any, bucket: str):
        """Initialize BucketStorage.

        Args:
            s3_client: Configured boto3 S3 client instance
            bucket: Name of the bucket every call targets
        """
        self.client = s3_client
        self.bucket = bucket

    def put_object(self, key: str, body: BinaryIO | bytes, content_type: str) -> None:
        """Upload ``body`` to ``key`` tagged with ``content_type``.

        Raises:
            ClientError: If the upload fails
        """
        logger.debug("s3.put_object", bucket=self.bucket, key=key, content_type=content_type)
        self.client.put_object(Bucket=self.bucket, Key=key, Body=body, ContentType=content_type)

    def list_keys(self, prefix: str) -> list[str]:
        """List every object key under ``prefix``, following pagination."""
        paginator = self.client.get_paginator("list_objects_v2")
        keys: list[str] = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return keys

    def list_common_prefixes(self, prefix: str, delimiter: str = "/") -> list[str]:
        """List the immediate child prefixes of ``prefix``.

        Only the first page of results is read.
        """
        response = self.client.list_objects_v2(Bucket=self.bucket, Prefix=prefix, Delimiter=delimiter)
        return [entry["Prefix"] for entry in response.get("CommonPrefixes", [])]

    def delete_keys(self, keys: list[str]) -> None:
        """Delete ``keys`` in batches of at most 1000."""
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start : start + DELETE_BATCH_SIZE]
            response = self.client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
            )
            errors = response.get("Errors") or []
            if errors:
                first = errors[0]
                raise StorageError(
                    f"failed to delete {len(errors)} object(s) from {self.bucket}: "
                    f"{first.get('Key')}: {first.get('Message') or first.get('Code')}"
                )

    def delete_directory(self, prefix: str) -> int:
        """Delete every object under ``prefix`` treated as a directory.

        Returns:
            Number of objects deleted
        """
        prefix = normalize_prefix(prefix)
        keys = self.list_keys(prefix)
        self.delete_keys(keys)
        logger.debug("s3.delete_directory", bucket=self.bucket, prefix=prefix, object_count=len(keys))
        return len(keys)


def _proxy_header_hook(sealed_credential: str, user_auth_header: str | None):
    def add_proxy_headers(request: Any, **_: Any) -> None:
        request.headers[PROXY_TOKENIZER_HEADER] = sealed_credential
        if user_auth_header:
            request.headers[PROXY_AUTHORIZATION_HEADER] = user_auth_header

    return add_proxy_headers


def build_tokenized_s3_client(
    settings: Settings,
    sealed_credential: str,
    user_auth_header: str | None = None,
) -> BaseClient:
    """Build an S3 client that routes every request through the tokenizer.

    The client never sees the real access keys. The sealed credential travels
    in a proxy header and the proxy injects the sigv4 signature permitted by
    the sealed scope.
    """
    client = boto3.client(
        "s3",
        endpoint_url=settings.storage_endpoint_url,
        aws_access_key_id=PLACEHOLDER_ACCESS_KEY,
        aws_secret_access_key=PLACEHOLDER_SECRET_KEY,
        region_name="auto",
        config=Config(
            proxies={"http": settings.tokenizer_url, "https": settings.tokenizer_url},
            s3={"addressing_style": "virtual"},
            retries={"max_attempts": 3, "mode": "standard"},
            connect_timeout=settings.storage_connect_timeout_seconds,
            read_timeout=settings.storage_read_timeout_seconds,
        ),
    )
    client.meta.events.register("before-sign.s3", _proxy_header_hook(sealed_credential, user_auth_header))
    return client
