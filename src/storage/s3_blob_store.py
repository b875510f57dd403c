# src/storage/s3_blob_store.py — v1
"""S3-compatible blob store (BLOB_BACKEND=s3).

Supports AWS S3, MinIO, and other S3-compatible storage.
Requires the 's3' extra: pip install galley[s3].
"""

from __future__ import annotations

import logging

from galley.storage.base_blob_store import BaseBlobStore, BlobNotFoundError, check_key

logger = logging.getLogger(__name__)


class S3BlobStore(BaseBlobStore):
    """Store blobs as objects in an S3 bucket."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "galley/",
        region: str | None = None,
        endpoint_url: str | None = None,
        client=None,
    ) -> None:
        """Initialize S3 blob store.

        Args:
            bucket: S3 bucket name.
            prefix: Key prefix for all objects (e.g. "galley/").
            region: AWS region (optional, uses boto3 default if not set).
            endpoint_url: Custom endpoint for MinIO/compatible storage.
            client: Pre-built boto3 S3 client (tests).
        """
        if client is None:
            import boto3

            kwargs: dict = {}
            if region:
                kwargs["region_name"] = region
            if endpoint_url:
                kwargs["endpoint_url"] = endpoint_url
            client = boto3.client("s3", **kwargs)

        self._s3 = client
        self._bucket = bucket
        self._prefix = prefix.rstrip("/") + "/" if prefix else ""

    def _full_key(self, key: str) -> str:
        return f"{self._prefix}{check_key(key)}"

    async def put(self, key: str, content: bytes | str) -> None:
        full_key = self._full_key(key)
        body = content.encode("utf-8") if isinstance(content, str) else content
        self._s3.put_object(Bucket=self._bucket, Key=full_key, Body=body)
        logger.debug("S3 put: s3://%s/%s (%d bytes)", self._bucket, full_key, len(body))

    async def get(self, key: str) -> bytes:
        try:
            response = self._s3.get_object(Bucket=self._bucket, Key=self._full_key(key))
        except self._s3.exceptions.NoSuchKey as e:
            raise BlobNotFoundError(key) from e
        return response["Body"].read()

    async def exists(self, key: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            self._s3.head_object(Bucket=self._bucket, Key=self._full_key(key))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        return True

    async def delete(self, key: str) -> None:
        self._s3.delete_object(Bucket=self._bucket, Key=self._full_key(key))

    async def list_prefix(self, prefix: str) -> list[str]:
        sub = prefix.strip("/")
        full_prefix = f"{self._prefix}{sub}/" if sub else self._prefix
        paginator = self._s3.get_paginator("list_objects_v2")
        keys: list[str] = []
        for page in paginator.paginate(Bucket=self._bucket, Prefix=full_prefix):
            for obj in page.get("Contents", []):
                keys.append(obj["Key"][len(self._prefix):])
        return sorted(keys)
