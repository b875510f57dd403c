# src/storage/blob_store_factory.py — v1
"""Factory: instantiate the blob store from configuration."""

from __future__ import annotations

from galley.config.settings import Settings
from galley.storage.base_blob_store import BaseBlobStore
from galley.storage.local_blob_store import LocalBlobStore


def create_blob_store(settings: Settings) -> BaseBlobStore:
    """Create the configured blob store (BLOB_BACKEND=local|s3).

    Raises:
        ValueError: If the backend is not supported.
    """
    if settings.blob_backend == "local":
        return LocalBlobStore(settings.blob_root)

    if settings.blob_backend == "s3":
        from galley.storage.s3_blob_store import S3BlobStore

        return S3BlobStore(
            bucket=settings.blob_s3_bucket,
            prefix=settings.blob_s3_prefix,
            region=settings.blob_s3_region or None,
        )

    raise ValueError(f"Unsupported blob backend: {settings.blob_backend!r}")
