# src/storage/base_blob_store.py — v1
"""Abstract blob store interface.

Keys are relative, slash-separated paths such as
``{reportId}/{agentKind}.json`` or ``{manuscriptId}/source``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class BlobNotFoundError(FileNotFoundError):
    """No blob stored under the key."""


def check_key(key: str) -> str:
    """Reject absolute keys and parent-directory segments."""
    parts = key.split("/")
    if not key or key.startswith("/") or any(p in ("", "..", ".") for p in parts):
        raise ValueError(f"Invalid blob key: {key!r}")
    return key


class BaseBlobStore(ABC):
    """Unified interface for blob storage backends."""

    @abstractmethod
    async def put(self, key: str, content: bytes | str) -> None:
        """Write content under the key, replacing any previous blob."""

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Read a blob. Raises BlobNotFoundError if absent."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if a blob exists."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a blob; missing keys are ignored."""

    @abstractmethod
    async def list_prefix(self, prefix: str) -> list[str]:
        """Keys under a prefix, sorted."""
