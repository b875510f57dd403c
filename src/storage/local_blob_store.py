# src/storage/local_blob_store.py — v1
"""Local filesystem blob store (default backend)."""

from __future__ import annotations

from pathlib import Path

from galley.storage.base_blob_store import BaseBlobStore, BlobNotFoundError, check_key


class LocalBlobStore(BaseBlobStore):
    """Store blobs as files under a root directory."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, key: str) -> Path:
        return self._root / check_key(key)

    async def put(self, key: str, content: bytes | str) -> None:
        p = self._resolve(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        data = content.encode("utf-8") if isinstance(content, str) else content
        tmp = p.with_name(p.name + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(p)

    async def get(self, key: str) -> bytes:
        p = self._resolve(key)
        try:
            return p.read_bytes()
        except FileNotFoundError as e:
            raise BlobNotFoundError(key) from e

    async def exists(self, key: str) -> bool:
        return self._resolve(key).is_file()

    async def delete(self, key: str) -> None:
        self._resolve(key).unlink(missing_ok=True)

    async def list_prefix(self, prefix: str) -> list[str]:
        base = self._root / prefix.strip("/") if prefix.strip("/") else self._root
        if not base.is_dir():
            return []
        return sorted(
            p.relative_to(self._root).as_posix()
            for p in base.rglob("*")
            if p.is_file() and not p.name.endswith(".tmp")
        )
