"""
Directory-backed client persistence.

DirectoryBlobStore keeps one file per queue item id; FileMetadataStore keeps
the job snapshot in a single JSON file. Writes go to a temporary sibling
first and are moved into place with os.replace, so a crash never leaves a
half-written blob or snapshot behind. Blocking I/O runs in asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
import os
import re
from pathlib import Path

from scribequeue.domain.errors import StorageError

_SAFE_KEY = re.compile(r"^[A-Za-z0-9._-]+$")


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    with open(tmp, "wb") as fh:
        fh.write(data)
        fh.flush()
        os.fsync(fh.fileno())
    os.replace(tmp, path)


def _read_or_none(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


class DirectoryBlobStore:
    """
    Parameters
    ----------
    root : directory holding one ``<key>.bin`` file per blob
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"DirectoryBlobStore(root={str(self.root)!r})"

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"invalid blob key: {key!r}")
        return self.root / f"{key}.bin"

    async def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(_atomic_write, path, data)
        except OSError as exc:
            raise StorageError(f"storing blob {key!r} failed", exc) from exc

    async def get(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            return await asyncio.to_thread(_read_or_none, path)
        except OSError as exc:
            raise StorageError(f"reading blob {key!r} failed", exc) from exc

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as exc:
            raise StorageError(f"deleting blob {key!r} failed", exc) from exc


class FileMetadataStore:
    """
    Parameters
    ----------
    path : the JSON snapshot file
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"FileMetadataStore(path={str(self.path)!r})"

    async def load(self) -> bytes:
        try:
            content = await asyncio.to_thread(_read_or_none, self.path)
        except OSError as exc:
            raise StorageError(f"reading {self.path} failed", exc) from exc
        return content or b""

    async def save(self, content: bytes) -> None:
        try:
            await asyncio.to_thread(_atomic_write, self.path, content)
        except OSError as exc:
            raise StorageError(f"writing {self.path} failed", exc) from exc
