"""
LocalFileSystemStorage — a queue state document on the local disk.

Suitable for a single workstation or a single-host deployment where every
QueueStore shares one filesystem. Not for NFS or multi-host setups.

Etag strategy
-------------
The etag is the SHA-256 of the document bytes: deterministic and always
different when content differs. A missing or 0-byte file counts as "no
document yet" (etag None).

CAS semantics
-------------
write() takes an exclusive fcntl.flock on the file, recomputes the etag of
what is currently there and raises CASConflictError if it differs from
if_match. Truncate and write happen under the same lock. Blocking I/O runs
in asyncio.to_thread so the event loop is never blocked.
"""

from __future__ import annotations

import asyncio
import fcntl
import hashlib
import os
from pathlib import Path

from scribequeue.domain.errors import CASConflictError, StorageError


def _digest(data: bytes) -> str | None:
    return hashlib.sha256(data).hexdigest() if data else None


class LocalFileSystemStorage:
    """
    Parameters
    ----------
    path : the JSON state file; parent directories are created on first write
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"LocalFileSystemStorage(path={str(self.path)!r})"

    async def read(self) -> tuple[bytes, str | None]:
        try:
            return await asyncio.to_thread(self._read_locked)
        except OSError as exc:
            raise StorageError(f"reading {self.path} failed", exc) from exc

    async def write(
        self,
        content: bytes,
        if_match: str | None = None,
    ) -> str:
        if not content:
            raise ValueError("an empty document cannot be written; it reads back as missing")
        try:
            return await asyncio.to_thread(self._write_locked, content, if_match)
        except OSError as exc:
            raise StorageError(f"writing {self.path} failed", exc) from exc

    # ------------------------------------------------------------------ #
    # Blocking halves (run in a worker thread)                            #
    # ------------------------------------------------------------------ #

    def _read_locked(self) -> tuple[bytes, str | None]:
        if not self.path.exists():
            return b"", None
        with open(self.path, "rb") as fh:
            fcntl.flock(fh, fcntl.LOCK_SH)
            try:
                content = fh.read()
            finally:
                fcntl.flock(fh, fcntl.LOCK_UN)
        return content, _digest(content)

    def _write_locked(self, content: bytes, if_match: str | None) -> str:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            current = _digest(os.read(fd, os.fstat(fd).st_size))
            if current != if_match:
                raise CASConflictError(
                    f"{self.path} changed underneath: expected {if_match!r}, found {current!r}"
                )
            os.ftruncate(fd, 0)
            os.lseek(fd, 0, os.SEEK_SET)
            os.write(fd, content)
            os.fsync(fd)
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)
        return hashlib.sha256(content).hexdigest()
