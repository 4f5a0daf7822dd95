"""
ObjectStoragePort — where the QueueStore keeps its single state document.

Any object satisfying this structural Protocol can back the queue. No base
class or registration is required.

CAS write contract
------------------
write(content, if_match=None)
  - if if_match is None  → the document must not exist yet (first write)
  - if if_match is given → conditional put
      succeeds → storage returns the new etag (opaque str)
      fails    → raises CASConflictError

read()
  - Returns (content_bytes, etag_string)
  - If the document does not exist, returns (b"", None)
    (the caller treats this as an empty queue)
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class ObjectStoragePort(Protocol):
    """
    Minimal interface required by QueueStore.

    Built-in adapters:
      - InMemoryStorage        — asyncio.Lock-based, for tests and simulations
      - LocalFileSystemStorage — fcntl.flock-based, POSIX single-machine
    """

    async def read(self) -> tuple[bytes, str | None]:
        """
        Read the current state document.

        Returns
        -------
        content : bytes
            Raw bytes. Empty bytes (b"") if nothing has been written yet.
        etag : str | None
            Opaque version token to pass back to write() as if_match.
        """
        ...

    async def write(
        self,
        content: bytes,
        if_match: str | None = None,
    ) -> str:
        """
        Atomically replace the state document.

        Raises
        ------
        CASConflictError   if if_match does not match the current etag
        StorageError       for any other I/O failure
        """
        ...
