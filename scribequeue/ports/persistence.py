"""
Client-local persistence ports used by LocalPersistenceBridge.

BlobStorePort holds raw audio keyed by queue item id; MetadataStorePort
holds a single JSON snapshot of locally known jobs. Both are scoped to one
client and are not shared across devices.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class BlobStorePort(Protocol):
    async def put(self, key: str, data: bytes) -> None: ...

    async def get(self, key: str) -> bytes | None:
        """Return the blob, or None if no blob is stored under key."""
        ...

    async def delete(self, key: str) -> None:
        """Delete the blob. Deleting a missing key is a no-op."""
        ...


@runtime_checkable
class MetadataStorePort(Protocol):
    async def load(self) -> bytes:
        """Return the stored document, or b"" if nothing was saved yet."""
        ...

    async def save(self, content: bytes) -> None: ...
