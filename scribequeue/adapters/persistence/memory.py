"""
In-memory client persistence, for tests and simulations.

Nothing survives the process; use the filesystem adapters when a reload
should find the local queue again.
"""

from __future__ import annotations

import dataclasses


@dataclasses.dataclass
class InMemoryBlobStore:
    blobs: dict[str, bytes] = dataclasses.field(default_factory=dict)

    async def put(self, key: str, data: bytes) -> None:
        self.blobs[key] = data

    async def get(self, key: str) -> bytes | None:
        return self.blobs.get(key)

    async def delete(self, key: str) -> None:
        self.blobs.pop(key, None)


@dataclasses.dataclass
class InMemoryMetadataStore:
    content: bytes = b""
    saves: int = 0

    async def load(self) -> bytes:
        return self.content

    async def save(self, content: bytes) -> None:
        self.content = content
        self.saves += 1
