"""
InMemoryStorage — asyncio.Lock-based CAS for tests and simulations.

Keeps the queue state document as bytes in memory. Every successful write
bumps a counter that doubles as the etag, which is how real object stores
behave from the queue's point of view.

Safe for many coroutines in one event loop. NOT safe across processes or
threads, and everything is lost when the process exits.
"""

from __future__ import annotations

import asyncio
import dataclasses

from scribequeue.domain.errors import CASConflictError


@dataclasses.dataclass
class InMemoryStorage:
    """
    Parameters
    ----------
    initial_content : optional pre-populated state document (etag "0")
    """

    initial_content: bytes = b""

    def __post_init__(self) -> None:
        self._content: bytes = self.initial_content
        self._etag: str | None = "0" if self.initial_content else None
        self._writes: int = 0
        self._lock: asyncio.Lock = asyncio.Lock()

    @property
    def writes(self) -> int:
        """Number of successful writes so far."""
        return self._writes

    async def read(self) -> tuple[bytes, str | None]:
        async with self._lock:
            return self._content, self._etag

    async def write(
        self,
        content: bytes,
        if_match: str | None = None,
    ) -> str:
        """Replace the document. Raises CASConflictError if if_match is stale."""
        async with self._lock:
            if if_match != self._etag:
                raise CASConflictError(
                    f"state changed underneath: expected {if_match!r}, found {self._etag!r}"
                )
            self._writes += 1
            self._etag = str(self._writes)
            self._content = content
            return self._etag
