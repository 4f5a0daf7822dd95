"""
LocalPersistenceBridge — keeps not-yet-finished recordings across a reload.

Audio lives in a BlobStorePort under the queue item id; the list of locally
known jobs lives in a MetadataStorePort as one JSON QueueSnapshot. Neither
is authoritative for item state: after a reload the orchestrator re-reads
every entry from QueueService.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable

from scribequeue.core import codec
from scribequeue.domain.jobs import Job, QueueSnapshot, SnapshotEntry
from scribequeue.domain.models import utcnow
from scribequeue.ports.persistence import BlobStorePort, MetadataStorePort


@dataclasses.dataclass
class LocalPersistenceBridge:
    blobs: BlobStorePort
    metadata: MetadataStorePort

    async def put_audio(self, item_id: str, audio: bytes) -> None:
        await self.blobs.put(item_id, audio)

    async def get_audio(self, item_id: str) -> bytes | None:
        return await self.blobs.get(item_id)

    async def discard(self, item_id: str) -> None:
        await self.blobs.delete(item_id)

    async def save_jobs(self, jobs: Iterable[Job]) -> None:
        snapshot = QueueSnapshot(
            entries=tuple(SnapshotEntry.from_job(j) for j in jobs),
            saved_at=utcnow(),
        )
        await self.metadata.save(codec.encode_snapshot(snapshot))

    async def load_entries(self) -> tuple[SnapshotEntry, ...]:
        return codec.decode_snapshot(await self.metadata.load()).entries
