"""
scribequeue — a durable, prioritized queue of audio recordings and the
client-side orchestration that turns each recording into a medical note.

Recordings are queued per owner (and optionally per organization), ordered
by priority and then by a position that is never reused. The queue state is
a single JSON document; every mutation is a compare-and-set (CAS) write, so
several processes can share it safely.

A JobOrchestrator takes one recording at a time through transcription,
polling and note creation. Before it accepts a failed or timed out outcome
it checks the recent notes list, because the note may already exist.

Quick start
-----------
    import asyncio
    from scribequeue import (
        InMemoryStorage,
        JobOrchestrator,
        LocalPersistenceBridge,
        QueueService,
        QueueStore,
    )
    from scribequeue.adapters.collaborators.memory import (
        InMemoryNotes,
        ScriptedTranscription,
    )
    from scribequeue.adapters.persistence.memory import (
        InMemoryBlobStore,
        InMemoryMetadataStore,
    )

    async def main():
        service = QueueService(QueueStore(InMemoryStorage()))
        bridge = LocalPersistenceBridge(InMemoryBlobStore(), InMemoryMetadataStore())

        async with JobOrchestrator.from_settings(
            service=service,
            transcription=ScriptedTranscription(),
            notes=InMemoryNotes(),
            bridge=bridge,
        ) as orchestrator:
            job = await orchestrator.enqueue(
                b"\\x1a" * 4096, owner_id="dr-lee", filename="visit.webm"
            )
            await orchestrator.process(job.item_id)
            job = await orchestrator.wait(job.item_id)
            print(job.state, job.note_id)

    asyncio.run(main())

Architecture
------------
Follows the Ports & Adapters pattern:
  domain/   — pure value types (QueueItem, QueueState, Job, errors)
  ports/    — Protocol interfaces (storage, persistence, collaborators)
  core/     — business logic (QueueStore, QueueService, JobOrchestrator, ...)
  adapters/ — concrete storage, persistence and collaborator implementations
"""
from __future__ import annotations

from scribequeue.adapters.storage.filesystem import LocalFileSystemStorage
from scribequeue.adapters.storage.memory import InMemoryStorage
from scribequeue.config import QueueSettings, get_settings
from scribequeue.core.bridge import LocalPersistenceBridge
from scribequeue.core.orchestrator import JobOrchestrator
from scribequeue.core.reconcile import ReconciliationGuard
from scribequeue.core.service import QueueService
from scribequeue.core.store import QueueStore
from scribequeue.domain.errors import (
    CASConflictError,
    DuplicateSubmission,
    InvalidPayload,
    InvalidTransition,
    ItemNotFoundError,
    ProcessingBusy,
    ReconciliationAmbiguous,
    RetryExhausted,
    ScribeQueueError,
    StorageError,
    SubmissionRejected,
    TranscriptionError,
    TranscriptionTransientError,
    TranscriptionUnknownJob,
)
from scribequeue.domain.jobs import ClinicalSnapshot, Job, JobState, NextAction
from scribequeue.domain.models import (
    EnqueueRequest,
    ItemStatus,
    MedicalContext,
    PatientInfo,
    PayloadRef,
    Priority,
    QueueItem,
    QueueState,
    QueueStats,
    Scope,
    TranscriptionResult,
    Urgency,
    VisitType,
)
from scribequeue.log import configure_logging
from scribequeue.ports.collaborators import NotesPort, TranscriptionPort
from scribequeue.ports.persistence import BlobStorePort, MetadataStorePort
from scribequeue.ports.storage import ObjectStoragePort

__all__ = [
    # Domain models
    "EnqueueRequest",
    "ItemStatus",
    "MedicalContext",
    "PatientInfo",
    "PayloadRef",
    "Priority",
    "QueueItem",
    "QueueState",
    "QueueStats",
    "Scope",
    "TranscriptionResult",
    "Urgency",
    "VisitType",
    "ClinicalSnapshot",
    "Job",
    "JobState",
    "NextAction",
    # Errors
    "ScribeQueueError",
    "CASConflictError",
    "ItemNotFoundError",
    "StorageError",
    "InvalidPayload",
    "InvalidTransition",
    "RetryExhausted",
    "SubmissionRejected",
    "ProcessingBusy",
    "DuplicateSubmission",
    "TranscriptionError",
    "TranscriptionUnknownJob",
    "TranscriptionTransientError",
    "ReconciliationAmbiguous",
    # Ports (for typing custom adapters)
    "ObjectStoragePort",
    "BlobStorePort",
    "MetadataStorePort",
    "TranscriptionPort",
    "NotesPort",
    # Services
    "QueueStore",
    "QueueService",
    "JobOrchestrator",
    "LocalPersistenceBridge",
    "ReconciliationGuard",
    # Configuration
    "QueueSettings",
    "get_settings",
    "configure_logging",
    # Built-in storage adapters
    "InMemoryStorage",
    "LocalFileSystemStorage",
]
