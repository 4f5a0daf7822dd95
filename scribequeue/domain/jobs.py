"""
Client-side job models.

A Job is the orchestrator's view of one recording, tracked from
``recorded`` to a terminal state. It caches the latest QueueItem returned
by QueueService; the queue store stays the source of truth.

    recorded ──► processing ──► completed
                     ├────────► failed
                     └────────► timeout
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from scribequeue.domain.models import MedicalContext, PatientInfo, QueueItem, utcnow


class JobState(str, Enum):
    RECORDED = "recorded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.TIMEOUT)


class NextAction(str, Enum):
    """What the user is advised to do after a terminal outcome."""

    OPEN_NOTE = "open_note"
    RETRY = "retry"
    CHECK_NOTES = "check_notes"
    CONTACT_SUPPORT = "contact_support"


class ClinicalSnapshot(BaseModel):
    """Patient and clinical data captured once, at submission time."""

    model_config = ConfigDict(frozen=True)

    patient: PatientInfo = Field(default_factory=PatientInfo)
    medical_context: MedicalContext = Field(default_factory=MedicalContext)
    language: str = "en-US"
    note_type: str = "consultation"

    @classmethod
    def from_item(cls, item: QueueItem) -> ClinicalSnapshot:
        return cls(
            patient=item.patient or PatientInfo(),
            medical_context=item.medical_context or MedicalContext(),
            language=item.language,
        )


class Job(BaseModel):
    """
    item_id              — the queue item this job drives
    state                — local lifecycle state
    recorded_at          — when the audio was captured / enqueued
    submitted_at         — when the audio was handed to the transcription service
    transcription_job_id — upstream job id when the result is asynchronous
    payload_digest       — sha256 of the submitted audio (dedup identity)
    clinical             — data frozen at submission, used for note creation
    note_id              — created (or reconciled) medical note
    reconciled           — True when the note was found by reconciliation
    """

    model_config = ConfigDict(frozen=True)

    item_id: str
    state: JobState = JobState.RECORDED
    filename: str | None = None
    recorded_at: datetime = Field(default_factory=utcnow)
    submitted_at: datetime | None = None
    finished_at: datetime | None = None
    transcription_job_id: str | None = None
    payload_digest: str | None = None
    clinical: ClinicalSnapshot | None = None
    transcript: str | None = None
    note_id: str | None = None
    reconciled: bool = False
    error: str | None = None
    next_action: NextAction | None = None
    item: QueueItem | None = None

    @property
    def reference_time(self) -> datetime:
        """Earliest moment a matching note could have been created."""
        return self.submitted_at or self.recorded_at

    def with_item(self, item: QueueItem) -> Job:
        return self.model_copy(update={"item": item})

    def evolve(self, **update: Any) -> Job:
        return self.model_copy(update=update)


class SnapshotEntry(BaseModel):
    """One locally known job, as persisted by the LocalPersistenceBridge."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    state: JobState
    recorded_at: datetime
    filename: str | None = None
    error: str | None = None
    submitted_at: datetime | None = None
    transcription_job_id: str | None = None
    clinical: ClinicalSnapshot | None = None

    @classmethod
    def from_job(cls, job: Job) -> SnapshotEntry:
        return cls(
            item_id=job.item_id,
            state=job.state,
            recorded_at=job.recorded_at,
            filename=job.filename,
            error=job.error,
            submitted_at=job.submitted_at,
            transcription_job_id=job.transcription_job_id,
            clinical=job.clinical,
        )


class QueueSnapshot(BaseModel):
    """JSON document kept in the metadata store so local jobs survive a reload."""

    model_config = ConfigDict(frozen=True)

    entries: tuple[SnapshotEntry, ...] = ()
    saved_at: datetime = Field(default_factory=utcnow)
