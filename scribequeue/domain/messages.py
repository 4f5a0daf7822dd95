"""
Value types exchanged with the transcription and note-creation collaborators.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator


class PollStatus(str, Enum):
    QUEUED = "QUEUED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_working(self) -> bool:
        return self in (PollStatus.QUEUED, PollStatus.IN_PROGRESS)


class SubmitResult(BaseModel):
    """
    Answer to a submission: either an upstream job id to poll, or an
    immediate transcript. ``note_id`` is set when the service already
    saved a note on our behalf.
    """

    model_config = ConfigDict(frozen=True)

    job_id: str | None = None
    transcript: str | None = None
    note_id: str | None = None
    confidence: float | None = None

    @model_validator(mode="after")
    def _job_or_result(self) -> SubmitResult:
        if self.job_id is None and self.transcript is None:
            raise ValueError("SubmitResult needs a job_id or a transcript")
        return self


class PollResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: PollStatus
    transcript: str | None = None
    error: str | None = None
    confidence: float | None = None


class NoteDraft(BaseModel):
    """Everything needed to create a medical note from a transcript."""

    model_config = ConfigDict(frozen=True)

    patient_name: str | None = None
    patient_age: int | None = None
    patient_gender: str | None = None
    chief_complaint: str | None = None
    transcript: str
    language: str = "en-US"
    note_type: str = "consultation"
    audio_job_id: str | None = None
    correlation_id: str | None = None


class Note(BaseModel):
    """A note as returned by the most-recent-notes listing."""

    model_config = ConfigDict(frozen=True)

    id: str
    created_at: datetime
    owner_id: str | None = None
    patient_name: str | None = None
    correlation_id: str | None = None
