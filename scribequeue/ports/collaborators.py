"""
External collaborators consumed by the orchestrator.

TranscriptionPort
  submit(audio, patient_hint, language) -> SubmitResult
  poll(job_id) -> PollResult
      raises TranscriptionUnknownJob      for a 404-class answer
      raises TranscriptionTransientError  for network / 5xx failures

NotesPort
  create_note(draft) -> note id
  list_recent_notes(page, limit) -> newest-first notes
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from scribequeue.domain.messages import Note, NoteDraft, PollResult, SubmitResult
from scribequeue.domain.models import PatientInfo


@runtime_checkable
class TranscriptionPort(Protocol):
    async def submit(
        self,
        audio: bytes,
        patient_hint: PatientInfo,
        language: str,
    ) -> SubmitResult: ...

    async def poll(self, job_id: str) -> PollResult: ...


@runtime_checkable
class NotesPort(Protocol):
    async def create_note(self, draft: NoteDraft) -> str: ...

    async def list_recent_notes(self, page: int, limit: int) -> Sequence[Note]: ...
