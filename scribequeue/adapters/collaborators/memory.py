"""
Scripted in-memory collaborators for tests and the simulation tool.

ScriptedTranscription plays back a poll script per upstream job: each poll
consumes the next entry (a PollResult, or an exception to raise) and the last
entry repeats forever. InMemoryNotes stores notes in a list and lists them
newest first, the way the notes service does.
"""

from __future__ import annotations

import dataclasses
import itertools
from collections.abc import Callable, Sequence
from datetime import datetime

from scribequeue.domain.errors import TranscriptionUnknownJob
from scribequeue.domain.messages import (
    Note,
    NoteDraft,
    PollResult,
    PollStatus,
    SubmitResult,
)
from scribequeue.domain.models import PatientInfo, utcnow

ScriptEntry = PollResult | Exception


def completed(transcript: str = "Patient reports mild headache.") -> PollResult:
    return PollResult(status=PollStatus.COMPLETED, transcript=transcript, confidence=0.93)


@dataclasses.dataclass
class ScriptedTranscription:
    """
    Parameters
    ----------
    script       : poll script given to every new upstream job
    immediate    : when set, submit() answers with this result instead of a job id
    submit_error : when set, submit() raises it
    """

    script: list[ScriptEntry] = dataclasses.field(default_factory=lambda: [completed()])
    immediate: SubmitResult | None = None
    submit_error: Exception | None = None

    submissions: list[tuple[bytes, PatientInfo, str]] = dataclasses.field(
        default_factory=list, init=False
    )
    polls: dict[str, int] = dataclasses.field(default_factory=dict, init=False)
    _scripts: dict[str, list[ScriptEntry]] = dataclasses.field(
        default_factory=dict, init=False, repr=False
    )
    _ids: itertools.count = dataclasses.field(
        default_factory=lambda: itertools.count(1), init=False, repr=False
    )

    async def submit(
        self, audio: bytes, patient_hint: PatientInfo, language: str
    ) -> SubmitResult:
        self.submissions.append((audio, patient_hint, language))
        if self.submit_error is not None:
            raise self.submit_error
        if self.immediate is not None:
            return self.immediate
        job_id = f"tx-{next(self._ids)}"
        self._scripts[job_id] = list(self.script)
        return SubmitResult(job_id=job_id)

    def script_for(self, job_id: str, script: list[ScriptEntry]) -> None:
        """Replace what the remaining polls of `job_id` will see."""
        self._scripts[job_id] = list(script)
        self.polls[job_id] = 0

    async def poll(self, job_id: str) -> PollResult:
        script = self._scripts.get(job_id)
        if script is None:
            raise TranscriptionUnknownJob(job_id)
        count = self.polls.get(job_id, 0)
        self.polls[job_id] = count + 1
        entry = script[min(count, len(script) - 1)]
        if isinstance(entry, Exception):
            raise entry
        return entry


@dataclasses.dataclass
class InMemoryNotes:
    """
    Parameters
    ----------
    owner_id         : owner stamped on created notes
    create_error     : when set, create_note() stores the note and then raises it,
                       like a response lost after the server committed
    drop_correlation : create notes without a correlation id
    """

    owner_id: str | None = None
    create_error: Exception | None = None
    list_error: Exception | None = None
    drop_correlation: bool = False
    clock: Callable[[], datetime] = utcnow

    notes: list[Note] = dataclasses.field(default_factory=list, init=False)
    drafts: list[NoteDraft] = dataclasses.field(default_factory=list, init=False)
    _ids: itertools.count = dataclasses.field(
        default_factory=lambda: itertools.count(1), init=False, repr=False
    )

    def add(
        self,
        *,
        created_at: datetime | None = None,
        correlation_id: str | None = None,
        patient_name: str | None = None,
    ) -> Note:
        """Put a note on the server without going through create_note()."""
        note = Note(
            id=f"note-{next(self._ids)}",
            created_at=created_at or self.clock(),
            owner_id=self.owner_id,
            patient_name=patient_name,
            correlation_id=correlation_id,
        )
        self.notes.append(note)
        return note

    async def create_note(self, draft: NoteDraft) -> str:
        self.drafts.append(draft)
        note = self.add(
            correlation_id=None if self.drop_correlation else draft.correlation_id,
            patient_name=draft.patient_name,
        )
        if self.create_error is not None:
            raise self.create_error
        return note.id

    async def list_recent_notes(self, page: int, limit: int) -> Sequence[Note]:
        if self.list_error is not None:
            raise self.list_error
        newest_first = sorted(self.notes, key=lambda n: n.created_at, reverse=True)
        start = (page - 1) * limit
        return newest_first[start : start + limit]
