"""
ReconciliationGuard — last look at the notes list before accepting a
negative outcome.

The transcription and note-creation services are not transactionally linked:
a note can exist server-side while the client saw FAILED, a timeout or a
network error. Before a job is finalised as failed/timeout the orchestrator
asks this guard whether a note that plausibly belongs to the job exists.

Matching, over one newest-first page of recent notes:
  1. a note whose correlation_id equals the job's item id  → CORRELATED
  2. notes carrying some other correlation_id are skipped
  3. otherwise the newest note created after the job's submission time and
     within `window` of now                                  → TIME_WINDOW

Rule 3 is a heuristic. Two recordings for the same patient submitted inside
the window can be matched to each other's note; callers surface
TIME_WINDOW matches to the user as "please verify".
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict

from scribequeue.domain.errors import ReconciliationAmbiguous
from scribequeue.domain.jobs import Job
from scribequeue.domain.messages import Note
from scribequeue.domain.models import utcnow
from scribequeue.log import get_logger
from scribequeue.ports.collaborators import NotesPort

logger = get_logger(__name__)


class MatchKind(str, Enum):
    CORRELATED = "correlated"
    TIME_WINDOW = "time_window"


class NoteMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    note: Note
    kind: MatchKind


@dataclasses.dataclass
class ReconciliationGuard:
    """
    Parameters
    ----------
    notes     : note-creation collaborator (only list_recent_notes is used)
    window    : how far back from now a matching note may have been created
    page_size : how many recent notes to inspect
    """

    notes: NotesPort
    window: timedelta = timedelta(minutes=5)
    page_size: int = 10
    clock: Callable[[], datetime] = utcnow

    async def reconcile(
        self, job: Job, owner_id: str | None = None
    ) -> NoteMatch | None:
        """Best effort: listing failures count as "no match"."""
        try:
            recent = await self.notes.list_recent_notes(page=1, limit=self.page_size)
        except Exception as exc:
            logger.warning(
                "reconcile_listing_failed", item_id=job.item_id, error=str(exc)
            )
            return None

        floor = self.clock() - self.window
        since = job.reference_time
        fallback: Note | None = None
        for note in recent:
            if owner_id is not None and note.owner_id not in (None, owner_id):
                continue
            if note.correlation_id is not None:
                if note.correlation_id == job.item_id:
                    return NoteMatch(note=note, kind=MatchKind.CORRELATED)
                continue
            if fallback is None and note.created_at > since and note.created_at >= floor:
                fallback = note

        if fallback is None:
            return None
        return NoteMatch(note=fallback, kind=MatchKind.TIME_WINDOW)

    async def confirm(self, job: Job, owner_id: str | None = None) -> NoteMatch:
        """Like reconcile(), but raises ReconciliationAmbiguous when nothing matches."""
        match = await self.reconcile(job, owner_id)
        if match is None:
            raise ReconciliationAmbiguous(job.item_id)
        logger.info(
            "reconciled_note_found",
            item_id=job.item_id,
            note_id=match.note.id,
            kind=match.kind.value,
        )
        return match
