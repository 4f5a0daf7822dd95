"""
SubmissionGuard — suppresses repeated submissions.

Two independent windows:
  - debounce (default 500 ms) per user action, e.g. ("process", item_id),
    absorbing rapid double-clicks
  - dedup (default 30 s) per payload identity (sha256 of the audio bytes),
    so the same recording is not sent to the transcription service twice

Keys are remembered only for the length of their window and pruned lazily.
"""

from __future__ import annotations

import dataclasses
import hashlib
from collections.abc import Callable
from datetime import datetime, timedelta

from scribequeue.domain.errors import DuplicateSubmission
from scribequeue.domain.models import utcnow


def payload_digest(audio: bytes) -> str:
    """Identity of an audio payload."""
    return hashlib.sha256(audio).hexdigest()


@dataclasses.dataclass
class SubmissionGuard:
    window: timedelta = timedelta(seconds=30)
    debounce: timedelta = timedelta(milliseconds=500)
    clock: Callable[[], datetime] = utcnow

    _payloads: dict[str, datetime] = dataclasses.field(
        default_factory=dict, init=False, repr=False
    )
    _actions: dict[str, datetime] = dataclasses.field(
        default_factory=dict, init=False, repr=False
    )

    def debounce_action(self, action: str) -> None:
        """Record a user action; raise DuplicateSubmission if it repeats within debounce."""
        now = self.clock()
        _prune(self._actions, now - self.debounce)
        if action in self._actions:
            raise DuplicateSubmission(f"{action!r} was triggered moments ago")
        self._actions[action] = now

    def claim_payload(self, digest: str) -> None:
        """Record a payload submission; raise DuplicateSubmission if seen within window."""
        now = self.clock()
        _prune(self._payloads, now - self.window)
        if digest in self._payloads:
            raise DuplicateSubmission(
                "this recording was submitted less than "
                f"{int(self.window.total_seconds())}s ago"
            )
        self._payloads[digest] = now

    def release_payload(self, digest: str) -> None:
        """Forget a payload whose submission never reached the transcription service."""
        self._payloads.pop(digest, None)


def _prune(seen: dict[str, datetime], cutoff: datetime) -> None:
    for key in [k for k, ts in seen.items() if ts <= cutoff]:
        del seen[key]
