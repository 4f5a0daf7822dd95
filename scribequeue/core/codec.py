"""
Codec — serialize and deserialize the persisted documents using Pydantic v2.

Two documents are persisted:
  - QueueState    — the queue store's single source of truth
  - QueueSnapshot — the client-local list of known jobs

Wire format of a QueueState (produced by model_dump_json):
---------------------------------------------------------
{
  "items": [
    {
      "id": "550e8400-...",
      "owner_id": "dr-lee",
      "payload": {"size": 48213, "mime_type": "audio/webm", "location": "visit.webm"},
      "priority": "normal",
      "status": "pending",
      "position": 1,
      "retry_count": 0,
      "created_at": "2024-01-01T00:00:00Z",
      "expires_at": "2024-01-31T00:00:00Z",
      ...
    }
  ],
  "positions": {"dr-lee/-": 1},
  "version": 1
}
"""

from __future__ import annotations

from scribequeue.domain.jobs import QueueSnapshot
from scribequeue.domain.models import QueueState


def encode(state: QueueState) -> bytes:
    """Serialize QueueState to UTF-8 JSON bytes."""
    return state.model_dump_json(indent=2).encode("utf-8")


def decode(data: bytes) -> QueueState:
    """Deserialize UTF-8 JSON bytes to QueueState. Empty bytes → empty state."""
    if not data:
        return QueueState()
    return QueueState.model_validate_json(data)


def encode_snapshot(snapshot: QueueSnapshot) -> bytes:
    return snapshot.model_dump_json().encode("utf-8")


def decode_snapshot(data: bytes) -> QueueSnapshot:
    """Empty bytes → empty snapshot."""
    if not data:
        return QueueSnapshot()
    return QueueSnapshot.model_validate_json(data)
