"""
Queue domain models for scribequeue — backed by Pydantic v2.

Pydantic handles:
  - JSON serialization / deserialization (via codec.py)
  - datetime / timedelta parsing (ISO-8601)
  - field validation and type coercion

All models are frozen (immutable). Mutations return new instances via
model_copy(update=...), following a functional-update style. Status changes
only happen through QueueItem.with_status() and QueueItem.requeued(), which
enforce the transition table below; there is no generic "set status" path.

    pending ──► processing ──► completed
       │             └───────► failed ──(retry)──► pending
       └──► cancelled
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from scribequeue.domain.errors import InvalidTransition, ItemNotFoundError, RetryExhausted


def utcnow() -> datetime:
    return datetime.now(UTC)


class Priority(str, Enum):
    """Queue priority tiers, most urgent first."""

    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Lower rank is served first."""
        return _PRIORITY_RANK[self]

    @classmethod
    def most_urgent(cls, *priorities: Priority) -> Priority:
        return min(priorities, key=lambda p: p.rank)


_PRIORITY_RANK: dict[Priority, int] = {
    Priority.URGENT: 0,
    Priority.HIGH: 1,
    Priority.NORMAL: 2,
    Priority.LOW: 3,
}


class ItemStatus(str, Enum):
    """Lifecycle states for a queued recording."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({ItemStatus.COMPLETED, ItemStatus.FAILED, ItemStatus.CANCELLED})

# failed -> pending is deliberately absent: it is only reachable via requeued().
TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.PENDING: frozenset({ItemStatus.PROCESSING, ItemStatus.CANCELLED}),
    ItemStatus.PROCESSING: frozenset({ItemStatus.COMPLETED, ItemStatus.FAILED}),
    ItemStatus.COMPLETED: frozenset(),
    ItemStatus.FAILED: frozenset(),
    ItemStatus.CANCELLED: frozenset(),
}

# Fields a status transition may carry alongside the new status.
TRANSITION_FIELDS = frozenset(
    {"last_error", "error_details", "result", "created_note_id"}
)


class VisitType(str, Enum):
    CONSULTATION = "consultation"
    FOLLOW_UP = "follow-up"
    EMERGENCY = "emergency"
    ROUTINE = "routine"


class Urgency(str, Enum):
    IMMEDIATE = "immediate"
    SAME_DAY = "same-day"
    NEXT_DAY = "next-day"
    ROUTINE = "routine"


class PatientInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str | None = None
    age: int | None = None
    gender: str | None = None
    patient_id: str | None = None


class MedicalContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    chief_complaint: str | None = None
    visit_type: VisitType | None = None
    urgency: Urgency | None = None

    def escalated_priority(self) -> Priority | None:
        """Priority implied by the clinical context, or None if it implies nothing."""
        if self.urgency == Urgency.IMMEDIATE:
            return Priority.URGENT
        if self.visit_type == VisitType.EMERGENCY:
            return Priority.HIGH
        return None


class PayloadRef(BaseModel):
    """
    Opaque reference to an audio blob owned by the storage collaborator.

    size      — byte length of the audio
    mime_type — e.g. "audio/webm"
    location  — where the blob lives (file name, URL, blob key)
    """

    model_config = ConfigDict(frozen=True)

    size: int
    mime_type: str
    location: str


class TranscriptionResult(BaseModel):
    """Metadata about a finished transcription, stored on the queue item."""

    model_config = ConfigDict(frozen=True)

    raw_transcript: str | None = None
    confidence: float | None = None
    processing_time: timedelta | None = None
    transcription_job_id: str | None = None


class Scope(BaseModel):
    """Owner/organisation filter. A None field matches anything."""

    model_config = ConfigDict(frozen=True)

    owner_id: str | None = None
    org_id: str | None = None

    def matches(self, item: QueueItem) -> bool:
        if self.owner_id is not None and item.owner_id != self.owner_id:
            return False
        if self.org_id is not None and item.org_id != self.org_id:
            return False
        return True


def scope_key(owner_id: str, org_id: str | None) -> str:
    """Key of the (owner, org) position sequence."""
    return f"{owner_id}/{org_id or '-'}"


class QueueItem(BaseModel):
    """
    A single recording waiting for, undergoing or finished with transcription.

    id              — stable identifier, assigned at enqueue time
    owner_id        — user who recorded the audio
    org_id          — optional organisation the user belongs to
    payload         — reference to the audio blob
    priority        — urgent | high | normal | low
    status          — current lifecycle state
    position        — FIFO tiebreaker within a priority tier
    retry_count     — retries consumed so far (never above max_retries)
    result          — transcription metadata once available
    created_note_id — medical note created from this recording
    expires_at      — hard TTL; expired items are never served as "next"
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str
    org_id: str | None = None
    payload: PayloadRef
    priority: Priority = Priority.NORMAL
    status: ItemStatus = ItemStatus.PENDING
    position: int
    retry_count: int = 0
    max_retries: int = 3
    last_error: str | None = None
    error_details: dict[str, Any] | None = None
    result: TranscriptionResult | None = None
    created_note_id: str | None = None
    language: str = "en-US"
    patient: PatientInfo | None = None
    medical_context: MedicalContext | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    expires_at: datetime

    @model_validator(mode="after")
    def _check_retry_budget(self) -> QueueItem:
        if self.retry_count > self.max_retries:
            raise ValueError(
                f"retry_count {self.retry_count} exceeds max_retries {self.max_retries}"
            )
        return self

    @classmethod
    def new(
        cls,
        *,
        owner_id: str,
        payload: PayloadRef,
        position: int,
        ttl: timedelta,
        now: datetime,
        **fields: Any,
    ) -> QueueItem:
        """Factory — assigns a fresh UUID, status PENDING and expires_at = now + ttl."""
        return cls(
            owner_id=owner_id,
            payload=payload,
            position=position,
            created_at=now,
            updated_at=now,
            expires_at=now + ttl,
            **fields,
        )

    @property
    def scope_key(self) -> str:
        return scope_key(self.owner_id, self.org_id)

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.priority.rank, self.position)

    @property
    def retries_left(self) -> int:
        return self.max_retries - self.retry_count

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def is_eligible(self, now: datetime) -> bool:
        """True if this item may be returned by a "next item" query."""
        return self.status == ItemStatus.PENDING and not self.is_expired(now)

    def with_status(
        self, status: ItemStatus, now: datetime, **data: Any
    ) -> QueueItem:
        """
        Return a new QueueItem moved along one edge of the transition table.

        Stamps started_at on entry to PROCESSING and completed_at on entry to
        COMPLETED or FAILED. Only TRANSITION_FIELDS may ride along.
        """
        if status not in TRANSITIONS[self.status]:
            raise InvalidTransition(self.status.value, status.value)
        unknown = set(data) - TRANSITION_FIELDS
        if unknown:
            raise InvalidTransition(
                self.status.value,
                status.value,
                f"fields {sorted(unknown)} cannot be set by a transition",
            )
        update: dict[str, Any] = {"status": status, "updated_at": now, **data}
        if status == ItemStatus.PROCESSING:
            update["started_at"] = now
        elif status in (ItemStatus.COMPLETED, ItemStatus.FAILED):
            update["completed_at"] = now
        return self.model_copy(update=update)

    def with_priority(self, priority: Priority, now: datetime) -> QueueItem:
        if self.status != ItemStatus.PENDING:
            raise InvalidTransition(
                self.status.value,
                self.status.value,
                "priority can only change while pending",
            )
        return self.model_copy(update={"priority": priority, "updated_at": now})

    def requeued(self, position: int, now: datetime) -> QueueItem:
        """
        The failed -> pending retry edge.

        Consumes one retry, clears error fields and takes a fresh position
        behind everything currently pending.
        """
        if self.status != ItemStatus.FAILED:
            raise InvalidTransition(
                self.status.value, ItemStatus.PENDING.value, "only failed items can be retried"
            )
        if self.retry_count >= self.max_retries:
            raise RetryExhausted(self.id, self.retry_count, self.max_retries)
        return self.model_copy(
            update={
                "status": ItemStatus.PENDING,
                "retry_count": self.retry_count + 1,
                "position": position,
                "last_error": None,
                "error_details": None,
                "started_at": None,
                "completed_at": None,
                "updated_at": now,
            }
        )


class QueueState(BaseModel):
    """
    The complete, authoritative state of the queue.

    This is exactly what lives in the JSON document on storage.
    Pure value type — all mutations return new instances.

    items     — every queue item, in insertion order
    positions — highest position ever handed out per (owner, org) scope;
                survives deletions so positions are never reused
    version   — monotonically increasing counter, incremented on every write
    """

    model_config = ConfigDict(frozen=True)

    items: tuple[QueueItem, ...] = ()
    positions: dict[str, int] = Field(default_factory=dict)
    version: int = 0

    # ------------------------------------------------------------------ #
    # Query helpers                                                        #
    # ------------------------------------------------------------------ #

    def find(self, item_id: str) -> QueueItem | None:
        """Return the item with the given id, or None if absent."""
        return next((i for i in self.items if i.id == item_id), None)

    def get(self, item_id: str) -> QueueItem:
        item = self.find(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    def in_scope(self, scope: Scope | None = None) -> tuple[QueueItem, ...]:
        if scope is None:
            return self.items
        return tuple(i for i in self.items if scope.matches(i))

    def ordered(self, scope: Scope | None = None) -> tuple[QueueItem, ...]:
        """Items in scope sorted by (priority rank, position, created_at)."""
        return tuple(
            sorted(self.in_scope(scope), key=lambda i: (*i.sort_key, i.created_at))
        )

    def eligible_items(
        self, now: datetime, scope: Scope | None = None
    ) -> tuple[QueueItem, ...]:
        """PENDING, unexpired items sorted by (priority rank, position)."""
        candidates = (i for i in self.in_scope(scope) if i.is_eligible(now))
        return tuple(sorted(candidates, key=lambda i: i.sort_key))

    def next_eligible(
        self, now: datetime, scope: Scope | None = None
    ) -> QueueItem | None:
        eligible = self.eligible_items(now, scope)
        return eligible[0] if eligible else None

    def next_position(self, key: str) -> int:
        """Next unused position for a scope key."""
        highest = self.positions.get(key, 0)
        for item in self.items:
            if item.scope_key == key and item.position > highest:
                highest = item.position
        return highest + 1

    # ------------------------------------------------------------------ #
    # Mutation helpers — each returns a new QueueState                    #
    # ------------------------------------------------------------------ #

    def with_item_added(self, item: QueueItem) -> QueueState:
        """Append an item, record its position and increment version."""
        return self.model_copy(
            update={
                "items": self.items + (item,),
                "positions": self._positions_with(item),
                "version": self.version + 1,
            }
        )

    def with_item_replaced(self, updated: QueueItem) -> QueueState:
        """Replace the item with the same id. Raises ItemNotFoundError if absent."""
        found = False
        new_items: list[QueueItem] = []
        for i in self.items:
            if i.id == updated.id:
                new_items.append(updated)
                found = True
            else:
                new_items.append(i)
        if not found:
            raise ItemNotFoundError(updated.id)
        return self.model_copy(
            update={
                "items": tuple(new_items),
                "positions": self._positions_with(updated),
                "version": self.version + 1,
            }
        )

    def with_item_removed(self, item_id: str) -> QueueState:
        """Remove an item by id. Raises ItemNotFoundError if absent."""
        original_len = len(self.items)
        new_items = tuple(i for i in self.items if i.id != item_id)
        if len(new_items) == original_len:
            raise ItemNotFoundError(item_id)
        return self.model_copy(update={"items": new_items, "version": self.version + 1})

    def without(self, doomed: set[str]) -> QueueState:
        """Remove every item whose id is in `doomed`. Returns self when nothing matches."""
        new_items = tuple(i for i in self.items if i.id not in doomed)
        if len(new_items) == len(self.items):
            return self
        return self.model_copy(update={"items": new_items, "version": self.version + 1})

    def _positions_with(self, item: QueueItem) -> dict[str, int]:
        positions = dict(self.positions)
        if item.position > positions.get(item.scope_key, 0):
            positions[item.scope_key] = item.position
        return positions


class QueueStats(BaseModel):
    """Aggregate view over the items in a scope."""

    model_config = ConfigDict(frozen=True)

    total: int
    by_status: dict[ItemStatus, int]
    avg_processing_time: timedelta
    avg_queue_time: timedelta


class EnqueueRequest(BaseModel):
    """Input to QueueService.enqueue(). `priority=None` means "normal unless escalated"."""

    model_config = ConfigDict(frozen=True)

    owner_id: str
    org_id: str | None = None
    payload: PayloadRef | None = None
    priority: Priority | None = None
    language: str = "en-US"
    patient: PatientInfo | None = None
    medical_context: MedicalContext | None = None
    max_retries: int | None = None
