"""
QueueService — business operations layered on QueueStore.

Stateless apart from its collaborators: every call reads and writes through
the store, so any number of services may share one storage backend.

Usage
-----
    store = QueueStore(InMemoryStorage())
    service = QueueService(store)

    item = await service.enqueue(
        EnqueueRequest(
            owner_id="dr-lee",
            payload=PayloadRef(size=48_213, mime_type="audio/webm", location="visit.webm"),
        )
    )
    claimed = await service.claim_next(Scope(owner_id="dr-lee"))
    await service.mark_completed(claimed.id, note_id="note-1")
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from scribequeue.config import QueueSettings
from scribequeue.core.store import QueueStore
from scribequeue.domain.errors import InvalidPayload, InvalidTransition, RetryExhausted
from scribequeue.domain.models import (
    EnqueueRequest,
    ItemStatus,
    PayloadRef,
    Priority,
    QueueItem,
    QueueStats,
    Scope,
    TranscriptionResult,
    scope_key,
    utcnow,
)
from scribequeue.log import get_logger

logger = get_logger(__name__)


@dataclasses.dataclass
class QueueService:
    store: QueueStore
    settings: QueueSettings = dataclasses.field(default_factory=QueueSettings)
    clock: Callable[[], datetime] = utcnow

    # ------------------------------------------------------------------ #
    # Enqueue / dequeue                                                    #
    # ------------------------------------------------------------------ #

    async def enqueue(self, request: EnqueueRequest) -> QueueItem:
        """
        Validate the payload, compute the priority and persist a PENDING item.

        Raises InvalidPayload when the payload reference is missing, empty,
        too large or not audio.
        """
        payload = self._validate_payload(request.payload)
        priority = self.resolve_priority(request)
        now = self.clock()
        max_retries = (
            request.max_retries
            if request.max_retries is not None
            else self.settings.max_retries
        )

        def _make(position: int) -> QueueItem:
            return QueueItem.new(
                owner_id=request.owner_id,
                org_id=request.org_id,
                payload=payload,
                position=position,
                ttl=self.settings.item_ttl,
                now=now,
                priority=priority,
                max_retries=max_retries,
                language=request.language,
                patient=request.patient,
                medical_context=request.medical_context,
            )

        item = await self.store.add(scope_key(request.owner_id, request.org_id), _make)
        logger.info(
            "item_enqueued",
            item_id=item.id,
            owner_id=item.owner_id,
            priority=item.priority.value,
            position=item.position,
        )
        return item

    @staticmethod
    def resolve_priority(request: EnqueueRequest) -> Priority:
        """Requested priority (default normal), escalated by clinical context, never lowered."""
        requested = request.priority or Priority.NORMAL
        if request.medical_context is None:
            return requested
        escalated = request.medical_context.escalated_priority()
        if escalated is None:
            return requested
        return Priority.most_urgent(requested, escalated)

    async def next_item(self, scope: Scope | None = None) -> QueueItem | None:
        """Highest-priority, lowest-position PENDING item that has not expired."""
        return await self.store.next_eligible(self.clock(), scope)

    async def claim_next(self, scope: Scope | None = None) -> QueueItem | None:
        """Pick the next eligible item and mark it PROCESSING in one write."""
        item = await self.store.claim_next(self.clock(), scope)
        if item is None:
            logger.debug("queue_empty", scope=scope.model_dump() if scope else None)
        else:
            logger.info("item_claimed", item_id=item.id, priority=item.priority.value)
        return item

    # ------------------------------------------------------------------ #
    # Reads                                                                #
    # ------------------------------------------------------------------ #

    async def get(self, item_id: str) -> QueueItem:
        return await self.store.get(item_id)

    async def list_items(self, scope: Scope | None = None) -> tuple[QueueItem, ...]:
        """Items in scope ordered by priority, position and creation time."""
        return await self.store.items(scope)

    async def stats(self, scope: Scope | None = None) -> QueueStats:
        items = await self.store.items(scope)
        by_status = {status: 0 for status in ItemStatus}
        for item in items:
            by_status[item.status] += 1

        completed = [
            i for i in items if i.status == ItemStatus.COMPLETED and i.completed_at
        ]
        processing_times = [
            i.completed_at - i.started_at
            for i in completed
            if i.started_at is not None and i.completed_at is not None
        ]
        queue_times = [
            i.completed_at - i.created_at for i in completed if i.completed_at is not None
        ]
        return QueueStats(
            total=len(items),
            by_status=by_status,
            avg_processing_time=_mean(processing_times),
            avg_queue_time=_mean(queue_times),
        )

    # ------------------------------------------------------------------ #
    # Transitions                                                          #
    # ------------------------------------------------------------------ #

    async def transition(
        self, item_id: str, status: ItemStatus, **data: Any
    ) -> QueueItem:
        """Apply one edge of the state machine. Raises InvalidTransition otherwise."""
        item = await self.store.transition(item_id, status, self.clock(), **data)
        logger.info("item_transitioned", item_id=item_id, status=status.value)
        return item

    async def mark_completed(
        self,
        item_id: str,
        result: TranscriptionResult | None = None,
        note_id: str | None = None,
    ) -> QueueItem:
        return await self.transition(
            item_id, ItemStatus.COMPLETED, result=result, created_note_id=note_id
        )

    async def mark_failed(
        self,
        item_id: str,
        error: str,
        details: dict[str, Any] | None = None,
    ) -> QueueItem:
        return await self.transition(
            item_id, ItemStatus.FAILED, last_error=error, error_details=details
        )

    async def retry(self, item_id: str) -> QueueItem:
        """
        Re-queue a FAILED item at the back of its scope.

        Raises RetryExhausted (status stays FAILED) once max_retries is used up,
        InvalidTransition for any other status.
        """
        try:
            item = await self.store.requeue(item_id, self.clock())
        except RetryExhausted:
            logger.warning("retry_exhausted", item_id=item_id)
            raise
        logger.info(
            "item_retried",
            item_id=item_id,
            retry_count=item.retry_count,
            position=item.position,
        )
        return item

    async def update_priority(self, item_id: str, priority: Priority) -> QueueItem:
        item = await self.store.set_priority(item_id, priority, self.clock())
        logger.info("priority_updated", item_id=item_id, priority=priority.value)
        return item

    # ------------------------------------------------------------------ #
    # Deletion                                                             #
    # ------------------------------------------------------------------ #

    async def cancel(self, item_id: str) -> QueueItem:
        """Delete a PENDING item. Anything already submitted cannot be cancelled."""

        def _check(item: QueueItem) -> None:
            if item.status != ItemStatus.PENDING:
                raise InvalidTransition(
                    item.status.value,
                    ItemStatus.CANCELLED.value,
                    "only pending items can be cancelled",
                )

        item = await self.store.remove(item_id, _check)
        logger.info("item_cancelled", item_id=item_id)
        return item

    async def remove(self, item_id: str) -> QueueItem:
        """Manual removal of an item that is not currently PROCESSING."""

        def _check(item: QueueItem) -> None:
            if item.status == ItemStatus.PROCESSING:
                raise InvalidTransition(
                    item.status.value, "removed", "item is still processing"
                )

        item = await self.store.remove(item_id, _check)
        logger.info("item_removed", item_id=item_id, status=item.status.value)
        return item

    async def cleanup(self, retention_days: int | None = None) -> int:
        """
        Delete terminal items whose updated_at is older than the retention window.

        PENDING and PROCESSING items are never touched here; only their
        expires_at governs them (see purge_expired).
        """
        retention = (
            timedelta(days=retention_days)
            if retention_days is not None
            else self.settings.retention
        )
        cutoff = self.clock() - retention
        removed = await self.store.remove_where(
            lambda i: i.status.is_terminal and i.updated_at < cutoff
        )
        logger.info("cleanup_finished", removed=len(removed), cutoff=cutoff.isoformat())
        return len(removed)

    async def purge_expired(self) -> int:
        """Hard-TTL garbage collection: delete every item past expires_at, any status."""
        now = self.clock()
        removed = await self.store.remove_where(lambda i: i.is_expired(now))
        if removed:
            logger.info("expired_items_purged", removed=len(removed))
        return len(removed)

    # ------------------------------------------------------------------ #
    # Helpers                                                              #
    # ------------------------------------------------------------------ #

    def _validate_payload(self, payload: PayloadRef | None) -> PayloadRef:
        if payload is None:
            raise InvalidPayload("payload metadata is missing")
        if payload.size <= 0:
            raise InvalidPayload("audio payload is empty")
        if payload.size > self.settings.max_payload_bytes:
            raise InvalidPayload(
                f"audio payload is {payload.size} bytes, "
                f"limit is {self.settings.max_payload_bytes}"
            )
        if not payload.location.strip():
            raise InvalidPayload("payload location is missing")
        if not payload.mime_type.startswith("audio/"):
            raise InvalidPayload(f"unsupported mime type {payload.mime_type!r}")
        return payload


def _mean(durations: list[timedelta]) -> timedelta:
    if not durations:
        return timedelta(0)
    return sum(durations, timedelta(0)) / len(durations)
