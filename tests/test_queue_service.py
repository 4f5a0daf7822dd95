from datetime import timedelta

import pytest

from scribequeue.adapters.storage.memory import InMemoryStorage
from scribequeue.config import QueueSettings
from scribequeue.core.service import QueueService
from scribequeue.core.store import QueueStore
from scribequeue.domain.errors import (
    InvalidPayload,
    InvalidTransition,
    ItemNotFoundError,
    RetryExhausted,
)
from scribequeue.domain.models import (
    EnqueueRequest,
    ItemStatus,
    MedicalContext,
    PayloadRef,
    Priority,
    Scope,
    TranscriptionResult,
    Urgency,
    VisitType,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> QueueSettings:
    return QueueSettings(max_retries=2, max_payload_bytes=1_000_000)


@pytest.fixture
def service(settings: QueueSettings, clock) -> QueueService:
    return QueueService(QueueStore(InMemoryStorage()), settings=settings, clock=clock)


def _request(owner_id: str = "dr-lee", **fields) -> EnqueueRequest:
    fields.setdefault(
        "payload", PayloadRef(size=4096, mime_type="audio/webm", location="visit.webm")
    )
    return EnqueueRequest(owner_id=owner_id, **fields)


async def _failed(service: QueueService, **fields):
    item = await service.enqueue(_request(**fields))
    await service.transition(item.id, ItemStatus.PROCESSING)
    return await service.mark_failed(item.id, "engine crashed", {"reason": "failed"})


# ---------------------------------------------------------------------------
# enqueue
# ---------------------------------------------------------------------------


async def test_enqueue_defaults(service: QueueService, clock) -> None:
    item = await service.enqueue(_request())
    assert item.status == ItemStatus.PENDING
    assert item.priority == Priority.NORMAL
    assert item.position == 1
    assert item.max_retries == 2
    assert item.created_at == clock.now
    assert item.expires_at == clock.now + timedelta(days=30)


async def test_enqueue_request_can_override_max_retries(service: QueueService) -> None:
    item = await service.enqueue(_request(max_retries=5))
    assert item.max_retries == 5


@pytest.mark.parametrize(
    "payload",
    [
        None,
        PayloadRef(size=0, mime_type="audio/webm", location="a.webm"),
        PayloadRef(size=2_000_000, mime_type="audio/webm", location="a.webm"),
        PayloadRef(size=4096, mime_type="audio/webm", location="  "),
        PayloadRef(size=4096, mime_type="video/mp4", location="a.mp4"),
    ],
)
async def test_enqueue_rejects_invalid_payload(service: QueueService, payload) -> None:
    with pytest.raises(InvalidPayload):
        await service.enqueue(_request(payload=payload))
    assert await service.list_items() == ()


@pytest.mark.parametrize(
    "requested, context, expected",
    [
        (None, None, Priority.NORMAL),
        (Priority.LOW, None, Priority.LOW),
        (None, MedicalContext(urgency=Urgency.IMMEDIATE), Priority.URGENT),
        (Priority.LOW, MedicalContext(visit_type=VisitType.EMERGENCY), Priority.HIGH),
        (Priority.URGENT, MedicalContext(visit_type=VisitType.EMERGENCY), Priority.URGENT),
        (Priority.HIGH, MedicalContext(urgency=Urgency.ROUTINE), Priority.HIGH),
    ],
)
async def test_priority_escalation_never_downgrades(
    service: QueueService, requested, context, expected
) -> None:
    item = await service.enqueue(_request(priority=requested, medical_context=context))
    assert item.priority == expected


# ---------------------------------------------------------------------------
# next_item / claim_next / list_items
# ---------------------------------------------------------------------------


async def test_next_item_fifo_within_priority(service: QueueService) -> None:
    first = await service.enqueue(_request())
    await service.enqueue(_request())
    assert (await service.next_item()).id == first.id


async def test_next_item_priority_beats_position(service: QueueService) -> None:
    await service.enqueue(_request(priority=Priority.LOW))
    await service.enqueue(_request())
    urgent = await service.enqueue(_request(priority=Priority.URGENT))
    assert (await service.next_item()).id == urgent.id


async def test_next_item_never_returns_expired(service: QueueService, clock) -> None:
    await service.enqueue(_request())
    clock.advance(days=31)
    assert await service.next_item() is None
    assert await service.claim_next() is None


async def test_next_item_respects_scope(service: QueueService) -> None:
    mine = await service.enqueue(_request(org_id="clinic-a"))
    await service.enqueue(_request(owner_id="dr-kim", org_id="clinic-a"))
    scope = Scope(owner_id="dr-lee", org_id="clinic-a")
    assert (await service.next_item(scope)).id == mine.id
    assert await service.next_item(Scope(org_id="clinic-b")) is None


async def test_claim_next_marks_processing(service: QueueService, clock) -> None:
    item = await service.enqueue(_request())
    claimed = await service.claim_next()
    assert claimed.id == item.id
    assert claimed.status == ItemStatus.PROCESSING
    assert await service.claim_next() is None


async def test_list_items_ordered(service: QueueService) -> None:
    low = await service.enqueue(_request(priority=Priority.LOW))
    high = await service.enqueue(_request(priority=Priority.HIGH))
    normal = await service.enqueue(_request())
    assert [i.id for i in await service.list_items()] == [high.id, normal.id, low.id]


async def test_get_missing_raises(service: QueueService) -> None:
    with pytest.raises(ItemNotFoundError):
        await service.get("missing")


# ---------------------------------------------------------------------------
# transitions
# ---------------------------------------------------------------------------


async def test_mark_completed_stores_result(service: QueueService, clock) -> None:
    item = await service.enqueue(_request())
    await service.transition(item.id, ItemStatus.PROCESSING)
    clock.advance(seconds=30)
    result = TranscriptionResult(raw_transcript="hello", confidence=0.9)
    done = await service.mark_completed(item.id, result=result, note_id="note-1")
    assert done.status == ItemStatus.COMPLETED
    assert done.created_note_id == "note-1"
    assert done.result == result
    assert done.completed_at == clock.now


async def test_mark_failed_stores_error(service: QueueService) -> None:
    failed = await _failed(service)
    assert failed.status == ItemStatus.FAILED
    assert failed.last_error == "engine crashed"
    assert failed.error_details == {"reason": "failed"}


async def test_terminal_items_cannot_move(service: QueueService) -> None:
    failed = await _failed(service)
    with pytest.raises(InvalidTransition):
        await service.transition(failed.id, ItemStatus.PROCESSING)


# ---------------------------------------------------------------------------
# retry
# ---------------------------------------------------------------------------


async def test_retry_requeues_at_back(service: QueueService) -> None:
    failed = await _failed(service)
    waiting = await service.enqueue(_request())
    retried = await service.retry(failed.id)
    assert retried.status == ItemStatus.PENDING
    assert retried.retry_count == 1
    assert retried.last_error is None
    assert retried.position > waiting.position
    assert (await service.next_item()).id == waiting.id


async def test_retry_exhausted_after_max_retries(service: QueueService) -> None:
    failed = await _failed(service)
    for _ in range(2):
        await service.retry(failed.id)
        await service.transition(failed.id, ItemStatus.PROCESSING)
        await service.mark_failed(failed.id, "again")

    with pytest.raises(RetryExhausted):
        await service.retry(failed.id)
    item = await service.get(failed.id)
    assert item.status == ItemStatus.FAILED
    assert item.retry_count == 2


async def test_retry_pending_item_is_invalid(service: QueueService) -> None:
    item = await service.enqueue(_request())
    with pytest.raises(InvalidTransition):
        await service.retry(item.id)


# ---------------------------------------------------------------------------
# update_priority / cancel / remove
# ---------------------------------------------------------------------------


async def test_update_priority_pending_only(service: QueueService) -> None:
    item = await service.enqueue(_request())
    updated = await service.update_priority(item.id, Priority.URGENT)
    assert updated.priority == Priority.URGENT
    await service.transition(item.id, ItemStatus.PROCESSING)
    with pytest.raises(InvalidTransition):
        await service.update_priority(item.id, Priority.LOW)


async def test_cancel_deletes_pending(service: QueueService) -> None:
    item = await service.enqueue(_request())
    await service.cancel(item.id)
    with pytest.raises(ItemNotFoundError):
        await service.get(item.id)


async def test_cancel_processing_is_rejected(service: QueueService) -> None:
    item = await service.enqueue(_request())
    await service.transition(item.id, ItemStatus.PROCESSING)
    with pytest.raises(InvalidTransition):
        await service.cancel(item.id)


async def test_remove_failed_item(service: QueueService) -> None:
    failed = await _failed(service)
    removed = await service.remove(failed.id)
    assert removed.status == ItemStatus.FAILED
    assert await service.list_items() == ()


async def test_remove_processing_is_rejected(service: QueueService) -> None:
    item = await service.enqueue(_request())
    await service.transition(item.id, ItemStatus.PROCESSING)
    with pytest.raises(InvalidTransition):
        await service.remove(item.id)


async def test_positions_not_reused_after_cancel(service: QueueService) -> None:
    first = await service.enqueue(_request())
    await service.cancel(first.id)
    second = await service.enqueue(_request())
    assert second.position == first.position + 1


# ---------------------------------------------------------------------------
# cleanup / purge_expired
# ---------------------------------------------------------------------------


async def test_cleanup_removes_only_old_terminal_items(
    service: QueueService, clock
) -> None:
    old_failed = await _failed(service)
    old_pending = await service.enqueue(_request())
    clock.advance(days=10)
    recent_failed = await _failed(service)

    clock.advance(days=25)
    assert await service.cleanup() == 1

    remaining = {i.id for i in await service.list_items()}
    assert old_failed.id not in remaining
    assert {old_pending.id, recent_failed.id} <= remaining


async def test_cleanup_is_idempotent(service: QueueService, clock) -> None:
    await _failed(service)
    clock.advance(days=2)
    assert await service.cleanup(retention_days=1) == 1
    assert await service.cleanup(retention_days=1) == 0


async def test_purge_expired_removes_any_status(service: QueueService, clock) -> None:
    pending = await service.enqueue(_request())
    await _failed(service)
    clock.advance(days=31)
    fresh = await service.enqueue(_request())
    assert await service.purge_expired() == 2
    assert [i.id for i in await service.list_items()] == [fresh.id]
    assert pending.id != fresh.id


# ---------------------------------------------------------------------------
# stats
# ---------------------------------------------------------------------------


async def test_stats_counts_and_averages(service: QueueService, clock) -> None:
    await service.enqueue(_request())
    done = await service.enqueue(_request())
    clock.advance(seconds=10)
    await service.transition(done.id, ItemStatus.PROCESSING)
    clock.advance(seconds=60)
    await service.mark_completed(done.id, note_id="note-1")
    await _failed(service)

    stats = await service.stats()
    assert stats.total == 3
    assert stats.by_status[ItemStatus.PENDING] == 1
    assert stats.by_status[ItemStatus.COMPLETED] == 1
    assert stats.by_status[ItemStatus.FAILED] == 1
    assert stats.by_status[ItemStatus.CANCELLED] == 0
    assert stats.avg_processing_time == timedelta(seconds=60)
    assert stats.avg_queue_time == timedelta(seconds=70)


async def test_stats_empty_scope(service: QueueService) -> None:
    stats = await service.stats(Scope(owner_id="nobody"))
    assert stats.total == 0
    assert stats.avg_processing_time == timedelta(0)
