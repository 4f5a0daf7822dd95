import pytest

from scribequeue.domain.errors import (
    CASConflictError,
    DuplicateSubmission,
    InvalidPayload,
    InvalidTransition,
    ItemNotFoundError,
    ProcessingBusy,
    ReconciliationAmbiguous,
    RetryExhausted,
    ScribeQueueError,
    StorageError,
    SubmissionRejected,
    TranscriptionError,
    TranscriptionTransientError,
    TranscriptionUnknownJob,
)


def test_scribequeue_error_is_exception():
    err = ScribeQueueError("test message")
    assert isinstance(err, Exception)
    assert str(err) == "test message"


def test_item_not_found_stores_item_id():
    err = ItemNotFoundError("abc-123")
    assert err.item_id == "abc-123"
    assert "abc-123" in str(err)


def test_storage_error_stores_cause_and_message():
    cause = RuntimeError("disk full")
    err = StorageError("write failed", cause)
    assert err.cause is cause
    assert "write failed" in str(err)
    assert "disk full" in str(err)


def test_invalid_transition_message_includes_reason():
    err = InvalidTransition("failed", "pending", "only via retry")
    assert err.current == "failed"
    assert err.requested == "pending"
    assert "only via retry" in str(err)


def test_retry_exhausted_stores_counts():
    err = RetryExhausted("item-1", 3, 3)
    assert (err.item_id, err.retry_count, err.max_retries) == ("item-1", 3, 3)
    assert "3/3" in str(err)


def test_processing_busy_asks_user_to_wait():
    err = ProcessingBusy("item-9")
    assert err.active_item_id == "item-9"
    assert "please wait" in str(err)


def test_unknown_job_stores_job_id():
    err = TranscriptionUnknownJob("tx-1")
    assert err.job_id == "tx-1"


def test_reconciliation_ambiguous_stores_item_id():
    assert ReconciliationAmbiguous("item-2").item_id == "item-2"


@pytest.mark.parametrize(
    "cls, base",
    [
        (CASConflictError, ScribeQueueError),
        (ItemNotFoundError, ScribeQueueError),
        (StorageError, ScribeQueueError),
        (InvalidPayload, ScribeQueueError),
        (InvalidTransition, ScribeQueueError),
        (RetryExhausted, ScribeQueueError),
        (ProcessingBusy, SubmissionRejected),
        (DuplicateSubmission, SubmissionRejected),
        (SubmissionRejected, ScribeQueueError),
        (TranscriptionUnknownJob, TranscriptionError),
        (TranscriptionTransientError, TranscriptionError),
        (TranscriptionError, ScribeQueueError),
        (ReconciliationAmbiguous, ScribeQueueError),
    ],
)
def test_error_hierarchy(cls, base):
    assert issubclass(cls, base)


def test_can_catch_subclass_as_base():
    with pytest.raises(SubmissionRejected):
        raise ProcessingBusy(None)
