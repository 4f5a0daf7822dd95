"""
Exception hierarchy for scribequeue.

ScribeQueueError
├── CASConflictError             — state write rejected because etag did not match
├── ItemNotFoundError            — item_id not present in current QueueState
├── StorageError                 — underlying I/O failure (wraps original exception)
├── InvalidPayload               — empty, undersized, oversized or malformed audio
├── InvalidTransition            — status edge not in the transition table
├── RetryExhausted               — retry requested after max_retries was reached
├── SubmissionRejected
│   ├── ProcessingBusy           — another job holds the single-flight lock
│   └── DuplicateSubmission      — same payload/action seen within its window
├── TranscriptionError
│   ├── TranscriptionUnknownJob  — transcription service does not know the job (404)
│   └── TranscriptionTransientError — network / 5xx, safe to poll again
└── ReconciliationAmbiguous      — no note confidently matched a job
"""

from __future__ import annotations


class ScribeQueueError(Exception):
    """Base class for all scribequeue exceptions."""


class CASConflictError(ScribeQueueError):
    """
    Raised when a compare-and-set write is rejected by the storage backend.

    The caller should re-read the current state and retry the operation.
    """


class ItemNotFoundError(ScribeQueueError):
    """Raised when an item_id is not present in the current QueueState."""

    def __init__(self, item_id: str) -> None:
        self.item_id = item_id
        super().__init__(f"Queue item {item_id!r} not found")


class StorageError(ScribeQueueError):
    """
    Wraps an underlying I/O failure from a storage adapter.

    Attributes
    ----------
    cause : Exception
        The original exception from the storage backend.
    """

    def __init__(self, message: str, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"{message}: {cause}")


class InvalidPayload(ScribeQueueError):
    """Audio payload is missing, empty, too small, too large or malformed."""


class InvalidTransition(ScribeQueueError):
    """A status change was requested along an edge the state machine forbids."""

    def __init__(self, current: str, requested: str, reason: str | None = None) -> None:
        self.current = current
        self.requested = requested
        message = f"Cannot transition from {current!r} to {requested!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class RetryExhausted(ScribeQueueError):
    """The item already used every retry; the user must start a new job."""

    def __init__(self, item_id: str, retry_count: int, max_retries: int) -> None:
        self.item_id = item_id
        self.retry_count = retry_count
        self.max_retries = max_retries
        super().__init__(
            f"Queue item {item_id!r} exhausted its retries ({retry_count}/{max_retries})"
        )


class SubmissionRejected(ScribeQueueError):
    """A process request was refused before anything reached the transcription service."""


class ProcessingBusy(SubmissionRejected):
    """Another job is processing. Please wait for it to finish."""

    def __init__(self, active_item_id: str | None) -> None:
        self.active_item_id = active_item_id
        super().__init__("Another recording is being processed, please wait")


class DuplicateSubmission(SubmissionRejected):
    """The same payload or action was submitted again inside its suppression window."""


class TranscriptionError(ScribeQueueError):
    """Base class for errors reported by the transcription collaborator."""


class TranscriptionUnknownJob(TranscriptionError):
    """The transcription service has no record of the job (404-class)."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Transcription job {job_id!r} is unknown upstream")


class TranscriptionTransientError(TranscriptionError):
    """Network or server-side failure; the job may still be running."""


class ReconciliationAmbiguous(ScribeQueueError):
    """No recently created note could be confidently tied to a job."""

    def __init__(self, item_id: str) -> None:
        self.item_id = item_id
        super().__init__(f"No matching note found for queue item {item_id!r}")
