"""
JobOrchestrator — drives one recording from ``recorded`` to a terminal state.

    recorded ──process()──► processing ──► completed
                                 ├───────► failed   (after reconciliation)
                                 └───────► timeout  (after reconciliation)

process(item_id) does, in order:
  1. debounce the action (500 ms)                      → DuplicateSubmission
  2. take the single-flight lock, synchronously         → ProcessingBusy
  3. load the item and its locally stored audio; validate the audio
                                                        → InvalidPayload
  4. dedup on the audio digest (30 s)                   → DuplicateSubmission
  5. queue item pending → processing, snapshot clinical data
  6. submit; an immediate transcript completes the job in-line, otherwise a
     named poll task is started and process() returns the PROCESSING job

A poll task ends in exactly one terminal transition. FAILED, a timeout, a
failed submission or a failed note creation first ask ReconciliationGuard
for a note that already exists; a 404 from the transcription service does
not. An unexpected error from submit() is treated as an unobserved
outcome, and a poll task that crashes fails its item, so an item is never
left PROCESSING once its task has ended. A FAILED confirmed by the
transcription service frees the audio digest for an immediate retry.
Every terminal transition releases the lock; aclose() cancels every
poll task together with its timers.

Usage
-----
    async with JobOrchestrator.from_settings(
        service=service,
        transcription=transcription,
        notes=notes,
        bridge=bridge,
    ) as orchestrator:
        job = await orchestrator.enqueue(audio, owner_id="dr-lee", filename="visit.webm")
        await orchestrator.process(job.item_id)
        job = await orchestrator.wait(job.item_id)
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from types import TracebackType

from scribequeue.config import QueueSettings
from scribequeue.core.bridge import LocalPersistenceBridge
from scribequeue.core.dedup import SubmissionGuard, payload_digest
from scribequeue.core.lock import SingleFlightLock
from scribequeue.core.poller import Poller
from scribequeue.core.reconcile import ReconciliationGuard
from scribequeue.core.service import QueueService
from scribequeue.domain.errors import (
    InvalidPayload,
    InvalidTransition,
    ItemNotFoundError,
    ProcessingBusy,
    ReconciliationAmbiguous,
    RetryExhausted,
    TranscriptionError,
    TranscriptionTransientError,
    TranscriptionUnknownJob,
)
from scribequeue.domain.jobs import ClinicalSnapshot, Job, JobState, NextAction
from scribequeue.domain.messages import NoteDraft, PollStatus
from scribequeue.domain.models import (
    EnqueueRequest,
    ItemStatus,
    MedicalContext,
    PatientInfo,
    PayloadRef,
    Priority,
    QueueItem,
    QueueStats,
    Scope,
    TranscriptionResult,
    utcnow,
)
from scribequeue.log import get_logger
from scribequeue.ports.collaborators import NotesPort, TranscriptionPort

logger = get_logger(__name__)

SettledHook = Callable[[Job], Awaitable[None]]


@dataclasses.dataclass
class JobOrchestrator:
    """
    Parameters
    ----------
    service       : QueueService — the only path to queue item state
    transcription : speech-to-text collaborator
    notes         : note-creation collaborator
    bridge        : client-local audio + snapshot persistence
    on_settled    : optional coroutine called with every terminal Job,
                    before a completed job leaves the local queue
    """

    service: QueueService
    transcription: TranscriptionPort
    notes: NotesPort
    bridge: LocalPersistenceBridge
    poll_interval: timedelta = timedelta(seconds=3)
    poll_budget: timedelta = timedelta(minutes=10)
    safety_timeout: timedelta = timedelta(minutes=5)
    dedup_window: timedelta = timedelta(seconds=30)
    debounce: timedelta = timedelta(milliseconds=500)
    reconcile_window: timedelta = timedelta(minutes=5)
    reconcile_page_size: int = 10
    min_payload_bytes: int = 1024
    clock: Callable[[], datetime] = utcnow
    on_settled: SettledHook | None = None

    _jobs: dict[str, Job] = dataclasses.field(default_factory=dict, init=False, repr=False)
    _outcomes: dict[str, Job] = dataclasses.field(
        default_factory=dict, init=False, repr=False
    )
    _tasks: dict[str, asyncio.Task[Job]] = dataclasses.field(
        default_factory=dict, init=False, repr=False
    )
    _lock: SingleFlightLock = dataclasses.field(init=False, repr=False)
    _guard: SubmissionGuard = dataclasses.field(init=False, repr=False)
    _poller: Poller = dataclasses.field(init=False, repr=False)
    _reconciler: ReconciliationGuard = dataclasses.field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._lock = SingleFlightLock(safety_timeout=self.safety_timeout)
        self._guard = SubmissionGuard(
            window=self.dedup_window, debounce=self.debounce, clock=self.clock
        )
        self._poller = Poller(
            transcription=self.transcription,
            interval=self.poll_interval,
            budget=self.poll_budget,
        )
        self._reconciler = ReconciliationGuard(
            notes=self.notes,
            window=self.reconcile_window,
            page_size=self.reconcile_page_size,
            clock=self.clock,
        )

    @classmethod
    def from_settings(
        cls,
        *,
        service: QueueService,
        transcription: TranscriptionPort,
        notes: NotesPort,
        bridge: LocalPersistenceBridge,
        settings: QueueSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
        on_settled: SettledHook | None = None,
    ) -> JobOrchestrator:
        settings = settings or service.settings
        return cls(
            service=service,
            transcription=transcription,
            notes=notes,
            bridge=bridge,
            poll_interval=settings.poll_interval,
            poll_budget=settings.poll_budget,
            safety_timeout=settings.safety_timeout,
            dedup_window=settings.dedup_window,
            debounce=settings.debounce,
            reconcile_window=settings.reconcile_window,
            reconcile_page_size=settings.reconcile_page_size,
            min_payload_bytes=settings.min_payload_bytes,
            clock=clock,
            on_settled=on_settled,
        )

    async def __aenter__(self) -> JobOrchestrator:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel every poll task (and its timers) and the safety timer."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self._lock.aclose()

    # ------------------------------------------------------------------ #
    # Local view                                                           #
    # ------------------------------------------------------------------ #

    @property
    def busy(self) -> bool:
        """True while a job holds the single-flight lock."""
        return self._lock.held

    @property
    def active_item_id(self) -> str | None:
        return self._lock.owner

    @property
    def jobs(self) -> tuple[Job, ...]:
        """Locally queued jobs: recorded, processing, failed and timed out."""
        return tuple(self._jobs.values())

    def get(self, item_id: str) -> Job:
        job = self._jobs.get(item_id) or self._outcomes.get(item_id)
        if job is None:
            raise ItemNotFoundError(item_id)
        return job

    async def wait(self, item_id: str) -> Job:
        """Wait for the job's poll task, if any, and return its latest state."""
        task = self._tasks.get(item_id)
        if task is not None:
            return await asyncio.shield(task)
        return self.get(item_id)

    # ------------------------------------------------------------------ #
    # Queue operations                                                     #
    # ------------------------------------------------------------------ #

    async def enqueue(
        self,
        audio: bytes,
        *,
        owner_id: str,
        filename: str,
        mime_type: str = "audio/webm",
        org_id: str | None = None,
        priority: Priority | None = None,
        language: str = "en-US",
        patient: PatientInfo | None = None,
        medical_context: MedicalContext | None = None,
    ) -> Job:
        """Queue a recording and keep its audio locally until it is processed."""
        item = await self.service.enqueue(
            EnqueueRequest(
                owner_id=owner_id,
                org_id=org_id,
                payload=PayloadRef(size=len(audio), mime_type=mime_type, location=filename),
                priority=priority,
                language=language,
                patient=patient,
                medical_context=medical_context,
            )
        )
        try:
            await self.bridge.put_audio(item.id, audio)
        except Exception:
            await self.service.cancel(item.id)
            raise
        job = Job(item_id=item.id, filename=filename, recorded_at=item.created_at, item=item)
        self._jobs[item.id] = job
        await self._persist()
        return job

    async def cancel(self, item_id: str) -> None:
        """Drop a recording that has not been submitted yet."""
        await self.service.cancel(item_id)
        self._forget(item_id)
        await self.bridge.discard(item_id)
        await self._persist()

    async def remove(self, item_id: str) -> None:
        """Manual removal of a failed, timed out or otherwise finished item."""
        await self.service.remove(item_id)
        self._forget(item_id)
        await self.bridge.discard(item_id)
        await self._persist()

    async def retry(self, item_id: str) -> Job:
        """
        Put a failed or timed out job back in the queue.

        Raises RetryExhausted once every retry has been used; the local job
        then recommends contacting support.
        """
        try:
            item = await self.service.retry(item_id)
        except RetryExhausted as exc:
            job = self._jobs.get(item_id)
            if job is not None:
                self._jobs[item_id] = job.evolve(
                    error=str(exc), next_action=NextAction.CONTACT_SUPPORT
                )
                await self._persist()
            raise
        self._tasks.pop(item_id, None)
        self._outcomes.pop(item_id, None)
        job = self._job_for(item).evolve(
            state=JobState.RECORDED,
            submitted_at=None,
            finished_at=None,
            transcription_job_id=None,
            payload_digest=None,
            transcript=None,
            note_id=None,
            reconciled=False,
            error=None,
            next_action=None,
            item=item,
        )
        self._jobs[item_id] = job
        await self._persist()
        return job

    async def stats(self, scope: Scope | None = None) -> QueueStats:
        return await self.service.stats(scope)

    async def process_next(
        self, scope: Scope | None = None, clinical: ClinicalSnapshot | None = None
    ) -> Job | None:
        """Process the next eligible item in scope, or return None if there is none."""
        item = await self.service.next_item(scope)
        if item is None:
            return None
        return await self.process(item.id, clinical)

    async def process(
        self, item_id: str, clinical: ClinicalSnapshot | None = None
    ) -> Job:
        """
        Submit a queued recording for transcription.

        `clinical` overrides the patient/clinical data stored on the item. It
        is captured here and never re-read, so later edits cannot leak into
        the note.
        """
        self._guard.debounce_action(f"process:{item_id}")
        if not self._lock.try_acquire(item_id):
            raise ProcessingBusy(self._lock.owner)

        handed_off = False
        try:
            item = await self.service.get(item_id)
            if not item.is_eligible(self.clock()):
                raise InvalidTransition(
                    item.status.value,
                    ItemStatus.PROCESSING.value,
                    "only pending, unexpired items can be processed",
                )
            audio = await self.bridge.get_audio(item_id)
            audio = self._validate_audio(item, audio)
            digest = payload_digest(audio)
            self._guard.claim_payload(digest)
            try:
                item = await self.service.transition(item_id, ItemStatus.PROCESSING)
            except Exception:
                self._guard.release_payload(digest)
                raise

            snapshot = clinical or ClinicalSnapshot.from_item(item)
            job = self._job_for(item).evolve(
                state=JobState.PROCESSING,
                submitted_at=self.clock(),
                payload_digest=digest,
                clinical=snapshot,
                error=None,
                next_action=None,
                item=item,
            )
            self._jobs[item_id] = job

            # From here on the item is PROCESSING in the store: every exit
            # must either hand it to a poll task or settle it.
            try:
                await self._persist()
                logger.info("job_submitting", item_id=item_id, size=len(audio))
                submitted = await self.transcription.submit(
                    audio, snapshot.patient, snapshot.language
                )
            except TranscriptionUnknownJob as exc:
                return await self._fail(
                    job, str(exc), reason="unknown_job", confirmed=True
                )
            except TranscriptionTransientError as exc:
                return await self._settle_negative(
                    job, JobState.FAILED, f"submission failed: {exc}"
                )
            except TranscriptionError as exc:
                return await self._fail(job, str(exc), confirmed=True)
            except Exception as exc:
                logger.warning(
                    "submission_error",
                    item_id=item_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return await self._settle_negative(
                    job, JobState.FAILED, f"submission failed: {exc}"
                )

            if submitted.job_id is None:
                return await self._guarded(
                    job,
                    self._complete(
                        job,
                        transcript=submitted.transcript,
                        note_id=submitted.note_id,
                        confidence=submitted.confidence,
                    ),
                )

            job = job.evolve(transcription_job_id=submitted.job_id)
            self._jobs[item_id] = job
            self._start_polling(job, submitted.job_id)
            handed_off = True
            await self._persist()
            return job
        finally:
            if not handed_off:
                self._lock.release(item_id)

    async def restore(self) -> tuple[Job, ...]:
        """
        Rebuild local jobs from the persistence bridge after a reload.

        Every entry is re-read from QueueService. Entries whose item vanished
        or already completed are dropped together with their audio. One
        in-flight job with a known transcription id resumes polling.
        """
        for entry in await self.bridge.load_entries():
            try:
                item = await self.service.get(entry.item_id)
            except ItemNotFoundError:
                await self.bridge.discard(entry.item_id)
                continue

            job = Job(
                item_id=item.id,
                filename=entry.filename,
                recorded_at=entry.recorded_at,
                submitted_at=entry.submitted_at,
                transcription_job_id=entry.transcription_job_id,
                clinical=entry.clinical,
                error=item.last_error,
                item=item,
            )
            match item.status:
                case ItemStatus.PENDING:
                    self._jobs[item.id] = job.evolve(state=JobState.RECORDED, error=None)
                case ItemStatus.PROCESSING:
                    job = job.evolve(state=JobState.PROCESSING)
                    self._jobs[item.id] = job
                    job_id = job.transcription_job_id
                    if job_id is None:
                        # Reloaded while submit() was in flight: the upstream
                        # may or may not have the audio.
                        logger.warning("job_interrupted_during_submit", item_id=item.id)
                        await self._settle_negative(
                            job, JobState.FAILED, "interrupted before submission completed"
                        )
                    elif self._lock.try_acquire(item.id):
                        logger.info("job_polling_resumed", item_id=item.id)
                        self._start_polling(job, job_id)
                case ItemStatus.FAILED:
                    self._jobs[item.id] = job.evolve(
                        state=_negative_state(item),
                        next_action=_negative_action(item),
                    )
                case _:
                    await self.bridge.discard(item.id)

        await self._persist()
        return self.jobs

    # ------------------------------------------------------------------ #
    # Polling and terminal transitions                                     #
    # ------------------------------------------------------------------ #

    def _start_polling(self, job: Job, job_id: str) -> None:
        self._tasks[job.item_id] = asyncio.create_task(
            self._drive(job, job_id), name=f"scribequeue-poll-{job.item_id}"
        )

    async def _drive(self, job: Job, job_id: str) -> Job:
        try:
            return await self._guarded(job, self._poll_and_settle(job, job_id))
        finally:
            self._lock.release(job.item_id)

    async def _guarded(self, job: Job, settling: Awaitable[Job]) -> Job:
        """Fail the item if settling crashes while it is still PROCESSING."""
        try:
            return await settling
        except Exception as exc:
            logger.warning(
                "job_settle_error",
                item_id=job.item_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            item = await self.service.get(job.item_id)
            if item.status != ItemStatus.PROCESSING:
                raise
            return await self._fail(job, f"processing failed: {exc}")

    async def _poll_and_settle(self, job: Job, job_id: str) -> Job:
        try:
            result = await self._poller.run(job_id)
        except TranscriptionUnknownJob as exc:
            return await self._fail(
                job, str(exc), reason="unknown_job", confirmed=True
            )
        except TimeoutError:
            return await self._settle_negative(
                job,
                JobState.TIMEOUT,
                f"no result after {int(self.poll_budget.total_seconds())}s",
            )
        if result.status == PollStatus.COMPLETED:
            return await self._complete(
                job, transcript=result.transcript, confidence=result.confidence
            )
        return await self._settle_negative(
            job, JobState.FAILED, result.error or "transcription failed", confirmed=True
        )

    async def _complete(
        self,
        job: Job,
        *,
        transcript: str | None,
        note_id: str | None = None,
        confidence: float | None = None,
    ) -> Job:
        if note_id is None:
            if not transcript:
                return await self._settle_negative(
                    job, JobState.FAILED, "transcription completed without a transcript"
                )
            try:
                note_id = await self.notes.create_note(self._draft(job, transcript))
            except Exception as exc:
                logger.warning("note_creation_failed", item_id=job.item_id, error=str(exc))
                return await self._settle_negative(
                    job, JobState.FAILED, f"note creation failed: {exc}"
                )
        return await self._finish_completed(
            job, note_id=note_id, transcript=transcript, confidence=confidence
        )

    async def _settle_negative(
        self, job: Job, state: JobState, error: str, *, confirmed: bool = False
    ) -> Job:
        """
        Ask ReconciliationGuard before accepting a failed or timed out outcome.

        `confirmed` means the transcription service itself reported FAILED,
        as opposed to an outcome we could not observe.
        """
        owner_id = job.item.owner_id if job.item else None
        try:
            match = await self._reconciler.confirm(job, owner_id)
        except ReconciliationAmbiguous:
            if state == JobState.TIMEOUT:
                return await self._timeout(job, error)
            return await self._fail(job, error, confirmed=confirmed)
        return await self._finish_completed(
            job, note_id=match.note.id, transcript=None, reconciled=True
        )

    async def _finish_completed(
        self,
        job: Job,
        *,
        note_id: str,
        transcript: str | None,
        confidence: float | None = None,
        reconciled: bool = False,
    ) -> Job:
        now = self.clock()
        result = TranscriptionResult(
            raw_transcript=transcript,
            confidence=confidence,
            processing_time=now - job.submitted_at if job.submitted_at else None,
            transcription_job_id=job.transcription_job_id,
        )
        item = await self.service.mark_completed(job.item_id, result=result, note_id=note_id)
        job = job.evolve(
            state=JobState.COMPLETED,
            note_id=note_id,
            transcript=transcript,
            reconciled=reconciled,
            finished_at=now,
            error=None,
            next_action=NextAction.OPEN_NOTE,
            item=item,
        )
        logger.info(
            "job_completed", item_id=job.item_id, note_id=note_id, reconciled=reconciled
        )
        return await self._settle(job)

    async def _fail(
        self, job: Job, error: str, reason: str = "failed", *, confirmed: bool = False
    ) -> Job:
        item = await self.service.mark_failed(
            job.item_id, error, details={"reason": reason}
        )
        # Upstream has dropped this audio; a retry may resubmit it at once.
        if confirmed and job.payload_digest:
            self._guard.release_payload(job.payload_digest)
        job = job.evolve(
            state=JobState.FAILED,
            error=error,
            finished_at=self.clock(),
            next_action=_negative_action(item),
            item=item,
        )
        logger.info("job_failed", item_id=job.item_id, error=error, reason=reason)
        return await self._settle(job)

    async def _timeout(self, job: Job, error: str) -> Job:
        item = await self.service.mark_failed(
            job.item_id, error, details={"reason": "timeout"}
        )
        job = job.evolve(
            state=JobState.TIMEOUT,
            error=error,
            finished_at=self.clock(),
            next_action=NextAction.CHECK_NOTES,
            item=item,
        )
        logger.info("job_timed_out", item_id=job.item_id)
        return await self._settle(job)

    async def _settle(self, job: Job) -> Job:
        """Record a terminal job, free the lock and update the local queue."""
        self._outcomes[job.item_id] = job
        self._lock.release(job.item_id)
        if self.on_settled is not None:
            await self.on_settled(job)
        if job.state == JobState.COMPLETED:
            self._jobs.pop(job.item_id, None)
            await self.bridge.discard(job.item_id)
        else:
            self._jobs[job.item_id] = job
        await self._persist()
        return job

    # ------------------------------------------------------------------ #
    # Helpers                                                              #
    # ------------------------------------------------------------------ #

    def _job_for(self, item: QueueItem) -> Job:
        job = self._jobs.get(item.id)
        if job is None:
            job = Job(
                item_id=item.id,
                filename=item.payload.location,
                recorded_at=item.created_at,
            )
        return job.with_item(item)

    def _forget(self, item_id: str) -> None:
        self._jobs.pop(item_id, None)
        self._outcomes.pop(item_id, None)
        self._tasks.pop(item_id, None)

    def _validate_audio(self, item: QueueItem, audio: bytes | None) -> bytes:
        if audio is None:
            raise InvalidPayload(f"audio for item {item.id!r} is not stored locally")
        if len(audio) < self.min_payload_bytes:
            raise InvalidPayload(
                f"recording is {len(audio)} bytes, minimum is {self.min_payload_bytes}"
            )
        if len(audio) != item.payload.size:
            raise InvalidPayload(
                f"stored audio is {len(audio)} bytes but {item.payload.size} were queued"
            )
        return audio

    @staticmethod
    def _draft(job: Job, transcript: str) -> NoteDraft:
        clinical = job.clinical or ClinicalSnapshot()
        return NoteDraft(
            patient_name=clinical.patient.name,
            patient_age=clinical.patient.age,
            patient_gender=clinical.patient.gender,
            chief_complaint=clinical.medical_context.chief_complaint,
            transcript=transcript,
            language=clinical.language,
            note_type=clinical.note_type,
            audio_job_id=job.transcription_job_id,
            correlation_id=job.item_id,
        )

    async def _persist(self) -> None:
        await self.bridge.save_jobs(self._jobs.values())


def _negative_state(item: QueueItem) -> JobState:
    if item.error_details and item.error_details.get("reason") == "timeout":
        return JobState.TIMEOUT
    return JobState.FAILED


def _negative_action(item: QueueItem) -> NextAction:
    if _negative_state(item) == JobState.TIMEOUT:
        return NextAction.CHECK_NOTES
    if item.retries_left > 0:
        return NextAction.RETRY
    return NextAction.CONTACT_SUPPORT
