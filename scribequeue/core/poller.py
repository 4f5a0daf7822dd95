"""
Poller — fixed-interval status polling bounded by an overall budget.

The interval is fixed (no back-off): transcription jobs normally finish
within ~90 seconds, so a steady 2–5 s cadence is enough. Two timers bound
the loop: the per-cycle sleep and the overall budget (asyncio.timeout).
Both live inside run(), so cancelling the task that awaits run() cancels
them together.

Outcomes of run(job_id):
  - returns the PollResult once status is COMPLETED or FAILED
  - raises TimeoutError when the budget runs out
  - raises TranscriptionUnknownJob as soon as the service reports a 404
  - any other error (network, 5xx, malformed response) is logged at warning
    and the next cycle is armed
"""

from __future__ import annotations

import asyncio
import dataclasses
from datetime import timedelta

from scribequeue.domain.errors import TranscriptionUnknownJob
from scribequeue.domain.messages import PollResult
from scribequeue.log import get_logger
from scribequeue.ports.collaborators import TranscriptionPort

logger = get_logger(__name__)


@dataclasses.dataclass
class Poller:
    """
    Parameters
    ----------
    transcription : the collaborator to poll
    interval      : time between polls (default 3 seconds)
    budget        : overall time allowed before giving up (default 10 minutes)
    """

    transcription: TranscriptionPort
    interval: timedelta = timedelta(seconds=3)
    budget: timedelta = timedelta(minutes=10)

    async def run(self, job_id: str) -> PollResult:
        async with asyncio.timeout(self.budget.total_seconds()):
            return await self._poll_until_settled(job_id)

    async def _poll_until_settled(self, job_id: str) -> PollResult:
        attempt = 0
        while True:
            await asyncio.sleep(self.interval.total_seconds())
            attempt += 1
            try:
                result = await self.transcription.poll(job_id)
            except TranscriptionUnknownJob:
                raise
            except Exception as exc:
                logger.warning(
                    "poll_transient_error",
                    job_id=job_id,
                    attempt=attempt,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                continue
            if result.status.is_working:
                logger.debug(
                    "poll_still_working",
                    job_id=job_id,
                    attempt=attempt,
                    status=result.status.value,
                )
                continue
            logger.info(
                "poll_settled", job_id=job_id, attempt=attempt, status=result.status.value
            )
            return result
