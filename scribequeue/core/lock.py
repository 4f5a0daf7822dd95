"""
SingleFlightLock — at most one job processing per orchestrator.

A cooperative owner slot, not an OS mutex: acquisition is synchronous, so two
coroutines racing to process cannot both win between awaits. A second caller
is rejected, never queued.

Each acquisition arms a safety timer. If the owner never releases (a stuck
job), the timer frees the slot after `safety_timeout` so other jobs are not
blocked forever. The stuck job's own record is left untouched.

Usage
-----
    lock = SingleFlightLock(safety_timeout=timedelta(minutes=5))
    if not lock.try_acquire(item_id):
        raise ProcessingBusy(lock.owner)
    try:
        ...
    finally:
        lock.release(item_id)
"""

from __future__ import annotations

import asyncio
import dataclasses
from datetime import timedelta

from scribequeue.log import get_logger

logger = get_logger(__name__)


@dataclasses.dataclass
class SingleFlightLock:
    """
    Parameters
    ----------
    safety_timeout : how long an owner may hold the slot before it is
                     force-released (default 5 minutes)
    """

    safety_timeout: timedelta = timedelta(minutes=5)

    _owner: str | None = dataclasses.field(default=None, init=False, repr=False)
    _timer: asyncio.Task[None] | None = dataclasses.field(
        default=None, init=False, repr=False
    )

    @property
    def owner(self) -> str | None:
        return self._owner

    @property
    def held(self) -> bool:
        return self._owner is not None

    def try_acquire(self, owner: str) -> bool:
        """Take the slot for `owner`. Must be called from a running event loop."""
        if self._owner is not None:
            return False
        self._owner = owner
        self._timer = asyncio.create_task(
            self._expire(owner), name=f"scribequeue-safety-{owner}"
        )
        return True

    def release(self, owner: str) -> bool:
        """
        Free the slot if `owner` still holds it.

        Returns False when someone else holds it (e.g. the safety timer already
        freed it and another job took over), which makes release idempotent.
        """
        if self._owner != owner:
            return False
        self._owner = None
        self._cancel_timer()
        return True

    async def aclose(self) -> None:
        """Drop any holder and wait for the safety timer to finish cancelling."""
        self._owner = None
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            if self._timer is not asyncio.current_task():
                self._timer.cancel()
            self._timer = None

    async def _expire(self, owner: str) -> None:
        await asyncio.sleep(self.safety_timeout.total_seconds())
        if self._owner == owner:
            logger.warning(
                "single_flight_force_released",
                item_id=owner,
                after_seconds=self.safety_timeout.total_seconds(),
            )
            self._owner = None
            self._timer = None
