"""
QueueStore — CRUD over QueueItem with one CAS write per operation.

Every mutating call does:
  1. read current state + etag from storage
  2. mutate state in memory
  3. CAS write back with if_match=etag (retries on CASConflictError)

Status only changes through transition(), claim_next() and requeue(), all of
which go through the QueueItem transition table. There is no generic
"set any field" path.

Retry policy
------------
Operations retry up to `max_retries` times (default 10) on CASConflictError
with linear back-off (10ms × attempt). Raises CASConflictError if all retries
are exhausted. Domain errors raised while mutating abort the write.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

from scribequeue.core import codec
from scribequeue.domain.errors import CASConflictError
from scribequeue.domain.models import (
    ItemStatus,
    Priority,
    QueueItem,
    QueueState,
    Scope,
)
from scribequeue.log import get_logger
from scribequeue.ports.storage import ObjectStoragePort

T = TypeVar("T")

# fn(state) -> (new_state, value returned to the caller)
MutationFn = Callable[[QueueState], tuple[QueueState, T]]

logger = get_logger(__name__)


@dataclasses.dataclass
class QueueStore:
    """
    Thin stateless wrapper around ObjectStoragePort.

    All methods are async and safe to call from multiple coroutines;
    each operation performs a full CAS cycle independently.
    """

    storage: ObjectStoragePort
    max_retries: int = 10

    # ------------------------------------------------------------------ #
    # Write operations                                                     #
    # ------------------------------------------------------------------ #

    async def add(
        self, key: str, make_item: Callable[[int], QueueItem]
    ) -> QueueItem:
        """
        Insert a new item built by `make_item(position)`.

        The position is the next unused one for scope `key`, computed on the
        same state the write is conditioned on.
        """
        def _fn(state: QueueState) -> tuple[QueueState, QueueItem]:
            created = make_item(state.next_position(key))
            return state.with_item_added(created), created

        return await self._mutate(_fn)

    async def transition(
        self,
        item_id: str,
        status: ItemStatus,
        now: datetime,
        **data: Any,
    ) -> QueueItem:
        """Move one item along the transition table. Raises InvalidTransition."""
        return await self._replace(
            item_id, lambda item, _: item.with_status(status, now, **data)
        )

    async def claim_next(
        self, now: datetime, scope: Scope | None = None
    ) -> QueueItem | None:
        """Atomically pick the next eligible item and mark it PROCESSING."""
        def _fn(state: QueueState) -> tuple[QueueState, QueueItem | None]:
            candidate = state.next_eligible(now, scope)
            if candidate is None:
                return state, None
            claimed = candidate.with_status(ItemStatus.PROCESSING, now)
            return state.with_item_replaced(claimed), claimed

        return await self._mutate(_fn)

    async def set_priority(
        self, item_id: str, priority: Priority, now: datetime
    ) -> QueueItem:
        return await self._replace(
            item_id, lambda item, _: item.with_priority(priority, now)
        )

    async def requeue(self, item_id: str, now: datetime) -> QueueItem:
        """failed -> pending, behind every item currently in the same scope."""
        return await self._replace(
            item_id,
            lambda item, state: item.requeued(state.next_position(item.scope_key), now),
        )

    async def remove(
        self,
        item_id: str,
        check: Callable[[QueueItem], None] | None = None,
    ) -> QueueItem:
        """
        Delete one item and return it. Raises ItemNotFoundError if absent.

        `check(item)` may raise to veto the deletion.
        """
        def _fn(state: QueueState) -> tuple[QueueState, QueueItem]:
            removed = state.get(item_id)
            if check is not None:
                check(removed)
            return state.with_item_removed(item_id), removed

        return await self._mutate(_fn)

    async def remove_where(
        self, predicate: Callable[[QueueItem], bool]
    ) -> tuple[QueueItem, ...]:
        """Delete every item matching predicate. Returns the removed items."""
        def _fn(state: QueueState) -> tuple[QueueState, tuple[QueueItem, ...]]:
            removed = tuple(i for i in state.items if predicate(i))
            return state.without({i.id for i in removed}), removed

        return await self._mutate(_fn)

    # ------------------------------------------------------------------ #
    # Read operations (no CAS needed)                                     #
    # ------------------------------------------------------------------ #

    async def read_state(self) -> QueueState:
        """Read-only snapshot of the current queue state."""
        content, _ = await self.storage.read()
        return codec.decode(content)

    async def get(self, item_id: str) -> QueueItem:
        """Raises ItemNotFoundError if absent."""
        return (await self.read_state()).get(item_id)

    async def find(self, item_id: str) -> QueueItem | None:
        return (await self.read_state()).find(item_id)

    async def items(self, scope: Scope | None = None) -> tuple[QueueItem, ...]:
        return (await self.read_state()).ordered(scope)

    async def next_eligible(
        self, now: datetime, scope: Scope | None = None
    ) -> QueueItem | None:
        return (await self.read_state()).next_eligible(now, scope)

    # ------------------------------------------------------------------ #
    # Internal CAS loop                                                   #
    # ------------------------------------------------------------------ #

    async def _replace(
        self,
        item_id: str,
        fn: Callable[[QueueItem, QueueState], QueueItem],
    ) -> QueueItem:
        def _fn(state: QueueState) -> tuple[QueueState, QueueItem]:
            updated = fn(state.get(item_id), state)
            return state.with_item_replaced(updated), updated

        return await self._mutate(_fn)

    async def _mutate(self, fn: MutationFn[T]) -> T:
        """
        Read-modify-write with CAS retry loop.

        fn(state) -> (new_state, value)  (synchronous)
        Returns the value from the attempt that was written. A state returned
        unchanged is not written back.
        Retries up to self.max_retries on CASConflictError.
        """
        for attempt in range(self.max_retries):
            content, etag = await self.storage.read()
            state = codec.decode(content)
            new_state, value = fn(state)
            if new_state is state:
                return value
            try:
                await self.storage.write(codec.encode(new_state), if_match=etag)
                return value
            except CASConflictError:
                if attempt == self.max_retries - 1:
                    raise
                logger.debug("cas_conflict", attempt=attempt + 1)
                await asyncio.sleep(0.01 * (attempt + 1))
        raise CASConflictError(f"gave up after {self.max_retries} attempts")
