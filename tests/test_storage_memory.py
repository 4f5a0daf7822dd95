import asyncio

import pytest

from scribequeue.adapters.storage.memory import InMemoryStorage
from scribequeue.core import codec
from scribequeue.domain.errors import CASConflictError
from scribequeue.domain.models import QueueState
from scribequeue.ports.storage import ObjectStoragePort


def test_satisfies_port():
    assert isinstance(InMemoryStorage(), ObjectStoragePort)


async def test_read_empty_returns_empty():
    storage = InMemoryStorage()
    content, etag = await storage.read()
    assert content == b""
    assert etag is None


async def test_first_write_needs_no_etag():
    storage = InMemoryStorage()
    etag = await storage.write(codec.encode(QueueState()), if_match=None)
    content, current = await storage.read()
    assert current == etag
    assert codec.decode(content) == QueueState()


async def test_each_write_bumps_etag_and_counter():
    storage = InMemoryStorage()
    etag1 = await storage.write(b"v1", if_match=None)
    etag2 = await storage.write(b"v2", if_match=etag1)
    assert etag1 != etag2
    assert storage.writes == 2


async def test_stale_etag_is_rejected_and_content_kept():
    storage = InMemoryStorage()
    await storage.write(b"original", if_match=None)
    with pytest.raises(CASConflictError):
        await storage.write(b"corrupted", if_match="bad-etag")
    with pytest.raises(CASConflictError):
        await storage.write(b"corrupted", if_match=None)
    content, _ = await storage.read()
    assert content == b"original"
    assert storage.writes == 1


async def test_initial_content_has_etag_zero():
    storage = InMemoryStorage(initial_content=b"pre-populated")
    content, etag = await storage.read()
    assert content == b"pre-populated"
    assert etag == "0"


async def test_concurrent_writes_exactly_one_wins():
    storage = InMemoryStorage()
    _, etag = await storage.read()
    outcomes: list[bool] = []

    async def attempt(data: bytes) -> None:
        try:
            await storage.write(data, if_match=etag)
            outcomes.append(True)
        except CASConflictError:
            outcomes.append(False)

    await asyncio.gather(attempt(b"a"), attempt(b"b"), attempt(b"c"))
    assert sorted(outcomes) == [False, False, True]
