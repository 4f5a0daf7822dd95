from datetime import UTC, datetime

import pytest

from scribequeue.adapters.persistence.filesystem import DirectoryBlobStore, FileMetadataStore
from scribequeue.adapters.persistence.memory import InMemoryBlobStore, InMemoryMetadataStore
from scribequeue.core.bridge import LocalPersistenceBridge
from scribequeue.domain.jobs import ClinicalSnapshot, Job, JobState
from scribequeue.domain.models import PatientInfo
from scribequeue.ports.persistence import BlobStorePort, MetadataStorePort

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(params=["memory", "filesystem"])
def bridge(request, tmp_path) -> LocalPersistenceBridge:
    if request.param == "memory":
        return LocalPersistenceBridge(InMemoryBlobStore(), InMemoryMetadataStore())
    return LocalPersistenceBridge(
        DirectoryBlobStore(tmp_path / "audio"), FileMetadataStore(tmp_path / "jobs.json")
    )


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


def test_adapters_satisfy_ports(tmp_path):
    assert isinstance(InMemoryBlobStore(), BlobStorePort)
    assert isinstance(DirectoryBlobStore(tmp_path), BlobStorePort)
    assert isinstance(InMemoryMetadataStore(), MetadataStorePort)
    assert isinstance(FileMetadataStore(tmp_path / "jobs.json"), MetadataStorePort)


async def test_directory_blob_store_rejects_path_like_keys(tmp_path):
    store = DirectoryBlobStore(tmp_path)
    with pytest.raises(ValueError):
        await store.put("../escape", b"data")


async def test_file_metadata_store_leaves_no_temp_file(tmp_path):
    store = FileMetadataStore(tmp_path / "jobs.json")
    await store.save(b"{}")
    assert sorted(p.name for p in tmp_path.iterdir()) == ["jobs.json"]
    assert await store.load() == b"{}"


# ---------------------------------------------------------------------------
# Audio blobs
# ---------------------------------------------------------------------------


async def test_audio_round_trip(bridge: LocalPersistenceBridge):
    await bridge.put_audio("item-1", b"\x00\x01audio")
    assert await bridge.get_audio("item-1") == b"\x00\x01audio"


async def test_missing_audio_is_none(bridge: LocalPersistenceBridge):
    assert await bridge.get_audio("nope") is None


async def test_discard_is_idempotent(bridge: LocalPersistenceBridge):
    await bridge.put_audio("item-1", b"audio")
    await bridge.discard("item-1")
    await bridge.discard("item-1")
    assert await bridge.get_audio("item-1") is None


# ---------------------------------------------------------------------------
# Job snapshot
# ---------------------------------------------------------------------------


async def test_nothing_saved_yet(bridge: LocalPersistenceBridge):
    assert await bridge.load_entries() == ()


async def test_saved_jobs_come_back_as_entries(bridge: LocalPersistenceBridge):
    jobs = [
        Job(item_id="item-1", filename="a.webm", recorded_at=T0),
        Job(
            item_id="item-2",
            state=JobState.PROCESSING,
            filename="b.webm",
            recorded_at=T0,
            submitted_at=T0,
            transcription_job_id="tx-7",
            clinical=ClinicalSnapshot(patient=PatientInfo(name="Ana")),
            transcript="not persisted",
        ),
    ]
    await bridge.save_jobs(jobs)

    first, second = await bridge.load_entries()
    assert first.item_id == "item-1"
    assert first.state == JobState.RECORDED
    assert second.transcription_job_id == "tx-7"
    assert second.clinical.patient.name == "Ana"
    assert not hasattr(second, "transcript")


async def test_save_replaces_previous_snapshot(bridge: LocalPersistenceBridge):
    await bridge.save_jobs([Job(item_id="item-1", recorded_at=T0)])
    await bridge.save_jobs([])
    assert await bridge.load_entries() == ()
