import json
from datetime import timedelta

import structlog

from scribequeue.adapters.collaborators.memory import InMemoryNotes, ScriptedTranscription
from scribequeue.adapters.persistence.memory import InMemoryBlobStore, InMemoryMetadataStore
from scribequeue.adapters.storage.memory import InMemoryStorage
from scribequeue.config import QueueSettings, get_settings
from scribequeue.core.bridge import LocalPersistenceBridge
from scribequeue.core.orchestrator import JobOrchestrator
from scribequeue.core.service import QueueService
from scribequeue.core.store import QueueStore
from scribequeue.log import configure_logging, get_logger


def test_defaults():
    settings = QueueSettings(_env_file=None)
    assert settings.max_retries == 3
    assert settings.item_ttl == timedelta(days=30)
    assert settings.dedup_window == timedelta(seconds=30)
    assert settings.debounce == timedelta(milliseconds=500)
    assert settings.safety_timeout == timedelta(minutes=5)
    assert settings.poll_interval == timedelta(seconds=3)
    assert settings.reconcile_window == timedelta(minutes=5)
    assert settings.reconcile_page_size == 10
    assert settings.max_payload_bytes == 50 * 1024 * 1024


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SCRIBEQUEUE_MAX_RETRIES", "5")
    monkeypatch.setenv("SCRIBEQUEUE_POLL_INTERVAL", "5")
    monkeypatch.setenv("SCRIBEQUEUE_POLL_BUDGET", "PT15M")
    monkeypatch.setenv("SCRIBEQUEUE_JSON_LOGS", "true")
    settings = get_settings()
    assert settings.max_retries == 5
    assert settings.poll_interval == timedelta(seconds=5)
    assert settings.poll_budget == timedelta(minutes=15)
    assert settings.json_logs is True


def test_env_file_is_read(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("SCRIBEQUEUE_RECONCILE_PAGE_SIZE=25\n")
    monkeypatch.chdir(tmp_path)
    assert QueueSettings().reconcile_page_size == 25


async def test_orchestrator_from_settings_uses_service_settings():
    settings = QueueSettings(
        _env_file=None,
        poll_interval=timedelta(seconds=2),
        safety_timeout=timedelta(minutes=1),
        reconcile_page_size=3,
    )
    service = QueueService(QueueStore(InMemoryStorage()), settings=settings)
    orchestrator = JobOrchestrator.from_settings(
        service=service,
        transcription=ScriptedTranscription(),
        notes=InMemoryNotes(),
        bridge=LocalPersistenceBridge(InMemoryBlobStore(), InMemoryMetadataStore()),
    )
    assert orchestrator.poll_interval == timedelta(seconds=2)
    assert orchestrator.safety_timeout == timedelta(minutes=1)
    assert orchestrator.reconcile_page_size == 3
    await orchestrator.aclose()


def test_json_logging(capsys):
    configure_logging(QueueSettings(_env_file=None, json_logs=True, log_level="debug"))
    try:
        get_logger("scribequeue.test").info("item_enqueued", item_id="item-1")
        line = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert line["event"] == "item_enqueued"
        assert line["item_id"] == "item-1"
        assert line["level"] == "info"
        assert "timestamp" in line
    finally:
        structlog.reset_defaults()


def test_log_level_filters(capsys):
    configure_logging(QueueSettings(_env_file=None, json_logs=True, log_level="warning"))
    try:
        log = get_logger("scribequeue.test")
        log.info("hidden")
        log.warning("shown")
        out = capsys.readouterr().out
        assert "hidden" not in out
        assert "shown" in out
    finally:
        structlog.reset_defaults()
