"""
Central configuration for scribequeue.

Values are read from the environment (prefix ``SCRIBEQUEUE_``) and an
optional ``.env`` file. Durations accept seconds or ISO-8601 strings, e.g.
``SCRIBEQUEUE_POLL_INTERVAL=5`` or ``SCRIBEQUEUE_POLL_BUDGET=PT15M``.
"""

from __future__ import annotations

from datetime import timedelta

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class QueueSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SCRIBEQUEUE_",
        env_file=".env",
        extra="ignore",
    )

    # Logging
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)

    # Queue store
    max_retries: int = Field(default=3, ge=0)
    item_ttl: timedelta = Field(default=timedelta(days=30))
    retention: timedelta = Field(default=timedelta(days=30))
    cas_retries: int = Field(default=10, ge=1)

    # Payload limits
    min_payload_bytes: int = Field(default=1024, ge=1)
    max_payload_bytes: int = Field(default=50 * 1024 * 1024, ge=1)

    # Submission guards
    dedup_window: timedelta = Field(default=timedelta(seconds=30))
    debounce: timedelta = Field(default=timedelta(milliseconds=500))
    safety_timeout: timedelta = Field(default=timedelta(minutes=5))

    # Polling
    poll_interval: timedelta = Field(default=timedelta(seconds=3))
    poll_budget: timedelta = Field(default=timedelta(minutes=10))

    # Reconciliation
    reconcile_window: timedelta = Field(default=timedelta(minutes=5))
    reconcile_page_size: int = Field(default=10, ge=1)

    @field_validator(
        "item_ttl",
        "retention",
        "dedup_window",
        "debounce",
        "safety_timeout",
        "poll_interval",
        "poll_budget",
        "reconcile_window",
        mode="before",
    )
    @classmethod
    def _plain_seconds(cls, value: object) -> object:
        # "5" or "0.5" from the environment means seconds
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                return value
        return value


def get_settings() -> QueueSettings:
    return QueueSettings()
