#!/usr/bin/env -S uv run
"""
Queue Simulation Tool for scribequeue

Pushes a batch of fake recordings through QueueService and JobOrchestrator
against scripted transcription and notes collaborators, then prints the
outcome of every job and the queue statistics.

Scenarios:
    happy     — every transcription completes and a note is created
    failed    — the service reports FAILED and no note exists
    lost-note — the service reports FAILED but the note was created anyway
                (recovered by reconciliation)
    timeout   — the job never leaves IN_PROGRESS

Usage:
    uv run tools/queue_sim.py
    uv run tools/queue_sim.py --recordings 5 --scenario lost-note
    uv run tools/queue_sim.py --storage filesystem --json-logs
    uv run tools/queue_sim.py --help
"""
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "scribequeue",
#     "typer>=0.9.0",
#     "rich>=13.0",
# ]
# ///

from __future__ import annotations

import asyncio
import os
import tempfile
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from scribequeue import (
    InMemoryStorage,
    JobOrchestrator,
    LocalFileSystemStorage,
    LocalPersistenceBridge,
    MedicalContext,
    PatientInfo,
    QueueService,
    QueueSettings,
    QueueStats,
    QueueStore,
    Urgency,
    configure_logging,
)
from scribequeue.adapters.collaborators.memory import (
    InMemoryNotes,
    ScriptedTranscription,
    completed,
)
from scribequeue.adapters.persistence.filesystem import (
    DirectoryBlobStore,
    FileMetadataStore,
)
from scribequeue.adapters.persistence.memory import (
    InMemoryBlobStore,
    InMemoryMetadataStore,
)
from scribequeue.domain.jobs import Job
from scribequeue.domain.messages import PollResult, PollStatus

app = typer.Typer(
    help="Simulate recordings flowing through scribequeue",
    add_completion=False,
)


class Scenario(str, Enum):
    HAPPY = "happy"
    FAILED = "failed"
    LOST_NOTE = "lost-note"
    TIMEOUT = "timeout"


@dataclass
class SimulationResult:
    jobs: list[Job]
    stats: QueueStats
    elapsed: float


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_transcription(scenario: Scenario) -> ScriptedTranscription:
    working = PollResult(status=PollStatus.IN_PROGRESS)
    match scenario:
        case Scenario.HAPPY:
            return ScriptedTranscription(script=[working, completed()])
        case Scenario.FAILED | Scenario.LOST_NOTE:
            return ScriptedTranscription(
                script=[working, PollResult(status=PollStatus.FAILED, error="engine crashed")]
            )
        case Scenario.TIMEOUT:
            return ScriptedTranscription(script=[working])


def build_stores(
    storage: str, workdir: Path
) -> tuple[InMemoryStorage | LocalFileSystemStorage, LocalPersistenceBridge]:
    if storage == "memory":
        return InMemoryStorage(), LocalPersistenceBridge(
            InMemoryBlobStore(), InMemoryMetadataStore()
        )
    if storage == "filesystem":
        return LocalFileSystemStorage(workdir / "queue_state.json"), LocalPersistenceBridge(
            DirectoryBlobStore(workdir / "audio"), FileMetadataStore(workdir / "jobs.json")
        )
    raise ValueError(f"Unknown storage: {storage}")


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------


async def run_simulation(
    recordings: int,
    scenario: Scenario,
    storage: str,
    workdir: Path,
) -> SimulationResult:
    settings = QueueSettings(
        poll_interval=timedelta(milliseconds=20),
        poll_budget=timedelta(milliseconds=300),
        debounce=timedelta(0),
    )
    state_storage, bridge = build_stores(storage, workdir)
    service = QueueService(QueueStore(state_storage, settings.cas_retries), settings)
    notes = InMemoryNotes(owner_id="dr-sim")

    transcription = build_transcription(scenario)
    if scenario == Scenario.LOST_NOTE:

        async def poll_and_leak_note(job_id: str) -> PollResult:
            result = await ScriptedTranscription.poll(transcription, job_id)
            if result.status == PollStatus.FAILED:
                notes.add(patient_name="Simulated patient")
            return result

        transcription.poll = poll_and_leak_note  # type: ignore[method-assign]

    loop = asyncio.get_running_loop()
    started = loop.time()
    finished: list[Job] = []
    async with JobOrchestrator.from_settings(
        service=service,
        transcription=transcription,
        notes=notes,
        bridge=bridge,
        settings=settings,
    ) as orchestrator:
        for n in range(recordings):
            urgent = n % 4 == 0
            await orchestrator.enqueue(
                os.urandom(2048),
                owner_id="dr-sim",
                filename=f"visit-{n + 1}.webm",
                patient=PatientInfo(name=f"Patient {n + 1}", age=30 + n),
                medical_context=MedicalContext(
                    chief_complaint="headache",
                    urgency=Urgency.IMMEDIATE if urgent else None,
                ),
            )

        while (job := await orchestrator.process_next()) is not None:
            finished.append(await orchestrator.wait(job.item_id))

        stats = await orchestrator.stats()

    return SimulationResult(jobs=finished, stats=stats, elapsed=loop.time() - started)


# ---------------------------------------------------------------------------
# Result Formatting
# ---------------------------------------------------------------------------


def format_results(result: SimulationResult, scenario: Scenario) -> None:
    console = Console()
    console.print()
    console.print(
        Panel(
            f"[bold cyan]Simulation: {scenario.value}[/bold cyan] "
            f"({len(result.jobs)} jobs in {result.elapsed:.2f}s)",
            expand=False,
        )
    )

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("File", style="cyan")
    table.add_column("Priority")
    table.add_column("State")
    table.add_column("Note", justify="right")
    table.add_column("Reconciled")
    table.add_column("Next action")
    for job in result.jobs:
        table.add_row(
            job.filename or "-",
            job.item.priority.value if job.item else "-",
            job.state.value,
            job.note_id or "-",
            "yes" if job.reconciled else "no",
            job.next_action.value if job.next_action else "-",
        )
    console.print(table)

    stats = Table(show_header=True, header_style="bold magenta")
    stats.add_column("Status")
    stats.add_column("Items", justify="right", style="green")
    for status, count in result.stats.by_status.items():
        stats.add_row(status.value, str(count))
    console.print(stats)
    console.print(
        f"avg processing: {result.stats.avg_processing_time.total_seconds():.3f}s  "
        f"avg queue time: {result.stats.avg_queue_time.total_seconds():.3f}s"
    )
    console.print()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@app.command()
def main(
    recordings: int = typer.Option(
        4,
        "--recordings",
        "-n",
        help="Number of recordings to enqueue",
    ),
    scenario: Scenario = typer.Option(
        Scenario.HAPPY,
        "--scenario",
        "-s",
        help="How the transcription service behaves",
    ),
    storage: str = typer.Option(
        "memory",
        "--storage",
        help="memory or filesystem",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Emit JSON log lines instead of console output",
    ),
) -> None:
    """
    Simulate recordings flowing through the queue and the orchestrator.

    Every fourth recording is marked clinically urgent, so it is escalated
    and served before the others.
    """
    configure_logging(QueueSettings(json_logs=json_logs))

    with tempfile.TemporaryDirectory() as temp_dir_str:
        try:
            result = asyncio.run(
                run_simulation(recordings, scenario, storage, Path(temp_dir_str))
            )
        except ValueError as e:
            Console(stderr=True).print(f"[red]{e}[/red]")
            raise typer.Exit(code=1)

    format_results(result, scenario)


if __name__ == "__main__":
    app()
