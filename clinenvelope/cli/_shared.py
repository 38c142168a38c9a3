"""Helpers shared by the CLI commands: log factories and output."""

from __future__ import annotations

from pathlib import Path

from rich.console import Console
from rich.panel import Panel

from clinenvelope.bridge.transport import QueueTransport
from clinenvelope.config import settings
from clinenvelope.core.correlation import CorrelationTracker
from clinenvelope.core.envelope_store import ContentAddressedEnvelopeStore
from clinenvelope.core.record_log import SqliteRecordLog
from clinenvelope.core.wire import serialize_envelope
from clinenvelope.models.envelope import Envelope
from clinenvelope.models.records import CorrelationRecord, DomainRecord

console = Console()


def received_log(path: Path | None = None) -> SqliteRecordLog[DomainRecord]:
    return SqliteRecordLog(path or settings.received_log_path, DomainRecord)


def sent_tracker(path: Path | None = None) -> CorrelationTracker:
    return CorrelationTracker(
        SqliteRecordLog(path or settings.sent_log_path, CorrelationRecord),
        scheme=settings.reference_scheme,
    )


def envelope_store(path: Path | None = None) -> ContentAddressedEnvelopeStore:
    return ContentAddressedEnvelopeStore(path or settings.envelope_store_path)


def emit_envelope(
    envelope: Envelope,
    *,
    output: Path | None,
    send: bool,
    queue_db: Path | None,
    sent_db: Path | None,
) -> None:
    """Write a built envelope out and optionally send and record it."""
    text = serialize_envelope(envelope, indent=2)
    if output is None:
        console.print_json(text)
    else:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text, encoding="utf-8")

    lines = [
        f"[bold]Envelope ID:[/bold]  {envelope.id}",
        f"[bold]Event:[/bold]        {envelope.header.event_code if envelope.header else 'unknown'}",
        f"[bold]Entries:[/bold]      {len(envelope.entries)}",
    ]
    if output is not None:
        lines.append(f"[bold]Written to:[/bold]   {output}")

    if send:
        with QueueTransport(queue_db_path=queue_db or settings.queue_path) as transport:
            transport.send(envelope)
        record = sent_tracker(sent_db).record_envelope(envelope)
        lines.append(f"[bold]Sent:[/bold]         queued, sent record {record.record_id}")

    console.print(
        Panel(
            "\n".join(lines),
            title="[bold]Envelope built[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )
