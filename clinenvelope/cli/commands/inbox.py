"""``clinenvelope inbox`` — list received records, newest first."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from clinenvelope.cli._shared import console, received_log


def _summary(record) -> str:
    if record.document_title:
        return record.document_title
    if record.communication_text:
        return record.communication_text
    return record.request_description or ""


def inbox_cmd(
    limit: int = typer.Option(20, "--limit", "-n", help="Show at most this many records."),
    received_db: Path = typer.Option(
        None, "--received-log", help="Path to the received-record database."
    ),
) -> None:
    """Show the received log, newest first."""
    records = received_log(received_db).snapshot()
    if not records:
        console.print("[dim]No envelopes received yet.[/dim]")
        return

    table = Table(title=f"Inbox ({len(records)} records)")
    table.add_column("Received", style="dim")
    table.add_column("Event", style="cyan")
    table.add_column("Patient")
    table.add_column("From")
    table.add_column("Content")
    table.add_column("Reply to", style="dim")

    for record in records[:limit]:
        table.add_row(
            record.received_at.strftime("%Y-%m-%d %H:%M:%S"),
            record.event_code,
            record.patient_name,
            record.sender_name or "",
            _summary(record),
            record.correlation_id or "",
        )
    console.print(table)
    if len(records) > limit:
        console.print(f"  [dim]... and {len(records) - limit} more[/dim]")
