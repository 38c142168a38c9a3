"""``clinenvelope receive FILE...`` — parse raw envelope files.

Accepted envelopes are persisted in the envelope store and appended to
the received log; skips and unreadable files are reported, never fatal.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from clinenvelope.cli._shared import console, envelope_store, received_log
from clinenvelope.core.parser import AcceptPolicy, EnvelopeParser
from clinenvelope.errors import StructuralFailure
from clinenvelope.models.records import Skip


def receive_cmd(
    files: list[Path] = typer.Argument(..., help="Raw envelope JSON files."),
    requests: bool = typer.Option(
        False,
        "--requests",
        "-r",
        help="Accept request envelopes instead of documents and responses.",
    ),
    received_db: Path = typer.Option(
        None, "--received-log", help="Path to the received-record database."
    ),
    store_dir: Path = typer.Option(
        None, "--store", help="Path to the envelope store directory."
    ),
) -> None:
    """Parse envelope files into the received log."""
    parser = EnvelopeParser(
        accept=AcceptPolicy.requests() if requests else None,
        received_log=received_log(received_db),
        storage=envelope_store(store_dir),
    )

    table = Table(title="Received Envelopes")
    table.add_column("File", style="cyan")
    table.add_column("Outcome")
    table.add_column("Event")
    table.add_column("Patient")
    table.add_column("Envelope ID", style="dim")

    failures = 0
    for path in files:
        try:
            outcome = parser.parse(path.read_bytes())
        except (OSError, StructuralFailure) as exc:
            failures += 1
            table.add_row(path.name, f"[red]failed[/red] {exc}", "", "", "")
            continue
        if isinstance(outcome, Skip):
            table.add_row(path.name, f"[yellow]skipped[/yellow] ({outcome.reason.value})", outcome.detail, "", "")
            continue
        table.add_row(
            path.name,
            "[green]accepted[/green]",
            outcome.event_code,
            outcome.patient_name,
            outcome.envelope_id or "",
        )

    console.print(table)
    if failures == len(files):
        raise typer.Exit(code=1)
