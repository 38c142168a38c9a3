"""``clinenvelope correlate CORRELATION_ID`` — find the sent envelope a
response refers to."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.panel import Panel

from clinenvelope.cli._shared import console, sent_tracker


def correlate_cmd(
    correlation_id: str = typer.Argument(
        ..., help="Correlation id from a response, with or without the urn:uuid: prefix."
    ),
    sent_db: Path = typer.Option(None, "--sent-log", help="Path to the sent-record database."),
) -> None:
    """Look up the sent record matching a correlation id."""
    tracker = sent_tracker(sent_db)
    record = tracker.find_sent_by_correlation_id(correlation_id)
    if record is None:
        console.print(f"[bold red]No sent envelope matches:[/bold red] {correlation_id}")
        sent = tracker.list_sent()
        if sent:
            console.print("\n[bold]Recently sent:[/bold]")
            for rec in sent[:10]:
                console.print(f"  [cyan]{rec.envelope_id}[/cyan] {rec.event_code}")
        raise typer.Exit(code=1)

    console.print(
        Panel(
            "\n".join([
                f"[bold]Envelope ID:[/bold]  {record.envelope_id}",
                f"[bold]Sent at:[/bold]      {record.sent_at.isoformat()}",
                f"[bold]Event:[/bold]        {record.event_code}",
                f"[bold]Patient:[/bold]      {record.subject_name or '-'} ({record.subject_birth_date or '?'})",
                f"[bold]Description:[/bold]  {record.description or '-'}",
                f"[bold]Recipient:[/bold]    {record.recipient_name or '-'}",
            ]),
            title="[bold]Matched sent envelope[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )
