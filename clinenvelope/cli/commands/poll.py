"""``clinenvelope poll`` — drain the queue transport through the poller."""

from __future__ import annotations

import threading
from pathlib import Path

import typer

from clinenvelope.bridge.transport import QueueTransport
from clinenvelope.cli._shared import console, envelope_store, received_log
from clinenvelope.config import settings
from clinenvelope.core.parser import AcceptPolicy, EnvelopeParser
from clinenvelope.core.poller import Poller


def poll_cmd(
    once: bool = typer.Option(False, "--once", help="Run a single tick and exit."),
    requests: bool = typer.Option(
        False,
        "--requests",
        "-r",
        help="Accept request envelopes instead of documents and responses.",
    ),
    interval: float = typer.Option(
        None, "--interval", "-i", help="Seconds between ticks (default from settings)."
    ),
    queue_db: Path = typer.Option(None, "--queue", help="Path to the SQLite transport queue."),
    received_db: Path = typer.Option(
        None, "--received-log", help="Path to the received-record database."
    ),
    store_dir: Path = typer.Option(None, "--store", help="Path to the envelope store directory."),
) -> None:
    """Poll the transport queue and parse everything that arrives."""
    parser = EnvelopeParser(
        accept=AcceptPolicy.requests() if requests else None,
        received_log=received_log(received_db),
        storage=envelope_store(store_dir),
    )

    with QueueTransport(queue_db_path=queue_db or settings.queue_path) as transport:
        poller = Poller(transport, parser)
        if once:
            result = poller.tick()
            if result is not None:
                console.print(
                    f"[bold]Fetched:[/bold] {result.fetched}  "
                    f"[green]processed:[/green] {result.processed}  "
                    f"[yellow]skipped:[/yellow] {result.skipped}  "
                    f"[red]failed:[/red] {result.failed}"
                )
            return

        seconds = interval if interval is not None else settings.poll_interval_seconds
        console.print(f"[dim]Polling every {seconds}s. Press Ctrl+C to stop.[/dim]")
        stop = threading.Event()
        try:
            poller.run(stop, interval=seconds)
        except KeyboardInterrupt:
            stop.set()
            console.print("[dim]Stopped.[/dim]")
