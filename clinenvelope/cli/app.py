"""Main Typer application — imports and registers all CLI commands.

Entry point: ``clinenvelope`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from clinenvelope.cli.commands.build import build_app
from clinenvelope.cli.commands.correlate import correlate_cmd
from clinenvelope.cli.commands.inbox import inbox_cmd
from clinenvelope.cli.commands.poll import poll_cmd
from clinenvelope.cli.commands.receive import receive_cmd
from clinenvelope.config import settings
from clinenvelope.log import configure_logging

app = typer.Typer(
    name="clinenvelope",
    help="clinenvelope: build, receive and correlate clinical message envelopes.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None, "--log-level", "-L", help="Log level (default from CLINENVELOPE_LOG_LEVEL)."
    ),
) -> None:
    """Install the Rich log handler before any command runs."""
    configure_logging(log_level or settings.log_level)


# Register subcommands
app.add_typer(build_app, name="build")
app.command(name="receive", help="Parse raw envelope files into the received log.")(receive_cmd)
app.command(name="poll", help="Drain the transport queue through the poller.")(poll_cmd)
app.command(name="inbox", help="List received envelopes, newest first.")(inbox_cmd)
app.command(name="correlate", help="Find the sent envelope a response refers to.")(correlate_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
