"""clinenvelope CLI — Typer-based command-line interface.

Provides the ``clinenvelope`` command with subcommands for building
envelopes, receiving and polling them, listing the inbox and correlating
responses with sent requests.

All output uses Rich for formatted terminal display.
"""
