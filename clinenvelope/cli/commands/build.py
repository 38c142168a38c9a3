"""``clinenvelope build ...`` — build outgoing envelopes.

Each subcommand builds one envelope kind, prints or writes its JSON and,
with ``--send``, enqueues it on the queue transport and records it in the
sent log for later correlation.
"""

from __future__ import annotations

import mimetypes
from pathlib import Path

import typer

from clinenvelope.cli._shared import console, emit_envelope
from clinenvelope.core.builder import EnvelopeBuilder, subject_from_display

build_app = typer.Typer(
    name="build",
    help="Build outgoing envelopes.",
    no_args_is_help=True,
)

_PATIENT = typer.Option(..., "--patient", "-p", help="Patient display name, e.g. 'Max Mustermann'.")
_BIRTH_DATE = typer.Option(None, "--birth-date", "-b", help="Patient birth date (YYYY-MM-DD).")
_OUTPUT = typer.Option(None, "--output", "-o", help="Write the envelope JSON to this file.")
_SEND = typer.Option(False, "--send", help="Enqueue on the queue transport and record as sent.")
_QUEUE = typer.Option(None, "--queue", help="Path to the SQLite transport queue.")
_SENT_LOG = typer.Option(None, "--sent-log", help="Path to the sent-record database.")


def _read_attachment(path: Path) -> bytes:
    if not path.is_file():
        console.print(f"[bold red]Attachment not found:[/bold red] {path}")
        raise typer.Exit(code=1)
    return path.read_bytes()


def _content_type_for(path: Path, content_type: str | None) -> str:
    if content_type:
        return content_type
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


@build_app.command(name="document", help="Build a document-transfer envelope.")
def document_cmd(
    attachment: Path = typer.Argument(..., help="File to attach."),
    patient: str = _PATIENT,
    birth_date: str = _BIRTH_DATE,
    title: str = typer.Option(..., "--title", "-t", help="Document title."),
    content_type: str = typer.Option(None, "--content-type", help="Override the attachment media type."),
    output: Path = _OUTPUT,
    send: bool = _SEND,
    queue_db: Path = _QUEUE,
    sent_db: Path = _SENT_LOG,
) -> None:
    """Build a document transfer for a patient from a local file."""
    envelope = EnvelopeBuilder().build_document_transfer(
        subject_from_display(patient, birth_date),
        title,
        _read_attachment(attachment),
        attachment.name,
        content_type=_content_type_for(attachment, content_type),
    )
    emit_envelope(envelope, output=output, send=send, queue_db=queue_db, sent_db=sent_db)


@build_app.command(name="request", help="Build an information-request envelope.")
def request_cmd(
    patient: str = _PATIENT,
    birth_date: str = _BIRTH_DATE,
    description: str = typer.Option(..., "--description", "-d", help="What is being requested."),
    output: Path = _OUTPUT,
    send: bool = _SEND,
    queue_db: Path = _QUEUE,
    sent_db: Path = _SENT_LOG,
) -> None:
    envelope = EnvelopeBuilder().build_request(
        subject_from_display(patient, birth_date), description
    )
    emit_envelope(envelope, output=output, send=send, queue_db=queue_db, sent_db=sent_db)


@build_app.command(name="reply", help="Build a text response to a received envelope.")
def reply_cmd(
    original_id: str = typer.Argument(..., help="ID of the envelope being answered."),
    patient: str = _PATIENT,
    birth_date: str = _BIRTH_DATE,
    text: str = typer.Option(..., "--text", help="Response message text."),
    output: Path = _OUTPUT,
    send: bool = _SEND,
    queue_db: Path = _QUEUE,
    sent_db: Path = _SENT_LOG,
) -> None:
    envelope = EnvelopeBuilder().build_text_response(
        original_id, subject_from_display(patient, birth_date), text
    )
    emit_envelope(envelope, output=output, send=send, queue_db=queue_db, sent_db=sent_db)


@build_app.command(name="document-reply", help="Answer a received envelope with a document.")
def document_reply_cmd(
    original_id: str = typer.Argument(..., help="ID of the envelope being answered."),
    attachment: Path = typer.Argument(..., help="File to attach."),
    patient: str = _PATIENT,
    birth_date: str = _BIRTH_DATE,
    title: str = typer.Option(..., "--title", "-t", help="Document title."),
    content_type: str = typer.Option(None, "--content-type", help="Override the attachment media type."),
    output: Path = _OUTPUT,
    send: bool = _SEND,
    queue_db: Path = _QUEUE,
    sent_db: Path = _SENT_LOG,
) -> None:
    envelope = EnvelopeBuilder().build_document_response(
        original_id,
        subject_from_display(patient, birth_date),
        title,
        _read_attachment(attachment),
        attachment.name,
        content_type=_content_type_for(attachment, content_type),
    )
    emit_envelope(envelope, output=output, send=send, queue_db=queue_db, sent_db=sent_db)
