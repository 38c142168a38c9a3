"""Records produced and kept by the engine.

``DomainRecord`` is the flattened, receiver-side view of one accepted
envelope.  ``CorrelationRecord`` remembers one envelope this side sent.
Both are frozen and live in append-only record logs.
"""

from __future__ import annotations

import base64
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LogRecord(BaseModel):
    """Base for anything kept in a record log."""

    model_config = ConfigDict(frozen=True)

    record_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    recorded_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class DomainRecord(LogRecord):
    """Everything a receiver needs to know about one parsed envelope."""

    envelope_id: str | None = None
    event_code: str = "unknown"

    # Header source
    source_name: str = "Unknown Source"
    source_software: str | None = None
    source_version: str | None = None
    source_contact: str | None = None

    # Parties
    patient_name: str = "Unknown Patient"
    patient_birth_date: str | None = None
    patient_id: str | None = None
    sender_name: str | None = None
    author_name: str | None = None
    recipient_name: str | None = None
    organization_name: str | None = None
    organization_type: str | None = None

    # Document transfer
    document_title: str | None = None
    document_type: str | None = None
    document_category: str | None = None
    document_date: datetime | None = None
    document_content: str | None = None
    document_base64_data: str | None = None
    is_binary: bool = False
    document_content_type: str | None = None
    document_filename: str | None = None

    # Communication (text response)
    communication_text: str | None = None
    communication_sent: datetime | None = None

    # Request
    request_description: str | None = None
    request_status: str | None = None
    request_priority: str | None = None
    request_authored_on: datetime | None = None

    correlation_id: str | None = None
    storage_id: str | None = None
    raw_envelope: str = ""
    issues: tuple[str, ...] = ()

    @property
    def received_at(self) -> datetime:
        return self.recorded_at

    @property
    def is_document(self) -> bool:
        return self.document_title is not None or self.document_content_type is not None

    @property
    def is_communication(self) -> bool:
        return self.communication_text is not None

    @property
    def is_request(self) -> bool:
        return self.request_description is not None or self.request_status is not None

    @property
    def is_response(self) -> bool:
        """True when the envelope answers an earlier one."""
        return bool(self.correlation_id)

    def document_bytes(self) -> bytes | None:
        """Return the document payload as bytes, binary or text alike."""
        if self.document_base64_data is not None:
            return base64.b64decode(self.document_base64_data)
        if self.document_content is not None:
            return self.document_content.encode("utf-8")
        return None


class CorrelationRecord(LogRecord):
    """One envelope sent by this side, kept for response correlation."""

    envelope_id: str
    event_code: str = ""
    subject_name: str | None = None
    subject_birth_date: str | None = None
    description: str | None = None
    recipient_name: str | None = None
    storage_id: str | None = None
    metadata: dict[str, Any] = {}

    @property
    def sent_at(self) -> datetime:
        return self.recorded_at


class SkipReason(str, Enum):
    """Why a well-formed envelope was not turned into a record."""

    NOT_A_MESSAGE = "not_a_message"
    NO_HEADER = "no_header"
    EVENT_NOT_HANDLED = "event_not_handled"


class Skip(BaseModel):
    """Parse outcome for an envelope that is intentionally ignored."""

    model_config = ConfigDict(frozen=True)

    reason: SkipReason
    detail: str = ""
