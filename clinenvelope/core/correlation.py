"""Correlation tracker — remembers sent envelopes and matches responses.

Matching is a read-time join: the parser never consults the tracker.  A
response whose correlation id matches nothing simply yields ``None``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from clinenvelope.core.codec import ContentCodec
from clinenvelope.core.record_log import InMemoryRecordLog, RecordLog
from clinenvelope.core.resolver import ReferenceResolver
from clinenvelope.core.wire import DEFAULT_SCHEME
from clinenvelope.models.envelope import Envelope
from clinenvelope.models.records import CorrelationRecord, DomainRecord
from clinenvelope.models.resources import (
    CommunicationPayload,
    DocumentPayload,
    RequestPayload,
    Subject,
    first_attachment,
)

logger = logging.getLogger(__name__)

# Metadata keys lifted into CorrelationRecord fields.
_RECORD_FIELDS = (
    "event_code",
    "subject_name",
    "subject_birth_date",
    "description",
    "recipient_name",
    "storage_id",
)


class CorrelationTracker:
    """Append-only log of sent envelopes with correlation lookup.

    Parameters
    ----------
    log:
        The sent-record log.  A fresh in-memory log when omitted.
    scheme:
        Reference scheme stripped from ids on both sides of a lookup.
    """

    def __init__(
        self,
        log: RecordLog[CorrelationRecord] | None = None,
        scheme: str = DEFAULT_SCHEME,
        codec: ContentCodec | None = None,
    ) -> None:
        self._log: RecordLog[CorrelationRecord] = log if log is not None else InMemoryRecordLog()
        self._resolver = ReferenceResolver(scheme)
        self._codec = codec or ContentCodec()

    @property
    def log(self) -> RecordLog[CorrelationRecord]:
        return self._log

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_sent(
        self, envelope_id: str, metadata: Mapping[str, Any] | None = None
    ) -> CorrelationRecord:
        """Append a record for one successfully sent envelope.

        Known metadata keys (``event_code``, ``subject_name``, ...) become
        record fields; everything else is kept in ``metadata``.
        """
        metadata = dict(metadata or {})
        fields = {key: metadata.pop(key) for key in _RECORD_FIELDS if key in metadata}
        record = CorrelationRecord(envelope_id=envelope_id, metadata=metadata, **fields)
        self._log.append(record)
        logger.info("Recorded sent envelope %s (%s)", envelope_id, record.event_code or "?")
        return record

    def record_envelope(
        self, envelope: Envelope, storage_id: str | None = None
    ) -> CorrelationRecord:
        """Record a built envelope, deriving metadata from its entries."""
        metadata: dict[str, Any] = {"storage_id": storage_id}
        header = envelope.header
        if header is not None:
            metadata["event_code"] = header.event_code
            if header.destination is not None:
                metadata["recipient_name"] = header.destination.name
            if header.response is not None:
                metadata["in_response_to"] = header.response.identifier

        subjects = envelope.entries_of(Subject)
        if subjects:
            metadata["subject_name"] = subjects[0].display_name
            metadata["subject_birth_date"] = subjects[0].birth_date

        metadata["description"] = self._describe(envelope)
        return self.record_sent(envelope.id, metadata)

    def _describe(self, envelope: Envelope) -> str | None:
        for document in envelope.entries_of(DocumentPayload):
            return document.description
        for carrier in (*envelope.entries_of(RequestPayload), *envelope.entries_of(CommunicationPayload)):
            decoded = self._codec.decode(first_attachment(carrier.payload))
            if isinstance(decoded.content, str):
                return decoded.content
        return None

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def find_sent_by_correlation_id(self, candidate: str | None) -> CorrelationRecord | None:
        """Return the first sent record whose id matches *candidate*.

        The reference scheme is stripped from both sides before the exact
        comparison.
        """
        key = self._resolver.strip(candidate)
        if key is None:
            return None
        match = self._log.find(lambda record: self._resolver.strip(record.envelope_id) == key)
        if match is None:
            logger.debug("No sent envelope matches correlation id %s", candidate)
        return match

    def find_for(self, record: DomainRecord) -> CorrelationRecord | None:
        """The sent record a received record responds to, if any."""
        if not record.correlation_id:
            return None
        return self.find_sent_by_correlation_id(record.correlation_id)

    def list_sent(self) -> list[CorrelationRecord]:
        """All sent records, newest first."""
        return self._log.snapshot()
