"""Envelope parser — validates incoming envelopes and extracts a DomainRecord.

Every raw envelope is:
1. Deserialized (malformed JSON is a ``StructuralFailure``)
2. Sorted into typed entry pools in one pass
3. Checked against the accept policy (otherwise a ``Skip``)
4. Resolved and decoded field by field (field problems degrade to None)
5. Persisted through the injected ``Storage`` and appended to the
   received log
"""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import Iterable, Sequence
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from clinenvelope.config import EngineSettings, settings as default_settings
from clinenvelope.core.codec import ContentCodec, DecodedContent
from clinenvelope.core.envelope_store import NullStorage, Storage
from clinenvelope.core.record_log import InMemoryRecordLog, RecordLog
from clinenvelope.core.resolver import ReferenceResolver
from clinenvelope.errors import PayloadDecodeError, StructuralFailure, UnresolvedReference
from clinenvelope.models.envelope import MESSAGE_KIND, Envelope
from clinenvelope.models.records import DomainRecord, Skip, SkipReason
from clinenvelope.models.resources import (
    Attachment,
    CommunicationPayload,
    Context,
    DocumentPayload,
    Endpoint,
    EventCode,
    Header,
    Principal,
    PrincipalCategory,
    PrincipalRole,
    Reference,
    RequestPayload,
    ResourceBase,
    ResourceKind,
    Subject,
    UnknownResource,
    first_attachment,
)

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=ResourceBase)

DEFAULT_DOCUMENT_TYPE = "Document"


# ---------------------------------------------------------------------------
# Entry pools
# ---------------------------------------------------------------------------

_POOL_FOR_KIND: dict[ResourceKind, str] = {
    ResourceKind.HEADER: "headers",
    ResourceKind.ENDPOINT: "endpoints",
    ResourceKind.PRINCIPAL: "principals",
    ResourceKind.PRINCIPAL_ROLE: "roles",
    ResourceKind.SUBJECT: "subjects",
    ResourceKind.CONTEXT: "contexts",
    ResourceKind.DOCUMENT_PAYLOAD: "documents",
    ResourceKind.COMMUNICATION_PAYLOAD: "communications",
    ResourceKind.REQUEST_PAYLOAD: "requests",
}


class EntryPools(BaseModel):
    """Entries of one envelope sorted by kind, each pool in envelope order."""

    model_config = ConfigDict(frozen=True)

    headers: list[Header] = []
    endpoints: list[Endpoint] = []
    principals: list[Principal] = []
    roles: list[PrincipalRole] = []
    subjects: list[Subject] = []
    contexts: list[Context] = []
    documents: list[DocumentPayload] = []
    communications: list[CommunicationPayload] = []
    requests: list[RequestPayload] = []
    unknown: list[UnknownResource] = []

    @classmethod
    def from_entries(cls, entries: Iterable[ResourceBase]) -> EntryPools:
        pools: dict[str, list[ResourceBase]] = {name: [] for name in cls.model_fields}
        for entry in entries:
            if isinstance(entry, UnknownResource):
                pools["unknown"].append(entry)
            else:
                pools[_POOL_FOR_KIND[entry.resource_kind]].append(entry)
        return cls(**pools)

    @property
    def practitioners(self) -> list[Principal]:
        return [p for p in self.principals if p.category is PrincipalCategory.PRACTITIONER]

    @property
    def organizations(self) -> list[Principal]:
        return [p for p in self.principals if p.category is PrincipalCategory.ORGANIZATION]


# ---------------------------------------------------------------------------
# Accept policy
# ---------------------------------------------------------------------------


class AcceptPolicy(BaseModel):
    """Which envelopes a parser instance turns into records.

    The document side accepts by event code; the request side accepts any
    envelope that carries a RequestPayload.
    """

    model_config = ConfigDict(frozen=True)

    event_codes: frozenset[str] | None = None
    require_request_payload: bool = False

    @classmethod
    def documents(
        cls,
        event_codes: Iterable[str] = (EventCode.DOCUMENT.value, EventCode.STATUS.value),
    ) -> AcceptPolicy:
        return cls(event_codes=frozenset(event_codes))

    @classmethod
    def requests(cls) -> AcceptPolicy:
        return cls(require_request_payload=True)

    def accepts(self, event_code: str, pools: EntryPools) -> bool:
        if self.require_request_payload and not pools.requests:
            return False
        if self.event_codes is not None and event_code not in self.event_codes:
            return False
        return True


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class EnvelopeParser:
    """Turns raw envelope text into DomainRecords.

    Parameters
    ----------
    accept:
        Accept policy; by default the configured document-side event codes.
    received_log:
        Log every accepted record is appended to.  A fresh in-memory log
        when omitted.
    storage:
        Envelope persistence collaborator.  Failures are tolerated.
    settings:
        Engine configuration; the module-level settings when omitted.
    """

    def __init__(
        self,
        accept: AcceptPolicy | None = None,
        received_log: RecordLog[DomainRecord] | None = None,
        storage: Storage | None = None,
        settings: EngineSettings | None = None,
        codec: ContentCodec | None = None,
    ) -> None:
        self._settings = settings or default_settings
        self._accept = accept or AcceptPolicy.documents(self._settings.accepted_event_codes)
        self._received_log: RecordLog[DomainRecord] = (
            received_log if received_log is not None else InMemoryRecordLog()
        )
        self._storage: Storage = storage if storage is not None else NullStorage()
        self._resolver = ReferenceResolver(self._settings.reference_scheme)
        self._codec = codec or ContentCodec(self._settings.binary_content_types)

    @property
    def received_log(self) -> RecordLog[DomainRecord]:
        return self._received_log

    @property
    def accept(self) -> AcceptPolicy:
        return self._accept

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def parse(self, raw: str | bytes) -> DomainRecord | Skip:
        """Parse one raw envelope.

        Returns a ``DomainRecord`` for accepted envelopes and a ``Skip``
        for envelopes that are intentionally ignored.

        Raises
        ------
        StructuralFailure
            If the text is not a readable message envelope.
        """
        text = self._as_text(raw)
        data = self._load(text)

        kind = data.get("kind")
        if kind != MESSAGE_KIND:
            logger.debug("Skipping envelope %r of kind %r", data.get("id"), kind)
            return Skip(reason=SkipReason.NOT_A_MESSAGE, detail=f"kind={kind!r}")

        try:
            envelope = Envelope.from_wire(data, keep=("entries",))
        except ValidationError as exc:
            raise StructuralFailure(f"Envelope structure invalid: {exc}") from exc

        envelope_id = envelope.id if "id" in data and "id" not in envelope.dropped_fields else None
        pools = EntryPools.from_entries(envelope.entries)
        issues: list[str] = []

        if not pools.headers:
            logger.debug("Skipping envelope %s without header", envelope_id)
            return Skip(reason=SkipReason.NO_HEADER, detail=f"envelope {envelope_id}")

        header = pools.headers[0]
        if len(pools.headers) > 1:
            logger.warning(
                "Envelope %s has %d headers, using the first (%s)",
                envelope_id,
                len(pools.headers),
                header.identity,
            )
            issues.append(f"{len(pools.headers)} headers, first used")

        event_code = header.event_code
        if not self._accept.accepts(event_code, pools):
            logger.debug("Skipping envelope %s with event %r", envelope_id, event_code)
            return Skip(reason=SkipReason.EVENT_NOT_HANDLED, detail=event_code)

        if pools.unknown:
            issues.append(f"{len(pools.unknown)} unknown entries ignored")
        issues.extend(_dropped_field_issues(envelope))

        fields = self._extract(header, pools, issues)
        fields.update(
            envelope_id=envelope_id,
            event_code=event_code,
            correlation_id=header.response.identifier if header.response else None,
            raw_envelope=text,
            storage_id=self._persist(envelope),
            issues=tuple(issues),
        )
        record = DomainRecord(**fields)
        self._received_log.append(record)
        logger.info(
            "Parsed %s envelope %s for %s (record %s)",
            event_code,
            envelope_id,
            record.patient_name,
            record.record_id,
        )
        return record

    def process(self, raw: str | bytes) -> DomainRecord | None:
        """Parse for the polling path: structural failures are absorbed."""
        try:
            outcome = self.parse(raw)
        except StructuralFailure as exc:
            logger.error("Dropping unreadable envelope: %s", exc)
            return None
        if isinstance(outcome, Skip):
            return None
        return outcome

    # ------------------------------------------------------------------
    # Deserialization
    # ------------------------------------------------------------------

    @staticmethod
    def _as_text(raw: str | bytes) -> str:
        if isinstance(raw, bytes):
            try:
                return raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise StructuralFailure(f"Envelope is not UTF-8 text: {exc}") from exc
        return raw

    @staticmethod
    def _load(text: str) -> dict[str, Any]:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StructuralFailure(f"Invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise StructuralFailure(
                f"Envelope must be a JSON object, got {type(data).__name__}"
            )
        return data

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def _extract(self, header: Header, pools: EntryPools, issues: list[str]) -> dict[str, Any]:
        document = pools.documents[0] if pools.documents else None
        communication = pools.communications[0] if pools.communications else None
        request = pools.requests[0] if pools.requests else None
        fields: dict[str, Any] = {}

        source = header.source
        if source is not None:
            fields["source_name"] = source.name or "Unknown Source"
            fields["source_software"] = source.software
            fields["source_version"] = source.version
            fields["source_contact"] = source.contact.value if source.contact else None

        # Subject
        subject_ref = next(
            (c.subject for c in (document, communication, request) if c is not None and c.subject),
            None,
        )
        subject = self._resolve(pools.subjects, subject_ref, "subject", issues)
        if subject is None and subject_ref is None and pools.subjects:
            subject = pools.subjects[0]
        if subject is not None:
            fields["patient_name"] = subject.display_name
            fields["patient_birth_date"] = subject.birth_date
            fields["patient_id"] = subject.identity

        # Sender and author
        sender_role = self._resolver.resolve(pools.roles, header.sender)
        fields["sender_name"] = self._party_name(header.sender, pools, "sender", issues)
        if fields["sender_name"] is None:
            carrier_sender = (communication.sender if communication else None) or (
                request.requester if request else None
            )
            fields["sender_name"] = self._party_name(carrier_sender, pools, "sender", issues)

        author_ref = document.authors[0] if document is not None and document.authors else header.author
        fields["author_name"] = self._party_name(author_ref, pools, "author", issues)
        author_role = self._resolver.resolve(pools.roles, author_ref)

        # Recipient
        receiver_ref = header.destination.receiver_ref if header.destination else None
        if receiver_ref is None:
            carrier = communication or request
            receiver_ref = carrier.recipients[0] if carrier and carrier.recipients else None
        fields["recipient_name"] = self._party_name(receiver_ref, pools, "recipient", issues)

        # Organization
        organization = None
        role = author_role or sender_role
        if role is not None and role.organization is not None:
            organization = self._resolve(pools.organizations, role.organization, "organization", issues)
        if organization is None and pools.organizations:
            organization = pools.organizations[0]
        if organization is not None:
            fields["organization_name"] = organization.display_name
            fields["organization_type"] = organization.types[0].label if organization.types else None

        # Payloads
        if document is not None:
            fields["document_title"] = document.description
            fields["document_type"] = (
                document.document_type.label if document.document_type else None
            ) or DEFAULT_DOCUMENT_TYPE
            fields["document_category"] = document.category[0].label if document.category else None
            fields["document_date"] = document.date
            self._apply_document_content(fields, first_attachment(document.content), issues)

        if communication is not None:
            fields["communication_sent"] = communication.sent
            attachment = first_attachment(communication.payload)
            if attachment is not None and self._codec.is_binary(attachment.content_type):
                self._apply_document_content(fields, attachment, issues)
            else:
                fields["communication_text"] = self._text_of(attachment, issues)

        if request is not None:
            fields["request_description"] = self._text_of(first_attachment(request.payload), issues)
            fields["request_status"] = request.status
            fields["request_priority"] = request.priority
            fields["request_authored_on"] = request.authored_on

        return fields

    def _resolve(
        self,
        pool: Sequence[R],
        ref: Reference | str | None,
        pool_name: str,
        issues: list[str],
    ) -> R | None:
        """Resolve *ref*; a miss is logged, noted and returned as None."""
        if self._resolver.strip(ref) is None:
            return None
        try:
            return self._resolver.require(pool, ref, pool_name)
        except UnresolvedReference as exc:
            logger.warning("%s", exc)
            issues.append(str(exc))
            return None

    def _party_name(
        self,
        ref: Reference | None,
        pools: EntryPools,
        field: str,
        issues: list[str],
    ) -> str | None:
        """Display name of the party behind *ref*: role → principal, or principal."""
        if self._resolver.strip(ref) is None:
            return None
        role = self._resolver.resolve(pools.roles, ref)
        if role is not None:
            principal = self._resolve(pools.principals, role.principal, field, issues)
            if principal is not None:
                return principal.display_name
            return role.principal.display if role.principal else None
        principal = self._resolve(pools.principals, ref, field, issues)
        return principal.display_name if principal is not None else None

    def _decode(self, attachment: Attachment | None, issues: list[str]) -> DecodedContent | None:
        if attachment is None:
            return None
        for path in attachment.dropped_fields:
            issues.append(f"payload {attachment.title!r}: invalid {path} ignored")
        try:
            return self._codec.decode(attachment, strict=True)
        except PayloadDecodeError as exc:
            logger.warning("Payload %r left empty: %s", attachment.title, exc)
            issues.append(f"payload: {exc}")
            return DecodedContent(
                is_binary=self._codec.is_binary(attachment.content_type),
                content_type=attachment.content_type,
                filename=attachment.title,
            )

    def _text_of(self, attachment: Attachment | None, issues: list[str]) -> str | None:
        decoded = self._decode(attachment, issues)
        if decoded is None or not isinstance(decoded.content, str):
            return None
        return decoded.content

    def _apply_document_content(
        self, fields: dict[str, Any], attachment: Attachment | None, issues: list[str]
    ) -> None:
        decoded = self._decode(attachment, issues)
        if decoded is None:
            return
        fields["is_binary"] = decoded.is_binary
        fields["document_content_type"] = decoded.content_type
        fields["document_filename"] = decoded.filename
        if isinstance(decoded.content, bytes):
            fields["document_base64_data"] = base64.b64encode(decoded.content).decode("ascii")
        elif isinstance(decoded.content, str):
            fields["document_content"] = decoded.content

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self, envelope: Envelope) -> str | None:
        try:
            storage_id = self._storage.persist(envelope)
        except Exception:
            logger.exception("Storage failed for envelope %s; continuing without id", envelope.id)
            return None
        if storage_id is None:
            logger.debug("Storage returned no id for envelope %s", envelope.id)
        return storage_id


def _dropped_field_issues(envelope: Envelope) -> list[str]:
    issues = [f"envelope: invalid {path} ignored" for path in envelope.dropped_fields]
    for entry in envelope.entries:
        if isinstance(entry, UnknownResource):
            continue
        issues.extend(
            f"{entry.resource_kind.value} {entry.identity}: invalid {path} ignored"
            for path in entry.dropped_fields
        )
    return issues
