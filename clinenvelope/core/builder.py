"""Envelope builder — assembles outgoing envelopes for each event kind.

Every build is pure construction: fresh identities for every entry, one
timestamp for the whole envelope, the Header first.  Party and endpoint
metadata come from ``EngineSettings``.

Entry order
-----------
document:        header, source endpoint, destination endpoint, receiver,
                 subject, document, organization, role, practitioner,
                 context
request/status:  header, source endpoint, destination endpoint, sender,
                 receiver, subject, payload
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from clinenvelope.config import EngineSettings, settings as default_settings
from clinenvelope.core.codec import ContentCodec
from clinenvelope.core.wire import with_scheme
from clinenvelope.models.envelope import Envelope
from clinenvelope.models.parties import PartyProfile
from clinenvelope.models.resources import (
    ENDPOINT_TYPE_SYSTEM,
    EVENT_CODE_SYSTEM,
    LOINC_SYSTEM,
    AttachmentContent,
    Coding,
    CommunicationPayload,
    ContactPoint,
    Context,
    DocumentPayload,
    Endpoint,
    EventCode,
    Header,
    HumanName,
    Identifier,
    MessageDestination,
    MessageSource,
    Principal,
    PrincipalCategory,
    PrincipalRole,
    Reference,
    RequestPayload,
    ResourceBase,
    ResponseInfo,
    Subject,
    new_identity,
)

logger = logging.getLogger(__name__)

NURSE_NOTE = Coding(system=LOINC_SYSTEM, code="34746-8", display="Nurse Note")
NURSERY_RECORDS = Coding(system=LOINC_SYSTEM, code="11543-6", display="Nursery records")
INSTRUCTION_CATEGORY = Coding(
    system="http://terminology.hl7.org/CodeSystem/communication-category",
    code="instruction",
    display="Instruction",
)

RESPONSE_TITLE = "Response Message"
REQUEST_TITLE = "Consult Request"


def subject_from_display(name: str, birth_date: str | None = None) -> Subject:
    """Rebuild a Subject from a flattened display name.

    The last whitespace-separated token is the family name, the tokens
    before it are given names.  Used when replying to a received record.
    """
    tokens = name.split()
    family = tokens[-1] if tokens else None
    return Subject(
        names=[HumanName(use="official", given=tokens[:-1], family=family)],
        birth_date=birth_date,
    )


class EnvelopeBuilder:
    """Builds outgoing envelopes for the four supported event kinds.

    Parameters
    ----------
    settings:
        Engine configuration; the module-level settings when omitted.
    codec:
        Content codec for payload attachments.
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        codec: ContentCodec | None = None,
    ) -> None:
        self._settings = settings or default_settings
        self._codec = codec or ContentCodec(self._settings.binary_content_types)
        self._scheme = self._settings.reference_scheme

    # ------------------------------------------------------------------
    # Public build operations
    # ------------------------------------------------------------------

    def build_document_transfer(
        self,
        subject: Subject,
        title: str,
        attachment_bytes: bytes,
        filename: str | None,
        author_role: PartyProfile | None = None,
        content_type: str = "application/pdf",
    ) -> Envelope:
        """Build a document-transfer envelope (event ``document``)."""
        return self._document_envelope(
            subject,
            title,
            attachment_bytes,
            filename,
            author_role=author_role or self._settings.local_party,
            content_type=content_type,
            original_envelope_id=None,
        )

    def build_document_response(
        self,
        original_envelope_id: str,
        subject: Subject,
        title: str,
        attachment_bytes: bytes,
        filename: str | None,
        content_type: str = "application/pdf",
    ) -> Envelope:
        """Build a document transfer that answers *original_envelope_id*."""
        return self._document_envelope(
            subject,
            title,
            attachment_bytes,
            filename,
            author_role=self._settings.local_party,
            content_type=content_type,
            original_envelope_id=original_envelope_id,
        )

    def build_request(self, subject: Subject, description: str) -> Envelope:
        """Build an information request (event ``request``)."""
        now = datetime.now(timezone.utc)
        source_ep, dest_ep = self._endpoints()
        sender = self._practitioner(self._settings.local_party)
        receiver = self._practitioner(self._settings.remote_party)
        patient = self._adopt_subject(subject)

        request = RequestPayload(
            category=[INSTRUCTION_CATEGORY],
            subject=self._ref(patient, patient.display_name),
            authored_on=now,
            requester=self._ref(sender, sender.display_name),
            recipients=[self._ref(receiver, receiver.display_name)],
            payload=[
                AttachmentContent(
                    attachment=self._codec.encode_text(
                        description,
                        title=REQUEST_TITLE,
                        language=self._settings.document_language,
                        creation=now,
                    )
                )
            ],
        )
        header = self._header(
            EventCode.REQUEST,
            source_ep=source_ep,
            dest_ep=dest_ep,
            receiver=receiver,
            sender=sender,
            author=sender,
            focus=[request, patient],
            original_envelope_id=None,
        )
        return self._assemble(
            now, [header, source_ep, dest_ep, sender, receiver, patient, request]
        )

    def build_text_response(
        self,
        original_envelope_id: str,
        subject: Subject,
        message_text: str,
    ) -> Envelope:
        """Build a plain-text status response (event ``status``)."""
        now = datetime.now(timezone.utc)
        source_ep, dest_ep = self._endpoints()
        sender = self._practitioner(self._settings.local_party)
        receiver = self._practitioner(self._settings.remote_party)
        patient = self._adopt_subject(subject)

        communication = CommunicationPayload(
            subject=self._ref(patient, patient.display_name),
            sender=self._ref(sender, sender.display_name),
            recipients=[self._ref(receiver, receiver.display_name)],
            sent=now,
            payload=[
                AttachmentContent(
                    attachment=self._codec.encode_text(
                        message_text,
                        title=RESPONSE_TITLE,
                        language=self._settings.document_language,
                        creation=now,
                    )
                )
            ],
        )
        header = self._header(
            EventCode.STATUS,
            source_ep=source_ep,
            dest_ep=dest_ep,
            receiver=receiver,
            sender=sender,
            author=sender,
            focus=[communication, patient],
            original_envelope_id=original_envelope_id,
        )
        return self._assemble(
            now, [header, source_ep, dest_ep, sender, receiver, patient, communication]
        )

    # ------------------------------------------------------------------
    # Document envelopes
    # ------------------------------------------------------------------

    def _document_envelope(
        self,
        subject: Subject,
        title: str,
        attachment_bytes: bytes,
        filename: str | None,
        *,
        author_role: PartyProfile,
        content_type: str,
        original_envelope_id: str | None,
    ) -> Envelope:
        now = datetime.now(timezone.utc)
        source_ep, dest_ep = self._endpoints()
        receiver = self._practitioner(self._settings.remote_party)
        patient = self._adopt_subject(subject)
        organization = self._organization(author_role)
        practitioner = self._practitioner(author_role)
        role = self._role(author_role, practitioner, organization)
        context = Context()

        document = DocumentPayload(
            document_type=NURSE_NOTE,
            category=[NURSERY_RECORDS],
            subject=self._ref(patient, patient.display_name),
            date=now,
            description=title,
            authors=[self._ref(role, practitioner.display_name)],
            content=[
                AttachmentContent(
                    attachment=self._codec.encode(
                        attachment_bytes,
                        content_type,
                        filename,
                        title=title,
                        language=self._settings.document_language,
                        creation=now,
                    )
                )
            ],
        )
        header = self._header(
            EventCode.DOCUMENT,
            source_ep=source_ep,
            dest_ep=dest_ep,
            receiver=receiver,
            sender=role,
            author=role,
            focus=[document, patient, context],
            original_envelope_id=original_envelope_id,
        )
        return self._assemble(
            now,
            [
                header,
                source_ep,
                dest_ep,
                receiver,
                patient,
                document,
                organization,
                role,
                practitioner,
                context,
            ],
        )

    # ------------------------------------------------------------------
    # Entry factories
    # ------------------------------------------------------------------

    def _ref(self, resource: ResourceBase, display: str | None = None) -> Reference:
        return Reference(
            reference=with_scheme(resource.identity, self._scheme),
            display=display,
            type=resource.resource_kind.value,
        )

    def _endpoints(self) -> tuple[Endpoint, Endpoint]:
        connection = Coding(system=ENDPOINT_TYPE_SYSTEM, code="matrix", display="Matrix")
        source = Endpoint(
            name=self._settings.local_endpoint_name,
            address=self._settings.local_endpoint_address,
            connection_type=connection,
        )
        destination = Endpoint(
            name=self._settings.remote_endpoint_name,
            address=self._settings.remote_endpoint_address,
            connection_type=connection,
        )
        return source, destination

    @staticmethod
    def _practitioner(party: PartyProfile) -> Principal:
        identifiers = []
        if party.practitioner_identifier:
            identifiers.append(
                Identifier(
                    system=party.practitioner_identifier_system,
                    value=party.practitioner_identifier,
                )
            )
        return Principal(
            category=PrincipalCategory.PRACTITIONER,
            name=HumanName(
                use="official",
                prefix=[party.prefix] if party.prefix else [],
                given=[party.given] if party.given else [],
                family=party.family or None,
            ),
            identifiers=identifiers,
        )

    @staticmethod
    def _organization(party: PartyProfile) -> Principal:
        types = []
        if party.organization_type_code:
            types.append(
                Coding(
                    system=party.organization_type_system,
                    code=party.organization_type_code,
                    display=party.organization_type_display or None,
                )
            )
        return Principal(
            category=PrincipalCategory.ORGANIZATION,
            organization_name=party.organization_name or None,
            types=types,
        )

    @staticmethod
    def _role(
        party: PartyProfile, practitioner: Principal, organization: Principal
    ) -> PrincipalRole:
        # Role references carry the bare identity.
        return PrincipalRole(
            principal=Reference(
                reference=practitioner.identity,
                display=practitioner.display_name,
                type=practitioner.resource_kind.value,
            ),
            organization=Reference(
                reference=organization.identity,
                display=organization.display_name,
                type=organization.resource_kind.value,
            ),
            codes=[
                Coding(
                    system=party.role_system,
                    code=party.role_code,
                    display=party.role_display,
                )
            ],
        )

    def _adopt_subject(self, subject: Subject) -> Subject:
        """Copy the subject under a fresh identity, keeping the old one."""
        identifiers = list(subject.identifiers)
        if subject.identity:
            identifiers.append(
                Identifier(
                    system=self._settings.subject_identifier_system,
                    value=subject.identity,
                )
            )
        return subject.model_copy(
            update={"identity": new_identity(), "identifiers": identifiers}
        )

    def _header(
        self,
        event: EventCode,
        *,
        source_ep: Endpoint,
        dest_ep: Endpoint,
        receiver: Principal,
        sender: ResourceBase,
        author: ResourceBase,
        focus: list[ResourceBase],
        original_envelope_id: str | None,
    ) -> Header:
        response = None
        if original_envelope_id:
            response = ResponseInfo(identifier=original_envelope_id, code="ok")
        return Header(
            event=Coding(system=EVENT_CODE_SYSTEM, code=event.value, display=event.display),
            source=MessageSource(
                endpoint_ref=self._ref(source_ep, source_ep.name),
                name=self._settings.local_endpoint_name,
                software=self._settings.source_software,
                version=self._settings.source_version,
                contact=ContactPoint(system="email", value=self._settings.support_contact),
            ),
            destination=MessageDestination(
                endpoint_ref=self._ref(dest_ep, dest_ep.name),
                name=self._settings.remote_endpoint_name,
                receiver_ref=self._ref(receiver, receiver.display_name),
            ),
            sender=self._ref(sender),
            author=self._ref(author),
            focus=[self._ref(entry) for entry in focus],
            response=response,
        )

    @staticmethod
    def _assemble(now: datetime, entries: list[ResourceBase]) -> Envelope:
        envelope = Envelope(timestamp=now, entries=entries)
        header = envelope.header
        logger.info(
            "Built %s envelope %s with %d entries",
            header.event_code if header else "unknown",
            envelope.id,
            len(envelope.entries),
        )
        return envelope
