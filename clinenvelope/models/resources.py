"""Typed envelope entries.

Every entry in an envelope is exactly one resource carrying a
``resourceKind`` and an ``identity``.  The kind is decided once, during
deserialization, through ``RESOURCE_TYPE_MAP``; anything that is not a
known kind (or has no usable identity) becomes an ``UnknownResource``.
Inside a known entry an invalid field is dropped on its own and listed
in ``dropped_fields``; the rest of the entry survives.

Wire keys are camelCase, Python attributes snake_case.  All models are
frozen.
"""

from __future__ import annotations

import copy
import logging
import uuid
from collections.abc import Iterable, Mapping
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Self, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PrivateAttr, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

EVENT_CODE_SYSTEM = "http://fhir.hl7.at/fhir/ATMessaging/0.1.0/CodeSystem/at-messaging-event-type"
ENDPOINT_TYPE_SYSTEM = "http://fhir.hl7.at/fhir/ATMessaging/0.1.0/CodeSystem/at-messaging-endpoint-type"
LOINC_SYSTEM = "http://loinc.org"


def new_identity() -> str:
    """Return a fresh random entry / envelope identity."""
    return str(uuid.uuid4())


class WireModel(BaseModel):
    """Base for every wire-format model: frozen, camelCase on the wire."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    _dropped: tuple[str, ...] = PrivateAttr(default=())

    @property
    def dropped_fields(self) -> tuple[str, ...]:
        """Dotted wire paths discarded by :meth:`from_wire`."""
        return self._dropped

    @classmethod
    def from_wire(cls, raw: Mapping[str, Any], *, keep: Iterable[str] = ()) -> Self:
        """Validate *raw*, discarding whichever fields fail validation.

        Each failing field is removed from a copy of the input and the
        copy is validated again, so one bad value costs only that value.
        Errors on a top-level key listed in *keep* (and errors that cannot
        be pinned to a removable field) raise ``ValidationError``.
        """
        data = copy.deepcopy(dict(raw))
        kept = frozenset(keep)
        dropped: list[str] = []
        while True:
            try:
                model = cls.model_validate(data)
            except ValidationError as exc:
                error = exc.errors()[0]
                path = _discard(data, error, kept)
                if path is None:
                    raise
                logger.warning("Dropped invalid %s field %s: %s", cls.__name__, path, error["msg"])
                dropped.append(path)
                continue
            model._dropped = tuple(dropped)
            return model


def _discard(data: dict[str, Any], error: Mapping[str, Any], kept: frozenset[str]) -> str | None:
    """Delete the node *error* points at from *data*; return its dotted path."""
    loc = list(error["loc"])
    if error["type"] == "missing":
        # A missing key invalidates the object holding it.
        loc = loc[:-1]
    if not loc or loc[0] in kept:
        return None
    parent: Any = data
    try:
        for step in loc[:-1]:
            parent = parent[step]
        del parent[loc[-1]]
    except (KeyError, IndexError, TypeError):
        return None
    return ".".join(str(step) for step in loc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ResourceKind(str, Enum):
    """The resource kinds an envelope entry can carry."""

    HEADER = "Header"
    ENDPOINT = "Endpoint"
    PRINCIPAL = "Principal"
    PRINCIPAL_ROLE = "PrincipalRole"
    SUBJECT = "Subject"
    CONTEXT = "Context"
    DOCUMENT_PAYLOAD = "DocumentPayload"
    COMMUNICATION_PAYLOAD = "CommunicationPayload"
    REQUEST_PAYLOAD = "RequestPayload"


class EventCode(str, Enum):
    """Header event codes handled by the engine."""

    DOCUMENT = "document"
    REQUEST = "request"
    STATUS = "status"

    @property
    def display(self) -> str:
        return _EVENT_DISPLAY[self]


_EVENT_DISPLAY = {
    EventCode.DOCUMENT: "Document Transfer",
    EventCode.REQUEST: "Request",
    EventCode.STATUS: "Status/Response",
}


class PrincipalCategory(str, Enum):
    PRACTITIONER = "practitioner"
    ORGANIZATION = "organization"


# ---------------------------------------------------------------------------
# Datatypes
# ---------------------------------------------------------------------------


class Coding(WireModel):
    system: str | None = None
    code: str | None = None
    display: str | None = None

    @property
    def label(self) -> str | None:
        """Display text if present, otherwise the code."""
        return self.display or self.code


class Identifier(WireModel):
    system: str | None = None
    value: str | None = None


class ContactPoint(WireModel):
    system: str | None = None  # e.g. "email"
    value: str | None = None


class HumanName(WireModel):
    use: str | None = None
    prefix: list[str] = []
    given: list[str] = []
    family: str | None = None

    def display(self, *, with_prefix: bool = False) -> str:
        parts: list[str] = []
        if with_prefix:
            parts.extend(self.prefix)
        parts.extend(self.given)
        if self.family:
            parts.append(self.family)
        return " ".join(p for p in parts if p)


class Reference(WireModel):
    """A pointer to another entry, by identity with or without scheme prefix."""

    reference: str | None = None
    display: str | None = None
    type: str | None = None


class Attachment(WireModel):
    """Payload content. ``data`` holds the base64 text of the raw bytes."""

    content_type: str | None = None
    data: str | None = None
    title: str | None = None
    language: str | None = None
    creation: datetime | None = None


# ---------------------------------------------------------------------------
# Payload content: tagged variant {attachment, other}
# ---------------------------------------------------------------------------


class AttachmentContent(WireModel):
    content_kind: Literal["attachment"] = "attachment"
    attachment: Attachment


class OtherContent(WireModel):
    """Any payload item that is not an attachment.  Treated as absent."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    content_kind: Literal["other"] = "other"
    value: Any = None


def _tag_payload_item(value: Any) -> Any:
    if isinstance(value, (AttachmentContent, OtherContent)):
        return value
    if not isinstance(value, dict):
        return OtherContent(value=value)

    raw_attachment = value.get("attachment")
    kind = value.get("contentKind", "attachment" if raw_attachment is not None else "other")
    if kind == "attachment" and isinstance(raw_attachment, dict):
        return AttachmentContent(attachment=Attachment.from_wire(raw_attachment))

    rest = {k: v for k, v in value.items() if k not in ("contentKind", "content_kind")}
    return OtherContent.model_validate(rest)


PayloadContent = Annotated[
    Union[AttachmentContent, OtherContent],
    BeforeValidator(_tag_payload_item),
]


def first_attachment(items: list[AttachmentContent | OtherContent]) -> Attachment | None:
    """Return the first attachment among payload items, or None."""
    for item in items:
        if isinstance(item, AttachmentContent):
            return item.attachment
    return None


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


class ResourceBase(WireModel):
    """Fields shared by every envelope entry."""

    resource_kind: ResourceKind
    identity: str = Field(default_factory=new_identity)


class MessageSource(WireModel):
    endpoint_ref: Reference | None = None
    name: str | None = None
    software: str | None = None
    version: str | None = None
    contact: ContactPoint | None = None


class MessageDestination(WireModel):
    endpoint_ref: Reference | None = None
    name: str | None = None
    receiver_ref: Reference | None = None


class ResponseInfo(WireModel):
    """Correlation back to the envelope this one responds to."""

    identifier: str
    code: str = "ok"


class Header(ResourceBase):
    """Routing and event metadata; the first entry of every envelope."""

    resource_kind: ResourceKind = ResourceKind.HEADER
    event: Coding | None = None
    source: MessageSource | None = None
    destination: MessageDestination | None = None
    sender: Reference | None = None
    author: Reference | None = None
    focus: list[Reference] = []
    response: ResponseInfo | None = None

    @property
    def event_code(self) -> str:
        if self.event is not None and self.event.code:
            return self.event.code
        return "unknown"


class Endpoint(ResourceBase):
    resource_kind: ResourceKind = ResourceKind.ENDPOINT
    status: str = "active"
    name: str | None = None
    address: str | None = None
    connection_type: Coding | None = None


class Principal(ResourceBase):
    """An acting party: a practitioner or an organization."""

    resource_kind: ResourceKind = ResourceKind.PRINCIPAL
    category: PrincipalCategory = PrincipalCategory.PRACTITIONER
    name: HumanName | None = None
    organization_name: str | None = None
    types: list[Coding] = []
    identifiers: list[Identifier] = []

    @property
    def display_name(self) -> str:
        if self.category is PrincipalCategory.ORGANIZATION:
            return self.organization_name or "Unknown Organization"
        if self.name is not None:
            display = self.name.display(with_prefix=True)
            if display:
                return display
        return "Unknown Practitioner"


class PrincipalRole(ResourceBase):
    """Links a practitioner Principal to an organization Principal."""

    resource_kind: ResourceKind = ResourceKind.PRINCIPAL_ROLE
    principal: Reference | None = None
    organization: Reference | None = None
    codes: list[Coding] = []


class Subject(ResourceBase):
    """The person the communication concerns."""

    resource_kind: ResourceKind = ResourceKind.SUBJECT
    names: list[HumanName] = []
    birth_date: str | None = None
    gender: str | None = None
    identifiers: list[Identifier] = []

    @property
    def display_name(self) -> str:
        if self.names:
            display = self.names[0].display()
            if display:
                return display
        return "Unknown Patient"


class Context(ResourceBase):
    """Encounter-like context of a document transfer."""

    resource_kind: ResourceKind = ResourceKind.CONTEXT
    status: str = "in-progress"


class DocumentPayload(ResourceBase):
    resource_kind: ResourceKind = ResourceKind.DOCUMENT_PAYLOAD
    status: str = "current"
    document_type: Coding | None = None
    category: list[Coding] = []
    subject: Reference | None = None
    date: datetime | None = None
    description: str | None = None
    authors: list[Reference] = []
    content: list[PayloadContent] = []


class CommunicationPayload(ResourceBase):
    resource_kind: ResourceKind = ResourceKind.COMMUNICATION_PAYLOAD
    status: str = "completed"
    subject: Reference | None = None
    sender: Reference | None = None
    recipients: list[Reference] = []
    sent: datetime | None = None
    payload: list[PayloadContent] = []


class RequestPayload(ResourceBase):
    resource_kind: ResourceKind = ResourceKind.REQUEST_PAYLOAD
    status: str = "active"
    intent: str = "order"
    priority: str = "routine"
    category: list[Coding] = []
    subject: Reference | None = None
    authored_on: datetime | None = None
    requester: Reference | None = None
    recipients: list[Reference] = []
    payload: list[PayloadContent] = []


class UnknownResource(ResourceBase):
    """Any entry that is not one of the known kinds.  Raw fields are kept."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    resource_kind: str = "unknown"  # type: ignore[assignment]
    identity: str = ""


def _keep_unknown(raw: dict[str, Any], kind: str) -> UnknownResource:
    try:
        return UnknownResource.model_validate({**raw, "resourceKind": kind})
    except ValidationError:
        # Raw fields unusable even as extras (e.g. a non-string identity).
        return UnknownResource(resource_kind=kind)


# Registry for deserialization by resourceKind
RESOURCE_TYPE_MAP: dict[ResourceKind, type[ResourceBase]] = {
    ResourceKind.HEADER: Header,
    ResourceKind.ENDPOINT: Endpoint,
    ResourceKind.PRINCIPAL: Principal,
    ResourceKind.PRINCIPAL_ROLE: PrincipalRole,
    ResourceKind.SUBJECT: Subject,
    ResourceKind.CONTEXT: Context,
    ResourceKind.DOCUMENT_PAYLOAD: DocumentPayload,
    ResourceKind.COMMUNICATION_PAYLOAD: CommunicationPayload,
    ResourceKind.REQUEST_PAYLOAD: RequestPayload,
}


_ENTRY_KEYS = ("resourceKind", "resource_kind", "identity")


def resource_from_wire(raw: Any) -> ResourceBase:
    """Deserialize one raw entry into its typed resource.

    Unknown kinds and entries whose kind or identity is unusable become
    ``UnknownResource`` instead of failing the whole envelope.  Any other
    invalid field is dropped from the entry.
    """
    if isinstance(raw, ResourceBase):
        return raw
    if not isinstance(raw, dict):
        logger.warning("Envelope entry is not an object (%s), kept as unknown", type(raw).__name__)
        return UnknownResource(resource_kind="invalid")

    kind_str = raw.get("resourceKind", raw.get("resource_kind"))
    try:
        kind = ResourceKind(kind_str)
    except ValueError:
        logger.warning("Unknown resourceKind %r, entry kept as unknown", kind_str)
        return _keep_unknown(raw, str(kind_str) if kind_str is not None else "unknown")

    try:
        return RESOURCE_TYPE_MAP[kind].from_wire(raw, keep=_ENTRY_KEYS)
    except ValidationError as exc:
        logger.warning(
            "Entry %r of kind %s failed validation, kept as unknown: %s",
            raw.get("identity"),
            kind.value,
            exc,
        )
        return _keep_unknown(raw, f"invalid:{kind.value}")
