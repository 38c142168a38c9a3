"""clinenvelope data models — all Pydantic v2, all frozen (immutable)."""

from clinenvelope.models.envelope import Envelope
from clinenvelope.models.parties import HOSPITAL_PARTY, PRACTICE_PARTY, PartyProfile
from clinenvelope.models.records import (
    CorrelationRecord,
    DomainRecord,
    LogRecord,
    Skip,
    SkipReason,
)
from clinenvelope.models.resources import (
    RESOURCE_TYPE_MAP,
    Attachment,
    AttachmentContent,
    Coding,
    CommunicationPayload,
    Context,
    DocumentPayload,
    Endpoint,
    EventCode,
    Header,
    HumanName,
    Identifier,
    OtherContent,
    Principal,
    PrincipalCategory,
    PrincipalRole,
    Reference,
    RequestPayload,
    ResourceBase,
    ResourceKind,
    Subject,
    UnknownResource,
)

__all__ = [
    # envelope
    "Envelope",
    # parties
    "HOSPITAL_PARTY",
    "PRACTICE_PARTY",
    "PartyProfile",
    # records
    "CorrelationRecord",
    "DomainRecord",
    "LogRecord",
    "Skip",
    "SkipReason",
    # resources
    "RESOURCE_TYPE_MAP",
    "Attachment",
    "AttachmentContent",
    "Coding",
    "CommunicationPayload",
    "Context",
    "DocumentPayload",
    "Endpoint",
    "EventCode",
    "Header",
    "HumanName",
    "Identifier",
    "OtherContent",
    "Principal",
    "PrincipalCategory",
    "PrincipalRole",
    "Reference",
    "RequestPayload",
    "ResourceBase",
    "ResourceKind",
    "Subject",
    "UnknownResource",
]
