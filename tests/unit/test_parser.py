"""Unit tests for the envelope parser — extraction, skips, degraded fields."""

from __future__ import annotations

import base64
import json

import pytest

from clinenvelope.core.parser import _POOL_FOR_KIND, AcceptPolicy, EntryPools, EnvelopeParser
from clinenvelope.core.wire import serialize_envelope
from clinenvelope.errors import StructuralFailure
from clinenvelope.models.envelope import Envelope
from clinenvelope.models.records import DomainRecord, Skip, SkipReason
from clinenvelope.models.resources import (
    RESOURCE_TYPE_MAP,
    Header,
    RequestPayload,
    ResourceKind,
    Subject,
    UnknownResource,
)


class TestDocumentRoundTrip:
    """Build → serialize → parse yields the original inputs."""

    @pytest.fixture
    def record(self, builder, parser, make_subject, pdf_bytes) -> DomainRecord:
        envelope = builder.build_document_transfer(
            make_subject(), "Discharge Letter", pdf_bytes, "discharge.pdf"
        )
        outcome = parser.parse(serialize_envelope(envelope))
        assert isinstance(outcome, DomainRecord)
        return outcome

    def test_document_fields(self, record, pdf_bytes):
        assert record.event_code == "document"
        assert record.document_title == "Discharge Letter"
        assert record.is_binary is True
        assert record.document_content_type == "application/pdf"
        assert record.document_filename == "discharge.pdf"
        assert record.document_content is None
        assert record.document_bytes() == pdf_bytes
        assert record.document_type == "Nurse Note"
        assert record.document_category == "Nursery records"
        assert record.document_date is not None

    def test_patient_fields(self, record):
        assert record.patient_name == "Max Mustermann"
        assert record.patient_birth_date == "1985-03-15"
        assert record.patient_id

    def test_party_fields(self, record, engine_settings):
        assert record.sender_name == "Dr. Selina Mayer"
        assert record.author_name == "Dr. Selina Mayer"
        assert record.recipient_name == "Dr. Johann Huber"
        assert record.organization_name == engine_settings.local_party.organization_name
        assert record.organization_type == "Allgemeine Krankenanstalt"

    def test_source_fields(self, record, engine_settings):
        assert record.source_name == engine_settings.local_endpoint_name
        assert record.source_software == engine_settings.source_software
        assert record.source_version == engine_settings.source_version
        assert record.source_contact == engine_settings.support_contact

    def test_envelope_metadata(self, record):
        assert record.envelope_id
        assert record.correlation_id is None
        assert record.is_response is False
        assert json.loads(record.raw_envelope)["id"] == record.envelope_id
        assert record.issues == ()

    def test_appended_to_received_log(self, record, received_log):
        assert received_log.snapshot() == [record]

    def test_text_document(self, builder, parser, make_subject):
        envelope = builder.build_document_transfer(
            make_subject(), "Befund", "Alles gut".encode(), "befund.txt", content_type="text/plain"
        )
        record = parser.parse(serialize_envelope(envelope))
        assert record.is_binary is False
        assert record.document_content == "Alles gut"
        assert record.document_base64_data is None


class TestOtherRoundTrips:
    def test_text_response(self, builder, parser, make_subject):
        envelope = builder.build_text_response("orig-1", make_subject(), "See attached")
        record = parser.parse(serialize_envelope(envelope))
        assert record.event_code == "status"
        assert record.communication_text == "See attached"
        assert record.communication_sent is not None
        assert record.correlation_id == "orig-1"
        assert record.is_response is True
        assert record.is_communication is True
        assert record.patient_name == "Max Mustermann"
        assert record.sender_name == "Dr. Selina Mayer"
        assert record.recipient_name == "Dr. Johann Huber"

    def test_document_response(self, builder, parser, make_subject, pdf_bytes):
        envelope = builder.build_document_response(
            "orig-2", make_subject(), "Discharge Letter", pdf_bytes, "discharge.pdf"
        )
        record = parser.parse(serialize_envelope(envelope))
        assert record.correlation_id == "orig-2"
        assert record.document_title == "Discharge Letter"
        assert record.document_bytes() == pdf_bytes

    def test_request(self, builder, request_parser, make_subject):
        envelope = builder.build_request(make_subject(), "Please send latest discharge summary")
        record = request_parser.parse(serialize_envelope(envelope))
        assert isinstance(record, DomainRecord)
        assert record.event_code == "request"
        assert record.request_description == "Please send latest discharge summary"
        assert record.request_status == "active"
        assert record.request_priority == "routine"
        assert record.request_authored_on is not None
        assert record.is_request is True
        assert record.patient_birth_date == "1985-03-15"
        assert record.sender_name == "Dr. Selina Mayer"


class TestIdempotentExtraction:
    def test_same_envelope_twice(self, builder, parser, make_subject, pdf_bytes):
        raw = serialize_envelope(
            builder.build_document_transfer(make_subject(), "Discharge Letter", pdf_bytes, "d.pdf")
        )
        first = parser.parse(raw)
        second = parser.parse(raw)
        assert first.record_id != second.record_id
        exclude = {"record_id", "recorded_at"}
        assert first.model_dump(exclude=exclude) == second.model_dump(exclude=exclude)
        assert len(parser.received_log) == 2


class TestSkips:
    def test_non_message_kind(self, parser, make_raw_envelope, received_log):
        outcome = parser.parse(make_raw_envelope(kind="collection"))
        assert isinstance(outcome, Skip)
        assert outcome.reason is SkipReason.NOT_A_MESSAGE
        assert len(received_log) == 0

    def test_missing_kind(self, parser):
        outcome = parser.parse(json.dumps({"id": "x", "entries": []}))
        assert outcome.reason is SkipReason.NOT_A_MESSAGE

    def test_no_header(self, parser, make_raw_envelope, make_entries):
        entries = [e for e in make_entries() if e["resourceKind"] != "Header"]
        outcome = parser.parse(make_raw_envelope(entries))
        assert isinstance(outcome, Skip)
        assert outcome.reason is SkipReason.NO_HEADER

    def test_empty_entries(self, parser, make_raw_envelope):
        outcome = parser.parse(make_raw_envelope([]))
        assert outcome.reason is SkipReason.NO_HEADER

    def test_event_not_accepted(self, parser, make_raw_envelope):
        outcome = parser.parse(make_raw_envelope(event_code="request"))
        assert outcome.reason is SkipReason.EVENT_NOT_HANDLED
        assert outcome.detail == "request"

    def test_missing_event_code_is_unknown(self, parser, make_raw_envelope):
        outcome = parser.parse(make_raw_envelope(event_code=None))
        assert outcome.reason is SkipReason.EVENT_NOT_HANDLED
        assert outcome.detail == "unknown"

    def test_request_parser_needs_request_payload(self, request_parser, make_raw_envelope):
        outcome = request_parser.parse(make_raw_envelope(event_code="request"))
        assert outcome.reason is SkipReason.EVENT_NOT_HANDLED

    def test_request_parser_skips_documents(self, builder, request_parser, make_subject, pdf_bytes):
        envelope = builder.build_document_transfer(make_subject(), "T", pdf_bytes, "t.pdf")
        assert isinstance(request_parser.parse(serialize_envelope(envelope)), Skip)


class TestHandWrittenEnvelopes:
    def test_bare_and_prefixed_references(self, parser, make_raw_envelope):
        record = parser.parse(make_raw_envelope(text="Grüße"))
        assert record.communication_text == "Grüße"
        assert record.patient_name == "Erika Musterfrau"
        assert record.sender_name == "Dr. Selina Mayer"
        assert record.author_name == "Dr. Selina Mayer"
        assert record.recipient_name == "Dr. Johann Huber"
        assert record.source_name == "Test Source"

    def test_two_headers_first_wins(self, parser, make_raw_envelope, make_entries):
        entries = make_entries()
        second = dict(entries[0], identity="hdr-2", source={"name": "Second Source"})
        record = parser.parse(make_raw_envelope(entries + [second]))
        assert isinstance(record, DomainRecord)
        assert record.source_name == "Test Source"
        assert any("headers" in issue for issue in record.issues)

    def test_header_need_not_be_first(self, parser, make_raw_envelope, make_entries):
        entries = make_entries()
        record = parser.parse(make_raw_envelope(entries[1:] + entries[:1]))
        assert isinstance(record, DomainRecord)

    def test_unresolved_sender_leaves_field_empty(self, parser, make_raw_envelope, make_entries, caplog):
        entries = make_entries()
        entries[0]["sender"] = {"reference": "urn:uuid:ghost"}
        entries[4]["sender"] = {"reference": "urn:uuid:ghost-too"}
        with caplog.at_level("WARNING"):
            record = parser.parse(make_raw_envelope(entries))
        assert record.sender_name is None
        assert record.patient_name == "Erika Musterfrau"
        assert "ghost" in caplog.text
        assert any("ghost" in issue for issue in record.issues)

    def test_sender_falls_back_to_carrier(self, parser, make_raw_envelope, make_entries):
        entries = make_entries()
        del entries[0]["sender"]
        record = parser.parse(make_raw_envelope(entries))
        assert record.sender_name == "Dr. Selina Mayer"

    def test_unresolved_subject_keeps_default(self, parser, make_raw_envelope, make_entries):
        entries = make_entries()
        entries[4]["subject"] = {"reference": "urn:uuid:nobody"}
        record = parser.parse(make_raw_envelope(entries))
        assert record.patient_name == "Unknown Patient"
        assert record.patient_birth_date is None

    def test_subject_without_reference_uses_first(self, parser, make_raw_envelope, make_entries):
        entries = make_entries()
        del entries[4]["subject"]
        record = parser.parse(make_raw_envelope(entries))
        assert record.patient_name == "Erika Musterfrau"

    def test_undecodable_payload_is_absent(self, parser, make_raw_envelope, make_entries):
        entries = make_entries()
        bad = base64.b64encode(b"\xff\xfe").decode("ascii")
        entries[4]["payload"][0]["attachment"]["data"] = bad
        record = parser.parse(make_raw_envelope(entries))
        assert isinstance(record, DomainRecord)
        assert record.communication_text is None
        assert any(issue.startswith("payload") for issue in record.issues)

    def test_other_payload_is_absent(self, parser, make_raw_envelope, make_entries):
        entries = make_entries()
        entries[4]["payload"] = [{"contentKind": "other", "contentString": "hi"}]
        record = parser.parse(make_raw_envelope(entries))
        assert record.communication_text is None

    def test_unknown_entries_are_ignored(self, parser, make_raw_envelope):
        raw = make_raw_envelope(extra_entries=[{"resourceKind": "Observation", "identity": "obs-1"}])
        record = parser.parse(raw)
        assert isinstance(record, DomainRecord)
        assert record.communication_text == "Hello"
        assert any("unknown" in issue for issue in record.issues)

    def test_missing_source_uses_default(self, parser, make_raw_envelope, make_entries):
        entries = make_entries()
        del entries[0]["source"]
        record = parser.parse(make_raw_envelope(entries))
        assert record.source_name == "Unknown Source"

    def test_missing_envelope_id(self, parser, make_entries):
        raw = json.dumps({"kind": "message", "entries": make_entries()})
        record = parser.parse(raw)
        assert record.envelope_id is None

    def test_bytes_input(self, parser, make_raw_envelope):
        record = parser.parse(make_raw_envelope().encode("utf-8"))
        assert isinstance(record, DomainRecord)


class TestStructuralFailures:
    def test_invalid_json_raises(self, parser):
        with pytest.raises(StructuralFailure, match="Invalid JSON"):
            parser.parse("{not json")

    def test_non_object_raises(self, parser):
        with pytest.raises(StructuralFailure, match="JSON object"):
            parser.parse("[1, 2, 3]")

    def test_process_absorbs_failures(self, parser, received_log):
        assert parser.process("{not json") is None
        assert len(received_log) == 0

    def test_process_returns_none_for_skip(self, parser, make_raw_envelope):
        assert parser.process(make_raw_envelope(kind="bundle")) is None

    def test_process_returns_record(self, parser, make_raw_envelope):
        assert isinstance(parser.process(make_raw_envelope()), DomainRecord)


class _RecordingStorage:
    def __init__(self, result=None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[Envelope] = []

    def persist(self, envelope: Envelope) -> str | None:
        self.calls.append(envelope)
        if self.error is not None:
            raise self.error
        return self.result


class TestStorage:
    def _parser(self, engine_settings, storage) -> EnvelopeParser:
        return EnvelopeParser(storage=storage, settings=engine_settings)

    def test_storage_id_attached(self, engine_settings, make_raw_envelope):
        storage = _RecordingStorage(result="store-1")
        record = self._parser(engine_settings, storage).parse(make_raw_envelope())
        assert record.storage_id == "store-1"
        assert len(storage.calls) == 1

    def test_storage_none_is_tolerated(self, engine_settings, make_raw_envelope):
        record = self._parser(engine_settings, _RecordingStorage()).parse(make_raw_envelope())
        assert record.storage_id is None

    def test_storage_exception_is_tolerated(self, engine_settings, make_raw_envelope):
        parser = self._parser(engine_settings, _RecordingStorage(error=OSError("disk full")))
        record = parser.parse(make_raw_envelope())
        assert isinstance(record, DomainRecord)
        assert record.storage_id is None
        assert len(parser.received_log) == 1

    def test_skips_are_not_persisted(self, engine_settings, make_raw_envelope):
        storage = _RecordingStorage(result="x")
        self._parser(engine_settings, storage).parse(make_raw_envelope(event_code="request"))
        assert storage.calls == []


class TestEntryPools:
    def test_every_kind_has_a_pool(self):
        pools = EntryPools.from_entries([cls() for cls in RESOURCE_TYPE_MAP.values()])
        for kind in ResourceKind:
            assert len(getattr(pools, _POOL_FOR_KIND[kind])) == 1
        assert pools.unknown == []

    def test_unknown_arm(self):
        pools = EntryPools.from_entries([UnknownResource(resource_kind="X"), Header(), Subject()])
        assert len(pools.unknown) == 1
        assert len(pools.headers) == 1
        assert len(pools.subjects) == 1

    def test_principal_categories(self, builder, make_subject, pdf_bytes):
        envelope = builder.build_document_transfer(make_subject(), "T", pdf_bytes, "t.pdf")
        pools = EntryPools.from_entries(envelope.entries)
        assert len(pools.practitioners) == 2
        assert len(pools.organizations) == 1


class TestAcceptPolicy:
    def test_documents_policy(self):
        policy = AcceptPolicy.documents()
        assert policy.accepts("document", EntryPools())
        assert policy.accepts("status", EntryPools())
        assert not policy.accepts("request", EntryPools())

    def test_requests_policy(self):
        policy = AcceptPolicy.requests()
        assert not policy.accepts("request", EntryPools())
        assert policy.accepts("anything", EntryPools(requests=[RequestPayload()]))

    def test_default_policy_from_settings(self, engine_settings):
        parser = EnvelopeParser(settings=engine_settings)
        assert parser.accept.event_codes == frozenset(engine_settings.accepted_event_codes)
