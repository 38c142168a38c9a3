"""Shared test fixtures for clinenvelope."""

from __future__ import annotations

import base64
import json
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from clinenvelope.config import EngineSettings
from clinenvelope.core.builder import EnvelopeBuilder
from clinenvelope.core.codec import ContentCodec
from clinenvelope.core.correlation import CorrelationTracker
from clinenvelope.core.envelope_store import ContentAddressedEnvelopeStore
from clinenvelope.core.parser import AcceptPolicy, EnvelopeParser
from clinenvelope.core.record_log import InMemoryRecordLog
from clinenvelope.models.records import CorrelationRecord, DomainRecord
from clinenvelope.models.resources import HumanName, Subject

PDF_BYTES = b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n1 0 obj\n<< /Type /Catalog >>\nendobj\n%%EOF\n"


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def engine_settings(tmp_dir: Path) -> EngineSettings:
    """Settings isolated from the environment, storage under tmp_dir."""
    return EngineSettings(
        _env_file=None,
        received_log_path=tmp_dir / "received.db",
        sent_log_path=tmp_dir / "sent.db",
        envelope_store_path=tmp_dir / "envelopes",
        queue_path=tmp_dir / "queue.db",
    )


@pytest.fixture
def received_log() -> InMemoryRecordLog[DomainRecord]:
    """A fresh received log per test."""
    return InMemoryRecordLog()


@pytest.fixture
def sent_log() -> InMemoryRecordLog[CorrelationRecord]:
    """A fresh sent log per test."""
    return InMemoryRecordLog()


@pytest.fixture
def codec() -> ContentCodec:
    return ContentCodec()


@pytest.fixture
def builder(engine_settings: EngineSettings) -> EnvelopeBuilder:
    return EnvelopeBuilder(settings=engine_settings)


@pytest.fixture
def parser(engine_settings: EngineSettings, received_log) -> EnvelopeParser:
    """Document-side parser: accepts document and status events."""
    return EnvelopeParser(
        accept=AcceptPolicy.documents(),
        received_log=received_log,
        settings=engine_settings,
    )


@pytest.fixture
def request_parser(engine_settings: EngineSettings) -> EnvelopeParser:
    """Request-side parser: accepts envelopes carrying a RequestPayload."""
    return EnvelopeParser(
        accept=AcceptPolicy.requests(),
        received_log=InMemoryRecordLog(),
        settings=engine_settings,
    )


@pytest.fixture
def tracker(sent_log) -> CorrelationTracker:
    return CorrelationTracker(sent_log)


@pytest.fixture
def envelope_store(tmp_dir: Path) -> ContentAddressedEnvelopeStore:
    return ContentAddressedEnvelopeStore(tmp_dir / "envelopes")


@pytest.fixture
def pdf_bytes() -> bytes:
    return PDF_BYTES


# ---------------------------------------------------------------------------
# Factories shared across test modules
# ---------------------------------------------------------------------------


@pytest.fixture
def make_subject() -> Callable[..., Subject]:
    """Factory fixture: build a Subject, Max Mustermann by default."""

    def _factory(
        given: tuple[str, ...] = ("Max",),
        family: str = "Mustermann",
        birth_date: str | None = "1985-03-15",
        **overrides: Any,
    ) -> Subject:
        defaults: dict[str, Any] = {
            "names": [HumanName(use="official", given=list(given), family=family)],
            "birth_date": birth_date,
            "gender": "male",
        }
        defaults.update(overrides)
        return Subject(**defaults)

    return _factory


@pytest.fixture
def make_raw_envelope() -> Callable[..., str]:
    """Factory fixture: hand-written wire JSON for parser edge cases.

    Builds a minimal status envelope (header, subject, communication) with
    bare identities.  Pass ``entries`` to replace the entries entirely or
    ``extra_entries`` to append to the defaults.
    """

    def _factory(
        entries: list[dict[str, Any]] | None = None,
        *,
        extra_entries: list[dict[str, Any]] | None = None,
        event_code: str | None = "status",
        kind: str = "message",
        text: str = "Hello",
        **overrides: Any,
    ) -> str:
        if entries is None:
            entries = _default_entries(event_code=event_code, text=text)
        entries = entries + list(extra_entries or [])
        envelope: dict[str, Any] = {
            "kind": kind,
            "id": str(uuid.uuid4()),
            "timestamp": "2026-01-05T10:00:00+00:00",
            "entries": entries,
        }
        envelope.update(overrides)
        return json.dumps(envelope)

    return _factory


def _default_entries(event_code: str | None = "status", text: str = "Hello") -> list[dict[str, Any]]:
    """Header, practitioner, subject and communication entries as wire dicts."""
    header: dict[str, Any] = {
        "resourceKind": "Header",
        "identity": "hdr-1",
        "source": {"name": "Test Source", "software": "tests", "version": "1"},
        "destination": {"name": "Test Destination", "receiverRef": {"reference": "urn:uuid:prac-2"}},
        "sender": {"reference": "urn:uuid:prac-1"},
        "author": {"reference": "prac-1"},
        "focus": [{"reference": "urn:uuid:comm-1"}],
    }
    if event_code is not None:
        header["event"] = {"code": event_code}
    return [
        header,
        {
            "resourceKind": "Principal",
            "identity": "prac-1",
            "category": "practitioner",
            "name": {"prefix": ["Dr."], "given": ["Selina"], "family": "Mayer"},
        },
        {
            "resourceKind": "Principal",
            "identity": "prac-2",
            "category": "practitioner",
            "name": {"prefix": ["Dr."], "given": ["Johann"], "family": "Huber"},
        },
        {
            "resourceKind": "Subject",
            "identity": "pat-1",
            "names": [{"given": ["Erika"], "family": "Musterfrau"}],
            "birthDate": "1970-01-01",
        },
        {
            "resourceKind": "CommunicationPayload",
            "identity": "comm-1",
            "subject": {"reference": "urn:uuid:pat-1"},
            "sender": {"reference": "urn:uuid:prac-1"},
            "recipients": [{"reference": "urn:uuid:prac-2"}],
            "payload": [
                {
                    "contentKind": "attachment",
                    "attachment": {
                        "contentType": "text/plain",
                        "data": base64.b64encode(text.encode("utf-8")).decode("ascii"),
                        "title": "Response Message",
                    },
                }
            ],
        },
    ]


@pytest.fixture
def make_entries() -> Callable[..., list[dict[str, Any]]]:
    """Factory fixture: the default raw entries, for tests that edit them."""
    return _default_entries
