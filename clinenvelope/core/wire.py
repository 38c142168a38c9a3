"""Wire helpers: envelope JSON, storage addresses and reference schemes.

``envelope_bytes`` is the byte form that gets hashed.  Keys are sorted,
insignificant whitespace is left out and non-ASCII text is escaped, so
two equal envelopes always share one storage address.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from clinenvelope.models.envelope import Envelope

DEFAULT_SCHEME = "urn:uuid:"
ADDRESS_PREFIX = "sha256:"


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


def envelope_to_wire(envelope: Envelope) -> dict[str, Any]:
    """Dump an envelope to its camelCase wire dict."""
    return envelope.model_dump(mode="json", by_alias=True, exclude_none=True)


def serialize_envelope(envelope: Envelope, *, indent: int | None = None) -> str:
    """Serialize an envelope to wire JSON text."""
    return json.dumps(envelope_to_wire(envelope), indent=indent, ensure_ascii=False)


def envelope_bytes(envelope: Envelope) -> bytes:
    """Hashable byte form of an envelope (sorted, compact, ASCII only)."""
    text = json.dumps(envelope_to_wire(envelope), sort_keys=True, separators=(",", ":"))
    return text.encode("ascii")


def envelope_address(data: bytes) -> str:
    """Storage address ``sha256:<hex>`` of envelope bytes."""
    return ADDRESS_PREFIX + hashlib.sha256(data).hexdigest()


def address_digest(address: str) -> str:
    """Hex part of a storage address.  A bare digest is returned as is."""
    return address.removeprefix(ADDRESS_PREFIX)


# ---------------------------------------------------------------------------
# References
# ---------------------------------------------------------------------------


def strip_scheme(value: str | None, scheme: str = DEFAULT_SCHEME) -> str | None:
    """Remove the reference scheme prefix, if present."""
    if value is None:
        return None
    value = value.strip()
    if scheme and value.startswith(scheme):
        return value[len(scheme):]
    return value


def with_scheme(identity: str, scheme: str = DEFAULT_SCHEME) -> str:
    """Prefix a bare identity with the reference scheme (idempotent)."""
    if scheme and identity.startswith(scheme):
        return identity
    return f"{scheme}{identity}"
