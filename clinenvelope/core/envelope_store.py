"""Envelope persistence: the ``Storage`` seam and a local implementation.

Storage layout: {base_path}/{sha256[0:2]}/{sha256[2:4]}/{sha256}.json
No delete method — stored envelopes are immutable.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from clinenvelope.core.wire import address_digest, envelope_address, envelope_bytes
from clinenvelope.models.envelope import Envelope

logger = logging.getLogger(__name__)


@runtime_checkable
class Storage(Protocol):
    """Durable resource store collaborator.

    ``persist`` returns a storage id, or ``None`` when the envelope was not
    stored.  It may also raise; callers treat both as non-fatal.
    """

    def persist(self, envelope: Envelope) -> str | None: ...


class NullStorage:
    """Storage that keeps nothing.  Every persist returns ``None``."""

    def persist(self, envelope: Envelope) -> str | None:
        logger.debug("NullStorage: envelope %s not persisted", envelope.id)
        return None


class EnvelopeIntegrityError(RuntimeError):
    """Raised when a stored envelope's hash does not match its address."""


class ContentAddressedEnvelopeStore:
    """SHA-256 keyed, immutable envelope store.

    Storing the same envelope twice is a no-op (idempotent) and returns
    the same ``sha256:<hex>`` id.

    Parameters
    ----------
    base_path:
        Root directory for envelope storage.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    def _envelope_path(self, digest: str) -> Path:
        return self._base / digest[:2] / digest[2:4] / f"{digest}.json"

    # ------------------------------------------------------------------
    # Persist
    # ------------------------------------------------------------------

    def persist(self, envelope: Envelope) -> str | None:
        data = envelope_bytes(envelope)
        address = envelope_address(data)
        digest = address_digest(address)
        path = self._envelope_path(digest)

        if path.exists():
            if not self.verify(digest):
                raise EnvelopeIntegrityError(
                    f"Stored envelope at {digest} failed integrity check"
                )
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            logger.info("Persisted envelope %s as %s", envelope.id, address)

        return address

    # ------------------------------------------------------------------
    # Retrieve and verify
    # ------------------------------------------------------------------

    def retrieve(self, storage_id: str) -> Envelope:
        """Load a stored envelope by ``sha256:<hex>`` id or bare digest."""
        path = self._envelope_path(address_digest(storage_id))
        if not path.exists():
            raise FileNotFoundError(f"Envelope not found: {storage_id}")
        return Envelope.model_validate(json.loads(path.read_bytes()))

    def exists(self, storage_id: str) -> bool:
        return self._envelope_path(address_digest(storage_id)).exists()

    def verify(self, storage_id: str) -> bool:
        """Re-hash stored bytes and compare against the storage id."""
        digest = address_digest(storage_id)
        path = self._envelope_path(digest)
        if not path.exists():
            return False
        return address_digest(envelope_address(path.read_bytes())) == digest
