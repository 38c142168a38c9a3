"""Exception types for envelope processing.

Only ``StructuralFailure`` ever escapes a parse.  ``UnresolvedReference``
and ``PayloadDecodeError`` are field-level problems: the components that
raise them internally catch them, log, and leave the affected field empty.
"""

from __future__ import annotations


class EnvelopeError(ValueError):
    """Base class for envelope processing errors."""


class StructuralFailure(EnvelopeError):
    """The raw envelope text could not be read as a message envelope.

    Aborts processing of that single envelope only.
    """


class UnresolvedReference(EnvelopeError):
    """A reference string did not match any entry in the searched pool."""

    def __init__(self, reference: str | None, pool_name: str = "") -> None:
        self.reference = reference
        self.pool_name = pool_name
        where = f" in {pool_name} pool" if pool_name else ""
        super().__init__(f"Unresolved reference {reference!r}{where}")


class PayloadDecodeError(EnvelopeError):
    """Attachment bytes could not be decoded under the declared content type."""


class TransportError(RuntimeError):
    """Raised when a transport-level operation fails."""
