"""The message envelope: an ordered collection of typed entries.

An outgoing envelope always has exactly one Header and it is the first
entry.  Incoming envelopes are only trusted to be JSON; the parser copes
with missing or duplicated headers.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, TypeVar

from pydantic import Field, SerializeAsAny, field_validator

from clinenvelope.models.resources import (
    Header,
    ResourceBase,
    WireModel,
    new_identity,
    resource_from_wire,
)

MESSAGE_KIND = "message"

R = TypeVar("R", bound=ResourceBase)


class Envelope(WireModel):
    """A self-contained multi-resource message."""

    kind: str = MESSAGE_KIND
    id: str = Field(default_factory=new_identity)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    entries: list[SerializeAsAny[ResourceBase]] = []

    @field_validator("entries", mode="before")
    @classmethod
    def _dispatch_entries(cls, value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError(f"entries must be a list, got {type(value).__name__}")
        return [resource_from_wire(item) for item in value]

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def headers(self) -> list[Header]:
        return self.entries_of(Header)

    @property
    def header(self) -> Header | None:
        """The first Header entry, or None."""
        headers = self.headers
        return headers[0] if headers else None

    def entries_of(self, resource_cls: type[R]) -> list[R]:
        """Return entries of one resource class, in envelope order."""
        return [e for e in self.entries if isinstance(e, resource_cls)]
