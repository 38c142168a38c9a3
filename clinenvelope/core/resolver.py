"""Cross-reference resolution within a single envelope.

A reference points at an entry by identity, either bare or prefixed with
the reference scheme (``urn:uuid:`` by default).  Both forms resolve to
the same entry.  Pools are small, so resolution is a linear scan.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TypeVar

from clinenvelope.core.wire import DEFAULT_SCHEME, strip_scheme
from clinenvelope.errors import UnresolvedReference
from clinenvelope.models.resources import Reference, ResourceBase

R = TypeVar("R", bound=ResourceBase)


class ReferenceResolver:
    """Resolves reference strings against pools of envelope entries.

    Parameters
    ----------
    scheme:
        The recognized reference prefix, stripped before comparison.
    """

    def __init__(self, scheme: str = DEFAULT_SCHEME) -> None:
        self._scheme = scheme

    @property
    def scheme(self) -> str:
        return self._scheme

    def strip(self, ref: Reference | str | None) -> str | None:
        """Return the bare identity a reference points at, or None."""
        if isinstance(ref, Reference):
            ref = ref.reference
        stripped = strip_scheme(ref, self._scheme)
        return stripped or None

    def resolve(self, pool: Sequence[R], ref: Reference | str | None) -> R | None:
        """Return the first entry in *pool* whose identity matches *ref*."""
        key = self.strip(ref)
        if key is None:
            return None
        for entry in pool:
            if strip_scheme(entry.identity, self._scheme) == key:
                return entry
        return None

    def require(
        self,
        pool: Sequence[R],
        ref: Reference | str | None,
        pool_name: str = "",
    ) -> R:
        """Like :meth:`resolve` but raise ``UnresolvedReference`` on a miss."""
        entry = self.resolve(pool, ref)
        if entry is None:
            raw = ref.reference if isinstance(ref, Reference) else ref
            raise UnresolvedReference(raw, pool_name)
        return entry
