"""Request-level selection: snapshot, filter, sample."""

from __future__ import annotations

from typing import Dict, Optional, Sequence

from .bounds import filter_after, parse_bound
from .catalog import Entry
from .errors import EmptyCandidateSetError
from .sampling import Sampler, SelectionMode
from .store import CatalogStore


class SelectionEngine:
    """Pick entries from the active catalog of a :class:`CatalogStore`."""

    def __init__(self, store: CatalogStore, samplers: Dict[SelectionMode, Sampler]) -> None:
        self.store = store
        self._samplers = dict(samplers)

    def candidates(self, bound: Optional[str] = None) -> Sequence[Entry]:
        catalog = self.store.current()
        if bound is None:
            return catalog.entries()
        candidates = filter_after(catalog, parse_bound(bound))
        if not candidates:
            raise EmptyCandidateSetError(f"No entries at or after {bound!r}")
        return candidates

    def select(self, mode: SelectionMode, bound: Optional[str] = None) -> Entry:
        """Pick one entry using ``mode``, optionally limited to keys >= ``bound``.

        The catalog snapshot is captured once, so a concurrent swap cannot
        change the candidate set mid-request.
        """

        try:
            sampler = self._samplers[mode]
        except KeyError as exc:
            raise ValueError(f"Unknown selection mode: {mode}") from exc
        return sampler.select(self.candidates(bound))

    def size(self) -> int:
        return self.store.size()
