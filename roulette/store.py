"""Hot-swappable holder for the active catalog."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Optional

from .catalog import Catalog


class CatalogStore:
    """Owns the active :class:`Catalog` reference.

    ``current()`` is a plain attribute read and never takes the lock, so
    readers never wait on each other or on a reload in progress. ``swap()``
    holds the lock only for the reference assignment. A snapshot returned by
    ``current()`` is immutable and stays valid after later swaps.
    """

    def __init__(self, initial: Catalog) -> None:
        self._catalog = initial
        self._lock = threading.Lock()
        self._generation = 0
        self._swapped_at: Optional[datetime] = None

    def current(self) -> Catalog:
        return self._catalog

    def swap(self, new_catalog: Catalog) -> Catalog:
        """Install ``new_catalog`` and return the snapshot it replaced."""

        if not isinstance(new_catalog, Catalog):
            raise TypeError(f"Expected Catalog, got {type(new_catalog).__name__}")
        with self._lock:
            previous = self._catalog
            self._catalog = new_catalog
            self._generation += 1
            self._swapped_at = datetime.now(timezone.utc)
        return previous

    def size(self) -> int:
        return self._catalog.size()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def swapped_at(self) -> Optional[datetime]:
        return self._swapped_at
