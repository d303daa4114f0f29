"""Date-prefix lower bounds over catalog keys."""

from __future__ import annotations

import bisect
import re
from typing import Tuple

from .catalog import Catalog, Entry
from .errors import InvalidBoundError

_BOUND_PATTERN = re.compile(r"(\d{4})(?:-(\d{2})(?:-(\d{2}))?)?", re.ASCII)


def parse_bound(raw: str) -> str:
    """Validate ``raw`` as ``YYYY``, ``YYYY-MM`` or ``YYYY-MM-DD``.

    Segments are range-checked (month 01-12, day 01-31) but not checked
    against the calendar, so ``2023-02-30`` is accepted.
    """

    if not isinstance(raw, str):
        raise InvalidBoundError(f"Bound must be a string, got {type(raw).__name__}")

    match = _BOUND_PATTERN.fullmatch(raw)
    if match is None:
        raise InvalidBoundError(f"Bound must look like YYYY, YYYY-MM or YYYY-MM-DD: {raw!r}")

    _, month, day = match.groups()
    if month is not None and not 1 <= int(month) <= 12:
        raise InvalidBoundError(f"Month out of range in bound: {raw!r}")
    if day is not None and not 1 <= int(day) <= 31:
        raise InvalidBoundError(f"Day out of range in bound: {raw!r}")
    return raw


def filter_after(catalog: Catalog, bound: str) -> Tuple[Entry, ...]:
    """Return the entries whose key sorts at or after ``bound``.

    Plain string comparison is only meaningful because keys start with
    zero-padded date segments; other key shapes get no guarantees.
    """

    start = bisect.bisect_left(catalog.keys(), bound)
    return catalog.entries()[start:]
