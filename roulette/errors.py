"""Errors raised on the selection path."""

from __future__ import annotations


class SelectionError(RuntimeError):
    """Base class for failures while picking an entry."""


class InvalidBoundError(SelectionError):
    """Raised when a bound string is not an accepted date prefix."""


class EmptyCandidateSetError(SelectionError):
    """Raised when no catalog entry satisfies the requested bound."""


class NoCandidatesError(SelectionError):
    """Raised when a sampler is handed an empty candidate sequence."""
