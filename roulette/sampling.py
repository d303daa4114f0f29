"""Selection strategies over candidate entries."""

from __future__ import annotations

import math
import random
import sys
from itertools import accumulate
from typing import Dict, List, Literal, Optional, Protocol, Sequence, Tuple

from .catalog import Entry
from .errors import NoCandidatesError

SelectionMode = Literal["uniform", "recency"]
SELECTION_MODES: Tuple[SelectionMode, ...] = ("uniform", "recency")

# Smallest normal float; no rank weight drops below it.
_MIN_WEIGHT = sys.float_info.min


class Sampler(Protocol):
    """Picks one entry from a non-empty candidate sequence."""

    def select(self, candidates: Sequence[Entry]) -> Entry:
        ...


class UniformSampler:
    """Every candidate is equally likely."""

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()

    def select(self, candidates: Sequence[Entry]) -> Entry:
        if not candidates:
            raise NoCandidatesError("Uniform sampler received no candidates")
        return candidates[self._rng.randrange(len(candidates))]


class RecencyBiasedSampler:
    """Favour entries with larger (newer) keys.

    Candidates are ranked newest first and rank ``i`` gets weight
    ``1 / (1 + decay_rate * i)``. A decay rate of zero degenerates to a
    uniform pick; larger rates concentrate the mass on the newest entry.
    The weights fall off hyperbolically rather than exponentially, so no
    rank ever underflows to a zero weight for a finite decay rate.
    """

    def __init__(self, decay_rate: float, rng: Optional[random.Random] = None) -> None:
        if not math.isfinite(decay_rate) or decay_rate < 0:
            raise ValueError(f"decay_rate must be a finite non-negative number, got {decay_rate}")
        self.decay_rate = float(decay_rate)
        self._rng = rng or random.Random()

    def rank(self, candidates: Sequence[Entry]) -> List[Entry]:
        # Catalog snapshots and bound filters hand over strictly ascending keys.
        if all(earlier.key < later.key for earlier, later in zip(candidates, candidates[1:])):
            return list(reversed(candidates))
        # sorted() is stable with reverse=True, so equal keys keep their order.
        return sorted(candidates, key=lambda entry: entry.key, reverse=True)

    def weights(self, count: int) -> List[float]:
        rate = self.decay_rate
        return [max(1.0 / (1.0 + rate * index), _MIN_WEIGHT) for index in range(count)]

    def probabilities(self, candidates: Sequence[Entry]) -> List[Tuple[Entry, float]]:
        """Return ``(entry, probability)`` pairs in rank order."""

        ranked = self.rank(candidates)
        weights = self.weights(len(ranked))
        total = sum(weights)
        return [(entry, weight / total) for entry, weight in zip(ranked, weights)]

    def select(self, candidates: Sequence[Entry]) -> Entry:
        if not candidates:
            raise NoCandidatesError("Recency-biased sampler received no candidates")
        ranked = self.rank(candidates)
        cumulative = list(accumulate(self.weights(len(ranked))))
        return self._rng.choices(ranked, cum_weights=cumulative, k=1)[0]


def build_samplers(decay_rate: float, rng: Optional[random.Random] = None) -> Dict[SelectionMode, Sampler]:
    """Create the sampler for each selection mode."""

    return {
        "uniform": UniformSampler(rng),
        "recency": RecencyBiasedSampler(decay_rate, rng),
    }
