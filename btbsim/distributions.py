"""Discrete distribution primitives.

  - IntegerDistribution: frequency table over integer bins, used for
    off-movement batch sizes, herd sizes, SNP-distance distributions and
    reactors-at-breakdown counts.
  - hypergeometric(): infected animals drawn in a batch.
  - select_many(): draw k distinct items without replacement.

All sampling goes through a numpy Generator supplied by the caller so that
each scenario stays on its own stream.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, TypeVar

import numpy as np

T = TypeVar('T')


class IntegerDistribution:
    """Frequency table over integer bins.

    Bins are kept sorted on output; frequencies are non-negative integers.
    An empty table samples as 0.
    """

    def __init__(self, frequencies: Optional[Dict[int, int]] = None):
        self._freq: Dict[int, int] = {}
        if frequencies:
            for value, count in frequencies.items():
                self.set_frequency(value, count)

    @classmethod
    def from_values(cls, values: Iterable[int]) -> 'IntegerDistribution':
        """Histogram of the given observations."""
        dist = cls()
        for v in values:
            dist.add(v)
        return dist

    # ── mutation ────────────────────────────────────────────────────

    def add(self, value: int, count: int = 1) -> None:
        """Record `count` more observations of `value`."""
        value = int(value)
        self._freq[value] = self._freq.get(value, 0) + int(count)

    def set_frequency(self, value: int, count: int) -> None:
        if count < 0:
            raise ValueError(f"Negative frequency {count} for bin {value}")
        self._freq[int(value)] = int(count)

    def merge(self, other: 'IntegerDistribution') -> None:
        """Add every bin of `other` into this table."""
        for value, count in other.items():
            self.add(value, count)

    # ── queries ─────────────────────────────────────────────────────

    def frequency(self, value: int) -> int:
        return self._freq.get(int(value), 0)

    def bins(self) -> List[int]:
        return sorted(self._freq)

    def items(self) -> List[tuple]:
        return [(b, self._freq[b]) for b in self.bins()]

    def total(self) -> int:
        """Sum of all frequencies (number of observations)."""
        return sum(self._freq.values())

    def is_empty(self) -> bool:
        return self.total() == 0

    def copy(self) -> 'IntegerDistribution':
        return IntegerDistribution(dict(self._freq))

    def filtered(self, max_value: int) -> 'IntegerDistribution':
        """Copy of this table keeping only bins <= max_value."""
        return IntegerDistribution(
            {b: c for b, c in self._freq.items() if b <= max_value}
        )

    def restricted_to(self, bins: Iterable[int]) -> 'IntegerDistribution':
        """Copy with exactly the given bins (missing bins get frequency 0)."""
        return IntegerDistribution({b: self.frequency(b) for b in bins})

    def mean(self) -> float:
        n = self.total()
        if n == 0:
            return 0.0
        return sum(b * c for b, c in self._freq.items()) / n

    # ── sampling ────────────────────────────────────────────────────

    def random_bin(self, rng: np.random.Generator) -> int:
        """Draw a bin with probability proportional to its frequency."""
        total = self.total()
        if total == 0:
            return 0
        bins = self.bins()
        cumulative = np.cumsum([self._freq[b] for b in bins])
        u = rng.integers(0, total)
        return bins[int(np.searchsorted(cumulative, u, side='right'))]

    def normalised(self, n: int) -> 'IntegerDistribution':
        """Rescale the frequencies so they sum to exactly `n`.

        Largest-remainder rounding: each bin gets floor(n * f / total), and
        the leftover units go to the bins with the largest fractional parts
        (ties broken by bin order).
        """
        total = self.total()
        if total == 0:
            return IntegerDistribution({b: 0 for b in self._freq})
        bins = self.bins()
        exact = np.array([self._freq[b] for b in bins], dtype=float) * n / total
        counts = np.floor(exact).astype(int)
        shortfall = int(n - counts.sum())
        if shortfall > 0:
            order = np.argsort(-(exact - counts), kind='stable')
            counts[order[:shortfall]] += 1
        return IntegerDistribution(dict(zip(bins, counts.tolist())))

    # ── dunder / text ───────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._freq)

    def __eq__(self, other) -> bool:
        if not isinstance(other, IntegerDistribution):
            return NotImplemented
        return {b: c for b, c in self._freq.items() if c} == \
            {b: c for b, c in other._freq.items() if c}

    def __repr__(self) -> str:
        return f"IntegerDistribution({dict(self.items())})"

    def to_text(self) -> str:
        """'bin:frequency' lines, the same format the loaders read."""
        return "\n".join(f"{b}:{c}" for b, c in self.items())


# ═══════════════════════════════════════════════════════════════════════
# SAMPLERS
# ═══════════════════════════════════════════════════════════════════════

def hypergeometric(
    rng: np.random.Generator,
    population: int,
    batch: int,
    infected: int,
) -> int:
    """Number of infected animals in a batch drawn without replacement.

    Args:
        rng: Scenario RNG stream.
        population: Animals in the unit.
        batch: Animals drawn.
        infected: Infected animals in the unit.

    Raises:
        ValueError: If batch or infected exceed population.
    """
    if batch <= 0 or infected <= 0:
        return 0
    if infected > population or batch > population:
        raise ValueError(
            f"hypergeometric draw of {batch} from {population} "
            f"with {infected} infected is ill-posed"
        )
    return int(rng.hypergeometric(infected, population - infected, batch))


def select_many(rng: np.random.Generator, items: Sequence[T], k: int) -> List[T]:
    """Draw k distinct items (without replacement), in draw order."""
    k = min(k, len(items))
    if k <= 0:
        return []
    idx = rng.choice(len(items), size=k, replace=False)
    return [items[int(i)] for i in idx]
