"""Mutation model: infinite-alleles SNP accumulation along lineages.

Each lineage carries a set of integer SNP ids. Between its last mutation
update and day `d`, a lineage gains Poisson(λ·Δd) new SNPs, each taking
the next id from the scenario's mutation counter. Ids are never reused, so
two lineages share a SNP only by common descent.

Seed mode (λ < 0) instead yields exactly max(d, 1) SNPs. It is used once
per clade at scenario start to make founder lineages genetically distinct.
"""

from __future__ import annotations

from typing import Set

import numpy as np

from .population import ScenarioCounters
from .types import InfectedAnimal, SimulationInvariantError

SEED_MODE = -1.0


def generate_snps(
    rate: float,
    day: int,
    last_day: int,
    rng: np.random.Generator,
    counters: ScenarioCounters,
) -> Set[int]:
    """New SNP ids accumulated between last_day and day.

    Args:
        rate: Mutations per lineage per day; negative selects seed mode.
        day: Current day (seed mode: the number of founder SNPs).
        last_day: Day of the lineage's previous update (ignored in seed mode).
        rng: Scenario RNG stream.
        counters: Owner of the mutation-id counter.

    Raises:
        SimulationInvariantError: If day < last_day outside seed mode.
    """
    if rate < 0:
        n_new = max(int(day), 1)
    else:
        elapsed = day - last_day
        if elapsed < 0:
            raise SimulationInvariantError(
                f"Mutation update at day {day} precedes the lineage's "
                f"last update at day {last_day}"
            )
        n_new = 0 if elapsed == 0 else int(rng.poisson(rate * elapsed))
    return {counters.new_snp() for _ in range(n_new)}


def founder_snps(n_mutations: int, counters: ScenarioCounters) -> Set[int]:
    """Founder SNPs for a new clade (seed mode; needs no randomness)."""
    return generate_snps(SEED_MODE, n_mutations, 0, None, counters)


def advance_snps(
    animal: InfectedAnimal,
    day: int,
    rate: float,
    rng: np.random.Generator,
    counters: ScenarioCounters,
) -> int:
    """Bring an animal's SNP set up to `day`. Returns the number of new SNPs."""
    try:
        new = generate_snps(rate, day, animal.last_snp_generation, rng, counters)
    except SimulationInvariantError as e:
        raise SimulationInvariantError(f"{animal.id}: {e}") from None
    animal.snps |= new
    animal.last_snp_generation = day
    return len(new)


def snp_distance(a: Set[int], b: Set[int]) -> int:
    """Size of the symmetric difference of two SNP sets."""
    return len(a ^ b)
