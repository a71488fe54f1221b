"""Per-scenario run context.

A ScenarioContext bundles what every simulation phase needs: the read-only
configuration and parameter vector, the scenario's own RNG stream, its
Population and TransmissionTree, and the record log. One context exists per
replicate; contexts never share mutable state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

import numpy as np

from .config import SimulationConfig
from .genetics import advance_snps
from .population import Population
from .records import ScenarioRecords
from .tree import TransmissionTree
from .types import InfectedAnimal


@dataclass
class ScenarioContext:
    config: SimulationConfig
    params: Mapping[str, float]
    rng: np.random.Generator
    population: Population
    tree: TransmissionTree = field(default_factory=TransmissionTree)
    records: ScenarioRecords = field(default_factory=ScenarioRecords)

    @property
    def step_size(self) -> int:
        return self.config.simulation.step_size

    @property
    def include_reservoir(self) -> bool:
        return self.config.reservoir.include_reservoir

    @property
    def counters(self):
        return self.population.counters

    def advance_snps(self, animal: InfectedAnimal, date: int) -> int:
        return advance_snps(animal, date, self.params['mutationRate'],
                            self.rng, self.population.counters)

    def mark_sampled(self, animal: InfectedAnimal, date: int) -> None:
        """Sample an animal: bring its SNPs up to date and stamp both dates.

        Keeps sample_date and the tree vertex's detection_date in step. The
        first sample stands; later observations of the same animal leave
        both dates alone.
        """
        if animal.is_sampled:
            return
        self.advance_snps(animal, date)
        animal.sample_date = date
        self.tree.set_detection_date(animal.id, date)
