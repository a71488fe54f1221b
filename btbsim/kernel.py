"""Transition kernel: the per-step table of candidate events and their rates.

The kernel is rebuilt from scratch every step from the current population
and the (read-only) parameter vector; it is never updated in place.

Per live cow, keyed on its state:
  EXPOSED       → TESTSENSITIVE         rate sigma
  TESTSENSITIVE → INFECTIOUS            rate gamma
  INFECTIOUS    → new EXPOSED cow       rate S_farm × beta_CC
  INFECTIOUS    → new badger            rate S_res × beta_CB, per connected
                                        reservoir (reservoir enabled only)
Per live badger (reservoir enabled only):
  INFECTIOUS    → new badger            rate S_res × beta_BB
  INFECTIOUS    → new EXPOSED cow       rate S_farm × beta_BC, per connected farm

S_unit is the unit's susceptible count (capacity − infected). New-infection
targets carry an empty id; event application allocates the id when the
event fires. Events with zero rate are not registered, so an empty kernel
means no transition is possible.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Tuple

from .population import Population
from .types import (
    InfectedAnimal,
    InfectionState,
    SimulationInvariantError,
    Species,
)

logger = logging.getLogger(__name__)

NEW_ANIMAL = ""   # target id of a not-yet-created animal


@dataclass(frozen=True)
class TransitionEvent:
    """Kernel key: a source animal and its target state or new animal."""
    source_id: str
    source_species: Species
    target_species: Species
    target_unit: str
    target_state: InfectionState
    target_id: str = NEW_ANIMAL

    @property
    def is_new_infection(self) -> bool:
        return self.target_id == NEW_ANIMAL

    @property
    def is_progression(self) -> bool:
        return (not self.is_new_infection
                and self.source_species == self.target_species)


def progression(animal: InfectedAnimal, state: InfectionState) -> TransitionEvent:
    return TransitionEvent(animal.id, animal.species, animal.species,
                           animal.unit_id, state, target_id=animal.id)


def new_infection(
    source: InfectedAnimal,
    target_species: Species,
    target_unit: str,
) -> TransitionEvent:
    state = (InfectionState.EXPOSED if target_species == Species.COW
             else InfectionState.INFECTIOUS)
    return TransitionEvent(source.id, source.species, target_species,
                           target_unit, state)


class TransitionKernel:
    """Insertion-ordered mapping TransitionEvent → positive rate."""

    def __init__(self):
        self._rates: Dict[TransitionEvent, float] = {}

    def add(self, event: TransitionEvent, rate: float) -> None:
        if rate < 0:
            raise SimulationInvariantError(f"Negative rate {rate} for {event}")
        if rate > 0:
            self._rates[event] = rate

    def rate(self, event: TransitionEvent) -> float:
        return self._rates.get(event, 0.0)

    def events(self) -> List[TransitionEvent]:
        return list(self._rates)

    def items(self) -> List[Tuple[TransitionEvent, float]]:
        return list(self._rates.items())

    def total_rate(self) -> float:
        return float(sum(self._rates.values()))

    def is_empty(self) -> bool:
        return not self._rates

    def as_dict(self) -> Dict[TransitionEvent, float]:
        return dict(self._rates)

    def __len__(self) -> int:
        return len(self._rates)

    def __iter__(self) -> Iterator[TransitionEvent]:
        return iter(self._rates)

    def __repr__(self) -> str:
        return f"TransitionKernel({len(self._rates)} events, total rate {self.total_rate():.4g})"


def build_kernel(
    population: Population,
    params: Mapping[str, float],
    include_reservoir: bool,
) -> TransitionKernel:
    """Rebuild the kernel from the current population state.

    Deterministic: the same population and parameters always give the same
    events in the same order.
    """
    kernel = TransitionKernel()
    sigma = params['sigma']
    gamma = params['gamma']
    beta_cc = params['beta_CC']
    beta_cb = params['beta_CB']
    beta_bc = params['beta_BC']
    beta_bb = params['beta_BB']

    for cow in population.cows.values():
        if cow.state == InfectionState.EXPOSED:
            kernel.add(progression(cow, InfectionState.TESTSENSITIVE), sigma)
        elif cow.state == InfectionState.TESTSENSITIVE:
            kernel.add(progression(cow, InfectionState.INFECTIOUS), gamma)
        elif cow.state == InfectionState.INFECTIOUS:
            farm = population.farms[cow.unit_id]
            kernel.add(new_infection(cow, Species.COW, farm.id),
                       farm.susceptible_count * beta_cc)
            if include_reservoir:
                for rid in population.connected_units(Species.COW, farm.id):
                    reservoir = population.reservoirs[rid]
                    kernel.add(new_infection(cow, Species.BADGER, rid),
                               reservoir.susceptible_count * beta_cb)

    if include_reservoir:
        for badger in population.badgers.values():
            reservoir = population.reservoirs[badger.unit_id]
            kernel.add(new_infection(badger, Species.BADGER, reservoir.id),
                       reservoir.susceptible_count * beta_bb)
            for fid in reservoir.connected_farms:
                farm = population.farms[fid]
                kernel.add(new_infection(badger, Species.COW, fid),
                           farm.susceptible_count * beta_bc)

    logger.debug("Rebuilt %r", kernel)
    return kernel
