"""Population and unit model.

Two layers:
  - PopulationTemplate: read-only data shared by every replicate (unit ids,
    farm ↔ reservoir connectivity, off-movement tables, size distributions,
    movement tables, slaughter schedule). Built once by the loaders.
  - Population: one replicate's mutable state, built by value from the
    template. Owns the units, the live / culled / expired animal maps, the
    restricted-herd follow-up counters and the ScenarioCounters.

No Population ever aliases another's units or animals, so replicates can
run concurrently.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Tuple

import numpy as np

from .distributions import IntegerDistribution
from .types import (
    Farm,
    InfectedAnimal,
    Reservoir,
    Species,
    TransmissionType,
    Unit,
)


# ═══════════════════════════════════════════════════════════════════════
# SHARED TEMPLATE
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class MovementTable:
    """Empirical departure → destination pairs, one entry per recorded move.

    Pairs repeat once per historical movement so that uniform sampling of an
    index reproduces the empirical pair frequencies. `total_animals` is the
    number of animals moved over the whole data window.
    """
    pairs: Tuple[Tuple[str, str], ...] = ()
    total_animals: int = 0

    def __len__(self) -> int:
        return len(self.pairs)

    def quota(self, step_size: int, window_days: int) -> int:
        """Animals to move per step: total × step ÷ window (integer division)."""
        if window_days <= 0:
            return 0
        return (self.total_animals * step_size) // window_days


@dataclass(frozen=True)
class PopulationTemplate:
    """Read-only inputs shared by every replicate scenario."""
    farm_ids: Tuple[str, ...]
    reservoir_ids: Tuple[str, ...] = ()
    reservoir_farms: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    farm_off_movements: Mapping[str, IntegerDistribution] = field(default_factory=dict)
    reservoir_off_movements: Mapping[str, IntegerDistribution] = field(default_factory=dict)
    herd_sizes: IntegerDistribution = field(default_factory=IntegerDistribution)
    reservoir_sizes: IntegerDistribution = field(default_factory=IntegerDistribution)
    cattle_movements: MovementTable = field(default_factory=MovementTable)
    badger_movements: MovementTable = field(default_factory=MovementTable)
    slaughter_schedule: Mapping[int, Tuple[str, ...]] = field(default_factory=dict)
    observed_distances: IntegerDistribution = field(default_factory=IntegerDistribution)
    cattle_sampling_rates: Mapping[int, float] = field(default_factory=dict)
    badger_sampling_rates: Mapping[int, float] = field(default_factory=dict)

    def farm_reservoirs(self) -> Dict[str, Tuple[str, ...]]:
        """Inverse of reservoir_farms: farm id → connected reservoir ids."""
        inverse: Dict[str, List[str]] = {fid: [] for fid in self.farm_ids}
        for rid in self.reservoir_ids:
            for fid in self.reservoir_farms.get(rid, ()):
                inverse.setdefault(fid, []).append(rid)
        return {fid: tuple(rids) for fid, rids in inverse.items()}


# ═══════════════════════════════════════════════════════════════════════
# PER-SCENARIO COUNTERS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class ScenarioCounters:
    """Id allocators, mutation-id counter and reporting tallies of one run.

    Ids only need to be unique within a scenario's tree, so each scenario
    owns its own counters.
    """
    next_cow_id: int = 0
    next_badger_id: int = 0
    last_snp: int = 0
    transmissions: Dict[TransmissionType, int] = field(
        default_factory=lambda: {t: 0 for t in TransmissionType}
    )
    cows_moved: int = 0
    badgers_moved: int = 0
    badgers_dead: int = 0
    infected_cows_at_slaughter: int = 0
    reactors_at_breakdown: IntegerDistribution = field(
        default_factory=IntegerDistribution
    )

    def new_animal_id(self, species: Species) -> str:
        if species == Species.COW:
            self.next_cow_id += 1
            return f"Cow_{self.next_cow_id:05d}"
        self.next_badger_id += 1
        return f"Badger_{self.next_badger_id:05d}"

    def new_snp(self) -> int:
        self.last_snp += 1
        return self.last_snp


# ═══════════════════════════════════════════════════════════════════════
# POPULATION
# ═══════════════════════════════════════════════════════════════════════

class Population:
    """Mutable unit and animal state of one replicate scenario.

    Args:
        template: Shared read-only inputs.
    """

    def __init__(self, template: PopulationTemplate):
        self.template = template
        empty = IntegerDistribution()
        self.farms: Dict[str, Farm] = {
            fid: Farm(
                fid,
                off_movement_distribution=template.farm_off_movements.get(fid, empty).copy(),
            )
            for fid in template.farm_ids
        }
        self.reservoirs: Dict[str, Reservoir] = {
            rid: Reservoir(
                rid,
                off_movement_distribution=template.reservoir_off_movements.get(rid, empty).copy(),
                connected_farms=tuple(template.reservoir_farms.get(rid, ())),
            )
            for rid in template.reservoir_ids
        }
        self.farm_reservoirs: Dict[str, Tuple[str, ...]] = template.farm_reservoirs()

        self.cows: Dict[str, InfectedAnimal] = {}
        self.badgers: Dict[str, InfectedAnimal] = {}
        self.culled_cows: Dict[str, InfectedAnimal] = {}
        self.expired_badgers: Dict[str, InfectedAnimal] = {}

        # farm id → consecutive clear tests while under restriction
        self.restricted_herds: Dict[str, int] = {}
        self.counters = ScenarioCounters()

    # ── lookups ─────────────────────────────────────────────────────

    def units(self, species: Species) -> Dict[str, Unit]:
        return self.farms if species == Species.COW else self.reservoirs

    def unit_of(self, animal: InfectedAnimal) -> Unit:
        return self.units(animal.species)[animal.unit_id]

    def animals(self, species: Species) -> Dict[str, InfectedAnimal]:
        return self.cows if species == Species.COW else self.badgers

    def removed(self, species: Species) -> Dict[str, InfectedAnimal]:
        return self.culled_cows if species == Species.COW else self.expired_badgers

    def is_live(self, animal: InfectedAnimal) -> bool:
        return animal.id in self.animals(animal.species)

    def connected_units(self, species: Species, unit_id: str) -> Tuple[str, ...]:
        """Units of the *other* species connected to the given unit."""
        if species == Species.COW:
            return self.farm_reservoirs.get(unit_id, ())
        return self.reservoirs[unit_id].connected_farms

    def infected_unit_count(self, species: Species) -> int:
        return sum(1 for u in self.units(species).values() if u.infected_count > 0)

    # ── membership ──────────────────────────────────────────────────

    def add_animal(self, animal: InfectedAnimal) -> None:
        self.units(animal.species)[animal.unit_id].add_infected(animal.id)
        self.animals(animal.species)[animal.id] = animal

    def remove_animal(self, animal: InfectedAnimal) -> None:
        """Move a live animal to the culled (cow) or expired (badger) map.

        The unit's capacity is unchanged.
        """
        self.units(animal.species)[animal.unit_id].remove_infected(animal.id)
        self.animals(animal.species).pop(animal.id, None)
        self.removed(animal.species)[animal.id] = animal

    def relocate(self, animal: InfectedAnimal, unit_id: str) -> None:
        units = self.units(animal.species)
        units[animal.unit_id].remove_infected(animal.id)
        animal.move_to(unit_id)
        units[unit_id].add_infected(animal.id)

    # ── capacity ────────────────────────────────────────────────────

    @staticmethod
    def change_size(unit: Unit, delta: int) -> None:
        """Adjust capacity. Callers keep infected_count <= size when sizes are fixed."""
        unit.size += delta

    @staticmethod
    def random_off_movement_size(unit: Unit, rng: np.random.Generator) -> int:
        return unit.off_movement_distribution.random_bin(rng)

    def assign_sizes(
        self,
        species: Species,
        rng: np.random.Generator,
        size_fixed: bool,
    ) -> List[Tuple[str, int]]:
        """Draw every unit's capacity from the species' size distribution.

        With fixed sizes, off-movement batch sizes larger than the new
        capacity are dropped from the unit's table.

        Returns:
            (unit id, size) for every unit, in unit order.
        """
        dist = (self.template.herd_sizes if species == Species.COW
                else self.template.reservoir_sizes)
        assigned = []
        for unit in self.units(species).values():
            unit.size = dist.random_bin(rng)
            if size_fixed:
                unit.off_movement_distribution = unit.off_movement_distribution.filtered(unit.size)
            assigned.append((unit.id, unit.size))
        return assigned

    # ── restriction ─────────────────────────────────────────────────

    def restrict_herd(self, farm_id: str, date: int, clear_tests: int = 0) -> None:
        self.farms[farm_id].restrict(date)
        self.restricted_herds[farm_id] = clear_tests

    def lift_restriction(self, farm_id: str, date: int) -> None:
        self.farms[farm_id].clear(date)
        self.restricted_herds.pop(farm_id, None)

    def is_restricted(self, unit_id: str, species: Species = Species.COW) -> bool:
        if species != Species.COW:
            return False
        return self.farms[unit_id].is_restricted

