"""Scenario initial state.

Seeding a scenario draws, in order:
  1. herd and reservoir capacities from the configured size distributions
  2. the initial infections (repeated until at least one animal is infected)
  3. the herds that start under movement restriction
  4. the date of every free herd's last clear whole-herd test
Seeded animals become children of ROOT in the transmission tree.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set

import numpy as np

from .config import SeedEntry, parse_initial_infection_states
from .context import ScenarioContext
from .distributions import select_many
from .genetics import founder_snps
from .records import InitialInfectionState, InitialRestriction, InitialSize
from .types import (
    ROOT_ID,
    InfectedAnimal,
    InfectionState,
    Species,
    TransmissionNode,
    make_animal,
)

logger = logging.getLogger(__name__)

MAX_DAYS_SINCE_POSITIVE = 60   # restricted herds had their last reactor within this


def seed_scenario(ctx: ScenarioContext) -> int:
    """Draw the whole initial state of a scenario. Returns the animals seeded."""
    assign_unit_sizes(ctx)
    seeded = seed_infections(ctx)
    raise_seeded_capacities(ctx)
    for unit_id, species, size in _unit_sizes(ctx):
        ctx.records.initial_sizes.append(InitialSize(unit_id, species, size))
    seed_restrictions(ctx)
    seed_last_test_dates(ctx)
    logger.debug(
        "Seeded %d cows, %d badgers, %d restricted herds",
        len(ctx.population.cows), len(ctx.population.badgers),
        len(ctx.population.restricted_herds),
    )
    return seeded


def assign_unit_sizes(ctx: ScenarioContext) -> None:
    movement = ctx.config.movement
    ctx.population.assign_sizes(Species.COW, ctx.rng, movement.herd_size_fixed)
    ctx.population.assign_sizes(Species.BADGER, ctx.rng, movement.reservoir_size_fixed)


def _unit_sizes(ctx: ScenarioContext):
    for species in (Species.COW, Species.BADGER):
        for unit in ctx.population.units(species).values():
            yield unit.id, species, unit.size


# ═══════════════════════════════════════════════════════════════════════
# INFECTIONS
# ═══════════════════════════════════════════════════════════════════════

def draw_seed_state(entry: SeedEntry, rng: np.random.Generator) -> InfectionState:
    """Pick an entry's initial state from its (normalised) probabilities."""
    p = np.asarray(entry.probabilities, dtype=float)
    return entry.states[int(rng.choice(len(p), p=p / p.sum()))]


def seed_infections(ctx: ScenarioContext) -> int:
    """Seed the configured initial infections.

    Every entry is drawn once per pass; passes repeat until a pass infects
    at least one animal. Entries of the same clade share founder SNPs.

    Raises:
        ValueError: If an entry names a unit that does not exist.
    """
    entries = parse_initial_infection_states(
        ctx.config.seeding.initial_infection_states
    )
    if not any(e.can_seed for e in entries):
        logger.debug("No seedable initial infections configured")
        return 0
    for entry in entries:
        if entry.unit_id not in ctx.population.units(entry.species):
            raise ValueError(
                f"Initial infection {entry.animal_id} is on unknown "
                f"{entry.species.name.lower()} unit '{entry.unit_id}'"
            )

    clade_snps: Dict[str, Set[int]] = {}
    seeded = 0
    passes = 0
    while seeded == 0:
        passes += 1
        for entry in entries:
            if entry.clade not in clade_snps:
                clade_snps[entry.clade] = founder_snps(
                    ctx.config.seeding.init_mutations_per_clade, ctx.counters
                )
            seeded += _seed_entry(ctx, entry, clade_snps[entry.clade])
    if passes > 1:
        logger.debug("Initial infections needed %d passes", passes)
    return seeded


def _seed_entry(ctx: ScenarioContext, entry: SeedEntry, snps: Set[int]) -> int:
    state = draw_seed_state(entry, ctx.rng)
    ctx.records.initial_states.append(
        InitialInfectionState(entry.animal_id, entry.unit_id, entry.clade, state)
    )
    if state == InfectionState.SUSCEPTIBLE:
        return 0
    animal = _add_seed(ctx, entry.species, entry.animal_id, entry.unit_id, state, snps)
    seeded = 1
    if (entry.species == Species.COW and ctx.include_reservoir
            and ctx.config.reservoir.init_badgers_from_cows):
        if _seed_badger_from_cow(ctx, animal) is not None:
            seeded += 1
    return seeded


def _add_seed(
    ctx: ScenarioContext,
    species: Species,
    animal_id: str,
    unit_id: str,
    state: InfectionState,
    snps: Set[int],
) -> InfectedAnimal:
    start = ctx.config.start_day
    animal = make_animal(species, animal_id, unit_id, state, snps=snps,
                         last_snp_generation=start)
    ctx.population.add_animal(animal)
    ctx.tree.add_infection(
        ROOT_ID,
        TransmissionNode(animal_id, unit_id, frozenset(animal.snps),
                         is_cow=species == Species.COW),
    )
    logger.debug("Seeded %s (%s) on %s", animal_id, state.name, unit_id)
    return animal


def _seed_badger_from_cow(
    ctx: ScenarioContext,
    cow: InfectedAnimal,
) -> Optional[InfectedAnimal]:
    """Seed a badger with the cow's SNPs in a connected reservoir with room."""
    population = ctx.population
    candidates = [
        rid for rid in population.connected_units(Species.COW, cow.unit_id)
        if population.reservoirs[rid].susceptible_count > 0
    ]
    if not candidates:
        logger.debug("No reservoir with room next to %s for a seeded badger", cow.unit_id)
        return None
    reservoir_id = candidates[int(ctx.rng.integers(len(candidates)))]
    return _add_seed(ctx, Species.BADGER, f"Badger_{cow.id}", reservoir_id,
                     InfectionState.INFECTIOUS, cow.snps)


def raise_seeded_capacities(ctx: ScenarioContext) -> None:
    """Make room for every seeded animal: size >= infected count."""
    for species in (Species.COW, Species.BADGER):
        for unit in ctx.population.units(species).values():
            if unit.infected_count > unit.size:
                logger.debug("Raising %s capacity from %d to %d for its seeds",
                             unit.id, unit.size, unit.infected_count)
                unit.size = unit.infected_count


# ═══════════════════════════════════════════════════════════════════════
# RESTRICTIONS & TEST HISTORY
# ═══════════════════════════════════════════════════════════════════════

def seed_restrictions(ctx: ScenarioContext) -> List[str]:
    """Put randomly chosen herds under restriction. Returns their ids.

    Each gets a clear-test counter of 0 or 1 and a last reactor up to
    60 days before the start.
    """
    population = ctx.population
    start = ctx.config.start_day
    n = ctx.config.testing.num_initial_restricted_herds
    chosen = select_many(ctx.rng, list(population.farms), n)
    for farm_id in chosen:
        clear_tests = int(ctx.rng.integers(0, 2))
        last_test = start - int(ctx.rng.integers(0, MAX_DAYS_SINCE_POSITIVE + 1))
        population.restrict_herd(farm_id, last_test, clear_tests)
        ctx.records.initial_restrictions.append(
            InitialRestriction(farm_id, last_test, clear_tests)
        )
    return chosen


def seed_last_test_dates(ctx: ScenarioContext) -> None:
    """Spread free herds' last clear tests over the test interval before start.

    Skipped when routine testing never falls inside the run.
    """
    interval_days = ctx.config.routine_test_interval_days
    if interval_days is None:
        return
    start = ctx.config.start_day
    interval = max(int(round(interval_days)), 1)
    for farm in ctx.population.farms.values():
        if farm.is_restricted:
            continue
        farm.clear(start - int(ctx.rng.integers(0, interval)))
