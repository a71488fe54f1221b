"""Event application: turn fired kernel events into population changes.

The tau-leap driver reports (event, count) pairs; each unit of count is
applied separately, because recipient selection and tree bookkeeping are
per individual.

Dispatch is on the (source species, target species) pair:
  (COW, COW)        progression of the source, or a new cow on its farm
  (BADGER, BADGER)  a new badger in the source's reservoir
  (COW, BADGER)     a new badger in a connected reservoir with room
  (BADGER, COW)     a new cow on a connected farm with room
Any other shape raises SimulationInvariantError.

Expected no-ops (source already culled this step, no susceptible left,
no connected unit with room) are skipped and logged at DEBUG.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Tuple

from .context import ScenarioContext
from .kernel import TransitionEvent
from .types import (
    InfectedAnimal,
    InfectionState,
    SimulationInvariantError,
    Species,
    TransmissionNode,
    TransmissionType,
    Unit,
    make_animal,
)

logger = logging.getLogger(__name__)


def apply_events(
    ctx: ScenarioContext,
    fired: Iterable[Tuple[TransitionEvent, int]],
    date: int,
) -> int:
    """Apply every fired (event, count) pair. Returns the number applied."""
    applied = 0
    for event, times in fired:
        applied += apply_event(ctx, event, times, date)
    return applied


def apply_event(
    ctx: ScenarioContext,
    event: TransitionEvent,
    times: int,
    date: int,
) -> int:
    """Apply one fired event `times` times. Returns how many took effect."""
    applied = 0
    for _ in range(times):
        if _apply_once(ctx, event, date):
            applied += 1
    return applied


def _apply_once(ctx: ScenarioContext, event: TransitionEvent, date: int) -> bool:
    population = ctx.population
    source = population.animals(event.source_species).get(event.source_id)
    if source is None:
        logger.debug("Skipping %s: source no longer live", event.source_id)
        return False

    pair = (event.source_species, event.target_species)
    if pair == (Species.COW, Species.COW):
        if event.is_progression:
            _progress(source, event)
            return True
        _require_new(event)
        unit = population.farms.get(event.target_unit)
    elif pair == (Species.BADGER, Species.BADGER):
        _require_new(event)
        unit = population.reservoirs.get(event.target_unit)
    elif pair == (Species.COW, Species.BADGER) or pair == (Species.BADGER, Species.COW):
        _require_new(event)
        unit = _pick_connected_unit(ctx, source)
    else:
        raise SimulationInvariantError(f"Unrecognised event shape {event}")

    if unit is None or unit.susceptible_count <= 0:
        logger.debug(
            "Skipping %s → %s infection from %s: no susceptible capacity",
            event.source_species.name, event.target_species.name, source.id,
        )
        return False
    _infect(ctx, source, unit, event.target_state, date)
    return True


def _require_new(event: TransitionEvent) -> None:
    if not event.is_new_infection:
        raise SimulationInvariantError(
            f"Event {event} targets an existing animal but is not a progression"
        )


def _progress(animal: InfectedAnimal, event: TransitionEvent) -> None:
    if event.target_id != animal.id:
        raise SimulationInvariantError(
            f"Progression event {event} does not target its own source"
        )
    animal.state = event.target_state


def _pick_connected_unit(
    ctx: ScenarioContext,
    source: InfectedAnimal,
) -> Optional[Unit]:
    """Uniformly pick a connected unit of the other species with room.

    At most one draw per candidate connection; None if all draws hit full units.
    """
    population = ctx.population
    candidates = population.connected_units(source.species, source.unit_id)
    if not candidates:
        return None
    target_units = population.units(
        Species.BADGER if source.species == Species.COW else Species.COW
    )
    for _ in range(len(candidates)):
        unit = target_units[candidates[int(ctx.rng.integers(len(candidates)))]]
        if unit.susceptible_count > 0:
            return unit
    return None


def _infect(
    ctx: ScenarioContext,
    source: InfectedAnimal,
    unit: Unit,
    state: InfectionState,
    date: int,
) -> InfectedAnimal:
    """Create the newly infected animal, its tree vertex and its tally."""
    ctx.advance_snps(source, date)
    new_id = ctx.counters.new_animal_id(unit.species)
    animal = make_animal(
        unit.species, new_id, unit.id, state,
        snps=source.snps,
        last_snp_generation=source.last_snp_generation,
    )
    ctx.population.add_animal(animal)
    ctx.tree.add_infection(
        source.id,
        TransmissionNode(new_id, unit.id, frozenset(animal.snps), date,
                         is_cow=unit.species == Species.COW),
    )
    ctx.counters.transmissions[TransmissionType.between(source.species, unit.species)] += 1
    logger.debug("%s infected %s on %s at %d", source.id, new_id, unit.id, date)
    return animal
