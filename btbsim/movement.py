"""Animal movements, slaughter and badger deaths.

Movements replay the empirical departure → destination tables. Every step
a per-species quota of animals is moved, drawing pair indices uniformly so
that busy routes are replayed in proportion to their recorded use. Each
batch carries a hypergeometric number of the departure unit's infected
animals.

Cattle batches are pre-movement tested: a single reactor cancels the whole
batch and restricts the departure herd. Restricted herds never send or
receive animals. Badger batches are examined on arrival but never blocked.

Slaughter follows the empirical abattoir schedule; infected animals among
the slaughtered are tested and a reactor restricts the herd. Badgers die at
a constant per-step probability and are sampled at death.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import List

from .context import ScenarioContext
from .distributions import hypergeometric, select_many
from .population import Population
from .records import MovementRecord
from .surveillance import (
    REASON_ABATTOIR,
    REASON_DEATH,
    REASON_MOVEMENT,
    REASON_PRE_MOVE,
    examine_badger,
    skin_test_cows,
)
from .types import InfectedAnimal, SimulationInvariantError, Species, Unit

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# MOVEMENTS
# ═══════════════════════════════════════════════════════════════════════

def perform_movements(ctx: ScenarioContext, species: Species, time: int) -> int:
    """Move this step's quota of animals of one species.

    Returns:
        Number of animals moved (whole batches, infected or not).
    """
    population = ctx.population
    template = population.template
    if species == Species.COW:
        table = template.cattle_movements
        size_fixed = ctx.config.movement.herd_size_fixed
    else:
        table = template.badger_movements
        size_fixed = ctx.config.movement.reservoir_size_fixed
    window = ctx.config.movement_end_day - ctx.config.movement_start_day
    quota = table.quota(ctx.step_size, window)
    if quota <= 0 or len(table) == 0:
        return 0

    units = population.units(species)
    max_draws = ctx.config.movement.max_draws_per_step
    moved = 0
    draws = 0
    while moved < quota:
        if draws >= max_draws:
            logger.warning(
                "%s movements at day %d stopped after %d draws: %d of %d animals moved",
                species.name, time, draws, moved, quota,
            )
            break
        draws += 1
        index = int(ctx.rng.integers(len(table)))
        departure_id, destination_id = table.pairs[index]
        if species == Species.COW and (
            population.is_restricted(departure_id)
            or population.is_restricted(destination_id)
        ):
            continue
        departure = units[departure_id]
        destination = units[destination_id]
        batch = population.random_off_movement_size(departure, ctx.rng)
        if batch <= 0 or (not size_fixed and batch >= departure.size):
            continue
        if species == Species.COW:
            moved += _move_cattle(ctx, departure, destination, batch, index, time, size_fixed)
        else:
            moved += _move_badgers(ctx, departure, destination, batch, index, time, size_fixed)
    return moved


def _draw_infected(
    ctx: ScenarioContext,
    departure: Unit,
    destination: Unit,
    batch: int,
    index: int,
    time: int,
) -> List[str]:
    """Pick the infected members of a batch and record the movement draw."""
    infected = departure.infected_count
    if infected > departure.size:
        raise SimulationInvariantError(
            f"{departure.id} holds {infected} infected animals but only "
            f"{departure.size} animals at day {time}"
        )
    n_infected = hypergeometric(ctx.rng, departure.size, batch, infected)
    ctx.records.movements.append(MovementRecord(
        time, departure.species, departure.id, destination.id, departure.size,
        batch, infected, n_infected, index, -1,
    ))
    return select_many(ctx.rng, departure.infected_ids(), n_infected)


def _resize(departure: Unit, destination: Unit, batch: int, size_fixed: bool) -> None:
    if not size_fixed:
        Population.change_size(departure, -batch)
        Population.change_size(destination, batch)
    elif destination.infected_count > destination.size:
        Population.change_size(destination, destination.infected_count - destination.size)


def _move_cattle(
    ctx: ScenarioContext,
    departure: Unit,
    destination: Unit,
    batch: int,
    index: int,
    time: int,
    size_fixed: bool,
) -> int:
    population = ctx.population
    infected_before = departure.infected_count
    chosen = _draw_infected(ctx, departure, destination, batch, index, time)
    reactors = skin_test_cows(ctx, departure.id, chosen, time, REASON_PRE_MOVE,
                              infected_before)
    if reactors > 0:
        population.restrict_herd(departure.id, time)
        logger.debug("Pre-movement reactor on %s at %d; batch cancelled",
                     departure.id, time)
        return 0
    for cow_id in chosen:
        population.relocate(population.cows[cow_id], destination.id)
    _resize(departure, destination, batch, size_fixed)
    ctx.counters.cows_moved += len(chosen)
    return batch


def _move_badgers(
    ctx: ScenarioContext,
    departure: Unit,
    destination: Unit,
    batch: int,
    index: int,
    time: int,
    size_fixed: bool,
) -> int:
    population = ctx.population
    chosen = _draw_infected(ctx, departure, destination, batch, index, time)
    for badger_id in chosen:
        badger = population.badgers[badger_id]
        population.relocate(badger, destination.id)
        examine_badger(ctx, badger, time, departure.id, destination.id,
                       ctx.config.reservoir.capture_on_movement, REASON_MOVEMENT)
    _resize(departure, destination, batch, size_fixed)
    ctx.counters.badgers_moved += len(chosen)
    return batch


# ═══════════════════════════════════════════════════════════════════════
# SLAUGHTER
# ═══════════════════════════════════════════════════════════════════════

def perform_slaughter(ctx: ScenarioContext, time: int) -> int:
    """Slaughter the animals scheduled in [time, time + step).

    Returns:
        Number of infected cows that reacted at the abattoir.
    """
    population = ctx.population
    schedule = population.template.slaughter_schedule
    due: Counter = Counter()
    for day in range(time, time + ctx.step_size):
        for farm_id in schedule.get(day, ()):
            due[farm_id] += 1

    detected = 0
    for farm_id, count in due.items():
        farm = population.farms.get(farm_id)
        if farm is None:
            logger.debug("Slaughter from unknown farm %s ignored", farm_id)
            continue
        infected = farm.infected_count
        if infected > farm.size:
            raise SimulationInvariantError(
                f"{farm_id} holds {infected} infected cows but only "
                f"{farm.size} animals at day {time}"
            )
        count = min(count, farm.size)
        n_infected = hypergeometric(ctx.rng, farm.size, count, infected)
        ctx.records.movements.append(MovementRecord(
            time, Species.COW, farm_id, "", farm.size, count, infected,
            n_infected, -1, -1,
        ))
        chosen = select_many(ctx.rng, farm.infected_ids(), n_infected)
        reactors = skin_test_cows(ctx, farm_id, chosen, time, REASON_ABATTOIR, infected)
        if reactors > 0:
            population.restrict_herd(farm_id, time)
            logger.debug("Abattoir reactor from %s at %d", farm_id, time)
        ctx.counters.infected_cows_at_slaughter += reactors
        detected += reactors
    return detected


# ═══════════════════════════════════════════════════════════════════════
# BADGER DEATHS
# ═══════════════════════════════════════════════════════════════════════

def perform_badger_deaths(ctx: ScenarioContext, time: int) -> int:
    """Kill each live badger with the per-step death probability.

    Dead badgers are examined and sampled, then moved to the expired map.

    Returns:
        Number of badgers that died.
    """
    population = ctx.population
    probability = ctx.config.badger_death_probability
    dying: List[InfectedAnimal] = []
    for badger in population.badgers.values():
        u = float(ctx.rng.random())
        dead = int(u < probability)
        reservoir = population.reservoirs[badger.unit_id]
        ctx.records.movements.append(MovementRecord(
            time, Species.BADGER, badger.unit_id, "", reservoir.size,
            dead, 1, dead, -1, u,
        ))
        if dead:
            dying.append(badger)

    for badger in dying:
        examine_badger(ctx, badger, time, badger.unit_id, "", False, REASON_DEATH)
        ctx.mark_sampled(badger, time)
        population.remove_animal(badger)
    ctx.counters.badgers_dead += len(dying)
    if dying:
        logger.debug("%d badgers died at %d", len(dying), time)
    return len(dying)
