"""Cattle testing and the herd restriction state machine.

Single-animal test (cows): a TESTSENSITIVE or INFECTIOUS cow reacts with
probability testSensitivity. A reactor is sampled (SNPs advanced, sample
and detection dates set) and culled. Every test is recorded, positive or not.

Whole-herd test (WHT): every infected cow on the farm is tested; the number
of reactors can never exceed the number tested.

Restriction state machine per farm:
  free ──(reactor found)──────────────────────▶ restricted, counter 0
  restricted ──(clear test, counter+1 < N)────▶ restricted, retest in 60 d
  restricted ──(clear test, counter+1 == N)───▶ free
  restricted ──(reactor found)────────────────▶ restricted, counter 0
Free herds are retested every test_interval_years.

Badgers are never removed by a test and carry no restriction; a positive
badger test only samples the animal.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from .context import ScenarioContext
from .records import BadgerRecord, CattleTest, HerdTest
from .types import (
    UNSET,
    Farm,
    InfectedAnimal,
    InfectionState,
    SimulationInvariantError,
)

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

REASON_WHT = "WHT"
REASON_PRE_MOVE = "pre-move"
REASON_ABATTOIR = "abattoir"
REASON_MOVEMENT = "movement"
REASON_DEATH = "death"

TEST_SENSITIVE_STATES = (InfectionState.TESTSENSITIVE, InfectionState.INFECTIOUS)


# ═══════════════════════════════════════════════════════════════════════
# SINGLE-ANIMAL TESTS
# ═══════════════════════════════════════════════════════════════════════

def skin_test_cow(
    ctx: ScenarioContext,
    cow: InfectedAnimal,
    date: int,
    reason: str,
) -> bool:
    """Test one live cow; cull it if it reacts. Returns the test result."""
    farm_id = cow.unit_id
    state = cow.state
    positive = False
    if state in TEST_SENSITIVE_STATES:
        if ctx.rng.random() <= ctx.params['testSensitivity']:
            positive = True
            ctx.mark_sampled(cow, date)
            ctx.population.remove_animal(cow)
            logger.debug("%s reacted (%s) on %s at %d", cow.id, reason, farm_id, date)
    ctx.records.cattle_tests.append(
        CattleTest(date, farm_id, cow.id, positive, state, reason)
    )
    return positive


def examine_badger(
    ctx: ScenarioContext,
    badger: InfectedAnimal,
    date: int,
    unit_from: str,
    unit_to: str,
    capture: bool,
    reason: str,
) -> bool:
    """Test one badger. Only a captured badger can test positive.

    A positive badger is sampled but stays in the population.
    """
    positive = False
    u = ctx.rng.random()
    if capture and u <= ctx.params['testSensitivity']:
        positive = True
        ctx.mark_sampled(badger, date)
    ctx.records.badgers.append(
        BadgerRecord(date, badger.id, unit_from, unit_to, capture,
                     positive, InfectionState.INFECTIOUS, reason)
    )
    return positive


# ═══════════════════════════════════════════════════════════════════════
# HERD TESTS
# ═══════════════════════════════════════════════════════════════════════

def skin_test_cows(
    ctx: ScenarioContext,
    farm_id: str,
    cow_ids: List[str],
    date: int,
    reason: str,
    infected_before: int,
) -> int:
    """Test the given cows of one farm and record the herd-level outcome.

    Returns:
        Number of reactors.

    Raises:
        SimulationInvariantError: If reactors exceed the farm's infected count.
    """
    reactors = 0
    cows = ctx.population.cows
    for cow_id in cow_ids:
        if skin_test_cow(ctx, cows[cow_id], date, reason):
            reactors += 1
    if reactors > infected_before:
        raise SimulationInvariantError(
            f"{reason} test on {farm_id} at day {date}: {reactors} reactors "
            f"but only {infected_before} infected animals"
        )
    ctx.records.herd_tests.append(
        HerdTest(date, farm_id, infected_before, reactors, reason)
    )
    return reactors


def whole_herd_test(ctx: ScenarioContext, farm_id: str, date: int) -> int:
    """Test every infected cow on a farm. Returns the number of reactors."""
    farm = ctx.population.farms[farm_id]
    infected = farm.infected_ids()
    if infected:
        logger.debug("WHT on %s (%d infected) at %d", farm_id, len(infected), date)
    return skin_test_cows(ctx, farm_id, infected, date, REASON_WHT, len(infected))


def next_test_date(
    farm: Farm,
    test_interval_days: Optional[float],
    follow_up_days: int,
) -> Optional[int]:
    """Day of a farm's next scheduled WHT, or None if it has none."""
    if farm.last_positive_test_date == UNSET:
        if test_interval_days is None:
            return None
        return int(round(farm.last_clear_test_date + test_interval_days))
    return farm.last_positive_test_date + follow_up_days


def register_herd_tests(ctx: ScenarioContext, time: int) -> List[Tuple[int, str]]:
    """Scheduled WHTs falling in [time, time + step), as (date, farm id) by date."""
    testing = ctx.config.testing
    interval = ctx.config.routine_test_interval_days
    due = []
    for farm in ctx.population.farms.values():
        date = next_test_date(farm, interval, testing.follow_up_days)
        if date is not None and time <= date < time + ctx.step_size:
            due.append((date, farm.id))
    due.sort(key=lambda d: d[0])
    return due


def record_herd_outcome(
    ctx: ScenarioContext,
    farm_id: str,
    reactors: int,
    date: int,
) -> None:
    """Advance the restriction state machine after a scheduled WHT."""
    population = ctx.population
    if reactors > 0:
        population.counters.reactors_at_breakdown.add(reactors)
        population.restrict_herd(farm_id, date)
        logger.debug("Breakdown on %s at %d: %d reactors", farm_id, date, reactors)
    elif farm_id in population.restricted_herds:
        clear_tests = population.restricted_herds[farm_id] + 1
        if clear_tests >= ctx.config.testing.clear_tests_to_lift:
            population.lift_restriction(farm_id, date)
            logger.debug("Restriction lifted on %s at %d", farm_id, date)
        else:
            population.restrict_herd(farm_id, date, clear_tests)
    else:
        population.farms[farm_id].clear(date)


def perform_scheduled_tests(
    ctx: ScenarioContext,
    scheduled: List[Tuple[int, str]],
) -> int:
    """Run the registered WHTs. Returns the number of herd breakdowns."""
    breakdowns = 0
    for date, farm_id in scheduled:
        reactors = whole_herd_test(ctx, farm_id, date)
        record_herd_outcome(ctx, farm_id, reactors, date)
        if reactors > 0:
            breakdowns += 1
    return breakdowns
