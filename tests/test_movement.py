"""Tests for btbsim.movement — movements, slaughter and badger deaths.

Tests:
  1. Quota per step from the empirical table
  2. Hypergeometric infected-in-batch frequencies
  3. Restricted herds never send or receive cattle
  4. Pre-movement reactors cancel the batch and restrict the herd
  5. Flexible unit sizes follow the batches
  6. Badger movements examined on arrival
  7. Slaughter schedule windows and abattoir reactors
  8. Badger deaths sample and expire badgers
"""

import numpy as np
import pytest

from btbsim.config import default_config
from btbsim.context import ScenarioContext
from btbsim.distributions import IntegerDistribution
from btbsim.movement import perform_badger_deaths, perform_movements, perform_slaughter
from btbsim.population import MovementTable, Population, PopulationTemplate
from btbsim.surveillance import (
    REASON_ABATTOIR,
    REASON_DEATH,
    REASON_MOVEMENT,
    REASON_PRE_MOVE,
)
from btbsim.types import (
    ROOT_ID,
    InfectedBadger,
    InfectedCow,
    InfectionState,
    SimulationInvariantError,
    Species,
    TransmissionNode,
)


# ═══════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════

def make_context(
    pairs=(("F1", "F2"),),
    batch=3,
    total_animals=3,
    farm_size=5,
    sensitivity=1.0,
    seed=0,
    size_fixed=True,
    badger_pairs=(),
    slaughter=None,
):
    """Context whose movement window is one day, so quota == total_animals."""
    config = default_config()
    config.movement.start_date = "2000-01-01"
    config.movement.end_date = "2000-01-02"
    config.movement.herd_size_fixed = size_fixed
    config.movement.reservoir_size_fixed = size_fixed
    config.movement.max_draws_per_step = 50
    params = config.parameter_values()
    params['testSensitivity'] = sensitivity
    params['mutationRate'] = 0.0
    farm_ids = ("F1", "F2", "F3")
    off = IntegerDistribution({batch: 1})
    template = PopulationTemplate(
        farm_ids=farm_ids,
        reservoir_ids=("R1", "R2"),
        farm_off_movements={fid: off for fid in farm_ids},
        reservoir_off_movements={"R1": off, "R2": off},
        cattle_movements=MovementTable(tuple(pairs), total_animals),
        badger_movements=MovementTable(tuple(badger_pairs), total_animals),
        slaughter_schedule=slaughter or {},
    )
    pop = Population(template)
    for unit in list(pop.farms.values()) + list(pop.reservoirs.values()):
        unit.size = farm_size
    return ScenarioContext(config, params, np.random.default_rng(seed), pop)


def add_animal(ctx, animal):
    ctx.population.add_animal(animal)
    ctx.tree.add_infection(
        ROOT_ID,
        TransmissionNode(animal.id, animal.unit_id, is_cow=animal.species == Species.COW),
    )
    return animal


# ═══════════════════════════════════════════════════════════════════════
# CATTLE MOVEMENTS
# ═══════════════════════════════════════════════════════════════════════

class TestCattleMovements:
    def test_moves_quota(self):
        ctx = make_context(batch=2, total_animals=4)
        moved = perform_movements(ctx, Species.COW, 0)
        assert moved == 4
        assert len(ctx.records.movements) == 2
        record = ctx.records.movements[0]
        assert (record.unit_from, record.unit_to) == ("F1", "F2")
        assert record.animals_moved == 2
        assert record.pair_index == 0

    def test_empty_table_moves_nothing(self):
        ctx = make_context(pairs=())
        assert perform_movements(ctx, Species.COW, 0) == 0

    def test_infected_batch_frequencies(self):
        """5 animals, 2 infected, batch of 3: P(no infected moved) = 1/10."""
        none_moved = 0
        trials = 3000
        for i in range(trials):
            ctx = make_context(seed=i, sensitivity=0.0)
            add_animal(ctx, InfectedCow("Cow_1", "F1"))
            add_animal(ctx, InfectedCow("Cow_2", "F1"))
            perform_movements(ctx, Species.COW, 0)
            record = ctx.records.movements[0]
            assert record.infected_in_unit == 2
            assert 0 <= record.infected_moved <= 2
            if record.infected_moved == 0:
                none_moved += 1
        assert abs(none_moved / trials - 0.1) < 0.02

    def test_infected_cows_relocated(self):
        ctx = make_context(batch=5, total_animals=5, sensitivity=0.0)
        cow = add_animal(ctx, InfectedCow("Cow_1", "F1"))
        perform_movements(ctx, Species.COW, 7)
        assert cow.unit_id == "F2"
        assert cow.unit_history == ["F1", "F2"]
        assert ctx.population.farms["F2"].infected_ids() == ["Cow_1"]
        assert ctx.counters.cows_moved == 1

    def test_every_move_is_pre_movement_tested(self):
        ctx = make_context(batch=5, total_animals=5, sensitivity=0.0)
        add_animal(ctx, InfectedCow("Cow_1", "F1", state=InfectionState.INFECTIOUS))
        perform_movements(ctx, Species.COW, 7)
        herd = ctx.records.herd_tests
        assert len(herd) == 1
        assert (herd[0].unit_id, herd[0].reason) == ("F1", REASON_PRE_MOVE)
        assert ctx.records.cattle_tests[0].reason == REASON_PRE_MOVE

    def test_restricted_herds_never_endpoints(self):
        ctx = make_context(
            pairs=(("F1", "F2"), ("F2", "F3"), ("F3", "F1"), ("F3", "F2")),
            batch=1, total_animals=40,
        )
        ctx.population.restrict_herd("F1", 0)
        ctx.config.movement.max_draws_per_step = 1000
        perform_movements(ctx, Species.COW, 0)
        assert ctx.records.movements
        for record in ctx.records.movements:
            assert "F1" not in (record.unit_from, record.unit_to)

    def test_pre_movement_reactor_cancels_batch(self, caplog):
        ctx = make_context(batch=5, total_animals=5, sensitivity=1.0)
        add_animal(ctx, InfectedCow("Cow_1", "F1", state=InfectionState.INFECTIOUS))
        add_animal(ctx, InfectedCow("Cow_2", "F1", state=InfectionState.EXPOSED))
        with caplog.at_level("WARNING", logger="btbsim.movement"):
            moved = perform_movements(ctx, Species.COW, 3)
        pop = ctx.population
        assert moved == 0
        assert pop.is_restricted("F1")
        assert "Cow_1" in pop.culled_cows
        # the non-reacting cow stays home
        assert pop.cows["Cow_2"].unit_id == "F1"
        assert pop.farms["F2"].infected_count == 0
        assert ctx.counters.cows_moved == 0
        assert "stopped after" in caplog.text

    def test_fixed_sizes_unchanged(self):
        ctx = make_context(batch=2, total_animals=2)
        perform_movements(ctx, Species.COW, 0)
        assert ctx.population.farms["F1"].size == 5
        assert ctx.population.farms["F2"].size == 5

    def test_flexible_sizes_follow_batch(self):
        ctx = make_context(batch=2, total_animals=2, size_fixed=False)
        perform_movements(ctx, Species.COW, 0)
        assert ctx.population.farms["F1"].size == 3
        assert ctx.population.farms["F2"].size == 7

    def test_flexible_sizes_go_through_change_size(self, monkeypatch):
        calls = []
        original = Population.change_size

        def recording(unit, delta):
            calls.append((unit.id, delta))
            original(unit, delta)

        monkeypatch.setattr(Population, "change_size", staticmethod(recording))
        ctx = make_context(batch=2, total_animals=2, size_fixed=False)
        perform_movements(ctx, Species.COW, 0)
        assert calls == [("F1", -2), ("F2", 2)]
        assert ctx.population.farms["F2"].size == 7

    def test_flexible_never_empties_a_unit(self):
        ctx = make_context(batch=5, total_animals=5, size_fixed=False)
        assert perform_movements(ctx, Species.COW, 0) == 0
        assert ctx.population.farms["F1"].size == 5

    def test_fixed_destination_makes_room(self):
        ctx = make_context(batch=1, total_animals=1, farm_size=1, sensitivity=0.0)
        add_animal(ctx, InfectedCow("Cow_1", "F1"))
        add_animal(ctx, InfectedCow("Cow_2", "F2"))
        perform_movements(ctx, Species.COW, 0)
        f2 = ctx.population.farms["F2"]
        assert f2.infected_count == 2
        assert f2.size >= f2.infected_count
        assert f2.size == 2

    def test_infected_above_size_raises(self):
        ctx = make_context(batch=1, total_animals=1, farm_size=1)
        add_animal(ctx, InfectedCow("Cow_1", "F1"))
        add_animal(ctx, InfectedCow("Cow_2", "F1"))
        with pytest.raises(SimulationInvariantError, match="infected"):
            perform_movements(ctx, Species.COW, 0)


# ═══════════════════════════════════════════════════════════════════════
# BADGER MOVEMENTS
# ═══════════════════════════════════════════════════════════════════════

class TestBadgerMovements:
    def test_badgers_move_and_are_examined(self):
        ctx = make_context(badger_pairs=(("R1", "R2"),), batch=5, total_animals=5)
        ctx.config.reservoir.capture_on_movement = True
        badger = add_animal(ctx, InfectedBadger("Badger_1", "R1"))
        assert perform_movements(ctx, Species.BADGER, 9) == 5
        assert badger.unit_id == "R2"
        record = ctx.records.badgers[0]
        assert (record.unit_from, record.unit_to) == ("R1", "R2")
        assert record.result is True
        assert ctx.tree.node("Badger_1").detection_date == 9
        assert ctx.counters.badgers_moved == 1

    def test_uncaptured_badgers_not_sampled(self):
        ctx = make_context(badger_pairs=(("R1", "R2"),), batch=5, total_animals=5)
        badger = add_animal(ctx, InfectedBadger("Badger_1", "R1"))
        perform_movements(ctx, Species.BADGER, 9)
        assert badger.unit_id == "R2"
        assert not badger.is_sampled

    def test_restriction_does_not_apply_to_badgers(self):
        ctx = make_context(badger_pairs=(("R1", "R2"),), batch=1, total_animals=1)
        ctx.population.restrict_herd("F1", 0)
        assert perform_movements(ctx, Species.BADGER, 0) == 1


# ═══════════════════════════════════════════════════════════════════════
# SLAUGHTER
# ═══════════════════════════════════════════════════════════════════════

class TestSlaughter:
    def test_abattoir_reactors_restrict_herd(self):
        ctx = make_context(farm_size=2, slaughter={0: ("F1", "F1")})
        add_animal(ctx, InfectedCow("Cow_1", "F1", state=InfectionState.INFECTIOUS))
        add_animal(ctx, InfectedCow("Cow_2", "F1", state=InfectionState.INFECTIOUS))
        assert perform_slaughter(ctx, 0) == 2
        assert ctx.population.is_restricted("F1")
        assert ctx.counters.infected_cows_at_slaughter == 2
        record = ctx.records.movements[0]
        assert (record.unit_from, record.unit_to, record.animals_moved) == ("F1", "", 2)
        assert ctx.records.herd_tests[0].reason == REASON_ABATTOIR

    def test_window_accumulates_days(self):
        ctx = make_context(farm_size=10, slaughter={3: ("F2",), 4: ("F2",), 9: ("F2",)})
        ctx.config.simulation.step_size = 5
        perform_slaughter(ctx, 0)
        assert len(ctx.records.movements) == 1
        assert ctx.records.movements[0].animals_moved == 2

    def test_count_capped_at_size(self):
        ctx = make_context(farm_size=1, slaughter={0: ("F1", "F1", "F1")})
        perform_slaughter(ctx, 0)
        assert ctx.records.movements[0].animals_moved == 1

    def test_unknown_farm_skipped(self):
        ctx = make_context(slaughter={0: ("F99",)})
        assert perform_slaughter(ctx, 0) == 0
        assert ctx.records.movements == []

    def test_nothing_scheduled(self):
        ctx = make_context(slaughter={5: ("F1",)})
        assert perform_slaughter(ctx, 0) == 0
        assert ctx.records.movements == []


# ═══════════════════════════════════════════════════════════════════════
# BADGER DEATHS
# ═══════════════════════════════════════════════════════════════════════

class TestBadgerDeaths:
    def test_certain_death(self):
        ctx = make_context()
        ctx.config.reservoir.badger_death_rate = 365.0
        badger = add_animal(ctx, InfectedBadger("Badger_1", "R1"))
        assert perform_badger_deaths(ctx, 12) == 1
        pop = ctx.population
        assert "Badger_1" in pop.expired_badgers
        assert pop.reservoirs["R1"].infected_count == 0
        assert pop.reservoirs["R1"].size == 5
        assert badger.sample_date == 12
        assert ctx.tree.node("Badger_1").detection_date == 12
        assert ctx.records.badgers[0].reason == REASON_DEATH
        assert ctx.records.movements[0].unit_to == ""
        assert ctx.counters.badgers_dead == 1

    def test_no_deaths_still_recorded(self):
        ctx = make_context()
        add_animal(ctx, InfectedBadger("Badger_1", "R1"))
        add_animal(ctx, InfectedBadger("Badger_2", "R2"))
        assert perform_badger_deaths(ctx, 12) == 0
        assert len(ctx.records.movements) == 2
        assert all(r.animals_moved == 0 for r in ctx.records.movements)
        assert len(ctx.population.badgers) == 2

    def test_capture_then_death_keeps_first_sample(self):
        ctx = make_context(badger_pairs=(("R1", "R2"),), batch=5, total_animals=5)
        ctx.config.reservoir.capture_on_movement = True
        ctx.config.reservoir.badger_death_rate = 365.0
        badger = add_animal(ctx, InfectedBadger("Badger_1", "R1"))
        perform_movements(ctx, Species.BADGER, 9)
        assert badger.sample_date == 9
        assert perform_badger_deaths(ctx, 20) == 1
        assert badger.sample_date == 9
        assert ctx.tree.node("Badger_1").detection_date == 9
        assert [r.reason for r in ctx.records.badgers] == [REASON_MOVEMENT, REASON_DEATH]
        assert "Badger_1" in ctx.population.expired_badgers
