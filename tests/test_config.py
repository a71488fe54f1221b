"""Tests for btbsim.config — configuration loading and validation."""

import math
import warnings

import pytest
import yaml

from btbsim.config import (
    DEFAULT_PARAMETER_VALUES,
    MovementSection,
    Prior,
    ReservoirSection,
    SimulationConfig,
    SimulationSection,
    TestingSection,
    calendar_year,
    deep_merge,
    default_config,
    load_config,
    parse_initial_infection_states,
    to_day,
    to_iso,
    validate_config,
)
from btbsim.types import InfectionState, Species


def _write_yaml(path, content):
    with open(path, 'w') as f:
        yaml.dump(content, f)
    return path


# ── deep_merge tests ──────────────────────────────────────────────────

class TestDeepMerge:
    def test_simple_override(self):
        base = {'a': 1, 'b': 2}
        result = deep_merge(base, {'b': 3})
        assert result == {'a': 1, 'b': 3}

    def test_nested_merge(self):
        base = {'x': {'a': 1, 'b': 2}, 'y': 10}
        result = deep_merge(base, {'x': {'b': 3, 'c': 4}})
        assert result == {'x': {'a': 1, 'b': 3, 'c': 4}, 'y': 10}

    def test_override_dict_with_scalar(self):
        base = {'a': {'nested': 1}}
        result = deep_merge(base, {'a': 'replaced'})
        assert result == {'a': 'replaced'}

    def test_empty_override(self):
        base = {'a': 1, 'b': 2}
        assert deep_merge(base, {}) == {'a': 1, 'b': 2}


# ── default_config tests ─────────────────────────────────────────────

class TestDefaultConfig:
    def test_creates_valid_config(self):
        config = default_config()
        assert isinstance(config, SimulationConfig)

    def test_default_values(self):
        config = default_config()
        assert config.simulation.seed == 42
        assert config.simulation.step_size == 1
        assert config.simulation.max_rejections is None
        assert config.testing.follow_up_days == 60
        assert config.testing.clear_tests_to_lift == 2
        assert config.reservoir.capture_on_movement is False

    def test_every_parameter_has_a_prior(self):
        config = default_config()
        assert set(config.parameters) == set(DEFAULT_PARAMETER_VALUES)
        assert config.parameter_values()['beta_CC'] == DEFAULT_PARAMETER_VALUES['beta_CC']

    def test_movement_window_defaults_to_simulation(self):
        config = default_config()
        assert config.movement_start_day == config.start_day
        assert config.movement_end_day == config.end_day

    def test_badger_death_probability_per_step(self):
        config = default_config()
        config.reservoir.badger_death_rate = 0.365
        config.simulation.step_size = 10
        assert config.badger_death_probability == pytest.approx(0.01)

    def test_routine_test_interval_days(self):
        config = default_config()
        config.testing.test_interval_years = 2.0
        assert config.routine_test_interval_days == pytest.approx(730.0)
        config.simulation.end_date = "2000-06-30"
        assert config.routine_test_interval_days is None


# ── date helpers ─────────────────────────────────────────────────────

class TestDates:
    def test_to_day(self):
        assert to_day("1990-01-01", "1990-01-01") == 0
        assert to_day("1991-01-01", "1990-01-01") == 365

    def test_calendar_year(self):
        assert calendar_year(0, "1990-01-01") == 1990
        assert calendar_year(365, "1990-01-01") == 1991
        assert calendar_year(364, "1990-01-01") == 1990

    def test_to_iso_inverts_to_day(self):
        day = to_day("2003-07-14", "1990-01-01")
        assert to_iso(day, "1990-01-01") == "2003-07-14"


# ── seeding string ────────────────────────────────────────────

class TestInitialInfectionStates:
    def test_parse_cow_and_badger(self):
        entries = parse_initial_infection_states(
            "Cow_1:F1:A:0,0,0,1; Badger_7:R2:B:0.5,0.5"
        )
        assert len(entries) == 2
        cow, badger = entries
        assert cow.species == Species.COW
        assert cow.unit_id == "F1"
        assert cow.clade == "A"
        assert cow.states[-1] == InfectionState.INFECTIOUS
        assert badger.species == Species.BADGER
        assert badger.probabilities == (0.5, 0.5)

    def test_empty_string(self):
        assert parse_initial_infection_states("") == []

    def test_unknown_species(self):
        with pytest.raises(ValueError, match="Cow_ or Badger_"):
            parse_initial_infection_states("Sheep_1:F1:A:0,1")

    def test_wrong_probability_count(self):
        with pytest.raises(ValueError, match="expected 4"):
            parse_initial_infection_states("Cow_1:F1:A:0,1")

    def test_malformed_entry(self):
        with pytest.raises(ValueError, match="species_id:unit:clade:probs"):
            parse_initial_infection_states("Cow_1:F1:0,0,0,1")

    def test_can_seed(self):
        never, maybe = parse_initial_infection_states(
            "Cow_1:F1:A:1,0,0,0;Cow_2:F1:A:0.5,0.5,0,0"
        )
        assert not never.can_seed
        assert maybe.can_seed


# ── YAML loading tests ───────────────────────────────────────────────

class TestLoadConfig:
    def test_load_from_yaml(self, tmp_path):
        path = _write_yaml(tmp_path / "base.yaml", {
            'simulation': {'seed': 99, 'start_date': '2001-01-01'},
            'seeding': {'initial_infection_states': 'Cow_1:F1:A:0,0,0,1'},
            'parameters': {'beta_CC': {'initial': 0.2, 'min': 0.0, 'max': 1.0}},
        })
        config = load_config(path)
        assert config.simulation.seed == 99
        assert config.simulation.start_date == '2001-01-01'
        assert config.parameters['beta_CC'] == Prior(0.2, 0.0, 1.0)
        # Unspecified parameters keep their defaults
        assert config.parameters['sigma'].initial == DEFAULT_PARAMETER_VALUES['sigma']

    def test_bare_number_prior(self, tmp_path):
        path = _write_yaml(tmp_path / "base.yaml", {
            'seeding': {'initial_infection_states': 'Cow_1:F1:A:0,0,0,1'},
            'parameters': {'gamma': 0.3},
        })
        config = load_config(path)
        assert config.parameters['gamma'].initial == 0.3
        assert math.isinf(config.parameters['gamma'].max)

    def test_sampling_year_keys_become_ints(self, tmp_path):
        path = _write_yaml(tmp_path / "base.yaml", {
            'seeding': {'initial_infection_states': 'Cow_1:F1:A:0,0,0,1'},
            'sampling': {'cattle_rates': {'2004': 0.5}},
        })
        config = load_config(path)
        assert config.sampling.cattle_rates == {2004: 0.5}

    def test_scenario_override(self, tmp_path):
        base = _write_yaml(tmp_path / "base.yaml", {
            'simulation': {'seed': 1, 'num_scenarios': 4},
            'seeding': {'initial_infection_states': 'Cow_1:F1:A:0,0,0,1'},
        })
        scen = _write_yaml(tmp_path / "scenario.yaml", {'simulation': {'seed': 2}})
        config = load_config(base, scenario_path=scen)
        assert config.simulation.seed == 2
        assert config.simulation.num_scenarios == 4

    def test_sweep_overrides_applied_last(self, tmp_path):
        base = _write_yaml(tmp_path / "base.yaml", {
            'simulation': {'seed': 1},
            'seeding': {'initial_infection_states': 'Cow_1:F1:A:0,0,0,1'},
        })
        config = load_config(base, sweep_overrides={'simulation': {'seed': 123}})
        assert config.simulation.seed == 123

    def test_missing_scenario_warns(self, tmp_path):
        base = _write_yaml(tmp_path / "base.yaml", {
            'seeding': {'initial_infection_states': 'Cow_1:F1:A:0,0,0,1'},
        })
        with pytest.warns(UserWarning, match="not found"):
            load_config(base, scenario_path=tmp_path / "missing.yaml")

    def test_empty_seeding_warns(self, tmp_path):
        base = _write_yaml(tmp_path / "base.yaml", {'simulation': {'seed': 5}})
        with pytest.warns(UserWarning, match="initial_infection_states is empty"):
            load_config(base)

    def test_unknown_keys_ignored(self, tmp_path):
        base = _write_yaml(tmp_path / "base.yaml", {
            'simulation': {'seed': 5, 'not_a_field': True},
            'seeding': {'initial_infection_states': 'Cow_1:F1:A:0,0,0,1'},
        })
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            config = load_config(base)
        assert config.simulation.seed == 5

    def test_file_not_found(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nonexistent.yaml")


# ── Validation tests ──────────────────────────────────────────────────

class TestValidation:
    def test_start_after_end(self):
        config = default_config()
        config.simulation.start_date = "2020-01-01"
        config.simulation.end_date = "2010-01-01"
        with pytest.raises(ValueError, match="start_date"):
            validate_config(config)

    def test_bad_date(self):
        config = default_config()
        config.simulation.end_date = "2010-13-45"
        with pytest.raises(ValueError, match="Invalid date"):
            validate_config(config)

    def test_step_size(self):
        config = default_config()
        config.simulation.step_size = 0
        with pytest.raises(ValueError, match="step_size"):
            validate_config(config)

    def test_prior_initial_outside_bounds(self):
        config = default_config()
        config.parameters['beta_CC'] = Prior(2.0, 0.0, 1.0)
        with pytest.raises(ValueError, match="outside"):
            validate_config(config)

    def test_prior_min_above_max(self):
        config = default_config()
        config.parameters['sigma'] = Prior(0.5, 1.0, 0.0)
        with pytest.raises(ValueError, match="min"):
            validate_config(config)

    def test_missing_required_parameter(self):
        config = default_config()
        del config.parameters['mutationRate']
        with pytest.raises(ValueError, match="mutationRate"):
            validate_config(config)

    def test_sensitivity_above_one(self):
        config = default_config()
        config.parameters['testSensitivity'] = Prior(1.5)
        with pytest.raises(ValueError, match="testSensitivity"):
            validate_config(config)

    def test_death_probability_above_one(self):
        config = default_config()
        config.reservoir.badger_death_rate = 400.0
        with pytest.raises(ValueError, match="death probability"):
            validate_config(config)

    def test_sampling_rate_range(self):
        config = default_config()
        config.sampling.badger_rates = {2005: 1.5}
        with pytest.raises(ValueError, match="badger_rates"):
            validate_config(config)

    def test_unseedable_seed_string(self):
        config = default_config()
        config.seeding.initial_infection_states = "Cow_1:F1:A:1,0,0,0"
        with pytest.raises(ValueError, match="no entry"):
            validate_config(config)

    def test_negative_max_rejections(self):
        config = default_config()
        config.simulation.max_rejections = -1
        with pytest.raises(ValueError, match="max_rejections"):
            validate_config(config)

    @pytest.mark.parametrize("interval", [0.0, -1.0, math.inf, math.nan])
    def test_test_interval_positive_and_finite(self, interval):
        config = default_config()
        config.testing.test_interval_years = interval
        with pytest.raises(ValueError, match="test_interval_years"):
            validate_config(config)

    def test_huge_test_interval_accepted(self):
        config = default_config()
        config.testing.test_interval_years = 1e17
        validate_config(config)
        assert config.routine_test_interval_days is None

    def test_movement_window_order(self):
        config = default_config()
        config.movement.start_date = "2009-01-01"
        config.movement.end_date = "2001-01-01"
        with pytest.raises(ValueError, match="movement.start_date"):
            validate_config(config)


# ── Section dataclass tests ───────────────────────────────────────────

class TestSections:
    def test_simulation_section_defaults(self):
        s = SimulationSection()
        assert s.filter_short_epidemics is False
        assert s.parallel_workers == 1

    def test_movement_section_defaults(self):
        m = MovementSection()
        assert m.start_date is None
        assert m.herd_size_fixed is True

    def test_testing_section_defaults(self):
        t = TestingSection()
        assert t.test_interval_years == 1.0
        assert t.num_initial_restricted_herds == 0

    def test_reservoir_section_defaults(self):
        r = ReservoirSection()
        assert r.include_reservoir is True
        assert r.badger_death_rate == 0.0
