"""Configuration system for btbsim.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → sweep overrides

Dates are ISO strings in the YAML and integer day numbers (days since
simulation.zero_date) everywhere inside the simulation.

Parameters that the calibration loop moves (transmission rates, progression
rates, mutation rate, test sensitivity) live in the `parameters` section as
priors with an initial value and [min, max] bounds. A scenario reads only
the initial values, via SimulationConfig.parameter_values().
"""

from __future__ import annotations

import dataclasses
import datetime
import math
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from .types import (
    BADGER_SEED_STATES,
    COW_SEED_STATES,
    InfectionState,
    Species,
)


# ═══════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

REQUIRED_PARAMETERS = (
    'beta_CC',          # cow → cow transmission (d⁻¹ per susceptible)
    'beta_CB',          # cow → badger
    'beta_BC',          # badger → cow
    'beta_BB',          # badger → badger
    'sigma',            # EXPOSED → TESTSENSITIVE (d⁻¹)
    'gamma',            # TESTSENSITIVE → INFECTIOUS (d⁻¹)
    'mutationRate',     # SNPs per lineage per day
    'testSensitivity',  # P(positive | TESTSENSITIVE or INFECTIOUS)
)

DEFAULT_PARAMETER_VALUES = {
    'beta_CC': 0.0005,
    'beta_CB': 0.0,
    'beta_BC': 0.0,
    'beta_BB': 0.0,
    'sigma': 0.01,
    'gamma': 0.005,
    'mutationRate': 0.001,
    'testSensitivity': 0.8,
}


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Simulation timing and run control."""
    zero_date: str = "1990-01-01"   # day 0 of the simulation calendar
    start_date: str = "2000-01-01"
    end_date: str = "2010-12-31"
    step_size: int = 1              # days per tau-leap step
    seed: int = 42
    num_scenarios: int = 1          # replicate scenarios per run
    parallel_workers: int = 1       # 1 = run replicates sequentially
    filter_short_epidemics: bool = False
    max_rejections: Optional[int] = None   # None = retry until an outbreak survives
    max_infected_cows: int = 100_000
    max_infected_badgers: int = 100_000


@dataclass
class MovementSection:
    """Movement data window and unit-size policy."""
    start_date: Optional[str] = None   # None = simulation.start_date
    end_date: Optional[str] = None     # None = simulation.end_date
    herd_size_fixed: bool = True
    reservoir_size_fixed: bool = True
    max_draws_per_step: int = 100_000  # pair draws before giving up on a quota


@dataclass
class TestingSection:
    """Whole-herd testing and restriction policy."""
    test_interval_years: float = 1.0
    num_initial_restricted_herds: int = 0
    follow_up_days: int = 60        # restricted herds are retested this often
    clear_tests_to_lift: int = 2    # consecutive clear tests that lift restriction


@dataclass
class ReservoirSection:
    """Badger reservoir options."""
    include_reservoir: bool = True
    badger_death_rate: float = 0.0     # annual rate; per-step probability derived
    init_badgers_from_cows: bool = False
    capture_on_movement: bool = False  # whether a moved badger can test positive


@dataclass
class SeedingSection:
    """Initial infections.

    initial_infection_states: ';'-separated entries of
      species_id:unit:clade:p1,p2,...
    where the probabilities run over (S, E, T, I) for cows and (S, I) for
    badgers; S means the entry is not seeded in this draw.
    """
    initial_infection_states: str = ""
    init_mutations_per_clade: int = 1


@dataclass
class SamplingSection:
    """Year-indexed probabilities that a detected animal is sequenced."""
    cattle_rates: Dict[int, float] = field(default_factory=dict)
    badger_rates: Dict[int, float] = field(default_factory=dict)


@dataclass
class DataSection:
    """Input data files (paths relative to the working directory)."""
    farm_file: Optional[str] = None
    reservoir_file: Optional[str] = None
    reservoir_network_file: Optional[str] = None
    cattle_movement_file: Optional[str] = None
    badger_movement_file: Optional[str] = None
    herd_size_file: Optional[str] = None
    reservoir_size_file: Optional[str] = None
    slaughter_file: Optional[str] = None
    observed_distance_file: Optional[str] = None
    cattle_sampling_file: Optional[str] = None
    badger_sampling_file: Optional[str] = None


@dataclass
class Prior:
    """A calibrated parameter: initial value and uniform bounds."""
    initial: float
    min: float = float('-inf')
    max: float = float('inf')


@dataclass
class OutputSection:
    """Output control."""
    directory: str = "results/"
    prefix: str = ""
    write_records: bool = True


@dataclass
class SimulationConfig:
    """Complete simulation configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    movement: MovementSection = field(default_factory=MovementSection)
    testing: TestingSection = field(default_factory=TestingSection)
    reservoir: ReservoirSection = field(default_factory=ReservoirSection)
    seeding: SeedingSection = field(default_factory=SeedingSection)
    sampling: SamplingSection = field(default_factory=SamplingSection)
    data: DataSection = field(default_factory=DataSection)
    parameters: Dict[str, Prior] = field(
        default_factory=lambda: {
            k: Prior(v) for k, v in DEFAULT_PARAMETER_VALUES.items()
        }
    )
    output: OutputSection = field(default_factory=OutputSection)

    # ── derived values ──────────────────────────────────────────────

    def day(self, iso_date: str) -> int:
        """Day number of an ISO date relative to simulation.zero_date."""
        return to_day(iso_date, self.simulation.zero_date)

    @property
    def start_day(self) -> int:
        return self.day(self.simulation.start_date)

    @property
    def end_day(self) -> int:
        return self.day(self.simulation.end_date)

    @property
    def movement_start_day(self) -> int:
        return self.day(self.movement.start_date or self.simulation.start_date)

    @property
    def movement_end_day(self) -> int:
        return self.day(self.movement.end_date or self.simulation.end_date)

    @property
    def routine_test_interval_days(self) -> Optional[float]:
        """Days between routine WHTs of a free herd.

        None when the interval outlasts the simulated span, in which case
        no routine WHT is scheduled or seeded.
        """
        days = self.testing.test_interval_years * 365.0
        if days > self.end_day - self.start_day:
            return None
        return days

    @property
    def badger_death_probability(self) -> float:
        """Per-step death probability from the annual badger death rate."""
        return (self.reservoir.badger_death_rate
                * self.simulation.step_size / 365.0)

    def parameter_values(self) -> Dict[str, float]:
        """Initial value of every calibrated parameter."""
        return {name: float(p.initial) for name, p in self.parameters.items()}


# ═══════════════════════════════════════════════════════════════════════
# DATES & SEED STRINGS
# ═══════════════════════════════════════════════════════════════════════

def to_day(iso_date: str, zero_date: str) -> int:
    """Days between zero_date and iso_date (both 'YYYY-MM-DD')."""
    d = datetime.date.fromisoformat(str(iso_date))
    z = datetime.date.fromisoformat(str(zero_date))
    return (d - z).days


def calendar_year(day: int, zero_date: str) -> int:
    """Calendar year containing the given day number."""
    z = datetime.date.fromisoformat(str(zero_date))
    return (z + datetime.timedelta(days=int(day))).year


def to_iso(day: int, zero_date: str) -> str:
    z = datetime.date.fromisoformat(str(zero_date))
    return (z + datetime.timedelta(days=int(day))).isoformat()


@dataclass(frozen=True)
class SeedEntry:
    """One parsed entry of seeding.initial_infection_states."""
    animal_id: str
    species: Species
    unit_id: str
    clade: str
    probabilities: Tuple[float, ...]

    @property
    def states(self) -> Tuple[InfectionState, ...]:
        if self.species == Species.COW:
            return COW_SEED_STATES
        return BADGER_SEED_STATES

    @property
    def can_seed(self) -> bool:
        """True if some infected state has positive probability."""
        return any(p > 0 for p in self.probabilities[1:])


def parse_initial_infection_states(spec: str) -> List[SeedEntry]:
    """Parse 'Cow_1:F1:A:0,0,0,1;Badger_2:R1:A:0.5,0.5' into SeedEntry objects.

    Raises:
        ValueError: On a malformed entry, an unknown species prefix, or a
            probability list of the wrong length or with zero total mass.
    """
    entries: List[SeedEntry] = []
    for raw in spec.split(';'):
        raw = raw.strip()
        if not raw:
            continue
        parts = raw.split(':')
        if len(parts) != 4:
            raise ValueError(
                f"Initial infection '{raw}' must be species_id:unit:clade:probs"
            )
        animal_id, unit_id, clade, probs = (p.strip() for p in parts)
        prefix = animal_id.split('_')[0]
        if prefix == 'Cow':
            species = Species.COW
            n_states = len(COW_SEED_STATES)
        elif prefix == 'Badger':
            species = Species.BADGER
            n_states = len(BADGER_SEED_STATES)
        else:
            raise ValueError(
                f"Initial infection '{raw}': id must start with Cow_ or Badger_"
            )
        try:
            probabilities = tuple(float(p) for p in probs.split(','))
        except ValueError:
            raise ValueError(
                f"Initial infection '{raw}': probabilities must be numbers"
            ) from None
        if len(probabilities) != n_states:
            raise ValueError(
                f"Initial infection '{raw}': expected {n_states} "
                f"probabilities, got {len(probabilities)}"
            )
        if any(p < 0 for p in probabilities) or sum(probabilities) <= 0:
            raise ValueError(
                f"Initial infection '{raw}': probabilities must be "
                f"non-negative with positive sum"
            )
        entries.append(SeedEntry(animal_id, species, unit_id, clade, probabilities))
    return entries


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added

    Args:
        base: Base dictionary (modified in place).
        override: Override dictionary.

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


def _parse_prior(name: str, value: Any) -> Prior:
    """A prior is either a bare number or {initial, min, max}."""
    if isinstance(value, dict):
        if 'initial' not in value:
            raise ValueError(f"parameters.{name} needs an 'initial' value")
        return Prior(
            initial=float(value['initial']),
            min=float(value.get('min', float('-inf'))),
            max=float(value.get('max', float('inf'))),
        )
    return Prior(initial=float(value))


def _yaml_to_config(data: Dict) -> SimulationConfig:
    """Convert a merged YAML dict to a SimulationConfig."""
    sections = {}
    section_map = {
        'simulation': SimulationSection,
        'movement': MovementSection,
        'testing': TestingSection,
        'reservoir': ReservoirSection,
        'seeding': SeedingSection,
        'sampling': SamplingSection,
        'data': DataSection,
        'output': OutputSection,
    }
    for key, cls in section_map.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()

    # Sampling tables come from YAML with possibly-string year keys
    sampling = sections['sampling']
    sampling.cattle_rates = {int(y): float(r) for y, r in sampling.cattle_rates.items()}
    sampling.badger_rates = {int(y): float(r) for y, r in sampling.badger_rates.items()}

    parameters = {k: Prior(v) for k, v in DEFAULT_PARAMETER_VALUES.items()}
    for name, value in (data.get('parameters') or {}).items():
        parameters[name] = _parse_prior(name, value)
    sections['parameters'] = parameters

    return SimulationConfig(**sections)


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure.

    Checks:
      - Dates parse and are ordered (simulation and movement windows)
      - Step size, test interval and restriction policy are positive (the
        test interval also finite)
      - Badger death probability per step is a probability
      - Sampling rates are probabilities
      - Every prior has min <= initial <= max
      - The initial infection string parses
    """
    sim = config.simulation
    try:
        start, end = config.start_day, config.end_day
        mstart, mend = config.movement_start_day, config.movement_end_day
    except ValueError as e:
        raise ValueError(f"Invalid date in configuration: {e}") from None

    if start > end:
        raise ValueError(
            f"simulation.start_date ({sim.start_date}) must not be after "
            f"simulation.end_date ({sim.end_date})"
        )
    if mstart > mend:
        raise ValueError(
            f"movement.start_date ({config.movement.start_date}) must not be "
            f"after movement.end_date ({config.movement.end_date})"
        )
    if sim.step_size < 1:
        raise ValueError(f"simulation.step_size must be >= 1, got {sim.step_size}")
    if sim.seed < 0:
        raise ValueError("simulation.seed must be non-negative")
    if sim.num_scenarios < 1:
        raise ValueError(
            f"simulation.num_scenarios must be >= 1, got {sim.num_scenarios}"
        )
    if sim.parallel_workers < 1:
        raise ValueError(
            f"simulation.parallel_workers must be >= 1, got {sim.parallel_workers}"
        )
    if sim.max_rejections is not None and sim.max_rejections < 0:
        raise ValueError(
            f"simulation.max_rejections must be >= 0 or null, "
            f"got {sim.max_rejections}"
        )
    if config.movement.max_draws_per_step < 1:
        raise ValueError("movement.max_draws_per_step must be >= 1")

    t = config.testing
    if not math.isfinite(t.test_interval_years) or t.test_interval_years <= 0:
        raise ValueError(
            f"testing.test_interval_years must be positive and finite, "
            f"got {t.test_interval_years}"
        )
    if t.follow_up_days < 1:
        raise ValueError(f"testing.follow_up_days must be >= 1, got {t.follow_up_days}")
    if t.clear_tests_to_lift < 1:
        raise ValueError(
            f"testing.clear_tests_to_lift must be >= 1, got {t.clear_tests_to_lift}"
        )
    if t.num_initial_restricted_herds < 0:
        raise ValueError("testing.num_initial_restricted_herds must be non-negative")

    if config.reservoir.badger_death_rate < 0:
        raise ValueError("reservoir.badger_death_rate must be non-negative")
    if config.badger_death_probability > 1.0:
        raise ValueError(
            f"reservoir.badger_death_rate ({config.reservoir.badger_death_rate}) "
            f"gives a per-step death probability above 1 for "
            f"step_size={sim.step_size}"
        )

    for label, table in (('cattle_rates', config.sampling.cattle_rates),
                         ('badger_rates', config.sampling.badger_rates)):
        for year, rate in table.items():
            if not (0.0 <= rate <= 1.0):
                raise ValueError(
                    f"sampling.{label}[{year}] must be in [0, 1], got {rate}"
                )

    # Priors
    for name in REQUIRED_PARAMETERS:
        if name not in config.parameters:
            raise ValueError(f"parameters.{name} is required")
    for name, prior in config.parameters.items():
        if prior.min > prior.max:
            raise ValueError(
                f"parameters.{name}: min ({prior.min}) must be <= max ({prior.max})"
            )
        if not (prior.min <= prior.initial <= prior.max):
            raise ValueError(
                f"parameters.{name}: initial value {prior.initial} outside "
                f"[{prior.min}, {prior.max}]"
            )
        if name in REQUIRED_PARAMETERS and prior.initial < 0:
            raise ValueError(
                f"parameters.{name} must be non-negative, got {prior.initial}"
            )
    sens = config.parameters['testSensitivity'].initial
    if sens > 1.0:
        raise ValueError(f"parameters.testSensitivity must be <= 1, got {sens}")

    # Seeding
    entries = parse_initial_infection_states(config.seeding.initial_infection_states)
    if entries and not any(e.can_seed for e in entries):
        raise ValueError(
            "seeding.initial_infection_states: no entry has a positive "
            "probability of an infected state"
        )
    if config.seeding.init_mutations_per_clade < 0:
        raise ValueError("seeding.init_mutations_per_clade must be non-negative")


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    sweep_overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → sweep overrides.
    Each layer overrides only the fields it specifies.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML.
        sweep_overrides: Optional dict of parameter overrides.

    Returns:
        Validated SimulationConfig.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if scenario_path.exists():
            with open(scenario_path) as f:
                scenario = yaml.safe_load(f) or {}
            deep_merge(config_dict, scenario)
        else:
            warnings.warn(
                f"Scenario override '{scenario_path}' not found; ignoring.",
                UserWarning,
                stacklevel=2,
            )

    if sweep_overrides is not None:
        deep_merge(config_dict, sweep_overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    if not config.seeding.initial_infection_states.strip():
        warnings.warn(
            "seeding.initial_infection_states is empty; every scenario "
            "starts with no infections and ends immediately.",
            UserWarning,
            stacklevel=2,
        )
    return config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config
