"""Core data types for btbsim.

This module is the SINGLE SOURCE OF TRUTH for:
  - Species, InfectionState, TransmissionType enumerations
  - The UNSET date sentinel and the synthetic ROOT node id
  - Units (Farm, Reservoir) and infected individuals (InfectedCow, InfectedBadger)
  - TransmissionNode, the per-individual vertex of the transmission tree

All other modules import these types from here.

Restriction encoding: a Farm is under movement restriction exactly when its
last_clear_test_date is UNSET. Exactly one of last_clear_test_date and
last_positive_test_date is UNSET at any time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import ClassVar, Dict, FrozenSet, List, Optional, Set, Tuple

from .distributions import IntegerDistribution


# ═══════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

UNSET = -1          # date sentinel: "never happened"
ROOT_ID = "ROOT"    # synthetic root of the transmission forest


class SimulationInvariantError(RuntimeError):
    """A bookkeeping invariant broke during a scenario run.

    Raised for detected > infected, negative elapsed mutation time, an
    unrecognised event shape, or more infected animals than animals on a
    farm. Never caught inside the simulation.
    """


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class Species(IntEnum):
    """Host species; the variant tag of units, animals and events."""
    COW    = 0
    BADGER = 1


class InfectionState(IntEnum):
    """Disease-progress compartments.

    Cows:    SUSCEPTIBLE → EXPOSED → TESTSENSITIVE → INFECTIOUS
    Badgers: SUSCEPTIBLE → INFECTIOUS (single infected state)

    SUSCEPTIBLE only appears in seeding probabilities; live animals are
    always in one of the infected states.
    """
    SUSCEPTIBLE   = 0
    EXPOSED       = 1
    TESTSENSITIVE = 2   # reacts to the skin test, not yet shedding
    INFECTIOUS    = 3


COW_SEED_STATES = (
    InfectionState.SUSCEPTIBLE,
    InfectionState.EXPOSED,
    InfectionState.TESTSENSITIVE,
    InfectionState.INFECTIOUS,
)
BADGER_SEED_STATES = (
    InfectionState.SUSCEPTIBLE,
    InfectionState.INFECTIOUS,
)


class TransmissionType(IntEnum):
    """Route of a new infection, used for the per-route counters."""
    COW_COW       = 0
    COW_BADGER    = 1
    BADGER_COW    = 2
    BADGER_BADGER = 3

    @classmethod
    def between(cls, source: Species, target: Species) -> 'TransmissionType':
        return cls(2 * int(source) + int(target))


# ═══════════════════════════════════════════════════════════════════════
# UNITS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class Unit:
    """A farm or a reservoir: a capacity plus the ids of its infected animals.

    `infected` is an insertion-ordered dict used as a set so that sampling
    from it is reproducible for a fixed RNG state.
    """
    id: str
    size: int = 0
    off_movement_distribution: IntegerDistribution = field(
        default_factory=IntegerDistribution
    )
    infected: Dict[str, None] = field(default_factory=dict)

    species: ClassVar[Species]

    @property
    def infected_count(self) -> int:
        return len(self.infected)

    @property
    def susceptible_count(self) -> int:
        return self.size - len(self.infected)

    def infected_ids(self) -> List[str]:
        return list(self.infected)

    def add_infected(self, animal_id: str) -> None:
        self.infected[animal_id] = None

    def remove_infected(self, animal_id: str) -> None:
        self.infected.pop(animal_id, None)


@dataclass
class Farm(Unit):
    """A cattle herd with its whole-herd-test history."""
    last_clear_test_date: int = 0
    last_positive_test_date: int = UNSET

    species: ClassVar[Species] = Species.COW

    @property
    def is_restricted(self) -> bool:
        return self.last_clear_test_date == UNSET

    def restrict(self, date: int) -> None:
        self.last_clear_test_date = UNSET
        self.last_positive_test_date = date

    def clear(self, date: int) -> None:
        self.last_clear_test_date = date
        self.last_positive_test_date = UNSET


@dataclass
class Reservoir(Unit):
    """A badger social group and the farms within its range."""
    connected_farms: Tuple[str, ...] = ()

    species: ClassVar[Species] = Species.BADGER


# ═══════════════════════════════════════════════════════════════════════
# INFECTED INDIVIDUALS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class InfectedAnimal:
    """Common record for an infected cow or badger.

    An empty `id` marks a placeholder target in the kernel ("a new animal
    to be created when the event fires").
    """
    id: str
    unit_id: str
    snps: Set[int] = field(default_factory=set)
    last_snp_generation: int = 0
    sample_date: int = UNSET
    state: InfectionState = InfectionState.INFECTIOUS
    unit_history: List[str] = field(default_factory=list)

    species: ClassVar[Species]

    def __post_init__(self):
        if not self.unit_history and self.unit_id:
            self.unit_history.append(self.unit_id)

    def move_to(self, unit_id: str) -> None:
        self.unit_id = unit_id
        self.unit_history.append(unit_id)

    @property
    def is_sampled(self) -> bool:
        return self.sample_date != UNSET

    HEADER: ClassVar[str] = (
        "animal_ID,unit_ID,InfectionStatus,DateSampleTaken,"
        "LastSnpGeneration,SNPs"
    )

    def record(self) -> List:
        return [
            self.id,
            self.unit_id,
            self.state.name,
            self.sample_date,
            self.last_snp_generation,
            " ".join(str(s) for s in sorted(self.snps)),
        ]


@dataclass
class InfectedCow(InfectedAnimal):
    state: InfectionState = InfectionState.EXPOSED

    species: ClassVar[Species] = Species.COW


@dataclass
class InfectedBadger(InfectedAnimal):
    species: ClassVar[Species] = Species.BADGER


def make_animal(
    species: Species,
    animal_id: str,
    unit_id: str,
    state: InfectionState = InfectionState.EXPOSED,
    snps: Optional[Set[int]] = None,
    last_snp_generation: int = 0,
) -> InfectedAnimal:
    """Create an infected individual of the given species.

    Badgers ignore `state`: they are always INFECTIOUS.
    """
    snps = set(snps) if snps is not None else set()
    if species == Species.COW:
        return InfectedCow(animal_id, unit_id, snps, last_snp_generation,
                           state=state)
    if species == Species.BADGER:
        return InfectedBadger(animal_id, unit_id, snps, last_snp_generation)
    raise SimulationInvariantError(f"Unknown species {species!r}")


# ═══════════════════════════════════════════════════════════════════════
# TRANSMISSION TREE NODE
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class TransmissionNode:
    """Vertex of the transmission tree.

    `snps` is frozen at the moment of infection; `detection_date` is set
    once, when the individual is sampled (None until then).
    """
    id: str
    unit_id: str
    snps: FrozenSet[int] = frozenset()
    infection_date: Optional[int] = None
    detection_date: Optional[int] = None
    is_cow: bool = True

    HEADER: ClassVar[str] = "animal_ID,isCow,InfectionDate,DetectionDate,SNPs"

    @property
    def is_root(self) -> bool:
        return self.id == ROOT_ID

    def record(self) -> List:
        return [
            self.id,
            self.is_cow,
            "" if self.infection_date is None else self.infection_date,
            "" if self.detection_date is None else self.detection_date,
            " ".join(str(s) for s in sorted(self.snps)),
        ]
