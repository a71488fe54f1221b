"""Per-scenario event records.

Every test, movement and initial-state decision made during a scenario is
appended here for later CSV export. Dates are integer day numbers; the
exporter converts them to calendar dates.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, List

from .types import InfectionState, Species


@dataclass(frozen=True)
class CattleTest:
    HEADER: ClassVar[str] = (
        "date,unit_ID,animal_ID,testResult,infectionState,reasonOfTesting"
    )
    date: int
    unit_id: str
    animal_id: str
    result: bool
    state: InfectionState
    reason: str


@dataclass(frozen=True)
class HerdTest:
    HEADER: ClassVar[str] = "date,unit_ID,infected,reactors,reasonOfTesting"
    date: int
    unit_id: str
    infected: int
    reactors: int
    reason: str


@dataclass(frozen=True)
class BadgerRecord:
    HEADER: ClassVar[str] = (
        "date,animal_ID,unit_ID_from,unit_ID_to,capture,testResult,"
        "infectionState,reasonOfTesting"
    )
    date: int
    animal_id: str
    unit_from: str
    unit_to: str
    capture: bool
    result: bool
    state: InfectionState
    reason: str


@dataclass(frozen=True)
class MovementRecord:
    """One sampled movement (or death) and the draws that shaped it."""
    HEADER: ClassVar[str] = (
        "date,species,unitID_from,unitID_to,unit_size,anim_move,inf_anim,"
        "inf_move,rnd_choice,rnd_num"
    )
    date: int
    species: Species
    unit_from: str
    unit_to: str
    unit_size: int
    animals_moved: int
    infected_in_unit: int
    infected_moved: int
    pair_index: int
    draw: float


@dataclass(frozen=True)
class InitialSize:
    HEADER: ClassVar[str] = "unit_ID,species,size"
    unit_id: str
    species: Species
    size: int


@dataclass(frozen=True)
class InitialInfectionState:
    HEADER: ClassVar[str] = "animal_ID,unit_ID,clade,infectionState"
    animal_id: str
    unit_id: str
    clade: str
    state: InfectionState


@dataclass(frozen=True)
class InitialRestriction:
    HEADER: ClassVar[str] = "unit_ID,lastTestDate,clearTests"
    unit_id: str
    last_test_date: int
    clear_tests: int


@dataclass
class ScenarioRecords:
    """Everything a scenario writes down while it runs."""
    cattle_tests: List[CattleTest] = field(default_factory=list)
    herd_tests: List[HerdTest] = field(default_factory=list)
    badgers: List[BadgerRecord] = field(default_factory=list)
    movements: List[MovementRecord] = field(default_factory=list)
    initial_sizes: List[InitialSize] = field(default_factory=list)
    initial_states: List[InitialInfectionState] = field(default_factory=list)
    initial_restrictions: List[InitialRestriction] = field(default_factory=list)


def record_row(record, to_date=None) -> List[str]:
    """CSV cells of a record.

    Enums are written by name, booleans lowercase, and fields named like a
    date are passed through `to_date` when given.
    """
    row = []
    for f in dataclasses.fields(record):
        value = getattr(record, f.name)
        if isinstance(value, bool):
            row.append(str(value).lower())
        elif isinstance(value, Enum):
            row.append(value.name)
        elif to_date is not None and f.name in ('date', 'last_test_date'):
            row.append(to_date(value))
        else:
            row.append(str(value))
    return row
