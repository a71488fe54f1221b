"""Text data-file loaders.

Formats (one record per line; blank lines are skipped everywhere):
  unit ids          first comma-separated field of each line
  distribution      x:frequency
  movements         departure-destination n1,n2,...   (one batch size per move)
  reservoir network RESERVOIR_n:farm,farm,...
  slaughter         date: farm,farm,...   ('#' comments; date as day or ISO)
  sampling rates    year,rate             ('#' comments)

A missing file raises FileNotFoundError; a malformed line raises ValueError
naming the file and the line number.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from .config import SimulationConfig, to_day
from .distributions import IntegerDistribution
from .population import MovementTable, PopulationTemplate

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _lines(path: PathLike, comments: bool = False) -> Iterator[Tuple[int, str]]:
    """(line number, stripped text) for every non-empty line."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")
    with open(path) as f:
        for lineno, raw in enumerate(f, start=1):
            line = raw.strip()
            if not line or (comments and line.startswith('#')):
                continue
            yield lineno, line


def _bad_line(path: PathLike, lineno: int, line: str, expected: str) -> ValueError:
    return ValueError(f"{path}:{lineno}: expected {expected}, got '{line}'")


# ═══════════════════════════════════════════════════════════════════════
# SINGLE FILES
# ═══════════════════════════════════════════════════════════════════════

def read_unit_ids(path: PathLike) -> List[str]:
    """Unit ids from the first column of a CSV file, in file order."""
    ids: List[str] = []
    seen = set()
    for _, line in _lines(path):
        uid = line.split(',')[0].strip()
        if uid and uid not in seen:
            seen.add(uid)
            ids.append(uid)
    return ids


def read_distribution(path: PathLike) -> IntegerDistribution:
    """An 'x:frequency' table. A repeated x keeps the last frequency."""
    dist = IntegerDistribution()
    for lineno, line in _lines(path):
        parts = line.split(':')
        try:
            if len(parts) != 2:
                raise ValueError
            dist.set_frequency(int(parts[0].strip()), int(parts[1].strip()))
        except ValueError:
            raise _bad_line(path, lineno, line, "'x:frequency'") from None
    return dist


def read_movement_table(
    path: PathLike,
    unit_ids: Sequence[str],
) -> Tuple[MovementTable, Dict[str, IntegerDistribution]]:
    """Movement pairs plus each departure unit's off-movement batch sizes.

    Moves from a unit to itself are dropped.

    Returns:
        (table, off_movements): the MovementTable and a unit id →
        IntegerDistribution of batch sizes for every unit that sends animals.
    """
    known = set(unit_ids)
    pairs: List[Tuple[str, str]] = []
    off_movements: Dict[str, IntegerDistribution] = {}
    total = 0
    self_moves = 0
    for lineno, line in _lines(path):
        parts = line.split()
        units = parts[0].split('-') if parts else []
        if len(parts) != 2 or len(units) != 2:
            raise _bad_line(path, lineno, line, "'departure-destination n1,n2,...'")
        departure, destination = units[0].strip(), units[1].strip()
        try:
            batches = [int(n) for n in parts[1].split(',') if n.strip()]
        except ValueError:
            raise _bad_line(path, lineno, line, "integer batch sizes") from None
        for uid in (departure, destination):
            if uid not in known:
                raise ValueError(f"{path}:{lineno}: unknown unit '{uid}'")
        if departure == destination:
            self_moves += 1
            continue
        pairs.append((departure, destination))
        dist = off_movements.setdefault(departure, IntegerDistribution())
        for n in batches:
            dist.add(n)
            total += n
    logger.debug("Read %d movements from %s (ignoring %d moves to self)",
                 len(pairs), path, self_moves)
    return MovementTable(tuple(pairs), total), off_movements


def _reservoir_key(raw: str, known: Sequence[str]) -> str:
    """Network files name reservoirs 'PREFIX_n'; unit files use plain 'n'."""
    if raw in known:
        return raw
    return str(int(raw.rsplit('_', 1)[-1]))


def read_reservoir_network(
    path: PathLike,
    farm_ids: Sequence[str],
    reservoir_ids: Optional[Sequence[str]] = None,
) -> Dict[str, Tuple[str, ...]]:
    """Reservoir id → connected farm ids.

    When `reservoir_ids` is None every reservoir named in the file is
    accepted; otherwise an unlisted reservoir is an error.
    """
    farms = set(farm_ids)
    known = list(reservoir_ids) if reservoir_ids is not None else []
    network: Dict[str, Tuple[str, ...]] = {}
    for lineno, line in _lines(path):
        parts = line.split(':')
        if len(parts) != 2:
            raise _bad_line(path, lineno, line, "'RESERVOIR_n:farm,farm,...'")
        try:
            rid = _reservoir_key(parts[0].strip(), known)
        except ValueError:
            raise _bad_line(path, lineno, line, "a numbered reservoir id") from None
        if reservoir_ids is not None and rid not in known:
            raise ValueError(f"{path}:{lineno}: unknown reservoir '{rid}'")
        connected = tuple(f.strip() for f in parts[1].split(',') if f.strip())
        for fid in connected:
            if fid not in farms:
                raise ValueError(f"{path}:{lineno}: unknown farm '{fid}'")
        network[rid] = network.get(rid, ()) + connected
    return network


def _parse_day(token: str, zero_date: str) -> int:
    if '-' in token.lstrip('-'):
        return to_day(token, zero_date)
    return int(token)


def read_slaughter_schedule(
    path: PathLike,
    config: SimulationConfig,
) -> Dict[int, Tuple[str, ...]]:
    """Day → farm ids with an animal slaughtered that day (one id per animal).

    Only days inside [start, end] are kept. Lines sharing a date accumulate.
    """
    start, end = config.start_day, config.end_day
    schedule: Dict[int, Tuple[str, ...]] = {}
    for lineno, line in _lines(path, comments=True):
        date_text, sep, farms = line.partition(':')
        if not sep:
            raise _bad_line(path, lineno, line, "'date: farm,farm,...'")
        try:
            day = _parse_day(date_text.strip(), config.simulation.zero_date)
        except ValueError:
            raise _bad_line(path, lineno, line, "a day number or ISO date") from None
        if not (start <= day <= end):
            continue
        ids = tuple(f.strip() for f in farms.split(',') if f.strip())
        schedule[day] = schedule.get(day, ()) + ids
    return schedule


def read_sampling_rates(path: PathLike) -> Dict[int, float]:
    """Year → probability that a detected animal is sequenced."""
    rates: Dict[int, float] = {}
    for lineno, line in _lines(path, comments=True):
        parts = line.split(',')
        try:
            year, rate = int(parts[0]), float(parts[1])
        except (ValueError, IndexError):
            raise _bad_line(path, lineno, line, "'year,rate'") from None
        if not (0.0 <= rate <= 1.0):
            raise ValueError(f"{path}:{lineno}: sampling rate {rate} outside [0, 1]")
        rates[year] = rate
    return rates


# ═══════════════════════════════════════════════════════════════════════
# TEMPLATE
# ═══════════════════════════════════════════════════════════════════════

def _merged_rates(path: Optional[str], overrides: Mapping[int, float]) -> Dict[int, float]:
    rates = read_sampling_rates(path) if path else {}
    rates.update(overrides)
    return rates


def load_template(config: SimulationConfig) -> PopulationTemplate:
    """Read every configured data file into a PopulationTemplate.

    Optional files that are not configured leave their part empty.
    Sampling rates from the YAML override those read from file.

    Raises:
        ValueError: If no farm file is configured or a file is malformed.
        FileNotFoundError: If a configured file does not exist.
    """
    data = config.data
    if not data.farm_file:
        raise ValueError("data.farm_file is required")
    farm_ids = read_unit_ids(data.farm_file)
    logger.info("Read %d farms from %s", len(farm_ids), data.farm_file)

    reservoir_ids: List[str] = (
        read_unit_ids(data.reservoir_file) if data.reservoir_file else []
    )
    reservoir_farms: Dict[str, Tuple[str, ...]] = {}
    if data.reservoir_network_file:
        reservoir_farms = read_reservoir_network(
            data.reservoir_network_file, farm_ids,
            reservoir_ids if data.reservoir_file else None,
        )
        if not data.reservoir_file:
            reservoir_ids = list(reservoir_farms)
    logger.info("Read %d reservoirs", len(reservoir_ids))

    cattle_movements, farm_off = MovementTable(), {}
    if data.cattle_movement_file:
        cattle_movements, farm_off = read_movement_table(data.cattle_movement_file, farm_ids)
    badger_movements, reservoir_off = MovementTable(), {}
    if data.badger_movement_file:
        badger_movements, reservoir_off = read_movement_table(
            data.badger_movement_file, reservoir_ids
        )

    def optional_distribution(path: Optional[str]) -> IntegerDistribution:
        return read_distribution(path) if path else IntegerDistribution()

    return PopulationTemplate(
        farm_ids=tuple(farm_ids),
        reservoir_ids=tuple(reservoir_ids),
        reservoir_farms=reservoir_farms,
        farm_off_movements=farm_off,
        reservoir_off_movements=reservoir_off,
        herd_sizes=optional_distribution(data.herd_size_file),
        reservoir_sizes=optional_distribution(data.reservoir_size_file),
        cattle_movements=cattle_movements,
        badger_movements=badger_movements,
        slaughter_schedule=(read_slaughter_schedule(data.slaughter_file, config)
                            if data.slaughter_file else {}),
        observed_distances=optional_distribution(data.observed_distance_file),
        cattle_sampling_rates=_merged_rates(data.cattle_sampling_file,
                                            config.sampling.cattle_rates),
        badger_sampling_rates=_merged_rates(data.badger_sampling_file,
                                            config.sampling.badger_rates),
    )
