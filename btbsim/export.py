"""Result writers.

Per-scenario record tables are written as CSV with a leading Scenario_ID
column; dates are written as ISO calendar dates. Trees are written as
'source target weight' edge lists, where the weight counts the replicates
that contained the edge. A JSON summary carries the aggregate statistics.
"""

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Union

from .config import SimulationConfig, to_iso
from .distributions import IntegerDistribution
from .records import (
    BadgerRecord,
    CattleTest,
    HerdTest,
    InitialInfectionState,
    InitialRestriction,
    InitialSize,
    MovementRecord,
    record_row,
)
from .results import ResultsAggregator
from .tree import edge_list_lines
from .types import InfectedAnimal, TransmissionNode

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# record list attribute → (file name, record class)
RECORD_FILES = (
    ('cattle_tests', 'cattleTests.csv', CattleTest),
    ('herd_tests', 'herdTests.csv', HerdTest),
    ('badgers', 'badgerTests.csv', BadgerRecord),
    ('movements', 'movements.csv', MovementRecord),
    ('initial_sizes', 'initialSizes.csv', InitialSize),
    ('initial_states', 'initialInfectionStates.csv', InitialInfectionState),
    ('initial_restrictions', 'initialRestrictions.csv', InitialRestriction),
)


def _write_table(path: Path, header: str, rows: Iterable[Sequence]) -> int:
    n = 0
    with open(path, 'w', newline='') as f:
        w = csv.writer(f)
        w.writerow(header.split(','))
        for row in rows:
            w.writerow(row)
            n += 1
    logger.debug("Wrote %d rows to %s", n, path)
    return n


def _output_path(directory: PathLike, prefix: str, name: str) -> Path:
    d = Path(directory)
    d.mkdir(parents=True, exist_ok=True)
    return d / f"{prefix}{name}"


# ═══════════════════════════════════════════════════════════════════════
# RECORDS
# ═══════════════════════════════════════════════════════════════════════

def write_records(
    results: ResultsAggregator,
    directory: PathLike,
    prefix: str = "",
    to_date: Optional[Callable[[int], str]] = None,
) -> List[Path]:
    """One CSV per record type, rows from every scenario."""
    written = []
    for attr, name, cls in RECORD_FILES:
        path = _output_path(directory, prefix, name)
        rows = (
            [sid] + record_row(rec, to_date)
            for sid, res in sorted(results.scenarios.items())
            for rec in getattr(res.records, attr)
        )
        _write_table(path, "Scenario_ID," + cls.HEADER, rows)
        written.append(path)
    return written


def write_animals(
    results: ResultsAggregator,
    directory: PathLike,
    prefix: str = "",
) -> List[Path]:
    """Every infected cow and badger (live, culled or expired) per scenario."""
    written = []
    for attr, name in (('cows', 'infectedCows.csv'), ('badgers', 'infectedBadgers.csv')):
        path = _output_path(directory, prefix, name)
        rows = (
            [sid] + animal.record()
            for sid, res in sorted(results.scenarios.items())
            for animal in getattr(res, attr)
        )
        _write_table(path, "Scenario_ID," + InfectedAnimal.HEADER, rows)
        written.append(path)
    return written


def write_tree_nodes(
    results: ResultsAggregator,
    directory: PathLike,
    prefix: str = "",
) -> Path:
    """Vertices of every scenario's full transmission tree, ROOT excluded."""
    path = _output_path(directory, prefix, 'transmissionTreeNodes.csv')
    rows = (
        [sid] + node.record()
        for sid, res in sorted(results.scenarios.items())
        for node in res.tree.nodes()
        if not node.is_root
    )
    _write_table(path, "Scenario_ID," + TransmissionNode.HEADER, rows)
    return path


# ═══════════════════════════════════════════════════════════════════════
# AGGREGATES
# ═══════════════════════════════════════════════════════════════════════

def write_edge_lists(
    results: ResultsAggregator,
    directory: PathLike,
    prefix: str = "",
) -> List[Path]:
    written = []
    for graph, name in ((results.tree, 'transmissionTree.edgelist'),
                        (results.observed_tree, 'observedTransmissionTree.edgelist')):
        path = _output_path(directory, prefix, name)
        with open(path, 'w') as f:
            for line in edge_list_lines(graph, weighted=True):
                f.write(line + "\n")
        written.append(path)
    return written


def write_distribution(dist: IntegerDistribution, path: PathLike) -> Path:
    """'bin:frequency' lines, readable by loaders.read_distribution."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        text = dist.to_text()
        f.write(text + "\n" if text else "")
    return path


def write_time_series(
    results: ResultsAggregator,
    directory: PathLike,
    prefix: str = "",
) -> List[Path]:
    """One file per series; one line per scenario, one value per step."""
    written = []
    for name, lines in results.time_series.items():
        path = _output_path(directory, prefix, f"{name}.csv")
        with open(path, 'w') as f:
            for line in lines:
                f.write(line + "\n")
        written.append(path)
    return written


def write_likelihoods(
    results: ResultsAggregator,
    directory: PathLike,
    prefix: str = "",
) -> Path:
    """Finite per-scenario log-likelihoods, one per line."""
    path = _output_path(directory, prefix, 'likelihoods.csv')
    with open(path, 'w') as f:
        for value in results.log_likelihoods:
            f.write(f"{value!r}\n")
    return path


def write_summary(
    results: ResultsAggregator,
    directory: PathLike,
    prefix: str = "",
) -> Path:
    path = _output_path(directory, prefix, 'summary.json')
    summary = dict(results.summary())
    summary['scenarios'] = results.scenario_count
    with open(path, 'w') as f:
        json.dump(summary, f, indent=2, default=str)
    return path


def export_results(results: ResultsAggregator, config: SimulationConfig) -> List[Path]:
    """Write everything the output section asks for."""
    out = config.output
    zero = config.simulation.zero_date
    directory, prefix = out.directory, out.prefix
    written: List[Path] = []
    if out.write_records:
        written += write_records(results, directory, prefix,
                                 to_date=lambda d: to_iso(d, zero))
        written += write_animals(results, directory, prefix)
        written.append(write_tree_nodes(results, directory, prefix))
    written += write_edge_lists(results, directory, prefix)
    written.append(write_distribution(
        results.pairwise_distances,
        _output_path(directory, prefix, 'snpDistances.txt'),
    ))
    written.append(write_distribution(
        results.reactors_at_breakdown,
        _output_path(directory, prefix, 'reactorsAtBreakdown.txt'),
    ))
    written += write_time_series(results, directory, prefix)
    written.append(write_likelihoods(results, directory, prefix))
    written.append(write_summary(results, directory, prefix))
    logger.info("Wrote %d result files to %s", len(written), directory)
    return written
