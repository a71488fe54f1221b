"""Scenario results and their aggregation across replicates.

ScenarioResults is what one replicate hands back; ResultsAggregator.join
folds replicates together on the calling thread. Rejected replicates
(log-likelihood -inf) are counted but contribute no likelihood sample.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import networkx as nx
import numpy as np

from .distributions import IntegerDistribution
from .population import ScenarioCounters
from .records import ScenarioRecords
from .tree import TransmissionTree, merge_edge_counts
from .types import InfectedAnimal, TransmissionType

TIME_SERIES = (
    'infected_herds',
    'restricted_herds',
    'infected_cows',
    'infected_reservoirs',
    'infected_badgers',
)


@dataclass
class ScenarioResults:
    """Everything one replicate scenario produced."""
    scenario_id: int = 0
    log_likelihood: float = -math.inf
    counters: ScenarioCounters = field(default_factory=ScenarioCounters)
    outbreak_contained: bool = False    # kernel emptied before the end date
    rejections: int = 0                 # re-runs discarded as short epidemics
    final_day: int = 0
    # Genetics
    pairwise_distances: IntegerDistribution = field(default_factory=IntegerDistribution)
    tree: TransmissionTree = field(default_factory=TransmissionTree)
    observed_tree: TransmissionTree = field(default_factory=TransmissionTree)
    # One value per step, keyed by TIME_SERIES name
    time_series: Dict[str, List[int]] = field(
        default_factory=lambda: {name: [] for name in TIME_SERIES}
    )
    records: ScenarioRecords = field(default_factory=ScenarioRecords)
    # Final state: live and removed animals
    cows: List[InfectedAnimal] = field(default_factory=list)
    badgers: List[InfectedAnimal] = field(default_factory=list)

    @property
    def outbreak_size(self) -> int:
        """Animals ever infected (every tree vertex but ROOT)."""
        return len(self.tree) - 1

    @property
    def is_rejected(self) -> bool:
        return not math.isfinite(self.log_likelihood)


class ResultsAggregator:
    """Single-threaded join point for replicate results."""

    SAMPLED_COUNTERS = (
        'infected_cows_at_slaughter',
        'cows_moved',
        'badgers_moved',
        'badgers_dead',
        'outbreak_size',
    )

    def __init__(self):
        self.scenario_count = 0
        self.rejected_count = 0
        self.outbreak_contained_count = 0
        self.log_likelihoods: List[float] = []
        self.samples: Dict[str, List[float]] = {name: [] for name in self.SAMPLED_COUNTERS}
        self.transmissions: Dict[TransmissionType, List[int]] = {
            t: [] for t in TransmissionType
        }
        self.pairwise_distances = IntegerDistribution()
        self.reactors_at_breakdown = IntegerDistribution()
        self.tree = nx.DiGraph()
        self.observed_tree = nx.DiGraph()
        self.time_series: Dict[str, List[str]] = {name: [] for name in TIME_SERIES}
        self.scenarios: Dict[int, ScenarioResults] = {}

    def join(self, result: ScenarioResults) -> 'ResultsAggregator':
        """Fold one replicate into the running aggregate."""
        self.scenario_count += 1
        if result.is_rejected:
            self.rejected_count += 1
        else:
            self.log_likelihoods.append(result.log_likelihood)
        if result.outbreak_contained:
            self.outbreak_contained_count += 1

        counters = result.counters
        for name in self.SAMPLED_COUNTERS:
            value = (result.outbreak_size if name == 'outbreak_size'
                     else getattr(counters, name))
            self.samples[name].append(value)
        for t, n in counters.transmissions.items():
            self.transmissions[t].append(n)

        self.pairwise_distances.merge(result.pairwise_distances)
        self.reactors_at_breakdown.merge(counters.reactors_at_breakdown)
        merge_edge_counts(self.tree, result.tree)
        merge_edge_counts(self.observed_tree, result.observed_tree)
        for name, series in result.time_series.items():
            self.time_series.setdefault(name, []).append(
                ",".join(str(v) for v in series)
            )
        self.scenarios[result.scenario_id] = result
        return self

    # ── summaries ───────────────────────────────────────────────────

    def expected_value(self) -> float:
        """Mean finite log-likelihood; -inf if every replicate was rejected."""
        if not self.log_likelihoods:
            return -math.inf
        return float(np.mean(self.log_likelihoods))

    def percentage_rejected(self) -> float:
        if self.scenario_count == 0:
            return 0.0
        return 100.0 * self.rejected_count / self.scenario_count

    def mean(self, name: str) -> float:
        values = self.samples[name]
        return float(np.mean(values)) if values else 0.0

    def transmission_shares(self) -> Dict[TransmissionType, float]:
        """Percentage of all new infections that went by each route."""
        totals = {t: sum(v) for t, v in self.transmissions.items()}
        overall = sum(totals.values())
        if overall == 0:
            return {t: 0.0 for t in totals}
        return {t: 100.0 * n / overall for t, n in totals.items()}

    def summary(self) -> Dict[str, float]:
        """Flat summary row: likelihood, counter means, rejection and routes."""
        row: Dict[str, float] = {'log_likelihood': self.expected_value()}
        for name in self.SAMPLED_COUNTERS:
            row[f'mean_{name}'] = self.mean(name)
        row['outbreaks_contained'] = self.outbreak_contained_count
        row['percent_rejected'] = self.percentage_rejected()
        for t, share in self.transmission_shares().items():
            row[f'percent_{t.name.lower()}'] = share
        return row

    def scenario(self, scenario_id: int) -> Optional[ScenarioResults]:
        return self.scenarios.get(scenario_id)
