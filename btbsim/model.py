"""Scenario runner: the per-step control loop and replicate driver.

Each step of length τ starting at day t:
  1. register the whole-herd tests due in [t, t+τ)
  2. run them, advancing each herd's restriction state
  3. cattle movements (pre-movement tested)
  4. badger movements
  5. slaughter
  6. badger deaths
  7. rebuild the transition kernel, then sample the time series
after which the tau-leap driver fires kernel events, applied dated t.

A scenario stops when t passes the end date, when the kernel is empty
(the outbreak is contained), or when live cows or badgers exceed their
caps. Contained outbreaks can be discarded and re-run
(simulation.filter_short_epidemics).

At the end the transmission tree is pruned to the observed tree and its
pairwise SNP distances are scored against the observed distribution.
"""

from __future__ import annotations

import logging
import time as _time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np

from .config import REQUIRED_PARAMETERS, SimulationConfig
from .context import ScenarioContext
from .events import apply_events
from .kernel import TransitionKernel, build_kernel
from .likelihood import score
from .loaders import load_template
from .movement import perform_badger_deaths, perform_movements, perform_slaughter
from .population import Population, PopulationTemplate
from .results import TIME_SERIES, ResultsAggregator, ScenarioResults
from .rng import create_rng_hierarchy, get_scenario_rng
from .seeding import seed_scenario
from .surveillance import perform_scheduled_tests, register_herd_tests
from .tauleap import TauLeapDriver
from .tree import pairwise_distances, prune_observed_tree
from .types import Species

logger = logging.getLogger(__name__)


def resolve_parameters(
    config: SimulationConfig,
    overrides: Optional[Mapping[str, float]] = None,
) -> Dict[str, float]:
    """Initial parameter values, with optional overrides.

    Raises:
        ValueError: If a required parameter is missing or negative.
    """
    params = config.parameter_values()
    if overrides:
        params.update({k: float(v) for k, v in overrides.items()})
    for name in REQUIRED_PARAMETERS:
        if name not in params:
            raise ValueError(f"Parameter '{name}' is required")
        if params[name] < 0:
            raise ValueError(f"Parameter '{name}' must be non-negative, got {params[name]}")
    return params


# ═══════════════════════════════════════════════════════════════════════
# SINGLE SCENARIO
# ═══════════════════════════════════════════════════════════════════════

class Scenario:
    """One replicate: seeds a fresh Population and runs it to termination.

    Args:
        config: Validated configuration.
        template: Shared read-only population inputs.
        params: Parameter vector (read-only during the run).
        rng: This replicate's own stream.
        scenario_id: Replicate index, carried into the results.
    """

    def __init__(
        self,
        config: SimulationConfig,
        template: PopulationTemplate,
        params: Mapping[str, float],
        rng: np.random.Generator,
        scenario_id: int = 0,
    ):
        self.config = config
        self.template = template
        self.params = dict(params)
        self.rng = rng
        self.scenario_id = scenario_id
        self.driver = TauLeapDriver(config.simulation.step_size)

    def new_context(self) -> ScenarioContext:
        return ScenarioContext(self.config, self.params, self.rng,
                               Population(self.template))

    def run(self) -> ScenarioResults:
        """Simulate (re-running rejected short epidemics) and score."""
        sim = self.config.simulation
        rejections = 0
        while True:
            ctx = self.new_context()
            seeded = seed_scenario(ctx)
            contained, series, final_day = self.simulate(ctx)
            if not (sim.filter_short_epidemics and contained) or seeded == 0:
                break
            if sim.max_rejections is not None and rejections >= sim.max_rejections:
                logger.warning(
                    "Scenario %d: accepting a contained outbreak after %d rejections",
                    self.scenario_id, rejections,
                )
                break
            rejections += 1
            logger.debug("Scenario %d: outbreak contained at day %d, re-running",
                         self.scenario_id, final_day)
        return self.finish(ctx, contained, rejections, series, final_day)

    def simulate(
        self,
        ctx: ScenarioContext,
    ) -> Tuple[bool, Dict[str, List[int]], int]:
        """Run the step loop on a seeded context.

        Returns:
            (contained, time_series, final_day): whether the kernel emptied
            before the end date, the per-step samples and the last day reached.
        """
        sim = self.config.simulation
        end = self.config.end_day
        population = ctx.population
        series: Dict[str, List[int]] = {name: [] for name in TIME_SERIES}
        t = self.config.start_day
        kernel = build_kernel(population, self.params, ctx.include_reservoir)
        contained = kernel.is_empty()
        while not contained and t <= end:
            if len(population.cows) > sim.max_infected_cows:
                logger.info("Scenario %d: %d infected cows at day %d, stopping",
                            self.scenario_id, len(population.cows), t)
                break
            if len(population.badgers) > sim.max_infected_badgers:
                logger.info("Scenario %d: %d infected badgers at day %d, stopping",
                            self.scenario_id, len(population.badgers), t)
                break
            kernel = self.step(ctx, t)
            self._sample(population, series)
            if kernel.is_empty():
                contained = True
                break
            fired, next_t = self.driver.leap(kernel, t, ctx.rng)
            apply_events(ctx, fired, t)
            t = next_t
        if contained:
            logger.debug("Scenario %d: outbreak contained at day %d", self.scenario_id, t)
        return contained, series, t

    def step(self, ctx: ScenarioContext, t: int) -> TransitionKernel:
        """Run the exogenous phases of one step and rebuild the kernel."""
        scheduled = register_herd_tests(ctx, t)
        perform_scheduled_tests(ctx, scheduled)
        perform_movements(ctx, Species.COW, t)
        perform_movements(ctx, Species.BADGER, t)
        perform_slaughter(ctx, t)
        perform_badger_deaths(ctx, t)
        return build_kernel(ctx.population, self.params, ctx.include_reservoir)

    @staticmethod
    def _sample(population: Population, series: Dict[str, List[int]]) -> None:
        series['infected_herds'].append(population.infected_unit_count(Species.COW))
        series['restricted_herds'].append(len(population.restricted_herds))
        series['infected_cows'].append(len(population.cows))
        series['infected_reservoirs'].append(population.infected_unit_count(Species.BADGER))
        series['infected_badgers'].append(len(population.badgers))

    def finish(
        self,
        ctx: ScenarioContext,
        contained: bool,
        rejections: int,
        series: Dict[str, List[int]],
        final_day: int,
    ) -> ScenarioResults:
        """Prune, score and package a finished run."""
        observed = prune_observed_tree(
            ctx.tree,
            self.template.cattle_sampling_rates,
            self.template.badger_sampling_rates,
            self.config.simulation.zero_date,
            ctx.rng,
        )
        distances = pairwise_distances(observed)
        log_likelihood = score(distances, self.template.observed_distances)
        population = ctx.population
        return ScenarioResults(
            scenario_id=self.scenario_id,
            log_likelihood=log_likelihood,
            counters=population.counters,
            outbreak_contained=contained,
            rejections=rejections,
            final_day=final_day,
            pairwise_distances=distances,
            tree=ctx.tree,
            observed_tree=observed,
            time_series=series,
            records=ctx.records,
            cows=list(population.cows.values()) + list(population.culled_cows.values()),
            badgers=(list(population.badgers.values())
                     + list(population.expired_badgers.values())),
        )


# ═══════════════════════════════════════════════════════════════════════
# REPLICATES
# ═══════════════════════════════════════════════════════════════════════

def run_replicates(
    config: SimulationConfig,
    template: PopulationTemplate,
    params: Optional[Mapping[str, float]] = None,
) -> ResultsAggregator:
    """Run simulation.num_scenarios replicates and join their results.

    Replicates run on a thread pool when simulation.parallel_workers > 1;
    results are always joined on the calling thread in replicate order.
    """
    sim = config.simulation
    params = resolve_parameters(config, params)
    rngs = create_rng_hierarchy(sim.seed, sim.num_scenarios)
    scenarios = [
        Scenario(config, template, params, get_scenario_rng(rngs, i), scenario_id=i)
        for i in range(sim.num_scenarios)
    ]

    t0 = _time.time()
    if sim.parallel_workers > 1 and len(scenarios) > 1:
        with ThreadPoolExecutor(max_workers=sim.parallel_workers) as pool:
            results = list(pool.map(Scenario.run, scenarios))
    else:
        results = [s.run() for s in scenarios]

    aggregator = ResultsAggregator()
    for result in results:
        aggregator.join(result)
    logger.info(
        "%d scenarios in %.1fs: mean log-likelihood %g, %.1f%% rejected",
        aggregator.scenario_count, _time.time() - t0,
        aggregator.expected_value(), aggregator.percentage_rejected(),
    )
    return aggregator


def run_simulation(
    config: SimulationConfig,
    params: Optional[Mapping[str, float]] = None,
) -> ResultsAggregator:
    """Load the configured data files and run every replicate."""
    return run_replicates(config, load_template(config), params)
