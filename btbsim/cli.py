"""Command-line runner: load a configuration, run the replicates, write results."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import load_config
from .export import export_results
from .model import run_simulation

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="btbsim",
        description="Simulate bovine TB spread between cattle herds and badger reservoirs",
    )
    parser.add_argument("config", help="Base configuration YAML")
    parser.add_argument("--scenario", default=None,
                        help="Scenario override YAML merged over the base")
    parser.add_argument("--seed", type=int, default=None,
                        help="Master RNG seed (overrides simulation.seed)")
    parser.add_argument("--scenarios", type=int, default=None,
                        help="Number of replicates (overrides simulation.num_scenarios)")
    parser.add_argument("--workers", type=int, default=None,
                        help="Replicates run in parallel (overrides simulation.parallel_workers)")
    parser.add_argument("--outdir", default=None,
                        help="Output directory (overrides output.directory)")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="More logging (-v info, -vv debug)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _overrides(args: argparse.Namespace) -> dict:
    simulation = {}
    if args.seed is not None:
        simulation['seed'] = args.seed
    if args.scenarios is not None:
        simulation['num_scenarios'] = args.scenarios
    if args.workers is not None:
        simulation['parallel_workers'] = args.workers
    overrides = {}
    if simulation:
        overrides['simulation'] = simulation
    if args.outdir is not None:
        overrides['output'] = {'directory': args.outdir}
    return overrides


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    level = (logging.WARNING, logging.INFO, logging.DEBUG)[min(args.verbose, 2)]
    logging.basicConfig(level=level,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        config = load_config(args.config, args.scenario, _overrides(args) or None)
    except (FileNotFoundError, ValueError) as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    results = run_simulation(config)
    export_results(results, config)
    print(f"{results.scenario_count} scenarios, "
          f"mean log-likelihood {results.expected_value():g}, "
          f"{results.percentage_rejected():.1f}% rejected")
    return 0


if __name__ == "__main__":
    sys.exit(main())
