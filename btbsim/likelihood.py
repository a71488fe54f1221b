"""Likelihood scoring of simulated SNP-distance distributions.

A scenario's observed tree yields a simulated pairwise-distance histogram.
It is compared with the observed histogram (N pairs) by the multinomial
log-pmf:

    log L = ln N! − Σ ln x_i! + Σ x_i ln p_i

where p_i is the observed frequency of bin i divided by N and x_i is the
simulated count of bin i, restricted to the observed bins and rescaled so
that Σ x_i = N. A simulated histogram with no mass on the observed bins
scores −inf: the scenario is rejected.
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

import numpy as np
from scipy import special

from .distributions import IntegerDistribution
from .types import SimulationInvariantError

logger = logging.getLogger(__name__)

MIN_PROBABILITY = 1e-15   # bins with p at or below this contribute no x·ln p term


def log_multinomial(counts: Sequence[int], probabilities: Sequence[float]) -> float:
    """Multinomial log-pmf of `counts` under `probabilities`, N = Σ counts."""
    x = np.asarray(counts, dtype=float)
    p = np.asarray(probabilities, dtype=float)
    if x.shape != p.shape:
        raise ValueError(
            f"{len(x)} counts do not match {len(p)} probabilities"
        )
    n = x.sum()
    keep = p > MIN_PROBABILITY
    sum_px = float(np.sum(x[keep] * np.log(p[keep])))
    return float(special.gammaln(n + 1) - np.sum(special.gammaln(x + 1)) + sum_px)


def score(simulated: IntegerDistribution, observed: IntegerDistribution) -> float:
    """Log-likelihood of a simulated distance distribution.

    Returns:
        The multinomial log-likelihood, or -inf when the simulated
        distribution has no mass on the observed bins (or nothing was observed).
    """
    n = observed.total()
    if n == 0:
        logger.debug("No observed distances; scenario scored -inf")
        return -math.inf
    bins = observed.bins()
    restricted = simulated.restricted_to(bins)
    if restricted.total() == 0:
        logger.debug("Simulated distances %r miss every observed bin", simulated)
        return -math.inf
    rescaled = restricted.normalised(n)
    counts = [rescaled.frequency(b) for b in bins]
    if sum(counts) != n:
        raise SimulationInvariantError(
            f"Rescaled distances sum to {sum(counts)}, expected {n}"
        )
    probabilities = [observed.frequency(b) / n for b in bins]
    value = log_multinomial(counts, probabilities)
    logger.debug("log-likelihood %.6g", value)
    return value

