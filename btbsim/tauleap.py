"""Fixed-step tau-leaping driver.

For a kernel with rates a_j and step τ, each event fires Poisson(a_j·τ)
times in the leap, independently; time advances by exactly τ. The driver
only samples counts. Applying them (and coping with counts that are no
longer feasible once earlier events have consumed capacity) is the job of
the event-application layer.
"""

from __future__ import annotations

from typing import List, Tuple

import numpy as np

from .kernel import TransitionEvent, TransitionKernel


class TauLeapDriver:
    """Fixed-step tau-leap sampler over a TransitionKernel.

    Args:
        step_size: Leap length τ (days).
    """

    def __init__(self, step_size: float):
        if step_size <= 0:
            raise ValueError(f"step_size must be positive, got {step_size}")
        self.step_size = step_size

    def leap(
        self,
        kernel: TransitionKernel,
        time: float,
        rng: np.random.Generator,
    ) -> Tuple[List[Tuple[TransitionEvent, int]], float]:
        """Sample one leap.

        Returns:
            (fired, new_time): the (event, count) pairs with count > 0, in
            kernel order, and time + step_size.
        """
        items = kernel.items()
        if not items:
            return [], time + self.step_size
        rates = np.fromiter((r for _, r in items), dtype=float, count=len(items))
        counts = rng.poisson(rates * self.step_size)
        fired = [(event, int(n)) for (event, _), n in zip(items, counts) if n > 0]
        return fired, time + self.step_size
