"""
Replicated cross-validation.

A replicated run repeats the whole CV procedure ``reps`` times, each time
with freshly drawn random folds, and returns the ordered sequence of results.
Replicate 1 uses the run's seed; the seeds of later replicates are drawn from
a generator keyed on ``(seed, reps)``, so one recorded seed reproduces every
replicate.  Replicates run one after the other; fold-level parallelism is
reused inside each.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Union

import numpy as np

from foldwise.cv.results import CVResult, ReplicatedCVResult
from foldwise.exceptions import InvalidRequest

log = logging.getLogger(__name__)


def replicate_seeds(seed: int, reps: int, seed_max: int = 1_000_000) -> list[int]:
    """Seeds for ``reps`` replicates, the first being ``seed`` itself."""
    if reps < 1:
        raise InvalidRequest(f"reps must be >= 1, got {reps}")
    rng = np.random.default_rng([seed, reps])
    extra = rng.integers(1, seed_max, size=reps - 1, endpoint=True)
    return [int(seed)] + [int(s) for s in extra]


def run_replicates(
    run_once: Callable[[Optional[int]], CVResult],
    reps: int,
    seed: Optional[int],
    seed_max: int = 1_000_000,
) -> Union[CVResult, ReplicatedCVResult]:
    """Call ``run_once(seed)`` once per replicate.

    Returns:
        The single ``CVResult`` when ``reps == 1``, else a
        ``ReplicatedCVResult`` in replicate order.

    Raises:
        InvalidRequest: ``reps > 1`` without a seed (i.e. leave-one-out).
    """
    if reps == 1:
        return run_once(seed)
    if seed is None:
        raise InvalidRequest("reps should not be > 1 for n-fold (leave-one-out) CV")

    results = []
    for r, rep_seed in enumerate(replicate_seeds(seed, reps, seed_max), start=1):
        log.info("Replicate %d/%d | seed=%d", r, reps, rep_seed)
        results.append(run_once(rep_seed))
    return ReplicatedCVResult(tuple(results))
