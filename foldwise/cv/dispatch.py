"""
Execution of per-fold work, sequentially or on a worker pool.

Every fold is an independent unit of work: ``fold_fn(context, task)`` where
``context`` is a read-only ``FoldContext`` shared by all folds of a run and
``task`` is the ``FoldTask`` naming the fold and its held-out cases.  Both are
plain picklable values, so the same call works in-process and in a joblib
worker.

Results always come back as a list indexed by fold, whatever the execution
mode, so cross-fold aggregation (and its floating-point summation order) is
identical for ``ncores == 1`` and ``ncores > 1``.

The pool lives only for the duration of one ``run_folds`` call and is shut
down on every exit path.  An exception in any fold propagates and aborts the
run; there is no retry and no partial result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import numpy as np
from joblib import Parallel, delayed

from foldwise.adapters.base import PredictMode
from foldwise.cv.criteria import Criterion
from foldwise.cv.results import FoldResult

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class FoldTask:
    """One fold's work order: its number and held-out case indices."""

    fold: int
    indices: np.ndarray


@dataclass(frozen=True)
class FoldContext:
    """Everything a fold worker needs, passed explicitly to each invocation.

    Attributes:
        data:             The full data set.
        y:                Response for all cases.
        criterion:        The CV criterion.
        details:          Whether workers should return coefficients.
        model:            The full-data model (``None`` for selection runs).
        adapter:          Model adapter (``None`` for selection runs).
        mode:             Prediction mode for mixed models.
        procedure:        Selection procedure (selection runs only).
        procedure_kwargs: Extra keyword arguments for ``procedure``.
    """

    data: Any
    y: np.ndarray
    criterion: Criterion
    details: bool
    model: Any = None
    adapter: Any = None
    mode: PredictMode = PredictMode.FIXED_ONLY
    procedure: Optional[Callable[..., Any]] = None
    procedure_kwargs: dict[str, Any] = field(default_factory=dict)


FoldFn = Callable[[FoldContext, FoldTask], FoldResult]


def run_folds(
    fold_fn: FoldFn,
    context: FoldContext,
    tasks: list[FoldTask],
    ncores: int = 1,
    backend: str = "loky",
) -> list[FoldResult]:
    """Run ``fold_fn`` for every task and return results in task order.

    Args:
        fold_fn: Per-fold work function.
        context: Shared read-only run context.
        tasks:   One task per fold, in fold order.
        ncores:  Worker-pool size; ``1`` runs sequentially in-process.
        backend: joblib backend for ``ncores > 1``.
    """
    if ncores < 1:
        raise ValueError(f"ncores must be >= 1, got {ncores}")

    if ncores == 1:
        results = []
        for task in tasks:
            log.debug("Fold %d | held out=%d", task.fold + 1, len(task.indices),
                      extra={"fold": task.fold + 1})
            results.append(fold_fn(context, task))
        return results

    n_jobs = min(ncores, len(tasks))
    log.debug("Dispatching %d folds to %d workers (%s)", len(tasks), n_jobs, backend)
    with Parallel(n_jobs=n_jobs, backend=backend) as parallel:
        results = parallel(delayed(fold_fn)(context, task) for task in tasks)
    return list(results)
