"""
Case-level cross-validation (independent observations).

For each fold the model is refit without the fold's cases and the refit
model predicts every case.  The fold's cases receive their held-out
predictions in the out-of-fold vector ``yhat``; the all-case predictions give
the fold's ``crit_all`` for the bias adjustment.

The per-fold step is, in order of precedence:

  1. the ``refit_and_predict`` argument,
  2. the adapter's own ``refit_and_predict`` method (e.g. a closed-form
     leave-one-out update),
  3. ``refit_cases``: ``adapter.refit_excluding`` then ``adapter.predict``.

Each has the signature ``fn(context: FoldContext, task: FoldTask) -> FoldResult``.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Union

import numpy as np
import pandas as pd

from foldwise.adapters.base import check_formula, validate_response
from foldwise.config import CVConfig
from foldwise.cv.criteria import Criterion, as_criterion, mse
from foldwise.cv.dispatch import FoldContext, FoldFn, FoldTask, run_folds
from foldwise.cv.engine import (
    RunOptions,
    assemble_folds,
    check_case_count,
    finalize_result,
    make_rng,
)
from foldwise.cv.folds import FoldSpec, build_folds, fold_members
from foldwise.cv.replicate import run_replicates
from foldwise.cv.results import CVResult, FoldResult, ReplicatedCVResult

log = logging.getLogger(__name__)


def refit_cases(context: FoldContext, task: FoldTask) -> FoldResult:
    """Refit without the fold's cases and predict all cases."""
    adapter = context.adapter
    refit = adapter.refit_excluding(context.model, context.data, task.indices)
    full = np.asarray(adapter.predict(refit, context.data))
    return FoldResult(
        fold=task.fold,
        indices=task.indices,
        held_out_predictions=full[task.indices],
        full_predictions=full,
        coefficients=adapter.get_coefficients(refit) if context.details else None,
    )


def cv_cases(
    model: Any,
    data: pd.DataFrame,
    *,
    adapter: Any,
    criterion: Union[Criterion, Any] = mse,
    criterion_name: Optional[str] = None,
    k: Optional[FoldSpec] = None,
    reps: Optional[int] = None,
    seed: Optional[int] = None,
    details: Optional[bool] = None,
    confint: Optional[bool] = None,
    level: Optional[float] = None,
    ncores: Optional[int] = None,
    backend: Optional[str] = None,
    refit_and_predict: Optional[FoldFn] = None,
    method: Optional[str] = None,
    config: Optional[CVConfig] = None,
) -> Union[CVResult, ReplicatedCVResult]:
    """Cross-validate a model by refitting with each fold of cases removed.

    Args:
        model:             The model fit to all of ``data``.
        data:              The data the model was fit to.
        adapter:           Model adapter (see ``foldwise.adapters.base``).
        criterion:         CV criterion; a ``Criterion`` or ``f(y, yhat)``.
        criterion_name:    Display name overriding the criterion's own.
        k:                 Number of folds, or ``"loo"`` / ``"n"``.
        reps:              Number of replicates with different random folds.
        seed:              Seed for the fold permutation; drawn if omitted.
        details:           Keep per-fold criteria and coefficients
                           (default: ``k <= 10``).
        confint:           Compute the confidence interval
                           (default: ``n >= 400``).
        level:             Confidence level (default 0.95).
        ncores:            Worker-pool size; 1 is sequential.
        backend:           joblib backend for ``ncores > 1``.
        refit_and_predict: Custom per-fold step.
        method:            Label recorded in the result (e.g. ``"hatvalues"``).
        config:            ``CVConfig`` supplying the defaults above.

    Returns:
        ``CVResult``, or ``ReplicatedCVResult`` when ``reps > 1``.

    Raises:
        InvalidFoldSpec:    Bad ``k``.
        InvalidRequest:     ``reps > 1`` with leave-one-out, and similar.
        NonVectorResponse:  Response is not a vector.
        NonNumericResponse: Response is not numeric.
    """
    crit = as_criterion(criterion, criterion_name)
    check_formula(adapter, model, data.columns)
    y = validate_response(adapter.get_response(model))
    check_case_count(y, data)
    n = len(y)

    options = RunOptions.resolve(
        n_units=n, n_cases=n, config=config, k=k, reps=reps, seed=seed,
        details=details, confint=confint, level=level, ncores=ncores, backend=backend,
    )

    full_data_criterion = crit(y, adapter.predict(model, data))
    coefficients = adapter.get_coefficients(model) if options.details else None
    context = FoldContext(
        data=data, y=y, criterion=crit, details=options.details,
        model=model, adapter=adapter,
    )
    fold_fn = refit_and_predict or getattr(adapter, "refit_and_predict", None) or refit_cases

    def run_once(rep_seed: Optional[int]) -> CVResult:
        plan = build_folds(n, options.k, make_rng(rep_seed))
        tasks = [FoldTask(fold=j, indices=fold_members(plan, j)) for j in range(plan.k)]
        results = run_folds(fold_fn, context, tasks, options.ncores, options.backend)
        assembly = assemble_folds(results, y, crit, options.details)
        return finalize_result(
            y=y,
            assembly=assembly,
            fold_sizes=plan.sizes,
            full_data_criterion=full_data_criterion,
            criterion=crit,
            options=options,
            seed=rep_seed,
            coefficients=coefficients,
            method=method,
        )

    return run_replicates(run_once, options.reps, options.seed, options.seed_max)
