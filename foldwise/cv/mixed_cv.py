"""
Cross-validation for mixed-effects (hierarchical) models.

Two granularities:

  Cluster mode (``cluster_variables`` given)
      Folds are built over the unique combinations of the cluster variables.
      Each fold removes every case of its clusters, the model is refit, and
      all cases are predicted from the fixed effects alone: the held-out
      clusters are "new" clusters whose random effects are unknown.
      ``k`` defaults to the number of clusters (leave-one-cluster-out).

  Case mode (no cluster variables)
      Folds are built over individual cases.  The held-out cases belong to
      clusters the refit model has seen, so predictions include the
      estimated random effects (BLUPs).  ``k`` defaults to ``CVConfig.k``.

The bias adjustment weights each fold's all-case criterion by the number of
units in the fold, i.e. clusters in cluster mode and cases in case mode.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence, Union

import numpy as np
import pandas as pd

from foldwise.adapters.base import PredictMode, check_formula, validate_response
from foldwise.config import CVConfig
from foldwise.cv.criteria import Criterion, as_criterion, mse
from foldwise.cv.dispatch import FoldContext, FoldTask, run_folds
from foldwise.cv.engine import (
    RunOptions,
    assemble_folds,
    check_case_count,
    finalize_result,
    make_rng,
)
from foldwise.cv.folds import (
    FoldSpec,
    build_cluster_folds,
    build_folds,
    cluster_cases,
    define_clusters,
    fold_members,
)
from foldwise.cv.replicate import run_replicates
from foldwise.cv.results import ClusterInfo, CVResult, FoldResult, ReplicatedCVResult

log = logging.getLogger(__name__)


def refit_mixed(context: FoldContext, task: FoldTask) -> FoldResult:
    """Refit without the held-out cases and predict all cases in ``context.mode``."""
    adapter = context.adapter
    refit = adapter.refit_excluding(context.model, context.data, task.indices)
    full = np.asarray(adapter.predict(refit, context.data, context.mode))
    return FoldResult(
        fold=task.fold,
        indices=task.indices,
        held_out_predictions=full[task.indices],
        full_predictions=full,
        coefficients=adapter.fixed_effects(refit) if context.details else None,
    )


def cv_mixed(
    model: Any,
    data: pd.DataFrame,
    *,
    adapter: Any,
    cluster_variables: Optional[Union[str, Sequence[str]]] = None,
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
    config: Optional[CVConfig] = None,
) -> Union[CVResult, ReplicatedCVResult]:
    """Cross-validate a mixed-effects model by clusters or by cases.

    Args:
        model:             The mixed model fit to all of ``data``.
        data:              The data the model was fit to.
        adapter:           A ``MixedModelAdapter``.
        cluster_variables: Column name(s) defining clusters; ``None`` for
                           case mode.
        k:                 Number of folds; defaults to the number of
                           clusters (cluster mode) or ``CVConfig.k``.

    The remaining arguments are as for ``cv_cases``.

    Raises:
        KeyError:        A cluster variable is not a column of ``data``.
        InvalidFoldSpec: ``k`` outside ``[2, number of units]``.
        InvalidRequest:  ``reps > 1`` with leave-one-out.
    """
    crit = as_criterion(criterion, criterion_name)
    check_formula(adapter, model, data.columns)
    y = validate_response(adapter.get_response(model))
    check_case_count(y, data)

    if isinstance(cluster_variables, str):
        cluster_variables = [cluster_variables]

    if cluster_variables:
        variables = tuple(cluster_variables)
        clusters, codes = define_clusters(data, variables)
        n_units = len(clusters)
        default_k: Optional[FoldSpec] = n_units
        mode = PredictMode.FIXED_ONLY
        cluster_info: Optional[ClusterInfo] = ClusterInfo(variables, n_units)
        log.info("Cluster CV | variables=%s | clusters=%d", list(variables), n_units)
    else:
        variables = ()
        clusters, codes = None, None
        n_units = len(y)
        default_k = None
        mode = PredictMode.FIXED_AND_RANDOM
        cluster_info = None

    options = RunOptions.resolve(
        n_units=n_units, n_cases=len(y), config=config, k=k, default_k=default_k,
        reps=reps, seed=seed, details=details, confint=confint, level=level,
        ncores=ncores, backend=backend,
    )

    full_data_criterion = crit(y, adapter.predict(model, data, mode))
    coefficients = adapter.fixed_effects(model) if options.details else None
    context = FoldContext(
        data=data, y=y, criterion=crit, details=options.details,
        model=model, adapter=adapter, mode=mode,
    )

    def run_once(rep_seed: Optional[int]) -> CVResult:
        rng = make_rng(rep_seed)
        if cluster_info is not None:
            plan = build_cluster_folds(
                data, variables, options.k, rng, clusters=clusters, codes=codes
            )
            folds = plan.folds
            tasks = [FoldTask(fold=j, indices=cluster_cases(plan, j)) for j in range(folds.k)]
        else:
            folds = build_folds(n_units, options.k, rng)
            tasks = [FoldTask(fold=j, indices=fold_members(folds, j)) for j in range(folds.k)]
        results = run_folds(refit_mixed, context, tasks, options.ncores, options.backend)
        assembly = assemble_folds(results, y, crit, options.details)
        return finalize_result(
            y=y,
            assembly=assembly,
            fold_sizes=folds.sizes,
            full_data_criterion=full_data_criterion,
            criterion=crit,
            options=options,
            seed=rep_seed,
            coefficients=coefficients,
            cluster_info=cluster_info,
        )

    return run_replicates(run_once, options.reps, options.seed, options.seed_max)
