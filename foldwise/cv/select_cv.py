"""
Cross-validation of a model-selection procedure ("meta" CV).

Rather than refitting one fixed model, every fold reruns the whole selection
procedure on the retained cases.  The procedure is a callable

    procedure(data, indices, *, criterion, model, details, seed, **kwargs)

which, for a fold (``indices`` = held-out cases), returns a ``Selection``
(or a mapping with the same keys):

    fit_i        predictions for the held-out cases
    crit_all_i   criterion over all cases under the fold's selected model
    coefficients coefficients of the fold's selected model (optional)
    model_name   identity of the fold's selected model (optional)

Called with ``indices=None`` and ``save_model=...`` it runs on all of the
data and returns a ``Baseline`` (or a bare float criterion), which supplies
``full_data_criterion`` and, when ``save_model`` is set, the selected model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Union

import numpy as np
import pandas as pd

from foldwise.adapters.base import validate_response
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
from foldwise.cv.folds import FoldSpec, build_folds, fold_members
from foldwise.cv.replicate import run_replicates
from foldwise.cv.results import CVResult, FoldResult, ReplicatedCVResult
from foldwise.exceptions import InvalidRequest, MissingResponse

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Selection:
    """What a selection procedure returns for one fold."""

    fit_i: np.ndarray
    crit_all_i: float
    coefficients: Optional[dict[str, float]] = None
    model_name: Optional[str] = None

    @classmethod
    def coerce(cls, value: Union["Selection", Mapping[str, Any]]) -> "Selection":
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            missing = {"fit_i", "crit_all_i"} - set(value)
            if missing:
                raise InvalidRequest(f"selection result is missing {sorted(missing)}")
            return cls(
                fit_i=np.asarray(value["fit_i"]),
                crit_all_i=float(value["crit_all_i"]),
                coefficients=value.get("coefficients"),
                model_name=value.get("model_name"),
            )
        raise InvalidRequest(
            f"procedure must return a Selection or a mapping, got {type(value).__name__}"
        )


@dataclass(frozen=True)
class Baseline:
    """What a selection procedure returns when applied to all the data."""

    criterion: float
    model: Any = None
    coefficients: Optional[dict[str, float]] = None

    @classmethod
    def coerce(cls, value: Union["Baseline", Mapping[str, Any], float]) -> "Baseline":
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            if "criterion" not in value:
                raise InvalidRequest("baseline result is missing 'criterion'")
            return cls(
                criterion=float(value["criterion"]),
                model=value.get("model"),
                coefficients=value.get("coefficients"),
            )
        return cls(criterion=float(value))


def evaluate_response_expression(
    data: pd.DataFrame, expression: Union[str, Callable[[pd.DataFrame], Any]]
) -> Any:
    """Evaluate the response from a column name, a pandas expression, or a callable."""
    if callable(expression):
        return expression(data)
    if expression in data.columns:
        return data[expression]
    return data.eval(expression)


def run_selection(context: FoldContext, task: FoldTask) -> FoldResult:
    """Run the selection procedure with the fold's cases held out."""
    kwargs = dict(context.procedure_kwargs)
    seed = kwargs.pop("seed", None)
    selection = Selection.coerce(
        context.procedure(
            context.data,
            task.indices,
            criterion=context.criterion,
            model=context.model,
            details=context.details,
            seed=seed,
            **kwargs,
        )
    )
    return FoldResult(
        fold=task.fold,
        indices=task.indices,
        held_out_predictions=np.asarray(selection.fit_i),
        crit_all=selection.crit_all_i,
        coefficients=selection.coefficients,
        model_name=selection.model_name,
    )


def cv_select(
    procedure: Callable[..., Any],
    data: pd.DataFrame,
    *,
    criterion: Union[Criterion, Any] = mse,
    criterion_name: Optional[str] = None,
    k: Optional[FoldSpec] = None,
    reps: Optional[int] = None,
    seed: Optional[int] = None,
    model: Any = None,
    adapter: Any = None,
    y_expression: Optional[Union[str, Callable[[pd.DataFrame], Any]]] = None,
    details: Optional[bool] = None,
    confint: Optional[bool] = None,
    level: Optional[float] = None,
    save_model: bool = False,
    ncores: Optional[int] = None,
    backend: Optional[str] = None,
    config: Optional[CVConfig] = None,
    **procedure_kwargs: Any,
) -> Union[CVResult, ReplicatedCVResult]:
    """Cross-validate a model-selection procedure.

    Args:
        procedure:    Selection procedure (see module docstring), e.g.
                      ``foldwise.cv.procedures.select_stepwise``.
        data:         The full data set.
        model:        Optional starting model; with ``adapter`` it supplies
                      the response.
        adapter:      Model adapter for ``model``.
        y_expression: Response as a column name, pandas expression or
                      callable of ``data``; used when there is no model.
        save_model:   Keep the model selected on all the data in
                      ``CVResult.selected_model``.
        **procedure_kwargs: Passed to every call of ``procedure``.

    The remaining arguments are as for ``cv_cases``.

    Raises:
        MissingResponse: Neither ``model`` nor ``y_expression`` given.
        InvalidRequest:  Both given, or ``model`` without ``adapter``.
    """
    crit = as_criterion(criterion, criterion_name)

    if model is not None and y_expression is not None:
        raise InvalidRequest("give either model or y_expression, not both")
    if model is not None:
        if adapter is None:
            raise InvalidRequest("an adapter is required to get the response from model")
        raw_y = adapter.get_response(model)
    elif y_expression is not None:
        raw_y = evaluate_response_expression(data, y_expression)
    else:
        raise MissingResponse("a model or a y_expression is required to define the response")
    y = validate_response(raw_y)
    check_case_count(y, data)
    n = len(y)

    options = RunOptions.resolve(
        n_units=n, n_cases=n, config=config, k=k, reps=reps, seed=seed,
        details=details, confint=confint, level=level, ncores=ncores, backend=backend,
    )
    log.info("Selection CV | procedure=%s | k=%d", getattr(procedure, "__name__", procedure), options.k)

    def run_once(rep_seed: Optional[int]) -> CVResult:
        plan = build_folds(n, options.k, make_rng(rep_seed))
        context = FoldContext(
            data=data, y=y, criterion=crit, details=options.details,
            model=model, adapter=adapter, procedure=procedure,
            procedure_kwargs={**procedure_kwargs, "seed": rep_seed},
        )
        tasks = [FoldTask(fold=j, indices=fold_members(plan, j)) for j in range(plan.k)]
        results = run_folds(run_selection, context, tasks, options.ncores, options.backend)
        assembly = assemble_folds(results, y, crit, options.details, model_names=True)

        baseline = Baseline.coerce(
            procedure(
                data,
                None,
                criterion=crit,
                model=model,
                details=options.details,
                seed=rep_seed,
                save_model=save_model,
                **procedure_kwargs,
            )
        )
        return finalize_result(
            y=y,
            assembly=assembly,
            fold_sizes=plan.sizes,
            full_data_criterion=baseline.criterion,
            criterion=crit,
            options=options,
            seed=rep_seed,
            coefficients=baseline.coefficients,
            selected_model=baseline.model if save_model else None,
        )

    return run_replicates(run_once, options.reps, options.seed, options.seed_max)
