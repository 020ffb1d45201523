"""
Pieces shared by the three CV orchestrators.

``RunOptions.resolve`` turns caller arguments plus ``CVConfig`` defaults into
the settings of one run, validating them before any fold work starts.
``assemble_folds`` scatters fold results into the out-of-fold prediction
vector in fold order, and ``finalize_result`` applies the bias/CI estimator
and builds the immutable ``CVResult``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import numpy as np

from foldwise.config import CVConfig
from foldwise.cv.criteria import Criterion
from foldwise.cv.estimator import estimate_bias
from foldwise.cv.folds import FoldSpec, resolve_k, resolve_seed
from foldwise.cv.results import ClusterInfo, CVResult, FoldDetails, FoldResult
from foldwise.exceptions import InvalidRequest

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunOptions:
    """Validated settings of one CV run."""

    k: int
    reps: int
    seed: Optional[int]
    details: bool
    confint: bool
    level: float
    ncores: int
    backend: str
    seed_max: int

    @classmethod
    def resolve(
        cls,
        *,
        n_units: int,
        n_cases: int,
        config: Optional[CVConfig],
        k: Optional[FoldSpec],
        default_k: Optional[FoldSpec] = None,
        reps: Optional[int],
        seed: Optional[int],
        details: Optional[bool],
        confint: Optional[bool],
        level: Optional[float],
        ncores: Optional[int],
        backend: Optional[str],
    ) -> "RunOptions":
        """Fill defaults from ``config`` and validate.

        Args:
            n_units: Number of units split into folds (cases or clusters).
            n_cases: Number of cases (drives the ``confint`` default).

        Raises:
            InvalidFoldSpec: Bad ``k``.
            InvalidRequest:  ``reps`` < 1, ``reps > 1`` with leave-one-out,
                             bad ``level`` / ``ncores``.
        """
        cfg = config or CVConfig()
        if k is None:
            k = cfg.k if default_k is None else default_k
        k = resolve_k(k, n_units)
        reps = cfg.reps if reps is None else int(reps)
        if reps < 1:
            raise InvalidRequest(f"reps must be >= 1, got {reps}")
        level = cfg.level if level is None else float(level)
        if not 0.0 < level < 1.0:
            raise InvalidRequest(f"level must be in (0, 1), got {level}")
        ncores = cfg.ncores if ncores is None else int(ncores)
        if ncores < 1:
            raise InvalidRequest(f"ncores must be >= 1, got {ncores}")

        seed = resolve_seed(k, n_units, reps, seed, cfg.seed_max, cfg.strict_seed)

        return cls(
            k=k,
            reps=reps,
            seed=seed,
            details=(k <= cfg.details_max_k) if details is None else bool(details),
            confint=(n_cases >= cfg.confint_min_cases) if confint is None else bool(confint),
            level=level,
            ncores=ncores,
            backend=backend or cfg.backend,
            seed_max=cfg.seed_max,
        )


def make_rng(seed: Optional[int]) -> Optional[np.random.Generator]:
    """Generator for one run's fold permutation; ``None`` for leave-one-out."""
    return None if seed is None else np.random.default_rng(seed)


def check_case_count(y: np.ndarray, data: Any) -> None:
    if data is not None and len(data) != len(y):
        raise InvalidRequest(
            f"response has {len(y)} cases but the data has {len(data)} rows"
        )


@dataclass(frozen=True)
class FoldAssembly:
    """Out-of-fold predictions and per-fold quantities, in fold order."""

    yhat: np.ndarray
    crit_all: tuple[float, ...]
    details: Optional[FoldDetails]


def _fold_criterion(criterion: Criterion, y: np.ndarray, yhat: np.ndarray, fold: int) -> float:
    """Criterion over one fold's held-out cases; NaN where it is undefined there.

    A fold can be too small for some criteria (e.g. AUC on a single-class
    fold); the per-fold figure is informational, so the run goes on.
    """
    try:
        return criterion(y, yhat)
    except ValueError as exc:
        log.debug("Fold %d | %s undefined: %s", fold + 1, criterion.name, exc)
        return float("nan")


def assemble_folds(
    results: Sequence[FoldResult],
    y: np.ndarray,
    criterion: Criterion,
    details: bool,
    model_names: bool = False,
) -> FoldAssembly:
    """Scatter held-out predictions into ``yhat`` and collect per-fold criteria."""
    yhat = np.full(y.shape[0], np.nan)
    crit_all: list[float] = []
    fold_crit: list[float] = []
    fold_coef: list[Optional[dict[str, float]]] = []
    fold_names: list[str] = []

    for res in results:
        idx = np.asarray(res.indices, dtype=np.int64)
        held_out = np.asarray(res.held_out_predictions)
        if held_out.shape[0] != idx.shape[0]:
            raise ValueError(
                f"fold {res.fold + 1}: {held_out.shape[0]} predictions for "
                f"{idx.shape[0]} held-out cases"
            )
        yhat[idx] = held_out

        if res.crit_all is not None:
            crit_all.append(float(res.crit_all))
        else:
            crit_all.append(criterion(y, res.full_predictions))

        if details:
            fold_crit.append(_fold_criterion(criterion, y[idx], yhat[idx], res.fold))
            fold_coef.append(res.coefficients)
            fold_names.append(res.model_name or "")

    fold_details = None
    if details:
        fold_details = FoldDetails(
            criterion=tuple(fold_crit),
            coefficients=tuple(fold_coef),
            model_names=tuple(fold_names) if model_names else None,
        )
    return FoldAssembly(yhat=yhat, crit_all=tuple(crit_all), details=fold_details)


def finalize_result(
    *,
    y: np.ndarray,
    assembly: FoldAssembly,
    fold_sizes: Sequence[int],
    full_data_criterion: float,
    criterion: Criterion,
    options: RunOptions,
    seed: Optional[int],
    coefficients: Optional[dict[str, float]] = None,
    cluster_info: Optional[ClusterInfo] = None,
    method: Optional[str] = None,
    selected_model: Any = None,
) -> CVResult:
    """Apply the bias/CI estimator and build the ``CVResult``."""
    cv_criterion = criterion(y, assembly.yhat)
    estimate = estimate_bias(
        y=y,
        yhat=assembly.yhat,
        cv_criterion=cv_criterion,
        full_data_criterion=full_data_criterion,
        crit_all=assembly.crit_all,
        fold_sizes=fold_sizes,
        criterion=criterion,
        level=options.level,
        confint=options.confint,
    )

    notes: list[str] = []
    if not criterion.is_casewise:
        note = (
            f"criterion '{criterion.name}' has no casewise loss; "
            "bias adjustment and confidence interval omitted"
        )
        log.warning(note)
        notes.append(note)

    log.info(
        "CV complete | k=%d | %s=%.6g | adjusted=%s",
        options.k, criterion.name, cv_criterion,
        "n/a" if estimate.adjusted is None else f"{estimate.adjusted:.6g}",
        extra={"k": options.k, "seed": seed, "criterion": criterion.name},
    )

    return CVResult(
        cv_criterion=cv_criterion,
        full_data_criterion=float(full_data_criterion),
        k=options.k,
        criterion_name=criterion.name,
        n_cases=int(y.shape[0]),
        adjusted_cv_criterion=estimate.adjusted,
        confidence_interval=estimate.confidence_interval,
        standard_error=estimate.standard_error,
        seed=seed,
        coefficients=coefficients if options.details else None,
        details=assembly.details,
        cluster_info=cluster_info,
        method=method,
        selected_model=selected_model,
        notes=tuple(notes),
    )
