"""
Result types for cross-validation runs.

``CVResult`` is the outcome of one CV run; ``ReplicatedCVResult`` is the
ordered sequence of results of a replicated run, each computed with its own
random folds.  Both are immutable; ``to_dict()`` produces the nested mapping
whose field names are the stable external contract.

``FoldResult`` is the per-fold payload returned by fold workers.  It is
consumed immediately by the orchestrator and only its criterion,
coefficients and model name survive (in ``FoldDetails``) when details are
requested.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Optional

import numpy as np

from foldwise.cv.estimator import ConfidenceInterval


@dataclass(frozen=True)
class FoldResult:
    """What a fold worker hands back.

    Attributes:
        fold:                 0-based fold number.
        indices:              Held-out case indices.
        held_out_predictions: Predictions for ``indices`` from the refit model.
        full_predictions:     Predictions for all cases from the refit model;
                              ``None`` when the fold supplies ``crit_all``.
        crit_all:             Criterion over all cases under this fold's refit,
                              when computed by the worker itself.
        coefficients:         Refit coefficients (only when details requested).
        model_name:           Identity of the selected model, if any.
    """

    fold: int
    indices: np.ndarray
    held_out_predictions: np.ndarray
    full_predictions: Optional[np.ndarray] = None
    crit_all: Optional[float] = None
    coefficients: Optional[dict[str, float]] = None
    model_name: Optional[str] = None


@dataclass(frozen=True)
class FoldDetails:
    """Per-fold criterion (held-out cases only), coefficients and model names."""

    criterion: tuple[float, ...]
    coefficients: tuple[Optional[dict[str, float]], ...]
    model_names: Optional[tuple[str, ...]] = None


@dataclass(frozen=True)
class ClusterInfo:
    """Cluster variables and cluster count of a cluster-based CV run."""

    variables: tuple[str, ...]
    n_clusters: int


@dataclass(frozen=True)
class CVResult:
    """Outcome of one cross-validation run.

    ``adjusted_cv_criterion`` and ``standard_error`` are present iff the
    criterion has a casewise loss; ``confidence_interval`` additionally
    requires ``confint``.  ``seed`` is ``None`` iff the run was leave-one-out.
    """

    cv_criterion: float
    full_data_criterion: float
    k: int
    criterion_name: str
    n_cases: int
    adjusted_cv_criterion: Optional[float] = None
    confidence_interval: Optional[ConfidenceInterval] = None
    standard_error: Optional[float] = None
    seed: Optional[int] = None
    coefficients: Optional[dict[str, float]] = None
    details: Optional[FoldDetails] = None
    cluster_info: Optional[ClusterInfo] = None
    method: Optional[str] = None
    selected_model: Any = None
    notes: tuple[str, ...] = ()

    @property
    def is_loo(self) -> bool:
        n_units = self.cluster_info.n_clusters if self.cluster_info else self.n_cases
        return self.k == n_units

    def to_dict(self) -> dict[str, Any]:
        """Nested mapping of named fields; ``selected_model`` is left out."""
        payload = {
            f.name: getattr(self, f.name) for f in fields(self) if f.name != "selected_model"
        }
        for name in ("confidence_interval", "details", "cluster_info"):
            if payload[name] is not None:
                payload[name] = asdict(payload[name])
        payload["k"] = "n" if self.is_loo else self.k
        payload["notes"] = list(self.notes)
        return payload


@dataclass(frozen=True)
class ReplicationSummary:
    """Mean, standard deviation and range of the criteria across replicates."""

    reps: int
    cv_criterion_mean: float
    cv_criterion_sd: float
    cv_criterion_range: tuple[float, float]
    adjusted_cv_criterion_mean: Optional[float] = None
    adjusted_cv_criterion_sd: Optional[float] = None
    adjusted_cv_criterion_range: Optional[tuple[float, float]] = None


def _mean_sd_range(values: list[float]) -> tuple[float, float, tuple[float, float]]:
    arr = np.asarray(values, dtype=float)
    sd = float(np.std(arr, ddof=1)) if arr.size > 1 else math.nan
    return float(arr.mean()), sd, (float(arr.min()), float(arr.max()))


def summarize_reps(results: tuple[CVResult, ...] | list[CVResult]) -> ReplicationSummary:
    """Summarize replicated CV results; a pure function of ``results``."""
    if not results:
        raise ValueError("cannot summarize an empty set of replicates")
    cv_mean, cv_sd, cv_range = _mean_sd_range([r.cv_criterion for r in results])

    adj_mean = adj_sd = adj_range = None
    if results[0].adjusted_cv_criterion is not None:
        adj_mean, adj_sd, adj_range = _mean_sd_range(
            [r.adjusted_cv_criterion for r in results]
        )

    return ReplicationSummary(
        reps=len(results),
        cv_criterion_mean=cv_mean,
        cv_criterion_sd=cv_sd,
        cv_criterion_range=cv_range,
        adjusted_cv_criterion_mean=adj_mean,
        adjusted_cv_criterion_sd=adj_sd,
        adjusted_cv_criterion_range=adj_range,
    )


@dataclass(frozen=True)
class ReplicatedCVResult:
    """Ordered CV results of a replicated run, one per replicate."""

    replicates: tuple[CVResult, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.replicates)

    def __iter__(self):
        return iter(self.replicates)

    def __getitem__(self, i: int) -> CVResult:
        return self.replicates[i]

    @property
    def criterion_name(self) -> str:
        return self.replicates[0].criterion_name

    def summarize(self) -> ReplicationSummary:
        return summarize_reps(self.replicates)

    def to_dict(self) -> dict[str, Any]:
        return {
            "replicates": [r.to_dict() for r in self.replicates],
            "summary": asdict(self.summarize()),
        }
