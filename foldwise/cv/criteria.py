"""
Cross-validation criteria (cost / lack-of-fit functions).

A criterion maps ``(y, yhat)`` to a single number; smaller is better.

Casewise decomposition
----------------------
Some criteria are the mean of a per-case loss:

    criterion(y, yhat) == mean(loss(y_i, yhat_i))

Only for those is the bias adjustment and its standard error well defined, so
a ``Criterion`` carries its ``casewise_loss`` when it has one.  ``rmse`` (a
square root of a mean), ``median_abs_error`` and ``auc`` do not decompose and
leave ``casewise_loss`` unset; CV results for them have no adjusted criterion
and no confidence interval.

Plain callables are accepted anywhere a criterion is expected; ``as_criterion``
wraps them, picking up a ``casewise_loss`` attribute if the function has one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
from scipy.stats import rankdata

LossFn = Callable[[np.ndarray, np.ndarray], np.ndarray]
CriterionFn = Callable[[np.ndarray, np.ndarray], float]


@dataclass(frozen=True)
class Criterion:
    """A named CV criterion with an optional casewise loss.

    Attributes:
        name:          Display name stored in CV results.
        fn:            ``fn(y, yhat) -> float``.
        casewise_loss: ``loss(y, yhat) -> array`` whose mean equals ``fn``.
    """

    name: str
    fn: CriterionFn
    casewise_loss: Optional[LossFn] = None

    def __call__(self, y, yhat) -> float:
        return float(self.fn(np.asarray(y), np.asarray(yhat)))

    @property
    def is_casewise(self) -> bool:
        return self.casewise_loss is not None


def as_criterion(criterion, name: Optional[str] = None) -> Criterion:
    """Coerce a ``Criterion`` or plain callable to a ``Criterion``.

    Args:
        criterion: A ``Criterion`` or a ``f(y, yhat) -> float`` callable.
        name:      Overrides the display name.
    """
    if isinstance(criterion, Criterion):
        if name is None or name == criterion.name:
            return criterion
        return Criterion(name=name, fn=criterion.fn, casewise_loss=criterion.casewise_loss)
    if not callable(criterion):
        raise TypeError(f"criterion must be callable, got {type(criterion).__name__}")
    return Criterion(
        name=name or getattr(criterion, "__name__", "criterion"),
        fn=criterion,
        casewise_loss=getattr(criterion, "casewise_loss", None),
    )


# ── Casewise losses ───────────────────────────────────────────────────────────


def squared_error(y: np.ndarray, yhat: np.ndarray) -> np.ndarray:
    return (np.asarray(y, dtype=float) - np.asarray(yhat, dtype=float)) ** 2


def absolute_error(y: np.ndarray, yhat: np.ndarray) -> np.ndarray:
    return np.abs(np.asarray(y, dtype=float) - np.asarray(yhat, dtype=float))


def misclassification(y: np.ndarray, yhat: np.ndarray) -> np.ndarray:
    """1 where the rounded probability disagrees with the 0/1 response."""
    return (np.asarray(y) != np.round(np.asarray(yhat, dtype=float))).astype(float)


# ── Criteria ──────────────────────────────────────────────────────────────────


def _mse(y: np.ndarray, yhat: np.ndarray) -> float:
    return float(np.mean(squared_error(y, yhat)))


def _mae(y: np.ndarray, yhat: np.ndarray) -> float:
    return float(np.mean(absolute_error(y, yhat)))


def _rmse(y: np.ndarray, yhat: np.ndarray) -> float:
    return float(np.sqrt(_mse(y, yhat)))


def _median_abs_error(y: np.ndarray, yhat: np.ndarray) -> float:
    return float(np.median(absolute_error(y, yhat)))


def _bayes_rule(y: np.ndarray, yhat: np.ndarray) -> float:
    """Proportion of cases misclassified by the 0.5 probability threshold."""
    y = np.asarray(y)
    yhat = np.asarray(yhat, dtype=float)
    if not np.all(np.isin(y, (0, 1))):
        raise ValueError("response values must be 0 or 1")
    if np.any((yhat < 0) | (yhat > 1)):
        raise ValueError("fitted values outside of interval [0, 1]")
    return float(np.mean(misclassification(y, yhat)))


def _auc(y: np.ndarray, yhat: np.ndarray) -> float:
    """1 - area under the ROC curve, from the Mann-Whitney rank statistic.

    Reported as a cost so that, like the other criteria, smaller is better.
    """
    y = np.asarray(y)
    scores = np.asarray(yhat, dtype=float)
    positives = y == 1
    n_pos = int(positives.sum())
    n_neg = int((~positives).sum())
    if n_pos == 0 or n_neg == 0:
        raise ValueError("AUC needs both 0 and 1 responses")
    ranks = rankdata(scores)
    auc = (ranks[positives].sum() - n_pos * (n_pos + 1) / 2) / (n_pos * n_neg)
    return float(1.0 - auc)


mse = Criterion("mse", _mse, squared_error)
mae = Criterion("mae", _mae, absolute_error)
rmse = Criterion("rmse", _rmse)
median_abs_error = Criterion("median_abs_error", _median_abs_error)
bayes_rule = Criterion("bayes_rule", _bayes_rule, misclassification)
auc = Criterion("auc", _auc)

CRITERIA: dict[str, Criterion] = {
    c.name: c for c in (mse, mae, rmse, median_abs_error, bayes_rule, auc)
}


def get_criterion(name: str) -> Criterion:
    """Look up a built-in criterion by name (``-`` and ``_`` interchangeable)."""
    key = name.lower().replace("-", "_")
    try:
        return CRITERIA[key]
    except KeyError:
        raise ValueError(
            f"Unknown criterion '{name}'. Must be one of {sorted(CRITERIA)}."
        ) from None
