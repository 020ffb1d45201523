"""
Bias adjustment and confidence interval for a CV criterion.

Naive k-fold CV overstates the error of the model fit to all ``n`` cases,
because each fold's model saw only ``n - n_j`` cases.  With a casewise loss
the optimism can be estimated from the folds themselves:

    adjusted = cv + full - sum_j(n_j * crit_all_j) / n

where ``crit_all_j`` is the criterion over *all* cases using the model refit
without fold ``j``.  The standard error is that of the mean casewise loss of
the out-of-fold predictions,

    se = sd(loss(y, yhat)) / sqrt(n)

and the interval is ``adjusted +/- z * se`` with ``z`` the two-sided normal
quantile for ``level``.  The interval under-covers for small ``n``; callers
request it by default only from 400 cases up.

Without a casewise loss none of these quantities is defined and all are
returned as ``None``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from scipy.stats import norm

from foldwise.cv.criteria import Criterion


@dataclass(frozen=True)
class ConfidenceInterval:
    """Two-sided normal-theory interval for the adjusted criterion."""

    lower: float
    upper: float
    level: float


@dataclass(frozen=True)
class BiasEstimate:
    """Output of ``estimate_bias``; every field is ``None`` for non-casewise criteria."""

    adjusted: Optional[float] = None
    standard_error: Optional[float] = None
    confidence_interval: Optional[ConfidenceInterval] = None


def normal_quantile(level: float) -> float:
    """Two-sided standard-normal critical value for ``level`` (1.959964 for 0.95)."""
    if not 0.0 < level < 1.0:
        raise ValueError(f"level must be in (0, 1), got {level}")
    return float(norm.ppf(1.0 - (1.0 - level) / 2.0))


def estimate_bias(
    y: np.ndarray,
    yhat: np.ndarray,
    cv_criterion: float,
    full_data_criterion: float,
    crit_all: Sequence[float],
    fold_sizes: Sequence[int],
    criterion: Criterion,
    level: float = 0.95,
    confint: bool = True,
) -> BiasEstimate:
    """Compute the bias-adjusted criterion, its standard error and interval.

    Args:
        y:                   Observed response.
        yhat:                Assembled out-of-fold predictions.
        cv_criterion:        ``criterion(y, yhat)``.
        full_data_criterion: Criterion of the full-data model on all cases.
        crit_all:            Per fold, the criterion over all cases using the
                             model refit without that fold.
        fold_sizes:          Per fold, the number of held-out units (weights).
        criterion:           The criterion; must carry ``casewise_loss``.
        level:               Confidence level for the interval.
        confint:             Whether to compute the interval.
    """
    loss = criterion.casewise_loss
    if loss is None:
        return BiasEstimate()

    weights = np.asarray(fold_sizes, dtype=float)
    crit_all = np.asarray(crit_all, dtype=float)
    adjusted = float(cv_criterion + full_data_criterion - np.average(crit_all, weights=weights))

    losses = np.asarray(loss(np.asarray(y), np.asarray(yhat)), dtype=float)
    n = losses.size
    se = float(np.std(losses, ddof=1) / math.sqrt(n)) if n > 1 else float("nan")

    interval = None
    if confint:
        halfwidth = normal_quantile(level) * se
        interval = ConfidenceInterval(
            lower=adjusted - halfwidth,
            upper=adjusted + halfwidth,
            level=level,
        )
    return BiasEstimate(adjusted=adjusted, standard_error=se, confidence_interval=interval)
