"""
Model-selection procedures for ``cv_select``.

Both follow the procedure contract of ``foldwise.cv.select_cv``: called with
fold indices they select on the retained cases and return a ``Selection``;
called with ``indices=None`` they select on all cases and return a
``Baseline``.

select_stepwise
    Backward elimination for an OLS formula.  Starting from the full model,
    the term whose removal lowers ``-2·loglik + penalty·p`` the most is
    dropped, until no removal helps.  ``penalty=2`` is AIC and
    ``penalty=log(n)`` is BIC.  A term is only a candidate for removal when
    no remaining higher-order term contains it (marginality).

select_model_list
    Chooses among candidate models by their own cross-validated criterion
    (bias-adjusted where available).  Cross-validating this procedure with
    ``cv_select`` gives an honest estimate of the error of "pick the best
    model by CV", which the winning model's own CV criterion understates.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import numpy as np
import pandas as pd
import patsy
import statsmodels.formula.api as smf

from foldwise.adapters.statsmodels_adapters import drop_rows, evaluate_formula_response
from foldwise.cv.case_cv import cv_cases
from foldwise.cv.criteria import Criterion, mse
from foldwise.cv.folds import FoldSpec, resolve_k
from foldwise.cv.select_cv import Baseline, Selection
from foldwise.exceptions import InvalidRequest

log = logging.getLogger(__name__)


# ── Stepwise ──────────────────────────────────────────────────────────────────


def _penalized_fit(result: Any, penalty: float) -> float:
    return float(-2.0 * result.llf + penalty * (result.df_model + result.k_constant))


def _removable(terms: list[patsy.Term]) -> list[patsy.Term]:
    """Terms not contained in any other remaining term (intercept excluded)."""
    out = []
    for term in terms:
        if term == patsy.INTERCEPT:
            continue
        factors = set(term.factors)
        if not any(other is not term and factors < set(other.factors) for other in terms):
            out.append(term)
    return out


def _formula(lhs: list[patsy.Term], rhs: list[patsy.Term]) -> str:
    return patsy.ModelDesc(lhs, rhs).describe()


def backward_eliminate(formula: str, data: pd.DataFrame, penalty: float = 2.0) -> tuple[str, Any]:
    """Backward elimination from ``formula``; returns ``(formula, fit)``."""
    desc = patsy.ModelDesc.from_formula(formula)
    lhs, terms = list(desc.lhs_termlist), list(desc.rhs_termlist)
    current = _formula(lhs, terms)
    fit = smf.ols(current, data=data).fit()
    score = _penalized_fit(fit, penalty)

    while True:
        best = None
        for term in _removable(terms):
            reduced = [t for t in terms if t != term]
            candidate = _formula(lhs, reduced)
            candidate_fit = smf.ols(candidate, data=data).fit()
            candidate_score = _penalized_fit(candidate_fit, penalty)
            if candidate_score < score and (best is None or candidate_score < best[0]):
                best = (candidate_score, reduced, candidate, candidate_fit)
        if best is None:
            break
        score, terms, current, fit = best
        log.debug("Stepwise | dropped to %s | score=%.4f", current, score)

    return current, fit


def select_stepwise(
    data: pd.DataFrame,
    indices: Optional[np.ndarray] = None,
    *,
    formula: str,
    criterion: Criterion = mse,
    details: bool = True,
    save_model: bool = False,
    penalty: float = 2.0,
    model: Any = None,
    seed: Optional[int] = None,
    **kwargs: Any,
) -> Selection | Baseline:
    """Backward stepwise selection of an OLS model.

    Args:
        formula: The largest model considered, e.g. ``"y ~ x1 + x2 + x3"``.
        penalty: Per-parameter penalty (2 for AIC).
        model, seed: Accepted for the procedure contract; unused.
    """
    y = evaluate_formula_response(formula, data)

    if indices is None:
        _, fit = backward_eliminate(formula, data, penalty)
        return Baseline(
            criterion=criterion(y, np.asarray(fit.predict(data), dtype=float)),
            model=fit if save_model else None,
            coefficients={str(k): float(v) for k, v in fit.params.items()},
        )

    indices = np.asarray(indices, dtype=np.int64)
    selected, fit = backward_eliminate(formula, drop_rows(data, indices), penalty)
    full = np.asarray(fit.predict(data), dtype=float)
    return Selection(
        fit_i=full[indices],
        crit_all_i=criterion(y, full),
        coefficients={str(k): float(v) for k, v in fit.params.items()} if details else None,
        model_name=selected,
    )


# ── Model list ────────────────────────────────────────────────────────────────


def _candidate_name(adapter: Any, position: int) -> str:
    return str(getattr(adapter, "name", None) or f"model.{position + 1}")


def _choose(
    candidates: Sequence[Any],
    data: pd.DataFrame,
    criterion: Criterion,
    k: FoldSpec,
    seed: Optional[int],
) -> tuple[int, Any, float]:
    """Fit and cross-validate every candidate on ``data``; return the best."""
    n = len(data)
    inner_seed = None if resolve_k(k, n) == n else seed
    best: Optional[tuple[int, Any, float]] = None
    for position, adapter in enumerate(candidates):
        fit = adapter.fit(data)
        result = cv_cases(
            fit, data, adapter=adapter, criterion=criterion, k=k, reps=1,
            seed=inner_seed, details=False, confint=False, ncores=1,
        )
        score = result.cv_criterion if result.adjusted_cv_criterion is None else result.adjusted_cv_criterion
        log.debug("Model list | %s | score=%.6g", _candidate_name(adapter, position), score)
        if best is None or score < best[2]:
            best = (position, fit, score)
    return best


def select_model_list(
    data: pd.DataFrame,
    indices: Optional[np.ndarray] = None,
    *,
    candidates: Sequence[Any],
    criterion: Criterion = mse,
    inner_k: FoldSpec = 10,
    seed: Optional[int] = None,
    details: bool = True,
    save_model: bool = False,
    model: Any = None,
    **kwargs: Any,
) -> Selection | Baseline:
    """Select the candidate with the smallest CV criterion.

    Args:
        candidates: Adapters with ``fit(data)`` and ``evaluate_response(data)``
                    (e.g. ``FormulaAdapter``), all for the same response.
        inner_k:    Folds for the inner CV of each candidate.
        seed:       Seed for the inner CV folds.

    For ``indices=None`` the baseline criterion is the winning candidate's
    CV criterion on all the data.
    """
    if not candidates:
        raise InvalidRequest("select_model_list needs at least one candidate")

    if indices is None:
        position, fit, score = _choose(candidates, data, criterion, inner_k, seed)
        adapter = candidates[position]
        log.info("Model list | selected %s", _candidate_name(adapter, position))
        return Baseline(
            criterion=score,
            model=fit if save_model else None,
            coefficients=adapter.get_coefficients(fit),
        )

    indices = np.asarray(indices, dtype=np.int64)
    y = candidates[0].evaluate_response(data)
    position, fit, _ = _choose(candidates, drop_rows(data, indices), criterion, inner_k, seed)
    adapter = candidates[position]
    full = np.asarray(adapter.predict(fit, data), dtype=float)
    return Selection(
        fit_i=full[indices],
        crit_all_i=criterion(y, full),
        coefficients=adapter.get_coefficients(fit) if details else None,
        model_name=_candidate_name(adapter, position),
    )
