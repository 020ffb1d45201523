"""
Tests for the stepwise and model-list selection procedures.

What we test
------------
1. backward_eliminate drops a pure-noise predictor and keeps real ones.
2. Marginality — a main effect is not dropped while its interaction remains.
3. select_stepwise honours the fold/baseline contract.
4. select_model_list picks the better candidate and names it.
5. End to end through cv_select.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import patsy
import pytest

from foldwise.adapters.statsmodels_adapters import FormulaAdapter
from foldwise.cv.procedures import (
    _removable,
    backward_eliminate,
    select_model_list,
    select_stepwise,
)
from foldwise.cv.select_cv import Baseline, Selection, cv_select
from foldwise.exceptions import InvalidRequest


@pytest.fixture
def selection_data() -> pd.DataFrame:
    rng = np.random.default_rng(42)
    n = 120
    x1 = rng.normal(size=n)
    x2 = rng.normal(size=n)
    y = 1.0 + 3.0 * x1 - 2.0 * x2 + rng.normal(scale=0.5, size=n)
    # noise is exactly orthogonal to the intercept, x1, x2 and y
    basis = np.column_stack([np.ones(n), x1, x2, y])
    noise = rng.normal(size=n)
    noise -= basis @ np.linalg.lstsq(basis, noise, rcond=None)[0]
    return pd.DataFrame({"y": y, "x1": x1, "x2": x2, "noise": noise})


# ── Stepwise ──────────────────────────────────────────────────────────────────

def test_backward_eliminate_keeps_real_predictors(selection_data) -> None:
    formula, fit = backward_eliminate("y ~ x1 + x2 + noise", selection_data)
    assert "x1" in fit.params.index
    assert "x2" in fit.params.index
    assert "noise" not in fit.params.index
    assert formula == "y ~ x1 + x2"


def test_interaction_protects_main_effects() -> None:
    desc = patsy.ModelDesc.from_formula("y ~ a + b + a:b")
    removable = [term.name() for term in _removable(list(desc.rhs_termlist))]
    assert removable == ["a:b"]


def test_select_stepwise_fold(selection_data) -> None:
    indices = np.arange(0, 120, 6)
    out = select_stepwise(selection_data, indices, formula="y ~ x1 + x2 + noise")
    assert isinstance(out, Selection)
    assert out.fit_i.shape == (20,)
    assert out.crit_all_i > 0
    assert out.model_name.startswith("y ~")
    assert "Intercept" in out.coefficients


def test_select_stepwise_baseline(selection_data) -> None:
    out = select_stepwise(selection_data, None, formula="y ~ x1 + x2", save_model=True)
    assert isinstance(out, Baseline)
    assert out.model is not None
    assert out.criterion == pytest.approx(float(np.mean(out.model.resid ** 2)))


def test_cv_select_stepwise(selection_data) -> None:
    result = cv_select(
        select_stepwise, selection_data, y_expression="y", k=5, seed=10,
        formula="y ~ x1 + x2 + noise",
    )
    assert result.k == 5
    assert len(result.details.model_names) == 5
    assert result.cv_criterion > result.full_data_criterion
    assert result.cv_criterion < 1.0


# ── Model list ────────────────────────────────────────────────────────────────

def test_select_model_list_picks_better_model(selection_data) -> None:
    candidates = [FormulaAdapter("y ~ x1"), FormulaAdapter("y ~ x1 + x2")]
    out = select_model_list(selection_data, None, candidates=candidates, inner_k=5, seed=3)
    assert isinstance(out, Baseline)
    assert set(out.coefficients) == {"Intercept", "x1", "x2"}


def test_select_model_list_fold(selection_data) -> None:
    candidates = [FormulaAdapter("y ~ x1"), FormulaAdapter("y ~ x1 + x2")]
    out = select_model_list(
        selection_data, np.arange(10), candidates=candidates, inner_k=5, seed=3
    )
    assert out.model_name == "y ~ x1 + x2"
    assert out.fit_i.shape == (10,)


def test_select_model_list_needs_candidates(selection_data) -> None:
    with pytest.raises(InvalidRequest):
        select_model_list(selection_data, None, candidates=[])


def test_cv_select_model_list(selection_data) -> None:
    candidates = [FormulaAdapter("y ~ x1"), FormulaAdapter("y ~ x2"), FormulaAdapter("y ~ x1 + x2")]
    result = cv_select(
        select_model_list, selection_data, y_expression="y", k=4, seed=8,
        candidates=candidates, inner_k=5, save_model=True,
    )
    assert result.details.model_names == ("y ~ x1 + x2",) * 4
    assert result.selected_model is not None
