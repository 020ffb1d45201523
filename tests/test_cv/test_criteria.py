"""
Tests for CV criteria.

What we test
------------
1. Values of the built-in criteria on small hand-checked vectors.
2. Casewise losses average to their criterion; non-casewise criteria have none.
3. bayes_rule input validation.
4. auc as 1 − AUC, including ties and the single-class error.
5. as_criterion wrapping and renaming; get_criterion lookup.
"""

from __future__ import annotations

import numpy as np
import pytest

from foldwise.cv.criteria import (
    CRITERIA,
    Criterion,
    as_criterion,
    auc,
    bayes_rule,
    get_criterion,
    mae,
    median_abs_error,
    mse,
    rmse,
)

Y    = np.array([1.0, 2.0, 3.0, 4.0])
YHAT = np.array([1.5, 2.0, 2.0, 6.0])


# ── Values ────────────────────────────────────────────────────────────────────

def test_mse_value() -> None:
    assert mse(Y, YHAT) == pytest.approx((0.25 + 0 + 1 + 4) / 4)


def test_mae_value() -> None:
    assert mae(Y, YHAT) == pytest.approx((0.5 + 0 + 1 + 2) / 4)


def test_rmse_value() -> None:
    assert rmse(Y, YHAT) == pytest.approx(np.sqrt(5.25 / 4))


def test_median_abs_error_value() -> None:
    assert median_abs_error(Y, YHAT) == pytest.approx(0.75)


# ── Casewise decomposition ────────────────────────────────────────────────────

@pytest.mark.parametrize("crit", [mse, mae])
def test_casewise_loss_mean_equals_criterion(crit: Criterion) -> None:
    assert crit.is_casewise
    assert np.mean(crit.casewise_loss(Y, YHAT)) == pytest.approx(crit(Y, YHAT))


@pytest.mark.parametrize("crit", [rmse, median_abs_error, auc])
def test_non_casewise_criteria(crit: Criterion) -> None:
    assert not crit.is_casewise


# ── bayes_rule ────────────────────────────────────────────────────────────────

def test_bayes_rule_misclassification_rate() -> None:
    y = np.array([0, 1, 1, 0])
    p = np.array([0.2, 0.9, 0.3, 0.7])
    assert bayes_rule(y, p) == pytest.approx(0.5)
    assert np.mean(bayes_rule.casewise_loss(y, p)) == pytest.approx(0.5)


def test_bayes_rule_rejects_non_binary_response() -> None:
    with pytest.raises(ValueError, match="0 or 1"):
        bayes_rule(np.array([0, 2]), np.array([0.1, 0.9]))


def test_bayes_rule_rejects_out_of_range_predictions() -> None:
    with pytest.raises(ValueError, match=r"\[0, 1\]"):
        bayes_rule(np.array([0, 1]), np.array([-0.1, 0.9]))


# ── auc ───────────────────────────────────────────────────────────────────────

def test_auc_perfect_separation_is_zero_cost() -> None:
    assert auc(np.array([0, 0, 1, 1]), np.array([0.1, 0.2, 0.8, 0.9])) == pytest.approx(0.0)


def test_auc_with_ties() -> None:
    # one positive/negative pair tied → AUC = (3 + 0.5) / 4
    y = np.array([0, 0, 1, 1])
    s = np.array([0.1, 0.5, 0.5, 0.9])
    assert auc(y, s) == pytest.approx(1 - 3.5 / 4)


def test_auc_needs_both_classes() -> None:
    with pytest.raises(ValueError):
        auc(np.array([1, 1]), np.array([0.2, 0.3]))


# ── Wrapping and lookup ───────────────────────────────────────────────────────

def test_as_criterion_wraps_plain_callable() -> None:
    def max_error(y, yhat):
        return float(np.max(np.abs(y - yhat)))

    crit = as_criterion(max_error)
    assert crit.name == "max_error"
    assert not crit.is_casewise
    assert crit(Y, YHAT) == pytest.approx(2.0)


def test_as_criterion_picks_up_casewise_loss_attribute() -> None:
    def my_mse(y, yhat):
        return float(np.mean((y - yhat) ** 2))

    my_mse.casewise_loss = lambda y, yhat: (y - yhat) ** 2
    assert as_criterion(my_mse).is_casewise


def test_as_criterion_renames() -> None:
    renamed = as_criterion(mse, "squared")
    assert renamed.name == "squared"
    assert renamed.casewise_loss is mse.casewise_loss
    assert as_criterion(mse) is mse


def test_as_criterion_rejects_non_callable() -> None:
    with pytest.raises(TypeError):
        as_criterion(3.0)


def test_get_criterion_accepts_hyphens() -> None:
    assert get_criterion("bayes-rule") is bayes_rule
    assert get_criterion("MSE") is mse
    assert set(CRITERIA) == {"mse", "mae", "rmse", "median_abs_error", "bayes_rule", "auc"}


def test_get_criterion_unknown() -> None:
    with pytest.raises(ValueError, match="Unknown criterion"):
        get_criterion("r2")
