"""
Tests for replicated CV and result summaries.

What we test
------------
1. replicate_seeds — first seed is the run seed; reproducible; within range.
2. run_replicates — single result for reps == 1, ordered tuple otherwise,
   seed required for reps > 1.
3. summarize_reps — mean, SD and range; adjusted fields only when present;
   idempotent.
4. to_dict — nested mapping with stable field names.
"""

from __future__ import annotations

import json

import pytest

from foldwise.cv.estimator import ConfidenceInterval
from foldwise.cv.replicate import replicate_seeds, run_replicates
from foldwise.cv.results import (
    ClusterInfo,
    CVResult,
    FoldDetails,
    ReplicatedCVResult,
    summarize_reps,
)
from foldwise.exceptions import InvalidRequest


def _result(cv: float, adjusted: float | None = None, seed: int | None = 1) -> CVResult:
    return CVResult(
        cv_criterion=cv,
        full_data_criterion=cv / 2,
        k=5,
        criterion_name="mse",
        n_cases=50,
        adjusted_cv_criterion=adjusted,
        seed=seed,
    )


# ── Seeds ─────────────────────────────────────────────────────────────────────

def test_replicate_seeds_start_with_run_seed() -> None:
    seeds = replicate_seeds(123, 4, seed_max=1000)
    assert seeds[0] == 123
    assert len(seeds) == 4
    assert all(1 <= s <= 1000 for s in seeds)


def test_replicate_seeds_reproducible() -> None:
    assert replicate_seeds(77, 5) == replicate_seeds(77, 5)


def test_replicate_seeds_rejects_zero_reps() -> None:
    with pytest.raises(InvalidRequest):
        replicate_seeds(1, 0)


# ── run_replicates ────────────────────────────────────────────────────────────

def test_single_rep_returns_plain_result() -> None:
    out = run_replicates(lambda seed: _result(1.0, seed=seed), 1, 9)
    assert isinstance(out, CVResult)
    assert out.seed == 9


def test_multiple_reps_in_order() -> None:
    seen = []

    def run_once(seed):
        seen.append(seed)
        return _result(float(len(seen)), seed=seed)

    out = run_replicates(run_once, 3, 5)
    assert isinstance(out, ReplicatedCVResult)
    assert [r.cv_criterion for r in out] == [1.0, 2.0, 3.0]
    assert [r.seed for r in out] == seen
    assert seen[0] == 5


def test_reps_need_a_seed() -> None:
    with pytest.raises(InvalidRequest):
        run_replicates(lambda seed: _result(1.0), 2, None)


# ── Summaries ─────────────────────────────────────────────────────────────────

def test_summarize_reps_values() -> None:
    summary = summarize_reps([_result(1.0, 0.9), _result(2.0, 1.8), _result(3.0, 2.7)])
    assert summary.reps == 3
    assert summary.cv_criterion_mean == pytest.approx(2.0)
    assert summary.cv_criterion_sd == pytest.approx(1.0)
    assert summary.cv_criterion_range == (1.0, 3.0)
    assert summary.adjusted_cv_criterion_mean == pytest.approx(1.8)
    assert summary.adjusted_cv_criterion_range == (0.9, 2.7)


def test_summarize_without_adjusted() -> None:
    summary = summarize_reps([_result(1.0), _result(2.0)])
    assert summary.adjusted_cv_criterion_mean is None
    assert summary.adjusted_cv_criterion_sd is None


def test_summarize_is_idempotent() -> None:
    reps = ReplicatedCVResult((_result(1.0, 1.1), _result(4.0, 3.9)))
    assert reps.summarize() == reps.summarize()


def test_summarize_empty() -> None:
    with pytest.raises(ValueError):
        summarize_reps([])


# ── to_dict ───────────────────────────────────────────────────────────────────

def test_to_dict_nested_fields() -> None:
    result = CVResult(
        cv_criterion=2.0,
        full_data_criterion=1.5,
        k=160,
        criterion_name="mse",
        n_cases=800,
        adjusted_cv_criterion=1.9,
        confidence_interval=ConfidenceInterval(1.7, 2.1, 0.95),
        standard_error=0.1,
        seed=None,
        details=FoldDetails(criterion=(1.0, 2.0), coefficients=(None, None)),
        cluster_info=ClusterInfo(variables=("school",), n_clusters=160),
        notes=("a note",),
    )
    payload = result.to_dict()
    assert payload["k"] == "n"
    assert payload["confidence_interval"] == {"lower": 1.7, "upper": 2.1, "level": 0.95}
    assert payload["cluster_info"] == {"variables": ("school",), "n_clusters": 160}
    assert payload["details"]["criterion"] == (1.0, 2.0)
    assert payload["notes"] == ["a note"]
    json.dumps(payload)


def test_replicated_to_dict() -> None:
    payload = ReplicatedCVResult((_result(1.0, 0.9), _result(2.0, 1.9))).to_dict()
    assert len(payload["replicates"]) == 2
    assert payload["summary"]["reps"] == 2
