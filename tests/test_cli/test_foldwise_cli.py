"""
Tests for the foldwise CLI (Typer).

What we test
------------
1. validate-config — success message, --full JSON dump, missing file exit 1.
2. folds — printed fold sizes for n=22, k=5; LOO summary; bad k exit 1.
3. cv — OLS run on a CSV file, JSON export, replicated output.
4. cv input errors — bad family, --cluster-var without --groups,
   missing data file, unknown criterion, LOO with reps.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
from typer.testing import CliRunner

from foldwise.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_root_logger():
    # commands reconfigure the root logger for the rest of the process
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.captureWarnings(False)


@pytest.fixture
def csv_path(tmp_path: Path) -> Path:
    rng = np.random.default_rng(5)
    n = 60
    x = rng.normal(size=n)
    data = pd.DataFrame({"x": x, "y": 2.0 + 1.5 * x + rng.normal(scale=0.4, size=n)})
    path = tmp_path / "data.csv"
    data.to_csv(path, index=False)
    return path


# ── validate-config ───────────────────────────────────────────────────────────

def test_validate_config() -> None:
    result = runner.invoke(app, ["validate-config"])
    assert result.exit_code == 0, result.output
    assert "Configuration validated successfully." in result.output
    assert "[OK] Config is valid." in result.output


def test_validate_config_full() -> None:
    result = runner.invoke(app, ["validate-config", "--full"])
    assert result.exit_code == 0, result.output
    assert '"confint_min_cases": 400' in result.output


def test_validate_config_missing_file(tmp_path: Path) -> None:
    result = runner.invoke(app, ["validate-config", "--config", str(tmp_path / "x.toml")])
    assert result.exit_code == 1


# ── folds ─────────────────────────────────────────────────────────────────────

def test_folds_sizes() -> None:
    result = runner.invoke(app, ["folds", "--n", "22", "--k", "5", "--seed", "1"])
    assert result.exit_code == 0, result.output
    fold_lines = [line for line in result.output.splitlines() if line.startswith(" fold")]
    sizes = [len(line.split(":")[1].split()) for line in fold_lines]
    assert sizes == [5, 5, 4, 4, 4]


def test_folds_loo() -> None:
    result = runner.invoke(app, ["folds", "--n", "7", "--k", "loo"])
    assert result.exit_code == 0, result.output
    assert "LOO: 7 folds for 7 cases" in result.output


@pytest.mark.parametrize("k", ["1", "23", "ten"])
def test_folds_bad_k(k: str) -> None:
    result = runner.invoke(app, ["folds", "--n", "22", "--k", k])
    assert result.exit_code == 1


# ── cv ────────────────────────────────────────────────────────────────────────

def test_cv_ols(csv_path: Path, tmp_path: Path) -> None:
    out = tmp_path / "out" / "result.json"
    result = runner.invoke(app, [
        "cv", "--data", str(csv_path), "--formula", "y ~ x",
        "--k", "5", "--seed", "3", "--output", str(out),
    ])
    assert result.exit_code == 0, result.output
    assert "CV criterion (mse):" in result.output
    assert "Bias-adjusted CV criterion:" in result.output
    assert "[OK] Result written to" in result.output

    payload = json.loads(out.read_text(encoding="utf-8"))
    assert payload["k"] == 5
    assert payload["seed"] == 3
    assert payload["n_cases"] == 60
    assert payload["confidence_interval"] is None
    assert len(payload["details"]["criterion"]) == 5


def test_cv_loo_with_confint(csv_path: Path) -> None:
    result = runner.invoke(app, [
        "cv", "--data", str(csv_path), "--formula", "y ~ x", "--k", "loo", "--confint",
    ])
    assert result.exit_code == 0, result.output
    assert "60 (leave-one-out)" in result.output
    assert "95% CI:" in result.output


def test_cv_replicated(csv_path: Path) -> None:
    result = runner.invoke(app, [
        "cv", "--data", str(csv_path), "--formula", "y ~ x",
        "--k", "5", "--seed", "3", "--reps", "3",
    ])
    assert result.exit_code == 0, result.output
    assert "Replicated Cross-Validation (3 replicates)" in result.output
    assert "Average CV criterion (mse):" in result.output


def test_cv_mae(csv_path: Path) -> None:
    result = runner.invoke(app, [
        "cv", "--data", str(csv_path), "--formula", "y ~ x",
        "--k", "5", "--seed", "3", "--criterion", "mae",
    ])
    assert result.exit_code == 0, result.output
    assert "CV criterion (mae):" in result.output


# ── cv input errors ───────────────────────────────────────────────────────────

@pytest.mark.parametrize("extra", [
    ["--family", "probit"],
    ["--cluster-var", "g"],
    ["--criterion", "huber"],
    ["--k", "loo", "--reps", "2"],
])
def test_cv_rejects(csv_path: Path, extra: list[str]) -> None:
    result = runner.invoke(app, ["cv", "--data", str(csv_path), "--formula", "y ~ x", *extra])
    assert result.exit_code == 1
    assert "[ERROR]" in result.output


def test_cv_missing_data(tmp_path: Path) -> None:
    result = runner.invoke(app, [
        "cv", "--data", str(tmp_path / "missing.csv"), "--formula", "y ~ x",
    ])
    assert result.exit_code == 1
