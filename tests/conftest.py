"""
Shared pytest fixtures for the foldwise test suite.

Provides:
  - ``linear_data`` / ``lstsq_adapter`` / ``linear_model``: a small linear
    regression problem and a numpy least-squares adapter for it.  The adapter
    has no statsmodels dependency, so orchestrator tests run fast.
  - ``clustered_data`` / ``mixed_adapter`` / ``mixed_model``: 160 clusters of
    five cases with cluster-specific intercepts, and a two-stage
    "fixed slope + cluster mean residual" mixed-model adapter.
  - ``cv_config``: ``CVConfig`` with library defaults.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np
import pandas as pd
import pytest

from foldwise.adapters.base import BaseAdapter, PredictMode
from foldwise.config import CVConfig


# ── Adapters ──────────────────────────────────────────────────────────────────

class LstsqAdapter(BaseAdapter):
    """Ordinary least squares of ``response`` on ``predictors`` via numpy."""

    def __init__(self, response: str = "y", predictors: tuple[str, ...] = ("x1", "x2")) -> None:
        self.response = response
        self.predictors = predictors
        self.refits = 0

    def _design(self, data: pd.DataFrame) -> np.ndarray:
        cols = [np.ones(len(data))] + [data[p].to_numpy(dtype=float) for p in self.predictors]
        return np.column_stack(cols)

    def fit(self, data: pd.DataFrame) -> dict[str, Any]:
        y = data[self.response].to_numpy(dtype=float)
        beta, *_ = np.linalg.lstsq(self._design(data), y, rcond=None)
        return {"beta": beta, "y": y}

    def get_response(self, model: dict[str, Any]) -> np.ndarray:
        return model["y"]

    def get_coefficients(self, model: dict[str, Any]) -> dict[str, float]:
        names = ("Intercept",) + tuple(self.predictors)
        return {name: float(b) for name, b in zip(names, model["beta"])}

    def refit_excluding(self, model: Any, data: pd.DataFrame, excluded: np.ndarray) -> Any:
        self.refits += 1
        keep = np.ones(len(data), dtype=bool)
        keep[excluded] = False
        return self.fit(data.iloc[keep])

    def predict(
        self, model: dict[str, Any], data: pd.DataFrame, mode: PredictMode = PredictMode.FIXED_ONLY
    ) -> np.ndarray:
        return self._design(data) @ model["beta"]

    def formula_variables(self, model: Any) -> Optional[list[str]]:
        return [self.response, *self.predictors]


class ClusterMeanAdapter(LstsqAdapter):
    """Fixed slope on ``x`` plus a per-cluster mean residual as the random effect."""

    def __init__(self, groups: str = "cluster") -> None:
        super().__init__(response="y", predictors=("x",))
        self.groups = groups
        self.modes: list[PredictMode] = []

    def fit(self, data: pd.DataFrame) -> dict[str, Any]:
        model = super().fit(data)
        resid = model["y"] - self._design(data) @ model["beta"]
        model["effects"] = pd.Series(resid, index=data[self.groups].to_numpy()).groupby(level=0).mean()
        return model

    def fixed_effects(self, model: dict[str, Any]) -> dict[str, float]:
        return self.get_coefficients(model)

    def predict(
        self, model: dict[str, Any], data: pd.DataFrame, mode: PredictMode = PredictMode.FIXED_ONLY
    ) -> np.ndarray:
        self.modes.append(mode)
        fixed = self._design(data) @ model["beta"]
        if mode == PredictMode.FIXED_ONLY:
            return fixed
        effects = data[self.groups].map(model["effects"]).fillna(0.0).to_numpy(dtype=float)
        return fixed + effects

    def formula_variables(self, model: Any) -> Optional[list[str]]:
        return ["y", "x", self.groups]


# ── Data fixtures ─────────────────────────────────────────────────────────────

@pytest.fixture
def linear_data() -> pd.DataFrame:
    """100 cases of y = 1 + 2·x1 − x2 + noise."""
    rng = np.random.default_rng(20240101)
    n = 100
    x1 = rng.normal(size=n)
    x2 = rng.normal(size=n)
    y = 1.0 + 2.0 * x1 - x2 + rng.normal(scale=0.5, size=n)
    return pd.DataFrame({"y": y, "x1": x1, "x2": x2})


@pytest.fixture
def lstsq_adapter() -> LstsqAdapter:
    return LstsqAdapter()


@pytest.fixture
def linear_model(lstsq_adapter: LstsqAdapter, linear_data: pd.DataFrame) -> dict[str, Any]:
    return lstsq_adapter.fit(linear_data)


@pytest.fixture
def clustered_data() -> pd.DataFrame:
    """160 clusters × 5 cases with normal cluster intercepts."""
    rng = np.random.default_rng(7)
    n_clusters, per = 160, 5
    cluster = np.repeat(np.arange(1, n_clusters + 1), per)
    intercepts = rng.normal(scale=1.0, size=n_clusters)
    x = rng.normal(size=cluster.size)
    y = 2.0 + 0.5 * x + intercepts[cluster - 1] + rng.normal(scale=0.3, size=cluster.size)
    return pd.DataFrame({"y": y, "x": x, "cluster": cluster})


@pytest.fixture
def mixed_adapter() -> ClusterMeanAdapter:
    return ClusterMeanAdapter()


@pytest.fixture
def mixed_model(mixed_adapter: ClusterMeanAdapter, clustered_data: pd.DataFrame) -> dict[str, Any]:
    return mixed_adapter.fit(clustered_data)


@pytest.fixture
def cv_config() -> CVConfig:
    return CVConfig()
