"""
Adapters for statsmodels formula models.

FormulaAdapter
--------------
Wraps ``statsmodels.formula.api`` fits of independent-observation models:

  family="ols"           → ``smf.ols``
  family="logit"         → ``smf.logit``  (predictions are probabilities;
                           a categorical response is recoded to 0/1 with
                           its first level as failure)
  family="glm"           → ``smf.glm`` with ``glm_family`` (default Gaussian)

Refitting re-runs the same formula on the data with the excluded rows
dropped.  Predictions are on the response scale.

MixedLMAdapter
--------------
Wraps ``smf.mixedlm`` linear mixed models with one grouping column, random
intercepts and optional random slopes (``re_formula``).

  PredictMode.FIXED_ONLY        → X·beta (statsmodels' own ``predict``)
  PredictMode.FIXED_AND_RANDOM  → X·beta + Z·b_g for clusters seen in the fit;
                                  unseen clusters get b_g = 0

statsmodels may emit a ``ConvergenceWarning`` for an individual refit; the
warning is passed through and the best-effort fit is used.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import numpy as np
import pandas as pd
import patsy
import statsmodels.api as sm
import statsmodels.formula.api as smf

from foldwise.adapters.base import BaseAdapter, PredictMode, binary_response, formula_variables

log = logging.getLogger(__name__)

VALID_FAMILIES = frozenset({"ols", "logit", "glm"})


def drop_rows(data: pd.DataFrame, excluded: np.ndarray) -> pd.DataFrame:
    keep = np.ones(len(data), dtype=bool)
    keep[np.asarray(excluded, dtype=np.int64)] = False
    return data.iloc[keep]


def evaluate_formula_response(formula: str, data: pd.DataFrame) -> np.ndarray:
    """Evaluate the left-hand side of ``formula`` against ``data``."""
    desc = patsy.ModelDesc.from_formula(formula)
    lhs = patsy.ModelDesc([], desc.lhs_termlist)
    matrix = patsy.dmatrix(lhs, data, NA_action="raise")
    return np.asarray(matrix, dtype=float)[:, 0]


def response_column(formula: str) -> Optional[str]:
    """Name of the response when the left-hand side is a bare column."""
    lhs = patsy.ModelDesc.from_formula(formula).lhs_termlist
    if len(lhs) != 1 or len(lhs[0].factors) != 1:
        return None
    name = lhs[0].factors[0].name()
    return name if name.isidentifier() else None


class FormulaAdapter(BaseAdapter):
    """Adapter for statsmodels OLS / Logit / GLM formula models.

    Args:
        formula:    Patsy formula, e.g. ``"mpg ~ hp + wt"``.
        family:     One of ``"ols"``, ``"logit"``, ``"glm"``.
        glm_family: A ``statsmodels.genmod.families.Family`` for ``"glm"``.
        fit_kwargs: Extra keyword arguments for ``.fit()``.
    """

    def __init__(
        self,
        formula: str,
        family: str = "ols",
        glm_family: Any = None,
        fit_kwargs: Optional[dict[str, Any]] = None,
    ) -> None:
        if family not in VALID_FAMILIES:
            raise ValueError(
                f"Unknown family '{family}'. Must be one of {sorted(VALID_FAMILIES)}."
            )
        self.formula = formula
        self.family = family
        self.glm_family = glm_family
        self.fit_kwargs = dict(fit_kwargs or {})
        if family == "logit":
            self.fit_kwargs.setdefault("disp", 0)

    def __repr__(self) -> str:
        return f"FormulaAdapter({self.formula!r}, family={self.family!r})"

    @property
    def name(self) -> str:
        return self.formula

    def _recode(self, data: pd.DataFrame) -> pd.DataFrame:
        """Logit only: a non-numeric response column becomes 0/1."""
        if self.family != "logit":
            return data
        name = response_column(self.formula)
        if name is None or name not in data.columns:
            return data
        column = data[name]
        if column.dtype == bool or pd.api.types.is_numeric_dtype(column):
            return data
        return data.assign(**{name: binary_response(column)})

    def fit(self, data: pd.DataFrame) -> Any:
        """Fit the formula to ``data`` and return the statsmodels results."""
        if self.family == "ols":
            model = smf.ols(self.formula, data=data)
        elif self.family == "logit":
            model = smf.logit(self.formula, data=self._recode(data))
        else:
            model = smf.glm(
                self.formula, data=data, family=self.glm_family or sm.families.Gaussian()
            )
        return model.fit(**self.fit_kwargs)

    def get_response(self, model: Any) -> np.ndarray:
        return np.asarray(model.model.endog, dtype=float)

    def get_coefficients(self, model: Any) -> dict[str, float]:
        return {str(name): float(value) for name, value in model.params.items()}

    def refit_excluding(self, model: Any, data: pd.DataFrame, excluded: np.ndarray) -> Any:
        return self.fit(drop_rows(data, excluded))

    def predict(
        self, model: Any, data: pd.DataFrame, mode: PredictMode = PredictMode.FIXED_ONLY
    ) -> np.ndarray:
        return np.asarray(model.predict(data), dtype=float)

    def formula_variables(self, model: Any) -> Optional[list[str]]:
        return formula_variables(self.formula)

    def evaluate_response(self, data: pd.DataFrame) -> np.ndarray:
        return evaluate_formula_response(self.formula, self._recode(data))


class MixedLMAdapter(BaseAdapter):
    """Adapter for statsmodels linear mixed models (``smf.mixedlm``).

    Args:
        formula:    Fixed-effects formula, e.g. ``"math ~ ses"``.
        groups:     Column holding the cluster identifier.
        re_formula: Random-effects formula; ``None`` means random intercepts.
        fit_kwargs: Extra keyword arguments for ``.fit()`` (e.g. ``reml``).
    """

    def __init__(
        self,
        formula: str,
        groups: str,
        re_formula: Optional[str] = None,
        fit_kwargs: Optional[dict[str, Any]] = None,
    ) -> None:
        self.formula = formula
        self.groups = groups
        self.re_formula = re_formula
        self.fit_kwargs = dict(fit_kwargs or {})

    def __repr__(self) -> str:
        return f"MixedLMAdapter({self.formula!r}, groups={self.groups!r})"

    @property
    def name(self) -> str:
        return f"{self.formula} | {self.groups}"

    def evaluate_response(self, data: pd.DataFrame) -> np.ndarray:
        return evaluate_formula_response(self.formula, data)

    def fit(self, data: pd.DataFrame) -> Any:
        model = smf.mixedlm(
            self.formula, data=data, groups=data[self.groups], re_formula=self.re_formula
        )
        return model.fit(**self.fit_kwargs)

    def get_response(self, model: Any) -> np.ndarray:
        return np.asarray(model.model.endog, dtype=float)

    def get_coefficients(self, model: Any) -> dict[str, float]:
        return self.fixed_effects(model)

    def fixed_effects(self, model: Any) -> dict[str, float]:
        return {str(name): float(value) for name, value in model.fe_params.items()}

    def refit_excluding(self, model: Any, data: pd.DataFrame, excluded: np.ndarray) -> Any:
        return self.fit(drop_rows(data, excluded))

    def predict(
        self, model: Any, data: pd.DataFrame, mode: PredictMode = PredictMode.FIXED_ONLY
    ) -> np.ndarray:
        fixed = np.asarray(model.predict(data), dtype=float)
        if mode == PredictMode.FIXED_ONLY:
            return fixed
        return fixed + self._random_part(model, data)

    def _random_part(self, model: Any, data: pd.DataFrame) -> np.ndarray:
        """Z·b_g for every row; zero for clusters the model has not seen."""
        if self.re_formula is None:
            design = np.ones((len(data), 1))
        else:
            design = np.asarray(
                patsy.dmatrix(self.re_formula, data, NA_action="raise"), dtype=float
            )
        effects = model.random_effects
        out = np.zeros(len(data))
        for row, group in enumerate(data[self.groups].to_numpy()):
            blup = effects.get(group)
            if blup is not None:
                out[row] = float(design[row] @ np.asarray(blup, dtype=float))
        return out

    def formula_variables(self, model: Any) -> Optional[list[str]]:
        names = formula_variables(self.formula)
        if self.re_formula is not None:
            for name in formula_variables(f"~ {self.re_formula}"):
                if name not in names:
                    names.append(name)
        if self.groups not in names:
            names.append(self.groups)
        return names
