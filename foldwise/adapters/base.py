"""
Model-adapter contract consumed by the CV orchestrators.

The orchestrators never look inside a model.  Everything model-specific goes
through an adapter implementing the capabilities below:

  get_response(model)                      → response vector ``y``
  get_coefficients(model)                  → ``{name: value}``
  refit_excluding(model, data, excluded)   → model refit without those cases
  predict(model, data, mode)               → predictions for every row of data
  check_formula_consistency(model, names)  → ``True``/``False``/``None``

Mixed-model adapters additionally provide ``fixed_effects(model)`` and honour
``PredictMode.FIXED_AND_RANDOM`` (BLUPs for known clusters).

``BaseAdapter`` supplies the formula check from ``formula_variables()``; a
concrete adapter only needs to say which variables its formula uses.
"""

from __future__ import annotations

import ast
import logging
import warnings
from enum import StrEnum
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

import numpy as np
import pandas as pd

from foldwise.exceptions import (
    FormulaMismatchWarning,
    NonNumericResponse,
    NonVectorResponse,
)

log = logging.getLogger(__name__)


class PredictMode(StrEnum):
    """Which model components enter a prediction."""

    FIXED_ONLY = "fixed_only"
    FIXED_AND_RANDOM = "fixed_and_random"


@runtime_checkable
class ModelAdapter(Protocol):
    """Capabilities the case-level and selection orchestrators rely on."""

    def get_response(self, model: Any) -> np.ndarray: ...

    def get_coefficients(self, model: Any) -> dict[str, float]: ...

    def refit_excluding(self, model: Any, data: pd.DataFrame, excluded: np.ndarray) -> Any: ...

    def predict(
        self, model: Any, data: pd.DataFrame, mode: PredictMode = PredictMode.FIXED_ONLY
    ) -> np.ndarray: ...

    def check_formula_consistency(
        self, model: Any, data_column_names: Sequence[str]
    ) -> Optional[bool]: ...


@runtime_checkable
class MixedModelAdapter(ModelAdapter, Protocol):
    """Adapter for hierarchical models with random effects."""

    def fixed_effects(self, model: Any) -> dict[str, float]: ...


class BaseAdapter:
    """Shared behaviour for concrete adapters.

    Subclasses implement the model-specific capabilities and
    ``formula_variables``; the formula check is derived from the latter.
    """

    def formula_variables(self, model: Any) -> Optional[list[str]]:
        """Variable names used by the model formula, or ``None`` if unknown."""
        return None

    def check_formula_consistency(
        self, model: Any, data_column_names: Sequence[str]
    ) -> Optional[bool]:
        names = self.formula_variables(model)
        if names is None:
            return None
        extra = [v for v in names if v not in set(data_column_names)]
        if extra:
            plural = "s are" if len(extra) > 1 else " is"
            message = (
                f"the following variable{plural} in the model formula but not in "
                f"the data set: {', '.join(extra)}; expect errors or incorrect results"
            )
            log.warning(message)
            warnings.warn(message, FormulaMismatchWarning, stacklevel=2)
            return False
        return True


def check_formula(adapter: Any, model: Any, data_column_names: Sequence[str]) -> Optional[bool]:
    """Run the adapter's formula check if it has one; never raises on mismatch."""
    check = getattr(adapter, "check_formula_consistency", None)
    if check is None:
        return None
    return check(model, list(data_column_names))


# ── Formula parsing ───────────────────────────────────────────────────────────


def _names_in_code(code: str) -> list[str]:
    """Bare variable names in a patsy factor expression such as ``np.log(x)``."""
    tree = ast.parse(code, mode="eval")
    skip: set[int] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Call):
            skip.add(id(node.func))
        elif isinstance(node, ast.Attribute):
            skip.add(id(node.value))
    return [
        node.id for node in ast.walk(tree)
        if isinstance(node, ast.Name) and id(node) not in skip
    ]


def formula_variables(formula: str) -> list[str]:
    """Data variables referenced by a patsy/statsmodels formula, in order.

    ``"np.log(y) ~ C(g) + x:z"`` gives ``["y", "g", "x", "z"]``.
    """
    from patsy import ModelDesc

    desc = ModelDesc.from_formula(formula)
    names: list[str] = []
    for term in list(desc.lhs_termlist) + list(desc.rhs_termlist):
        for factor in term.factors:
            for name in _names_in_code(factor.code):
                if name not in names:
                    names.append(name)
    return names


# ── Response helpers ──────────────────────────────────────────────────────────


def validate_response(y: Any) -> np.ndarray:
    """Coerce an extracted response to a 1-D numeric array.

    A single-column 2-D response is flattened; booleans become 0.0/1.0.

    Raises:
        NonVectorResponse:  If ``y`` is ``None`` or not one-dimensional.
        NonNumericResponse: If ``y`` is not numeric.
    """
    if y is None:
        raise NonVectorResponse("non-vector response: adapter returned None")
    arr = np.asarray(y)
    if arr.ndim == 2 and arr.shape[1] == 1:
        arr = arr[:, 0]
    if arr.ndim != 1:
        raise NonVectorResponse(f"non-vector response with shape {arr.shape}")
    if arr.dtype == bool:
        return arr.astype(float)
    if not np.issubdtype(arr.dtype, np.number):
        raise NonNumericResponse(f"non-numeric response of dtype {arr.dtype}")
    return arr


def binary_response(y: Any) -> np.ndarray:
    """Convert a categorical response to 0/1.

    The first level (in category order, or sorted order for plain values)
    denotes failure (0) and every other level success (1).
    """
    series = pd.Series(y)
    if series.dtype == bool or pd.api.types.is_numeric_dtype(series):
        return validate_response(series.to_numpy())
    categorical = series.astype("category")
    levels = list(categorical.cat.categories)
    failure = levels[0]
    if len(levels) > 2:
        log.info(
            "The response has more than 2 levels; the first level (%r) denotes "
            "failure (0), the others success (1)",
            failure,
        )
    return (series != failure).to_numpy(dtype=float)
