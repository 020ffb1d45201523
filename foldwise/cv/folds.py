"""
Fold partitioning for k-fold and leave-one-out cross-validation.

Design
------
``n`` cases (or ``n`` clusters) are split into ``k`` folds of near-equal size:
every fold holds ``n // k`` cases and the first ``n % k`` folds hold one more.
The case order is a random permutation drawn from an explicit
``numpy.random.Generator``, so a recorded seed reproduces the folds exactly.
With ``k == n`` (leave-one-out) fold ``j`` is simply case ``j`` and no
randomness is consumed.

A fold is a contiguous slice ``permutation[starts[j]:ends[j]]``; looking up the
members of a fold is an O(1) offset computation.

Clusters
--------
For hierarchical data the unit of fold membership is a cluster: a unique
combination of the values of one or more grouping variables.  ``ClusterPlan``
wraps a ``FoldPlan`` over cluster codes and maps each fold back to the case
indices of its clusters.
"""

from __future__ import annotations

import logging
import numbers
import warnings
from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd

from foldwise.exceptions import InvalidFoldSpec, InvalidRequest, SeedIgnoredWarning

log = logging.getLogger(__name__)

LOO_SENTINELS = frozenset({"loo", "n"})

FoldSpec = Union[int, str]


def _readonly(values: np.ndarray) -> np.ndarray:
    values.setflags(write=False)
    return values


@dataclass(frozen=True)
class FoldPlan:
    """Assignment of ``n`` units to ``k`` folds.

    Attributes:
        n:           Number of units (cases or clusters).
        k:           Number of folds.
        sizes:       Units per fold; sums to ``n``.
        starts:      Offset of each fold in ``permutation`` (inclusive).
        ends:        Offset of each fold in ``permutation`` (exclusive).
        permutation: Unit order; identity for leave-one-out.
    """

    n: int
    k: int
    sizes: np.ndarray
    starts: np.ndarray
    ends: np.ndarray
    permutation: np.ndarray

    @property
    def is_loo(self) -> bool:
        return self.k == self.n


def resolve_k(k: FoldSpec, n: int) -> int:
    """Turn a fold spec into an integer fold count.

    Args:
        k: An integer, or ``"loo"`` / ``"n"`` for leave-one-out.
        n: Number of units to be split.

    Raises:
        InvalidFoldSpec: If ``k`` is not an integer in ``[2, n]``.
    """
    if isinstance(k, str):
        if k.lower() in LOO_SENTINELS:
            return n
        raise InvalidFoldSpec(f'k must be an integer between 2 and n or "n" or "loo", got {k!r}')
    if isinstance(k, bool) or not isinstance(k, numbers.Real) or k != int(k):
        raise InvalidFoldSpec(f'k must be an integer between 2 and n or "n" or "loo", got {k!r}')
    k = int(k)
    if k < 2 or k > n:
        raise InvalidFoldSpec(f"k must be between 2 and n={n}, got {k}")
    return k


def build_folds(
    n: int,
    k: int,
    rng: Optional[np.random.Generator] = None,
) -> FoldPlan:
    """Split ``n`` units into ``k`` folds.

    Args:
        n:   Number of units.
        k:   Number of folds, ``2 <= k <= n``.
        rng: Generator used to permute the units.  Ignored (and not advanced)
             when ``k == n``.  A fresh unseeded generator is used if omitted.

    Returns:
        An immutable ``FoldPlan``.

    Raises:
        InvalidFoldSpec: If ``k`` is out of range.
    """
    k = resolve_k(k, n)
    per_fold, remainder = divmod(n, k)
    sizes = np.full(k, per_fold, dtype=np.int64)
    sizes[:remainder] += 1
    ends = np.cumsum(sizes)
    starts = ends - sizes

    if n > k:
        if rng is None:
            rng = np.random.default_rng()
        permutation = rng.permutation(n)
    else:
        permutation = np.arange(n)

    return FoldPlan(
        n=n,
        k=k,
        sizes=_readonly(sizes),
        starts=_readonly(starts),
        ends=_readonly(ends),
        permutation=_readonly(permutation.astype(np.int64, copy=False)),
    )


def fold_members(plan: FoldPlan, j: int) -> np.ndarray:
    """Return the units in fold ``j`` (0-based)."""
    if not 0 <= j < plan.k:
        raise IndexError(f"fold {j} out of range for k={plan.k}")
    return plan.permutation[plan.starts[j]:plan.ends[j]]


def draw_seed(seed_max: int = 1_000_000) -> int:
    """Draw a fresh seed in ``[1, seed_max]`` from OS entropy."""
    return int(np.random.default_rng().integers(1, seed_max, endpoint=True))


def resolve_seed(
    k: int,
    n: int,
    reps: int = 1,
    seed: Optional[int] = None,
    seed_max: int = 1_000_000,
    strict: bool = False,
) -> Optional[int]:
    """Decide which seed a run uses.

    For k-fold CV the supplied seed is returned, or a new one is drawn and
    logged so the caller can reproduce the run.  For leave-one-out there is no
    randomness: ``reps > 1`` is rejected and a supplied seed is reported and
    dropped (or rejected when ``strict``).

    Returns:
        The seed to use, or ``None`` for leave-one-out.

    Raises:
        InvalidRequest: ``reps > 1`` with leave-one-out, or a seed supplied
            for leave-one-out when ``strict``.
    """
    if k != n:
        if seed is None:
            seed = draw_seed(seed_max)
            log.info("Random seed set to %d", seed)
        return int(seed)

    if reps > 1:
        raise InvalidRequest("reps should not be > 1 for n-fold (leave-one-out) CV")
    if seed is not None:
        if strict:
            raise InvalidRequest("a seed is meaningless for n-fold (leave-one-out) CV")
        log.warning("Seed %s ignored for n-fold CV", seed)
        warnings.warn("seed ignored for n-fold CV", SeedIgnoredWarning, stacklevel=3)
    return None


def describe_folds(plan: FoldPlan, max_folds: int = 10, max_members: int = 10) -> str:
    """Human-readable summary of a fold plan (1-based case numbers)."""
    if plan.is_loo:
        return f"LOO: {plan.k} folds for {plan.n} cases"
    lines = [f"{plan.k} folds of approximately {plan.n // plan.k} cases each"]
    for j in range(min(plan.k, max_folds)):
        members = [str(int(i) + 1) for i in fold_members(plan, j)]
        text = " ".join(members[:max_members])
        if len(members) > max_members:
            text += " ..."
        lines.append(f" fold {j + 1}: {text}")
    if plan.k > max_folds:
        lines.append(" ...")
    return "\n".join(lines)


# ── Clusters ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ClusterPlan:
    """Fold plan over clusters rather than raw cases.

    Attributes:
        folds:          ``FoldPlan`` over cluster codes ``0..n_clusters-1``.
        variables:      Names of the grouping variables.
        clusters:       One row per cluster: the grouping-variable values.
        codes:          Cluster code of every case.
    """

    folds: FoldPlan
    variables: tuple[str, ...]
    clusters: pd.DataFrame
    codes: np.ndarray

    @property
    def n_clusters(self) -> int:
        return self.folds.n


def define_clusters(data: pd.DataFrame, variables: Sequence[str]) -> tuple[pd.DataFrame, np.ndarray]:
    """Find the unique combinations of ``variables`` in ``data``.

    Returns:
        ``(clusters, codes)``: the cluster table sorted by the grouping values,
        and the cluster code (row of ``clusters``) of every case.

    Raises:
        KeyError: If a grouping variable is not a column of ``data``.
    """
    variables = list(variables)
    missing = [v for v in variables if v not in data.columns]
    if missing:
        raise KeyError(f"cluster variables not in data: {missing}")
    grouped = data.groupby(variables, sort=True, dropna=False)
    codes = grouped.ngroup().to_numpy(dtype=np.int64)
    clusters = grouped.size().reset_index()[variables]
    return clusters, codes


def build_cluster_folds(
    data: pd.DataFrame,
    variables: Sequence[str],
    k: FoldSpec,
    rng: Optional[np.random.Generator] = None,
    *,
    clusters: Optional[pd.DataFrame] = None,
    codes: Optional[np.ndarray] = None,
) -> ClusterPlan:
    """Build a ``ClusterPlan`` assigning whole clusters to folds.

    ``clusters``/``codes`` from an earlier ``define_clusters(data, variables)``
    call are reused when given, so replicates group the data only once.
    """
    if clusters is None or codes is None:
        clusters, codes = define_clusters(data, variables)
    folds = build_folds(len(clusters), resolve_k(k, len(clusters)), rng)
    return ClusterPlan(
        folds=folds,
        variables=tuple(variables),
        clusters=clusters,
        codes=_readonly(np.asarray(codes, dtype=np.int64)),
    )


def cluster_cases(plan: ClusterPlan, j: int) -> np.ndarray:
    """Sorted case indices of every cluster in fold ``j`` (0-based)."""
    members = fold_members(plan.folds, j)
    return np.flatnonzero(np.isin(plan.codes, members))
