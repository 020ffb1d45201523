"""
foldwise — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Run the action (fold preview, cross-validation).
  5. Report result to stdout.

Install and run::

    pip install -e .
    foldwise --help
    foldwise validate-config
    foldwise folds --n 22 --k 5 --seed 1
    foldwise cv --data mtcars.csv --formula "mpg ~ hp + wt" --k 10 --seed 42
    foldwise cv --data hsb.csv --formula "mathach ~ ses" --groups school \\
                --cluster-var school --k 10
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="foldwise",
    help="Cross-validation of regression models and model-selection procedures.",
    add_completion=False,
)

FAMILIES = ("ols", "logit", "glm-poisson")


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from foldwise.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from foldwise.utils.logging import configure_logging
    configure_logging(config.logging)


def _parse_k(k: Optional[str]):
    """``"loo"`` / ``"n"`` pass through; anything else must be an integer."""
    if k is None or k in ("loo", "n"):
        return k
    try:
        return int(k)
    except ValueError:
        typer.echo(f"[ERROR] --k must be an integer, 'loo' or 'n', got {k!r}", err=True)
        raise typer.Exit(code=1)


def _make_adapter(formula: str, family: str, groups: Optional[str]):
    import statsmodels.api as sm

    from foldwise.adapters.statsmodels_adapters import FormulaAdapter, MixedLMAdapter

    if groups:
        return MixedLMAdapter(formula, groups=groups)
    if family == "glm-poisson":
        return FormulaAdapter(formula, family="glm", glm_family=sm.families.Poisson())
    return FormulaAdapter(formula, family=family)


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(
        False,
        "--full",
        help="Print full config including all fields.",
    ),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Default k:        {config.cv.k}")
    typer.echo(f"  Replicates:       {config.cv.reps}")
    typer.echo(f"  CI level:         {config.cv.level}")
    typer.echo(f"  Workers:          {config.cv.ncores} ({config.cv.backend})")
    typer.echo(f"  Log level:        {config.logging.level}")
    typer.echo(f"  Debug mode:       {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config is valid.")


@app.command("folds")
def folds(
    n: int = typer.Option(..., "--n", help="Number of cases."),
    k: str = typer.Option("10", "--k", help="Number of folds, or 'loo'."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Permutation seed."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Print the fold assignment of n cases into k folds."""
    from foldwise.cv.engine import make_rng
    from foldwise.cv.folds import build_folds, describe_folds, resolve_k, resolve_seed
    from foldwise.exceptions import CVError

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        k_int = resolve_k(_parse_k(k), n)
        run_seed = resolve_seed(k_int, n, 1, seed, config.cv.seed_max, config.cv.strict_seed)
        plan = build_folds(n, k_int, make_rng(run_seed))
    except CVError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(describe_folds(plan))


@app.command("cv")
def cv(
    data_path: Path = typer.Option(..., "--data", help="CSV file with the model data."),
    formula: str = typer.Option(..., "--formula", help="Model formula, e.g. 'y ~ x1 + x2'."),
    family: str = typer.Option("ols", "--family", help=f"One of {', '.join(FAMILIES)}."),
    groups: Optional[str] = typer.Option(
        None, "--groups", help="Grouping column; fits a linear mixed model."
    ),
    cluster_vars: Optional[list[str]] = typer.Option(
        None, "--cluster-var", help="Cluster variable for cluster-level CV (repeatable)."
    ),
    k: Optional[str] = typer.Option(None, "--k", help="Number of folds, or 'loo'."),
    reps: Optional[int] = typer.Option(None, "--reps", help="Replicates."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Permutation seed."),
    ncores: Optional[int] = typer.Option(None, "--ncores", help="Worker processes."),
    criterion: str = typer.Option("mse", "--criterion", help="mse, mae, rmse or bayes-rule."),
    confint: Optional[bool] = typer.Option(
        None, "--confint/--no-confint", help="Confidence interval (default: n >= 400)."
    ),
    output: Optional[Path] = typer.Option(None, "--output", help="Write the result as JSON."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Fit a formula model to a CSV file and cross-validate it."""
    import pandas as pd

    from foldwise.cv.case_cv import cv_cases
    from foldwise.cv.criteria import get_criterion
    from foldwise.cv.mixed_cv import cv_mixed
    from foldwise.cv.results import ReplicatedCVResult
    from foldwise.exceptions import CVError
    from foldwise.reporting.export import export_to_json
    from foldwise.reporting.formatters import format_cv_result, format_replicated_result

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    if family not in FAMILIES:
        typer.echo(f"[ERROR] --family must be one of {', '.join(FAMILIES)}.", err=True)
        raise typer.Exit(code=1)
    if cluster_vars and not groups:
        typer.echo("[ERROR] --cluster-var requires --groups (a mixed model).", err=True)
        raise typer.Exit(code=1)
    if not data_path.exists():
        typer.echo(f"[ERROR] Data file not found: {data_path}", err=True)
        raise typer.Exit(code=1)

    try:
        crit = get_criterion(criterion)
    except ValueError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    data = pd.read_csv(data_path)
    adapter = _make_adapter(formula, family, groups)
    options = dict(
        k=_parse_k(k), reps=reps, seed=seed, ncores=ncores,
        confint=confint, criterion=crit, config=config.cv,
    )

    typer.echo(f"Fitting {adapter!r} to {len(data)} rows from {data_path}")
    try:
        model = adapter.fit(data)
        if groups:
            result = cv_mixed(model, data, adapter=adapter, cluster_variables=cluster_vars, **options)
        else:
            result = cv_cases(model, data, adapter=adapter, **options)
    except CVError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    if isinstance(result, ReplicatedCVResult):
        typer.echo(format_replicated_result(result))
    else:
        typer.echo(format_cv_result(result))

    if output is not None:
        written = export_to_json(result.to_dict(), output)
        typer.echo("")
        typer.echo(f"[OK] Result written to {written}")


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
