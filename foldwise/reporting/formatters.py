"""
Plain-text formatters for CV results.

All formatters accept result objects and return multi-line strings suitable
for ``typer.echo()``.  Numbers are shown to six significant digits.

Layout of a single result::

  === Cross-Validation ===
    Folds:                       10 (seed 398046)
    CV criterion (mse):          24.7913
    Bias-adjusted CV criterion:  24.6511
    95% CI:                      (20.0132, 29.289)
    Full-sample criterion:       22.0738
"""

from __future__ import annotations

from foldwise.cv.results import CVResult, ReplicatedCVResult


def _num(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.6g}"


def _folds_line(result: CVResult) -> str:
    if result.is_loo:
        return f"{result.k} (leave-one-out)"
    return f"{result.k} (seed {result.seed})"


def format_cv_result(result: CVResult, show_details: bool = True) -> str:
    """Format one CV result.

    Args:
        result:       The result to show.
        show_details: Append the per-fold criteria when the result has them.
    """
    label = f"CV criterion ({result.criterion_name}):"
    lines: list[str] = ["", "=== Cross-Validation ==="]
    if result.method:
        lines.append(f"  {'Method:':<29}{result.method}")
    lines.append(f"  {'Folds:':<29}{_folds_line(result)}")
    if result.cluster_info is not None:
        info = result.cluster_info
        lines.append(f"  {'Clusters:':<29}{info.n_clusters} ({', '.join(info.variables)})")
    lines.append(f"  {label:<29}{_num(result.cv_criterion)}")
    if result.adjusted_cv_criterion is not None:
        lines.append(f"  {'Bias-adjusted CV criterion:':<29}{_num(result.adjusted_cv_criterion)}")
    ci = result.confidence_interval
    if ci is not None:
        ci_label = f"{round(ci.level * 100)}% CI:"
        lines.append(f"  {ci_label:<29}({_num(ci.lower)}, {_num(ci.upper)})")
    lines.append(f"  {'Full-sample criterion:':<29}{_num(result.full_data_criterion)}")

    for note in result.notes:
        lines.append(f"  Note: {note}")

    if show_details and result.details is not None:
        lines.append("")
        lines.append(f"  {'Fold':>6}  {'Criterion':>12}  Model")
        lines.append("  " + "-" * 28)
        names = result.details.model_names or ("",) * len(result.details.criterion)
        for j, (crit, name) in enumerate(zip(result.details.criterion, names), start=1):
            lines.append(f"  {j:>6}  {_num(crit):>12}  {name}".rstrip())

    return "\n".join(lines)


def format_replicated_result(result: ReplicatedCVResult) -> str:
    """Format a replicated run: one line per replicate plus the summary."""
    summary = result.summarize()
    lines: list[str] = ["", f"=== Replicated Cross-Validation ({summary.reps} replicates) ==="]
    header = f"  {'Rep':>4}  {'Seed':>8}  {'CV':>12}  {'Adjusted':>12}"
    lines.append(header)
    lines.append("  " + "-" * (len(header) - 2))
    for r, rep in enumerate(result, start=1):
        lines.append(
            f"  {r:>4}  {str(rep.seed):>8}  {_num(rep.cv_criterion):>12}  "
            f"{_num(rep.adjusted_cv_criterion):>12}"
        )

    lines.append("")
    lines.append(f"  Average CV criterion ({result.criterion_name}): "
                 f"{_num(summary.cv_criterion_mean)} "
                 f"(sd {_num(summary.cv_criterion_sd)}, range "
                 f"{_num(summary.cv_criterion_range[0])} to {_num(summary.cv_criterion_range[1])})")
    if summary.adjusted_cv_criterion_mean is not None:
        lo, hi = summary.adjusted_cv_criterion_range
        lines.append(f"  Average bias-adjusted criterion: "
                     f"{_num(summary.adjusted_cv_criterion_mean)} "
                     f"(sd {_num(summary.adjusted_cv_criterion_sd)}, range "
                     f"{_num(lo)} to {_num(hi)})")
    return "\n".join(lines)
