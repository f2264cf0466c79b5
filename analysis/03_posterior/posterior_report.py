"""Posterior-specific HTML report builder.

Usage (called from posterior.py):
    from analysis.posterior_report import build_posterior_report
    build_posterior_report(ctx.report, scenario=..., specs=..., summary=..., ...)
"""

from pathlib import Path

import polars as pl

try:
    from analysis.report import FigureSection, ReportBuilder, TableSection, TextSection, make_gt
except ModuleNotFoundError:
    from report import (  # type: ignore[no-redef]
        FigureSection,
        ReportBuilder,
        TableSection,
        TextSection,
        make_gt,
    )

try:
    from analysis.model_spec import ModelSpec
except ModuleNotFoundError:
    from model_spec import ModelSpec  # type: ignore[no-redef]

from binomlab.config import ESS_THRESHOLD, RHAT_THRESHOLD
from binomlab.scenario import Scenario


def build_posterior_report(
    report: ReportBuilder,
    *,
    scenario: Scenario,
    specs: list[ModelSpec],
    summary: pl.DataFrame,
    comparison: pl.DataFrame,
    convergence: dict[str, dict],
    ppc: pl.DataFrame,
    plots_dir: Path,
) -> None:
    """Add all posterior sections to the ReportBuilder."""
    _add_models(report, specs)
    _add_comparison_figure(report, plots_dir)
    _add_comparison_table(report, comparison)
    _add_summary_table(report, summary)
    if convergence:
        _add_convergence_table(report, convergence)
    if ppc.height > 0:
        _add_ppc_figure(report, plots_dir)
        _add_ppc_table(report, ppc)
    _add_interpretation(report, scenario, comparison, ppc)

    print(f"  Report: {report.n_sections} sections added")


# ── Private section builders ─────────────────────────────────────────────────


def _add_models(report: ReportBuilder, specs: list[ModelSpec]) -> None:
    items = "".join(f"<li><code>{spec.describe()}</code></li>" for spec in specs)
    report.add(
        TextSection(
            id="models",
            title="Models",
            html=(
                f"<ul>{items}</ul>"
                "<p>The prior on p puts all its mass on [0, 1], so every posterior draw of "
                "p is a probability. Credible bounds are quantiles of those draws.</p>"
            ),
        )
    )


def _add_comparison_figure(report: ReportBuilder, plots_dir: Path) -> None:
    path = plots_dir / "posterior_vs_wald.png"
    if not path.exists():
        return
    report.add(
        FigureSection.from_file(
            "posterior-vs-wald",
            "Posterior vs. Wald",
            path,
            caption="Histograms: posterior draws of p. Solid lines: credible bounds. "
            "Dashed lines: Wald bounds. Shaded: outside [0, 1].",
        )
    )


def _add_comparison_table(report: ReportBuilder, comparison: pl.DataFrame) -> None:
    html = make_gt(
        comparison,
        title="Confidence vs. Credible Intervals",
        column_labels={
            "method": "Method",
            "kind": "Interval",
            "point": "Estimate",
            "lower": "Lower",
            "upper": "Upper",
            "width": "Width",
            "admissible": "Within [0, 1]",
        },
        number_formats={"point": ".4f", "lower": ".4f", "upper": ".4f", "width": ".4f"},
        source_note="Credible estimates are posterior medians with equal-tailed bounds.",
    )
    report.add(TableSection(id="comparison", title="Interval Comparison", html=html))


def _add_summary_table(report: ReportBuilder, summary: pl.DataFrame) -> None:
    display = summary.select(
        "model",
        "point",
        "mean",
        "lower",
        "upper",
        "hdi_lower",
        "hdi_upper",
        "kappa_median",
        "sampling_time",
    )
    html = make_gt(
        display,
        title="Posterior Summary",
        column_labels={
            "model": "Model",
            "point": "Median",
            "mean": "Mean",
            "lower": "ETI lower",
            "upper": "ETI upper",
            "hdi_lower": "HDI lower",
            "hdi_upper": "HDI upper",
            "kappa_median": "Median kappa",
            "sampling_time": "Sampling (s)",
        },
        number_formats={
            "point": ".4f",
            "mean": ".4f",
            "lower": ".4f",
            "upper": ".4f",
            "hdi_lower": ".4f",
            "hdi_upper": ".4f",
            "kappa_median": ".2f",
            "sampling_time": ".1f",
        },
        source_note="ETI: equal-tailed interval. HDI: highest-density interval (ArviZ).",
    )
    report.add(TableSection(id="summary", title="Posterior Summary", html=html))


def _add_convergence_table(report: ReportBuilder, convergence: dict[str, dict]) -> None:
    rows = []
    for model, diag in convergence.items():
        for var in diag["variables"]:
            rows.append(
                {
                    "model": model,
                    "variable": var,
                    "rhat_max": diag[f"{var}_rhat_max"],
                    "ess_min": diag[f"{var}_ess_min"],
                    "divergences": diag["divergences"],
                    "converged": diag["all_ok"],
                }
            )
    html = make_gt(
        pl.DataFrame(rows),
        title="Convergence Diagnostics",
        column_labels={
            "model": "Model",
            "variable": "Variable",
            "rhat_max": "Max R-hat",
            "ess_min": "Min bulk ESS",
            "divergences": "Divergences",
            "converged": "All checks pass",
        },
        number_formats={"rhat_max": ".4f", "ess_min": ".0f"},
        source_note=f"Thresholds: R-hat < {RHAT_THRESHOLD}, ESS > {ESS_THRESHOLD}.",
    )
    report.add(TableSection(id="convergence", title="Convergence Diagnostics", html=html))


def _add_ppc_figure(report: ReportBuilder, plots_dir: Path) -> None:
    path = plots_dir / "ppc_dispersion.png"
    if not path.exists():
        return
    report.add(
        FigureSection.from_file(
            "ppc-dispersion",
            "Posterior Predictive Check: Replicate Spread",
            path,
            caption="Distribution of the SD of replicate proportions in replicated "
            "datasets. Black line: observed SD.",
        )
    )


def _add_ppc_table(report: ReportBuilder, ppc: pl.DataFrame) -> None:
    html = make_gt(
        ppc.select(
            "model",
            "observed_sd",
            "replicated_sd_mean",
            "replicated_sd_q05",
            "replicated_sd_q95",
            "bayesian_p",
        ),
        title="Posterior Predictive Dispersion",
        column_labels={
            "model": "Model",
            "observed_sd": "Observed SD",
            "replicated_sd_mean": "Replicated SD (mean)",
            "replicated_sd_q05": "5%",
            "replicated_sd_q95": "95%",
            "bayesian_p": "Bayesian p",
        },
        number_formats={
            "observed_sd": ".3f",
            "replicated_sd_mean": ".3f",
            "replicated_sd_q05": ".3f",
            "replicated_sd_q95": ".3f",
            "bayesian_p": ".3f",
        },
        source_note=f"{int(ppc['n_reps'][0])} replicated datasets per model.",
    )
    report.add(TableSection(id="ppc", title="Posterior Predictive Dispersion", html=html))


def _add_interpretation(
    report: ReportBuilder,
    scenario: Scenario,
    comparison: pl.DataFrame,
    ppc: pl.DataFrame,
) -> None:
    wald = comparison.filter(pl.col("method") == "wald").row(0, named=True)
    paragraphs = []
    if wald["admissible"]:
        paragraphs.append(
            "<p>For this dataset the Wald interval happens to stay inside [0, 1]. "
            "The credible intervals are inside [0, 1] for every dataset.</p>"
        )
    else:
        paragraphs.append(
            f"<p>The Wald interval [{wald['lower']:.4f}, {wald['upper']:.4f}] includes "
            "values that are not probabilities. Every credible interval above stays "
            "within [0, 1] because it is built from posterior draws of p, never from a "
            "symmetric normal approximation.</p>"
        )

    if ppc.height > 0:
        misfit = ppc.filter(pl.col("bayesian_p") < 0.05)["model"].to_list()
        if misfit:
            paragraphs.append(
                f"<p>The posterior predictive check flags <strong>{', '.join(misfit)}</strong>: "
                "the model rarely produces replicates as spread out as the observed ones. "
                "Its interval, admissible or not, is too narrow for this "
                f"{'overdispersed ' if scenario.is_overdispersed else ''}design.</p>"
            )
        else:
            paragraphs.append(
                "<p>Every fitted model reproduces the observed replicate spread.</p>"
            )

    report.add(TextSection(id="interpretation", title="Interpretation", html="".join(paragraphs)))
