"""Overdispersion-specific HTML report builder.

Usage (called from overdispersion.py):
    from analysis.overdispersion_report import build_overdispersion_report
    build_overdispersion_report(ctx.report, scenario=..., replicates=..., ...)
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

from binomlab.scenario import Scenario


def build_overdispersion_report(
    report: ReportBuilder,
    *,
    scenario: Scenario,
    replicates: pl.DataFrame,
    diagnostics: dict,
    distribution: pl.DataFrame,
    plots_dir: Path,
) -> None:
    """Add all overdispersion sections to the ReportBuilder."""
    _add_scenario(report, scenario)
    _add_replicates_table(report, replicates)
    _add_figure(
        report,
        plots_dir / "replicate_proportions.png",
        "replicate-proportions",
        "Per-Replicate Proportions",
        "Each dot is one replicate. Under a single-p Binomial they would cluster "
        "tightly around the dashed pooled rate.",
    )
    _add_figure(
        report,
        plots_dir / "count_histogram.png",
        "count-histogram",
        "Observed vs. Expected Count Frequencies",
        "Bars: observed replicates per success count. Lines: expectation under each model.",
    )
    _add_diagnostics_table(report, diagnostics)
    _add_distribution_table(report, distribution)
    _add_interpretation(report, diagnostics)

    print(f"  Report: {report.n_sections} sections added")


# ── Private section builders ─────────────────────────────────────────────────


def _add_scenario(report: ReportBuilder, scenario: Scenario) -> None:
    process = (
        f"Beta-Binomial with concentration c = {scenario.concentration:g}"
        if scenario.is_overdispersed
        else "plain Binomial (no overdispersion)"
    )
    report.add(
        TextSection(
            id="scenario",
            title="The Synthetic Experiment",
            html=(
                f"<p>{scenario.n_replicates} replicate experiments, each with "
                f"{scenario.n_trials} trials. Mean success probability "
                f"{scenario.mean_p:g}; replicate probabilities follow a {process}. "
                f"Random seed {scenario.seed}.</p>"
                f"<p>{scenario.description}</p>"
            ),
        )
    )


def _add_replicates_table(report: ReportBuilder, replicates: pl.DataFrame) -> None:
    html = make_gt(
        replicates,
        title="Replicate Counts",
        column_labels={
            "replicate": "Replicate",
            "successes": "Successes",
            "n_trials": "Trials",
            "proportion": "Proportion",
        },
        number_formats={"proportion": ".2f"},
    )
    report.add(TableSection(id="replicates", title="Replicate Counts", html=html))


def _add_figure(
    report: ReportBuilder,
    path: Path,
    section_id: str,
    title: str,
    caption: str,
) -> None:
    if not path.exists():
        return
    report.add(FigureSection.from_file(section_id, title, path, caption=caption))


def _add_diagnostics_table(report: ReportBuilder, diagnostics: dict) -> None:
    rows = [
        ("Pooled rate (K / N)", diagnostics["pooled_rate"]),
        ("SD of replicate proportions", diagnostics["replicate_rate_sd"]),
        ("Dispersion index", diagnostics["dispersion_index"]),
        ("Tarone Z", diagnostics["tarone_z"]),
        ("Tarone p-value", diagnostics["tarone_p"]),
        ("Method-of-moments alpha", diagnostics["mom_alpha"]),
        ("Method-of-moments beta", diagnostics["mom_beta"]),
        ("Implied concentration", diagnostics["mom_concentration"]),
    ]
    df = pl.DataFrame(
        {"statistic": [r[0] for r in rows], "value": [float(r[1]) for r in rows]}
    )
    html = make_gt(
        df,
        title="Overdispersion Diagnostics",
        column_labels={"statistic": "Statistic", "value": "Value"},
        number_formats={"value": ".4f"},
        source_note="Tarone (1979). Dispersion index ~ 1 for Binomial data.",
    )
    report.add(TableSection(id="diagnostics", title="Overdispersion Diagnostics", html=html))


def _add_distribution_table(report: ReportBuilder, distribution: pl.DataFrame) -> None:
    html = make_gt(
        distribution,
        title="Count Frequencies",
        column_labels={
            "successes": "Successes",
            "observed": "Observed",
            "binomial_expected": "Binomial",
            "beta_binomial_expected": "Beta-Binomial",
        },
        number_formats={"binomial_expected": ".2f", "beta_binomial_expected": ".2f"},
    )
    report.add(TableSection(id="distribution", title="Count Frequencies", html=html))


def _add_interpretation(report: ReportBuilder, diagnostics: dict) -> None:
    index = diagnostics["dispersion_index"]
    if diagnostics["overdispersed"]:
        verdict = (
            f"<p>The replicates vary about {index:.1f} times more than a single-p "
            "Binomial allows, and Tarone's test rejects the Binomial model. Any interval "
            "built on the pooled count alone treats these as "
            f"{diagnostics['total_trials']} interchangeable trials and will be "
            "too narrow.</p>"
        )
    else:
        verdict = (
            "<p>The replicate spread is compatible with a single-p Binomial "
            f"(dispersion index {index:.2f}). Pooling the counts is reasonable here.</p>"
        )
    report.add(TextSection(id="interpretation", title="Interpretation", html=verdict))
