"""Wald-specific HTML report builder.

Usage (called from wald.py):
    from analysis.wald_report import build_wald_report
    build_wald_report(ctx.report, scenario=..., intervals=..., ...)
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

INTERVAL_LABELS = {
    "method": "Method",
    "confidence_level": "Level",
    "point": "Estimate",
    "lower": "Lower",
    "upper": "Upper",
    "width": "Width",
    "admissible": "Within [0, 1]",
}
INTERVAL_FORMATS = {
    "confidence_level": ".2f",
    "point": ".4f",
    "lower": ".4f",
    "upper": ".4f",
    "width": ".4f",
}


def build_wald_report(
    report: ReportBuilder,
    *,
    scenario: Scenario,
    intervals: pl.DataFrame,
    sweep: pl.DataFrame,
    coverage: pl.DataFrame,
    plots_dir: Path,
) -> None:
    """Add all frequentist-interval sections to the ReportBuilder."""
    _add_formula(report)
    _add_intervals_table(report, intervals)
    _add_markers_figure(report, plots_dir)
    _add_admissibility_note(report, intervals)
    _add_sweep_table(report, sweep)
    if coverage.height > 0:
        _add_coverage_figure(report, plots_dir, scenario)
        _add_coverage_table(report, coverage)

    print(f"  Report: {report.n_sections} sections added")


# ── Private section builders ─────────────────────────────────────────────────


def _add_formula(report: ReportBuilder) -> None:
    report.add(
        TextSection(
            id="formula",
            title="The Wald Interval",
            html=(
                "<p>Pool every replicate into K successes out of N trials and estimate "
                "p&#770; = K / N. The Wald interval is "
                "<code>p&#770; &plusmn; z &middot; sqrt(p&#770;(1 &minus; p&#770;) / N)</code>, "
                "with z = 1.96 at 95%.</p>"
                "<p>Nothing in the formula knows that p is a probability. When p&#770; is "
                "near 0 or 1 and N is small, the margin exceeds the distance to the "
                "boundary and a bound leaves [0, 1]. The bounds below are reported exactly "
                "as the formula produces them.</p>"
            ),
        )
    )


def _add_intervals_table(report: ReportBuilder, intervals: pl.DataFrame) -> None:
    html = make_gt(
        intervals,
        title="Interval Estimates",
        column_labels=INTERVAL_LABELS,
        number_formats=INTERVAL_FORMATS,
        source_note="Bounds are unclamped. Wilson bounds always fall within [0, 1].",
    )
    report.add(TableSection(id="intervals", title="Interval Estimates", html=html))


def _add_markers_figure(report: ReportBuilder, plots_dir: Path) -> None:
    path = plots_dir / "interval_markers.png"
    if not path.exists():
        return
    report.add(
        FigureSection.from_file(
            "interval-markers",
            "Interval Bounds Against the Replicate Data",
            path,
            caption="Gray bars: replicate proportions. Dashed lines: interval bounds.",
        )
    )


def _add_admissibility_note(report: ReportBuilder, intervals: pl.DataFrame) -> None:
    bad = intervals.filter(~pl.col("admissible"))
    if bad.height == 0:
        html = "<p>Every interval here stays within [0, 1] for this dataset.</p>"
    else:
        items = "".join(
            f"<li><strong>{row['method']}</strong>: [{row['lower']:.4f}, {row['upper']:.4f}]</li>"
            for row in bad.iter_rows(named=True)
        )
        html = (
            "<p>These intervals contain values that are not probabilities:</p>"
            f"<ul>{items}</ul>"
            "<p>A bound below 0 claims the success rate could be negative. Clamping it "
            "to 0 hides the symptom but not the cause: the normal approximation is "
            "poor at this sample size and rate.</p>"
        )
    report.add(TextSection(id="admissibility", title="Inadmissible Bounds", html=html))


def _add_sweep_table(report: ReportBuilder, sweep: pl.DataFrame) -> None:
    html = make_gt(
        sweep,
        title="Wald Interval by Confidence Level",
        column_labels=INTERVAL_LABELS,
        number_formats=INTERVAL_FORMATS,
    )
    report.add(TableSection(id="sweep", title="Wald Interval by Confidence Level", html=html))


def _add_coverage_figure(report: ReportBuilder, plots_dir: Path, scenario: Scenario) -> None:
    path = plots_dir / "coverage_curve.png"
    if not path.exists():
        return
    design = "overdispersed" if scenario.is_overdispersed else "Binomial"
    report.add(
        FigureSection.from_file(
            "coverage-curve",
            "Actual Coverage",
            path,
            caption=f"Coverage under the scenario's {design} design at each true p.",
        )
    )


def _add_coverage_table(report: ReportBuilder, coverage: pl.DataFrame) -> None:
    display = coverage.select(
        "method", "true_p", "coverage", "inadmissible_rate", "mean_width"
    ).sort("true_p", "method")
    html = make_gt(
        display,
        title="Coverage Study",
        column_labels={
            "method": "Method",
            "true_p": "True p",
            "coverage": "Coverage",
            "inadmissible_rate": "Share inadmissible",
            "mean_width": "Mean width",
        },
        number_formats={
            "true_p": ".2f",
            "coverage": ".3f",
            "inadmissible_rate": ".3f",
            "mean_width": ".3f",
        },
        source_note=f"{int(coverage['n_simulations'][0])} simulations per row.",
    )
    report.add(TableSection(id="coverage", title="Coverage Study", html=html))
