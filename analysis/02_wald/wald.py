"""
Frequentist Intervals for a Binomial Proportion — Wald vs. Alternatives (Phase 2)

Computes the naive Wald (normal-approximation) interval on the pooled count
and shows where it breaks: bounds below 0 or above 1, and coverage far under
nominal when replicates are overdispersed. The Wilson score interval and the
t interval on replicate means are computed alongside for contrast.

Usage:
  uv run python analysis/02_wald/wald.py [--scenario overdispersed] [--run-id ...]
      [--confidence-level 0.95] [--n-simulations 2000] [--skip-coverage]

Outputs (in results/<scenario>/02_wald/<date>/):
  - data/:   intervals.parquet, confidence_sweep.parquet, coverage.parquet
  - plots/:  interval_markers.png, coverage_curve.png
  - run_info.json, run_log.txt, 02_wald_report.html
"""

import argparse
import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import polars as pl

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

try:
    from analysis.run_context import RunContext, resolve_upstream_dir
except ModuleNotFoundError:
    from run_context import RunContext, resolve_upstream_dir

try:
    from analysis.overdispersion import load_observation
except ModuleNotFoundError:
    from overdispersion import load_observation  # type: ignore[no-redef]

try:
    from analysis.wald_report import build_wald_report
except ModuleNotFoundError:
    from wald_report import build_wald_report  # type: ignore[no-redef]

from binomlab.config import COVERAGE_SIMULATIONS, DEFAULT_CONFIDENCE_LEVEL
from binomlab.coverage import simulate_coverage
from binomlab.estimator import INTERVAL_METHODS, estimate
from binomlab.models import ProportionEstimate, TrialObservation
from binomlab.scenario import Scenario

# ── Primer ───────────────────────────────────────────────────────────────────

WALD_PRIMER = """\
# Frequentist Intervals for a Binomial Proportion

## Purpose

Shows what the textbook Wald interval does with overdispersed replicate data,
and why its bounds can be impossible probabilities.

## Method

Pool the replicates: K successes out of N = R * n trials, p_hat = K / N.

- **Wald**: p_hat +/- z * sqrt(p_hat * (1 - p_hat) / N). Bounds are reported as computed,
  never clamped, so lower < 0 or upper > 1 is visible.
- **Wilson score**: inverts the score test instead of the Wald test; bounds are
  always inside [0, 1].
- **Replicate t**: t interval on the mean of the R replicate proportions
  (df = R - 1). Respects between-replicate spread, but is also unclamped.

A Monte Carlo coverage study regenerates the scenario many times at a grid of
true p and records how often each interval contains the truth.

## Outputs

| File | Description |
|------|-------------|
| `data/intervals.parquet` | One row per method: point, lower, upper, width, admissible |
| `data/confidence_sweep.parquet` | Wald interval across confidence levels |
| `data/coverage.parquet` | Coverage, inadmissible rate, mean width per method and true p |
| `plots/interval_markers.png` | Replicate proportions with interval bounds as vertical markers |
| `plots/coverage_curve.png` | Actual vs. nominal coverage across true p |

## Caveats

- Wald and Wilson both treat the N pooled trials as exchangeable. Under
  overdispersion neither accounts for replicate-level variation; their coverage
  falls short no matter how the bounds behave.
"""

# ── Constants ────────────────────────────────────────────────────────────────

CONFIDENCE_SWEEP = (0.80, 0.90, 0.95, 0.99)
COVERAGE_TRUE_P = (0.02, 0.05, 0.1, 0.2, 0.3, 0.5)
METHOD_COLORS = {"wald": "#d95f02", "wilson": "#1b9e77", "replicate_t": "#7570b3"}
METHOD_LABELS = {"wald": "Wald", "wilson": "Wilson score", "replicate_t": "Replicate t"}


# ── Helpers ──────────────────────────────────────────────────────────────────


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Frequentist binomial intervals (Phase 2)")
    parser.add_argument("--scenario", default="overdispersed")
    parser.add_argument("--run-id", default=None, help="Run ID for grouped pipeline output")
    parser.add_argument(
        "--overdispersion-dir", default=None, help="Override overdispersion results directory"
    )
    parser.add_argument("--confidence-level", type=float, default=DEFAULT_CONFIDENCE_LEVEL)
    parser.add_argument(
        "--n-simulations",
        type=int,
        default=COVERAGE_SIMULATIONS,
        help="Coverage simulations per (method, true p)",
    )
    parser.add_argument("--skip-coverage", action="store_true", help="Skip the coverage study")
    return parser.parse_args()


def print_header(title: str) -> None:
    width = 80
    print(f"\n{'=' * width}")
    print(f"  {title}")
    print(f"{'=' * width}")


def save_fig(fig: plt.Figure, path: Path, dpi: int = 150) -> None:
    fig.savefig(path, dpi=dpi, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    print(f"  Saved: {path.name}")


def applicable_methods(observation: TrialObservation) -> list[str]:
    """Interval methods that accept this observation (replicate t needs R >= 2)."""
    methods = list(INTERVAL_METHODS)
    if observation.n_replicates < 2:
        methods.remove("replicate_t")
    return methods


def _interval_row(method: str, level: float, interval: ProportionEstimate) -> dict:
    return {
        "method": method,
        "confidence_level": level,
        "point": interval.point,
        "lower": interval.lower,
        "upper": interval.upper,
        "width": interval.width,
        "admissible": interval.is_admissible,
    }


# ── Core ─────────────────────────────────────────────────────────────────────


def compute_intervals(
    observation: TrialObservation,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
) -> pl.DataFrame:
    """One row per applicable interval method at a single confidence level."""
    rows = []
    for method in applicable_methods(observation):
        interval = INTERVAL_METHODS[method](
            observation.successes, observation.n_trials, confidence_level
        )
        rows.append(_interval_row(method, confidence_level, interval))
    return pl.DataFrame(rows)


def compute_confidence_sweep(
    observation: TrialObservation,
    levels: tuple[float, ...] = CONFIDENCE_SWEEP,
) -> pl.DataFrame:
    """Wald interval at each confidence level. Width grows with the level."""
    rows = [
        _interval_row("wald", level, estimate(observation.successes, observation.n_trials, level))
        for level in levels
    ]
    return pl.DataFrame(rows)


def run_coverage_grid(
    scenario: Scenario,
    methods: list[str],
    *,
    true_ps: tuple[float, ...] = COVERAGE_TRUE_P,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
    n_simulations: int = COVERAGE_SIMULATIONS,
) -> pl.DataFrame:
    """Coverage study for every (method, true p) pair under the scenario's design.

    Each true p uses the same seed for every method, so methods are compared on
    identical simulated datasets.
    """
    rows = []
    for true_p in true_ps:
        for method in methods:
            result = simulate_coverage(
                method,
                true_p=true_p,
                n_replicates=scenario.n_replicates,
                n_trials=scenario.n_trials,
                concentration=scenario.concentration,
                confidence_level=confidence_level,
                n_simulations=n_simulations,
                seed=scenario.seed,
            )
            rows.append(result.as_row())
    return pl.DataFrame(rows)


# ── Plotting ─────────────────────────────────────────────────────────────────


def plot_interval_markers(
    observation: TrialObservation,
    intervals: pl.DataFrame,
    scenario: Scenario,
    out_dir: Path,
) -> None:
    """Histogram of replicate proportions with each interval's bounds as vertical lines.

    The region outside [0, 1] is shaded: any bound that lands there is not a
    probability.
    """
    fig, ax = plt.subplots(figsize=(11, 6))

    # One bin per attainable proportion k / n, centered on it
    bins = (np.arange(observation.n_trials + 2) - 0.5) / observation.n_trials
    ax.hist(
        observation.proportions,
        bins=bins,
        color="#bbbbbb",
        edgecolor="white",
        label="Replicate proportions",
    )

    for row in intervals.iter_rows(named=True):
        color = METHOD_COLORS[row["method"]]
        label = METHOD_LABELS[row["method"]]
        ax.axvline(row["lower"], color=color, linestyle="--", linewidth=2, label=f"{label} bounds")
        ax.axvline(row["upper"], color=color, linestyle="--", linewidth=2)
        ax.axvline(row["point"], color=color, linestyle=":", linewidth=1, alpha=0.6)

    lo = min(-0.1, float(intervals["lower"].min()) - 0.05)
    hi = max(1.1, float(intervals["upper"].max()) + 0.05)
    ax.axvspan(lo, 0, color="#e41a1c", alpha=0.08, label="Not a probability")
    ax.axvspan(1, hi, color="#e41a1c", alpha=0.08)
    ax.set_xlim(lo, hi)

    ax.set_xlabel("Success probability")
    ax.set_ylabel("Number of replicates")
    ax.set_title(
        f"{scenario.name} — Where Do the Interval Bounds Land?\n"
        "Dashed lines are interval bounds; shaded regions lie outside [0, 1].",
        fontsize=12,
        fontweight="bold",
    )
    ax.legend(fontsize=9, loc="upper right")
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    fig.tight_layout()
    save_fig(fig, out_dir / "interval_markers.png")


def plot_coverage_curve(
    coverage: pl.DataFrame,
    scenario: Scenario,
    out_dir: Path,
) -> None:
    """Actual coverage vs. true p per method, with the nominal level as reference."""
    if coverage.height == 0:
        return

    nominal = float(coverage["confidence_level"][0])
    fig, ax = plt.subplots(figsize=(10, 6))

    for method in coverage["method"].unique(maintain_order=True).to_list():
        sub = coverage.filter(pl.col("method") == method).sort("true_p")
        ax.plot(
            sub["true_p"].to_numpy(),
            sub["coverage"].to_numpy(),
            "o-",
            color=METHOD_COLORS.get(method, "#333333"),
            label=METHOD_LABELS.get(method, method),
        )

    ax.axhline(
        nominal,
        color="#888888",
        linestyle=":",
        linewidth=1.5,
        label=f"Nominal {nominal:.0%}",
    )
    ax.set_xlabel("True mean success probability")
    ax.set_ylabel("Actual coverage")
    ax.set_ylim(0, 1.02)
    ax.set_title(
        f"{scenario.name} — How Often Does Each Interval Contain the Truth?\n"
        f"{int(coverage['n_simulations'][0])} simulated datasets per point",
        fontsize=12,
        fontweight="bold",
    )
    ax.legend(fontsize=10, loc="lower right")
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    fig.tight_layout()
    save_fig(fig, out_dir / "coverage_curve.png")


# ── Main ─────────────────────────────────────────────────────────────────────


def main() -> None:
    args = parse_args()
    scenario = Scenario.from_name(args.scenario)

    with RunContext(
        scenario=scenario.name,
        analysis_name="02_wald",
        params=vars(args),
        primer=WALD_PRIMER,
        run_id=args.run_id,
    ) as ctx:
        print(f"Frequentist Intervals — Scenario {scenario.name}")
        print(f"Output:   {ctx.run_dir}")

        upstream = resolve_upstream_dir(
            "01_overdispersion",
            scenario.results_dir,
            args.run_id,
            override=Path(args.overdispersion_dir) if args.overdispersion_dir else None,
        )

        print_header("LOADING DATA")
        observation = load_observation(upstream, scenario)
        agg = observation.aggregate()
        print(f"  {observation.n_replicates} replicates x {observation.n_trials} trials")
        print(f"  Pooled: K={agg.total_successes} of N={agg.total_trials}")

        # ── Intervals ──
        print_header(f"INTERVALS ({args.confidence_level:.0%})")
        intervals = compute_intervals(observation, args.confidence_level)
        for row in intervals.iter_rows(named=True):
            flag = "" if row["admissible"] else "  <-- outside [0, 1]"
            print(
                f"  {METHOD_LABELS[row['method']]:<14} point={row['point']:.4f}  "
                f"[{row['lower']:+.4f}, {row['upper']:+.4f}]{flag}"
            )
        intervals.write_parquet(ctx.data_dir / "intervals.parquet")

        sweep = compute_confidence_sweep(observation)
        sweep.write_parquet(ctx.data_dir / "confidence_sweep.parquet")

        # ── Coverage ──
        coverage = pl.DataFrame()
        if args.skip_coverage:
            print("\n  Coverage study skipped (--skip-coverage)")
        else:
            print_header("COVERAGE STUDY")
            print(f"  {args.n_simulations} simulations per point, true p in {COVERAGE_TRUE_P}")
            coverage = run_coverage_grid(
                scenario,
                applicable_methods(observation),
                confidence_level=args.confidence_level,
                n_simulations=args.n_simulations,
            )
            for row in coverage.iter_rows(named=True):
                print(
                    f"  p={row['true_p']:<5} {METHOD_LABELS[row['method']]:<14} "
                    f"coverage={row['coverage']:.3f}  "
                    f"inadmissible={row['inadmissible_rate']:.3f}"
                )
            coverage.write_parquet(ctx.data_dir / "coverage.parquet")

        # ── Plots ──
        print_header("PLOTS")
        plot_interval_markers(observation, intervals, scenario, ctx.plots_dir)
        plot_coverage_curve(coverage, scenario, ctx.plots_dir)

        # ── HTML report ──
        print_header("HTML REPORT")
        build_wald_report(
            ctx.report,
            scenario=scenario,
            intervals=intervals,
            sweep=sweep,
            coverage=coverage,
            plots_dir=ctx.plots_dir,
        )

        print_header("DONE")
        print(f"  All outputs in: {ctx.run_dir}")


if __name__ == "__main__":
    main()
