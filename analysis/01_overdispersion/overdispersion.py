"""
Overdispersed Replicate Counts — Data Synthesis and Diagnostics (Phase 1)

Generates the synthetic replicate experiment for a scenario and measures how
far it departs from a single-p Binomial: dispersion index, Tarone's score test,
and a method-of-moments Beta-Binomial fit. Everything downstream (Wald
intervals, MCMC posterior) reads the replicate counts written here.

Usage:
  uv run python analysis/01_overdispersion/overdispersion.py [--scenario overdispersed]
      [--run-id ...]

Outputs (in results/<scenario>/01_overdispersion/<date>/):
  - data/:   replicates.parquet, count_distribution.parquet, dispersion.json
  - plots/:  count_histogram.png, replicate_proportions.png
  - run_info.json, run_log.txt, 01_overdispersion_report.html
"""

import argparse
import json
import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import polars as pl
from scipy import stats as sp_stats

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

try:
    from analysis.run_context import RunContext
except ModuleNotFoundError:
    from run_context import RunContext

try:
    from analysis.overdispersion_report import build_overdispersion_report
except ModuleNotFoundError:
    from overdispersion_report import build_overdispersion_report  # type: ignore[no-redef]

from binomlab.dispersion import summarize_dispersion
from binomlab.models import TrialObservation
from binomlab.scenario import Scenario

# ── Primer ───────────────────────────────────────────────────────────────────

OVERDISPERSION_PRIMER = """\
# Overdispersed Replicate Counts

## Purpose

Builds the dataset every later phase analyzes: R replicate experiments of
n trials each, with success counts drawn so that replicates genuinely
disagree about the success probability.

## Method

Each replicate i draws its own p_i ~ Beta(mean_p * c, (1 - mean_p) * c), then a
count y_i ~ Binomial(n, p_i). The concentration c controls heterogeneity:
small c scatters the p_i toward 0 and 1, large c pulls them to mean_p, and
the `binomial` control scenario fixes every p_i = mean_p.

Diagnostics:
- **Dispersion index** — observed count variance / n * p_hat * (1 - p_hat).
  About 1 for Binomial data.
- **Tarone's Z** — score test of Binomial vs. Beta-Binomial. Large positive Z
  (small p) means overdispersion.
- **Method-of-moments Beta fit** — the Beta(alpha, beta) implied by the spread of
  replicate proportions; alpha + beta estimates c.

## Outputs

| File | Description |
|------|-------------|
| `data/replicates.parquet` | One row per replicate: successes, trials, proportion |
| `data/count_distribution.parquet` | Observed vs. Binomial vs. Beta-Binomial count frequencies |
| `data/dispersion.json` | All diagnostics plus the scenario parameters |
| `plots/count_histogram.png` | Observed count frequencies against both model pmfs |
| `plots/replicate_proportions.png` | Replicate proportions around the pooled rate |

## Caveats

- With ten replicates Tarone's test has modest power; the dispersion index is
  the more direct read.
- The seed is part of the scenario. Re-running reproduces the same counts.
"""

# ── Constants ────────────────────────────────────────────────────────────────

REPLICATES_FILENAME = "replicates.parquet"
OBSERVED_COLOR = "#4a4a4a"
BINOMIAL_COLOR = "#d95f02"
BETA_BINOMIAL_COLOR = "#1b9e77"


# ── Helpers ──────────────────────────────────────────────────────────────────


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Overdispersed replicate synthesis (Phase 1)")
    parser.add_argument("--scenario", default="overdispersed")
    parser.add_argument("--run-id", default=None, help="Run ID for grouped pipeline output")
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


# ── Data I/O ─────────────────────────────────────────────────────────────────


def replicates_frame(observation: TrialObservation) -> pl.DataFrame:
    """One row per replicate, in replicate order."""
    return pl.DataFrame(
        {
            "replicate": list(range(1, observation.n_replicates + 1)),
            "successes": list(observation.successes),
            "n_trials": [observation.n_trials] * observation.n_replicates,
            "proportion": observation.proportions.tolist(),
        }
    )


def observation_from_frame(df: pl.DataFrame) -> TrialObservation:
    """Inverse of replicates_frame(). All rows must share one n_trials."""
    trials = df["n_trials"].unique().to_list()
    if len(trials) != 1:
        msg = f"Replicates must share one n_trials value, found {sorted(trials)}"
        raise ValueError(msg)
    ordered = df.sort("replicate")
    return TrialObservation.from_counts(ordered["successes"].to_list(), int(trials[0]))


def load_observation(upstream_dir: Path, scenario: Scenario) -> TrialObservation:
    """Read replicate counts from an upstream run, or regenerate them from the scenario.

    Regeneration is exact: the scenario pins the seed.
    """
    path = upstream_dir / "data" / REPLICATES_FILENAME
    if path.exists():
        print(f"  Replicates: {path}")
        return observation_from_frame(pl.read_parquet(path))
    print(f"  No replicates at {path} — regenerating from scenario '{scenario.name}'")
    return scenario.generate()


# ── Core ─────────────────────────────────────────────────────────────────────


def compute_count_distribution(
    observation: TrialObservation,
    alpha: float,
    beta: float,
) -> pl.DataFrame:
    """Observed count frequencies with expected frequencies under both models.

    Binomial uses the pooled rate; Beta-Binomial uses the supplied Beta(alpha, beta)
    (normally the method-of-moments fit). Expected columns are counts of
    replicates, so each sums to R.
    """
    n = observation.n_trials
    r = observation.n_replicates
    k = np.arange(n + 1)
    observed = np.bincount(np.asarray(observation.successes), minlength=n + 1)
    p_hat = observation.aggregate().rate

    return pl.DataFrame(
        {
            "successes": k.tolist(),
            "observed": observed.tolist(),
            "binomial_expected": (r * sp_stats.binom.pmf(k, n, p_hat)).tolist(),
            "beta_binomial_expected": (r * sp_stats.betabinom.pmf(k, n, alpha, beta)).tolist(),
        }
    )


# ── Plotting ─────────────────────────────────────────────────────────────────


def plot_count_histogram(
    distribution: pl.DataFrame,
    scenario: Scenario,
    out_dir: Path,
) -> None:
    """Bars: observed replicate counts. Lines: Binomial vs. Beta-Binomial expectation."""
    k = distribution["successes"].to_numpy()
    fig, ax = plt.subplots(figsize=(10, 6))

    ax.bar(
        k,
        distribution["observed"].to_numpy(),
        color=OBSERVED_COLOR,
        alpha=0.6,
        label="Observed replicates",
    )
    ax.plot(
        k,
        distribution["binomial_expected"].to_numpy(),
        "o-",
        color=BINOMIAL_COLOR,
        label="Binomial (single p)",
    )
    ax.plot(
        k,
        distribution["beta_binomial_expected"].to_numpy(),
        "s--",
        color=BETA_BINOMIAL_COLOR,
        label="Beta-Binomial (method of moments)",
    )

    ax.set_xlabel(f"Successes per replicate (out of {scenario.n_trials})")
    ax.set_ylabel("Number of replicates")
    ax.set_xticks(k)
    ax.set_title(
        f"{scenario.name} — Do the Replicates Agree With One Another?\n"
        "A single-p Binomial concentrates counts near the pooled rate; "
        "overdispersed data piles up at the extremes.",
        fontsize=12,
        fontweight="bold",
    )
    ax.legend(fontsize=10)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    fig.tight_layout()
    save_fig(fig, out_dir / "count_histogram.png")


def plot_replicate_proportions(
    observation: TrialObservation,
    scenario: Scenario,
    out_dir: Path,
) -> None:
    """Dot per replicate, with the pooled rate as a reference line."""
    props = observation.proportions
    replicate_ids = np.arange(1, observation.n_replicates + 1)
    pooled = observation.aggregate().rate

    fig, ax = plt.subplots(figsize=(10, 5))
    ax.scatter(replicate_ids, props, color=OBSERVED_COLOR, s=50, zorder=3)
    ax.axhline(
        pooled,
        color=BINOMIAL_COLOR,
        linestyle="--",
        linewidth=1.5,
        label=f"Pooled rate = {pooled:.3f}",
    )
    if scenario.is_overdispersed:
        ax.axhline(
            scenario.mean_p,
            color="#888888",
            linestyle=":",
            linewidth=1,
            label=f"Generating mean p = {scenario.mean_p:g}",
        )

    ax.set_xlabel("Replicate")
    ax.set_ylabel("Proportion of successes")
    ax.set_ylim(-0.05, 1.05)
    ax.set_xticks(replicate_ids)
    ax.set_title(
        f"{scenario.name} — Per-Replicate Success Proportions",
        fontsize=12,
        fontweight="bold",
    )
    ax.legend(fontsize=10, loc="upper right")
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    fig.tight_layout()
    save_fig(fig, out_dir / "replicate_proportions.png")


# ── Main ─────────────────────────────────────────────────────────────────────


def main() -> None:
    args = parse_args()
    scenario = Scenario.from_name(args.scenario)

    with RunContext(
        scenario=scenario.name,
        analysis_name="01_overdispersion",
        params=vars(args),
        primer=OVERDISPERSION_PRIMER,
        run_id=args.run_id,
    ) as ctx:
        print(f"Overdispersed Replicate Counts — Scenario {scenario.name}")
        print(f"  {scenario.describe()}")
        print(f"Output:   {ctx.run_dir}")

        # ── Synthesize ──
        print_header("SYNTHESIZING REPLICATES")
        observation = scenario.generate()
        replicates = replicates_frame(observation)
        print(f"  Successes: {list(observation.successes)}")
        agg = observation.aggregate()
        print(f"  Pooled: K={agg.total_successes} of N={agg.total_trials} (rate {agg.rate:.4f})")
        replicates.write_parquet(ctx.data_dir / REPLICATES_FILENAME)

        # ── Diagnostics ──
        print_header("OVERDISPERSION DIAGNOSTICS")
        diagnostics = summarize_dispersion(observation)
        print(f"  Dispersion index: {diagnostics['dispersion_index']:.2f}")
        verdict = "overdispersion confirmed" if diagnostics["overdispersed"] else "not significant"
        print(
            f"  Tarone's test: Z={diagnostics['tarone_z']:.2f}, "
            f"p={diagnostics['tarone_p']:.4f} — {verdict}"
        )
        print(
            f"  Method-of-moments Beta: alpha={diagnostics['mom_alpha']:.3f}, "
            f"beta={diagnostics['mom_beta']:.3f} "
            f"(concentration {diagnostics['mom_concentration']:.2f})"
        )

        distribution = compute_count_distribution(
            observation, diagnostics["mom_alpha"], diagnostics["mom_beta"]
        )
        distribution.write_parquet(ctx.data_dir / "count_distribution.parquet")

        manifest = {
            "scenario": {
                "name": scenario.name,
                "n_replicates": scenario.n_replicates,
                "n_trials": scenario.n_trials,
                "mean_p": scenario.mean_p,
                "concentration": scenario.concentration,
                "seed": scenario.seed,
            },
            **diagnostics,
        }
        with open(ctx.data_dir / "dispersion.json", "w") as f:
            json.dump(manifest, f, indent=2, default=str)
        print("  Saved: dispersion.json")

        # ── Plots ──
        print_header("PLOTS")
        plot_count_histogram(distribution, scenario, ctx.plots_dir)
        plot_replicate_proportions(observation, scenario, ctx.plots_dir)

        # ── HTML report ──
        print_header("HTML REPORT")
        build_overdispersion_report(
            ctx.report,
            scenario=scenario,
            replicates=replicates,
            diagnostics=diagnostics,
            distribution=distribution,
            plots_dir=ctx.plots_dir,
        )

        print_header("DONE")
        print(f"  All outputs in: {ctx.run_dir}")


if __name__ == "__main__":
    main()
