"""
MCMC Posterior for a Binomial Proportion — Credible vs. Wald Intervals (Phase 3)

Fits the success probability with PyMC (compiled and sampled by nutpie) under
two likelihoods: a pooled Binomial that, like the Wald interval, treats every
trial as exchangeable, and a Beta-Binomial that lets replicates differ. The
credible intervals are plotted against the Wald interval on the same axis.

Usage:
  uv run python analysis/03_posterior/posterior.py [--scenario overdispersed]
      [--run-id ...] [--n-draws 2000] [--n-tune 1000] [--n-chains 4]
      [--prior uniform] [--models binomial beta_binomial]

Outputs (in results/<scenario>/03_posterior/<date>/):
  - data/:   posterior_summary.parquet, interval_comparison.parquet,
             ppc_dispersion.parquet, convergence_<model>.json, idata_<model>.nc
  - plots/:  posterior_vs_wald.png, ppc_dispersion.png
  - run_info.json, run_log.txt, 03_posterior_report.html
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
    from analysis.model_spec import LIKELIHOODS, PRIORS, ModelSpec, SamplerConfig
except ModuleNotFoundError:
    from model_spec import LIKELIHOODS, PRIORS, ModelSpec, SamplerConfig  # type: ignore[no-redef]

try:
    from analysis.posterior_data import (
        NutpieSampler,
        PosteriorSample,
        PosteriorSampler,
        check_convergence,
        credible_interval,
        posterior_predictive_dispersion,
        summarize_posterior,
    )
except ModuleNotFoundError:
    from posterior_data import (  # type: ignore[no-redef]
        NutpieSampler,
        PosteriorSample,
        PosteriorSampler,
        check_convergence,
        credible_interval,
        posterior_predictive_dispersion,
        summarize_posterior,
    )

try:
    from analysis.posterior_report import build_posterior_report
except ModuleNotFoundError:
    from posterior_report import build_posterior_report  # type: ignore[no-redef]

from binomlab.config import (
    DEFAULT_CONFIDENCE_LEVEL,
    N_CHAINS,
    N_DRAWS,
    N_TUNE,
    PPC_REPLICATIONS,
    RANDOM_SEED,
)
from binomlab.estimator import estimate
from binomlab.models import ProportionEstimate, TrialObservation
from binomlab.scenario import Scenario

# ── Primer ───────────────────────────────────────────────────────────────────

POSTERIOR_PRIMER = """\
# MCMC Posterior for a Binomial Proportion

## Purpose

Puts a Bayesian credible interval next to the Wald interval for the same
replicate data. The posterior lives on [0, 1] by construction, so its
interval can never claim a negative success rate.

## Method

Two models, both with a Beta(1, 1) prior on p by default:

- **Pooled Binomial**: y_i ~ Binomial(n, p). Same information as the Wald
  interval (one p, N exchangeable trials), but the posterior respects [0, 1].
- **Beta-Binomial**: y_i ~ BetaBinomial(n, p * kappa, (1 - p) * kappa) with
  kappa ~ Gamma(2, 0.1). Replicates may differ; the interval widens to reflect it.

PyMC builds each model, nutpie compiles it and runs NUTS. Convergence is
checked with R-hat, bulk ESS, divergences, and E-BFMI. A posterior predictive
check asks whether each model reproduces the observed spread of replicate
proportions.

## Outputs

| File | Description |
|------|-------------|
| `data/posterior_summary.parquet` | Median, equal-tailed and HDI bounds, kappa, timing per model |
| `data/interval_comparison.parquet` | Wald vs. credible intervals side by side |
| `data/ppc_dispersion.parquet` | Observed vs. replicated SD of replicate proportions |
| `data/convergence_<model>.json` | Convergence diagnostics |
| `data/idata_<model>.nc` | Full ArviZ InferenceData |
| `plots/posterior_vs_wald.png` | Posterior histograms with credible and Wald bounds |
| `plots/ppc_dispersion.png` | Replicated SD distributions vs. the observed SD |

## Caveats

- The pooled Binomial posterior is admissible but, like Wald, too narrow
  under overdispersion. Admissibility and calibration are separate problems.
- The Beta-Binomial fit needs several replicates to identify kappa; with two
  replicates the kappa posterior is mostly prior.
"""

# ── Constants ────────────────────────────────────────────────────────────────

MODEL_COLORS = {"binomial": "#7570b3", "beta_binomial": "#1b9e77"}
MODEL_LABELS = {"binomial": "Pooled Binomial", "beta_binomial": "Beta-Binomial"}
WALD_COLOR = "#d95f02"
INTERVALS_FILENAME = "intervals.parquet"


# ── Helpers ──────────────────────────────────────────────────────────────────


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="MCMC posterior for a proportion (Phase 3)")
    parser.add_argument("--scenario", default="overdispersed")
    parser.add_argument("--run-id", default=None, help="Run ID for grouped pipeline output")
    parser.add_argument(
        "--overdispersion-dir", default=None, help="Override overdispersion results directory"
    )
    parser.add_argument("--wald-dir", default=None, help="Override Wald results directory")
    parser.add_argument("--n-draws", type=int, default=N_DRAWS, help="MCMC draws per chain")
    parser.add_argument("--n-tune", type=int, default=N_TUNE, help="MCMC tuning steps")
    parser.add_argument("--n-chains", type=int, default=N_CHAINS, help="Number of MCMC chains")
    parser.add_argument("--seed", type=int, default=RANDOM_SEED)
    parser.add_argument("--confidence-level", type=float, default=DEFAULT_CONFIDENCE_LEVEL)
    parser.add_argument("--prior", default="uniform", choices=sorted(PRIORS))
    parser.add_argument(
        "--models",
        nargs="+",
        default=list(LIKELIHOODS),
        choices=LIKELIHOODS,
        help="Likelihoods to fit",
    )
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


def _interval_row(method: str, kind: str, interval: ProportionEstimate) -> dict:
    return {
        "method": method,
        "kind": kind,
        "point": interval.point,
        "lower": interval.lower,
        "upper": interval.upper,
        "width": interval.width,
        "admissible": interval.is_admissible,
    }


# ── Data I/O ─────────────────────────────────────────────────────────────────


def load_wald_interval(
    upstream_dir: Path,
    observation: TrialObservation,
    confidence_level: float,
) -> ProportionEstimate:
    """Wald interval from an upstream 02_wald run, or recomputed from the counts.

    The upstream row is used only when it was computed at the same confidence
    level; otherwise the interval is recomputed.
    """
    path = upstream_dir / "data" / INTERVALS_FILENAME
    if path.exists():
        rows = pl.read_parquet(path).filter(
            (pl.col("method") == "wald")
            & ((pl.col("confidence_level") - confidence_level).abs() < 1e-9)
        )
        if rows.height > 0:
            row = rows.row(0, named=True)
            print(f"  Wald interval: {path}")
            return ProportionEstimate(point=row["point"], lower=row["lower"], upper=row["upper"])
    print("  Wald interval: recomputed from replicate counts")
    return estimate(observation.successes, observation.n_trials, confidence_level)


# ── Core ─────────────────────────────────────────────────────────────────────


def build_model_specs(prior_name: str, likelihoods: list[str]) -> list[ModelSpec]:
    """One ModelSpec per requested likelihood, all sharing the named prior on p."""
    if prior_name not in PRIORS:
        msg = f"Unknown prior {prior_name!r}. Available: {', '.join(sorted(PRIORS))}"
        raise ValueError(msg)
    return [ModelSpec(prior=PRIORS[prior_name], likelihood=lik) for lik in likelihoods]


def fit_models(
    observation: TrialObservation,
    specs: list[ModelSpec],
    sampler: PosteriorSampler,
    config: SamplerConfig,
) -> dict[str, PosteriorSample]:
    """Sample every model with the injected sampler, keyed by model name."""
    samples: dict[str, PosteriorSample] = {}
    for spec in specs:
        print(f"\n  Fitting {MODEL_LABELS.get(spec.name, spec.name)}: {spec.describe()}")
        print(
            f"  {config.draws} draws, {config.tune} tune, {config.chains} chains, "
            f"seed {config.seed}"
        )
        sample = sampler.sample(spec, observation, config)
        print(f"  {sample.n_draws} posterior draws in {sample.sampling_time:.1f}s")
        samples[spec.name] = sample
    return samples


def compute_posterior_summary(
    samples: dict[str, PosteriorSample],
    confidence_level: float,
) -> pl.DataFrame:
    return pl.DataFrame([summarize_posterior(s, confidence_level) for s in samples.values()])


def compute_interval_comparison(
    samples: dict[str, PosteriorSample],
    wald: ProportionEstimate,
    confidence_level: float,
) -> pl.DataFrame:
    """Wald confidence interval and each model's equal-tailed credible interval."""
    rows = [_interval_row("wald", "confidence", wald)]
    for name, sample in samples.items():
        interval = credible_interval(sample.draws, confidence_level)
        rows.append(_interval_row(name, "credible", interval))
    return pl.DataFrame(rows)


def compute_ppc(
    samples: dict[str, PosteriorSample],
    observation: TrialObservation,
    n_reps: int = PPC_REPLICATIONS,
) -> tuple[pl.DataFrame, dict[str, np.ndarray]]:
    """Dispersion PPC for every model: summary frame plus replicated SD arrays."""
    if observation.n_replicates < 2:
        return pl.DataFrame(), {}

    rows = []
    replicated: dict[str, np.ndarray] = {}
    for name, sample in samples.items():
        result = posterior_predictive_dispersion(sample, observation, n_reps=n_reps)
        replicated[name] = result.pop("replicated_sd")
        rows.append(result)
    return pl.DataFrame(rows), replicated


# ── Plotting ─────────────────────────────────────────────────────────────────


def plot_posterior_vs_wald(
    samples: dict[str, PosteriorSample],
    comparison: pl.DataFrame,
    scenario: Scenario,
    out_dir: Path,
) -> None:
    """Posterior histograms of p with credible bounds, and the Wald bounds on the same axis."""
    fig, ax = plt.subplots(figsize=(11, 6))

    for name, sample in samples.items():
        ax.hist(
            sample.draws,
            bins=80,
            range=(0, 1),
            density=True,
            alpha=0.45,
            color=MODEL_COLORS.get(name, "#555555"),
            label=f"{MODEL_LABELS.get(name, name)} posterior",
        )

    for row in comparison.iter_rows(named=True):
        if row["method"] == "wald":
            color, style, label = WALD_COLOR, "--", "Wald bounds"
        else:
            color = MODEL_COLORS.get(row["method"], "#555555")
            style = "-"
            label = f"{MODEL_LABELS.get(row['method'], row['method'])} credible bounds"
        ax.axvline(row["lower"], color=color, linestyle=style, linewidth=2, label=label)
        ax.axvline(row["upper"], color=color, linestyle=style, linewidth=2)

    lo = min(-0.1, float(comparison["lower"].min()) - 0.05)
    hi = max(1.1, float(comparison["upper"].max()) + 0.05)
    ax.axvspan(lo, 0, color="#e41a1c", alpha=0.08, label="Not a probability")
    ax.axvspan(1, hi, color="#e41a1c", alpha=0.08)
    ax.set_xlim(lo, hi)

    ax.set_xlabel("Success probability p")
    ax.set_ylabel("Posterior density")
    ax.set_title(
        f"{scenario.name} — Credible Intervals vs. the Wald Interval\n"
        "The posterior cannot leave [0, 1]; the Wald interval can.",
        fontsize=12,
        fontweight="bold",
    )
    ax.legend(fontsize=9, loc="upper right")
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    fig.tight_layout()
    save_fig(fig, out_dir / "posterior_vs_wald.png")


def plot_ppc_dispersion(
    ppc: pl.DataFrame,
    replicated: dict[str, np.ndarray],
    scenario: Scenario,
    out_dir: Path,
) -> None:
    """Replicated SD of replicate proportions per model, with the observed SD marked."""
    if ppc.height == 0:
        return

    observed = float(ppc["observed_sd"][0])
    fig, ax = plt.subplots(figsize=(10, 6))

    for row in ppc.iter_rows(named=True):
        name = row["model"]
        ax.hist(
            replicated[name],
            bins=40,
            alpha=0.5,
            color=MODEL_COLORS.get(name, "#555555"),
            label=f"{MODEL_LABELS.get(name, name)} (p = {row['bayesian_p']:.3f})",
        )
    ax.axvline(observed, color="black", linewidth=2, label=f"Observed SD = {observed:.3f}")

    ax.set_xlabel("SD of replicate proportions")
    ax.set_ylabel("Replicated datasets")
    ax.set_title(
        f"{scenario.name} — Can Each Model Reproduce the Replicate Spread?\n"
        "Bayesian p-value: share of replicated datasets at least as spread out as observed",
        fontsize=12,
        fontweight="bold",
    )
    ax.legend(fontsize=10)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    fig.tight_layout()
    save_fig(fig, out_dir / "ppc_dispersion.png")


# ── Main ─────────────────────────────────────────────────────────────────────


def run_posterior(
    args: argparse.Namespace,
    sampler: PosteriorSampler,
    results_root: Path | None = None,
) -> None:
    """Full phase run with an injected sampler."""
    scenario = Scenario.from_name(args.scenario)
    config = SamplerConfig(
        draws=args.n_draws,
        tune=args.n_tune,
        chains=args.n_chains,
        seed=args.seed,
    )
    scenario_root = (results_root / scenario.name) if results_root else scenario.results_dir

    with RunContext(
        scenario=scenario.name,
        analysis_name="03_posterior",
        params=vars(args),
        results_root=results_root,
        primer=POSTERIOR_PRIMER,
        run_id=args.run_id,
    ) as ctx:
        print(f"MCMC Posterior — Scenario {scenario.name}")
        print(f"Output:   {ctx.run_dir}")

        overdispersion_dir = resolve_upstream_dir(
            "01_overdispersion",
            scenario_root,
            args.run_id,
            override=Path(args.overdispersion_dir) if args.overdispersion_dir else None,
        )
        wald_dir = resolve_upstream_dir(
            "02_wald",
            scenario_root,
            args.run_id,
            override=Path(args.wald_dir) if args.wald_dir else None,
        )

        print_header("LOADING DATA")
        observation = load_observation(overdispersion_dir, scenario)
        agg = observation.aggregate()
        print(f"  {observation.n_replicates} replicates x {observation.n_trials} trials")
        print(f"  Pooled: K={agg.total_successes} of N={agg.total_trials}")
        wald = load_wald_interval(wald_dir, observation, args.confidence_level)
        print(f"  Wald {args.confidence_level:.0%}: [{wald.lower:+.4f}, {wald.upper:+.4f}]")

        # ── Sampling ──
        print_header("SAMPLING")
        specs = build_model_specs(args.prior, args.models)
        samples = fit_models(observation, specs, sampler, config)

        # ── Convergence ──
        convergence: dict[str, dict] = {}
        for name, sample in samples.items():
            if sample.idata is None:
                continue
            print_header(f"CONVERGENCE — {MODEL_LABELS.get(name, name)}")
            diag = check_convergence(sample.idata)
            for var in diag["variables"]:
                print(
                    f"  {var}: R-hat max = {diag[f'{var}_rhat_max']:.4f}, "
                    f"ESS min = {diag[f'{var}_ess_min']:.0f}"
                )
            print(f"  Divergences: {diag['divergences']}")
            for i, v in enumerate(diag["ebfmi"]):
                print(f"  E-BFMI chain {i}: {v:.3f}")
            print(f"  {'CONVERGED' if diag['all_ok'] else 'CONVERGENCE WARNINGS'}")
            convergence[name] = diag

            with open(ctx.data_dir / f"convergence_{name}.json", "w") as f:
                json.dump(diag, f, indent=2, default=str)
            sample.idata.to_netcdf(str(ctx.data_dir / f"idata_{name}.nc"))
            print(f"  Saved: idata_{name}.nc")

        # ── Intervals ──
        print_header(f"INTERVALS ({args.confidence_level:.0%})")
        summary = compute_posterior_summary(samples, args.confidence_level)
        summary.write_parquet(ctx.data_dir / "posterior_summary.parquet")
        comparison = compute_interval_comparison(samples, wald, args.confidence_level)
        comparison.write_parquet(ctx.data_dir / "interval_comparison.parquet")
        for row in comparison.iter_rows(named=True):
            flag = "" if row["admissible"] else "  <-- outside [0, 1]"
            label = MODEL_LABELS.get(row["method"], row["method"].capitalize())
            print(
                f"  {label:<16} point={row['point']:.4f}  "
                f"[{row['lower']:+.4f}, {row['upper']:+.4f}]{flag}"
            )

        # ── Posterior predictive check ──
        print_header("POSTERIOR PREDICTIVE CHECK")
        ppc, replicated = compute_ppc(samples, observation)
        if ppc.height == 0:
            print("  Skipped: fewer than 2 replicates")
        else:
            for row in ppc.iter_rows(named=True):
                print(
                    f"  {MODEL_LABELS.get(row['model'], row['model']):<16} "
                    f"replicated SD {row['replicated_sd_mean']:.3f} "
                    f"vs observed {row['observed_sd']:.3f}  "
                    f"(Bayesian p = {row['bayesian_p']:.3f})"
                )
            ppc.write_parquet(ctx.data_dir / "ppc_dispersion.parquet")

        # ── Plots ──
        print_header("PLOTS")
        plot_posterior_vs_wald(samples, comparison, scenario, ctx.plots_dir)
        plot_ppc_dispersion(ppc, replicated, scenario, ctx.plots_dir)

        # ── HTML report ──
        print_header("HTML REPORT")
        build_posterior_report(
            ctx.report,
            scenario=scenario,
            specs=specs,
            summary=summary,
            comparison=comparison,
            convergence=convergence,
            ppc=ppc,
            plots_dir=ctx.plots_dir,
        )

        print_header("DONE")
        print(f"  All outputs in: {ctx.run_dir}")


def main() -> None:
    run_posterior(parse_args(), NutpieSampler())


if __name__ == "__main__":
    main()
