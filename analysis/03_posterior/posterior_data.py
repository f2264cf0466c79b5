"""Posterior computations for the success probability: model, sampler, summaries.

Everything except NutpieSampler.sample is a pure function of numpy/xarray
inputs: no file reading, no prints. Sampling is an injected capability
(PosteriorSampler), so summaries and checks are testable with synthetic draws
and no MCMC.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol

import arviz as az
import numpy as np
import pymc as pm
from numpy.typing import NDArray

try:
    from analysis.model_spec import ModelSpec, SamplerConfig
except ModuleNotFoundError:
    from model_spec import ModelSpec, SamplerConfig  # type: ignore[no-redef]

from binomlab.config import (
    BFMI_THRESHOLD,
    ESS_THRESHOLD,
    MAX_DIVERGENCES,
    PPC_REPLICATIONS,
    RANDOM_SEED,
    RHAT_THRESHOLD,
)
from binomlab.models import (
    InvalidArgumentError,
    ProportionEstimate,
    TrialObservation,
    validate_confidence_level,
)

CONVERGENCE_VARS = ("p", "kappa")

# Keeps Beta shape parameters strictly positive when a draw sits on the boundary
_P_EPS = 1e-12


# ── Sample container and sampler protocol ───────────────────────────────────


@dataclass(frozen=True, eq=False)
class PosteriorSample:
    """Flattened posterior draws of p (and kappa for the Beta-Binomial model)."""

    model: str
    draws: NDArray[np.floating]
    concentration_draws: NDArray[np.floating] | None = None
    idata: az.InferenceData | None = None
    sampling_time: float = 0.0

    @property
    def n_draws(self) -> int:
        return int(self.draws.size)


class PosteriorSampler(Protocol):
    """Anything that turns (model, data, config) into posterior draws."""

    def sample(
        self,
        model_spec: ModelSpec,
        observation: TrialObservation,
        sampler_config: SamplerConfig,
    ) -> PosteriorSample: ...


# ── Model building ──────────────────────────────────────────────────────────


def build_proportion_model(observation: TrialObservation, spec: ModelSpec) -> pm.Model:
    """Build the PyMC model for the replicate counts.

    The free variable is always named ``p`` and lives on [0, 1] by the support
    of its prior. The Beta-Binomial likelihood adds ``kappa`` and marginalizes
    the replicate-level probabilities.
    """
    y = np.asarray(observation.successes, dtype=np.int64)
    coords = {"replicate": np.arange(observation.n_replicates)}

    with pm.Model(coords=coords) as model:
        p = spec.prior.build("p")
        if spec.likelihood == "binomial":
            pm.Binomial("obs", n=observation.n_trials, p=p, observed=y, dims="replicate")
        else:
            kappa = spec.concentration_prior.build("kappa")
            pm.BetaBinomial(
                "obs",
                alpha=p * kappa,
                beta=(1 - p) * kappa,
                n=observation.n_trials,
                observed=y,
                dims="replicate",
            )

    return model


def extract_draws(idata: az.InferenceData, var_name: str = "p") -> NDArray[np.floating]:
    """Flatten (chain, draw) posterior samples of a scalar variable."""
    if var_name not in idata.posterior:
        msg = f"Variable {var_name!r} not found in posterior"
        raise KeyError(msg)
    return np.asarray(idata.posterior[var_name].values, dtype=np.float64).reshape(-1)


def posterior_sample_from_idata(
    model: str,
    idata: az.InferenceData,
    sampling_time: float = 0.0,
) -> PosteriorSample:
    kappa = extract_draws(idata, "kappa") if "kappa" in idata.posterior else None
    return PosteriorSample(
        model=model,
        draws=extract_draws(idata, "p"),
        concentration_draws=kappa,
        idata=idata,
        sampling_time=sampling_time,
    )


class NutpieSampler:
    """Compile the PyMC model with nutpie and run NUTS."""

    def __init__(self, progress_bar: bool = True) -> None:
        self.progress_bar = progress_bar

    def sample(
        self,
        model_spec: ModelSpec,
        observation: TrialObservation,
        sampler_config: SamplerConfig,
    ) -> PosteriorSample:
        import nutpie

        model = build_proportion_model(observation, model_spec)
        compiled = nutpie.compile_pymc_model(model)

        t0 = time.time()
        idata = nutpie.sample(
            compiled,
            draws=sampler_config.draws,
            tune=sampler_config.tune,
            chains=sampler_config.chains,
            seed=sampler_config.seed,
            progress_bar=self.progress_bar,
            store_divergences=True,
        )
        elapsed = time.time() - t0

        return posterior_sample_from_idata(model_spec.name, idata, elapsed)


# ── Interval summaries ──────────────────────────────────────────────────────


def _validated_draws(draws: NDArray[np.floating]) -> NDArray[np.floating]:
    arr = np.asarray(draws, dtype=np.float64).reshape(-1)
    if arr.size == 0:
        msg = "posterior draws must be non-empty"
        raise InvalidArgumentError(msg)
    return arr


def credible_interval(
    draws: NDArray[np.floating],
    confidence_level: float,
) -> ProportionEstimate:
    """Equal-tailed credible interval from empirical quantiles.

    The point estimate is the posterior median, which always lies inside the
    equal-tailed interval. Bounds inherit the support of the draws, so draws
    of a probability give an interval within [0, 1].
    """
    level = validate_confidence_level(confidence_level)
    arr = _validated_draws(draws)

    tail = (1.0 - level) / 2.0
    lower, median, upper = np.quantile(arr, [tail, 0.5, 1.0 - tail])
    return ProportionEstimate(point=float(median), lower=float(lower), upper=float(upper))


def highest_density_interval(
    draws: NDArray[np.floating],
    confidence_level: float,
) -> ProportionEstimate:
    """Narrowest interval holding ``confidence_level`` of the draws (arviz.hdi)."""
    level = validate_confidence_level(confidence_level)
    arr = _validated_draws(draws)

    lower, upper = az.hdi(arr, hdi_prob=level)
    return ProportionEstimate(
        point=float(np.median(arr)), lower=float(lower), upper=float(upper)
    )


def summarize_posterior(
    sample: PosteriorSample,
    confidence_level: float,
) -> dict:
    """One summary row for a fitted model: credible interval, HDI, and kappa."""
    eti = credible_interval(sample.draws, confidence_level)
    hdi = highest_density_interval(sample.draws, confidence_level)
    kappa = sample.concentration_draws
    return {
        "model": sample.model,
        "confidence_level": confidence_level,
        "point": eti.point,
        "mean": float(np.mean(sample.draws)),
        "lower": eti.lower,
        "upper": eti.upper,
        "width": eti.width,
        "hdi_lower": hdi.lower,
        "hdi_upper": hdi.upper,
        "admissible": eti.is_admissible,
        "kappa_median": float(np.median(kappa)) if kappa is not None else None,
        "n_draws": sample.n_draws,
        "sampling_time": sample.sampling_time,
    }


# ── Convergence ─────────────────────────────────────────────────────────────


def check_convergence(
    idata: az.InferenceData,
    var_names: tuple[str, ...] = CONVERGENCE_VARS,
) -> dict:
    """R-hat, bulk ESS, divergences, and E-BFMI against the configured thresholds.

    Returns a flat dict of metrics plus per-check booleans and ``all_ok``.
    Checks whose inputs are absent from ``idata`` (e.g. no energy statistic)
    are reported as passing.
    """
    available = [v for v in var_names if v in idata.posterior]
    if not available:
        msg = f"None of {var_names} found in posterior"
        raise KeyError(msg)
    diag: dict = {"variables": available}

    rhat = az.rhat(idata, var_names=available)
    ess = az.ess(idata, var_names=available)
    for var in available:
        diag[f"{var}_rhat_max"] = float(rhat[var].max())
        diag[f"{var}_ess_min"] = float(ess[var].min())

    has_stats = "sample_stats" in idata.groups()
    if has_stats and "diverging" in idata.sample_stats:
        diag["divergences"] = int(idata.sample_stats["diverging"].sum().values)
    else:
        diag["divergences"] = 0

    if has_stats and "energy" in idata.sample_stats:
        diag["ebfmi"] = [float(v) for v in az.bfmi(idata)]
    else:
        diag["ebfmi"] = []

    diag["rhat_ok"] = all(diag[f"{v}_rhat_max"] < RHAT_THRESHOLD for v in available)
    diag["ess_ok"] = all(diag[f"{v}_ess_min"] > ESS_THRESHOLD for v in available)
    diag["divergence_ok"] = diag["divergences"] < MAX_DIVERGENCES
    diag["bfmi_ok"] = all(v > BFMI_THRESHOLD for v in diag["ebfmi"])
    diag["all_ok"] = (
        diag["rhat_ok"] and diag["ess_ok"] and diag["divergence_ok"] and diag["bfmi_ok"]
    )
    return diag


# ── Posterior predictive check ──────────────────────────────────────────────


def replicate_proportion_sd(counts: NDArray, n_trials: int) -> NDArray[np.floating]:
    """SD (ddof=1) of replicate proportions along the last axis."""
    return np.std(np.asarray(counts, dtype=np.float64) / n_trials, axis=-1, ddof=1)


def simulate_replicated_counts(
    sample: PosteriorSample,
    n_replicates: int,
    n_trials: int,
    *,
    n_reps: int = PPC_REPLICATIONS,
    seed: int | np.random.Generator = RANDOM_SEED,
) -> NDArray[np.int64]:
    """Draw replicated datasets of shape (n_reps, n_replicates) from the posterior.

    Posterior draws are subsampled without replacement (all draws when there
    are fewer than ``n_reps``). Under the Beta-Binomial model each replicate
    gets its own p_i ~ Beta(p * kappa, (1 - p) * kappa).
    """
    rng = np.random.default_rng(seed)
    n_reps = min(n_reps, sample.n_draws)
    idx = rng.choice(sample.n_draws, size=n_reps, replace=False)

    p = np.clip(sample.draws[idx], _P_EPS, 1.0 - _P_EPS)[:, None]
    shape = (n_reps, n_replicates)
    if sample.concentration_draws is not None:
        kappa = sample.concentration_draws[idx][:, None]
        p_rep = rng.beta(p * kappa, (1.0 - p) * kappa, size=shape)
    else:
        p_rep = np.broadcast_to(p, shape)
    return rng.binomial(n_trials, p_rep)


def posterior_predictive_dispersion(
    sample: PosteriorSample,
    observation: TrialObservation,
    *,
    n_reps: int = PPC_REPLICATIONS,
    seed: int | np.random.Generator = RANDOM_SEED,
) -> dict:
    """Can the fitted model reproduce the spread between replicates?

    Test statistic: SD of the replicate proportions. The Bayesian p-value is
    P(T_rep >= T_obs); values near 0 mean the model underpredicts the spread.

    Raises:
        InvalidArgumentError: With fewer than 2 replicates (SD undefined).
    """
    if observation.n_replicates < 2:
        msg = "posterior predictive dispersion check needs at least 2 replicates"
        raise InvalidArgumentError(msg)

    replicated = simulate_replicated_counts(
        sample,
        observation.n_replicates,
        observation.n_trials,
        n_reps=n_reps,
        seed=seed,
    )
    observed_sd = float(replicate_proportion_sd(observation.successes, observation.n_trials))
    replicated_sd = replicate_proportion_sd(replicated, observation.n_trials)

    return {
        "model": sample.model,
        "observed_sd": observed_sd,
        "replicated_sd_mean": float(replicated_sd.mean()),
        "replicated_sd_q05": float(np.quantile(replicated_sd, 0.05)),
        "replicated_sd_q95": float(np.quantile(replicated_sd, 0.95)),
        "bayesian_p": float(np.mean(replicated_sd >= observed_sd)),
        "n_reps": int(replicated_sd.size),
        "replicated_sd": replicated_sd,
    }
