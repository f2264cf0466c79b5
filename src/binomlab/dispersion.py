"""Overdispersion diagnostics for replicate binomial counts.

A single-p Binomial model predicts count variance n·p·(1 - p). Heterogeneous
replicates inflate the observed variance beyond that. These helpers quantify
the excess and fit the Beta-Binomial that explains it.
"""

from __future__ import annotations

import numpy as np
from scipy import stats as sp_stats

from binomlab.models import TrialObservation

FALLBACK_ALPHA = 1.0
FALLBACK_BETA = 1.0
MIN_BETA_PARAM = 0.5


def dispersion_index(observation: TrialObservation) -> float:
    """Ratio of observed count variance to the Binomial variance at the pooled rate.

    Around 1 for Binomial data; well above 1 when replicates are heterogeneous.
    Returns NaN when it is undefined: a single replicate (no sample variance)
    or a pooled rate of exactly 0 or 1 (zero expected variance).
    """
    if observation.n_replicates < 2:
        return float("nan")
    counts = np.asarray(observation.successes, dtype=float)
    p_hat = observation.aggregate().rate
    expected_var = observation.n_trials * p_hat * (1 - p_hat)
    if expected_var <= 0:
        return float("nan")
    return float(np.var(counts, ddof=1) / expected_var)


def tarone_test(observation: TrialObservation) -> tuple[float, float]:
    """Tarone's score test for Beta-Binomial overdispersion.

    Tests H0: counts are Binomial with a common p against H1: Beta-Binomial.

    Returns (z_statistic, p_value). Large positive Z rejects H0. Degenerate
    inputs (pooled rate 0 or 1) return (0.0, 1.0).
    Reference: Tarone (1979), Biometrika 66(3), 585-590.
    """
    y = np.asarray(observation.successes, dtype=float)
    n = np.full_like(y, observation.n_trials)
    p_hat = y.sum() / n.sum()
    expected = n * p_hat
    variance = n * p_hat * (1 - p_hat)
    numerator = float(((y - expected) ** 2 - variance).sum())
    denominator = float(np.sqrt(2 * (variance**2).sum()))
    if denominator < 1e-12:
        return (0.0, 1.0)
    z = numerator / denominator
    p_value = float(sp_stats.norm.sf(z))
    return (z, p_value)


def estimate_beta_params(observation: TrialObservation) -> tuple[float, float]:
    """Method-of-moments Beta(alpha, beta) fit to the per-replicate proportions.

    Returns (alpha, beta), each floored at 0.5. Falls back to Beta(1, 1) with
    fewer than two replicates, a mean at the boundary, or a variance beyond
    what any Beta can produce.
    """
    if observation.n_replicates < 2:
        return (FALLBACK_ALPHA, FALLBACK_BETA)

    rates = observation.proportions
    mu = float(np.mean(rates))
    var = float(np.var(rates, ddof=1))

    if mu <= 0 or mu >= 1:
        return (FALLBACK_ALPHA, FALLBACK_BETA)

    if var < 1e-12:
        # Identical rates: tight prior centered on mu
        kappa = 100.0
        return (max(mu * kappa, MIN_BETA_PARAM), max((1 - mu) * kappa, MIN_BETA_PARAM))

    # var = mu(1 - mu) / (alpha + beta + 1)
    if var >= mu * (1 - mu):
        return (FALLBACK_ALPHA, FALLBACK_BETA)

    common = mu * (1 - mu) / var - 1
    alpha = mu * common
    beta = (1 - mu) * common
    return (max(alpha, MIN_BETA_PARAM), max(beta, MIN_BETA_PARAM))


def summarize_dispersion(observation: TrialObservation) -> dict:
    """All overdispersion diagnostics for one dataset, as a flat JSON-ready dict."""
    agg = observation.aggregate()
    z, p_value = tarone_test(observation)
    alpha, beta = estimate_beta_params(observation)
    return {
        "n_replicates": observation.n_replicates,
        "n_trials": observation.n_trials,
        "total_successes": agg.total_successes,
        "total_trials": agg.total_trials,
        "pooled_rate": agg.rate,
        "replicate_rate_sd": (
            float(np.std(observation.proportions, ddof=1))
            if observation.n_replicates > 1
            else float("nan")
        ),
        "dispersion_index": dispersion_index(observation),
        "tarone_z": z,
        "tarone_p": p_value,
        "overdispersed": p_value < 0.05,
        "mom_alpha": alpha,
        "mom_beta": beta,
        "mom_concentration": alpha + beta,
    }
