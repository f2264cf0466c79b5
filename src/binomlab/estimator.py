"""Frequentist interval estimators for a binomial success probability.

The Wald interval (``estimate``) is the naive normal approximation on the pooled
count. It is deliberately left unclamped: near the boundary or with few trials
its bounds fall outside [0, 1], which is the failure mode the analysis phases
exist to show. ``wilson_interval`` is the admissible alternative;
``replicate_mean_interval`` is the t interval on per-replicate proportions,
which ignores the trial structure entirely.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence

import numpy as np
from scipy import stats as sp_stats

from binomlab.config import DEFAULT_CONFIDENCE_LEVEL
from binomlab.models import (
    InvalidArgumentError,
    ProportionEstimate,
    TrialObservation,
    validate_confidence_level,
)


def critical_value(confidence_level: float = DEFAULT_CONFIDENCE_LEVEL) -> float:
    """Two-sided standard normal critical value, e.g. 1.959964 for 0.95."""
    level = validate_confidence_level(confidence_level)
    return float(sp_stats.norm.ppf(1 - (1 - level) / 2))


def estimate(
    successes: Sequence[int],
    n_trials: int,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
) -> ProportionEstimate:
    """Wald interval on the pooled count: p̂ ± z·sqrt(p̂(1 - p̂) / N).

    ``N = len(successes) * n_trials`` and ``p̂ = sum(successes) / N``. When p̂ is
    exactly 0 or 1 the variance term vanishes and the interval collapses to the
    point; that is a valid result, not an error.

    Raises:
        InvalidArgumentError: empty ``successes``, a count outside
            [0, n_trials], non-positive ``n_trials``, or a confidence level
            outside (0, 1).
    """
    observation = TrialObservation.from_counts(successes, n_trials)
    z = critical_value(confidence_level)

    agg = observation.aggregate()
    point = agg.rate
    margin = z * math.sqrt(point * (1 - point) / agg.total_trials)
    return ProportionEstimate(point=point, lower=point - margin, upper=point + margin)


def wilson_interval(
    successes: Sequence[int],
    n_trials: int,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
) -> ProportionEstimate:
    """Wilson score interval on the pooled count. Bounds always lie in [0, 1].

    The point estimate is still the pooled rate p̂, which the score interval
    always contains; the interval itself is centered on the shrunk midpoint.
    """
    observation = TrialObservation.from_counts(successes, n_trials)
    z = critical_value(confidence_level)

    agg = observation.aggregate()
    n = agg.total_trials
    p_hat = agg.rate
    z2 = z * z
    denom = 1 + z2 / n
    center = (p_hat + z2 / (2 * n)) / denom
    half = z * math.sqrt(p_hat * (1 - p_hat) / n + z2 / (4 * n * n)) / denom

    # Guard the p̂ = 0 and p̂ = 1 endpoints against round-off past the boundary
    lower = 0.0 if agg.total_successes == 0 else center - half
    upper = 1.0 if agg.total_successes == n else center + half
    return ProportionEstimate(point=p_hat, lower=lower, upper=upper)


def replicate_mean_interval(
    successes: Sequence[int],
    n_trials: int,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
) -> ProportionEstimate:
    """Student-t interval on the mean of per-replicate proportions.

    Treats each replicate's proportion as one observation (df = R - 1). Under
    overdispersion the replicate spread is large and, like the Wald interval,
    the unclamped bounds readily leave [0, 1].

    Raises:
        InvalidArgumentError: fewer than two replicates, plus everything
            ``estimate`` rejects.
    """
    observation = TrialObservation.from_counts(successes, n_trials)
    level = validate_confidence_level(confidence_level)
    if observation.n_replicates < 2:
        msg = (
            "replicate_mean_interval needs at least 2 replicates to estimate "
            f"their spread, got {observation.n_replicates}"
        )
        raise InvalidArgumentError(msg)

    rates = observation.proportions
    r = observation.n_replicates
    mean = float(np.mean(rates))
    se = float(np.std(rates, ddof=1)) / math.sqrt(r)
    t_crit = float(sp_stats.t.ppf(1 - (1 - level) / 2, df=r - 1))
    margin = t_crit * se
    return ProportionEstimate(point=mean, lower=mean - margin, upper=mean + margin)


IntervalMethod = Callable[[Sequence[int], int, float], ProportionEstimate]

INTERVAL_METHODS: dict[str, IntervalMethod] = {
    "wald": estimate,
    "wilson": wilson_interval,
    "replicate_t": replicate_mean_interval,
}


def get_interval_method(name: str) -> IntervalMethod:
    """Look up an interval estimator by name."""
    try:
        return INTERVAL_METHODS[name]
    except KeyError:
        msg = (
            f"Unknown interval method: {name!r}. "
            f"Supported: {', '.join(sorted(INTERVAL_METHODS))}"
        )
        raise InvalidArgumentError(msg) from None
