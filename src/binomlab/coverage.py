"""Monte Carlo coverage of interval methods under a known generating process.

For a fixed true mean p, repeatedly synthesize replicate counts, build an
interval with the chosen method, and record whether it contains p, whether its
bounds are admissible probabilities, and how wide it is.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from binomlab.config import COVERAGE_SIMULATIONS, DEFAULT_CONFIDENCE_LEVEL, RANDOM_SEED
from binomlab.estimator import get_interval_method
from binomlab.models import InvalidArgumentError, validate_confidence_level
from binomlab.synthesis import generate_successes


@dataclass(frozen=True)
class CoverageResult:
    """Summary of one coverage simulation."""

    method: str
    true_p: float
    n_replicates: int
    n_trials: int
    concentration: float | None
    confidence_level: float
    n_simulations: int
    coverage: float
    inadmissible_rate: float
    mean_width: float

    @property
    def coverage_shortfall(self) -> float:
        """Nominal minus actual coverage. Positive means the interval is too narrow."""
        return self.confidence_level - self.coverage

    def as_row(self) -> dict:
        return {
            "method": self.method,
            "true_p": self.true_p,
            "n_replicates": self.n_replicates,
            "n_trials": self.n_trials,
            "concentration": self.concentration,
            "confidence_level": self.confidence_level,
            "n_simulations": self.n_simulations,
            "coverage": self.coverage,
            "inadmissible_rate": self.inadmissible_rate,
            "mean_width": self.mean_width,
        }


def simulate_coverage(
    method: str,
    *,
    true_p: float,
    n_replicates: int,
    n_trials: int,
    concentration: float | None = None,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
    n_simulations: int = COVERAGE_SIMULATIONS,
    seed: int = RANDOM_SEED,
) -> CoverageResult:
    """Estimate actual coverage of *method* at nominal *confidence_level*.

    All datasets stream from a single Generator seeded with *seed*, so results
    are reproducible and two methods run with the same seed see identical data.
    """
    interval_fn = get_interval_method(method)
    level = validate_confidence_level(confidence_level)
    if n_simulations < 1:
        msg = f"n_simulations must be at least 1, got {n_simulations}"
        raise InvalidArgumentError(msg)

    rng = np.random.default_rng(seed)
    covered = np.zeros(n_simulations, dtype=bool)
    inadmissible = np.zeros(n_simulations, dtype=bool)
    widths = np.zeros(n_simulations)

    for i in range(n_simulations):
        obs = generate_successes(n_replicates, n_trials, true_p, concentration, seed=rng)
        interval = interval_fn(obs.successes, obs.n_trials, level)
        covered[i] = interval.contains(true_p)
        inadmissible[i] = not interval.is_admissible
        widths[i] = interval.width

    return CoverageResult(
        method=method,
        true_p=true_p,
        n_replicates=n_replicates,
        n_trials=n_trials,
        concentration=concentration,
        confidence_level=level,
        n_simulations=n_simulations,
        coverage=float(covered.mean()),
        inadmissible_rate=float(inadmissible.mean()),
        mean_width=float(widths.mean()),
    )
