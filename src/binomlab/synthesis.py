"""Synthetic replicate counts, optionally overdispersed.

Each replicate draws its own success probability from a Beta distribution with
mean ``mean_p`` and concentration ``concentration`` (alpha + beta), then draws
its count from Binomial(n_trials, p_i). Smaller concentration means more
between-replicate heterogeneity. ``concentration=None`` gives plain Binomial
replicates that all share ``mean_p``.

Randomness always comes from an explicit seed or Generator argument.
"""

from __future__ import annotations

import warnings

import numpy as np

from binomlab.models import InvalidArgumentError, TrialObservation

SeedLike = int | np.random.Generator


def _validate_generator_args(
    n_replicates: int,
    n_trials: int,
    mean_p: float,
    concentration: float | None,
) -> None:
    if n_replicates < 1:
        msg = f"n_replicates must be at least 1, got {n_replicates}"
        raise InvalidArgumentError(msg)
    if n_trials < 1:
        msg = f"n_trials must be at least 1, got {n_trials}"
        raise InvalidArgumentError(msg)
    if not 0.0 < mean_p < 1.0:
        msg = f"mean_p must lie strictly between 0 and 1, got {mean_p}"
        raise InvalidArgumentError(msg)
    if concentration is not None and not concentration > 0:
        msg = f"concentration must be positive (or None for Binomial), got {concentration}"
        raise InvalidArgumentError(msg)


def draw_replicate_probabilities(
    n_replicates: int,
    mean_p: float,
    concentration: float | None,
    rng: np.random.Generator,
) -> np.ndarray:
    """Per-replicate success probabilities p_i ~ Beta(mean_p·c, (1 - mean_p)·c)."""
    if concentration is None:
        return np.full(n_replicates, mean_p)
    alpha = mean_p * concentration
    beta = (1 - mean_p) * concentration
    return rng.beta(alpha, beta, size=n_replicates)


def generate_successes(
    n_replicates: int,
    n_trials: int,
    mean_p: float,
    concentration: float | None = None,
    *,
    seed: SeedLike,
) -> TrialObservation:
    """Draw one synthetic dataset of replicate success counts.

    Args:
        n_replicates: Number of independent replicate experiments (R).
        n_trials: Trials per replicate.
        mean_p: Mean success probability across replicates.
        concentration: Beta concentration (alpha + beta) of the replicate
            probabilities. ``None`` disables overdispersion.
        seed: Integer seed, or an existing Generator to draw from (used by the
            coverage simulation to stream many datasets from one seed).

    Returns:
        TrialObservation with ``n_replicates`` counts.
    """
    _validate_generator_args(n_replicates, n_trials, mean_p, concentration)
    rng = np.random.default_rng(seed)

    p_i = draw_replicate_probabilities(n_replicates, mean_p, concentration, rng)
    counts = rng.binomial(n_trials, p_i)

    if isinstance(seed, int) and counts.sum() == 0:
        warnings.warn(
            f"Synthetic dataset (seed={seed}) has zero successes in all "
            f"{n_replicates} replicates; pooled rate is exactly 0",
            stacklevel=2,
        )

    return TrialObservation.from_counts(counts.tolist(), n_trials)
