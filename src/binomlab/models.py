"""Value types for replicate trial counts and interval estimates.

All types are frozen dataclasses: created once from inputs, never mutated.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np


class InvalidArgumentError(ValueError):
    """Raised when counts, trial sizes, or confidence levels are malformed."""


def _is_count(value: object) -> bool:
    """True for Python/numpy integers, excluding bools."""
    return isinstance(value, (int, np.integer)) and not isinstance(value, (bool, np.bool_))


def validate_confidence_level(confidence_level: float) -> float:
    """Return *confidence_level* as a float, or raise if it is not strictly in (0, 1)."""
    try:
        level = float(confidence_level)
    except (TypeError, ValueError) as e:
        msg = f"confidence_level must be a number, got {confidence_level!r}"
        raise InvalidArgumentError(msg) from e
    if not 0.0 < level < 1.0:
        msg = f"confidence_level must lie strictly between 0 and 1, got {confidence_level!r}"
        raise InvalidArgumentError(msg)
    return level


@dataclass(frozen=True)
class AggregateCount:
    """Pooled totals across all replicates: K successes out of N trials."""

    total_successes: int
    total_trials: int

    @property
    def rate(self) -> float:
        return self.total_successes / self.total_trials


@dataclass(frozen=True)
class TrialObservation:
    """Success counts from R independent replicates of ``n_trials`` trials each."""

    successes: tuple[int, ...]
    n_trials: int

    def __post_init__(self) -> None:
        if not _is_count(self.n_trials) or self.n_trials <= 0:
            msg = f"n_trials must be a positive integer, got {self.n_trials!r}"
            raise InvalidArgumentError(msg)
        if len(self.successes) == 0:
            msg = "successes must contain at least one replicate"
            raise InvalidArgumentError(msg)
        for i, count in enumerate(self.successes):
            if not _is_count(count):
                msg = f"successes[{i}] must be an integer, got {count!r}"
                raise InvalidArgumentError(msg)
            if not 0 <= count <= self.n_trials:
                msg = f"successes[{i}]={count} is outside [0, {self.n_trials}]"
                raise InvalidArgumentError(msg)

    @classmethod
    def from_counts(cls, successes: Iterable[int], n_trials: int) -> TrialObservation:
        """Build an observation from any iterable of counts (lists, numpy arrays)."""
        try:
            counts = tuple(successes)
        except TypeError as e:
            msg = f"successes must be an iterable of counts, got {successes!r}"
            raise InvalidArgumentError(msg) from e
        return cls(
            successes=tuple(int(c) if _is_count(c) else c for c in counts),
            n_trials=n_trials,
        )

    @property
    def n_replicates(self) -> int:
        return len(self.successes)

    @property
    def proportions(self) -> np.ndarray:
        """Per-replicate success proportions."""
        return np.asarray(self.successes, dtype=float) / self.n_trials

    def aggregate(self) -> AggregateCount:
        return AggregateCount(
            total_successes=sum(self.successes),
            total_trials=self.n_replicates * self.n_trials,
        )


@dataclass(frozen=True)
class ProportionEstimate:
    """A point estimate of a success probability with interval bounds.

    Bounds are stored exactly as computed. Nothing here clamps them to [0, 1];
    use ``is_admissible`` to check whether they are valid probabilities.
    """

    point: float
    lower: float
    upper: float

    @property
    def margin(self) -> float:
        """Distance from the point estimate to the upper bound."""
        return self.upper - self.point

    @property
    def width(self) -> float:
        return self.upper - self.lower

    @property
    def is_admissible(self) -> bool:
        return self.lower >= 0.0 and self.upper <= 1.0

    def contains(self, p: float) -> bool:
        return self.lower <= p <= self.upper
