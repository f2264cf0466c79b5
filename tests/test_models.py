"""
Tests for data model contracts (frozen dataclasses) in binomlab/models.py.

Verifies construction, validation, derived values, and immutability of
TrialObservation, AggregateCount, and ProportionEstimate, plus the shared
confidence-level validator.

Run: uv run pytest tests/test_models.py -v
"""

import dataclasses
import math

import numpy as np
import pytest

from binomlab.models import (
    AggregateCount,
    InvalidArgumentError,
    ProportionEstimate,
    TrialObservation,
    validate_confidence_level,
)

# ── TrialObservation ─────────────────────────────────────────────────────────


class TestTrialObservation:
    """Replicate counts with shared trial size."""

    def test_construction(self, overdispersed_obs):
        assert overdispersed_obs.n_replicates == 10
        assert overdispersed_obs.n_trials == 10
        assert overdispersed_obs.successes[-1] == 10

    def test_frozen(self, balanced_obs):
        with pytest.raises(dataclasses.FrozenInstanceError):
            balanced_obs.n_trials = 20  # type: ignore[misc]

    def test_proportions(self, overdispersed_obs):
        np.testing.assert_allclose(overdispersed_obs.proportions, [0.0] * 9 + [1.0])

    def test_aggregate(self, overdispersed_obs):
        agg = overdispersed_obs.aggregate()
        assert agg == AggregateCount(total_successes=10, total_trials=100)
        assert agg.rate == pytest.approx(0.1)

    def test_boundary_counts_allowed(self):
        obs = TrialObservation(successes=(0, 10), n_trials=10)
        assert obs.aggregate().total_successes == 10

    def test_equality_by_value(self):
        assert TrialObservation((1, 2), 5) == TrialObservation((1, 2), 5)
        assert TrialObservation((1, 2), 5) != TrialObservation((2, 1), 5)

    def test_empty_rejected(self):
        with pytest.raises(InvalidArgumentError, match="at least one replicate"):
            TrialObservation(successes=(), n_trials=10)

    @pytest.mark.parametrize("n_trials", [0, -1, 2.5, True, "10"])
    def test_bad_n_trials(self, n_trials):
        with pytest.raises(InvalidArgumentError, match="n_trials"):
            TrialObservation(successes=(0,), n_trials=n_trials)

    def test_count_above_trials(self):
        with pytest.raises(InvalidArgumentError, match=r"successes\[1\]=6 is outside \[0, 5\]"):
            TrialObservation(successes=(1, 6), n_trials=5)

    def test_negative_count(self):
        with pytest.raises(InvalidArgumentError, match="outside"):
            TrialObservation(successes=(-1,), n_trials=5)

    def test_float_count_rejected(self):
        with pytest.raises(InvalidArgumentError, match="integer"):
            TrialObservation(successes=(1.0,), n_trials=5)


class TestFromCounts:
    """Construction from arbitrary iterables."""

    def test_from_list(self):
        obs = TrialObservation.from_counts([1, 2, 3], 10)
        assert obs.successes == (1, 2, 3)

    def test_from_numpy_converts_to_int(self):
        obs = TrialObservation.from_counts(np.array([1, 2], dtype=np.int64), 10)
        assert all(type(c) is int for c in obs.successes)

    def test_from_generator(self):
        obs = TrialObservation.from_counts((i for i in range(3)), 10)
        assert obs.successes == (0, 1, 2)

    def test_float_array_rejected(self):
        with pytest.raises(InvalidArgumentError, match="integer"):
            TrialObservation.from_counts(np.array([1.0, 2.0]), 10)

    @pytest.mark.parametrize("bad", [None, 5])
    def test_non_iterable_rejected(self, bad):
        with pytest.raises(InvalidArgumentError, match="iterable"):
            TrialObservation.from_counts(bad, 10)


# ── ProportionEstimate ───────────────────────────────────────────────────────


class TestProportionEstimate:
    """Point plus bounds; stores bounds exactly as given."""

    def test_margin_and_width(self):
        est = ProportionEstimate(point=0.5, lower=0.2, upper=0.8)
        assert est.margin == pytest.approx(0.3)
        assert est.width == pytest.approx(0.6)

    def test_negative_bound_stored_unchanged(self):
        est = ProportionEstimate(point=0.1, lower=-0.086, upper=0.286)
        assert est.lower == -0.086
        assert not est.is_admissible

    def test_upper_above_one_inadmissible(self):
        assert not ProportionEstimate(point=0.9, lower=0.714, upper=1.086).is_admissible

    def test_closed_bounds_admissible(self):
        assert ProportionEstimate(point=0.0, lower=0.0, upper=0.0).is_admissible
        assert ProportionEstimate(point=1.0, lower=1.0, upper=1.0).is_admissible

    def test_contains(self):
        est = ProportionEstimate(point=0.5, lower=0.2, upper=0.8)
        assert est.contains(0.2)
        assert est.contains(0.8)
        assert est.contains(0.5)
        assert not est.contains(0.81)

    def test_value_identity(self):
        a = ProportionEstimate(0.5, 0.2, 0.8)
        assert a == ProportionEstimate(0.5, 0.2, 0.8)
        assert hash(a) == hash(ProportionEstimate(0.5, 0.2, 0.8))

    def test_frozen(self):
        est = ProportionEstimate(0.5, 0.2, 0.8)
        with pytest.raises(dataclasses.FrozenInstanceError):
            est.lower = 0.0  # type: ignore[misc]


# ── validate_confidence_level() ──────────────────────────────────────────────


class TestValidateConfidenceLevel:
    """Strictly inside (0, 1), NaN rejected."""

    @pytest.mark.parametrize("level", [0.5, 0.95, 0.999, np.float64(0.9)])
    def test_valid(self, level):
        result = validate_confidence_level(level)
        assert isinstance(result, float)
        assert math.isclose(result, float(level))

    @pytest.mark.parametrize("level", [0, 1, 0.0, 1.0, -0.01, 1.01, float("nan"), float("inf")])
    def test_out_of_range(self, level):
        with pytest.raises(InvalidArgumentError, match="strictly between 0 and 1"):
            validate_confidence_level(level)

    @pytest.mark.parametrize("level", [None, "ninety-five", [0.95]])
    def test_not_a_number(self, level):
        with pytest.raises(InvalidArgumentError, match="must be a number"):
            validate_confidence_level(level)
