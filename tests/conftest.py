"""Shared fixtures for binomlab tests.

Provides hand-built TrialObservation instances covering the regimes the
analysis phases care about: a mid-range rate, a rate near the lower boundary,
heavily overdispersed replicates, and the two degenerate extremes.
"""

import pytest

from binomlab.models import TrialObservation

# ── Observation fixtures ─────────────────────────────────────────────────────


@pytest.fixture
def balanced_obs() -> TrialObservation:
    """One replicate, 5 of 10: p_hat = 0.5."""
    return TrialObservation(successes=(5,), n_trials=10)


@pytest.fixture
def boundary_obs() -> TrialObservation:
    """One replicate, 1 of 10: the Wald lower bound is negative."""
    return TrialObservation(successes=(1,), n_trials=10)


@pytest.fixture
def overdispersed_obs() -> TrialObservation:
    """Nine empty replicates and one full one: K = 10 of N = 100."""
    return TrialObservation(successes=(0,) * 9 + (10,), n_trials=10)


@pytest.fixture
def homogeneous_obs() -> TrialObservation:
    """Ten replicates that all see exactly 1 of 10."""
    return TrialObservation(successes=(1,) * 10, n_trials=10)


@pytest.fixture
def all_zero_obs() -> TrialObservation:
    return TrialObservation(successes=(0, 0, 0), n_trials=10)


@pytest.fixture
def all_success_obs() -> TrialObservation:
    return TrialObservation(successes=(10, 10, 10), n_trials=10)


# ── Posterior sampler stand-in ───────────────────────────────────────────────


class FakeSampler:
    """PosteriorSampler that draws from the conjugate Beta posterior instead of running MCMC.

    p ~ Beta(K + 1, N - K + 1) (exact under a uniform prior and the pooled
    Binomial); the Beta-Binomial model also gets kappa ~ Gamma(2, scale=10).
    Returns a real InferenceData with zero divergences and iid energy draws.
    """

    def __init__(self) -> None:
        self.calls: list[str] = []

    def sample(self, model_spec, observation, sampler_config):
        import arviz as az
        import numpy as np
        import xarray as xr

        from analysis.posterior_data import posterior_sample_from_idata

        self.calls.append(model_spec.name)
        rng = np.random.default_rng(sampler_config.seed)
        shape = (sampler_config.chains, sampler_config.draws)
        agg = observation.aggregate()
        k, n = agg.total_successes, agg.total_trials

        draws = rng.beta(k + 1, n - k + 1, size=shape)
        posterior = {"p": xr.DataArray(draws, dims=["chain", "draw"])}
        if model_spec.likelihood == "beta_binomial":
            posterior["kappa"] = xr.DataArray(
                rng.gamma(2.0, 10.0, size=shape), dims=["chain", "draw"]
            )
        sample_stats = xr.Dataset(
            {
                "diverging": xr.DataArray(np.zeros(shape, dtype=bool), dims=["chain", "draw"]),
                "energy": xr.DataArray(rng.normal(size=shape), dims=["chain", "draw"]),
            }
        )
        idata = az.InferenceData(posterior=xr.Dataset(posterior), sample_stats=sample_stats)
        return posterior_sample_from_idata(model_spec.name, idata, sampling_time=0.01)


@pytest.fixture
def fake_sampler() -> FakeSampler:
    return FakeSampler()
