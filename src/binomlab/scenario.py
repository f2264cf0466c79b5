"""Named synthetic-data scenarios.

A scenario pins every parameter of the data-generating process, including the
seed, so each analysis phase can regenerate the exact same replicate counts.

Output layout mirrors the scenario name:
  results/<scenario>/<analysis>/<date>/  (or results/<scenario>/<run_id>/<analysis>/)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from binomlab.config import DEFAULT_N_REPLICATES, DEFAULT_N_TRIALS, RANDOM_SEED, RESULTS_ROOT
from binomlab.models import TrialObservation
from binomlab.synthesis import generate_successes


@dataclass(frozen=True)
class Scenario:
    """Parameters of one synthetic replicate experiment."""

    name: str
    n_replicates: int
    n_trials: int
    mean_p: float
    concentration: float | None
    seed: int = RANDOM_SEED
    description: str = ""

    @property
    def output_name(self) -> str:
        return self.name

    @property
    def results_dir(self) -> Path:
        return Path(RESULTS_ROOT) / self.output_name

    @property
    def is_overdispersed(self) -> bool:
        return self.concentration is not None

    def generate(self) -> TrialObservation:
        return generate_successes(
            self.n_replicates,
            self.n_trials,
            self.mean_p,
            self.concentration,
            seed=self.seed,
        )

    def describe(self) -> str:
        """One-line summary, e.g. '10 x 10 trials, p=0.1, Beta-Binomial(c=0.5), seed=42'."""
        process = (
            f"Beta-Binomial(c={self.concentration:g})" if self.is_overdispersed else "Binomial"
        )
        return (
            f"{self.n_replicates} x {self.n_trials} trials, p={self.mean_p:g}, "
            f"{process}, seed={self.seed}"
        )

    @classmethod
    def from_name(cls, name: str) -> Scenario:
        """Look up a predefined scenario, tolerating case and '_' vs '-'."""
        key = name.strip().lower().replace("_", "-")
        if key not in SCENARIOS:
            msg = f"Unknown scenario: {name!r}. Known scenarios: {', '.join(SCENARIOS)}"
            raise ValueError(msg)
        return SCENARIOS[key]


SCENARIOS: dict[str, Scenario] = {
    "overdispersed": Scenario(
        name="overdispersed",
        n_replicates=DEFAULT_N_REPLICATES,
        n_trials=DEFAULT_N_TRIALS,
        mean_p=0.1,
        concentration=0.5,
        description=(
            "Replicates disagree wildly about p: most see no successes, a few see many. "
            "The pooled Wald interval is far too narrow."
        ),
    ),
    "binomial": Scenario(
        name="binomial",
        n_replicates=DEFAULT_N_REPLICATES,
        n_trials=DEFAULT_N_TRIALS,
        mean_p=0.1,
        concentration=None,
        description="Control: every replicate shares p = 0.1. No overdispersion.",
    ),
    "sparse": Scenario(
        name="sparse",
        n_replicates=2,
        n_trials=DEFAULT_N_TRIALS,
        mean_p=0.08,
        concentration=2.0,
        description=(
            "Two small replicates near the boundary, where naive intervals "
            "readily reach below zero."
        ),
    ),
}
