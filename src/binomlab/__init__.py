"""binomlab - Wald confidence intervals vs. MCMC credible intervals for a binomial proportion."""

__version__ = "2026.10.19"

from binomlab.estimator import estimate as estimate
from binomlab.estimator import wilson_interval as wilson_interval
from binomlab.models import InvalidArgumentError as InvalidArgumentError
from binomlab.models import ProportionEstimate as ProportionEstimate
from binomlab.models import TrialObservation as TrialObservation
from binomlab.scenario import Scenario as Scenario
