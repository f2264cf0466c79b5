"""Configuration constants for binomlab analyses and MCMC sampling."""

try:
    from importlib.metadata import version as _pkg_version

    PACKAGE_VERSION = _pkg_version("binomlab")
except Exception:
    PACKAGE_VERSION = "dev"

DEFAULT_CONFIDENCE_LEVEL = 0.95
RANDOM_SEED = 42

# Synthetic data defaults: ten replicates of ten trials each
DEFAULT_N_REPLICATES = 10
DEFAULT_N_TRIALS = 10

# Sampler defaults (nutpie NUTS)
N_DRAWS = 2000
N_TUNE = 1000  # burn-in draws discarded before collecting posterior samples
N_CHAINS = 4

# Convergence thresholds (Vehtari et al. 2021)
RHAT_THRESHOLD = 1.01
ESS_THRESHOLD = 400
MAX_DIVERGENCES = 10
BFMI_THRESHOLD = 0.3

# Monte Carlo coverage simulation
COVERAGE_SIMULATIONS = 2000
PPC_REPLICATIONS = 1000

RESULTS_ROOT = "results"
