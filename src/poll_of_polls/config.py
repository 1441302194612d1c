"""Configuration constants for the poll-of-polls pipeline."""

from pathlib import Path

# Synthetic data (defaults match the original 222-pollster x 4-candidate simulation)
DEFAULT_N_POLLSTERS = 222
DEFAULT_N_CANDIDATES = 4
DEFAULT_COUNT_RANGE = (1, 200)  # inclusive
DEFAULT_SCALE = 1.0  # 1.0 = fractions, 100.0 = percent
RANDOM_SEED = 853

# Column names
POLLSTER_COL = "pollster"
CANDIDATE_COL = "candidate"
CANDIDATE_ALIASES = ("candidate", "answer")
PERCENTAGE_COL = "percentage"
COUNT_COL = "count"

PERCENT_TOTAL = 100.0
PERCENT_TOLERANCE = 1e-6

# MCMC (Stan convention: iterations include warm-up)
DEFAULT_N_CHAINS = 4
DEFAULT_N_ITERATIONS = 2000
DEFAULT_N_WARMUP = 1000
TARGET_ACCEPT = 0.9

# Convergence: warn above/below these
RHAT_THRESHOLD = 1.01
ESS_THRESHOLD = 400
MIN_EBFMI = 0.3

# Convergence: abort above these
RHAT_FAIL_THRESHOLD = 1.1
MAX_DIVERGENT_FRACTION = 0.10

# Summaries
CI_PROB = 0.95
TOP_N_CANDIDATES = 4

RESULTS_ROOT = Path("results")
