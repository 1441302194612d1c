"""Synthetic poll-of-polls tables for tests and dry runs.

Each pollster gets one row per candidate. Shares come from independent
uniform(0, 1) draws normalized by their sum, so a pollster's shares add up to
``scale`` exactly (up to float rounding). Counts are drawn uniformly from an
inclusive integer range, independently of the shares: a simulated count does
NOT match its percentage the way an aggregated count does. This mirrors the
original simulation and is kept as a known simplification.

All randomness flows through an explicit numpy Generator. Same seed, same
arguments -> identical table.
"""

import numpy as np
import polars as pl

from poll_of_polls.config import (
    CANDIDATE_COL,
    COUNT_COL,
    DEFAULT_COUNT_RANGE,
    DEFAULT_N_CANDIDATES,
    DEFAULT_N_POLLSTERS,
    DEFAULT_SCALE,
    PERCENTAGE_COL,
    POLLSTER_COL,
    RANDOM_SEED,
)


def generate_percentages(rng: np.random.Generator, n: int) -> np.ndarray:
    """Draw n uniform values and normalize them to sum to 1."""
    values = rng.uniform(size=n)
    return values / values.sum()


def simulate_polls(
    n_pollsters: int = DEFAULT_N_POLLSTERS,
    n_candidates: int = DEFAULT_N_CANDIDATES,
    seed: int | None = RANDOM_SEED,
    scale: float = DEFAULT_SCALE,
    count_range: tuple[int, int] = DEFAULT_COUNT_RANGE,
    rng: np.random.Generator | None = None,
) -> pl.DataFrame:
    """Generate a pollster x candidate table of shares and counts.

    Args:
        n_pollsters: Number of pollsters ("Pollster 1" .. "Pollster P").
        n_candidates: Candidates per pollster ("Candidate 1" .. "Candidate C").
        seed: Seed for a fresh Generator. Ignored when ``rng`` is given.
        scale: Per-pollster total of the shares (1.0 for fractions, 100.0 for percent).
        count_range: Inclusive (low, high) range for the synthetic counts.
        rng: Generator to draw from instead of seeding a new one.

    Returns a DataFrame with columns pollster, candidate, percentage, count.
    """
    if n_pollsters < 1 or n_candidates < 1:
        raise ValueError(
            f"need at least one pollster and one candidate, got {n_pollsters} x {n_candidates}"
        )
    low, high = count_range
    if low < 0 or high < low:
        raise ValueError(f"invalid count range {count_range}")
    if scale <= 0:
        raise ValueError(f"scale must be positive, got {scale}")

    if rng is None:
        rng = np.random.default_rng(seed)

    shares = np.vstack([generate_percentages(rng, n_candidates) for _ in range(n_pollsters)])
    counts = rng.integers(low, high, size=(n_pollsters, n_candidates), endpoint=True)

    pollsters = [f"Pollster {i}" for i in range(1, n_pollsters + 1)]
    candidates = [f"Candidate {j}" for j in range(1, n_candidates + 1)]

    return pl.DataFrame(
        {
            POLLSTER_COL: np.repeat(pollsters, n_candidates).tolist(),
            CANDIDATE_COL: candidates * n_pollsters,
            PERCENTAGE_COL: (shares * scale).ravel(),
            COUNT_COL: counts.ravel().astype(np.int64),
        }
    )
