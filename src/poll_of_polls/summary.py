"""Posterior and empirical summaries for reporting.

Two kinds of numbers come out of here and they must not be confused:

- Posterior summaries (mu, sigma, pollster effects) come from MCMC draws.
- The candidate ranking comes straight from the analysis table: mean
  percentage per candidate, with the top N rescaled to sum to 1. It is
  reported as a "relative probability of winning" proxy, but it is a
  descriptive statistic, not a probability derived from the model.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

import numpy as np
import polars as pl

from poll_of_polls.config import (
    CANDIDATE_COL,
    CI_PROB,
    PERCENTAGE_COL,
    RANDOM_SEED,
    TOP_N_CANDIDATES,
)
from poll_of_polls.errors import EmptyInputError
from poll_of_polls.inference import PosteriorDraws

STAGE = "summary"


@dataclass(frozen=True)
class PosteriorSummary:
    """Summary bundle handed to reporting."""

    mu_mean: float
    mu_ci_low: float
    mu_ci_high: float
    sigma_mean: float
    sigma_ci_low: float
    sigma_ci_high: float
    per_pollster_effect: list[tuple[str, float]]
    top_candidates: list[tuple[str, float, float]]

    def to_dict(self) -> dict:
        d = asdict(self)
        d["per_pollster_effect"] = [
            {"pollster": p, "mean_effect": e} for p, e in self.per_pollster_effect
        ]
        d["top_candidates"] = [
            {"candidate": c, "mean_percentage": m, "normalized_probability": p}
            for c, m, p in self.top_candidates
        ]
        return d


def credible_interval(values: np.ndarray, prob: float = CI_PROB) -> tuple[float, float]:
    """Equal-tailed interval from empirical quantiles (2.5%/97.5% at prob=0.95)."""
    if not 0 < prob < 1:
        raise ValueError(f"prob must be in (0, 1), got {prob}")
    tail = (1 - prob) / 2
    low, high = np.quantile(np.asarray(values, dtype=float), [tail, 1 - tail])
    return float(low), float(high)


def summarize_posterior(draws: PosteriorDraws, prob: float = CI_PROB) -> dict:
    """Mean and credible interval of mu and sigma, plus mean pollster effects."""
    if len(draws) == 0:
        raise EmptyInputError(STAGE, "no posterior draws to summarize")

    mu_low, mu_high = credible_interval(draws.mu, prob)
    sigma_low, sigma_high = credible_interval(draws.sigma, prob)
    effect_means = draws.pollster_effect.mean(axis=0)

    return {
        "mu_mean": float(draws.mu.mean()),
        "mu_ci_low": mu_low,
        "mu_ci_high": mu_high,
        "sigma_mean": float(draws.sigma.mean()),
        "sigma_ci_low": sigma_low,
        "sigma_ci_high": sigma_high,
        "per_pollster_effect": [
            (p, float(e)) for p, e in zip(draws.pollsters, effect_means)
        ],
    }


def pollster_effects_frame(draws: PosteriorDraws, prob: float = CI_PROB) -> pl.DataFrame:
    """Per-pollster effect mean, sd and credible interval, sorted by mean."""
    rows = []
    for k, pollster in enumerate(draws.pollsters):
        values = draws.pollster_effect[:, k]
        low, high = credible_interval(values, prob)
        rows.append(
            {
                "pollster": pollster,
                "effect_mean": float(values.mean()),
                "effect_sd": float(values.std()),
                "effect_ci_low": low,
                "effect_ci_high": high,
            }
        )
    return pl.DataFrame(rows).sort("effect_mean", descending=True)


def rank_candidates(
    table: pl.DataFrame, top_n: int = TOP_N_CANDIDATES
) -> list[tuple[str, float, float]]:
    """Rank candidates by mean percentage across all rows of the table.

    Returns (candidate, mean_percentage, normalized_probability) for the top
    ``top_n``, where normalized_probability is the mean percentage divided by
    the sum over the top ``top_n``. Empirical proxy only; see module docstring.
    """
    if table.height == 0:
        raise EmptyInputError(STAGE, "no rows to rank candidates from")
    if top_n < 1:
        raise ValueError(f"top_n must be >= 1, got {top_n}")

    means = (
        table.group_by(CANDIDATE_COL)
        .agg(pl.col(PERCENTAGE_COL).mean().alias("mean_percentage"))
        .sort(["mean_percentage", CANDIDATE_COL], descending=[True, False])
        .head(top_n)
    )
    total = means["mean_percentage"].sum()
    return [
        (cand, float(mean), float(mean / total) if total > 0 else 0.0)
        for cand, mean in means.iter_rows()
    ]


def build_summary(
    draws: PosteriorDraws,
    table: pl.DataFrame,
    top_n: int = TOP_N_CANDIDATES,
    prob: float = CI_PROB,
) -> PosteriorSummary:
    """Combine the posterior summary with the empirical candidate ranking."""
    post = summarize_posterior(draws, prob)
    return PosteriorSummary(**post, top_candidates=rank_candidates(table, top_n))


def posterior_predictive_check(
    draws: PosteriorDraws,
    data: dict,
    seed: int = RANDOM_SEED,
) -> dict:
    """Replicate the observed percentages from each draw and compare means.

    Returns observed mean, replicated mean/sd, and the Bayesian p-value
    P(mean(y_rep) >= mean(y_obs)).
    """
    if len(draws) == 0:
        raise EmptyInputError(STAGE, "no posterior draws for predictive check")
    rng = np.random.default_rng(seed)
    idx = data["pollster_idx"]
    y_obs = data["percentage"]

    loc = draws.mu[:, None] + draws.pollster_effect[:, idx]  # (n_draws, n_obs)
    y_rep = rng.normal(loc, draws.sigma[:, None])
    rep_means = y_rep.mean(axis=1)
    observed_mean = float(y_obs.mean())
    p_value = float((rep_means >= observed_mean).mean())

    print(f"    Observed mean: {observed_mean:.3f}")
    print(f"    Replicated mean: {rep_means.mean():.3f} +/- {rep_means.std():.3f}")
    print(f"    Bayesian p-value (mean): {p_value:.3f}")
    if 0.1 <= p_value <= 0.9:
        print("    Result: WELL-CALIBRATED (p in [0.1, 0.9])")
    else:
        print("    Result: POTENTIAL MISFIT (p outside [0.1, 0.9])")

    return {
        "observed_mean": observed_mean,
        "replicated_mean": float(rep_means.mean()),
        "replicated_sd": float(rep_means.std()),
        "p_value": p_value,
    }
