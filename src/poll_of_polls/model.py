"""Hierarchical normal model of one candidate's support across pollsters.

```
mu                 ~ Normal(0, 1)          -- global mean percentage
sigma              ~ HalfCauchy(1)         -- residual scale
pollster_effect[k] ~ Normal(0, sigma)      -- house effect of pollster k
percentage[i]      ~ Normal(mu + pollster_effect[k(i)], sigma)
```

The single sigma scales both the pollster effects and the observation noise,
so house effects and residual noise shrink together. The model is not
conjugate and is fit by NUTS (see inference.py).
"""

from __future__ import annotations

import numpy as np
import polars as pl
import pymc as pm

from poll_of_polls.config import CANDIDATE_COL, PERCENTAGE_COL, POLLSTER_COL
from poll_of_polls.errors import EmptyInputError, SchemaError
from poll_of_polls.pollsters import PollsterIndex

STAGE = "model"

MU_PRIOR_MEAN = 0.0
MU_PRIOR_SD = 1.0
SIGMA_PRIOR_SCALE = 1.0


def select_outcome(table: pl.DataFrame, candidate: str | None = None) -> pl.DataFrame:
    """Restrict an analysis table to the rows of one candidate.

    With ``candidate=None`` the table must already hold a single candidate.
    """
    if table.height == 0:
        raise EmptyInputError(STAGE, "analysis table is empty (0 rows)")
    for col in (POLLSTER_COL, CANDIDATE_COL, PERCENTAGE_COL):
        if col not in table.columns:
            raise SchemaError(STAGE, f"missing column '{col}' (columns {table.columns})")

    candidates = sorted(table[CANDIDATE_COL].unique().to_list())
    if candidate is None:
        if len(candidates) != 1:
            raise SchemaError(
                STAGE,
                f"table holds {len(candidates)} candidates {candidates}; choose one to model",
            )
        return table
    if candidate not in candidates:
        raise SchemaError(STAGE, f"candidate '{candidate}' not in table (have {candidates})")
    return table.filter(pl.col(CANDIDATE_COL) == candidate)


def prepare_model_data(table: pl.DataFrame, candidate: str | None = None) -> dict:
    """Build the arrays the model needs for one candidate.

    Returns dict with pollster_idx (0-based), percentage, n_obs, n_pollsters,
    the ordered pollster names, the PollsterIndex, and the candidate name.
    """
    rows = select_outcome(table, candidate).sort(POLLSTER_COL)
    if rows[PERCENTAGE_COL].null_count():
        raise SchemaError(STAGE, f"{rows[PERCENTAGE_COL].null_count()} null percentages")

    index = PollsterIndex.from_table(rows)
    pollster_idx = index.zero_based(rows[POLLSTER_COL].to_list())
    percentage = rows[PERCENTAGE_COL].cast(pl.Float64).to_numpy()
    name = rows[CANDIDATE_COL][0]

    print(f"  {name}: {rows.height} observations from {len(index)} pollsters")
    print(f"  Mean percentage: {percentage.mean():.3f}")

    return {
        "pollster_idx": pollster_idx.astype(np.int64),
        "percentage": percentage,
        "n_obs": rows.height,
        "n_pollsters": len(index),
        "pollsters": list(index.pollsters),
        "index": index,
        "candidate": name,
    }


def build_model(data: dict) -> pm.Model:
    """Build the PyMC model graph for prepared data (see module docstring)."""
    coords = {
        "pollster": data["pollsters"],
        "obs_id": np.arange(data["n_obs"]),
    }

    with pm.Model(coords=coords) as model:
        mu = pm.Normal("mu", mu=MU_PRIOR_MEAN, sigma=MU_PRIOR_SD)
        sigma = pm.HalfCauchy("sigma", beta=SIGMA_PRIOR_SCALE)

        # Shares sigma with the likelihood below
        pollster_effect = pm.Normal("pollster_effect", mu=0, sigma=sigma, dims="pollster")

        pm.Normal(
            "obs",
            mu=mu + pollster_effect[data["pollster_idx"]],
            sigma=sigma,
            observed=data["percentage"],
            dims="obs_id",
        )

    return model
