"""CSV, JSON and Parquet I/O for poll tables and summaries."""

import json
from pathlib import Path

import polars as pl

from poll_of_polls.config import CANDIDATE_ALIASES, COUNT_COL, PERCENTAGE_COL, POLLSTER_COL
from poll_of_polls.errors import EmptyInputError
from poll_of_polls.summary import PosteriorSummary

_STRING_COLUMNS = (POLLSTER_COL, *CANDIDATE_ALIASES)


def read_table(path: Path, stage: str = "read") -> pl.DataFrame:
    """Read a poll CSV, keeping pollster/candidate/answer columns as strings."""
    try:
        header = pl.read_csv(path, n_rows=0).columns
    except pl.exceptions.NoDataError:
        raise EmptyInputError(stage, f"{Path(path).name} is empty (no header)") from None

    overrides: dict = {c: pl.String for c in _STRING_COLUMNS if c in header}
    if PERCENTAGE_COL in header:
        overrides[PERCENTAGE_COL] = pl.Float64
    if COUNT_COL in header:
        overrides[COUNT_COL] = pl.Int64
    return pl.read_csv(path, schema_overrides=overrides, infer_schema_length=10000)


def write_table(df: pl.DataFrame, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.write_csv(path)
    print(f"  {path} ({df.height} rows)")


def write_parquet(df: pl.DataFrame, path: Path) -> None:
    df.write_parquet(path)
    print(f"  Saved: {Path(path).name}")


def save_json(payload: dict, path: Path) -> None:
    with open(path, "w") as f:
        json.dump(payload, f, indent=2, default=str)
    print(f"  Saved: {Path(path).name}")


def save_summary(summary: PosteriorSummary, path: Path) -> None:
    save_json(summary.to_dict(), path)


def load_summary(path: Path) -> PosteriorSummary:
    """Read a summary.json back into a PosteriorSummary.

    Entry point for report builders that consume a finished fit; the pipeline
    itself only writes summaries.
    """
    with open(path) as f:
        d = json.load(f)
    return PosteriorSummary(
        mu_mean=d["mu_mean"],
        mu_ci_low=d["mu_ci_low"],
        mu_ci_high=d["mu_ci_high"],
        sigma_mean=d["sigma_mean"],
        sigma_ci_low=d["sigma_ci_low"],
        sigma_ci_high=d["sigma_ci_high"],
        per_pollster_effect=[(e["pollster"], e["mean_effect"]) for e in d["per_pollster_effect"]],
        top_candidates=[
            (c["candidate"], c["mean_percentage"], c["normalized_probability"])
            for c in d["top_candidates"]
        ],
    )
