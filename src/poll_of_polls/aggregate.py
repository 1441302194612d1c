"""Percentage aggregation: raw per-respondent poll rows -> poll-of-polls table.

Each output row is one (pollster, candidate) pair with the number of
respondents who chose that candidate and their share of the pollster's
respondents, in percent:

    percentage = count / sum(count over pollster) * 100

Only combinations that were actually observed appear in the output. Rows are
sorted by (pollster, candidate), so the same responses in any order produce
an identical table.
"""

from collections.abc import Iterable

import polars as pl

from poll_of_polls.config import (
    CANDIDATE_ALIASES,
    CANDIDATE_COL,
    COUNT_COL,
    PERCENT_TOTAL,
    PERCENTAGE_COL,
    POLLSTER_COL,
)
from poll_of_polls.errors import EmptyInputError, SchemaError
from poll_of_polls.models import PollResponse, responses_to_frame

STAGE = "aggregate"


def resolve_candidate_column(columns: list[str]) -> str:
    """Return the name of the column holding the respondent's choice.

    Raw exports call it "answer"; simulated and cleaned tables call it
    "candidate". "candidate" wins when both are present.
    """
    for name in CANDIDATE_ALIASES:
        if name in columns:
            return name
    raise SchemaError(
        STAGE,
        f"no candidate column: expected one of {list(CANDIDATE_ALIASES)}, got columns {columns}",
    )


def _missing_mask(col: str) -> pl.Expr:
    return pl.col(col).is_null() | (pl.col(col).str.strip_chars() == "")


def aggregate_responses(raw: pl.DataFrame, drop_missing: bool = False) -> pl.DataFrame:
    """Group raw responses by (pollster, candidate) and compute shares.

    Args:
        raw: One row per respondent, with a ``pollster`` column and an
            ``answer`` or ``candidate`` column. Other columns are ignored.
        drop_missing: Drop rows whose pollster or candidate is null/blank
            instead of raising SchemaError.

    Returns a DataFrame with columns pollster, candidate, percentage, count.
    """
    if raw.height == 0:
        raise EmptyInputError(
            STAGE, f"no responses to aggregate (0 rows, columns {raw.columns})"
        )
    if POLLSTER_COL not in raw.columns:
        raise SchemaError(STAGE, f"missing column '{POLLSTER_COL}' (columns {raw.columns})")
    candidate_col = resolve_candidate_column(raw.columns)

    for col in (POLLSTER_COL, candidate_col):
        if raw[col].dtype != pl.String:
            raise SchemaError(STAGE, f"column '{col}' must be strings, got {raw[col].dtype}")

    responses = raw.select(
        pl.col(POLLSTER_COL),
        pl.col(candidate_col).alias(CANDIDATE_COL),
    )
    missing = responses.filter(_missing_mask(POLLSTER_COL) | _missing_mask(CANDIDATE_COL))
    if missing.height:
        if not drop_missing:
            raise SchemaError(
                STAGE,
                f"{missing.height} of {responses.height} rows have a null or blank "
                f"pollster/{candidate_col}",
            )
        print(f"  Dropping {missing.height} rows with missing pollster/{candidate_col}")
        responses = responses.filter(
            ~(_missing_mask(POLLSTER_COL) | _missing_mask(CANDIDATE_COL))
        )
        if responses.height == 0:
            raise EmptyInputError(STAGE, "no responses left after dropping missing rows")

    return (
        responses.group_by(POLLSTER_COL, CANDIDATE_COL)
        .agg(pl.len().cast(pl.Int64).alias(COUNT_COL))
        .with_columns(
            (
                pl.col(COUNT_COL) / pl.col(COUNT_COL).sum().over(POLLSTER_COL) * PERCENT_TOTAL
            ).alias(PERCENTAGE_COL)
        )
        .select(POLLSTER_COL, CANDIDATE_COL, PERCENTAGE_COL, COUNT_COL)
        .sort(POLLSTER_COL, CANDIDATE_COL)
    )


def aggregate_records(responses: Iterable[PollResponse]) -> pl.DataFrame:
    """Aggregate PollResponse records; see aggregate_responses()."""
    return aggregate_responses(responses_to_frame(list(responses)))
