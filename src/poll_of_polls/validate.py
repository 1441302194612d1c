"""Structural checks for analysis tables (cleaned or simulated).

Each check prints a "Test Passed" line and raises SchemaError on the first
failure, naming the check and what was found.
"""

import polars as pl

from poll_of_polls.config import (
    CANDIDATE_COL,
    COUNT_COL,
    PERCENT_TOLERANCE,
    PERCENT_TOTAL,
    PERCENTAGE_COL,
    POLLSTER_COL,
)
from poll_of_polls.errors import EmptyInputError, SchemaError

STAGE = "validate"
REQUIRED_COLUMNS = (POLLSTER_COL, CANDIDATE_COL, PERCENTAGE_COL)


def _passed(message: str) -> None:
    print(f"  Test Passed: {message}")


def validate_analysis_table(
    df: pl.DataFrame,
    expected_pollsters: int | None = None,
    percentage_max: float = PERCENT_TOTAL,
) -> None:
    """Check the columns, types and value ranges of an analysis table."""
    if df.height == 0:
        raise EmptyInputError(STAGE, f"analysis table is empty (columns {df.columns})")

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise SchemaError(STAGE, f"missing columns {missing} (columns {df.columns})")
    _passed(f"required columns present: {list(REQUIRED_COLUMNS)}")

    if expected_pollsters is not None:
        n_unique = df[POLLSTER_COL].n_unique()
        if n_unique != expected_pollsters:
            raise SchemaError(
                STAGE,
                f"expected {expected_pollsters} unique pollsters, found {n_unique}",
            )
        _passed(f"number of unique pollsters is {expected_pollsters}")

    for col in (POLLSTER_COL, CANDIDATE_COL):
        if df[col].dtype != pl.String:
            raise SchemaError(STAGE, f"column '{col}' must be strings, got {df[col].dtype}")
    _passed("pollster and candidate columns are strings")

    if not df[PERCENTAGE_COL].dtype.is_numeric():
        raise SchemaError(
            STAGE, f"column '{PERCENTAGE_COL}' must be numeric, got {df[PERCENTAGE_COL].dtype}"
        )
    _passed("percentage column is numeric")

    if COUNT_COL in df.columns:
        if not df[COUNT_COL].dtype.is_integer():
            raise SchemaError(
                STAGE, f"column '{COUNT_COL}' must be integers, got {df[COUNT_COL].dtype}"
            )
        if (df[COUNT_COL] < 0).any():
            raise SchemaError(STAGE, f"column '{COUNT_COL}' has negative values")
        _passed("count column holds non-negative integers")

    null_counts = {c: n for c, n in df.null_count().row(0, named=True).items() if n}
    if null_counts:
        raise SchemaError(STAGE, f"null values found: {null_counts}")
    _passed("no null values")

    blank = {
        c: int((df[c].str.strip_chars() == "").sum())
        for c in (POLLSTER_COL, CANDIDATE_COL)
        if (df[c].str.strip_chars() == "").any()
    }
    if blank:
        raise SchemaError(STAGE, f"empty strings found: {blank}")
    _passed("no empty strings in pollster or candidate")

    pct = df[PERCENTAGE_COL]
    if pct.min() < 0 or pct.max() > percentage_max:
        raise SchemaError(
            STAGE,
            f"percentages must lie in [0, {percentage_max}], "
            f"got range [{pct.min()}, {pct.max()}]",
        )
    _passed(f"percentages within [0, {percentage_max}]")


def check_pollster_totals(
    df: pl.DataFrame,
    total: float = PERCENT_TOTAL,
    tol: float = PERCENT_TOLERANCE,
) -> pl.DataFrame:
    """Verify that each pollster's percentages add up to ``total``.

    Returns the per-pollster totals; raises SchemaError listing the pollsters
    that are off by more than ``tol``.
    """
    totals = df.group_by(POLLSTER_COL).agg(pl.col(PERCENTAGE_COL).sum().alias("total"))
    bad = totals.filter((pl.col("total") - total).abs() > tol).sort(POLLSTER_COL)
    if bad.height:
        examples = bad.head(5).rows()
        raise SchemaError(
            STAGE,
            f"{bad.height} pollsters do not sum to {total} (e.g. {examples})",
        )
    _passed(f"percentages sum to {total} within each pollster")
    return totals.sort(POLLSTER_COL)
