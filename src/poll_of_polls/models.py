"""Data classes for poll records."""

from dataclasses import asdict, dataclass

import polars as pl

from poll_of_polls.config import CANDIDATE_COL, COUNT_COL, PERCENTAGE_COL, POLLSTER_COL

ANALYSIS_SCHEMA = {
    POLLSTER_COL: pl.String,
    CANDIDATE_COL: pl.String,
    PERCENTAGE_COL: pl.Float64,
    COUNT_COL: pl.Int64,
}


@dataclass(frozen=True)
class PollResponse:
    """One respondent's recorded choice in one poll."""
    pollster: str
    candidate: str


@dataclass(frozen=True)
class AggregatedRow:
    """Share of one pollster's respondents choosing one candidate."""
    pollster: str
    candidate: str
    percentage: float  # 0-100 for aggregated data, 0-1 for fraction-scale simulations
    count: int


def responses_to_frame(responses: list[PollResponse]) -> pl.DataFrame:
    return pl.DataFrame(
        [asdict(r) for r in responses],
        schema={POLLSTER_COL: pl.String, CANDIDATE_COL: pl.String},
    )


def rows_to_frame(rows: list[AggregatedRow]) -> pl.DataFrame:
    return pl.DataFrame([asdict(r) for r in rows], schema=ANALYSIS_SCHEMA)


def frame_to_rows(df: pl.DataFrame) -> list[AggregatedRow]:
    """Convert an analysis table to records (count defaults to 0 when absent)."""
    has_count = COUNT_COL in df.columns
    return [
        AggregatedRow(
            pollster=row[POLLSTER_COL],
            candidate=row[CANDIDATE_COL],
            percentage=float(row[PERCENTAGE_COL]),
            count=int(row[COUNT_COL]) if has_count else 0,
        )
        for row in df.iter_rows(named=True)
    ]
