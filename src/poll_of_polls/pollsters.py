"""Pollster <-> integer index mapping for the random-effect structure."""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import numpy as np
import polars as pl

from poll_of_polls.config import POLLSTER_COL
from poll_of_polls.errors import EmptyInputError


@dataclass(frozen=True)
class PollsterIndex:
    """Bijection between pollster names and codes 1..K.

    Codes follow sorted pollster order, so the mapping depends only on which
    pollsters are present, not on row order.
    """

    pollsters: tuple[str, ...]

    @classmethod
    def from_pollsters(cls, pollsters: Iterable[str]) -> "PollsterIndex":
        unique = tuple(sorted(set(pollsters)))
        if not unique:
            raise EmptyInputError("index", "no pollsters to index")
        return cls(pollsters=unique)

    @classmethod
    def from_table(cls, df: pl.DataFrame) -> "PollsterIndex":
        return cls.from_pollsters(df[POLLSTER_COL].to_list())

    def __len__(self) -> int:
        return len(self.pollsters)

    @property
    def codes(self) -> dict[str, int]:
        return {p: i for i, p in enumerate(self.pollsters, start=1)}

    def encode(self, pollsters: Iterable[str]) -> np.ndarray:
        """Map pollster names to 1-based codes. Unknown names raise KeyError."""
        codes = self.codes
        return np.array([codes[p] for p in pollsters], dtype=np.int64)

    def decode(self, codes: Sequence[int] | np.ndarray) -> list[str]:
        """Map 1-based codes back to pollster names."""
        k = len(self.pollsters)
        out = []
        for code in codes:
            if not 1 <= int(code) <= k:
                raise KeyError(f"pollster code {code} outside [1, {k}]")
            out.append(self.pollsters[int(code) - 1])
        return out

    def zero_based(self, pollsters: Iterable[str]) -> np.ndarray:
        """Codes shifted to 0..K-1 for array indexing."""
        return self.encode(pollsters) - 1
