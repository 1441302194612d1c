"""Structured output directory for a model fit.

Every fit gets:
  - results/<dataset>/<analysis>/<date>/ with data/ for intermediates
  - Console output captured to run_log.txt
  - Run metadata (run_info.json): git hash, timestamps, parameters
  - A `latest` symlink pointing to the most recent run

Usage:
    with RunContext(dataset="analysis_data", analysis_name="model", params=vars(args)) as ctx:
        save_fit(fit, ctx.data_dir / "posterior.nc")
        save_summary(summary, ctx.run_dir / "summary.json")
"""

from __future__ import annotations

import io
import json
import re
import subprocess
import sys
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType

from poll_of_polls.config import RESULTS_ROOT


class _TeeStream:
    """Duplicates writes to the original stream and an in-memory buffer."""

    def __init__(self, original: io.TextIOBase) -> None:
        self._original = original
        self._buffer = io.StringIO()

    def write(self, data: str) -> int:
        self._original.write(data)
        self._buffer.write(data)
        return len(data)

    def flush(self) -> None:
        self._original.flush()

    def getvalue(self) -> str:
        return self._buffer.getvalue()


def _normalize_dataset(name: str) -> str:
    """Turn a dataset name or file stem into a safe directory name.

    Examples:
        "analysis_data"      -> "analysis_data"
        "President Polls v2" -> "president_polls_v2"
    """
    slug = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")
    return slug or "dataset"


def _git_commit_hash() -> str:
    """Get the current git commit hash, or 'unknown' if not in a repo."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (FileNotFoundError, subprocess.TimeoutExpired):
        pass
    return "unknown"


class RunContext:
    """Context manager that sets up structured output for a run.

    Attributes:
        dataset: Normalized dataset name.
        analysis_name: Name of the analysis (e.g. "model").
        params: Parameters to record in run_info.json.
        run_dir: Root of this run's output (results/<dataset>/<analysis>/<date>/).
        data_dir: Directory for NetCDF/Parquet files.
        failed: Set when the block raised; run_info.json records it.
        outputs: Result files (relative to run_dir) that a failed run removes,
            along with everything in data_dir. Paths in ``keep`` are never removed.
    """

    def __init__(
        self,
        dataset: str,
        analysis_name: str,
        params: dict | None = None,
        results_root: Path | None = None,
        outputs: tuple[str, ...] = ("summary.json", "diagnostics.json"),
        keep: list[Path] | None = None,
    ) -> None:
        self.dataset = _normalize_dataset(dataset)
        self.analysis_name = analysis_name
        self.params = params or {}

        root = results_root or RESULTS_ROOT
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")

        self.run_dir = root / self.dataset / analysis_name / today
        self.data_dir = self.run_dir / "data"
        self.outputs = outputs
        self._keep = {Path(p).resolve() for p in keep or []}

        # Parent of date dirs, where the `latest` symlink lives
        self._analysis_dir = root / self.dataset / analysis_name
        self._today = today
        self._tee: _TeeStream | None = None
        self._original_stdout: io.TextIOBase | None = None
        self._start_time: datetime | None = None
        self.failed: str | None = None

    def __enter__(self) -> RunContext:
        self.setup()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_val is not None:
            self.failed = str(exc_val)
        self.finalize()

    def setup(self) -> None:
        """Create directories and start log capture."""
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(exist_ok=True)

        self._original_stdout = sys.stdout
        self._tee = _TeeStream(sys.stdout)
        sys.stdout = self._tee  # type: ignore[assignment]
        self._start_time = datetime.now(timezone.utc)

    def discard_outputs(self) -> list[Path]:
        """Remove result files left in run_dir by an earlier run the same day."""
        candidates = [self.run_dir / name for name in self.outputs]
        if self.data_dir.is_dir():
            candidates += [p for p in self.data_dir.iterdir() if p.is_file()]
        removed = []
        for path in candidates:
            if path.exists() and path.resolve() not in self._keep:
                path.unlink()
                removed.append(path)
        return removed

    def finalize(self) -> None:
        """Write run_info.json, run_log.txt, and update latest symlink."""
        # A failed run must not leave a result bundle behind for `latest`
        if self.failed:
            for path in self.discard_outputs():
                print(f"  Removed stale output: {path.name}")

        # Restore stdout before writing metadata
        log_text = ""
        if self._tee is not None:
            log_text = self._tee.getvalue()
        if self._original_stdout is not None:
            sys.stdout = self._original_stdout  # type: ignore[assignment]

        log_path = self.run_dir / "run_log.txt"
        log_path.write_text(log_text, encoding="utf-8")

        end_time = datetime.now(timezone.utc)
        run_info = {
            "analysis": self.analysis_name,
            "dataset": self.dataset,
            "run_date": self._today,
            "timestamp_start": (self._start_time.isoformat() if self._start_time else None),
            "timestamp_end": end_time.isoformat(),
            "git_commit": _git_commit_hash(),
            "python_version": sys.version,
            "params": self.params,
            "status": "failed" if self.failed else "ok",
            "error": self.failed,
        }
        info_path = self.run_dir / "run_info.json"
        with open(info_path, "w") as f:
            json.dump(run_info, f, indent=2, default=str)

        # Relative so it's portable
        latest = self._analysis_dir / "latest"
        if latest.is_symlink() or latest.exists():
            latest.unlink()
        latest.symlink_to(self._today)
