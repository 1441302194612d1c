"""
Tests for the structured run directory in run_context.py.

Run: uv run pytest tests/test_run_context.py -v
"""

import json
import sys

import pytest

from poll_of_polls.run_context import RunContext, _normalize_dataset


class TestNormalizeDataset:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("analysis_data", "analysis_data"),
            ("President Polls v2", "president_polls_v2"),
            ("--", "dataset"),
        ],
    )
    def test_slug(self, name: str, expected: str) -> None:
        assert _normalize_dataset(name) == expected


class TestRunContext:
    def test_directories(self, tmp_path) -> None:
        with RunContext("analysis_data", "model", results_root=tmp_path) as ctx:
            assert ctx.data_dir.is_dir()
        assert ctx.run_dir.parent == tmp_path / "analysis_data" / "model"

    def test_log_captured_and_stdout_restored(self, tmp_path) -> None:
        original = sys.stdout
        with RunContext("d", "model", results_root=tmp_path) as ctx:
            print("sampling...")
        assert sys.stdout is original
        assert "sampling..." in (ctx.run_dir / "run_log.txt").read_text()

    def test_run_info(self, tmp_path) -> None:
        with RunContext("d", "model", params={"seed": 853}, results_root=tmp_path) as ctx:
            pass
        info = json.loads((ctx.run_dir / "run_info.json").read_text())
        assert info["params"] == {"seed": 853}
        assert info["status"] == "ok"
        assert info["dataset"] == "d"

    def test_failure_recorded(self, tmp_path) -> None:
        with pytest.raises(RuntimeError):
            with RunContext("d", "model", results_root=tmp_path) as ctx:
                raise RuntimeError("chains diverged")
        info = json.loads((ctx.run_dir / "run_info.json").read_text())
        assert info["status"] == "failed"
        assert info["error"] == "chains diverged"

    def test_latest_symlink(self, tmp_path) -> None:
        for _ in range(2):
            with RunContext("d", "model", results_root=tmp_path) as ctx:
                pass
        latest = tmp_path / "d" / "model" / "latest"
        assert latest.is_symlink()
        assert latest.resolve() == ctx.run_dir.resolve()

    def test_failure_discards_outputs(self, tmp_path) -> None:
        with RunContext("d", "model", results_root=tmp_path) as ctx:
            (ctx.run_dir / "summary.json").write_text("{}")
            (ctx.data_dir / "posterior.nc").write_bytes(b"old")
        with pytest.raises(RuntimeError):
            with RunContext("d", "model", results_root=tmp_path) as ctx:
                raise RuntimeError("chains diverged")
        latest = tmp_path / "d" / "model" / "latest"
        assert not (latest / "summary.json").exists()
        assert not (latest / "data" / "posterior.nc").exists()
        assert (latest / "run_info.json").exists()
        assert "Removed stale output: summary.json" in (latest / "run_log.txt").read_text()

    def test_keep_survives_failure(self, tmp_path) -> None:
        with RunContext("d", "model", results_root=tmp_path) as ctx:
            (ctx.data_dir / "posterior.nc").write_bytes(b"old")
            (ctx.data_dir / "pollster_effects.parquet").write_bytes(b"old")
        kept = ctx.data_dir / "posterior.nc"
        with pytest.raises(RuntimeError):
            with RunContext("d", "model", results_root=tmp_path, keep=[kept]):
                raise RuntimeError("stale fit")
        assert kept.read_bytes() == b"old"
        assert not (ctx.data_dir / "pollster_effects.parquet").exists()

    def test_success_keeps_outputs(self, tmp_path) -> None:
        with RunContext("d", "model", results_root=tmp_path) as ctx:
            (ctx.run_dir / "summary.json").write_text("{}")
        assert (ctx.run_dir / "summary.json").exists()
