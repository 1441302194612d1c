"""
Tests for the command-line interface in cli.py.

The fit command is exercised with sample_posterior patched to return a fake
posterior, so no MCMC runs here.

Run: uv run pytest tests/test_cli.py -v
"""

import json

import arviz as az
import numpy as np
import polars as pl
import pytest
import xarray as xr

from poll_of_polls.cli import main
from poll_of_polls.errors import InferenceDivergedError
from poll_of_polls.inference import FitArtifact, data_fingerprint

# ── Helpers ──────────────────────────────────────────────────────────────────


def _fake_fit(data: dict, seed: int) -> FitArtifact:
    rng = np.random.default_rng(seed)
    k = data["n_pollsters"]
    posterior = xr.Dataset(
        {
            "mu": xr.DataArray(rng.normal(50, 1, (2, 100)), dims=["chain", "draw"]),
            "sigma": xr.DataArray(np.abs(rng.normal(3, 0.2, (2, 100))), dims=["chain", "draw"]),
            "pollster_effect": xr.DataArray(
                rng.normal(0, 1, (2, 100, k)),
                dims=["chain", "draw", "pollster"],
                coords={"pollster": data["pollsters"]},
            ),
        }
    )
    return FitArtifact(
        idata=az.InferenceData(posterior=posterior),
        n_rows=data["n_obs"],
        n_pollsters=k,
        seed=seed,
        candidate=data["candidate"],
        fingerprint=data_fingerprint(data),
        diagnostics={"rhat_max": 1.0, "all_ok": True},
    )


@pytest.fixture
def mock_sampler(monkeypatch):
    """Patch sample_posterior to record its arguments and return a fake fit."""
    calls = []

    def fake_sample_posterior(data, **kwargs):
        calls.append(kwargs)
        return _fake_fit(data, kwargs["seed"])

    monkeypatch.setattr("poll_of_polls.cli.sample_posterior", fake_sample_posterior)
    return calls


@pytest.fixture
def analysis_csv(tmp_path):
    path = tmp_path / "analysis_data.csv"
    pl.DataFrame(
        {
            "pollster": ["A", "A", "B", "B", "C", "C"],
            "candidate": ["Harris", "Trump"] * 3,
            "percentage": [52.0, 48.0, 49.0, 51.0, 50.0, 50.0],
            "count": [52, 48, 49, 51, 50, 50],
        }
    ).write_csv(path)
    return path


def _run_dir(root):
    runs = [p for p in (root / "analysis_data" / "model").iterdir() if not p.is_symlink()]
    assert len(runs) == 1
    return runs[0]


# ── simulate / clean / validate ─────────────────────────────────────────────


class TestSimulate:
    def test_writes_table(self, tmp_path) -> None:
        out = tmp_path / "sim.csv"
        main(["simulate", "--pollsters", "3", "--candidates", "2", "--seed", "42", "-o", str(out)])
        df = pl.read_csv(out)
        assert df.height == 6
        assert df.columns == ["pollster", "candidate", "percentage", "count"]

    def test_reproducible(self, tmp_path) -> None:
        for name in ("a.csv", "b.csv"):
            main(["simulate", "--pollsters", "3", "--candidates", "2", "--seed", "42",
                  "-o", str(tmp_path / name)])
        assert (tmp_path / "a.csv").read_bytes() == (tmp_path / "b.csv").read_bytes()


class TestClean:
    def test_aggregates(self, tmp_path) -> None:
        raw = tmp_path / "raw_data.csv"
        raw.write_text("pollster,answer\n" + "P1,X\n" * 80 + "P1,Y\n" * 20)
        out = tmp_path / "analysis_data.csv"
        main(["clean", str(raw), "-o", str(out)])
        assert pl.read_csv(out).rows() == [("P1", "X", 80.0, 80), ("P1", "Y", 20.0, 20)]

    def test_empty_input_exits(self, tmp_path, capsys) -> None:
        raw = tmp_path / "raw_data.csv"
        raw.write_text("pollster,answer\n")
        out = tmp_path / "analysis_data.csv"
        with pytest.raises(SystemExit) as exc:
            main(["clean", str(raw), "-o", str(out)])
        assert exc.value.code == 1
        assert "ERROR [aggregate]" in capsys.readouterr().err
        assert not out.exists()


class TestValidate:
    def test_valid(self, analysis_csv, capsys) -> None:
        main(["validate", str(analysis_csv), "--expected-pollsters", "3", "--check-totals"])
        assert "Test Passed" in capsys.readouterr().out

    def test_wrong_pollster_count(self, analysis_csv, capsys) -> None:
        with pytest.raises(SystemExit):
            main(["validate", str(analysis_csv), "--expected-pollsters", "222"])
        assert "ERROR [validate]" in capsys.readouterr().err


# ── fit ─────────────────────────────────────────────────────────────────────


class TestFit:
    def test_writes_outputs(self, tmp_path, analysis_csv, mock_sampler) -> None:
        root = tmp_path / "results"
        main(["fit", "--data", str(analysis_csv), "--candidate", "Harris",
              "--results-root", str(root)])
        run_dir = _run_dir(root)
        for name in ("summary.json", "diagnostics.json", "run_info.json", "run_log.txt"):
            assert (run_dir / name).exists()
        assert (run_dir / "data" / "posterior.nc").exists()
        assert (run_dir / "data" / "pollster_effects.parquet").exists()

        summary = json.loads((run_dir / "summary.json").read_text())
        assert [e["pollster"] for e in summary["per_pollster_effect"]] == ["A", "B", "C"]
        assert [c["candidate"] for c in summary["top_candidates"]] == ["Harris", "Trump"]

    def test_run_arguments_forwarded(self, tmp_path, analysis_csv, mock_sampler) -> None:
        main(["fit", "--data", str(analysis_csv), "--candidate", "Trump",
              "--n-chains", "2", "--n-iterations", "600", "--n-warmup", "100",
              "--seed", "5", "--cores", "1", "--results-root", str(tmp_path)])
        assert mock_sampler == [
            {
                "n_chains": 2,
                "n_iterations": 600,
                "n_warmup": 100,
                "seed": 5,
                "cores": 1,
                "target_accept": 0.9,
            }
        ]

    def test_candidate_required_for_multi_candidate_table(
        self, tmp_path, analysis_csv, mock_sampler, capsys
    ) -> None:
        root = tmp_path / "results"
        with pytest.raises(SystemExit):
            main(["fit", "--data", str(analysis_csv), "--results-root", str(root)])
        assert "ERROR [model]" in capsys.readouterr().err
        assert not (_run_dir(root) / "summary.json").exists()
        assert mock_sampler == []

    def test_divergence_aborts_without_summary(
        self, tmp_path, analysis_csv, monkeypatch, capsys
    ) -> None:
        def diverged(data, **kwargs):
            raise InferenceDivergedError("inference", "max R-hat 1.800 > 1.1 (chains did not mix)")

        monkeypatch.setattr("poll_of_polls.cli.sample_posterior", diverged)
        root = tmp_path / "results"
        with pytest.raises(SystemExit):
            main(["fit", "--data", str(analysis_csv), "--candidate", "Harris",
                  "--results-root", str(root)])
        assert "ERROR [inference]: max R-hat" in capsys.readouterr().err
        run_dir = _run_dir(root)
        assert not (run_dir / "summary.json").exists()
        assert json.loads((run_dir / "run_info.json").read_text())["status"] == "failed"

    def test_failed_rerun_removes_earlier_outputs(
        self, tmp_path, analysis_csv, mock_sampler, monkeypatch
    ) -> None:
        root = tmp_path / "results"
        main(["fit", "--data", str(analysis_csv), "--candidate", "Harris",
              "--results-root", str(root)])
        latest = root / "analysis_data" / "model" / "latest"
        assert (latest / "summary.json").exists()

        def diverged(data, **kwargs):
            raise InferenceDivergedError("inference", "12.0% divergent transitions")

        monkeypatch.setattr("poll_of_polls.cli.sample_posterior", diverged)
        with pytest.raises(SystemExit):
            main(["fit", "--data", str(analysis_csv), "--candidate", "Harris",
                  "--results-root", str(root)])
        assert not (latest / "summary.json").exists()
        assert not (latest / "diagnostics.json").exists()
        assert not (latest / "data" / "posterior.nc").exists()
        assert not (latest / "data" / "pollster_effects.parquet").exists()
        assert json.loads((latest / "run_info.json").read_text())["status"] == "failed"


class TestReuse:
    def _first_fit(self, tmp_path, analysis_csv):
        root = tmp_path / "first"
        main(["fit", "--data", str(analysis_csv), "--candidate", "Harris",
              "--results-root", str(root)])
        return _run_dir(root) / "data" / "posterior.nc"

    def test_reuse_matching_data(self, tmp_path, analysis_csv, mock_sampler) -> None:
        posterior = self._first_fit(tmp_path, analysis_csv)
        root = tmp_path / "second"
        main(["fit", "--data", str(analysis_csv), "--candidate", "Harris",
              "--reuse", str(posterior), "--results-root", str(root)])
        assert len(mock_sampler) == 1
        assert (_run_dir(root) / "summary.json").exists()

    def test_reuse_on_changed_data_fails(
        self, tmp_path, analysis_csv, mock_sampler, capsys
    ) -> None:
        posterior = self._first_fit(tmp_path, analysis_csv)
        revised = pl.read_csv(analysis_csv).with_columns(
            pl.Series("percentage", [55.0, 45.0, 49.0, 51.0, 50.0, 50.0])
        )
        revised.write_csv(analysis_csv)
        root = tmp_path / "second"
        with pytest.raises(SystemExit):
            main(["fit", "--data", str(analysis_csv), "--candidate", "Harris",
                  "--reuse", str(posterior), "--results-root", str(root)])
        assert "ERROR [reuse]" in capsys.readouterr().err
        assert not (_run_dir(root) / "summary.json").exists()

    def test_reuse_other_candidate_fails(
        self, tmp_path, analysis_csv, mock_sampler, capsys
    ) -> None:
        posterior = self._first_fit(tmp_path, analysis_csv)
        with pytest.raises(SystemExit):
            main(["fit", "--data", str(analysis_csv), "--candidate", "Trump",
                  "--reuse", str(posterior), "--results-root", str(tmp_path / "second")])
        assert "candidate: fit='Harris' current='Trump'" in capsys.readouterr().err

    def test_failed_reuse_keeps_reused_posterior(
        self, tmp_path, analysis_csv, mock_sampler
    ) -> None:
        root = tmp_path / "results"
        main(["fit", "--data", str(analysis_csv), "--candidate", "Harris",
              "--results-root", str(root)])
        posterior = _run_dir(root) / "data" / "posterior.nc"
        with pytest.raises(SystemExit):
            main(["fit", "--data", str(analysis_csv), "--candidate", "Trump",
                  "--reuse", str(posterior), "--results-root", str(root)])
        assert posterior.exists()
        assert not (_run_dir(root) / "summary.json").exists()
