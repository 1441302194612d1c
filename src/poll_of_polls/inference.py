"""MCMC sampling, convergence checks, and fit artifacts.

Seeding: ``sample_posterior`` hands its integer ``seed`` to ``pm.sample`` as
``random_seed``. PyMC spawns one independent stream per chain from it, used
for both the jittered starting point and the NUTS transitions. Same seed,
same data, same run parameters and same library versions give the same
draws whether chains run in one process or in parallel.
"""

from __future__ import annotations

import hashlib
import json
import math
import time
from dataclasses import dataclass, field
from pathlib import Path

import arviz as az
import numpy as np
import pymc as pm

from poll_of_polls.config import (
    DEFAULT_N_CHAINS,
    DEFAULT_N_ITERATIONS,
    DEFAULT_N_WARMUP,
    ESS_THRESHOLD,
    MAX_DIVERGENT_FRACTION,
    MIN_EBFMI,
    RANDOM_SEED,
    RHAT_FAIL_THRESHOLD,
    RHAT_THRESHOLD,
    TARGET_ACCEPT,
)
from poll_of_polls.errors import EmptyInputError, InferenceDivergedError, StaleArtifactError
from poll_of_polls.model import build_model

STAGE = "inference"
PARAMS = ["mu", "sigma", "pollster_effect"]

# Posterior attrs that record what a saved fit was fit on
_ATTR_PREFIX = "fit_"
_FIT_ATTRS = ("n_rows", "n_pollsters", "seed", "candidate", "fingerprint")


def print_header(title: str) -> None:
    width = 80
    print(f"\n{'=' * width}")
    print(f"  {title}")
    print(f"{'=' * width}")


# ── Posterior draws ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PosteriorDraws:
    """Retained draws of all chains, chain-major (chain 0 first)."""

    mu: np.ndarray  # (n,)
    sigma: np.ndarray  # (n,)
    pollster_effect: np.ndarray  # (n, K)
    chain: np.ndarray  # (n,) chain id of each draw
    pollsters: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.mu)

    @property
    def n_chains(self) -> int:
        return len(np.unique(self.chain))


def extract_draws(idata: az.InferenceData) -> PosteriorDraws:
    """Flatten the posterior into chain-major draw arrays."""
    post = idata.posterior
    n_chains = post.sizes["chain"]
    n_draws = post.sizes["draw"]
    effect = post["pollster_effect"].transpose("chain", "draw", "pollster")
    return PosteriorDraws(
        mu=post["mu"].values.reshape(-1),
        sigma=post["sigma"].values.reshape(-1),
        pollster_effect=effect.values.reshape(n_chains * n_draws, -1),
        chain=np.repeat(np.arange(n_chains), n_draws),
        pollsters=tuple(str(p) for p in post["pollster"].values),
    )


# ── Fit artifact ────────────────────────────────────────────────────────────


def data_fingerprint(data: dict) -> str:
    """SHA-256 of the (pollster, percentage) observations of one candidate."""
    pollsters = data["pollsters"]
    obs = sorted(
        (pollsters[int(k)], float(v))
        for k, v in zip(data["pollster_idx"], data["percentage"])
    )
    payload = json.dumps({"candidate": data["candidate"], "obs": obs})
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass
class FitArtifact:
    """A fitted posterior plus the inputs it was fit on."""

    idata: az.InferenceData
    n_rows: int
    n_pollsters: int
    seed: int
    candidate: str
    fingerprint: str
    diagnostics: dict = field(default_factory=dict)
    sampling_time: float = 0.0

    @property
    def draws(self) -> PosteriorDraws:
        return extract_draws(self.idata)

    def check_matches(self, data: dict) -> None:
        """Raise StaleArtifactError unless ``data`` is what this fit was built from."""
        current = {
            "n_rows": data["n_obs"],
            "n_pollsters": data["n_pollsters"],
            "candidate": data["candidate"],
            "fingerprint": data_fingerprint(data),
        }
        recorded = {
            "n_rows": self.n_rows,
            "n_pollsters": self.n_pollsters,
            "candidate": self.candidate,
            "fingerprint": self.fingerprint,
        }
        mismatched = [k for k in current if current[k] != recorded[k]]
        if mismatched:
            details = ", ".join(
                f"{k}: fit={recorded[k]!r} current={current[k]!r}"
                for k in mismatched
                if k != "fingerprint"
            )
            if "fingerprint" in mismatched:
                details = (details + ", " if details else "") + "table contents differ"
            raise StaleArtifactError(
                "reuse", f"saved fit does not match the current data ({details})"
            )


def save_fit(artifact: FitArtifact, path: Path) -> None:
    """Write the posterior to NetCDF with the fitting inputs as attributes."""
    attrs = artifact.idata.posterior.attrs
    for name in _FIT_ATTRS:
        attrs[_ATTR_PREFIX + name] = getattr(artifact, name)
    attrs[_ATTR_PREFIX + "diagnostics"] = json.dumps(artifact.diagnostics)
    artifact.idata.to_netcdf(str(path))
    print(f"  Saved: {Path(path).name}")


def load_fit(path: Path) -> FitArtifact:
    """Read a fit written by save_fit()."""
    idata = az.from_netcdf(str(path))
    attrs = idata.posterior.attrs
    missing = [n for n in _FIT_ATTRS if _ATTR_PREFIX + n not in attrs]
    if missing:
        raise StaleArtifactError(
            "reuse", f"{Path(path).name} does not record its fitting inputs {missing}"
        )
    return FitArtifact(
        idata=idata,
        n_rows=int(attrs["fit_n_rows"]),
        n_pollsters=int(attrs["fit_n_pollsters"]),
        seed=int(attrs["fit_seed"]),
        candidate=str(attrs["fit_candidate"]),
        fingerprint=str(attrs["fit_fingerprint"]),
        diagnostics=json.loads(attrs.get("fit_diagnostics", "{}")),
    )


# ── Convergence diagnostics ─────────────────────────────────────────────────


def check_convergence(idata: az.InferenceData) -> dict:
    """Run standard MCMC convergence diagnostics.

    Returns dict with all diagnostic metrics.
    """
    print_header("CONVERGENCE DIAGNOSTICS")

    diag: dict = {}

    rhat = az.rhat(idata, var_names=PARAMS)
    for name in PARAMS:
        diag[f"{name}_rhat_max"] = float(rhat[name].max())
    rhat_max = max(diag[f"{name}_rhat_max"] for name in PARAMS)
    diag["rhat_max"] = rhat_max
    rhat_ok = rhat_max < RHAT_THRESHOLD
    print(f"  R-hat:         max = {rhat_max:.4f}  {'OK' if rhat_ok else 'WARNING'}")

    ess = az.ess(idata, var_names=PARAMS)
    for name in PARAMS:
        diag[f"{name}_ess_min"] = float(ess[name].min())
    ess_min = min(diag[f"{name}_ess_min"] for name in PARAMS)
    diag["ess_min"] = ess_min
    ess_ok = ess_min > ESS_THRESHOLD
    print(f"  ESS:           min = {ess_min:.0f}  {'OK' if ess_ok else 'WARNING'}")

    diverging = idata.sample_stats["diverging"]
    divergences = int(diverging.sum().values)
    diag["divergences"] = divergences
    diag["divergent_fraction"] = divergences / diverging.size
    div_ok = divergences == 0
    print(f"  Divergences:   {divergences}  {'OK' if div_ok else 'WARNING'}")

    bfmi_ok = True
    if "energy" in idata.sample_stats:
        bfmi_values = az.bfmi(idata)
        diag["ebfmi"] = [float(v) for v in bfmi_values]
        bfmi_ok = all(v > MIN_EBFMI for v in bfmi_values)
        for i, v in enumerate(bfmi_values):
            print(f"  E-BFMI chain {i}: {v:.3f}  {'OK' if v > MIN_EBFMI else 'WARNING'}")

    diag["all_ok"] = rhat_ok and ess_ok and div_ok and bfmi_ok
    if diag["all_ok"]:
        print("  CONVERGENCE: ALL CHECKS PASSED")
    else:
        print("  CONVERGENCE: SOME CHECKS FAILED - inspect diagnostics")

    return diag


def ensure_converged(diag: dict) -> None:
    """Raise InferenceDivergedError if the diagnostics show a failed fit.

    Softer misses (R-hat above 1.01, low ESS, low E-BFMI) only warn in
    check_convergence(); these are the ones that make the posterior unusable.
    """
    problems = []
    if not math.isfinite(diag["rhat_max"]):
        problems.append("R-hat is not finite")
    elif diag["rhat_max"] > RHAT_FAIL_THRESHOLD:
        problems.append(
            f"max R-hat {diag['rhat_max']:.3f} > {RHAT_FAIL_THRESHOLD} (chains did not mix)"
        )
    if not math.isfinite(diag["ess_min"]):
        problems.append("ESS is not finite")
    if diag["divergent_fraction"] > MAX_DIVERGENT_FRACTION:
        problems.append(
            f"{diag['divergences']} divergent transitions "
            f"({diag['divergent_fraction']:.1%} > {MAX_DIVERGENT_FRACTION:.0%})"
        )
    if problems:
        raise InferenceDivergedError(STAGE, "; ".join(problems), diagnostics=diag)


# ── Sampling ────────────────────────────────────────────────────────────────


def sample_posterior(
    data: dict,
    n_chains: int = DEFAULT_N_CHAINS,
    n_iterations: int = DEFAULT_N_ITERATIONS,
    n_warmup: int = DEFAULT_N_WARMUP,
    seed: int = RANDOM_SEED,
    cores: int | None = None,
    target_accept: float = TARGET_ACCEPT,
) -> FitArtifact:
    """Sample the model with NUTS and check convergence.

    ``n_iterations`` counts warm-up: each chain keeps ``n_iterations - n_warmup``
    draws. Warm-up is discarded per chain before chains are concatenated.

    Raises InferenceDivergedError if the chains failed to converge.
    """
    if n_chains < 1:
        raise ValueError(f"n_chains must be >= 1, got {n_chains}")
    if n_warmup < 0 or n_iterations <= n_warmup:
        raise ValueError(
            f"n_iterations ({n_iterations}) must exceed n_warmup ({n_warmup}) >= 0"
        )
    if data["n_obs"] == 0:
        raise EmptyInputError(STAGE, "no observations to fit")

    n_draws = n_iterations - n_warmup
    model = build_model(data)

    with model:
        print(f"  Sampling: {n_draws} draws, {n_warmup} warm-up, {n_chains} chains")
        print(f"  target_accept={target_accept}, seed={seed}")
        t0 = time.time()
        idata = pm.sample(
            draws=n_draws,
            tune=n_warmup,
            chains=n_chains,
            cores=cores,
            target_accept=target_accept,
            random_seed=seed,
            progressbar=True,
        )
        sampling_time = time.time() - t0

    print(f"  Sampling complete in {sampling_time:.1f}s")

    diag = check_convergence(idata)
    ensure_converged(diag)

    return FitArtifact(
        idata=idata,
        n_rows=data["n_obs"],
        n_pollsters=data["n_pollsters"],
        seed=seed,
        candidate=data["candidate"],
        fingerprint=data_fingerprint(data),
        diagnostics=diag,
        sampling_time=sampling_time,
    )
