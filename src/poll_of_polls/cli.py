"""Command-line interface for the poll-of-polls pipeline."""

import argparse
import sys
from pathlib import Path

from poll_of_polls.aggregate import aggregate_responses
from poll_of_polls.config import (
    DEFAULT_COUNT_RANGE,
    DEFAULT_N_CANDIDATES,
    DEFAULT_N_CHAINS,
    DEFAULT_N_ITERATIONS,
    DEFAULT_N_POLLSTERS,
    DEFAULT_N_WARMUP,
    DEFAULT_SCALE,
    PERCENT_TOTAL,
    RANDOM_SEED,
    RESULTS_ROOT,
    TARGET_ACCEPT,
    TOP_N_CANDIDATES,
)
from poll_of_polls.errors import PipelineError
from poll_of_polls.inference import load_fit, print_header, sample_posterior, save_fit
from poll_of_polls.model import prepare_model_data
from poll_of_polls.output import read_table, save_json, save_summary, write_parquet, write_table
from poll_of_polls.run_context import RunContext
from poll_of_polls.simulate import simulate_polls
from poll_of_polls.summary import build_summary, pollster_effects_frame, posterior_predictive_check
from poll_of_polls.validate import check_pollster_totals, validate_analysis_table

SIMULATED_PATH = Path("data/00-simulated_data/simulated_data.csv")
RAW_PATH = Path("data/01-raw_data/raw_data.csv")
ANALYSIS_PATH = Path("data/02-analysis_data/analysis_data.csv")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="poll-of-polls",
        description="Simulate, clean and model poll-of-polls data.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sim = sub.add_parser("simulate", help="Write a synthetic analysis table")
    sim.add_argument("--pollsters", type=int, default=DEFAULT_N_POLLSTERS)
    sim.add_argument("--candidates", type=int, default=DEFAULT_N_CANDIDATES)
    sim.add_argument("--seed", type=int, default=RANDOM_SEED)
    sim.add_argument(
        "--scale",
        type=float,
        default=DEFAULT_SCALE,
        help="Per-pollster total of the shares: 1 for fractions, 100 for percent "
        f"(default: {DEFAULT_SCALE})",
    )
    sim.add_argument("--count-min", type=int, default=DEFAULT_COUNT_RANGE[0])
    sim.add_argument("--count-max", type=int, default=DEFAULT_COUNT_RANGE[1])
    sim.add_argument("--output", "-o", type=Path, default=SIMULATED_PATH)

    clean = sub.add_parser("clean", help="Aggregate raw responses into an analysis table")
    clean.add_argument("input", nargs="?", type=Path, default=RAW_PATH)
    clean.add_argument("--output", "-o", type=Path, default=ANALYSIS_PATH)
    clean.add_argument(
        "--drop-missing",
        action="store_true",
        help="Drop rows with a blank pollster or answer instead of failing",
    )

    val = sub.add_parser("validate", help="Check the structure of an analysis table")
    val.add_argument("input", nargs="?", type=Path, default=ANALYSIS_PATH)
    val.add_argument("--expected-pollsters", type=int, default=None)
    val.add_argument("--percentage-max", type=float, default=PERCENT_TOTAL)
    val.add_argument(
        "--check-totals",
        action="store_true",
        help="Also require each pollster's percentages to sum to --percentage-max",
    )

    fit = sub.add_parser("fit", help="Fit the pollster model and summarize the posterior")
    fit.add_argument("--data", type=Path, default=ANALYSIS_PATH)
    fit.add_argument("--candidate", default=None, help="Candidate whose percentage is modeled")
    fit.add_argument("--n-chains", type=int, default=DEFAULT_N_CHAINS)
    fit.add_argument(
        "--n-iterations",
        type=int,
        default=DEFAULT_N_ITERATIONS,
        help=f"Iterations per chain, including warm-up (default: {DEFAULT_N_ITERATIONS})",
    )
    fit.add_argument(
        "--n-warmup",
        type=int,
        default=DEFAULT_N_WARMUP,
        help=f"Warm-up iterations discarded per chain (default: {DEFAULT_N_WARMUP})",
    )
    fit.add_argument("--seed", type=int, default=RANDOM_SEED)
    fit.add_argument("--cores", type=int, default=None, help="Parallel chain processes")
    fit.add_argument("--target-accept", type=float, default=TARGET_ACCEPT)
    fit.add_argument("--top-n", type=int, default=TOP_N_CANDIDATES)
    fit.add_argument("--results-root", type=Path, default=RESULTS_ROOT)
    fit.add_argument(
        "--reuse",
        type=Path,
        default=None,
        help="Reuse a saved posterior.nc instead of sampling (checked against --data)",
    )
    return parser


def run_simulate(args: argparse.Namespace) -> None:
    print_header("SIMULATE")
    df = simulate_polls(
        n_pollsters=args.pollsters,
        n_candidates=args.candidates,
        seed=args.seed,
        scale=args.scale,
        count_range=(args.count_min, args.count_max),
    )
    write_table(df, args.output)


def run_clean(args: argparse.Namespace) -> None:
    print_header("CLEAN")
    raw = read_table(args.input, stage="clean")
    print(f"  {args.input}: {raw.height} responses")
    table = aggregate_responses(raw, drop_missing=args.drop_missing)
    print(f"  {table['pollster'].n_unique()} pollsters, {table.height} pollster x answer rows")
    write_table(table, args.output)


def run_validate(args: argparse.Namespace) -> None:
    print_header(f"VALIDATE {args.input}")
    table = read_table(args.input, stage="validate")
    validate_analysis_table(
        table,
        expected_pollsters=args.expected_pollsters,
        percentage_max=args.percentage_max,
    )
    if args.check_totals:
        check_pollster_totals(table, total=args.percentage_max)


def run_fit(args: argparse.Namespace) -> None:
    with RunContext(
        dataset=args.data.stem,
        analysis_name="model",
        params=vars(args),
        results_root=args.results_root,
        keep=[args.reuse] if args.reuse else None,
    ) as ctx:
        print(f"Poll of polls model: {args.data}")
        print(f"Output:    {ctx.run_dir}")

        print_header("LOAD DATA")
        table = read_table(args.data, stage="fit")
        validate_analysis_table(table)
        data = prepare_model_data(table, args.candidate)

        if args.reuse:
            print_header(f"REUSE {args.reuse}")
            fit = load_fit(args.reuse)
            fit.check_matches(data)
            print(f"  Fit matches current data (seed={fit.seed})")
        else:
            print_header("SAMPLE")
            fit = sample_posterior(
                data,
                n_chains=args.n_chains,
                n_iterations=args.n_iterations,
                n_warmup=args.n_warmup,
                seed=args.seed,
                cores=args.cores,
                target_accept=args.target_accept,
            )

        print_header("SUMMARIZE")
        draws = fit.draws
        summary = build_summary(draws, table, top_n=args.top_n)
        print(
            f"  mu    = {summary.mu_mean:.3f}  "
            f"[{summary.mu_ci_low:.3f}, {summary.mu_ci_high:.3f}]"
        )
        print(
            f"  sigma = {summary.sigma_mean:.3f}  "
            f"[{summary.sigma_ci_low:.3f}, {summary.sigma_ci_high:.3f}]"
        )
        print("  Top candidates (empirical mean percentage, normalized):")
        for cand, mean, prob in summary.top_candidates:
            print(f"    {cand:30s} {mean:8.3f}  {prob:.3f}")

        print("\n  Posterior predictive check:")
        ppc = posterior_predictive_check(draws, data, seed=args.seed)

        print_header("SAVE")
        posterior_path = ctx.data_dir / "posterior.nc"
        if not (args.reuse and args.reuse.resolve() == posterior_path.resolve()):
            save_fit(fit, posterior_path)
        write_parquet(pollster_effects_frame(draws), ctx.data_dir / "pollster_effects.parquet")
        save_json(
            {"candidate": data["candidate"], "convergence": fit.diagnostics, "ppc": ppc},
            ctx.run_dir / "diagnostics.json",
        )
        save_summary(summary, ctx.run_dir / "summary.json")


COMMANDS = {
    "simulate": run_simulate,
    "clean": run_clean,
    "validate": run_validate,
    "fit": run_fit,
}


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        COMMANDS[args.command](args)
    except PipelineError as e:
        print(f"ERROR [{e.stage}]: {e.message}", file=sys.stderr)
        sys.exit(1)
