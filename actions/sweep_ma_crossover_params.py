#!/usr/bin/env python3
"""
Parameter sweep for a moving-average crossover strategy.

**Purpose**: This script sweeps the two window lengths of a long-or-cash SMA
crossover (fast window, slow window) over integer ranges, keeps only the
combinations where fast < slow, optionally samples a subset, backtests each
surviving combination (in parallel if you like), and caches the result set so
re-running the same sweep is instant.

**Sweep definition**:
  - nFast ∈ [fast-min, fast-max], bound to CrossoverParameter.FAST_WINDOW.
  - nSlow ∈ [slow-min, slow-max], bound to CrossoverParameter.SLOW_WINDOW.
  - Constraint: nFast < nSlow (a fast window longer than the slow one is
    just the inverted strategy).

**Usage**:
    python actions/sweep_ma_crossover_params.py
    python actions/sweep_ma_crossover_params.py --fast-max 30 --slow-max 120 --sample 200
    python actions/sweep_ma_crossover_params.py --prices data/raw/QQQ.csv --mode processes

**Outputs**:
  - Cached result set: <results-dir>/ma_crossover-<identity>.json
  - CSV: <results-dir>/ma_crossover-<identity>.csv with one row per combination.
  - Terminal: Top 10 combinations ranked by Sharpe ratio.

**Teaching note**: The cache key is a hash of the *whole* sweep definition
(ranges, constraint, sample size, seed) plus a fingerprint of the price
history and backtest costs, not just the strategy name. Widen a
range and you get a fresh sweep; re-run the same command and no backtest runs
at all. Press Ctrl+C during a long sweep and the partial results are saved;
the next run picks up where it stopped.

**Warning**: The best window pair on one price history is very likely
overfit. Treat the top of the table as a hypothesis, not an answer.
"""

import argparse
import logging
import signal
import sys
import time
from pathlib import Path

import pandas as pd

# Ensure project root is on path for imports
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from src.analytics.synthetic_data import generate_price_frame
from src.backtesting.engine import BacktestParams
from src.backtesting.evaluator import CrossoverParameter, MovingAverageCrossoverEvaluator
from src.config.settings import SweepSettings, get_settings
from src.sweep.errors import ConfigurationError, PersistenceError
from src.sweep.runner import SweepDefinition, run_sweep
from src.sweep.scheduler import CancellationToken, SweepStatus
from src.sweep.store import JsonFileResultStore, export_results_csv

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)

STRATEGY_ID = "ma_crossover"


def parse_args(settings: SweepSettings, argv=None):
    """
    Parse command line arguments.

    Defaults for execution (mode, workers, sample, seed, timeout, results
    directory) come from SweepSettings, so a .env file can set them once per
    machine and the command line can still override them per run.
    """
    parser = argparse.ArgumentParser(
        description="Sweep fast/slow SMA windows for a crossover strategy",
        epilog="""
Examples:
  # Exhaustive sweep over the default ranges on synthetic prices
  python actions/sweep_ma_crossover_params.py

  # Larger grid, evaluate a reproducible random sample of 200 combinations
  python actions/sweep_ma_crossover_params.py --fast-max 50 --slow-max 200 --sample 200 --seed 7

  # Use a real price CSV (timestamp, closing_price) and 8 worker processes
  python actions/sweep_ma_crossover_params.py --prices data/raw/QQQ.csv --mode processes --workers 8
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--fast-min", type=int, default=2, help="Smallest fast window (default: 2)")
    parser.add_argument("--fast-max", type=int, default=20, help="Largest fast window, inclusive (default: 20)")
    parser.add_argument("--slow-min", type=int, default=10, help="Smallest slow window (default: 10)")
    parser.add_argument("--slow-max", type=int, default=60, help="Largest slow window, inclusive (default: 60)")

    parser.add_argument(
        "--prices",
        type=str,
        default=None,
        help="CSV with 'timestamp' and 'closing_price' columns (default: synthetic GBM prices)",
    )
    parser.add_argument("--days", type=int, default=1000, help="Synthetic history length in days (default: 1000)")
    parser.add_argument("--price-seed", type=int, default=7, help="Seed for synthetic prices (default: 7)")

    parser.add_argument("--sample", type=int, default=settings.sample_count,
                        help=f"Combinations to sample, 0 = all (default: {settings.sample_count})")
    parser.add_argument("--seed", type=int, default=settings.seed,
                        help=f"Sampling seed (default: {settings.seed})")
    parser.add_argument("--mode", type=str, default=settings.execution_mode.value,
                        choices=["sequential", "threads", "processes"],
                        help=f"Execution mode (default: {settings.execution_mode.value})")
    parser.add_argument("--workers", type=int, default=settings.workers,
                        help=f"Worker pool size, 0/1 = sequential (default: {settings.workers})")
    parser.add_argument("--timeout", type=float, default=settings.timeout_seconds,
                        help="Per-evaluation timeout in seconds (default: none)")
    parser.add_argument("--results-dir", type=str, default=str(settings.results_dir),
                        help=f"Cache directory (default: {settings.results_dir})")
    parser.add_argument("--slippage-bps", type=float, default=5.0, help="Slippage in bps (default: 5.0)")

    return parser.parse_args(argv)


def load_prices(args) -> pd.DataFrame:
    """Load prices from CSV, or generate a seeded synthetic history."""
    if args.prices:
        prices = pd.read_csv(args.prices)
        prices['timestamp'] = pd.to_datetime(prices['timestamp'], format='ISO8601')
        return prices
    return generate_price_frame(n_days=args.days, seed=args.price_seed)


def build_definition(args) -> SweepDefinition:
    """Declare the two window distributions and the fast < slow constraint."""
    return (
        SweepDefinition(strategy_id=STRATEGY_ID, sample_count=args.sample, seed=args.seed)
        .declare("nFast", CrossoverParameter.FAST_WINDOW, range(args.fast_min, args.fast_max + 1))
        .declare("nSlow", CrossoverParameter.SLOW_WINDOW, range(args.slow_min, args.slow_max + 1))
        .constrain("fast_below_slow", "nFast", "nSlow", "<")
    )


def main(argv=None):
    """
    Main entrypoint for the crossover parameter sweep.

    Steps:
      1. Load configuration and declare the sweep.
      2. Load (or generate) price history.
      3. Run the sweep (cache check, generation, evaluation, save).
      4. Export the result table and print the top combinations.
    """
    print("=" * 80)
    print("Moving-Average Crossover Parameter Sweep")
    print("=" * 80)
    print()

    # ========================================================================
    # Step 1: Configuration and sweep declaration
    # ========================================================================
    print("Step 1: Declaring sweep...")
    try:
        settings = get_settings()
        args = parse_args(settings, argv)
        definition = build_definition(args)
    except ConfigurationError as e:
        print(f"  ✗ Invalid sweep configuration: {e}")
        return 2

    print(f"  nFast: {args.fast_min}..{args.fast_max}   nSlow: {args.slow_min}..{args.slow_max}")
    print(f"  Constraint: nFast < nSlow")
    print(f"  Grid points: {definition.space.product_size()}")
    print(f"  Sample: {'all' if args.sample == 0 else args.sample} (seed {args.seed})")
    print()

    # ========================================================================
    # Step 2: Price history
    # ========================================================================
    print("Step 2: Loading price history...")
    try:
        prices = load_prices(args)
    except FileNotFoundError:
        print(f"  ✗ Price file not found: {args.prices}")
        return 1
    print(f"  ✓ {len(prices)} daily bars "
          f"({prices['timestamp'].min().date()} to {prices['timestamp'].max().date()})")
    print()

    # ========================================================================
    # Step 3: Run the sweep
    # ========================================================================
    print(f"Step 3: Running sweep (mode={args.mode}, workers={args.workers})...")
    evaluator = MovingAverageCrossoverEvaluator(
        prices,
        definition.space.binding_map(),
        params=BacktestParams(slippage_bps=args.slippage_bps),
    )
    store = JsonFileResultStore(args.results_dir)
    identity = definition.identity(evaluator.fingerprint())
    print(f"  Sweep identity: {identity.key}")

    # Ctrl+C stops dispatching new backtests; in-flight ones finish and the
    # partial result set is saved for the next run to resume.
    cancel_token = CancellationToken()
    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: cancel_token.cancel())

    start_time = time.time()
    try:
        outcome = run_sweep(
            definition,
            evaluator,
            store=store,
            mode=args.mode,
            workers=args.workers,
            timeout_seconds=args.timeout,
            cancel_token=cancel_token,
        )
    except PersistenceError as e:
        print(f"  ✗ Could not read or write cached results: {e}")
        return 1
    finally:
        signal.signal(signal.SIGINT, previous_handler)
    total_time = time.time() - start_time

    if outcome.status is SweepStatus.EMPTY:
        print("  ⚠ No combination satisfies the constraints; nothing to evaluate.")
        return 0
    if outcome.status is SweepStatus.INCOMPLETE:
        print(f"  ⚠ Sweep cancelled: {len(outcome)} combinations evaluated. Re-run to resume.")
    print(f"  ✓ {len(outcome.successes())} succeeded, {len(outcome.failures())} failed "
          f"in {total_time:.1f}s")
    print()

    # ========================================================================
    # Step 4: Export and rank
    # ========================================================================
    print("Step 4: Saving results table...")
    csv_path = export_results_csv(outcome, store.path_for(identity).with_suffix(".csv"))
    print(f"  ✓ Saved: {csv_path}")
    print()

    results_df = outcome.to_frame()
    if not outcome.successes() or 'sharpe_ratio' not in results_df.columns:
        print("  ⚠ No successful evaluations to rank. See the 'error' column in the CSV.")
        return 0
    ranked = results_df[results_df['succeeded']].dropna(subset=['sharpe_ratio'])
    ranked = ranked.sort_values('sharpe_ratio', ascending=False)

    print("=" * 80)
    print("Top 10 Combinations (Ranked by Sharpe Ratio)")
    print("=" * 80)
    print(f"{'Rank':>4s} {'Fast':>5s} {'Slow':>5s} {'Sharpe':>7s} {'MaxDD':>8s} {'Return':>8s} {'Trades':>7s}")
    print("-" * 80)
    for idx, row in enumerate(ranked.head(10).itertuples(), start=1):
        print(f"{idx:4d} {int(row.nFast):5d} {int(row.nSlow):5d} {row.sharpe_ratio:7.2f} "
              f"{row.max_drawdown:8.2%} {row.total_return:8.2%} {int(row.num_trades):7d}")
    print("-" * 80)
    print()

    if not ranked.empty:
        print("Summary Statistics Across All Combinations:")
        print(f"  Sharpe Ratio:  min={ranked['sharpe_ratio'].min():.2f}, "
              f"median={ranked['sharpe_ratio'].median():.2f}, "
              f"max={ranked['sharpe_ratio'].max():.2f}")
        print(f"  Max Drawdown:  min={ranked['max_drawdown'].min():.2%}, "
              f"median={ranked['max_drawdown'].median():.2%}, "
              f"max={ranked['max_drawdown'].max():.2%}")
        print()

    print("Next steps:")
    print("  - Look for broad plateaus of good Sharpe, not a single sharp peak")
    print("  - Re-run on a different price history (--price-seed or --prices) to test robustness")
    return 0


if __name__ == "__main__":
    sys.exit(main())
