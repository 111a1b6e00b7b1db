"""
Synthetic price data for running sweeps without market data files.

A crossover sweep needs *some* daily price history. Geometric Brownian Motion
(GBM) gives a trending, compounding path with a known drift and volatility,
which makes it easy to sanity-check results: with a strong positive drift,
most sensible (fast < slow) window pairs should end up with positive returns.

Generators take an explicit seed and use their own numpy Generator, never the
global numpy random state, so concurrent callers cannot disturb each other's
sequences.
"""

import numpy as np
import pandas as pd


def generate_gbm_paths(
    initial_price: float,
    drift: float,
    volatility: float,
    n_steps: int,
    dt: float = 1 / 252,
    seed: int | None = None,
) -> pd.Series:
    """
    Generate a price path using Geometric Brownian Motion.

    **Mathematical**: The exact discrete update for each step is
        S_{t+1} = S_t * exp((μ - σ²/2) * dt + σ * sqrt(dt) * Z_t),  Z_t ~ N(0, 1)
    The -σ²/2 term is the Itô correction that keeps the expected growth rate
    at μ.

    **Edge cases**:
    - n_steps = 0 → just [initial_price].
    - volatility = 0 → deterministic exponential path S_0 * exp(μ t).

    Args:
        initial_price: Starting price (positive).
        drift: Annualized drift μ (e.g., 0.10 for 10%).
        volatility: Annualized volatility σ (e.g., 0.20 for 20%).
        n_steps: Number of steps to simulate.
        dt: Time increment per step (1/252 for daily).
        seed: Seed for reproducibility (None for fresh randomness).

    Returns:
        Series of length n_steps + 1, indexed by step number.
    """
    rng = np.random.default_rng(seed)
    shocks = rng.standard_normal(n_steps)

    log_steps = (drift - 0.5 * volatility**2) * dt + volatility * np.sqrt(dt) * shocks
    log_path = np.concatenate([[0.0], np.cumsum(log_steps)])
    prices = initial_price * np.exp(log_path)

    return pd.Series(prices, index=range(n_steps + 1), name='price')


def generate_price_frame(
    n_days: int,
    initial_price: float = 100.0,
    drift: float = 0.08,
    volatility: float = 0.20,
    start_date: str = "2020-01-01",
    seed: int | None = None,
) -> pd.DataFrame:
    """
    Build a daily price DataFrame shaped like the backtest engine expects.

    Args:
        n_days: Number of daily bars (>= 1).
        initial_price: First closing price.
        drift: Annualized GBM drift.
        volatility: Annualized GBM volatility.
        start_date: Timestamp of the first bar.
        seed: Seed for reproducibility.

    Returns:
        DataFrame with columns 'timestamp' (business days, ascending) and
        'closing_price'.

    Raises:
        ValueError: If n_days < 1.
    """
    if n_days < 1:
        raise ValueError(f"n_days must be >= 1, got: {n_days}")

    prices = generate_gbm_paths(
        initial_price=initial_price,
        drift=drift,
        volatility=volatility,
        n_steps=n_days - 1,
        seed=seed,
    )
    timestamps = pd.bdate_range(start=start_date, periods=n_days)

    return pd.DataFrame({
        'timestamp': timestamps,
        'closing_price': prices.to_numpy(),
    })
