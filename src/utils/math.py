"""
Mathematical helpers for moving-average crossover backtests.

Returns and moving averages, written for price series in ascending time
order (oldest first), which is how the crossover engine iterates.
"""

import pandas as pd


def compute_simple_returns(prices: pd.Series) -> pd.Series:
    """
    Convert a price series into simple period-over-period returns.

    **Mathematical**:
        r_t = (P_t / P_{t-1}) - 1

    The first value is NaN (no prior price).

    Args:
        prices: Prices in ascending time order.

    Returns:
        Simple returns aligned to the input index.
    """
    return prices / prices.shift(1) - 1.0


def compute_moving_average_simple(prices: pd.Series, window: int) -> pd.Series:
    """
    Compute a trailing simple moving average (SMA).

    **Conceptual**: The SMA over `window` periods averages the last `window`
    prices up to and including t. A crossover strategy compares a short
    ("fast") SMA to a long ("slow") one: fast above slow reads as an uptrend.
    The two window lengths are exactly what a crossover parameter sweep
    varies.

    **Mathematical**:
        SMA_t = (1 / window) * Σ P_{t-i}, i = 0 .. window-1

    **Look-ahead**: rolling() looks backward in *position*. That only means
    backward in *time* if the series is oldest-first, so callers must pass
    ascending data.

    **Edge cases**:
    - The first (window - 1) values are NaN.
    - window = 1 returns the prices themselves.
    - If len(prices) < window, every value is NaN.

    Args:
        prices: Prices in ascending time order.
        window: Number of periods to average (positive integer).

    Returns:
        Trailing SMA, same index as input.

    Raises:
        ValueError: If window < 1.
    """
    if window < 1:
        raise ValueError(f"Moving average window must be >= 1, got: {window}")
    return prices.rolling(window=window).mean()
