"""
Performance metrics for ranking parameter-sweep results.

A sweep produces one equity curve per parameter combination. To compare
thousands of them we reduce each curve to a handful of numbers:
  - Growth: total return and CAGR.
  - Risk-adjusted return: Sharpe ratio.
  - Pain: maximum drawdown.

summarize_equity_curve() bundles these into the metrics dict that the
crossover evaluator returns for every combination, so every row of a sweep's
result table carries the same columns.
"""

import numpy as np
import pandas as pd


def compute_total_return(equity_curve: pd.Series) -> float:
    """
    Compute the overall return from the first to the last equity value.

    **Mathematical**:
        Total Return = (E_T / E_0) - 1

    **Interpretation in a sweep**: Total return alone rewards whichever window
    pair happened to ride the biggest rally. Always read it next to drawdown
    and Sharpe before calling a combination "best".

    Args:
        equity_curve: Time series of portfolio equity values (positive).

    Returns:
        Total return as a decimal (e.g., 0.50 = 50% gain).
    """
    return (equity_curve.iloc[-1] / equity_curve.iloc[0]) - 1.0


def compute_cagr(equity_curve: pd.Series, periods_per_year: int = 252) -> float:
    """
    Compute the compound annual growth rate of an equity curve.

    **Mathematical**: Over n intervals (len(equity_curve) - 1):
        CAGR = (E_T / E_0) ^ (periods_per_year / n) - 1

    **Edge cases**:
    - A single-point curve has no intervals; CAGR is reported as 0.0.

    Args:
        equity_curve: Time series of portfolio equity values.
        periods_per_year: 252 for daily bars.

    Returns:
        CAGR as a decimal (e.g., 0.15 = 15% annualized).
    """
    n_periods = len(equity_curve) - 1
    if n_periods <= 0:
        return 0.0

    growth = equity_curve.iloc[-1] / equity_curve.iloc[0]
    return growth ** (periods_per_year / n_periods) - 1.0


def compute_sharpe_ratio(
    returns: pd.Series,
    risk_free_rate: float = 0.0,
    periods_per_year: int = 252,
) -> float:
    """
    Compute the annualized Sharpe ratio of a periodic return series.

    **Mathematical**:
        Sharpe = (mean(r) - r_f / periods_per_year) / std(r) * sqrt(periods_per_year)

    **Interpretation in a sweep**: Sharpe is the usual primary ranking key.
    A long-or-cash crossover spends many days flat (zero return), which lowers
    volatility as well as return, so Sharpe compares fast-trading and
    slow-trading window pairs more fairly than raw return does.

    **Edge cases**:
    - Zero volatility (e.g., a combination that never traded) → NaN.
    - Fewer than two returns → NaN.

    Args:
        returns: Periodic simple returns.
        risk_free_rate: Annualized risk-free rate.
        periods_per_year: 252 for daily bars.

    Returns:
        Sharpe ratio (NaN when undefined).
    """
    clean_returns = returns.dropna()
    if len(clean_returns) < 2:
        return np.nan

    excess_return = clean_returns.mean() - risk_free_rate / periods_per_year
    vol_per_period = clean_returns.std(ddof=1)

    # tolerance, not exact zero: flat equity gives std ~1e-17
    if vol_per_period < 1e-10 or np.isnan(vol_per_period):
        return np.nan

    return (excess_return / vol_per_period) * np.sqrt(periods_per_year)


def compute_drawdown_series(equity_curve: pd.Series) -> pd.Series:
    """
    Percentage drop from the running peak at every point in time.

        drawdown_t = equity_t / max(equity_0..t) - 1

    Values are <= 0 and the series is 0 whenever the curve makes a new high.
    """
    return (equity_curve / equity_curve.cummax()) - 1.0


def compute_max_drawdown(equity_curve: pd.Series) -> float:
    """
    Worst peak-to-trough loss over the period (a value <= 0).

    A monotonically increasing curve has a max drawdown of 0.0.
    """
    return float(compute_drawdown_series(equity_curve).min())


def summarize_equity_curve(
    equity_curve: pd.Series,
    periods_per_year: int = 252,
) -> dict[str, float]:
    """
    Reduce an equity curve to the standard per-combination sweep metrics.

    Args:
        equity_curve: Time series of equity values (ascending time).
        periods_per_year: 252 for daily bars.

    Returns:
        Dict with total_return, cagr, sharpe_ratio, max_drawdown,
        final_equity and num_trading_days. All values are plain Python
        numbers so they serialise cleanly.
    """
    returns = equity_curve.pct_change().dropna()
    return {
        "total_return": float(compute_total_return(equity_curve)),
        "cagr": float(compute_cagr(equity_curve, periods_per_year=periods_per_year)),
        "sharpe_ratio": float(compute_sharpe_ratio(returns, periods_per_year=periods_per_year)),
        "max_drawdown": compute_max_drawdown(equity_curve),
        "final_equity": float(equity_curve.iloc[-1]),
        "num_trading_days": int(len(equity_curve)),
    }
