"""
Tests for src/analytics/risk_metrics.py

These tests use hand-crafted equity and return series where expected values
are easy to verify by hand.
"""

import numpy as np
import pandas as pd

from src.analytics.risk_metrics import (
    compute_cagr,
    compute_drawdown_series,
    compute_max_drawdown,
    compute_sharpe_ratio,
    compute_total_return,
    summarize_equity_curve,
)


def test_compute_total_return_simple_case():
    """Total return on 100 → 150 is 50%."""
    equity = pd.Series([100.0, 110.0, 130.0, 150.0])

    assert np.isclose(compute_total_return(equity), 0.50)


def test_compute_total_return_flat_equity():
    equity = pd.Series([100.0, 100.0, 100.0])

    assert np.isclose(compute_total_return(equity), 0.0)


def test_compute_cagr_doubling_in_252_days():
    """Doubling over 252 intervals is 100% annual growth."""
    equity = pd.Series([100.0] + [100.0] * 251 + [200.0])  # 253 values

    assert np.isclose(compute_cagr(equity, periods_per_year=252), 1.0)


def test_compute_cagr_single_point_is_zero():
    assert compute_cagr(pd.Series([100.0])) == 0.0


def test_compute_sharpe_ratio_constant_returns_is_nan():
    """Zero volatility makes Sharpe undefined."""
    returns = pd.Series([0.001] * 50)

    assert np.isnan(compute_sharpe_ratio(returns))


def test_compute_sharpe_ratio_too_few_returns_is_nan():
    assert np.isnan(compute_sharpe_ratio(pd.Series([0.01])))


def test_compute_sharpe_ratio_known_value():
    """
    Returns alternate +2% / 0%: mean 1%, sample std ~1.0%.
    Sharpe ≈ (0.01 / std) * sqrt(252).
    """
    returns = pd.Series([0.02, 0.0] * 50)
    expected = returns.mean() / returns.std(ddof=1) * np.sqrt(252)

    assert np.isclose(compute_sharpe_ratio(returns), expected)
    assert compute_sharpe_ratio(returns) > 0


def test_compute_drawdown_series_with_drop():
    """
    Equity: 100 → 120 → 90 → 120 → 130
    Running peak: 100, 120, 120, 120, 130
    Drawdown: 0, 0, -0.25, 0, 0
    """
    equity = pd.Series([100.0, 120.0, 90.0, 120.0, 130.0])

    drawdown = compute_drawdown_series(equity)

    assert np.allclose(drawdown.values, [0.0, 0.0, -0.25, 0.0, 0.0])


def test_compute_max_drawdown_monotonic_increasing():
    equity = pd.Series([100.0, 101.0, 105.0, 110.0])

    assert compute_max_drawdown(equity) == 0.0


def test_compute_max_drawdown_with_drop():
    equity = pd.Series([100.0, 120.0, 90.0, 120.0, 130.0])

    assert np.isclose(compute_max_drawdown(equity), -0.25)


def test_summarize_equity_curve_keys_and_types():
    """Every combination in a sweep gets the same plain-Python metric columns."""
    equity = pd.Series([100.0, 102.0, 101.0, 105.0, 107.0])

    summary = summarize_equity_curve(equity)

    assert set(summary) == {
        "total_return",
        "cagr",
        "sharpe_ratio",
        "max_drawdown",
        "final_equity",
        "num_trading_days",
    }
    assert np.isclose(summary["total_return"], 0.07)
    assert summary["final_equity"] == 107.0
    assert summary["num_trading_days"] == 5
    assert type(summary["sharpe_ratio"]) is float
    assert type(summary["num_trading_days"]) is int


def test_summarize_flat_equity_has_nan_sharpe():
    """A combination that never trades has flat equity and undefined Sharpe."""
    summary = summarize_equity_curve(pd.Series([100.0] * 30))

    assert np.isnan(summary["sharpe_ratio"])
    assert summary["max_drawdown"] == 0.0
    assert summary["total_return"] == 0.0
