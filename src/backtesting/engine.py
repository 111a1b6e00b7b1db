"""
Daily-bar moving-average crossover backtest.

**Conceptual**: This is the "expensive function" a parameter sweep calls once
per combination. Given a daily price history and two window lengths, it
simulates a long-or-cash crossover rule:
  - fast SMA above slow SMA → hold 100% of equity in the instrument;
  - otherwise → hold cash.
It returns an equity curve and summary metrics.

**Why a fresh Account per run?**
  A tempting shortcut is a single module-level portfolio that every run
  "resets" before starting. That works for a sequential loop and breaks the
  moment two runs overlap on different threads: one run's reset wipes out
  the other's positions halfway through. Here every call to
  run_crossover_backtest() builds its own Account and never touches anything
  shared, so concurrent runs cannot interfere.

**Financial assumptions** (kept deliberately simple):
  - Trades execute at the daily close that generated the signal.
  - Slippage is charged in basis points on the execution price (buys pay
    more, sells receive less); a flat fee applies per trade.
  - Fractional shares are allowed; no shorting, no leverage, no interest.

**Teaching note**: Signal logic is intentionally trivial. The point of this
module is to give the sweep something realistic to evaluate: a pure function
of (prices, fast_window, slow_window) with isolated state and a cost that
grows with the length of the history.
"""

from dataclasses import dataclass, field
from typing import Dict
import pandas as pd

from src.analytics.risk_metrics import summarize_equity_curve
from src.utils.math import compute_moving_average_simple


@dataclass
class BacktestParams:
    """
    Parameters for a crossover backtest run.

    Attributes:
        initial_cash: Starting capital (must be positive).
        slippage_bps: Slippage in basis points applied to each fill.
        fee_per_trade: Flat fee per executed trade.
        periods_per_year: Bars per year for annualized metrics (252 for daily).
    """
    initial_cash: float = 100_000.0
    slippage_bps: float = 0.0
    fee_per_trade: float = 0.0
    periods_per_year: int = 252

    def __post_init__(self):
        if self.initial_cash <= 0:
            raise ValueError(f"initial_cash must be positive, got: {self.initial_cash}")
        if self.slippage_bps < 0 or self.fee_per_trade < 0:
            raise ValueError("slippage_bps and fee_per_trade must be non-negative.")


@dataclass
class Account:
    """
    Per-run portfolio state: cash plus a long position in one instrument.

    Attributes:
        cash: Uninvested cash.
        quantity: Shares held (0.0 when flat).
        num_trades: Number of executed entries and exits.
    """
    cash: float
    quantity: float = 0.0
    num_trades: int = 0

    @property
    def is_long(self) -> bool:
        return self.quantity > 0

    def equity(self, price: float) -> float:
        return self.cash + self.quantity * price

    def enter_long(self, price: float, params: BacktestParams) -> None:
        """Spend all cash (after the fee) on the instrument."""
        fill_price = price * (1.0 + params.slippage_bps / 10_000.0)
        budget = self.cash - params.fee_per_trade
        if budget <= 0:
            return
        self.quantity = budget / fill_price
        self.cash = 0.0
        self.num_trades += 1

    def exit_long(self, price: float, params: BacktestParams) -> None:
        """Sell the whole position back to cash."""
        fill_price = price * (1.0 - params.slippage_bps / 10_000.0)
        self.cash += self.quantity * fill_price - params.fee_per_trade
        self.quantity = 0.0
        self.num_trades += 1


@dataclass
class BacktestResult:
    """
    Results of one crossover backtest.

    Attributes:
        equity_curve: Equity at each close, indexed by timestamp (ascending).
        signal: 1 where the rule wanted to be long, 0 where it wanted cash.
        metrics: Summary metrics (see summarize_equity_curve) plus num_trades.
        params: The BacktestParams used.
    """
    equity_curve: pd.Series
    signal: pd.Series
    metrics: Dict[str, float] = field(default_factory=dict)
    params: BacktestParams | None = None


def compute_crossover_signal(
    prices: pd.Series,
    fast_window: int,
    slow_window: int,
) -> pd.Series:
    """
    Long (1) when the fast SMA is strictly above the slow SMA, else cash (0).

    During the warm-up period either SMA is NaN, the comparison is False, and
    the signal stays in cash.

    Args:
        prices: Closing prices in ascending time order.
        fast_window: Fast SMA length.
        slow_window: Slow SMA length.

    Returns:
        Integer Series of 0/1, same index as prices.
    """
    fast = compute_moving_average_simple(prices, fast_window)
    slow = compute_moving_average_simple(prices, slow_window)
    return (fast > slow).astype(int).rename('signal')


def run_crossover_backtest(
    prices: pd.DataFrame,
    fast_window: int,
    slow_window: int,
    params: BacktestParams | None = None,
) -> BacktestResult:
    """
    Run a long-or-cash SMA crossover backtest over daily bars.

    Steps:
      1. Sort the bars oldest-first (moving averages must look backward).
      2. Compute the crossover signal.
      3. Walk forward through time with a fresh Account, entering or exiting
         at each close where the signal changes.
      4. Build the equity curve and summary metrics.

    Args:
        prices: DataFrame with 'timestamp' and 'closing_price' columns in any
               order (e.g. newest-first CSVs are fine).
        fast_window: Fast SMA length (>= 1).
        slow_window: Slow SMA length (>= 1).
        params: Costs and capital. Defaults to BacktestParams().

    Returns:
        BacktestResult with equity curve, signal, and metrics.

    Raises:
        ValueError: If prices is empty, lacks required columns, or a window
                   is < 1.
    """
    params = params or BacktestParams()

    missing = {'timestamp', 'closing_price'} - set(prices.columns)
    if missing:
        raise ValueError(
            f"Price data missing required columns: {sorted(missing)}. "
            f"Found columns: {list(prices.columns)}."
        )
    if prices.empty:
        raise ValueError("Price data is empty. Need at least one bar to backtest.")
    if fast_window < 1 or slow_window < 1:
        raise ValueError(
            f"Windows must be >= 1, got fast={fast_window}, slow={slow_window}"
        )

    bars = prices.sort_values('timestamp').reset_index(drop=True)
    closes = bars['closing_price'].astype(float)
    signal = compute_crossover_signal(closes, fast_window, slow_window)

    account = Account(cash=params.initial_cash)
    equity = []
    for price, wants_long in zip(closes, signal):
        if wants_long and not account.is_long:
            account.enter_long(price, params)
        elif not wants_long and account.is_long:
            account.exit_long(price, params)
        equity.append(account.equity(price))

    index = pd.to_datetime(bars['timestamp'])
    equity_curve = pd.Series(equity, index=index, name='equity')
    signal.index = index

    metrics = summarize_equity_curve(equity_curve, periods_per_year=params.periods_per_year)
    metrics['num_trades'] = account.num_trades

    return BacktestResult(
        equity_curve=equity_curve,
        signal=signal,
        metrics=metrics,
        params=params,
    )
