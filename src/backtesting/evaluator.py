"""
Evaluator adapter: turn a sweep Combination into a crossover backtest.

**Conceptual**: The sweep engine knows nothing about moving averages. It hands
the evaluator a Combination such as {"nFast": 5, "nSlow": 20} and expects an
output back. This adapter is where labels meet strategy parameters.

**Typed binding targets**: Each distribution is declared with a binding
target from CrossoverParameter, e.g.

    space.declare("nFast", CrossoverParameter.FAST_WINDOW, range(1, 20))

The evaluator resolves "which label feeds which parameter" once, in
__init__, from SweepSpace.binding_map(). A misspelled or missing binding is a
ConfigurationError before the sweep starts, not a KeyError in the middle of
the 400th backtest.

**Teaching note**: The evaluator is reentrant: it holds only read-only inputs
(the price DataFrame, the params) and every evaluate() call builds its own
Account inside run_crossover_backtest(). That is what makes it safe to run
on a thread pool.

**Fingerprint**: fingerprint() hashes the price history and the backtest
params. run_sweep() folds it into the sweep identity, so cached results are
reused only for the same data and costs.
"""

import dataclasses
import hashlib
import json
from enum import Enum
from typing import Any, Hashable, Mapping

import pandas as pd

from src.backtesting.engine import BacktestParams, run_crossover_backtest
from src.sweep.errors import ConfigurationError


class CrossoverParameter(Enum):
    """Strategy parameters a crossover sweep can bind distributions to."""
    FAST_WINDOW = "fast_window"
    SLOW_WINDOW = "slow_window"


class MovingAverageCrossoverEvaluator:
    """
    Evaluate (fast window, slow window) combinations against one price history.

    Args:
        prices: Daily bars with 'timestamp' and 'closing_price'.
        bindings: Mapping of distribution label -> binding target, typically
                 SweepSpace.binding_map(). Must bind both CrossoverParameter
                 members exactly once.
        params: Backtest costs and capital.

    Example:
        >>> evaluator = MovingAverageCrossoverEvaluator(prices, space.binding_map())
        >>> evaluator.evaluate(Combination({"nFast": 5, "nSlow": 20}))["sharpe_ratio"]
        0.87
    """

    reentrant = True

    def __init__(
        self,
        prices: pd.DataFrame,
        bindings: Mapping[str, Hashable],
        params: BacktestParams | None = None,
    ) -> None:
        self.prices = prices
        self.params = params or BacktestParams()
        self._labels = self._resolve(bindings)

    @staticmethod
    def _resolve(bindings: Mapping[str, Hashable]) -> dict[CrossoverParameter, str]:
        labels: dict[CrossoverParameter, str] = {}
        for label, target in bindings.items():
            if not isinstance(target, CrossoverParameter):
                continue
            if target in labels:
                raise ConfigurationError(
                    f"{target.name} is bound twice: '{labels[target]}' and '{label}'"
                )
            labels[target] = label

        missing = [p.name for p in CrossoverParameter if p not in labels]
        if missing:
            raise ConfigurationError(
                f"No distribution bound to {missing}. "
                f"Declare them with CrossoverParameter targets."
            )
        return labels

    def evaluate(self, combination: Mapping[str, Any]) -> dict[str, float]:
        """Run one backtest and return its metrics dict."""
        result = run_crossover_backtest(
            self.prices,
            fast_window=int(combination[self._labels[CrossoverParameter.FAST_WINDOW]]),
            slow_window=int(combination[self._labels[CrossoverParameter.SLOW_WINDOW]]),
            params=self.params,
        )
        return dict(result.metrics)

    __call__ = evaluate

    def fingerprint(self) -> str:
        """
        SHA-256 over the inputs that shape every result besides the combination.

        Covers the timestamp and closing price columns (row order included)
        and every BacktestParams field. Two evaluators with equal fingerprints
        produce equal metrics for the same combination.
        """
        digest = hashlib.sha256()
        bars = self.prices[['timestamp', 'closing_price']]
        digest.update(pd.util.hash_pandas_object(bars, index=False).to_numpy().tobytes())
        digest.update(
            json.dumps(dataclasses.asdict(self.params), sort_keys=True, default=str).encode("utf-8")
        )
        return digest.hexdigest()
