"""
Backtest engine and sweep evaluator for moving-average crossover strategies.

Simulates a long-or-cash crossover over daily bars with isolated per-run
account state, and adapts sweep combinations to backtest parameters.
"""
