"""
Parameter sweep engine: distributions, constraints, combination generation,
scheduling against a backtest evaluator, and cached result sets.
"""
