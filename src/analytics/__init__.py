"""
Performance metrics and synthetic price generation.

Includes Sharpe ratio, CAGR and drawdown computations used to summarize each
swept combination, plus seeded GBM price histories.
"""
