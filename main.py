"""
ma_sweep – Main entry point.

Runs the moving-average crossover parameter sweep tutorial with its default
settings. See actions/sweep_ma_crossover_params.py for options.
"""

import sys

from actions.sweep_ma_crossover_params import main


if __name__ == "__main__":
    sys.exit(main())
