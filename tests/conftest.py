"""
Pytest configuration file.

Ensures the repo root is on sys.path so that 'import src...' works, and
provides the small crossover sweep used throughout the sweep tests:
nFast = [1, 2, 3], nSlow = [2, 3], constraint nFast < nSlow.
"""
import sys
from pathlib import Path

import pytest

# Add the repo root to sys.path
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from src.backtesting.evaluator import CrossoverParameter
from src.sweep.constraints import ConstraintSet
from src.sweep.distributions import SweepSpace
from src.sweep.runner import SweepDefinition


@pytest.fixture
def ma_space():
    """nFast = [1, 2, 3], nSlow = [2, 3]."""
    space = SweepSpace()
    space.declare("nFast", CrossoverParameter.FAST_WINDOW, [1, 2, 3])
    space.declare("nSlow", CrossoverParameter.SLOW_WINDOW, [2, 3])
    return space


@pytest.fixture
def fast_below_slow(ma_space):
    """ConstraintSet with the single constraint nFast < nSlow."""
    constraints = ConstraintSet(ma_space)
    constraints.declare_constraint("fast_below_slow", "nFast", "nSlow", "<")
    return constraints


@pytest.fixture
def ma_definition():
    """The example sweep as a SweepDefinition."""
    return (
        SweepDefinition(strategy_id="ma_crossover")
        .declare("nFast", CrossoverParameter.FAST_WINDOW, [1, 2, 3])
        .declare("nSlow", CrossoverParameter.SLOW_WINDOW, [2, 3])
        .constrain("fast_below_slow", "nFast", "nSlow", "<")
    )
