"""
Tests for src/sweep/distributions.py

These tests verify that distributions are registered per sweep, keep their
declaration order, and reject malformed declarations with ConfigurationError.
"""

from datetime import datetime

import numpy as np
import pandas as pd
import pytest

from src.backtesting.evaluator import CrossoverParameter
from src.sweep.distributions import SweepSpace, binding_token
from src.sweep.errors import ConfigurationError


def test_declare_and_values_of_preserve_order():
    """Candidate values come back in the order they were declared."""
    space = SweepSpace()
    space.declare("nSlow", CrossoverParameter.SLOW_WINDOW, [50, 20, 100])

    assert space.values_of("nSlow") == (50, 20, 100)


def test_declare_accepts_range():
    """Integer ranges are the common case for window sweeps."""
    space = SweepSpace()
    distribution = space.declare("nFast", CrossoverParameter.FAST_WINDOW, range(1, 6))

    assert distribution.values == (1, 2, 3, 4, 5)
    assert len(distribution) == 5


def test_labels_follow_declaration_order(ma_space):
    assert ma_space.labels == ("nFast", "nSlow")
    assert ma_space.index_of("nSlow") == 1


def test_product_size(ma_space):
    # 3 fast values × 2 slow values
    assert ma_space.product_size() == 6


def test_product_size_of_empty_space_is_zero():
    assert SweepSpace().product_size() == 0


def test_binding_map_resolves_targets(ma_space):
    assert ma_space.binding_map() == {
        "nFast": CrossoverParameter.FAST_WINDOW,
        "nSlow": CrossoverParameter.SLOW_WINDOW,
    }


@pytest.mark.parametrize("label", ["", "   ", None])
def test_declare_rejects_empty_label(label):
    space = SweepSpace()
    with pytest.raises(ConfigurationError, match="non-empty"):
        space.declare(label, CrossoverParameter.FAST_WINDOW, [1, 2])


def test_declare_rejects_duplicate_label(ma_space):
    with pytest.raises(ConfigurationError, match="already declared"):
        ma_space.declare("nFast", CrossoverParameter.FAST_WINDOW, [5])


def test_declare_rejects_empty_values():
    space = SweepSpace()
    with pytest.raises(ConfigurationError, match="no candidate values"):
        space.declare("nFast", CrossoverParameter.FAST_WINDOW, [])


def test_declare_rejects_duplicate_values():
    """Duplicate candidates would produce duplicate combinations."""
    space = SweepSpace()
    with pytest.raises(ConfigurationError, match="duplicate"):
        space.declare("nFast", CrossoverParameter.FAST_WINDOW, [1, 2, 2])


def test_declare_rejects_unhashable_values():
    space = SweepSpace()
    with pytest.raises(ConfigurationError, match="unhashable"):
        space.declare("windows", "ma_windows", [[20, 50], [50, 200]])


@pytest.mark.parametrize(
    "values",
    [
        [CrossoverParameter.FAST_WINDOW, CrossoverParameter.SLOW_WINDOW],
        [object(), object()],
        [frozenset({1}), frozenset({2})],
        [(1, object())],
    ],
)
def test_declare_rejects_values_the_store_cannot_keep(values):
    """Candidates are cached as JSON; types that would come back changed are refused."""
    space = SweepSpace()
    with pytest.raises(ConfigurationError, match="unsupported type"):
        space.declare("choice", "choice", values)

    assert "choice" not in space


def test_declare_accepts_timestamps_tuples_and_none():
    space = SweepSpace()
    space.declare("start", "start_date", [pd.Timestamp("2024-01-02"), datetime(2024, 7, 1)])
    space.declare("windows", "ma_windows", [(5, 20), (10, 50)])
    space.declare("stop_loss", "stop_loss", [None, 0.05, np.float64(0.1)])

    assert space.values_of("windows") == ((5, 20), (10, 50))
    assert space.values_of("stop_loss")[0] is None


def test_failed_declaration_registers_nothing():
    space = SweepSpace()
    with pytest.raises(ConfigurationError):
        space.declare("nFast", CrossoverParameter.FAST_WINDOW, [])

    assert "nFast" not in space
    assert len(space) == 0


def test_values_of_unknown_label_raises(ma_space):
    with pytest.raises(ConfigurationError, match="Unknown distribution"):
        ma_space.values_of("nMedium")


def test_spaces_are_independent():
    """Labels are unique per sweep, not globally."""
    first = SweepSpace()
    second = SweepSpace()
    first.declare("nFast", CrossoverParameter.FAST_WINDOW, [1, 2])
    second.declare("nFast", CrossoverParameter.FAST_WINDOW, [3, 4])

    assert first.values_of("nFast") == (1, 2)
    assert second.values_of("nFast") == (3, 4)


def test_categorical_values_are_supported():
    space = SweepSpace()
    space.declare("ma_type", "ma_type", ["ema", "sma"])

    assert space.values_of("ma_type") == ("ema", "sma")


def test_binding_token_for_enum_and_plain_values():
    assert binding_token(CrossoverParameter.FAST_WINDOW) == "CrossoverParameter.FAST_WINDOW"
    assert binding_token("fast_window") == "fast_window"
