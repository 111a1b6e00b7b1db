"""
Tests for end-to-end sweep runs.

This module tests run_sweep() and SweepDefinition:
  - A cached complete sweep is returned with zero evaluator calls.
  - A cancelled sweep is saved as INCOMPLETE and a re-run evaluates only the
    combinations it did not reach.
  - Configuration errors surface before any evaluation.
  - An evaluator fingerprint is part of the identity: new evaluator inputs
    mean a cache miss.
  - Timestamp candidate values survive the file store, so cached sweeps
    over dates are reused.
  - SweepDefinition.from_dict parses lists, ranges and enum targets.
"""

import pandas as pd
import pytest

from src.backtesting.evaluator import CrossoverParameter
from src.sweep.combinations import Combination
from src.sweep.errors import ConfigurationError
from src.sweep.runner import SweepDefinition, run_sweep
from src.sweep.scheduler import CancellationToken, SweepStatus
from src.sweep.store import InMemoryResultStore, JsonFileResultStore


class RecordingEvaluator:
    """Returns a small metrics dict and remembers every call."""

    def __init__(self, cancel_after=None, token=None):
        self.calls = []
        self.cancel_after = cancel_after
        self.token = token

    def evaluate(self, combination):
        self.calls.append(combination)
        if self.cancel_after is not None and len(self.calls) == self.cancel_after:
            self.token.cancel()
        return {"spread": combination["nSlow"] - combination["nFast"]}


class FingerprintedEvaluator(RecordingEvaluator):
    """RecordingEvaluator whose results depend on an opaque input version."""

    def __init__(self, version):
        super().__init__()
        self.version = version

    def fingerprint(self):
        return f"inputs-v{self.version}"


def test_run_sweep_without_store(ma_definition):
    evaluator = RecordingEvaluator()

    outcome = run_sweep(ma_definition, evaluator)

    assert outcome.status is SweepStatus.COMPLETE
    assert [r.output["spread"] for r in outcome] == [1, 2, 1]
    assert len(evaluator.calls) == 3


def test_second_run_uses_cached_results(ma_definition, tmp_path):
    """
    Scenario:
      - Run the example sweep once with a file store.
      - Run it again with a fresh evaluator and a fresh store on the same
        directory (as a new process would).

    Expected:
      - The second run makes zero evaluator calls.
      - The returned result set is identical to the first.
    """
    first_evaluator = RecordingEvaluator()
    first = run_sweep(ma_definition, first_evaluator, store=JsonFileResultStore(tmp_path))

    second_evaluator = RecordingEvaluator()
    second = run_sweep(ma_definition, second_evaluator, store=JsonFileResultStore(tmp_path))

    assert len(first_evaluator.calls) == 3
    assert second_evaluator.calls == []
    assert second == first


def test_changed_definition_is_a_cache_miss(ma_definition, tmp_path):
    store = JsonFileResultStore(tmp_path)
    run_sweep(ma_definition, RecordingEvaluator(), store=store)

    wider = (
        SweepDefinition(strategy_id="ma_crossover")
        .declare("nFast", CrossoverParameter.FAST_WINDOW, [1, 2, 3, 4])
        .declare("nSlow", CrossoverParameter.SLOW_WINDOW, [2, 3, 5])
        .constrain("fast_below_slow", "nFast", "nSlow", "<")
    )
    evaluator = RecordingEvaluator()
    outcome = run_sweep(wider, evaluator, store=store)

    assert len(evaluator.calls) == len(outcome) == 7


def test_changed_evaluator_fingerprint_is_a_cache_miss(ma_definition, tmp_path):
    """
    Scenario:
      - The same definition is run against a file store with evaluator
        fingerprints v1, v2, then v1 again.

    Expected:
      - v2 does not reuse v1's results (3 fresh calls).
      - Re-running v1 is served from the store (0 calls).
    """
    store = JsonFileResultStore(tmp_path)
    first = FingerprintedEvaluator(version=1)
    second = FingerprintedEvaluator(version=2)
    again = FingerprintedEvaluator(version=1)

    run_sweep(ma_definition, first, store=store)
    run_sweep(ma_definition, second, store=store)
    run_sweep(ma_definition, again, store=store)

    assert len(first.calls) == 3
    assert len(second.calls) == 3
    assert again.calls == []
    assert len(list(tmp_path.glob("*.json"))) == 2


def test_timestamp_values_are_reused_from_file_store(tmp_path):
    """
    Scenario:
      - A sweep over backtest start dates (pd.Timestamp candidates) and fast
        windows, run twice against the same results directory.

    Expected:
      - The second run makes zero calls and returns equal results, with the
        start dates still pd.Timestamp.
    """
    definition = (
        SweepDefinition(strategy_id="ma_crossover_start_dates")
        .declare("start", "start_date", [pd.Timestamp("2024-01-02"), pd.Timestamp("2024-07-01")])
        .declare("nFast", CrossoverParameter.FAST_WINDOW, [5, 10])
    )
    calls = []

    def evaluate(combination):
        calls.append(combination)
        return {"month": combination["start"].month}

    first = run_sweep(definition, evaluate, store=JsonFileResultStore(tmp_path))
    assert len(calls) == 4

    second = run_sweep(definition, evaluate, store=JsonFileResultStore(tmp_path))

    assert len(calls) == 4
    assert second == first
    assert all(isinstance(r.combination["start"], pd.Timestamp) for r in second)

def test_cancelled_sweep_resumes_where_it_stopped():
    """
    Scenario:
      - A 3-combination sweep is cancelled after the first evaluation.
      - It is re-run against the same store.

    Expected:
      - First run: 1 result, status INCOMPLETE, saved.
      - Second run: evaluates only the 2 missing combinations, returns all 3
        in generation order with status COMPLETE.
    """
    definition = (
        SweepDefinition(strategy_id="ma_crossover")
        .declare("nFast", CrossoverParameter.FAST_WINDOW, [1, 2, 3])
        .declare("nSlow", CrossoverParameter.SLOW_WINDOW, [2, 3])
        .constrain("fast_below_slow", "nFast", "nSlow", "<")
    )
    store = InMemoryResultStore()
    token = CancellationToken()

    partial = run_sweep(
        definition,
        RecordingEvaluator(cancel_after=1, token=token),
        store=store,
        cancel_token=token,
    )
    assert partial.status is SweepStatus.INCOMPLETE
    assert len(partial) == 1
    assert store.load(definition.identity()).status is SweepStatus.INCOMPLETE

    evaluator = RecordingEvaluator()
    resumed = run_sweep(definition, evaluator, store=store)

    assert evaluator.calls == [
        Combination({"nFast": 1, "nSlow": 3}),
        Combination({"nFast": 2, "nSlow": 3}),
    ]
    assert resumed.status is SweepStatus.COMPLETE
    assert [(r.combination["nFast"], r.combination["nSlow"]) for r in resumed] == [
        (1, 2), (1, 3), (2, 3),
    ]
    assert store.load(definition.identity()) == resumed


def test_empty_sweep_is_reported_and_cached():
    definition = (
        SweepDefinition(strategy_id="ma_crossover")
        .declare("nFast", CrossoverParameter.FAST_WINDOW, [50, 100])
        .declare("nSlow", CrossoverParameter.SLOW_WINDOW, [10, 20])
        .constrain("fast_below_slow", "nFast", "nSlow", "<")
    )
    store = InMemoryResultStore()
    evaluator = RecordingEvaluator()

    outcome = run_sweep(definition, evaluator, store=store)

    assert outcome.status is SweepStatus.EMPTY
    assert evaluator.calls == []
    assert store.load(definition.identity()).status is SweepStatus.EMPTY


def test_invalid_execution_config_fails_before_any_work(ma_definition):
    evaluator = RecordingEvaluator()

    with pytest.raises(ConfigurationError):
        run_sweep(ma_definition, evaluator, mode="threads", workers=-2)
    with pytest.raises(ConfigurationError):
        run_sweep(ma_definition, evaluator, mode="warp")

    assert evaluator.calls == []


def test_threaded_run_matches_sequential(ma_definition):
    sequential = run_sweep(ma_definition, RecordingEvaluator(), mode="sequential")
    threaded = run_sweep(ma_definition, RecordingEvaluator(), mode="threads", workers=3)

    assert [r.output for r in threaded] == [r.output for r in sequential]


def test_sampled_definition_evaluates_k_combinations():
    definition = (
        SweepDefinition(strategy_id="ma_crossover", sample_count=5, seed=1)
        .declare("nFast", CrossoverParameter.FAST_WINDOW, range(1, 11))
        .declare("nSlow", CrossoverParameter.SLOW_WINDOW, range(5, 31, 5))
        .constrain("fast_below_slow", "nFast", "nSlow", "<")
    )
    evaluator = RecordingEvaluator()

    outcome = run_sweep(definition, evaluator)

    assert len(outcome) == 5
    assert len(evaluator.calls) == 5


# ============================================================================
# SweepDefinition
# ============================================================================


def test_definition_rejects_missing_strategy_id():
    with pytest.raises(ConfigurationError, match="strategy_id"):
        SweepDefinition(strategy_id="")


def test_definition_rejects_negative_sample_count():
    with pytest.raises(ConfigurationError, match="sample_count"):
        SweepDefinition(strategy_id="ma_crossover", sample_count=-1)


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"sample_count": 2.5}, "sample_count must be an integer"),
        ({"sample_count": True}, "sample_count must be an integer"),
        ({"seed": "seven"}, "seed must be an integer"),
        ({"seed": 1.5}, "seed must be an integer"),
    ],
)
def test_definition_rejects_non_integer_budget_and_seed(overrides, message):
    with pytest.raises(ConfigurationError, match=message):
        SweepDefinition(strategy_id="ma_crossover", **overrides)


def test_from_dict_parses_lists_ranges_and_targets():
    definition = SweepDefinition.from_dict(
        {
            "strategy_id": "ma_crossover",
            "distributions": [
                {"label": "nFast", "target": "FAST_WINDOW", "values": {"start": 1, "stop": 4}},
                {"label": "nSlow", "target": "SLOW_WINDOW", "values": [2, 3]},
            ],
            "constraints": [
                {"label": "fast_below_slow", "left": "nFast", "right": "nSlow", "relation": "<"},
            ],
            "seed": 9,
        },
        targets=CrossoverParameter,
    )

    assert definition.space.values_of("nFast") == (1, 2, 3)
    assert definition.space.binding_map()["nSlow"] is CrossoverParameter.SLOW_WINDOW
    assert definition.seed == 9
    assert len(definition.combinations()) == 3


def test_from_dict_matches_code_declaration(ma_definition):
    parsed = SweepDefinition.from_dict(
        {
            "strategy_id": "ma_crossover",
            "distributions": [
                {"label": "nFast", "target": "FAST_WINDOW", "values": [1, 2, 3]},
                {"label": "nSlow", "target": "SLOW_WINDOW", "values": [2, 3]},
            ],
            "constraints": [
                {"label": "fast_below_slow", "left": "nFast", "right": "nSlow", "relation": "<"},
            ],
        },
        targets=CrossoverParameter,
    )

    assert parsed.identity() == ma_definition.identity()


@pytest.mark.parametrize(
    "data, message",
    [
        ({"distributions": []}, "strategy_id"),
        (
            {"strategy_id": "s", "distributions": [{"label": "nFast", "target": "MEDIUM", "values": [1]}]},
            "Unknown binding target",
        ),
        (
            {"strategy_id": "s", "distributions": [{"label": "nFast", "target": "FAST_WINDOW", "values": 5}]},
            "needs 'values'",
        ),
        (
            {"strategy_id": "s", "distributions": [{"label": "nFast", "target": "FAST_WINDOW", "values": {"stop": 5}}]},
            "Invalid range",
        ),
        (
            {"strategy_id": "s", "constraints": [{"label": "c", "left": "a"}]},
            "missing required key",
        ),
        ({"strategy_id": "s", "sample_count": "abc"}, "sample_count must be an integer"),
        ({"strategy_id": "s", "sample_count": None}, "sample_count must be an integer"),
        ({"strategy_id": "s", "seed": "seven"}, "seed must be an integer"),
    ],
)
def test_from_dict_rejects_malformed_entries(data, message):
    with pytest.raises(ConfigurationError, match=message):
        SweepDefinition.from_dict(data, targets=CrossoverParameter)
