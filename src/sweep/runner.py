"""
End-to-end sweep orchestration: configure, generate, cache-check, evaluate, save.

**Conceptual**: This module ties the pieces together in the order a sweep
actually happens:

  1. Declare distributions and constraints (SweepDefinition). Configuration
     errors surface here, before any compute is spent.
  2. Derive the sweep identity and ask the ResultStore for a cached result
     set. A complete cached set is returned as-is: zero evaluator calls.
  3. Generate the surviving combinations (filter, then sample).
  4. Dispatch them through a SweepScheduler. If a previous run was
     cancelled part-way, only the combinations it did not reach are
     dispatched now.
  5. Save the result set and return it.

**Teaching note**: Step 2 is what turns a multi-hour sweep into an instant
re-run while you iterate on analysis code. Because the identity covers the
full configuration, widening a range is automatically a cache miss; you never
have to remember to delete an old results file. Evaluators that expose a
fingerprint() (the crossover evaluator hashes its prices and costs) extend
the identity, so a new price history is a cache miss too.
"""

import logging
import numbers
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Hashable, Mapping

from src.sweep.combinations import CombinationGenerator
from src.sweep.constraints import ConstraintSet
from src.sweep.distributions import SweepSpace
from src.sweep.errors import ConfigurationError
from src.sweep.scheduler import (
    CancellationToken,
    ExecutionMode,
    SweepOutcome,
    SweepScheduler,
    SweepStatus,
)
from src.sweep.store import ResultStore, SweepIdentity, compute_sweep_identity

logger = logging.getLogger(__name__)


@dataclass
class SweepDefinition:
    """
    Everything that determines a sweep's result set.

    Attributes:
        strategy_id: Name of the strategy being swept (part of the identity).
        space: Declared distributions.
        constraints: Constraints over `space`.
        sample_count: 0 = exhaustive, otherwise maximum number of
                     combinations to evaluate.
        seed: Sampling seed (None = generator default).
    """
    strategy_id: str
    space: SweepSpace = field(default_factory=SweepSpace)
    constraints: ConstraintSet | None = None
    sample_count: int = 0
    seed: int | None = None

    def __post_init__(self) -> None:
        if not self.strategy_id:
            raise ConfigurationError("strategy_id is required for a sweep definition.")
        if isinstance(self.sample_count, bool) or not isinstance(self.sample_count, numbers.Integral):
            raise ConfigurationError(
                f"sample_count must be an integer, got: {self.sample_count!r}"
            )
        if self.seed is not None and (isinstance(self.seed, bool) or not isinstance(self.seed, numbers.Integral)):
            raise ConfigurationError(f"seed must be an integer or None, got: {self.seed!r}")
        if self.sample_count < 0:
            raise ConfigurationError(
                f"sample_count must be >= 0 (0 = exhaustive), got: {self.sample_count}"
            )
        if self.constraints is None:
            self.constraints = ConstraintSet(self.space)

    def declare(self, label: str, binding_target: Hashable, values) -> "SweepDefinition":
        """Declare a distribution; returns self so declarations can chain."""
        self.space.declare(label, binding_target, values)
        return self

    def constrain(self, label: str, left: str, right: str, relation) -> "SweepDefinition":
        """Declare a constraint; returns self so declarations can chain."""
        self.constraints.declare_constraint(label, left, right, relation)
        return self

    def identity(self, evaluator_fingerprint: str | None = None) -> SweepIdentity:
        return compute_sweep_identity(
            self.strategy_id,
            self.space,
            self.constraints,
            sample_count=self.sample_count,
            seed=self.seed,
            evaluator_fingerprint=evaluator_fingerprint,
        )

    def combinations(self) -> list:
        generator = CombinationGenerator(self.space, self.constraints)
        return generator.generate(sample_count=self.sample_count, seed=self.seed)

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        targets: type[Enum] | None = None,
    ) -> "SweepDefinition":
        """
        Build a sweep definition from a plain mapping (e.g. parsed JSON).

        Expected shape:
            {
                "strategy_id": "ma_crossover",
                "distributions": [
                    {"label": "nFast", "target": "FAST_WINDOW",
                     "values": {"start": 1, "stop": 20, "step": 1}},
                    {"label": "nSlow", "target": "SLOW_WINDOW", "values": [20, 50, 100]},
                ],
                "constraints": [
                    {"label": "fast_below_slow", "left": "nFast", "right": "nSlow", "relation": "<"},
                ],
                "sample_count": 0,
                "seed": 42,
            }

        Range bounds follow Python's range(): `stop` is exclusive.

        Args:
            data: The mapping to parse.
            targets: Enum whose member names binding targets refer to. Names
                    are resolved here, once. None keeps targets as strings.

        Raises:
            ConfigurationError: On any malformed or inconsistent entry.
        """
        try:
            strategy_id = data["strategy_id"]
        except KeyError as e:
            raise ConfigurationError(f"Sweep definition is missing required key: {e}") from None
        try:
            sample_count = int(data.get("sample_count", 0))
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"sample_count must be an integer, got: {data.get('sample_count')!r}"
            ) from None
        definition = cls(strategy_id=strategy_id, sample_count=sample_count, seed=data.get("seed"))

        for entry in data.get("distributions", []):
            target = entry.get("target", entry.get("label"))
            if targets is not None:
                try:
                    target = targets[target]
                except KeyError:
                    raise ConfigurationError(
                        f"Unknown binding target {target!r} for distribution {entry.get('label')!r}. "
                        f"Expected one of: {list(targets.__members__)}"
                    ) from None
            definition.declare(entry.get("label", ""), target, _parse_values(entry))

        for entry in data.get("constraints", []):
            try:
                definition.constrain(entry["label"], entry["left"], entry["right"], entry["relation"])
            except KeyError as e:
                raise ConfigurationError(f"Constraint entry is missing required key: {e}") from None

        return definition


def _parse_values(entry: Mapping[str, Any]) -> list:
    values = entry.get("values")
    if isinstance(values, Mapping):
        try:
            return list(range(int(values["start"]), int(values["stop"]), int(values.get("step", 1))))
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid range for distribution {entry.get('label')!r}: {values!r} ({e})"
            ) from None
    if isinstance(values, (list, tuple)):
        return list(values)
    raise ConfigurationError(
        f"Distribution {entry.get('label')!r} needs 'values' as a list or a {{start, stop, step}} range."
    )


def run_sweep(
    definition: SweepDefinition,
    evaluator: Any,
    store: ResultStore | None = None,
    mode: "ExecutionMode | str" = ExecutionMode.SEQUENTIAL,
    workers: int | None = None,
    timeout_seconds: float | None = None,
    cancel_token: CancellationToken | None = None,
    progress_every: int = 10,
) -> SweepOutcome:
    """
    Run a sweep with at-most-once computation across invocations.

    Args:
        definition: The sweep to run.
        evaluator: Callable or object with evaluate(combination). If it also
                  has a fingerprint() method, its return value becomes part
                  of the sweep identity.
        store: Optional ResultStore. When given, a cached complete result set
              short-circuits evaluation and new results are saved.
        mode: Execution mode (see ExecutionMode).
        workers: Worker pool size (None = CPU count, 0/1 = sequential).
        timeout_seconds: Optional per-evaluation ceiling.
        cancel_token: Optional cooperative cancellation signal.
        progress_every: Progress logging interval.

    Returns:
        SweepOutcome in generation order.

    Raises:
        ConfigurationError: Invalid scheduler configuration (before any work).
        PersistenceError: The store could not be read or written.
    """
    scheduler = SweepScheduler(
        evaluator,
        mode=mode,
        workers=workers,
        timeout_seconds=timeout_seconds,
        progress_every=progress_every,
    )
    identity = definition.identity(evaluator_fingerprint(evaluator))

    previous = store.load(identity) if store is not None else None
    if previous is not None and previous.is_complete:
        logger.info("Loaded cached results for %s (%d entries)", identity.key, len(previous))
        return previous

    combinations = definition.combinations()
    todo = combinations
    if previous is not None:
        todo = [c for c in combinations if c not in previous]
        logger.info(
            "Resuming %s: %d cached, %d remaining",
            identity.key,
            len(combinations) - len(todo),
            len(todo),
        )
    else:
        logger.info("No cached results for %s", identity.key)

    outcome = scheduler.run(todo, cancel_token=cancel_token)

    if previous is not None:
        outcome = _merge(combinations, previous, outcome)

    if store is not None:
        store.save(identity, outcome)
    return outcome


def evaluator_fingerprint(evaluator: Any) -> str | None:
    """Return evaluator.fingerprint() when the evaluator defines one, else None."""
    fingerprint = getattr(evaluator, "fingerprint", None)
    return fingerprint() if callable(fingerprint) else None


def _merge(combinations: list, previous: SweepOutcome, fresh: SweepOutcome) -> SweepOutcome:
    results = []
    for combination in combinations:
        result = previous.result_for(combination) or fresh.result_for(combination)
        if result is not None:
            results.append(result)
    if not combinations:
        status = SweepStatus.EMPTY
    elif len(results) == len(combinations):
        status = SweepStatus.COMPLETE
    else:
        status = SweepStatus.INCOMPLETE
    return SweepOutcome(results=results, status=status)
