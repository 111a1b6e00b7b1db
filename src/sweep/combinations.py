"""
Combination generation: the filtered, optionally sampled Cartesian product.

**Conceptual**: Given distributions nFast = [1, 2, 3] and nSlow = [2, 3], the
full grid has 3 × 2 = 6 points. With the constraint nFast < nSlow only three
survive: (1, 2), (1, 3), (2, 3). CombinationGenerator produces exactly that
surviving set, in a fixed order, and can then draw a reproducible random
sample from it when the set is too large to backtest exhaustively.

**Generation order**: Lexicographic over declaration order with the
*first-declared distribution varying slowest*. This is the same order as
itertools.product(values_1, values_2, ...), so
    (1, 2), (1, 3), (2, 2), (2, 3), (3, 2), (3, 3)
before filtering. Fixing the order is what makes seeded sampling reproducible.

**Why prune during expansion instead of filtering afterwards?**
  - Two MA windows each over 1..500 is already 250,000 grid points; add a
    third parameter and the product no longer fits comfortably in memory.
  - A constraint can be checked as soon as both of its distributions have a
    value. If nFast=400 fails nFast < nSlow for the first few nSlow values, we
    skip those branches without ever materialising the deeper combinations.
  - Memory stays bounded by the *surviving* set, not the full product.

**Why sample after filtering?**
  - Sampling the raw product and then filtering would return fewer than k
    valid combinations and would over-represent regions where constraints
    happen to be loose. Sampling the surviving set gives exactly k valid
    combinations, uniformly.

**Teaching note**: An empty result is not an error. A sweep whose constraints
rule out every combination is a legitimate (if unhelpful) configuration; the
scheduler reports it as "nothing to evaluate", distinct from "evaluation
failed".
"""

import logging
from typing import Any, Iterator, Mapping

import numpy as np

from src.sweep.constraints import ConstraintSet
from src.sweep.distributions import SweepSpace
from src.sweep.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SEED = 42


class Combination(Mapping):
    """
    One fully-bound assignment: distribution label -> chosen value.

    Combinations are immutable value objects. Equality and hashing are
    structural (same label -> value mapping), independent of key order, so
    they can be used as dictionary keys to look results up.

    Example:
        >>> combo = Combination({"nFast": 1, "nSlow": 3})
        >>> combo["nSlow"]
        3
        >>> combo == Combination({"nSlow": 3, "nFast": 1})
        True
    """

    __slots__ = ("_items", "_lookup", "_hash")

    def __init__(self, values: Mapping[str, Any]) -> None:
        self._items = tuple(values.items())
        self._lookup = dict(self._items)
        self._hash = hash(frozenset(self._items))

    def __getitem__(self, label: str) -> Any:
        return self._lookup[label]

    def __iter__(self) -> Iterator[str]:
        return iter(self._lookup)

    def __len__(self) -> int:
        return len(self._items)

    def __hash__(self) -> int:
        return self._hash

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Combination):
            return self._lookup == other._lookup
        return NotImplemented

    def __repr__(self) -> str:
        inner = ", ".join(f"{label}={value!r}" for label, value in self._items)
        return f"Combination({inner})"

    def to_dict(self) -> dict[str, Any]:
        return dict(self._items)


class CombinationGenerator:
    """
    Materialise the constraint-satisfying combinations of a SweepSpace.

    Args:
        space: The declared distributions.
        constraints: Constraints over those distributions. None means no
                    constraints (every grid point survives).
    """

    def __init__(self, space: SweepSpace, constraints: ConstraintSet | None = None) -> None:
        if constraints is not None and constraints.space is not space:
            raise ConfigurationError(
                "ConstraintSet was declared against a different SweepSpace."
            )
        self.space = space
        self.constraints = constraints if constraints is not None else ConstraintSet(space)

    def iter_valid(self) -> Iterator[Combination]:
        """
        Yield every constraint-satisfying combination in generation order.

        This is a depth-first walk over the distributions in declaration
        order. At each depth we bind one more label, then immediately run the
        constraints that just became checkable; a failing branch is abandoned
        before any deeper level is expanded.
        """
        distributions = list(self.space)
        if not distributions:
            return

        checks = self.constraints.checks_by_depth()
        labels = [d.label for d in distributions]
        last_depth = len(distributions) - 1
        bound: dict[str, Any] = {}

        def expand(depth: int) -> Iterator[Combination]:
            label = labels[depth]
            for value in distributions[depth].values:
                bound[label] = value
                if not all(c.evaluate(bound) for c in checks.get(depth, ())):
                    continue
                if depth == last_depth:
                    yield Combination({name: bound[name] for name in labels})
                else:
                    yield from expand(depth + 1)
            del bound[label]

        yield from expand(0)

    def generate(self, sample_count: int = 0, seed: int | None = None) -> list[Combination]:
        """
        Produce the ordered, duplicate-free combinations for a sweep.

        Args:
            sample_count: Maximum number of combinations to return. 0 means
                         exhaustive. When it is smaller than the number of
                         surviving combinations, a uniform sample without
                         replacement is drawn.
            seed: Seed for the sample. None uses DEFAULT_SAMPLE_SEED, so an
                 unseeded sweep is still reproducible.

        Returns:
            List of Combination in generation order (a sample keeps the
            relative order of the surviving set).

        Raises:
            ConfigurationError: If sample_count is negative.
        """
        if sample_count < 0:
            raise ConfigurationError(
                f"sample_count must be >= 0 (0 = exhaustive), got: {sample_count}"
            )

        survivors = list(self.iter_valid())
        logger.info(
            "Generated %d valid combinations out of %d grid points",
            len(survivors),
            self.space.product_size(),
        )

        if sample_count == 0 or sample_count >= len(survivors):
            return survivors

        rng = np.random.default_rng(DEFAULT_SAMPLE_SEED if seed is None else seed)
        picked = np.sort(rng.choice(len(survivors), size=sample_count, replace=False))
        logger.info("Sampled %d of %d valid combinations", sample_count, len(survivors))
        return [survivors[i] for i in picked]
