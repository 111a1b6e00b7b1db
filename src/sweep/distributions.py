"""
Parameter distributions: the candidate values a sweep explores.

**Conceptual**: A distribution is one strategy parameter together with the
values we want to try for it, e.g. "fast moving-average window ∈ 1..20".
Each distribution also carries a *binding target*: a typed handle saying which
strategy parameter the value is plugged into. The sweep itself never looks
inside a binding target; it only carries it through so the evaluator can
resolve "label → strategy parameter" once, up front, instead of re-resolving a
string name on every backtest.

**Why a per-sweep registry (SweepSpace)?**
  - Labels must be unique *within one sweep*, not globally. Two sweeps running
    in the same process must never see each other's declarations.
  - Constraints and combinations refer to distributions by label, so the
    registry is the single place those labels are checked.
  - Declaration order matters: it fixes the generation order of combinations,
    which in turn makes seeded sampling reproducible.

**Teaching note**: Distributions are immutable once declared. If you want a
different range, declare a new sweep. Mutating a range after combinations
have been generated is the classic way to end up with cached results that no
longer match what you think you swept.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Hashable, Iterable, Iterator

import numpy as np

from src.sweep.errors import ConfigurationError

# Candidate values are cached as JSON, so they are limited to types that
# round-trip through the result store unchanged.
_STORABLE_SCALARS = (str, bool, int, float, np.bool_, np.integer, np.floating, datetime)


@dataclass(frozen=True)
class ParameterDistribution:
    """
    One parameter's candidate values and where they bind in the strategy.

    Attributes:
        label: Unique name of the distribution within its sweep (e.g. "nFast").
        binding_target: Opaque, hashable handle into the strategy (usually an
                        Enum member such as CrossoverParameter.FAST_WINDOW).
        values: Ordered, duplicate-free tuple of candidate values. Values must
               be hashable and support equality and ordering.
    """
    label: str
    binding_target: Hashable
    values: tuple

    def __len__(self) -> int:
        return len(self.values)


def binding_token(target: Hashable) -> str:
    """
    Stable text form of a binding target, used for sweep identities.

    Enum members render as "ClassName.MEMBER" so renaming the Enum value
    string does not change the identity, but renaming the member does.
    """
    if isinstance(target, Enum):
        return f"{type(target).__name__}.{target.name}"
    return str(target)


def _is_storable(value: Any) -> bool:
    if value is None or isinstance(value, _STORABLE_SCALARS):
        return True
    if isinstance(value, tuple):
        return all(_is_storable(v) for v in value)
    return False


class SweepSpace:
    """
    Registry of the distributions declared for one sweep.

    **Conceptual**: The "space" of a sweep is the Cartesian product of all its
    distributions. This class only records the axes of that space, in
    declaration order; CombinationGenerator walks it.

    Example:
        >>> space = SweepSpace()
        >>> space.declare("nFast", CrossoverParameter.FAST_WINDOW, range(1, 4))
        >>> space.declare("nSlow", CrossoverParameter.SLOW_WINDOW, [2, 3])
        >>> space.values_of("nFast")
        (1, 2, 3)
        >>> space.product_size()
        6
    """

    def __init__(self) -> None:
        # dicts preserve insertion order, which is the declaration order
        self._distributions: dict[str, ParameterDistribution] = {}

    def declare(
        self,
        label: str,
        binding_target: Hashable,
        values: Iterable[Any],
    ) -> ParameterDistribution:
        """
        Register a new distribution.

        Args:
            label: Non-empty, unique label for this distribution.
            binding_target: Handle identifying the strategy parameter.
            values: Candidate values (any iterable, e.g. a list or range).

        Returns:
            The registered ParameterDistribution.

        Raises:
            ConfigurationError: If the label is empty or already declared, if
                               values is empty, contains duplicates, or
                               contains unhashable or unstorable items.
        """
        if not isinstance(label, str) or not label.strip():
            raise ConfigurationError(
                f"Distribution label must be a non-empty string, got: {label!r}"
            )
        if label in self._distributions:
            raise ConfigurationError(
                f"Distribution '{label}' is already declared in this sweep. "
                f"Declared labels: {list(self._distributions)}"
            )

        candidates = tuple(values)
        if not candidates:
            raise ConfigurationError(
                f"Distribution '{label}' has no candidate values."
            )

        try:
            distinct = set(candidates)
        except TypeError as e:
            raise ConfigurationError(
                f"Distribution '{label}' has unhashable candidate values: {e}"
            ) from e
        if len(distinct) != len(candidates):
            raise ConfigurationError(
                f"Distribution '{label}' has duplicate candidate values: {list(candidates)}"
            )
        unsupported = [v for v in candidates if not _is_storable(v)]
        if unsupported:
            raise ConfigurationError(
                f"Distribution '{label}' has candidate values of unsupported type: "
                f"{sorted({type(v).__name__ for v in unsupported})}. "
                f"Use numbers, strings, booleans, timestamps, None or tuples of these."
            )

        distribution = ParameterDistribution(
            label=label,
            binding_target=binding_target,
            values=candidates,
        )
        self._distributions[label] = distribution
        return distribution

    def values_of(self, label: str) -> tuple:
        """Return the ordered candidate values of a declared distribution."""
        return self.distribution(label).values

    def distribution(self, label: str) -> ParameterDistribution:
        try:
            return self._distributions[label]
        except KeyError:
            raise ConfigurationError(
                f"Unknown distribution '{label}'. Declared labels: {list(self._distributions)}"
            ) from None

    @property
    def labels(self) -> tuple[str, ...]:
        """Distribution labels in declaration order."""
        return tuple(self._distributions)

    def index_of(self, label: str) -> int:
        return self.labels.index(self.distribution(label).label)

    def binding_map(self) -> dict[str, Hashable]:
        """Mapping of label -> binding target, resolved once for evaluators."""
        return {d.label: d.binding_target for d in self._distributions.values()}

    def product_size(self) -> int:
        """Size of the full (unfiltered) Cartesian product."""
        size = 1
        for distribution in self._distributions.values():
            size *= len(distribution)
        return size if self._distributions else 0

    def __contains__(self, label: object) -> bool:
        return label in self._distributions

    def __iter__(self) -> Iterator[ParameterDistribution]:
        return iter(self._distributions.values())

    def __len__(self) -> int:
        return len(self._distributions)
