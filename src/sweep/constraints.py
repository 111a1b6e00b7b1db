"""
Cross-parameter constraints that filter invalid combinations.

**Conceptual**: Not every point in the parameter grid makes sense. For a
moving-average crossover, a "fast" window that is longer than the "slow"
window is just the same strategy with the signal inverted, so we do not want
to spend a backtest on it. A constraint states a relation between two
distributions (e.g. nFast < nSlow); a combination survives only if *every*
declared constraint holds.

**Functionally**:
  - declare_constraint() validates the declaration against the SweepSpace
    immediately. A typo in a label is a configuration error, never a silent
    "zero combinations survived".
  - evaluate() applies one relation to a (possibly partial) assignment of
    values. CombinationGenerator uses this to prune while it expands.
  - is_satisfied() is the logical AND over all constraints, vacuously True
    when none are declared.

**Teaching note**: Relations use the values' natural ordering (Python's <, <=,
etc.), so integers, floats, and ordered categoricals all work without any
special casing.
"""

import operator
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, Mapping

from src.sweep.distributions import SweepSpace
from src.sweep.errors import ConfigurationError


class Relation(Enum):
    """The five supported relational operators."""
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    EQ = "=="

    @classmethod
    def parse(cls, value: "Relation | str") -> "Relation":
        """
        Parse a relation from an Enum member or its textual form.

        Accepts "<", "<=", "≤", ">", ">=", "≥", "=", "==" as well as member
        names ("LT", "le", ...).
        """
        if isinstance(value, Relation):
            return value
        if isinstance(value, str):
            text = value.strip()
            if text in _ALIASES:
                return _ALIASES[text]
            if text.upper() in cls.__members__:
                return cls[text.upper()]
        raise ConfigurationError(
            f"Unsupported relational operator: {value!r}. "
            f"Expected one of: {[r.value for r in cls]}"
        )


_ALIASES = {
    "<": Relation.LT,
    "<=": Relation.LE,
    "≤": Relation.LE,
    ">": Relation.GT,
    ">=": Relation.GE,
    "≥": Relation.GE,
    "=": Relation.EQ,
    "==": Relation.EQ,
}

_OPERATORS: dict[Relation, Callable[[Any, Any], bool]] = {
    Relation.LT: operator.lt,
    Relation.LE: operator.le,
    Relation.GT: operator.gt,
    Relation.GE: operator.ge,
    Relation.EQ: operator.eq,
}


@dataclass(frozen=True)
class Constraint:
    """
    One relation between two distributions: `left <relation> right`.

    Attributes:
        label: Unique name of the constraint within its sweep.
        left: Label of the left-hand distribution.
        right: Label of the right-hand distribution.
        relation: The relational operator.
    """
    label: str
    left: str
    right: str
    relation: Relation

    def evaluate(self, values: Mapping[str, Any]) -> bool:
        """Apply the relation to the two values bound in `values`."""
        return bool(_OPERATORS[self.relation](values[self.left], values[self.right]))

    def __str__(self) -> str:
        return f"{self.left} {self.relation.value} {self.right}"


class ConstraintSet:
    """
    The constraints declared for one sweep, checked against its SweepSpace.

    Example:
        >>> constraints = ConstraintSet(space)
        >>> constraints.declare_constraint("fast_below_slow", "nFast", "nSlow", "<")
        >>> constraints.is_satisfied({"nFast": 1, "nSlow": 2})
        True
    """

    def __init__(self, space: SweepSpace) -> None:
        self.space = space
        self._constraints: dict[str, Constraint] = {}

    def declare_constraint(
        self,
        label: str,
        left_label: str,
        right_label: str,
        relation: "Relation | str",
    ) -> Constraint:
        """
        Register a constraint between two declared distributions.

        Raises:
            ConfigurationError: If the label is empty or already used, if
                               either distribution label is unknown, if both
                               sides name the same distribution, or if the
                               operator is not one of the supported relations.
        """
        if not isinstance(label, str) or not label.strip():
            raise ConfigurationError(
                f"Constraint label must be a non-empty string, got: {label!r}"
            )
        if label in self._constraints:
            raise ConfigurationError(f"Constraint '{label}' is already declared.")

        for side in (left_label, right_label):
            if side not in self.space:
                raise ConfigurationError(
                    f"Constraint '{label}' references unknown distribution '{side}'. "
                    f"Declared labels: {list(self.space.labels)}"
                )
        if left_label == right_label:
            raise ConfigurationError(
                f"Constraint '{label}' relates distribution '{left_label}' to itself."
            )

        constraint = Constraint(
            label=label,
            left=left_label,
            right=right_label,
            relation=Relation.parse(relation),
        )
        self._constraints[label] = constraint
        return constraint

    def evaluate(self, label: str, values: Mapping[str, Any]) -> bool:
        """Evaluate a single named constraint."""
        return self._constraints[label].evaluate(values)

    def is_satisfied(self, values: Mapping[str, Any]) -> bool:
        """True iff every declared constraint holds (True when none exist)."""
        return all(c.evaluate(values) for c in self._constraints.values())

    def checks_by_depth(self) -> dict[int, list[Constraint]]:
        """
        Group constraints by the expansion depth at which they become checkable.

        A constraint can be evaluated as soon as both of its distributions are
        bound, i.e. at the declaration index of whichever side was declared
        last.
        """
        by_depth: dict[int, list[Constraint]] = {}
        for constraint in self._constraints.values():
            depth = max(
                self.space.index_of(constraint.left),
                self.space.index_of(constraint.right),
            )
            by_depth.setdefault(depth, []).append(constraint)
        return by_depth

    def __iter__(self) -> Iterator[Constraint]:
        return iter(self._constraints.values())

    def __len__(self) -> int:
        return len(self._constraints)
