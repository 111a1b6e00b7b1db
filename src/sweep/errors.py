"""
Error taxonomy for parameter sweeps.

**Conceptual**: A sweep can go wrong in three very different ways, and each
deserves a different reaction:
  - The sweep was declared badly (unknown label, empty candidate set). Nothing
    should run: fail immediately, before any compute is spent.
  - One combination's backtest blew up. The other combinations are still
    worth evaluating: record the failure and keep going.
  - The cache on disk could not be read or written. The caller needs to know,
    but previously stored results must stay intact.

Cancellation is deliberately *not* an exception. A cancelled sweep returns its
partial results with an explicit "incomplete" status (see scheduler.py).

**Teaching note**: ConfigurationError also subclasses ValueError so callers
that already catch ValueError for bad input (as the settings layer does) keep
working without knowing about the sweep package.
"""


class SweepError(Exception):
    """Base class for every error raised by the sweep package."""
    pass


class ConfigurationError(SweepError, ValueError):
    """
    Raised when a sweep is declared incorrectly.

    Examples: empty or duplicate distribution labels, empty candidate sets,
    constraints referencing unregistered distributions, unsupported relational
    operators, negative sample counts.

    **Usage**: Let this propagate. A sweep with a configuration error must not
    start, so there is nothing sensible to recover to.
    """
    pass


class EvaluationError(SweepError):
    """
    Raised when a single combination cannot be evaluated.

    Evaluators may raise this (or any other Exception); the scheduler captures
    it as a failed SweepResult rather than aborting the sweep.
    """
    pass


class EvaluationTimeout(EvaluationError):
    """Raised (and recorded) when an evaluation exceeds its time ceiling."""
    pass


class PersistenceError(SweepError):
    """
    Raised when the result store cannot load or save a result set.

    A failed save never corrupts previously stored results: writes go to a
    temporary file that only replaces the real one once fully written.
    """
    pass
