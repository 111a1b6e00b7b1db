"""
Sweep scheduling: evaluate every combination exactly once.

**Conceptual**: Once the generator has produced the surviving combinations,
the scheduler hands each one to an *evaluator* (usually a backtest) and
collects what comes back. The evaluator is an external collaborator with a
tiny contract:

    evaluate(combination) -> output      # may raise

It can be a plain function or any object with an `evaluate` method.

**Execution modes**:
  - SEQUENTIAL: one combination at a time in the calling thread. Completion
    order equals generation order.
  - THREADS: a fixed-size ThreadPoolExecutor. Good when the evaluator
    releases the GIL (numpy/pandas heavy) or waits on I/O.
  - PROCESSES: a fixed-size ProcessPoolExecutor. The evaluator must be
    picklable. Best for pure-Python backtests.
Completion order is unconstrained in the pooled modes; the final result set
is reassembled by generation index, so the output never depends on timing.

**Guarantees**:
  - At-most-once: the work queue is drained exactly once. No combination is
    dispatched twice and none is dropped.
  - Failure isolation: an evaluator exception becomes a failed SweepResult;
    the sweep continues.
  - Cooperative cancellation: checked between dispatches. In-flight
    evaluations finish, nothing new starts, and the outcome is marked
    INCOMPLETE.
  - Optional per-evaluation timeout: an evaluation that overruns is recorded
    as failed. Threads and processes cannot be pre-empted, so the overrunning
    call keeps its worker slot until it actually returns; this also means a
    non-reentrant evaluator is never invoked concurrently.

**Shared state**: Workers never touch the result collection. Each worker's
output travels back through its Future and only the dispatching thread writes
results (a partition-then-merge discipline), so no lock is needed.

**Teaching note**: The one thing the scheduler cannot do for you is isolate
the evaluator's own state. If your backtest mutates a shared portfolio object,
two threads will corrupt it. Build fresh state inside each evaluation (see
backtesting/engine.py), or declare the evaluator `reentrant = False` and the
scheduler will fall back to sequential dispatch.

**Ctrl+C with PROCESSES**: worker processes share the terminal's process
group, so a Ctrl+C reaches them too. Workers ignore SIGINT; only the parent
reacts (usually by cancelling the token). A worker call that still dies with
KeyboardInterrupt or SystemExit is left unrecorded, so a resumed run
evaluates it again instead of reusing a bogus failure.
"""

import logging
import os
import signal
import threading
import time
from collections import deque
from concurrent.futures import (
    FIRST_COMPLETED,
    Executor,
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    wait,
)
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Iterator

import pandas as pd

from src.sweep.combinations import Combination
from src.sweep.errors import ConfigurationError, EvaluationTimeout

logger = logging.getLogger(__name__)


class ExecutionMode(Enum):
    """How combinations are dispatched to the evaluator."""
    SEQUENTIAL = "sequential"
    THREADS = "threads"
    PROCESSES = "processes"

    @classmethod
    def parse(cls, value: "ExecutionMode | str") -> "ExecutionMode":
        if isinstance(value, ExecutionMode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown execution mode: {value!r}. Expected one of: {[m.value for m in cls]}"
            ) from None


class SweepStatus(Enum):
    """Overall status of a sweep's result set."""
    COMPLETE = "complete"        # every combination produced a success or failure
    INCOMPLETE = "incomplete"    # cancelled before every combination was dispatched
    EMPTY = "empty"              # no combination survived generation


def default_worker_count() -> int:
    """Number of compute units available to this process (at least 1)."""
    return os.cpu_count() or 1


def resolve_execution(
    mode: "ExecutionMode | str",
    workers: int | None,
    evaluator: Any = None,
) -> tuple[ExecutionMode, int]:
    """
    Resolve the configured mode and pool size into what will actually run.

    Rules:
      - workers None -> default_worker_count().
      - workers 0 or 1 -> SEQUENTIAL with one worker.
      - An evaluator declaring `reentrant = False` -> SEQUENTIAL.

    Raises:
        ConfigurationError: If workers is negative or the mode is unknown.
    """
    mode = ExecutionMode.parse(mode)
    if workers is None:
        workers = default_worker_count()
    if workers < 0:
        raise ConfigurationError(f"workers must be >= 0, got: {workers}")

    if mode is not ExecutionMode.SEQUENTIAL and workers <= 1:
        mode = ExecutionMode.SEQUENTIAL
    if mode is not ExecutionMode.SEQUENTIAL and not getattr(evaluator, "reentrant", True):
        logger.warning(
            "Evaluator %s is not reentrant; falling back to sequential dispatch",
            type(evaluator).__name__,
        )
        mode = ExecutionMode.SEQUENTIAL
    if mode is ExecutionMode.SEQUENTIAL:
        workers = 1
    return mode, workers


class CancellationToken:
    """
    Cooperative cancellation signal shared between a caller and a scheduler.

    Safe to set from any thread (e.g. a signal handler or a UI callback).
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class SweepResult:
    """
    The outcome of evaluating one combination.

    Attributes:
        combination: The evaluated combination.
        output: Whatever the evaluator returned (None on failure).
        succeeded: True if the evaluator returned, False if it raised or
                  timed out.
        error: "<ExceptionType>: <message>" on failure, else None.
        duration_seconds: Wall-clock time spent on this evaluation.
    """
    combination: Combination
    output: Any = None
    succeeded: bool = True
    error: str | None = None
    duration_seconds: float = 0.0

    @property
    def failed(self) -> bool:
        return not self.succeeded


@dataclass
class SweepOutcome:
    """
    The aggregate result set of a sweep.

    Results are ordered by generation order and can be looked up by
    combination. `status` distinguishes a finished sweep from a cancelled one
    and from a sweep that had nothing to evaluate.
    """
    results: list[SweepResult] = field(default_factory=list)
    status: SweepStatus = SweepStatus.COMPLETE

    def __post_init__(self) -> None:
        self._index = {r.combination: r for r in self.results}

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self) -> Iterator[SweepResult]:
        return iter(self.results)

    def __contains__(self, combination: object) -> bool:
        return combination in self._index

    @property
    def is_complete(self) -> bool:
        return self.status is not SweepStatus.INCOMPLETE

    def result_for(self, combination: Combination) -> SweepResult | None:
        """Look up the result of one combination (None if not evaluated)."""
        return self._index.get(combination)

    def successes(self) -> list[SweepResult]:
        return [r for r in self.results if r.succeeded]

    def failures(self) -> list[SweepResult]:
        return [r for r in self.results if r.failed]

    def to_frame(self) -> pd.DataFrame:
        """
        Flatten the result set into one row per combination.

        Columns: one per distribution label, then `succeeded`, `error`,
        `duration_seconds`, then the evaluator output. Mapping outputs (e.g. a
        metrics dict) are spread into one column per key; anything else lands
        in a single `output` column.
        """
        rows = []
        for result in self.results:
            row = result.combination.to_dict()
            row["succeeded"] = result.succeeded
            row["error"] = result.error
            row["duration_seconds"] = result.duration_seconds
            if isinstance(result.output, dict):
                row.update(result.output)
            elif result.output is not None:
                row["output"] = result.output
            rows.append(row)
        return pd.DataFrame(rows)


def _resolve_callable(evaluator: Any) -> Callable[[Combination], Any]:
    if hasattr(evaluator, "evaluate"):
        return evaluator.evaluate
    if callable(evaluator):
        return evaluator
    raise ConfigurationError(
        f"Evaluator must be callable or expose evaluate(combination); got {type(evaluator).__name__}"
    )


def _ignore_interrupts() -> None:
    # process pool initializer: SIGINT is handled by the parent only
    signal.signal(signal.SIGINT, signal.SIG_IGN)


def _describe(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


class SweepScheduler:
    """
    Dispatch combinations to an evaluator and collect one result per combination.

    Args:
        evaluator: Callable or object with evaluate(combination).
        mode: Requested execution mode (resolved through resolve_execution).
        workers: Pool size. None = number of CPUs; 0 or 1 = sequential.
        timeout_seconds: Optional per-evaluation ceiling.
        progress_every: Log progress every N completed evaluations.

    Example:
        >>> scheduler = SweepScheduler(evaluator, mode="threads", workers=4)
        >>> outcome = scheduler.run(combinations)
        >>> outcome.status
        <SweepStatus.COMPLETE: 'complete'>
    """

    def __init__(
        self,
        evaluator: Any,
        mode: "ExecutionMode | str" = ExecutionMode.SEQUENTIAL,
        workers: int | None = None,
        timeout_seconds: float | None = None,
        progress_every: int = 10,
    ) -> None:
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ConfigurationError(
                f"timeout_seconds must be positive, got: {timeout_seconds}"
            )
        self.evaluator = evaluator
        self._call = _resolve_callable(evaluator)
        self.mode, self.workers = resolve_execution(mode, workers, evaluator)
        self.timeout_seconds = timeout_seconds
        self.progress_every = max(1, progress_every)

    def run(
        self,
        combinations: Iterable[Combination],
        cancel_token: CancellationToken | None = None,
    ) -> SweepOutcome:
        """
        Evaluate every combination and return the assembled result set.

        Args:
            combinations: Generation-ordered combinations (fully materialised
                         before dispatch begins).
            cancel_token: Optional cooperative cancellation signal.

        Returns:
            SweepOutcome in generation order. Status is EMPTY when there was
            nothing to evaluate, INCOMPLETE when cancellation left combinations
            undispatched, COMPLETE otherwise.
        """
        work = list(combinations)
        if not work:
            logger.info("No combinations to evaluate")
            return SweepOutcome(results=[], status=SweepStatus.EMPTY)

        token = cancel_token or CancellationToken()
        logger.info(
            "Dispatching %d combinations (mode=%s, workers=%d)",
            len(work),
            self.mode.value,
            self.workers,
        )

        self._started = time.monotonic()
        if self.mode is ExecutionMode.SEQUENTIAL and self.timeout_seconds is None:
            collected = self._run_inline(work, token)
        else:
            collected = self._run_pooled(work, token)

        results = [collected[i] for i in sorted(collected)]
        status = SweepStatus.COMPLETE if len(results) == len(work) else SweepStatus.INCOMPLETE
        if status is SweepStatus.INCOMPLETE:
            logger.warning(
                "Sweep cancelled: %d of %d combinations evaluated",
                len(results),
                len(work),
            )
        else:
            logger.info(
                "Sweep complete: %d succeeded, %d failed in %.1fs",
                sum(r.succeeded for r in results),
                sum(r.failed for r in results),
                time.monotonic() - self._started,
            )
        return SweepOutcome(results=results, status=status)

    def _run_inline(
        self,
        work: list[Combination],
        token: CancellationToken,
    ) -> dict[int, SweepResult]:
        collected: dict[int, SweepResult] = {}
        for index, combination in enumerate(work):
            if token.cancelled:
                break
            started = time.monotonic()
            try:
                output = self._call(combination)
            except Exception as e:
                collected[index] = self._failure(combination, e, time.monotonic() - started)
            else:
                collected[index] = SweepResult(
                    combination=combination,
                    output=output,
                    duration_seconds=time.monotonic() - started,
                )
            self._report_progress(len(collected), len(work))
        return collected

    def _make_executor(self) -> Executor:
        if self.mode is ExecutionMode.PROCESSES:
            return ProcessPoolExecutor(max_workers=self.workers, initializer=_ignore_interrupts)
        return ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="sweep")

    def _run_pooled(
        self,
        work: list[Combination],
        token: CancellationToken,
    ) -> dict[int, SweepResult]:
        collected: dict[int, SweepResult] = {}
        pending = deque(enumerate(work))
        in_flight: dict[Future, tuple[int, Combination, float]] = {}
        # timed-out calls that are still running and still hold a worker
        abandoned: set[Future] = set()

        executor = self._make_executor()
        try:
            while pending or in_flight:
                while pending and not token.cancelled and len(in_flight) + len(abandoned) < self.workers:
                    index, combination = pending.popleft()
                    future = executor.submit(self._call, combination)
                    in_flight[future] = (index, combination, time.monotonic())

                if not in_flight:
                    if token.cancelled or not abandoned:
                        break
                    done, _ = wait(abandoned, return_when=FIRST_COMPLETED)
                    abandoned -= done
                    continue

                done, _ = wait(
                    list(in_flight) + list(abandoned),
                    timeout=self._next_deadline(in_flight),
                    return_when=FIRST_COMPLETED,
                )
                abandoned -= done

                now = time.monotonic()
                for future in done:
                    if future not in in_flight:
                        continue
                    index, combination, started = in_flight.pop(future)
                    error = future.exception()
                    if error is not None and not isinstance(error, Exception):
                        logger.warning(
                            "Evaluation of %r interrupted (%s); stopping dispatch", combination, _describe(error)
                        )
                        token.cancel()
                        continue
                    if error is None:
                        collected[index] = SweepResult(
                            combination=combination,
                            output=future.result(),
                            duration_seconds=now - started,
                        )
                    else:
                        collected[index] = self._failure(combination, error, now - started)
                    self._report_progress(len(collected), len(work))

                if self.timeout_seconds is not None:
                    for future, (index, combination, started) in list(in_flight.items()):
                        if now - started < self.timeout_seconds:
                            continue
                        del in_flight[future]
                        if not future.cancel():
                            abandoned.add(future)
                        timeout = EvaluationTimeout(
                            f"evaluation exceeded {self.timeout_seconds:g}s"
                        )
                        collected[index] = self._failure(combination, timeout, now - started)
                        self._report_progress(len(collected), len(work))
        finally:
            # abandoned calls cannot be interrupted; do not block on them
            executor.shutdown(wait=not abandoned, cancel_futures=True)
        return collected

    def _next_deadline(self, in_flight: dict[Future, tuple[int, Combination, float]]) -> float | None:
        if self.timeout_seconds is None:
            return None
        earliest = min(started for _, _, started in in_flight.values())
        return max(0.0, earliest + self.timeout_seconds - time.monotonic())

    def _failure(self, combination: Combination, error: BaseException, duration: float) -> SweepResult:
        logger.warning("Evaluation failed for %r: %s", combination, _describe(error))
        return SweepResult(
            combination=combination,
            output=None,
            succeeded=False,
            error=_describe(error),
            duration_seconds=duration,
        )

    def _report_progress(self, completed: int, total: int) -> None:
        if completed % self.progress_every != 0 and completed != total:
            return
        elapsed = time.monotonic() - self._started
        rate = completed / elapsed if elapsed > 0 else 0.0
        eta = (total - completed) / rate if rate > 0 else 0.0
        logger.info(
            "[%d/%d] completed | Elapsed: %.1fs | %.1f tasks/s | ETA: %.1fs",
            completed,
            total,
            elapsed,
            rate,
            eta,
        )
