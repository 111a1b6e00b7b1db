"""
Configuration settings for parameter sweeps.

**Conceptual**: This module provides a strongly-typed settings object for the
sweep-level knobs that change between machines and runs rather than between
strategies: where cached results live, how many workers to use, how to
dispatch, the default sampling budget and seed, and an optional timeout per
evaluation. Values load from environment variables (via a .env file) and are
validated at startup, so a typo in SWEEP_WORKERS fails immediately instead of
halfway through a long sweep.

**Why not hardcode these?**
  - A laptop and a 64-core research box want very different worker counts.
  - CI runs want small, seeded samples; overnight runs want exhaustive sweeps.
  - Tests can build SweepSettings(...) directly and never touch the environment.

**Teaching note**: Notice that the *parameter ranges* are not here. Ranges and
constraints describe the experiment and belong in code (or a sweep definition
file) next to the strategy, where they are versioned and hashed into the sweep
identity. Settings only describe *how* to run it.

This module uses python-dotenv to load .env files and dataclasses for type safety.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from src.sweep.errors import ConfigurationError
from src.sweep.scheduler import ExecutionMode, default_worker_count

# Load .env from project root (dev/local environments)
env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DEFAULT_RESULTS_DIR = "data/results/sweeps"
DEFAULT_SEED = 42


def _read_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got: {raw}") from None


@dataclass(frozen=True)
class SweepSettings:
    """
    Run-time settings for a parameter sweep.

    Attributes:
        results_dir: Root directory for cached sweep result sets.
        execution_mode: "sequential", "threads" or "processes".
        workers: Worker pool size. 0 or 1 means sequential dispatch.
        sample_count: Default sampling budget (0 = exhaustive).
        seed: Default sampling seed.
        timeout_seconds: Optional per-evaluation ceiling in seconds.
    """
    results_dir: Path
    execution_mode: ExecutionMode = ExecutionMode.THREADS
    workers: int = 1
    sample_count: int = 0
    seed: int = DEFAULT_SEED
    timeout_seconds: Optional[float] = None

    def __post_init__(self):
        """Validate settings after initialization."""
        if self.workers < 0:
            raise ConfigurationError(f"workers must be non-negative, got: {self.workers}")
        if self.sample_count < 0:
            raise ConfigurationError(
                f"sample_count must be non-negative (0 = exhaustive), got: {self.sample_count}"
            )
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ConfigurationError(
                f"timeout_seconds must be positive, got: {self.timeout_seconds}"
            )
        # frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "execution_mode", ExecutionMode.parse(self.execution_mode))
        object.__setattr__(self, "results_dir", Path(self.results_dir))

    @classmethod
    def from_env(cls) -> "SweepSettings":
        """
        Load sweep settings from environment variables.

        **Environment variables** (all optional):
          - SWEEP_RESULTS_DIR: Cache directory (default "data/results/sweeps").
          - SWEEP_EXECUTION_MODE: "sequential", "threads" or "processes"
            (default "threads").
          - SWEEP_WORKERS: Worker pool size (default: number of CPUs).
          - SWEEP_SAMPLE_COUNT: Default sample budget (default 0 = exhaustive).
          - SWEEP_SEED: Default sampling seed (default 42).
          - SWEEP_TIMEOUT_SECONDS: Per-evaluation ceiling (default: none).

        Returns:
            SweepSettings object with values loaded from environment.

        Raises:
            ConfigurationError: If any value is malformed or out of range.

        Usage example:
            >>> # In .env file:
            >>> # SWEEP_WORKERS=8
            >>> # SWEEP_SAMPLE_COUNT=200
            >>>
            >>> settings = SweepSettings.from_env()
            >>> print(settings.workers)  # 8
        """
        timeout_str = os.getenv("SWEEP_TIMEOUT_SECONDS", "").strip()
        try:
            timeout_seconds = float(timeout_str) if timeout_str else None
        except ValueError:
            raise ConfigurationError(
                f"SWEEP_TIMEOUT_SECONDS must be a number, got: {timeout_str}"
            ) from None

        return cls(
            results_dir=Path(os.getenv("SWEEP_RESULTS_DIR", DEFAULT_RESULTS_DIR)),
            execution_mode=ExecutionMode.parse(os.getenv("SWEEP_EXECUTION_MODE", "threads")),
            workers=_read_int("SWEEP_WORKERS", str(default_worker_count())),
            sample_count=_read_int("SWEEP_SAMPLE_COUNT", "0"),
            seed=_read_int("SWEEP_SEED", str(DEFAULT_SEED)),
            timeout_seconds=timeout_seconds,
        )


# Lazily-loaded singleton. Tests should build SweepSettings(...) directly or
# call reset_settings() after changing the environment.
_default_settings: Optional[SweepSettings] = None


def get_settings() -> SweepSettings:
    """
    Get the global sweep settings singleton.

    Settings are loaded from the environment on first call, then cached.

    Returns:
        Global SweepSettings singleton.
    """
    global _default_settings

    if _default_settings is None:
        _default_settings = SweepSettings.from_env()

    return _default_settings


def reset_settings():
    """
    Reset the global settings singleton (for testing).

    **Testing pattern**:
      ```python
      def test_something(monkeypatch):
          monkeypatch.setenv("SWEEP_WORKERS", "2")
          reset_settings()
          assert get_settings().workers == 2
      ```
    """
    global _default_settings
    _default_settings = None
