"""
Result stores: cache sweep results keyed by a full sweep identity.

**Conceptual**: Backtesting a few thousand parameter combinations can take
hours. Running the same sweep twice should cost nothing the second time. A
ResultStore remembers finished result sets, and the runner checks it before
dispatching any work.

**Why a *full* sweep identity instead of a file name?**
  The naive approach is "if results/ma_crossover.csv exists, load it". That
  silently returns stale results the moment you widen a range or add a
  constraint but forget to rename the output file. Here the key is a SHA-256
  digest over everything that determines the result set:
    - the strategy identifier,
    - every distribution (label, binding target, candidate values, in order),
    - every constraint (label, left, right, relation),
    - the sampling budget and seed,
    - the evaluator fingerprint (e.g. a hash of the price history and the
      backtest costs), when the evaluator provides one.
  Change any of them and you get a different identity, hence a cache miss.

**Atomic saves**: JsonFileResultStore writes to a temporary file in the same
directory, fsyncs it, then os.replace()s it over the real path. os.replace is
atomic on POSIX and Windows, so a reader sees either the old file or the new
one, never half of one. If anything fails mid-write, the temporary file is
removed and the previous result set is untouched.

**Teaching note**: Evaluator outputs are stored as JSON, so they must be
JSON-friendly (dicts of numbers/strings are ideal). numpy scalars and arrays
are converted automatically. NaN metrics survive the round trip.
Timestamp candidate values are written as tagged ISO strings and come back
as pd.Timestamp, so cached combinations compare equal to freshly generated
ones.
"""

import hashlib
import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import numpy as np
import pandas as pd

from src.sweep.combinations import Combination
from src.sweep.constraints import ConstraintSet
from src.sweep.distributions import SweepSpace, binding_token
from src.sweep.errors import PersistenceError
from src.sweep.scheduler import SweepOutcome, SweepResult, SweepStatus

logger = logging.getLogger(__name__)

STORE_FORMAT_VERSION = 1


@dataclass(frozen=True)
class SweepIdentity:
    """
    Deterministic key of one sweep configuration.

    Attributes:
        strategy_id: Human-readable strategy name (e.g. "ma_crossover").
        digest: SHA-256 hex digest over the full sweep configuration.
    """
    strategy_id: str
    digest: str

    @property
    def key(self) -> str:
        """Filesystem-friendly key: "<strategy-slug>-<first 16 hex digits>"."""
        slug = re.sub(r"[^A-Za-z0-9_.-]+", "_", self.strategy_id).strip("_") or "sweep"
        return f"{slug}-{self.digest[:16]}"


def _canonical_value(value: Any) -> Any:
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, (tuple, list)):
        return [_canonical_value(v) for v in value]
    return value


def compute_sweep_identity(
    strategy_id: str,
    space: SweepSpace,
    constraints: ConstraintSet | None = None,
    sample_count: int = 0,
    seed: int | None = None,
    evaluator_fingerprint: str | None = None,
) -> SweepIdentity:
    """
    Derive the identity of a sweep from everything that determines its results.

    Distribution order is part of the identity because it fixes generation
    order (and therefore which combinations a seeded sample picks).
    Constraint order is not: constraints are combined with AND.

    evaluator_fingerprint covers the evaluator's own inputs (price history,
    costs). Two sweeps over the same grid but different prices must not
    share cached results.
    """
    payload = {
        "strategy_id": strategy_id,
        "distributions": [
            {
                "label": d.label,
                "binding_target": binding_token(d.binding_target),
                "values": [_canonical_value(v) for v in d.values],
            }
            for d in space
        ],
        "constraints": sorted(
            (
                [c.label, c.left, c.right, c.relation.value]
                for c in (constraints or ())
            ),
        ),
        "sample_count": sample_count,
        "seed": seed,
        "evaluator": evaluator_fingerprint,
    }
    text = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return SweepIdentity(
        strategy_id=strategy_id,
        digest=hashlib.sha256(text.encode("utf-8")).hexdigest(),
    )


def _json_default(value: Any) -> Any:
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, (pd.Timestamp,)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


_TIMESTAMP_TAG = "__timestamp__"


def _encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return {_TIMESTAMP_TAG: pd.Timestamp(value).isoformat()}
    if isinstance(value, tuple):
        return [_encode_value(v) for v in value]
    if isinstance(value, np.generic):
        return value.item()
    return value


def _restore_value(value: Any) -> Any:
    # JSON turns tuples into lists; combination values must stay hashable
    if isinstance(value, list):
        return tuple(_restore_value(v) for v in value)
    if isinstance(value, dict) and _TIMESTAMP_TAG in value:
        return pd.Timestamp(value[_TIMESTAMP_TAG])
    return value


def outcome_to_dict(identity: SweepIdentity, outcome: SweepOutcome) -> dict[str, Any]:
    """Serialise a result set (plus its identity) into a JSON-ready dict."""
    return {
        "format_version": STORE_FORMAT_VERSION,
        "strategy_id": identity.strategy_id,
        "digest": identity.digest,
        "status": outcome.status.value,
        "results": [
            {
                "combination": [
                    [label, _encode_value(value)] for label, value in result.combination.items()
                ],
                "output": result.output,
                "succeeded": result.succeeded,
                "error": result.error,
                "duration_seconds": result.duration_seconds,
            }
            for result in outcome.results
        ],
    }


def outcome_from_dict(data: dict[str, Any]) -> SweepOutcome:
    """Rebuild a SweepOutcome from outcome_to_dict() output."""
    results = [
        SweepResult(
            combination=Combination({label: _restore_value(value) for label, value in item["combination"]}),
            output=item.get("output"),
            succeeded=bool(item["succeeded"]),
            error=item.get("error"),
            duration_seconds=float(item.get("duration_seconds", 0.0)),
        )
        for item in data["results"]
    ]
    return SweepOutcome(results=results, status=SweepStatus(data["status"]))


class ResultStore(Protocol):
    """
    Storage boundary for sweep result sets.

    Implementations must make save() atomic: a concurrent or later load()
    sees either the previous value (or absence) or the complete new value.
    """

    def load(self, identity: SweepIdentity) -> SweepOutcome | None:
        ...

    def save(self, identity: SweepIdentity, outcome: SweepOutcome) -> None:
        ...


class InMemoryResultStore:
    """Process-local store, handy for tests and notebooks."""

    def __init__(self) -> None:
        self._entries: dict[str, dict[str, Any]] = {}

    def load(self, identity: SweepIdentity) -> SweepOutcome | None:
        data = self._entries.get(identity.digest)
        return outcome_from_dict(data) if data is not None else None

    def save(self, identity: SweepIdentity, outcome: SweepOutcome) -> None:
        # store a detached copy so later mutation of `outcome` cannot leak in
        self._entries[identity.digest] = json.loads(
            json.dumps(outcome_to_dict(identity, outcome), default=_json_default)
        )


class JsonFileResultStore:
    """
    One JSON file per sweep identity under a root directory.

    Args:
        root_dir: Directory holding "<identity.key>.json" files. Created on
                 first save.
    """

    def __init__(self, root_dir: Path | str) -> None:
        self.root_dir = Path(root_dir)

    def path_for(self, identity: SweepIdentity) -> Path:
        return self.root_dir / f"{identity.key}.json"

    def load(self, identity: SweepIdentity) -> SweepOutcome | None:
        """
        Return the stored result set for `identity`, or None.

        Raises:
            PersistenceError: If the file exists but cannot be read or parsed.
        """
        path = self.path_for(identity)
        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Failed to read sweep results from {path}: {e}") from e

        if not isinstance(data, dict):
            raise PersistenceError(f"Malformed sweep results in {path}: expected a JSON object")
        if data.get("digest") != identity.digest:
            logger.warning(
                "Stored results at %s belong to a different sweep configuration; ignoring",
                path,
            )
            return None

        try:
            return outcome_from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Malformed sweep results in {path}: {e}") from e

    def save(self, identity: SweepIdentity, outcome: SweepOutcome) -> None:
        """
        Atomically persist a result set.

        Raises:
            PersistenceError: If serialisation or writing fails. Any previous
                             file for this identity is left intact.
        """
        path = self.path_for(identity)
        tmp_name = None
        try:
            payload = json.dumps(outcome_to_dict(identity, outcome), default=_json_default, indent=2)
            self.root_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.root_dir,
                prefix=f".{identity.key}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise PersistenceError(f"Failed to save sweep results to {path}: {e}") from e

        logger.info("Saved %d results (%s) to %s", len(outcome), outcome.status.value, path)


def export_results_csv(outcome: SweepOutcome, path: Path | str) -> Path:
    """Write the flattened result table (SweepOutcome.to_frame) to CSV."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    outcome.to_frame().to_csv(path, index=False)
    return path
