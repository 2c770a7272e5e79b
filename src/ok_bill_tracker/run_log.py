"""Append-only ledger of sync runs (``OK_RUN_LOG``, default ``.sync_runs.jsonl``).

Each line is one :class:`SyncRun`: when it ran, how it ended, how many
records each phase touched and how long each phase took.  ``run_sync`` writes
it; ``scripts/sync_status.py`` reads it back next to ``sync_metadata``.

Usage::

    with track_run() as run:
        with timed_phase(run, "Bills"):
            ...
        run.bills = 400
"""

from __future__ import annotations

import dataclasses
import json
import logging
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from . import config

LOGGER = logging.getLogger(__name__)

# Per-run counters copied from the sync summary.
COUNT_FIELDS: tuple[str, ...] = (
    "legislators",
    "bills",
    "stage_changes",
    "actions",
    "sponsorships",
)


@dataclass
class PhaseTiming:
    name: str  # "Schema" | "Legislators" | "Bills"
    duration_s: float


@dataclass
class SyncRun:
    run_id: str
    started_at: str  # ISO, UTC
    ended_at: str | None = None
    duration_s: float | None = None
    status: str = "running"  # running | ok | error
    error: str | None = None
    legislators: int = 0
    bills: int = 0
    stage_changes: int = 0
    actions: int = 0
    sponsorships: int = 0
    phases: list[PhaseTiming] = field(default_factory=list)

    @property
    def slowest_phase(self) -> PhaseTiming | None:
        return max(self.phases, key=lambda p: p.duration_s, default=None)

    @classmethod
    def from_line(cls, line: str) -> SyncRun | None:
        """Parse one ledger line; blank or unreadable lines give None."""
        line = line.strip()
        if not line:
            return None
        try:
            d = json.loads(line)
            phases = [PhaseTiming(**p) for p in d.pop("phases", [])]
            return cls(**d, phases=phases)
        except (json.JSONDecodeError, TypeError, AttributeError):
            return None


def append_run(run: SyncRun, path: Path | None = None) -> None:
    path = path or get_log_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(dataclasses.asdict(run)) + "\n")
    except OSError as e:
        LOGGER.warning("Run log append failed: %s", e)


@contextmanager
def track_run(path: Path | None = None) -> Iterator[SyncRun]:
    """Yield a fresh SyncRun and append it to the ledger however the block ends."""
    run = SyncRun(
        run_id=uuid.uuid4().hex[:8],
        started_at=datetime.now(timezone.utc).isoformat(),
    )
    t0 = time.perf_counter()
    try:
        yield run
        run.status = "ok"
    except Exception as exc:
        run.status = "error"
        run.error = f"{type(exc).__name__}: {exc}"
        raise
    finally:
        run.ended_at = datetime.now(timezone.utc).isoformat()
        run.duration_s = round(time.perf_counter() - t0, 2)
        append_run(run, path)


@contextmanager
def timed_phase(run: SyncRun, name: str) -> Iterator[None]:
    t0 = time.perf_counter()
    try:
        yield
    finally:
        run.phases.append(PhaseTiming(name, round(time.perf_counter() - t0, 2)))


def load_recent_runs(n: int = 20, *, log_path: Path | None = None) -> list[SyncRun]:
    """Last *n* runs, newest first."""
    path = log_path or get_log_path()
    if not path.exists():
        return []
    with open(path, encoding="utf-8") as f:
        runs = [run for run in map(SyncRun.from_line, f) if run is not None]
    return runs[-n:][::-1]


def get_log_path() -> Path:
    return config.RUN_LOG_PATH
