"""Context manager that records one heuristic run as JSON lines."""

from __future__ import annotations

import re
import time
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from collections.abc import Mapping
from typing import Any
from uuid import uuid4

from .jsonl import append_jsonl

SCHEMA_VERSION = "1.0"
_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


def _timestamp() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


@dataclass(slots=True)
class RunTelemetryLogger(AbstractContextManager["RunTelemetryLogger"]):
    """Append a run record for a heuristic and, optionally, per-move step records.

    The run record is written once: by :meth:`finalize` when the heuristic
    finishes, or on context exit (with ``status="error"`` if the search raised).
    Step records go to ``steps/<stand>-<heuristic>-<run id>.jsonl`` beside
    ``log_path``.

    Parameters
    ----------
    log_path:
        JSONL file run records are appended to.
    heuristic:
        Heuristic name (``"sa"``, ``"genetic"``, ``"prescription_enumeration"``...).
    stand:
        Stand or trajectory name.
    seed:
        Random seed of the run.
    config:
        Heuristic parameters and objective, as JSON-ready mappings.
    context:
        Anything else worth keeping: tree count, thin periods, sweep coordinate.
    step_interval:
        Write a step record every ``step_interval`` moves; ``None`` or ``<= 0``
        disables step records.
    """

    log_path: Path
    heuristic: str
    stand: str | None = None
    seed: int | None = None
    config: Mapping[str, Any] | None = None
    context: Mapping[str, Any] | None = None
    step_interval: int | None = 100
    run_id: str = field(default_factory=lambda: uuid4().hex, init=False)
    steps_written: int = field(default=0, init=False)
    _started: float | None = field(default=None, init=False)
    _started_at: str | None = field(default=None, init=False)
    _written: bool = field(default=False, init=False)
    _steps_path: Path | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        self.log_path = Path(self.log_path)
        if self.step_interval is not None and self.step_interval > 0:
            label = _UNSAFE.sub("_", f"{self.stand or 'stand'}-{self.heuristic}")
            self._steps_path = self.log_path.parent / "steps" / f"{label}-{self.run_id}.jsonl"
        else:
            self.step_interval = None

    def __enter__(self) -> RunTelemetryLogger:
        self._started = time.perf_counter()
        self._started_at = _timestamp()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self._write_run(status="error", metrics={}, extra={}, error=repr(exc))
        else:
            self._write_run(status="ok", metrics={}, extra={}, error=None)
        return False

    @property
    def steps_path(self) -> Path | None:
        return self._steps_path

    def elapsed(self) -> float:
        return 0.0 if self._started is None else time.perf_counter() - self._started

    def should_log_step(self, step: int, last_step: int | None = None) -> bool:
        """First move, last move, and every ``step_interval``-th move in between."""
        if self.step_interval is None:
            return False
        return step == 1 or step == last_step or step % self.step_interval == 0

    def log_step(
        self,
        *,
        step: int,
        objective: float,
        best_objective: float,
        acceptance_probability: float | None,
        moves_accepted: int,
        moves_rejected: int,
    ) -> None:
        if self._steps_path is None:
            return
        append_jsonl(
            self._steps_path,
            {
                "record_type": "step",
                "schema_version": SCHEMA_VERSION,
                "run_id": self.run_id,
                "step": step,
                "elapsed_seconds": round(self.elapsed(), 3),
                "objective": objective,
                "best_objective": best_objective,
                "acceptance_probability": acceptance_probability,
                "moves_accepted": moves_accepted,
                "moves_rejected": moves_rejected,
            },
        )
        self.steps_written += 1

    def finalize(
        self,
        *,
        status: str = "ok",
        metrics: Mapping[str, Any] | None = None,
        extra: Mapping[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        """Write the run record with the heuristic's final metrics."""
        self._write_run(status=status, metrics=metrics or {}, extra=extra or {}, error=error)

    def _write_run(
        self,
        *,
        status: str,
        metrics: Mapping[str, Any],
        extra: Mapping[str, Any],
        error: str | None,
    ) -> None:
        if self._written:
            return
        append_jsonl(
            self.log_path,
            {
                "record_type": "run",
                "schema_version": SCHEMA_VERSION,
                "run_id": self.run_id,
                "heuristic": self.heuristic,
                "stand": self.stand,
                "seed": self.seed,
                "status": status,
                "error": error,
                "metrics": dict(metrics),
                "config": dict(self.config or {}),
                "context": dict(self.context or {}),
                "extra": dict(extra),
                "steps_written": self.steps_written,
                "steps_path": None if self._steps_path is None else str(self._steps_path),
                "started_at": self._started_at,
                "finished_at": _timestamp(),
                "duration_seconds": round(self.elapsed(), 3),
            },
        )
        self._written = True


__all__ = ["RunTelemetryLogger", "SCHEMA_VERSION"]
