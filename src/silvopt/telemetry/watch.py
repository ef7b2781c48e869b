"""Progress snapshots streamed from running heuristics."""

from __future__ import annotations

import queue
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol


@dataclass(slots=True)
class Snapshot:
    """Progress payload emitted by heuristics every ``watch_interval`` moves."""

    stand: str
    heuristic: str
    iteration: int
    max_iterations: int | None
    objective: float
    best_objective: float
    runtime_seconds: float
    acceptance_probability: float | None = None
    moves_accepted: int = 0
    moves_rejected: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def progress_ratio(self) -> float | None:
        if self.max_iterations and self.max_iterations > 0:
            return min(1.0, max(0.0, self.iteration / self.max_iterations))
        return None


class SnapshotSink(Protocol):
    """Invoked by heuristics whenever a new snapshot is available."""

    def __call__(self, snapshot: Snapshot, /) -> None:  # pragma: no cover - interface only
        ...


class SnapshotBus:
    """Thread-safe queue for snapshots produced by sweep workers."""

    def __init__(self) -> None:
        self._queue: queue.Queue[Snapshot] = queue.Queue()

    def sink(self) -> SnapshotSink:
        def _enqueue(snapshot: Snapshot) -> None:
            self._queue.put(snapshot)

        return _enqueue

    def drain(self) -> Iterator[Snapshot]:
        """Iterate over queued snapshots without blocking."""

        while True:
            try:
                yield self._queue.get_nowait()
            except queue.Empty:
                break


def summarize_snapshots(
    snapshots: Iterable[Snapshot],
) -> dict[tuple[str, str, str], dict[str, float]]:
    """Best objective, last iteration, and runtime per (stand, heuristic, label).

    ``label`` is the snapshot's ``combination`` metadata, empty for single runs.
    """

    summary: dict[tuple[str, str, str], dict[str, float]] = {}
    for snapshot in snapshots:
        key = (snapshot.stand, snapshot.heuristic, snapshot.metadata.get("combination", ""))
        entry = summary.setdefault(
            key,
            {"best_objective": snapshot.best_objective, "iterations": 0, "runtime_seconds": 0.0},
        )
        entry["best_objective"] = max(entry["best_objective"], snapshot.best_objective)
        entry["iterations"] = max(entry["iterations"], snapshot.iteration)
        entry["runtime_seconds"] = max(entry["runtime_seconds"], snapshot.runtime_seconds)
    return summary


__all__ = ["Snapshot", "SnapshotBus", "SnapshotSink", "summarize_snapshots"]
