"""Run telemetry and progress snapshots."""

from .jsonl import append_jsonl, read_jsonl
from .run_logger import RunTelemetryLogger
from .watch import Snapshot, SnapshotBus, SnapshotSink, summarize_snapshots

__all__ = [
    "RunTelemetryLogger",
    "Snapshot",
    "SnapshotBus",
    "SnapshotSink",
    "append_jsonl",
    "read_jsonl",
    "summarize_snapshots",
]
