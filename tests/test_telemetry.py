from __future__ import annotations

import pytest

from silvopt.telemetry import (
    RunTelemetryLogger,
    Snapshot,
    SnapshotBus,
    append_jsonl,
    read_jsonl,
    summarize_snapshots,
)


def _snapshot(iteration: int, max_iterations: int | None = 10) -> Snapshot:
    return Snapshot(
        stand="plot",
        heuristic="sa",
        iteration=iteration,
        max_iterations=max_iterations,
        objective=1.0,
        best_objective=2.0,
        runtime_seconds=0.1,
    )


def test_jsonl_round_trip(tmp_path):
    path = tmp_path / "nested" / "runs.jsonl"
    append_jsonl(path, {"a": 1})
    append_jsonl(path, {"b": [1, 2]})
    assert read_jsonl(path) == [{"a": 1}, {"b": [1, 2]}]


def test_run_logger_writes_run_and_step_records(tmp_path):
    log_path = tmp_path / "telemetry.jsonl"
    with RunTelemetryLogger(
        log_path=log_path, heuristic="sa", stand="plot", seed=3, step_interval=2
    ) as logger:
        for step in range(1, 5):
            if logger.should_log_step(step, last_step=4):
                logger.log_step(
                    step=step,
                    objective=float(step),
                    best_objective=float(step),
                    acceptance_probability=None,
                    moves_accepted=step,
                    moves_rejected=0,
                )
        logger.finalize(metrics={"best_objective": 4.0})

    (run,) = read_jsonl(log_path)
    assert run["record_type"] == "run"
    assert run["status"] == "ok"
    assert run["metrics"] == {"best_objective": 4.0}
    assert run["seed"] == 3
    steps = read_jsonl(logger.steps_path)
    assert [record["step"] for record in steps] == [1, 2, 4]
    assert run["steps_written"] == 3
    assert logger.steps_path.name.startswith("plot-sa-")


def test_run_logger_records_errors(tmp_path):
    log_path = tmp_path / "telemetry.jsonl"
    with pytest.raises(RuntimeError):
        with RunTelemetryLogger(log_path=log_path, heuristic="ga", step_interval=None):
            raise RuntimeError("boom")
    (run,) = read_jsonl(log_path)
    assert run["status"] == "error"
    assert "boom" in run["error"]


def test_snapshot_progress_ratio():
    assert _snapshot(5).progress_ratio == 0.5
    assert _snapshot(20).progress_ratio == 1.0
    assert _snapshot(5, max_iterations=None).progress_ratio is None


def test_snapshot_bus_drains_in_order():
    bus = SnapshotBus()
    sink = bus.sink()
    sink(_snapshot(1))
    sink(_snapshot(2))
    assert [snapshot.iteration for snapshot in bus.drain()] == [1, 2]
    assert list(bus.drain()) == []


def test_summarize_snapshots_keeps_best_per_combination():
    first = _snapshot(1)
    first.metadata["combination"] = "2"
    later = _snapshot(8)
    later.best_objective = 5.0
    later.metadata["combination"] = "2"
    other = _snapshot(3)
    other.metadata["combination"] = "4"
    summary = summarize_snapshots([first, later, other])
    assert summary[("plot", "sa", "2")]["best_objective"] == 5.0
    assert summary[("plot", "sa", "2")]["iterations"] == 8
    assert set(summary) == {("plot", "sa", "2"), ("plot", "sa", "4")}
