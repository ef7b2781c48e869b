from __future__ import annotations

from pathlib import Path

import pandas as pd
from typer.testing import CliRunner

from silvopt.cli.main import app
from silvopt.telemetry import read_jsonl
from tests.cli import cli_text

runner = CliRunner()
STAND = Path(__file__).resolve().parents[1] / "data" / "stands" / "plot14.yaml"


def test_simulate_writes_period_table(tmp_path):
    out = tmp_path / "simulate.csv"
    result = runner.invoke(app, ["simulate", str(STAND), "--last-period", "4", "--out", str(out)])
    assert result.exit_code == 0, cli_text(result)
    assert "plot14" in cli_text(result)
    frame = pd.read_csv(out)
    assert len(frame) == 5
    assert frame["standing_volume"].iloc[-1] > frame["standing_volume"].iloc[0]


def test_optimize_with_annealing_logs_telemetry(tmp_path):
    log = tmp_path / "telemetry" / "runs.jsonl"
    result = runner.invoke(
        app,
        [
            "optimize",
            str(STAND),
            "--thin",
            "3",
            "--iterations",
            "25",
            "--initial-probability",
            "0.2",
            "--telemetry-log",
            str(log),
        ],
    )
    assert result.exit_code == 0, cli_text(result)
    assert "Objective (lev, sa)" in cli_text(result)
    (run,) = read_jsonl(log)
    assert run["heuristic"] == "sa"
    assert run["status"] == "ok"


def test_optimize_with_genetic_algorithm(tmp_path):
    out = tmp_path / "best.csv"
    result = runner.invoke(
        app,
        [
            "optimize",
            str(STAND),
            "-H",
            "ga",
            "--thin",
            "2",
            "--thin",
            "5",
            "--generations",
            "2",
            "--population",
            "4",
            "--initial-probability",
            "0.3",
            "--out",
            str(out),
        ],
    )
    assert result.exit_code == 0, cli_text(result)
    assert out.exists()


def test_optimize_with_prescriptions():
    result = runner.invoke(
        app,
        ["optimize", str(STAND), "-H", "prescription", "--thin", "3", "--rotation", "8"],
    )
    assert result.exit_code == 0, cli_text(result)
    assert "prescription_enumeration" in cli_text(result)


def test_optimize_rejects_rotation_before_thin():
    result = runner.invoke(
        app,
        ["optimize", str(STAND), "-H", "prescription", "--thin", "6", "--rotation", "5"],
    )
    assert result.exit_code == 1
    assert "Optimization failed" in cli_text(result)


def test_sweep_writes_cell_summary(tmp_path):
    out = tmp_path / "space.csv"
    result = runner.invoke(
        app,
        [
            "sweep",
            str(STAND),
            "--first-thin",
            "3",
            "--first-thin",
            "5",
            "--rotation",
            "7",
            "--rotation",
            "9",
            "--workers",
            "2",
            "--watch",
            "--out",
            str(out),
        ],
    )
    assert result.exit_code == 0, cli_text(result)
    frame = pd.read_csv(out)
    # two thins, two rotations, two financial scenarios
    assert len(frame) == 8
    assert (frame["solutions_in_pool"] >= 1).all()
    assert "Progress by thinning combination" in cli_text(result)
