from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from silvopt.optimization.heuristics import SimulatedAnnealing, solve_sa
from silvopt.optimization.parameters import MoveType, SimulatedAnnealingParameters
from silvopt.simulation.objective import Objective
from silvopt.telemetry import read_jsonl


def _greedy(iterations: int = 60, **overrides) -> SimulatedAnnealingParameters:
    return SimulatedAnnealingParameters(
        iterations=iterations, initial_probability=0.0, reheat_by=0.0, **overrides
    )


def test_zero_probability_annealing_never_worsens(thinned_trajectory, evaluator):
    result = solve_sa(thinned_trajectory, _greedy(), evaluator=evaluator, seed=7)
    trace = np.array(result.objective_function_by_move)
    assert len(trace) == 61
    assert np.all(np.diff(trace) >= 0.0)
    assert result.best_objective == pytest.approx(trace.max())
    assert result.counters.moves_accepted + result.counters.moves_rejected == 60


def test_best_trajectory_reproduces_best_objective(thinned_trajectory, evaluator):
    result = solve_sa(thinned_trajectory, _greedy(), evaluator=evaluator, seed=11)
    best = result.best_trajectory.copy()
    assert evaluator.evaluate(best, Objective()) == pytest.approx(result.best_objective)
    periods = set(result.best_trajectory.tree_selection.as_flat().tolist())
    assert periods <= {0, 2, 5}


def test_caller_trajectory_is_not_modified(thinned_trajectory, evaluator):
    solve_sa(
        thinned_trajectory,
        _greedy(initial_thinning_probability=0.5),
        evaluator=evaluator,
        seed=3,
    )
    assert not thinned_trajectory.tree_selection.as_flat().any()


def test_same_seed_gives_same_trace(thinned_trajectory, evaluator):
    parameters = SimulatedAnnealingParameters(iterations=40, initial_probability=0.5)
    first = solve_sa(thinned_trajectory, parameters, evaluator=evaluator, seed=5)
    second = solve_sa(thinned_trajectory, parameters, evaluator=evaluator, seed=5)
    assert first.objective_function_by_move == second.objective_function_by_move


def test_exchange_without_distinct_periods_makes_no_moves(thinned_trajectory, evaluator):
    annealer = SimulatedAnnealing(
        thinned_trajectory,
        _greedy(iterations=20, move_type=MoveType.EXCHANGE),
        evaluator=evaluator,
    )
    result = annealer.run()
    assert result.meta["moves_unavailable"] == 20
    assert len(set(result.objective_function_by_move)) == 1


def test_annealing_accepts_worse_moves_reheats_and_switches_to_exchange(
    thinned_trajectory, evaluator
):
    parameters = SimulatedAnnealingParameters(
        initial_probability=0.9, change_to_exchange_after=5, reheat_after=8
    )
    result = solve_sa(thinned_trajectory, parameters, evaluator=evaluator)
    assert np.any(np.diff(result.objective_function_by_move) < 0.0)
    assert np.all(np.diff(result.best_objective_by_move) >= 0.0)
    assert result.meta["move_type"] == "exchange"
    assert result.meta["operators"] == {"flip": 0.0, "exchange": 1.0}
    assert result.meta["reheats"] >= 1
    best = result.best_trajectory.copy()
    assert evaluator.evaluate(best, Objective()) == pytest.approx(result.best_objective)


def test_unit_alpha_holds_acceptance_probability(thinned_trajectory, evaluator):
    parameters = SimulatedAnnealingParameters(
        iterations=50,
        alpha=1.0,
        initial_probability=0.5,
        final_probability=0.4,
        reheat_by=0.0,
    )
    result = solve_sa(thinned_trajectory, parameters, evaluator=evaluator, seed=2)
    assert result.meta["iterations"] == 50
    assert result.meta["final_acceptance_probability"] == pytest.approx(0.5)


def test_warm_start_seeds_the_trace(thinned_trajectory, evaluator):
    warm = thinned_trajectory.copy()
    warm.set_tree_selection(0, 2)
    warm.set_tree_selection(7, 5)
    expected = evaluator.evaluate(warm, Objective())
    result = solve_sa(
        thinned_trajectory, _greedy(iterations=5), evaluator=evaluator, construct_from=warm
    )
    assert result.objective_function_by_move[0] == pytest.approx(expected)
    assert result.best_objective >= expected


def test_telemetry_and_watch_snapshots(tmp_path: Path, thinned_trajectory, evaluator):
    snapshots = []
    log_path = tmp_path / "telemetry" / "runs.jsonl"
    result = solve_sa(
        thinned_trajectory,
        _greedy(iterations=30),
        evaluator=evaluator,
        telemetry_log=log_path,
        telemetry_context={"step_interval": 10, "source": "test"},
        watch_sink=snapshots.append,
        watch_interval=10,
    )
    records = read_jsonl(log_path)
    assert len(records) == 1
    run = records[0]
    assert run["record_type"] == "run"
    assert run["heuristic"] == "sa"
    assert run["context"]["source"] == "test"
    assert run["metrics"]["best_objective"] == pytest.approx(result.best_objective)
    steps = read_jsonl(Path(result.meta["telemetry_steps_path"]))
    assert [step["step"] for step in steps][:3] == [1, 10, 20]
    assert snapshots and snapshots[-1].best_objective == pytest.approx(result.best_objective)
    assert all(snapshot.heuristic == "sa" for snapshot in snapshots)


def test_parameters_reject_bad_schedule():
    with pytest.raises(ValueError):
        SimulatedAnnealingParameters(alpha=0.0)
    with pytest.raises(ValueError):
        SimulatedAnnealingParameters(initial_probability=0.1, final_probability=0.2)
    parameters = SimulatedAnnealingParameters()
    assert parameters.resolved_iterations(10) == 100
    assert parameters.resolved_reheat_after(10) == 17
