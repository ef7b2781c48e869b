"""Simulated annealing over per-tree harvest periods."""

from __future__ import annotations

import math
from pathlib import Path
from typing import Any

from silvopt.core.constants import MAXIMUM_ACCEPTANCE_EXPONENT
from silvopt.optimization.heuristics.common import (
    Heuristic,
    HeuristicResult,
    run_move_loop,
)
from silvopt.optimization.heuristics.registry import Move, OperatorRegistry
from silvopt.optimization.parameters import MoveType, SimulatedAnnealingParameters
from silvopt.simulation.objective import Objective, ObjectiveEvaluator
from silvopt.simulation.trajectory import StandTrajectory
from silvopt.telemetry.watch import SnapshotSink

__all__ = ["AnnealingPolicy", "SimulatedAnnealing", "solve_sa"]


class AnnealingPolicy:
    """Acceptance schedule driven by a geometrically decaying mean acceptance probability.

    Disimproving moves are accepted with probability
    ``exp(ln(p) * |delta| / moving_average)`` where ``moving_average`` smooths the
    absolute objective change of accepted moves. Until a move has been accepted
    there is no scale for ``delta`` and disimproving moves are rejected.
    """

    def __init__(
        self,
        parameters: SimulatedAnnealingParameters,
        tree_count: int,
        registry: OperatorRegistry | None = None,
    ) -> None:
        self.parameters = parameters
        self.registry = registry or OperatorRegistry.for_tree_selection()
        self.move_type = parameters.move_type
        self.registry.use_only(self.move_type)
        self.reheat_after = parameters.resolved_reheat_after(tree_count)
        self.mean_acceptance_probability = parameters.initial_probability
        self.moving_average_of_objective_change = -1.0
        self.moving_average_memory = 1.0 - 1.0 / parameters.probability_window_length
        self.iterations_at_temperature = 0
        self.iterations_since_move_type_or_objective_change = 0
        self.iterations_since_reheat_or_objective_change = 0
        self.reheats = 0
        self.moves_unavailable = 0

    @property
    def log_mean_acceptance_probability(self) -> float:
        if self.mean_acceptance_probability > 0.0:
            return math.log(self.mean_acceptance_probability)
        return float("-inf")

    def acceptance_probability(self) -> float | None:
        return self.mean_acceptance_probability

    def generate(self, heuristic: Heuristic, iteration: int) -> Move | None:
        move = self.registry.propose(heuristic.operator_context())
        if move is None:
            self.moves_unavailable += 1
        return move

    def accept(self, heuristic: Heuristic, candidate_objective: float) -> bool:
        current = heuristic.current_objective
        accepted = candidate_objective > current
        log_probability = self.log_mean_acceptance_probability
        if (
            not accepted
            and log_probability > float("-inf")
            and self.moving_average_of_objective_change > 0.0
        ):
            # log_probability <= 0 and the change is <= 0, so the exponent is >= 0
            exponent = (
                log_probability * (candidate_objective - current)
                / self.moving_average_of_objective_change
            )
            if exponent < MAXIMUM_ACCEPTANCE_EXPONENT:
                accepted = heuristic.rng.random() < math.exp(-exponent)
        if accepted:
            change = abs(current - candidate_objective)
            if self.moving_average_of_objective_change < 0.0:
                self.moving_average_of_objective_change = change
            else:
                self.moving_average_of_objective_change = (
                    self.moving_average_memory * self.moving_average_of_objective_change
                    + (1.0 - self.moving_average_memory) * change
                )
        return accepted

    def after_move(self, heuristic: Heuristic, accepted: bool, iteration: int) -> bool:
        if accepted:
            self.iterations_since_move_type_or_objective_change = 0
            self.iterations_since_reheat_or_objective_change = 0
        else:
            self.iterations_since_move_type_or_objective_change += 1
            self.iterations_since_reheat_or_objective_change += 1

        change_after = self.parameters.change_to_exchange_after
        if (
            change_after is not None
            and self.move_type is MoveType.FLIP
            and self.iterations_since_move_type_or_objective_change > change_after
        ):
            self.move_type = MoveType.EXCHANGE
            self.registry.use_only(MoveType.EXCHANGE)
            self.iterations_since_move_type_or_objective_change = 0
        if self.iterations_since_reheat_or_objective_change > self.reheat_after:
            self.mean_acceptance_probability = min(
                self.mean_acceptance_probability + self.parameters.reheat_by, 1.0
            )
            self.iterations_since_reheat_or_objective_change = 0
            self.reheats += 1

        self.iterations_at_temperature += 1
        if self.iterations_at_temperature >= self.parameters.iterations_per_temperature:
            self.iterations_at_temperature = 0
            self.mean_acceptance_probability *= self.parameters.alpha
            if self.mean_acceptance_probability < self.parameters.final_probability:
                return False
        return True


class SimulatedAnnealing(Heuristic):
    """Simulated annealing with flip moves escalating to exchanges."""

    name = "sa"

    def __init__(
        self,
        trajectory: StandTrajectory,
        parameters: SimulatedAnnealingParameters | None = None,
        *,
        objective: Objective | None = None,
        evaluator: ObjectiveEvaluator | None = None,
        seed: int = 42,
        registry: OperatorRegistry | None = None,
    ) -> None:
        super().__init__(
            trajectory,
            parameters or SimulatedAnnealingParameters(),
            objective=objective,
            evaluator=evaluator,
            seed=seed,
        )
        self.parameters: SimulatedAnnealingParameters
        self.iterations = self.parameters.resolved_iterations(self.tree_count)
        self.policy = AnnealingPolicy(self.parameters, self.tree_count, registry)
        self.iterations_run = 0

    def expected_iterations(self) -> int | None:
        return self.iterations

    def search(self) -> None:
        self.iterations_run = run_move_loop(self, self.policy, self.iterations)

    def result_meta(self) -> dict[str, Any]:
        return {
            "iterations": self.iterations_run,
            "final_acceptance_probability": self.policy.mean_acceptance_probability,
            "move_type": self.policy.move_type.value,
            "reheats": self.policy.reheats,
            "moves_unavailable": self.policy.moves_unavailable,
            "operators": self.policy.registry.weights(),
        }


def solve_sa(
    trajectory: StandTrajectory,
    parameters: SimulatedAnnealingParameters | None = None,
    *,
    objective: Objective | None = None,
    evaluator: ObjectiveEvaluator | None = None,
    seed: int = 42,
    construct_from: StandTrajectory | None = None,
    telemetry_log: str | Path | None = None,
    telemetry_context: dict[str, Any] | None = None,
    watch_sink: SnapshotSink | None = None,
    watch_interval: int | None = None,
) -> HeuristicResult:
    """Optimize a trajectory's tree selection with simulated annealing.

    Parameters
    ----------
    trajectory : StandTrajectory
        Stand, thin periods, and planning horizon. The trajectory is copied; the
        caller's instance is not modified.
    parameters : SimulatedAnnealingParameters | None
        Annealing schedule. Defaults give ``10 * trees`` iterations with an initial
        acceptance probability of zero, i.e. hill climbing.
    objective : Objective | None
        Objective kind, rotation, and financial scenario index (default LEV at the
        last planning period).
    evaluator : ObjectiveEvaluator | None
        Financial scenarios to evaluate against.
    seed : int, default=42
        RNG seed used for deterministic runs.
    construct_from : StandTrajectory | None
        Optional warm start.
    telemetry_log, telemetry_context, watch_sink, watch_interval
        See :meth:`Heuristic.run`.

    Returns
    -------
    HeuristicResult
        Best and current trajectories, the objective trace, performance counters,
        and ``meta`` with ``iterations``, ``reheats``, ``move_type`` and telemetry ids.
    """

    annealer = SimulatedAnnealing(
        trajectory, parameters, objective=objective, evaluator=evaluator, seed=seed
    )
    return annealer.run(
        construct_from=construct_from,
        telemetry_log=telemetry_log,
        telemetry_context=telemetry_context,
        watch_sink=watch_sink,
        watch_interval=watch_interval,
    )
