"""Shared heuristic machinery: run state, construction, move driver, and reporting."""

from __future__ import annotations

import logging
import random as _random
import time
from contextlib import nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import pandas as pd

from silvopt.core.constants import NO_HARVEST_PERIOD
from silvopt.optimization.heuristics.registry import Move, OperatorContext
from silvopt.optimization.parameters import HeuristicParameters
from silvopt.simulation.objective import Objective, ObjectiveEvaluator
from silvopt.simulation.trajectory import StandTrajectory
from silvopt.telemetry import RunTelemetryLogger
from silvopt.telemetry.watch import Snapshot, SnapshotSink

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HeuristicPerformanceCounters:
    moves_accepted: int = 0
    moves_rejected: int = 0
    growth_model_timesteps: int = 0
    trees_randomized_in_construction: int = 0
    duration_seconds: float = 0.0

    def __iadd__(self, other: HeuristicPerformanceCounters) -> HeuristicPerformanceCounters:
        self.moves_accepted += other.moves_accepted
        self.moves_rejected += other.moves_rejected
        self.growth_model_timesteps += other.growth_model_timesteps
        self.trees_randomized_in_construction += other.trees_randomized_in_construction
        self.duration_seconds += other.duration_seconds
        return self

    def as_dict(self) -> dict[str, float]:
        return {
            "moves_accepted": self.moves_accepted,
            "moves_rejected": self.moves_rejected,
            "growth_model_timesteps": self.growth_model_timesteps,
            "trees_randomized_in_construction": self.trees_randomized_in_construction,
            "duration_seconds": round(self.duration_seconds, 6),
        }


@dataclass(slots=True)
class HeuristicResult:
    """Outcome of one heuristic run."""

    heuristic: str
    best_objective: float
    best_trajectory: StandTrajectory
    current_trajectory: StandTrajectory
    objective_function_by_move: list[float]
    best_objective_by_move: list[float]
    counters: HeuristicPerformanceCounters
    meta: dict[str, Any] = field(default_factory=dict)

    def to_frame(self) -> pd.DataFrame:
        """Objective trace with one row per move (row 0 is the constructed solution)."""
        return pd.DataFrame(
            {
                "move": range(len(self.objective_function_by_move)),
                "objective": self.objective_function_by_move,
                "best_objective": self.best_objective_by_move,
            }
        )


class MovePolicy(Protocol):
    """Algorithm-specific decisions plugged into :func:`run_move_loop`."""

    def generate(self, heuristic: Heuristic, iteration: int) -> Move | None:
        """Propose the next move, or None when no move is available this iteration."""

    def accept(self, heuristic: Heuristic, candidate_objective: float) -> bool:
        """Decide whether the just-evaluated candidate replaces the current solution."""

    def after_move(self, heuristic: Heuristic, accepted: bool, iteration: int) -> bool:
        """Update policy state; return False to stop the search."""

    def acceptance_probability(self) -> float | None:
        """Current acceptance probability, for reporting."""


class Heuristic:
    """Run state shared by every heuristic.

    Subclasses implement :meth:`search`. The run moves through construction
    (random or warm-started schedule), the search itself, and finalization; the
    caller's trajectory is copied and never modified.
    """

    name = "heuristic"

    def __init__(
        self,
        trajectory: StandTrajectory,
        parameters: HeuristicParameters | None = None,
        *,
        objective: Objective | None = None,
        evaluator: ObjectiveEvaluator | None = None,
        seed: int = 42,
    ) -> None:
        self.parameters = parameters or HeuristicParameters()
        self.objective = objective or Objective()
        self.evaluator = evaluator or ObjectiveEvaluator()
        self.seed = seed
        self.rng = _random.Random(seed)
        self.current_trajectory = trajectory.copy()
        self.best_trajectory = self.current_trajectory
        self.current_objective = float("-inf")
        self.best_objective = float("-inf")
        self.objective_function_by_move: list[float] = []
        self.best_objective_by_move: list[float] = []
        self.counters = HeuristicPerformanceCounters()
        self._run_logger: RunTelemetryLogger | None = None
        self._watch_sink: SnapshotSink | None = None
        self._watch_interval = 1
        self._watch_metadata: dict[str, str] = {}
        self._max_iterations: int | None = None
        self._run_start = 0.0

    @property
    def tree_count(self) -> int:
        return len(self.current_trajectory.tree_selection)

    def operator_context(self, trajectory: StandTrajectory | None = None) -> OperatorContext:
        return OperatorContext(trajectory or self.current_trajectory, self.rng)

    def evaluate(self, trajectory: StandTrajectory) -> float:
        """Simulate any pending edits and score ``trajectory`` against the objective."""

        self.counters.growth_model_timesteps += trajectory.simulate()
        return self.evaluator.evaluate(trajectory, self.objective)

    def randomize_selection(self, trajectory: StandTrajectory, probability: float) -> int:
        """Schedule each tree for a random thin with ``probability``; return trees scheduled."""

        periods = trajectory.tree_selection.harvest_periods
        if probability <= 0.0 or not periods:
            return 0
        scheduled = 0
        for tree_index in range(len(trajectory.tree_selection)):
            if self.rng.random() < probability:
                trajectory.set_tree_selection(tree_index, periods[self.rng.randrange(len(periods))])
                scheduled += 1
            else:
                trajectory.set_tree_selection(tree_index, NO_HARVEST_PERIOD)
        return scheduled

    def construct(self, source: StandTrajectory | None = None) -> None:
        """Seed the current schedule, evaluate it, and start the objective trace."""

        if source is not None:
            self.current_trajectory.copy_selection_from(source)
        else:
            self.counters.trees_randomized_in_construction += self.randomize_selection(
                self.current_trajectory, self.parameters.initial_thinning_probability
            )
        self.current_objective = self.evaluate(self.current_trajectory)
        self.best_objective = self.current_objective
        self.best_trajectory = self.current_trajectory.copy()
        self.objective_function_by_move = [self.current_objective]
        self.best_objective_by_move = [self.best_objective]

    def offer_best(self, trajectory: StandTrajectory, objective: float) -> bool:
        """Replace the best trajectory with a copy of ``trajectory`` if strictly better."""

        if objective > self.best_objective:
            self.best_objective = objective
            self.best_trajectory = trajectory.copy()
            return True
        return False

    def record_move(self, accepted: bool, objective: float | None = None) -> None:
        """Append the post-decision objective; ``objective`` defaults to the current one."""

        if accepted:
            self.counters.moves_accepted += 1
        else:
            self.counters.moves_rejected += 1
        self.objective_function_by_move.append(
            self.current_objective if objective is None else objective
        )
        self.best_objective_by_move.append(self.best_objective)

    def search(self) -> None:
        raise NotImplementedError

    def config_snapshot(self) -> dict[str, Any]:
        return {
            "parameters": self.parameters.model_dump(mode="json"),
            "objective": self.objective.model_dump(mode="json"),
        }

    def report_step(
        self,
        step: int,
        *,
        acceptance_probability: float | None = None,
        force: bool = False,
    ) -> None:
        """Emit telemetry step records and watch snapshots at their configured cadence."""

        run_logger = self._run_logger
        if run_logger and (force or run_logger.should_log_step(step, self._max_iterations)):
            run_logger.log_step(
                step=step,
                objective=float(self.current_objective),
                best_objective=float(self.best_objective),
                acceptance_probability=acceptance_probability,
                moves_accepted=self.counters.moves_accepted,
                moves_rejected=self.counters.moves_rejected,
            )
        sink = self._watch_sink
        if sink and (
            force
            or step == 1
            or step == self._max_iterations
            or step % self._watch_interval == 0
        ):
            sink(
                Snapshot(
                    stand=self.current_trajectory.name,
                    heuristic=self.name,
                    iteration=step,
                    max_iterations=self._max_iterations,
                    objective=float(self.current_objective),
                    best_objective=float(self.best_objective),
                    runtime_seconds=time.perf_counter() - self._run_start,
                    acceptance_probability=acceptance_probability,
                    moves_accepted=self.counters.moves_accepted,
                    moves_rejected=self.counters.moves_rejected,
                    metadata=dict(self._watch_metadata),
                )
            )

    def expected_iterations(self) -> int | None:
        return None

    def run(
        self,
        *,
        construct_from: StandTrajectory | None = None,
        telemetry_log: str | Path | None = None,
        telemetry_context: dict[str, Any] | None = None,
        watch_sink: SnapshotSink | None = None,
        watch_interval: int | None = None,
        watch_metadata: dict[str, str] | None = None,
    ) -> HeuristicResult:
        """Construct, search, and return the result.

        Parameters
        ----------
        construct_from : StandTrajectory | None
            Warm start: copy this trajectory's tree selection and prescriptions
            instead of randomizing the initial schedule.
        telemetry_log : str | pathlib.Path | None
            Optional JSONL path. When provided, a run record is appended and step
            records are written under ``steps/`` beside it.
        telemetry_context : dict[str, Any] | None
            Extra metadata merged into the run record; ``step_interval`` sets the
            step logging cadence (default 100).
        watch_sink : SnapshotSink | None
            Optional callback receiving :class:`~silvopt.telemetry.watch.Snapshot`
            progress updates.
        watch_interval : int | None
            Moves between snapshots. Defaults to ``max(1, iterations / 200)``.
        watch_metadata : dict[str, str] | None
            Extra labels attached to each snapshot.
        """

        context_payload = dict(telemetry_context or {})
        step_interval = context_payload.pop("step_interval", 100)
        self._max_iterations = self.expected_iterations()
        self._watch_sink = watch_sink
        self._watch_interval = watch_interval or max(1, (self._max_iterations or 200) // 200)
        self._watch_metadata = dict(watch_metadata or {})

        telemetry_logger: RunTelemetryLogger | None = None
        if telemetry_log:
            telemetry_logger = RunTelemetryLogger(
                log_path=Path(telemetry_log),
                heuristic=self.name,
                stand=self.current_trajectory.name,
                seed=self.seed,
                config=self.config_snapshot(),
                context={
                    "trees": self.tree_count,
                    "thin_periods": list(self.current_trajectory.treatments.harvest_periods()),
                    "last_planning_period": self.current_trajectory.last_planning_period,
                    **context_payload,
                },
                step_interval=step_interval
                if isinstance(step_interval, int) and step_interval > 0
                else None,
            )

        self._run_start = time.perf_counter()
        with telemetry_logger if telemetry_logger else nullcontext() as run_logger:
            self._run_logger = run_logger
            self.construct(construct_from)
            self.search()
            # leave the current trajectory simulated even if the last move was undone
            self.counters.growth_model_timesteps += self.current_trajectory.simulate()
            self.counters.duration_seconds = time.perf_counter() - self._run_start
            self.report_step(len(self.objective_function_by_move) - 1, force=True)
            if run_logger:
                run_logger.finalize(
                    status="ok",
                    metrics={
                        "best_objective": float(self.best_objective),
                        "current_objective": float(self.current_objective),
                        "moves": len(self.objective_function_by_move) - 1,
                        **self.counters.as_dict(),
                    },
                    extra=self.result_meta(),
                )
        self._run_logger = None

        logger.info(
            "%s on %s: best objective %.3f after %d moves (%d accepted, %d timesteps)",
            self.name,
            self.current_trajectory.name,
            self.best_objective,
            len(self.objective_function_by_move) - 1,
            self.counters.moves_accepted,
            self.counters.growth_model_timesteps,
        )
        meta = self.result_meta()
        if telemetry_logger:
            meta["telemetry_run_id"] = telemetry_logger.run_id
            meta["telemetry_log_path"] = str(telemetry_logger.log_path)
            if telemetry_logger.steps_path:
                meta["telemetry_steps_path"] = str(telemetry_logger.steps_path)
        return HeuristicResult(
            heuristic=self.name,
            best_objective=self.best_objective,
            best_trajectory=self.best_trajectory,
            current_trajectory=self.current_trajectory,
            objective_function_by_move=list(self.objective_function_by_move),
            best_objective_by_move=list(self.best_objective_by_move),
            counters=self.counters,
            meta=meta,
        )

    def result_meta(self) -> dict[str, Any]:
        return {}


def run_move_loop(heuristic: Heuristic, policy: MovePolicy, iterations: int) -> int:
    """Generic generate / evaluate / accept / undo loop; returns iterations run.

    Rejected moves are undone in place on the current trajectory, which then
    re-simulates lazily from the earliest period the undo touched.
    """

    trajectory = heuristic.current_trajectory
    iteration = 0
    for iteration in range(1, iterations + 1):
        move = policy.generate(heuristic, iteration)
        accepted = False
        if move is not None:
            move.apply(trajectory)
            candidate = heuristic.evaluate(trajectory)
            accepted = policy.accept(heuristic, candidate)
            if accepted:
                heuristic.current_objective = candidate
                heuristic.offer_best(trajectory, candidate)
            else:
                move.undo(trajectory)
        heuristic.record_move(accepted)
        keep_going = policy.after_move(heuristic, accepted, iteration)
        heuristic.report_step(iteration, acceptance_probability=policy.acceptance_probability())
        if not keep_going:
            break
    return iteration


__all__ = [
    "Heuristic",
    "HeuristicPerformanceCounters",
    "HeuristicResult",
    "MovePolicy",
    "run_move_loop",
]
