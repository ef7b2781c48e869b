"""Prescription search: thinning intensities instead of per-tree schedules.

Both heuristics rewrite the from-above, proportional, and from-below
percentages of each thin and let the trajectory select trees deterministically
when it simulates. :class:`PrescriptionEnumeration` sweeps every combination on
a grid and keeps the best per (rotation length, financial scenario) cell;
:class:`PrescriptionCoordinateAscent` climbs one intensity at a time.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from silvopt.core.constants import DEFAULT_SOLUTION_POOL_SIZE
from silvopt.core.errors import SilvoptValueError
from silvopt.optimization.heuristics.common import Heuristic, HeuristicResult
from silvopt.optimization.parameters import PrescriptionParameters, PrescriptionUnits
from silvopt.simulation.objective import Objective, ObjectiveEvaluator
from silvopt.simulation.trajectory import StandTrajectory
from silvopt.simulation.treatments import MAXIMUM_THINS, ThinByPrescription
from silvopt.telemetry.watch import SnapshotSink

logger = logging.getLogger(__name__)

INTENSITY_TOLERANCE = 1e-6
METHODS = ("from_above", "proportional", "from_below")

Intensities = tuple[float, float, float]


@dataclass(frozen=True, slots=True)
class IntensityChange:
    """Reversible edit of one thin's prescription."""

    thin_index: int
    previous: Intensities
    new: Intensities

    def apply(self, trajectory: StandTrajectory) -> None:
        trajectory.set_prescription(self.thin_index, *self.new)

    def undo(self, trajectory: StandTrajectory) -> None:
        trajectory.set_prescription(self.thin_index, *self.previous)


@dataclass(frozen=True, slots=True)
class PrescriptionMoveRecord:
    move: int
    prescriptions: tuple[Intensities, ...]


def current_prescriptions(trajectory: StandTrajectory) -> tuple[Intensities, ...]:
    return tuple(
        harvest.intensities()
        for harvest in trajectory.treatments.harvests
        if isinstance(harvest, ThinByPrescription)
    )


def _records_frame(rows: list[dict[str, Any]]) -> pd.DataFrame:
    columns = [
        "rotation_index",
        "financial_index",
        "move",
        "thin",
        "from_above",
        "proportional",
        "from_below",
    ]
    return pd.DataFrame(rows, columns=columns)


def _record_rows(
    record: PrescriptionMoveRecord, rotation_index: int, financial_index: int
) -> list[dict[str, Any]]:
    return [
        {
            "rotation_index": rotation_index,
            "financial_index": financial_index,
            "move": record.move,
            "thin": thin,
            "from_above": above,
            "proportional": proportional,
            "from_below": below,
        }
        for thin, (above, proportional, below) in enumerate(record.prescriptions)
    ]


class PrescriptionFirstInFirstOutMoveLog:
    """Last ``capacity`` improving prescriptions for each (rotation, financial) cell."""

    def __init__(
        self,
        rotation_count: int = 1,
        financial_count: int = 1,
        capacity: int = DEFAULT_SOLUTION_POOL_SIZE,
    ) -> None:
        if rotation_count < 1 or financial_count < 1 or capacity < 1:
            raise SilvoptValueError("Move log dimensions and capacity must be positive")
        self.capacity = capacity
        self._cells = [
            [deque(maxlen=capacity) for _ in range(financial_count)]
            for _ in range(rotation_count)
        ]
        self.length_in_moves = 0

    def add(
        self,
        move: int,
        prescriptions: tuple[Intensities, ...],
        rotation_index: int = 0,
        financial_index: int = 0,
    ) -> None:
        self._cells[rotation_index][financial_index].append(
            PrescriptionMoveRecord(move, prescriptions)
        )

    def get(self, rotation_index: int = 0, financial_index: int = 0) -> list[PrescriptionMoveRecord]:
        return list(self._cells[rotation_index][financial_index])

    def to_frame(self) -> pd.DataFrame:
        rows: list[dict[str, Any]] = []
        for rotation_index, cells in enumerate(self._cells):
            for financial_index, records in enumerate(cells):
                for record in records:
                    rows.extend(_record_rows(record, rotation_index, financial_index))
        return _records_frame(rows)


class PrescriptionAllMoveLog:
    """Every evaluated prescription combination in evaluation order."""

    def __init__(self) -> None:
        self.records: list[PrescriptionMoveRecord] = []

    def __len__(self) -> int:
        return len(self.records)

    @property
    def length_in_moves(self) -> int:
        return len(self.records)

    def add(self, move: int, prescriptions: tuple[Intensities, ...]) -> None:
        self.records.append(PrescriptionMoveRecord(move, prescriptions))

    def to_frame(self) -> pd.DataFrame:
        rows: list[dict[str, Any]] = []
        for record in self.records:
            rows.extend(_record_rows(record, 0, 0))
        return _records_frame(rows)


class PrescriptionHeuristic(Heuristic):
    """Shared validation, intensity bounds, and move logging."""

    name = "prescription"
    evaluates_across_cells = False

    def __init__(
        self,
        trajectory: StandTrajectory,
        parameters: PrescriptionParameters | None = None,
        *,
        objective: Objective | None = None,
        evaluator: ObjectiveEvaluator | None = None,
        rotation_lengths: Sequence[int] | None = None,
        seed: int = 42,
    ) -> None:
        super().__init__(
            trajectory,
            parameters or PrescriptionParameters(),
            objective=objective,
            evaluator=evaluator,
            seed=seed,
        )
        self.parameters: PrescriptionParameters
        harvests = self.current_trajectory.treatments.harvests
        if len(harvests) > MAXIMUM_THINS:
            raise SilvoptValueError(
                f"Prescription search supports at most {MAXIMUM_THINS} thins, got {len(harvests)}"
            )
        if any(not isinstance(harvest, ThinByPrescription) for harvest in harvests):
            raise SilvoptValueError("Prescription search requires every thin to be a prescription")
        self.rotation_lengths = list(
            rotation_lengths or [self.objective.rotation_length or trajectory.last_planning_period]
        )
        self.thin_count = len(harvests)
        if self.parameters.log_all_moves:
            self.all_move_log: PrescriptionAllMoveLog | None = PrescriptionAllMoveLog()
            self.improving_move_log: PrescriptionFirstInFirstOutMoveLog | None = None
        else:
            self.all_move_log = None
            rotations = len(self.rotation_lengths) if self.evaluates_across_cells else 1
            scenarios = (
                len(self.evaluator.financial_scenarios) if self.evaluates_across_cells else 1
            )
            self.improving_move_log = PrescriptionFirstInFirstOutMoveLog(
                rotations, scenarios, self.parameters.log_last_n_improving_moves
            )

    @property
    def move_log(self) -> PrescriptionAllMoveLog | PrescriptionFirstInFirstOutMoveLog:
        if self.all_move_log is not None:
            return self.all_move_log
        assert self.improving_move_log is not None
        return self.improving_move_log

    @property
    def move_number(self) -> int:
        return len(self.objective_function_by_move)

    def intensity_bounds(
        self, thin_index: int, previous_intensity: float
    ) -> tuple[float, float, float]:
        """Minimum and maximum stem percentage removed by a thin, and the step size.

        ``previous_intensity`` is the cumulative percentage removed by earlier thins;
        the bounds and step grow by ``1 / (1 - previous / 100)`` so later thins
        remove comparable fractions of the original stocking.
        """

        parameters = self.parameters
        if not 0.0 <= previous_intensity <= 100.0:
            raise SilvoptValueError(
                f"Previous thinning intensity must be in [0, 100], got {previous_intensity}"
            )
        minimum = parameters.minimum_intensity
        maximum = parameters.maximum_intensity
        if parameters.units is PrescriptionUnits.BASAL_AREA_PER_HA_RETAINED:
            trajectory = self.current_trajectory
            self.counters.growth_model_timesteps += trajectory.simulate()
            period = trajectory.get_thin_period(thin_index)
            density = trajectory.density_by_period[period - 1]
            assert density is not None
            basal_area = density.basal_area_per_ha
            if basal_area <= 0.0:
                return 0.0, 0.0, parameters.maximum_intensity_step_size
            # retaining more basal area removes less
            minimum, maximum = (
                min(max(100.0 * (1.0 - parameters.maximum_intensity / basal_area), 0.0), 100.0),
                min(max(100.0 * (1.0 - parameters.minimum_intensity / basal_area), 0.0), 100.0),
            )

        allowed = (
            parameters.from_above_percentage_upper_limit
            + parameters.proportional_percentage_upper_limit
            + parameters.from_below_percentage_upper_limit
        )
        if allowed < minimum:
            raise SilvoptValueError(
                f"Percentage upper limits sum to {allowed}, below the minimum intensity {minimum}"
            )
        if previous_intensity >= 100.0:
            return 0.0, 0.0, parameters.maximum_intensity_step_size
        multiplier = 1.0 / (1.0 - 0.01 * previous_intensity)
        minimum = min(multiplier * minimum, maximum)
        step = min(
            multiplier * parameters.default_intensity_step_size,
            parameters.maximum_intensity_step_size,
        )
        return minimum, maximum, step

    def method_limits(self) -> Intensities:
        parameters = self.parameters
        return (
            parameters.from_above_percentage_upper_limit,
            parameters.proportional_percentage_upper_limit,
            parameters.from_below_percentage_upper_limit,
        )

    def previous_intensity(self, thin_index: int) -> float:
        """Cumulative stem percentage removed by thins before ``thin_index``."""

        removed = 0.0
        for index in range(thin_index):
            intensity = self.current_trajectory.treatments.prescription(index).intensity
            removed = intensity if index == 0 else removed + (100.0 - removed) * 0.01 * intensity
        return min(removed, 100.0)

    def result_meta(self) -> dict[str, Any]:
        return {
            "thins": self.thin_count,
            "prescriptions": [list(values) for values in current_prescriptions(self.best_trajectory)],
            "logged_moves": self.move_log.length_in_moves,
        }


class PrescriptionEnumeration(PrescriptionHeuristic):
    """Exhaustive grid over up to three thin prescriptions.

    Every fully specified combination is simulated once and scored for every
    rotation length that extends past the last thin and every financial scenario.
    ``financial_value`` holds the best value per cell and
    ``best_trajectory_by_cell`` the corresponding trajectories.
    """

    name = "prescription_enumeration"
    evaluates_across_cells = True

    def __init__(
        self,
        trajectory: StandTrajectory,
        parameters: PrescriptionParameters | None = None,
        *,
        objective: Objective | None = None,
        evaluator: ObjectiveEvaluator | None = None,
        rotation_lengths: Sequence[int] | None = None,
        seed: int = 42,
    ) -> None:
        super().__init__(
            trajectory,
            parameters,
            objective=objective,
            evaluator=evaluator,
            rotation_lengths=rotation_lengths,
            seed=seed,
        )
        shape = (len(self.rotation_lengths), len(self.evaluator.financial_scenarios))
        self.financial_value = np.full(shape, float("-inf"))
        self.best_trajectory_by_cell: dict[tuple[int, int], StandTrajectory] = {}
        self.combinations_evaluated = 0

    def enumerate_thinning_intensities(
        self, thin_index: int, previous_intensity: float
    ) -> Iterator[Intensities]:
        """Grid of (from above, proportional, from below) within the thin's bounds.

        Proportional and from-below percentages start at the smallest value that
        can still reach the minimum intensity.
        """

        minimum, maximum, step = self.intensity_bounds(thin_index, previous_intensity)
        above_limit, proportional_limit, below_limit = self.method_limits()
        tolerance = INTENSITY_TOLERANCE
        above = 0.0
        while above <= above_limit + tolerance:
            available = maximum - above
            maximum_proportional = min(available, proportional_limit)
            proportional = max(minimum - above - below_limit, 0.0)
            while proportional <= maximum_proportional + tolerance:
                maximum_below = min(available - proportional, below_limit)
                below = max(minimum - proportional - above, 0.0)
                while below <= maximum_below + tolerance:
                    yield (
                        round(min(above, above_limit), 6),
                        round(min(proportional, proportional_limit), 6),
                        round(min(below, below_limit), 6),
                    )
                    below += step
                proportional += step
            above += step

    def _evaluate_current_prescriptions(self) -> None:
        trajectory = self.current_trajectory
        candidate = self.evaluate(trajectory)
        self.combinations_evaluated += 1
        values = self.evaluator.evaluate_all(trajectory, self.rotation_lengths, self.objective.kind)
        prescriptions = current_prescriptions(trajectory)
        move = self.move_number
        for rotation_index in range(values.shape[0]):
            for financial_index in range(values.shape[1]):
                value = values[rotation_index, financial_index]
                if np.isnan(value) or value <= self.financial_value[rotation_index, financial_index]:
                    continue
                self.financial_value[rotation_index, financial_index] = value
                self.best_trajectory_by_cell[(rotation_index, financial_index)] = trajectory.copy()
                if self.improving_move_log is not None:
                    self.improving_move_log.add(move, prescriptions, rotation_index, financial_index)
        if self.all_move_log is not None:
            self.all_move_log.add(move, prescriptions)

        improved = self.offer_best(trajectory, candidate)
        self.current_objective = candidate
        self.record_move(improved, self.best_objective)
        self.report_step(move)

    def _descend(self, thin_index: int, previous_intensity: float) -> None:
        if thin_index == self.thin_count:
            self._evaluate_current_prescriptions()
            return
        for above, proportional, below in self.enumerate_thinning_intensities(
            thin_index, previous_intensity
        ):
            self.current_trajectory.set_prescription(thin_index, above, proportional, below)
            intensity = above + proportional + below
            if thin_index == 0:
                removed = intensity
            else:
                removed = previous_intensity + (100.0 - previous_intensity) * 0.01 * intensity
            self._descend(thin_index + 1, min(removed, 100.0))

    def search(self) -> None:
        self._descend(0, 0.0)
        if self.improving_move_log is not None:
            self.improving_move_log.length_in_moves = self.move_number - 1
        self.current_trajectory.copy_selection_from(self.best_trajectory)
        self.current_objective = self.best_objective
        logger.debug(
            "Enumerated %d prescription combinations for %s",
            self.combinations_evaluated,
            self.current_trajectory.name,
        )

    def result_meta(self) -> dict[str, Any]:
        meta = super().result_meta()
        meta["combinations_evaluated"] = self.combinations_evaluated
        meta["rotation_lengths"] = list(self.rotation_lengths)
        meta["financial_value"] = np.where(
            np.isfinite(self.financial_value), self.financial_value, np.nan
        ).tolist()
        return meta


class PrescriptionCoordinateAscent(PrescriptionHeuristic):
    """Hill climbing over thin intensities, one method of one thin at a time.

    Starts from a greedy seed (each thin in turn takes its best single-method
    intensity) or a warm-start trajectory. Steps shrink by
    ``step_size_multiplier`` at local maxima down to ``minimum_intensity_step_size``;
    then the search optionally restarts from a random prescription.
    """

    name = "prescription_ascent"

    def __init__(
        self,
        trajectory: StandTrajectory,
        parameters: PrescriptionParameters | None = None,
        *,
        objective: Objective | None = None,
        evaluator: ObjectiveEvaluator | None = None,
        seed: int = 42,
    ) -> None:
        super().__init__(
            trajectory, parameters, objective=objective, evaluator=evaluator, seed=seed
        )
        self.restarts = 0
        self.evaluations = 0

    def expected_iterations(self) -> int | None:
        return self.parameters.maximum_evaluations

    def _feasible(self, thin_index: int, intensities: Intensities) -> bool:
        limits = self.method_limits()
        if any(
            value < -INTENSITY_TOLERANCE or value > limit + INTENSITY_TOLERANCE
            for value, limit in zip(intensities, limits)
        ):
            return False
        minimum, maximum, _ = self.intensity_bounds(
            thin_index, self.previous_intensity(thin_index)
        )
        total = sum(intensities)
        return minimum - INTENSITY_TOLERANCE <= total <= maximum + INTENSITY_TOLERANCE

    def construct(self, source: StandTrajectory | None = None) -> None:
        if source is None:
            self._greedy_seed()
        super().construct(source)

    def _greedy_seed(self) -> None:
        trajectory = self.current_trajectory
        for thin_index in range(self.thin_count):
            minimum, maximum, step = self.intensity_bounds(
                thin_index, self.previous_intensity(thin_index)
            )
            limits = self.method_limits()
            best_value = float("-inf")
            best: Intensities | None = None
            for method, limit in enumerate(limits):
                intensity = minimum
                while intensity <= min(maximum, limit) + INTENSITY_TOLERANCE:
                    candidate = [0.0, 0.0, 0.0]
                    candidate[method] = round(intensity, 6)
                    trajectory.set_prescription(thin_index, *candidate)
                    value = self.evaluate(trajectory)
                    if value > best_value:
                        best_value = value
                        best = (candidate[0], candidate[1], candidate[2])
                    intensity += step
            if best is None:
                raise SilvoptValueError(
                    f"No feasible single-method prescription for thin {thin_index}"
                )
            trajectory.set_prescription(thin_index, *best)

    def _try(self, change: IntensityChange) -> bool:
        trajectory = self.current_trajectory
        change.apply(trajectory)
        candidate = self.evaluate(trajectory)
        self.evaluations += 1
        prescriptions = current_prescriptions(trajectory)
        accepted = candidate > self.current_objective
        if accepted:
            self.current_objective = candidate
            self.offer_best(trajectory, candidate)
        else:
            change.undo(trajectory)
        self.record_move(accepted)
        move = self.move_number - 1
        if self.all_move_log is not None:
            self.all_move_log.add(move, prescriptions)
        elif accepted and self.improving_move_log is not None:
            self.improving_move_log.add(move, prescriptions)
        self.report_step(move)
        return accepted

    def _step(self, thin_index: int, method: int, delta: float) -> bool:
        previous = self.current_trajectory.treatments.prescription(thin_index).intensities()
        values = list(previous)
        values[method] = round(values[method] + delta, 6)
        new = (values[0], values[1], values[2])
        if not self._feasible(thin_index, new):
            return False
        return self._try(IntensityChange(thin_index, previous, new))

    def _random_restart(self) -> None:
        trajectory = self.current_trajectory
        for thin_index in range(self.thin_count):
            minimum, maximum, _ = self.intensity_bounds(
                thin_index, self.previous_intensity(thin_index)
            )
            limits = self.method_limits()
            target = self.rng.uniform(minimum, maximum)
            weights = [self.rng.random() * (1.0 if limit > 0.0 else 0.0) for limit in limits]
            total_weight = sum(weights)
            if total_weight <= 0.0:
                continue
            values = [min(target * weight / total_weight, limit) for weight, limit in zip(weights, limits)]
            candidate = (round(values[0], 6), round(values[1], 6), round(values[2], 6))
            if self._feasible(thin_index, candidate):
                trajectory.set_prescription(thin_index, *candidate)
        self.current_objective = self.evaluate(trajectory)
        self.evaluations += 1
        self.offer_best(trajectory, self.current_objective)
        self.record_move(True)
        self.report_step(self.move_number - 1)

    def _exhausted(self) -> bool:
        return self.evaluations >= self.parameters.maximum_evaluations

    def search(self) -> None:
        parameters = self.parameters
        step = parameters.default_intensity_step_size
        dimensions = [
            (thin_index, method)
            for thin_index in range(self.thin_count)
            for method in range(len(METHODS))
        ]
        while dimensions and not self._exhausted():
            improved = False
            if parameters.stochastic:
                self.rng.shuffle(dimensions)
            for thin_index, method in dimensions:
                for direction in (1.0, -1.0):
                    if self._exhausted():
                        break
                    if not self._step(thin_index, method, direction * step):
                        continue
                    improved = True
                    if parameters.gradient:
                        # keep moving along an improving direction with growing steps
                        line_step = step
                        while not self._exhausted():
                            line_step = min(
                                line_step / parameters.step_size_multiplier,
                                parameters.maximum_intensity_step_size,
                            )
                            if not self._step(thin_index, method, direction * line_step):
                                break
                    break
            if improved:
                continue
            if step > parameters.minimum_intensity_step_size + INTENSITY_TOLERANCE:
                step = max(step * parameters.step_size_multiplier, parameters.minimum_intensity_step_size)
                continue
            if parameters.restart_on_local_maximum and self.restarts < parameters.maximum_restarts:
                self.restarts += 1
                self._random_restart()
                step = parameters.default_intensity_step_size
                continue
            break

        if self.improving_move_log is not None:
            self.improving_move_log.length_in_moves = self.move_number - 1
        self.current_trajectory.copy_selection_from(self.best_trajectory)
        self.current_objective = self.best_objective

    def result_meta(self) -> dict[str, Any]:
        meta = super().result_meta()
        meta["restarts"] = self.restarts
        meta["evaluations"] = self.evaluations
        return meta


def solve_prescription(
    trajectory: StandTrajectory,
    parameters: PrescriptionParameters | None = None,
    *,
    enumerate_all: bool = True,
    objective: Objective | None = None,
    evaluator: ObjectiveEvaluator | None = None,
    rotation_lengths: Sequence[int] | None = None,
    seed: int = 42,
    construct_from: StandTrajectory | None = None,
    telemetry_log: str | Path | None = None,
    telemetry_context: dict[str, Any] | None = None,
    watch_sink: SnapshotSink | None = None,
) -> HeuristicResult:
    """Run prescription enumeration (default) or coordinate ascent on ``trajectory``."""

    heuristic: PrescriptionHeuristic
    if enumerate_all:
        heuristic = PrescriptionEnumeration(
            trajectory,
            parameters,
            objective=objective,
            evaluator=evaluator,
            rotation_lengths=rotation_lengths,
            seed=seed,
        )
    else:
        heuristic = PrescriptionCoordinateAscent(
            trajectory, parameters, objective=objective, evaluator=evaluator, seed=seed
        )
    return heuristic.run(
        construct_from=construct_from,
        telemetry_log=telemetry_log,
        telemetry_context=telemetry_context,
        watch_sink=watch_sink,
    )


__all__ = [
    "IntensityChange",
    "PrescriptionAllMoveLog",
    "PrescriptionCoordinateAscent",
    "PrescriptionEnumeration",
    "PrescriptionFirstInFirstOutMoveLog",
    "PrescriptionHeuristic",
    "PrescriptionMoveRecord",
    "current_prescriptions",
    "solve_prescription",
]
