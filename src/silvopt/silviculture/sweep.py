"""Run a heuristic over every thinning combination of a silvicultural space."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import numpy as np

from silvopt.core.constants import NO_HARVEST_PERIOD
from silvopt.core.errors import SilvoptValueError
from silvopt.growth.base import GrowthModel, ValuationModel
from silvopt.optimization.heuristics.common import (
    Heuristic,
    HeuristicPerformanceCounters,
    HeuristicResult,
)
from silvopt.optimization.heuristics.prescription import PrescriptionEnumeration
from silvopt.silviculture.coordinate import SilviculturalCoordinate
from silvopt.silviculture.space import SilviculturalSpace
from silvopt.simulation.objective import Objective, ObjectiveEvaluator, ObjectiveKind
from silvopt.simulation.trajectory import StandTrajectory
from silvopt.simulation.treatments import ThinByPrescription, Treatments
from silvopt.stand.models import GrowthCalibration, StandConfig
from silvopt.stand.snapshot import StandSnapshot
from silvopt.telemetry import SnapshotSink

logger = logging.getLogger(__name__)

HeuristicFactory = Callable[[StandTrajectory, int], Heuristic]
"""Builds a heuristic for a trajectory and parameter set index."""


@dataclass(slots=True)
class SweepResult:
    """Heuristic results by (parameter, first, second, third thin index)."""

    results: dict[tuple[int, int, int, int], HeuristicResult] = field(default_factory=dict)
    counters: HeuristicPerformanceCounters = field(default_factory=HeuristicPerformanceCounters)
    warm_starts: int = 0
    duration_seconds: float = 0.0


@dataclass(slots=True)
class _Job:
    coordinate: SilviculturalCoordinate
    trajectory: StandTrajectory
    warm_start: StandTrajectory | None = None


def transfer_schedule(target: StandTrajectory, source: StandTrajectory) -> StandTrajectory:
    """Copy of ``target`` carrying ``source``'s schedule, thin by thin.

    Both trajectories must have the same number of thins; the i-th thin of
    ``source`` maps onto the i-th thin of ``target`` whatever their periods.
    """

    target = target.copy()
    source_periods = source.treatments.harvest_periods()
    target_periods = target.treatments.harvest_periods()
    if len(source_periods) != len(target_periods):
        raise SilvoptValueError(
            f"Cannot transfer a {len(source_periods)} thin schedule onto {len(target_periods)} thins"
        )
    period_map = {NO_HARVEST_PERIOD: NO_HARVEST_PERIOD, **dict(zip(source_periods, target_periods))}
    for thin_index, harvest in enumerate(source.treatments.harvests):
        if isinstance(harvest, ThinByPrescription) and isinstance(
            target.treatments.harvests[thin_index], ThinByPrescription
        ):
            target.set_prescription(thin_index, *harvest.intensities())
    selection = source.tree_selection.as_flat()
    mapped = np.array([period_map[int(period)] for period in selection], dtype=np.int32)
    for tree_index in np.flatnonzero(mapped != target.tree_selection.as_flat()):
        target.set_tree_selection(int(tree_index), int(mapped[tree_index]))
    return target


def _evaluate_cells(
    space: SilviculturalSpace,
    coordinate: SilviculturalCoordinate,
    result: HeuristicResult,
    evaluator: ObjectiveEvaluator,
    kind: ObjectiveKind,
    by_cell: dict[tuple[int, int], StandTrajectory] | None,
) -> None:
    for rotation_index, rotation in enumerate(space.rotation_lengths):
        for financial_index in range(len(space.financial_scenarios)):
            cell = coordinate.with_cell(rotation_index, financial_index)
            if not space.is_valid(cell):
                continue
            trajectory = result.best_trajectory
            if by_cell is not None and (rotation_index, financial_index) in by_cell:
                trajectory = by_cell[(rotation_index, financial_index)]
            value = evaluator.evaluate(
                trajectory,
                Objective(kind=kind, rotation_length=rotation, financial_index=financial_index),
            )
            space.assimilate_into_coordinate(trajectory, value, cell)
            if cell not in space.coordinates_evaluated:
                space.add_evaluated_coordinate(cell)


def optimize_space(
    stand: StandConfig | StandSnapshot,
    space: SilviculturalSpace,
    heuristic_factory: HeuristicFactory,
    *,
    prescriptions: bool = False,
    kind: ObjectiveKind = ObjectiveKind.LAND_EXPECTATION_VALUE,
    last_planning_period: int | None = None,
    growth_model: GrowthModel | None = None,
    valuation: ValuationModel | None = None,
    calibration: GrowthCalibration | None = None,
    max_workers: int | None = None,
    watch_sink: SnapshotSink | None = None,
) -> SweepResult:
    """Optimize every (parameter set, thinning) combination and fill the space's cells.

    Parameters
    ----------
    stand:
        Initial condition shared by every trajectory.
    space:
        Cells to fill. Existing pool contents are used as warm starts.
    heuristic_factory:
        ``(trajectory, parameter_index) -> Heuristic``.
    prescriptions:
        Thin by prescription rather than by individual tree selection.
    kind:
        Objective used to value each (rotation, financial) cell.
    max_workers:
        Thread count. ``None`` or ``1`` runs combinations one after another, which
        lets later combinations warm start from earlier ones.
    watch_sink:
        Progress snapshots from every heuristic run, labelled with the thin periods
        of the combination in their ``combination`` metadata.
    """

    start = time.perf_counter()
    evaluator = ObjectiveEvaluator(space.financial_scenarios)
    horizon = last_planning_period or max(space.rotation_lengths)
    sweep = SweepResult()

    def job_for(coordinate: SilviculturalCoordinate) -> _Job:
        periods = space.thin_periods(coordinate)
        treatments = (
            Treatments.prescriptions(periods)
            if prescriptions
            else Treatments.individual_tree_selection(periods)
        )
        trajectory = StandTrajectory(
            stand,
            horizon,
            treatments=treatments,
            growth_model=growth_model,
            valuation=valuation,
            calibration=calibration,
        )
        job = _Job(coordinate, trajectory)
        neighbor = space.try_get_self_or_find_nearest_neighbor(coordinate)
        if neighbor is not None:
            pool, _ = neighbor
            high = pool.high_trajectory
            if high is not None:
                job.warm_start = transfer_schedule(trajectory, high)
                sweep.warm_starts += 1
        return job

    def run_job(heuristic: Heuristic, job: _Job) -> HeuristicResult:
        label = "-".join(str(period) for period in space.thin_periods(job.coordinate)) or "none"
        return heuristic.run(
            construct_from=job.warm_start,
            watch_sink=watch_sink,
            watch_metadata={"combination": label},
        )

    def record(job: _Job, result: HeuristicResult, heuristic_cells: dict | None) -> None:
        coordinate = job.coordinate
        key = (coordinate.parameter_index, *coordinate.thin_indices)
        sweep.results[key] = result
        sweep.counters += result.counters
        _evaluate_cells(space, coordinate, result, evaluator, kind, heuristic_cells)

    # one job per thinning combination, anchored at its first valid (rotation, financial) cell
    anchors: list[SilviculturalCoordinate] = []
    seen: set[tuple[int, int, int, int]] = set()
    for coordinate in space.coordinates():
        key = (coordinate.parameter_index, *coordinate.thin_indices)
        if key not in seen:
            seen.add(key)
            anchors.append(coordinate)
    logger.info("Sweeping %d thinning combinations across %d cells", len(anchors), len(space))

    if max_workers is None or max_workers <= 1 or len(anchors) == 1:
        for anchor in anchors:
            job = job_for(anchor)
            heuristic = heuristic_factory(job.trajectory, anchor.parameter_index)
            result = run_job(heuristic, job)
            record(job, result, _cells_of(heuristic, space))
    else:
        jobs = [job_for(anchor) for anchor in anchors]

        def _execute(job: _Job) -> tuple[HeuristicResult, dict | None]:
            heuristic = heuristic_factory(job.trajectory, job.coordinate.parameter_index)
            return run_job(heuristic, job), _cells_of(heuristic, space)

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            outcomes = list(executor.map(_execute, jobs))
        for job, (result, cells) in zip(jobs, outcomes):
            record(job, result, cells)

    sweep.duration_seconds = time.perf_counter() - start
    counters = space.get_pool_performance_counters()
    logger.info(
        "Sweep finished in %.1f s: %d solutions cached, %d accepted, %d rejected",
        sweep.duration_seconds,
        counters.solutions_cached,
        counters.solutions_accepted,
        counters.solutions_rejected,
    )
    return sweep


def _cells_of(
    heuristic: Heuristic, space: SilviculturalSpace
) -> dict[tuple[int, int], StandTrajectory] | None:
    """Per-cell best trajectories from enumeration runs over the space's own cells."""

    if (
        isinstance(heuristic, PrescriptionEnumeration)
        and heuristic.rotation_lengths == space.rotation_lengths
        and len(heuristic.evaluator.financial_scenarios) == len(space.financial_scenarios)
    ):
        return heuristic.best_trajectory_by_cell
    return None


__all__ = ["HeuristicFactory", "SweepResult", "optimize_space", "transfer_schedule"]
