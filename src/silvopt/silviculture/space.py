"""Sparse cache of optimization results over parameter sets, thins, rotations, and finances."""

from __future__ import annotations

import itertools
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd

from silvopt.core.constants import DEFAULT_SOLUTION_POOL_SIZE, NO_HARVEST_PERIOD
from silvopt.core.errors import PoolCapacityError, SilvoptValueError
from silvopt.silviculture.coordinate import SilviculturalCoordinate
from silvopt.silviculture.pool import CoordinateExploration, SilviculturalPrescriptionPool
from silvopt.simulation.trajectory import StandTrajectory
from silvopt.stand.models import FinancialScenario


@dataclass(frozen=True, slots=True)
class PoolPerformanceCounters:
    solutions_cached: int = 0
    solutions_accepted: int = 0
    solutions_rejected: int = 0


def _ring_order(origin: Sequence[int], candidates: Sequence[tuple[int, ...]]) -> list[tuple[int, ...]]:
    """Sort index tuples breadth first outward from ``origin``.

    Rings are Chebyshev distance; within a ring closer Manhattan distance comes
    first and, on ties, differences in earlier axes before later ones.
    """

    def key(candidate: tuple[int, ...]) -> tuple:
        offsets = [abs(value - base) for value, base in zip(candidate, origin)]
        return (max(offsets, default=0), sum(offsets), tuple(reversed(offsets)), candidate)

    return sorted(candidates, key=key)


class SilviculturalSpace:
    """Cells indexed by :class:`SilviculturalCoordinate`, allocated only where meaningful.

    A cell exists when a present second thin follows a present first thin, a
    present third thin follows a present second thin, and the rotation ends after
    the last thin. Cells live in an arena addressed through a linear offset over the
    full six dimensional shape; a validity bitmap marks the offsets that have one.

    Parameters
    ----------
    parameter_count:
        Number of heuristic parameter sets swept.
    first_thin_periods / second_thin_periods / third_thin_periods:
        Candidate periods for each thin; ``0`` stands for no thin.
    rotation_lengths:
        Candidate rotation lengths, in planning periods.
    financial_scenarios:
        Scenarios cells are valued under.
    pool_capacity:
        Solutions retained per cell.
    """

    def __init__(
        self,
        parameter_count: int = 1,
        first_thin_periods: Sequence[int] = (NO_HARVEST_PERIOD,),
        second_thin_periods: Sequence[int] = (NO_HARVEST_PERIOD,),
        third_thin_periods: Sequence[int] = (NO_HARVEST_PERIOD,),
        rotation_lengths: Sequence[int] = (),
        financial_scenarios: Sequence[FinancialScenario] | None = None,
        pool_capacity: int = DEFAULT_SOLUTION_POOL_SIZE,
    ) -> None:
        if parameter_count < 1:
            raise SilvoptValueError(f"At least one parameter set is required, got {parameter_count}")
        for label, periods in (
            ("first thin", first_thin_periods),
            ("second thin", second_thin_periods),
            ("third thin", third_thin_periods),
            ("rotation length", rotation_lengths),
        ):
            if len(periods) == 0:
                raise SilvoptValueError(f"At least one {label} period is required")
            if any(period < 0 for period in periods):
                raise SilvoptValueError(f"{label.capitalize()} periods must be non-negative")
        self.parameter_count = parameter_count
        self.first_thin_periods = list(first_thin_periods)
        self.second_thin_periods = list(second_thin_periods)
        self.third_thin_periods = list(third_thin_periods)
        self.rotation_lengths = list(rotation_lengths)
        self.financial_scenarios = list(financial_scenarios or [FinancialScenario()])
        self.pool_capacity = pool_capacity
        self.coordinates_evaluated: list[SilviculturalCoordinate] = []

        self.shape = (
            parameter_count,
            len(self.first_thin_periods),
            len(self.second_thin_periods),
            len(self.third_thin_periods),
            len(self.rotation_lengths),
            len(self.financial_scenarios),
        )
        size = int(np.prod(self.shape))
        self._valid = np.zeros(size, dtype=bool)
        self._slots = np.full(size, -1, dtype=np.int64)
        self._arena: list[CoordinateExploration] = []
        for indices in itertools.product(*(range(extent) for extent in self.shape)):
            if not self._allocatable(indices):
                continue
            offset = int(np.ravel_multi_index(indices, self.shape))
            self._valid[offset] = True
            self._slots[offset] = len(self._arena)
            self._arena.append(CoordinateExploration.create(pool_capacity))

    def _thin_periods_of(self, first: int, second: int, third: int) -> tuple[int, int, int]:
        return (
            self.first_thin_periods[first],
            self.second_thin_periods[second],
            self.third_thin_periods[third],
        )

    def thins_are_ordered(self, first: int, second: int, third: int) -> bool:
        first_period, second_period, third_period = self._thin_periods_of(first, second, third)
        if second_period != NO_HARVEST_PERIOD and not (
            first_period != NO_HARVEST_PERIOD and second_period > first_period
        ):
            return False
        if third_period != NO_HARVEST_PERIOD and not (
            second_period != NO_HARVEST_PERIOD and third_period > second_period
        ):
            return False
        return True

    def _allocatable(self, indices: tuple[int, ...]) -> bool:
        _, first, second, third, rotation, _ = indices
        if not self.thins_are_ordered(first, second, third):
            return False
        return self.rotation_lengths[rotation] > max(self._thin_periods_of(first, second, third))

    def _offset(self, coordinate: SilviculturalCoordinate) -> int:
        indices = coordinate.as_tuple()
        if any(not 0 <= index < extent for index, extent in zip(indices, self.shape)):
            raise SilvoptValueError(f"{coordinate} is outside a space of shape {self.shape}")
        return int(np.ravel_multi_index(indices, self.shape))

    def is_valid(self, coordinate: SilviculturalCoordinate) -> bool:
        try:
            return bool(self._valid[self._offset(coordinate)])
        except SilvoptValueError:
            return False

    def __getitem__(self, coordinate: SilviculturalCoordinate) -> CoordinateExploration:
        offset = self._offset(coordinate)
        if not self._valid[offset]:
            raise SilvoptValueError(
                f"{coordinate} is not a valid cell: thins are out of order or the rotation "
                "does not extend past the last thin"
            )
        return self._arena[int(self._slots[offset])]

    def __len__(self) -> int:
        return len(self._arena)

    def coordinates(self) -> Iterator[SilviculturalCoordinate]:
        for offset in np.flatnonzero(self._valid):
            indices = np.unravel_index(int(offset), self.shape)
            yield SilviculturalCoordinate(*(int(index) for index in indices))

    def thin_periods(self, coordinate: SilviculturalCoordinate) -> tuple[int, ...]:
        """Present thin periods of ``coordinate`` in order."""

        return tuple(
            period
            for period in self._thin_periods_of(*coordinate.thin_indices)
            if period != NO_HARVEST_PERIOD
        )

    def rotation_length(self, coordinate: SilviculturalCoordinate) -> int:
        return self.rotation_lengths[coordinate.rotation_index]

    def add_evaluated_coordinate(self, coordinate: SilviculturalCoordinate) -> None:
        self._offset(coordinate)
        if coordinate in self.coordinates_evaluated:
            raise SilvoptValueError(f"{coordinate} has already been evaluated")
        self.coordinates_evaluated.append(coordinate)

    def verify_stand_entries(
        self, trajectory: StandTrajectory, coordinate: SilviculturalCoordinate
    ) -> None:
        """Raise if ``trajectory``'s thins or horizon do not match ``coordinate``."""

        expected = self._thin_periods_of(*coordinate.thin_indices)
        actual = (
            trajectory.get_first_thin_period(),
            trajectory.get_second_thin_period(),
            trajectory.get_third_thin_period(),
        )
        rotation = self.rotation_length(coordinate)
        if actual != expected or trajectory.last_planning_period < rotation:
            raise SilvoptValueError(
                f"Trajectory thins {actual} and horizon {trajectory.last_planning_period} do not "
                f"match coordinate thins {expected} and rotation {rotation}"
            )

    def assimilate_into_coordinate(
        self,
        trajectory: StandTrajectory,
        financial_value: float,
        coordinate: SilviculturalCoordinate,
    ) -> bool:
        """Record ``financial_value`` and offer ``trajectory`` to the cell's pool."""

        self.verify_stand_entries(trajectory, coordinate)
        element = self[coordinate]
        element.distribution.add(financial_value)
        return element.pool.try_add_or_replace(trajectory, financial_value)

    def get_high_trajectory(self, coordinate: SilviculturalCoordinate) -> StandTrajectory:
        trajectory = self[coordinate].pool.high_trajectory
        if trajectory is None:
            raise SilvoptValueError(f"Pool at {coordinate} has no trajectories")
        return trajectory

    def get_pool_performance_counters(self) -> PoolPerformanceCounters:
        cached = accepted = rejected = 0
        for element in self._arena:
            cached += element.pool.solutions_in_pool
            accepted += element.pool.solutions_accepted
            rejected += element.pool.solutions_rejected
        return PoolPerformanceCounters(cached, accepted, rejected)

    def iter_pools(self) -> Iterator[tuple[SilviculturalCoordinate, SilviculturalPrescriptionPool]]:
        """Yield every allocated cell's pool, checking pool capacities agree."""

        for coordinate in self.coordinates():
            pool = self[coordinate].pool
            if pool.capacity != self.pool_capacity:
                raise PoolCapacityError(
                    f"Pool at {coordinate} holds {pool.capacity} solutions, "
                    f"space expects {self.pool_capacity}"
                )
            yield coordinate, pool

    def _thin_count(self, first: int, second: int, third: int) -> int:
        return sum(
            period != NO_HARVEST_PERIOD for period in self._thin_periods_of(first, second, third)
        )

    def try_get_self_or_find_nearest_neighbor(
        self, coordinate: SilviculturalCoordinate
    ) -> tuple[SilviculturalPrescriptionPool, SilviculturalCoordinate] | None:
        """Closest non-empty pool with the same parameter set and number of thins.

        Thin positions are searched breadth first outward from ``coordinate``; within
        each, rotation lengths and financial scenarios are searched outward with
        rotation changes preferred over financial ones. Returns ``None`` when every
        candidate pool is empty.
        """

        self._offset(coordinate)
        thin_count = self._thin_count(*coordinate.thin_indices)
        thin_candidates = [
            indices
            for indices in itertools.product(
                range(self.shape[1]), range(self.shape[2]), range(self.shape[3])
            )
            if self._thin_count(*indices) == thin_count and self.thins_are_ordered(*indices)
        ]
        cells = list(itertools.product(range(self.shape[4]), range(self.shape[5])))
        cell_order = _ring_order((coordinate.rotation_index, coordinate.financial_index), cells)
        for thins in _ring_order(coordinate.thin_indices, thin_candidates):
            for rotation_index, financial_index in cell_order:
                candidate = coordinate.with_thins(*thins).with_cell(rotation_index, financial_index)
                offset = int(np.ravel_multi_index(candidate.as_tuple(), self.shape))
                if not self._valid[offset]:
                    continue
                pool = self._arena[int(self._slots[offset])].pool
                if pool.solutions_in_pool > 0:
                    return pool, candidate
        return None

    def to_frame(self) -> pd.DataFrame:
        """One row per allocated cell with its thins, rotation, and pool summary."""

        rows = []
        for coordinate in self.coordinates():
            element = self[coordinate]
            first, second, third = self._thin_periods_of(*coordinate.thin_indices)
            rows.append(
                {
                    "parameter_index": coordinate.parameter_index,
                    "first_thin_period": first,
                    "second_thin_period": second,
                    "third_thin_period": third,
                    "rotation_length": self.rotation_length(coordinate),
                    "financial_scenario": self.financial_scenarios[coordinate.financial_index].name,
                    "solutions_in_pool": element.pool.solutions_in_pool,
                    "high_value": element.pool.high_value if element.pool.solutions_in_pool else np.nan,
                    "evaluations": element.distribution.count,
                    "mean_value": element.distribution.mean if element.distribution.count else np.nan,
                }
            )
        return pd.DataFrame(rows)


__all__ = ["PoolPerformanceCounters", "SilviculturalSpace"]
