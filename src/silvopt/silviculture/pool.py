"""Bounded elite pools and value distributions kept for each silvicultural coordinate."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

from silvopt.core.constants import DEFAULT_SOLUTION_POOL_SIZE
from silvopt.core.errors import SilvoptValueError
from silvopt.simulation.trajectory import StandTrajectory

NO_NEIGHBOR = -1
UNKNOWN_DISTANCE = np.iinfo(np.int32).max


class SilviculturalPrescriptionPool:
    """Top-``capacity`` trajectories by financial value with pairwise schedule distances.

    Distances are Hamming distances between tree selections. A candidate identical
    to a member (distance 0) can only replace that member, so duplicates never
    crowd out distinct solutions. Stored trajectories are copies.
    """

    def __init__(self, capacity: int = DEFAULT_SOLUTION_POOL_SIZE) -> None:
        if capacity < 1:
            raise SilvoptValueError(f"Pool capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.trajectories: list[StandTrajectory | None] = [None] * capacity
        self.financial_values = np.full(capacity, -np.inf)
        self.distance_matrix = np.full((capacity, capacity), UNKNOWN_DISTANCE, dtype=np.int32)
        self.nearest_neighbor_index = np.full(capacity, NO_NEIGHBOR, dtype=np.int32)
        self.nearest_neighbor_distance = np.full(capacity, UNKNOWN_DISTANCE, dtype=np.int32)
        self.solutions_in_pool = 0
        self.solutions_accepted = 0
        self.solutions_rejected = 0
        self.high_index = NO_NEIGHBOR
        self.low_index = NO_NEIGHBOR

    def __len__(self) -> int:
        return self.solutions_in_pool

    @property
    def high_trajectory(self) -> StandTrajectory | None:
        return None if self.high_index == NO_NEIGHBOR else self.trajectories[self.high_index]

    @property
    def high_value(self) -> float:
        return float(self.financial_values[self.high_index]) if self.solutions_in_pool else -math.inf

    @property
    def low_trajectory(self) -> StandTrajectory | None:
        return None if self.low_index == NO_NEIGHBOR else self.trajectories[self.low_index]

    @property
    def low_value(self) -> float:
        return float(self.financial_values[self.low_index]) if self.solutions_in_pool else -math.inf

    def members(self) -> list[tuple[float, StandTrajectory]]:
        """Retained (value, trajectory) pairs, best first."""

        pairs = [
            (float(self.financial_values[index]), trajectory)
            for index, trajectory in enumerate(self.trajectories[: self.solutions_in_pool])
            if trajectory is not None
        ]
        return sorted(pairs, key=lambda pair: pair[0], reverse=True)

    def try_add_or_replace(self, trajectory: StandTrajectory, financial_value: float) -> bool:
        """Offer a trajectory; return ``True`` if the pool accepted it."""

        if math.isnan(financial_value):
            raise SilvoptValueError("Pool values must be numbers, got nan")
        count = self.solutions_in_pool
        distances = np.array(
            [
                trajectory.tree_selection.distance(member.tree_selection)
                for member in self.trajectories[:count]
                if member is not None
            ],
            dtype=np.int32,
        )
        duplicates = np.flatnonzero(distances == 0)
        if duplicates.size:
            index = int(duplicates[0])
            if financial_value <= self.financial_values[index]:
                self.solutions_rejected += 1
                return False
        elif count < self.capacity:
            index = count
            self.solutions_in_pool += 1
        elif financial_value > self.financial_values[self.low_index]:
            index = self.low_index
        else:
            self.solutions_rejected += 1
            return False

        self.trajectories[index] = trajectory.copy()
        self.financial_values[index] = financial_value
        self._update_distances(index, distances)
        self._update_high_and_low()
        self.solutions_accepted += 1
        return True

    def _update_distances(self, index: int, distances: np.ndarray) -> None:
        count = self.solutions_in_pool
        row = np.full(self.capacity, UNKNOWN_DISTANCE, dtype=np.int32)
        row[: len(distances)] = distances
        row[index] = 0
        row[count:] = UNKNOWN_DISTANCE
        self.distance_matrix[index, :] = row
        self.distance_matrix[:, index] = row
        for member in range(count):
            others = self.distance_matrix[member, :count].copy()
            others[member] = UNKNOWN_DISTANCE
            if count < 2:
                self.nearest_neighbor_index[member] = NO_NEIGHBOR
                self.nearest_neighbor_distance[member] = UNKNOWN_DISTANCE
                continue
            nearest = int(np.argmin(others))
            self.nearest_neighbor_index[member] = nearest
            self.nearest_neighbor_distance[member] = others[nearest]

    def _update_high_and_low(self) -> None:
        values = self.financial_values[: self.solutions_in_pool]
        self.high_index = int(np.argmax(values))
        self.low_index = int(np.argmin(values))


@dataclass(slots=True)
class FinancialValueDistribution:
    """Running summary of every financial value offered to one coordinate."""

    count: int = 0
    minimum: float = math.inf
    maximum: float = -math.inf
    mean: float = 0.0
    _sum_of_squares: float = 0.0
    values: list[float] = field(default_factory=list)

    def add(self, value: float) -> None:
        self.count += 1
        self.minimum = min(self.minimum, value)
        self.maximum = max(self.maximum, value)
        delta = value - self.mean
        self.mean += delta / self.count
        self._sum_of_squares += delta * (value - self.mean)
        self.values.append(value)

    @property
    def variance(self) -> float:
        if self.count < 2:
            return 0.0
        return self._sum_of_squares / (self.count - 1)

    def quantile(self, q: float) -> float:
        if not self.values:
            raise SilvoptValueError("Quantiles of an empty distribution are undefined")
        return float(np.quantile(self.values, q))


@dataclass(slots=True)
class CoordinateExploration:
    """Everything a silvicultural space records for one cell."""

    pool: SilviculturalPrescriptionPool
    distribution: FinancialValueDistribution = field(default_factory=FinancialValueDistribution)

    @classmethod
    def create(cls, capacity: int) -> CoordinateExploration:
        return cls(pool=SilviculturalPrescriptionPool(capacity))


__all__ = [
    "CoordinateExploration",
    "FinancialValueDistribution",
    "SilviculturalPrescriptionPool",
]
