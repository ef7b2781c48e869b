"""Narrow interfaces to the growth and valuation collaborators."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Protocol

import numpy as np

from silvopt.stand.models import FinancialScenario, GrowthCalibration
from silvopt.stand.snapshot import StandDensity, StandSnapshot

if TYPE_CHECKING:
    from silvopt.simulation.trajectory import StandTrajectory


class GrowthModel(Protocol):
    """Advances a stand snapshot by one planning period.

    Implementations must be pure: the same inputs always produce equal outputs and
    neither ``previous`` nor ``density`` is modified.
    """

    period_length_years: int

    def grow(
        self,
        period: int,
        previous: StandSnapshot,
        density: StandDensity,
        calibration: GrowthCalibration,
    ) -> tuple[StandSnapshot, StandDensity]:
        """Return the stand at the end of ``period`` and its density after growth."""


class ValuationModel(Protocol):
    """Converts stand state into merchantable volume and discounted value."""

    def standing_volume(self, snapshot: StandSnapshot) -> float:
        """Merchantable m³/ha standing in ``snapshot``."""

    def harvested_volume(
        self, snapshot: StandSnapshot, removed: Mapping[str, np.ndarray]
    ) -> tuple[float, float]:
        """Merchantable m³/ha and basal area m²/ha of the trees flagged in ``removed``."""

    def value(
        self,
        trajectory: StandTrajectory,
        period: int,
        scenario: FinancialScenario,
    ) -> tuple[float, float]:
        """Net present (standing, harvested) value per hectare for ``period``."""

    def land_expectation_value(
        self, net_present_value: float, rotation_years: int, scenario: FinancialScenario
    ) -> float:
        """Value of an infinite series of rotations with the given single-rotation NPV."""


__all__ = ["GrowthModel", "ValuationModel"]
