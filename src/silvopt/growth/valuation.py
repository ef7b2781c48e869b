"""Merchantable volume and discounted value for stand trajectories."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING

import numpy as np

from silvopt.core.constants import DEFECT_AND_BREAKAGE_REDUCTION, MINIMUM_MERCHANTABLE_DBH_CM
from silvopt.core.errors import SilvoptValueError
from silvopt.stand.models import FinancialScenario, GrowthCalibration
from silvopt.stand.snapshot import SpeciesTrees, StandSnapshot

if TYPE_CHECKING:
    from silvopt.simulation.trajectory import StandTrajectory


def merchantable_volume_m3(trees: SpeciesTrees, form_factor: float) -> np.ndarray:
    """Per-tree merchantable volume in m³, net of defect and breakage."""

    volume = form_factor * trees.basal_area_m2() * trees.height_m * DEFECT_AND_BREAKAGE_REDUCTION
    return np.where(trees.dbh_cm >= MINIMUM_MERCHANTABLE_DBH_CM, volume, 0.0)


def discount_factor(rate: float, years: float) -> float:
    return 1.0 / (1.0 + rate) ** years


class TimberValuation:
    """Form-factor volume and stumpage valuation.

    Thinnings are valued at the start of their period, when the trees are removed;
    standing timber is valued at the end of the period as if regeneration harvested.
    """

    def __init__(self, calibration: GrowthCalibration | None = None) -> None:
        self.calibration = calibration or GrowthCalibration()

    def standing_volume(self, snapshot: StandSnapshot) -> float:
        total = 0.0
        for species, trees in snapshot.trees.items():
            form_factor = self.calibration.for_species(species).form_factor
            total += float(np.dot(trees.expansion_factor, merchantable_volume_m3(trees, form_factor)))
        return total

    def harvested_volume(
        self, snapshot: StandSnapshot, removed: Mapping[str, np.ndarray]
    ) -> tuple[float, float]:
        volume = 0.0
        basal_area = 0.0
        for species, trees in snapshot.trees.items():
            mask = removed.get(species)
            if mask is None:
                continue
            mask = mask[: trees.count]
            if not mask.any():
                continue
            form_factor = self.calibration.for_species(species).form_factor
            expansion_factor = np.where(mask, trees.expansion_factor, 0.0)
            volume += float(np.dot(expansion_factor, merchantable_volume_m3(trees, form_factor)))
            basal_area += float(np.dot(expansion_factor, trees.basal_area_m2()))
        return volume, basal_area

    def value(
        self,
        trajectory: StandTrajectory,
        period: int,
        scenario: FinancialScenario,
    ) -> tuple[float, float]:
        if not 0 <= period < trajectory.planning_periods:
            raise SilvoptValueError(
                f"Period {period} is outside [0, {trajectory.planning_periods})"
            )
        rate = scenario.discount_rate
        years = trajectory.period_length_years

        standing_volume = float(trajectory.standing_volume[period])
        standing = 0.0
        if standing_volume > 0.0:
            standing = (
                standing_volume * scenario.regeneration_price_per_m3
                - scenario.regeneration_cost_per_ha
            ) * discount_factor(rate, period * years)

        harvested = 0.0
        thinning_volume = float(trajectory.thinning_volume[period])
        if period > 0 and thinning_volume > 0.0:
            harvested = (
                thinning_volume * scenario.thinning_price_per_m3 - scenario.thinning_cost_per_ha
            ) * discount_factor(rate, (period - 1) * years)
        return standing, harvested

    def land_expectation_value(
        self, net_present_value: float, rotation_years: int, scenario: FinancialScenario
    ) -> float:
        if rotation_years < 1:
            raise SilvoptValueError(f"Rotation must be at least one year, got {rotation_years}")
        growth = (1.0 + scenario.discount_rate) ** rotation_years
        return (net_present_value - scenario.reforestation_cost_per_ha) * growth / (growth - 1.0)


__all__ = ["TimberValuation", "discount_factor", "merchantable_volume_m3"]
