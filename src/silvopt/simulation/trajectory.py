"""Lazily re-simulated sequence of stand states under an editable harvest schedule."""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from silvopt.core.constants import NO_HARVEST_PERIOD
from silvopt.core.errors import SilvoptValueError
from silvopt.growth.base import GrowthModel, ValuationModel
from silvopt.growth.reference import ReferenceGrowthModel
from silvopt.growth.valuation import TimberValuation
from silvopt.simulation.treatments import ThinByPrescription, Treatments
from silvopt.stand.models import (
    FinancialScenario,
    GrowthCalibration,
    StandConfig,
    default_calibration,
)
from silvopt.stand.selection import TreeSelectionSchedule
from silvopt.stand.snapshot import StandDensity, StandSnapshot

logger = logging.getLogger(__name__)


class StandTrajectory:
    """Stand states for periods ``0..last_planning_period`` plus the harvest schedule.

    ``stand_by_period[0]`` is the initial condition and is never re-simulated. Later
    periods are valid until an edit to the schedule or a prescription touches their
    period or an earlier one; the earliest such period is tracked and
    :meth:`simulate` resumes from it.

    Parameters
    ----------
    stand:
        Initial condition, as a validated :class:`StandConfig` or an existing snapshot.
    last_planning_period:
        Number of growth periods to simulate (the trajectory holds one more state).
    treatments:
        Thins applied along the trajectory. Defaults to no thinning.
    growth_model / valuation / calibration:
        Collaborators. Defaults are the reference growth model, form-factor volume,
        and the default species calibration at the stand's site index.
    """

    def __init__(
        self,
        stand: StandConfig | StandSnapshot,
        last_planning_period: int,
        *,
        treatments: Treatments | None = None,
        growth_model: GrowthModel | None = None,
        valuation: ValuationModel | None = None,
        calibration: GrowthCalibration | None = None,
        period_length_years: int | None = None,
    ) -> None:
        if last_planning_period < 1:
            raise SilvoptValueError(
                f"Trajectories need at least one planning period, got {last_planning_period}"
            )
        if isinstance(stand, StandConfig):
            initial = StandSnapshot.from_config(stand)
            calibration = calibration or default_calibration(stand.site_index_m)
            period_length_years = period_length_years or stand.period_length_years
        else:
            initial = stand
            calibration = calibration or GrowthCalibration()
        self.calibration = calibration
        self.growth_model: GrowthModel = growth_model or ReferenceGrowthModel(
            period_length_years or ReferenceGrowthModel().period_length_years
        )
        self.period_length_years = self.growth_model.period_length_years
        if period_length_years is not None and period_length_years != self.period_length_years:
            raise SilvoptValueError(
                f"Growth model uses {self.period_length_years} year periods, "
                f"trajectory requested {period_length_years}"
            )
        self.valuation: ValuationModel = valuation or TimberValuation(calibration)
        self.name = initial.name
        self.last_planning_period = last_planning_period

        self.treatments = treatments or Treatments()
        for period in self.treatments.harvest_periods():
            if period > last_planning_period:
                raise SilvoptValueError(
                    f"Thin in period {period} is beyond the last planning period "
                    f"{last_planning_period}"
                )
        self.tree_selection = TreeSelectionSchedule(
            {species: trees.count for species, trees in initial.trees.items()},
            self.treatments.harvest_periods(),
        )

        planning_periods = last_planning_period + 1
        self.stand_by_period: list[StandSnapshot | None] = [initial] + [None] * last_planning_period
        self.density_by_period: list[StandDensity | None] = [
            StandDensity.from_snapshot(initial, calibration)
        ] + [None] * last_planning_period
        self.standing_volume = np.zeros(planning_periods)
        self.thinning_volume = np.zeros(planning_periods)
        self.basal_area_removed = np.zeros(planning_periods)
        self.standing_volume[0] = self.valuation.standing_volume(initial)
        self._earliest_dirty_period = 1
        self.growth_model_timesteps = 0

    @property
    def planning_periods(self) -> int:
        return self.last_planning_period + 1

    @property
    def selection_changed_since_last_simulation(self) -> bool:
        return self._earliest_dirty_period < self.planning_periods

    @property
    def earliest_dirty_period(self) -> int:
        return self._earliest_dirty_period

    def invalidate_from(self, period: int) -> None:
        """Mark ``period`` and every later period as needing re-simulation."""

        if period == NO_HARVEST_PERIOD:
            return
        if not 0 < period < self.planning_periods:
            raise SilvoptValueError(f"Period {period} is outside [1, {self.planning_periods})")
        self._earliest_dirty_period = min(self._earliest_dirty_period, period)

    def get_tree_selection(self, tree_index: int) -> int:
        return self.tree_selection.get(tree_index)

    def set_tree_selection(self, tree_index: int, period: int) -> int:
        """Schedule a tree (flat index) for harvest in ``period`` and return its previous period."""

        previous = self.tree_selection.set(tree_index, period)
        if previous != period:
            changed = [value for value in (previous, period) if value != NO_HARVEST_PERIOD]
            self.invalidate_from(min(changed))
        return previous

    def deselect_all_trees(self) -> None:
        for period in self.tree_selection.harvest_periods:
            if (self.tree_selection.as_flat() == period).any():
                self.invalidate_from(period)
        self.tree_selection.set_flat(np.zeros(len(self.tree_selection), dtype=np.int32))

    def set_prescription(
        self,
        thin_index: int,
        from_above_percentage: float,
        proportional_percentage: float,
        from_below_percentage: float,
    ) -> None:
        prescription = self.treatments.prescription(thin_index)
        if prescription.intensities() == (
            from_above_percentage,
            proportional_percentage,
            from_below_percentage,
        ):
            return
        prescription.set_intensities(
            from_above_percentage, proportional_percentage, from_below_percentage
        )
        self.invalidate_from(prescription.period)

    def get_thin_period(self, thin_index: int) -> int:
        return self.treatments.get_thin_period(thin_index)

    def get_first_thin_period(self) -> int:
        return self.treatments.get_thin_period(0)

    def get_second_thin_period(self) -> int:
        return self.treatments.get_thin_period(1)

    def get_third_thin_period(self) -> int:
        return self.treatments.get_thin_period(2)

    def get_last_thin_period(self) -> int:
        return self.treatments.last_thin_period()

    def get_start_of_period_age(self, period: int) -> int:
        return self.get_end_of_period_age(period) - (self.period_length_years if period > 0 else 0)

    def get_end_of_period_age(self, period: int) -> int:
        if not 0 <= period < self.planning_periods:
            raise SilvoptValueError(f"Period {period} is outside [0, {self.planning_periods})")
        initial = self.stand_by_period[0]
        assert initial is not None
        return initial.age_years + period * self.period_length_years

    def simulate(self) -> int:
        """Bring every period up to date and return the number of growth timesteps run."""

        start = self._earliest_dirty_period
        if start >= self.planning_periods:
            return 0
        logger.debug(
            "Simulating %s periods %d..%d", self.name, start, self.last_planning_period
        )
        previous = self.stand_by_period[start - 1]
        density = self.density_by_period[start - 1]
        assert previous is not None and density is not None
        timesteps = 0
        for period in range(start, self.planning_periods):
            harvest = self.treatments.harvest_in(period)
            if harvest is not None:
                harvest.evaluate(self.tree_selection, previous)
                removed = self.tree_selection.removed_in(period)
                volume, basal_area = self.valuation.harvested_volume(previous, removed)
                self.thinning_volume[period] = volume
                self.basal_area_removed[period] = basal_area
                if basal_area > 0.0 or any(mask.any() for mask in removed.values()):
                    previous = previous.with_removals(removed)
                    density = StandDensity.from_snapshot(previous, self.calibration)
            else:
                self.thinning_volume[period] = 0.0
                self.basal_area_removed[period] = 0.0

            grown, density = self.growth_model.grow(period, previous, density, self.calibration)
            self.stand_by_period[period] = grown
            self.density_by_period[period] = density
            self.standing_volume[period] = self.valuation.standing_volume(grown)
            previous = grown
            timesteps += 1

        self._earliest_dirty_period = self.planning_periods
        self.growth_model_timesteps += timesteps
        return timesteps

    def get_net_present_values(self, scenario: FinancialScenario) -> tuple[np.ndarray, np.ndarray]:
        """Discounted standing and thinning value per period for ``scenario``."""

        self._require_simulated()
        standing = np.zeros(self.planning_periods)
        thinning = np.zeros(self.planning_periods)
        for period in range(self.planning_periods):
            standing[period], thinning[period] = self.valuation.value(self, period, scenario)
        return standing, thinning

    def _require_simulated(self) -> None:
        if self.selection_changed_since_last_simulation:
            raise SilvoptValueError(
                f"Trajectory {self.name} has unsimulated edits from period "
                f"{self._earliest_dirty_period}"
            )

    def copy(self) -> StandTrajectory:
        """Independent copy; immutable snapshots are shared rather than duplicated."""

        clone = StandTrajectory.__new__(StandTrajectory)
        clone.calibration = self.calibration
        clone.growth_model = self.growth_model
        clone.valuation = self.valuation
        clone.period_length_years = self.period_length_years
        clone.name = self.name
        clone.last_planning_period = self.last_planning_period
        clone.treatments = self.treatments.copy()
        clone.tree_selection = self.tree_selection.copy()
        clone.stand_by_period = list(self.stand_by_period)
        clone.density_by_period = list(self.density_by_period)
        clone.standing_volume = self.standing_volume.copy()
        clone.thinning_volume = self.thinning_volume.copy()
        clone.basal_area_removed = self.basal_area_removed.copy()
        clone._earliest_dirty_period = self._earliest_dirty_period
        clone.growth_model_timesteps = self.growth_model_timesteps
        return clone

    def copy_from(self, other: StandTrajectory) -> None:
        """Overwrite this trajectory's schedule and state with ``other``'s."""

        if other.planning_periods != self.planning_periods:
            raise SilvoptValueError(
                f"Cannot copy a {other.planning_periods} period trajectory into one with "
                f"{self.planning_periods} periods"
            )
        if other.treatments.harvest_periods() != self.treatments.harvest_periods():
            raise SilvoptValueError(
                f"Thin periods differ: {other.treatments.harvest_periods()} versus "
                f"{self.treatments.harvest_periods()}"
            )
        self.tree_selection.copy_from(other.tree_selection)
        self.treatments = other.treatments.copy()
        self.stand_by_period[:] = other.stand_by_period
        self.density_by_period[:] = other.density_by_period
        self.standing_volume[:] = other.standing_volume
        self.thinning_volume[:] = other.thinning_volume
        self.basal_area_removed[:] = other.basal_area_removed
        self._earliest_dirty_period = other._earliest_dirty_period

    def copy_selection_from(self, other: StandTrajectory) -> None:
        """Adopt ``other``'s tree selection and prescriptions, leaving simulation lazy."""

        if other.treatments.harvest_periods() != self.treatments.harvest_periods():
            raise SilvoptValueError(
                f"Thin periods differ: {other.treatments.harvest_periods()} versus "
                f"{self.treatments.harvest_periods()}"
            )
        for thin_index, harvest in enumerate(other.treatments.harvests):
            if isinstance(harvest, ThinByPrescription) and isinstance(
                self.treatments.harvests[thin_index], ThinByPrescription
            ):
                self.set_prescription(thin_index, *harvest.intensities())
        mine = self.tree_selection.as_flat()
        theirs = other.tree_selection.as_flat()
        if len(mine) != len(theirs):
            raise SilvoptValueError(
                f"Tree selection lengths differ: {len(mine)} versus {len(theirs)}"
            )
        differing = np.flatnonzero(mine != theirs)
        for tree_index in differing:
            self.set_tree_selection(int(tree_index), int(theirs[tree_index]))

    def to_frame(self) -> pd.DataFrame:
        """Per-period summary of the simulated trajectory."""

        self._require_simulated()
        rows = []
        for period in range(self.planning_periods):
            density = self.density_by_period[period]
            assert density is not None
            rows.append(
                {
                    "period": period,
                    "age": self.get_end_of_period_age(period),
                    "trees_per_ha": density.trees_per_ha,
                    "basal_area_per_ha": density.basal_area_per_ha,
                    "crown_competition_factor": density.crown_competition_factor,
                    "standing_volume": float(self.standing_volume[period]),
                    "thinning_volume": float(self.thinning_volume[period]),
                    "basal_area_removed": float(self.basal_area_removed[period]),
                }
            )
        return pd.DataFrame(rows)

    def __repr__(self) -> str:
        return (
            f"StandTrajectory(name={self.name!r}, periods={self.planning_periods}, "
            f"thins={self.treatments.harvest_periods()}, "
            f"dirty_from={self._earliest_dirty_period})"
        )


__all__ = ["StandTrajectory"]
