"""Scalar objectives computed from simulated trajectories."""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum

import numpy as np
from pydantic import BaseModel, field_validator

from silvopt.core.errors import SilvoptValueError
from silvopt.simulation.trajectory import StandTrajectory
from silvopt.stand.models import FinancialScenario


class ObjectiveKind(str, Enum):
    VOLUME = "volume"
    NET_PRESENT_VALUE = "npv"
    LAND_EXPECTATION_VALUE = "lev"


class Objective(BaseModel):
    """What a heuristic maximizes.

    ``rotation_length`` is the period of regeneration harvest (``None`` means the
    trajectory's last planning period); ``financial_index`` selects the scenario
    used for NPV and LEV.
    """

    kind: ObjectiveKind = ObjectiveKind.LAND_EXPECTATION_VALUE
    rotation_length: int | None = None
    financial_index: int = 0

    @field_validator("rotation_length")
    @classmethod
    def _rotation_positive(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("rotation_length must be at least one period")
        return value

    @field_validator("financial_index")
    @classmethod
    def _index_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("financial_index must be non-negative")
        return value


class ObjectiveEvaluator:
    """Evaluates trajectories against one or more financial scenarios."""

    def __init__(self, financial_scenarios: Sequence[FinancialScenario] | None = None) -> None:
        self.financial_scenarios = list(financial_scenarios or [FinancialScenario()])
        if not self.financial_scenarios:
            raise SilvoptValueError("At least one financial scenario is required")

    def _rotation(self, trajectory: StandTrajectory, rotation_length: int | None) -> int:
        rotation = rotation_length or trajectory.last_planning_period
        if not 0 < rotation <= trajectory.last_planning_period:
            raise SilvoptValueError(
                f"Rotation length {rotation} is outside [1, {trajectory.last_planning_period}]"
            )
        if rotation <= trajectory.get_last_thin_period():
            raise SilvoptValueError(
                f"Rotation length {rotation} does not extend past the last thin in period "
                f"{trajectory.get_last_thin_period()}"
            )
        return rotation

    def _scenario(self, financial_index: int) -> FinancialScenario:
        if not 0 <= financial_index < len(self.financial_scenarios):
            raise SilvoptValueError(
                f"Financial index {financial_index} is outside "
                f"[0, {len(self.financial_scenarios)})"
            )
        return self.financial_scenarios[financial_index]

    def net_present_value(
        self, trajectory: StandTrajectory, rotation: int, scenario: FinancialScenario
    ) -> float:
        total = 0.0
        for period in trajectory.treatments.harvest_periods():
            if period <= rotation:
                total += trajectory.valuation.value(trajectory, period, scenario)[1]
        return total + trajectory.valuation.value(trajectory, rotation, scenario)[0]

    def evaluate(self, trajectory: StandTrajectory, objective: Objective) -> float:
        """Simulate if needed and return the objective value."""

        trajectory.simulate()
        rotation = self._rotation(trajectory, objective.rotation_length)
        if objective.kind is ObjectiveKind.VOLUME:
            return float(
                trajectory.thinning_volume[1 : rotation + 1].sum()
                + trajectory.standing_volume[rotation]
            )
        scenario = self._scenario(objective.financial_index)
        npv = self.net_present_value(trajectory, rotation, scenario)
        if objective.kind is ObjectiveKind.NET_PRESENT_VALUE:
            return npv
        return trajectory.valuation.land_expectation_value(
            npv, rotation * trajectory.period_length_years, scenario
        )

    def evaluate_all(
        self,
        trajectory: StandTrajectory,
        rotation_lengths: Sequence[int],
        kind: ObjectiveKind = ObjectiveKind.LAND_EXPECTATION_VALUE,
    ) -> np.ndarray:
        """Objective for every (rotation length, financial scenario) pair.

        Rotations that do not extend past the last thin are ``nan``.
        """

        trajectory.simulate()
        values = np.full((len(rotation_lengths), len(self.financial_scenarios)), np.nan)
        for rotation_index, rotation in enumerate(rotation_lengths):
            if rotation <= trajectory.get_last_thin_period():
                continue
            for financial_index in range(len(self.financial_scenarios)):
                values[rotation_index, financial_index] = self.evaluate(
                    trajectory,
                    Objective(
                        kind=kind, rotation_length=rotation, financial_index=financial_index
                    ),
                )
        return values


__all__ = ["Objective", "ObjectiveEvaluator", "ObjectiveKind"]
