"""Validated parameter sets for heuristics and optimization runs."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from silvopt.core.constants import DEFAULT_SOLUTION_POOL_SIZE, NO_HARVEST_PERIOD
from silvopt.simulation.objective import ObjectiveKind
from silvopt.stand.models import FinancialScenario


class MoveType(str, Enum):
    FLIP = "flip"
    EXCHANGE = "exchange"


class PrescriptionUnits(str, Enum):
    STEM_PERCENTAGE_REMOVED = "stem_percentage_removed"
    BASAL_AREA_PER_HA_RETAINED = "basal_area_per_ha_retained"

    @property
    def intensity_upper_bound(self) -> float:
        if self is PrescriptionUnits.BASAL_AREA_PER_HA_RETAINED:
            return 250.0
        return 100.0


def _probability(value: float) -> float:
    if not 0.0 <= value <= 1.0:
        raise ValueError("probabilities must be in [0, 1]")
    return value


class HeuristicParameters(BaseModel):
    """Parameters shared by every heuristic."""

    model_config = ConfigDict(validate_assignment=True)

    initial_thinning_probability: float = 0.0

    @field_validator("initial_thinning_probability")
    @classmethod
    def _initial_probability(cls, value: float) -> float:
        return _probability(value)


class SimulatedAnnealingParameters(HeuristicParameters):
    """Annealing schedule.

    ``iterations`` and ``reheat_after`` default to multiples of the stand's tree
    count when left unset; ``change_to_exchange_after`` of ``None`` never switches
    from flips to exchanges.
    """

    alpha: float = 0.925
    iterations: int | None = None
    iterations_per_temperature: int = 10
    initial_probability: float = 0.0
    final_probability: float = 0.0
    probability_window_length: int = 10
    reheat_after: int | None = None
    reheat_by: float = 0.75
    change_to_exchange_after: int | None = None
    move_type: MoveType = MoveType.FLIP

    @field_validator("alpha")
    @classmethod
    def _alpha_range(cls, value: float) -> float:
        if not 0.0 < value <= 1.0:
            raise ValueError("alpha must be in (0, 1]")
        return value

    @field_validator("initial_probability", "final_probability")
    @classmethod
    def _probabilities(cls, value: float) -> float:
        return _probability(value)

    @field_validator(
        "iterations", "iterations_per_temperature", "probability_window_length"
    )
    @classmethod
    def _at_least_one(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("iteration counts must be at least one")
        return value

    @field_validator("reheat_after", "change_to_exchange_after")
    @classmethod
    def _non_negative_count(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError("iteration thresholds must be non-negative")
        return value

    @field_validator("reheat_by")
    @classmethod
    def _reheat_non_negative(cls, value: float) -> float:
        if value < 0.0:
            raise ValueError("reheat_by must be non-negative")
        return value

    @model_validator(mode="after")
    def _ordered_probabilities(self) -> SimulatedAnnealingParameters:
        if self.final_probability > self.initial_probability:
            raise ValueError("final_probability cannot exceed initial_probability")
        return self

    def resolved_iterations(self, tree_count: int) -> int:
        return self.iterations if self.iterations is not None else max(1, 10 * tree_count)

    def resolved_reheat_after(self, tree_count: int) -> int:
        if self.reheat_after is not None:
            return self.reheat_after
        return max(1, int(1.7 * tree_count))


class GeneticParameters(HeuristicParameters):
    population_size: int = 40
    maximum_generations: int = 100
    end_standard_deviation: float = 0.001
    exchange_probability: float = 0.5
    flip_probability: float = 0.7
    central_selection_probability: float = 0.5
    selection_probability_width: float = 1.0

    @field_validator("population_size", "maximum_generations")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("population_size and maximum_generations must be at least one")
        return value

    @field_validator("end_standard_deviation")
    @classmethod
    def _positive_deviation(cls, value: float) -> float:
        if value <= 0.0:
            raise ValueError("end_standard_deviation must be positive")
        return value

    @field_validator(
        "exchange_probability", "flip_probability", "central_selection_probability"
    )
    @classmethod
    def _probabilities(cls, value: float) -> float:
        return _probability(value)

    @field_validator("selection_probability_width")
    @classmethod
    def _width(cls, value: float) -> float:
        if not 0.0 <= value <= 2.0:
            raise ValueError("selection_probability_width must be in [0, 2]")
        return value


class PrescriptionParameters(HeuristicParameters):
    """Bounds and step sizes for prescription enumeration and coordinate ascent.

    Intensities are stem percentages removed or, with
    ``PrescriptionUnits.BASAL_AREA_PER_HA_RETAINED``, m²/ha of basal area left
    after the thin.
    """

    units: PrescriptionUnits = PrescriptionUnits.STEM_PERCENTAGE_REMOVED
    from_above_percentage_upper_limit: float = 100.0
    proportional_percentage_upper_limit: float = 100.0
    from_below_percentage_upper_limit: float = 100.0
    minimum_intensity: float = 0.0
    maximum_intensity: float = 60.0
    default_intensity_step_size: float = 10.0
    minimum_intensity_step_size: float = 0.5
    maximum_intensity_step_size: float = 20.0
    step_size_multiplier: float = 0.5
    gradient: bool = False
    restart_on_local_maximum: bool = False
    maximum_restarts: int = 3
    maximum_evaluations: int = 5000
    stochastic: bool = False
    log_all_moves: bool = False
    log_last_n_improving_moves: int = DEFAULT_SOLUTION_POOL_SIZE

    @field_validator(
        "from_above_percentage_upper_limit",
        "proportional_percentage_upper_limit",
        "from_below_percentage_upper_limit",
    )
    @classmethod
    def _percentage(cls, value: float) -> float:
        if not 0.0 <= value <= 100.0:
            raise ValueError("percentage upper limits must be in [0, 100]")
        return value

    @field_validator(
        "minimum_intensity",
        "maximum_intensity",
        "default_intensity_step_size",
        "minimum_intensity_step_size",
        "maximum_intensity_step_size",
    )
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0.0:
            raise ValueError("intensities and step sizes must be non-negative")
        return value

    @field_validator("step_size_multiplier")
    @classmethod
    def _multiplier(cls, value: float) -> float:
        if not 0.0 < value < 1.0:
            raise ValueError("step_size_multiplier must be in (0, 1)")
        return value

    @field_validator("maximum_restarts")
    @classmethod
    def _restarts(cls, value: int) -> int:
        if value < 0:
            raise ValueError("maximum_restarts must be non-negative")
        return value

    @field_validator("maximum_evaluations", "log_last_n_improving_moves")
    @classmethod
    def _positive_count(cls, value: int) -> int:
        if value < 1:
            raise ValueError("counts must be at least one")
        return value

    @model_validator(mode="after")
    def _consistent(self) -> PrescriptionParameters:
        upper = self.units.intensity_upper_bound
        if self.initial_thinning_probability != 0.0:
            raise ValueError("prescription heuristics select trees through prescriptions only")
        if self.maximum_intensity < self.minimum_intensity:
            raise ValueError("maximum_intensity cannot be below minimum_intensity")
        if self.maximum_intensity > upper:
            raise ValueError(f"maximum_intensity cannot exceed {upper} for {self.units.value}")
        if self.default_intensity_step_size <= 0.0:
            raise ValueError("default_intensity_step_size must be positive")
        if not (
            self.minimum_intensity_step_size
            <= self.default_intensity_step_size
            <= self.maximum_intensity_step_size
        ):
            raise ValueError("step sizes must satisfy minimum <= default <= maximum")
        if self.maximum_intensity_step_size > upper:
            raise ValueError(f"maximum_intensity_step_size cannot exceed {upper}")
        return self


class RunParameters(BaseModel):
    """Planning horizon, thins, and evaluation cells of one optimization run."""

    last_planning_period: int = 9
    thin_periods: list[int] = Field(default_factory=list)
    rotation_lengths: list[int] = Field(default_factory=list)
    financial: list[FinancialScenario] = Field(default_factory=lambda: [FinancialScenario()])
    objective: ObjectiveKind = ObjectiveKind.LAND_EXPECTATION_VALUE

    @field_validator("last_planning_period")
    @classmethod
    def _horizon(cls, value: int) -> int:
        if value < 1:
            raise ValueError("last_planning_period must be at least one")
        return value

    @field_validator("thin_periods")
    @classmethod
    def _thins(cls, value: list[int]) -> list[int]:
        periods = [period for period in value if period != NO_HARVEST_PERIOD]
        if any(period < 0 for period in periods):
            raise ValueError("thin periods must be non-negative")
        if periods != sorted(set(periods)):
            raise ValueError("thin periods must be strictly increasing")
        if len(periods) > 3:
            raise ValueError("at most three thins are supported")
        return periods

    @field_validator("financial")
    @classmethod
    def _financial_present(cls, value: list[FinancialScenario]) -> list[FinancialScenario]:
        if not value:
            raise ValueError("at least one financial scenario is required")
        return value

    @model_validator(mode="after")
    def _horizon_covers(self) -> RunParameters:
        if not self.rotation_lengths:
            self.rotation_lengths = [self.last_planning_period]
        if any(not 0 < rotation <= self.last_planning_period for rotation in self.rotation_lengths):
            raise ValueError("rotation lengths must be in [1, last_planning_period]")
        if self.thin_periods and self.thin_periods[-1] > self.last_planning_period:
            raise ValueError("thins must fall within the planning horizon")
        return self

    @property
    def last_thin_period(self) -> int:
        return self.thin_periods[-1] if self.thin_periods else NO_HARVEST_PERIOD


__all__ = [
    "GeneticParameters",
    "HeuristicParameters",
    "MoveType",
    "PrescriptionParameters",
    "PrescriptionUnits",
    "RunParameters",
    "SimulatedAnnealingParameters",
]
