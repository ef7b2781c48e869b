"""Pydantic models describing stands, calibration, and financial scenarios."""

from __future__ import annotations

from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class TreeRecord(BaseModel):
    """Single tree measurement from a plot.

    Attributes
    ----------
    species:
        Species code (e.g., ``DF`` for Douglas-fir). Trees are grouped by species in insertion order.
    dbh_cm:
        Diameter at breast height in centimetres.
    height_m:
        Total height in metres.
    crown_ratio:
        Live crown ratio in ``(0, 1]``.
    expansion_factor:
        Trees per hectare represented by this record.
    """

    species: str
    dbh_cm: float
    height_m: float
    crown_ratio: float = 0.5
    expansion_factor: float

    @field_validator("dbh_cm", "height_m", "expansion_factor")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Tree dimensions and expansion factors must be positive")
        return value

    @field_validator("crown_ratio")
    @classmethod
    def _crown_ratio_range(cls, value: float) -> float:
        if not 0 < value <= 1:
            raise ValueError("crown_ratio must be in (0, 1]")
        return value


class StandConfig(BaseModel):
    """Initial stand condition plus site descriptors."""

    name: str
    age_years: int = 20
    site_index_m: float = 35.0
    period_length_years: int = 5
    trees: list[TreeRecord]

    @field_validator("age_years")
    @classmethod
    def _age_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("age_years must be non-negative")
        return value

    @field_validator("period_length_years")
    @classmethod
    def _period_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("period_length_years must be at least one year")
        return value

    @field_validator("trees")
    @classmethod
    def _trees_present(cls, value: list[TreeRecord]) -> list[TreeRecord]:
        if not value:
            raise ValueError("A stand requires at least one tree record")
        return value

    def species(self) -> list[str]:
        seen: dict[str, None] = {}
        for tree in self.trees:
            seen.setdefault(tree.species, None)
        return list(seen)


class SpeciesCoefficients(BaseModel):
    """Growth, allometry, and mortality coefficients for one species."""

    model_config = ConfigDict(frozen=True)

    diameter_b0: float = 0.25
    diameter_b1: float = 0.45
    diameter_b2: float = 0.6
    diameter_bal: float = 0.015
    diameter_ba: float = 0.01
    height_asymptote_m: float = 60.0
    height_rate: float = 0.025
    height_shape: float = 1.2
    crown_width_a: float = 1.0
    crown_width_b: float = 0.16
    crown_recession: float = 0.004
    maximum_basal_area_m2: float = 85.0
    background_mortality: float = 0.002
    density_mortality: float = 0.08
    form_factor: float = 0.42


class GrowthCalibration(BaseModel):
    """Immutable per-species coefficient tables injected into the growth model."""

    model_config = ConfigDict(frozen=True)

    site_index_m: float = 35.0
    species: Mapping[str, SpeciesCoefficients] = Field(default_factory=dict)
    default: SpeciesCoefficients = Field(default_factory=SpeciesCoefficients)

    def for_species(self, species: str) -> SpeciesCoefficients:
        return self.species.get(species, self.default)


def default_calibration(site_index_m: float = 35.0) -> GrowthCalibration:
    """Return coefficients for the Pacific Northwest species used in examples and tests."""

    return GrowthCalibration(
        site_index_m=site_index_m,
        species={
            "DF": SpeciesCoefficients(),
            "WH": SpeciesCoefficients(
                diameter_b0=0.22,
                height_asymptote_m=55.0,
                crown_width_b=0.14,
                maximum_basal_area_m2=95.0,
                form_factor=0.44,
            ),
            "RC": SpeciesCoefficients(
                diameter_b0=0.18,
                height_asymptote_m=50.0,
                height_rate=0.022,
                maximum_basal_area_m2=100.0,
                form_factor=0.40,
            ),
            "RA": SpeciesCoefficients(
                diameter_b0=0.3,
                height_asymptote_m=35.0,
                height_rate=0.04,
                background_mortality=0.004,
                maximum_basal_area_m2=60.0,
                form_factor=0.38,
            ),
        },
    )


class FinancialScenario(BaseModel):
    """Discount rate and price assumptions used to convert volumes to money.

    Attributes
    ----------
    name:
        Label used in reports.
    discount_rate:
        Real annual discount rate (fraction).
    regeneration_price_per_m3 / thinning_price_per_m3:
        Net stumpage prices for final harvest and thinning volume.
    regeneration_cost_per_ha / thinning_cost_per_ha:
        Fixed per-entry costs charged whenever the harvest removes any volume.
    reforestation_cost_per_ha:
        Establishment cost charged at the start of each rotation (used by LEV).
    """

    name: str = "default"
    discount_rate: float = 0.04
    regeneration_price_per_m3: float = 65.0
    thinning_price_per_m3: float = 40.0
    regeneration_cost_per_ha: float = 500.0
    thinning_cost_per_ha: float = 250.0
    reforestation_cost_per_ha: float = 1200.0

    @field_validator("discount_rate")
    @classmethod
    def _rate_range(cls, value: float) -> float:
        if not 0 < value < 1:
            raise ValueError("discount_rate must be in (0, 1)")
        return value

    @model_validator(mode="after")
    def _non_negative_costs(self) -> FinancialScenario:
        for field_name in (
            "regeneration_cost_per_ha",
            "thinning_cost_per_ha",
            "reforestation_cost_per_ha",
        ):
            if getattr(self, field_name) < 0:
                raise ValueError(f"{field_name} must be non-negative")
        return self


__all__ = [
    "FinancialScenario",
    "GrowthCalibration",
    "SpeciesCoefficients",
    "StandConfig",
    "TreeRecord",
    "default_calibration",
]
