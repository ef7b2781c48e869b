"""Deterministic individual-tree growth model used by examples and tests.

The equations are simple: distance-independent diameter growth
damped by competition, height growth that follows a Chapman-Richards
height-diameter curve, crown recession under overtopping crowns, and mortality
that rises once relative density passes a threshold. Coefficients come from the
injected :class:`~silvopt.stand.models.GrowthCalibration`.
"""

from __future__ import annotations

import logging

import numpy as np

from silvopt.core.constants import DBH_HEIGHT_M, DEFAULT_PERIOD_LENGTH_YEARS
from silvopt.core.errors import SilvoptValueError
from silvopt.stand.models import GrowthCalibration, SpeciesCoefficients
from silvopt.stand.snapshot import SpeciesTrees, StandDensity, StandSnapshot

logger = logging.getLogger(__name__)

REFERENCE_SITE_INDEX_M = 35.0
ONSET_RELATIVE_DENSITY = 0.55
MINIMUM_CROWN_RATIO = 0.1
MAXIMUM_CROWN_RATIO = 0.95


def _height_curve(dbh_cm: np.ndarray, coefficients: SpeciesCoefficients) -> np.ndarray:
    shape = 1.0 - np.exp(-coefficients.height_rate * dbh_cm)
    return DBH_HEIGHT_M + coefficients.height_asymptote_m * np.power(
        shape, coefficients.height_shape
    )


def basal_area_in_larger_trees(snapshot: StandSnapshot) -> dict[str, np.ndarray]:
    """Basal area per hectare (m²) of all trees with a larger diameter, by species."""

    species = snapshot.species()
    if not species:
        return {}
    dbh = np.concatenate([snapshot.trees[name].dbh_cm for name in species])
    weighted = np.concatenate(
        [
            snapshot.trees[name].basal_area_m2() * snapshot.trees[name].expansion_factor
            for name in species
        ]
    )
    order = np.argsort(-dbh, kind="stable")
    larger = np.empty_like(weighted)
    larger[order] = np.cumsum(weighted[order]) - weighted[order]

    result: dict[str, np.ndarray] = {}
    offset = 0
    for name in species:
        count = snapshot.trees[name].count
        result[name] = larger[offset : offset + count]
        offset += count
    return result


class ReferenceGrowthModel:
    """Pure growth function satisfying :class:`silvopt.growth.base.GrowthModel`."""

    def __init__(self, period_length_years: int = DEFAULT_PERIOD_LENGTH_YEARS) -> None:
        if period_length_years < 1:
            raise SilvoptValueError(
                f"Period length must be at least one year, got {period_length_years}"
            )
        self.period_length_years = period_length_years

    def grow(
        self,
        period: int,
        previous: StandSnapshot,
        density: StandDensity,
        calibration: GrowthCalibration,
    ) -> tuple[StandSnapshot, StandDensity]:
        if period < 1:
            raise SilvoptValueError(f"Growth starts at period 1, got {period}")
        years = self.period_length_years
        site_multiplier = calibration.site_index_m / REFERENCE_SITE_INDEX_M
        larger = basal_area_in_larger_trees(previous)
        stand_basal_area = density.basal_area_per_ha

        trees: dict[str, SpeciesTrees] = {}
        for species, current in previous.trees.items():
            if current.count == 0:
                trees[species] = current
                continue
            coefficients = calibration.for_species(species)
            live = current.expansion_factor > 0.0

            diameter_increment = (
                coefficients.diameter_b0
                * np.power(current.dbh_cm, coefficients.diameter_b1)
                * np.power(current.crown_ratio, coefficients.diameter_b2)
                * np.exp(
                    -coefficients.diameter_bal * larger[species]
                    - coefficients.diameter_ba * stand_basal_area
                )
                * site_multiplier
                * years
            )
            dbh = np.where(live, current.dbh_cm + diameter_increment, current.dbh_cm)

            # trees keep their relative position against the height-diameter curve
            curve_before = _height_curve(current.dbh_cm, coefficients) - DBH_HEIGHT_M
            curve_after = _height_curve(dbh, coefficients) - DBH_HEIGHT_M
            ratio = np.divide(
                curve_after, curve_before, out=np.ones_like(curve_after), where=curve_before > 0.0
            )
            height = np.where(
                live,
                DBH_HEIGHT_M + (current.height_m - DBH_HEIGHT_M) * ratio,
                current.height_m,
            )
            height = np.maximum(height, current.height_m)

            overtopping = np.array(
                [density.crown_competition_above(value) for value in current.height_m]
            )
            recession = years * coefficients.crown_recession * (1.0 + 0.01 * overtopping)
            crown_ratio = np.where(
                live,
                np.clip(current.crown_ratio - recession, MINIMUM_CROWN_RATIO, MAXIMUM_CROWN_RATIO),
                current.crown_ratio,
            )

            relative_density = stand_basal_area / coefficients.maximum_basal_area_m2
            excess = max(relative_density - ONSET_RELATIVE_DENSITY, 0.0)
            suppression = 1.0 + larger[species] / max(stand_basal_area, 1e-9)
            annual_mortality = np.clip(
                coefficients.background_mortality
                + coefficients.density_mortality * excess * excess * suppression,
                0.0,
                1.0,
            )
            survival = np.power(1.0 - annual_mortality, years)
            expansion_factor = current.expansion_factor * survival

            trees[species] = SpeciesTrees.create(
                species, dbh, height, crown_ratio, expansion_factor
            )

        grown = StandSnapshot(name=previous.name, age_years=previous.age_years + years, trees=trees)
        logger.debug(
            "Grew stand %s through period %d to age %d", previous.name, period, grown.age_years
        )
        return grown, StandDensity.from_snapshot(grown, calibration)


__all__ = ["ReferenceGrowthModel", "basal_area_in_larger_trees"]
