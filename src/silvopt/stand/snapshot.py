"""Immutable per-period stand state and the density metrics derived from it."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

import numpy as np

from silvopt.core.constants import HEIGHT_STRATA, HEIGHT_STRATUM_M
from silvopt.core.errors import SilvoptValueError
from silvopt.stand.models import GrowthCalibration, StandConfig

BASAL_AREA_CONSTANT = math.pi / 40000.0  # m² per cm² of diameter squared


def _frozen(values: Iterable[float] | np.ndarray, dtype=np.float64) -> np.ndarray:
    array = np.array(values, dtype=dtype)
    array.setflags(write=False)
    return array


@dataclass(frozen=True, slots=True)
class SpeciesTrees:
    """Tree arrays for one species; index order matches the selection schedule."""

    species: str
    dbh_cm: np.ndarray
    height_m: np.ndarray
    crown_ratio: np.ndarray
    expansion_factor: np.ndarray

    def __post_init__(self) -> None:
        sizes = {
            len(self.dbh_cm),
            len(self.height_m),
            len(self.crown_ratio),
            len(self.expansion_factor),
        }
        if len(sizes) != 1:
            raise SilvoptValueError(f"Tree arrays for species {self.species} differ in length")

    @classmethod
    def create(
        cls,
        species: str,
        dbh_cm: Iterable[float],
        height_m: Iterable[float],
        crown_ratio: Iterable[float],
        expansion_factor: Iterable[float],
    ) -> SpeciesTrees:
        return cls(
            species=species,
            dbh_cm=_frozen(dbh_cm),
            height_m=_frozen(height_m),
            crown_ratio=_frozen(crown_ratio),
            expansion_factor=_frozen(expansion_factor),
        )

    @property
    def count(self) -> int:
        return len(self.dbh_cm)

    def basal_area_m2(self) -> np.ndarray:
        """Per-tree basal area in m²."""
        return BASAL_AREA_CONSTANT * self.dbh_cm * self.dbh_cm

    def with_expansion_factor(self, expansion_factor: np.ndarray) -> SpeciesTrees:
        return SpeciesTrees(
            species=self.species,
            dbh_cm=self.dbh_cm,
            height_m=self.height_m,
            crown_ratio=self.crown_ratio,
            expansion_factor=_frozen(expansion_factor),
        )


@dataclass(frozen=True, slots=True)
class StandSnapshot:
    """Stand state at the end of a planning period.

    Snapshots are never mutated after creation, which lets trajectories share the
    snapshots of periods an edit did not touch.
    """

    name: str
    age_years: int
    trees: Mapping[str, SpeciesTrees]

    @classmethod
    def from_config(cls, config: StandConfig) -> StandSnapshot:
        grouped: dict[str, list] = {species: [] for species in config.species()}
        for tree in config.trees:
            grouped[tree.species].append(tree)
        trees = {
            species: SpeciesTrees.create(
                species,
                [tree.dbh_cm for tree in records],
                [tree.height_m for tree in records],
                [tree.crown_ratio for tree in records],
                [tree.expansion_factor for tree in records],
            )
            for species, records in grouped.items()
        }
        return cls(name=config.name, age_years=config.age_years, trees=trees)

    def species(self) -> list[str]:
        return list(self.trees)

    def tree_count(self) -> int:
        return sum(trees.count for trees in self.trees.values())

    def with_removals(self, removed: Mapping[str, np.ndarray]) -> StandSnapshot:
        """Return a copy with expansion factors zeroed where ``removed`` is true."""

        trees: dict[str, SpeciesTrees] = {}
        for species, species_trees in self.trees.items():
            mask = removed.get(species)
            if mask is None or not mask[: species_trees.count].any():
                trees[species] = species_trees
                continue
            expansion_factor = np.where(
                mask[: species_trees.count], 0.0, species_trees.expansion_factor
            )
            trees[species] = species_trees.with_expansion_factor(expansion_factor)
        return StandSnapshot(name=self.name, age_years=self.age_years, trees=trees)

    def basal_area_per_ha(self) -> float:
        return float(
            sum(
                np.dot(trees.expansion_factor, trees.basal_area_m2())
                for trees in self.trees.values()
            )
        )

    def trees_per_ha(self) -> float:
        return float(sum(trees.expansion_factor.sum() for trees in self.trees.values()))


@dataclass(frozen=True, slots=True)
class StandDensity:
    """Stand-level density metrics used as competition inputs to growth."""

    basal_area_per_ha: float
    trees_per_ha: float
    crown_competition_factor: float
    crown_competition_by_height: np.ndarray = field(repr=False)

    @classmethod
    def from_snapshot(
        cls,
        snapshot: StandSnapshot,
        calibration: GrowthCalibration | None = None,
    ) -> StandDensity:
        """Compute density metrics.

        Crown competition by height is the crown competition factor of trees taller
        than the bottom of each height stratum, so index 0 is the stand's full CCF.
        """

        calibration = calibration or GrowthCalibration()
        strata_bottoms = HEIGHT_STRATUM_M * np.arange(HEIGHT_STRATA)
        ccf_by_height = np.zeros(HEIGHT_STRATA)
        basal_area = 0.0
        trees_per_ha = 0.0
        for species, trees in snapshot.trees.items():
            if trees.count == 0:
                continue
            coefficients = calibration.for_species(species)
            basal_area += float(np.dot(trees.expansion_factor, trees.basal_area_m2()))
            trees_per_ha += float(trees.expansion_factor.sum())
            crown_width = coefficients.crown_width_a + coefficients.crown_width_b * trees.dbh_cm
            # percent of a hectare covered by open-grown crowns
            crown_area = 0.01 * math.pi / 4.0 * crown_width * crown_width * trees.expansion_factor
            taller = trees.height_m[np.newaxis, :] > strata_bottoms[:, np.newaxis]
            ccf_by_height += (taller * crown_area[np.newaxis, :]).sum(axis=1)
        ccf_by_height.setflags(write=False)
        return cls(
            basal_area_per_ha=basal_area,
            trees_per_ha=trees_per_ha,
            crown_competition_factor=float(ccf_by_height[0]),
            crown_competition_by_height=ccf_by_height,
        )

    def crown_competition_above(self, height_m: float) -> float:
        stratum = min(int(height_m / HEIGHT_STRATUM_M) + 1, HEIGHT_STRATA - 1)
        return float(self.crown_competition_by_height[stratum])


__all__ = ["SpeciesTrees", "StandDensity", "StandSnapshot"]
