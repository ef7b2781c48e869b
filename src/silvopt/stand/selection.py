"""Per-tree harvest period assignment keyed by species."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping

import numpy as np

from silvopt.core.constants import NO_HARVEST_PERIOD
from silvopt.core.errors import SilvoptValueError


class TreeSelectionSchedule:
    """Harvest period of every tree, ``0`` meaning the tree is never harvested.

    Trees keep the index they have in the stand's species arrays. Trees can also be
    addressed by a flat index which runs through species in insertion order; move
    operators work on flat indices so they never need to know about species.
    """

    __slots__ = ("_selection", "_tree_counts", "_offsets", "_flat_species", "harvest_periods")

    def __init__(
        self,
        tree_counts: Mapping[str, int],
        harvest_periods: Iterable[int],
        capacities: Mapping[str, int] | None = None,
    ) -> None:
        periods = tuple(sorted({int(period) for period in harvest_periods}))
        if any(period <= NO_HARVEST_PERIOD for period in periods):
            raise SilvoptValueError(f"Harvest periods must be positive, got {periods}")
        self.harvest_periods: tuple[int, ...] = periods
        self._tree_counts = dict(tree_counts)
        self._selection: dict[str, np.ndarray] = {}
        for species, count in self._tree_counts.items():
            capacity = count if capacities is None else capacities.get(species, count)
            if capacity < count:
                raise SilvoptValueError(
                    f"Capacity {capacity} for species {species} is below its tree count {count}"
                )
            self._selection[species] = np.zeros(capacity, dtype=np.int32)
        self._build_offsets()

    def _build_offsets(self) -> None:
        self._offsets: list[tuple[int, str]] = []
        flat_species: list[str] = []
        offset = 0
        for species, count in self._tree_counts.items():
            self._offsets.append((offset, species))
            flat_species.extend([species] * count)
            offset += count
        self._flat_species = flat_species

    def copy(self) -> TreeSelectionSchedule:
        clone = TreeSelectionSchedule.__new__(TreeSelectionSchedule)
        clone.harvest_periods = self.harvest_periods
        clone._tree_counts = self._tree_counts
        clone._offsets = self._offsets
        clone._flat_species = self._flat_species
        clone._selection = {species: values.copy() for species, values in self._selection.items()}
        return clone

    def copy_from(self, other: TreeSelectionSchedule) -> None:
        """Overwrite this schedule with ``other``'s, which must have the same shape."""

        if other._selection.keys() != self._selection.keys():
            raise SilvoptValueError("Tree selections cover different species")
        for species, values in other._selection.items():
            target = self._selection[species]
            if len(target) != len(values):
                raise SilvoptValueError(
                    f"Tree selection lengths differ for species {species}: "
                    f"{len(target)} versus {len(values)}"
                )
            target[:] = values
        self.harvest_periods = other.harvest_periods

    def __len__(self) -> int:
        return len(self._flat_species)

    def __iter__(self) -> Iterator[str]:
        return iter(self._selection)

    def species(self) -> list[str]:
        return list(self._selection)

    def tree_count(self, species: str) -> int:
        return self._tree_counts[species]

    def for_species(self, species: str) -> np.ndarray:
        """Return a read-only view of one species' selection, trimmed to live trees."""

        view = self._selection[species][: self._tree_counts[species]]
        view.setflags(write=False)
        return view

    def locate(self, tree_index: int) -> tuple[str, int]:
        """Map a flat tree index onto (species, index within species)."""

        if not 0 <= tree_index < len(self._flat_species):
            raise SilvoptValueError(
                f"Tree index {tree_index} is outside [0, {len(self._flat_species)})"
            )
        species = self._flat_species[tree_index]
        for offset, candidate in reversed(self._offsets):
            if candidate == species:
                return species, tree_index - offset
        raise SilvoptValueError(f"Tree index {tree_index} has no species")  # pragma: no cover

    def get(self, tree_index: int) -> int:
        species, index = self.locate(tree_index)
        return int(self._selection[species][index])

    def validate_period(self, period: int) -> None:
        if period != NO_HARVEST_PERIOD and period not in self.harvest_periods:
            raise SilvoptValueError(
                f"Harvest period {period} is not 0 or one of {self.harvest_periods}"
            )

    def set(self, tree_index: int, period: int) -> int:
        """Assign ``period`` to a tree and return its previous period."""

        self.validate_period(period)
        species, index = self.locate(tree_index)
        previous = int(self._selection[species][index])
        self._selection[species][index] = period
        return previous

    def set_species(self, species: str, index: int, period: int) -> int:
        self.validate_period(period)
        if not 0 <= index < self._tree_counts[species]:
            raise SilvoptValueError(f"Tree {index} is outside species {species}'s live trees")
        previous = int(self._selection[species][index])
        self._selection[species][index] = period
        return previous

    def clear_period(self, period: int) -> None:
        """Return every tree scheduled in ``period`` to unharvested."""

        for values in self._selection.values():
            values[values == period] = NO_HARVEST_PERIOD

    def removed_in(self, period: int) -> dict[str, np.ndarray]:
        """Boolean masks of trees harvested in ``period``, by species."""

        return {
            species: values[: self._tree_counts[species]] == period
            for species, values in self._selection.items()
        }

    def as_flat(self) -> np.ndarray:
        if not self._selection:
            return np.zeros(0, dtype=np.int32)
        return np.concatenate(
            [values[: self._tree_counts[species]] for species, values in self._selection.items()]
        )

    def set_flat(self, values: np.ndarray) -> None:
        if len(values) != len(self):
            raise SilvoptValueError(
                f"Flat selection has {len(values)} entries, schedule has {len(self)} trees"
            )
        invalid = ~np.isin(values, (NO_HARVEST_PERIOD, *self.harvest_periods))
        if invalid.any():
            raise SilvoptValueError(f"Flat selection contains invalid periods {set(values[invalid])}")
        for offset, species in self._offsets:
            count = self._tree_counts[species]
            self._selection[species][:count] = values[offset : offset + count]

    def distance(self, other: TreeSelectionSchedule) -> int:
        """Hamming distance: number of trees whose harvest periods differ."""

        distance = 0
        for species, values in self._selection.items():
            other_values = other._selection.get(species)
            if other_values is None or len(other_values) != len(values):
                raise SilvoptValueError(f"Tree selections differ in shape for species {species}")
            distance += int(np.count_nonzero(values != other_values))
        return distance

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TreeSelectionSchedule):
            return NotImplemented
        return self.harvest_periods == other.harvest_periods and self.distance(other) == 0

    def __repr__(self) -> str:
        return (
            f"TreeSelectionSchedule(trees={len(self)}, harvest_periods={self.harvest_periods}, "
            f"selected={int(np.count_nonzero(self.as_flat()))})"
        )


__all__ = ["TreeSelectionSchedule"]
