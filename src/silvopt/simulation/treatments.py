"""Thinnings scheduled on a stand trajectory."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np

from silvopt.core.constants import NO_HARVEST_PERIOD
from silvopt.core.errors import SilvoptValueError
from silvopt.stand.selection import TreeSelectionSchedule
from silvopt.stand.snapshot import StandSnapshot

MAXIMUM_THINS = 3


@dataclass(slots=True)
class ThinByIndividualTreeSelection:
    """Thin whose removals are exactly the trees scheduled in its period."""

    period: int

    @property
    def is_prescription(self) -> bool:
        return False

    def evaluate(self, selection: TreeSelectionSchedule, previous: StandSnapshot) -> bool:
        """Individual-tree thins leave the schedule as the heuristics set it."""
        return False

    def copy(self) -> ThinByIndividualTreeSelection:
        return ThinByIndividualTreeSelection(self.period)


@dataclass(slots=True)
class ThinByPrescription:
    """Thin described by percentages of live stems removed.

    Attributes
    ----------
    period:
        Planning period in which the thin occurs.
    from_above_percentage:
        Percent of stems removed starting from the largest diameter.
    proportional_percentage:
        Percent of stems removed evenly across the diameter distribution of the
        trees not already taken from above or below.
    from_below_percentage:
        Percent of stems removed starting from the smallest diameter.
    """

    period: int
    from_above_percentage: float = 0.0
    proportional_percentage: float = 0.0
    from_below_percentage: float = 0.0

    def __post_init__(self) -> None:
        self.validate()

    @property
    def is_prescription(self) -> bool:
        return True

    @property
    def intensity(self) -> float:
        return self.from_above_percentage + self.proportional_percentage + self.from_below_percentage

    def validate(self) -> None:
        for name in ("from_above_percentage", "proportional_percentage", "from_below_percentage"):
            value = getattr(self, name)
            if not 0.0 <= value <= 100.0:
                raise SilvoptValueError(f"{name} must be in [0, 100], got {value}")
        if self.intensity > 100.0 + 1e-9:
            raise SilvoptValueError(
                f"Prescription removes {self.intensity:.2f}% of stems, more than all of them"
            )

    def set_intensities(
        self, from_above: float, proportional: float, from_below: float
    ) -> None:
        previous = (
            self.from_above_percentage,
            self.proportional_percentage,
            self.from_below_percentage,
        )
        self.from_above_percentage = from_above
        self.proportional_percentage = proportional
        self.from_below_percentage = from_below
        try:
            self.validate()
        except SilvoptValueError:
            (
                self.from_above_percentage,
                self.proportional_percentage,
                self.from_below_percentage,
            ) = previous
            raise

    def intensities(self) -> tuple[float, float, float]:
        return (
            self.from_above_percentage,
            self.proportional_percentage,
            self.from_below_percentage,
        )

    def evaluate(self, selection: TreeSelectionSchedule, previous: StandSnapshot) -> bool:
        """Rewrite this period's tree selection from the stand at the end of the previous period.

        Returns ``True`` when the set of trees selected in this period changed.
        """

        species_of: list[str] = []
        index_of: list[np.ndarray] = []
        dbh: list[np.ndarray] = []
        stems: list[np.ndarray] = []
        for species in selection:
            trees = previous.trees[species]
            scheduled = selection.for_species(species)
            # trees removed earlier are gone; trees already scheduled later stay eligible
            eligible = (trees.expansion_factor > 0.0) & (
                (scheduled == NO_HARVEST_PERIOD) | (scheduled >= self.period)
            )
            indices = np.flatnonzero(eligible)
            species_of.extend([species] * len(indices))
            index_of.append(indices)
            dbh.append(trees.dbh_cm[indices])
            stems.append(trees.expansion_factor[indices])

        before = {species: selection.for_species(species) == self.period for species in selection}
        selection.clear_period(self.period)
        if not species_of or self.intensity <= 0.0:
            return any(mask.any() for mask in before.values())

        flat_index = np.concatenate(index_of)
        flat_dbh = np.concatenate(dbh)
        flat_stems = np.concatenate(stems)
        order = np.argsort(-flat_dbh, kind="stable")
        total_stems = float(flat_stems.sum())
        chosen = np.zeros(len(order), dtype=bool)

        def take(sequence: Iterable[int], target: float) -> None:
            removed = 0.0
            for position in sequence:
                if removed + 0.5 * flat_stems[position] > target:
                    break
                chosen[position] = True
                removed += flat_stems[position]

        take(order, 0.01 * self.from_above_percentage * total_stems)
        take(
            (position for position in order[::-1] if not chosen[position]),
            0.01 * self.from_below_percentage * total_stems,
        )

        remaining = [position for position in order if not chosen[position]]
        remaining_stems = float(flat_stems[remaining].sum()) if remaining else 0.0
        if remaining and remaining_stems > 0.0 and self.proportional_percentage > 0.0:
            fraction = min(0.01 * self.proportional_percentage * total_stems / remaining_stems, 1.0)
            accumulator = 0.0
            for position in remaining:
                accumulator += fraction * flat_stems[position]
                if accumulator >= 0.5 * flat_stems[position]:
                    chosen[position] = True
                    accumulator -= flat_stems[position]

        for position in np.flatnonzero(chosen):
            selection.set_species(species_of[position], int(flat_index[position]), self.period)
        after = {species: selection.for_species(species) == self.period for species in selection}
        return any(not np.array_equal(before[name], after[name]) for name in before)

    def copy(self) -> ThinByPrescription:
        return ThinByPrescription(
            self.period,
            self.from_above_percentage,
            self.proportional_percentage,
            self.from_below_percentage,
        )


Harvest = ThinByIndividualTreeSelection | ThinByPrescription


class Treatments:
    """Ordered thinnings, at most one per period and no more than three."""

    def __init__(self, harvests: Iterable[Harvest] = ()) -> None:
        ordered = sorted(harvests, key=lambda harvest: harvest.period)
        periods = [harvest.period for harvest in ordered]
        if len(set(periods)) != len(periods):
            raise SilvoptValueError(f"Only one thin is allowed per period, got {periods}")
        if any(period <= NO_HARVEST_PERIOD for period in periods):
            raise SilvoptValueError(f"Thin periods must be positive, got {periods}")
        if len(ordered) > MAXIMUM_THINS:
            raise SilvoptValueError(f"At most {MAXIMUM_THINS} thins are supported, got {len(ordered)}")
        self.harvests: list[Harvest] = list(ordered)

    @classmethod
    def individual_tree_selection(cls, periods: Iterable[int]) -> Treatments:
        return cls(
            ThinByIndividualTreeSelection(period)
            for period in periods
            if period != NO_HARVEST_PERIOD
        )

    @classmethod
    def prescriptions(cls, periods: Iterable[int]) -> Treatments:
        return cls(ThinByPrescription(period) for period in periods if period != NO_HARVEST_PERIOD)

    def __len__(self) -> int:
        return len(self.harvests)

    def harvest_periods(self) -> tuple[int, ...]:
        return tuple(harvest.period for harvest in self.harvests)

    def harvest_in(self, period: int) -> Harvest | None:
        for harvest in self.harvests:
            if harvest.period == period:
                return harvest
        return None

    def get_thin_period(self, thin_index: int) -> int:
        """Period of the ``thin_index``-th thin (0-based), or 0 when there is no such thin."""

        if thin_index < 0:
            raise SilvoptValueError(f"Thin index must be non-negative, got {thin_index}")
        if thin_index < len(self.harvests):
            return self.harvests[thin_index].period
        return NO_HARVEST_PERIOD

    def last_thin_period(self) -> int:
        return self.harvests[-1].period if self.harvests else NO_HARVEST_PERIOD

    def prescription(self, thin_index: int) -> ThinByPrescription:
        if not 0 <= thin_index < len(self.harvests):
            raise SilvoptValueError(f"No thin at index {thin_index}")
        harvest = self.harvests[thin_index]
        if not isinstance(harvest, ThinByPrescription):
            raise SilvoptValueError(f"Thin {thin_index} is not a prescription")
        return harvest

    def copy(self) -> Treatments:
        return Treatments(harvest.copy() for harvest in self.harvests)

    def __repr__(self) -> str:
        return f"Treatments({self.harvests!r})"


__all__ = [
    "Harvest",
    "MAXIMUM_THINS",
    "ThinByIndividualTreeSelection",
    "ThinByPrescription",
    "Treatments",
]
