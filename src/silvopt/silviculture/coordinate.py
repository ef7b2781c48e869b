"""Index of one cell in a silvicultural space."""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True, slots=True)
class SilviculturalCoordinate:
    """Position of a cell: heuristic parameter set, thin periods, rotation, and finances.

    Thin indices refer to a space's first, second, and third thin period lists, in
    which ``0`` (no harvest) marks an absent thin.
    """

    parameter_index: int = 0
    first_thin_index: int = 0
    second_thin_index: int = 0
    third_thin_index: int = 0
    rotation_index: int = 0
    financial_index: int = 0

    def as_tuple(self) -> tuple[int, int, int, int, int, int]:
        return (
            self.parameter_index,
            self.first_thin_index,
            self.second_thin_index,
            self.third_thin_index,
            self.rotation_index,
            self.financial_index,
        )

    @property
    def thin_indices(self) -> tuple[int, int, int]:
        return self.first_thin_index, self.second_thin_index, self.third_thin_index

    def with_cell(self, rotation_index: int, financial_index: int) -> SilviculturalCoordinate:
        return replace(self, rotation_index=rotation_index, financial_index=financial_index)

    def with_thins(self, first: int, second: int, third: int) -> SilviculturalCoordinate:
        return replace(
            self, first_thin_index=first, second_thin_index=second, third_thin_index=third
        )


__all__ = ["SilviculturalCoordinate"]
