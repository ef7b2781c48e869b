"""Reversible tree-selection moves and the operators that propose them."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from random import Random
from typing import Protocol

from silvopt.core.constants import EXCHANGE_RETRY_LIMIT, NO_HARVEST_PERIOD
from silvopt.core.errors import SilvoptValueError
from silvopt.optimization.parameters import MoveType
from silvopt.simulation.trajectory import StandTrajectory


@dataclass(slots=True)
class OperatorContext:
    """Execution context passed to move operators."""

    trajectory: StandTrajectory
    rng: Random

    @property
    def tree_count(self) -> int:
        return len(self.trajectory.tree_selection)

    @property
    def period_choices(self) -> tuple[int, ...]:
        return (NO_HARVEST_PERIOD, *self.trajectory.tree_selection.harvest_periods)


@dataclass(frozen=True, slots=True)
class Move:
    """Reversible edit to a tree selection.

    ``changes`` holds ``(tree_index, previous_period, new_period)`` triples.
    :meth:`apply` and :meth:`undo` are the only way heuristics mutate a trajectory
    they are exploring.
    """

    operator: str
    changes: tuple[tuple[int, int, int], ...]

    def apply(self, trajectory: StandTrajectory) -> None:
        for tree_index, _, period in self.changes:
            trajectory.set_tree_selection(tree_index, period)

    def undo(self, trajectory: StandTrajectory) -> None:
        for tree_index, previous, _ in reversed(self.changes):
            trajectory.set_tree_selection(tree_index, previous)


class Operator(Protocol):
    """Interface for move operators."""

    name: str
    weight: float

    def propose(self, context: OperatorContext) -> Move | None:
        """Return a move or None if the operator cannot generate one."""


class FlipOperator:
    """Move one tree to a different harvest period (or to no harvest)."""

    def __init__(self, weight: float = 1.0) -> None:
        self.name = MoveType.FLIP.value
        self.weight = weight

    def propose(self, context: OperatorContext) -> Move | None:
        choices = context.period_choices
        if context.tree_count == 0 or len(choices) < 2:
            return None
        tree_index = context.rng.randrange(context.tree_count)
        current = context.trajectory.get_tree_selection(tree_index)
        candidates = [period for period in choices if period != current]
        period = candidates[context.rng.randrange(len(candidates))]
        return Move(self.name, ((tree_index, current, period),))


class ExchangeOperator:
    """Swap the harvest periods of two trees whose periods differ.

    Pair selection is retried up to ``retry_limit`` times; a schedule where every
    tree shares one period yields no move.
    """

    def __init__(self, weight: float = 1.0, retry_limit: int = EXCHANGE_RETRY_LIMIT) -> None:
        self.name = MoveType.EXCHANGE.value
        self.weight = weight
        self.retry_limit = retry_limit

    def propose(self, context: OperatorContext) -> Move | None:
        tree_count = context.tree_count
        if tree_count < 2:
            return None
        trajectory = context.trajectory
        first = context.rng.randrange(tree_count)
        first_period = trajectory.get_tree_selection(first)
        for _ in range(self.retry_limit):
            second = context.rng.randrange(tree_count)
            second_period = trajectory.get_tree_selection(second)
            if second_period != first_period:
                return Move(
                    self.name,
                    ((first, first_period, second_period), (second, second_period, first_period)),
                )
        return None


class OperatorRegistry:
    """Tree-selection move operators keyed by :class:`MoveType`.

    Annealing draws from the operators with positive weight in proportion to their
    weights; the genetic algorithm looks operators up by move type and applies them
    with its own mutation probabilities.
    """

    def __init__(self, operators: Iterable[Operator] = ()) -> None:
        self._operators: dict[MoveType, Operator] = {}
        for operator in operators:
            self.add(operator)

    @classmethod
    def for_tree_selection(
        cls, exchange_retry_limit: int = EXCHANGE_RETRY_LIMIT
    ) -> OperatorRegistry:
        """Flip and exchange operators, both with weight one."""
        return cls((FlipOperator(), ExchangeOperator(retry_limit=exchange_retry_limit)))

    def add(self, operator: Operator) -> None:
        """Add or replace the operator for its move type."""
        try:
            move_type = MoveType(operator.name)
        except ValueError as exc:
            raise SilvoptValueError(f"'{operator.name}' is not a tree-selection move") from exc
        self._operators[move_type] = operator

    def __getitem__(self, move_type: MoveType) -> Operator:
        operator = self._operators.get(move_type)
        if operator is None:
            raise SilvoptValueError(f"No operator is registered for move type '{move_type}'")
        return operator

    def __contains__(self, move_type: object) -> bool:
        return move_type in self._operators

    def weights(self) -> dict[str, float]:
        return {move_type.value: operator.weight for move_type, operator in self._operators.items()}

    def use_only(self, move_type: MoveType) -> None:
        """Give ``move_type`` weight one and every other operator weight zero."""
        selected = self[move_type]
        for operator in self._operators.values():
            operator.weight = 1.0 if operator is selected else 0.0

    def select(self, rng: Random) -> Operator | None:
        """Draw an operator with probability proportional to its weight."""
        candidates = [operator for operator in self._operators.values() if operator.weight > 0.0]
        if not candidates:
            return None
        draw = rng.random() * sum(operator.weight for operator in candidates)
        for operator in candidates:
            draw -= operator.weight
            if draw < 0.0:
                return operator
        return candidates[-1]

    def propose(self, context: OperatorContext) -> Move | None:
        operator = self.select(context.rng)
        return None if operator is None else operator.propose(context)


__all__ = [
    "ExchangeOperator",
    "FlipOperator",
    "Move",
    "Operator",
    "OperatorContext",
    "OperatorRegistry",
]
