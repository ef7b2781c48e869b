"""Genetic algorithm over per-tree harvest periods."""

from __future__ import annotations

from bisect import bisect_right
from pathlib import Path
from random import Random
from typing import Any

import numpy as np

from silvopt.core.constants import NO_HARVEST_PERIOD
from silvopt.optimization.heuristics.common import Heuristic, HeuristicResult
from silvopt.optimization.heuristics.registry import OperatorContext, OperatorRegistry
from silvopt.optimization.parameters import GeneticParameters, MoveType
from silvopt.simulation.objective import Objective, ObjectiveEvaluator
from silvopt.simulation.trajectory import StandTrajectory
from silvopt.telemetry.watch import SnapshotSink

__all__ = ["GeneticAlgorithm", "GeneticPopulation", "solve_ga"]


class GeneticPopulation:
    """Fixed-size population of flat tree selections with cached fitness."""

    def __init__(self, size: int, tree_count: int, harvest_periods: tuple[int, ...]) -> None:
        self.size = size
        self.harvest_periods = harvest_periods
        self.selections = np.zeros((size, tree_count), dtype=np.int32)
        self.fitness = np.full(size, float("-inf"))
        self._cumulative: list[float] = []

    def copy(self) -> GeneticPopulation:
        clone = GeneticPopulation.__new__(GeneticPopulation)
        clone.size = self.size
        clone.harvest_periods = self.harvest_periods
        clone.selections = self.selections.copy()
        clone.fitness = self.fitness.copy()
        clone._cumulative = list(self._cumulative)
        return clone

    def randomize(
        self,
        rng: Random,
        central_selection_probability: float,
        selection_probability_width: float,
        *,
        start: int = 0,
    ) -> int:
        """Give individuals ``start..size-1`` random schedules; return trees scheduled.

        Each individual draws its own thinning probability uniformly from
        ``central ± width / 2`` so the population spans light to heavy thinning.
        """

        if not self.harvest_periods:
            return 0
        scheduled = 0
        tree_count = self.selections.shape[1]
        for individual in range(start, self.size):
            probability = central_selection_probability + selection_probability_width * (
                rng.random() - 0.5
            )
            probability = min(max(probability, 0.0), 1.0)
            for tree_index in range(tree_count):
                if rng.random() < probability:
                    self.selections[individual, tree_index] = self.harvest_periods[
                        rng.randrange(len(self.harvest_periods))
                    ]
                    scheduled += 1
                else:
                    self.selections[individual, tree_index] = NO_HARVEST_PERIOD
        return scheduled

    def recalculate_mating_distribution(self) -> None:
        """Fitness-proportional roulette wheel over fitness shifted to a zero minimum."""

        shifted = self.fitness - self.fitness.min()
        total = float(shifted.sum())
        if not np.isfinite(total) or total <= 0.0:
            self._cumulative = [(index + 1) / self.size for index in range(self.size)]
            return
        running = np.cumsum(shifted) / total
        self._cumulative = running.tolist()
        self._cumulative[-1] = 1.0

    def _draw(self, rng: Random) -> int:
        return min(bisect_right(self._cumulative, rng.random()), self.size - 1)

    def find_parents(self, rng: Random) -> tuple[int, int]:
        if not self._cumulative:
            self.recalculate_mating_distribution()
        first = self._draw(rng)
        second = self._draw(rng)
        if self.size > 1:
            for _ in range(self.size):
                if second != first:
                    break
                second = self._draw(rng)
            if second == first:
                second = (first + 1) % self.size
        return first, second

    def variance(self) -> float:
        return max(float(np.var(self.fitness)), 0.0)

    def best_index(self) -> int:
        return int(np.argmax(self.fitness))


def _load_selection(trajectory: StandTrajectory, selection: np.ndarray) -> None:
    """Set only the trees whose period differs so invalidation stays minimal."""

    current = trajectory.tree_selection.as_flat()
    for tree_index in np.flatnonzero(current != selection):
        trajectory.set_tree_selection(int(tree_index), int(selection[tree_index]))


class GeneticAlgorithm(Heuristic):
    """Generational GA with single-point crossover and exchange/flip mutation.

    The constructed solution is individual 0 of the initial population. Each
    generation performs one mating per slot; the fittest of the two parents and two
    children fills the slot, and slot 0's first parent is always the best
    individual. The search stops at ``maximum_generations`` or when fitness
    variance falls to or below ``end_standard_deviation²``. A variance of exactly
    zero in a population of two or more does not stop the search.
    """

    name = "genetic"

    def __init__(
        self,
        trajectory: StandTrajectory,
        parameters: GeneticParameters | None = None,
        *,
        objective: Objective | None = None,
        evaluator: ObjectiveEvaluator | None = None,
        seed: int = 42,
    ) -> None:
        super().__init__(
            trajectory,
            parameters or GeneticParameters(),
            objective=objective,
            evaluator=evaluator,
            seed=seed,
        )
        self.parameters: GeneticParameters
        self.generations = 0
        self.population: GeneticPopulation | None = None
        self.operators = OperatorRegistry.for_tree_selection()

    def expected_iterations(self) -> int | None:
        return self.parameters.population_size * self.parameters.maximum_generations

    def _converged(self, population: GeneticPopulation) -> bool:
        if population.size == 1:
            return True
        variance = population.variance()
        end_variance = self.parameters.end_standard_deviation**2
        return 0.0 < variance <= end_variance

    def _mutate(self, trajectory: StandTrajectory) -> None:
        context = OperatorContext(trajectory, self.rng)
        if self.rng.random() < self.parameters.exchange_probability:
            move = self.operators[MoveType.EXCHANGE].propose(context)
            if move is not None:
                move.apply(trajectory)
        if self.rng.random() < self.parameters.flip_probability:
            move = self.operators[MoveType.FLIP].propose(context)
            if move is not None:
                move.apply(trajectory)

    def search(self) -> None:
        parameters = self.parameters
        trajectory = self.current_trajectory
        population = GeneticPopulation(
            parameters.population_size,
            self.tree_count,
            trajectory.tree_selection.harvest_periods,
        )
        population.selections[0] = trajectory.tree_selection.as_flat()
        population.fitness[0] = self.current_objective
        self.counters.trees_randomized_in_construction += population.randomize(
            self.rng,
            parameters.central_selection_probability,
            parameters.selection_probability_width,
            start=1,
        )
        for individual in range(1, population.size):
            _load_selection(trajectory, population.selections[individual])
            fitness = self.evaluate(trajectory)
            population.fitness[individual] = fitness
            self.offer_best(trajectory, fitness)
            self.record_move(True, self.best_objective)
        self.generations = 1
        self.report_step(len(self.objective_function_by_move) - 1)

        first_child = trajectory
        second_child = trajectory.copy()
        tree_count = self.tree_count
        while self.generations < parameters.maximum_generations and not self._converged(
            population
        ):
            population.recalculate_mating_distribution()
            next_generation = population.copy()
            best_index = population.best_index()
            for slot in range(population.size):
                first_parent, second_parent = population.find_parents(self.rng)
                if slot == 0:
                    first_parent = best_index
                    if second_parent == first_parent:
                        second_parent = (first_parent + 1) % population.size
                crossover = self.rng.randrange(tree_count) if tree_count else 0
                first_schedule = population.selections[first_parent]
                second_schedule = population.selections[second_parent]
                _load_selection(
                    first_child,
                    np.concatenate((first_schedule[:crossover], second_schedule[crossover:])),
                )
                _load_selection(
                    second_child,
                    np.concatenate((second_schedule[:crossover], first_schedule[crossover:])),
                )
                self._mutate(first_child)
                self._mutate(second_child)
                first_fitness = self.evaluate(first_child)
                second_fitness = self.evaluate(second_child)

                child, child_fitness = (
                    (first_child, first_fitness)
                    if first_fitness > second_fitness
                    else (second_child, second_fitness)
                )
                parent = (
                    first_parent
                    if population.fitness[first_parent] > population.fitness[second_parent]
                    else second_parent
                )
                if child_fitness > population.fitness[parent]:
                    next_generation.selections[slot] = child.tree_selection.as_flat()
                    next_generation.fitness[slot] = child_fitness
                    self.offer_best(child, child_fitness)
                    accepted = True
                else:
                    next_generation.selections[slot] = population.selections[parent]
                    next_generation.fitness[slot] = population.fitness[parent]
                    accepted = False
                self.current_objective = float(next_generation.fitness[slot])
                self.record_move(accepted, self.best_objective)
                self.report_step(len(self.objective_function_by_move) - 1)
            population = next_generation
            self.generations += 1

        self.population = population
        _load_selection(self.current_trajectory, self.best_trajectory.tree_selection.as_flat())
        self.current_objective = self.best_objective

    def result_meta(self) -> dict[str, Any]:
        population = self.population
        return {
            "generations": self.generations,
            "population_size": self.parameters.population_size,
            "fitness_variance": population.variance() if population is not None else None,
        }


def solve_ga(
    trajectory: StandTrajectory,
    parameters: GeneticParameters | None = None,
    *,
    objective: Objective | None = None,
    evaluator: ObjectiveEvaluator | None = None,
    seed: int = 42,
    construct_from: StandTrajectory | None = None,
    telemetry_log: str | Path | None = None,
    telemetry_context: dict[str, Any] | None = None,
    watch_sink: SnapshotSink | None = None,
    watch_interval: int | None = None,
) -> HeuristicResult:
    """Optimize a trajectory's tree selection with the genetic algorithm.

    See :func:`silvopt.optimization.heuristics.sa.solve_sa` for the shared arguments.
    """

    algorithm = GeneticAlgorithm(
        trajectory, parameters, objective=objective, evaluator=evaluator, seed=seed
    )
    return algorithm.run(
        construct_from=construct_from,
        telemetry_log=telemetry_log,
        telemetry_context=telemetry_context,
        watch_sink=watch_sink,
        watch_interval=watch_interval,
    )
