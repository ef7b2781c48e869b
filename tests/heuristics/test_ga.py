from __future__ import annotations

import random

import numpy as np
import pytest

from silvopt.optimization.heuristics import GeneticAlgorithm, GeneticPopulation, solve_ga
from silvopt.optimization.parameters import GeneticParameters
from silvopt.simulation.trajectory import StandTrajectory


def test_single_individual_population_converges_immediately(thinned_trajectory, evaluator):
    result = solve_ga(
        thinned_trajectory,
        GeneticParameters(population_size=1, maximum_generations=50),
        evaluator=evaluator,
    )
    assert result.meta["generations"] == 1
    assert result.objective_function_by_move == [result.best_objective]


def test_best_objective_never_decreases(thinned_trajectory, evaluator):
    parameters = GeneticParameters(population_size=6, maximum_generations=4)
    result = solve_ga(thinned_trajectory, parameters, evaluator=evaluator, seed=9)
    best = np.array(result.best_objective_by_move)
    assert np.all(np.diff(best) >= 0.0)
    assert result.best_objective >= result.objective_function_by_move[0]
    generations = result.meta["generations"]
    assert len(result.objective_function_by_move) == 1 + 5 + 6 * (generations - 1)
    assert result.current_trajectory.tree_selection == result.best_trajectory.tree_selection


def test_zero_fitness_variance_runs_every_generation(stand, evaluator):
    trajectory = StandTrajectory(stand, 9)
    result = solve_ga(
        trajectory,
        GeneticParameters(population_size=4, maximum_generations=6),
        evaluator=evaluator,
    )
    assert result.meta["generations"] == 6
    assert result.meta["fitness_variance"] == 0.0


def test_convergence_includes_the_end_variance(thinned_trajectory, evaluator):
    algorithm = GeneticAlgorithm(
        thinned_trajectory, GeneticParameters(end_standard_deviation=1.0), evaluator=evaluator
    )
    population = GeneticPopulation(2, 10, (2, 5))
    population.fitness[:] = [0.0, 2.0]
    assert population.variance() == pytest.approx(1.0)
    assert algorithm._converged(population)
    population.fitness[:] = [0.0, 2.1]
    assert not algorithm._converged(population)
    population.fitness[:] = [0.0, 0.0]
    assert not algorithm._converged(population)


def test_population_randomization_respects_periods():
    population = GeneticPopulation(8, 20, (2, 5))
    scheduled = population.randomize(random.Random(1), 0.5, 1.0, start=1)
    assert not population.selections[0].any()
    assert scheduled == int(np.count_nonzero(population.selections))
    assert set(np.unique(population.selections)) <= {0, 2, 5}


def test_mating_distribution_handles_equal_fitness():
    population = GeneticPopulation(4, 3, (2,))
    population.fitness[:] = 10.0
    population.recalculate_mating_distribution()
    assert population.variance() == 0.0
    rng = random.Random(2)
    for _ in range(20):
        first, second = population.find_parents(rng)
        assert first != second


def test_mating_favours_fitter_individuals():
    population = GeneticPopulation(3, 3, (2,))
    population.fitness[:] = [0.0, 1.0, 100.0]
    population.recalculate_mating_distribution()
    rng = random.Random(4)
    draws = [population.find_parents(rng)[0] for _ in range(200)]
    assert draws.count(2) > 150
    assert 0 not in draws


def test_parameters_validate_ranges():
    with pytest.raises(ValueError):
        GeneticParameters(population_size=0)
    with pytest.raises(ValueError):
        GeneticParameters(flip_probability=1.5)
