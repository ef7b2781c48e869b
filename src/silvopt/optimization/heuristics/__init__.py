"""Heuristic solvers for silvopt."""

from .common import Heuristic, HeuristicPerformanceCounters, HeuristicResult
from .genetic import GeneticAlgorithm, GeneticPopulation, solve_ga
from .prescription import (
    PrescriptionAllMoveLog,
    PrescriptionCoordinateAscent,
    PrescriptionEnumeration,
    PrescriptionFirstInFirstOutMoveLog,
    solve_prescription,
)
from .registry import (
    ExchangeOperator,
    FlipOperator,
    Move,
    OperatorContext,
    OperatorRegistry,
)
from .sa import SimulatedAnnealing, solve_sa

__all__ = [
    "Heuristic",
    "HeuristicResult",
    "HeuristicPerformanceCounters",
    "SimulatedAnnealing",
    "solve_sa",
    "GeneticAlgorithm",
    "GeneticPopulation",
    "solve_ga",
    "PrescriptionEnumeration",
    "PrescriptionCoordinateAscent",
    "PrescriptionFirstInFirstOutMoveLog",
    "PrescriptionAllMoveLog",
    "solve_prescription",
    "Move",
    "OperatorContext",
    "OperatorRegistry",
    "FlipOperator",
    "ExchangeOperator",
]
