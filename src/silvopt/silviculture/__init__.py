"""Silvicultural spaces: cached optimization results across thinning and financial sweeps."""

from .coordinate import SilviculturalCoordinate
from .pool import CoordinateExploration, FinancialValueDistribution, SilviculturalPrescriptionPool
from .space import PoolPerformanceCounters, SilviculturalSpace
from .sweep import SweepResult, optimize_space, transfer_schedule

__all__ = [
    "CoordinateExploration",
    "FinancialValueDistribution",
    "PoolPerformanceCounters",
    "SilviculturalCoordinate",
    "SilviculturalPrescriptionPool",
    "SilviculturalSpace",
    "SweepResult",
    "optimize_space",
    "transfer_schedule",
]
