"""Stand data model: tree records, per-period snapshots, and harvest schedules."""

from .io import load_financial_scenarios, load_stand
from .models import (
    FinancialScenario,
    GrowthCalibration,
    SpeciesCoefficients,
    StandConfig,
    TreeRecord,
    default_calibration,
)
from .selection import TreeSelectionSchedule
from .snapshot import SpeciesTrees, StandDensity, StandSnapshot

__all__ = [
    "FinancialScenario",
    "GrowthCalibration",
    "SpeciesCoefficients",
    "SpeciesTrees",
    "StandConfig",
    "StandDensity",
    "StandSnapshot",
    "TreeRecord",
    "TreeSelectionSchedule",
    "default_calibration",
    "load_financial_scenarios",
    "load_stand",
]
