"""Stand trajectory simulation and objective evaluation."""

from .objective import Objective, ObjectiveEvaluator, ObjectiveKind
from .trajectory import StandTrajectory
from .treatments import ThinByIndividualTreeSelection, ThinByPrescription, Treatments

__all__ = [
    "Objective",
    "ObjectiveEvaluator",
    "ObjectiveKind",
    "StandTrajectory",
    "ThinByIndividualTreeSelection",
    "ThinByPrescription",
    "Treatments",
]
