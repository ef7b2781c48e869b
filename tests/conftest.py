from __future__ import annotations

import pytest

from silvopt.simulation.objective import ObjectiveEvaluator
from silvopt.simulation.trajectory import StandTrajectory
from silvopt.simulation.treatments import Treatments
from silvopt.stand.models import FinancialScenario, StandConfig, TreeRecord

_TREES = [
    ("DF", 32.0, 27.5, 0.55, 30.0),
    ("DF", 27.0, 24.0, 0.50, 35.0),
    ("DF", 22.5, 21.0, 0.45, 40.0),
    ("DF", 18.0, 17.5, 0.40, 45.0),
    ("DF", 14.0, 14.0, 0.35, 50.0),
    ("WH", 25.0, 22.0, 0.55, 30.0),
    ("WH", 19.5, 18.5, 0.45, 40.0),
    ("WH", 12.0, 11.5, 0.40, 55.0),
    ("RC", 16.0, 13.5, 0.60, 35.0),
    ("RC", 10.5, 9.0, 0.55, 45.0),
]


def build_stand(name: str = "fixture-stand") -> StandConfig:
    return StandConfig(
        name=name,
        age_years=20,
        site_index_m=35.0,
        trees=[
            TreeRecord(
                species=species,
                dbh_cm=dbh,
                height_m=height,
                crown_ratio=crown_ratio,
                expansion_factor=expansion_factor,
            )
            for species, dbh, height, crown_ratio, expansion_factor in _TREES
        ],
    )


@pytest.fixture
def stand() -> StandConfig:
    return build_stand()


@pytest.fixture
def thinned_trajectory(stand: StandConfig) -> StandTrajectory:
    """Nine periods with individual-tree thins in periods 2 and 5."""

    return StandTrajectory(stand, 9, treatments=Treatments.individual_tree_selection([2, 5]))


@pytest.fixture
def prescription_trajectory(stand: StandConfig) -> StandTrajectory:
    return StandTrajectory(stand, 9, treatments=Treatments.prescriptions([3]))


@pytest.fixture
def financial_scenarios() -> list[FinancialScenario]:
    return [
        FinancialScenario(name="base"),
        FinancialScenario(name="high-rate", discount_rate=0.07),
    ]


@pytest.fixture
def evaluator(financial_scenarios: list[FinancialScenario]) -> ObjectiveEvaluator:
    return ObjectiveEvaluator(financial_scenarios)
