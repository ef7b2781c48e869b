from __future__ import annotations

import numpy as np
import pytest

from silvopt.core.errors import SilvoptValueError
from silvopt.growth.valuation import discount_factor
from silvopt.simulation.objective import Objective, ObjectiveEvaluator, ObjectiveKind
from silvopt.simulation.trajectory import StandTrajectory
from silvopt.stand.models import FinancialScenario


def test_volume_objective_sums_thinning_and_standing(thinned_trajectory):
    for tree_index in (0, 5):
        thinned_trajectory.set_tree_selection(tree_index, 2)
    evaluator = ObjectiveEvaluator()
    value = evaluator.evaluate(
        thinned_trajectory, Objective(kind=ObjectiveKind.VOLUME, rotation_length=7)
    )
    expected = thinned_trajectory.thinning_volume[1:8].sum() + thinned_trajectory.standing_volume[7]
    assert value == pytest.approx(expected)


def test_npv_discounts_regeneration_harvest(stand):
    trajectory = StandTrajectory(stand, 6)
    scenario = FinancialScenario(regeneration_cost_per_ha=0.0)
    value = ObjectiveEvaluator([scenario]).evaluate(
        trajectory, Objective(kind=ObjectiveKind.NET_PRESENT_VALUE)
    )
    volume = trajectory.standing_volume[6]
    expected = volume * scenario.regeneration_price_per_m3 * discount_factor(0.04, 30)
    assert value == pytest.approx(expected)


def test_lev_exceeds_single_rotation_npv_when_positive(thinned_trajectory, evaluator):
    npv = evaluator.evaluate(thinned_trajectory, Objective(kind=ObjectiveKind.NET_PRESENT_VALUE))
    lev = evaluator.evaluate(thinned_trajectory, Objective())
    assert npv > 0.0
    growth = 1.04**45
    assert lev == pytest.approx((npv - 1200.0) * growth / (growth - 1.0))


def test_rotation_must_follow_last_thin(thinned_trajectory, evaluator):
    with pytest.raises(SilvoptValueError):
        evaluator.evaluate(thinned_trajectory, Objective(rotation_length=5))
    with pytest.raises(SilvoptValueError):
        evaluator.evaluate(thinned_trajectory, Objective(rotation_length=10))
    with pytest.raises(SilvoptValueError):
        evaluator.evaluate(thinned_trajectory, Objective(financial_index=2))


def test_evaluate_all_marks_rotations_before_last_thin(thinned_trajectory, evaluator):
    values = evaluator.evaluate_all(thinned_trajectory, [4, 6, 9])
    assert values.shape == (3, 2)
    assert np.isnan(values[0]).all()
    assert np.isfinite(values[1:]).all()
    # a higher discount rate lowers land expectation value
    assert values[2, 1] < values[2, 0]
