from __future__ import annotations

import numpy as np
import pytest

from silvopt.core.errors import SilvoptValueError
from silvopt.simulation.trajectory import StandTrajectory
from silvopt.simulation.treatments import Treatments
from silvopt.stand.models import FinancialScenario


def test_unthinned_volume_increases_every_period(stand):
    trajectory = StandTrajectory(stand, 9)
    assert trajectory.simulate() == 9
    assert np.all(np.diff(trajectory.standing_volume) > 0.0)
    assert trajectory.get_end_of_period_age(9) == stand.age_years + 45


def test_simulate_is_idempotent(thinned_trajectory):
    thinned_trajectory.simulate()
    volumes = thinned_trajectory.standing_volume.copy()
    assert thinned_trajectory.simulate() == 0
    assert np.array_equal(volumes, thinned_trajectory.standing_volume)
    assert not thinned_trajectory.selection_changed_since_last_simulation


def test_late_edit_only_resimulates_later_periods(thinned_trajectory):
    thinned_trajectory.simulate()
    early = thinned_trajectory.stand_by_period[4]
    thinned_trajectory.set_tree_selection(0, 5)
    assert thinned_trajectory.earliest_dirty_period == 5
    assert thinned_trajectory.simulate() == 5
    assert thinned_trajectory.stand_by_period[4] is early
    assert thinned_trajectory.thinning_volume[5] > 0.0


def test_setting_same_period_does_not_dirty(thinned_trajectory):
    thinned_trajectory.simulate()
    thinned_trajectory.set_tree_selection(2, 0)
    assert not thinned_trajectory.selection_changed_since_last_simulation


def test_thinning_reduces_standing_volume(stand, thinned_trajectory):
    unthinned = StandTrajectory(stand, 9, treatments=Treatments.individual_tree_selection([2, 5]))
    unthinned.simulate()
    for tree_index in range(3):
        thinned_trajectory.set_tree_selection(tree_index, 2)
    thinned_trajectory.simulate()
    assert thinned_trajectory.thinning_volume[2] > 0.0
    assert thinned_trajectory.basal_area_removed[2] > 0.0
    assert thinned_trajectory.standing_volume[2] < unthinned.standing_volume[2]
    assert np.array_equal(thinned_trajectory.standing_volume[:2], unthinned.standing_volume[:2])


def test_invalid_harvest_period_is_fatal(thinned_trajectory):
    with pytest.raises(SilvoptValueError):
        thinned_trajectory.set_tree_selection(0, 3)
    with pytest.raises(SilvoptValueError):
        thinned_trajectory.set_tree_selection(len(thinned_trajectory.tree_selection), 2)


def test_thins_beyond_horizon_are_rejected(stand):
    with pytest.raises(SilvoptValueError):
        StandTrajectory(stand, 4, treatments=Treatments.individual_tree_selection([5]))


def test_copies_are_independent(thinned_trajectory):
    thinned_trajectory.simulate()
    clone = thinned_trajectory.copy()
    clone.set_tree_selection(1, 2)
    clone.simulate()
    assert thinned_trajectory.get_tree_selection(1) == 0
    assert thinned_trajectory.thinning_volume[2] == 0.0
    assert clone.thinning_volume[2] > 0.0


def test_copy_from_requires_matching_thins(stand, thinned_trajectory):
    other = StandTrajectory(stand, 9, treatments=Treatments.individual_tree_selection([3]))
    with pytest.raises(SilvoptValueError):
        thinned_trajectory.copy_from(other)
    source = thinned_trajectory.copy()
    source.set_tree_selection(4, 5)
    source.simulate()
    thinned_trajectory.copy_from(source)
    assert thinned_trajectory.get_tree_selection(4) == 5
    assert np.array_equal(thinned_trajectory.standing_volume, source.standing_volume)


def test_copy_selection_from_is_lazy(thinned_trajectory):
    thinned_trajectory.simulate()
    source = thinned_trajectory.copy()
    source.set_tree_selection(6, 5)
    thinned_trajectory.copy_selection_from(source)
    assert thinned_trajectory.earliest_dirty_period == 5
    assert thinned_trajectory.get_tree_selection(6) == 5


def test_deselect_all_trees(thinned_trajectory):
    thinned_trajectory.set_tree_selection(0, 5)
    thinned_trajectory.set_tree_selection(1, 2)
    thinned_trajectory.simulate()
    thinned_trajectory.deselect_all_trees()
    assert thinned_trajectory.earliest_dirty_period == 2
    assert not thinned_trajectory.tree_selection.as_flat().any()


def test_net_present_values_require_simulation(thinned_trajectory):
    with pytest.raises(SilvoptValueError):
        thinned_trajectory.get_net_present_values(FinancialScenario())
    thinned_trajectory.simulate()
    standing, thinning = thinned_trajectory.get_net_present_values(FinancialScenario())
    assert standing.shape == (10,)
    assert np.all(thinning == 0.0)


def test_to_frame_reports_every_period(thinned_trajectory):
    thinned_trajectory.simulate()
    frame = thinned_trajectory.to_frame()
    assert list(frame["period"]) == list(range(10))
    assert {"standing_volume", "thinning_volume", "basal_area_per_ha"} <= set(frame.columns)
