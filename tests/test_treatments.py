from __future__ import annotations

import numpy as np
import pytest

from silvopt.core.errors import SilvoptValueError
from silvopt.simulation.treatments import ThinByPrescription, Treatments
from silvopt.stand.selection import TreeSelectionSchedule
from silvopt.stand.snapshot import StandSnapshot


def _selection(snapshot: StandSnapshot, periods=(3,)) -> TreeSelectionSchedule:
    return TreeSelectionSchedule(
        {species: trees.count for species, trees in snapshot.trees.items()}, periods
    )


def test_treatments_are_sorted_and_bounded():
    treatments = Treatments.prescriptions([6, 2])
    assert treatments.harvest_periods() == (2, 6)
    assert treatments.get_thin_period(2) == 0
    assert treatments.last_thin_period() == 6
    with pytest.raises(SilvoptValueError):
        Treatments.individual_tree_selection([2, 2])
    with pytest.raises(SilvoptValueError):
        Treatments.individual_tree_selection([1, 2, 3, 4])


def test_prescription_intensities_are_validated():
    thin = ThinByPrescription(3, 20.0, 10.0, 30.0)
    assert thin.intensity == pytest.approx(60.0)
    with pytest.raises(SilvoptValueError):
        thin.set_intensities(60.0, 30.0, 20.0)
    assert thin.intensities() == (20.0, 10.0, 30.0)
    with pytest.raises(SilvoptValueError):
        ThinByPrescription(3, -1.0)


def test_from_below_takes_smallest_trees(stand):
    snapshot = StandSnapshot.from_config(stand)
    selection = _selection(snapshot)
    thin = ThinByPrescription(3, from_below_percentage=25.0)
    assert thin.evaluate(selection, snapshot)
    chosen = selection.as_flat() == 3
    all_dbh = np.concatenate([trees.dbh_cm for trees in snapshot.trees.values()])
    assert chosen.any()
    assert all_dbh[chosen].max() < all_dbh[~chosen].min()


def test_from_above_takes_largest_trees(stand):
    snapshot = StandSnapshot.from_config(stand)
    selection = _selection(snapshot)
    ThinByPrescription(3, from_above_percentage=20.0).evaluate(selection, snapshot)
    chosen = selection.as_flat() == 3
    all_dbh = np.concatenate([trees.dbh_cm for trees in snapshot.trees.values()])
    assert all_dbh[chosen].min() > all_dbh[~chosen].max()


def test_prescription_removes_close_to_target_stems(stand):
    snapshot = StandSnapshot.from_config(stand)
    selection = _selection(snapshot)
    ThinByPrescription(3, proportional_percentage=40.0).evaluate(selection, snapshot)
    stems = np.concatenate([trees.expansion_factor for trees in snapshot.trees.values()])
    removed = stems[selection.as_flat() == 3].sum() / stems.sum()
    assert removed == pytest.approx(0.4, abs=0.12)


def test_evaluate_reports_unchanged_selection(stand):
    snapshot = StandSnapshot.from_config(stand)
    selection = _selection(snapshot)
    thin = ThinByPrescription(3, from_below_percentage=30.0)
    assert thin.evaluate(selection, snapshot)
    assert not thin.evaluate(selection, snapshot)
    thin.set_intensities(0.0, 0.0, 0.0)
    assert thin.evaluate(selection, snapshot)
    assert not (selection.as_flat() == 3).any()


def test_trajectory_applies_prescription(prescription_trajectory):
    prescription_trajectory.simulate()
    prescription_trajectory.set_prescription(0, 0.0, 0.0, 30.0)
    assert prescription_trajectory.earliest_dirty_period == 3
    prescription_trajectory.simulate()
    assert prescription_trajectory.thinning_volume[3] > 0.0
    assert (prescription_trajectory.tree_selection.as_flat() == 3).any()
