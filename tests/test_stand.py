from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from pydantic import ValidationError

from silvopt.core.errors import SilvoptValueError
from silvopt.stand.io import load_financial_scenarios, load_stand
from silvopt.stand.models import FinancialScenario, StandConfig, TreeRecord
from silvopt.stand.selection import TreeSelectionSchedule
from silvopt.stand.snapshot import StandDensity, StandSnapshot


def test_selection_flat_indices_span_species():
    selection = TreeSelectionSchedule({"DF": 3, "WH": 2}, [2, 5])
    assert len(selection) == 5
    assert selection.locate(0) == ("DF", 0)
    assert selection.locate(3) == ("WH", 0)
    assert selection.set(4, 5) == 0
    assert selection.for_species("WH").tolist() == [0, 5]
    assert selection.as_flat().tolist() == [0, 0, 0, 0, 5]


def test_selection_rejects_unknown_period():
    selection = TreeSelectionSchedule({"DF": 2}, [3])
    with pytest.raises(SilvoptValueError):
        selection.set(0, 4)
    with pytest.raises(SilvoptValueError):
        selection.set(2, 3)


def test_selection_views_are_read_only():
    selection = TreeSelectionSchedule({"DF": 2}, [3])
    with pytest.raises(ValueError):
        selection.for_species("DF")[0] = 3


def test_selection_distance_and_copy():
    selection = TreeSelectionSchedule({"DF": 3, "WH": 2}, [2])
    clone = selection.copy()
    clone.set(1, 2)
    clone.set(3, 2)
    assert selection.distance(clone) == 2
    assert selection != clone
    selection.copy_from(clone)
    assert selection == clone


def test_selection_removed_in_and_clear_period():
    selection = TreeSelectionSchedule({"DF": 3}, [2, 4])
    selection.set_flat(np.array([2, 4, 2], dtype=np.int32))
    assert selection.removed_in(2)["DF"].tolist() == [True, False, True]
    selection.clear_period(2)
    assert selection.as_flat().tolist() == [0, 4, 0]
    with pytest.raises(SilvoptValueError):
        selection.set_flat(np.array([1, 0, 0], dtype=np.int32))


def test_snapshot_groups_trees_by_species(stand):
    snapshot = StandSnapshot.from_config(stand)
    assert snapshot.species() == ["DF", "WH", "RC"]
    assert snapshot.tree_count() == 10
    assert snapshot.trees["DF"].dbh_cm.flags.writeable is False


def test_with_removals_shares_untouched_species(stand):
    snapshot = StandSnapshot.from_config(stand)
    removed = {"DF": np.array([True, False, False, False, False])}
    thinned = snapshot.with_removals(removed)
    assert thinned.trees["WH"] is snapshot.trees["WH"]
    assert thinned.trees["DF"].expansion_factor[0] == 0.0
    assert thinned.basal_area_per_ha() < snapshot.basal_area_per_ha()


def test_density_crown_competition_decreases_with_height(stand):
    snapshot = StandSnapshot.from_config(stand)
    density = StandDensity.from_snapshot(snapshot)
    assert density.basal_area_per_ha == pytest.approx(snapshot.basal_area_per_ha())
    assert density.trees_per_ha == pytest.approx(snapshot.trees_per_ha())
    ccf = density.crown_competition_by_height
    assert ccf[0] == density.crown_competition_factor
    assert np.all(np.diff(ccf) <= 0.0)
    assert density.crown_competition_above(40.0) == 0.0


def test_tree_record_validation():
    with pytest.raises(ValidationError):
        TreeRecord(species="DF", dbh_cm=-1.0, height_m=10.0, expansion_factor=10.0)
    with pytest.raises(ValidationError):
        StandConfig(name="empty", trees=[])
    with pytest.raises(ValidationError):
        FinancialScenario(discount_rate=0.0)


def test_load_stand_from_yaml_and_csv(tmp_path: Path):
    (tmp_path / "trees.csv").write_text(
        "species,dbh_cm,height_m,expansion_factor\nDF,20.0,18.0,40\nWH,15.0,14.0,50\n",
        encoding="utf-8",
    )
    stand_path = tmp_path / "stand.yaml"
    stand_path.write_text(
        "name: yaml-stand\nage_years: 15\ntrees_csv: trees.csv\n"
        "financial:\n  - name: low\n    discount_rate: 0.03\n",
        encoding="utf-8",
    )
    stand = load_stand(stand_path)
    assert stand.name == "yaml-stand"
    assert [tree.species for tree in stand.trees] == ["DF", "WH"]
    assert stand.trees[0].crown_ratio == 0.5
    scenarios = load_financial_scenarios(stand_path)
    assert [scenario.name for scenario in scenarios] == ["low"]
