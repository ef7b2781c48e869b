from __future__ import annotations

import pytest

from silvopt.core.errors import PoolCapacityError, SilvoptValueError
from silvopt.silviculture import (
    CoordinateExploration,
    SilviculturalCoordinate,
    SilviculturalSpace,
)
from silvopt.simulation.trajectory import StandTrajectory
from silvopt.simulation.treatments import Treatments


def _space(**overrides) -> SilviculturalSpace:
    values = {
        "first_thin_periods": (0, 2, 4),
        "second_thin_periods": (0, 4, 6),
        "rotation_lengths": (5, 8),
    }
    values.update(overrides)
    return SilviculturalSpace(**values)


def _trajectory(stand, *thins: int, horizon: int = 9) -> StandTrajectory:
    return StandTrajectory(stand, horizon, treatments=Treatments.individual_tree_selection(thins))


def test_only_meaningful_cells_are_allocated():
    space = _space()
    # thins (none), (2), (4), (2, 4) fit both rotations; (2, 6) and (4, 6) only the 8 period one
    assert len(space) == 10
    for coordinate in space.coordinates():
        periods = space.thin_periods(coordinate)
        assert list(periods) == sorted(set(periods))
        assert space.rotation_length(coordinate) > max(periods, default=0)
    assert not space.is_valid(SilviculturalCoordinate(first_thin_index=0, second_thin_index=1))
    assert not space.is_valid(SilviculturalCoordinate(first_thin_index=2, second_thin_index=1))
    assert not space.is_valid(SilviculturalCoordinate(first_thin_index=9))
    with pytest.raises(SilvoptValueError):
        space[SilviculturalCoordinate(first_thin_index=2, second_thin_index=2, rotation_index=0)]


def test_frame_has_one_row_per_cell():
    frame = _space().to_frame()
    assert len(frame) == 10
    assert set(frame["rotation_length"]) == {5, 8}
    assert frame["solutions_in_pool"].sum() == 0


def test_space_rejects_empty_and_negative_dimensions():
    with pytest.raises(SilvoptValueError):
        SilviculturalSpace(rotation_lengths=())
    with pytest.raises(SilvoptValueError):
        SilviculturalSpace(first_thin_periods=(-1,), rotation_lengths=(5,))
    with pytest.raises(SilvoptValueError):
        SilviculturalSpace(parameter_count=0, rotation_lengths=(5,))


def test_assimilate_checks_stand_entries(stand):
    space = _space()
    coordinate = SilviculturalCoordinate(first_thin_index=1, rotation_index=1)
    assert space.assimilate_into_coordinate(_trajectory(stand, 2), 10.0, coordinate)
    assert space[coordinate].distribution.count == 1
    assert space.get_high_trajectory(coordinate).get_first_thin_period() == 2
    with pytest.raises(SilvoptValueError):
        space.assimilate_into_coordinate(_trajectory(stand, 4), 10.0, coordinate)
    with pytest.raises(SilvoptValueError):
        space.verify_stand_entries(_trajectory(stand, 2, horizon=6), coordinate)


def test_evaluated_coordinates_are_unique():
    space = _space()
    coordinate = SilviculturalCoordinate(first_thin_index=1)
    space.add_evaluated_coordinate(coordinate)
    with pytest.raises(SilvoptValueError):
        space.add_evaluated_coordinate(coordinate)


def test_high_trajectory_of_empty_pool_raises():
    with pytest.raises(SilvoptValueError):
        _space().get_high_trajectory(SilviculturalCoordinate())


def test_nearest_neighbor_keeps_parameter_set_and_thin_count(stand):
    space = _space(parameter_count=2)
    source = SilviculturalCoordinate(first_thin_index=1, rotation_index=0)
    space.assimilate_into_coordinate(_trajectory(stand, 2), 1.0, source)

    found = space.try_get_self_or_find_nearest_neighbor(SilviculturalCoordinate(first_thin_index=1))
    assert found is not None and found[1] == source
    pool, coordinate = space.try_get_self_or_find_nearest_neighbor(
        SilviculturalCoordinate(first_thin_index=2, rotation_index=1)
    )
    assert coordinate == source
    assert pool is space[source].pool

    two_thins = SilviculturalCoordinate(first_thin_index=1, second_thin_index=1)
    assert space.try_get_self_or_find_nearest_neighbor(two_thins) is None
    no_thins = SilviculturalCoordinate()
    assert space.try_get_self_or_find_nearest_neighbor(no_thins) is None
    other_parameters = SilviculturalCoordinate(parameter_index=1, first_thin_index=1)
    assert space.try_get_self_or_find_nearest_neighbor(other_parameters) is None


def test_nearest_neighbor_prefers_rotation_changes(stand, financial_scenarios):
    space = _space(financial_scenarios=financial_scenarios)
    origin = SilviculturalCoordinate(first_thin_index=1, rotation_index=1, financial_index=1)
    other_rotation = origin.with_cell(0, 1)
    other_finance = origin.with_cell(1, 0)
    space.assimilate_into_coordinate(_trajectory(stand, 2), 1.0, other_finance)
    space.assimilate_into_coordinate(_trajectory(stand, 2), 2.0, other_rotation)
    _, coordinate = space.try_get_self_or_find_nearest_neighbor(origin)
    assert coordinate == other_rotation


def test_pool_counters_and_capacity_check(stand):
    space = _space(pool_capacity=2)
    coordinate = SilviculturalCoordinate(first_thin_index=1)
    first = _trajectory(stand, 2)
    second = first.copy()
    second.set_tree_selection(0, 2)
    space.assimilate_into_coordinate(first, 1.0, coordinate)
    space.assimilate_into_coordinate(second, 2.0, coordinate)
    space.assimilate_into_coordinate(first, 0.5, coordinate)
    counters = space.get_pool_performance_counters()
    assert (counters.solutions_cached, counters.solutions_accepted, counters.solutions_rejected) == (
        2,
        2,
        1,
    )
    assert len(list(space.iter_pools())) == len(space)

    space._arena[0] = CoordinateExploration.create(3)
    with pytest.raises(PoolCapacityError):
        list(space.iter_pools())
