from __future__ import annotations

import numpy as np
import pytest

from silvopt.core.errors import SilvoptValueError
from silvopt.optimization.heuristics import PrescriptionEnumeration, SimulatedAnnealing
from silvopt.optimization.parameters import PrescriptionParameters, SimulatedAnnealingParameters
from silvopt.silviculture import SilviculturalSpace, optimize_space, transfer_schedule
from silvopt.simulation.objective import ObjectiveEvaluator
from silvopt.simulation.trajectory import StandTrajectory
from silvopt.simulation.treatments import Treatments
from silvopt.telemetry import SnapshotBus


def _space(financial_scenarios) -> SilviculturalSpace:
    return SilviculturalSpace(
        first_thin_periods=(2, 4),
        rotation_lengths=(6, 9),
        financial_scenarios=financial_scenarios,
        pool_capacity=4,
    )


def _enumeration_factory(space: SilviculturalSpace):
    parameters = PrescriptionParameters(maximum_intensity=20.0, default_intensity_step_size=10.0)

    def factory(trajectory, parameter_index):
        return PrescriptionEnumeration(
            trajectory,
            parameters,
            evaluator=ObjectiveEvaluator(space.financial_scenarios),
            rotation_lengths=space.rotation_lengths,
        )

    return factory


def _high_values(space: SilviculturalSpace) -> dict:
    return {coordinate: pool.high_value for coordinate, pool in space.iter_pools()}


def test_prescription_sweep_fills_every_cell(stand, financial_scenarios):
    space = _space(financial_scenarios)
    sweep = optimize_space(stand, space, _enumeration_factory(space), prescriptions=True)
    assert set(sweep.results) == {(0, 0, 0, 0), (0, 1, 0, 0)}
    assert len(space.coordinates_evaluated) == len(space) == 8
    for coordinate, pool in space.iter_pools():
        assert len(pool) >= 1
        assert np.isfinite(pool.high_value)
        assert space[coordinate].distribution.count == 1
    assert sweep.counters.moves_accepted + sweep.counters.moves_rejected > 0


def test_threaded_sweep_matches_serial(stand, financial_scenarios):
    serial = _space(financial_scenarios)
    optimize_space(stand, serial, _enumeration_factory(serial), prescriptions=True)
    threaded = _space(financial_scenarios)
    optimize_space(
        stand, threaded, _enumeration_factory(threaded), prescriptions=True, max_workers=2
    )
    serial_values = _high_values(serial)
    threaded_values = _high_values(threaded)
    assert serial_values.keys() == threaded_values.keys()
    for coordinate, value in serial_values.items():
        assert threaded_values[coordinate] == pytest.approx(value)


def test_sweep_streams_labelled_snapshots(stand, financial_scenarios):
    space = _space(financial_scenarios)
    bus = SnapshotBus()
    optimize_space(
        stand, space, _enumeration_factory(space), prescriptions=True, watch_sink=bus.sink()
    )
    labels = {snapshot.metadata["combination"] for snapshot in bus.drain()}
    assert labels == {"2", "4"}


def test_serial_sweep_warm_starts_from_neighbors(stand, evaluator):
    space = SilviculturalSpace(
        first_thin_periods=(2, 4),
        rotation_lengths=(9,),
        financial_scenarios=evaluator.financial_scenarios,
    )
    parameters = SimulatedAnnealingParameters(iterations=20, initial_probability=0.0, reheat_by=0.0)

    def factory(trajectory, parameter_index):
        return SimulatedAnnealing(trajectory, parameters, evaluator=evaluator, seed=parameter_index)

    sweep = optimize_space(stand, space, factory)
    assert sweep.warm_starts == 1
    assert len(sweep.results) == 2


def test_transfer_schedule_maps_thin_by_thin(stand):
    source = StandTrajectory(stand, 9, treatments=Treatments.individual_tree_selection([2]))
    source.set_tree_selection(0, 2)
    source.set_tree_selection(6, 2)
    target = StandTrajectory(stand, 9, treatments=Treatments.individual_tree_selection([4]))
    moved = transfer_schedule(target, source)
    assert moved is not target
    assert set(np.flatnonzero(moved.tree_selection.as_flat()).tolist()) == {0, 6}
    assert moved.get_tree_selection(0) == 4
    assert not target.tree_selection.as_flat().any()

    two_thins = StandTrajectory(stand, 9, treatments=Treatments.individual_tree_selection([2, 5]))
    with pytest.raises(SilvoptValueError):
        transfer_schedule(two_thins, source)


def test_transfer_schedule_copies_prescriptions(stand):
    source = StandTrajectory(stand, 9, treatments=Treatments.prescriptions([3]))
    source.set_prescription(0, 10.0, 5.0, 0.0)
    target = StandTrajectory(stand, 9, treatments=Treatments.prescriptions([5]))
    moved = transfer_schedule(target, source)
    assert moved.treatments.prescription(0).intensities() == (10.0, 5.0, 0.0)
    assert moved.get_first_thin_period() == 5
