import pytest

from posekit.settings import Sensor
from posekit.tracking_state import (
    Strategy,
    TrackingState,
    choose_strategy,
    local_map_tracking_ok,
    motion_model_radius,
    projection_search_radius,
)


@pytest.mark.parametrize("state", [TrackingState.NO_IMAGES_YET, TrackingState.NOT_INITIALIZED])
@pytest.mark.parametrize("only_tracking", [False, True])
def test_uninitialized_states_initialize(state, only_tracking):
    assert choose_strategy(state, only_tracking, True, 10, 0, False) is Strategy.INITIALIZE


def test_mapping_mode_without_velocity_uses_reference():
    assert (
        choose_strategy(TrackingState.OK, False, False, 10, 0, False)
        is Strategy.REFERENCE_KEYFRAME
    )


def test_mapping_mode_right_after_relocalisation_uses_reference():
    assert (
        choose_strategy(TrackingState.OK, False, True, 11, 10, False)
        is Strategy.REFERENCE_KEYFRAME
    )


def test_mapping_mode_with_velocity_uses_motion_model_with_fallback():
    assert (
        choose_strategy(TrackingState.OK, False, True, 12, 10, False)
        is Strategy.MOTION_MODEL_OR_REFERENCE
    )


def test_mapping_mode_lost_relocalizes():
    assert (
        choose_strategy(TrackingState.LOST, False, True, 50, 0, False)
        is Strategy.RELOCALIZATION
    )


def test_localization_mode_lost_relocalizes():
    assert choose_strategy(TrackingState.LOST, True, True, 50, 0, True) is Strategy.RELOCALIZATION


@pytest.mark.parametrize(
    "has_velocity, expected",
    [(True, Strategy.MOTION_MODEL), (False, Strategy.REFERENCE_KEYFRAME)],
)
def test_localization_mode_tracking_map(has_velocity, expected):
    assert choose_strategy(TrackingState.OK, True, has_velocity, 50, 0, False) is expected


@pytest.mark.parametrize(
    "has_velocity, expected",
    [
        (True, Strategy.MOTION_MODEL_AND_RELOCALIZATION),
        (False, Strategy.RELOCALIZATION),
    ],
)
def test_localization_mode_visual_odometry(has_velocity, expected):
    assert choose_strategy(TrackingState.OK, True, has_velocity, 50, 0, True) is expected


def test_local_map_thresholds_after_relocalisation():
    assert local_map_tracking_ok(5, 0, 30, 49) is False
    assert local_map_tracking_ok(5, 0, 30, 50) is True


def test_local_map_thresholds_normal():
    assert local_map_tracking_ok(100, 0, 30, 29) is False
    assert local_map_tracking_ok(100, 0, 30, 30) is True
    assert local_map_tracking_ok(100, 0, 30, 49) is True


def test_projection_search_radius():
    assert projection_search_radius(Sensor.MONOCULAR, 100, 0) == 1
    assert projection_search_radius(Sensor.STEREO, 100, 0) == 1
    assert projection_search_radius(Sensor.RGBD, 100, 0) == 3
    assert projection_search_radius(Sensor.RGBD, 11, 10) == 5
    assert projection_search_radius(Sensor.MONOCULAR, 12, 10) == 1


def test_motion_model_radius():
    assert motion_model_radius(Sensor.STEREO) == 7
    assert motion_model_radius(Sensor.MONOCULAR) == 15
    assert motion_model_radius(Sensor.RGBD) == 15