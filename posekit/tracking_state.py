"""Tracking state and the per-frame choices the tracker makes from it."""

from __future__ import annotations

import enum

from posekit.settings import Sensor

__all__ = [
    "TrackingState",
    "Strategy",
    "choose_strategy",
    "local_map_tracking_ok",
    "projection_search_radius",
    "motion_model_radius",
]

# Frames after a relocalisation during which tracking is treated more carefully.
_RECENT_RELOC_FRAMES = 2
_MIN_INLIERS_AFTER_RELOC = 50
_MIN_INLIERS = 30


class TrackingState(enum.IntEnum):
    """Where the tracker stands."""

    NO_IMAGES_YET = 0
    NOT_INITIALIZED = 1
    OK = 2
    LOST = 3


class Strategy(enum.Enum):
    """How the initial pose of the current frame is estimated."""

    INITIALIZE = "initialize"
    REFERENCE_KEYFRAME = "reference_keyframe"
    MOTION_MODEL = "motion_model"
    MOTION_MODEL_OR_REFERENCE = "motion_model_or_reference"
    RELOCALIZATION = "relocalization"
    MOTION_MODEL_AND_RELOCALIZATION = "motion_model_and_relocalization"


def choose_strategy(
    state: TrackingState,
    only_tracking: bool,
    has_velocity: bool,
    frame_id: int,
    last_reloc_frame_id: int,
    visual_odometry: bool,
) -> Strategy:
    """Pick the initial pose estimation for a frame.

    ``MOTION_MODEL_OR_REFERENCE`` means: try the motion model and fall back
    to the reference keyframe. ``MOTION_MODEL_AND_RELOCALIZATION`` means:
    compute both and prefer relocalisation when it succeeds.
    """
    state = TrackingState(state)
    if state in (TrackingState.NO_IMAGES_YET, TrackingState.NOT_INITIALIZED):
        return Strategy.INITIALIZE

    if not only_tracking:
        if state is not TrackingState.OK:
            return Strategy.RELOCALIZATION
        if not has_velocity or frame_id < last_reloc_frame_id + _RECENT_RELOC_FRAMES:
            return Strategy.REFERENCE_KEYFRAME
        return Strategy.MOTION_MODEL_OR_REFERENCE

    if state is TrackingState.LOST:
        return Strategy.RELOCALIZATION
    if not visual_odometry:
        return Strategy.MOTION_MODEL if has_velocity else Strategy.REFERENCE_KEYFRAME
    if has_velocity:
        return Strategy.MOTION_MODEL_AND_RELOCALIZATION
    return Strategy.RELOCALIZATION


def local_map_tracking_ok(
    frame_id: int, last_reloc_frame_id: int, max_frames: int, inliers: int
) -> bool:
    """Whether local-map tracking succeeded, stricter just after relocalisation."""
    if frame_id < last_reloc_frame_id + max_frames and inliers < _MIN_INLIERS_AFTER_RELOC:
        return False
    return inliers >= _MIN_INLIERS


def projection_search_radius(sensor: Sensor, frame_id: int, last_reloc_frame_id: int) -> int:
    """Window size factor for matching local map points by projection."""
    radius = 1
    if Sensor(sensor) is Sensor.RGBD:
        radius = 3
    if frame_id < last_reloc_frame_id + _RECENT_RELOC_FRAMES:
        radius = 5
    return radius


def motion_model_radius(sensor: Sensor) -> int:
    """Window size for matching last-frame points under the motion model."""
    return 7 if Sensor(sensor) is Sensor.STEREO else 15