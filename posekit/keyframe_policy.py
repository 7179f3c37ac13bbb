"""Deciding when the tracker should insert a new keyframe."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from posekit.settings import Sensor

__all__ = ["KeyFrameDecision", "KeyFrameContext", "need_new_keyframe", "count_close_points"]

_MAX_TRACKED_CLOSE = 100
_MIN_NON_TRACKED_CLOSE = 70
_MIN_INLIERS = 15
_MAX_QUEUED_KEYFRAMES = 3


@dataclass(frozen=True)
class KeyFrameDecision:
    """Whether to insert a keyframe and whether to interrupt local bundle adjustment."""

    insert: bool
    interrupt_ba: bool = False

    def __bool__(self) -> bool:
        return self.insert


@dataclass(frozen=True)
class KeyFrameContext:
    """Tracker and local-mapping state needed for the keyframe decision.

    ``reference_matches`` is the number of map points of the reference
    keyframe seen by at least ``min_observations`` keyframes. ``depths``
    and ``tracked`` describe the current frame's keypoints: measured depth
    (non-positive when unknown) and whether a non-outlier map point is
    matched to it.
    """

    sensor: Sensor
    frame_id: int
    last_keyframe_id: int
    last_reloc_frame_id: int
    keyframes_in_map: int
    reference_matches: int
    matches_inliers: int
    max_frames: int
    min_frames: int = 0
    only_tracking: bool = False
    local_mapper_stopped: bool = False
    local_mapper_stop_requested: bool = False
    local_mapping_idle: bool = True
    keyframes_in_queue: int = 0
    depth_threshold: float = 0.0
    depths: Sequence[float] = field(default_factory=tuple)
    tracked: Sequence[bool] = field(default_factory=tuple)

    @property
    def min_observations(self) -> int:
        """Observations a reference map point needs to count as tracked."""
        return 2 if self.keyframes_in_map <= 2 else 3


def count_close_points(
    depths: Sequence[float], tracked: Sequence[bool], depth_threshold: float
) -> tuple[int, int]:
    """Count close keypoints (0 < depth < threshold): (tracked, not tracked)."""
    if len(depths) != len(tracked):
        raise ValueError("depths and tracked must have the same length")
    tracked_close = 0
    non_tracked_close = 0
    for depth, is_tracked in zip(depths, tracked):
        if 0 < depth < depth_threshold:
            if is_tracked:
                tracked_close += 1
            else:
                non_tracked_close += 1
    return tracked_close, non_tracked_close


def need_new_keyframe(context: KeyFrameContext) -> KeyFrameDecision:
    """Decide whether the current frame should become a keyframe."""
    ctx = context
    if ctx.only_tracking:
        return KeyFrameDecision(False)

    if ctx.local_mapper_stopped or ctx.local_mapper_stop_requested:
        return KeyFrameDecision(False)

    n_kfs = ctx.keyframes_in_map
    if ctx.frame_id < ctx.last_reloc_frame_id + ctx.max_frames and n_kfs > ctx.max_frames:
        return KeyFrameDecision(False)

    monocular = ctx.sensor is Sensor.MONOCULAR
    tracked_close = non_tracked_close = 0
    if not monocular:
        tracked_close, non_tracked_close = count_close_points(
            ctx.depths, ctx.tracked, ctx.depth_threshold
        )
    need_close = tracked_close < _MAX_TRACKED_CLOSE and non_tracked_close > _MIN_NON_TRACKED_CLOSE

    ratio = 0.75
    if n_kfs < 2:
        ratio = 0.4
    if monocular:
        ratio = 0.9

    inliers = ctx.matches_inliers
    ref = ctx.reference_matches
    c1a = ctx.frame_id >= ctx.last_keyframe_id + ctx.max_frames
    c1b = ctx.frame_id >= ctx.last_keyframe_id + ctx.min_frames and ctx.local_mapping_idle
    c1c = not monocular and (inliers < ref * 0.25 or need_close)
    c2 = (inliers < ref * ratio or need_close) and inliers > _MIN_INLIERS

    if not ((c1a or c1b or c1c) and c2):
        return KeyFrameDecision(False)

    if ctx.local_mapping_idle:
        return KeyFrameDecision(True)

    if monocular:
        return KeyFrameDecision(False, interrupt_ba=True)
    return KeyFrameDecision(ctx.keyframes_in_queue < _MAX_QUEUED_KEYFRAMES, interrupt_ba=True)