"""Choosing which stereo/RGB-D keypoints become new map points.

All close points (depth under a threshold) are used; when there are
fewer than a minimum number of them, the closest ones are used instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

__all__ = ["PointPlan", "plan_depth_points"]


@dataclass(frozen=True)
class PointPlan:
    """Keypoint indices to create map points for, and those already tracked."""

    create: list[int] = field(default_factory=list)
    keep: list[int] = field(default_factory=list)

    @property
    def count(self) -> int:
        """Number of points the plan accounts for."""
        return len(self.create) + len(self.keep)


def plan_depth_points(
    depths: Sequence[float],
    tracked: Sequence[bool],
    depth_threshold: float,
    min_points: int = 100,
) -> PointPlan:
    """Walk keypoints by increasing positive depth and plan new map points.

    ``tracked[i]`` is true when keypoint ``i`` already has a map point with
    observations. The walk stops after the first point farther than
    ``depth_threshold`` once more than ``min_points`` have been counted.
    """
    if len(depths) != len(tracked):
        raise ValueError("depths and tracked must have the same length")

    ordered = sorted((z, i) for i, z in enumerate(depths) if z > 0)
    create: list[int] = []
    keep: list[int] = []
    for depth, index in ordered:
        (keep if tracked[index] else create).append(index)
        if depth > depth_threshold and len(create) + len(keep) > min_points:
            break
    return PointPlan(create, keep)