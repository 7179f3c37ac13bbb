"""Saving estimated camera trajectories in TUM and KITTI text formats.

Frame poses are stored relative to a reference keyframe, so that later
keyframe optimisation carries over to every tracked frame. When a
reference keyframe has been culled, the spanning tree is walked up to a
keyframe that is still in the map.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Sequence

import numpy as np

from posekit.settings import Sensor

__all__ = [
    "FrameRecord",
    "KeyFrameRecord",
    "rotation_to_quaternion",
    "camera_poses",
    "save_trajectory_tum",
    "save_trajectory_kitti",
    "save_keyframe_trajectory_tum",
]

_log = logging.getLogger(__name__)


def _as_transform(matrix) -> np.ndarray:
    return np.asarray(matrix, dtype=float).reshape(4, 4)


def _invert(transform: np.ndarray) -> np.ndarray:
    rotation = transform[:3, :3]
    inverse = np.eye(4)
    inverse[:3, :3] = rotation.T
    inverse[:3, 3] = -rotation.T @ transform[:3, 3]
    return inverse


@dataclass(eq=False)
class KeyFrameRecord:
    """A keyframe: its world-to-camera pose and its place in the spanning tree.

    ``pose_to_parent`` is the transform from the parent's camera frame to
    this keyframe's camera frame; it is used once the keyframe is bad.
    """

    id: int
    timestamp: float
    pose: np.ndarray
    bad: bool = False
    parent: Optional[KeyFrameRecord] = field(default=None, repr=False)
    pose_to_parent: np.ndarray = field(default_factory=lambda: np.eye(4), repr=False)

    @property
    def pose_inverse(self) -> np.ndarray:
        """Camera-to-world transform."""
        return _invert(_as_transform(self.pose))

    @property
    def camera_center(self) -> np.ndarray:
        """Camera position in world coordinates."""
        return self.pose_inverse[:3, 3]


@dataclass(frozen=True)
class FrameRecord:
    """A tracked frame: its pose relative to a reference keyframe.

    ``lost`` marks frames for which tracking had failed.
    """

    timestamp: float
    relative_pose: np.ndarray
    reference: KeyFrameRecord
    lost: bool = False


def rotation_to_quaternion(rotation) -> np.ndarray:
    """Unit quaternion (x, y, z, w) of a 3x3 rotation matrix."""
    m = np.asarray(rotation, dtype=float).reshape(3, 3)
    q = np.zeros(4)
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0.0:
        t = np.sqrt(trace + 1.0)
        q[3] = 0.5 * t
        t = 0.5 / t
        q[0] = (m[2, 1] - m[1, 2]) * t
        q[1] = (m[0, 2] - m[2, 0]) * t
        q[2] = (m[1, 0] - m[0, 1]) * t
        return q
    i = 0
    if m[1, 1] > m[0, 0]:
        i = 1
    if m[2, 2] > m[i, i]:
        i = 2
    j = (i + 1) % 3
    k = (j + 1) % 3
    t = np.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
    q[i] = 0.5 * t
    t = 0.5 / t
    q[3] = (m[k, j] - m[j, k]) * t
    q[j] = (m[j, i] + m[i, j]) * t
    q[k] = (m[k, i] + m[i, k]) * t
    return q


def _reference_to_origin(keyframe: KeyFrameRecord, origin: np.ndarray) -> np.ndarray:
    trw = np.eye(4)
    while keyframe.bad:
        if keyframe.parent is None:
            raise ValueError(f"keyframe {keyframe.id} is bad and has no parent")
        trw = trw @ _as_transform(keyframe.pose_to_parent)
        keyframe = keyframe.parent
    return trw @ _as_transform(keyframe.pose) @ origin


def camera_poses(records: Iterable[FrameRecord], origin=None) -> list[np.ndarray]:
    """Camera-to-world transforms (4x4), one per record, lost ones included.

    ``origin`` is the camera-to-world transform of the keyframe that should
    sit at the origin (usually the first keyframe); ``None`` keeps the world
    frame as it is.
    """
    two = np.eye(4) if origin is None else _as_transform(origin)
    poses = []
    for record in records:
        tcw = _as_transform(record.relative_pose) @ _reference_to_origin(record.reference, two)
        poses.append(_invert(tcw))
    return poses


def _fmt(values: Iterable[float], decimals: int) -> list[str]:
    return [f"{float(np.float32(v)):.{decimals}f}" for v in values]


def _require_non_monocular(sensor: Sensor, name: str) -> None:
    if Sensor(sensor) is Sensor.MONOCULAR:
        raise ValueError(f"{name} cannot be used for monocular")


def save_trajectory_tum(path, records: Sequence[FrameRecord], origin, sensor: Sensor) -> None:
    """Write non-lost frame poses as ``timestamp tx ty tz qx qy qz qw`` lines."""
    _require_non_monocular(sensor, "save_trajectory_tum")
    _log.info("Saving camera trajectory to %s", path)
    records = list(records)
    lines = []
    for record, twc in zip(records, camera_poses(records, origin)):
        if record.lost:
            continue
        q = rotation_to_quaternion(twc[:3, :3])
        fields = [f"{record.timestamp:.6f}", *_fmt(twc[:3, 3], 9), *_fmt(q, 9)]
        lines.append(" ".join(fields) + "\n")
    Path(path).write_text("".join(lines), encoding="utf-8")


def save_trajectory_kitti(path, records: Sequence[FrameRecord], origin, sensor: Sensor) -> None:
    """Write every frame pose as the 12 entries of the top 3x4 of its camera-to-world matrix."""
    _require_non_monocular(sensor, "save_trajectory_kitti")
    _log.info("Saving camera trajectory to %s", path)
    lines = []
    for twc in camera_poses(records, origin):
        lines.append(" ".join(_fmt(twc[:3, :].reshape(-1), 9)) + "\n")
    Path(path).write_text("".join(lines), encoding="utf-8")


def save_keyframe_trajectory_tum(path, keyframes: Iterable[KeyFrameRecord]) -> None:
    """Write good keyframes, ordered by id, as TUM lines."""
    _log.info("Saving keyframe trajectory to %s", path)
    lines = []
    for keyframe in sorted(keyframes, key=lambda kf: kf.id):
        if keyframe.bad:
            continue
        pose = _as_transform(keyframe.pose)
        q = rotation_to_quaternion(pose[:3, :3].T)
        fields = [
            f"{keyframe.timestamp:.6f}",
            *_fmt(keyframe.camera_center, 7),
            *_fmt(q, 7),
        ]
        lines.append(" ".join(fields) + "\n")
    Path(path).write_text("".join(lines), encoding="utf-8")