"""Similarity transform (Sim3) estimation between two keyframes with RANSAC.

Matched 3D points expressed in the camera frames of two keyframes are
aligned in closed form with Horn's unit-quaternion method. Hypotheses
from random minimal sets are scored by reprojection in both images.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

__all__ = [
    "Sim3Match",
    "Sim3Estimate",
    "Sim3Result",
    "Sim3Solver",
    "compute_sim3",
    "rodrigues",
    "project",
    "from_camera_to_image",
]

# Chi-square threshold (2 degrees of freedom, 99%) applied to each image.
_CHI2_THRESHOLD = 9.210
_MIN_SET = 3


@dataclass(frozen=True)
class Sim3Match:
    """A point seen by both keyframes, in each keyframe's camera frame.

    ``sigma2_1`` and ``sigma2_2`` are the squared scale uncertainties of the
    keypoints observing it; ``bad`` marks a match that must be ignored.
    """

    point_1: tuple[float, float, float]
    point_2: tuple[float, float, float]
    sigma2_1: float = 1.0
    sigma2_2: float = 1.0
    bad: bool = False


@dataclass(frozen=True)
class Sim3Estimate:
    """A similarity taking frame-2 points to frame 1: ``p1 = s * R @ p2 + t``."""

    rotation: np.ndarray
    translation: np.ndarray
    scale: float
    t12: np.ndarray
    t21: np.ndarray


@dataclass(frozen=True)
class Sim3Result:
    """Outcome of a RANSAC run.

    ``transform`` is the 4x4 similarity T12, or ``None`` when none was
    accepted. ``inliers`` has one flag per input match.
    """

    transform: Optional[np.ndarray]
    inliers: list[bool]
    n_inliers: int
    no_more: bool

    @property
    def success(self) -> bool:
        return self.transform is not None


def rodrigues(axis_angle) -> np.ndarray:
    """Rotation matrix from an axis-angle vector (axis scaled by angle)."""
    r = np.asarray(axis_angle, dtype=float).reshape(3)
    theta = float(np.linalg.norm(r))
    if theta < np.finfo(float).eps:
        return np.eye(3)
    axis = r / theta
    skew = np.array([
        [0.0, -axis[2], axis[1]],
        [axis[2], 0.0, -axis[0]],
        [-axis[1], axis[0], 0.0],
    ])
    c, s = math.cos(theta), math.sin(theta)
    return c * np.eye(3) + (1.0 - c) * np.outer(axis, axis) + s * skew


def _as_points(points, name: str) -> np.ndarray:
    pts = np.asarray(points, dtype=float)
    if pts.ndim != 2 or pts.shape[1] != 3:
        raise ValueError(f"{name} must have shape (N, 3)")
    return pts


def compute_sim3(points_1, points_2, fix_scale: bool = False) -> Sim3Estimate:
    """Closed-form similarity aligning ``points_2`` onto ``points_1``."""
    p1 = _as_points(points_1, "points_1")
    p2 = _as_points(points_2, "points_2")
    if p1.shape != p2.shape:
        raise ValueError("points_1 and points_2 must have the same shape")
    if len(p1) == 0:
        raise ValueError("at least one point pair is required")

    o1 = p1.mean(axis=0)
    o2 = p2.mean(axis=0)
    pr1 = (p1 - o1).T
    pr2 = (p2 - o2).T

    m = pr2 @ pr1.T
    n11 = m[0, 0] + m[1, 1] + m[2, 2]
    n12 = m[1, 2] - m[2, 1]
    n13 = m[2, 0] - m[0, 2]
    n14 = m[0, 1] - m[1, 0]
    n22 = m[0, 0] - m[1, 1] - m[2, 2]
    n23 = m[0, 1] + m[1, 0]
    n24 = m[2, 0] + m[0, 2]
    n33 = -m[0, 0] + m[1, 1] - m[2, 2]
    n34 = m[1, 2] + m[2, 1]
    n44 = -m[0, 0] - m[1, 1] + m[2, 2]
    n = np.array([
        [n11, n12, n13, n14],
        [n12, n22, n23, n24],
        [n13, n23, n33, n34],
        [n14, n24, n34, n44],
    ])

    _, eigvecs = np.linalg.eigh(n)
    quat = eigvecs[:, -1]
    vec = quat[1:4]
    vec_norm = float(np.linalg.norm(vec))
    if vec_norm > 0.0:
        angle = math.atan2(vec_norm, quat[0])
        rotation = rodrigues(2.0 * angle * vec / vec_norm)
    else:
        rotation = np.eye(3)

    p3 = rotation @ pr2
    if fix_scale:
        scale = 1.0
    else:
        with np.errstate(divide="ignore", invalid="ignore"):
            scale = float(np.sum(pr1 * p3) / np.sum(p3 * p3))

    translation = o1 - scale * rotation @ o2

    t12 = np.eye(4)
    t12[:3, :3] = scale * rotation
    t12[:3, 3] = translation

    with np.errstate(divide="ignore", invalid="ignore"):
        s_r_inv = (1.0 / scale) * rotation.T
    t21 = np.eye(4)
    t21[:3, :3] = s_r_inv
    t21[:3, 3] = -s_r_inv @ translation

    return Sim3Estimate(rotation, translation, scale, t12, t21)


def _intrinsics(k) -> tuple[float, float, float, float]:
    mat = np.asarray(k, dtype=float).reshape(3, 3)
    return mat[0, 0], mat[1, 1], mat[0, 2], mat[1, 2]


def from_camera_to_image(points, k) -> np.ndarray:
    """Project camera-frame points (N x 3) to pixels (N x 2) with intrinsics ``k``."""
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    fx, fy, cx, cy = _intrinsics(k)
    with np.errstate(divide="ignore", invalid="ignore"):
        inv_z = 1.0 / pts[:, 2]
        return np.column_stack((fx * pts[:, 0] * inv_z + cx, fy * pts[:, 1] * inv_z + cy))


def project(points, transform, k) -> np.ndarray:
    """Transform points by the 4x4 ``transform`` and project them with ``k``."""
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    t = np.asarray(transform, dtype=float).reshape(4, 4)
    return from_camera_to_image(pts @ t[:3, :3].T + t[:3, 3], k)


def _ransac_iterations(probability: float, epsilon: float, fallback: int) -> int:
    try:
        value = math.log(1 - probability) / math.log(1 - epsilon**3)
    except (ValueError, ZeroDivisionError):
        return fallback
    if not math.isfinite(value):
        return fallback
    return math.ceil(value)


class Sim3Solver:
    """RANSAC Sim3 solver; keeps its iteration count and best hypothesis across calls."""

    def __init__(
        self,
        matches: Sequence[Optional[Sim3Match]],
        k1,
        k2,
        fix_scale: bool = False,
        rng: Optional[random.Random] = None,
    ) -> None:
        matches = list(matches)
        self._n_matches = len(matches)
        kept = [(i, m) for i, m in enumerate(matches) if m is not None and not m.bad]
        self._indices = [i for i, _ in kept]
        self._p1 = np.array([m.point_1 for _, m in kept], dtype=float).reshape(-1, 3)
        self._p2 = np.array([m.point_2 for _, m in kept], dtype=float).reshape(-1, 3)
        self._max_error1 = np.array([_CHI2_THRESHOLD * m.sigma2_1 for _, m in kept], dtype=float)
        self._max_error2 = np.array([_CHI2_THRESHOLD * m.sigma2_2 for _, m in kept], dtype=float)
        self.k1 = np.asarray(k1, dtype=float).reshape(3, 3)
        self.k2 = np.asarray(k2, dtype=float).reshape(3, 3)
        self.fix_scale = fix_scale
        self._rng = rng if rng is not None else random.Random()

        self._p1_im1 = from_camera_to_image(self._p1, self.k1)
        self._p2_im2 = from_camera_to_image(self._p2, self.k2)

        self._best_count = 0
        self._best: Optional[Sim3Estimate] = None
        self.set_ransac_parameters()

    @property
    def correspondences(self) -> int:
        """Number of usable matches."""
        return len(self._indices)

    @property
    def best_estimate(self) -> Optional[Sim3Estimate]:
        """The hypothesis with the most inliers seen so far."""
        return self._best

    def set_ransac_parameters(
        self,
        probability: float = 0.99,
        min_inliers: int = 6,
        max_iterations: int = 300,
    ) -> None:
        """Configure RANSAC and reset the iteration counter."""
        n = self.correspondences
        self.probability = probability
        self.min_inliers = min_inliers

        if min_inliers == n:
            n_iterations = 1
        else:
            epsilon = min_inliers / n if n > 0 else 0.0
            n_iterations = _ransac_iterations(probability, epsilon, max_iterations)
        self.max_iterations = max(1, min(n_iterations, max_iterations))
        self.iterations = 0

    def find(self) -> Sim3Result:
        """Run RANSAC for the whole iteration budget."""
        return self.iterate(self.max_iterations)

    def iterate(self, n_iterations: int) -> Sim3Result:
        """Run up to ``n_iterations`` more RANSAC iterations."""
        failed = [False] * self._n_matches
        n = self.correspondences
        if n < self.min_inliers or n < _MIN_SET:
            return Sim3Result(None, failed, 0, True)

        current = 0
        while self.iterations < self.max_iterations and current < n_iterations:
            current += 1
            self.iterations += 1

            sample = self._sample()
            estimate = compute_sim3(self._p1[sample], self._p2[sample], self.fix_scale)
            inliers = self._check_inliers(estimate)
            count = int(inliers.sum())

            if count >= self._best_count:
                self._best_count = count
                self._best = estimate
                if count > self.min_inliers:
                    return Sim3Result(estimate.t12.copy(), self._expand(inliers), count, False)

        return Sim3Result(None, failed, 0, self.iterations >= self.max_iterations)

    def _sample(self) -> list[int]:
        available = list(range(self.correspondences))
        chosen = []
        for _ in range(_MIN_SET):
            pick = self._rng.randint(0, len(available) - 1)
            chosen.append(available[pick])
            available[pick] = available[-1]
            available.pop()
        return chosen

    def _check_inliers(self, estimate: Sim3Estimate) -> np.ndarray:
        with np.errstate(all="ignore"):
            p2_im1 = project(self._p2, estimate.t12, self.k1)
            p1_im2 = project(self._p1, estimate.t21, self.k2)
            err1 = np.sum((self._p1_im1 - p2_im1) ** 2, axis=1)
            err2 = np.sum((p1_im2 - self._p2_im2) ** 2, axis=1)
            return (err1 < self._max_error1) & (err2 < self._max_error2)

    def _expand(self, mask: np.ndarray) -> list[bool]:
        flags = [False] * self._n_matches
        for index, inlier in zip(self._indices, mask):
            if inlier:
                flags[index] = True
        return flags