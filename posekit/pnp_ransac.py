"""RANSAC wrapper around EPnP for robust camera pose estimation.

Correspondences between 3D map points and 2D keypoints are sampled in
minimal sets, a pose is computed for each set with EPnP, and the pose
with the most inliers is refined using all of its inliers.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from posekit.epnp import CameraIntrinsics, solve_epnp

__all__ = ["Correspondence", "RansacResult", "PnPRansac"]


@dataclass(frozen=True)
class Correspondence:
    """A 3D world point matched to an undistorted 2D keypoint.

    ``sigma2`` is the squared scale uncertainty of the keypoint's pyramid
    level; ``bad`` marks a map point that must be ignored.
    """

    point_3d: tuple[float, float, float]
    point_2d: tuple[float, float]
    sigma2: float = 1.0
    bad: bool = False


@dataclass(frozen=True)
class RansacResult:
    """Outcome of a RANSAC run.

    ``pose`` is a 4x4 float32 world-to-camera transform, or ``None`` when no
    pose was found. ``inliers`` has one flag per input match (empty when no
    pose was found). ``no_more`` is true once the iteration budget is spent.
    """

    pose: Optional[np.ndarray]
    inliers: list[bool]
    n_inliers: int
    no_more: bool

    @property
    def success(self) -> bool:
        return self.pose is not None


def _ransac_iterations(probability: float, epsilon: float, fallback: int) -> int:
    try:
        value = math.log(1 - probability) / math.log(1 - epsilon**3)
    except (ValueError, ZeroDivisionError):
        return fallback
    if not math.isfinite(value):
        return fallback
    return math.ceil(value)


def _pose_matrix(rotation: np.ndarray, translation: np.ndarray) -> np.ndarray:
    pose = np.eye(4, dtype=np.float32)
    pose[:3, :3] = rotation
    pose[:3, 3] = translation
    return pose


class PnPRansac:
    """Robust PnP solver; keeps its iteration count and best hypothesis across calls."""

    def __init__(
        self,
        matches: Sequence[Optional[Correspondence]],
        camera: CameraIntrinsics,
        rng: Optional[random.Random] = None,
    ) -> None:
        matches = list(matches)
        self._n_matches = len(matches)
        kept = [(i, m) for i, m in enumerate(matches) if m is not None and not m.bad]
        self._keypoint_indices = [i for i, _ in kept]
        self._points_3d = np.array([m.point_3d for _, m in kept], dtype=float).reshape(-1, 3)
        self._points_2d = np.array([m.point_2d for _, m in kept], dtype=float).reshape(-1, 2)
        self._sigma2 = np.array([m.sigma2 for _, m in kept], dtype=float)
        self.camera = camera
        self._rng = rng if rng is not None else random.Random()

        self.iterations = 0
        self._best_inliers = np.zeros(len(kept), dtype=bool)
        self._best_count = 0
        self._best_pose: Optional[np.ndarray] = None

        self.set_ransac_parameters()

    @property
    def correspondences(self) -> int:
        """Number of usable correspondences."""
        return len(self._sigma2)

    def set_ransac_parameters(
        self,
        probability: float = 0.99,
        min_inliers: int = 8,
        max_iterations: int = 300,
        min_set: int = 4,
        epsilon: float = 0.4,
        th2: float = 5.991,
    ) -> None:
        """Configure RANSAC, adapting thresholds to the number of correspondences."""
        n = self.correspondences
        self.probability = probability
        self.min_set = min_set

        required = max(int(n * epsilon), min_inliers, min_set)
        self.min_inliers = required
        if n > 0 and epsilon < required / n:
            epsilon = required / n
        self.epsilon = epsilon

        if required == n:
            n_iterations = 1
        else:
            n_iterations = _ransac_iterations(probability, epsilon, max_iterations)
        self.max_iterations = max(1, min(n_iterations, max_iterations))

        self._max_error = self._sigma2 * th2

    def find(self) -> RansacResult:
        """Run RANSAC for the whole iteration budget."""
        return self.iterate(self.max_iterations)

    def iterate(self, n_iterations: int) -> RansacResult:
        """Run at least ``n_iterations`` more RANSAC iterations."""
        if self.correspondences < self.min_inliers:
            return RansacResult(None, [], 0, True)

        current = 0
        while self.iterations < self.max_iterations or current < n_iterations:
            current += 1
            self.iterations += 1

            estimate = self._estimate(self._sample())
            if estimate is None:
                continue
            rotation, translation = estimate
            inliers = self.check_inliers(rotation, translation)
            count = int(inliers.sum())

            if count >= self.min_inliers:
                if count > self._best_count:
                    self._best_inliers = inliers
                    self._best_count = count
                    self._best_pose = _pose_matrix(rotation, translation)

                refined = self._refine()
                if refined is not None:
                    return refined

        if self.iterations >= self.max_iterations:
            if self._best_pose is not None and self._best_count >= self.min_inliers:
                return RansacResult(
                    self._best_pose.copy(),
                    self._expand(self._best_inliers),
                    self._best_count,
                    True,
                )
            return RansacResult(None, [], 0, True)
        return RansacResult(None, [], 0, False)

    def check_inliers(self, rotation, translation) -> np.ndarray:
        """Flag correspondences whose squared reprojection error is under threshold."""
        r = np.asarray(rotation, dtype=float).reshape(3, 3)
        t = np.asarray(translation, dtype=float).reshape(3)
        with np.errstate(all="ignore"):
            projected = self.camera.project(self._points_3d @ r.T + t)
            error2 = np.sum((self._points_2d - projected) ** 2, axis=1)
            return error2 < self._max_error

    def _sample(self) -> list[int]:
        available = list(range(self.correspondences))
        chosen = []
        for _ in range(self.min_set):
            pick = self._rng.randint(0, len(available) - 1)
            chosen.append(available[pick])
            available[pick] = available[-1]
            available.pop()
        return chosen

    def _estimate(self, indices) -> Optional[tuple[np.ndarray, np.ndarray]]:
        idx = np.asarray(indices, dtype=int)
        try:
            estimate = solve_epnp(self._points_3d[idx], self._points_2d[idx], self.camera)
        except (np.linalg.LinAlgError, ValueError):
            return None
        if not (np.all(np.isfinite(estimate.rotation)) and np.all(np.isfinite(estimate.translation))):
            return None
        return estimate.rotation, estimate.translation

    def _refine(self) -> Optional[RansacResult]:
        estimate = self._estimate(np.flatnonzero(self._best_inliers))
        if estimate is None:
            return None
        rotation, translation = estimate
        inliers = self.check_inliers(rotation, translation)
        count = int(inliers.sum())
        if count > self.min_inliers:
            return RansacResult(
                _pose_matrix(rotation, translation), self._expand(inliers), count, False
            )
        return None

    def _expand(self, mask: np.ndarray) -> list[bool]:
        flags = [False] * self._n_matches
        for keypoint, inlier in zip(self._keypoint_indices, mask):
            if inlier:
                flags[keypoint] = True
        return flags