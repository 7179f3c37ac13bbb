"""Efficient Perspective-n-Point (EPnP) pose estimation.

Given 3D points in a world frame and their 2D projections in a pinhole
camera, recovers the rotation and translation taking world coordinates
into the camera frame.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

__all__ = [
    "CameraIntrinsics",
    "PoseEstimate",
    "SingularMatrixError",
    "solve_epnp",
    "reprojection_error",
    "qr_solve",
    "mat_to_quat",
    "relative_error",
]

_GAUSS_NEWTON_ITERATIONS = 5

# Control point pairs, in the order used for the distance constraints.
_PAIRS = ((0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3))

# Quadratic beta terms: (index a, index b, factor) for
# [B11 B12 B22 B13 B23 B33 B14 B24 B34 B44].
_TERMS = (
    (0, 0, 1.0),
    (0, 1, 2.0),
    (1, 1, 1.0),
    (0, 2, 2.0),
    (1, 2, 2.0),
    (2, 2, 1.0),
    (0, 3, 2.0),
    (1, 3, 2.0),
    (2, 3, 2.0),
    (3, 3, 1.0),
)


class SingularMatrixError(np.linalg.LinAlgError):
    """Raised when a QR solve meets an all-zero column."""


@dataclass(frozen=True)
class CameraIntrinsics:
    """Pinhole camera: focal lengths and principal point in pixels."""

    fu: float
    fv: float
    uc: float
    vc: float

    def project(self, points) -> np.ndarray:
        """Project camera-frame points (N x 3) to pixel coordinates (N x 2)."""
        pts = np.asarray(points, dtype=float).reshape(-1, 3)
        inv_z = 1.0 / pts[:, 2]
        u = self.uc + self.fu * pts[:, 0] * inv_z
        v = self.vc + self.fv * pts[:, 1] * inv_z
        return np.column_stack((u, v))


@dataclass(frozen=True)
class PoseEstimate:
    """A camera pose with its mean reprojection error in pixels."""

    rotation: np.ndarray
    translation: np.ndarray
    error: float


def _as_correspondences(points_3d, points_2d) -> tuple[np.ndarray, np.ndarray]:
    pws = np.asarray(points_3d, dtype=float)
    us = np.asarray(points_2d, dtype=float)
    if pws.ndim != 2 or pws.shape[1] != 3:
        raise ValueError("points_3d must have shape (N, 3)")
    if us.ndim != 2 or us.shape[1] != 2:
        raise ValueError("points_2d must have shape (N, 2)")
    if len(pws) != len(us):
        raise ValueError("points_3d and points_2d must have the same length")
    if len(pws) == 0:
        raise ValueError("at least one correspondence is required")
    return pws, us


def reprojection_error(rotation, translation, points_3d, points_2d, camera) -> float:
    """Mean Euclidean pixel distance between observed and reprojected points."""
    pws, us = _as_correspondences(points_3d, points_2d)
    r = np.asarray(rotation, dtype=float).reshape(3, 3)
    t = np.asarray(translation, dtype=float).reshape(3)
    projected = camera.project(pws @ r.T + t)
    return float(np.mean(np.linalg.norm(us - projected, axis=1)))


def _control_points(pws: np.ndarray) -> np.ndarray:
    n = len(pws)
    c0 = pws.mean(axis=0)
    centered = pws - c0
    u, s, _ = np.linalg.svd(centered.T @ centered)
    cws = np.empty((4, 3))
    cws[0] = c0
    cws[1:] = c0 + np.sqrt(s / n)[:, None] * u.T
    return cws


def _barycentric(pws: np.ndarray, cws: np.ndarray) -> np.ndarray:
    cc = (cws[1:] - cws[0]).T
    cc_inv = np.linalg.pinv(cc)
    rest = (pws - cws[0]) @ cc_inv.T
    first = 1.0 - rest.sum(axis=1)
    return np.column_stack((first, rest))


def _build_m(alphas: np.ndarray, us: np.ndarray, camera: CameraIntrinsics) -> np.ndarray:
    n = len(alphas)
    m = np.zeros((n, 2, 4, 3))
    m[:, 0, :, 0] = alphas * camera.fu
    m[:, 0, :, 2] = alphas * (camera.uc - us[:, 0])[:, None]
    m[:, 1, :, 1] = alphas * camera.fv
    m[:, 1, :, 2] = alphas * (camera.vc - us[:, 1])[:, None]
    return m.reshape(2 * n, 12)


def _compute_l_6x10(null_vectors: np.ndarray) -> np.ndarray:
    dv = np.stack([null_vectors[:, a] - null_vectors[:, b] for a, b in _PAIRS], axis=1)
    l_6x10 = np.empty((6, 10))
    for col, (a, b, factor) in enumerate(_TERMS):
        l_6x10[:, col] = factor * np.sum(dv[a] * dv[b], axis=1)
    return l_6x10


def _compute_rho(cws: np.ndarray) -> np.ndarray:
    return np.array([np.sum((cws[a] - cws[b]) ** 2) for a, b in _PAIRS])


def _solve_subset(l_6x10: np.ndarray, rho: np.ndarray, columns) -> np.ndarray:
    solution, *_ = np.linalg.lstsq(l_6x10[:, list(columns)], rho, rcond=None)
    return solution


def _betas_approx_1(l_6x10: np.ndarray, rho: np.ndarray) -> np.ndarray:
    b4 = _solve_subset(l_6x10, rho, (0, 1, 3, 6))
    if b4[0] < 0:
        b0 = np.sqrt(-b4[0])
        return np.array([b0, -b4[1] / b0, -b4[2] / b0, -b4[3] / b0])
    b0 = np.sqrt(b4[0])
    return np.array([b0, b4[1] / b0, b4[2] / b0, b4[3] / b0])


def _leading_betas(b: np.ndarray) -> tuple[float, float]:
    if b[0] < 0:
        b0 = np.sqrt(-b[0])
        b1 = np.sqrt(-b[2]) if b[2] < 0 else 0.0
    else:
        b0 = np.sqrt(b[0])
        b1 = np.sqrt(b[2]) if b[2] > 0 else 0.0
    if b[1] < 0:
        b0 = -b0
    return b0, b1


def _betas_approx_2(l_6x10: np.ndarray, rho: np.ndarray) -> np.ndarray:
    b3 = _solve_subset(l_6x10, rho, (0, 1, 2))
    b0, b1 = _leading_betas(b3)
    return np.array([b0, b1, 0.0, 0.0])


def _betas_approx_3(l_6x10: np.ndarray, rho: np.ndarray) -> np.ndarray:
    b5 = _solve_subset(l_6x10, rho, (0, 1, 2, 3, 4))
    b0, b1 = _leading_betas(b5)
    return np.array([b0, b1, b5[3] / np.float64(b0), 0.0])


def _gauss_newton(l_6x10: np.ndarray, rho: np.ndarray, betas: np.ndarray) -> np.ndarray:
    betas = betas.astype(float).copy()
    for _ in range(_GAUSS_NEWTON_ITERATIONS):
        products = np.array([betas[a] * betas[b] for a, b, _ in _TERMS])
        jacobian = np.zeros((6, 4))
        for col, (a, b, _) in enumerate(_TERMS):
            jacobian[:, a] += l_6x10[:, col] * betas[b]
            jacobian[:, b] += l_6x10[:, col] * betas[a]
        residual = rho - l_6x10 @ products
        try:
            step = qr_solve(jacobian, residual)
        except SingularMatrixError:
            break
        betas += step
    return betas


def _estimate_r_and_t(pcs: np.ndarray, pws: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    pc0 = pcs.mean(axis=0)
    pw0 = pws.mean(axis=0)
    abt = (pcs - pc0).T @ (pws - pw0)
    u, _, vt = np.linalg.svd(abt)
    rotation = u @ vt
    if np.linalg.det(rotation) < 0:
        rotation[2] = -rotation[2]
    translation = pc0 - rotation @ pw0
    return rotation, translation


def _pose_from_betas(
    betas: np.ndarray,
    null_vectors: np.ndarray,
    alphas: np.ndarray,
    pws: np.ndarray,
    us: np.ndarray,
    camera: CameraIntrinsics,
) -> PoseEstimate:
    ccs = np.tensordot(betas, null_vectors, axes=1)
    pcs = alphas @ ccs
    if pcs[0, 2] < 0.0:
        pcs = -pcs
    rotation, translation = _estimate_r_and_t(pcs, pws)
    error = reprojection_error(rotation, translation, pws, us, camera)
    return PoseEstimate(rotation, translation, error)


def solve_epnp(points_3d, points_2d, camera: CameraIntrinsics) -> PoseEstimate:
    """Estimate the world-to-camera pose from 3D-2D correspondences."""
    pws, us = _as_correspondences(points_3d, points_2d)
    with np.errstate(divide="ignore", invalid="ignore"):
        cws = _control_points(pws)
        alphas = _barycentric(pws, cws)
        m = _build_m(alphas, us, camera)
        u, _, _ = np.linalg.svd(m.T @ m)
        null_vectors = np.stack([u[:, 11 - i].reshape(4, 3) for i in range(4)])

        l_6x10 = _compute_l_6x10(null_vectors)
        rho = _compute_rho(cws)

        candidates = []
        for approx in (_betas_approx_1, _betas_approx_2, _betas_approx_3):
            betas = _gauss_newton(l_6x10, rho, approx(l_6x10, rho))
            candidates.append(_pose_from_betas(betas, null_vectors, alphas, pws, us, camera))

    best = candidates[0]
    if candidates[1].error < best.error:
        best = candidates[1]
    if candidates[2].error < best.error:
        best = candidates[2]
    return best


def qr_solve(a, b) -> np.ndarray:
    """Solve ``a @ x = b`` in the least-squares sense by Householder QR."""
    mat = np.array(a, dtype=float)
    rhs = np.array(b, dtype=float).reshape(-1)
    if mat.ndim != 2:
        raise ValueError("a must be a 2D matrix")
    nr, nc = mat.shape
    if rhs.shape[0] != nr:
        raise ValueError("b must have as many entries as a has rows")
    if nr < nc:
        raise ValueError("a must have at least as many rows as columns")

    a1 = np.zeros(nc)
    a2 = np.zeros(nc)
    for k in range(nc):
        eta = np.max(np.abs(mat[k:, k]))
        if eta == 0:
            raise SingularMatrixError("matrix is singular")
        mat[k:, k] /= eta
        sigma = np.sqrt(np.sum(mat[k:, k] ** 2))
        if mat[k, k] < 0:
            sigma = -sigma
        mat[k, k] += sigma
        a1[k] = sigma * mat[k, k]
        a2[k] = -eta * sigma
        for j in range(k + 1, nc):
            tau = mat[k:, k] @ mat[k:, j] / a1[k]
            mat[k:, j] -= tau * mat[k:, k]

    for j in range(nc):
        tau = mat[j:, j] @ rhs[j:] / a1[j]
        rhs[j:] -= tau * mat[j:, j]

    x = np.zeros(nc)
    x[nc - 1] = rhs[nc - 1] / a2[nc - 1]
    for i in range(nc - 2, -1, -1):
        x[i] = (rhs[i] - mat[i, i + 1:] @ x[i + 1:]) / a2[i]
    return x


def mat_to_quat(rotation) -> np.ndarray:
    """Convert a rotation matrix to a unit quaternion (x, y, z, w)."""
    r = np.asarray(rotation, dtype=float).reshape(3, 3)
    trace = r[0, 0] + r[1, 1] + r[2, 2]
    if trace > 0.0:
        q = np.array([r[1, 2] - r[2, 1], r[2, 0] - r[0, 2], r[0, 1] - r[1, 0], trace + 1.0])
        n4 = q[3]
    elif r[0, 0] > r[1, 1] and r[0, 0] > r[2, 2]:
        q = np.array([
            1.0 + r[0, 0] - r[1, 1] - r[2, 2],
            r[1, 0] + r[0, 1],
            r[2, 0] + r[0, 2],
            r[1, 2] - r[2, 1],
        ])
        n4 = q[0]
    elif r[1, 1] > r[2, 2]:
        q = np.array([
            r[1, 0] + r[0, 1],
            1.0 + r[1, 1] - r[0, 0] - r[2, 2],
            r[2, 1] + r[1, 2],
            r[2, 0] - r[0, 2],
        ])
        n4 = q[1]
    else:
        q = np.array([
            r[2, 0] + r[0, 2],
            r[2, 1] + r[1, 2],
            1.0 + r[2, 2] - r[0, 0] - r[1, 1],
            r[0, 1] - r[1, 0],
        ])
        n4 = q[2]
    return q * (0.5 / np.sqrt(n4))


def relative_error(rotation_true, translation_true, rotation_est, translation_est) -> tuple[float, float]:
    """Relative rotation (quaternion) and translation errors of an estimate."""
    q_true = mat_to_quat(rotation_true)
    q_est = mat_to_quat(rotation_est)
    q_norm = np.linalg.norm(q_true)
    rot_err = min(
        np.linalg.norm(q_true - q_est) / q_norm,
        np.linalg.norm(q_true + q_est) / q_norm,
    )
    t_true = np.asarray(translation_true, dtype=float).reshape(3)
    t_est = np.asarray(translation_est, dtype=float).reshape(3)
    transl_err = np.linalg.norm(t_true - t_est) / np.linalg.norm(t_true)
    return float(rot_err), float(transl_err)