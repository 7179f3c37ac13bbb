import math
import random

import numpy as np
import pytest

from posekit.sim3 import (
    Sim3Match,
    Sim3Solver,
    compute_sim3,
    from_camera_to_image,
    project,
    rodrigues,
)

K = np.array([[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])
TRUE_R = rodrigues([0.1, -0.05, 0.2])
TRUE_S = 1.5
TRUE_T = np.array([0.1, -0.2, 0.3])


def _scene(n, seed=1):
    gen = np.random.default_rng(seed)
    p2 = np.column_stack((
        gen.uniform(-1.0, 1.0, n),
        gen.uniform(-1.0, 1.0, n),
        gen.uniform(4.0, 8.0, n),
    ))
    p1 = TRUE_S * p2 @ TRUE_R.T + TRUE_T
    return p1, p2


def test_rodrigues_zero_is_identity():
    assert np.allclose(rodrigues([0.0, 0.0, 0.0]), np.eye(3))


def test_rodrigues_quarter_turn_about_z():
    r = rodrigues([0.0, 0.0, math.pi / 2])
    assert np.allclose(r, [[0, -1, 0], [1, 0, 0], [0, 0, 1]], atol=1e-12)


def test_rodrigues_is_rotation():
    r = rodrigues([0.3, -1.2, 0.7])
    assert np.allclose(r @ r.T, np.eye(3))
    assert np.isclose(np.linalg.det(r), 1.0)


def test_compute_sim3_recovers_transform():
    p1, p2 = _scene(10)
    est = compute_sim3(p1, p2)
    assert np.allclose(est.rotation, TRUE_R, atol=1e-8)
    assert est.scale == pytest.approx(TRUE_S)
    assert np.allclose(est.translation, TRUE_T, atol=1e-8)
    assert np.allclose(est.t12 @ est.t21, np.eye(4), atol=1e-9)


def test_compute_sim3_fixed_scale():
    p2 = _scene(8)[1]
    p1 = p2 @ TRUE_R.T + TRUE_T
    est = compute_sim3(p1, p2, fix_scale=True)
    assert est.scale == 1.0
    assert np.allclose(est.rotation, TRUE_R, atol=1e-8)
    assert np.allclose(est.translation, TRUE_T, atol=1e-8)


def test_compute_sim3_rejects_mismatched_shapes():
    with pytest.raises(ValueError):
        compute_sim3(np.zeros((3, 3)), np.zeros((4, 3)))


def test_project_identity_matches_from_camera_to_image():
    pts = _scene(5)[1]
    assert np.allclose(project(pts, np.eye(4), K), from_camera_to_image(pts, K))


def test_from_camera_to_image_principal_point():
    uv = from_camera_to_image([[0.0, 0.0, 2.0]], K)
    assert np.allclose(uv, [[320.0, 240.0]])


def test_solver_finds_transform_and_flags_inliers():
    p1, p2 = _scene(20)
    matches = [Sim3Match(tuple(a), tuple(b)) for a, b in zip(p1, p2)]
    matches.insert(3, None)
    solver = Sim3Solver(matches, K, K, False, random.Random(7))
    result = solver.find()
    assert result.success
    assert result.n_inliers == 20
    assert len(result.inliers) == 21
    assert result.inliers[3] is False
    assert sum(result.inliers) == 20
    assert np.allclose(result.transform[:3, :3], TRUE_S * TRUE_R, atol=1e-6)
    assert solver.best_estimate.scale == pytest.approx(TRUE_S)


def test_solver_rejects_outliers():
    p1, p2 = _scene(20)
    matches = [Sim3Match(tuple(a), tuple(b)) for a, b in zip(p1, p2)]
    gen = np.random.default_rng(3)
    for _ in range(5):
        a = gen.uniform([-1, -1, 4], [1, 1, 8])
        b = gen.uniform([-1, -1, 4], [1, 1, 8])
        matches.append(Sim3Match(tuple(a), tuple(b)))
    solver = Sim3Solver(matches, K, K, False, random.Random(11))
    result = solver.find()
    assert result.success
    assert all(result.inliers[:20])
    assert not any(result.inliers[20:])


def test_solver_with_too_few_matches():
    p1, p2 = _scene(4)
    matches = [Sim3Match(tuple(a), tuple(b)) for a, b in zip(p1, p2)]
    result = Sim3Solver(matches, K, K, False, random.Random(0)).find()
    assert result.transform is None
    assert result.no_more is True
    assert result.inliers == [False] * 4


def test_min_inliers_equal_to_count_gives_single_iteration():
    p1, p2 = _scene(10)
    matches = [Sim3Match(tuple(a), tuple(b)) for a, b in zip(p1, p2)]
    solver = Sim3Solver(matches, K, K, False, random.Random(0))
    solver.set_ransac_parameters(0.99, 10, 300)
    assert solver.max_iterations == 1


def test_bad_matches_are_ignored():
    p1, p2 = _scene(10)
    matches = [Sim3Match(tuple(a), tuple(b), bad=(i < 2)) for i, (a, b) in enumerate(zip(p1, p2))]
    solver = Sim3Solver(matches, K, K, False, random.Random(0))
    assert solver.correspondences == 8
    result = solver.find()
    assert result.inliers[:2] == [False, False]
    assert sum(result.inliers) == result.n_inliers