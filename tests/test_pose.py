import numpy as np
import pytest

from slamkit.pose import (
    CAMERA_MATRIX,
    FOCAL_LENGTH,
    PRINCIPAL_POINT,
    bundle_adjustment_gauss_newton,
    epipolar_constraint,
    essential_eight_point,
    pixel2cam,
    recover_pose,
)
from slamkit.rotation import hat, se3_exp


def _scene(n=30, seed=1):
    rng = np.random.default_rng(seed)
    points = np.column_stack([
        rng.uniform(-2, 2, n), rng.uniform(-1.5, 1.5, n), rng.uniform(4, 8, n)
    ])
    transform = se3_exp([0.3, -0.1, 0.05, 0.02, -0.05, 0.03])
    return points, transform


def _project(points, transform, k=CAMERA_MATRIX):
    cam = points @ transform[:3, :3].T + transform[:3, 3]
    uv = cam @ np.asarray(k).T
    return uv[:, :2] / uv[:, 2:]


def test_pixel2cam_principal_point_is_origin():
    np.testing.assert_allclose(pixel2cam((325.1, 249.7)), [0.0, 0.0], atol=1e-12)


def test_pixel2cam_scales_by_focal_length():
    result = pixel2cam((325.1 + 520.9, 249.7 + 521.0))
    np.testing.assert_allclose(result, [1.0, 1.0])


def test_gauss_newton_recovers_pose():
    points, transform = _scene()
    observed = _project(points, transform)
    estimate = bundle_adjustment_gauss_newton(points, observed, CAMERA_MATRIX, np.eye(4), 10)
    np.testing.assert_allclose(estimate, transform, atol=1e-6)


def test_gauss_newton_keeps_exact_pose():
    points, transform = _scene()
    observed = _project(points, transform)
    estimate = bundle_adjustment_gauss_newton(points, observed, CAMERA_MATRIX, transform, 10)
    np.testing.assert_allclose(estimate, transform, atol=1e-9)


def test_gauss_newton_rejects_mismatched_lengths():
    points, transform = _scene()
    observed = _project(points, transform)
    with pytest.raises(ValueError):
        bundle_adjustment_gauss_newton(points, observed[:-1], CAMERA_MATRIX, None, 10)


def _two_views():
    points, transform = _scene(40, seed=3)
    pix1 = _project(points, np.eye(4))
    pix2 = _project(points, transform)
    return pix1, pix2, transform


def _intrinsics():
    return np.array([
        [FOCAL_LENGTH, 0.0, PRINCIPAL_POINT[0]],
        [0.0, FOCAL_LENGTH, PRINCIPAL_POINT[1]],
        [0.0, 0.0, 1.0],
    ])


def test_essential_matches_true_motion():
    points, transform = _scene(40, seed=3)
    k = _intrinsics()
    pix1 = _project(points, np.eye(4), k)
    pix2 = _project(points, transform, k)
    e = essential_eight_point(pix1, pix2)
    expected = hat(transform[:3, 3]) @ transform[:3, :3]
    expected /= np.linalg.norm(expected)
    sign = np.sign(np.sum(e * expected))
    np.testing.assert_allclose(sign * e, expected, atol=1e-6)


def test_essential_has_rank_two():
    pix1, pix2, _ = _two_views()
    e = essential_eight_point(pix1, pix2)
    singular = np.linalg.svd(e, compute_uv=False)
    assert singular[2] < 1e-12
    assert singular[0] == pytest.approx(singular[1])


def test_essential_needs_eight_points():
    pix1, pix2, _ = _two_views()
    with pytest.raises(ValueError):
        essential_eight_point(pix1[:7], pix2[:7])


def test_recover_pose_returns_true_rotation_and_direction():
    points, transform = _scene(40, seed=3)
    k = _intrinsics()
    pix1 = _project(points, np.eye(4), k)
    pix2 = _project(points, transform, k)
    e = essential_eight_point(pix1, pix2)
    rotation, translation = recover_pose(e, pix1, pix2)
    np.testing.assert_allclose(rotation, transform[:3, :3], atol=1e-6)
    t = transform[:3, 3]
    np.testing.assert_allclose(translation, t / np.linalg.norm(t), atol=1e-6)
    assert np.linalg.det(rotation) == pytest.approx(1.0)


def test_recover_pose_rejects_bad_matrix():
    pix1, pix2, _ = _two_views()
    with pytest.raises(ValueError):
        recover_pose(np.eye(2), pix1, pix2)


def test_epipolar_constraint_vanishes_for_true_motion():
    pix1, pix2, transform = _two_views()
    for a, b in zip(pix1, pix2):
        value = epipolar_constraint(a, b, transform[:3, :3], transform[:3, 3], CAMERA_MATRIX)
        assert abs(value) < 1e-9


def test_epipolar_constraint_nonzero_for_wrong_match():
    pix1, pix2, transform = _two_views()
    value = epipolar_constraint(pix1[0], pix2[5], transform[:3, :3], transform[:3, 3], CAMERA_MATRIX)
    assert abs(value) > 1e-6