"""Camera pose from 2D-2D and 3D-2D correspondences."""

from __future__ import annotations

import numpy as np

from slamkit.rotation import hat, se3_exp

# Intrinsics of the TUM Freiburg2 camera.
CAMERA_MATRIX = np.array([[520.9, 0.0, 325.1], [0.0, 521.0, 249.7], [0.0, 0.0, 1.0]])
FOCAL_LENGTH = 521.0
PRINCIPAL_POINT = (325.1, 249.7)

_DISTANCE_THRESHOLD = 50.0
_W = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])


def pixel2cam(point, camera_matrix=CAMERA_MATRIX) -> np.ndarray:
    """Convert a pixel position to normalised camera coordinates."""
    k = np.asarray(camera_matrix, dtype=float)
    x, y = np.asarray(point, dtype=float)[:2]
    return np.array([(x - k[0, 2]) / k[0, 0], (y - k[1, 2]) / k[1, 1]])


def _paired(points1, points2, width1: int, width2: int) -> tuple[np.ndarray, np.ndarray]:
    a = np.asarray(points1, dtype=float)
    b = np.asarray(points2, dtype=float)
    if a.ndim != 2 or a.shape[1] != width1 or b.ndim != 2 or b.shape[1] != width2:
        raise ValueError("point arrays have the wrong shape")
    if len(a) != len(b):
        raise ValueError("point arrays must have the same length")
    return a, b


def bundle_adjustment_gauss_newton(
    points_3d, points_2d, camera_matrix=CAMERA_MATRIX, pose=None, iterations: int = 10
) -> np.ndarray:
    """Refine a 4x4 pose so that it projects ``points_3d`` onto ``points_2d``.

    The update is applied by left multiplication on SE(3). Iteration stops
    when the cost does not decrease, the system is singular, or the step
    is below 1e-6.
    """
    pts3, pts2 = _paired(points_3d, points_2d, 3, 2)
    k = np.asarray(camera_matrix, dtype=float)
    fx, fy, cx, cy = k[0, 0], k[1, 1], k[0, 2], k[1, 2]
    current = np.eye(4) if pose is None else np.array(pose, dtype=float)
    if current.shape != (4, 4):
        raise ValueError("pose must be a 4x4 matrix")

    last_cost = 0.0
    for iteration in range(iterations):
        pc = pts3 @ current[:3, :3].T + current[:3, 3]
        x, y, z = pc[:, 0], pc[:, 1], pc[:, 2]
        inv_z = 1.0 / z
        inv_z2 = inv_z * inv_z
        proj = np.column_stack([fx * x * inv_z + cx, fy * y * inv_z + cy])
        e = pts2 - proj
        cost = float((e * e).sum())

        zeros = np.zeros_like(z)
        j_u = np.column_stack([
            -fx * inv_z, zeros, fx * x * inv_z2,
            fx * x * y * inv_z2, -fx - fx * x * x * inv_z2, fx * y * inv_z,
        ])
        j_v = np.column_stack([
            zeros, -fy * inv_z, fy * y * inv_z2,
            fy + fy * y * y * inv_z2, -fy * x * y * inv_z2, -fy * x * inv_z,
        ])
        h = j_u.T @ j_u + j_v.T @ j_v
        b = -(j_u.T @ e[:, 0] + j_v.T @ e[:, 1])
        try:
            dx = np.linalg.solve(h, b)
        except np.linalg.LinAlgError:
            break
        if np.isnan(dx[0]):
            break
        if iteration > 0 and cost >= last_cost:
            break

        current = se3_exp(dx) @ current
        last_cost = cost
        if np.linalg.norm(dx) < 1e-6:
            break
    return current


def _normalised(points, focal: float, principal_point) -> np.ndarray:
    return (points - np.asarray(principal_point, dtype=float)) / focal


def essential_eight_point(
    points1, points2, focal: float = FOCAL_LENGTH, principal_point=PRINCIPAL_POINT
) -> np.ndarray:
    """Estimate the essential matrix from at least eight pixel correspondences."""
    a, b = _paired(points1, points2, 2, 2)
    if len(a) < 8:
        raise ValueError("at least eight correspondences are needed")
    x1 = _normalised(a, focal, principal_point)
    x2 = _normalised(b, focal, principal_point)
    ones = np.ones(len(a))
    design = np.column_stack([
        x2[:, 0] * x1[:, 0], x2[:, 0] * x1[:, 1], x2[:, 0],
        x2[:, 1] * x1[:, 0], x2[:, 1] * x1[:, 1], x2[:, 1],
        x1[:, 0], x1[:, 1], ones,
    ])
    _, _, vt = np.linalg.svd(design)
    e = vt[-1].reshape(3, 3)
    u, _, vt = np.linalg.svd(e)
    e = u @ np.diag([1.0, 1.0, 0.0]) @ vt
    return e / np.linalg.norm(e)


def _triangulate_depths(x1: np.ndarray, x2: np.ndarray, rotation, translation) -> tuple[np.ndarray, np.ndarray]:
    p1 = np.hstack([np.eye(3), np.zeros((3, 1))])
    p2 = np.hstack([rotation, translation[:, None]])
    depth1 = np.empty(len(x1))
    depth2 = np.empty(len(x1))
    for i, (a, b) in enumerate(zip(x1, x2)):
        system = np.array([
            a[0] * p1[2] - p1[0],
            a[1] * p1[2] - p1[1],
            b[0] * p2[2] - p2[0],
            b[1] * p2[2] - p2[1],
        ])
        homogeneous = np.linalg.svd(system)[2][-1]
        if homogeneous[3] == 0.0:
            depth1[i] = depth2[i] = -1.0
            continue
        point = homogeneous[:3] / homogeneous[3]
        depth1[i] = point[2]
        depth2[i] = (rotation @ point + translation)[2]
    return depth1, depth2


def recover_pose(
    essential, points1, points2, focal: float = FOCAL_LENGTH, principal_point=PRINCIPAL_POINT
) -> tuple[np.ndarray, np.ndarray]:
    """Pick the rotation and unit translation of ``essential`` that puts most points in front.

    The result satisfies ``x2 = R x1 + t`` for camera coordinates.
    """
    e = np.asarray(essential, dtype=float)
    if e.shape != (3, 3):
        raise ValueError("essential must be a 3x3 matrix")
    a, b = _paired(points1, points2, 2, 2)
    if len(a) == 0:
        raise ValueError("no correspondences given")
    x1 = _normalised(a, focal, principal_point)
    x2 = _normalised(b, focal, principal_point)

    u, _, vt = np.linalg.svd(e)
    if np.linalg.det(u) < 0:
        u = -u
    if np.linalg.det(vt) < 0:
        vt = -vt
    t = u[:, 2]
    candidates = [
        (u @ _W @ vt, t),
        (u @ _W @ vt, -t),
        (u @ _W.T @ vt, t),
        (u @ _W.T @ vt, -t),
    ]

    def good(candidate) -> int:
        depth1, depth2 = _triangulate_depths(x1, x2, *candidate)
        ok = (depth1 > 0) & (depth1 < _DISTANCE_THRESHOLD) & (depth2 > 0) & (depth2 < _DISTANCE_THRESHOLD)
        return int(ok.sum())

    rotation, translation = max(candidates, key=good)
    return rotation, translation / np.linalg.norm(translation)


def epipolar_constraint(point1, point2, rotation, translation, camera_matrix=CAMERA_MATRIX) -> float:
    """Return ``y2^T t^ R y1`` for a pixel correspondence."""
    y1 = np.append(pixel2cam(point1, camera_matrix), 1.0)
    y2 = np.append(pixel2cam(point2, camera_matrix), 1.0)
    t = np.asarray(translation, dtype=float).ravel()
    r = np.asarray(rotation, dtype=float)
    return float(y2 @ hat(t) @ r @ y1)