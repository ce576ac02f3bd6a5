"""Rigid alignment of two 3D point sets (ICP with known correspondences)."""

from __future__ import annotations

import numpy as np

from slamkit.rotation import hat, se3_exp


def _point_sets(points1, points2) -> tuple[np.ndarray, np.ndarray]:
    a = np.asarray(points1, dtype=float)
    b = np.asarray(points2, dtype=float)
    if a.ndim != 2 or a.shape[1] != 3 or b.ndim != 2 or b.shape[1] != 3:
        raise ValueError("point sets must have shape (N, 3)")
    if len(a) != len(b):
        raise ValueError("point sets must have the same length")
    if len(a) == 0:
        raise ValueError("point sets must not be empty")
    return a, b


def pose_estimation_3d3d(points1, points2) -> tuple[np.ndarray, np.ndarray]:
    """Return ``(R, t)`` with ``p1 = R p2 + t`` in the least-squares sense, by SVD."""
    p1, p2 = _point_sets(points1, points2)
    center1 = p1.mean(axis=0)
    center2 = p2.mean(axis=0)
    q1 = p1 - center1
    q2 = p2 - center2

    w = q1.T @ q2
    u, _, vt = np.linalg.svd(w)
    rotation = u @ vt
    if np.linalg.det(rotation) < 0:
        rotation = -rotation
    translation = center1 - rotation @ center2
    return rotation, translation


def _residuals(p1: np.ndarray, p2: np.ndarray, pose: np.ndarray) -> tuple[np.ndarray, np.ndarray, float]:
    transformed = p2 @ pose[:3, :3].T + pose[:3, 3]
    errors = p1 - transformed
    return transformed, errors, float((errors * errors).sum())


def bundle_adjustment_3d3d(points1, points2, iterations: int = 10) -> tuple[np.ndarray, np.ndarray]:
    """Refine ``(R, t)`` with ``p1 = R p2 + t`` by Levenberg-Marquardt on SE(3).

    The estimate starts at the identity and is updated by left
    multiplication with the exponential of the step.
    """
    p1, p2 = _point_sets(points1, points2)
    if iterations < 0:
        raise ValueError("iterations must be non-negative")

    pose = np.eye(4)
    damping = None
    factor = 2.0
    for _ in range(iterations):
        transformed, errors, cost = _residuals(p1, p2, pose)
        jacobians = np.zeros((len(p1), 3, 6))
        jacobians[:, :, :3] = -np.eye(3)
        jacobians[:, :, 3:] = np.array([hat(y) for y in transformed])
        stacked = jacobians.reshape(-1, 6)
        h = stacked.T @ stacked
        b = -stacked.T @ errors.ravel()
        if damping is None:
            damping = 1e-5 * float(np.max(np.diag(h)))

        accepted = False
        step = np.zeros(6)
        for _ in range(10):
            try:
                step = np.linalg.solve(h + damping * np.eye(6), b)
            except np.linalg.LinAlgError:
                break
            if not np.all(np.isfinite(step)):
                break
            candidate = se3_exp(step) @ pose
            _, _, new_cost = _residuals(p1, p2, candidate)
            if new_cost < cost:
                pose = candidate
                damping /= 3.0
                factor = 2.0
                accepted = True
                break
            damping *= factor
            factor *= 2.0
        if not accepted or np.linalg.norm(step) < 1e-12:
            break
    return pose[:3, :3].copy(), pose[:3, 3].copy()