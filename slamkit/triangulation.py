"""Triangulation of matched pixels from two calibrated views."""

from __future__ import annotations

import numpy as np

from slamkit.pose import CAMERA_MATRIX, pixel2cam

_UPPER_DEPTH = 50.0
_LOWER_DEPTH = 10.0


def triangulate(points1, points2, rotation, translation, camera_matrix=CAMERA_MATRIX) -> np.ndarray:
    """Triangulate pixel correspondences into 3D points in the first camera's frame.

    The first camera is at the origin; the second maps ``x2 = R x1 + t``.
    Returns an ``(N, 3)`` array.
    """
    a = np.asarray(points1, dtype=float)
    b = np.asarray(points2, dtype=float)
    if a.ndim != 2 or a.shape[1] != 2 or b.ndim != 2 or b.shape[1] != 2:
        raise ValueError("pixel arrays must have shape (N, 2)")
    if len(a) != len(b):
        raise ValueError("pixel arrays must have the same length")
    r = np.asarray(rotation, dtype=float)
    t = np.asarray(translation, dtype=float).ravel()
    if r.shape != (3, 3) or t.shape != (3,):
        raise ValueError("rotation must be 3x3 and translation a 3-vector")

    proj1 = np.hstack([np.eye(3), np.zeros((3, 1))])
    proj2 = np.hstack([r, t[:, None]])

    points = np.empty((len(a), 3))
    for i, (pix1, pix2) in enumerate(zip(a, b)):
        x1 = pixel2cam(pix1, camera_matrix)
        x2 = pixel2cam(pix2, camera_matrix)
        system = np.array([
            x1[0] * proj1[2] - proj1[0],
            x1[1] * proj1[2] - proj1[1],
            x2[0] * proj2[2] - proj2[0],
            x2[1] * proj2[2] - proj2[1],
        ])
        homogeneous = np.linalg.svd(system)[2][-1]
        points[i] = homogeneous[:3] / homogeneous[3]
    return points


def get_color(depth: float) -> tuple[float, float, float]:
    """Return a BGR colour for a depth, clamped to the range 10 to 50."""
    d = min(max(float(depth), _LOWER_DEPTH), _UPPER_DEPTH)
    th_range = _UPPER_DEPTH - _LOWER_DEPTH
    return (255.0 * d / th_range, 0.0, 255.0 * (1.0 - d / th_range))