"""Reprojection model of BAL cameras with radial distortion."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from slamkit.rotation import angle_axis_rotate_point


def cam_projection_with_distortion(camera, point) -> np.ndarray:
    """Project a 3D point with a 9-parameter camera.

    The camera holds an angle-axis rotation, a translation, the focal
    length and the second and fourth order radial distortion factors.
    """
    camera = np.asarray(camera, dtype=float)
    if camera.shape != (9,):
        raise ValueError(f"camera must have shape (9,), got {camera.shape}")
    p = angle_axis_rotate_point(camera[:3], point) + camera[3:6]
    xp = -p[0] / p[2]
    yp = -p[1] / p[2]
    l1, l2 = camera[7], camera[8]
    r2 = xp * xp + yp * yp
    distortion = 1.0 + r2 * (l1 + l2 * r2)
    focal = camera[6]
    return np.array([focal * distortion * xp, focal * distortion * yp])


@dataclass(frozen=True)
class SnavelyReprojectionError:
    """Residual between a projected point and its observation."""

    observed_x: float
    observed_y: float

    def __call__(self, camera, point) -> np.ndarray:
        prediction = cam_projection_with_distortion(camera, point)
        return prediction - np.array([self.observed_x, self.observed_y])