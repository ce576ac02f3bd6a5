"""Rotation helpers: angle-axis, quaternions and the SO(3)/SE(3) exponential maps."""

from __future__ import annotations

import math

import numpy as np

_EPS = float(np.finfo(float).eps)


def _vector(value, size: int, name: str) -> np.ndarray:
    array = np.asarray(value, dtype=float)
    if array.shape != (size,):
        raise ValueError(f"{name} must have shape ({size},), got {array.shape}")
    return array


def angle_axis_to_quaternion(angle_axis) -> np.ndarray:
    """Convert an angle-axis vector to a quaternion ``(w, x, y, z)``."""
    a = _vector(angle_axis, 3, "angle_axis")
    theta_squared = float(a @ a)
    if theta_squared > _EPS:
        theta = math.sqrt(theta_squared)
        half_theta = 0.5 * theta
        k = math.sin(half_theta) / theta
        w = math.cos(half_theta)
    else:
        k = 0.5
        w = 1.0
    return np.array([w, a[0] * k, a[1] * k, a[2] * k])


def quaternion_to_angle_axis(quaternion) -> np.ndarray:
    """Convert a quaternion ``(w, x, y, z)`` to an angle-axis vector."""
    q = _vector(quaternion, 4, "quaternion")
    v = q[1:]
    sin_squared_theta = float(v @ v)
    if sin_squared_theta > _EPS:
        sin_theta = math.sqrt(sin_squared_theta)
        cos_theta = q[0]
        if cos_theta < 0.0:
            two_theta = 2.0 * math.atan2(-sin_theta, -cos_theta)
        else:
            two_theta = 2.0 * math.atan2(sin_theta, cos_theta)
        k = two_theta / sin_theta
    else:
        k = 2.0
    return v * k


def angle_axis_rotate_point(angle_axis, point) -> np.ndarray:
    """Rotate ``point`` by the rotation that ``angle_axis`` describes."""
    a = _vector(angle_axis, 3, "angle_axis")
    pt = _vector(point, 3, "point")
    theta_squared = float(a @ a)
    if theta_squared > _EPS:
        theta = math.sqrt(theta_squared)
        cos_theta = math.cos(theta)
        sin_theta = math.sin(theta)
        w = a / theta
        w_cross_pt = np.cross(w, pt)
        tmp = float(w @ pt) * (1.0 - cos_theta)
        return pt * cos_theta + w_cross_pt * sin_theta + w * tmp
    # First-order expansion near the identity.
    return pt + np.cross(a, pt)


def hat(vector) -> np.ndarray:
    """Return the skew-symmetric matrix of a 3-vector."""
    x, y, z = _vector(vector, 3, "vector")
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def so3_exp(omega) -> np.ndarray:
    """Exponential map from so(3) to a rotation matrix."""
    w = _vector(omega, 3, "omega")
    theta = float(np.linalg.norm(w))
    skew = hat(w)
    if theta * theta <= _EPS:
        return np.eye(3) + skew + 0.5 * (skew @ skew)
    return (
        np.eye(3)
        + (math.sin(theta) / theta) * skew
        + ((1.0 - math.cos(theta)) / (theta * theta)) * (skew @ skew)
    )


def _matrix_to_quaternion(r: np.ndarray) -> np.ndarray:
    trace = r[0, 0] + r[1, 1] + r[2, 2]
    if trace > 0.0:
        s = math.sqrt(trace + 1.0) * 2.0
        return np.array([0.25 * s, (r[2, 1] - r[1, 2]) / s, (r[0, 2] - r[2, 0]) / s, (r[1, 0] - r[0, 1]) / s])
    if r[0, 0] > r[1, 1] and r[0, 0] > r[2, 2]:
        s = math.sqrt(1.0 + r[0, 0] - r[1, 1] - r[2, 2]) * 2.0
        return np.array([(r[2, 1] - r[1, 2]) / s, 0.25 * s, (r[0, 1] + r[1, 0]) / s, (r[0, 2] + r[2, 0]) / s])
    if r[1, 1] > r[2, 2]:
        s = math.sqrt(1.0 + r[1, 1] - r[0, 0] - r[2, 2]) * 2.0
        return np.array([(r[0, 2] - r[2, 0]) / s, (r[0, 1] + r[1, 0]) / s, 0.25 * s, (r[1, 2] + r[2, 1]) / s])
    s = math.sqrt(1.0 + r[2, 2] - r[0, 0] - r[1, 1]) * 2.0
    return np.array([(r[1, 0] - r[0, 1]) / s, (r[0, 2] + r[2, 0]) / s, (r[1, 2] + r[2, 1]) / s, 0.25 * s])


def so3_log(rotation) -> np.ndarray:
    """Logarithm map from a rotation matrix to so(3)."""
    r = np.asarray(rotation, dtype=float)
    if r.shape != (3, 3):
        raise ValueError(f"rotation must have shape (3, 3), got {r.shape}")
    quaternion = _matrix_to_quaternion(r)
    quaternion /= np.linalg.norm(quaternion)
    return quaternion_to_angle_axis(quaternion)


def se3_exp(xi) -> np.ndarray:
    """Exponential map from se(3) ``(rho, phi)`` to a 4x4 transform."""
    twist = _vector(xi, 6, "xi")
    rho, phi = twist[:3], twist[3:]
    theta = float(np.linalg.norm(phi))
    skew = hat(phi)
    if theta * theta <= _EPS:
        jacobian = np.eye(3) + 0.5 * skew + (skew @ skew) / 6.0
    else:
        jacobian = (
            np.eye(3)
            + ((1.0 - math.cos(theta)) / (theta * theta)) * skew
            + ((theta - math.sin(theta)) / theta**3) * (skew @ skew)
        )
    transform = np.eye(4)
    transform[:3, :3] = so3_exp(phi)
    transform[:3, 3] = jacobian @ rho
    return transform