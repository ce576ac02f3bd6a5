"""Bundle adjustment of BAL problems with a robust (Huber) least-squares solver."""

from __future__ import annotations

import sys

import numpy as np
from scipy.optimize import OptimizeResult, least_squares
from scipy.sparse import lil_matrix

from slamkit.bal import BALProblem

_EPS = float(np.finfo(float).eps)
_CAMERA_SIZE = 9
_POINT_SIZE = 3


def _rotate_points(angle_axis: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Rotate each row of ``points`` by the matching angle-axis row."""
    theta2 = np.einsum("ij,ij->i", angle_axis, angle_axis)
    far = theta2 > _EPS
    theta = np.sqrt(np.where(far, theta2, 1.0))
    w = angle_axis / theta[:, None]
    cos_theta = np.cos(theta)[:, None]
    sin_theta = np.sin(theta)[:, None]
    w_cross = np.cross(w, points)
    tmp = np.einsum("ij,ij->i", w, points)[:, None] * (1.0 - cos_theta)
    rodrigues = points * cos_theta + w_cross * sin_theta + w * tmp
    taylor = points + np.cross(angle_axis, points)
    return np.where(far[:, None], rodrigues, taylor)


def _check_problem(problem: BALProblem) -> None:
    if problem.use_quaternions:
        raise ValueError("bundle adjustment needs angle-axis cameras, not quaternions")
    if problem.num_observations == 0:
        raise ValueError("problem has no observations")
    cams = np.asarray(problem.camera_index)
    pts = np.asarray(problem.point_index)
    if cams.min() < 0 or cams.max() >= problem.num_cameras:
        raise ValueError("camera index out of range")
    if pts.min() < 0 or pts.max() >= problem.num_points:
        raise ValueError("point index out of range")


def residuals(problem: BALProblem, parameters) -> np.ndarray:
    """Return the stacked reprojection residuals for a flat parameter vector.

    ``parameters`` has the layout of ``problem.parameters``: the camera
    blocks first, then the points. The result holds ``(u, v)`` for each
    observation, prediction minus measurement.
    """
    _check_problem(problem)
    params = np.asarray(parameters, dtype=float)
    n_cam = _CAMERA_SIZE * problem.num_cameras
    expected = n_cam + _POINT_SIZE * problem.num_points
    if params.shape != (expected,):
        raise ValueError(f"parameters must have shape ({expected},), got {params.shape}")

    cameras = params[:n_cam].reshape(problem.num_cameras, _CAMERA_SIZE)[problem.camera_index]
    points = params[n_cam:].reshape(problem.num_points, _POINT_SIZE)[problem.point_index]

    p = _rotate_points(cameras[:, :3], points) + cameras[:, 3:6]
    xp = -p[:, 0] / p[:, 2]
    yp = -p[:, 1] / p[:, 2]
    r2 = xp * xp + yp * yp
    distortion = 1.0 + r2 * (cameras[:, 7] + cameras[:, 8] * r2)
    scale = cameras[:, 6] * distortion
    predictions = np.column_stack([scale * xp, scale * yp])
    return (predictions - problem.observations).ravel()


def _jacobian_sparsity(problem: BALProblem) -> lil_matrix:
    m = 2 * problem.num_observations
    n_cam = _CAMERA_SIZE * problem.num_cameras
    n = n_cam + _POINT_SIZE * problem.num_points
    sparsity = lil_matrix((m, n), dtype=int)
    rows = np.arange(problem.num_observations)
    for offset in range(_CAMERA_SIZE):
        column = _CAMERA_SIZE * problem.camera_index + offset
        sparsity[2 * rows, column] = 1
        sparsity[2 * rows + 1, column] = 1
    for offset in range(_POINT_SIZE):
        column = n_cam + _POINT_SIZE * problem.point_index + offset
        sparsity[2 * rows, column] = 1
        sparsity[2 * rows + 1, column] = 1
    return sparsity


def solve_ba(problem: BALProblem, max_nfev: int = 40, huber_delta: float = 1.0) -> OptimizeResult:
    """Refine cameras and points of ``problem`` in place and return the solver result."""
    _check_problem(problem)
    if max_nfev < 1:
        raise ValueError("max_nfev must be at least 1")
    if huber_delta <= 0.0:
        raise ValueError("huber_delta must be positive")

    result = least_squares(
        lambda x: residuals(problem, x),
        problem.parameters.copy(),
        jac_sparsity=_jacobian_sparsity(problem),
        loss="huber",
        f_scale=huber_delta,
        x_scale="jac",
        method="trf",
        max_nfev=max_nfev,
    )
    problem.parameters[:] = result.x
    return result


def main(argv=None) -> int:
    """Load a BAL file, perturb it, optimise it and write PLY snapshots."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 1:
        print("usage: bundle_adjustment bal_data.txt")
        return 1

    problem = BALProblem.load(args[0])
    problem.normalize()
    problem.perturb(0.1, 0.5, 0.5)
    problem.write_to_ply("initial.ply")

    print("bal problem file loaded...")
    print(f"bal problem have {problem.num_cameras} cameras and {problem.num_points} points. ")
    print(f"Forming {problem.num_observations} observations. ")
    print("Solving BA ... ")
    result = solve_ba(problem)
    print(f"initial cost: {2.0 * result.cost if result.nfev == 0 else 'n/a'}")
    print(f"final cost: {result.cost:.6g}, evaluations: {result.nfev}, status: {result.message}")

    problem.write_to_ply("final.ply")
    return 0


if __name__ == "__main__":
    sys.exit(main())