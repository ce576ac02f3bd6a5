import numpy as np
import pytest

from slamkit.bal import BALProblem
from slamkit.bundle_adjustment import main, residuals, solve_ba
from slamkit.reprojection import SnavelyReprojectionError, cam_projection_with_distortion


def _synthetic(seed=0, num_cameras=3, num_points=10):
    rng = np.random.default_rng(seed)
    cameras = []
    for _ in range(num_cameras):
        aa = rng.normal(0.0, 0.05, 3)
        t = np.array([rng.normal(0.0, 0.1), rng.normal(0.0, 0.1), -10.0])
        cameras.append(np.concatenate([aa, t, [500.0, 0.001, 0.0001]]))
    cameras = np.array(cameras)
    points = rng.normal(0.0, 1.0, (num_points, 3))
    cam_idx, pt_idx, obs = [], [], []
    for c in range(num_cameras):
        for p in range(num_points):
            cam_idx.append(c)
            pt_idx.append(p)
            obs.append(cam_projection_with_distortion(cameras[c], points[p]))
    problem = BALProblem(
        num_cameras=num_cameras,
        num_points=num_points,
        camera_index=np.array(cam_idx),
        point_index=np.array(pt_idx),
        observations=np.array(obs),
        parameters=np.concatenate([cameras.ravel(), points.ravel()]),
    )
    return problem


def test_residuals_zero_at_ground_truth():
    problem = _synthetic()
    res = residuals(problem, problem.parameters)
    assert res.shape == (2 * problem.num_observations,)
    assert np.allclose(res, 0.0, atol=1e-9)


def test_residuals_match_reprojection_error():
    problem = _synthetic(seed=1)
    rng = np.random.default_rng(5)
    params = problem.parameters + rng.normal(0.0, 0.01, problem.parameters.shape)
    res = residuals(problem, params).reshape(-1, 2)
    cameras = params[: 9 * problem.num_cameras].reshape(-1, 9)
    points = params[9 * problem.num_cameras:].reshape(-1, 3)
    for k, (c, p) in enumerate(zip(problem.camera_index, problem.point_index)):
        error = SnavelyReprojectionError(*problem.observations[k])
        assert np.allclose(res[k], error(cameras[c], points[p]), atol=1e-9)


def test_residuals_small_rotation_branch():
    problem = _synthetic(seed=2)
    params = problem.parameters.copy()
    params[0:3] = 0.0
    res = residuals(problem, params).reshape(-1, 2)
    points = params[9 * problem.num_cameras:].reshape(-1, 3)
    k = 0
    expected = SnavelyReprojectionError(*problem.observations[k])(params[:9], points[problem.point_index[k]])
    assert np.allclose(res[k], expected)


def test_residuals_rejects_wrong_length():
    problem = _synthetic()
    with pytest.raises(ValueError):
        residuals(problem, problem.parameters[:-1])


def test_quaternion_problem_rejected():
    problem = _synthetic()
    problem.use_quaternions = True
    with pytest.raises(ValueError):
        solve_ba(problem)


def test_out_of_range_index_rejected():
    problem = _synthetic()
    problem.point_index = problem.point_index.copy()
    problem.point_index[0] = problem.num_points
    with pytest.raises(ValueError):
        residuals(problem, problem.parameters)


def test_solve_reduces_cost_and_updates_problem():
    problem = _synthetic(seed=3)
    rng = np.random.default_rng(7)
    n_cam = 9 * problem.num_cameras
    problem.parameters[n_cam:] += rng.normal(0.0, 0.05, problem.parameters[n_cam:].shape)
    initial = float(np.sum(residuals(problem, problem.parameters) ** 2))
    result = solve_ba(problem, max_nfev=40, huber_delta=1.0)
    final = float(np.sum(residuals(problem, problem.parameters) ** 2))
    assert final < initial
    assert np.array_equal(problem.parameters, result.x)


def test_solve_rejects_bad_settings():
    problem = _synthetic()
    with pytest.raises(ValueError):
        solve_ba(problem, max_nfev=0)
    with pytest.raises(ValueError):
        solve_ba(problem, huber_delta=0.0)


def test_main_usage_returns_one():
    assert main([]) == 1
    assert main(["a", "b"]) == 1


def test_main_writes_ply_files(tmp_path, monkeypatch):
    problem = _synthetic(seed=4)
    lines = [f"{problem.num_cameras} {problem.num_points} {problem.num_observations}"]
    for c, p, (x, y) in zip(problem.camera_index, problem.point_index, problem.observations):
        lines.append(f"{c} {p} {x!r} {y!r}")
    lines.extend(repr(float(v)) for v in problem.parameters)
    data = tmp_path / "problem.txt"
    data.write_text("\n".join(lines) + "\n")
    monkeypatch.chdir(tmp_path)

    assert main([str(data)]) == 0
    for name in ("initial.ply", "final.ply"):
        text = (tmp_path / name).read_text().splitlines()
        assert text[0] == "ply"
        assert f"element vertex {problem.num_cameras + problem.num_points}" in text
        body = text[text.index("end_header") + 1:]
        assert len(body) == problem.num_cameras + problem.num_points
        assert all(line.endswith("0 255 0") for line in body[: problem.num_cameras])