import random

import numpy as np
import pytest

from slamkit.bal import BALProblem, median, perturb_point3
from slamkit.reprojection import cam_projection_with_distortion
from slamkit.rotation import angle_axis_to_quaternion

CAMERAS = [
    [0.1, -0.2, 0.05, 0.5, -0.3, 1.0, 500.0, 1e-4, 1e-7],
    [-0.05, 0.02, 0.3, -1.0, 0.2, 0.4, 480.0, -2e-4, 0.0],
]
POINTS = [
    [1.0, 2.0, -5.0],
    [-1.5, 0.5, -6.0],
    [0.7, -0.8, -4.5],
]
OBSERVATIONS = [
    (0, 0, -10.0, 5.0),
    (0, 1, 3.0, -2.0),
    (1, 1, 1.5, 2.5),
    (1, 2, -4.0, 0.5),
]


@pytest.fixture
def bal_file(tmp_path):
    lines = [f"{len(CAMERAS)} {len(POINTS)} {len(OBSERVATIONS)}"]
    lines += [f"{c} {p} {x} {y}" for c, p, x, y in OBSERVATIONS]
    lines += [repr(v) for cam in CAMERAS for v in cam]
    lines += [repr(v) for pt in POINTS for v in pt]
    path = tmp_path / "problem.txt"
    path.write_text("\n".join(lines) + "\n")
    return path


def test_load(bal_file):
    problem = BALProblem.load(bal_file)
    assert (problem.num_cameras, problem.num_points, problem.num_observations) == (2, 3, 4)
    assert problem.num_parameters == 9 * 2 + 3 * 3
    np.testing.assert_array_equal(problem.camera_index, [o[0] for o in OBSERVATIONS])
    np.testing.assert_array_equal(problem.point_index, [o[1] for o in OBSERVATIONS])
    np.testing.assert_allclose(problem.observations, [o[2:] for o in OBSERVATIONS])
    np.testing.assert_allclose(problem.cameras, CAMERAS)
    np.testing.assert_allclose(problem.points, POINTS)


def test_load_quaternions(bal_file):
    problem = BALProblem.load(bal_file, use_quaternions=True)
    assert problem.camera_block_size == 10
    assert problem.num_parameters == 10 * 2 + 3 * 3
    for camera, original in zip(problem.cameras, CAMERAS):
        np.testing.assert_allclose(camera[:4], angle_axis_to_quaternion(original[:3]))
        np.testing.assert_allclose(camera[4:], original[3:])
    np.testing.assert_allclose(problem.points, POINTS)


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        BALProblem.load(tmp_path / "absent.txt")


def test_load_truncated_file(tmp_path):
    path = tmp_path / "short.txt"
    path.write_text("1 1 1\n0 0 1.0\n")
    with pytest.raises(ValueError):
        BALProblem.load(path)


@pytest.mark.parametrize("use_quaternions", [False, True])
def test_write_to_file(bal_file, tmp_path, use_quaternions):
    problem = BALProblem.load(bal_file, use_quaternions=use_quaternions)
    out = tmp_path / "out.txt"
    problem.write_to_file(out)
    lines = out.read_text().splitlines()
    assert lines[0].split() == ["2", "2", "3", "4"]
    for line, (c, p, x, y) in zip(lines[1:5], OBSERVATIONS):
        tokens = line.split()
        assert (int(tokens[0]), int(tokens[1])) == (c, p)
        assert (float(tokens[2]), float(tokens[3])) == pytest.approx((x, y))
    values = [float(v) for v in lines[5:]]
    expected = [v for cam in CAMERAS for v in cam] + [v for pt in POINTS for v in pt]
    np.testing.assert_allclose(values, expected, atol=1e-12)


def test_write_to_ply(bal_file, tmp_path):
    problem = BALProblem.load(bal_file)
    out = tmp_path / "cloud.ply"
    problem.write_to_ply(out)
    lines = out.read_text().splitlines()
    assert lines[0] == "ply"
    assert lines[2] == "element vertex 5"
    assert lines[9] == "end_header"
    assert len(lines) == 10 + 5
    assert all(line.endswith(" 0 255 0") for line in lines[10:12])
    assert all(line.endswith("  255 255 255") for line in lines[12:])
    first_point = [float(v) for v in lines[12].split()[:3]]
    np.testing.assert_allclose(first_point, POINTS[0])


@pytest.mark.parametrize("use_quaternions", [False, True])
def test_camera_center_round_trip(bal_file, use_quaternions):
    problem = BALProblem.load(bal_file, use_quaternions=use_quaternions)
    for camera in problem.cameras:
        angle_axis, center = problem.camera_to_angle_axis_and_center(camera)
        rebuilt = problem.angle_axis_and_center_to_camera(angle_axis, center)
        np.testing.assert_allclose(rebuilt, camera[: problem.camera_block_size - 3], atol=1e-12)


def test_normalize(bal_file):
    problem = BALProblem.load(bal_file)
    before = [
        cam_projection_with_distortion(problem.cameras[c], problem.points[p])
        for c, p in zip(problem.camera_index, problem.point_index)
    ]
    problem.normalize()
    points = problem.points
    for i in range(3):
        assert median(points[:, i]) == pytest.approx(0.0, abs=1e-9)
    assert median(np.abs(points).sum(axis=1)) == pytest.approx(100.0)
    after = [
        cam_projection_with_distortion(problem.cameras[c], problem.points[p])
        for c, p in zip(problem.camera_index, problem.point_index)
    ]
    np.testing.assert_allclose(after, before, rtol=1e-9)


def test_perturb_zero_sigma_keeps_problem(bal_file):
    problem = BALProblem.load(bal_file)
    original = problem.parameters.copy()
    problem.perturb(0.0, 0.0, 0.0)
    np.testing.assert_allclose(problem.parameters, original, atol=1e-12)


def test_perturb_is_seeded(bal_file):
    first = BALProblem.load(bal_file)
    second = BALProblem.load(bal_file)
    original = first.parameters.copy()
    first.perturb(0.1, 0.5, 0.5, random.Random(7))
    second.perturb(0.1, 0.5, 0.5, random.Random(7))
    np.testing.assert_array_equal(first.parameters, second.parameters)
    assert not np.allclose(first.points, original[18:].reshape(3, 3))
    np.testing.assert_array_equal(first.cameras[:, 6:], original[:18].reshape(2, 9)[:, 6:])


def test_perturb_negative_sigma(bal_file):
    problem = BALProblem.load(bal_file)
    with pytest.raises(ValueError):
        problem.perturb(0.1, -0.5, 0.5)


def test_median_picks_upper_middle():
    assert median([3.0, 1.0, 2.0]) == 2.0
    assert median([4.0, 1.0, 3.0, 2.0]) == 3.0


def test_median_empty():
    with pytest.raises(ValueError):
        median([])


def test_perturb_point3():
    point = np.array([1.0, 2.0, 3.0])
    np.testing.assert_array_equal(perturb_point3(0.0, point, random.Random(1)), point)
    a = perturb_point3(0.5, point, random.Random(3))
    b = perturb_point3(0.5, point, random.Random(3))
    np.testing.assert_array_equal(a, b)
    assert not np.array_equal(a, point)