"""Bundle-adjustment-in-the-large (BAL) problem files."""

from __future__ import annotations

import random
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from slamkit.rotation import (
    angle_axis_rotate_point,
    angle_axis_to_quaternion,
    quaternion_to_angle_axis,
)
from slamkit.sampling import rand_normal


def median(values) -> float:
    """Return the element at position ``n // 2`` of the sorted values."""
    array = np.asarray(values, dtype=float).ravel()
    if array.size == 0:
        raise ValueError("median of an empty sequence")
    mid = array.size // 2
    return float(np.partition(array, mid)[mid])


def perturb_point3(sigma: float, point, rng: random.Random | None = None) -> np.ndarray:
    """Return ``point`` with Gaussian noise of deviation ``sigma`` added."""
    noise = np.array([rand_normal(rng) * sigma for _ in range(3)])
    return np.asarray(point, dtype=float) + noise


@dataclass
class BALProblem:
    """Cameras, points and observations of a BAL dataset."""

    num_cameras: int
    num_points: int
    camera_index: np.ndarray
    point_index: np.ndarray
    observations: np.ndarray
    parameters: np.ndarray
    use_quaternions: bool = False

    @classmethod
    def load(cls, filename, use_quaternions: bool = False) -> "BALProblem":
        """Read a problem from a BAL text file."""
        tokens = iter(Path(filename).read_text().split())

        def take(conv):
            try:
                return conv(next(tokens))
            except (StopIteration, ValueError) as exc:
                raise ValueError("Invalid UW data file.") from exc

        num_cameras = take(int)
        num_points = take(int)
        num_observations = take(int)
        if min(num_cameras, num_points, num_observations) < 0:
            raise ValueError("Invalid UW data file.")

        camera_index = np.empty(num_observations, dtype=int)
        point_index = np.empty(num_observations, dtype=int)
        observations = np.empty((num_observations, 2))
        for i in range(num_observations):
            camera_index[i] = take(int)
            point_index[i] = take(int)
            observations[i] = (take(float), take(float))

        parameters = np.array([take(float) for _ in range(9 * num_cameras + 3 * num_points)])

        if use_quaternions:
            cameras = parameters[: 9 * num_cameras].reshape(num_cameras, 9)
            converted = [
                np.concatenate([angle_axis_to_quaternion(cam[:3]), cam[3:]]) for cam in cameras
            ]
            quaternion_cameras = np.array(converted).reshape(num_cameras, 10)
            parameters = np.concatenate([quaternion_cameras.ravel(), parameters[9 * num_cameras:]])

        return cls(
            num_cameras=num_cameras,
            num_points=num_points,
            camera_index=camera_index,
            point_index=point_index,
            observations=observations,
            parameters=parameters,
            use_quaternions=use_quaternions,
        )

    @property
    def camera_block_size(self) -> int:
        return 10 if self.use_quaternions else 9

    @property
    def point_block_size(self) -> int:
        return 3

    @property
    def num_observations(self) -> int:
        return len(self.observations)

    @property
    def num_parameters(self) -> int:
        return len(self.parameters)

    @property
    def cameras(self) -> np.ndarray:
        """Writable view of the camera blocks, one row per camera."""
        end = self.camera_block_size * self.num_cameras
        return self.parameters[:end].reshape(self.num_cameras, self.camera_block_size)

    @property
    def points(self) -> np.ndarray:
        """Writable view of the 3D points, one row per point."""
        start = self.camera_block_size * self.num_cameras
        return self.parameters[start:].reshape(self.num_points, self.point_block_size)

    def write_to_file(self, filename) -> None:
        """Write the problem in BAL text form, rotations as angle-axis."""
        lines = [f"{self.num_cameras} {self.num_cameras} {self.num_points} {self.num_observations}"]
        for cam, pt, (x, y) in zip(self.camera_index, self.point_index, self.observations):
            lines.append(f"{cam} {pt} {x:g} {y:g}")
        for camera in self.cameras:
            if self.use_quaternions:
                values = np.concatenate([quaternion_to_angle_axis(camera[:4]), camera[4:10]])
            else:
                values = camera[:9]
            lines.extend(f"{v:.16g}" for v in values)
        lines.extend(f"{v:.16g}" for v in self.points.ravel())
        Path(filename).write_text("\n".join(lines) + "\n")

    def write_to_ply(self, filename) -> None:
        """Write camera centres (green) and points (white) as an ASCII PLY file."""
        parts = [
            "ply\n"
            "format ascii 1.0\n"
            f"element vertex {self.num_cameras + self.num_points}\n"
            "property float x\n"
            "property float y\n"
            "property float z\n"
            "property uchar red\n"
            "property uchar green\n"
            "property uchar blue\n"
            "end_header\n"
        ]
        for camera in self.cameras:
            _, center = self.camera_to_angle_axis_and_center(camera)
            parts.append(f"{center[0]:g} {center[1]:g} {center[2]:g} 0 255 0\n")
        for point in self.points:
            parts.append("".join(f"{v:g} " for v in point) + " 255 255 255\n")
        Path(filename).write_text("".join(parts))

    def camera_to_angle_axis_and_center(self, camera) -> tuple[np.ndarray, np.ndarray]:
        """Return the camera's angle-axis rotation and its centre ``-R^T t``."""
        camera = np.asarray(camera, dtype=float)
        if self.use_quaternions:
            angle_axis = quaternion_to_angle_axis(camera[:4])
        else:
            angle_axis = camera[:3].copy()
        size = self.camera_block_size
        translation = camera[size - 6 : size - 3]
        center = -angle_axis_rotate_point(-angle_axis, translation)
        return angle_axis, center

    def angle_axis_and_center_to_camera(self, angle_axis, center) -> np.ndarray:
        """Return the rotation and translation ``-R c`` leading a camera block."""
        angle_axis = np.asarray(angle_axis, dtype=float)
        if self.use_quaternions:
            rotation = angle_axis_to_quaternion(angle_axis)
        else:
            rotation = angle_axis.copy()
        translation = -angle_axis_rotate_point(angle_axis, center)
        return np.concatenate([rotation, translation])

    def _set_camera(self, camera: np.ndarray, angle_axis, center) -> None:
        camera[: self.camera_block_size - 3] = self.angle_axis_and_center_to_camera(angle_axis, center)

    def normalize(self) -> None:
        """Centre the points on their median and scale their median L1 deviation to 100."""
        points = self.points
        med = np.array([median(points[:, i]) for i in range(3)])
        deviation = median(np.abs(points - med).sum(axis=1))
        if deviation == 0.0:
            raise ValueError("points have zero median absolute deviation")
        scale = 100.0 / deviation
        points[:] = scale * (points - med)
        for camera in self.cameras:
            angle_axis, center = self.camera_to_angle_axis_and_center(camera)
            self._set_camera(camera, angle_axis, scale * (center - med))

    def perturb(
        self,
        rotation_sigma: float,
        translation_sigma: float,
        point_sigma: float,
        rng: random.Random | None = None,
    ) -> None:
        """Add Gaussian noise to points, camera rotations and translations."""
        for name, sigma in (
            ("point_sigma", point_sigma),
            ("rotation_sigma", rotation_sigma),
            ("translation_sigma", translation_sigma),
        ):
            if sigma < 0.0:
                raise ValueError(f"{name} must be non-negative")

        if point_sigma > 0:
            for point in self.points:
                point[:] = perturb_point3(point_sigma, point, rng)

        size = self.camera_block_size
        for camera in self.cameras:
            angle_axis, center = self.camera_to_angle_axis_and_center(camera)
            if rotation_sigma > 0.0:
                angle_axis = perturb_point3(rotation_sigma, angle_axis, rng)
            self._set_camera(camera, angle_axis, center)
            if translation_sigma > 0.0:
                camera[size - 6 : size - 3] = perturb_point3(
                    translation_sigma, camera[size - 6 : size - 3], rng
                )