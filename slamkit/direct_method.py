"""Sparse direct method: camera pose from photometric error at known-depth pixels."""

from __future__ import annotations

import random
import sys
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image

from slamkit.optical_flow import build_pyramid
from slamkit.rotation import se3_exp

HALF_PATCH_SIZE = 1
ITERATIONS = 10
PYRAMID_LEVELS = 4
PYRAMID_SCALE = 0.5
BASELINE = 0.573


@dataclass(frozen=True)
class Intrinsics:
    """Pinhole camera intrinsics."""

    fx: float = 718.856
    fy: float = 718.856
    cx: float = 607.1928
    cy: float = 185.2157

    def scaled(self, factor: float) -> "Intrinsics":
        """Return the intrinsics of the image resized by ``factor``."""
        return Intrinsics(self.fx * factor, self.fy * factor, self.cx * factor, self.cy * factor)


def _image(image) -> np.ndarray:
    array = np.asarray(image, dtype=float)
    if array.ndim != 2:
        raise ValueError(f"image must be a 2D grayscale array, got shape {array.shape}")
    return array


def _sample(img: np.ndarray, x, y) -> np.ndarray:
    rows, cols = img.shape
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    x = np.where(x < 0, 0.0, x)
    y = np.where(y < 0, 0.0, y)
    x = np.where(x >= cols, float(cols - 1), x)
    y = np.where(y >= rows, float(rows - 1), y)
    fx = np.floor(x)
    fy = np.floor(y)
    xx = x - fx
    yy = y - fy
    ix = fx.astype(int)
    iy = fy.astype(int)
    ix1 = np.minimum(ix + 1, cols - 1)
    iy1 = np.minimum(iy + 1, rows - 1)
    return (
        (1 - xx) * (1 - yy) * img[iy, ix]
        + xx * (1 - yy) * img[iy, ix1]
        + (1 - xx) * yy * img[iy1, ix]
        + xx * yy * img[iy1, ix1]
    )


def get_pixel_value(image, x: float, y: float) -> float:
    """Return the bilinearly interpolated grey value at ``(x, y)``."""
    return float(_sample(_image(image), x, y))


_OFFSETS = np.arange(-HALF_PATCH_SIZE, HALF_PATCH_SIZE + 1)
_OX, _OY = (g.ravel().astype(float) for g in np.meshgrid(_OFFSETS, _OFFSETS, indexing="ij"))


class JacobianAccumulator:
    """Accumulates the Gauss-Newton system of the photometric error."""

    def __init__(self, image1, image2, px_ref, depth_ref, intrinsics: Intrinsics = Intrinsics()):
        self.image1 = _image(image1)
        self.image2 = _image(image2)
        self.px_ref = np.asarray(px_ref, dtype=float)
        self.depth_ref = np.asarray(depth_ref, dtype=float)
        if self.px_ref.ndim != 2 or self.px_ref.shape[1] != 2:
            raise ValueError("px_ref must have shape (N, 2)")
        if self.depth_ref.shape != (len(self.px_ref),):
            raise ValueError("depth_ref must hold one depth per reference pixel")
        self.intrinsics = intrinsics
        self.projection = np.zeros((len(self.px_ref), 2))
        self.hessian = np.zeros((6, 6))
        self.bias = np.zeros(6)
        self.cost = 0.0
        self.good_count = 0

    def accumulate(self, pose) -> tuple[np.ndarray, np.ndarray, float]:
        """Build ``(H, b, cost)`` for the 4x4 pose mapping reference to current frame."""
        k = self.intrinsics
        transform = np.asarray(pose, dtype=float)
        if transform.shape != (4, 4):
            raise ValueError("pose must be a 4x4 matrix")
        rows, cols = self.image2.shape
        px = self.px_ref

        bearing = np.column_stack([(px[:, 0] - k.cx) / k.fx, (px[:, 1] - k.cy) / k.fy, np.ones(len(px))])
        point_ref = self.depth_ref[:, None] * bearing
        point_cur = point_ref @ transform[:3, :3].T + transform[:3, 3]
        z = point_cur[:, 2]
        valid = z > 0
        safe_z = np.where(valid, z, 1.0)
        u = k.fx * point_cur[:, 0] / safe_z + k.cx
        v = k.fy * point_cur[:, 1] / safe_z + k.cy
        good = (
            valid
            & (u >= HALF_PATCH_SIZE) & (u <= cols - HALF_PATCH_SIZE)
            & (v >= HALF_PATCH_SIZE) & (v <= rows - HALF_PATCH_SIZE)
        )

        self.hessian = np.zeros((6, 6))
        self.bias = np.zeros(6)
        self.cost = 0.0
        self.good_count = int(good.sum())
        if self.good_count == 0:
            return self.hessian, self.bias, self.cost

        u, v = u[good], v[good]
        self.projection[good] = np.column_stack([u, v])
        x, y, zz = point_cur[good].T
        z_inv = 1.0 / zz
        z2_inv = z_inv * z_inv
        zeros = np.zeros_like(x)
        j_pixel = np.stack([
            np.column_stack([
                k.fx * z_inv, zeros, -k.fx * x * z2_inv,
                -k.fx * x * y * z2_inv, k.fx + k.fx * x * x * z2_inv, -k.fx * y * z_inv,
            ]),
            np.column_stack([
                zeros, k.fy * z_inv, -k.fy * y * z2_inv,
                -k.fy - k.fy * y * y * z2_inv, k.fy * x * y * z2_inv, k.fy * x * z_inv,
            ]),
        ], axis=1)

        ref = px[good]
        rx = ref[:, 0:1] + _OX
        ry = ref[:, 1:2] + _OY
        cx = u[:, None] + _OX
        cy = v[:, None] + _OY
        error = _sample(self.image1, rx, ry) - _sample(self.image2, cx, cy)
        j_img = np.stack([
            0.5 * (_sample(self.image2, cx + 1, cy) - _sample(self.image2, cx - 1, cy)),
            0.5 * (_sample(self.image2, cx, cy + 1) - _sample(self.image2, cx, cy - 1)),
        ], axis=-1)
        jacobian = -np.einsum("gkc,gcd->gkd", j_img, j_pixel)

        self.hessian = np.einsum("gki,gkj->ij", jacobian, jacobian)
        self.bias = -np.einsum("gk,gki->i", error, jacobian)
        self.cost = float((error * error).sum()) / self.good_count
        return self.hessian, self.bias, self.cost


def direct_pose_estimation_single_layer(
    image1, image2, px_ref, depth_ref, pose=None, intrinsics: Intrinsics = Intrinsics()
) -> np.ndarray:
    """Refine the 4x4 pose from ``image1`` to ``image2`` on one image level."""
    accumulator = JacobianAccumulator(image1, image2, px_ref, depth_ref, intrinsics)
    current = np.eye(4) if pose is None else np.array(pose, dtype=float)
    if current.shape != (4, 4):
        raise ValueError("pose must be a 4x4 matrix")

    last_cost = 0.0
    for iteration in range(ITERATIONS):
        hessian, bias, cost = accumulator.accumulate(current)
        try:
            update = np.linalg.solve(hessian, bias)
        except np.linalg.LinAlgError:
            break
        if np.isnan(update[0]):
            break
        current = se3_exp(update) @ current
        if iteration > 0 and cost > last_cost:
            break
        if np.linalg.norm(update) < 1e-3:
            break
        last_cost = cost
    return current


def direct_pose_estimation_multi_layer(
    image1, image2, px_ref, depth_ref, pose=None, intrinsics: Intrinsics = Intrinsics()
) -> np.ndarray:
    """Refine the pose coarse to fine over four pyramid levels of scale 0.5."""
    pyr1 = build_pyramid(image1, PYRAMID_LEVELS, PYRAMID_SCALE)
    pyr2 = build_pyramid(image2, PYRAMID_LEVELS, PYRAMID_SCALE)
    px = np.asarray(px_ref, dtype=float)
    current = np.eye(4) if pose is None else np.array(pose, dtype=float)
    for level in range(PYRAMID_LEVELS - 1, -1, -1):
        scale = PYRAMID_SCALE**level
        current = direct_pose_estimation_single_layer(
            pyr1[level], pyr2[level], px * scale, depth_ref, current, intrinsics.scaled(scale)
        )
    return current


def _load_gray(path) -> np.ndarray:
    with Image.open(path) as image:
        return np.asarray(image.convert("L"))


def main(argv=None) -> int:
    """Estimate the poses of ``000001.png`` .. ``000005.png`` against ``left.png``."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) > 1:
        print("usage: direct_method [data_dir]")
        return 1
    folder = Path(args[0] if args else ".")

    left = _load_gray(folder / "left.png")
    disparity = _load_gray(folder / "disparity.png")
    intrinsics = Intrinsics()

    rng = random.Random(0)
    n_points, border = 2000, 20
    rows, cols = left.shape
    pixels, depths = [], []
    while len(pixels) < n_points:
        x = rng.randrange(border, cols - border)
        y = rng.randrange(border, rows - border)
        d = int(disparity[y, x])
        if d == 0:
            continue
        depths.append(intrinsics.fx * BASELINE / d)
        pixels.append((x, y))

    pose = np.eye(4)
    np.set_printoptions(precision=6, suppress=True)
    for i in range(1, 6):
        image = _load_gray(folder / f"{i:06d}.png")
        pose = direct_pose_estimation_multi_layer(left, image, pixels, depths, pose, intrinsics)
        print(f"T21 =\n{pose}")
    return 0


if __name__ == "__main__":
    sys.exit(main())