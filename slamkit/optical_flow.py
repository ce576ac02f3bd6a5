"""Lucas-Kanade optical flow by Gauss-Newton, on one level or an image pyramid."""

from __future__ import annotations

import sys
import time

import numpy as np
from PIL import Image, ImageDraw
from scipy import ndimage

HALF_PATCH_SIZE = 4
ITERATIONS = 10
PYRAMID_LEVELS = 4
PYRAMID_SCALE = 0.5


def _image(image) -> np.ndarray:
    array = np.asarray(image, dtype=float)
    if array.ndim != 2:
        raise ValueError(f"image must be a 2D grayscale array, got shape {array.shape}")
    if array.shape[0] < 2 or array.shape[1] < 2:
        raise ValueError("image must be at least 2x2 pixels")
    return array


def _sample(img: np.ndarray, x, y) -> np.ndarray:
    """Bilinear lookup with the border clamped one pixel inside the image."""
    rows, cols = img.shape
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    x = np.where(x < 0, 0.0, x)
    y = np.where(y < 0, 0.0, y)
    x = np.where(x >= cols - 1, float(cols - 2), x)
    y = np.where(y >= rows - 1, float(rows - 2), y)
    fx = np.floor(x)
    fy = np.floor(y)
    xx = x - fx
    yy = y - fy
    ix = fx.astype(int)
    iy = fy.astype(int)
    ix1 = np.minimum(cols - 1, ix + 1)
    iy1 = np.minimum(rows - 1, iy + 1)
    return (
        (1 - xx) * (1 - yy) * img[iy, ix]
        + xx * (1 - yy) * img[iy, ix1]
        + (1 - xx) * yy * img[iy1, ix]
        + xx * yy * img[iy1, ix1]
    )


def get_pixel_value(image, x: float, y: float) -> float:
    """Return the bilinearly interpolated grey value at ``(x, y)``."""
    return float(_sample(_image(image), x, y))


def _resize(image: np.ndarray, new_rows: int, new_cols: int) -> np.ndarray:
    rows, cols = image.shape

    def coords(n_out: int, n_in: int):
        src = (np.arange(n_out) + 0.5) * (n_in / n_out) - 0.5
        src = np.maximum(src, 0.0)
        i0 = np.floor(src).astype(int)
        weight = src - i0
        i0 = np.minimum(i0, n_in - 1)
        i1 = np.minimum(i0 + 1, n_in - 1)
        return i0, i1, weight

    y0, y1, wy = coords(new_rows, rows)
    x0, x1, wx = coords(new_cols, cols)
    f = image.astype(float)
    top = f[y0][:, x0] * (1 - wx) + f[y0][:, x1] * wx
    bottom = f[y1][:, x0] * (1 - wx) + f[y1][:, x1] * wx
    out = top * (1 - wy)[:, None] + bottom * wy[:, None]
    if np.issubdtype(image.dtype, np.integer):
        info = np.iinfo(image.dtype)
        return np.clip(np.rint(out), info.min, info.max).astype(image.dtype)
    return out.astype(image.dtype)


def build_pyramid(image, levels: int = PYRAMID_LEVELS, scale: float = PYRAMID_SCALE) -> list[np.ndarray]:
    """Return ``levels`` images, each the previous one resized by ``scale``."""
    base = np.asarray(image)
    if base.ndim != 2:
        raise ValueError(f"image must be a 2D grayscale array, got shape {base.shape}")
    if levels < 1:
        raise ValueError("levels must be at least 1")
    if not 0.0 < scale <= 1.0:
        raise ValueError("scale must be in (0, 1]")
    pyramid = [base]
    for _ in range(1, levels):
        previous = pyramid[-1]
        new_rows = int(previous.shape[0] * scale)
        new_cols = int(previous.shape[1] * scale)
        if new_rows < 1 or new_cols < 1:
            raise ValueError("image is too small for this many pyramid levels")
        pyramid.append(_resize(previous, new_rows, new_cols))
    return pyramid


_OFFSETS = np.arange(-HALF_PATCH_SIZE, HALF_PATCH_SIZE)
_OX, _OY = (grid.ravel().astype(float) for grid in np.meshgrid(_OFFSETS, _OFFSETS, indexing="ij"))


def _gradient(img: np.ndarray, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    return -0.5 * np.column_stack([
        _sample(img, x + 1, y) - _sample(img, x - 1, y),
        _sample(img, x, y + 1) - _sample(img, x, y - 1),
    ])


def _track_point(img1, img2, kp, dx: float, dy: float, inverse: bool) -> tuple[float, float, bool]:
    x1 = kp[0] + _OX
    y1 = kp[1] + _OY
    reference = _sample(img1, x1, y1)
    jacobian = hessian = None
    if inverse:
        # The template gradient does not move, so J and H are fixed.
        jacobian = _gradient(img1, x1, y1)
        hessian = jacobian.T @ jacobian

    succeeded = True
    last_cost = 0.0
    for iteration in range(ITERATIONS):
        x2 = x1 + dx
        y2 = y1 + dy
        error = reference - _sample(img2, x2, y2)
        if not inverse:
            jacobian = _gradient(img2, x2, y2)
            hessian = jacobian.T @ jacobian
        bias = -(jacobian.T @ error)
        cost = float(error @ error)

        try:
            update = np.linalg.solve(hessian, bias)
        except np.linalg.LinAlgError:
            succeeded = False
            break
        if np.isnan(update[0]):
            succeeded = False
            break
        if iteration > 0 and cost > last_cost:
            break

        dx += float(update[0])
        dy += float(update[1])
        last_cost = cost
        succeeded = True
        if np.linalg.norm(update) < 1e-2:
            break
    return dx, dy, succeeded


def _keypoints(points) -> np.ndarray:
    array = np.asarray(points, dtype=float)
    if array.ndim != 2 or array.shape[1] != 2:
        raise ValueError("keypoints must have shape (N, 2)")
    return array


def optical_flow_single_level(
    image1, image2, keypoints1, keypoints2=None, inverse: bool = False, has_initial: bool = False
) -> tuple[np.ndarray, np.ndarray]:
    """Track ``keypoints1`` from ``image1`` into ``image2``.

    With ``has_initial`` the positions in ``keypoints2`` are the starting
    guess. Returns the tracked ``(N, 2)`` positions and a success mask.
    """
    img1 = _image(image1)
    img2 = _image(image2)
    kp1 = _keypoints(keypoints1)
    if has_initial:
        if keypoints2 is None:
            raise ValueError("has_initial needs keypoints2")
        guess = _keypoints(keypoints2)
        if len(guess) != len(kp1):
            raise ValueError("keypoints2 must have as many points as keypoints1")
    else:
        guess = kp1

    tracked = np.empty_like(kp1)
    success = np.zeros(len(kp1), dtype=bool)
    for i, (kp, start) in enumerate(zip(kp1, guess)):
        dx, dy = (start - kp) if has_initial else (0.0, 0.0)
        dx, dy, ok = _track_point(img1, img2, kp, float(dx), float(dy), inverse)
        tracked[i] = (kp[0] + dx, kp[1] + dy)
        success[i] = ok
    return tracked, success


def optical_flow_multi_level(image1, image2, keypoints1, inverse: bool = False) -> tuple[np.ndarray, np.ndarray]:
    """Track keypoints coarse to fine through four pyramid levels of scale 0.5."""
    kp1 = _keypoints(keypoints1)
    pyr1 = build_pyramid(image1, PYRAMID_LEVELS, PYRAMID_SCALE)
    pyr2 = build_pyramid(image2, PYRAMID_LEVELS, PYRAMID_SCALE)

    top_scale = PYRAMID_SCALE ** (PYRAMID_LEVELS - 1)
    kp1_pyr = kp1 * top_scale
    kp2_pyr = kp1_pyr.copy()
    success = np.zeros(len(kp1), dtype=bool)
    for level in range(PYRAMID_LEVELS - 1, -1, -1):
        kp2_pyr, success = optical_flow_single_level(
            pyr1[level], pyr2[level], kp1_pyr, kp2_pyr, inverse, True
        )
        if level > 0:
            kp1_pyr = kp1_pyr / PYRAMID_SCALE
            kp2_pyr = kp2_pyr / PYRAMID_SCALE
    return kp2_pyr, success


def _detect_gftt(image, max_corners: int = 500, quality: float = 0.01, min_distance: float = 20) -> np.ndarray:
    """Shi-Tomasi corners, strongest first, spaced at least ``min_distance`` apart."""
    f = np.asarray(image, dtype=float)
    gx = ndimage.sobel(f, axis=1)
    gy = ndimage.sobel(f, axis=0)
    sxx = ndimage.uniform_filter(gx * gx, 3)
    syy = ndimage.uniform_filter(gy * gy, 3)
    sxy = ndimage.uniform_filter(gx * gy, 3)
    response = 0.5 * (sxx + syy - np.sqrt((sxx - syy) ** 2 + 4.0 * sxy * sxy))
    peak = response.max()
    if peak <= 0:
        return np.empty((0, 2))
    candidates = (response >= quality * peak) & (response == ndimage.maximum_filter(response, 3))
    ys, xs = np.nonzero(candidates)
    order = np.argsort(-response[ys, xs], kind="stable")
    accepted: list[tuple[float, float]] = []
    for x, y in zip(xs[order], ys[order]):
        if all((x - ax) ** 2 + (y - ay) ** 2 >= min_distance**2 for ax, ay in accepted):
            accepted.append((float(x), float(y)))
            if len(accepted) >= max_corners:
                break
    return np.array(accepted).reshape(-1, 2)


def _draw_tracks(image, kp1, kp2, success) -> Image.Image:
    picture = Image.fromarray(np.asarray(image, dtype=np.uint8)).convert("RGB")
    draw = ImageDraw.Draw(picture)
    green = (0, 250, 0)
    for (x1, y1), (x2, y2), ok in zip(kp1, kp2, success):
        if ok:
            draw.ellipse((x2 - 2, y2 - 2, x2 + 2, y2 + 2), outline=green, width=2)
            draw.line((x1, y1, x2, y2), fill=green)
    return picture


def main(argv=None) -> int:
    """Track corners between two images; save the single- and multi-level tracks."""
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        args = ["./LK1.png", "./LK2.png"]
    if len(args) != 2:
        print("usage: optical_flow img1 img2")
        return 1

    with Image.open(args[0]) as first, Image.open(args[1]) as second:
        img1 = np.asarray(first.convert("L"))
        img2 = np.asarray(second.convert("L"))

    kp1 = _detect_gftt(img1, 500, 0.01, 20)

    kp2_single, success_single = optical_flow_single_level(img1, img2, kp1)

    t1 = time.perf_counter()
    kp2_multi, success_multi = optical_flow_multi_level(img1, img2, kp1, True)
    t2 = time.perf_counter()
    print(f"optical flow by gauss-newton: {t2 - t1}")

    _draw_tracks(img2, kp1, kp2_single, success_single).save("tracked_single.png")
    _draw_tracks(img2, kp1, kp2_multi, success_multi).save("tracked_multi.png")
    return 0


if __name__ == "__main__":
    sys.exit(main())