"""FAST corners, oriented BRIEF descriptors and brute-force Hamming matching."""

from __future__ import annotations

import random
import sys
import time
from dataclasses import dataclass

import numpy as np
from PIL import Image, ImageDraw

HALF_PATCH_SIZE = 8
HALF_BOUNDARY = 16
DESCRIPTOR_BITS = 256
DEFAULT_D_MAX = 40
MIN_GOOD_DISTANCE = 30.0

# Sixteen pixels on a circle of radius 3, as (dx, dy), walked in order.
_FAST_CIRCLE = (
    (0, 3), (1, 3), (2, 2), (3, 1), (3, 0), (3, -1), (2, -2), (1, -3),
    (0, -3), (-1, -3), (-2, -2), (-3, -1), (-3, 0), (-3, 1), (-2, 2), (-1, 3),
)
_FAST_ARC = 9

# Point pairs (px, py, qx, qy) of the learned BRIEF test pattern.
_ORB_PATTERN = np.array((
    (8, -3, 9, 5), (4, 2, 7, -12), (-11, 9, -8, 2), (7, -12, 12, -13),
    (2, -13, 2, 12), (1, -7, 1, 6), (-2, -10, -2, -4), (-13, -13, -11, -8),
    (-13, -3, -12, -9), (10, 4, 11, 9), (-13, -8, -8, -9), (-11, 7, -9, 12),
    (7, 7, 12, 6), (-4, -5, -3, 0), (-13, 2, -12, -3), (-9, 0, -7, 5),
    (12, -6, 12, -1), (-3, 6, -2, 12), (-6, -13, -4, -8), (11, -13, 12, -8),
    (4, 7, 5, 1), (5, -3, 10, -3), (3, -7, 6, 12), (-8, -7, -6, -2),
    (-2, 11, -1, -10), (-13, 12, -8, 10), (-7, 3, -5, -3), (-4, 2, -3, 7),
    (-10, -12, -6, 11), (5, -12, 6, -7), (5, -6, 7, -1), (1, 0, 4, -5),
    (9, 11, 11, -13), (4, 7, 4, 12), (2, -1, 4, 4), (-4, -12, -2, 7),
    (-8, -5, -7, -10), (4, 11, 9, 12), (0, -8, 1, -13), (-13, -2, -8, 2),
    (-3, -2, -2, 3), (-6, 9, -4, -9), (8, 12, 10, 7), (0, 9, 1, 3),
    (7, -5, 11, -10), (-13, -6, -11, 0), (10, 7, 12, 1), (-6, -3, -6, 12),
    (10, -9, 12, -4), (-13, 8, -8, -12), (-13, 0, -8, -4), (3, 3, 7, 8),
    (5, 7, 10, -7), (-1, 7, 1, -12), (3, -10, 5, 6), (2, -4, 3, -10),
    (-13, 0, -13, 5), (-13, -7, -12, 12), (-13, 3, -11, 8), (-7, 12, -4, 7),
    (6, -10, 12, 8), (-9, -1, -7, -6), (-2, -5, 0, 12), (-12, 5, -7, 5),
    (3, -10, 8, -13), (-7, -7, -4, 5), (-3, -2, -1, -7), (2, 9, 5, -11),
    (-11, -13, -5, -13), (-1, 6, 0, -1), (5, -3, 5, 2), (-4, -13, -4, 12),
    (-9, -6, -9, 6), (-12, -10, -8, -4), (10, 2, 12, -3), (7, 12, 12, 12),
    (-7, -13, -6, 5), (-4, 9, -3, 4), (7, -1, 12, 2), (-7, 6, -5, 1),
    (-13, 11, -12, 5), (-3, 7, -2, -6), (7, -8, 12, -7), (-13, -7, -11, -12),
    (1, -3, 12, 12), (2, -6, 3, 0), (-4, 3, -2, -13), (-1, -13, 1, 9),
    (7, 1, 8, -6), (1, -1, 3, 12), (9, 1, 12, 6), (-1, -9, -1, 3),
    (-13, -13, -10, 5), (7, 7, 10, 12), (12, -5, 12, 9), (6, 3, 7, 11),
    (5, -13, 6, 10), (2, -12, 2, 3), (3, 8, 4, -6), (2, 6, 12, -13),
    (9, -12, 10, 3), (-8, 4, -7, 9), (-11, 12, -4, -6), (1, 12, 2, -8),
    (6, -9, 7, -4), (2, 3, 3, -2), (6, 3, 11, 0), (3, -3, 8, -8),
    (7, 8, 9, 3), (-11, -5, -6, -4), (-10, 11, -5, 10), (-5, -8, -3, 12),
    (-10, 5, -9, 0), (8, -1, 12, -6), (4, -6, 6, -11), (-10, 12, -8, 7),
    (4, -2, 6, 7), (-2, 0, -2, 12), (-5, -8, -5, 2), (7, -6, 10, 12),
    (-9, -13, -8, -8), (-5, -13, -5, -2), (8, -8, 9, -13), (-9, -11, -9, 0),
    (1, -8, 1, -2), (7, -4, 9, 1), (-2, 1, -1, -4), (11, -6, 12, -11),
    (-12, -9, -6, 4), (3, 7, 7, 12), (5, 5, 10, 8), (0, -4, 2, 8),
    (-9, 12, -5, -13), (0, 7, 2, 12), (-1, 2, 1, 7), (5, 11, 7, -9),
    (3, 5, 6, -8), (-13, -4, -8, 9), (-5, 9, -3, -3), (-4, -7, -3, -12),
    (6, 5, 8, 0), (-7, 6, -6, 12), (-13, 6, -5, -2), (1, -10, 3, 10),
    (4, 1, 8, -4), (-2, -2, 2, -13), (2, -12, 12, 12), (-2, -13, 0, -6),
    (4, 1, 9, 3), (-6, -10, -3, -5), (-3, -13, -1, 1), (7, 5, 12, -11),
    (4, -2, 5, -7), (-13, 9, -9, -5), (7, 1, 8, 6), (7, -8, 7, 6),
    (-7, -4, -7, 1), (-8, 11, -7, -8), (-13, 6, -12, -8), (2, 4, 3, 9),
    (10, -5, 12, 3), (-6, -5, -6, 7), (8, -3, 9, -8), (2, -12, 2, 8),
    (-11, -2, -10, 3), (-12, -13, -7, -9), (-11, 0, -10, -5), (5, -3, 11, 8),
    (-2, -13, -1, 12), (-1, -8, 0, 9), (-13, -11, -12, -5), (-10, -2, -10, 11),
    (-3, 9, -2, -13), (2, -3, 3, 2), (-9, -13, -4, 0), (-4, 6, -3, -10),
    (-4, 12, -2, -7), (-6, -11, -4, 9), (6, -3, 6, 11), (-13, 11, -5, 5),
    (11, 11, 12, 6), (7, -5, 12, -2), (-1, 12, 0, 7), (-4, -8, -3, -2),
    (-7, 1, -6, 7), (-13, -12, -8, -13), (-7, -2, -6, -8), (-8, 5, -6, -9),
    (-5, -1, -4, 5), (-13, 7, -8, 10), (1, 5, 5, -13), (1, 0, 10, -13),
    (9, 12, 10, -1), (5, -8, 10, -9), (-1, 11, 1, -13), (-9, -3, -6, 2),
    (-1, -10, 1, 12), (-13, 1, -8, -10), (8, -11, 10, -6), (2, -13, 3, -6),
    (7, -13, 12, -9), (-10, -10, -5, -7), (-10, -8, -8, -13), (4, -6, 8, 5),
    (3, 12, 8, -13), (-4, 2, -3, -3), (5, -13, 10, -12), (4, -13, 5, -1),
    (-9, 9, -4, 3), (0, 3, 3, -9), (-12, 1, -6, 1), (3, 2, 4, -8),
    (-10, -10, -10, 9), (8, -13, 12, 12), (-8, -12, -6, -5), (2, 2, 3, 7),
    (10, 6, 11, -8), (6, 8, 8, -12), (-7, 10, -6, 5), (-3, -9, -3, 9),
    (-1, -13, -1, 5), (-3, -7, -3, 4), (-8, -2, -8, 3), (4, 2, 12, 12),
    (2, -5, 3, 11), (6, -9, 11, -13), (3, -1, 7, 12), (11, -1, 12, 4),
    (-3, 0, -3, 6), (4, -11, 4, 12), (2, -4, 2, 1), (-10, -6, -8, 1),
    (-13, 7, -11, 1), (-13, 12, -11, -13), (6, 0, 11, -13), (0, -1, 1, 4),
    (-13, 3, -9, -2), (-9, 8, -6, -3), (-13, -6, -8, -2), (5, -9, 8, 10),
    (2, 7, 3, -9), (-1, -6, -1, -1), (9, 5, 11, -2), (11, -3, 12, -8),
    (3, 0, 3, 5), (-1, 4, 0, 10), (3, -6, 4, 5), (-13, 0, -10, 5),
    (5, 8, 12, 11), (8, 9, 9, -6), (7, -4, 8, -12), (-10, 4, -10, 9),
    (7, 3, 12, 4), (9, -7, 10, -2), (7, 0, 12, -2), (-1, -6, 0, -11),
), dtype=np.float32)


@dataclass(frozen=True)
class Match:
    """A pairing of a query descriptor with its best training descriptor."""

    query_idx: int
    train_idx: int
    distance: float


def _gray(image) -> np.ndarray:
    array = np.asarray(image)
    if array.ndim != 2:
        raise ValueError(f"image must be a 2D grayscale array, got shape {array.shape}")
    return array


def detect_fast(image, threshold: int = 40) -> np.ndarray:
    """Detect FAST-9 corners with non-maximum suppression.

    Returns an ``(N, 2)`` array of ``(x, y)`` positions in row-major order.
    """
    img = _gray(image).astype(np.int32)
    rows, cols = img.shape
    if rows < 7 or cols < 7:
        return np.empty((0, 2), dtype=np.float32)

    center = img[3:rows - 3, 3:cols - 3]
    circle = np.stack(
        [img[3 + dy:rows - 3 + dy, 3 + dx:cols - 3 + dx] for dx, dy in _FAST_CIRCLE]
    )
    diff = circle - center
    brighter = diff > threshold
    darker = diff < -threshold

    def has_arc(mask: np.ndarray) -> np.ndarray:
        arc = np.ones_like(mask)
        for shift in range(_FAST_ARC):
            arc &= np.roll(mask, -shift, axis=0)
        return arc.any(axis=0)

    bright_corner = has_arc(brighter)
    dark_corner = has_arc(darker)
    excess = np.abs(diff) - threshold
    bright_score = np.where(brighter, excess, 0).sum(axis=0)
    dark_score = np.where(darker, excess, 0).sum(axis=0)
    score_inner = np.where(
        bright_corner & dark_corner,
        np.maximum(bright_score, dark_score),
        np.where(bright_corner, bright_score, np.where(dark_corner, dark_score, 0)),
    )

    score = np.zeros((rows, cols), dtype=np.int64)
    score[3:rows - 3, 3:cols - 3] = score_inner
    is_corner = np.zeros((rows, cols), dtype=bool)
    is_corner[3:rows - 3, 3:cols - 3] = bright_corner | dark_corner

    padded = np.pad(score, 1, constant_values=0)
    neighbour_max = np.zeros_like(score)
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            if dx == 0 and dy == 0:
                continue
            shifted = padded[1 + dy:1 + dy + rows, 1 + dx:1 + dx + cols]
            np.maximum(neighbour_max, shifted, out=neighbour_max)

    keep = is_corner & (score > neighbour_max)
    ys, xs = np.nonzero(keep)
    return np.column_stack([xs, ys]).astype(np.float32)


def compute_orb(image, keypoints) -> list[int | None]:
    """Compute a 256-bit oriented BRIEF descriptor for each keypoint.

    Bit ``i * 32 + k`` of the returned integer holds test ``i * 32 + k`` of
    the pattern. Keypoints closer than 16 pixels to the border get ``None``.
    """
    img = _gray(image)
    rows, cols = img.shape
    offsets = np.arange(-HALF_PATCH_SIZE, HALF_PATCH_SIZE, dtype=np.float32)
    px, py, qx, qy = (_ORB_PATTERN[:, i] for i in range(4))

    descriptors: list[int | None] = []
    for kp in keypoints:
        x, y = np.float32(kp[0]), np.float32(kp[1])
        if x < HALF_BOUNDARY or y < HALF_BOUNDARY or x >= cols - HALF_BOUNDARY or y >= rows - HALF_BOUNDARY:
            descriptors.append(None)
            continue

        ix, iy = int(x), int(y)
        patch = img[
            iy - HALF_PATCH_SIZE:iy + HALF_PATCH_SIZE,
            ix - HALF_PATCH_SIZE:ix + HALF_PATCH_SIZE,
        ].astype(np.float32)
        m10 = np.float32((patch * offsets[None, :]).sum(dtype=np.float32))
        m01 = np.float32((patch * offsets[:, None]).sum(dtype=np.float32))

        m_sqrt = np.float32(np.sqrt(m01 * m01 + m10 * m10) + np.float32(1e-18))
        sin_theta = np.float32(m01 / m_sqrt)
        cos_theta = np.float32(m10 / m_sqrt)

        ppx = (cos_theta * px - sin_theta * py) + x
        ppy = (sin_theta * px + cos_theta * py) + y
        qqx = (cos_theta * qx - sin_theta * qy) + x
        qqy = (sin_theta * qx + cos_theta * qy) + y

        def sample(sx: np.ndarray, sy: np.ndarray) -> np.ndarray:
            cx = np.clip(sx.astype(np.int64), 0, cols - 1)
            cy = np.clip(sy.astype(np.int64), 0, rows - 1)
            return img[cy, cx]

        bits = sample(ppx, ppy) < sample(qqx, qqy)
        packed = np.packbits(bits.astype(np.uint8), bitorder="little").tobytes()
        descriptors.append(int.from_bytes(packed, "little"))
    return descriptors


def hamming_distance(desc1: int, desc2: int) -> int:
    """Return the number of differing bits between two descriptors."""
    return bin(desc1 ^ desc2).count("1")


def bf_match(descriptors1, descriptors2, d_max: int = DEFAULT_D_MAX) -> list[Match]:
    """Match each descriptor of the first set to its nearest one in the second.

    Missing descriptors are skipped; a match is kept only if its distance is
    below ``d_max``. On ties the earliest training descriptor wins.
    """
    matches: list[Match] = []
    for i1, d1 in enumerate(descriptors1):
        if d1 is None:
            continue
        best_idx, best_distance = 0, DESCRIPTOR_BITS
        for i2, d2 in enumerate(descriptors2):
            if d2 is None:
                continue
            distance = hamming_distance(d1, d2)
            if distance < d_max and distance < best_distance:
                best_idx, best_distance = i2, distance
        if best_distance < d_max:
            matches.append(Match(i1, best_idx, float(best_distance)))
    return matches


def filter_matches(matches) -> list[Match]:
    """Keep matches within twice the smallest distance, with a floor of 30."""
    matches = list(matches)
    if not matches:
        return []
    min_dist = min(m.distance for m in matches)
    limit = max(2 * min_dist, MIN_GOOD_DISTANCE)
    return [m for m in matches if m.distance <= limit]


def _load_gray(path) -> np.ndarray:
    with Image.open(path) as image:
        return np.asarray(image.convert("L"))


def _draw_matches(img1, kps1, img2, kps2, matches) -> Image.Image:
    h1, w1 = img1.shape
    h2, w2 = img2.shape
    canvas = np.zeros((max(h1, h2), w1 + w2), dtype=np.uint8)
    canvas[:h1, :w1] = img1
    canvas[:h2, w1:] = img2
    picture = Image.fromarray(canvas).convert("RGB")
    draw = ImageDraw.Draw(picture)
    colours = random.Random(0)
    for match in matches:
        colour = tuple(colours.randrange(256) for _ in range(3))
        x1, y1 = (float(v) for v in kps1[match.query_idx])
        x2, y2 = (float(v) for v in kps2[match.train_idx])
        x2 += w1
        for cx, cy in ((x1, y1), (x2, y2)):
            draw.ellipse((cx - 3, cy - 3, cx + 3, cy + 3), outline=colour)
        draw.line((x1, y1, x2, y2), fill=colour)
    return picture


def main(argv=None) -> int:
    """Detect, describe and match ORB features of two images; save ``matches.png``."""
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        args = ["./1.png", "./2.png"]
    if len(args) != 2:
        print("usage: orb img1 img2")
        return 1

    first_image = _load_gray(args[0])
    second_image = _load_gray(args[1])

    t1 = time.perf_counter()
    keypoints1 = detect_fast(first_image, 40)
    descriptor1 = compute_orb(first_image, keypoints1)
    keypoints2 = detect_fast(second_image, 40)
    descriptor2 = compute_orb(second_image, keypoints2)
    t2 = time.perf_counter()
    for kps, descs in ((keypoints1, descriptor1), (keypoints2, descriptor2)):
        bad = sum(d is None for d in descs)
        print(f"bad/total: {bad}/{len(kps)}")
    print(f"extract ORB cost = {t2 - t1} seconds. ")

    t1 = time.perf_counter()
    matches = bf_match(descriptor1, descriptor2)
    t2 = time.perf_counter()
    print(f"match ORB cost = {t2 - t1} seconds. ")
    print(f"matches: {len(matches)}")

    _draw_matches(first_image, keypoints1, second_image, keypoints2, matches).save("matches.png")
    print("done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())