"""Uniform and Gaussian random samples."""

from __future__ import annotations

import math
import random


def rand_double(rng: random.Random | None = None) -> float:
    """Return a uniform sample in ``[0, 1)``."""
    source = random if rng is None else rng
    return source.random()


def rand_normal(rng: random.Random | None = None) -> float:
    """Return a standard normal sample by the polar method."""
    while True:
        x1 = 2.0 * rand_double(rng) - 1.0
        x2 = 2.0 * rand_double(rng) - 1.0
        w = x1 * x1 + x2 * x2
        if 0.0 < w < 1.0:
            break
    return x1 * math.sqrt((-2.0 * math.log(w)) / w)