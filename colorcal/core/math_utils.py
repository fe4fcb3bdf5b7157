"""
Shared math utilities: rounding and planar geometry helpers.
"""

from __future__ import annotations

from typing import Iterable, List

import numpy as np


def round_list(values: Iterable[float], ndigits: int) -> List[float]:
    """Round each value and return a plain list."""
    return [round(float(v), ndigits) for v in values]


def polygon_area(pts: np.ndarray) -> float:
    """Absolute shoelace area of a closed polygon (N, 2)."""
    x = pts[:, 0]
    y = pts[:, 1]
    return 0.5 * abs(float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))))


def triangle_area(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> float:
    return 0.5 * abs(float((b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0])))


def shrink_polygon(pts: np.ndarray, ratio: float) -> np.ndarray:
    """Scale a polygon about its centroid; ratio >= 1 leaves it unchanged."""
    if ratio >= 1.0:
        return pts
    center = pts.mean(axis=0, keepdims=True)
    return center + (pts - center) * ratio
