"""Shared fixtures: synthetic chart photographs rendered with OpenCV."""

from __future__ import annotations

from typing import Callable, Optional, Tuple

import cv2
import numpy as np
import pytest

from colorcal.core.charts import GridColorChart, get_chart

IMAGE_SIZE = (480, 640)
CHART_QUAD = [[40.0, 30.0], [600.0, 45.0], [590.0, 420.0], [50.0, 400.0]]

# Camera-like distortion: channel cross-talk plus a black offset.
DEVICE_MATRIX = np.array(
    [
        [0.85, 0.08, 0.02],
        [0.05, 0.80, 0.05],
        [0.02, 0.10, 0.82],
    ]
)
DEVICE_OFFSET = np.array([0.03, 0.02, 0.04])


def device_response(rgb: np.ndarray) -> np.ndarray:
    return DEVICE_MATRIX @ rgb + DEVICE_OFFSET


def render_chart(
    chart: GridColorChart,
    response: Optional[Callable[[np.ndarray], np.ndarray]] = None,
    size: Tuple[int, int] = IMAGE_SIZE,
    background: Tuple[int, int, int] = (90, 90, 90),
) -> np.ndarray:
    """Paint every chip of an aligned chart into a BGR uint8 image."""
    image = np.full((size[0], size[1], 3), background, dtype=np.uint8)
    for patch, pts in chart.chip_outlines():
        rgb = np.asarray(patch.srgb, dtype=np.float64)
        if response is not None:
            rgb = response(rgb)
        bgr = np.clip(np.round(rgb[::-1] * 255.0), 0, 255)
        cv2.fillPoly(
            image,
            [np.round(pts).astype(np.int32)],
            tuple(int(v) for v in bgr),
        )
    return image


@pytest.fixture
def chart() -> GridColorChart:
    return get_chart("ColorChecker24")


@pytest.fixture
def aligned_chart(chart: GridColorChart) -> GridColorChart:
    return chart.copy_aligned_to(CHART_QUAD)


@pytest.fixture
def chart_image(aligned_chart: GridColorChart) -> np.ndarray:
    return render_chart(aligned_chart, device_response)


@pytest.fixture
def scene_image() -> np.ndarray:
    rng = np.random.default_rng(7)
    return rng.integers(0, 256, size=(60, 80, 3), dtype=np.uint8)
