"""
Reference color charts laid out on a regular grid.

A chart lives in its own grid coordinates: the chip at (column, row) covers
``[column, column + 1] x [row, row + 1]``. Aligning the chart to a region
marked in a photograph attaches a homography from grid to image coordinates;
alignment always returns a new chart.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from colorcal.core.errors import AlignmentError
from colorcal.core.io_utils import normalize_label
from colorcal.core.math_utils import polygon_area, shrink_polygon, triangle_area

MIN_REGION_AREA = 1.0


@dataclass(frozen=True)
class Patch:
    label: str
    srgb: Tuple[float, float, float]
    column: int
    row: int

    def chip_polygon(self) -> np.ndarray:
        c, r = float(self.column), float(self.row)
        return np.array(
            [[c, r], [c + 1.0, r], [c + 1.0, r + 1.0], [c, r + 1.0]],
            dtype=np.float64,
        )


# ---------------------------------------------------------------------------
# Region → ordered quadrilateral
# ---------------------------------------------------------------------------

def _angular_cycle(pts: np.ndarray) -> np.ndarray:
    """Points sorted by angle around their centroid (clockwise on screen)."""
    center = pts.mean(axis=0)
    angles = np.arctan2(pts[:, 1] - center[1], pts[:, 0] - center[0])
    return pts[np.argsort(angles, kind="stable")]


def order_quad(pts: np.ndarray) -> np.ndarray:
    """
    Order 4 points clockwise starting from the top-left corner.

    For an upright quad this is top-left, top-right, bottom-right,
    bottom-left; a rotated quad keeps the same winding and starts at the
    corner with the smallest x + y.
    """
    pts = np.asarray(pts, dtype=np.float64).reshape(4, 2)
    cycle = _angular_cycle(pts)
    start = int(np.argmin(cycle.sum(axis=1)))
    return np.roll(cycle, -start, axis=0)


def _reduce_polygon(pts: np.ndarray) -> np.ndarray:
    hull = cv2.convexHull(pts.astype(np.float32)).reshape(-1, 2)
    if hull.shape[0] == 4:
        return hull.astype(np.float64)
    perimeter = cv2.arcLength(hull.reshape(-1, 1, 2), True)
    approx = cv2.approxPolyDP(hull.reshape(-1, 1, 2), 0.02 * perimeter, True)
    if approx.shape[0] == 4:
        return approx.reshape(4, 2).astype(np.float64)
    return cv2.boxPoints(cv2.minAreaRect(pts.astype(np.float32))).astype(np.float64)


def validate_quad(quad: np.ndarray) -> None:
    """Raise AlignmentError unless ``quad`` is a proper convex quadrilateral."""
    if np.unique(np.round(quad, 6), axis=0).shape[0] < 4:
        raise AlignmentError(f"Chart region has repeated corners: {quad.tolist()}")
    area = polygon_area(quad)
    if area < MIN_REGION_AREA:
        raise AlignmentError(f"Chart region has zero area ({area:.3g} px^2)")
    for i in range(4):
        tri = triangle_area(quad[i], quad[(i + 1) % 4], quad[(i + 2) % 4])
        if tri < 0.5 * MIN_REGION_AREA:
            raise AlignmentError(
                f"Chart region corners {i}, {(i + 1) % 4}, {(i + 2) % 4} are collinear"
            )
    if not cv2.isContourConvex(quad.astype(np.float32).reshape(-1, 1, 2)):
        raise AlignmentError(f"Chart region is not convex: {quad.tolist()}")


def region_to_quad(region: Sequence[Sequence[float]]) -> np.ndarray:
    """
    Convert a region to an ordered, validated quadrilateral.

    2 points: bounding rectangle corners. 4 points: quadrilateral.
    More than 4: reduced to a bounding quadrilateral.
    """
    try:
        pts = np.asarray(region, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise AlignmentError(f"Chart region is not a list of points: {exc}") from exc
    if pts.ndim != 2 or pts.shape[1] != 2:
        raise AlignmentError(f"Chart region must be a list of (x, y) points, got shape {pts.shape}")
    if not np.all(np.isfinite(pts)):
        raise AlignmentError("Chart region has non-finite coordinates")

    n = pts.shape[0]
    if n == 2:
        (x0, y0), (x1, y1) = pts
        quad = np.array([[x0, y0], [x1, y0], [x1, y1], [x0, y1]], dtype=np.float64)
    elif n == 4:
        quad = pts
    elif n > 4:
        quad = _reduce_polygon(pts)
    else:
        raise AlignmentError(f"Chart region needs 2 or at least 4 points, got {n}")

    ordered = order_quad(quad)
    validate_quad(ordered)
    return ordered


def candidate_quads(quad: np.ndarray) -> List[np.ndarray]:
    """All 8 corner orderings of a quadrilateral (4 rotations, 2 windings)."""
    cycle = _angular_cycle(np.asarray(quad, dtype=np.float64).reshape(4, 2))

    candidates: List[np.ndarray] = []
    for i in range(4):
        candidates.append(np.roll(cycle, -i, axis=0))
    reversed_cycle = cycle[::-1]
    for i in range(4):
        candidates.append(np.roll(reversed_cycle, -i, axis=0))
    return candidates


# ---------------------------------------------------------------------------
# Chart model
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class GridColorChart:
    name: str
    n_columns: int
    n_rows: int
    patches: Tuple[Patch, ...]
    chip_margin: float = 0.1
    enabled: Optional[FrozenSet[str]] = None
    alignment: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "patches", tuple(self.patches))
        if not 0.0 <= self.chip_margin < 0.5:
            raise ValueError(f"chip_margin must be in [0, 0.5), got {self.chip_margin}")
        labels = [p.label for p in self.patches]
        if len(set(labels)) != len(labels):
            raise ValueError(f"Chart {self.name} has duplicate patch labels")
        for p in self.patches:
            if not (0 <= p.column < self.n_columns and 0 <= p.row < self.n_rows):
                raise ValueError(f"Patch {p.label} lies outside the {self.name} grid")
        if self.enabled is not None:
            object.__setattr__(self, "enabled", frozenset(self.enabled))
        if self.alignment is not None:
            h = np.array(self.alignment, dtype=np.float64).reshape(3, 3)
            h.setflags(write=False)
            object.__setattr__(self, "alignment", h)

    @property
    def is_aligned(self) -> bool:
        return self.alignment is not None

    def outline(self) -> np.ndarray:
        w, h = float(self.n_columns), float(self.n_rows)
        return np.array([[0.0, 0.0], [w, 0.0], [w, h], [0.0, h]], dtype=np.float64)

    def enabled_patches(self) -> List[Patch]:
        if self.enabled is None:
            return list(self.patches)
        return [p for p in self.patches if p.label in self.enabled]

    def reference_srgb(self) -> np.ndarray:
        """Reference sRGB [0,1] of enabled patches, shape (N, 3)."""
        return np.array([p.srgb for p in self.enabled_patches()], dtype=np.float64)

    def _to_image(self, pts: np.ndarray) -> np.ndarray:
        if self.alignment is None:
            return pts
        src = pts.reshape(1, -1, 2).astype(np.float64)
        return cv2.perspectiveTransform(src, self.alignment)[0]

    def patch_polygons(self) -> List[Tuple[Patch, np.ndarray]]:
        """Sampling window of each enabled patch (chip minus margin)."""
        ratio = 1.0 - 2.0 * self.chip_margin
        return [
            (patch, self._to_image(shrink_polygon(patch.chip_polygon(), ratio)))
            for patch in self.enabled_patches()
        ]

    def chip_outlines(self) -> List[Tuple[Patch, np.ndarray]]:
        return [(patch, self._to_image(patch.chip_polygon())) for patch in self.enabled_patches()]

    def aligned_outline(self) -> np.ndarray:
        return self._to_image(self.outline())

    def copy_aligned_to(self, region: Sequence[Sequence[float]]) -> "GridColorChart":
        """New chart whose grid is mapped onto ``region`` in image coordinates."""
        quad = region_to_quad(region)
        return self._aligned_to_quad(quad)

    def _aligned_to_quad(self, quad: np.ndarray) -> "GridColorChart":
        try:
            h = cv2.getPerspectiveTransform(
                self.outline().astype(np.float32), quad.astype(np.float32)
            )
        except cv2.error as exc:
            raise AlignmentError(f"Cannot compute chart homography: {exc}") from exc
        if not np.all(np.isfinite(h)) or abs(float(np.linalg.det(h))) < 1e-12:
            raise AlignmentError(f"Degenerate chart homography for region {quad.tolist()}")
        return replace(self, alignment=h)

    def candidate_alignments(
        self, region: Sequence[Sequence[float]]
    ) -> List["GridColorChart"]:
        """Aligned copies for every corner ordering of ``region``."""
        quad = region_to_quad(region)
        return [self._aligned_to_quad(q) for q in candidate_quads(quad)]

    def with_enabled(self, labels: Iterable[str]) -> "GridColorChart":
        labels = list(labels)
        known = {p.label for p in self.patches}
        unknown = [label for label in labels if label not in known]
        if unknown:
            raise ValueError(f"Unknown patch labels for {self.name}: {unknown}")
        return replace(self, enabled=frozenset(labels))

    def with_chip_margin(self, margin: float) -> "GridColorChart":
        return replace(self, chip_margin=float(margin))


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

# X-Rite / GretagMacbeth ColorChecker Classic, sRGB (D65) 8-bit values from the
# BabelColor average dataset, row-major from the top-left "dark skin" chip.
_COLORCHECKER_24: Sequence[Tuple[str, Tuple[int, int, int]]] = (
    ("dark skin", (115, 82, 68)),
    ("light skin", (194, 150, 130)),
    ("blue sky", (98, 122, 157)),
    ("foliage", (87, 108, 67)),
    ("blue flower", (133, 128, 177)),
    ("bluish green", (103, 189, 170)),
    ("orange", (214, 126, 44)),
    ("purplish blue", (80, 91, 166)),
    ("moderate red", (193, 90, 99)),
    ("purple", (94, 60, 108)),
    ("yellow green", (157, 188, 64)),
    ("orange yellow", (224, 163, 46)),
    ("blue", (56, 61, 150)),
    ("green", (70, 148, 73)),
    ("red", (175, 54, 60)),
    ("yellow", (231, 199, 31)),
    ("magenta", (187, 86, 149)),
    ("cyan", (8, 133, 161)),
    ("white 9.5", (243, 243, 242)),
    ("neutral 8", (200, 200, 200)),
    ("neutral 6.5", (160, 160, 160)),
    ("neutral 5", (122, 122, 121)),
    ("neutral 3.5", (85, 85, 85)),
    ("black 2", (52, 52, 52)),
)


def _grid_patches(
    entries: Sequence[Tuple[str, Tuple[int, int, int]]], n_columns: int
) -> Tuple[Patch, ...]:
    return tuple(
        Patch(
            label=label,
            srgb=tuple(v / 255.0 for v in rgb),
            column=i % n_columns,
            row=i // n_columns,
        )
        for i, (label, rgb) in enumerate(entries)
    )


def color_checker_24() -> GridColorChart:
    return GridColorChart(
        name="ColorChecker24",
        n_columns=6,
        n_rows=4,
        patches=_grid_patches(_COLORCHECKER_24, 6),
    )


def color_checker_24_gray() -> GridColorChart:
    return GridColorChart(
        name="ColorChecker24Gray",
        n_columns=6,
        n_rows=1,
        patches=_grid_patches(_COLORCHECKER_24[18:], 6),
    )


_CATALOG = {
    "ColorChecker24": color_checker_24,
    "ColorChecker24Gray": color_checker_24_gray,
}


def chart_names() -> List[str]:
    return list(_CATALOG)


def get_chart(name: str) -> GridColorChart:
    """Look up a built-in chart, ignoring case and punctuation."""
    lookup: Dict[str, str] = {normalize_label(key): key for key in _CATALOG}
    key = lookup.get(normalize_label(name))
    if key is None:
        raise KeyError(f"Unknown chart: {name} (available: {chart_names()})")
    return _CATALOG[key]()
