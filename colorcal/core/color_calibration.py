"""
Chart-based color calibration.

Samples the patches of an aligned chart from a photograph, fits a correction
mapping from device RGB to a reference color space, and bundles the result
into a ``CorrectionRecipe``.

Example:
  chart = get_chart("ColorChecker24").copy_aligned_to(region)
  recipe, fit = create_calibration_recipe(image, chart, "sRGB", "Linear Cross-band")
  corrected = recipe.correct(other_image)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from colorcal.core.charts import GridColorChart
from colorcal.core.color_space import (
    ColorConverter,
    ReferenceColorSpace,
    delta_e76,
    dtype_scale,
    srgb_to_lab_d65,
)
from colorcal.core.errors import AlignmentError, FormatMismatchError, SamplingError
from colorcal.core.mapping import CorrectionMapping, MappingMethod, fit_mapping
from colorcal.core.math_utils import round_list as _round_list
from colorcal.core.recipe import CorrectionRecipe, PixelFormat

SAMPLING_METHODS = ("mean", "median")


@dataclass(frozen=True, eq=False)
class SampledPatch:
    index: int
    label: str
    color: np.ndarray
    pixel_count: int


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------

def _check_color_image(image: np.ndarray) -> None:
    if image.ndim != 3 or image.shape[2] != 3:
        raise FormatMismatchError("3-channel color image", PixelFormat.of(image))
    dtype_scale(image.dtype)


def _sample_color(
    image: np.ndarray,
    polygon: np.ndarray,
    method: str = "mean",
) -> Tuple[Optional[np.ndarray], int]:
    x0 = int(np.floor(polygon[:, 0].min()))
    y0 = int(np.floor(polygon[:, 1].min()))
    x1 = int(np.ceil(polygon[:, 0].max())) + 1
    y1 = int(np.ceil(polygon[:, 1].max())) + 1
    crop = image[y0:y1, x0:x1]

    poly_int = np.round(polygon - [x0, y0]).astype(np.int32)
    mask = np.zeros(crop.shape[:2], dtype=np.uint8)
    cv2.fillPoly(mask, [poly_int], 255)
    ys, xs = np.where(mask == 255)
    if xs.size == 0:
        return None, 0
    pixels = crop[ys, xs].astype(np.float64)

    if method == "median":
        return np.median(pixels, axis=0), int(xs.size)
    return pixels.mean(axis=0), int(xs.size)


def sample_patch_colors(
    image: np.ndarray,
    chart: GridColorChart,
    method: str = "mean",
) -> List[SampledPatch]:
    """
    Sample every enabled patch of an aligned chart.

    Returns exactly one sample per enabled patch, in chart order, with
    colors as RGB scaled to [0,1] by the image dtype range. A patch whose
    window leaves the image or is empty raises SamplingError, so a partial
    sample list is never returned.
    """
    if method not in SAMPLING_METHODS:
        raise ValueError(f"Unsupported sampling method: {method}")
    if not chart.is_aligned:
        raise AlignmentError(f"Chart {chart.name} is not aligned to an image region")
    _check_color_image(image)

    height, width = image.shape[:2]
    scale = dtype_scale(image.dtype)
    samples: List[SampledPatch] = []
    for index, (patch, polygon) in enumerate(chart.patch_polygons()):
        if (
            polygon[:, 0].min() < 0
            or polygon[:, 1].min() < 0
            or polygon[:, 0].max() > width - 1
            or polygon[:, 1].max() > height - 1
        ):
            raise SamplingError(
                f"sampling window {np.round(polygon, 1).tolist()} falls outside "
                f"the {width}x{height} image",
                label=patch.label,
                index=index,
            )
        color_bgr, count = _sample_color(image, polygon, method)
        if color_bgr is None:
            raise SamplingError("sampling window covers no pixels", patch.label, index)
        samples.append(
            SampledPatch(
                index=index,
                label=patch.label,
                color=color_bgr[::-1] / scale,
                pixel_count=count,
            )
        )
    return samples


def _orientation_error(image: np.ndarray, chart: GridColorChart, method: str) -> float:
    try:
        samples = sample_patch_colors(image, chart, method)
    except SamplingError:
        return float("inf")
    observed = np.stack([s.color for s in samples], axis=0)
    errors = delta_e76(srgb_to_lab_d65(observed), srgb_to_lab_d65(chart.reference_srgb()))
    return float(np.mean(errors))


def align_chart_auto(
    chart: GridColorChart,
    image: np.ndarray,
    region: Sequence[Sequence[float]],
    method: str = "mean",
) -> GridColorChart:
    """
    Align ``chart`` to ``region`` choosing the corner ordering whose sampled
    colors best match the reference colors (rotated or mirrored charts).
    """
    best: Optional[GridColorChart] = None
    best_error = float("inf")
    for candidate in chart.candidate_alignments(region):
        error = _orientation_error(image, candidate, method)
        if error < best_error:
            best_error = error
            best = candidate
    if best is None:
        raise AlignmentError(
            f"No orientation of {chart.name} fits inside the image for region "
            f"{np.asarray(region).tolist()}"
        )
    return best


# ---------------------------------------------------------------------------
# Fitting
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class CalibrationFit:
    corrector: CorrectionMapping
    reference_space: ReferenceColorSpace
    converter: ColorConverter
    labels: Tuple[str, ...]
    observed: np.ndarray
    reference: np.ndarray
    corrected: np.ndarray
    delta_e: np.ndarray
    samples: Tuple[SampledPatch, ...] = field(default=())

    @property
    def mean_delta_e(self) -> float:
        return float(np.mean(self.delta_e))

    @property
    def max_delta_e(self) -> float:
        return float(np.max(self.delta_e))

    @property
    def rms_residual(self) -> float:
        return float(np.sqrt(np.mean((self.corrected - self.reference) ** 2)))

    def stats(self) -> Dict[str, object]:
        worst = int(np.argmax(self.delta_e))
        return {
            "method": self.corrector.method.value,
            "reference_space": self.reference_space.value,
            "patch_count": int(len(self.labels)),
            "mean_delta_e": round(self.mean_delta_e, 4),
            "max_delta_e": round(self.max_delta_e, 4),
            "worst_patch": self.labels[worst],
            "rms_residual": round(self.rms_residual, 6),
            "patch_delta_e": {
                label: round(float(de), 4) for label, de in zip(self.labels, self.delta_e)
            },
        }

    def patch_report(self) -> List[Dict[str, object]]:
        return [
            {
                "label": label,
                "observed": _round_list(obs, 6),
                "reference": _round_list(ref, 6),
                "corrected": _round_list(cor, 6),
                "delta_e": round(float(de), 4),
            }
            for label, obs, ref, cor, de in zip(
                self.labels, self.observed, self.reference, self.corrected, self.delta_e
            )
        ]


@dataclass(frozen=True)
class ColorCalibrator:
    """Fits correction mappings for one chart, reference space and model."""

    chart: GridColorChart
    reference_space: ReferenceColorSpace = ReferenceColorSpace.SRGB
    method: MappingMethod = MappingMethod.LINEAR_CROSS_BAND
    sampling: str = "mean"
    linearize_input: bool = False
    converter: ColorConverter = field(default_factory=ColorConverter)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "reference_space", ReferenceColorSpace.parse(self.reference_space)
        )
        object.__setattr__(self, "method", MappingMethod.parse(self.method))
        if self.sampling not in SAMPLING_METHODS:
            raise ValueError(f"Unsupported sampling method: {self.sampling}")

    def reference_values(self) -> np.ndarray:
        return self.converter.to_reference(self.chart.reference_srgb(), self.reference_space)

    def compute_calibration_mapping(self, image: np.ndarray) -> CalibrationFit:
        # One sample per enabled patch, or SamplingError.
        samples = sample_patch_colors(image, self.chart, self.sampling)
        observed = np.stack([s.color for s in samples], axis=0)
        reference = self.reference_values()
        corrector = fit_mapping(
            observed, reference, self.method, linearize_input=self.linearize_input
        )
        corrected = corrector.transform(observed)

        corrected_srgb = self.converter.from_reference(corrected, self.reference_space)
        delta_e = delta_e76(
            srgb_to_lab_d65(corrected_srgb),
            srgb_to_lab_d65(self.chart.reference_srgb()),
        )
        return CalibrationFit(
            corrector=corrector,
            reference_space=self.reference_space,
            converter=self.converter,
            labels=tuple(s.label for s in samples),
            observed=observed,
            reference=reference,
            corrected=corrected,
            delta_e=delta_e,
            samples=tuple(samples),
        )


def compute_calibration_mapping(
    image: np.ndarray,
    aligned_chart: GridColorChart,
    reference_space: Union[str, ReferenceColorSpace] = ReferenceColorSpace.SRGB,
    method: Union[str, MappingMethod] = MappingMethod.LINEAR_CROSS_BAND,
    sampling: str = "mean",
    linearize_input: bool = False,
    converter: Optional[ColorConverter] = None,
) -> CalibrationFit:
    calibrator = ColorCalibrator(
        chart=aligned_chart,
        reference_space=reference_space,
        method=method,
        sampling=sampling,
        linearize_input=linearize_input,
        converter=converter or ColorConverter(),
    )
    return calibrator.compute_calibration_mapping(image)


def create_calibration_recipe(
    chart_image: np.ndarray,
    aligned_chart: GridColorChart,
    reference_space: Union[str, ReferenceColorSpace] = ReferenceColorSpace.SRGB,
    method: Union[str, MappingMethod] = MappingMethod.LINEAR_CROSS_BAND,
    sampling: str = "mean",
    linearize_input: bool = False,
    converter: Optional[ColorConverter] = None,
) -> Tuple[CorrectionRecipe, CalibrationFit]:
    """Fit on the chart image and freeze the result into a recipe."""
    fit = compute_calibration_mapping(
        chart_image,
        aligned_chart,
        reference_space=reference_space,
        method=method,
        sampling=sampling,
        linearize_input=linearize_input,
        converter=converter,
    )
    recipe = CorrectionRecipe(
        corrector=fit.corrector,
        color_converter=fit.converter,
        reference_space=fit.reference_space,
        pixel_format=PixelFormat.of(chart_image),
        chart_name=aligned_chart.name,
        fit_stats=fit.stats(),
    )
    return recipe, fit


# ---------------------------------------------------------------------------
# Debug output
# ---------------------------------------------------------------------------

def _to_8bit(image: np.ndarray) -> np.ndarray:
    scale = dtype_scale(image.dtype)
    return np.clip(image.astype(np.float32) * (255.0 / scale), 0, 255).astype(np.uint8)


def save_calibration_debug_image(
    image: np.ndarray,
    fit: CalibrationFit,
    chart: GridColorChart,
    output_path: Path,
) -> Path:
    """Overlay chip outlines on the image next to a measured/corrected/reference panel."""
    overlay = _to_8bit(image).copy()
    font = cv2.FONT_HERSHEY_SIMPLEX
    cv2.polylines(
        overlay, [np.round(chart.aligned_outline()).astype(np.int32)], True,
        (0, 0, 255), 2, cv2.LINE_AA,
    )
    for patch, pts in chart.chip_outlines():
        pts = np.round(pts).astype(np.int32)
        cv2.polylines(overlay, [pts], True, (0, 255, 0), 1, cv2.LINE_AA)
        center = pts.mean(axis=0)
        cv2.putText(
            overlay, patch.label, (int(center[0]), int(center[1])),
            font, 0.35, (0, 255, 0), 1, cv2.LINE_AA,
        )

    corrected_srgb = fit.converter.from_reference(fit.corrected, fit.reference_space)
    reference_srgb = chart.reference_srgb()

    row_height = 22
    panel_width = 380
    panel_height = max(overlay.shape[0], row_height * len(fit.labels) + 30)
    panel = np.full((panel_height, panel_width, 3), 255, dtype=np.uint8)
    cv2.putText(
        panel, "meas / corrected / ref   dE", (10, 18), font, 0.5, (0, 0, 0), 1, cv2.LINE_AA
    )

    def to_bgr(rgb: np.ndarray) -> Tuple[int, int, int]:
        r, g, b = (int(round(float(v) * 255.0)) for v in np.clip(rgb, 0.0, 1.0))
        return (b, g, r)

    y = 40
    for i, label in enumerate(fit.labels):
        cv2.putText(panel, label, (10, y), font, 0.4, (0, 0, 0), 1, cv2.LINE_AA)
        swatches = (fit.observed[i], corrected_srgb[i], reference_srgb[i])
        for j, color in enumerate(swatches):
            x0 = 150 + j * 28
            cv2.rectangle(panel, (x0, y - 12), (x0 + 20, y + 6), to_bgr(color), -1)
            cv2.rectangle(panel, (x0, y - 12), (x0 + 20, y + 6), (0, 0, 0), 1)
        cv2.putText(
            panel, f"{fit.delta_e[i]:.2f}", (240, y), font, 0.4, (0, 0, 0), 1, cv2.LINE_AA
        )
        y += row_height

    out_height = max(overlay.shape[0], panel.shape[0])
    out_width = overlay.shape[1] + panel.shape[1]
    canvas = np.full((out_height, out_width, 3), 255, dtype=np.uint8)
    canvas[: overlay.shape[0], : overlay.shape[1]] = overlay
    canvas[: panel.shape[0], overlay.shape[1] :] = panel

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    cv2.imwrite(str(output_path), canvas)
    return output_path
