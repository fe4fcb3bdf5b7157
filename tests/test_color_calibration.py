"""Tests for patch sampling, calibration fitting and auto-orientation."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import cv2
import numpy as np
import pytest

from colorcal.core.charts import GridColorChart, get_chart
from colorcal.core.color_calibration import (
    ColorCalibrator,
    align_chart_auto,
    compute_calibration_mapping,
    create_calibration_recipe,
    sample_patch_colors,
    save_calibration_debug_image,
)
from colorcal.core.color_space import ReferenceColorSpace
from colorcal.core.errors import (
    AlignmentError,
    FittingError,
    FormatMismatchError,
    SamplingError,
)
from colorcal.core.mapping import MappingMethod

from conftest import CHART_QUAD, device_response, render_chart


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------


class TestSampling:
    def test_one_sample_per_patch(
        self, aligned_chart: GridColorChart, chart_image: np.ndarray
    ) -> None:
        samples = sample_patch_colors(chart_image, aligned_chart)
        assert len(samples) == 24
        assert [s.label for s in samples] == [p.label for p in aligned_chart.patches]
        assert all(s.pixel_count > 100 for s in samples)

    def test_sampled_colors_match_rendered_colors(
        self, aligned_chart: GridColorChart, chart_image: np.ndarray
    ) -> None:
        samples = sample_patch_colors(chart_image, aligned_chart, method="median")
        for sample, patch in zip(samples, aligned_chart.patches):
            expected = np.round(device_response(np.array(patch.srgb)) * 255.0) / 255.0
            assert np.allclose(sample.color, expected, atol=1e-9)

    def test_uint16_is_scaled(
        self, aligned_chart: GridColorChart, chart_image: np.ndarray
    ) -> None:
        deep = chart_image.astype(np.uint16) * 257
        a = sample_patch_colors(chart_image, aligned_chart)
        b = sample_patch_colors(deep, aligned_chart)
        for sa, sb in zip(a, b):
            assert np.allclose(sa.color, sb.color, atol=1e-9)

    def test_region_larger_than_image(self, chart: GridColorChart) -> None:
        image = np.zeros((480, 640, 3), dtype=np.uint8)
        aligned = chart.copy_aligned_to([[-50, -50], [700, 500]])
        with pytest.raises(SamplingError) as excinfo:
            sample_patch_colors(image, aligned)
        assert excinfo.value.index == 0
        assert excinfo.value.label == "dark skin"
        assert "dark skin" in str(excinfo.value)

    def test_chart_partly_outside(self, chart: GridColorChart) -> None:
        image = np.zeros((480, 640, 3), dtype=np.uint8)
        aligned = chart.copy_aligned_to([[100, 100], [900, 400]])
        with pytest.raises(SamplingError) as excinfo:
            sample_patch_colors(image, aligned)
        assert excinfo.value.label == "blue flower"
        assert excinfo.value.index == 4

    def test_samples_follow_enabled_patches(
        self, aligned_chart: GridColorChart, chart_image: np.ndarray
    ) -> None:
        subset = aligned_chart.with_enabled(["cyan", "dark skin", "black 2"])
        samples = sample_patch_colors(chart_image, subset)
        assert [s.label for s in samples] == ["dark skin", "cyan", "black 2"]
        assert [s.index for s in samples] == [0, 1, 2]

    def test_partly_outside_chart_never_fits(self, chart: GridColorChart) -> None:
        image = np.zeros((480, 640, 3), dtype=np.uint8)
        aligned = chart.copy_aligned_to([[100, 100], [900, 400]])
        with pytest.raises(SamplingError):
            compute_calibration_mapping(image, aligned, method="Linear")

    def test_unaligned_chart(self, chart: GridColorChart, chart_image: np.ndarray) -> None:
        with pytest.raises(AlignmentError):
            sample_patch_colors(chart_image, chart)

    def test_gray_image(self, aligned_chart: GridColorChart) -> None:
        with pytest.raises(FormatMismatchError):
            sample_patch_colors(np.zeros((480, 640), dtype=np.uint8), aligned_chart)

    def test_unknown_method(
        self, aligned_chart: GridColorChart, chart_image: np.ndarray
    ) -> None:
        with pytest.raises(ValueError):
            sample_patch_colors(chart_image, aligned_chart, method="mode")


# ---------------------------------------------------------------------------
# Fitting
# ---------------------------------------------------------------------------


class TestCalibrationFit:
    def test_recovers_linear_distortion(
        self, aligned_chart: GridColorChart, chart_image: np.ndarray
    ) -> None:
        fit = compute_calibration_mapping(
            chart_image, aligned_chart, "sRGB", "Linear Cross-band"
        )
        assert fit.corrector.method is MappingMethod.LINEAR_CROSS_BAND
        assert len(fit.labels) == 24
        assert fit.mean_delta_e < 1.0
        assert fit.max_delta_e < 2.0
        assert fit.rms_residual < 0.005

        inverse = np.linalg.inv(np.array([[0.85, 0.08, 0.02], [0.05, 0.80, 0.05], [0.02, 0.10, 0.82]]))
        assert np.allclose(fit.corrector.coefficients[:, 1:], inverse, atol=0.02)

    def test_stats(self, aligned_chart: GridColorChart, chart_image: np.ndarray) -> None:
        fit = compute_calibration_mapping(chart_image, aligned_chart)
        stats = fit.stats()
        assert stats["patch_count"] == 24
        assert stats["method"] == "Linear Cross-band"
        assert stats["reference_space"] == "sRGB"
        assert stats["worst_patch"] in fit.labels
        assert set(stats["patch_delta_e"]) == set(fit.labels)
        assert len(fit.patch_report()) == 24

    def test_per_channel_fit_is_worse_than_cross_band(
        self, aligned_chart: GridColorChart, chart_image: np.ndarray
    ) -> None:
        linear = compute_calibration_mapping(chart_image, aligned_chart, method="Linear")
        cross = compute_calibration_mapping(chart_image, aligned_chart)
        assert linear.mean_delta_e > cross.mean_delta_e

    def test_xyz_with_linearized_input(self, aligned_chart: GridColorChart) -> None:
        image = render_chart(aligned_chart)
        fit = compute_calibration_mapping(
            image,
            aligned_chart,
            ReferenceColorSpace.XYZ,
            MappingMethod.LINEAR_CROSS_BAND,
            linearize_input=True,
        )
        assert fit.mean_delta_e < 0.5

    @pytest.mark.parametrize("white", ["D65", "D50"])
    def test_lab_cubic(self, aligned_chart: GridColorChart, white: str) -> None:
        from colorcal.core.color_space import ColorConverter

        image = render_chart(aligned_chart, device_response)
        fit = compute_calibration_mapping(
            image,
            aligned_chart,
            "L*a*b*",
            "Cubic Cross-band",
            converter=ColorConverter(white),
        )
        assert fit.reference_space is ReferenceColorSpace.LAB
        assert fit.mean_delta_e < 5.0

    def test_gray_chart_per_channel_model(self) -> None:
        gray = get_chart("ColorChecker24Gray").copy_aligned_to([[20, 20], [620, 120]])
        image = render_chart(gray, size=(160, 640))
        fit = compute_calibration_mapping(image, gray, method="Linear")
        assert fit.mean_delta_e < 1.0

    def test_monochrome_capture_cannot_fit_cross_band(
        self, aligned_chart: GridColorChart
    ) -> None:
        image = render_chart(aligned_chart, lambda rgb: np.full(3, rgb.mean()))
        with pytest.raises(FittingError) as excinfo:
            compute_calibration_mapping(image, aligned_chart, method="Linear Cross-band")
        assert excinfo.value.rank == 2

    def test_too_few_enabled_patches(
        self, aligned_chart: GridColorChart, chart_image: np.ndarray
    ) -> None:
        subset = aligned_chart.with_enabled(["red", "green", "blue"])
        with pytest.raises(FittingError):
            compute_calibration_mapping(chart_image, subset, method="Linear Cross-band")

    def test_calibrator_parses_names(self, aligned_chart: GridColorChart) -> None:
        calibrator = ColorCalibrator(aligned_chart, "xyz", "quadratic cross-band")
        assert calibrator.reference_space is ReferenceColorSpace.XYZ
        assert calibrator.method is MappingMethod.QUADRATIC_CROSS_BAND
        assert calibrator.reference_values().shape == (24, 3)

    def test_calibrator_rejects_sampling(self, aligned_chart: GridColorChart) -> None:
        with pytest.raises(ValueError):
            ColorCalibrator(aligned_chart, sampling="max")

    def test_fit_is_deterministic(
        self, aligned_chart: GridColorChart, chart_image: np.ndarray
    ) -> None:
        a = compute_calibration_mapping(chart_image, aligned_chart, method="Quadratic Cross-band")
        b = compute_calibration_mapping(chart_image, aligned_chart, method="Quadratic Cross-band")
        assert np.array_equal(a.corrector.coefficients, b.corrector.coefficients)


class TestRecipeCreation:
    def test_recipe_carries_format_and_stats(
        self, aligned_chart: GridColorChart, chart_image: np.ndarray
    ) -> None:
        recipe, fit = create_calibration_recipe(chart_image, aligned_chart)
        assert recipe.pixel_format.dtype == "uint8"
        assert recipe.pixel_format.channels == 3
        assert recipe.chart_name == "ColorChecker24"
        assert recipe.fit_stats["patch_count"] == 24
        assert recipe.corrector is fit.corrector

    def test_corrected_chart_matches_reference(
        self, aligned_chart: GridColorChart, chart_image: np.ndarray
    ) -> None:
        recipe, _ = create_calibration_recipe(chart_image, aligned_chart)
        corrected = recipe.correct(chart_image)
        truth = render_chart(aligned_chart)
        samples = sample_patch_colors(corrected, aligned_chart)
        expected = sample_patch_colors(truth, aligned_chart)
        for got, want in zip(samples, expected):
            assert np.allclose(got.color, want.color, atol=3.0 / 255.0)

    def test_bad_alignment_aborts(self, chart: GridColorChart, chart_image: np.ndarray) -> None:
        with pytest.raises(AlignmentError):
            create_calibration_recipe(chart_image, chart.copy_aligned_to([[0, 0], [0, 0]]))


# ---------------------------------------------------------------------------
# Orientation
# ---------------------------------------------------------------------------


class TestAutoOrientation:
    @staticmethod
    def _rotated_scene(chart: GridColorChart):
        quad = np.array(CHART_QUAD, dtype=np.float32)
        h = cv2.getPerspectiveTransform(
            chart.outline().astype(np.float32), np.roll(quad, 2, axis=0)
        )
        upside_down = replace(chart, alignment=h)
        return render_chart(upside_down, device_response)

    def test_recovers_upside_down_chart(self, chart: GridColorChart) -> None:
        image = self._rotated_scene(chart)
        naive = chart.copy_aligned_to(CHART_QUAD)
        auto = align_chart_auto(chart, image, CHART_QUAD)

        _, first_chip = auto.chip_outlines()[0]
        assert first_chip.mean(axis=0)[0] > 400
        assert first_chip.mean(axis=0)[1] > 300

        naive_fit = compute_calibration_mapping(image, naive)
        auto_fit = compute_calibration_mapping(image, auto)
        assert auto_fit.mean_delta_e < 1.0
        assert naive_fit.mean_delta_e > auto_fit.mean_delta_e

    def test_upright_chart_keeps_orientation(
        self, chart: GridColorChart, chart_image: np.ndarray
    ) -> None:
        auto = align_chart_auto(chart, chart_image, CHART_QUAD)
        assert np.allclose(auto.aligned_outline(), CHART_QUAD, atol=1e-4)

    def test_degenerate_region(self, chart: GridColorChart, chart_image: np.ndarray) -> None:
        with pytest.raises(AlignmentError):
            align_chart_auto(chart, chart_image, [[0, 0], [10, 10], [20, 20], [30, 30]])

    def test_no_orientation_fits(self, chart: GridColorChart) -> None:
        image = np.zeros((100, 100, 3), dtype=np.uint8)
        with pytest.raises(AlignmentError):
            align_chart_auto(chart, image, [[-10, -10], [200, 150]])


class TestDebugImage:
    def test_writes_png(
        self, tmp_path: Path, aligned_chart: GridColorChart, chart_image: np.ndarray
    ) -> None:
        fit = compute_calibration_mapping(chart_image, aligned_chart)
        out = save_calibration_debug_image(
            chart_image, fit, aligned_chart, tmp_path / "debug" / "chart.png"
        )
        assert out.exists()
        written = cv2.imread(str(out))
        assert written.shape[0] >= chart_image.shape[0]
        assert written.shape[1] == chart_image.shape[1] + 380
