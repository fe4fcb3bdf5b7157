"""Tests for correction recipes: mapping, format checks and persistence."""

from __future__ import annotations

import json
from dataclasses import FrozenInstanceError
from pathlib import Path

import numpy as np
import pytest

from colorcal.core.charts import GridColorChart
from colorcal.core.color_calibration import create_calibration_recipe
from colorcal.core.color_space import ColorConverter, ReferenceColorSpace
from colorcal.core.errors import FormatMismatchError
from colorcal.core.mapping import CorrectionMapping, MappingMethod
from colorcal.core.recipe import (
    CorrectionRecipe,
    PixelFormat,
    load_recipe,
    save_recipe,
)


@pytest.fixture
def recipe(aligned_chart: GridColorChart, chart_image: np.ndarray) -> CorrectionRecipe:
    return create_calibration_recipe(chart_image, aligned_chart)[0]


class TestPixelFormat:
    def test_color(self) -> None:
        fmt = PixelFormat.of(np.zeros((4, 4, 3), dtype=np.uint8))
        assert fmt == PixelFormat("uint8", 3)
        assert str(fmt) == "uint8x3"

    def test_gray(self) -> None:
        assert PixelFormat.of(np.zeros((4, 4), dtype=np.uint16)) == PixelFormat("uint16", 1)


class TestMap:
    def test_returns_float_planes(
        self, recipe: CorrectionRecipe, scene_image: np.ndarray
    ) -> None:
        planes = recipe.map(scene_image)
        assert planes.shape == (3, 60, 80)
        assert planes.dtype == np.float32

    def test_is_pure(self, recipe: CorrectionRecipe, scene_image: np.ndarray) -> None:
        original = scene_image.copy()
        first = recipe.map(scene_image)
        second = recipe.map(scene_image)
        assert np.array_equal(first, second)
        assert np.array_equal(scene_image, original)

    def test_planes_match_pixel_transform(
        self, recipe: CorrectionRecipe, scene_image: np.ndarray
    ) -> None:
        planes = recipe.map(scene_image)
        y, x = 10, 20
        rgb = scene_image[y, x, ::-1].astype(np.float64) / 255.0
        expected = recipe.corrector.transform(rgb[None, :])[0]
        assert np.allclose(planes[:, y, x], expected, atol=1e-5)

    def test_format_mismatch_dtype(self, recipe: CorrectionRecipe) -> None:
        with pytest.raises(FormatMismatchError) as excinfo:
            recipe.map(np.zeros((8, 8, 3), dtype=np.uint16))
        assert excinfo.value.expected == PixelFormat("uint8", 3)
        assert excinfo.value.actual == PixelFormat("uint16", 3)

    def test_format_mismatch_channels(self, recipe: CorrectionRecipe) -> None:
        with pytest.raises(FormatMismatchError):
            recipe.map(np.zeros((8, 8), dtype=np.uint8))
        with pytest.raises(FormatMismatchError):
            recipe.correct(np.zeros((8, 8, 4), dtype=np.uint8))

    def test_recipe_is_frozen(self, recipe: CorrectionRecipe) -> None:
        with pytest.raises(FrozenInstanceError):
            recipe.reference_space = ReferenceColorSpace.XYZ
        with pytest.raises(TypeError):
            recipe.fit_stats["patch_count"] = 0


class TestToSrgb:
    def test_identity_srgb_recipe(self, scene_image: np.ndarray) -> None:
        identity = CorrectionMapping(
            MappingMethod.LINEAR, np.array([[0.0, 1.0]] * 3)
        )
        recipe = CorrectionRecipe(
            identity, ColorConverter(), ReferenceColorSpace.SRGB, PixelFormat("uint8", 3)
        )
        assert np.array_equal(recipe.correct(scene_image), scene_image)

    def test_identity_through_lab(self, scene_image: np.ndarray) -> None:
        recipe = CorrectionRecipe(
            CorrectionMapping(MappingMethod.LINEAR, np.array([[0.0, 1.0]] * 3)),
            ColorConverter(),
            ReferenceColorSpace.LAB,
            PixelFormat("uint8", 3),
        )
        rgb = scene_image[..., ::-1].astype(np.float64) / 255.0
        lab = ColorConverter().to_reference(rgb, ReferenceColorSpace.LAB)
        out = recipe.to_srgb(np.moveaxis(lab, -1, 0))
        assert np.abs(out.astype(int) - scene_image.astype(int)).max() <= 1

    def test_keeps_source_dtype(self) -> None:
        image = np.full((4, 4, 3), 30000, dtype=np.uint16)
        recipe = CorrectionRecipe(
            CorrectionMapping(MappingMethod.LINEAR, np.array([[0.0, 1.0]] * 3)),
            ColorConverter(),
            ReferenceColorSpace.SRGB,
            PixelFormat("uint16", 3),
        )
        out = recipe.correct(image)
        assert out.dtype == np.uint16
        assert np.array_equal(out, image)

    def test_bad_planes(self, recipe: CorrectionRecipe) -> None:
        with pytest.raises(ValueError):
            recipe.to_srgb(np.zeros((4, 4, 3), dtype=np.float32))

    def test_single_channel_recipe_rejected(self) -> None:
        with pytest.raises(ValueError):
            CorrectionRecipe(
                CorrectionMapping(MappingMethod.LINEAR, np.array([[0.0, 1.0]] * 3)),
                ColorConverter(),
                ReferenceColorSpace.SRGB,
                PixelFormat("uint8", 1),
            )


class TestPersistence:
    def test_save_and_load_reproduce_output(
        self, tmp_path: Path, recipe: CorrectionRecipe, scene_image: np.ndarray
    ) -> None:
        path = save_recipe(recipe, tmp_path / "nested" / "recipe.json")
        restored = load_recipe(path)
        assert restored.reference_space is recipe.reference_space
        assert restored.pixel_format == recipe.pixel_format
        assert restored.chart_name == "ColorChecker24"
        assert restored.fit_stats["patch_count"] == 24
        assert np.array_equal(restored.correct(scene_image), recipe.correct(scene_image))

    def test_json_layout(self, tmp_path: Path, recipe: CorrectionRecipe) -> None:
        data = json.loads(save_recipe(recipe, tmp_path / "r.json").read_text())
        assert data["reference_space"] == "sRGB"
        assert data["white_point"] == "D65"
        assert data["pixel_format"] == {"dtype": "uint8", "channels": 3}
        assert data["mapping"]["method"] == "Linear Cross-band"
        assert len(data["mapping"]["coefficients"]) == 3

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_recipe(tmp_path / "missing.json")

    def test_missing_keys(self) -> None:
        with pytest.raises(ValueError):
            CorrectionRecipe.from_dict({"reference_space": "sRGB"})

    @pytest.mark.parametrize(
        "changes",
        [
            {"mapping": 5},
            {"mapping": {"method": "Linear", "coefficients": "abc"}},
            {"mapping": {"method": "Linear", "coefficients": [[0, 1], [0, None], [0, 1]]}},
            {"mapping": {"method": "Linear", "coefficients": [[0, 1], [0], [0, 1]]}},
            {"pixel_format": {}},
            {"pixel_format": [8, 3]},
            {"pixel_format": {"dtype": "uint8", "channels": "3"}},
            {"pixel_format": {"dtype": "pixels", "channels": 3}},
            {"white_point": "A"},
            {"reference_space": "CMYK"},
        ],
    )
    def test_malformed_entries(
        self, recipe: CorrectionRecipe, changes: dict
    ) -> None:
        data = recipe.to_dict()
        data.update(changes)
        with pytest.raises(ValueError):
            CorrectionRecipe.from_dict(data)

    def test_not_an_object(self, tmp_path: Path) -> None:
        path = tmp_path / "list.json"
        path.write_text("[1, 2, 3]")
        with pytest.raises(ValueError):
            load_recipe(path)
