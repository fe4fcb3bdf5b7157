"""
Correction recipes: a fitted mapping frozen together with the color converter,
reference space and source pixel format, reusable across many images.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Union

import numpy as np

from colorcal.core.color_space import (
    ColorConverter,
    ReferenceColorSpace,
    image_to_unit_rgb,
    unit_rgb_to_image,
)
from colorcal.core.errors import FormatMismatchError
from colorcal.core.io_utils import load_json
from colorcal.core.mapping import CorrectionMapping

SCHEMA_VERSION = "1.0"


@dataclass(frozen=True)
class PixelFormat:
    dtype: str
    channels: int

    @classmethod
    def of(cls, image: np.ndarray) -> "PixelFormat":
        channels = 1 if image.ndim == 2 else int(image.shape[2])
        return cls(dtype=np.dtype(image.dtype).name, channels=channels)

    def __str__(self) -> str:
        return f"{self.dtype}x{self.channels}"


@dataclass(frozen=True, eq=False)
class CorrectionRecipe:
    corrector: CorrectionMapping
    color_converter: ColorConverter
    reference_space: ReferenceColorSpace
    pixel_format: PixelFormat
    chart_name: Optional[str] = None
    fit_stats: Optional[Mapping[str, object]] = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "reference_space", ReferenceColorSpace.parse(self.reference_space)
        )
        if self.pixel_format.channels != 3:
            raise ValueError(
                f"Recipes need a 3-channel source format, got {self.pixel_format}"
            )
        if self.fit_stats is not None:
            object.__setattr__(self, "fit_stats", MappingProxyType(dict(self.fit_stats)))

    def check_format(self, image: np.ndarray, path: Optional[str] = None) -> None:
        actual = PixelFormat.of(image)
        if actual != self.pixel_format:
            raise FormatMismatchError(self.pixel_format, actual, path=path)

    def map(self, image: np.ndarray) -> np.ndarray:
        """
        Apply the correction to every pixel.

        Returns float32 planes of shape (3, H, W) holding reference-space
        values (R, G, B order for RGB spaces).
        """
        self.check_format(image)
        corrected = self.corrector.transform(image_to_unit_rgb(image))
        return np.ascontiguousarray(np.moveaxis(corrected, -1, 0), dtype=np.float32)

    def to_srgb(self, planes: np.ndarray) -> np.ndarray:
        """Reference-space planes (3, H, W) → sRGB BGR image in the source dtype."""
        planes = np.asarray(planes)
        if planes.ndim != 3 or planes.shape[0] != 3:
            raise ValueError(f"Expected planes of shape (3, H, W), got {planes.shape}")
        values = np.moveaxis(planes, 0, -1)
        srgb = self.color_converter.from_reference(values, self.reference_space)
        return unit_rgb_to_image(srgb, self.pixel_format.dtype)

    def correct(self, image: np.ndarray) -> np.ndarray:
        return self.to_srgb(self.map(image))

    def to_dict(self) -> Dict[str, object]:
        return {
            "schema_version": SCHEMA_VERSION,
            "chart": self.chart_name,
            "reference_space": self.reference_space.value,
            "white_point": self.color_converter.white_point,
            "pixel_format": {
                "dtype": self.pixel_format.dtype,
                "channels": self.pixel_format.channels,
            },
            "mapping": self.corrector.to_dict(),
            "fit": dict(self.fit_stats) if self.fit_stats is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "CorrectionRecipe":
        if not isinstance(data, dict):
            raise ValueError(f"Recipe must be a JSON object, got {type(data).__name__}")
        for key in ("reference_space", "pixel_format", "mapping"):
            if key not in data:
                raise ValueError(f"Recipe is missing '{key}'")
        fmt = data["pixel_format"]
        if not isinstance(fmt, dict) or "dtype" not in fmt or "channels" not in fmt:
            raise ValueError("Recipe 'pixel_format' must be an object with 'dtype' and 'channels'")
        channels = fmt["channels"]
        if not isinstance(channels, int) or isinstance(channels, bool):
            raise ValueError(f"Recipe pixel_format channels must be an integer, got {channels!r}")
        try:
            dtype = np.dtype(str(fmt["dtype"])).name
        except TypeError as exc:
            raise ValueError(f"Recipe pixel_format has an unknown dtype: {fmt['dtype']!r}") from exc
        fit = data.get("fit")
        return cls(
            corrector=CorrectionMapping.from_dict(data["mapping"]),
            color_converter=ColorConverter(str(data.get("white_point", "D65"))),
            reference_space=ReferenceColorSpace.parse(str(data["reference_space"])),
            pixel_format=PixelFormat(dtype, channels),
            chart_name=data.get("chart"),
            fit_stats=fit if isinstance(fit, dict) else None,
        )


def save_recipe(recipe: CorrectionRecipe, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(recipe.to_dict(), indent=2, ensure_ascii=True))
    return path


def load_recipe(path: Union[str, Path]) -> CorrectionRecipe:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Recipe not found: {path}")
    return CorrectionRecipe.from_dict(load_json(path))
