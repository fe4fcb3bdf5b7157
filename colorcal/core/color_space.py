"""
Unified color-space conversion utilities.

Covers sRGB ↔ linear RGB, linear RGB ↔ XYZ ↔ Lab with D65 or D50 reference
white (Bradford adaptation), image dtype normalization, and the
``ColorConverter`` that moves chart colors into a calibration reference space.

All functions work on arrays whose last axis holds the three components.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Union

import numpy as np

from colorcal.core.io_utils import normalize_label


# ---------------------------------------------------------------------------
# sRGB  ↔  linear RGB
# ---------------------------------------------------------------------------

def srgb_to_linear(rgb: np.ndarray) -> np.ndarray:
    """Convert sRGB [0,1] to linear RGB [0,1]."""
    rgb = np.asarray(rgb)
    return np.where(
        rgb <= 0.04045,
        rgb / 12.92,
        ((np.maximum(rgb, 0.04045) + 0.055) / 1.055) ** 2.4,
    )


def linear_to_srgb(rgb: np.ndarray) -> np.ndarray:
    """Convert linear RGB [0,1] to sRGB [0,1]."""
    rgb = np.asarray(rgb)
    return np.where(
        rgb <= 0.0031308,
        rgb * 12.92,
        1.055 * np.power(np.maximum(rgb, 0.0031308), 1.0 / 2.4) - 0.055,
    )


# ---------------------------------------------------------------------------
# linear RGB  ↔  XYZ  ↔  Lab
# ---------------------------------------------------------------------------

_RGB_TO_XYZ = np.array(
    [
        [0.4124564, 0.3575761, 0.1804375],
        [0.2126729, 0.7151522, 0.0721750],
        [0.0193339, 0.1191920, 0.9503041],
    ],
    dtype=np.float64,
)
_XYZ_TO_RGB = np.linalg.inv(_RGB_TO_XYZ)

_BRADFORD = np.array(
    [
        [0.8951, 0.2664, -0.1614],
        [-0.7502, 1.7135, 0.0367],
        [0.0389, -0.0685, 1.0296],
    ],
    dtype=np.float64,
)
_BRADFORD_INV = np.linalg.inv(_BRADFORD)

WHITE_POINTS: Dict[str, np.ndarray] = {
    "D65": np.array([0.95047, 1.0, 1.08883], dtype=np.float64),
    "D50": np.array([0.96422, 1.0, 0.82521], dtype=np.float64),
}

_DELTA = 6.0 / 29.0


def linear_rgb_to_xyz(linear_rgb: np.ndarray) -> np.ndarray:
    """linear RGB (..., 3) → XYZ D65 (..., 3)."""
    return np.asarray(linear_rgb, dtype=np.float64) @ _RGB_TO_XYZ.T


def xyz_to_linear_rgb(xyz: np.ndarray) -> np.ndarray:
    """XYZ D65 (..., 3) → linear RGB (..., 3), not clipped."""
    return np.asarray(xyz, dtype=np.float64) @ _XYZ_TO_RGB.T


def white_point(name: str) -> np.ndarray:
    key = str(name).strip().upper()
    if key not in WHITE_POINTS:
        raise ValueError(
            f"Unsupported white point: {name} (expected one of {sorted(WHITE_POINTS)})"
        )
    return WHITE_POINTS[key]


def adaptation_matrix(src_white: np.ndarray, dst_white: np.ndarray) -> np.ndarray:
    """Bradford chromatic adaptation matrix from one white to another."""
    lms_src = _BRADFORD @ src_white
    lms_dst = _BRADFORD @ dst_white
    return _BRADFORD_INV @ np.diag(lms_dst / lms_src) @ _BRADFORD


def xyz_to_lab(xyz: np.ndarray, white: np.ndarray) -> np.ndarray:
    """XYZ (..., 3) → Lab (..., 3) under the given white point."""
    delta_cubed = _DELTA ** 3
    scale = 1.0 / (3.0 * _DELTA * _DELTA)

    xyz_n = np.asarray(xyz, dtype=np.float64) / white
    f = np.where(
        xyz_n > delta_cubed,
        np.cbrt(xyz_n),
        xyz_n * scale + 4.0 / 29.0,
    )

    l = 116.0 * f[..., 1] - 16.0
    a = 500.0 * (f[..., 0] - f[..., 1])
    b = 200.0 * (f[..., 1] - f[..., 2])
    return np.stack([l, a, b], axis=-1)


def lab_to_xyz(lab: np.ndarray, white: np.ndarray) -> np.ndarray:
    """Lab (..., 3) → XYZ (..., 3) under the given white point."""
    lab = np.asarray(lab, dtype=np.float64)
    fy = (lab[..., 0] + 16.0) / 116.0
    fx = fy + lab[..., 1] / 500.0
    fz = fy - lab[..., 2] / 200.0
    f = np.stack([fx, fy, fz], axis=-1)
    xyz_n = np.where(
        f > _DELTA,
        f ** 3,
        3.0 * _DELTA * _DELTA * (f - 4.0 / 29.0),
    )
    return xyz_n * white


def linear_rgb_to_lab_d65(linear_rgb: np.ndarray) -> List[float]:
    """linear RGB (3,) → Lab D65, returned as a rounded list."""
    linear = np.clip(np.asarray(linear_rgb, dtype=np.float64), 0.0, 1.0)
    lab = xyz_to_lab(linear_rgb_to_xyz(linear), WHITE_POINTS["D65"])
    return [round(float(v), 2) for v in lab]


def srgb_to_lab_d65(srgb: np.ndarray) -> np.ndarray:
    """sRGB [0,1] (..., 3) → Lab D65 (..., 3)."""
    linear = srgb_to_linear(np.clip(np.asarray(srgb, dtype=np.float64), 0.0, 1.0))
    return xyz_to_lab(linear_rgb_to_xyz(linear), WHITE_POINTS["D65"])


def delta_e76(lab_a: np.ndarray, lab_b: np.ndarray) -> np.ndarray:
    return np.linalg.norm(np.asarray(lab_a) - np.asarray(lab_b), axis=-1)


# ---------------------------------------------------------------------------
# Image dtype  ↔  unit RGB
# ---------------------------------------------------------------------------

_DTYPE_SCALE = {
    "uint8": 255.0,
    "uint16": 65535.0,
    "float32": 1.0,
    "float64": 1.0,
}


def dtype_scale(dtype: Union[str, np.dtype]) -> float:
    name = np.dtype(dtype).name
    if name not in _DTYPE_SCALE:
        raise ValueError(f"Unsupported image dtype: {name}")
    return _DTYPE_SCALE[name]


def image_to_unit_rgb(image_bgr: np.ndarray) -> np.ndarray:
    """OpenCV BGR image (H, W, 3) → RGB float32 scaled by the dtype range."""
    scale = dtype_scale(image_bgr.dtype)
    return image_bgr[..., ::-1].astype(np.float32) / np.float32(scale)


def unit_rgb_to_image(rgb: np.ndarray, dtype: Union[str, np.dtype]) -> np.ndarray:
    """RGB in [0,1] (H, W, 3) → OpenCV BGR image of the given dtype (clipped)."""
    dtype = np.dtype(dtype)
    scale = dtype_scale(dtype)
    values = np.clip(np.asarray(rgb, dtype=np.float32), 0.0, 1.0)[..., ::-1]
    if dtype.kind == "f":
        return np.ascontiguousarray(values.astype(dtype))
    return np.ascontiguousarray(np.round(values * scale).astype(dtype))


# ---------------------------------------------------------------------------
# Reference spaces & converter
# ---------------------------------------------------------------------------

class ReferenceColorSpace(Enum):
    SRGB = "sRGB"
    LINEAR_SRGB = "Linear sRGB"
    XYZ = "XYZ"
    LAB = "L*a*b*"

    @classmethod
    def parse(cls, value: Union[str, "ReferenceColorSpace"]) -> "ReferenceColorSpace":
        if isinstance(value, cls):
            return value
        key = normalize_label(str(value))
        for member in cls:
            if key in (normalize_label(member.value), normalize_label(member.name)):
                return member
        if key == "lab":
            return cls.LAB
        raise ValueError(
            f"Unknown reference color space: {value} "
            f"(expected one of {[m.value for m in cls]})"
        )


@dataclass(frozen=True)
class ColorConverter:
    """
    Converts between sRGB [0,1] (D65 primaries) and a reference color space.

    XYZ and Lab values are expressed relative to ``white_point``; for D50 the
    sRGB-derived XYZ is Bradford-adapted from D65.
    """

    white_point: str = "D65"

    def __post_init__(self) -> None:
        object.__setattr__(self, "white_point", str(self.white_point).strip().upper())
        white_point(self.white_point)

    @property
    def white(self) -> np.ndarray:
        return white_point(self.white_point)

    def _to_white(self) -> np.ndarray:
        return adaptation_matrix(WHITE_POINTS["D65"], self.white)

    def srgb_to_xyz(self, srgb: np.ndarray) -> np.ndarray:
        xyz = linear_rgb_to_xyz(srgb_to_linear(np.asarray(srgb, dtype=np.float64)))
        if self.white_point == "D65":
            return xyz
        return xyz @ self._to_white().T

    def xyz_to_srgb(self, xyz: np.ndarray) -> np.ndarray:
        xyz = np.asarray(xyz, dtype=np.float64)
        if self.white_point != "D65":
            xyz = xyz @ np.linalg.inv(self._to_white()).T
        linear = np.clip(xyz_to_linear_rgb(xyz), 0.0, 1.0)
        return linear_to_srgb(linear)

    def xyz_to_lab(self, xyz: np.ndarray) -> np.ndarray:
        return xyz_to_lab(xyz, self.white)

    def lab_to_xyz(self, lab: np.ndarray) -> np.ndarray:
        return lab_to_xyz(lab, self.white)

    def to_reference(
        self, srgb: np.ndarray, space: Union[str, ReferenceColorSpace]
    ) -> np.ndarray:
        """sRGB [0,1] (..., 3) → values in ``space``."""
        space = ReferenceColorSpace.parse(space)
        srgb = np.asarray(srgb, dtype=np.float64)
        if space is ReferenceColorSpace.SRGB:
            return srgb.copy()
        if space is ReferenceColorSpace.LINEAR_SRGB:
            return srgb_to_linear(srgb)
        xyz = self.srgb_to_xyz(srgb)
        if space is ReferenceColorSpace.XYZ:
            return xyz
        return self.xyz_to_lab(xyz)

    def from_reference(
        self, values: np.ndarray, space: Union[str, ReferenceColorSpace]
    ) -> np.ndarray:
        """Values in ``space`` (..., 3) → sRGB clipped to [0,1]."""
        space = ReferenceColorSpace.parse(space)
        values = np.asarray(values, dtype=np.float64)
        if space is ReferenceColorSpace.SRGB:
            return np.clip(values, 0.0, 1.0)
        if space is ReferenceColorSpace.LINEAR_SRGB:
            return linear_to_srgb(np.clip(values, 0.0, 1.0))
        if space is ReferenceColorSpace.LAB:
            values = self.lab_to_xyz(values)
        return np.clip(self.xyz_to_srgb(values), 0.0, 1.0)
