"""
Calibration defaults and JSON config loading.

Config files are flat JSON objects whose keys match ``CalibrationConfig``
fields; command-line flags override them.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Dict, Optional, Tuple

from colorcal.core.charts import get_chart
from colorcal.core.color_space import ReferenceColorSpace, white_point
from colorcal.core.io_utils import load_json, parse_extensions
from colorcal.core.mapping import MappingMethod


@dataclass(frozen=True)
class CalibrationConfig:
    chart: str = "ColorChecker24"
    reference_space: str = "sRGB"
    method: str = "Linear Cross-band"
    sampling: str = "mean"
    chip_margin: float = 0.1
    white_point: str = "D65"
    linearize_input: bool = False
    auto_orient: bool = False
    label_name: str = "ColorChecker"
    extensions: Tuple[str, ...] = (".jpg",)
    workers: int = 1

    def validate(self) -> "CalibrationConfig":
        get_chart(self.chart)
        ReferenceColorSpace.parse(self.reference_space)
        MappingMethod.parse(self.method)
        white_point(self.white_point)
        if self.sampling not in ("mean", "median"):
            raise ValueError(f"Unsupported sampling method: {self.sampling}")
        if not 0.0 <= self.chip_margin < 0.5:
            raise ValueError(f"chip_margin must be in [0, 0.5), got {self.chip_margin}")
        if not self.extensions:
            raise ValueError("extensions must not be empty")
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        return self

    def override(self, **values: object) -> "CalibrationConfig":
        """Replace fields whose value is not None."""
        changes = {k: v for k, v in values.items() if v is not None}
        if "extensions" in changes:
            changes["extensions"] = tuple(parse_extensions(changes["extensions"]))
        return replace(self, **changes).validate()


def _check_type(key: str, value: object, default: object, path: Path) -> object:
    """Check a config value against the type of its default; ints become floats."""
    if value is None:
        return None
    if isinstance(default, bool):
        ok, kind = isinstance(value, bool), "a boolean"
    elif isinstance(default, int):
        ok, kind = isinstance(value, int) and not isinstance(value, bool), "an integer"
    elif isinstance(default, float):
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        kind = "a number"
        if ok:
            value = float(value)
    elif isinstance(default, tuple):
        ok = isinstance(value, str) or (
            isinstance(value, list) and all(isinstance(v, str) for v in value)
        )
        kind = "a string or a list of strings"
    else:
        ok, kind = isinstance(value, str), "a string"
    if not ok:
        raise ValueError(f"{path}: '{key}' must be {kind}, got {value!r}")
    return value


def load_config(path: Optional[Path]) -> CalibrationConfig:
    if path is None:
        return CalibrationConfig()
    if not Path(path).exists():
        raise FileNotFoundError(f"Config not found: {path}")
    data = load_json(path)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: config must be a JSON object")
    defaults = {f.name: f.default for f in fields(CalibrationConfig)}
    unknown = sorted(set(data) - set(defaults))
    if unknown:
        raise ValueError(f"{path}: unknown config keys {unknown}")
    values: Dict[str, object] = {
        key: _check_type(key, value, defaults[key], path) for key, value in data.items()
    }
    return CalibrationConfig().override(**values)
