"""
Shared I/O and label utilities.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import cv2
import numpy as np


def load_json(path: "str | Path") -> Dict[str, object]:
    """Load a JSON file and return its content as a dict."""
    return json.loads(Path(path).read_text(encoding="utf-8"))


def normalize_label(label: str) -> str:
    """Normalize a label to lowercase alphanumeric characters only."""
    return "".join(ch for ch in label.lower().strip() if ch.isalnum())


def find_quad_by_label(
    shapes: Iterable[Dict[str, object]],
    label_name: str,
) -> Optional[np.ndarray]:
    """Return the points of the first shape whose label matches ``label_name``."""
    target = normalize_label(label_name)
    for shape in shapes:
        if normalize_label(str(shape.get("label", ""))) != target:
            continue
        points = shape.get("points") or []
        if points:
            return np.array(points, dtype=np.float64)
    return None


def load_chart_region(
    label_path: "str | Path",
    label_name: str = "ColorChecker",
) -> np.ndarray:
    """
    Read the chart region from a LabelMe-style JSON descriptor.

    The descriptor holds a ``shapes`` list; the shape labelled ``label_name``
    gives the chart outline as a rectangle (2 points) or polygon.
    """
    label_path = Path(label_path)
    if not label_path.exists():
        raise FileNotFoundError(f"Label JSON not found: {label_path}")
    data = load_json(label_path)
    shapes = data.get("shapes", [])
    if not isinstance(shapes, list):
        raise ValueError(f"{label_path}: 'shapes' must be a list")
    region = find_quad_by_label(shapes, label_name)
    if region is None:
        raise ValueError(f"Chart label '{label_name}' not found in {label_path}")
    return region


def resolve_label_path(image_path: Path) -> Path:
    """Locate the label JSON next to an image (``<stem>.json`` or ``<stem>_chart.json``)."""
    for candidate in (
        image_path.with_suffix(".json"),
        image_path.with_suffix(".JSON"),
        image_path.with_name(f"{image_path.stem}_chart.json"),
    ):
        if candidate.exists():
            return candidate
    raise FileNotFoundError(f"Label JSON not found for image: {image_path}")


def read_image(path: "str | Path") -> np.ndarray:
    """Read an image keeping its bit depth and channel count."""
    image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise ValueError(f"Failed to read image: {path}")
    return image


def write_image(path: "str | Path", image: np.ndarray) -> Path:
    path = Path(path)
    if not cv2.imwrite(str(path), image):
        raise ValueError(f"Failed to write image: {path}")
    return path


def parse_extensions(value: "str | Sequence[str]") -> List[str]:
    """Parse ``".jpg,.png"`` or a list into normalized lowercase suffixes."""
    items = value.split(",") if isinstance(value, str) else list(value)
    extensions: List[str] = []
    for item in items:
        ext = str(item).strip().lower()
        if not ext:
            continue
        if not ext.startswith("."):
            ext = f".{ext}"
        extensions.append(ext)
    return extensions


def list_files(directory: Path, extensions: Sequence[str]) -> List[Path]:
    """Sorted regular files in ``directory`` whose suffix matches ``extensions``."""
    if not directory.is_dir():
        raise FileNotFoundError(f"Directory not found: {directory}")
    wanted = set(parse_extensions(extensions))
    return sorted(
        p for p in directory.iterdir() if p.is_file() and p.suffix.lower() in wanted
    )
