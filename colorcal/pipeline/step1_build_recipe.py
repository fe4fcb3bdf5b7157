#!/usr/bin/env python3
"""
Build a correction recipe from a photograph of a reference chart.

Example:
  python -m colorcal.pipeline.step1_build_recipe \
    --image data/batch_correction/src/im_1.jpg \
    --label data/batch_correction/src/im_1_chart.json \
    --output output/recipe.json
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional, Tuple

import numpy as np

from colorcal.core.charts import GridColorChart, chart_names, get_chart
from colorcal.core.color_calibration import (
    CalibrationFit,
    align_chart_auto,
    create_calibration_recipe,
    save_calibration_debug_image,
)
from colorcal.core.color_space import ColorConverter, ReferenceColorSpace
from colorcal.core.config import CalibrationConfig, load_config
from colorcal.core.io_utils import load_chart_region, read_image, resolve_label_path
from colorcal.core.mapping import MappingMethod
from colorcal.core.number_entry import margin_arg
from colorcal.core.recipe import CorrectionRecipe, save_recipe


def add_calibration_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional JSON config with calibration defaults.",
    )
    parser.add_argument(
        "--label-name",
        type=str,
        default=None,
        help="Label of the chart polygon in the label JSON (default: ColorChecker).",
    )
    parser.add_argument(
        "--chart",
        choices=chart_names(),
        default=None,
        help="Built-in reference chart (default: ColorChecker24).",
    )
    parser.add_argument(
        "--reference-space",
        choices=[s.value for s in ReferenceColorSpace],
        default=None,
        help="Color space the mapping is fitted in (default: sRGB).",
    )
    parser.add_argument(
        "--method",
        choices=[m.value for m in MappingMethod],
        default=None,
        help="Mapping model (default: Linear Cross-band).",
    )
    parser.add_argument(
        "--sampling",
        choices=("mean", "median"),
        default=None,
        help="Sampling method within each patch.",
    )
    parser.add_argument(
        "--chip-margin",
        type=margin_arg,
        default=None,
        help="Fraction of each chip trimmed from every side before sampling.",
    )
    parser.add_argument(
        "--white-point",
        choices=("D65", "D50"),
        default=None,
        help="Reference white for XYZ and L*a*b*.",
    )
    parser.add_argument(
        "--linearize-input",
        action="store_true",
        default=None,
        help="Linearize device values (sRGB curve) before fitting.",
    )
    parser.add_argument(
        "--auto-orient",
        action="store_true",
        default=None,
        help="Try all chart orientations and keep the best match.",
    )
    parser.add_argument(
        "--debug-dir",
        type=Path,
        default=None,
        help="Optional directory to save a chart overlay debug image.",
    )


def config_from_args(args: argparse.Namespace) -> CalibrationConfig:
    config = load_config(args.config)
    return config.override(
        label_name=args.label_name,
        chart=args.chart,
        reference_space=args.reference_space,
        method=args.method,
        sampling=args.sampling,
        chip_margin=args.chip_margin,
        white_point=args.white_point,
        linearize_input=args.linearize_input,
        auto_orient=args.auto_orient,
    )


def align_chart(
    image: np.ndarray, region: np.ndarray, config: CalibrationConfig
) -> GridColorChart:
    chart = get_chart(config.chart).with_chip_margin(config.chip_margin)
    if config.auto_orient:
        return align_chart_auto(chart, image, region, config.sampling)
    return chart.copy_aligned_to(region)


def build_recipe(
    image_path: Path,
    label_path: Optional[Path],
    config: CalibrationConfig,
    debug_dir: Optional[Path] = None,
) -> Tuple[CorrectionRecipe, CalibrationFit]:
    if not image_path.exists():
        raise FileNotFoundError(f"Chart image not found: {image_path}")
    if label_path is None:
        label_path = resolve_label_path(image_path)

    image = read_image(image_path)
    region = load_chart_region(label_path, config.label_name)
    chart = align_chart(image, region, config)
    recipe, fit = create_calibration_recipe(
        image,
        chart,
        reference_space=config.reference_space,
        method=config.method,
        sampling=config.sampling,
        linearize_input=config.linearize_input,
        converter=ColorConverter(config.white_point),
    )
    if debug_dir is not None:
        save_calibration_debug_image(
            image, fit, chart, debug_dir / f"{image_path.stem}_chart_debug.png"
        )
    return recipe, fit


def print_fit_summary(fit: CalibrationFit) -> None:
    stats = fit.stats()
    print(
        f"Fitted {stats['method']} in {stats['reference_space']} on "
        f"{stats['patch_count']} patches"
    )
    print(
        f"Calibration DeltaE mean={stats['mean_delta_e']} max={stats['max_delta_e']} "
        f"(worst: {stats['worst_patch']})"
    )


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Build a color correction recipe from a chart photograph."
    )
    parser.add_argument(
        "--image",
        type=Path,
        required=True,
        help="Photograph containing the reference chart.",
    )
    parser.add_argument(
        "--label",
        type=Path,
        default=None,
        help="Label JSON with the chart region (default: <image>.json or <image>_chart.json).",
    )
    parser.add_argument(
        "--output",
        type=Path,
        required=True,
        help="Output recipe JSON path.",
    )
    add_calibration_args(parser)
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    config = config_from_args(args)
    recipe, fit = build_recipe(args.image, args.label, config, args.debug_dir)
    print_fit_summary(fit)
    save_recipe(recipe, args.output)
    print(f"Saved recipe to {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
