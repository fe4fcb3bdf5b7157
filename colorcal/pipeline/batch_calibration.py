#!/usr/bin/env python3
"""
Batch color calibration in one run.

A correction recipe is computed from a photograph of the reference chart and
the chart region marked in its label JSON, then applied to every image in the
source directory. Corrected images are saved to the destination directory.

Example:
  python -m colorcal.pipeline.batch_calibration \
    --src data/batch_correction/src \
    --dst data/batch_correction/dst
"""

from __future__ import annotations

import argparse
from pathlib import Path

from colorcal.core.recipe import save_recipe
from colorcal.pipeline.step1_build_recipe import (
    add_calibration_args,
    build_recipe,
    config_from_args,
    print_fit_summary,
)
from colorcal.pipeline.step2_batch_correct import add_batch_args, resolve_workers, run_batch

DEFAULT_CHART_IMAGE = "im_1.jpg"
DEFAULT_CHART_LABEL = "im_1_chart.json"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Build a recipe from a chart photograph and correct a directory."
    )
    parser.add_argument(
        "--image",
        type=Path,
        default=None,
        help=f"Chart photograph (default: <src>/{DEFAULT_CHART_IMAGE}).",
    )
    parser.add_argument(
        "--label",
        type=Path,
        default=None,
        help=f"Chart label JSON (default: <src>/{DEFAULT_CHART_LABEL}).",
    )
    parser.add_argument(
        "--save-recipe",
        type=Path,
        default=None,
        help="Optional path to also save the recipe JSON.",
    )
    add_batch_args(parser)
    add_calibration_args(parser)
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    if not args.src.is_dir():
        raise FileNotFoundError(f"Source directory not found: {args.src}")
    image_path = args.image or args.src / DEFAULT_CHART_IMAGE
    label_path = args.label or args.src / DEFAULT_CHART_LABEL

    config = config_from_args(args).override(
        extensions=args.extensions, workers=args.workers or None
    )

    print("Create calibration recipe.")
    recipe, fit = build_recipe(image_path, label_path, config, args.debug_dir)
    print_fit_summary(fit)
    if args.save_recipe is not None:
        save_recipe(recipe, args.save_recipe)
        print(f"Saved recipe to {args.save_recipe}")

    workers = resolve_workers(0) if args.workers == 0 else config.workers
    report = run_batch(
        recipe, args.src, args.dst, config.extensions, workers, args.report
    )
    print("Done.")
    return 1 if report.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
