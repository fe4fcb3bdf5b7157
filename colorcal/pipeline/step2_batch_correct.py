#!/usr/bin/env python3
"""
Apply a saved correction recipe to every image in a directory.

Corrected images are written to the destination with their original file
names; existing files with the same name are overwritten.

Example:
  python -m colorcal.pipeline.step2_batch_correct \
    --recipe output/recipe.json \
    --src data/batch_correction/src \
    --dst data/batch_correction/dst
"""

from __future__ import annotations

import argparse
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from colorcal.core.batch import BatchCorrector, BatchReport
from colorcal.core.io_utils import parse_extensions
from colorcal.core.recipe import CorrectionRecipe, load_recipe


def add_batch_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--src",
        type=Path,
        required=True,
        help="Directory with images to correct.",
    )
    parser.add_argument(
        "--dst",
        type=Path,
        required=True,
        help="Output directory (created if missing).",
    )
    parser.add_argument(
        "--extensions",
        type=str,
        default=None,
        help="Comma-separated image extensions (default: .jpg).",
    )
    parser.add_argument(
        "--workers",
        type=workers_arg,
        default=None,
        help="Worker threads (0 = auto).",
    )
    parser.add_argument(
        "--report",
        type=Path,
        default=None,
        help="Optional JSON report path.",
    )


def workers_arg(text: str) -> int:
    """argparse type for worker counts: 0 (auto) or a positive integer."""
    try:
        value = int(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Not an integer: {text!r}") from exc
    if value < 0:
        raise argparse.ArgumentTypeError(f"Worker count must be >= 0, got {value}")
    return value


def resolve_workers(value: int) -> int:
    if value < 0:
        raise ValueError(f"Worker count must be >= 0, got {value}")
    if value > 0:
        return value
    cpu_count = os.cpu_count() or 1
    return min(32, cpu_count + 4)


def run_batch(
    recipe: CorrectionRecipe,
    src: Path,
    dst: Path,
    extensions,
    workers: int,
    report_path: Optional[Path] = None,
) -> BatchReport:
    corrector = BatchCorrector(
        recipe, extensions=extensions, workers=workers, show_progress=True
    )
    report = corrector.run(src, dst)
    print(
        f"Corrected {len(report.succeeded)} of {len(report.results)} images into {dst}"
    )
    for result in report.failed:
        print(f"  failed: {result.source.name}: {result.error}")

    if report_path is not None:
        output = {
            "meta": {
                "generated_at": datetime.now(timezone.utc).isoformat(),
                "recipe": recipe.to_dict(),
                "extensions": list(corrector.extensions),
                "workers": corrector.workers,
            },
            "batch": report.to_dict(),
        }
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(json.dumps(output, indent=2, ensure_ascii=True))
    return report


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Batch-correct images with a saved correction recipe."
    )
    parser.add_argument(
        "--recipe",
        type=Path,
        required=True,
        help="Recipe JSON produced by step1_build_recipe.",
    )
    add_batch_args(parser)
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    if not args.src.is_dir():
        raise FileNotFoundError(f"Source directory not found: {args.src}")
    recipe = load_recipe(args.recipe)
    extensions = parse_extensions(args.extensions or ".jpg")
    workers = resolve_workers(args.workers if args.workers is not None else 1)
    report = run_batch(recipe, args.src, args.dst, extensions, workers, args.report)
    return 1 if report.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
