#!/usr/bin/env python3
"""
Plot calibration fit diagnostics: per-patch DeltaE and color swatches.

Example:
  python -m colorcal.eval.plot_calibration_fit \
    --image data/batch_correction/src/im_1.jpg \
    --label data/batch_correction/src/im_1_chart.json \
    --output-dir output/reports/plots
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List

import matplotlib.pyplot as plt
import numpy as np

from colorcal.core.color_calibration import CalibrationFit
from colorcal.pipeline.step1_build_recipe import (
    add_calibration_args,
    build_recipe,
    config_from_args,
)


def plot_delta_e(fit: CalibrationFit, output_path: Path, dpi: int = 160) -> Path:
    labels = list(fit.labels)
    x = np.arange(len(labels))
    fig, ax = plt.subplots(figsize=(max(6.0, 0.4 * len(labels)), 4.0))
    ax.bar(x, fit.delta_e, color="#4c72b0")
    ax.axhline(fit.mean_delta_e, color="#c44e52", linestyle="--", linewidth=1.0,
               label=f"mean {fit.mean_delta_e:.2f}")
    ax.set_xticks(x)
    ax.set_xticklabels(labels, rotation=60, ha="right", fontsize=8)
    ax.set_ylabel("DeltaE (CIE76, Lab D65)")
    ax.set_title(f"{fit.corrector.method.value} in {fit.reference_space.value}")
    ax.legend(loc="upper right")
    ax.grid(axis="y", alpha=0.3)
    fig.tight_layout()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=dpi)
    plt.close(fig)
    return output_path


def plot_swatches(
    fit: CalibrationFit, reference_srgb: np.ndarray, output_path: Path, dpi: int = 160
) -> Path:
    corrected = fit.converter.from_reference(fit.corrected, fit.reference_space)
    rows: List[np.ndarray] = [
        np.clip(fit.observed, 0.0, 1.0),
        np.clip(corrected, 0.0, 1.0),
        np.clip(reference_srgb, 0.0, 1.0),
    ]
    strip = np.stack(rows, axis=0)

    fig, ax = plt.subplots(figsize=(max(6.0, 0.4 * len(fit.labels)), 2.4))
    ax.imshow(strip, aspect="auto", interpolation="nearest")
    ax.set_yticks([0, 1, 2])
    ax.set_yticklabels(["measured", "corrected", "reference"])
    ax.set_xticks(np.arange(len(fit.labels)))
    ax.set_xticklabels(fit.labels, rotation=60, ha="right", fontsize=8)
    fig.tight_layout()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=dpi)
    plt.close(fig)
    return output_path


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Plot diagnostics for a chart calibration fit."
    )
    parser.add_argument("--image", type=Path, required=True, help="Chart photograph.")
    parser.add_argument("--label", type=Path, default=None, help="Chart label JSON.")
    parser.add_argument(
        "--output-dir",
        type=Path,
        required=True,
        help="Directory to save diagnostic plots.",
    )
    parser.add_argument("--dpi", type=int, default=160, help="Output image DPI.")
    add_calibration_args(parser)
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    config = config_from_args(args)
    _, fit = build_recipe(args.image, args.label, config, args.debug_dir)
    stem = args.image.stem
    reference_srgb = fit.converter.from_reference(fit.reference, fit.reference_space)
    de_path = plot_delta_e(fit, args.output_dir / f"{stem}_delta_e.png", args.dpi)
    sw_path = plot_swatches(
        fit, reference_srgb, args.output_dir / f"{stem}_swatches.png", args.dpi
    )
    print(f"Saved {de_path}")
    print(f"Saved {sw_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
