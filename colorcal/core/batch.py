"""
Batch application of a correction recipe to a directory of images.

Every file is processed independently: a file that cannot be decoded,
does not match the recipe's pixel format, or cannot be written is recorded
as a failed ``FileResult`` and the batch moves on. Outputs keep the source
file name; an existing file of that name in the destination is overwritten.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import cv2
from tqdm import tqdm

from colorcal.core.io_utils import list_files, parse_extensions, read_image, write_image
from colorcal.core.recipe import CorrectionRecipe

DEFAULT_EXTENSIONS = (".jpg",)


@dataclass(frozen=True)
class FileResult:
    source: Path
    destination: Optional[Path]
    ok: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "source": str(self.source),
            "destination": str(self.destination) if self.destination else None,
            "ok": self.ok,
            "error": self.error,
        }


@dataclass
class BatchReport:
    src_dir: Path
    dst_dir: Path
    results: List[FileResult] = field(default_factory=list)

    @property
    def succeeded(self) -> List[FileResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> List[FileResult]:
        return [r for r in self.results if not r.ok]

    def to_dict(self) -> Dict[str, object]:
        return {
            "src_dir": str(self.src_dir),
            "dst_dir": str(self.dst_dir),
            "file_count": len(self.results),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "files": [r.to_dict() for r in self.results],
        }


class BatchCorrector:
    def __init__(
        self,
        recipe: CorrectionRecipe,
        extensions: Sequence[str] = DEFAULT_EXTENSIONS,
        workers: int = 1,
        show_progress: bool = False,
    ) -> None:
        self.recipe = recipe
        self.extensions = parse_extensions(extensions)
        if not self.extensions:
            raise ValueError("At least one file extension is required")
        self.workers = max(1, int(workers))
        self.show_progress = show_progress

    def list_images(self, src_dir: Path) -> List[Path]:
        return list_files(Path(src_dir), self.extensions)

    def correct_file(self, src_path: Path, dst_dir: Path) -> FileResult:
        src_path = Path(src_path)
        dst_path = Path(dst_dir) / src_path.name
        try:
            image = read_image(src_path)
            self.recipe.check_format(image, path=str(src_path))
            corrected = self.recipe.correct(image)
            del image
            write_image(dst_path, corrected)
        except (ValueError, OSError, cv2.error) as exc:
            return FileResult(source=src_path, destination=None, ok=False, error=str(exc))
        return FileResult(source=src_path, destination=dst_path, ok=True)

    def run(self, src_dir: Path, dst_dir: Path) -> BatchReport:
        src_dir = Path(src_dir)
        dst_dir = Path(dst_dir)
        if not src_dir.is_dir():
            raise FileNotFoundError(f"Source directory not found: {src_dir}")
        if dst_dir.exists() and dst_dir.resolve() == src_dir.resolve():
            raise ValueError(f"Destination must differ from source: {dst_dir}")

        files = self.list_images(src_dir)
        dst_dir.mkdir(parents=True, exist_ok=True)
        report = BatchReport(src_dir=src_dir, dst_dir=dst_dir)

        progress = tqdm(
            total=len(files),
            desc="Correcting",
            unit="img",
            dynamic_ncols=True,
            disable=not self.show_progress,
        )
        with progress as pbar:
            if self.workers <= 1 or len(files) <= 1:
                for path in files:
                    result = self.correct_file(path, dst_dir)
                    if not result.ok and self.show_progress:
                        pbar.write(f"Failed: {result.error}")
                    report.results.append(result)
                    pbar.update(1)
            else:
                max_workers = min(self.workers, len(files))

                def run_task(path: Path) -> FileResult:
                    return self.correct_file(path, dst_dir)

                with ThreadPoolExecutor(max_workers=max_workers) as executor:
                    for result in executor.map(run_task, files):
                        if not result.ok and self.show_progress:
                            pbar.write(f"Failed: {result.error}")
                        report.results.append(result)
                        pbar.update(1)
        return report
