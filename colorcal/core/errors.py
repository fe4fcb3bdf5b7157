"""
Calibration error hierarchy.

All errors derive from ValueError so callers that already guard calibration
with ``except ValueError`` keep working.
"""

from __future__ import annotations

from typing import Optional


class CalibrationError(ValueError):
    """Base class for chart alignment, sampling, fitting and format errors."""


class AlignmentError(CalibrationError):
    """The chart region cannot define a chart-to-image mapping."""


class SamplingError(CalibrationError):
    def __init__(
        self,
        message: str,
        label: Optional[str] = None,
        index: Optional[int] = None,
    ) -> None:
        if label is not None:
            message = f"Patch {index} ({label}): {message}"
        super().__init__(message)
        self.label = label
        self.index = index


class FittingError(CalibrationError):
    def __init__(
        self,
        message: str,
        n_samples: Optional[int] = None,
        n_terms: Optional[int] = None,
        rank: Optional[int] = None,
        condition: Optional[float] = None,
    ) -> None:
        details = []
        if n_samples is not None:
            details.append(f"samples={n_samples}")
        if n_terms is not None:
            details.append(f"terms={n_terms}")
        if rank is not None:
            details.append(f"rank={rank}")
        if condition is not None:
            details.append(f"cond={condition:.3g}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)
        self.n_samples = n_samples
        self.n_terms = n_terms
        self.rank = rank
        self.condition = condition


class FormatMismatchError(CalibrationError):
    def __init__(self, expected: object, actual: object, path: Optional[str] = None) -> None:
        message = f"Pixel format mismatch: expected {expected}, got {actual}"
        if path is not None:
            message = f"{path}: {message}"
        super().__init__(message)
        self.expected = expected
        self.actual = actual
        self.path = path
