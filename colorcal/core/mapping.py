"""
Correction mappings fitted between device RGB and a reference color space.

Each ``MappingMethod`` names a model family. Cross-band models let every
output channel depend on all three input channels through a polynomial in
(r, g, b); the ``Linear`` model maps each channel independently. Fitting is a
per-channel least-squares solve and is deterministic.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Union

import numpy as np

from colorcal.core.color_space import srgb_to_linear
from colorcal.core.errors import FittingError
from colorcal.core.io_utils import normalize_label

MAX_CONDITION = 1e10


class MappingMethod(Enum):
    LINEAR = "Linear"
    LINEAR_CROSS_BAND = "Linear Cross-band"
    QUADRATIC_CROSS_BAND = "Quadratic Cross-band"
    CUBIC_CROSS_BAND = "Cubic Cross-band"

    @classmethod
    def parse(cls, value: Union[str, "MappingMethod"]) -> "MappingMethod":
        if isinstance(value, cls):
            return value
        key = normalize_label(str(value))
        for member in cls:
            if key in (normalize_label(member.value), normalize_label(member.name)):
                return member
        raise ValueError(
            f"Unknown mapping method: {value} (expected one of {[m.value for m in cls]})"
        )

    @property
    def degree(self) -> int:
        return {
            MappingMethod.LINEAR: 1,
            MappingMethod.LINEAR_CROSS_BAND: 1,
            MappingMethod.QUADRATIC_CROSS_BAND: 2,
            MappingMethod.CUBIC_CROSS_BAND: 3,
        }[self]

    @property
    def is_cross_band(self) -> bool:
        return self is not MappingMethod.LINEAR

    @property
    def n_terms(self) -> int:
        return {1: 4, 2: 10, 3: 20}[self.degree] if self.is_cross_band else 2


def _cross_band_terms(
    r: np.ndarray, g: np.ndarray, b: np.ndarray, degree: int
) -> Iterator[np.ndarray]:
    yield np.ones_like(r)
    yield r
    yield g
    yield b
    if degree >= 2:
        yield r * r
        yield g * g
        yield b * b
        yield r * g
        yield r * b
        yield g * b
    if degree >= 3:
        yield r * r * r
        yield g * g * g
        yield b * b * b
        yield r * r * g
        yield r * r * b
        yield g * g * r
        yield g * g * b
        yield b * b * r
        yield b * b * g
        yield r * g * b


def design_matrix(rgb: np.ndarray, method: MappingMethod) -> np.ndarray:
    """(N, 3) colors → (N, n_terms) cross-band polynomial terms."""
    rgb = np.asarray(rgb, dtype=np.float64)
    terms = _cross_band_terms(rgb[:, 0], rgb[:, 1], rgb[:, 2], method.degree)
    return np.stack(list(terms), axis=1)


@dataclass(frozen=True, eq=False)
class CorrectionMapping:
    """
    Fitted mapping, immutable after construction.

    ``coefficients`` has shape (3, n_terms). For ``Linear`` row c holds
    (offset, gain) of channel c; for cross-band methods row c holds the weights
    of the polynomial terms in the order produced by ``design_matrix``.
    """

    method: MappingMethod
    coefficients: np.ndarray
    linearize_input: bool = False

    def __post_init__(self) -> None:
        method = MappingMethod.parse(self.method)
        coeffs = np.array(self.coefficients, dtype=np.float64)
        if coeffs.shape != (3, method.n_terms):
            raise ValueError(
                f"{method.value} mapping needs coefficients of shape "
                f"(3, {method.n_terms}), got {coeffs.shape}"
            )
        coeffs.setflags(write=False)
        object.__setattr__(self, "method", method)
        object.__setattr__(self, "coefficients", coeffs)

    def prepare_input(self, rgb: np.ndarray) -> np.ndarray:
        if self.linearize_input:
            return srgb_to_linear(np.clip(rgb, 0.0, 1.0))
        return rgb

    def transform(self, rgb: np.ndarray) -> np.ndarray:
        """Map device colors (..., 3) in [0,1] to reference-space values."""
        x = np.asarray(rgb)
        dtype = x.dtype if x.dtype in (np.float32, np.float64) else np.float64
        x = self.prepare_input(x.astype(dtype, copy=False)).astype(dtype, copy=False)
        coeffs = self.coefficients.astype(dtype)

        if not self.method.is_cross_band:
            return coeffs[:, 0] + coeffs[:, 1] * x

        out = np.zeros(x.shape, dtype=dtype)
        terms = _cross_band_terms(x[..., 0], x[..., 1], x[..., 2], self.method.degree)
        for k, term in enumerate(terms):
            out += term[..., None] * coeffs[:, k]
        return out

    def to_dict(self) -> Dict[str, object]:
        return {
            "method": self.method.value,
            "linearize_input": self.linearize_input,
            "coefficients": self.coefficients.tolist(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "CorrectionMapping":
        if not isinstance(data, dict):
            raise ValueError(f"Mapping entry must be an object, got {type(data).__name__}")
        if "method" not in data or "coefficients" not in data:
            raise ValueError("Mapping entry needs 'method' and 'coefficients'")
        try:
            coefficients = np.asarray(data["coefficients"], dtype=np.float64)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Mapping coefficients must be numbers: {exc}") from exc
        if not np.all(np.isfinite(coefficients)):
            raise ValueError("Mapping coefficients must be finite")
        return cls(
            method=MappingMethod.parse(str(data["method"])),
            coefficients=coefficients,
            linearize_input=bool(data.get("linearize_input", False)),
        )


def _solve(x: np.ndarray, y: np.ndarray, n_samples: int) -> np.ndarray:
    n_terms = x.shape[1]
    if n_samples < n_terms:
        raise FittingError(
            "Not enough patches for the mapping model",
            n_samples=n_samples,
            n_terms=n_terms,
        )
    rank = int(np.linalg.matrix_rank(x))
    if rank < n_terms:
        raise FittingError(
            "Patch colors do not constrain all mapping terms",
            n_samples=n_samples,
            n_terms=n_terms,
            rank=rank,
        )
    condition = float(np.linalg.cond(x))
    if not np.isfinite(condition) or condition > MAX_CONDITION:
        raise FittingError(
            "Mapping fit is ill-conditioned",
            n_samples=n_samples,
            n_terms=n_terms,
            rank=rank,
            condition=condition,
        )
    solution = np.linalg.lstsq(x, y, rcond=None)[0]
    if not np.all(np.isfinite(solution)):
        raise FittingError("Mapping fit produced non-finite coefficients")
    return solution


def fit_mapping(
    observed: np.ndarray,
    reference: np.ndarray,
    method: Union[str, MappingMethod],
    linearize_input: bool = False,
) -> CorrectionMapping:
    """
    Least-squares fit of ``reference ≈ f(observed)``.

    observed: (N, 3) device colors in [0,1].
    reference: (N, 3) target values in the reference space.
    """
    method = MappingMethod.parse(method)
    observed = np.asarray(observed, dtype=np.float64)
    reference = np.asarray(reference, dtype=np.float64)
    if observed.ndim != 2 or observed.shape[1] != 3:
        raise ValueError(f"observed colors must have shape (N, 3), got {observed.shape}")
    if observed.shape != reference.shape:
        raise ValueError(
            f"observed {observed.shape} and reference {reference.shape} shapes differ"
        )
    if not (np.all(np.isfinite(observed)) and np.all(np.isfinite(reference))):
        raise FittingError("Patch colors contain non-finite values")

    n_samples = observed.shape[0]
    probe = CorrectionMapping(
        method, np.zeros((3, method.n_terms)), linearize_input=linearize_input
    )
    x = probe.prepare_input(observed)

    if not method.is_cross_band:
        rows: List[np.ndarray] = []
        for c in range(3):
            design = np.stack([np.ones(n_samples), x[:, c]], axis=1)
            rows.append(_solve(design, reference[:, c], n_samples))
        coeffs = np.stack(rows, axis=0)
    else:
        coeffs = _solve(design_matrix(x, method), reference, n_samples).T

    return CorrectionMapping(method, coeffs, linearize_input=linearize_input)
