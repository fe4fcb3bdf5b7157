"""
Numeric text entry without a GUI toolkit.

``NumberEntry`` holds a float and the text shown for it. Text edits stay
pending until ``commit()`` parses them; a failed commit restores the text of
the last good value.
"""

from __future__ import annotations

import argparse
import math
from typing import Callable, Optional


def format_number(value: float, decimals: int = 6) -> str:
    """Format without trailing zeros: 0.85 → "0.85", 2.0 → "2"."""
    text = f"{value:.{decimals}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def parse_number(text: str) -> float:
    cleaned = text.strip().replace("_", "")
    if not cleaned:
        raise ValueError("Empty number")
    try:
        value = float(cleaned)
    except ValueError as exc:
        raise ValueError(f"Not a number: {text!r}") from exc
    if not math.isfinite(value):
        raise ValueError(f"Number must be finite: {text!r}")
    return value


class NumberEntry:
    def __init__(
        self,
        value: float = 0.0,
        decimals: int = 6,
        validator: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.decimals = decimals
        self.validator = validator
        if validator is not None:
            validator(value)
        self._value = float(value)
        self.text = format_number(self._value, decimals)

    @property
    def value(self) -> float:
        return self._value

    def set_value(self, value: float) -> None:
        if self.validator is not None:
            self.validator(value)
        self._value = float(value)
        self.text = format_number(self._value, self.decimals)

    def edit(self, text: str) -> None:
        self.text = text

    def commit(self) -> float:
        try:
            value = parse_number(self.text)
            if self.validator is not None:
                self.validator(value)
        except ValueError:
            self.text = format_number(self._value, self.decimals)
            raise
        self.set_value(value)
        return self._value


def _check_ratio(value: float) -> None:
    if not 0.0 <= value < 0.5:
        raise ValueError(f"Expected a value in [0, 0.5), got {format_number(value)}")


def margin_arg(text: str) -> float:
    """argparse type for chip margins."""
    entry = NumberEntry(0.0, validator=_check_ratio)
    entry.edit(text)
    try:
        return entry.commit()
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc
