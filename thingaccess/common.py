"""Utility helpers shared across thing-access packages."""

from __future__ import annotations

import time
from collections.abc import Iterable
from typing import Final

_TRUE_STRINGS: Final[frozenset[str]] = frozenset({"1", "yes", "on", "true", "enable", "enabled"})


def parse_bool(value: object) -> bool:
    """Parse a boolean value safely from various types."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if value is None:
        return False
    s = str(value).lower().strip()
    return s in _TRUE_STRINGS


def parse_int(value: object, default: int) -> int:
    """Parse an integer value safely, handling floats and strings."""
    try:
        return int(float(value))  # type: ignore
    except (ValueError, TypeError):
        return default


def parse_float(value: object, default: float) -> float:
    """Parse a float value safely."""
    try:
        return float(value)  # type: ignore
    except (ValueError, TypeError):
        return default


def parse_code_set(value: str | Iterable[object] | None, default: frozenset[int]) -> frozenset[int]:
    """Parse a comma/space separated list of integer result codes."""
    if value is None:
        return default
    items: Iterable[object] = value.replace(",", " ").split() if isinstance(value, str) else value
    codes: set[int] = set()
    for item in items:
        try:
            codes.add(int(str(item).strip()))
        except ValueError:
            continue
    return frozenset(codes) if codes else default


def now_ms() -> int:
    """Wall-clock milliseconds, the timestamp unit used on the edge bus."""
    return int(time.time() * 1000)


__all__: Final[tuple[str, ...]] = (
    "parse_bool",
    "parse_int",
    "parse_float",
    "parse_code_set",
    "now_ms",
)
