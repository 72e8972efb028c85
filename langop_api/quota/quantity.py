"""Kubernetes quantity parsing.

Quantities are normalized to millicores (CPU), bytes (memory) or a plain
count. The rules mirror what is already stored in existing ResourceQuota
objects, so they are deliberately lenient: every character that is not a
digit or a decimal point is dropped before the magnitude is read, and a
missing unit is never an error.
"""

import enum
import re
from dataclasses import dataclass
from fractions import Fraction

from .errors import MalformedQuantityError

_NON_NUMERIC = re.compile(r"[^\d.]")

# Checked in order; binary suffixes first so "Mi" never matches as "M".
MEMORY_SUFFIXES: tuple[tuple[str, int], ...] = (
    ("Ki", 1024),
    ("Mi", 1024**2),
    ("Gi", 1024**3),
    ("Ti", 1024**4),
    ("k", 1000),
    ("M", 1000**2),
    ("G", 1000**3),
    ("T", 1000**4),
)


class Dimension(str, enum.Enum):
    cpu = "cpu"
    memory = "memory"
    count = "count"


@dataclass(frozen=True)
class NormalizedQuantity:
    dimension: Dimension
    value: Fraction

    def __str__(self) -> str:
        return render(self)


def classify(resource: str) -> Dimension:
    """Map a ResourceQuota key (``limits.cpu``, ``count/pods``...) to its dimension."""
    if "cpu" in resource:
        return Dimension.cpu
    if "memory" in resource:
        return Dimension.memory
    return Dimension.count


def _magnitude(raw: str) -> Fraction:
    digits = _NON_NUMERIC.sub("", raw)
    try:
        return Fraction(digits)
    except ValueError:
        raise MalformedQuantityError(raw) from None


def parse(dimension: Dimension | str, raw: str | None) -> NormalizedQuantity:
    """Parse ``raw`` into canonical units for ``dimension``.

    Empty input and ``"0"`` are zero. Raises MalformedQuantityError when a
    non-empty string carries no numeric magnitude at all.
    """
    dimension = Dimension(dimension)
    raw = (raw or "").strip()
    if not raw or raw == "0":
        return NormalizedQuantity(dimension, Fraction(0))

    magnitude = _magnitude(raw)

    if dimension is Dimension.cpu:
        value = magnitude if raw.endswith("m") else magnitude * 1000
    elif dimension is Dimension.memory:
        value = magnitude
        for suffix, multiplier in MEMORY_SUFFIXES:
            if suffix in raw:
                value = magnitude * multiplier
                break
    else:
        value = magnitude

    return NormalizedQuantity(dimension, value)


def render(quantity: NormalizedQuantity) -> str:
    """Render a normalized quantity back into a quantity string, rounding down."""
    whole = int(quantity.value)
    if quantity.dimension is Dimension.cpu:
        return f"{whole}m"
    return str(whole)
