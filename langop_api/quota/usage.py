import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from fractions import Fraction

from .errors import MalformedQuantityError
from .quantity import Dimension, classify, parse

logger = logging.getLogger(__name__)

DEFAULT_WARN_THRESHOLD = 80.0


@dataclass(frozen=True)
class UtilizationReport:
    percent_used: dict[str, float] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    is_near_limit: bool = False


def _exact_percent(dimension: Dimension, limit: str | None, used: str | None) -> Fraction:
    limit_value = parse(dimension, limit).value
    if limit_value == 0:
        # No configured limit reads as 0% used, never as a division error.
        return Fraction(0)
    used_value = parse(dimension, used).value
    return min(used_value / limit_value * 100, Fraction(100))


def percent(dimension: Dimension | str, limit: str | None, used: str | None) -> float:
    """Percentage of ``limit`` consumed by ``used``, clamped to [0, 100]."""
    return float(_exact_percent(Dimension(dimension), limit, used))


def report(
    quota: Mapping[str, str],
    used: Mapping[str, str],
    warn_threshold: float = DEFAULT_WARN_THRESHOLD,
) -> UtilizationReport:
    """Compute utilization for every resource that has a quota.

    Resources present only in ``used`` are ignored. A resource whose quantity
    cannot be parsed is left out of ``percent_used`` and reported as a
    warning instead of failing the whole report.
    """
    percent_used: dict[str, float] = {}
    warnings: list[str] = []
    near_limit = False

    for resource, limit in quota.items():
        try:
            pct = _exact_percent(classify(resource), limit, used.get(resource, "0"))
        except MalformedQuantityError as exc:
            logger.warning("Skipping %s in utilization report: %s", resource, exc)
            warnings.append(f"{resource}: unparseable quantity ({exc})")
            continue

        percent_used[resource] = round(float(pct), 1)
        if pct >= warn_threshold:
            warnings.append(f"{resource}: {float(pct):.1f}% used")
            near_limit = True

    return UtilizationReport(percent_used=percent_used, warnings=warnings, is_near_limit=near_limit)
