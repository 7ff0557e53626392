"""
Small statistics toolkit shared by the analyzers.

Pure functions over plain sequences; no I/O, no randomness.
"""

import math
import statistics
from collections.abc import Sequence
from datetime import datetime
from typing import TypeVar

from kairos.domain.constants import SECONDS_PER_DAY

T = TypeVar("T")


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def mean(values: Sequence[float]) -> float | None:
    if not values:
        return None
    return sum(values) / len(values)


def median(values: Sequence[float]) -> float | None:
    if not values:
        return None
    return float(statistics.median(values))


def ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator, or 0.0 for an empty denominator."""
    if denominator == 0:
        return 0.0
    return numerator / denominator


def ols_slope(xs: Sequence[float], ys: Sequence[float]) -> float | None:
    """
    Ordinary least-squares slope of ys against xs.

    Returns None for fewer than two points or when every x is identical.
    """
    n = len(xs)
    if n < 2 or n != len(ys):
        return None

    mean_x = sum(xs) / n
    mean_y = sum(ys) / n
    sxx = sum((x - mean_x) ** 2 for x in xs)
    if sxx == 0:
        return None
    sxy = sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys))
    return sxy / sxx


def percentile_rank(population: Sequence[float], value: float) -> int:
    """
    Nearest-rank percentile of ``value`` within ``population``.

    The rank is the number of population members <= value; the percentile is
    the smallest integer P with ceil(P/100 * n) >= rank, i.e. ceil(100*rank/n).
    """
    if not population:
        raise ValueError("population must not be empty")
    rank = sum(1 for v in population if v <= value)
    return math.ceil(100 * rank / len(population))


def min_max_normalize(values: Sequence[float]) -> list[float]:
    """Scale values to [0, 1]. A constant series maps to all zeros."""
    if not values:
        return []
    low, high = min(values), max(values)
    span = high - low
    if span == 0:
        return [0.0 for _ in values]
    return [(v - low) / span for v in values]


def split_quartiles(items: Sequence[T]) -> list[list[T]]:
    """
    Split an ordered sequence into four contiguous, near-equal groups.

    Earlier groups take the remainder, so 5 items split 2/1/1/1. Groups may be
    empty when there are fewer than four items.
    """
    n = len(items)
    base, extra = divmod(n, 4)
    groups: list[list[T]] = []
    start = 0
    for i in range(4):
        size = base + (1 if i < extra else 0)
        groups.append(list(items[start : start + size]))
        start += size
    return groups


def age_in_days(moment: datetime, as_of: datetime) -> float:
    """Days between moment and as_of; never negative."""
    return max(0.0, (as_of - moment).total_seconds() / SECONDS_PER_DAY)


def decay_weight(age_days: float, half_life_days: float) -> float:
    """Exponential recency weight, exp(-age/half_life)."""
    return math.exp(-age_days / half_life_days)
