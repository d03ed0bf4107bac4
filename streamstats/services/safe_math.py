from __future__ import annotations

from typing import Iterable


def safe_ratio(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return numerator / denominator


def percentage(part: float, whole: float) -> float:
    return safe_ratio(part, whole) * 100


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(value, high))


def weighted_average(pairs: Iterable[tuple[float, float]]) -> float:
    """Average of (value, weight) pairs; 0 when the total weight is 0."""
    total = 0.0
    weight_sum = 0.0
    for value, weight in pairs:
        total += value * weight
        weight_sum += weight
    return safe_ratio(total, weight_sum)
