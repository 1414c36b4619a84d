"""Aggregate gains statistics over peak multipliers."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field

HIT_MULTIPLIER = 1.3
FULL_CREDIT_MULTIPLIER = 2.0

# (key, lower bound inclusive, upper bound exclusive)
BRACKETS: tuple[tuple[str, float, float], ...] = (
    ("<1x", 0.0, 1.0),
    ("1-1.3x", 1.0, 1.3),
    ("1.3-2x", 1.3, 2.0),
    ("2-5x", 2.0, 5.0),
    ("5-10x", 5.0, 10.0),
    ("10-25x", 10.0, 25.0),
    ("25-50x", 25.0, 50.0),
    ("50-100x", 50.0, 100.0),
    (">=100x", 100.0, math.inf),
)


def gain_contribution(multiplier: float) -> float:
    """Contribution of one multiplier to the gain sum.

    Below 2.0x only the gain above 1.0 counts (1.3x adds 0.3); from 2.0x the
    full multiplier counts (5x adds 5). Losses add nothing.
    """
    if multiplier >= FULL_CREDIT_MULTIPLIER:
        return multiplier
    if multiplier > 1.0:
        return multiplier - 1.0
    return 0.0


def gain_sum(multipliers: Sequence[float]) -> float:
    return sum(gain_contribution(m) for m in multipliers)


def median(values: Sequence[float], default: float = 1.0) -> float:
    if not values:
        return default
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


def bracket_distribution(multipliers: Sequence[float]) -> dict[str, int]:
    counts = {key: 0 for key, _, _ in BRACKETS}
    for m in multipliers:
        for key, low, high in BRACKETS:
            if low <= m < high:
                counts[key] += 1
                break
    return counts


@dataclass(frozen=True)
class GainsStats:
    """Hit rate, gain sum, median, mean and bracket counts of a set of peaks."""

    total: int
    hit_count: int
    hit_rate: int
    gain_sum: float
    median: float
    average: float
    brackets: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_multipliers(cls, multipliers: Sequence[float]) -> GainsStats:
        total = len(multipliers)
        hits = sum(1 for m in multipliers if m >= HIT_MULTIPLIER)
        return cls(
            total=total,
            hit_count=hits,
            hit_rate=round(hits / total * 100) if total else 0,
            gain_sum=gain_sum(multipliers),
            median=median(multipliers),
            average=sum(multipliers) / total if total else 1.0,
            brackets=bracket_distribution(multipliers),
        )
