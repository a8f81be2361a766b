"""
Rounding helpers shared by the aggregator and the dashboard read model.

Both sides must round identically or optimistic values drift from the
server's, so rounding is half-up (not Python's banker's rounding).
"""

from __future__ import annotations

import math


def round_half_up(value: float, places: int) -> float:
    """Round to `places` decimals, ties away from -inf."""
    factor = 10**places
    return math.floor(value * factor + 0.5) / factor


def success_rate(success_count: int, count: int) -> float:
    """Percentage of successful payments, 1 decimal. 0 when count is 0."""
    if count <= 0:
        return 0.0
    return round_half_up(success_count / count * 100, 1)


def average_amount(total_volume: float, count: int) -> float:
    """Mean amount, 2 decimals. 0 when count is 0."""
    if count <= 0:
        return 0.0
    return round_half_up(total_volume / count, 2)


def success_count_from_rate(rate: float, count: int) -> int:
    """Recover a raw success count from a server-reported 1-decimal rate."""
    if count <= 0:
        return 0
    recovered = int(round_half_up(rate / 100 * count, 0))
    return max(0, min(count, recovered))
